"""pyfemlab.space.functionspace
Grid function spaces: a tree whose leaves bind one finite-element map to a
mesh and whose inner nodes (power / composite) merge their children's DOF
index spaces under an ordering policy.

The node kind is a tag (``kind``) rather than a deep class hierarchy: every
node answers the same queries (``size``, ``element_dofs``,
``dof_entity_keys``, ``components``), and the root of the tree is the space
handed to constraints and grid operators.
"""
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import numpy as np

from pyfemlab.errors import SpaceConstructionError
from pyfemlab.fem import transform
from pyfemlab.space.ordering import make_ordering, Ordering


@dataclass(frozen=True)
class Component:
    """One occurrence of a leaf space inside a (possibly composite) space."""
    name: str
    index: int
    leaf: "GridFunctionSpace"
    global_map: np.ndarray      # leaf dof -> dof of the root space
    local_slice: slice          # position inside the element-local vector

    def global_dofs(self) -> np.ndarray:
        return self.global_map


class _SpaceNode:
    kind = "abstract"

    def __init__(self, name: str):
        self.name = name
        self._components: Optional[List[Component]] = None
        self._element_table: Optional[np.ndarray] = None

    # --- queries every node answers ---

    @property
    def n_dofs(self) -> int:
        return self.size

    def __len__(self):
        return self.size

    def element_dofs(self, eid: int) -> np.ndarray:
        """Global DOFs of element *eid*, stacked component by component."""
        return self.element_dofs_table()[eid]

    def element_dofs_table(self) -> np.ndarray:
        if self._element_table is None:
            parts = [c.global_map[c.leaf.leaf_element_dofs()] for c in self.components()]
            self._element_table = np.hstack(parts)
        return self._element_table

    @property
    def n_local(self) -> int:
        return self.element_dofs_table().shape[1]

    def components(self) -> List[Component]:
        if self._components is None:
            comps, offset = [], 0
            for i, (name, leaf, m) in enumerate(self._leaf_maps()):
                n = leaf.leaf_element_dofs().shape[1]
                comps.append(Component(name, i, leaf, m, slice(offset, offset + n)))
                offset += n
            names = [c.name for c in comps]
            if len(set(names)) != len(names):
                raise SpaceConstructionError(f"Component names are not unique: {names}")
            self._components = comps
        return self._components

    def leaves(self) -> List["GridFunctionSpace"]:
        return [c.leaf for c in self.components()]

    def component(self, key) -> Component:
        comps = self.components()
        if isinstance(key, str):
            for c in comps:
                if c.name == key:
                    return c
            raise KeyError(key)
        return comps[key]

    def local_slices(self) -> Dict[str, slice]:
        return {c.name: c.local_slice for c in self.components()}

    def dof_coords(self) -> np.ndarray:
        """Interpolation point of every DOF of this space."""
        out = np.zeros((self.size, 2))
        for c in self.components():
            out[c.global_map] = c.leaf.leaf_dof_coords()
        return out

    def dof_component(self) -> np.ndarray:
        """Index of the component each DOF belongs to."""
        out = np.empty(self.size, dtype=int)
        for c in self.components():
            out[c.global_map] = c.index
        return out

    def is_stale(self) -> bool:
        return any(leaf.generation != leaf.mesh.generation for leaf in self.leaves())

    def _reset(self):
        self._components = None
        self._element_table = None

    def __repr__(self):
        return f"<{type(self).__name__} '{self.name}' kind={self.kind} size={self.size}>"


class GridFunctionSpace(_SpaceNode):
    """Leaf space: one finite-element map on one mesh."""
    kind = "leaf"

    def __init__(self, mesh, fem, name: str = "u"):
        super().__init__(name)
        if mesh is None:
            raise SpaceConstructionError("A function space needs a mesh.")
        self.mesh = mesh
        self.fem = fem
        self.update()

    def update(self):
        """(Re)build the DOF numbering, e.g. after mesh adaptation."""
        mesh, fem = self.mesh, self.fem
        if mesh.n_elements == 0:
            raise SpaceConstructionError(f"Space '{self.name}': the mesh has no elements.")
        if not fem.supports(mesh.element_type):
            raise SpaceConstructionError(
                f"Space '{self.name}': {fem!r} does not support '{mesh.element_type}' elements.")
        ref = fem.reference(mesh.element_type)
        n_loc = ref.n_basis

        key_to_dof: Dict[Tuple, int] = {}
        keys, coords = [], []
        table = np.empty((mesh.n_elements, n_loc), dtype=int)
        for eid in range(mesh.n_elements):
            X = transform.map_points(mesh, eid, ref.nodes)
            for i in range(n_loc):
                key = fem.dof_key(mesh, eid, i, X[i])
                dof = key_to_dof.get(key)
                if dof is None:
                    dof = len(keys)
                    key_to_dof[key] = dof
                    keys.append(key)
                    coords.append(X[i])
                table[eid, i] = dof
            if len(set(table[eid].tolist())) != n_loc:
                raise SpaceConstructionError(
                    f"Space '{self.name}': element {eid} maps distinct basis functions to one DOF "
                    f"(degenerate element).")

        self._leaf_table = table
        self._keys = keys
        self._key_to_dof = key_to_dof
        self._coords = np.array(coords, dtype=float).reshape(-1, 2)
        self.size = len(keys)
        self.generation = mesh.generation
        self._reset()

    def leaf_element_dofs(self) -> np.ndarray:
        return self._leaf_table

    def leaf_dof_coords(self) -> np.ndarray:
        return self._coords

    def dof_entity_keys(self) -> List:
        return self._keys

    def dof_of_key(self, key) -> Optional[int]:
        return self._key_to_dof.get(key)

    def _leaf_maps(self):
        return [(self.name, self, np.arange(self.size, dtype=int))]


class _MultiSpace(_SpaceNode):
    """Common part of power and composite spaces."""

    def __init__(self, children, ordering, name):
        super().__init__(name)
        if not children:
            raise SpaceConstructionError(f"{type(self).__name__} '{name}' needs at least one child.")
        meshes = {id(ch.mesh) for ch in children}
        if len(meshes) != 1:
            raise SpaceConstructionError(f"Children of '{name}' live on different meshes.")
        self.children = list(children)
        self.mesh = children[0].mesh
        self.ordering: Ordering = make_ordering(ordering)
        self._compose()

    def _compose(self):
        maps, total = self.ordering.compose(self.children)
        merged = np.concatenate(maps) if maps else np.empty(0, dtype=int)
        if merged.size != total or not np.array_equal(np.sort(merged), np.arange(total)):
            raise SpaceConstructionError(
                f"Ordering {self.ordering!r} of '{self.name}' does not partition the index space.")
        self._child_maps = maps
        self.size = total
        keys = [None] * total
        for child, m in zip(self.children, maps):
            for d, k in enumerate(child.dof_entity_keys()):
                keys[m[d]] = k
        self._keys = keys
        self._reset()

    def update(self):
        for child in self._unique_children():
            child.update()
        self._compose()

    def _unique_children(self):
        seen, out = set(), []
        for ch in self.children:
            if id(ch) not in seen:
                seen.add(id(ch))
                out.append(ch)
        return out

    def dof_entity_keys(self) -> List:
        return self._keys

    def sub(self, i: int):
        return self.children[i]

    def _child_name(self, i: int, child, leaf_name: str) -> str:
        raise NotImplementedError

    def _leaf_maps(self):
        out = []
        for i, (child, m) in enumerate(zip(self.children, self._child_maps)):
            for name, leaf, leaf_map in child._leaf_maps():
                out.append((self._child_name(i, child, name), leaf, m[leaf_map]))
        return out


class PowerGridFunctionSpace(_MultiSpace):
    """``n`` copies of one child space, e.g. the components of a vector field."""
    kind = "power"

    def __init__(self, child, n: int, ordering="lexicographic", name: Optional[str] = None):
        if int(n) < 1:
            raise SpaceConstructionError("A power space needs at least one component.")
        self.n = int(n)
        super().__init__([child] * self.n, ordering, name or child.name)

    def _child_name(self, i, child, leaf_name):
        return f"{leaf_name}_{i}"


class CompositeGridFunctionSpace(_MultiSpace):
    """Children of different kinds, e.g. velocity and pressure."""
    kind = "composite"

    def __init__(self, *children, ordering="lexicographic", name: str = "composite"):
        super().__init__(list(children), ordering, name)

    def _child_name(self, i, child, leaf_name):
        return leaf_name
