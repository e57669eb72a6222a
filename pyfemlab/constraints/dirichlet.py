"""pyfemlab.constraints.dirichlet
Boundary classification and Dirichlet constraint generation.
"""
from typing import Callable, Iterable

from pyfemlab.constraints.container import ConstraintsContainer


class BoundaryCondition:
    """Classifies boundary intersections as Dirichlet or natural (Neumann).

    ``is_dirichlet(intersection, s)`` is evaluated at a face coordinate
    ``s`` in [0, 1]; constraint generation queries the face centre.
    """

    def is_dirichlet(self, intersection, s: float) -> bool:
        raise NotImplementedError

    def __call__(self, intersection, s: float) -> bool:
        return self.is_dirichlet(intersection, s)


class AllDirichlet(BoundaryCondition):
    def is_dirichlet(self, intersection, s):
        return True


class NoDirichlet(BoundaryCondition):
    def is_dirichlet(self, intersection, s):
        return False


class DirichletBoundary(BoundaryCondition):
    """Dirichlet where ``predicate(x, y)`` holds at the queried face point."""

    def __init__(self, predicate: Callable[[float, float], bool]):
        self.predicate = predicate

    def is_dirichlet(self, intersection, s):
        x, y = intersection.global_coords(s)
        return bool(self.predicate(x, y))


class TaggedDirichletBoundary(BoundaryCondition):
    """Dirichlet on boundary edges carrying one of *tags* (see ``Mesh.tag_boundary_edges``)."""

    def __init__(self, tags: Iterable[str]):
        self.tags = frozenset([tags] if isinstance(tags, str) else tags)

    def is_dirichlet(self, intersection, s):
        return intersection.tag in self.tags


class _CallableBoundary(BoundaryCondition):
    def __init__(self, func):
        self.func = func

    def is_dirichlet(self, intersection, s):
        return bool(self.func(intersection, s))


def as_boundary_condition(bc) -> BoundaryCondition:
    """Accept a BoundaryCondition, None (no Dirichlet) or a callable ``f(intersection, s)``."""
    if bc is None:
        return NoDirichlet()
    if isinstance(bc, BoundaryCondition):
        return bc
    if callable(bc):
        return _CallableBoundary(bc)
    raise TypeError(f"Cannot interpret {bc!r} as a boundary condition.")


def add_dirichlet_constraints(container: ConstraintsContainer, component, mesh, bc: BoundaryCondition,
                              s: float = 0.5):
    """Pin every DOF of *component* located on a Dirichlet boundary side."""
    leaf = component.leaf
    ref = leaf.fem.reference(mesh.element_type)
    table = leaf.leaf_element_dofs()
    count = 0
    for ig in mesh.boundary_intersections():
        if not bc.is_dirichlet(ig, s):
            continue
        for i in ref.edge_basis(ig.local_index):
            container.add_dirichlet(component.global_map[table[ig.element, i]])
            count += 1
    return count
