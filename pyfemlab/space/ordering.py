"""pyfemlab.space.ordering
Policies that merge the DOF index spaces of the children of a power or
composite function space into one index space.
"""
from typing import List, Sequence, Tuple

import numpy as np


class Ordering:
    name = "abstract"

    def compose(self, children: Sequence) -> Tuple[List[np.ndarray], int]:
        """Return one map (child dof -> parent dof) per child and the parent size."""
        raise NotImplementedError

    def __repr__(self):
        return f"{type(self).__name__}()"


class LexicographicOrdering(Ordering):
    """All DOFs of child 0, then all DOFs of child 1, ..."""
    name = "lexicographic"

    def compose(self, children):
        maps, offset = [], 0
        for child in children:
            maps.append(np.arange(offset, offset + child.size, dtype=int))
            offset += child.size
        return maps, offset


class EntityBlockedOrdering(Ordering):
    """DOFs of all children attached to one entity are numbered consecutively.

    Entities are visited in order of first appearance during the element
    traversal; within an entity the children appear in order, each with its
    own DOFs in ascending child index. For a power space of identical
    children this interleaves the components with block size = number of
    children.
    """
    name = "entity_blocked"

    def compose(self, children):
        rank = {}
        n_elements = children[0].mesh.n_elements
        child_keys = [child.dof_entity_keys() for child in children]
        for e in range(n_elements):
            for c, child in enumerate(children):
                for d in child.element_dofs(e):
                    rank.setdefault(child_keys[c][d], len(rank))

        ranks, owners, locals_ = [], [], []
        for c, child in enumerate(children):
            r = np.array([rank.get(k, -1) for k in child_keys[c]], dtype=int)
            # DOFs not reached by any element keep their relative order at the end
            r[r < 0] = len(rank) + np.arange(int((r < 0).sum()))
            ranks.append(r)
            owners.append(np.full(child.size, c, dtype=int))
            locals_.append(np.arange(child.size, dtype=int))
        ranks = np.concatenate(ranks)
        owners = np.concatenate(owners)
        locals_ = np.concatenate(locals_)
        perm = np.lexsort((locals_, owners, ranks))

        maps = [np.empty(child.size, dtype=int) for child in children]
        for new_index, k in enumerate(perm):
            maps[owners[k]][locals_[k]] = new_index
        return maps, len(perm)


_ORDERINGS = {
    "lexicographic": LexicographicOrdering,
    "entity_blocked": EntityBlockedOrdering,
}


def make_ordering(ordering) -> Ordering:
    if isinstance(ordering, Ordering):
        return ordering
    try:
        return _ORDERINGS[str(ordering).lower()]()
    except KeyError:
        raise ValueError(f"Unknown ordering '{ordering}'. Choose from {sorted(_ORDERINGS)}.") from None
