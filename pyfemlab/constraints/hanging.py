"""pyfemlab.constraints.hanging
Hanging-node constraints and the mesh isolation pass.

On a leaf side whose neighbour is finer, the fine-side DOFs located on the
side are not DOFs of the coarse element. Continuity is restored by
constraining each of them to the trace of the coarse element's basis:
the weights are the coarse basis functions evaluated at the DOF's reference
coordinates. For P1/Q1 this gives the classic 1/2-1/2 midpoint rule; for
higher orders, fine DOFs that coincide with coarse interpolation points are
shared and stay unconstrained.
"""
import logging

import numpy as np

from pyfemlab.constraints.container import ConstraintsContainer
from pyfemlab.errors import ConstraintResolutionError
from pyfemlab.fem import transform

logger = logging.getLogger(__name__)


def _on_segment(p, A, B, tol=1e-10) -> bool:
    d = B - A
    L2 = float(d @ d)
    rel = p - A
    if abs(rel[0] * d[1] - rel[1] * d[0]) > tol * np.sqrt(L2):
        return False
    t = float(rel @ d) / L2
    return -tol <= t <= 1.0 + tol


def add_hanging_node_constraints(container: ConstraintsContainer, component, mesh,
                                 drop_tol: float = 1e-12) -> int:
    """Constrain the fine-side DOFs of *component* on every non-conforming side."""
    leaf = component.leaf
    if not leaf.fem.continuous:
        return 0
    ref = leaf.fem.reference(mesh.element_type)
    table = leaf.leaf_element_dofs()
    coords = leaf.leaf_dof_coords()
    gmap = component.global_map
    count = 0
    for eid, lid, hanging in mesh.hanging_edges():
        ig = next(i for i in mesh.intersections(eid) if i.local_index == lid)
        own = set(table[eid].tolist())
        candidates = set()
        for v in hanging:
            for e2 in mesh.vertex_elements(v):
                candidates.update(table[e2].tolist())
        for d in sorted(candidates - own):
            if not _on_segment(coords[d], ig.A, ig.B):
                continue
            xi = transform.inverse_mapping(mesh, eid, coords[d])
            w = ref.shape(float(xi[0]), float(xi[1]))
            masters = {int(gmap[table[eid, i]]): float(w[i])
                       for i in range(len(w)) if abs(w[i]) > drop_tol}
            if container.add_relation(int(gmap[d]), masters):
                count += 1
    return count


def elements_to_isolate(mesh):
    """Leaf elements owning a side that carries more than one hanging vertex."""
    return sorted({eid for eid, _, hanging in mesh.hanging_edges() if len(hanging) > 1})


def isolate_hanging_nodes(mesh, max_passes: int = 10) -> int:
    """Refine until every leaf side carries at most one hanging vertex.

    Returns the number of refinement passes performed. Raises
    :class:`ConstraintResolutionError` if the mesh is still not isolated
    after *max_passes* passes.
    """
    passes = 0
    while True:
        marked = elements_to_isolate(mesh)
        if not marked:
            if passes:
                logger.info("Hanging-node isolation finished after %d pass(es).", passes)
            return passes
        if passes >= max_passes:
            raise ConstraintResolutionError(
                f"Hanging-node isolation did not converge within {max_passes} passes "
                f"({len(marked)} elements still carry sides with multiple hanging nodes).")
        for eid in marked:
            mesh.mark(1, eid)
        mesh.pre_adapt()
        mesh.adapt()
        mesh.post_adapt()
        passes += 1
        logger.debug("Isolation pass %d refined %d elements.", passes, len(marked))
