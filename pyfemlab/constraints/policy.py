"""pyfemlab.constraints.policy
Constraint policies and the entry point that turns a policy and a function
space into a resolved :class:`ConstraintsContainer`.
"""
import logging
from typing import Sequence, Union

from pyfemlab.constraints.container import ConstraintsContainer
from pyfemlab.constraints.dirichlet import BoundaryCondition, as_boundary_condition, add_dirichlet_constraints
from pyfemlab.constraints.hanging import add_hanging_node_constraints, elements_to_isolate, isolate_hanging_nodes
from pyfemlab.errors import ConstraintResolutionError

logger = logging.getLogger(__name__)


class ConstraintPolicy:
    """Adds the constraints of one source to a container."""

    def apply(self, space, container: ConstraintsContainer):
        raise NotImplementedError


class NoConstraints(ConstraintPolicy):
    def apply(self, space, container):
        return container


def _per_component(bctype, n: int):
    if isinstance(bctype, (list, tuple)):
        if len(bctype) != n:
            raise ValueError(f"Expected {n} boundary conditions (one per component), got {len(bctype)}.")
        return [as_boundary_condition(b) for b in bctype]
    return [as_boundary_condition(bctype)] * n


class DirichletConstraints(ConstraintPolicy):
    """Pin DOFs on boundary sides classified Dirichlet.

    *bctype* is a :class:`BoundaryCondition` applied to every component or a
    sequence with one entry per component (``None`` = natural everywhere).
    """

    def __init__(self, bctype: Union[BoundaryCondition, Sequence]):
        self.bctype = bctype

    def apply(self, space, container):
        comps = space.components()
        for comp, bc in zip(comps, _per_component(self.bctype, len(comps))):
            add_dirichlet_constraints(container, comp, space.mesh, bc)
        return container


class HangingNodeConstraints(ConstraintPolicy):
    """Interpolation constraints on non-conforming sides.

    With ``require_isolated=True`` a mesh having a side with more than one
    hanging vertex is rejected instead of being handled by chain flattening.
    """

    def __init__(self, require_isolated: bool = False):
        self.require_isolated = require_isolated

    def apply(self, space, container):
        mesh = space.mesh
        if self.require_isolated and elements_to_isolate(mesh):
            raise ConstraintResolutionError(
                f"Mesh has sides with {mesh.max_hanging_nodes_per_edge()} hanging nodes; "
                f"run isolate_hanging_nodes first.")
        for comp in space.components():
            add_hanging_node_constraints(container, comp, mesh)
        return container


class HangingNodeDirichletConstraints(ConstraintPolicy):
    """Hanging-node and Dirichlet constraints; Dirichlet wins on shared DOFs."""

    def __init__(self, bctype, require_isolated: bool = False):
        self.hanging = HangingNodeConstraints(require_isolated)
        self.dirichlet = DirichletConstraints(bctype)

    def apply(self, space, container):
        self.hanging.apply(space, container)
        self.dirichlet.apply(space, container)
        return container


def adapt_to_isolate_hanging_nodes(space, max_passes: int = 10) -> int:
    """Isolate hanging nodes on the mesh of *space* and renumber the space."""
    passes = isolate_hanging_nodes(space.mesh, max_passes)
    if passes:
        space.update()
    return passes


def assemble_constraints(policy: ConstraintPolicy, space, *, allow_chains: bool = True,
                         max_chain_depth: int = 16) -> ConstraintsContainer:
    """Build and resolve the constraints of *policy* on *space*."""
    container = ConstraintsContainer(space.size, allow_chains=allow_chains,
                                     max_chain_depth=max_chain_depth)
    (policy or NoConstraints()).apply(space, container)
    container.resolve()
    logger.info("Constraints: %d Dirichlet, %d hanging of %d DOFs.",
                len(container.dirichlet_dofs), len(container.hanging_dofs), space.size)
    return container
