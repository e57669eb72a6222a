from .container import ConstraintRelation, ConstraintsContainer, DIRICHLET, HANGING, FREE
from .dirichlet import (BoundaryCondition, AllDirichlet, NoDirichlet, DirichletBoundary,
                        TaggedDirichletBoundary, as_boundary_condition)
from .hanging import isolate_hanging_nodes
from .policy import (ConstraintPolicy, NoConstraints, DirichletConstraints, HangingNodeConstraints,
                     HangingNodeDirichletConstraints, adapt_to_isolate_hanging_nodes,
                     assemble_constraints)

__all__ = [
    "ConstraintRelation", "ConstraintsContainer", "DIRICHLET", "HANGING", "FREE",
    "BoundaryCondition", "AllDirichlet", "NoDirichlet", "DirichletBoundary",
    "TaggedDirichletBoundary", "as_boundary_condition", "isolate_hanging_nodes",
    "ConstraintPolicy", "NoConstraints", "DirichletConstraints", "HangingNodeConstraints",
    "HangingNodeDirichletConstraints", "adapt_to_isolate_hanging_nodes", "assemble_constraints",
]
