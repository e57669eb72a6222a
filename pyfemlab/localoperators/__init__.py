from .poisson import PoissonLocalOperator, NonlinearPoissonLocalOperator
from .mass import MassLocalOperator, LinearReactionLocalOperator
from .reaction_diffusion import ReactionDiffusionLocalOperator, ReactionDiffusionMassOperator

__all__ = [
    "PoissonLocalOperator", "NonlinearPoissonLocalOperator",
    "MassLocalOperator", "LinearReactionLocalOperator",
    "ReactionDiffusionLocalOperator", "ReactionDiffusionMassOperator",
]
