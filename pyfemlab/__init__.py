"""pyfemlab: finite elements on adaptive 2-D meshes with hanging-node
constraints, Newton and diagonally implicit one-step solvers."""
from .errors import (PyFemLabError, SpaceConstructionError, ConstraintResolutionError,
                     AssemblyError, LinearSolveFailure, NonlinearSolveError,
                     TimeStepFailure, InvalidTableauError)

__version__ = "0.1.0"
