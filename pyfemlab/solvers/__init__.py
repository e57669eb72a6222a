from .linear import (LinearSolverParameters, LinearSolveResult, LinearSolverBackend,
                     DirectSolverBackend, KrylovSolverBackend, make_linear_solver)
from .nonlinear_solver import Newton, NewtonParameters, NewtonResult, NewtonState
from .onestep import (OneStepParameters, OneStepMethod, StageOperator, TimeStepper,
                      TimeStepperParameters, TimeSteppingResult, HalvingRetryPolicy,
                      ImplicitEuler, ExplicitEuler, Heun, CrankNicolson, Alexander2, Alexander3)

__all__ = [
    "LinearSolverParameters", "LinearSolveResult", "LinearSolverBackend",
    "DirectSolverBackend", "KrylovSolverBackend", "make_linear_solver",
    "Newton", "NewtonParameters", "NewtonResult", "NewtonState",
    "OneStepParameters", "OneStepMethod", "StageOperator", "TimeStepper",
    "TimeStepperParameters", "TimeSteppingResult", "HalvingRetryPolicy",
    "ImplicitEuler", "ExplicitEuler", "Heun", "CrankNicolson", "Alexander2", "Alexander3",
]
