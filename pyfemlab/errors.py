"""pyfemlab.errors
Exception hierarchy shared by all layers.

Every error carries the context that identifies where it happened (entity id,
residual norm, iteration index, time level) so that callers can decide on a
recovery policy, e.g. step-size reduction in a time loop.
"""
from typing import Optional


class PyFemLabError(Exception):
    """Base class of all pyfemlab errors."""


class SpaceConstructionError(PyFemLabError):
    """Inconsistent mesh / finite-element pairing or an empty mesh."""


class ConstraintResolutionError(PyFemLabError):
    """Hanging-node isolation did not converge or a constraint chain is unresolved."""

    def __init__(self, message: str, dof: Optional[int] = None):
        super().__init__(message)
        self.dof = dof


class AssemblyError(PyFemLabError):
    """A local operator evaluation failed on a mesh entity."""

    def __init__(self, message: str, entity_id: Optional[int] = None):
        if entity_id is not None:
            message = f"element {entity_id}: {message}"
        super().__init__(message)
        self.entity_id = entity_id


class LinearSolveFailure(PyFemLabError):
    """The linear solve backend did not reach the requested tolerance."""

    def __init__(self, message: str, iterations: int = 0, reduction: float = float("nan")):
        super().__init__(message)
        self.iterations = iterations
        self.reduction = reduction


class NonlinearSolveError(PyFemLabError):
    """Newton exhausted its iteration or line-search budget."""

    def __init__(self, message: str, defect: float, iterations: int,
                 reason: str = "", history=None):
        super().__init__(f"{message} (|R| = {defect:.3e} after {iterations} iterations)")
        self.defect = defect
        self.iterations = iterations
        self.reason = reason
        self.history = list(history) if history is not None else []


class TimeStepFailure(PyFemLabError):
    """A stage of a one-step method failed to solve."""

    def __init__(self, message: str, time: float, dt: float, stage: int):
        super().__init__(f"{message} (t = {time:.6g}, dt = {dt:.6g}, stage {stage})")
        self.time = time
        self.dt = dt
        self.stage = stage


class InvalidTableauError(PyFemLabError, ValueError):
    """Stage coefficients of a one-step method are inconsistent."""
