"""pyfemlab.solvers.onestep
Diagonally implicit one-step methods for ``d/dt m(u) + r(u, t) = 0``.

Stage ``i`` of an s-stage method with Butcher tableau ``(A, b, c)`` solves

    m(U_i) - m(u_n) + dt * sum_{j<=i} a_ij r(U_j, t_n + c_j dt) = 0

with Newton; ``m`` is assembled by the temporal grid operator and ``r`` by
the spatial one. Unless the method is stiffly accurate (``b`` equals the
last row of ``A``) the new time level solves one more mass system

    m(u_{n+1}) = m(u_n) - dt * sum_j b_j r(U_j, t_n + c_j dt).
"""
import logging
import math
from dataclasses import dataclass, field
from typing import Callable, List, Optional

import numpy as np

from pyfemlab.errors import InvalidTableauError, NonlinearSolveError, TimeStepFailure
from pyfemlab.solvers.nonlinear_solver import Newton, NewtonParameters, NewtonResult
from pyfemlab.space.interpolate import interpolate, copy_constrained_dofs

logger = logging.getLogger(__name__)


class OneStepParameters:
    """Butcher tableau of a diagonally implicit (or explicit) Runge-Kutta method.

    Parameters
    ----------
    A : (s, s) array_like
        Lower triangular stage matrix.
    b : (s,) array_like
        Weights of the new time level.
    c : (s,) array_like
        Stage times relative to ``t_n`` in units of ``dt``; must equal the
        row sums of *A*.
    name : str
    order : int
        Classical order of the method.
    """

    def __init__(self, A, b, c, name: str = "custom", order: int = 1):
        try:
            A = np.array(A, dtype=float)
            b = np.array(b, dtype=float)
            c = np.array(c, dtype=float)
        except (TypeError, ValueError) as exc:
            raise InvalidTableauError(f"{name}: non-numeric coefficients ({exc})") from exc
        if A.ndim != 2 or A.shape[0] != A.shape[1] or A.shape[0] == 0:
            raise InvalidTableauError(f"{name}: A must be a non-empty square matrix, got shape {A.shape}")
        s = A.shape[0]
        if b.shape != (s,) or c.shape != (s,):
            raise InvalidTableauError(
                f"{name}: {s} stages but b has shape {b.shape} and c has shape {c.shape}")
        if not (np.all(np.isfinite(A)) and np.all(np.isfinite(b)) and np.all(np.isfinite(c))):
            raise InvalidTableauError(f"{name}: coefficients must be finite")
        if np.any(np.triu(A, k=1) != 0.0):
            raise InvalidTableauError(f"{name}: A must be lower triangular (diagonally implicit)")
        if not np.allclose(A.sum(axis=1), c, rtol=0.0, atol=1e-10):
            raise InvalidTableauError(f"{name}: c must equal the row sums of A")
        if int(order) < 1:
            raise InvalidTableauError(f"{name}: order must be positive")
        self.A, self.b, self.c = A, b, c
        self.name = name
        self.order = int(order)

    @property
    def stages(self) -> int:
        return self.A.shape[0]

    @property
    def stiffly_accurate(self) -> bool:
        return bool(np.array_equal(self.A[-1], self.b))

    @property
    def implicit(self) -> bool:
        return bool(np.any(np.diag(self.A) != 0.0))

    def __repr__(self):
        return f"<OneStepParameters {self.name} stages={self.stages} order={self.order}>"


def ImplicitEuler() -> OneStepParameters:
    return OneStepParameters([[1.0]], [1.0], [1.0], name="implicit Euler", order=1)


def ExplicitEuler() -> OneStepParameters:
    return OneStepParameters([[0.0]], [1.0], [0.0], name="explicit Euler", order=1)


def Heun() -> OneStepParameters:
    return OneStepParameters([[0.0, 0.0], [1.0, 0.0]], [0.5, 0.5], [0.0, 1.0], name="Heun", order=2)


def CrankNicolson() -> OneStepParameters:
    return OneStepParameters([[0.0, 0.0], [0.5, 0.5]], [0.5, 0.5], [0.0, 1.0],
                             name="Crank-Nicolson", order=2)


def Alexander2() -> OneStepParameters:
    """Two-stage, strongly S-stable DIRK of order 2."""
    g = 1.0 - 1.0 / math.sqrt(2.0)
    return OneStepParameters([[g, 0.0], [1.0 - g, g]], [1.0 - g, g], [g, 1.0],
                             name="Alexander2", order=2)


def Alexander3() -> OneStepParameters:
    """Three-stage, strongly S-stable DIRK of order 3."""
    alpha = 0.435866521508459
    tau2 = 0.5 * (1.0 + alpha)
    b1 = -0.25 * (6.0 * alpha ** 2 - 16.0 * alpha + 1.0)
    b2 = 0.25 * (6.0 * alpha ** 2 - 20.0 * alpha + 5.0)
    A = [[alpha, 0.0, 0.0],
         [tau2 - alpha, alpha, 0.0],
         [b1, b2, alpha]]
    return OneStepParameters(A, [b1, b2, alpha], [alpha, tau2, 1.0], name="Alexander3", order=3)


class StageOperator:
    """``m(x) + const + weight * r(x, t)`` as an operator for :class:`Newton`.

    Both grid operators share the function space and the constraints, so
    constrained rows are zero in the residual; the Jacobian keeps the unit
    diagonal of the temporal operator on those rows.
    """

    def __init__(self, temporal, spatial, constant: np.ndarray, weight: float, time: float):
        self.temporal = temporal
        self.spatial = spatial
        self.constant = constant
        self.weight = float(weight)
        self.time = float(time)

    def residual(self, x: np.ndarray) -> np.ndarray:
        self.temporal.set_time(self.time)
        r = self.temporal.residual(x) + self.constant
        if self.weight != 0.0:
            self.spatial.set_time(self.time)
            r += self.weight * self.spatial.residual(x)
        return r

    def jacobian(self, x: np.ndarray):
        self.temporal.set_time(self.time)
        J = self.temporal.jacobian(x, diagonal=1.0)
        if self.weight != 0.0:
            self.spatial.set_time(self.time)
            J = J + self.weight * self.spatial.jacobian(x, diagonal=0.0)
        return J.tocsr()

    def backtransform(self, x: np.ndarray) -> np.ndarray:
        return self.temporal.backtransform(x)


class OneStepMethod:
    """Advances ``d/dt m(u) + r(u, t) = 0`` by one step of a DIRK scheme.

    Parameters
    ----------
    tableau : OneStepParameters
    spatial_go : GridOperator
        Assembles ``r(u, t)``.
    temporal_go : GridOperator
        Assembles ``m(u)``; must share the space and constraints of
        *spatial_go*.
    newton_params : NewtonParameters, optional
    linear_solver : LinearSolverBackend, optional
    dirichlet_values : callable, optional
        ``dirichlet_values(t)`` returns anything :func:`interpolate` accepts;
        its values are copied into the Dirichlet DOFs of each stage's
        initial guess.
    """

    def __init__(self, tableau: OneStepParameters, spatial_go, temporal_go,
                 newton_params: Optional[NewtonParameters] = None, linear_solver=None,
                 dirichlet_values: Optional[Callable] = None):
        if spatial_go.size != temporal_go.size:
            raise ValueError("spatial and temporal operators act on different spaces")
        self.tableau = tableau
        self.spatial = spatial_go
        self.temporal = temporal_go
        self.newton_params = newton_params or NewtonParameters()
        self.linear_solver = linear_solver
        self.dirichlet_values = dirichlet_values
        self.last_results: List[NewtonResult] = []

    def _set_dirichlet(self, x: np.ndarray, t: float):
        if self.dirichlet_values is None:
            return
        g = interpolate(self.spatial.space, self.dirichlet_values(t))
        copy_constrained_dofs(self.spatial.constraints, g, x)

    def _solve(self, op: StageOperator, x: np.ndarray, t: float, dt: float, stage: int) -> NewtonResult:
        newton = Newton(op, self.linear_solver, self.newton_params)
        try:
            return newton.solve(x)
        except NonlinearSolveError as exc:
            raise TimeStepFailure(f"{self.tableau.name}: Newton failed", time=t, dt=dt, stage=stage) from exc

    def apply(self, t: float, dt: float, x_old: np.ndarray) -> np.ndarray:
        """Return the solution at ``t + dt``; *x_old* is not modified."""
        tab = self.tableau
        x_old = self.temporal.backtransform(np.array(x_old, dtype=float))
        self.temporal.set_time(t)
        m_old = self.temporal.residual(x_old)
        stage_residuals = []
        self.last_results = []
        x = x_old.copy()

        for i in range(tab.stages):
            t_i = t + tab.c[i] * dt
            const = -m_old
            for j in range(i):
                if tab.A[i, j] != 0.0:
                    const = const + dt * tab.A[i, j] * stage_residuals[j]
            self._set_dirichlet(x, t_i)
            op = StageOperator(self.temporal, self.spatial, const, dt * tab.A[i, i], t_i)
            res = self._solve(op, x, t, dt, i)
            self.last_results.append(res)
            self.spatial.set_time(t_i)
            stage_residuals.append(self.spatial.residual(x))
            logger.debug("%s stage %d: t = %.6g, %d Newton iterations",
                         tab.name, i, t_i, res.iterations)

        if tab.stiffly_accurate:
            return x

        const = -m_old
        for j in range(tab.stages):
            if tab.b[j] != 0.0:
                const = const + dt * tab.b[j] * stage_residuals[j]
        self._set_dirichlet(x, t + dt)
        op = StageOperator(self.temporal, self.spatial, const, 0.0, t + dt)
        self.last_results.append(self._solve(op, x, t, dt, tab.stages))
        return x


@dataclass
class TimeStepperParameters:
    """Step-size control of :class:`TimeStepper`."""

    dt_start: float = 0.1
    dt_max: float = 1.0
    t_end: float = 1.0
    t_start: float = 0.0
    growth_factor: float = 1.1
    max_retries: int = 10


@dataclass
class TimeSteppingResult:
    solution: np.ndarray
    time: float
    steps: int
    retries: int
    times: List[float] = field(default_factory=list)
    dts: List[float] = field(default_factory=list)


class HalvingRetryPolicy:
    """Retry a failed step with half the step size, down to *min_dt*."""

    def __init__(self, min_dt: float = 1e-8):
        self.min_dt = float(min_dt)

    def __call__(self, failure: TimeStepFailure) -> Optional[float]:
        dt = 0.5 * failure.dt
        return dt if dt >= self.min_dt else None


class TimeStepper:
    """Time loop with step growth ``dt <- min(dt * growth_factor, dt_max)``.

    A :class:`TimeStepFailure` is passed to *retry_policy*, which returns a
    new step size or None to give up; without a policy the failure
    propagates. :class:`~pyfemlab.errors.AssemblyError` always propagates.
    """

    def __init__(self, method: OneStepMethod, params: Optional[TimeStepperParameters] = None):
        self.method = method
        self.params = params or TimeStepperParameters()
        p = self.params
        if p.dt_start <= 0.0 or p.dt_max <= 0.0:
            raise ValueError("time steps must be positive")
        if p.growth_factor < 1.0:
            raise ValueError("growth_factor must be >= 1")

    def run(self, x0: np.ndarray, retry_policy: Optional[Callable] = None,
            on_step: Optional[Callable] = None) -> TimeSteppingResult:
        p = self.params
        t = p.t_start
        dt = min(p.dt_start, p.dt_max)
        x = np.array(x0, dtype=float)
        result = TimeSteppingResult(solution=x, time=t, steps=0, retries=0)
        retries = 0
        # round-off guard relative to the horizon and the first step
        tol = max(1e-8 * min(p.dt_start, p.t_end - p.t_start), 64.0 * np.spacing(abs(p.t_end)))
        while t < p.t_end - tol:
            dt_step = min(dt, p.t_end - t)
            try:
                x_new = self.method.apply(t, dt_step, x)
            except TimeStepFailure as failure:
                new_dt = retry_policy(failure) if retry_policy is not None else None
                if new_dt is None or retries >= p.max_retries:
                    raise
                retries += 1
                result.retries += 1
                logger.warning("step at t = %.6g failed with dt = %.3e; retrying with dt = %.3e",
                               t, dt_step, new_dt)
                dt = new_dt
                continue
            retries = 0
            x = x_new
            t += dt_step
            result.steps += 1
            result.times.append(t)
            result.dts.append(dt_step)
            logger.info("%s step %d: t = %.6g, dt = %.3e",
                        self.method.tableau.name, result.steps, t, dt_step)
            if on_step is not None:
                on_step(t, x)
            dt = min(dt * p.growth_factor, p.dt_max)
        result.solution = x
        result.time = t
        return result
