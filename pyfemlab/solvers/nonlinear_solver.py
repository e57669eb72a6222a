r"""
nonlinear_solver.py  -  Newton driver for pyfemlab
===================================================
Newton-Raphson iteration on any operator exposing ``residual(x)``,
``jacobian(x)`` and ``backtransform(x)`` (a :class:`GridOperator` or a
one-step stage operator). The Python layer is control logic only: element
loops live in the grid operator, linear algebra in the solver backend.

One solve runs through the states

    INIT -> ASSEMBLE -> LINEAR_SOLVE -> LINE_SEARCH -> ... -> CONVERGED | DIVERGED

and either returns a :class:`NewtonResult` or raises
:class:`NonlinearSolveError` carrying the last defect and iteration count.
"""
from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np

from pyfemlab.errors import LinearSolveFailure, NonlinearSolveError
from pyfemlab.solvers.linear import LinearSolverBackend, DirectSolverBackend

logger = logging.getLogger(__name__)


class NewtonState(enum.Enum):
    INIT = "init"
    ASSEMBLE = "assemble"
    LINEAR_SOLVE = "linear_solve"
    LINE_SEARCH = "line_search"
    CONVERGED = "converged"
    DIVERGED = "diverged"


@dataclass
class NewtonParameters:
    """Settings that govern a *single* Newton solve."""

    reduction: float = 1e-10            # stop when |R| / |R0| < reduction
    abs_limit: float = 1e-12            # ... or when |R| < abs_limit
    max_iterations: int = 25

    min_linear_reduction: float = 1e-4  # loosest relative tolerance of the linear solve
    fixed_linear_reduction: bool = False
    linear_max_iterations: int = 5000

    # Re-assemble the Jacobian when |R_k| / |R_{k-1}| exceeds this (0 = always)
    reassemble_threshold: float = 0.0

    # Line search: 'none' | 'backtracking' | 'hackbusch_reusken'
    line_search_strategy: str = "backtracking"
    line_search_max_iterations: int = 10
    line_search_damping: float = 0.5
    accept_best: bool = False           # take the best damped step instead of failing


@dataclass
class NewtonResult:
    solution: np.ndarray
    converged: bool
    iterations: int
    first_defect: float
    defect: float
    state: NewtonState
    history: List[float] = field(default_factory=list)
    linear_iterations: int = 0
    timings: Dict[str, float] = field(default_factory=dict)

    @property
    def reduction(self) -> float:
        return self.defect / self.first_defect if self.first_defect > 0 else 0.0

    @property
    def conv_rate(self) -> float:
        if self.iterations == 0 or self.first_defect == 0.0:
            return 0.0
        return self.reduction ** (1.0 / self.iterations)


class Newton:
    """Damped Newton method with selective Jacobian re-assembly.

    Parameters
    ----------
    operator :
        Provides ``residual(x)``, ``jacobian(x)`` and ``backtransform(x)``.
    linear_solver : LinearSolverBackend, optional
        Defaults to a sparse direct solver.
    params : NewtonParameters, optional
    """

    _STRATEGIES = ("none", "backtracking", "hackbusch_reusken")

    def __init__(self, operator, linear_solver: Optional[LinearSolverBackend] = None,
                 params: Optional[NewtonParameters] = None):
        self.operator = operator
        self.linear_solver = linear_solver or DirectSolverBackend()
        self.params = params or NewtonParameters()
        if self.params.line_search_strategy not in self._STRATEGIES:
            raise ValueError(f"Unknown line search '{self.params.line_search_strategy}'. "
                             f"Choose from {self._STRATEGIES}.")
        self.state = NewtonState.INIT

    def _set_state(self, state: NewtonState):
        self.state = state
        logger.debug("Newton -> %s", state.value)

    def _converged(self, defect: float, first_defect: float) -> bool:
        p = self.params
        return defect < p.abs_limit or defect <= first_defect * p.reduction

    def _linear_reduction(self, defect, prev_defect, first_defect) -> float:
        """Relative tolerance for the next linear solve.

        Aims at quadratic convergence (defect^2 / prev_defect^2) but never
        asks for more than needed to reach the Newton stopping criterion.
        """
        p = self.params
        if p.fixed_linear_reduction:
            return p.min_linear_reduction
        stop_defect = max(first_defect * p.reduction, p.abs_limit)
        quadratic = (defect / prev_defect) ** 2 if prev_defect > 0 else 1.0
        if stop_defect / (10.0 * defect) > quadratic:
            return stop_defect / (10.0 * defect)
        return min(p.min_linear_reduction, quadratic)

    def solve(self, x: np.ndarray) -> NewtonResult:
        """Solve operator.residual(x) = 0 starting from *x*; *x* is updated in place."""
        p = self.params
        op = self.operator
        self._set_state(NewtonState.INIT)
        timings = {"assembly": 0.0, "linear_solve": 0.0, "line_search": 0.0}
        t_start = time.perf_counter()

        op.backtransform(x)
        t0 = time.perf_counter()
        r = op.residual(x)
        timings["assembly"] += time.perf_counter() - t0
        defect = float(np.linalg.norm(r))
        first_defect = defect
        prev_defect = defect
        history = [defect]
        logger.info("Newton 0: |R| = %.3e", defect)

        J = None
        iterations = 0
        linear_iterations = 0

        def fail(message, reason, cause=None):
            self._set_state(NewtonState.DIVERGED)
            op.backtransform(x)
            err = NonlinearSolveError(message, defect=defect, iterations=iterations,
                                      reason=reason, history=history)
            if cause is not None:
                raise err from cause
            raise err

        while True:
            self._set_state(NewtonState.ASSEMBLE)
            if self._converged(defect, first_defect):
                break
            if iterations >= p.max_iterations:
                fail("Newton did not converge", "max_iterations")

            t0 = time.perf_counter()
            if J is None or p.reassemble_threshold <= 0.0 or defect / prev_defect > p.reassemble_threshold:
                J = op.jacobian(x)
                logger.debug("Newton %d: Jacobian re-assembled", iterations + 1)
            timings["assembly"] += time.perf_counter() - t0

            # LinearSolve: J dx = -r
            self._set_state(NewtonState.LINEAR_SOLVE)
            lin_red = self._linear_reduction(defect, prev_defect, first_defect)
            t0 = time.perf_counter()
            try:
                res = self.linear_solver.solve(J, -r, tol=lin_red, max_iter=p.linear_max_iterations)
                if not res.converged:
                    raise LinearSolveFailure("linear solver did not reach the requested reduction "
                                             f"{lin_red:.1e} (got {res.reduction:.1e})",
                                             iterations=res.iterations, reduction=res.reduction)
            except LinearSolveFailure as exc:
                timings["linear_solve"] += time.perf_counter() - t0
                fail("Linear solve failed inside Newton", "linear_solve", cause=exc)
            timings["linear_solve"] += time.perf_counter() - t0
            linear_iterations += res.iterations
            dx = res.x

            # LineSearch
            self._set_state(NewtonState.LINE_SEARCH)
            t0 = time.perf_counter()
            x_old = x.copy()
            new_r, new_defect, ok = self._line_search(x, x_old, dx, defect)
            timings["line_search"] += time.perf_counter() - t0
            iterations += 1
            if not ok:
                x[:] = x_old
                fail("Line search failed", "line_search")

            r = new_r
            prev_defect, defect = defect, new_defect
            history.append(defect)
            logger.info("Newton %d: |R| = %.3e (rate %.3e)", iterations, defect,
                        defect / prev_defect if prev_defect > 0 else 0.0)

        self._set_state(NewtonState.CONVERGED)
        op.backtransform(x)
        timings["total"] = time.perf_counter() - t_start
        logger.info("Newton converged in %d iterations: |R| = %.3e, reduction %.3e",
                    iterations, defect, defect / first_defect if first_defect > 0 else 0.0)
        return NewtonResult(solution=x, converged=True, iterations=iterations,
                            first_defect=first_defect, defect=defect, state=self.state,
                            history=history, linear_iterations=linear_iterations, timings=timings)

    def _line_search(self, x, x_old, dx, defect):
        """Update *x* in place; returns (residual, defect, accepted)."""
        p = self.params
        op = self.operator
        if p.line_search_strategy == "none":
            x[:] = x_old + dx
            r = op.residual(x)
            return r, float(np.linalg.norm(r)), True

        lam = 1.0
        best = None
        for k in range(p.line_search_max_iterations + 1):
            x[:] = x_old + lam * dx
            r = op.residual(x)
            trial = float(np.linalg.norm(r))
            if p.line_search_strategy == "hackbusch_reusken":
                accepted = trial <= (1.0 - 0.25 * lam) * defect
            else:
                accepted = trial < defect
            if accepted:
                if k:
                    logger.debug("line search accepted lambda = %.3e", lam)
                return r, trial, True
            if best is None or trial < best[2]:
                best = (lam, r, trial)
            lam *= p.line_search_damping
        if p.accept_best and best is not None:
            lam, r, trial = best
            x[:] = x_old + lam * dx
            logger.warning("line search exhausted; accepting best lambda = %.3e", lam)
            return r, trial, True
        return None, defect, False
