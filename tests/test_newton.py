import logging

import numpy as np
import pytest
import scipy.sparse as sp

from pyfemlab.assembly import GridOperator
from pyfemlab.constraints import AllDirichlet, DirichletConstraints, assemble_constraints
from pyfemlab.errors import LinearSolveFailure, NonlinearSolveError
from pyfemlab.fem.femap import LagrangeFEM
from pyfemlab.localoperators import NonlinearPoissonLocalOperator, PoissonLocalOperator
from pyfemlab.solvers import KrylovSolverBackend, Newton, NewtonParameters, NewtonState
from pyfemlab.space import GridFunctionSpace
from pyfemlab.utils.meshgen import unit_square


def nonlinear_problem(eta=1.0, f=10.0):
    space = GridFunctionSpace(unit_square('tri', 4), LagrangeFEM(1))
    cons = assemble_constraints(DirichletConstraints(AllDirichlet()), space)
    return GridOperator(space, NonlinearPoissonLocalOperator(eta=eta, f=f), cons)


class _CountingOperator:
    def __init__(self, go):
        self.go = go
        self.jacobian_calls = 0

    def residual(self, x):
        return self.go.residual(x)

    def jacobian(self, x):
        self.jacobian_calls += 1
        return self.go.jacobian(x)

    def backtransform(self, x):
        return self.go.backtransform(x)


class _WrongJacobian:
    """r(x) = x - 1 with the sign of the Jacobian flipped: Newton steps go uphill."""

    def residual(self, x):
        return x - 1.0

    def jacobian(self, x):
        return -sp.identity(len(x), format="csr")

    def backtransform(self, x):
        return x


class _SingularJacobian(_WrongJacobian):
    def jacobian(self, x):
        return sp.csr_matrix((len(x), len(x)))


class TestNewtonConvergence:
    def test_monotone_decrease(self):
        go = nonlinear_problem()
        x = np.zeros(go.size)
        result = Newton(go).solve(x)
        assert result.converged
        assert result.state is NewtonState.CONVERGED
        assert result.iterations >= 2
        assert all(b < a for a, b in zip(result.history, result.history[1:]))
        assert result.defect <= result.first_defect * 1e-10 or result.defect < 1e-12
        assert result.solution is x
        assert 0.0 <= result.conv_rate < 1.0
        assert set(result.timings) >= {"assembly", "linear_solve", "line_search", "total"}

    @pytest.mark.parametrize("strategy", ["none", "backtracking", "hackbusch_reusken"])
    def test_line_search_strategies(self, strategy):
        go = nonlinear_problem()
        result = Newton(go, params=NewtonParameters(line_search_strategy=strategy)).solve(np.zeros(go.size))
        assert result.converged

    def test_krylov_backend_with_adaptive_reduction(self):
        go = nonlinear_problem()
        newton = Newton(go, KrylovSolverBackend("bicgstab", "ilu"))
        result = newton.solve(np.zeros(go.size))
        assert result.converged
        assert result.linear_iterations > 0

    def test_fixed_linear_reduction(self):
        go = nonlinear_problem()
        params = NewtonParameters(fixed_linear_reduction=True, min_linear_reduction=1e-12)
        result = Newton(go, KrylovSolverBackend("cg", "jacobi"), params).solve(np.zeros(go.size))
        assert result.converged

    def test_stale_jacobian_is_reused(self):
        op = _CountingOperator(nonlinear_problem(eta=1.0, f=1.0))
        params = NewtonParameters(reassemble_threshold=1.0, max_iterations=40)
        result = Newton(op, params=params).solve(np.zeros(op.go.size))
        assert result.converged
        assert op.jacobian_calls == 1

    def test_logging(self, caplog):
        caplog.set_level(logging.INFO, logger="pyfemlab")
        go = nonlinear_problem()
        Newton(go).solve(np.zeros(go.size))
        assert "Newton 0: |R| =" in caplog.text
        assert "Newton 1: |R| =" in caplog.text


class TestNewtonFailures:
    def test_zero_budget_raises(self):
        go = nonlinear_problem()
        with pytest.raises(NonlinearSolveError) as info:
            Newton(go, params=NewtonParameters(max_iterations=0)).solve(np.zeros(go.size))
        assert info.value.iterations == 0
        assert info.value.defect > 0.0
        assert info.value.reason == "max_iterations"

    def test_zero_budget_with_converged_start(self):
        space = GridFunctionSpace(unit_square('quad', 2), LagrangeFEM(1))
        cons = assemble_constraints(DirichletConstraints(AllDirichlet()), space)
        go = GridOperator(space, PoissonLocalOperator(f=1.0), cons)
        x = np.zeros(space.size)
        Newton(go).solve(x)
        result = Newton(go, params=NewtonParameters(max_iterations=0, abs_limit=1e-8)).solve(x)
        assert result.converged and result.iterations == 0

    def test_line_search_failure(self):
        x = np.zeros(4)
        with pytest.raises(NonlinearSolveError) as info:
            Newton(_WrongJacobian()).solve(x)
        assert info.value.reason == "line_search"
        assert info.value.iterations == 1
        # the failed step is rolled back
        assert not x.any()

    def test_accept_best_defers_to_iteration_budget(self):
        params = NewtonParameters(accept_best=True, max_iterations=2)
        with pytest.raises(NonlinearSolveError) as info:
            Newton(_WrongJacobian(), params=params).solve(np.zeros(4))
        assert info.value.reason == "max_iterations"
        assert info.value.iterations == 2
        assert len(info.value.history) == 3

    def test_linear_failure_is_chained(self):
        with pytest.raises(NonlinearSolveError) as info:
            Newton(_SingularJacobian()).solve(np.zeros(3))
        assert info.value.reason == "linear_solve"
        assert isinstance(info.value.__cause__, LinearSolveFailure)

    def test_unknown_line_search(self):
        with pytest.raises(ValueError):
            Newton(_WrongJacobian(), params=NewtonParameters(line_search_strategy="wolfe"))
