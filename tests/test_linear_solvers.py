import numpy as np
import pytest
import scipy.sparse as sp

from pyfemlab.errors import LinearSolveFailure
from pyfemlab.solvers.linear import (DirectSolverBackend, KrylovSolverBackend, LinearSolverParameters,
                                     make_linear_solver)


@pytest.fixture
def laplace_1d():
    n = 50
    A = sp.diags([-np.ones(n - 1), 2.0 * np.ones(n), -np.ones(n - 1)], [-1, 0, 1], format="csr")
    b = np.ones(n)
    return A, b


def test_direct(laplace_1d):
    A, b = laplace_1d
    res = DirectSolverBackend().solve(A, b)
    assert res.converged
    assert res.reduction < 1e-12


@pytest.mark.parametrize("method", ["cg", "bicgstab", "gmres"])
@pytest.mark.parametrize("preconditioner", ["ilu", "jacobi", None])
def test_krylov(laplace_1d, method, preconditioner):
    A, b = laplace_1d
    res = KrylovSolverBackend(method, preconditioner).solve(A, b, tol=1e-10, max_iter=1000)
    assert res.converged
    assert res.reduction < 1e-6
    assert np.allclose(A @ res.x, b, atol=1e-5)


def test_bicgstab_ilu_reports_work(laplace_1d):
    # with a near-exact ILU, bicgstab converges at its first half step
    A, b = laplace_1d
    res = KrylovSolverBackend("bicgstab", "ilu").solve(A, b, tol=1e-8)
    assert res.converged
    assert res.iterations > 0
    assert res.reduction < 1e-8


def test_krylov_iteration_budget(laplace_1d):
    A, b = laplace_1d
    res = KrylovSolverBackend("cg", None).solve(A, b, tol=1e-14, max_iter=2)
    assert not res.converged
    assert res.reduction > 1e-14


def test_zero_right_hand_side(laplace_1d):
    A, b = laplace_1d
    res = KrylovSolverBackend().solve(A, 0.0 * b)
    assert res.converged and res.iterations == 0
    assert not res.x.any()


def test_singular_matrix_raises():
    A = sp.csr_matrix((3, 3))
    with pytest.raises(LinearSolveFailure):
        DirectSolverBackend().solve(A, np.ones(3))


def test_jacobi_zero_diagonal_raises():
    A = sp.csr_matrix(np.array([[0.0, 1.0], [1.0, 0.0]]))
    with pytest.raises(LinearSolveFailure):
        KrylovSolverBackend("gmres", "jacobi").solve(A, np.ones(2))


def test_factory():
    assert isinstance(make_linear_solver(), DirectSolverBackend)
    krylov = make_linear_solver(LinearSolverParameters(backend="krylov", method="cg", preconditioner=None))
    assert isinstance(krylov, KrylovSolverBackend) and krylov.method == "cg"
    with pytest.raises(ValueError):
        make_linear_solver(LinearSolverParameters(backend="amg"))
    with pytest.raises(ValueError):
        KrylovSolverBackend("minres")
