"""pyfemlab.solvers.linear
Linear solve backends on top of scipy.sparse.linalg.

Every backend implements ``solve(J, b, tol, max_iter) -> LinearSolveResult``
where *tol* is the requested relative residual reduction. Non-convergence
is reported through ``LinearSolveResult.converged``; hard failures
(singular factorisation, breakdown) raise :class:`LinearSolveFailure`.
"""
import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np
import scipy.sparse as sp
import scipy.sparse.linalg as spla

from pyfemlab.errors import LinearSolveFailure

logger = logging.getLogger(__name__)


@dataclass
class LinearSolverParameters:
    """Sparse linear solver settings."""

    backend: str = "direct"             # 'direct' | 'krylov'
    method: str = "bicgstab"            # Krylov method: 'cg' | 'bicgstab' | 'gmres'
    preconditioner: Optional[str] = "ilu"   # 'ilu' | 'jacobi' | None
    tol: float = 1e-10
    maxit: int = 5000


@dataclass
class LinearSolveResult:
    x: np.ndarray
    converged: bool
    iterations: int
    reduction: float


def _reduction(J, x, b) -> float:
    nb = np.linalg.norm(b)
    if nb == 0.0:
        return 0.0
    return float(np.linalg.norm(b - J @ x) / nb)


class LinearSolverBackend:
    def solve(self, J, b, tol: float = 1e-10, max_iter: int = 5000) -> LinearSolveResult:
        raise NotImplementedError


class DirectSolverBackend(LinearSolverBackend):
    """Sparse LU (SuperLU) factorisation."""

    def solve(self, J, b, tol=1e-10, max_iter=5000):
        J = sp.csc_matrix(J)
        try:
            lu = spla.splu(J)
        except RuntimeError as exc:
            raise LinearSolveFailure(f"LU factorisation failed: {exc}") from exc
        x = lu.solve(np.asarray(b, dtype=float))
        if not np.all(np.isfinite(x)):
            raise LinearSolveFailure("LU solve produced non-finite values")
        red = _reduction(J, x, b)
        return LinearSolveResult(x=x, converged=True, iterations=1, reduction=red)


class KrylovSolverBackend(LinearSolverBackend):
    """Preconditioned Krylov method from scipy.sparse.linalg."""

    _METHODS = {"cg": spla.cg, "bicgstab": spla.bicgstab, "gmres": spla.gmres}

    def __init__(self, method: str = "bicgstab", preconditioner: Optional[str] = "ilu"):
        if method not in self._METHODS:
            raise ValueError(f"Unknown Krylov method '{method}'. Choose from {sorted(self._METHODS)}.")
        if preconditioner not in (None, "ilu", "jacobi"):
            raise ValueError(f"Unknown preconditioner '{preconditioner}'.")
        self.method = method
        self.preconditioner = preconditioner

    def _preconditioner(self, J):
        if self.preconditioner == "ilu":
            try:
                ilu = spla.spilu(sp.csc_matrix(J), drop_tol=1e-5, fill_factor=20)
            except RuntimeError as exc:
                raise LinearSolveFailure(f"ILU setup failed: {exc}") from exc
            return spla.LinearOperator(J.shape, ilu.solve)
        if self.preconditioner == "jacobi":
            d = J.diagonal()
            if np.any(d == 0.0):
                raise LinearSolveFailure("Jacobi preconditioner: zero on the diagonal")
            return spla.LinearOperator(J.shape, lambda v: v / d)
        return None

    def solve(self, J, b, tol=1e-10, max_iter=5000):
        b = np.asarray(b, dtype=float)
        if np.linalg.norm(b) == 0.0:
            return LinearSolveResult(x=np.zeros_like(b), converged=True, iterations=0, reduction=0.0)
        J = sp.csr_matrix(J)
        M = self._preconditioner(J)
        count = [0]
        matvecs = [0]

        def callback(_):
            count[0] += 1

        def matvec(v):
            matvecs[0] += 1
            return J @ v

        # bicgstab may return at its half step before the callback fires
        A = spla.LinearOperator(J.shape, matvec=matvec, dtype=J.dtype)
        extra = {"callback_type": "pr_norm"} if self.method == "gmres" else {}
        x, info = self._METHODS[self.method](A, b, rtol=tol, atol=0.0, maxiter=max_iter,
                                             M=M, callback=callback, **extra)
        iterations = count[0] or matvecs[0]
        if info < 0:
            raise LinearSolveFailure(f"{self.method} breakdown (info={info})", iterations=iterations)
        red = _reduction(J, x, b)
        converged = info == 0 and np.all(np.isfinite(x))
        logger.debug("%s: %d iterations (%d matvecs), reduction %.3e",
                     self.method, iterations, matvecs[0], red)
        return LinearSolveResult(x=x, converged=bool(converged), iterations=iterations, reduction=red)


def make_linear_solver(params: Optional[LinearSolverParameters] = None) -> LinearSolverBackend:
    params = params or LinearSolverParameters()
    if params.backend == "direct":
        return DirectSolverBackend()
    if params.backend == "krylov":
        return KrylovSolverBackend(params.method, params.preconditioner)
    raise ValueError(f"Unknown linear solver backend '{params.backend}'.")
