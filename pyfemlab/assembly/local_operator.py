"""pyfemlab.assembly.local_operator
Interface of the per-PDE weak-form contributions.

A local operator works on one element at a time. It receives an
:class:`~pyfemlab.fem.context.ElementContext` (quadrature, basis functions
of every component) and the element-local coefficient vector, and returns
the local residual or Jacobian. Boundary terms are evaluated per boundary
intersection through a :class:`~pyfemlab.fem.context.FaceContext`.

Jacobians default to forward finite differences of the residual; operators
override ``volume_jacobian`` / ``boundary_jacobian`` with analytic versions.
"""
import numpy as np


class LocalOperator:
    #: polynomial degree integrated exactly by the volume rule
    quadrature_order = 2
    #: whether boundary_residual contributes
    has_boundary = False
    #: relative finite-difference step of the numerical Jacobian
    fd_epsilon = 1e-7

    time = 0.0

    def set_time(self, t: float):
        self.time = float(t)

    def volume_residual(self, ctx, x_local: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def boundary_residual(self, ctx, face, x_local: np.ndarray):
        return None

    def volume_jacobian(self, ctx, x_local: np.ndarray) -> np.ndarray:
        return self._numerical_jacobian(lambda u: self.volume_residual(ctx, u), x_local)

    def boundary_jacobian(self, ctx, face, x_local: np.ndarray):
        r0 = self.boundary_residual(ctx, face, x_local)
        if r0 is None:
            return None
        return self._numerical_jacobian(lambda u: self.boundary_residual(ctx, face, u), x_local, r0)

    def _numerical_jacobian(self, residual, x_local, r0=None):
        x = np.array(x_local, dtype=float)
        if r0 is None:
            r0 = residual(x)
        J = np.empty((len(r0), len(x)))
        for j in range(len(x)):
            h = self.fd_epsilon * max(1.0, abs(x[j]))
            xp = x.copy()
            xp[j] += h
            J[:, j] = (residual(xp) - r0) / h
        return J
