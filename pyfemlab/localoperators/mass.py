"""Zero-order local operators: weighted L2 mass and linear reaction."""
import numpy as np

from pyfemlab.assembly.local_operator import LocalOperator


def _block_mass(ctx, weights):
    n = ctx.n_local
    M = np.zeros((n, n))
    for c, s in zip(ctx.components, weights):
        if s != 0.0:
            M[c.slice, c.slice] = s * np.einsum('q,qi,qk->ik', ctx.weights, c.phi, c.phi)
    return M


class MassLocalOperator(LocalOperator):
    """m(u; v) = sum_k s_k (u_k, v_k); the temporal part of ``m(u)_t + r(u) = 0``."""

    def __init__(self, weights=1.0, quadrature_order: int = 2):
        self.weights = weights
        self.quadrature_order = quadrature_order

    def _weights(self, ctx):
        if np.ndim(self.weights) == 0:
            return [float(self.weights)] * len(ctx)
        if len(self.weights) != len(ctx):
            raise ValueError(f"{len(self.weights)} mass weights for {len(ctx)} components.")
        return [float(s) for s in self.weights]

    def volume_residual(self, ctx, x_local):
        return self.volume_jacobian(ctx, x_local) @ x_local

    def volume_jacobian(self, ctx, x_local):
        return _block_mass(ctx, self._weights(ctx))


class LinearReactionLocalOperator(MassLocalOperator):
    """r(u; v) = sum_k c_k (u_k, v_k): the right-hand side of u' = -c u."""

    def __init__(self, rate=1.0, quadrature_order: int = 2):
        super().__init__(weights=rate, quadrature_order=quadrature_order)
