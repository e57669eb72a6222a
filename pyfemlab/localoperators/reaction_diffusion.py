"""Two-component reaction-diffusion system (FitzHugh-Nagumo type).

    d_t u0       = d0 lap u0 + lambda u0 - u0^3 - sigma u1 + kappa
    tau d_t u1   = d1 lap u1 + u0 - u1

with natural boundary conditions (optionally an inflow flux per component).
The spatial part is :class:`ReactionDiffusionLocalOperator`, the temporal part
:class:`ReactionDiffusionMassOperator`.
"""
import numpy as np

from pyfemlab.assembly.local_operator import LocalOperator
from pyfemlab.localoperators.coefficients import evaluate_coefficient
from pyfemlab.localoperators.mass import MassLocalOperator


class ReactionDiffusionLocalOperator(LocalOperator):
    """Spatial residual of the system.

    Parameters
    ----------
    d0, d1, lam, sigma, kappa : float
        Model coefficients.
    reactive : (bool, bool)
        Switch the reaction terms of each equation on/off. With
        ``reactive=(False, True)`` the first component is pure diffusion and
        its integral changes only through the boundary flux.
    flux : (j0, j1)
        Outward fluxes ``-d grad u . n`` per component; constants, ``j(x, y)``
        or ``j(x, y, t)``. None means zero flux.
    """

    def __init__(self, d0=0.00028, d1=0.005, lam=1.0, sigma=1.0, kappa=-0.05,
                 reactive=(True, True), flux=(None, None), quadrature_order: int = 4):
        self.d = (float(d0), float(d1))
        self.lam = float(lam)
        self.sigma = float(sigma)
        self.kappa = float(kappa)
        self.reactive = tuple(bool(r) for r in reactive)
        self.flux = tuple(flux)
        self.quadrature_order = quadrature_order
        self.has_boundary = any(j is not None for j in self.flux)

    def volume_residual(self, ctx, x_local):
        c0, c1 = ctx[0], ctx[1]
        w = ctx.weights
        u0, u1 = ctx.value(x_local, 0), ctx.value(x_local, 1)
        g0, g1 = ctx.gradient(x_local, 0), ctx.gradient(x_local, 1)
        r = np.zeros(ctx.n_local)
        r[c0.slice] = self.d[0] * np.einsum('q,qnj,qj->n', w, c0.grad, g0)
        r[c1.slice] = self.d[1] * np.einsum('q,qnj,qj->n', w, c1.grad, g1)
        if self.reactive[0]:
            q0 = -self.lam * u0 + u0 ** 3 + self.sigma * u1 - self.kappa
            r[c0.slice] += (w * q0) @ c0.phi
        if self.reactive[1]:
            r[c1.slice] += (w * (u1 - u0)) @ c1.phi
        return r

    def volume_jacobian(self, ctx, x_local):
        c0, c1 = ctx[0], ctx[1]
        w = ctx.weights
        u0 = ctx.value(x_local, 0)
        J = np.zeros((ctx.n_local, ctx.n_local))
        stiff = lambda c: np.einsum('q,qij,qkj->ik', w, c.grad, c.grad)
        mass = lambda a, b, s: np.einsum('q,qi,qk->ik', w * s, a.phi, b.phi)
        J[c0.slice, c0.slice] = self.d[0] * stiff(c0)
        J[c1.slice, c1.slice] = self.d[1] * stiff(c1)
        if self.reactive[0]:
            J[c0.slice, c0.slice] += mass(c0, c0, -self.lam + 3.0 * u0 ** 2)
            J[c0.slice, c1.slice] += mass(c0, c1, self.sigma)
        if self.reactive[1]:
            J[c1.slice, c1.slice] += mass(c1, c1, 1.0)
            J[c1.slice, c0.slice] -= mass(c1, c0, 1.0)
        return J

    def boundary_residual(self, ctx, face, x_local):
        r = np.zeros(len(x_local))
        for k, j in enumerate(self.flux):
            if j is None:
                continue
            c = face[k]
            r[c.slice] += (face.weights * evaluate_coefficient(j, face.points, self.time)) @ c.phi
        return r

    def boundary_jacobian(self, ctx, face, x_local):
        return None


class ReactionDiffusionMassOperator(MassLocalOperator):
    """Temporal part (u0, v0) + tau (u1, v1)."""

    def __init__(self, tau: float = 0.1, quadrature_order: int = 4):
        super().__init__(weights=(1.0, float(tau)), quadrature_order=quadrature_order)
        self.tau = float(tau)
