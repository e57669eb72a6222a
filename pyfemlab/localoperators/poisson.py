"""Poisson-type local operators.

``PoissonLocalOperator``:           -div(grad u) = f,          -grad u . n = j on natural sides
``NonlinearPoissonLocalOperator``:  -div(grad u) + eta u^2 = f, -grad u . n = j on natural sides
"""
import numpy as np

from pyfemlab.assembly.local_operator import LocalOperator
from pyfemlab.constraints.dirichlet import as_boundary_condition
from pyfemlab.localoperators.coefficients import evaluate_coefficient


class PoissonLocalOperator(LocalOperator):
    """Residual form  r(u; v) = (grad u, grad v) - (f, v) + <j, v>_{Gamma_N}.

    Parameters
    ----------
    f : source term, constant or ``f(x, y)``
    j : Neumann flux, constant or ``j(x, y)``; applied on sides that *bctype*
        does not classify as Dirichlet (checked at the side centre)
    bctype : BoundaryCondition, optional
    quadrature_order : int
    """

    def __init__(self, f=0.0, j=0.0, bctype=None, quadrature_order: int = 2):
        self.f = f
        self.j = j
        self.bctype = as_boundary_condition(bctype)
        self.quadrature_order = quadrature_order
        self.has_boundary = not (j is None or (not callable(j) and float(j) == 0.0))

    def volume_residual(self, ctx, x_local):
        c = ctx[0]
        gu = ctx.gradient(x_local, 0)
        f = evaluate_coefficient(self.f, ctx.points, self.time)
        r = np.zeros(ctx.n_local)
        r[c.slice] = np.einsum('q,qnj,qj->n', ctx.weights, c.grad, gu) - (ctx.weights * f) @ c.phi
        return r

    def volume_jacobian(self, ctx, x_local):
        c = ctx[0]
        J = np.zeros((ctx.n_local, ctx.n_local))
        J[c.slice, c.slice] = np.einsum('q,qij,qkj->ik', ctx.weights, c.grad, c.grad)
        return J

    def boundary_residual(self, ctx, face, x_local):
        if self.bctype.is_dirichlet(face.intersection, 0.5):
            return None
        c = face[0]
        j = evaluate_coefficient(self.j, face.points, self.time)
        r = np.zeros(len(x_local))
        r[c.slice] = (face.weights * j) @ c.phi
        return r

    def boundary_jacobian(self, ctx, face, x_local):
        return None


class NonlinearPoissonLocalOperator(PoissonLocalOperator):
    """Adds the reaction term eta u^2 to :class:`PoissonLocalOperator`."""

    def __init__(self, eta: float = 1.0, f=0.0, j=0.0, bctype=None, quadrature_order: int = 4):
        super().__init__(f=f, j=j, bctype=bctype, quadrature_order=quadrature_order)
        self.eta = eta

    def volume_residual(self, ctx, x_local):
        r = super().volume_residual(ctx, x_local)
        c = ctx[0]
        u = ctx.value(x_local, 0)
        r[c.slice] += (ctx.weights * self.eta * u * u) @ c.phi
        return r

    def volume_jacobian(self, ctx, x_local):
        J = super().volume_jacobian(ctx, x_local)
        c = ctx[0]
        u = ctx.value(x_local, 0)
        J[c.slice, c.slice] += np.einsum('q,qi,qk->ik', ctx.weights * 2.0 * self.eta * u, c.phi, c.phi)
        return J
