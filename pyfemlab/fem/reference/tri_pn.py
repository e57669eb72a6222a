from functools import lru_cache
import sympy as sp
import numpy as np


@lru_cache(maxsize=None)
def tri_pn(n: int, max_deriv_order: int = 1):
    """
    Lagrange P_n basis on the reference triangle (0,0)-(1,0)-(0,1), n >= 1.

    Args:
        n: Polynomial order.
        max_deriv_order: Maximum total derivative order to lambdify.

    Returns:
        tuple: (nodes, shape_lambda, deriv_lambdas)
            - nodes: (N, 2) interpolation points, rows of constant eta (j outer, i inner).
            - shape_lambda: callable giving [phi_1, ..., phi_N] at (xi, eta).
            - deriv_lambdas: dict (alpha_xi, alpha_eta) -> callable of derivative values.
    """
    if n < 1:
        raise ValueError("P_n requires n >= 1.")
    xi_sym, eta_sym = sp.symbols("xi eta")

    nodes_ref = [(sp.Rational(i, n), sp.Rational(j, n))
                 for j in range(n + 1) for i in range(n + 1 - j)]
    monomials = [xi_sym**p * eta_sym**(d - p) for d in range(n + 1) for p in range(d + 1)]

    # Vandermonde V[i, k] = m_k(node_i); the Lagrange coefficients are the columns of V^-1
    V = sp.Matrix([[m.subs({xi_sym: a, eta_sym: b}) for m in monomials] for a, b in nodes_ref])
    C = V.inv()
    basis = [sp.expand(sum(C[k, i] * monomials[k] for k in range(len(monomials))))
             for i in range(len(nodes_ref))]

    multi_indices = [(i, j) for i in range(max_deriv_order + 1)
                     for j in range(max_deriv_order + 1 - i)]
    shape_lambda = sp.lambdify((xi_sym, eta_sym), sp.Matrix(basis), "numpy")
    deriv_lambdas = {
        alpha: sp.lambdify((xi_sym, eta_sym),
                           sp.Matrix([sp.diff(phi, xi_sym, alpha[0], eta_sym, alpha[1]) for phi in basis]),
                           "numpy")
        for alpha in multi_indices
    }
    nodes = np.array([[float(a), float(b)] for a, b in nodes_ref])
    return nodes, shape_lambda, deriv_lambdas
