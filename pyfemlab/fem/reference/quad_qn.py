from functools import lru_cache
import sympy as sp
import numpy as np


@lru_cache(maxsize=None)
def _lagrange_basis_1d(n: int, max_deriv_order: int):
    """1D Lagrange basis on equidistant nodes of [-1,1] + derivatives as numpy lambdas."""
    x = sp.symbols('x')
    nodes = [sp.Rational(2 * i, n) - 1 for i in range(n + 1)]
    L = []
    dL = {k: [] for k in range(max_deriv_order + 1)}
    for i, xi in enumerate(nodes):
        Li = sp.S(1)
        for j, xj in enumerate(nodes):
            if i != j:
                Li *= (x - xj) / (xi - xj)
        Li = sp.expand(Li)
        L.append(sp.lambdify(x, Li, 'numpy'))
        for k in range(max_deriv_order + 1):
            dL[k].append(sp.lambdify(x, sp.diff(Li, x, k), 'numpy'))
    return np.array([float(v) for v in nodes]), L, dL


@lru_cache(maxsize=None)
def quad_qn(n: int, max_deriv_order: int = 1):
    """
    Tensor-product Q_n on [-1,1]^2, n >= 1.

    Returns ``(nodes, shape_fn, deriv_fns)`` where ``nodes`` is the
    ((n+1)^2, 2) lattice of interpolation points, ``shape_fn(xi, eta)`` the
    basis values and ``deriv_fns[(ax, ay)]`` their partial derivatives.
    Stacking order is (eta outer, xi inner): index = j*(n+1) + i.
    """
    if n < 1:
        raise ValueError("Q_n requires n >= 1.")
    nodes1d, L, dL = _lagrange_basis_1d(n, max_deriv_order)
    nodes = np.array([(xi, eta) for eta in nodes1d for xi in nodes1d])

    def _eval_1d(vals, z):
        return np.array([f(z) for f in vals], dtype=float)

    def shape(xi, eta):
        return np.outer(_eval_1d(L, eta), _eval_1d(L, xi)).reshape(-1)

    derivs = {}
    for ax in range(max_deriv_order + 1):
        for ay in range(max_deriv_order + 1 - ax):
            def make(ax=ax, ay=ay):
                def d(xi, eta):
                    return np.outer(_eval_1d(dL[ay], eta), _eval_1d(dL[ax], xi)).reshape(-1)
                return d
            derivs[(ax, ay)] = make()
    return nodes, shape, derivs
