# pyfemlab.fem.reference
"""
Order-agnostic Lagrange reference-element factory.

Triangles live on (0,0)-(1,0)-(0,1), quadrilaterals on [-1,1]^2. Basis
functions are generated symbolically once per (type, order) and lambdified.
"""
from functools import lru_cache
from importlib import import_module
import numpy as np


class Ref:
    def __init__(self, element_type, order, nodes, shape_lambda, deriv_lambdas):
        self.element_type = element_type
        self.order = order
        self.nodes = np.asarray(nodes, dtype=float)   # (n_basis, 2) interpolation points
        self.n_basis = len(self.nodes)
        self.shape_lambda = shape_lambda
        self.deriv_lambdas = deriv_lambdas

    @lru_cache(maxsize=None)
    def shape(self, xi, eta):
        return np.asarray(self.shape_lambda(xi, eta), dtype=float).ravel()

    @lru_cache(maxsize=None)
    def derivative(self, xi, eta, order_xi, order_eta):
        alpha = (order_xi, order_eta)
        if alpha not in self.deriv_lambdas:
            raise ValueError(f"Derivative order {alpha} not computed. "
                             f"Adjust max_deriv_order >= {order_xi + order_eta}.")
        return np.broadcast_to(np.asarray(self.deriv_lambdas[alpha](xi, eta), dtype=float).ravel(),
                               (self.n_basis,)).copy()

    @lru_cache(maxsize=None)
    def grad(self, xi, eta):
        dphi_dxi = self.derivative(xi, eta, 1, 0)
        dphi_deta = self.derivative(xi, eta, 0, 1)
        return np.hstack((dphi_dxi[:, None], dphi_deta[:, None]))

    def tabulate(self, points):
        """Values (nq, n) and reference gradients (nq, n, 2) at *points*."""
        pts = np.asarray(points, dtype=float).reshape(-1, 2)
        N = np.array([self.shape(float(p[0]), float(p[1])) for p in pts]).reshape(len(pts), self.n_basis)
        dN = np.array([self.grad(float(p[0]), float(p[1])) for p in pts]).reshape(len(pts), self.n_basis, 2)
        return N, dN

    def edge_basis(self, local_edge):
        """Local basis indices whose interpolation point lies on *local_edge*."""
        A, B = reference_edge(self.element_type, local_edge)
        d = B - A
        rel = self.nodes - A
        cross = np.abs(rel[:, 0] * d[1] - rel[:, 1] * d[0])
        t = (rel @ d) / (d @ d)
        return np.where((cross < 1e-12) & (t > -1e-12) & (t < 1 + 1e-12))[0]


_REFERENCE_CORNERS = {
    'tri':  np.array([[0.0, 0.0], [1.0, 0.0], [0.0, 1.0]]),
    'quad': np.array([[-1.0, -1.0], [1.0, -1.0], [1.0, 1.0], [-1.0, 1.0]]),
}


def reference_corners(element_type: str) -> np.ndarray:
    """Reference corners in the CCW order used by the mesh connectivity."""
    return _REFERENCE_CORNERS[element_type]


def reference_edge(element_type: str, local_edge: int):
    corners = _REFERENCE_CORNERS[element_type]
    n = len(corners)
    return corners[local_edge], corners[(local_edge + 1) % n]


def reference_centroid(element_type: str) -> np.ndarray:
    return _REFERENCE_CORNERS[element_type].mean(axis=0)


@lru_cache(maxsize=None)
def get_reference(element_type: str, poly_order: int = 1, max_deriv_order: int = 1):
    if element_type == "quad":
        nodes, shape_l, deriv_lambdas = import_module("pyfemlab.fem.reference.quad_qn").quad_qn(poly_order, max_deriv_order)
    elif element_type == "tri":
        nodes, shape_l, deriv_lambdas = import_module("pyfemlab.fem.reference.tri_pn").tri_pn(poly_order, max_deriv_order)
    else:
        raise KeyError(element_type)
    return Ref(element_type, poly_order, nodes, shape_l, deriv_lambdas)
