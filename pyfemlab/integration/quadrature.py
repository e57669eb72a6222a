"""pyfemlab.integration.quadrature
Quadrature rules for edges, triangles and quads, indexed by the polynomial
degree they integrate exactly.
"""
import numpy as np
from functools import lru_cache
from numpy.polynomial.legendre import leggauss

from pyfemlab.fem.reference import reference_edge


# -------------------------------------------------------------------------
# 1-D Gauss-Legendre
# -------------------------------------------------------------------------
def gauss_legendre(n_points: int):
    if n_points < 1:
        raise ValueError(n_points)
    return leggauss(n_points)  # (points, weights) on [-1, 1]


def _n_points(degree: int) -> int:
    """Number of Gauss points integrating degree *degree* exactly."""
    return max(1, (int(degree) + 2) // 2)


@lru_cache(maxsize=None)
def _gl01(degree: int):
    """Gauss-Legendre nodes and weights mapped to [0,1]."""
    xi, w = gauss_legendre(_n_points(degree))
    return 0.5 * (xi + 1.0), 0.5 * w


# -------------------------------------------------------------------------
# Volume rules
# -------------------------------------------------------------------------
@lru_cache(maxsize=None)
def quad_rule(degree: int):
    """Tensor Gauss rule on [-1,1]^2; weights sum to 4."""
    xi, wi = gauss_legendre(_n_points(degree))
    pts = np.array([[x, y] for y in xi for x in xi])
    wts = np.array([wx * wy for wy in wi for wx in wi])
    return pts, wts


@lru_cache(maxsize=None)
def tri_rule(degree: int):
    """Collapsed (Duffy) Gauss rule on the reference triangle; weights sum to 1/2."""
    u, w_u = _gl01(degree + 1)     # the collapse adds one degree in u
    v, w_v = _gl01(degree)
    pts = []
    wts = []
    for i, ui in enumerate(u):
        for j, vj in enumerate(v):
            pts.append([ui, vj * (1.0 - ui)])
            wts.append(w_u[i] * w_v[j] * (1.0 - ui))
    return np.array(pts), np.array(wts)


def volume(element_type: str, degree: int = 2):
    if element_type == 'tri':
        return tri_rule(int(degree))
    if element_type == 'quad':
        return quad_rule(int(degree))
    raise KeyError(element_type)


# -------------------------------------------------------------------------
# Edge rules (reference domain)
# -------------------------------------------------------------------------
@lru_cache(maxsize=None)
def edge(element_type: str, edge_index: int, degree: int = 2):
    """Gauss points on local edge *edge_index*, oriented along the CCW edge.

    Returns ``(pts, wts, s)``: reference points, weights normalised to sum to
    one (multiply by the physical edge length), and the face coordinates
    ``s`` in [0, 1].
    """
    s, w = _gl01(int(degree))
    A, B = reference_edge(element_type, edge_index)
    pts = (1.0 - s)[:, None] * A[None, :] + s[:, None] * B[None, :]
    return pts, w, s


def line_quadrature(p0: np.ndarray, p1: np.ndarray, degree: int = 2):
    """Physical Gauss points and weights on the segment p0 -> p1."""
    s, w = _gl01(int(degree))
    p0 = np.asarray(p0, float); p1 = np.asarray(p1, float)
    pts = (1.0 - s)[:, None] * p0[None, :] + s[:, None] * p1[None, :]
    return pts, w * np.linalg.norm(p1 - p0)
