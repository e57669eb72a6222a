"""Evaluation of coefficient functions at quadrature points."""
import inspect

import numpy as np


def _n_args(f) -> int:
    try:
        params = inspect.signature(f).parameters.values()
    except (TypeError, ValueError):
        return 2
    return sum(1 for p in params if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD)
               and p.default is p.empty)


def evaluate_coefficient(f, points: np.ndarray, t: float = 0.0) -> np.ndarray:
    """Values of *f* at (n, 2) *points*.

    *f* is None (zero), a constant, ``f(x, y)`` or ``f(x, y, t)``.
    """
    n = len(points)
    if f is None:
        return np.zeros(n)
    if not callable(f):
        return np.full(n, float(f))
    if _n_args(f) >= 3:
        return np.array([float(f(px, py, t)) for px, py in points])
    return np.array([float(f(px, py)) for px, py in points])
