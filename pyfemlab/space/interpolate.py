"""pyfemlab.space.interpolate
Coefficient-vector utilities: nodal interpolation, constrained-DOF setters,
point evaluation and L2 errors.
"""
from typing import Callable, Optional, Sequence, Union

import numpy as np

from pyfemlab.fem import transform
from pyfemlab.fem.context import ElementGeometry

FunctionLike = Union[float, Callable, Sequence]


def _component_functions(func, components):
    """One scalar function f(x, y) per component."""
    n = len(components)
    if isinstance(func, dict):
        return [_as_scalar(func[c.name]) for c in components]
    if isinstance(func, (list, tuple)):
        if len(func) != n:
            raise ValueError(f"Expected {n} functions (one per component), got {len(func)}.")
        return [_as_scalar(f) for f in func]
    return [_as_scalar(func)] * n


def _pick(value, k: int) -> float:
    v = np.ravel(value)
    return float(v[k]) if v.size > 1 else float(v[0])


def _as_scalar(f):
    if callable(f):
        return f
    value = float(f)
    return lambda x, y: value


def interpolate(space, func: FunctionLike, x: Optional[np.ndarray] = None) -> np.ndarray:
    """Nodal interpolation of *func* into a coefficient vector of *space*.

    *func* may be a constant, a callable ``f(x, y)`` (returning a scalar or
    one value per component), a sequence with one entry per component or a
    dict keyed by component name.
    """
    if x is None:
        x = np.zeros(space.size)
    comps = space.components()
    for k, (comp, f) in enumerate(zip(comps, _component_functions(func, comps))):
        coords = comp.leaf.leaf_dof_coords()
        x[comp.global_map] = [_pick(f(px, py), k) for px, py in coords]
    return x


def set_constrained_dofs(constraints, value: float, x: np.ndarray) -> np.ndarray:
    x[constraints.constrained_dofs] = value
    return x


def set_nonconstrained_dofs(constraints, value: float, x: np.ndarray) -> np.ndarray:
    x[constraints.free_dofs()] = value
    return x


def set_shifted_dofs(constraints, value: float, x: np.ndarray) -> np.ndarray:
    """Set the Dirichlet (shifted) DOFs of *x* to *value*."""
    x[constraints.dirichlet_dofs] = value
    return x


def copy_constrained_dofs(constraints, source: np.ndarray, target: np.ndarray) -> np.ndarray:
    """Copy the Dirichlet DOFs of *source* into *target*.

    Hanging DOFs are left alone; they follow their masters through
    ``backtransform``.
    """
    d = constraints.dirichlet_dofs
    target[d] = source[d]
    return target


def evaluate(space, x: np.ndarray, eid: int, xi, component=0) -> float:
    """Value of component *component* of *x* at reference point *xi* of element *eid*."""
    comp = space.component(component)
    ref = comp.leaf.fem.reference(space.mesh.element_type)
    dofs = comp.global_map[comp.leaf.leaf_element_dofs()[eid]]
    return float(ref.shape(float(xi[0]), float(xi[1])) @ x[dofs])


def locate_point(mesh, point, tol: float = 1e-10):
    """(eid, xi) of a leaf element containing *point*; None if outside the mesh."""
    p = np.asarray(point, dtype=float)
    for eid in range(mesh.n_elements):
        X = mesh.element_corners(eid)
        if np.any(p < X.min(axis=0) - tol) or np.any(p > X.max(axis=0) + tol):
            continue
        xi = transform.inverse_mapping(mesh, eid, p)
        if mesh.element_type == 'quad':
            inside = np.all(np.abs(xi) <= 1.0 + tol)
        else:
            inside = xi[0] >= -tol and xi[1] >= -tol and xi[0] + xi[1] <= 1.0 + tol
        if inside:
            return eid, xi
    return None


def l2_error(space, x: np.ndarray, exact: Callable, component=0, degree: int = 6) -> float:
    """||u_h - u||_L2 of one component."""
    comp = space.component(component)
    mesh = space.mesh
    fem = comp.leaf.fem
    table = comp.leaf.leaf_element_dofs()
    err2 = 0.0
    for eid in range(mesh.n_elements):
        geo = ElementGeometry(mesh, eid, degree)
        N, _ = fem.tabulate(mesh.element_type, degree)
        uh = N @ x[comp.global_map[table[eid]]]
        ue = np.array([exact(px, py) for px, py in geo.points])
        err2 += float(geo.weights @ (uh - ue) ** 2)
    return float(np.sqrt(err2))


def integrate(space, x: np.ndarray, component=0, degree: int = 4) -> float:
    """Integral of one component of *x* over the domain."""
    comp = space.component(component)
    mesh = space.mesh
    table = comp.leaf.leaf_element_dofs()
    N, _ = comp.leaf.fem.tabulate(mesh.element_type, degree)
    total = 0.0
    for eid in range(mesh.n_elements):
        geo = ElementGeometry(mesh, eid, degree)
        total += float(geo.weights @ (N @ x[comp.global_map[table[eid]]]))
    return total
