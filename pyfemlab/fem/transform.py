"""pyfemlab.fem.transform
Reference -> physical mapping for elements with straight (corner) geometry.
"""
import numpy as np
from pyfemlab.fem.reference import get_reference

# Corner permutation from CCW mesh order to the order of the first-order
# reference basis (quad lattice is eta outer, xi inner).
_GEOMETRY_PERM = {'tri': np.array([0, 1, 2]), 'quad': np.array([0, 1, 3, 2])}


def _geometry_nodes(mesh, elem_id):
    corners = mesh.elements_connectivity[elem_id]
    return mesh.nodes_x_y_pos[corners[_GEOMETRY_PERM[mesh.element_type]]]


def _shape_and_grad(element_type, xi_eta):
    ref = get_reference(element_type, 1)
    xi, eta = float(xi_eta[0]), float(xi_eta[1])
    return ref.shape(xi, eta), ref.grad(xi, eta)


def x_mapping(mesh, elem_id, xi_eta):
    N, _ = _shape_and_grad(mesh.element_type, xi_eta)
    return N @ _geometry_nodes(mesh, elem_id)                  # (2,)


def jacobian(mesh, elem_id, xi_eta):
    """J[i, j] = d x_j / d xi_i, i.e. dN.T @ coords."""
    _, dN = _shape_and_grad(mesh.element_type, xi_eta)
    return dN.T @ _geometry_nodes(mesh, elem_id)


def det_jacobian(mesh, elem_id, xi_eta):
    return np.linalg.det(jacobian(mesh, elem_id, xi_eta))


def inv_jac_T(mesh, elem_id, xi_eta):
    return np.linalg.inv(jacobian(mesh, elem_id, xi_eta)).T


def map_points(mesh, elem_id, points):
    """Vectorised x_mapping for an (nq, 2) array of reference points."""
    X = _geometry_nodes(mesh, elem_id)
    return np.array([_shape_and_grad(mesh.element_type, p)[0] @ X for p in np.asarray(points, float)])


def inverse_mapping(mesh, elem_id, x, tol=1e-12, maxiter=50):
    """Newton iteration for the reference point mapped to physical point *x*."""
    x = np.asarray(x, dtype=float)
    xi = np.array([0.0, 0.0]) if mesh.element_type == 'quad' else np.array([1/3, 1/3])
    X = x_mapping(mesh, elem_id, xi)
    for it in range(maxiter):
        X = x_mapping(mesh, elem_id, xi)
        # x - X(xi) = J^T dxi to first order
        J = jacobian(mesh, elem_id, xi)
        try:
            delta = np.linalg.solve(J.T, x - X)
        except np.linalg.LinAlgError:
            raise ValueError(f"Jacobian singular at iteration {it} for elem {elem_id}, x={x}")
        xi = xi + delta
        if np.linalg.norm(delta) < tol:
            break
    else:
        raise ValueError(f"Inverse mapping did not converge after {maxiter} iterations for elem {elem_id}, "
                         f"x={x}, residual={np.linalg.norm(x - X)}")
    return xi
