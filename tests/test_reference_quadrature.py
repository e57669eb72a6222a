import gc
import weakref

import numpy as np
import pytest
from numpy.testing import assert_allclose

from pyfemlab.fem import transform
from pyfemlab.fem.femap import LagrangeFEM, P0FEM
from pyfemlab.fem.reference import get_reference, reference_corners
from pyfemlab.integration import quadrature as q
from pyfemlab.utils.meshgen import structured_quad, unit_square


def integrate_ref(element_type, func, degree):
    pts, wts = q.volume(element_type, degree)
    return sum(w * func(p) for p, w in zip(pts, wts))


def test_constant_volume():
    for et, exact in (('tri', 0.5), ('quad', 4.0)):
        _, wts = q.volume(et, 3)
        assert np.isclose(wts.sum(), exact, rtol=1e-12)


@pytest.mark.parametrize("degree", [1, 2, 3, 4, 5, 6])
def test_triangle_monomials(degree):
    # int_T x^a y^b = a! b! / (a + b + 2)!
    from math import factorial
    for a in range(degree + 1):
        b = degree - a
        exact = factorial(a) * factorial(b) / factorial(a + b + 2)
        val = integrate_ref('tri', lambda p: p[0] ** a * p[1] ** b, degree)
        assert np.isclose(val, exact, rtol=1e-12)


def test_quad_rule_exact_for_tensor_polynomials():
    val = integrate_ref('quad', lambda p: p[0] ** 4 * p[1] ** 2, 4)
    assert np.isclose(val, (2 / 5) * (2 / 3), rtol=1e-12)


def test_edge_rule_runs_along_ccw_edge():
    pts, wts, s = q.edge('quad', 1, 3)
    assert np.isclose(wts.sum(), 1.0)
    assert_allclose(pts[:, 0], 1.0)
    assert np.all(np.diff(pts[:, 1]) > 0)
    assert_allclose(pts[:, 1], -1.0 + 2.0 * s)


def test_line_quadrature_length():
    pts, wts = q.line_quadrature(np.array([0.0, 0.0]), np.array([3.0, 4.0]), 2)
    assert np.isclose(wts.sum(), 5.0)
    assert np.isclose(wts @ pts[:, 0], 0.5 * 3.0 * 5.0)


class TestLagrangeReference:
    @pytest.mark.parametrize("element_type,order", [('tri', 1), ('tri', 2), ('quad', 1), ('quad', 2)])
    def test_kronecker_and_partition_of_unity(self, element_type, order):
        ref = get_reference(element_type, order)
        N = np.array([ref.shape(float(x), float(y)) for x, y in ref.nodes])
        assert_allclose(N, np.eye(ref.n_basis), atol=1e-12)
        xi, eta = (0.2, 0.3)
        assert np.isclose(ref.shape(xi, eta).sum(), 1.0)
        assert_allclose(ref.grad(xi, eta).sum(axis=0), 0.0, atol=1e-12)

    def test_basis_counts(self):
        assert LagrangeFEM(2).n_basis('tri') == 6
        assert LagrangeFEM(3).n_basis('quad') == 16
        assert P0FEM().n_basis('tri') == 1

    def test_edge_basis(self):
        ref = get_reference('quad', 2)
        idx = ref.edge_basis(0)
        assert len(idx) == 3
        assert_allclose(ref.nodes[idx, 1], -1.0)

    def test_lagrange_rejects_order_zero(self):
        with pytest.raises(ValueError):
            LagrangeFEM(0)

    @pytest.mark.parametrize("fem", [LagrangeFEM(2), P0FEM()])
    def test_tables_are_cached_per_map(self, fem):
        N, dN = fem.tabulate('quad', 2)
        assert fem.tabulate('quad', 2)[0] is N
        assert fem.tabulate_edge('tri', 1, 2)[0] is fem.tabulate_edge('tri', 1, 2)[0]
        assert N.shape == (4, fem.n_basis('quad'))

    def test_maps_are_garbage_collected(self):
        fem = LagrangeFEM(1)
        fem.tabulate('tri', 2)
        fem.tabulate_edge('tri', 0, 2)
        ref = weakref.ref(fem)
        del fem
        gc.collect()
        assert ref() is None


class TestTransform:
    def test_quad_corners_map_to_mesh_corners(self):
        mesh = structured_quad(2.0, 1.0, nx=2, ny=1, offset=(1.0, 1.0))
        X = transform.map_points(mesh, 1, reference_corners('quad'))
        assert_allclose(X, mesh.element_corners(1))
        assert np.isclose(transform.det_jacobian(mesh, 1, (0.0, 0.0)), 0.25)

    @pytest.mark.parametrize("element_type", ['tri', 'quad'])
    def test_inverse_mapping(self, element_type):
        mesh = unit_square(element_type, 3)
        xi0 = np.array([0.3, 0.2])
        x = transform.x_mapping(mesh, 4, xi0)
        assert_allclose(transform.inverse_mapping(mesh, 4, x), xi0, atol=1e-12)

    def test_inverse_jacobian_transpose(self):
        mesh = unit_square('tri', 2)
        J = transform.jacobian(mesh, 0, (0.1, 0.1))
        assert_allclose(transform.inv_jac_T(mesh, 0, (0.1, 0.1)) @ J.T, np.eye(2), atol=1e-14)
