import numpy as np
import pytest
from numpy.testing import assert_allclose, assert_equal

from pyfemlab.core.mesh import Mesh
from pyfemlab.core.topology import Node
from pyfemlab.errors import SpaceConstructionError
from pyfemlab.fem.femap import LagrangeFEM, P0FEM
from pyfemlab.space import (GridFunctionSpace, PowerGridFunctionSpace, CompositeGridFunctionSpace,
                            interpolate, evaluate, l2_error, integrate, locate_point)
from pyfemlab.utils.meshgen import unit_square


def assert_partition(space):
    all_dofs = np.concatenate([c.global_map for c in space.components()])
    assert_equal(np.sort(all_dofs), np.arange(space.size))


class TestLeafSpace:
    @pytest.mark.parametrize("element_type,order,expected", [
        ('tri', 1, 9), ('tri', 2, 25), ('quad', 1, 9), ('quad', 2, 25), ('quad', 3, 49)])
    def test_continuous_numbering(self, element_type, order, expected):
        space = GridFunctionSpace(unit_square(element_type, 2), LagrangeFEM(order))
        assert space.size == expected
        assert space.kind == 'leaf'
        assert_partition(space)

    def test_shared_edge_dofs(self):
        mesh = unit_square('quad', 2)
        space = GridFunctionSpace(mesh, LagrangeFEM(2))
        # elements 0 and 1 share the vertical edge x = 0.5, y in [0, 0.5]
        shared = set(space.element_dofs(0)) & set(space.element_dofs(1))
        assert len(shared) == 3
        assert_allclose(space.dof_coords()[sorted(shared)][:, 0], 0.5)

    def test_p0_numbering(self):
        mesh = unit_square('tri', 2)
        space = GridFunctionSpace(mesh, P0FEM(), name="c")
        assert space.size == mesh.n_elements
        assert_equal(space.element_dofs_table().ravel(), np.arange(mesh.n_elements))

    def test_update_after_refinement(self, quad_mesh):
        space = GridFunctionSpace(quad_mesh, LagrangeFEM(1))
        assert space.size == 9
        quad_mesh.global_refine(1)
        assert space.is_stale()
        space.update()
        assert not space.is_stale()
        assert space.size == 25

    def test_empty_mesh_fails(self):
        mesh = Mesh([Node(0, 0.0, 0.0)], np.empty((0, 4), dtype=int), element_type='quad')
        with pytest.raises(SpaceConstructionError):
            GridFunctionSpace(mesh, LagrangeFEM(1))

    def test_unsupported_element_type_fails(self):
        with pytest.raises(SpaceConstructionError):
            GridFunctionSpace(unit_square('quad', 1), LagrangeFEM(1, element_types=('tri',)))


class TestTreeSpaces:
    def test_power_lexicographic(self, tri_mesh):
        leaf = GridFunctionSpace(tri_mesh, LagrangeFEM(1), name="v")
        power = PowerGridFunctionSpace(leaf, 2)
        assert power.kind == 'power'
        assert power.size == 2 * leaf.size
        assert [c.name for c in power.components()] == ["v_0", "v_1"]
        assert_equal(power.component(1).global_map, leaf.size + np.arange(leaf.size))
        assert power.n_local == 6
        assert power.local_slices() == {"v_0": slice(0, 3), "v_1": slice(3, 6)}
        assert_partition(power)

    def test_power_entity_blocked_interleaves(self, tri_mesh):
        leaf = GridFunctionSpace(tri_mesh, LagrangeFEM(1), name="v")
        power = PowerGridFunctionSpace(leaf, 3, ordering="entity_blocked")
        m0, m1, m2 = (c.global_map for c in power.components())
        assert_equal(m1, m0 + 1)
        assert_equal(m2, m0 + 2)
        assert_equal(np.sort(m0), 3 * np.arange(leaf.size))
        assert_partition(power)

    def test_composite_spaces(self, quad_mesh):
        v = GridFunctionSpace(quad_mesh, LagrangeFEM(2), name="v")
        p = GridFunctionSpace(quad_mesh, LagrangeFEM(1), name="p")
        c = GridFunctionSpace(quad_mesh, P0FEM(), name="c")
        for ordering in ("lexicographic", "entity_blocked"):
            space = CompositeGridFunctionSpace(PowerGridFunctionSpace(v, 2), p, c, ordering=ordering)
            assert space.size == 2 * 25 + 9 + 4
            assert [x.name for x in space.components()] == ["v_0", "v_1", "p", "c"]
            assert space.element_dofs(0).shape == (2 * 9 + 4 + 1,)
            assert_partition(space)
            assert space.sub(1) is p

    def test_children_on_different_meshes(self):
        a = GridFunctionSpace(unit_square('tri', 1), LagrangeFEM(1), name="a")
        b = GridFunctionSpace(unit_square('tri', 1), LagrangeFEM(1), name="b")
        with pytest.raises(SpaceConstructionError):
            CompositeGridFunctionSpace(a, b)

    def test_zero_length_power_space(self, tri_mesh):
        with pytest.raises(SpaceConstructionError):
            PowerGridFunctionSpace(GridFunctionSpace(tri_mesh, LagrangeFEM(1)), 0)

    def test_duplicate_component_names(self, tri_mesh):
        a = GridFunctionSpace(tri_mesh, LagrangeFEM(1), name="u")
        with pytest.raises(SpaceConstructionError):
            CompositeGridFunctionSpace(a, a).components()

    def test_unknown_ordering(self, tri_mesh):
        with pytest.raises(ValueError):
            PowerGridFunctionSpace(GridFunctionSpace(tri_mesh, LagrangeFEM(1)), 2, ordering="random")


class TestInterpolation:
    @pytest.mark.parametrize("element_type", ['tri', 'quad'])
    def test_quadratic_is_reproduced_by_p2(self, element_type):
        space = GridFunctionSpace(unit_square(element_type, 2), LagrangeFEM(2))
        exact = lambda x, y: x * x - x * y + 3.0 * y
        x = interpolate(space, exact)
        assert l2_error(space, x, exact) < 1e-12
        eid, xi = locate_point(space.mesh, (0.3, 0.7))
        assert np.isclose(evaluate(space, x, eid, xi), exact(0.3, 0.7))

    def test_vector_function_into_power_space(self, tri_mesh):
        space = PowerGridFunctionSpace(GridFunctionSpace(tri_mesh, LagrangeFEM(1), name="v"), 2,
                                       ordering="entity_blocked")
        x = interpolate(space, lambda x, y: (x, -y))
        assert_allclose(x[space.component(0).global_map], space.leaves()[0].leaf_dof_coords()[:, 0])
        assert_allclose(x[space.component("v_1").global_map], -space.leaves()[1].leaf_dof_coords()[:, 1])

    def test_integrate_linear_function(self, quad_mesh, linear_function):
        space = GridFunctionSpace(quad_mesh, LagrangeFEM(1))
        x = interpolate(space, linear_function)
        assert np.isclose(integrate(space, x), 1.0 + 0.5 + 1.0)
