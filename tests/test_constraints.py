import numpy as np
import pytest
from numpy.testing import assert_allclose

from pyfemlab.constraints import (ConstraintsContainer, AllDirichlet, DirichletBoundary,
                                  TaggedDirichletBoundary, DirichletConstraints,
                                  HangingNodeConstraints, HangingNodeDirichletConstraints,
                                  NoConstraints, assemble_constraints, isolate_hanging_nodes,
                                  adapt_to_isolate_hanging_nodes, DIRICHLET, HANGING, FREE)
from pyfemlab.errors import ConstraintResolutionError
from pyfemlab.fem.femap import LagrangeFEM, P0FEM
from pyfemlab.space import GridFunctionSpace, PowerGridFunctionSpace, copy_constrained_dofs, interpolate


def dof_at(space, x, y):
    d = np.flatnonzero(np.all(np.isclose(space.dof_coords(), [x, y]), axis=1))
    assert len(d) == 1
    return int(d[0])


def assert_masters_unconstrained(cons):
    constrained = set(cons.constrained_dofs.tolist())
    for d, rel in cons.items():
        assert not constrained & set(rel.masters), f"DOF {d} has constrained masters"


class TestContainer:
    def test_dirichlet_wins_regardless_of_order(self):
        a = ConstraintsContainer(4)
        a.add_relation(1, {0: 0.5, 2: 0.5})
        a.add_dirichlet(1)
        b = ConstraintsContainer(4)
        b.add_dirichlet(1)
        assert b.add_relation(1, {0: 0.5, 2: 0.5}) is False
        for cons in (a, b):
            assert cons.classify(1) == DIRICHLET
            assert cons.relation(1).masters == {}

    def test_classify(self):
        cons = ConstraintsContainer(3)
        cons.add_dirichlet(0)
        cons.add_relation(1, {2: 1.0})
        assert [cons.classify(d) for d in range(3)] == [DIRICHLET, HANGING, FREE]
        assert list(cons.free_dofs()) == [2]

    def test_version_changes(self):
        cons = ConstraintsContainer(3)
        v0 = cons.version
        cons.add_dirichlet(0)
        assert cons.version > v0
        v1 = cons.version
        cons.add_dirichlet(0)
        assert cons.version == v1

    def test_chain_is_flattened_with_pinned_dirichlet(self):
        cons = ConstraintsContainer(5)
        cons.add_dirichlet(4)
        cons.add_relation(0, {1: 0.5, 2: 0.5})
        cons.add_relation(1, {3: 0.5, 4: 0.5}, offset=1.0)
        cons.resolve()
        rel = cons.relation(0)
        assert rel.masters == pytest.approx({2: 0.5, 3: 0.25})
        assert rel.pinned == pytest.approx({4: 0.25})
        assert rel.offset == pytest.approx(0.5)
        assert_masters_unconstrained(cons)

    def test_chain_rejected_when_not_allowed(self):
        cons = ConstraintsContainer(4, allow_chains=False)
        cons.add_relation(0, {1: 1.0})
        cons.add_relation(1, {2: 1.0})
        with pytest.raises(ConstraintResolutionError):
            cons.resolve()

    def test_cycle_is_detected(self):
        cons = ConstraintsContainer(3)
        cons.add_relation(0, {1: 1.0})
        cons.add_relation(1, {2: 0.5, 0: 0.5})
        with pytest.raises(ConstraintResolutionError):
            cons.resolve()

    def test_self_reference(self):
        with pytest.raises(ConstraintResolutionError):
            ConstraintsContainer(2).add_relation(0, {0: 1.0})

    def test_chain_depth_limit(self):
        n = 20
        cons = ConstraintsContainer(n + 1, max_chain_depth=16)
        for d in range(n):
            cons.add_relation(d, {d + 1: 1.0})
        with pytest.raises(ConstraintResolutionError):
            cons.resolve()
        deep_ok = ConstraintsContainer(n + 1, max_chain_depth=32)
        for d in range(n):
            deep_ok.add_relation(d, {d + 1: 1.0})
        deep_ok.resolve()
        assert deep_ok.relation(0).masters == {n: 1.0}

    def test_backtransform_is_idempotent(self, rng):
        cons = ConstraintsContainer(6)
        cons.add_dirichlet(5)
        cons.add_relation(0, {1: 0.25, 2: 0.75})
        cons.add_relation(3, {0: 0.5, 5: 0.5}, offset=2.0)
        x = rng.random(6)
        once = cons.backtransform(x.copy())
        twice = cons.backtransform(once.copy())
        assert_allclose(once, twice)
        assert np.isclose(once[0], 0.25 * x[1] + 0.75 * x[2])
        assert np.isclose(once[3], 2.0 + 0.5 * once[0] + 0.5 * x[5])
        assert once[5] == x[5]


class TestDirichlet:
    def test_predicate(self, quad_mesh):
        space = GridFunctionSpace(quad_mesh, LagrangeFEM(1))
        cons = assemble_constraints(DirichletConstraints(DirichletBoundary(lambda x, y: x < 1e-6)), space)
        assert_allclose(space.dof_coords()[cons.dirichlet_dofs][:, 0], 0.0)
        assert len(cons.dirichlet_dofs) == 3

    def test_tags(self, quad_mesh):
        quad_mesh.tag_boundary_edges({'top': lambda x, y: y > 1 - 1e-6})
        space = GridFunctionSpace(quad_mesh, LagrangeFEM(2))
        cons = assemble_constraints(DirichletConstraints(TaggedDirichletBoundary('top')), space)
        assert len(cons.dirichlet_dofs) == 5
        assert_allclose(space.dof_coords()[cons.dirichlet_dofs][:, 1], 1.0)

    def test_per_component(self, quad_mesh):
        space = PowerGridFunctionSpace(GridFunctionSpace(quad_mesh, LagrangeFEM(1)), 2)
        cons = assemble_constraints(DirichletConstraints([AllDirichlet(), None]), space)
        assert len(cons.dirichlet_dofs) == 8
        assert set(space.dof_component()[cons.dirichlet_dofs]) == {0}

    def test_copy_touches_only_dirichlet_dofs(self, hanging_mesh):
        space = GridFunctionSpace(hanging_mesh, LagrangeFEM(1))
        cons = assemble_constraints(HangingNodeDirichletConstraints(AllDirichlet()), space)
        assert len(cons.hanging_dofs) == 2
        target = copy_constrained_dofs(cons, np.ones(space.size), np.zeros(space.size))
        assert_allclose(target[cons.dirichlet_dofs], 1.0)
        assert_allclose(target[cons.hanging_dofs], 0.0)
        assert target.sum() == len(cons.dirichlet_dofs)

    def test_p0_has_no_boundary_dofs(self, quad_mesh):
        space = GridFunctionSpace(quad_mesh, P0FEM())
        cons = assemble_constraints(HangingNodeDirichletConstraints(AllDirichlet()), space)
        assert len(cons) == 0


class TestHangingNodes:
    def test_p1_midpoint_weights(self, hanging_mesh):
        space = GridFunctionSpace(hanging_mesh, LagrangeFEM(1))
        cons = assemble_constraints(HangingNodeConstraints(), space)
        assert len(cons.hanging_dofs) == 2
        coords = space.dof_coords()
        for d in cons.hanging_dofs:
            rel = cons.relation(d)
            assert sorted(rel.masters.values()) == pytest.approx([0.5, 0.5])
            assert_allclose(coords[list(rel.masters)].mean(axis=0), coords[d])

    def test_p2_hanging_dofs(self, hanging_mesh):
        space = GridFunctionSpace(hanging_mesh, LagrangeFEM(2))
        cons = assemble_constraints(HangingNodeConstraints(), space)
        # the coarse midpoint is shared; the two fine edge midpoints per side are constrained
        assert len(cons.hanging_dofs) == 4
        for d in cons.hanging_dofs:
            assert sum(cons.relation(d).masters.values()) == pytest.approx(1.0)

    def test_dirichlet_master_becomes_pinned(self, quad_mesh, refine):
        refine(quad_mesh, (0.25, 0.25))
        space = GridFunctionSpace(quad_mesh, LagrangeFEM(1))
        cons = assemble_constraints(HangingNodeDirichletConstraints(AllDirichlet()), space)
        rel = cons.relation(dof_at(space, 0.5, 0.25))
        assert rel.masters == pytest.approx({dof_at(space, 0.5, 0.5): 0.5})
        assert rel.pinned == pytest.approx({dof_at(space, 0.5, 0.0): 0.5})

    def test_chain_flattening(self, chained_quad_mesh):
        space = GridFunctionSpace(chained_quad_mesh, LagrangeFEM(1))
        cons = assemble_constraints(HangingNodeConstraints(), space)
        assert_masters_unconstrained(cons)
        rel = cons.relation(dof_at(space, 0.375, 0.25))
        assert rel.masters == pytest.approx({dof_at(space, 0.5, 0.0): 0.25,
                                             dof_at(space, 0.5, 0.5): 0.25,
                                             dof_at(space, 0.25, 0.25): 0.5})

    def test_chains_rejected_when_not_allowed(self, chained_quad_mesh):
        space = GridFunctionSpace(chained_quad_mesh, LagrangeFEM(1))
        with pytest.raises(ConstraintResolutionError):
            assemble_constraints(HangingNodeConstraints(), space, allow_chains=False)

    def test_require_isolated(self, chained_quad_mesh):
        space = GridFunctionSpace(chained_quad_mesh, LagrangeFEM(1))
        with pytest.raises(ConstraintResolutionError):
            assemble_constraints(HangingNodeConstraints(require_isolated=True), space)

    def test_constraints_reproduce_linear_function(self, chained_quad_mesh, linear_function):
        space = GridFunctionSpace(chained_quad_mesh, LagrangeFEM(1))
        cons = assemble_constraints(HangingNodeConstraints(), space)
        x = interpolate(space, linear_function)
        assert_allclose(cons.backtransform(x.copy()), x, atol=1e-13)


class TestIsolation:
    def test_isolation_removes_chains(self, chained_quad_mesh):
        space = GridFunctionSpace(chained_quad_mesh, LagrangeFEM(1))
        passes = adapt_to_isolate_hanging_nodes(space, max_passes=5)
        assert passes >= 1
        assert chained_quad_mesh.max_hanging_nodes_per_edge() <= 1
        cons = assemble_constraints(HangingNodeConstraints(require_isolated=True), space,
                                    allow_chains=False)
        assert_masters_unconstrained(cons)

    def test_isolated_mesh_needs_no_pass(self, hanging_mesh):
        assert isolate_hanging_nodes(hanging_mesh) == 0

    def test_zero_budget_fails(self, chained_quad_mesh):
        with pytest.raises(ConstraintResolutionError):
            isolate_hanging_nodes(chained_quad_mesh, max_passes=0)

    def test_no_constraints_policy(self, hanging_mesh):
        space = GridFunctionSpace(hanging_mesh, LagrangeFEM(1))
        cons = assemble_constraints(NoConstraints(), space)
        assert len(cons) == 0 and cons.is_resolved
