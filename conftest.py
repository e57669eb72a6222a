# conftest.py
import numpy as np
import pytest

from pyfemlab.space.interpolate import locate_point
from pyfemlab.utils.meshgen import structured_quad, unit_square


def refine_at(mesh, *points):
    """Refine the leaf elements containing the given points once."""
    for p in points:
        found = locate_point(mesh, p)
        assert found is not None, f"no element contains {p}"
        mesh.mark(1, found[0])
    mesh.pre_adapt()
    mesh.adapt()
    mesh.post_adapt()
    return mesh


@pytest.fixture
def quad_mesh():
    return structured_quad(1.0, 1.0, nx=2, ny=2)


@pytest.fixture
def tri_mesh():
    return unit_square('tri', 2)


@pytest.fixture(params=['tri', 'quad'])
def hanging_mesh(request):
    """2x2 mesh with the lower-left element refined: two sides with one hanging node each."""
    mesh = unit_square(request.param, 2)
    return refine_at(mesh, (0.2, 0.1))


@pytest.fixture
def chained_quad_mesh():
    """Quad mesh where a hanging vertex is the master of another hanging vertex."""
    mesh = structured_quad(1.0, 1.0, nx=2, ny=2)
    refine_at(mesh, (0.25, 0.25))
    return refine_at(mesh, (0.375, 0.375))


@pytest.fixture
def linear_function():
    return lambda x, y: 1.0 + x + 2.0 * y


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture
def refine():
    return refine_at
