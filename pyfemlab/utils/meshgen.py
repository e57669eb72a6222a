"""pyfemlab.utils.meshgen
Mesh generators for quick tests.
"""
import numpy as np
from scipy.spatial import Delaunay
import numba
from typing import List, Tuple, Optional

from pyfemlab.core.topology import Node
from pyfemlab.core.mesh import Mesh

__all__ = ["delaunay_rectangle", "structured_quad", "structured_triangles", "unit_square"]


@numba.jit(nopython=True, cache=True)
def _grid_coords(Lx, Ly, nx, ny, ox, oy):
    """Vertex coordinates of an (nx x ny) cell grid, x fastest."""
    coords = np.empty(((nx + 1) * (ny + 1), 2))
    for j in range(ny + 1):
        for i in range(nx + 1):
            k = j * (nx + 1) + i
            coords[k, 0] = ox + Lx * i / nx
            coords[k, 1] = oy + Ly * j / ny
    return coords


@numba.jit(nopython=True, cache=True)
def _grid_quads(nx, ny):
    """CCW corner connectivity of the grid cells."""
    conn = np.empty((nx * ny, 4), dtype=np.int64)
    for j in range(ny):
        for i in range(nx):
            e = j * nx + i
            n0 = j * (nx + 1) + i
            conn[e, 0] = n0
            conn[e, 1] = n0 + 1
            conn[e, 2] = n0 + nx + 2
            conn[e, 3] = n0 + nx + 1
    return conn


def _nodes_from_coords(coords: np.ndarray) -> List[Node]:
    return [Node(i, float(x), float(y)) for i, (x, y) in enumerate(coords)]


def structured_quad(Lx: float, Ly: float, *, nx: int, ny: int,
                    offset: Optional[Tuple[float, float]] = None) -> Mesh:
    """Rectangle [0, Lx] x [0, Ly] (shifted by *offset*) split into nx*ny quads."""
    if nx < 1 or ny < 1:
        raise ValueError("nx and ny must be positive.")
    ox, oy = offset if offset is not None else (0.0, 0.0)
    coords = _grid_coords(float(Lx), float(Ly), int(nx), int(ny), float(ox), float(oy))
    return Mesh(_nodes_from_coords(coords), _grid_quads(int(nx), int(ny)), element_type='quad')


def structured_triangles(Lx: float, Ly: float, *, nx_quads: int, ny_quads: int,
                         offset: Optional[Tuple[float, float]] = None) -> Mesh:
    """Each grid quad is split into two CCW triangles along its (0, 2) diagonal."""
    if nx_quads < 1 or ny_quads < 1:
        raise ValueError("nx_quads and ny_quads must be positive.")
    ox, oy = offset if offset is not None else (0.0, 0.0)
    coords = _grid_coords(float(Lx), float(Ly), int(nx_quads), int(ny_quads), float(ox), float(oy))
    quads = _grid_quads(int(nx_quads), int(ny_quads))
    tris = np.empty((2 * quads.shape[0], 3), dtype=np.int64)
    tris[0::2] = quads[:, [0, 1, 2]]
    tris[1::2] = quads[:, [0, 2, 3]]
    return Mesh(_nodes_from_coords(coords), tris, element_type='tri')


def unit_square(element_type: str = 'tri', n: int = 1) -> Mesh:
    if element_type == 'quad':
        return structured_quad(1.0, 1.0, nx=n, ny=n)
    return structured_triangles(1.0, 1.0, nx_quads=n, ny_quads=n)


def delaunay_rectangle(length: float, height: float, nx: int = 10, ny: int = 10) -> Mesh:
    x = np.linspace(0.0, length, nx)
    y = np.linspace(0.0, height, ny)
    X, Y = np.meshgrid(x, y)
    pts = np.column_stack([X.ravel(), Y.ravel()])
    tri = Delaunay(pts)
    elems = tri.simplices.copy()

    # make triangles CCW
    def signed_area(a, b, c):
        return (b[0]-a[0])*(c[1]-a[1]) - (b[1]-a[1])*(c[0]-a[0])
    for t in elems:
        a, b, c = pts[t]
        if signed_area(a, b, c) < 0:
            t[1], t[2] = t[2], t[1]
    return Mesh(_nodes_from_coords(pts), elems, element_type='tri')
