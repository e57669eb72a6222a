"""pyfemlab.fem.context
Per-element evaluation data handed to local operators.

``ElementGeometry`` holds the quadrature points, weights and inverse
Jacobians of one element; ``ElementContext`` adds the basis functions of
every component of a function space, pushed forward to physical
coordinates. ``FaceContext`` is the analogue on one side of an element.
"""
from dataclasses import dataclass
from typing import List

import numpy as np

from pyfemlab.errors import AssemblyError
from pyfemlab.fem import transform
from pyfemlab.integration import quadrature


class ElementGeometry:
    """Volume quadrature of element *eid* for a rule of given degree."""

    def __init__(self, mesh, eid: int, degree: int):
        pts, w = quadrature.volume(mesh.element_type, degree)
        J = np.array([transform.jacobian(mesh, eid, p) for p in pts])
        det = np.linalg.det(J)
        if not np.all(np.isfinite(det)) or np.any(det <= 0.0):
            raise AssemblyError(f"degenerate geometry (min det J = {det.min():.3e})", entity_id=eid)
        self.eid = eid
        self.degree = degree
        self.ref_points = pts
        self.points = transform.map_points(mesh, eid, pts)
        self.det_J = det
        self.weights = w * det
        self.inv_jac_T = np.transpose(np.linalg.inv(J), (0, 2, 1))

    def push_forward(self, dN_ref: np.ndarray) -> np.ndarray:
        """Map reference gradients (nq, n, 2) to physical gradients."""
        return np.einsum('qnk,qkj->qnj', dN_ref, self.inv_jac_T)


@dataclass
class ComponentBasis:
    name: str
    index: int
    slice: slice
    phi: np.ndarray       # (nq, n)
    grad: np.ndarray      # (nq, n, 2)

    @property
    def n(self) -> int:
        return self.phi.shape[1]


class _BasisEvaluator:
    components: List[ComponentBasis]

    def __getitem__(self, i) -> ComponentBasis:
        if isinstance(i, str):
            for c in self.components:
                if c.name == i:
                    return c
            raise KeyError(i)
        return self.components[i]

    def __len__(self):
        return len(self.components)

    def value(self, x_local: np.ndarray, i=0) -> np.ndarray:
        """Component *i* of the discrete function at the quadrature points."""
        c = self[i]
        return c.phi @ x_local[c.slice]

    def gradient(self, x_local: np.ndarray, i=0) -> np.ndarray:
        c = self[i]
        return np.einsum('qnj,n->qj', c.grad, x_local[c.slice])


class ElementContext(_BasisEvaluator):
    """Everything a local operator needs to integrate over one element."""

    def __init__(self, space, mesh, eid: int, geometry: ElementGeometry):
        self.space = space
        self.mesh = mesh
        self.eid = eid
        self.element = mesh.elements_list[eid]
        self.geometry = geometry
        self.points = geometry.points
        self.weights = geometry.weights
        self.n_local = space.n_local
        self.components = []
        for comp in space.components():
            N, dN = comp.leaf.fem.tabulate(mesh.element_type, geometry.degree)
            self.components.append(ComponentBasis(comp.name, comp.index, comp.local_slice,
                                                  N, geometry.push_forward(dN)))

    def face(self, ig, degree: int = None) -> "FaceContext":
        return FaceContext(self, ig, self.geometry.degree if degree is None else degree)


class FaceContext(_BasisEvaluator):
    """Quadrature on one side (intersection) of the element of *ctx*."""

    def __init__(self, ctx: ElementContext, ig, degree: int):
        mesh = ctx.mesh
        pts, w, s = quadrature.edge(mesh.element_type, ig.local_index, degree)
        self.intersection = ig
        self.eid = ctx.eid
        self.s = s
        self.points = np.array([ig.global_coords(si) for si in s])
        self.weights = w * ig.length
        self.normal = ig.normal
        inv_jac_T = np.array([transform.inv_jac_T(mesh, ctx.eid, p) for p in pts])
        self.components = []
        for comp, vol in zip(ctx.space.components(), ctx.components):
            N, dN = comp.leaf.fem.tabulate_edge(mesh.element_type, ig.local_index, degree)
            grad = np.einsum('qnk,qkj->qnj', dN, inv_jac_T)
            self.components.append(ComponentBasis(vol.name, vol.index, vol.slice, N, grad))
