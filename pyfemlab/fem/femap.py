"""pyfemlab.fem.femap
Finite-element maps: which local basis lives on which element type, and how
local basis functions are identified across elements.
"""
import numpy as np

from pyfemlab.fem.reference import get_reference, reference_centroid
from pyfemlab.integration import quadrature


def _q(x: float, ndp: int = 12) -> float:
    """Quantize a float for DOF keys (robust to tiny FP noise)."""
    return float(round(float(x), ndp))


class FiniteElementMap:
    """Interface of a finite-element map.

    Subclasses provide the reference basis per element type and a key that
    identifies a local basis function globally: two local functions with the
    same key share one global DOF.
    """
    continuous = True
    order = 1

    def supports(self, element_type: str) -> bool:
        raise NotImplementedError

    def reference(self, element_type: str):
        raise NotImplementedError

    def n_basis(self, element_type: str) -> int:
        return self.reference(element_type).n_basis

    def dof_key(self, mesh, eid: int, local_index: int, x: np.ndarray):
        raise NotImplementedError

    def _cached(self, key, build):
        # tables live on the instance so maps can be garbage collected
        tables = self.__dict__.setdefault("_tables", {})
        if key not in tables:
            tables[key] = build()
        return tables[key]

    def tabulate(self, element_type: str, degree: int):
        """Basis values and reference gradients at the volume rule of *degree*."""
        def build():
            pts, _ = quadrature.volume(element_type, degree)
            return self.reference(element_type).tabulate(pts)
        return self._cached(("volume", element_type, int(degree)), build)

    def tabulate_edge(self, element_type: str, local_edge: int, degree: int):
        def build():
            pts, _, _ = quadrature.edge(element_type, local_edge, degree)
            return self.reference(element_type).tabulate(pts)
        return self._cached(("edge", element_type, int(local_edge), int(degree)), build)

    def __repr__(self):
        return f"{type(self).__name__}(order={self.order})"


class LagrangeFEM(FiniteElementMap):
    """Continuous Lagrange P_k (triangles) / Q_k (quadrilaterals), k >= 1."""

    def __init__(self, order: int = 1, element_types=('tri', 'quad')):
        if int(order) < 1:
            raise ValueError("Lagrange elements need order >= 1; use P0FEM for order 0.")
        self.order = int(order)
        self.element_types = tuple(element_types)

    def supports(self, element_type: str) -> bool:
        return element_type in self.element_types

    def reference(self, element_type: str):
        return get_reference(element_type, self.order)

    def dof_key(self, mesh, eid, local_index, x):
        return (_q(x[0]), _q(x[1]))


class _P0Reference:
    """Constant basis on any reference element."""

    def __init__(self, element_type):
        self.element_type = element_type
        self.order = 0
        self.nodes = reference_centroid(element_type)[None, :]
        self.n_basis = 1

    def shape(self, xi, eta):
        return np.ones(1)

    def grad(self, xi, eta):
        return np.zeros((1, 2))

    def tabulate(self, points):
        nq = len(np.asarray(points, dtype=float).reshape(-1, 2))
        return np.ones((nq, 1)), np.zeros((nq, 1, 2))

    def edge_basis(self, local_edge):
        return np.empty(0, dtype=int)


class P0FEM(FiniteElementMap):
    """One discontinuous constant per element."""
    continuous = False
    order = 0

    def supports(self, element_type: str) -> bool:
        return element_type in ('tri', 'quad')

    def reference(self, element_type: str):
        return self._cached(("reference", element_type), lambda: _P0Reference(element_type))

    def dof_key(self, mesh, eid, local_index, x):
        return ('cell', int(eid))
