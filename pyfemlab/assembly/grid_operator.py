"""pyfemlab.assembly.grid_operator
Residual / Jacobian assembly with constraint transformation.

For every element the local coefficient vector is *gathered* through the
constraints, ``x_loc = W_e x[cols_e] + o_e``, where ``cols_e`` are the global
DOFs the element depends on (its own unconstrained DOFs, the masters of its
hanging DOFs and the Dirichlet DOFs it touches). Local contributions are
*scattered* with the transpose restricted to unconstrained columns:

    r[free_e]           += W_f^T r_loc
    J[free_e, free_e]   += W_f^T J_loc W_f

Constrained rows carry a zero residual and the chosen diagonal value in the
Jacobian, so Newton updates leave constrained DOFs untouched.
"""
import logging
import os
import time
from dataclasses import dataclass
from typing import Dict, List, Optional

import numpy as np
import scipy.sparse as sp

from pyfemlab.assembly.kernels import scatter_add, csr_positions
from pyfemlab.constraints.container import ConstraintsContainer
from pyfemlab.errors import AssemblyError, PyFemLabError
from pyfemlab.fem.context import ElementContext, ElementGeometry

logger = logging.getLogger(__name__)


@dataclass
class _ElementPlan:
    cols: np.ndarray        # global DOFs the element depends on
    W: np.ndarray           # (n_loc, n_cols) gather matrix
    offset: np.ndarray      # (n_loc,)
    free: np.ndarray        # indices into cols of unconstrained DOFs
    rows: np.ndarray        # cols[free]
    Wf: np.ndarray          # W[:, free]
    pos: np.ndarray = None  # positions of the (rows x rows) block in CSR data
    trivial: bool = False   # W is the identity and nothing is constrained


class GridOperator:
    """Assembles residual and Jacobian of a local operator over a space.

    Parameters
    ----------
    space : grid function space (root of the space tree)
    local_operator : LocalOperator
    constraints : ConstraintsContainer, optional
        Resolved constraints of *space*; no constraints if omitted.
    """

    def __init__(self, space, local_operator, constraints: Optional[ConstraintsContainer] = None):
        if constraints is None:
            constraints = ConstraintsContainer(space.size).resolve()
        if constraints.n_dofs != space.size:
            raise ValueError(f"Constraints act on {constraints.n_dofs} DOFs, the space has {space.size}.")
        self.space = space
        self.mesh = space.mesh
        self.local_operator = local_operator
        self.constraints = constraints
        self.profile = os.getenv("PYFEMLAB_PROFILE_ASSEMBLY", "").lower() in {"1", "true", "yes"}
        self._plan_key = None
        self._plans: List[_ElementPlan] = []
        self._contexts: Dict[int, ElementContext] = {}
        self._faces: Dict[int, list] = {}
        self._csr_indptr = None
        self._csr_indices = None
        self._diag_pos = None

    @property
    def size(self) -> int:
        return self.space.size

    def set_time(self, t: float):
        self.local_operator.set_time(t)

    def invalidate_pattern(self):
        self._plan_key = None

    # ------------------------------------------------------------------ #
    # Plan / pattern                                                     #
    # ------------------------------------------------------------------ #
    def _current_key(self):
        return (id(self.constraints), self.constraints.version, self.space.size,
                self.mesh.generation, self.local_operator.quadrature_order)

    def _ensure_plan(self):
        if self.space.is_stale():
            raise AssemblyError("function space is out of date with its mesh; call space.update()")
        if self.constraints.n_dofs != self.space.size:
            raise AssemblyError("constraints do not match the function space size")
        key = self._current_key()
        if key != self._plan_key:
            self._build_plan()
            self._plan_key = key

    def _build_plan(self):
        t0 = time.perf_counter()
        cons = self.constraints
        relations = cons.relations()
        constrained = cons.constrained_mask()
        space, mesh = self.space, self.mesh
        self._contexts.clear()
        self._faces = {}
        if self.local_operator.has_boundary:
            for ig in mesh.boundary_intersections():
                self._faces.setdefault(ig.element, []).append(ig)

        plans = []
        for eid in range(mesh.n_elements):
            dofs = space.element_dofs(eid)
            if not constrained[dofs].any():
                idx = np.arange(len(dofs))
                plans.append(_ElementPlan(cols=dofs, W=None, offset=None, free=idx,
                                          rows=dofs, Wf=None, trivial=True))
                continue
            col_index: Dict[int, int] = {}
            entries = []
            offset = np.zeros(len(dofs))
            for i, g in enumerate(dofs):
                rel = relations.get(int(g))
                if rel is None or rel.is_dirichlet:
                    terms = [(int(g), 1.0)]
                else:
                    terms = list(rel.masters.items()) + list(rel.pinned.items())
                    offset[i] = rel.offset
                for m, w in terms:
                    j = col_index.setdefault(m, len(col_index))
                    entries.append((i, j, w))
            cols = np.array(list(col_index), dtype=int)
            W = np.zeros((len(dofs), len(cols)))
            for i, j, w in entries:
                W[i, j] += w
            free = np.flatnonzero(~constrained[cols])
            plans.append(_ElementPlan(cols=cols, W=W, offset=offset, free=free,
                                      rows=cols[free], Wf=W[:, free]))
        self._plans = plans
        self._build_pattern()
        if self.profile:
            logger.info("[assembly] plan + pattern for %d elements: %.3es",
                        len(plans), time.perf_counter() - t0)

    def _build_pattern(self):
        """CSR sparsity of the constrained system and per-element scatter plans."""
        n = self.size
        rows_cols = [set() for _ in range(n)]
        for plan in self._plans:
            rows = plan.rows.tolist()
            for r in rows:
                rows_cols[r].update(rows)
        constrained = self.constraints.constrained_dofs
        for c in constrained:
            rows_cols[c].add(int(c))

        indptr = np.zeros(n + 1, dtype=np.int64)
        for i in range(n):
            indptr[i + 1] = indptr[i] + len(rows_cols[i])
        indices = np.empty(indptr[-1], dtype=np.int64)
        for i in range(n):
            indices[indptr[i]:indptr[i + 1]] = sorted(rows_cols[i])
        self._csr_indptr, self._csr_indices = indptr, indices

        for plan in self._plans:
            rows = plan.rows.astype(np.int64)
            plan.pos = csr_positions(indptr, indices, rows, rows)
        c64 = constrained.astype(np.int64)
        self._diag_pos = np.array([csr_positions(indptr, indices, c64[k:k + 1], c64[k:k + 1])[0]
                                   for k in range(len(c64))], dtype=np.int64)

    def pattern_statistics(self) -> dict:
        self._ensure_plan()
        per_row = np.diff(self._csr_indptr)
        return {
            "rows": int(self.size),
            "nnz": int(self._csr_indptr[-1]),
            "avg_per_row": float(per_row.mean()) if per_row.size else 0.0,
            "max_per_row": int(per_row.max()) if per_row.size else 0,
        }

    # ------------------------------------------------------------------ #
    # Element loop                                                       #
    # ------------------------------------------------------------------ #
    def _context(self, eid: int) -> ElementContext:
        ctx = self._contexts.get(eid)
        if ctx is None:
            geo = ElementGeometry(self.mesh, eid, self.local_operator.quadrature_order)
            ctx = ElementContext(self.space, self.mesh, eid, geo)
            self._contexts[eid] = ctx
        return ctx

    @staticmethod
    def _gather(plan: _ElementPlan, x: np.ndarray) -> np.ndarray:
        if plan.trivial:
            return x[plan.cols].copy()
        return plan.W @ x[plan.cols] + plan.offset

    def _call(self, eid: int, func, *args):
        try:
            out = func(*args)
        except PyFemLabError:
            raise
        except Exception as exc:
            raise AssemblyError(f"local operator failed: {exc}", entity_id=eid) from exc
        if out is not None:
            out = np.asarray(out, dtype=float)
            if not np.all(np.isfinite(out)):
                raise AssemblyError("local operator produced non-finite values", entity_id=eid)
        return out

    def _local_residual(self, eid: int, x_loc: np.ndarray) -> np.ndarray:
        lop = self.local_operator
        ctx = self._context(eid)
        r_loc = self._call(eid, lop.volume_residual, ctx, x_loc)
        if r_loc is None:
            r_loc = np.zeros(len(x_loc))
        for ig in self._faces.get(eid, ()):
            rb = self._call(eid, lop.boundary_residual, ctx, ctx.face(ig), x_loc)
            if rb is not None:
                r_loc = r_loc + rb
        if r_loc.shape != x_loc.shape:
            raise AssemblyError(f"local residual has shape {r_loc.shape}, expected {x_loc.shape}",
                                entity_id=eid)
        return r_loc

    def _local_jacobian(self, eid: int, x_loc: np.ndarray) -> np.ndarray:
        lop = self.local_operator
        ctx = self._context(eid)
        n = len(x_loc)
        J_loc = self._call(eid, lop.volume_jacobian, ctx, x_loc)
        if J_loc is None:
            J_loc = np.zeros((n, n))
        for ig in self._faces.get(eid, ()):
            Jb = self._call(eid, lop.boundary_jacobian, ctx, ctx.face(ig), x_loc)
            if Jb is not None:
                J_loc = J_loc + Jb
        if J_loc.shape != (n, n):
            raise AssemblyError(f"local Jacobian has shape {J_loc.shape}, expected {(n, n)}",
                                entity_id=eid)
        return J_loc

    # ------------------------------------------------------------------ #
    # Public API                                                         #
    # ------------------------------------------------------------------ #
    def residual(self, x: np.ndarray, r: Optional[np.ndarray] = None) -> np.ndarray:
        """Assemble r(x); constrained rows are zero."""
        self._ensure_plan()
        x = np.asarray(x, dtype=float)
        t0 = time.perf_counter()
        positions, values = [], []
        for eid, plan in enumerate(self._plans):
            r_loc = self._local_residual(eid, self._gather(plan, x))
            if plan.trivial:
                values.append(r_loc)
            else:
                values.append(plan.Wf.T @ r_loc)
            positions.append(plan.rows)
        if r is None:
            r = np.zeros(self.size)
        else:
            r[:] = 0.0
        if positions:
            scatter_add(r, np.concatenate(positions).astype(np.int64), np.concatenate(values))
        if self.profile:
            logger.info("[assembly] residual: %.3es", time.perf_counter() - t0)
        return r

    def jacobian(self, x: np.ndarray, J: Optional[sp.csr_matrix] = None,
                 diagonal: float = 1.0) -> sp.csr_matrix:
        """Assemble dr/dx in CSR format; constrained rows get *diagonal* on the diagonal."""
        self._ensure_plan()
        x = np.asarray(x, dtype=float)
        t0 = time.perf_counter()
        data = np.zeros(len(self._csr_indices))
        positions, values = [], []
        for eid, plan in enumerate(self._plans):
            J_loc = self._local_jacobian(eid, self._gather(plan, x))
            if not plan.trivial:
                J_loc = plan.Wf.T @ J_loc @ plan.Wf
            positions.append(plan.pos)
            values.append(J_loc.ravel())
        if positions:
            scatter_add(data, np.concatenate(positions), np.concatenate(values))
        data[self._diag_pos] = diagonal
        n = self.size
        if J is not None and J.shape == (n, n) and J.nnz == len(data) \
                and np.array_equal(J.indptr, self._csr_indptr):
            J.data[:] = data
        else:
            J = sp.csr_matrix((data, self._csr_indices, self._csr_indptr), shape=(n, n))
        if self.profile:
            logger.info("[assembly] jacobian: %.3es (nnz=%d)", time.perf_counter() - t0, len(data))
        return J

    def jacobian_apply(self, x: np.ndarray, z: np.ndarray) -> np.ndarray:
        return self.jacobian(x) @ z

    def backtransform(self, x: np.ndarray) -> np.ndarray:
        """Overwrite constrained (non-Dirichlet) DOFs of *x* by their relations, in place."""
        return self.constraints.backtransform(x)

    def __repr__(self):
        return (f"<GridOperator space={self.space.name!r} size={self.size} "
                f"lop={type(self.local_operator).__name__}>")
