"""pyfemlab.constraints.container
Affine DOF constraints.

A constrained DOF ``d`` takes the value

    x[d] = offset + sum_m w_m * x[m] + sum_p v_p * x[p]

where the masters ``m`` are unconstrained DOFs and the *pinned* DOFs ``p``
are Dirichlet DOFs whose values live in the coefficient vector itself. A
Dirichlet DOF has no masters: its value is whatever the vector holds (the
interpolated boundary value).
"""
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional, Tuple

import numpy as np
import scipy.sparse as sp

from pyfemlab.errors import ConstraintResolutionError

logger = logging.getLogger(__name__)

DIRICHLET = "dirichlet"
HANGING = "hanging"
FREE = "free"


@dataclass
class ConstraintRelation:
    masters: Dict[int, float] = field(default_factory=dict)
    offset: float = 0.0
    pinned: Dict[int, float] = field(default_factory=dict)
    kind: str = HANGING

    @property
    def is_dirichlet(self) -> bool:
        return self.kind == DIRICHLET

    def value(self, x: np.ndarray) -> float:
        v = self.offset
        for m, w in self.masters.items():
            v += w * x[m]
        for p, w in self.pinned.items():
            v += w * x[p]
        return v


class ConstraintsContainer:
    """Constrained DOF -> relation, with chain resolution.

    Dirichlet relations take precedence over interpolation relations no
    matter in which order the sources add them: ``add_relation`` on a
    Dirichlet DOF is ignored and ``add_dirichlet`` replaces an existing
    relation.

    Parameters
    ----------
    n_dofs : int
        Size of the space the constraints act on.
    allow_chains : bool
        If True, relations whose masters are themselves constrained are
        flattened by substitution in :meth:`resolve`; otherwise any such
        chain is a :class:`ConstraintResolutionError`.
    max_chain_depth : int
        Longest substitution chain accepted during flattening.
    drop_tol : float
        Weights below this magnitude are discarded.
    """

    def __init__(self, n_dofs: int, *, allow_chains: bool = True,
                 max_chain_depth: int = 16, drop_tol: float = 1e-12):
        self.n_dofs = int(n_dofs)
        self.allow_chains = allow_chains
        self.max_chain_depth = int(max_chain_depth)
        self.drop_tol = drop_tol
        self._raw: Dict[int, ConstraintRelation] = {}
        self._resolved: Optional[Dict[int, ConstraintRelation]] = None
        self.version = 0

    # --- construction ---

    def _check(self, dof: int) -> int:
        dof = int(dof)
        if not 0 <= dof < self.n_dofs:
            raise IndexError(f"DOF {dof} out of range [0, {self.n_dofs}).")
        return dof

    def _touch(self):
        self._resolved = None
        self.version += 1

    def add_dirichlet(self, dof: int):
        dof = self._check(dof)
        current = self._raw.get(dof)
        if current is not None and current.is_dirichlet:
            return
        self._raw[dof] = ConstraintRelation(kind=DIRICHLET)
        self._touch()

    def add_relation(self, dof: int, masters: Dict[int, float], offset: float = 0.0) -> bool:
        """Constrain *dof* to ``offset + sum w * x[m]``; returns False if *dof* is Dirichlet."""
        dof = self._check(dof)
        current = self._raw.get(dof)
        if current is not None and current.is_dirichlet:
            return False
        clean = {}
        for m, w in masters.items():
            m = self._check(m)
            if abs(w) > self.drop_tol:
                clean[m] = clean.get(m, 0.0) + float(w)
        if dof in clean:
            raise ConstraintResolutionError(f"DOF {dof} is constrained to itself.", dof=dof)
        self._raw[dof] = ConstraintRelation(masters=clean, offset=float(offset))
        self._touch()
        return True

    def clear(self):
        self._raw.clear()
        self._touch()

    # --- queries ---

    def classify(self, dof: int) -> str:
        """'dirichlet', 'hanging' or 'free'."""
        rel = self._raw.get(int(dof))
        if rel is None:
            return FREE
        return rel.kind

    def __contains__(self, dof) -> bool:
        return int(dof) in self._raw

    def __len__(self):
        return len(self._raw)

    @property
    def is_resolved(self) -> bool:
        return self._resolved is not None

    def relation(self, dof: int) -> ConstraintRelation:
        return self.relations()[int(dof)]

    def relations(self) -> Dict[int, ConstraintRelation]:
        if self._resolved is None:
            self.resolve()
        return self._resolved

    def items(self) -> Iterable[Tuple[int, ConstraintRelation]]:
        return self.relations().items()

    @property
    def constrained_dofs(self) -> np.ndarray:
        return np.array(sorted(self._raw), dtype=int)

    @property
    def dirichlet_dofs(self) -> np.ndarray:
        return np.array(sorted(d for d, r in self._raw.items() if r.is_dirichlet), dtype=int)

    @property
    def hanging_dofs(self) -> np.ndarray:
        return np.array(sorted(d for d, r in self._raw.items() if not r.is_dirichlet), dtype=int)

    def constrained_mask(self) -> np.ndarray:
        mask = np.zeros(self.n_dofs, dtype=bool)
        mask[self.constrained_dofs] = True
        return mask

    def free_dofs(self) -> np.ndarray:
        return np.flatnonzero(~self.constrained_mask())

    # --- resolution ---

    def resolve(self) -> "ConstraintsContainer":
        """Flatten chains so that every master is unconstrained."""
        resolved: Dict[int, ConstraintRelation] = {}

        def expand(d: int, stack: Tuple[int, ...]) -> ConstraintRelation:
            if d in resolved:
                return resolved[d]
            rel = self._raw[d]
            if rel.is_dirichlet:
                return ConstraintRelation(kind=DIRICHLET)
            if len(stack) > self.max_chain_depth:
                raise ConstraintResolutionError(
                    f"Constraint chain deeper than {self.max_chain_depth} at DOF {d}: {stack}", dof=d)
            masters = defaultdict(float)
            pinned = defaultdict(float)
            offset = rel.offset
            for m, w in rel.masters.items():
                if m in stack:
                    raise ConstraintResolutionError(
                        f"Cyclic constraint chain {stack + (m,)}.", dof=d)
                mrel = self._raw.get(m)
                if mrel is None:
                    masters[m] += w
                elif mrel.is_dirichlet:
                    pinned[m] += w
                else:
                    if not self.allow_chains:
                        raise ConstraintResolutionError(
                            f"DOF {d} depends on constrained DOF {m}; chains are not allowed.", dof=d)
                    sub = expand(m, stack + (m,))
                    offset += w * sub.offset
                    for mm, ww in sub.masters.items():
                        masters[mm] += w * ww
                    for pp, ww in sub.pinned.items():
                        pinned[pp] += w * ww
            out = ConstraintRelation(
                masters={m: w for m, w in masters.items() if abs(w) > self.drop_tol},
                offset=offset,
                pinned={p: w for p, w in pinned.items() if abs(w) > self.drop_tol},
            )
            resolved[d] = out
            return out

        for d in sorted(self._raw):
            resolved[d] = expand(d, (d,))

        for d, rel in resolved.items():
            bad = [m for m in rel.masters if m in self._raw]
            if bad:
                raise ConstraintResolutionError(f"DOF {d} keeps constrained masters {bad}.", dof=d)

        self._resolved = resolved
        self._build_backtransform()
        n_hang = len(self._hanging_rows)
        logger.debug("Resolved %d constraints (%d hanging, %d Dirichlet).",
                     len(resolved), n_hang, len(resolved) - n_hang)
        return self

    def _build_backtransform(self):
        rows, cols, vals = [], [], []
        hanging = [d for d, r in self._resolved.items() if not r.is_dirichlet]
        offsets = np.zeros(len(hanging))
        for i, d in enumerate(hanging):
            rel = self._resolved[d]
            offsets[i] = rel.offset
            for m, w in list(rel.masters.items()) + list(rel.pinned.items()):
                rows.append(i); cols.append(m); vals.append(w)
        self._hanging_rows = np.array(hanging, dtype=int)
        self._hanging_offsets = offsets
        self._hanging_matrix = sp.csr_matrix((vals, (rows, cols)), shape=(len(hanging), self.n_dofs))

    def backtransform(self, x: np.ndarray) -> np.ndarray:
        """Overwrite every non-Dirichlet constrained DOF of *x* by its relation (in place)."""
        if self._resolved is None:
            self.resolve()
        if self._hanging_rows.size:
            x[self._hanging_rows] = self._hanging_matrix @ x + self._hanging_offsets
        return x

    def __repr__(self):
        return (f"<ConstraintsContainer n_dofs={self.n_dofs} constrained={len(self._raw)} "
                f"resolved={self.is_resolved} version={self.version}>")
