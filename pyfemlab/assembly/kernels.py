"""pyfemlab.assembly.kernels
Numba kernels for the scatter phase of assembly.
"""
import numba
import numpy as np


@numba.njit(cache=True)
def scatter_add(target, positions, values):
    """target[positions[k]] += values[k], serialised per entry."""
    for k in range(positions.shape[0]):
        target[positions[k]] += values[k]
    return target


@numba.njit(cache=True)
def csr_positions(indptr, indices, rows, cols):
    """Positions in the CSR ``data`` array of the dense block rows x cols (row-major)."""
    out = np.empty(rows.shape[0] * cols.shape[0], dtype=np.int64)
    k = 0
    for i in range(rows.shape[0]):
        s = indptr[rows[i]]
        t = indptr[rows[i] + 1]
        for j in range(cols.shape[0]):
            c = cols[j]
            lo = s
            hi = t
            while lo < hi:
                mid = (lo + hi) // 2
                if indices[mid] < c:
                    lo = mid + 1
                else:
                    hi = mid
            out[k] = lo
            k += 1
    return out
