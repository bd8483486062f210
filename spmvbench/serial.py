# serial.py
#
# Reference SpMV kernels. The row-range and hack-range kernels are also the
# per-worker bodies of the parallel kernels, so both paths accumulate every
# row in exactly the same order.

from typing import Optional, Union

import numpy as np
from numba import njit

from .csr import CSRMatrix
from .hll import HLLMatrix


@njit(nogil=True)
def csr_rows(row_ptr, col_idx, values, x, y, start, end):
    for r in range(start, end):
        acc = 0.0
        for e in range(row_ptr[r], row_ptr[r + 1]):
            acc += values[e] * x[col_idx[e]]
        y[r] += acc


@njit(nogil=True)
def hll_hacks(hack_ptr, max_nz, col_idx, values, hack_size, x, y, start, end):
    n_rows = y.shape[0]
    for h in range(start, end):
        width = max_nz[h]
        if width == 0:
            continue
        first = h * hack_size
        for i in range(hack_size):
            r = first + i
            if r >= n_rows:
                break
            offset = hack_ptr[h] + i * width
            acc = 0.0
            for k in range(width):
                acc += values[offset + k] * x[col_idx[offset + k]]
            y[r] += acc


def check_operands(A: Union[CSRMatrix, HLLMatrix], x: np.ndarray, y: np.ndarray) -> None:
    if x.shape != (A.N,):
        raise ValueError(f"x must have shape ({A.N},), got {x.shape}")
    if y.shape != (A.M,):
        raise ValueError(f"y must have shape ({A.M},), got {y.shape}")
    if x.dtype != np.float64 or y.dtype != np.float64:
        raise ValueError(f"x and y must be float64, got {x.dtype} and {y.dtype}")


def csr_matvec(A: CSRMatrix, x: np.ndarray, y: np.ndarray) -> np.ndarray:
    """Accumulate A @ x into y (y is not cleared)."""
    check_operands(A, x, y)
    csr_rows(A.row_ptr, A.col_idx, A.values, x, y, 0, A.M)
    return y


def hll_matvec(A: HLLMatrix, x: np.ndarray, y: np.ndarray) -> np.ndarray:
    """Accumulate A @ x into y (y is not cleared)."""
    check_operands(A, x, y)
    hll_hacks(A.hack_ptr, A.max_nz, A.col_idx, A.values, A.hack_size, x, y, 0, A.num_hacks)
    return y


def matvec(A: Union[CSRMatrix, HLLMatrix], x: np.ndarray,
           y: Optional[np.ndarray] = None) -> np.ndarray:
    """
    Single-threaded sparse matrix-vector product.

    Parameters:
    -----------
    A : CSRMatrix or HLLMatrix
    x : np.ndarray
        Dense float64 input of length N
    y : np.ndarray, optional
        Output of length M. Results are added into it; if None a zeroed
        buffer is allocated.

    Returns:
    --------
    np.ndarray
        y
    """
    if not isinstance(A, (CSRMatrix, HLLMatrix)):
        raise TypeError(f"Unsupported matrix type: {type(A)}")
    if y is None:
        y = np.zeros(A.M, dtype=np.float64)
    if isinstance(A, CSRMatrix):
        return csr_matvec(A, x, y)
    return hll_matvec(A, x, y)
