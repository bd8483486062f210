# hll.py
#
# Hacked ELLPACK: rows are grouped into fixed-size hacks, and every row of a
# hack is padded to the hack's longest row.

from dataclasses import dataclass
from typing import Tuple

import numpy as np
from numba import njit

from .coo import CoordinateMatrix
from .config import HACK_SIZE


@njit
def _fill_hacks(row_ptr, cols, vals, hack_ptr, max_nz, hack_size, out_cols, out_vals):
    n_rows = row_ptr.shape[0] - 1
    for r in range(n_rows):
        h = r // hack_size
        width = max_nz[h]
        offset = hack_ptr[h] + (r % hack_size) * width
        start = row_ptr[r]
        count = row_ptr[r + 1] - start
        pad_col = 0
        for k in range(count):
            out_cols[offset + k] = cols[start + k]
            out_vals[offset + k] = vals[start + k]
            pad_col = cols[start + k]
        for k in range(count, width):
            out_cols[offset + k] = pad_col
            out_vals[offset + k] = 0.0


@dataclass(frozen=True)
class HLLMatrix:
    """
    Hack-blocked, padded sparse storage.

    Hack ``h`` covers rows ``h*hack_size`` up to ``(h+1)*hack_size`` and owns
    ``hack_size * max_nz[h]`` slots starting at ``hack_ptr[h]`` in the flat
    ``col_idx``/``values`` arrays, laid out row-major. Each row's real entries
    come first; the rest of its stride is padding with value 0.
    """

    shape: Tuple[int, int]
    nnz: int
    hack_size: int
    max_nz: np.ndarray
    hack_ptr: np.ndarray
    col_idx: np.ndarray
    values: np.ndarray
    name: str = ""

    @property
    def M(self) -> int:
        return self.shape[0]

    @property
    def N(self) -> int:
        return self.shape[1]

    @property
    def num_hacks(self) -> int:
        return int(self.max_nz.shape[0])

    @property
    def padded_size(self) -> int:
        return int(self.hack_ptr[-1])

    def hack(self, h: int) -> Tuple[np.ndarray, np.ndarray]:
        """Column and value blocks of hack ``h``, each shaped (hack_size, max_nz[h])."""
        start, end = self.hack_ptr[h], self.hack_ptr[h + 1]
        shape = (self.hack_size, int(self.max_nz[h]))
        return self.col_idx[start:end].reshape(shape), self.values[start:end].reshape(shape)

    def __repr__(self):
        return (
            f"HLLMatrix(name={self.name!r}, shape={self.shape}, nnz={self.nnz}, "
            f"hack_size={self.hack_size}, hacks={self.num_hacks}, padded={self.padded_size})"
        )


def build_hll(coo: CoordinateMatrix, hack_size: int = HACK_SIZE) -> HLLMatrix:
    """
    Convert a coordinate matrix to HLL with hacks of ``hack_size`` rows.

    A hack whose rows are all empty gets ``max_nz = 0`` and no storage. Rows of
    the last hack that lie past the matrix are stored as pure padding.
    """
    if hack_size < 1:
        raise ValueError(f"hack_size must be >= 1, got {hack_size}")

    row_ptr, cols, vals = coo.row_buckets()
    M = coo.shape[0]
    num_hacks = -(-M // hack_size)

    lengths = np.zeros(num_hacks * hack_size, dtype=np.int64)
    lengths[:M] = np.diff(row_ptr)
    max_nz = lengths.reshape(num_hacks, hack_size).max(axis=1, initial=0)

    hack_ptr = np.zeros(num_hacks + 1, dtype=np.int64)
    np.cumsum(hack_size * max_nz, out=hack_ptr[1:])

    out_cols = np.zeros(hack_ptr[-1], dtype=np.int64)
    out_vals = np.zeros(hack_ptr[-1], dtype=np.float64)
    _fill_hacks(row_ptr, cols, vals, hack_ptr, max_nz, hack_size, out_cols, out_vals)

    return HLLMatrix(
        coo.shape, int(coo.nnz), int(hack_size), max_nz, hack_ptr, out_cols, out_vals, coo.name
    )
