# csr.py

from dataclasses import dataclass
from typing import Tuple

import numpy as np

from .coo import CoordinateMatrix


@dataclass(frozen=True)
class CSRMatrix:
    """
    Compressed sparse row storage.

    Row ``r`` owns ``col_idx[row_ptr[r]:row_ptr[r + 1]]`` and the matching
    slice of ``values``. Columns are ascending within a row.
    """

    shape: Tuple[int, int]
    nnz: int
    row_ptr: np.ndarray
    col_idx: np.ndarray
    values: np.ndarray
    name: str = ""

    @property
    def M(self) -> int:
        return self.shape[0]

    @property
    def N(self) -> int:
        return self.shape[1]

    def row(self, r: int) -> Tuple[np.ndarray, np.ndarray]:
        start, end = self.row_ptr[r], self.row_ptr[r + 1]
        return self.col_idx[start:end], self.values[start:end]

    def row_lengths(self) -> np.ndarray:
        return np.diff(self.row_ptr)

    def __repr__(self):
        return f"CSRMatrix(name={self.name!r}, shape={self.shape}, nnz={self.nnz})"


def build_csr(coo: CoordinateMatrix) -> CSRMatrix:
    """
    Convert a coordinate matrix to CSR.

    Args:
        coo: validated or unvalidated CoordinateMatrix
    Returns:
        CSRMatrix
    Raises:
        MatrixFormatError: out-of-range index or declared nnz mismatch
    """
    row_ptr, col_idx, values = coo.row_buckets()
    return CSRMatrix(coo.shape, int(coo.nnz), row_ptr, col_idx, values, coo.name)
