# coo.py

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple, Union

import numpy as np
import scipy.io
import scipy.sparse as sp
from numba import njit

from .errors import IngestionError, MatrixFormatError

logger = logging.getLogger(__name__)


@njit
def _scatter(rows, cols, vals, row_ptr, out_cols, out_vals):
    cursor = row_ptr[:-1].copy()
    for e in range(rows.shape[0]):
        r = rows[e]
        slot = cursor[r]
        out_cols[slot] = cols[e]
        out_vals[slot] = vals[e]
        cursor[r] = slot + 1


@dataclass
class CoordinateMatrix:
    """Unordered (row, col, value) triples, 0-indexed, plus dimensions."""

    shape: Tuple[int, int]
    rows: np.ndarray
    cols: np.ndarray
    values: np.ndarray
    nnz: Optional[int] = None
    name: str = ""

    def __post_init__(self):
        self.shape = (int(self.shape[0]), int(self.shape[1]))
        self.rows = np.ascontiguousarray(self.rows, dtype=np.int64)
        self.cols = np.ascontiguousarray(self.cols, dtype=np.int64)
        self.values = np.ascontiguousarray(self.values, dtype=np.float64)
        if self.nnz is None:
            self.nnz = int(self.values.shape[0])

    @classmethod
    def from_dense(cls, dense: np.ndarray, name: str = "") -> "CoordinateMatrix":
        dense = np.asarray(dense)
        if dense.ndim != 2:
            raise ValueError(f"Expected a 2D array, got shape {dense.shape}")
        rows, cols = np.nonzero(dense)
        return cls(dense.shape, rows, cols, dense[rows, cols], name=name)

    @classmethod
    def from_scipy(cls, matrix: sp.spmatrix, name: str = "") -> "CoordinateMatrix":
        coo = sp.coo_matrix(matrix)
        return cls(coo.shape, coo.row, coo.col, coo.data, name=name)

    def validate(self) -> None:
        """Raise MatrixFormatError if the triples do not describe a valid M x N matrix."""
        M, N = self.shape
        if M < 0 or N < 0:
            raise MatrixFormatError(f"{self.name}: negative dimensions {self.shape}")
        n = self.values.shape[0]
        if self.rows.shape[0] != n or self.cols.shape[0] != n:
            raise MatrixFormatError(
                f"{self.name}: row/col/value lengths differ "
                f"({self.rows.shape[0]}, {self.cols.shape[0]}, {n})"
            )
        if n != self.nnz:
            raise MatrixFormatError(
                f"{self.name}: declared {self.nnz} nonzeros but found {n}"
            )
        if n == 0:
            return
        if self.rows.min() < 0 or self.rows.max() >= M:
            bad = self.rows[(self.rows < 0) | (self.rows >= M)][0]
            raise MatrixFormatError(f"{self.name}: row index {bad} outside [0, {M})")
        if self.cols.min() < 0 or self.cols.max() >= N:
            bad = self.cols[(self.cols < 0) | (self.cols >= N)][0]
            raise MatrixFormatError(f"{self.name}: column index {bad} outside [0, {N})")

    def row_buckets(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Group the entries by row.

        Returns ``(row_ptr, cols, values)`` where row ``r`` owns
        ``cols[row_ptr[r]:row_ptr[r + 1]]``. Columns are ascending inside each
        row; duplicate coordinates keep their input order.
        """
        self.validate()
        M = self.shape[0]
        counts = np.bincount(self.rows, minlength=M)
        row_ptr = np.zeros(M + 1, dtype=np.int64)
        np.cumsum(counts, out=row_ptr[1:])

        # Presorting by column makes the per-row cursor scatter emit sorted rows.
        order = np.argsort(self.cols, kind="stable")
        cols = np.empty(self.nnz, dtype=np.int64)
        vals = np.empty(self.nnz, dtype=np.float64)
        _scatter(self.rows[order], self.cols[order], self.values[order], row_ptr, cols, vals)
        return row_ptr, cols, vals

    def to_scipy(self) -> sp.csr_matrix:
        return sp.csr_matrix((self.values, (self.rows, self.cols)), shape=self.shape)


def read_matrix_market(path: Union[str, Path]) -> CoordinateMatrix:
    """
    Load a Matrix Market file into a CoordinateMatrix.

    Symmetric, skew-symmetric and hermitian files come back with their mirrored
    entries made explicit; pattern files get value 1.0 for every entry.
    """
    path = Path(path)
    try:
        info = scipy.io.mminfo(str(path))
        data = scipy.io.mmread(str(path))
    except (OSError, ValueError, RuntimeError) as exc:
        raise IngestionError(f"Cannot read matrix {path}: {exc}") from exc

    _, _, entries, fmt, field, symmetry = info
    if field == "complex":
        raise IngestionError(f"{path.name}: complex matrices are not supported")

    if sp.issparse(data):
        coo = sp.coo_matrix(data)
        if symmetry == "general" and coo.nnz != entries:
            raise IngestionError(
                f"{path.name}: header declares {entries} entries, read {coo.nnz}"
            )
        matrix = CoordinateMatrix(coo.shape, coo.row, coo.col, coo.data, name=path.name)
    else:
        matrix = CoordinateMatrix.from_dense(np.asarray(data), name=path.name)

    logger.debug(
        "Read %s: %dx%d, %s/%s/%s, %d nonzeros",
        path.name, matrix.shape[0], matrix.shape[1], fmt, field, symmetry, matrix.nnz,
    )
    return matrix
