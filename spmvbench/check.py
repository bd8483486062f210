# check.py

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from .config import TOLERANCE


@dataclass(frozen=True)
class ConsistencyWarning:
    """Advisory raised when a kernel's output drifts from the baseline."""

    matrix: str
    kind: str
    workers: Optional[int]
    error: float
    tolerance: float

    def __str__(self):
        where = self.kind if self.workers is None else f"{self.kind} ({self.workers} workers)"
        return (
            f"{self.matrix}: {where} relative error {self.error:.3e} "
            f"exceeds tolerance {self.tolerance:.1e}"
        )


def relative_error(baseline: np.ndarray, candidate: np.ndarray) -> float:
    """||baseline - candidate|| / ||baseline||, or the absolute norm when the baseline is zero."""
    baseline = np.asarray(baseline, dtype=np.float64)
    candidate = np.asarray(candidate, dtype=np.float64)
    if baseline.shape != candidate.shape:
        raise ValueError(f"Shape mismatch: {baseline.shape} vs {candidate.shape}")
    diff = np.linalg.norm(baseline - candidate)
    scale = np.linalg.norm(baseline)
    return float(diff / scale) if scale > 0 else float(diff)


def check_consistency(baseline: np.ndarray, candidate: np.ndarray,
                      tolerance: float = TOLERANCE, matrix: str = "",
                      kind: str = "", workers: Optional[int] = None
                      ) -> Tuple[float, Optional[ConsistencyWarning]]:
    """Return the relative error and, if it exceeds ``tolerance``, a warning. Never raises on mismatch."""
    err = relative_error(baseline, candidate)
    if err > tolerance or not np.isfinite(err):
        return err, ConsistencyWarning(matrix, kind, workers, err, tolerance)
    return err, None
