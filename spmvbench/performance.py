# performance.py

import csv
import enum
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, Optional, Tuple, Union

logger = logging.getLogger(__name__)

CSV_FIELDS = ("matrix", "nnz", "computation", "workers", "mean_time", "flops", "relative_error")


class ComputationKind(enum.Enum):
    SERIAL_CSR = "serial-csr"
    SERIAL_HLL = "serial-hll"
    PARALLEL_CSR = "parallel-csr"
    PARALLEL_HLL = "parallel-hll"
    GPU_CSR = "gpu-csr"
    GPU_HLL = "gpu-hll"

    def __str__(self):
        return self.value


def flops(nnz: int, seconds: float) -> float:
    """One multiply and one add per stored nonzero."""
    return 2.0 * nnz / seconds if seconds > 0 else 0.0


@dataclass(frozen=True)
class PerformanceRecord:
    matrix: str
    nnz: int
    kind: ComputationKind
    mean_time: float
    workers: Optional[int] = None
    relative_error: Optional[float] = None

    @property
    def flops(self) -> float:
        return flops(self.nnz, self.mean_time)

    @property
    def gflops(self) -> float:
        return self.flops / 1e9

    def as_row(self) -> dict:
        return {
            "matrix": self.matrix,
            "nnz": self.nnz,
            "computation": self.kind.value,
            "workers": "" if self.workers is None else self.workers,
            "mean_time": f"{self.mean_time:.9e}",
            "flops": f"{self.flops:.6e}",
            "relative_error": "" if self.relative_error is None else f"{self.relative_error:.6e}",
        }


class PerformanceLog:
    """Append-only, execution-ordered list of performance records."""

    def __init__(self, records: Iterable[PerformanceRecord] = ()):
        self._records = []
        self.extend(records)

    def append(self, record: PerformanceRecord) -> None:
        if not isinstance(record, PerformanceRecord):
            raise TypeError(f"Expected PerformanceRecord, got {type(record)}")
        self._records.append(record)

    def extend(self, records: Iterable[PerformanceRecord]) -> None:
        for record in records:
            self.append(record)

    @property
    def records(self) -> Tuple[PerformanceRecord, ...]:
        return tuple(self._records)

    def __iter__(self) -> Iterator[PerformanceRecord]:
        return iter(tuple(self._records))

    def __len__(self):
        return len(self._records)

    def __repr__(self):
        return f"PerformanceLog({len(self._records)} records)"


def _open_csv(path: Path, mode: str):
    if path.parent and not path.parent.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
    return open(path, mode, newline="")


def write_csv(records: Iterable[PerformanceRecord], path: Union[str, Path]) -> int:
    """Write records to ``path`` in order. Returns the number of rows written."""
    path = Path(path)
    n = 0
    with _open_csv(path, "w") as f:
        writer = csv.DictWriter(f, fieldnames=CSV_FIELDS)
        writer.writeheader()
        for record in records:
            writer.writerow(record.as_row())
            n += 1
    logger.info("Wrote %d performance records to %s", n, path)
    return n


class CsvExporter:
    """
    Incremental CSV export, one batch of records per finished matrix.

    The first batch truncates ``path`` and writes the header; later batches
    are appended, so rows already exported survive a later fatal error.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self.started = False
        self.rows = 0

    def export(self, records: Iterable[PerformanceRecord]) -> int:
        n = 0
        with _open_csv(self.path, "a" if self.started else "w") as f:
            writer = csv.DictWriter(f, fieldnames=CSV_FIELDS)
            if not self.started:
                writer.writeheader()
                self.started = True
            for record in records:
                writer.writerow(record.as_row())
                n += 1
        self.rows += n
        logger.debug("Exported %d performance records to %s", n, self.path)
        return n

    def __call__(self, records: Iterable[PerformanceRecord]) -> int:
        return self.export(records)
