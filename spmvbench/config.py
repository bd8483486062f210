# config.py

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Sequence, Tuple

HACK_SIZE = 32
REPETITIONS = 5
TOLERANCE = 1e-4
SEED = 42


def parse_worker_counts(text: str) -> Tuple[int, ...]:
    """Parse a comma-separated worker sweep such as ``"1,2,4,8"``."""
    counts = []
    for part in text.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            n = int(part)
        except ValueError:
            raise ValueError(f"Invalid worker count {part!r}") from None
        if n < 1:
            raise ValueError(f"Worker count must be positive, got {n}")
        counts.append(n)
    if not counts:
        raise ValueError("Worker sweep is empty")
    return tuple(counts)


def default_worker_counts(max_workers: Optional[int] = None) -> Tuple[int, ...]:
    """Powers of two up to the host's parallelism, plus the host count itself."""
    if max_workers is None:
        max_workers = os.cpu_count() or 1
    counts = []
    n = 1
    while n <= max_workers:
        counts.append(n)
        n *= 2
    if counts[-1] != max_workers:
        counts.append(max_workers)
    return tuple(counts)


@dataclass(frozen=True)
class BenchConfig:
    matrix_dir: Path = Path("matrices")
    output_csv: Path = Path("performance.csv")
    hack_size: int = HACK_SIZE
    repetitions: int = REPETITIONS
    tolerance: float = TOLERANCE
    worker_counts: Tuple[int, ...] = field(default_factory=default_worker_counts)
    use_gpu: bool = True
    seed: int = SEED

    def __post_init__(self):
        if self.hack_size < 1:
            raise ValueError(f"hack_size must be >= 1, got {self.hack_size}")
        if self.repetitions < 1:
            raise ValueError(f"repetitions must be >= 1, got {self.repetitions}")
        if self.tolerance <= 0:
            raise ValueError(f"tolerance must be positive, got {self.tolerance}")
        if not self.worker_counts or any(w < 1 for w in self.worker_counts):
            raise ValueError(f"Invalid worker sweep {self.worker_counts}")
        object.__setattr__(self, "matrix_dir", Path(self.matrix_dir))
        object.__setattr__(self, "output_csv", Path(self.output_csv))
        object.__setattr__(self, "worker_counts", sweep(self.worker_counts))

    @classmethod
    def from_env(cls, environ=None, **overrides) -> "BenchConfig":
        """
        Build a config from ``SPMVBENCH_*`` environment variables.

        Explicit keyword overrides win over the environment; ``None`` overrides
        are ignored so argparse defaults can be passed straight through.
        """
        env = os.environ if environ is None else environ
        values = {}
        if "SPMVBENCH_MATRIX_DIR" in env:
            values["matrix_dir"] = Path(env["SPMVBENCH_MATRIX_DIR"])
        if "SPMVBENCH_OUTPUT" in env:
            values["output_csv"] = Path(env["SPMVBENCH_OUTPUT"])
        if "SPMVBENCH_HACK_SIZE" in env:
            values["hack_size"] = int(env["SPMVBENCH_HACK_SIZE"])
        if "SPMVBENCH_REPETITIONS" in env:
            values["repetitions"] = int(env["SPMVBENCH_REPETITIONS"])
        if "SPMVBENCH_THREADS" in env:
            values["worker_counts"] = parse_worker_counts(env["SPMVBENCH_THREADS"])
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


def sweep(counts: Sequence[int]) -> Tuple[int, ...]:
    """Deduplicate a worker sweep while keeping its order."""
    return tuple(dict.fromkeys(int(c) for c in counts))
