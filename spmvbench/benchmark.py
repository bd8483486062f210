# benchmark.py
#
# Per-matrix measurement loop: build both formats, time every kernel against
# the serial CSR baseline, collect records, advisories and GPU failures.

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np

from . import gpu
from .check import ConsistencyWarning, check_consistency
from .config import BenchConfig
from .coo import CoordinateMatrix, read_matrix_market
from .csr import build_csr
from .errors import DeviceError, IngestionError, MatrixFormatError
from .hll import build_hll
from .parallel import csr_partition, hll_partition, matvec_parallel, partition_costs, worker_pool
from .performance import ComputationKind, PerformanceLog, PerformanceRecord
from .serial import matvec

logger = logging.getLogger(__name__)

Kernel = Callable[[np.ndarray], np.ndarray]


@dataclass
class MatrixResult:
    name: str
    nnz: int
    records: List[PerformanceRecord] = field(default_factory=list)
    warnings: List[ConsistencyWarning] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


@dataclass
class RunResult:
    log: PerformanceLog = field(default_factory=PerformanceLog)
    warnings: List[ConsistencyWarning] = field(default_factory=list)
    errors: Dict[str, List[str]] = field(default_factory=dict)
    failed: Dict[str, str] = field(default_factory=dict)
    exported: int = 0


def make_input_vector(n: int, seed: int) -> np.ndarray:
    return np.random.default_rng(seed).random(n)


def reset(y: np.ndarray) -> np.ndarray:
    """Zero an output buffer before a kernel adds into it."""
    y.fill(0.0)
    return y


def time_kernel(kernel: Kernel, out: np.ndarray, repetitions: int,
                baseline: Optional[np.ndarray] = None, tolerance: float = 1e-4,
                matrix: str = "", kind: Optional[ComputationKind] = None,
                workers: Optional[int] = None
                ) -> Tuple[float, Optional[float], List[ConsistencyWarning]]:
    """
    Average wall time of ``kernel`` over ``repetitions`` runs.

    One untimed warm-up run absorbs JIT compilation. ``out`` is zeroed before
    every run. With a ``baseline``, each run is checked and the worst relative
    error is returned together with any advisories.
    """
    reset(out)
    kernel(out)

    total = 0.0
    worst = None
    advisories = []
    for _ in range(repetitions):
        reset(out)
        t0 = time.perf_counter()
        kernel(out)
        total += time.perf_counter() - t0

        if baseline is not None:
            err, warning = check_consistency(
                baseline, out, tolerance, matrix, kind.value if kind else "", workers,
            )
            worst = err if worst is None else max(worst, err)
            if warning is not None:
                logger.warning("%s", warning)
                advisories.append(warning)
    return total / repetitions, worst, advisories


def benchmark_matrix(coo: CoordinateMatrix, config: BenchConfig) -> MatrixResult:
    """
    Run every kernel/format combination on one matrix.

    Raises:
        MatrixFormatError: the matrix cannot be converted; nothing is recorded
    """
    name = coo.name
    nnz = int(coo.nnz)
    csr = build_csr(coo)
    hll = build_hll(coo, config.hack_size)
    logger.info("%s: %dx%d, nnz=%d, %s", name, csr.M, csr.N, nnz, hll)

    result = MatrixResult(name, nnz)
    x = make_input_vector(csr.N, config.seed)
    y = np.zeros(csr.M, dtype=np.float64)
    z = np.zeros(csr.M, dtype=np.float64)

    def measure(kind, kernel, out, workers=None, baseline=None):
        mean, err, advisories = time_kernel(
            kernel, out, config.repetitions, baseline, config.tolerance, name, kind, workers,
        )
        record = PerformanceRecord(name, nnz, kind, mean, workers, err)
        logger.info("%s %s%s: %.6e s, %.3f GFLOPS%s", name, kind,
                    "" if workers is None else f" x{workers}", mean, record.gflops,
                    "" if err is None else f", rel err {err:.2e}")
        result.records.append(record)
        result.warnings.extend(advisories)

    measure(ComputationKind.SERIAL_CSR, lambda out: matvec(csr, x, out), y)
    measure(ComputationKind.SERIAL_HLL, lambda out: matvec(hll, x, out), z, baseline=y)

    for kind, A, partition in ((ComputationKind.PARALLEL_CSR, csr, csr_partition),
                               (ComputationKind.PARALLEL_HLL, hll, hll_partition)):
        prefix = A.row_ptr if A is csr else A.hack_ptr
        for workers in config.worker_counts:
            if logger.isEnabledFor(logging.DEBUG):
                costs = partition_costs(prefix, partition(A, workers))
                logger.debug("%s %s x%d: per-worker cost %s", name, kind, workers, costs.tolist())
            with worker_pool(workers) as pool:
                measure(kind,
                        lambda out, A=A, w=workers, p=pool: matvec_parallel(A, x, out, w, p),
                        z, workers=workers, baseline=y)

    if not config.use_gpu:
        logger.info("%s: GPU measurements disabled", name)
    elif not gpu.gpu_available():
        logger.info("%s: no CUDA device, skipping GPU measurements", name)
    else:
        for kind, A in ((ComputationKind.GPU_CSR, csr), (ComputationKind.GPU_HLL, hll)):
            try:
                measure(kind, lambda out, A=A: gpu.matvec_gpu(A, x, out), z, baseline=y)
            except DeviceError as exc:
                logger.error("%s %s failed: %s", name, kind, exc, exc_info=True)
                result.errors.append(f"{kind}: {exc}")
    return result


def matrix_files(directory: Path) -> List[Path]:
    directory = Path(directory)
    if not directory.is_dir():
        raise IngestionError(f"Matrix directory {directory} does not exist")
    return sorted(p for p in directory.iterdir() if p.is_file() and not p.name.startswith("."))


def run_directory(config: BenchConfig,
                  export: Optional[Callable[[List[PerformanceRecord]], object]] = None
                  ) -> RunResult:
    """
    Benchmark every matrix file in ``config.matrix_dir``, one at a time.

    A matrix that fails conversion is reported in ``failed`` and skipped; an
    unreadable file raises IngestionError and ends the run. With ``export``,
    each finished matrix's records are handed to it and then dropped, so they
    are already saved if a later file ends the run; without it they are
    collected in ``log``.
    """
    run = RunResult()
    files = matrix_files(config.matrix_dir)
    logger.info("Found %d matrices in %s", len(files), config.matrix_dir)
    for path in files:
        logger.info("Processing %s", path.name)
        coo = read_matrix_market(path)
        try:
            result = benchmark_matrix(coo, config)
        except MatrixFormatError as exc:
            logger.error("Skipping %s: %s", path.name, exc, exc_info=True)
            run.failed[path.name] = str(exc)
            continue
        finally:
            del coo
        if export is not None:
            export(result.records)
            run.exported += len(result.records)
        else:
            run.log.extend(result.records)
        run.warnings.extend(result.warnings)
        if result.errors:
            run.errors[result.name] = result.errors
    return run
