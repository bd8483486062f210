# parallel.py
#
# Shared-memory SpMV. Work is split into contiguous row (CSR) or hack (HLL)
# ranges holding roughly equal numbers of stored entries; each worker writes
# only the output rows of its own range.

from concurrent.futures import Executor, ThreadPoolExecutor
from contextlib import contextmanager
from typing import Iterator, List, Optional, Tuple, Union

import numpy as np

from .csr import CSRMatrix
from .hll import HLLMatrix
from .serial import check_operands, csr_rows, hll_hacks


def balanced_partition(prefix: np.ndarray, workers: int) -> np.ndarray:
    """
    Split items into ``workers`` contiguous ranges of near-equal cost.

    Args:
        prefix: cost prefix sums, ``prefix[0] == 0`` and ``prefix[i+1] - prefix[i]``
            the cost of item ``i`` (``row_ptr`` or ``hack_ptr``)
        workers: number of ranges
    Returns:
        int64 array of ``workers + 1`` non-decreasing boundaries; worker ``w``
        owns items ``bounds[w]:bounds[w + 1]``
    """
    if workers < 1:
        raise ValueError(f"workers must be >= 1, got {workers}")
    prefix = np.asarray(prefix)
    n = prefix.shape[0] - 1
    total = prefix[-1] if n > 0 else 0

    bounds = np.empty(workers + 1, dtype=np.int64)
    bounds[0] = 0
    bounds[workers] = n
    targets = total * np.arange(1, workers) / workers
    candidates = np.searchsorted(prefix, targets, side="left")
    for w, (target, b) in enumerate(zip(targets, candidates), start=1):
        # Step back when the previous boundary lands closer to the target.
        if b > 0 and target - prefix[b - 1] <= prefix[b] - target:
            b -= 1
        bounds[w] = min(max(b, bounds[w - 1]), n)
    return bounds


def csr_partition(A: CSRMatrix, workers: int) -> np.ndarray:
    return balanced_partition(A.row_ptr, workers)


def hll_partition(A: HLLMatrix, workers: int) -> np.ndarray:
    # hack_ptr already holds the running sum of hack_size * max_nz.
    return balanced_partition(A.hack_ptr, workers)


def partition_costs(prefix: np.ndarray, bounds: np.ndarray) -> np.ndarray:
    """Cost assigned to each worker by ``bounds``."""
    prefix = np.asarray(prefix)
    return prefix[bounds[1:]] - prefix[bounds[:-1]]


@contextmanager
def worker_pool(workers: int) -> Iterator[ThreadPoolExecutor]:
    """Bounded pool for one measurement; joined on exit."""
    if workers < 1:
        raise ValueError(f"workers must be >= 1, got {workers}")
    pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"spmv-w{workers}")
    try:
        yield pool
    finally:
        pool.shutdown(wait=True)


def _ranges(bounds: np.ndarray) -> List[Tuple[int, int]]:
    return [(int(s), int(e)) for s, e in zip(bounds[:-1], bounds[1:]) if e > s]


def _run(executor: Optional[Executor], workers: int, jobs) -> None:
    if executor is None:
        with worker_pool(workers) as pool:
            _run(pool, workers, jobs)
        return
    futures = [executor.submit(fn, *args) for fn, args in jobs]
    for f in futures:
        f.result()


def csr_matvec_parallel(A: CSRMatrix, x: np.ndarray, y: np.ndarray, workers: int,
                        executor: Optional[Executor] = None) -> np.ndarray:
    check_operands(A, x, y)
    bounds = csr_partition(A, workers)
    jobs = [
        (csr_rows, (A.row_ptr, A.col_idx, A.values, x, y, start, end))
        for start, end in _ranges(bounds)
    ]
    _run(executor, workers, jobs)
    return y


def hll_matvec_parallel(A: HLLMatrix, x: np.ndarray, y: np.ndarray, workers: int,
                        executor: Optional[Executor] = None) -> np.ndarray:
    check_operands(A, x, y)
    bounds = hll_partition(A, workers)
    jobs = [
        (hll_hacks, (A.hack_ptr, A.max_nz, A.col_idx, A.values, A.hack_size, x, y, start, end))
        for start, end in _ranges(bounds)
    ]
    _run(executor, workers, jobs)
    return y


def matvec_parallel(A: Union[CSRMatrix, HLLMatrix], x: np.ndarray, y: np.ndarray,
                    workers: int, executor: Optional[Executor] = None) -> np.ndarray:
    """
    Multi-threaded SpMV, adding A @ x into y.

    Pass an ``executor`` from :func:`worker_pool` to reuse the same threads
    across repetitions; otherwise a pool is created and joined for this call.
    """
    if isinstance(A, CSRMatrix):
        return csr_matvec_parallel(A, x, y, workers, executor)
    if isinstance(A, HLLMatrix):
        return hll_matvec_parallel(A, x, y, workers, executor)
    raise TypeError(f"Unsupported matrix type: {type(A)}")
