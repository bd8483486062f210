"""
spmvbench: CSR and HLL sparse matrix-vector multiplication benchmarks
"""

from .check import ConsistencyWarning, check_consistency, relative_error
from .config import BenchConfig
from .coo import CoordinateMatrix, read_matrix_market
from .csr import CSRMatrix, build_csr
from .errors import (
    DeviceError,
    DeviceUnavailableError,
    IngestionError,
    MatrixFormatError,
    SpmvBenchError,
)
from .hll import HLLMatrix, build_hll
from .parallel import balanced_partition, matvec_parallel
from .performance import ComputationKind, CsvExporter, PerformanceLog, PerformanceRecord, write_csv
from .serial import matvec

__version__ = "0.1.0"
