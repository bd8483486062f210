"""Exception hierarchy for spmvbench."""


class SpmvBenchError(Exception):
    """Base class for every error raised by spmvbench."""


class IngestionError(SpmvBenchError):
    """A matrix file could not be read or decoded. Aborts the whole run."""


class MatrixFormatError(SpmvBenchError):
    """A coordinate matrix failed validation while building CSR or HLL."""


class DeviceError(SpmvBenchError):
    """Device allocation, transfer or launch failed."""


class DeviceUnavailableError(DeviceError):
    """No CUDA device is visible to torch."""
