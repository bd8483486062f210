# gpu.py
#
# Device-offloaded SpMV. torch owns the device buffers and the host/device
# copies; the kernels are written in triton. Every call is one synchronous
# round trip: copy in, launch, synchronize, copy out.

import logging
from contextlib import contextmanager
from typing import Dict, Iterator, Union

import numpy as np
import torch
import triton
import triton.language as tl
from triton.errors import TritonError

from .csr import CSRMatrix
from .errors import DeviceError, DeviceUnavailableError
from .hll import HLLMatrix
from .serial import check_operands

logger = logging.getLogger(__name__)

# Mean row length above which a CSR row is handled by a wide block of lanes.
CSR_VECTOR_THRESHOLD = 32
CSR_SCALAR_BLOCK = 16
CSR_VECTOR_BLOCK = 128
HLL_BLOCK = 32


@triton.jit
def _csr_row_kernel(
    y_ptr, x_ptr,
    values_ptr, col_ptr, row_ptr,
    BLOCK_SIZE: tl.constexpr,
):
    row = tl.program_id(0)
    start = tl.load(row_ptr + row)
    end = tl.load(row_ptr + row + 1)

    acc = tl.zeros([BLOCK_SIZE], dtype=tl.float64)
    for i in range(start, end, BLOCK_SIZE):
        offsets = i + tl.arange(0, BLOCK_SIZE)
        mask = offsets < end
        cols = tl.load(col_ptr + offsets, mask=mask, other=0)
        vals = tl.load(values_ptr + offsets, mask=mask, other=0.0)
        acc += vals * tl.load(x_ptr + cols, mask=mask, other=0.0)

    tl.store(y_ptr + row, tl.load(y_ptr + row) + tl.sum(acc, axis=0))


@triton.jit
def _hll_row_kernel(
    y_ptr, x_ptr,
    values_ptr, col_ptr, hack_ptr, max_nz_ptr,
    HACK_SIZE: tl.constexpr,
    BLOCK_SIZE: tl.constexpr,
):
    row = tl.program_id(0)
    hack = row // HACK_SIZE
    width = tl.load(max_nz_ptr + hack)
    start = tl.load(hack_ptr + hack) + (row % HACK_SIZE) * width

    acc = tl.zeros([BLOCK_SIZE], dtype=tl.float64)
    for k in range(0, width, BLOCK_SIZE):
        offsets = k + tl.arange(0, BLOCK_SIZE)
        mask = offsets < width
        cols = tl.load(col_ptr + start + offsets, mask=mask, other=0)
        vals = tl.load(values_ptr + start + offsets, mask=mask, other=0.0)
        acc += vals * tl.load(x_ptr + cols, mask=mask, other=0.0)

    tl.store(y_ptr + row, tl.load(y_ptr + row) + tl.sum(acc, axis=0))


def gpu_available() -> bool:
    return torch.cuda.is_available()


def _device(device: str) -> torch.device:
    if not gpu_available():
        raise DeviceUnavailableError("No CUDA device available")
    return torch.device(device)


@contextmanager
def device_buffers(device: torch.device, **arrays: np.ndarray) -> Iterator[Dict[str, torch.Tensor]]:
    """Copy host arrays to ``device``; the buffers are dropped on every exit path."""
    buffers: Dict[str, torch.Tensor] = {}
    try:
        for name, arr in arrays.items():
            buffers[name] = torch.from_numpy(np.ascontiguousarray(arr)).to(device)
        yield buffers
    except (RuntimeError, TritonError) as exc:
        raise DeviceError(f"Device operation failed: {exc}") from exc
    finally:
        buffers.clear()


def _nonempty(arr: np.ndarray) -> np.ndarray:
    # Zero-length tensors have no storage for the kernel to point at; the
    # kernels never read these slots.
    return arr if arr.size else np.zeros(1, dtype=arr.dtype)


def csr_block_size(A: CSRMatrix) -> int:
    """Lanes per row: wide blocks once the mean row length passes the threshold."""
    if A.M == 0 or A.nnz / A.M <= CSR_VECTOR_THRESHOLD:
        return CSR_SCALAR_BLOCK
    return CSR_VECTOR_BLOCK


def csr_matvec_gpu(A: CSRMatrix, x: np.ndarray, y: np.ndarray, device: str = "cuda") -> np.ndarray:
    """
    Add A @ x into y on the GPU.

    Args:
        A: CSRMatrix (m, n)
        x: (n,) float64 host array
        y: (m,) float64 host array, updated in place
    Returns:
        y
    Raises:
        DeviceError: allocation, transfer or launch failed
    """
    check_operands(A, x, y)
    dev = _device(device)
    if A.M == 0:
        return y
    block = csr_block_size(A)
    logger.debug("csr launch: %d programs x %d lanes", A.M, block)
    with device_buffers(dev, row_ptr=A.row_ptr, col_idx=_nonempty(A.col_idx),
                        values=_nonempty(A.values), x=_nonempty(x), y=y) as d:
        _csr_row_kernel[(A.M,)](
            d["y"], d["x"], d["values"], d["col_idx"], d["row_ptr"],
            BLOCK_SIZE=block,
        )
        torch.cuda.synchronize(dev)
        y[:] = d["y"].cpu().numpy()
    return y


def hll_matvec_gpu(A: HLLMatrix, x: np.ndarray, y: np.ndarray, device: str = "cuda") -> np.ndarray:
    """
    Add A @ x into y on the GPU, one program per real row of each hack.

    Args:
        A: HLLMatrix (m, n)
        x: (n,) float64 host array
        y: (m,) float64 host array, updated in place
    Returns:
        y
    """
    check_operands(A, x, y)
    dev = _device(device)
    if A.M == 0:
        return y
    logger.debug("hll launch: %d programs, hack_size=%d", A.M, A.hack_size)
    with device_buffers(dev, hack_ptr=A.hack_ptr, max_nz=A.max_nz, col_idx=_nonempty(A.col_idx),
                        values=_nonempty(A.values), x=_nonempty(x), y=y) as d:
        _hll_row_kernel[(A.M,)](
            d["y"], d["x"], d["values"], d["col_idx"], d["hack_ptr"], d["max_nz"],
            HACK_SIZE=A.hack_size, BLOCK_SIZE=HLL_BLOCK,
        )
        torch.cuda.synchronize(dev)
        y[:] = d["y"].cpu().numpy()
    return y


def matvec_gpu(A: Union[CSRMatrix, HLLMatrix], x: np.ndarray, y: np.ndarray,
               device: str = "cuda") -> np.ndarray:
    if isinstance(A, CSRMatrix):
        return csr_matvec_gpu(A, x, y, device)
    if isinstance(A, HLLMatrix):
        return hll_matvec_gpu(A, x, y, device)
    raise TypeError(f"Unsupported matrix type: {type(A)}")
