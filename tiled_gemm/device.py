"""Device memory and kernel launch interface.

A Device owns global memory (DeviceBuffer handles), copies data between the
host and that memory, and launches kernels over a LaunchGeometry. Launches
are asynchronous; callers block on synchronize() before reading results.
"""

from __future__ import annotations

import abc
import itertools
import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Sequence

import numpy as np
import torch
from numba import cuda

from tiled_gemm.config import GemmConfig, is_triton_tile_width
from tiled_gemm.errors import DeviceOperationFailed
from tiled_gemm.geometry import LaunchGeometry

logger = logging.getLogger(__name__)

FLOAT32_BYTES = 4
MAX_THREADS_PER_BLOCK = 1024


@dataclass(frozen=True)
class DeviceBuffer:
    handle: int
    num_elements: int
    device: str

    @property
    def nbytes(self) -> int:
        return self.num_elements * FLOAT32_BYTES


class Device(abc.ABC):
    """Base class for devices; keeps the table of live allocations."""

    backend: str = ""

    def __init__(self, name: str):
        self.name = name
        self.allocation_count = 0
        self._memory: Dict[int, Any] = {}
        self._handles = itertools.count(1)
        self._lock = threading.Lock()

    # memory

    def allocate(self, num_elements: int) -> DeviceBuffer:
        if num_elements < 1:
            raise DeviceOperationFailed("allocate", f"invalid allocation size {num_elements}")
        with self._lock:
            storage = self._allocate_storage(num_elements)
            buffer = DeviceBuffer(next(self._handles), num_elements, self.name)
            self._memory[buffer.handle] = storage
            self.allocation_count += 1
        logger.debug("%s: allocated buffer %d (%d bytes)", self.name, buffer.handle, buffer.nbytes)
        return buffer

    def free(self, buffer: DeviceBuffer) -> None:
        try:
            self._wait_for_stream()
        finally:
            with self._lock:
                storage = self._memory.pop(buffer.handle, None)
        if storage is None:
            raise DeviceOperationFailed("free", f"buffer {buffer.handle} is not allocated on {self.name}")
        logger.debug("%s: freed buffer %d", self.name, buffer.handle)

    def copy_to_device(self, buffer: DeviceBuffer, host: torch.Tensor) -> None:
        self._wait_for_stream()
        storage = self._storage("copy_to_device", buffer)
        if host.numel() != buffer.num_elements:
            raise DeviceOperationFailed(
                "copy_to_device",
                f"host tensor has {host.numel()} elements, buffer {buffer.handle} holds {buffer.num_elements}",
            )
        self._write(storage, host.detach().reshape(-1))

    def copy_to_host(self, buffer: DeviceBuffer) -> torch.Tensor:
        self._wait_for_stream()
        return self._read(self._storage("copy_to_host", buffer))

    @property
    def live_buffers(self) -> int:
        with self._lock:
            return len(self._memory)

    @property
    def bytes_in_use(self) -> int:
        with self._lock:
            return sum(self._nbytes(storage) for storage in self._memory.values())

    def _storage(self, operation: str, buffer: DeviceBuffer):
        with self._lock:
            storage = self._memory.get(buffer.handle)
        if storage is None:
            raise DeviceOperationFailed(operation, f"buffer {buffer.handle} is not allocated on {self.name}")
        return storage

    def _resolve(self, args: Sequence[Any]):
        return [self._storage("launch", arg) if isinstance(arg, DeviceBuffer) else arg for arg in args]

    def _wait_for_stream(self) -> None:
        # memory operations are ordered after previously launched kernels,
        # like cudaMemcpy and cudaFree on the default stream
        self.synchronize()

    # execution

    @abc.abstractmethod
    def launch(self, kernel, geometry: LaunchGeometry, args: Sequence[Any], meta: Mapping[str, Any]) -> None:
        """Dispatch kernel over geometry and return without waiting for it."""

    @abc.abstractmethod
    def synchronize(self) -> None:
        """Block until every launched kernel has finished."""

    def close(self) -> None:
        # launched work that was never synchronized still reports its failure
        try:
            self.synchronize()
        except DeviceOperationFailed as exc:
            logger.error("%s: launched work failed before close: %s", self.name, exc)

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    # storage hooks

    @abc.abstractmethod
    def _allocate_storage(self, num_elements: int):
        """Called with self._lock held."""

    @abc.abstractmethod
    def _write(self, storage, host: torch.Tensor) -> None:
        ...

    @abc.abstractmethod
    def _read(self, storage) -> torch.Tensor:
        ...

    @abc.abstractmethod
    def _nbytes(self, storage) -> int:
        ...


class TorchDevice(Device):
    """Global memory as torch tensors, kernels compiled by Triton."""

    backend = "triton"

    def __init__(self, device: Optional[str] = None):
        if device is None:
            device = "cuda" if torch.cuda.is_available() else "cpu"
        self.torch_device = torch.device(device)
        super().__init__(str(self.torch_device))

    def _allocate_storage(self, num_elements):
        try:
            return torch.empty(num_elements, dtype=torch.float32, device=self.torch_device)
        except RuntimeError as exc:  # includes torch.cuda.OutOfMemoryError
            raise DeviceOperationFailed("allocate", str(exc)) from exc

    def _write(self, storage, host):
        try:
            storage.copy_(host.to(torch.float32))
        except RuntimeError as exc:
            raise DeviceOperationFailed("copy_to_device", str(exc)) from exc

    def _read(self, storage):
        try:
            return storage.to("cpu", copy=True)
        except RuntimeError as exc:
            raise DeviceOperationFailed("copy_to_host", str(exc)) from exc

    def _nbytes(self, storage):
        return storage.numel() * storage.element_size()

    def launch(self, kernel, geometry, args, meta):
        grid = geometry.grid.xy
        try:
            kernel[grid](*self._resolve(args), **meta)
        except DeviceOperationFailed:
            raise
        except Exception as exc:
            raise DeviceOperationFailed("launch", f"{type(exc).__name__}: {exc}") from exc

    def synchronize(self):
        if self.torch_device.type != "cuda":
            return
        try:
            torch.cuda.synchronize(self.torch_device)
        except RuntimeError as exc:
            raise DeviceOperationFailed("synchronize", str(exc)) from exc


class NumbaDevice(Device):
    """Global memory as numba device arrays, per-thread kernels from @cuda.jit.

    Runs on a CUDA GPU, or on the host under numba's CUDA simulator
    (NUMBA_ENABLE_CUDASIM=1). Kernels are passed as factories: kernel(**meta)
    returns the @cuda.jit kernel specialized for the compile-time constants in
    meta, such as the shared-memory tile width.
    """

    backend = "numba"

    def __init__(self, memory_limit_bytes: int = 1 << 30, name: str = "numba:0"):
        super().__init__(name)
        self.memory_limit_bytes = memory_limit_bytes

    def _allocate_storage(self, num_elements):
        nbytes = num_elements * FLOAT32_BYTES
        in_use = sum(self._nbytes(array) for array in self._memory.values())
        if in_use + nbytes > self.memory_limit_bytes:
            raise DeviceOperationFailed(
                "allocate",
                f"out of memory: requested {nbytes} bytes with {in_use} of {self.memory_limit_bytes} in use",
            )
        try:
            return cuda.device_array(num_elements, dtype=np.float32)
        except Exception as exc:  # CudaSupportError, CudaAPIError
            raise DeviceOperationFailed("allocate", f"{type(exc).__name__}: {exc}") from exc

    def _write(self, storage, host):
        try:
            storage.copy_to_device(host.to("cpu", torch.float32).numpy())
        except Exception as exc:
            raise DeviceOperationFailed("copy_to_device", f"{type(exc).__name__}: {exc}") from exc

    def _read(self, storage):
        try:
            return torch.from_numpy(storage.copy_to_host())
        except Exception as exc:
            raise DeviceOperationFailed("copy_to_host", f"{type(exc).__name__}: {exc}") from exc

    def _nbytes(self, storage):
        return storage.size * storage.dtype.itemsize

    def launch(self, kernel, geometry, args, meta):
        block = geometry.block
        if min(geometry.grid.x, geometry.grid.y, block.x, block.y) < 1 or block.volume > MAX_THREADS_PER_BLOCK:
            raise DeviceOperationFailed(
                "launch",
                f"invalid configuration argument: grid={geometry.grid.xy} block={block.xy}, "
                f"at most {MAX_THREADS_PER_BLOCK} threads per block",
            )
        try:
            kernel(**meta)[geometry.grid.xy, block.xy](*self._resolve(args))
        except DeviceOperationFailed:
            raise
        except Exception as exc:
            raise DeviceOperationFailed("launch", f"{type(exc).__name__}: {exc}") from exc

    def synchronize(self):
        # the driver serializes this per context, so concurrent callers all
        # return only after the queued kernels finished
        try:
            cuda.synchronize()
        except Exception as exc:
            raise DeviceOperationFailed("synchronize", f"{type(exc).__name__}: {exc}") from exc


def get_device(config: Optional[GemmConfig] = None) -> Device:
    config = config or GemmConfig()
    backend = config.backend
    if backend == "auto":
        use_triton = torch.cuda.is_available() and is_triton_tile_width(config.tile_width)
        backend = "triton" if use_triton else "numba"
    if backend == "triton":
        return TorchDevice(config.device)
    return NumbaDevice(memory_limit_bytes=config.memory_limit_bytes)
