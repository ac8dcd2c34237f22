"""numba device: memory, launches, shared memory and synchronization."""

from __future__ import annotations

import logging
import threading

import numpy as np
import pytest
import torch
from numba import config as numba_settings, cuda, float32

from tiled_gemm.device import NumbaDevice
from tiled_gemm.errors import DeviceOperationFailed
from tiled_gemm.geometry import Dim3, LaunchGeometry


@cuda.jit
def copy_kernel(src, dst, n):
    i = cuda.grid(1)
    if i < n:
        dst[i] = src[i] * 2


@cuda.jit
def fill_kernel(dst, n, value):
    i = cuda.grid(1)
    if i < n:
        dst[i] = value


@cuda.jit
def reverse_in_block_kernel(src, dst, n):
    # every thread reads an element written by another thread of its block
    scratch = cuda.shared.array(shape=16, dtype=float32)
    tx = cuda.threadIdx.x
    i = cuda.blockIdx.x * 16 + tx
    if i < n:
        scratch[tx] = src[i]
    else:
        scratch[tx] = 0.0
    cuda.syncthreads()
    if i < n:
        dst[i] = scratch[15 - tx]


@cuda.jit
def failing_kernel(dst):
    if cuda.threadIdx.x == 3:
        raise FloatingPointError("injected kernel failure")


def as_factory(kernel):
    return lambda **meta: kernel


def test_allocate_copy_and_free(numba_device: NumbaDevice) -> None:
    buffer = numba_device.allocate(4)
    assert numba_device.live_buffers == 1
    assert numba_device.bytes_in_use == 16
    numba_device.copy_to_device(buffer, torch.tensor([1.0, 2.0, 3.0, 4.0]))
    assert numba_device.copy_to_host(buffer).tolist() == [1.0, 2.0, 3.0, 4.0]
    numba_device.free(buffer)
    assert numba_device.live_buffers == 0
    assert numba_device.bytes_in_use == 0


def test_double_free_fails(numba_device: NumbaDevice) -> None:
    buffer = numba_device.allocate(1)
    numba_device.free(buffer)
    with pytest.raises(DeviceOperationFailed) as excinfo:
        numba_device.free(buffer)
    assert excinfo.value.operation == "free"


def test_allocation_beyond_memory_limit_fails() -> None:
    with NumbaDevice(memory_limit_bytes=64) as device:
        device.allocate(10)
        with pytest.raises(DeviceOperationFailed) as excinfo:
            device.allocate(10)
        assert excinfo.value.operation == "allocate"
        assert "out of memory" in excinfo.value.diagnostic
        assert device.live_buffers == 1


def test_copy_size_mismatch_fails(numba_device: NumbaDevice) -> None:
    buffer = numba_device.allocate(3)
    with pytest.raises(DeviceOperationFailed) as excinfo:
        numba_device.copy_to_device(buffer, torch.zeros(4))
    assert excinfo.value.operation == "copy_to_device"


def test_launch_covers_every_index(numba_device: NumbaDevice) -> None:
    n = 37
    src = numba_device.allocate(n)
    dst = numba_device.allocate(n)
    numba_device.copy_to_device(src, torch.arange(n, dtype=torch.float32))
    geometry = LaunchGeometry(grid=Dim3(5), block=Dim3(8))
    numba_device.launch(as_factory(copy_kernel), geometry, (src, dst, n), {})
    numba_device.synchronize()
    assert numba_device.copy_to_host(dst).tolist() == [2.0 * i for i in range(n)]


def test_barrier_orders_shared_memory_writes_before_reads(numba_device: NumbaDevice) -> None:
    n = 64
    src = numba_device.allocate(n)
    dst = numba_device.allocate(n)
    numba_device.copy_to_device(src, torch.arange(n, dtype=torch.float32))
    numba_device.launch(as_factory(reverse_in_block_kernel), LaunchGeometry(Dim3(4), Dim3(16)), (src, dst, n), {})
    numba_device.synchronize()
    expected = np.arange(n, dtype=np.float32).reshape(4, 16)[:, ::-1].reshape(-1)
    assert numba_device.copy_to_host(dst).tolist() == expected.tolist()


def test_meta_reaches_the_kernel_factory(numba_device: NumbaDevice) -> None:
    seen = []

    def factory(**meta):
        seen.append(meta)
        return copy_kernel

    dst = numba_device.allocate(1)
    numba_device.launch(factory, LaunchGeometry(Dim3(1), Dim3(1)), (dst, dst, 1), {"TILE_WIDTH": 8})
    assert seen == [{"TILE_WIDTH": 8}]


def test_too_many_threads_per_block_fails_at_launch(numba_device: NumbaDevice) -> None:
    dst = numba_device.allocate(1)
    with pytest.raises(DeviceOperationFailed) as excinfo:
        numba_device.launch(as_factory(copy_kernel), LaunchGeometry(Dim3(1), Dim3(64, 32)), (dst, dst, 1), {})
    assert excinfo.value.operation == "launch"
    assert "invalid configuration" in excinfo.value.diagnostic


def test_launch_with_unknown_buffer_fails(numba_device: NumbaDevice) -> None:
    dst = numba_device.allocate(1)
    numba_device.free(dst)
    with pytest.raises(DeviceOperationFailed) as excinfo:
        numba_device.launch(as_factory(copy_kernel), LaunchGeometry(Dim3(1), Dim3(1)), (dst, dst, 1), {})
    assert excinfo.value.operation == "launch"


@pytest.mark.skipif(not numba_settings.ENABLE_CUDASIM, reason="kernel exceptions need the CUDA simulator or debug=True")
def test_kernel_exception_is_reported(numba_device: NumbaDevice) -> None:
    dst = numba_device.allocate(1)
    with pytest.raises(DeviceOperationFailed) as excinfo:
        numba_device.launch(as_factory(failing_kernel), LaunchGeometry(Dim3(2), Dim3(8)), (dst,), {})
        numba_device.synchronize()
    assert excinfo.value.operation in ("launch", "synchronize")
    assert "injected kernel failure" in excinfo.value.diagnostic


def test_concurrent_synchronize_waits_for_launched_work(numba_device: NumbaDevice) -> None:
    n = 4
    dst = numba_device.allocate(n)
    numba_device.copy_to_device(dst, torch.zeros(n))
    numba_device.launch(as_factory(fill_kernel), LaunchGeometry(Dim3(1), Dim3(n)), (dst, n, 7.0), {})

    other = threading.Thread(target=numba_device.synchronize)
    other.start()
    try:
        # another host thread synchronizing first must not release this one early
        numba_device.synchronize()
        assert numba_device.copy_to_host(dst).tolist() == [7.0] * n
    finally:
        other.join()


def test_close_reports_unsynchronized_failure(monkeypatch, caplog) -> None:
    device = NumbaDevice()

    def failed_synchronize():
        raise DeviceOperationFailed("synchronize", "unspecified launch failure")

    monkeypatch.setattr(device, "synchronize", failed_synchronize)
    with caplog.at_level(logging.ERROR, logger="tiled_gemm.device"):
        device.close()
    assert "launched work failed before close" in caplog.text
    assert "unspecified launch failure" in caplog.text
