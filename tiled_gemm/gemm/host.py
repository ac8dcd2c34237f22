"""Host-side driver: C = A·B on a device with a chosen kernel.

multiply() owns every device buffer it allocates for the length of the call
and releases all of them before returning, on success and on failure.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import List, Optional, Union

from tiled_gemm.config import GemmConfig
from tiled_gemm.device import Device, DeviceBuffer, get_device
from tiled_gemm.gemm.launch import GemmShape
from tiled_gemm.gemm.v1 import matmul_v1
from tiled_gemm.gemm.v2 import matmul_v2
from tiled_gemm.geometry import compute_launch_geometry
from tiled_gemm.matrix import Matrix
from tiled_gemm.utils import timer

logger = logging.getLogger(__name__)


class Strategy(str, Enum):
    NAIVE = "naive"
    TILED = "tiled"


STRATEGIES = {
    Strategy.NAIVE: matmul_v1,
    Strategy.TILED: matmul_v2,
}


def multiply(a: Matrix, b: Matrix, strategy: Union[Strategy, str] = Strategy.TILED,
             config: Optional[GemmConfig] = None, device: Optional[Device] = None) -> Matrix:
    """Multiply a by b on device (or a device built from config).

    Raises DimensionMismatch before any device work when a.columns != b.rows,
    and DeviceOperationFailed when an allocation, copy or launch fails.
    """
    strategy = Strategy(strategy)
    config = config or GemmConfig()
    config.validate()
    shape = GemmShape.from_operands(a, b)

    logger.debug("The dimensions of A are %d x %d", shape.num_a_rows, shape.num_a_columns)
    logger.debug("The dimensions of B are %d x %d", shape.num_b_rows, shape.num_b_columns)
    logger.debug("The dimensions of C are %d x %d", shape.num_c_rows, shape.num_c_columns)

    if device is not None:
        return _multiply_on(device, a, b, shape, strategy, config)
    with get_device(config) as owned:
        return _multiply_on(owned, a, b, shape, strategy, config)


def _multiply_on(device: Device, a: Matrix, b: Matrix, shape: GemmShape,
                 strategy: Strategy, config: GemmConfig) -> Matrix:
    buffers: List[DeviceBuffer] = []
    try:
        with timer("Allocating device memory"):
            for num_elements in (a.size, b.size, shape.num_c_rows * shape.num_c_columns):
                buffers.append(device.allocate(num_elements))
        device_a, device_b, device_c = buffers

        with timer("Copying input memory to the device"):
            device.copy_to_device(device_a, a.buffer)
            device.copy_to_device(device_b, b.buffer)

        geometry = compute_launch_geometry(shape.num_c_rows, shape.num_c_columns, config.tile_width)
        logger.debug(
            "Launching %s kernel on %s: grid=%s block=%s",
            strategy.value, device.name, geometry.grid.xy, geometry.block.xy,
        )
        with timer(f"Performing {strategy.value} computation"):
            STRATEGIES[strategy](device, geometry, device_a, device_b, device_c, shape)
            device.synchronize()

        with timer("Copying output memory to the host"):
            result = device.copy_to_host(device_c)
    except BaseException:
        _release(device, buffers, strict=False)
        raise
    _release(device, buffers, strict=True)
    return Matrix(shape.num_c_rows, shape.num_c_columns, result)


def _release(device: Device, buffers: List[DeviceBuffer], strict: bool) -> None:
    """Free every buffer; re-raise the first failure only when strict."""
    first_failure = None
    with timer("Freeing device memory"):
        for buffer in reversed(buffers):
            try:
                device.free(buffer)
            except Exception as exc:
                logger.error("Failed to free buffer %d on %s: %s", buffer.handle, device.name, exc)
                if first_failure is None:
                    first_failure = exc
    if strict and first_failure is not None:
        raise first_failure
