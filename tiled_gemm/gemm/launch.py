"""Kernel argument packing shared by the GEMM versions."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Tuple

from tiled_gemm.device import Device, DeviceBuffer
from tiled_gemm.errors import DeviceOperationFailed, DimensionMismatch
from tiled_gemm.geometry import LaunchGeometry
from tiled_gemm.matrix import Matrix


@dataclass(frozen=True)
class GemmShape:
    num_a_rows: int
    num_a_columns: int
    num_b_rows: int
    num_b_columns: int
    num_c_rows: int
    num_c_columns: int

    @classmethod
    def from_operands(cls, a: Matrix, b: Matrix) -> "GemmShape":
        if a.columns != b.rows:
            raise DimensionMismatch(a.shape, b.shape)
        return cls(a.rows, a.columns, b.rows, b.columns, a.rows, b.columns)

    def as_args(self) -> Tuple[int, ...]:
        return (
            self.num_a_rows, self.num_a_columns,
            self.num_b_rows, self.num_b_columns,
            self.num_c_rows, self.num_c_columns,
        )


def launch_gemm(device: Device, kernels: Mapping[str, object], geometry: LaunchGeometry,
                a: DeviceBuffer, b: DeviceBuffer, c: DeviceBuffer, shape: GemmShape) -> None:
    """Dispatch the kernel matching device.backend; does not wait for it."""
    # the kernels index A by num_a_columns and B by num_b_rows along the same axis
    if shape.num_a_columns != shape.num_b_rows:
        raise DimensionMismatch(
            (shape.num_a_rows, shape.num_a_columns), (shape.num_b_rows, shape.num_b_columns)
        )
    kernel = kernels.get(device.backend)
    if kernel is None:
        raise DeviceOperationFailed("launch", f"no kernel for backend {device.backend!r}")
    device.launch(kernel, geometry, (a, b, c) + shape.as_args(), {"TILE_WIDTH": geometry.tile_width})
