"""Launch geometry: how an output matrix is split into blocks and threads."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

from tiled_gemm.config import TILE_WIDTH


def cdiv(a: int, b: int) -> int:
    return (a + b - 1) // b


@dataclass(frozen=True)
class Dim3:
    x: int
    y: int = 1
    z: int = 1

    @property
    def volume(self) -> int:
        return self.x * self.y * self.z

    @property
    def xy(self) -> Tuple[int, int]:
        return (self.x, self.y)


@dataclass(frozen=True)
class LaunchGeometry:
    """Grid-of-blocks and threads-per-block extents for one launch.

    grid.x walks blocks of output rows and grid.y blocks of output columns.
    """
    grid: Dim3
    block: Dim3

    @property
    def tile_width(self) -> int:
        return self.block.x

    @property
    def threads_per_block(self) -> int:
        return self.block.volume

    @property
    def total_threads(self) -> int:
        return self.grid.volume * self.block.volume


def compute_launch_geometry(rows: int, columns: int, tile_width: int = TILE_WIDTH) -> LaunchGeometry:
    if tile_width < 1:
        raise ValueError(f"tile_width must be positive, got {tile_width}")
    if rows < 1 or columns < 1:
        raise ValueError(f"output extent must be positive, got {rows}x{columns}")
    return LaunchGeometry(
        grid=Dim3(cdiv(rows, tile_width), cdiv(columns, tile_width)),
        block=Dim3(tile_width, tile_width),
    )
