"""Runtime configuration for GEMM launches."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

TILE_WIDTH = 16

BACKENDS = ("auto", "numba", "triton")


@dataclass(frozen=True)
class GemmConfig:
    """Configuration for a multiplication.

    tile_width trades scratch-memory footprint against global memory traffic:
    wider tiles reuse each loaded element more often but need more shared
    memory and threads per block, so fewer blocks fit on the device at once.
    """
    tile_width: int = TILE_WIDTH
    backend: str = "auto"
    memory_limit_bytes: int = 1 << 30  # numba only
    device: Optional[str] = None  # torch device for the triton backend

    @classmethod
    def from_env(cls, environ=None) -> "GemmConfig":
        env = os.environ if environ is None else environ
        defaults = cls()
        config = cls(
            tile_width=int(env.get("TILED_GEMM_TILE_WIDTH", defaults.tile_width)),
            backend=env.get("TILED_GEMM_BACKEND", defaults.backend).lower(),
            memory_limit_bytes=int(env.get("TILED_GEMM_MEMORY_LIMIT", defaults.memory_limit_bytes)),
            device=env.get("TILED_GEMM_DEVICE") or None,
        )
        config.validate()
        return config

    def validate(self) -> None:
        if self.tile_width < 1:
            raise ValueError(f"tile_width must be positive, got {self.tile_width}")
        if self.backend not in BACKENDS:
            raise ValueError(f"unknown backend {self.backend!r}; expected one of {', '.join(BACKENDS)}")
        if self.backend == "triton" and not is_triton_tile_width(self.tile_width):
            raise ValueError(f"triton backend needs a power-of-two tile_width >= 16, got {self.tile_width}")
        if self.memory_limit_bytes < 0:
            raise ValueError(f"memory_limit_bytes must be non-negative, got {self.memory_limit_bytes}")


def is_triton_tile_width(tile_width: int) -> bool:
    # tl.arange needs a power of two and tl.dot needs at least 16 per axis
    return tile_width >= 16 and tile_width & (tile_width - 1) == 0
