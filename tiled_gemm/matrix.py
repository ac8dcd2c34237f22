"""Host-resident dense float32 matrices."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import torch


@dataclass(eq=False)
class Matrix:
    """A rows x columns matrix backed by a flat, row-major float32 buffer."""
    rows: int
    columns: int
    buffer: torch.Tensor

    def __post_init__(self):
        if self.rows < 1 or self.columns < 1:
            raise ValueError(f"matrix dimensions must be positive, got {self.rows}x{self.columns}")
        buffer = torch.as_tensor(self.buffer, dtype=torch.float32)
        buffer = buffer.detach().to("cpu").reshape(-1).contiguous()
        if buffer.numel() != self.rows * self.columns:
            raise ValueError(
                f"buffer holds {buffer.numel()} elements, "
                f"expected {self.rows}x{self.columns}={self.rows * self.columns}"
            )
        self.buffer = buffer

    @classmethod
    def from_tensor(cls, tensor: torch.Tensor) -> "Matrix":
        if tensor.dim() != 2:
            raise ValueError(f"expected a 2-D tensor, got shape {tuple(tensor.shape)}")
        rows, columns = tensor.shape
        return cls(rows, columns, tensor)

    @classmethod
    def from_rows(cls, rows: Sequence[Sequence[float]]) -> "Matrix":
        return cls.from_tensor(torch.tensor(rows, dtype=torch.float32))

    @classmethod
    def zeros(cls, rows: int, columns: int) -> "Matrix":
        return cls(rows, columns, torch.zeros(rows * columns, dtype=torch.float32))

    @classmethod
    def identity(cls, n: int) -> "Matrix":
        return cls.from_tensor(torch.eye(n, dtype=torch.float32))

    @classmethod
    def random(cls, rows: int, columns: int, generator: Optional[torch.Generator] = None) -> "Matrix":
        return cls(rows, columns, torch.randn(rows * columns, dtype=torch.float32, generator=generator))

    @property
    def shape(self) -> Tuple[int, int]:
        return (self.rows, self.columns)

    @property
    def size(self) -> int:
        return self.rows * self.columns

    def to_tensor(self) -> torch.Tensor:
        return self.buffer.view(self.rows, self.columns)

    def __getitem__(self, index: Tuple[int, int]) -> float:
        row, col = index
        if not (0 <= row < self.rows and 0 <= col < self.columns):
            raise IndexError(f"({row}, {col}) outside {self.rows}x{self.columns} matrix")
        return self.buffer[row * self.columns + col].item()

    def allclose(self, other: "Matrix", rtol: float = 1e-3, atol: float = 1e-4) -> bool:
        if self.shape != other.shape:
            return False
        return torch.allclose(self.buffer, other.buffer, rtol=rtol, atol=atol)

    def __repr__(self):
        return f"Matrix(rows={self.rows}, columns={self.columns})"
