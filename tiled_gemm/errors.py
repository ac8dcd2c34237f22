"""Exceptions raised by the GEMM host code and devices."""

from __future__ import annotations


class GemmError(Exception):
    """Base class for every error raised by tiled_gemm."""


class DimensionMismatch(GemmError, ValueError):
    """A.columns and B.rows disagree, so A·B is undefined."""

    def __init__(self, a_shape, b_shape):
        self.a_shape = tuple(a_shape)
        self.b_shape = tuple(b_shape)
        super().__init__(
            f"cannot multiply {self.a_shape[0]}x{self.a_shape[1]} by "
            f"{self.b_shape[0]}x{self.b_shape[1]}: shared dimension "
            f"{self.a_shape[1]} != {self.b_shape[0]}"
        )


class DeviceOperationFailed(GemmError, RuntimeError):
    """A device allocation, transfer, launch or execution failed."""

    def __init__(self, operation: str, diagnostic: str):
        self.operation = operation
        self.diagnostic = diagnostic
        super().__init__(f"{operation} failed: {diagnostic}")


class MatrixFormatError(GemmError, ValueError):
    """A matrix source could not be parsed."""
