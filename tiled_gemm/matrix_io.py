"""Plain-text matrix files.

The format is a header line "<rows> <columns>" followed by one line per row
of whitespace-separated values:

    2 3
    1.0 2.0 3.0
    4.0 5.0 6.0
"""

from __future__ import annotations

import io
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Iterator, Union

import torch

from tiled_gemm.errors import MatrixFormatError
from tiled_gemm.matrix import Matrix

Source = Union[str, Path, IO[str]]


@contextmanager
def _open(target: Source, mode: str) -> Iterator[IO[str]]:
    if isinstance(target, (str, Path)):
        with open(target, mode, encoding="utf-8") as handle:
            yield handle
    else:
        yield target


def read_matrix(source: Source) -> Matrix:
    with _open(source, "r") as handle:
        tokens = handle.read().split()
    name = getattr(source, "name", source)
    if len(tokens) < 2:
        raise MatrixFormatError(f"{name}: missing '<rows> <columns>' header")
    try:
        rows, columns = int(tokens[0]), int(tokens[1])
    except ValueError as exc:
        raise MatrixFormatError(f"{name}: bad header {tokens[0]!r} {tokens[1]!r}") from exc
    if rows < 1 or columns < 1:
        raise MatrixFormatError(f"{name}: dimensions must be positive, got {rows}x{columns}")

    values = tokens[2:]
    if len(values) != rows * columns:
        raise MatrixFormatError(f"{name}: expected {rows * columns} values for {rows}x{columns}, found {len(values)}")
    try:
        buffer = torch.tensor([float(value) for value in values], dtype=torch.float32)
    except ValueError as exc:
        raise MatrixFormatError(f"{name}: {exc}") from exc
    return Matrix(rows, columns, buffer)


def write_matrix(matrix: Matrix, sink: Source) -> None:
    with _open(sink, "w") as handle:
        handle.write(f"{matrix.rows} {matrix.columns}\n")
        for row in matrix.to_tensor().tolist():
            handle.write(" ".join(repr(float(value)) for value in row))
            handle.write("\n")


def format_matrix(matrix: Matrix) -> str:
    buffer = io.StringIO()
    write_matrix(matrix, buffer)
    return buffer.getvalue()
