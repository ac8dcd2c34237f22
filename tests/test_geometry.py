"""Launch geometry derivation."""

from __future__ import annotations

import pytest

from tiled_gemm.geometry import Dim3, cdiv, compute_launch_geometry


def test_cdiv_rounds_up() -> None:
    assert cdiv(16, 16) == 1
    assert cdiv(17, 16) == 2
    assert cdiv(1, 16) == 1
    assert cdiv(32, 16) == 2


def test_exact_multiple_of_tile_width() -> None:
    geometry = compute_launch_geometry(32, 64)
    assert geometry.grid == Dim3(2, 4)
    assert geometry.block == Dim3(16, 16)
    assert geometry.tile_width == 16
    assert geometry.threads_per_block == 256


def test_partial_edge_blocks_are_covered() -> None:
    geometry = compute_launch_geometry(17, 23)
    assert geometry.grid.xy == (2, 2)
    # every output cell has a thread
    assert geometry.grid.x * geometry.block.x >= 17
    assert geometry.grid.y * geometry.block.y >= 23


def test_single_element_output() -> None:
    geometry = compute_launch_geometry(1, 1)
    assert geometry.grid == Dim3(1, 1)
    assert geometry.total_threads == 256


def test_custom_tile_width() -> None:
    geometry = compute_launch_geometry(10, 3, tile_width=4)
    assert geometry.grid.xy == (3, 1)
    assert geometry.block == Dim3(4, 4)


@pytest.mark.parametrize("rows,columns,tile_width", [(0, 4, 16), (4, 0, 16), (4, 4, 0)])
def test_rejects_non_positive_extents(rows: int, columns: int, tile_width: int) -> None:
    with pytest.raises(ValueError):
        compute_launch_geometry(rows, columns, tile_width)


def test_dim3_fields_are_extents() -> None:
    # unset axes default to an extent of one, not an index of zero
    assert Dim3(2, 2) == Dim3(2, 2, 1)
    assert Dim3(2, 2).volume == 4
    assert Dim3(5).xy == (5, 1)
    assert compute_launch_geometry(3, 3).grid.z == 1
