"""GEMM Optimization - V1: Simple GEMM

- One thread computes one element of C with a full-length dot product
- Every multiply reads A and B straight from global memory (no tiling)
- Threads of edge blocks that fall outside C do nothing
"""

import functools

import triton
import triton.language as tl
from numba import cuda, float32

from tiled_gemm.gemm.launch import launch_gemm

@triton.jit
def matmul_kernel(
  A_ptr,
  B_ptr,
  C_ptr,
  num_a_rows,
  num_a_cols,
  num_b_rows,
  num_b_cols,
  num_c_rows,
  num_c_cols,
  TILE_WIDTH: tl.constexpr,
):
  # a program is a TILE_WIDTH x TILE_WIDTH block of output elements
  pid_0 = tl.program_id(axis=0)
  pid_1 = tl.program_id(axis=1)

  rows = pid_0 * TILE_WIDTH + tl.arange(0, TILE_WIDTH)
  cols = pid_1 * TILE_WIDTH + tl.arange(0, TILE_WIDTH)

  row_mask = rows < num_c_rows
  col_mask = cols < num_c_cols

  acc = tl.zeros((TILE_WIDTH, TILE_WIDTH), dtype=tl.float32)
  for k in range(0, num_a_cols):
    a = tl.load(A_ptr + rows * num_a_cols + k, mask=row_mask, other=0.0)
    b = tl.load(B_ptr + k * num_b_cols + cols, mask=col_mask, other=0.0)
    acc += a[:, None] * b[None, :]

  c_ptrs = C_ptr + rows[:, None] * num_c_cols + cols[None, :]
  tl.store(c_ptrs, acc, mask=row_mask[:, None] & col_mask[None, :])


@functools.lru_cache(maxsize=None)
def numba_matmul_kernel(TILE_WIDTH):
  # the naive kernel takes its block shape from cuda.blockDim; TILE_WIDTH only keys the cache
  @cuda.jit
  def matmul_kernel_numba(
    A,
    B,
    C,
    num_a_rows,
    num_a_cols,
    num_b_rows,
    num_b_cols,
    num_c_rows,
    num_c_cols,
  ):
    row = cuda.blockIdx.x * cuda.blockDim.x + cuda.threadIdx.x
    col = cuda.blockIdx.y * cuda.blockDim.y + cuda.threadIdx.y

    if row < num_c_rows and col < num_c_cols:
      c_value = float32(0.0)
      for i in range(num_a_cols):
        c_value += A[row * num_a_cols + i] * B[i * num_b_cols + col]
      C[row * num_c_cols + col] = c_value

  return matmul_kernel_numba


KERNELS = {"triton": matmul_kernel, "numba": numba_matmul_kernel}

def matmul_v1(device, geometry, a, b, c, shape):
  launch_gemm(device, KERNELS, geometry, a, b, c, shape)
