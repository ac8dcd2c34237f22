import logging
import time
from contextlib import contextmanager

import torch

from tiled_gemm.matrix import Matrix

logger = logging.getLogger(__name__)

def create_test_matrices(seed=0):
    # multiples of the tile width and awkward sizes that leave partial edge tiles
    shapes = [(16, 16, 16), (17, 19, 23), (33, 20, 47), (64, 64, 64)]

    generator = torch.Generator().manual_seed(seed)
    pairs = []
    for M, K, N in shapes:
        pairs.append((Matrix.random(M, K, generator), Matrix.random(K, N, generator)))
    return pairs

def reference_matmul(a, b):
  """Triple-loop CPU product in float32, scanning k in order."""
  a_t = a.to_tensor()
  b_t = b.to_tensor()
  c = torch.zeros(a.rows, b.columns, dtype=torch.float32)
  for row in range(a.rows):
    for col in range(b.columns):
      acc = torch.tensor(0.0, dtype=torch.float32)
      for k in range(a.columns):
        acc += a_t[row, k] * b_t[k, col]
      c[row, col] = acc
  return Matrix.from_tensor(c)

@contextmanager
def timer(label):
  start = time.perf_counter()
  try:
    yield
  finally:
    logger.debug("%s: %.3f ms", label, (time.perf_counter() - start) * 1e3)

def log_matrix(matrix, log=logger, level=logging.DEBUG):
  if not log.isEnabledFor(level):
    return
  values = matrix.to_tensor().tolist()
  for row in values:
    log.log(level, " ".join(f"{value:g}" for value in row))

def benchmark_kernel(kernels, pairs, iterations=10, warmup=2):
  if not isinstance(kernels, list):
    kernels = [kernels]

  results = {k.__name__: {} for k in kernels}

  # Warmup
  for a, b in pairs:
    for kernel in kernels:
      for _ in range(warmup):
        kernel(a, b)

  for a, b in pairs:
    shape = f"({a.rows}, {a.columns}, {b.columns})"
    for kernel in kernels:
      times = []
      for _ in range(iterations):
        start = time.perf_counter()
        kernel(a, b)
        times.append((time.perf_counter() - start) * 1e3)
      results[kernel.__name__][shape] = sum(times) / len(times)

  return results

def print_results(results):
    # Get all unique shapes and kernel names
    shapes = []
    kernel_names = list(results.keys())
    for kernel_results in results.values():
        for shape in kernel_results:
            if shape not in shapes:
                shapes.append(shape)

    # Find maximum widths
    max_shape_width = max(len("(M, K, N)"), *(len(shape) for shape in shapes))

    # Print header
    header = "(M, K, N)".ljust(max_shape_width)
    for kernel in kernel_names:
        header += f" | {kernel:>10} (ms) | {'GFLOP/s':>10}"
    print(f"\n{header}")
    print("-" * len(header))

    # Print each matrix shape row
    for shape in shapes:
        M, K, N = (int(dim) for dim in shape.strip("()").split(","))
        flops = 2 * M * K * N

        row = shape.ljust(max_shape_width)
        for kernel in kernel_names:
            time_ms = results[kernel].get(shape, float('nan'))
            gflops = flops / (time_ms * 1e6) if time_ms > 0 else float('nan')
            row += f" | {time_ms:>15.3f} | {gflops:>10.3f}"
        print(row)
