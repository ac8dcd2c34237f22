"""Command-line driver: multiply matrix files or benchmark the kernels.

    python -m tiled_gemm.cli multiply A.txt B.txt -o C.txt --strategy tiled
    python -m tiled_gemm.cli bench --iterations 5
"""

from __future__ import annotations

import argparse
import dataclasses
import logging
import sys
from typing import List, Optional

from tiled_gemm.config import BACKENDS, GemmConfig
from tiled_gemm.device import get_device
from tiled_gemm.errors import DeviceOperationFailed, DimensionMismatch, MatrixFormatError
from tiled_gemm.gemm.host import Strategy, multiply
from tiled_gemm.matrix_io import read_matrix, write_matrix
from tiled_gemm.utils import benchmark_kernel, create_test_matrices, log_matrix, print_results, timer

logger = logging.getLogger("tiled_gemm")

EXIT_MISMATCH = 1
EXIT_USAGE = 2
EXIT_DEVICE = 3


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tiled-gemm", description=__doc__.splitlines()[0])
    parser.add_argument("-v", "--verbose", action="store_true", help="log dimensions, timings and matrices")
    parser.add_argument("--tile-width", type=int, default=None, help="tile width (default: 16 or $TILED_GEMM_TILE_WIDTH)")
    parser.add_argument("--backend", choices=BACKENDS, default=None, help="device backend")
    subparsers = parser.add_subparsers(dest="command", required=True)

    mul = subparsers.add_parser("multiply", help="multiply two matrix files")
    mul.add_argument("a", help="matrix file for A")
    mul.add_argument("b", help="matrix file for B")
    mul.add_argument("-o", "--output", default=None, help="where to write C (default: stdout)")
    mul.add_argument("--strategy", choices=[s.value for s in Strategy], default=Strategy.TILED.value)
    mul.add_argument("--expected", default=None, help="reference solution to compare C against")
    mul.add_argument("--rtol", type=float, default=1e-3)
    mul.add_argument("--atol", type=float, default=1e-4)

    bench = subparsers.add_parser("bench", help="time both strategies on random operands")
    bench.add_argument("--iterations", type=int, default=3)
    bench.add_argument("--warmup", type=int, default=1)
    bench.add_argument("--seed", type=int, default=0)
    return parser


def _config(args) -> GemmConfig:
    config = GemmConfig.from_env()
    overrides = {}
    if args.tile_width is not None:
        overrides["tile_width"] = args.tile_width
    if args.backend is not None:
        overrides["backend"] = args.backend
    config = dataclasses.replace(config, **overrides)
    config.validate()
    return config


def _run_multiply(args, config: GemmConfig) -> int:
    with timer("Importing data"):
        a = read_matrix(args.a)
        b = read_matrix(args.b)

    c = multiply(a, b, args.strategy, config)
    log_matrix(c, logger)

    if args.output is None:
        write_matrix(c, sys.stdout)
    else:
        write_matrix(c, args.output)

    if args.expected is not None:
        expected = read_matrix(args.expected)
        if not c.allclose(expected, rtol=args.rtol, atol=args.atol):
            logger.error("Solution does not match %s", args.expected)
            return EXIT_MISMATCH
        logger.info("Solution matches %s", args.expected)
    return 0


def _run_bench(args, config: GemmConfig) -> int:
    pairs = create_test_matrices(args.seed)
    with get_device(config) as device:
        def naive(a, b):
            return multiply(a, b, Strategy.NAIVE, config, device)

        def tiled(a, b):
            return multiply(a, b, Strategy.TILED, config, device)

        results = benchmark_kernel([naive, tiled], pairs, iterations=args.iterations, warmup=args.warmup)
    print(f"backend: {device.backend} ({device.name}), tile width {config.tile_width}")
    print_results(results)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = _config(args)
        if args.command == "multiply":
            return _run_multiply(args, config)
        return _run_bench(args, config)
    except (DimensionMismatch, MatrixFormatError, OSError) as exc:
        logger.error("%s", exc)
        return EXIT_USAGE
    except ValueError as exc:  # bad configuration
        logger.error("invalid configuration: %s", exc)
        return EXIT_USAGE
    except DeviceOperationFailed as exc:
        logger.error("device error: %s", exc)
        return EXIT_DEVICE


if __name__ == "__main__":
    sys.exit(main())
