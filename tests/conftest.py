from __future__ import annotations

import os

# numba reads this once at import; without a GPU the kernels run on its CUDA simulator
os.environ.setdefault("NUMBA_ENABLE_CUDASIM", "1")

import sys
from pathlib import Path

import pytest
import torch

repo_root = Path(__file__).resolve().parents[1]
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from tiled_gemm.config import GemmConfig
from tiled_gemm.device import NumbaDevice

requires_triton_device = pytest.mark.skipif(
    not (torch.cuda.is_available() or os.environ.get("TRITON_INTERPRET") == "1"),
    reason="requires CUDA or TRITON_INTERPRET=1",
)


@pytest.fixture
def numba_config() -> GemmConfig:
    return GemmConfig(backend="numba")


@pytest.fixture
def numba_device():
    device = NumbaDevice()
    yield device
    device.close()


@pytest.fixture
def generator() -> torch.Generator:
    return torch.Generator().manual_seed(1234)
