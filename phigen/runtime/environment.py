# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Environment checks and the system snapshot logged at startup.

Fail fast on an interpreter that's too old instead of hitting a syntax
error halfway through loading a model.
"""

import platform
import sys
from typing import NamedTuple

import torch

MINIMUM_PYTHON = (3, 11)


class SystemInfo(NamedTuple):
    python_version: str
    platform: str
    architecture: str
    hostname: str
    torch_version: str
    cuda_available: bool
    cuda_device_count: int


def check_minimum_python(version: tuple[int, ...] | None = None) -> None:
    """
    Raises:
        RuntimeError: If the interpreter is older than 3.11.
    """
    major, minor = (version or sys.version_info)[:2]
    if (major, minor) < MINIMUM_PYTHON:
        raise RuntimeError(
            f"phigen requires Python >= {MINIMUM_PYTHON[0]}.{MINIMUM_PYTHON[1]}, "
            f"but you're running {major}.{minor}. Please upgrade."
        )


def get_system_info() -> SystemInfo:
    """Collect the interpreter, platform and accelerator details for logs."""
    cuda_available = torch.cuda.is_available()
    return SystemInfo(
        python_version=platform.python_version(),
        platform=platform.system(),
        architecture=platform.machine(),
        hostname=platform.node(),
        torch_version=torch.__version__,
        cuda_available=cuda_available,
        cuda_device_count=torch.cuda.device_count() if cuda_available else 0,
    )
