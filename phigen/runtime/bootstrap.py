# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Process bootstrap.

The one-time setup every command runs before loading a model:
  1. Validate the environment (Python version)
  2. Seed every source of randomness
  3. Initialize the logger

Seeding here is what makes seed=None requests reproducible across runs
of the same command: the per-request seed is drawn from the seeded
process RNG.
"""

import os
import random
from pathlib import Path

import torch

from phigen.config.schema import GlobalConfig
from phigen.logging.logger import get_logger, set_package_log_level
from phigen.runtime.environment import check_minimum_python, get_system_info
from phigen.utils.paths import resolve_artifact_path


def set_deterministic_seed(seed: int) -> None:
    """
    Lock down every source of randomness to the given seed.

    This sets:
      - Python's random module seed (also the source of per-request seeds
        when a request leaves seed unset)
      - PYTHONHASHSEED environment variable (hash randomization)
      - PyTorch CPU and CUDA seeds
      - cuDNN deterministic mode, when CUDA is available

    Args:
        seed: Integer seed value. Must be >= 0.
    """
    random.seed(seed)
    os.environ["PYTHONHASHSEED"] = str(seed)
    torch.manual_seed(seed)
    if torch.cuda.is_available():
        torch.cuda.manual_seed_all(seed)
        torch.backends.cudnn.deterministic = True
        torch.backends.cudnn.benchmark = False


def bootstrap(config: GlobalConfig, project_root: Path | None = None) -> None:
    """
    Run the full bootstrap sequence.

    Called once at the start of every CLI command. It puts the process
    into a known state: environment checked, seeds set, logging configured
    for the whole package, startup info logged. Loggers that modules built
    at import time are re-levelled to the configured level.

    Args:
        config: The validated global configuration.
        project_root: Base for a relative log_file. Defaults to the
            working directory.

    Raises:
        RuntimeError: The running Python is older than phigen supports.
        OSError: The log file's directory can't be created.
    """
    check_minimum_python()
    set_deterministic_seed(config.seed)

    log_file = None
    if config.log_file is not None:
        log_file = resolve_artifact_path(project_root or Path.cwd(), config.log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)

    logger = get_logger("phigen", log_level=config.log_level, log_file=log_file)
    set_package_log_level(config.log_level)

    system_info = get_system_info()
    logger.info(
        "phigen bootstrap complete",
        extra={
            "project": config.project_name,
            "seed": config.seed,
            "python_version": system_info.python_version,
            "torch_version": system_info.torch_version,
            "cuda_available": system_info.cuda_available,
        },
    )
