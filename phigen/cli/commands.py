# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Subcommand handlers for the phigen CLI.

Each handler takes the parsed argparse namespace and returns an exit
code. Diagnostics go through the structured logger (stderr); the only
thing written to stdout is generated text.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from phigen.cli.exit_codes import CONFIG_ERROR, RUNTIME_ERROR, SUCCESS, USER_ERROR, VALIDATION_ERROR
from phigen.config.exceptions import ConfigError
from phigen.config.loader import load_config
from phigen.config.schema import PhigenConfig, RuntimeConfig
from phigen.logging.logger import get_logger, set_package_log_level
from phigen.runtime.bootstrap import bootstrap, set_deterministic_seed
from phigen.serving.errors import ComputeError, GenerationError
from phigen.serving.generation.core import GenerationConfig
from phigen.utils.paths import resolve_project_root

if TYPE_CHECKING:
    from phigen.serving.engine.core import InferenceEngine


def _load_and_bootstrap(
    args: argparse.Namespace,
    command_name: str,
) -> tuple[int, PhigenConfig | None, logging.Logger]:
    """
    Shared setup for every command: load config, run bootstrap.

    Returns (exit_code, config, logger). Anything but SUCCESS means setup
    failed and the caller should return that code straight away.
    """
    logger = get_logger(f"phigen.cli.{command_name}", log_level=args.log_level or "INFO")

    config = None
    if args.config is not None:
        try:
            config = load_config(Path(args.config))
        except ConfigError as err:
            logger.error(
                "Configuration error",
                extra={"command": command_name, "error": str(err)},
            )
            return CONFIG_ERROR, None, logger

    if config is not None:
        bootstrap(config.global_config, project_root=_project_root(args))
    else:
        logger.debug(
            "No config provided, running with defaults",
            extra={"command": command_name},
        )

    # The command line wins over the config file.
    if args.log_level is not None:
        set_package_log_level(args.log_level)

    if args.seed is not None:
        set_deterministic_seed(args.seed)

    return SUCCESS, config, logger


def _project_root(args: argparse.Namespace) -> Path:
    """Relative artifact paths resolve against the project the config lives in."""
    if args.config is not None:
        return resolve_project_root(Path(args.config).resolve().parent)
    return resolve_project_root()


def build_generation_config(runtime_cfg: RuntimeConfig, args: argparse.Namespace) -> GenerationConfig:
    """
    Merge the runtime section's generation defaults with CLI overrides.

    Raises:
        ConfigValidationError: The merged options are invalid.
    """

    def pick(name: str) -> object:
        value = getattr(args, name, None)
        return getattr(runtime_cfg, name) if value is None else value

    return GenerationConfig(
        max_tokens=pick("max_tokens"),
        temperature=pick("temperature"),
        top_k=pick("top_k"),
        top_p=pick("top_p"),
        repetition_penalty=pick("repetition_penalty"),
        repetition_window=runtime_cfg.repetition_window,
        stop_strings=pick("stop_strings"),
        stop_mode=pick("stop_mode"),
        seed=pick("seed"),
    )


def handle_generate(args: argparse.Namespace) -> int:
    """Generate text from a prompt, streaming it to stdout as it's produced."""
    exit_code, config, logger = _load_and_bootstrap(args, "generate")
    if exit_code != SUCCESS:
        return exit_code

    if config is None or config.model is None or config.runtime is None:
        logger.error(
            "Model and runtime config sections are required for generation",
            extra={"command": "generate"},
        )
        return CONFIG_ERROR

    prompt = args.prompt or ""
    if not prompt:
        logger.error("No prompt provided, use --prompt")
        return USER_ERROR

    runtime_cfg = config.runtime
    try:
        gen_config = build_generation_config(runtime_cfg, args)
    except ConfigError as err:
        logger.error("Invalid generation options", extra={"error": str(err)})
        return CONFIG_ERROR

    stream_output = runtime_cfg.stream if args.stream is None else args.stream
    logger.info(
        "Starting generation",
        extra={
            "dry_run": args.dry_run,
            "max_tokens": gen_config.max_tokens,
            "temperature": gen_config.temperature,
            "top_k": gen_config.top_k,
            "top_p": gen_config.top_p,
            "stream": stream_output,
        },
    )

    if args.dry_run:
        logger.info(
            "Dry run, would generate text",
            extra={"prompt_length": len(prompt), "max_tokens": gen_config.max_tokens},
        )
        return SUCCESS

    from phigen.serving.backend.core import ComputeBackend
    from phigen.serving.engine.core import InferenceEngine
    from phigen.serving.loader.core import load_artifacts

    try:
        artifacts = load_artifacts(
            config.model,
            runtime_cfg,
            _project_root(args),
            seed=config.global_config.seed,
        )
    except FileNotFoundError as err:
        logger.error("Generate failed, missing files", extra={"error": str(err)})
        return VALIDATION_ERROR
    except RuntimeError as err:
        logger.error("Generate failed, artifacts rejected", extra={"error": str(err)})
        return VALIDATION_ERROR

    engine = InferenceEngine(
        backend=ComputeBackend(artifacts.model, artifacts.device),
        tokenizer=artifacts.tokenizer,
        max_buffered_fragments=runtime_cfg.max_buffered_fragments,
    )

    try:
        if stream_output:
            _stream_to_stdout(engine, prompt, gen_config, logger)
        else:
            response = engine.generate(prompt, gen_config)
            sys.stdout.write(response.text + "\n")
            sys.stdout.flush()
    except ComputeError as err:
        logger.error("Generate failed", extra={"error": str(err)})
        return RUNTIME_ERROR
    except GenerationError as err:
        logger.error("Request rejected", extra={"error": str(err)})
        return USER_ERROR

    logger.info("Generation complete", extra=engine.metrics.summary())
    return SUCCESS


def _stream_to_stdout(
    engine: "InferenceEngine",
    prompt: str,
    gen_config: GenerationConfig,
    logger: logging.Logger,
) -> None:
    """Write fragments as they arrive. Ctrl-C cancels the session."""
    stream = engine.generate_stream(prompt, gen_config)
    try:
        for fragment in stream:
            sys.stdout.write(fragment.text)
            sys.stdout.flush()
    except KeyboardInterrupt:
        stream.close()
        logger.info("Generation cancelled by user")
    finally:
        sys.stdout.write("\n")
        sys.stdout.flush()
        stream.wait(timeout=5.0)

    logger.info(
        "Stream finished",
        extra={"termination_reason": stream.termination_reason.value},
    )


def handle_info(args: argparse.Namespace) -> int:
    """Log environment details, and the model geometry when a config is given."""
    exit_code, config, logger = _load_and_bootstrap(args, "info")
    if exit_code != SUCCESS:
        return exit_code

    from phigen import __version__
    from phigen.runtime.environment import get_system_info
    from phigen.serving.loader.core import build_model_config

    system_info = get_system_info()
    logger.info(
        "System information",
        extra={
            "phigen_version": __version__,
            "python_version": system_info.python_version,
            "torch_version": system_info.torch_version,
            "platform": system_info.platform,
            "architecture": system_info.architecture,
            "cuda_available": system_info.cuda_available,
            "cuda_device_count": system_info.cuda_device_count,
            "config": args.config,
        },
    )

    if config is not None and config.model is not None:
        try:
            model_cfg = build_model_config(config.model, config.global_config.seed)
        except ValueError as err:
            logger.error("Invalid model geometry", extra={"error": str(err)})
            return CONFIG_ERROR
        logger.info(
            "Model configuration",
            extra={
                "preset": config.model.preset,
                "vocab_size": model_cfg.vocab_size,
                "hidden_size": model_cfg.dim,
                "n_layers": model_cfg.n_layers,
                "n_heads": model_cfg.n_heads,
                "head_dim": model_cfg.head_dim,
                "rotary_dim": model_cfg.rotary_dim,
                "context_length": model_cfg.max_seq_len,
            },
        )
    return SUCCESS
