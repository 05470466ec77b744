# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
CLI entrypoint for phigen.

Every operation is a subcommand of `phigen`. The global options
(--config, --log-level, --dry-run, --seed) are shared by every
subcommand through argparse's parent parser mechanism.

Usage:
    phigen generate --config configs/phi-2.yaml --prompt "The capital of France is"
    phigen generate --config configs/phi-2.yaml --prompt "def fib(n):" --temperature 0.7 --top-p 0.9
    phigen info
"""

import argparse
import sys
from collections.abc import Sequence

from phigen.cli.commands import handle_generate, handle_info
from phigen.cli.exit_codes import USER_ERROR


def _build_global_parser() -> argparse.ArgumentParser:
    """Parent parser with the options every subcommand inherits."""
    parent = argparse.ArgumentParser(add_help=False)
    parent.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to YAML configuration file.",
    )
    parent.add_argument(
        "--log-level",
        type=str,
        default=None,
        dest="log_level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set the logging verbosity level (default: the config file's, else INFO).",
    )
    parent.add_argument(
        "--dry-run",
        action="store_true",
        default=False,
        dest="dry_run",
        help="Validate everything but don't load the model or generate.",
    )
    parent.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Override the random seed (takes precedence over config).",
    )
    return parent


def _add_generate_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--prompt", type=str, default=None, help="Text to continue.")
    parser.add_argument(
        "--max-tokens",
        type=int,
        default=None,
        dest="max_tokens",
        help="Maximum number of tokens to generate.",
    )
    parser.add_argument("--temperature", type=float, default=None, help="0 means greedy.")
    parser.add_argument("--top-k", type=int, default=None, dest="top_k")
    parser.add_argument("--top-p", type=float, default=None, dest="top_p")
    parser.add_argument(
        "--repetition-penalty",
        type=float,
        default=None,
        dest="repetition_penalty",
    )
    parser.add_argument(
        "--stop",
        action="append",
        default=None,
        dest="stop_strings",
        metavar="TEXT",
        help="Stop when the output produces TEXT. Repeat for several.",
    )
    parser.add_argument(
        "--stop-mode",
        choices=["suffix", "contains"],
        default=None,
        dest="stop_mode",
    )
    parser.add_argument(
        "--no-stream",
        action="store_false",
        default=None,
        dest="stream",
        help="Print the full text at the end instead of streaming it.",
    )


def _register_subcommands(
    subparsers: argparse._SubParsersAction,  # type: ignore[type-arg]
    parent: argparse.ArgumentParser,
) -> None:
    """Register each subcommand and point args.func at its handler."""
    generate = subparsers.add_parser(
        "generate", parents=[parent], help="Stream text generated from a prompt."
    )
    _add_generate_arguments(generate)
    generate.set_defaults(func=handle_generate)

    info = subparsers.add_parser(
        "info", parents=[parent], help="Display environment and config info."
    )
    info.set_defaults(func=handle_info)


def build_parser() -> argparse.ArgumentParser:
    parent = _build_global_parser()
    root_parser = argparse.ArgumentParser(
        prog="phigen",
        description="phigen: streamed text generation for the Phi model family.",
        parents=[parent],
    )
    subparsers = root_parser.add_subparsers(dest="command")
    _register_subcommands(subparsers, parent)
    return root_parser


def main(argv: Sequence[str] | None = None) -> None:
    """
    Main CLI entrypoint. This is what pyproject.toml's [project.scripts] points to.

    Parses the command line, runs the chosen subcommand's handler and
    exits with its return code. No subcommand prints help and exits with
    USER_ERROR.
    """
    root_parser = build_parser()
    args = root_parser.parse_args(argv)

    if getattr(args, "func", None) is None:
        root_parser.print_help()
        sys.exit(USER_ERROR)

    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
