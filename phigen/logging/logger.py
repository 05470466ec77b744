# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Structured JSON logger for phigen.

Every log line is one JSON object with a UTC timestamp, the level, the
emitting module and the message. Anything passed through `extra=` rides
along as additional keys, which is how the generation loop attaches
session ids, token counts and termination reasons.

Logs go to stderr. stdout belongs to the generated text.

Generation runs on background threads, so the same logger is hit from
several threads at once. The stdlib handlers already serialize writes,
which is all we need here.

Example line:
  {"ts": "2026-...", "level": "INFO", "module": "phigen.serving.session.core",
   "msg": "Session halted", "session_id": "a1b2...", "reason": "max_length"}
"""

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

# Attributes every LogRecord carries. Anything else on the record came
# from the caller's `extra` dict and gets copied into the JSON entry.
_RECORD_ATTRS: frozenset[str] = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__
) | {"message", "asctime", "taskName"}

_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class JsonFormatter(logging.Formatter):
    """
    Formats log records as single-line JSON objects.

    Mandatory keys:
      ts     ISO 8601 UTC timestamp
      level  log level name
      module the logger name (usually the Python module path)
      msg    the formatted message string

    Exceptions logged with exc_info=True end up under "exc" as the
    formatted traceback text.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, object] = {
            "ts": datetime.now(tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "module": record.name,
            "msg": record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key not in _RECORD_ATTRS and not key.startswith("_"):
                entry[key] = value

        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def _resolve_log_level(level_name: str) -> int:
    """Turn a level name string into the corresponding logging constant."""
    upper = level_name.upper()
    if upper not in _VALID_LOG_LEVELS:
        raise ValueError(
            f"Invalid log level '{level_name}'. Must be one of: {', '.join(sorted(_VALID_LOG_LEVELS))}"
        )
    return getattr(logging, upper)


def get_logger(
    name: str,
    log_level: str = "INFO",
    log_file: Optional[Path] = None,
) -> logging.Logger:
    """
    Create (or re-level) a structured JSON logger.

    This is the only sanctioned way to get a logger in phigen. Modules call
    it once at import time with the default level; the CLI and bootstrap
    call it again later with the user's level, which re-levels the handlers
    that are already attached instead of stacking new ones.

    Args:
        name: Logger name, typically __name__ of the calling module.
        log_level: One of DEBUG, INFO, WARNING, ERROR, CRITICAL.
        log_file: Optional path to a log file. If provided on first use,
                  logs go to both stderr and the file.

    Returns:
        A configured logging.Logger that outputs structured JSON.
    """
    logger = logging.getLogger(name)
    level = _resolve_log_level(log_level)
    logger.setLevel(level)

    if logger.handlers:
        for handler in logger.handlers:
            handler.setLevel(level)
        return logger

    formatter = JsonFormatter()

    stream_handler = logging.StreamHandler(stream=sys.stderr)
    stream_handler.setLevel(level)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(str(log_file), encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.propagate = False

    return logger


def set_package_log_level(log_level: str, package: str = "phigen") -> None:
    """
    Re-level every logger already created under `package`.

    Module loggers are built at import time with the default level, before
    the CLI knows what the user asked for.
    """
    level = _resolve_log_level(log_level)
    for name, candidate in list(logging.Logger.manager.loggerDict.items()):
        if not isinstance(candidate, logging.Logger):
            continue
        if name == package or name.startswith(package + "."):
            candidate.setLevel(level)
            for handler in candidate.handlers:
                handler.setLevel(level)
