"""
Logging configuration — central setup for the CLI.

Called once at startup by main.py. Every module that does
``logger = logging.getLogger(__name__)`` inherits this config.

Levels are resolved in precedence order:
    CLI flag  >  STACKRECON_LOG_LEVEL env var  >  WARNING (default)

Optional file output via STACKRECON_LOG_FILE / STACKRECON_LOG_FILE_LEVEL.
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Mapping

ENV_LOG_LEVEL = "STACKRECON_LOG_LEVEL"
ENV_LOG_FILE = "STACKRECON_LOG_FILE"
ENV_LOG_FILE_LEVEL = "STACKRECON_LOG_FILE_LEVEL"

# ── Format strings ──────────────────────────────────────────────

# WARNING: just the message
_FMT_MINIMAL = "%(message)s"

# INFO: timestamp plus logger name
_FMT_VERBOSE = "%(asctime)s [%(name)s] %(message)s"

# DEBUG: adds level, line and worker thread
_FMT_DEBUG = "%(asctime)s %(levelname)-5s %(threadName)s %(name)s:%(lineno)d — %(message)s"

_DATEFMT_CONSOLE = "%H:%M:%S"

# File output is always at full detail
_FMT_FILE = "%(asctime)s %(levelname)-5s %(threadName)s %(name)s:%(lineno)d — %(message)s"
_DATEFMT_FILE = "%Y-%m-%d %H:%M:%S"

# Third-party loggers that are noisy at INFO
_NOISY_LOGGERS = ("urllib3", "botocore", "boto3", "s3transfer")


def cli_level(verbose: bool = False, quiet: bool = False, debug: bool = False) -> str | None:
    """Map the global CLI flags to a level name; None if no flag was given."""
    if debug:
        return "DEBUG"
    if verbose:
        return "INFO"
    if quiet:
        return "ERROR"
    return None


def setup_logging_from_env(
    flag_level: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> None:
    """Configure logging from a CLI flag level and the STACKRECON_* variables."""
    env = os.environ if environ is None else environ
    setup_logging(
        level=flag_level or env.get(ENV_LOG_LEVEL, "WARNING"),
        log_file=env.get(ENV_LOG_FILE) or None,
        log_file_level=env.get(ENV_LOG_FILE_LEVEL) or None,
    )


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
    quiet_third_party: bool = True,
) -> None:
    """Install stackrecon's handlers on the root logger.

    Replaces any handlers already installed, so calling it twice (one
    CLI invocation after another in the same process) is safe.

    Args:
        level: Console level name; unknown names mean WARNING.
        log_file: Also write to this file when set.
        log_file_level: Level for the file handler (default: ``level``).
        quiet_third_party: Hold the AWS SDK loggers at WARNING unless the
            console is at DEBUG.
    """
    console_level = _parse_level(level)
    handlers = [_console_handler(console_level)]

    if log_file:
        file_level = _parse_level(log_file_level) if log_file_level else console_level
        handlers.append(_file_handler(log_file, file_level))

    root = logging.getLogger()
    root.handlers[:] = handlers
    # Root must let through whatever the most verbose handler wants
    root.setLevel(min(h.level for h in handlers))

    if quiet_third_party and console_level > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    logging.raiseExceptions = False


def _console_handler(level: int) -> logging.Handler:
    if level <= logging.DEBUG:
        formatter = logging.Formatter(_FMT_DEBUG, datefmt=_DATEFMT_CONSOLE)
    elif level <= logging.INFO:
        formatter = logging.Formatter(_FMT_VERBOSE, datefmt=_DATEFMT_CONSOLE)
    else:
        formatter = logging.Formatter(_FMT_MINIMAL)
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def _file_handler(path: str, level: int) -> logging.Handler:
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(_FMT_FILE, datefmt=_DATEFMT_FILE))
    return handler


def _parse_level(level: str | None) -> int:
    """``"info"`` → ``logging.INFO``; anything unrecognised → WARNING."""
    numeric = logging.getLevelName(level.upper()) if level else None
    return numeric if isinstance(numeric, int) else logging.WARNING
