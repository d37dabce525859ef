"""
Logging configuration — set up once by the CLI entry point.

Every engine module does ``logger = logging.getLogger(__name__)``;
recipe callables log through ``ctx.log``, a logger named
``converge.dep.<node>``. Recipe lines are rendered with the node
name in brackets so interleaved output from parallel branches stays
readable:

    [webserver installed] nginx-0.7.65 is installed

Levels are resolved in precedence order:
    CLI flag  >  CONVERGE_LOG_LEVEL env var  >  WARNING (default)

Optional file output via CONVERGE_LOG_FILE / CONVERGE_LOG_FILE_LEVEL.
"""

from __future__ import annotations

import logging
import sys

RECIPE_LOGGER = "converge.dep"

# ── Format strings ──────────────────────────────────────────────

# WARNING level: message only
_FMT_MINIMAL = "%(message)s"

# INFO level: timestamped
_FMT_VERBOSE = "%(asctime)s %(message)s"
_DATEFMT_VERBOSE = "%H:%M:%S"

# DEBUG level: logger, thread and line for diagnosing parallel runs
_FMT_DEBUG = "%(asctime)s %(levelname)-5s [%(threadName)s] %(name)s:%(lineno)d — %(message)s"

# File output: always full detail
_FMT_FILE = "%(asctime)s %(levelname)-5s [%(threadName)s] %(name)s:%(lineno)d — %(message)s"
_DATEFMT_FILE = "%Y-%m-%d %H:%M:%S"

# Libraries used by the engine that get chatty at DEBUG
_NOISY_LOGGERS = ("asyncio", "concurrent.futures")


class RecipeFormatter(logging.Formatter):
    """Prefix recipe log lines with their node name."""

    def format(self, record: logging.LogRecord) -> str:
        prefix = RECIPE_LOGGER + "."
        if record.name.startswith(prefix):
            record = logging.makeLogRecord(record.__dict__)
            node = record.name[len(prefix):]
            record.msg = f"[{node}] {record.getMessage()}"
            record.args = None
        return super().format(record)


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
    quiet_third_party: bool = True,
) -> None:
    """Configure logging for the whole process.

    Args:
        level: Console level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_file: Optional path to a log file.
        log_file_level: Level for the log file; defaults to ``level``.
        quiet_third_party: Keep library loggers at WARNING unless the
            console is at DEBUG.
    """
    numeric_level = _parse_level(level)

    if numeric_level <= logging.DEBUG:
        fmt, datefmt = _FMT_DEBUG, _DATEFMT_VERBOSE
    elif numeric_level <= logging.INFO:
        fmt, datefmt = _FMT_VERBOSE, _DATEFMT_VERBOSE
    else:
        fmt, datefmt = _FMT_MINIMAL, None

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(numeric_level)
    console.setFormatter(RecipeFormatter(fmt, datefmt=datefmt))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(console)

    effective_level = numeric_level

    if log_file:
        file_level = _parse_level(log_file_level) if log_file_level else numeric_level
        effective_level = min(effective_level, file_level)

        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setLevel(file_level)
        fh.setFormatter(RecipeFormatter(_FMT_FILE, datefmt=_DATEFMT_FILE))
        root.addHandler(fh)

    root.setLevel(effective_level)

    if quiet_third_party and numeric_level > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    logging.raiseExceptions = False


def _parse_level(level: str | None) -> int:
    """Convert a level name to its numeric constant (WARNING if unknown)."""
    if not level:
        return logging.WARNING
    numeric = getattr(logging, level.upper(), None)
    if not isinstance(numeric, int):
        return logging.WARNING
    return numeric
