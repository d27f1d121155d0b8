"""Logging configuration for Wayfarer.

Library modules only ever do ``logger = logging.getLogger(__name__)``;
applications (the CLI, a web transport) call configure_logging() once.

Priority for level resolution (highest to lowest):
    1. Explicit `level` parameter
    2. WAYFARER_LOG_LEVEL env var (DEBUG, INFO, WARNING, ...)
    3. WAYFARER_DEBUG=true env var
    4. `debug=True` parameter (--debug flag)
    5. WARNING (default)
"""

import logging
import os
import sys
from pathlib import Path
from typing import TextIO

_DEBUG_FORMAT = "%(asctime)s %(name)s [%(levelname)s] %(message)s"
_DEFAULT_FORMAT = "%(name)s: %(message)s"

# Quiet even in debug mode
_NOISY_LOGGERS = (
    "httpx",
    "httpcore",
    "asyncio",
    "hpack",
)


def resolve_level(*, debug: bool = False, level: int | str | None = None) -> int:
    """Resolve the effective log level from arguments and environment."""
    if level is not None:
        return _parse_level(level)
    if env_level := os.environ.get("WAYFARER_LOG_LEVEL"):
        return _parse_level(env_level)
    if os.environ.get("WAYFARER_DEBUG", "").lower() in ("true", "1", "yes"):
        return logging.DEBUG
    if debug:
        return logging.DEBUG
    return logging.WARNING


def configure_logging(
    *,
    debug: bool = False,
    level: int | str | None = None,
    stream: TextIO | None = None,
    log_file: str | Path | None = None,
) -> int:
    """Configure root logging for an application embedding Wayfarer.

    Args:
        debug: Enable DEBUG level with detailed format
        level: Override log level (int or string like "DEBUG")
        stream: Output stream (default: stderr)
        log_file: Optional file that receives everything at DEBUG

    Returns:
        The resolved console log level.
    """
    resolved_level = resolve_level(debug=debug, level=level)
    console_format = _DEBUG_FORMAT if resolved_level <= logging.DEBUG else _DEFAULT_FORMAT

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG if log_file else resolved_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(stream or sys.stderr)
    console_handler.setLevel(resolved_level)
    console_handler.setFormatter(logging.Formatter(console_format))
    root_logger.addHandler(console_handler)

    if log_file:
        path = Path(log_file)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(path, mode="a", encoding="utf-8")
        except OSError as e:
            sys.stderr.write(f"Warning: Could not open log file {path}: {e}\n")
        else:
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(logging.Formatter(_DEBUG_FORMAT))
            root_logger.addHandler(file_handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).debug(
        "Logging configured: level=%s, debug=%s, log_file=%s",
        logging.getLevelName(resolved_level),
        debug,
        log_file,
    )
    return resolved_level


def _parse_level(level: int | str) -> int:
    """Parse log level from int or string."""
    if isinstance(level, int):
        return level
    numeric = getattr(logging, level.upper(), None)
    if isinstance(numeric, int):
        return numeric
    try:
        return int(level)
    except ValueError:
        return logging.WARNING
