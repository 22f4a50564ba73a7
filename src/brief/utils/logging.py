"""Logging setup for Brief: a rotating log file plus optional stderr output."""

from __future__ import annotations

import logging
import logging.handlers
import os
import sys
from pathlib import Path

__all__ = ["setup_logging", "get_logger", "get_log_path", "LOG_FORMAT"]

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
_LOG_FILENAME = "brief.log"
_DEFAULT_LOG_DIR = Path.home() / ".brief" / "logs"
_QUIET_LOGGERS: tuple[str, ...] = ("asyncio", "httpx", "httpcore", "openai")

# Handlers this module attached to the root logger; replaced on reconfigure.
_installed: list[logging.Handler] = []
_LOG_PATH: Path | None = None


def setup_logging(
    level: int = logging.INFO,
    *,
    log_dir: Path | str | None = None,
    console: bool = True,
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
    force: bool = False,
) -> Path:
    """Route log records to ``<log_dir>/brief.log`` and, optionally, stderr.

    Calling again is a no-op unless ``force`` is set, in which case the
    handlers installed by the previous call are swapped out. Handlers owned
    by anything else stay attached.
    """

    global _LOG_PATH
    if _installed and not force and _LOG_PATH is not None:
        return _LOG_PATH

    log_path = _resolve_log_dir(log_dir) / _LOG_FILENAME
    log_path.parent.mkdir(parents=True, exist_ok=True)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=_DATE_FORMAT)

    handlers: list[logging.Handler] = [
        logging.handlers.RotatingFileHandler(
            log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        )
    ]
    if console:
        handlers.append(logging.StreamHandler(sys.stderr))

    root = logging.getLogger()
    _remove_installed(root)
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        root.addHandler(handler)
        _installed.append(handler)
    root.setLevel(level)
    logging.captureWarnings(True)
    _quiet_third_party(level)

    _LOG_PATH = log_path
    return log_path


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def get_log_path() -> Path | None:
    """Return the active log file, if logging has been set up."""
    return _LOG_PATH


def _resolve_log_dir(log_dir: Path | str | None) -> Path:
    chosen = log_dir or os.environ.get("BRIEF_LOG_DIR") or _DEFAULT_LOG_DIR
    return Path(chosen).expanduser()


def _remove_installed(root: logging.Logger) -> None:
    while _installed:
        handler = _installed.pop()
        root.removeHandler(handler)
        handler.close()


def _quiet_third_party(level: int) -> None:
    # HTTP clients log every request at INFO/DEBUG.
    floor = max(level, logging.WARNING)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(floor)
