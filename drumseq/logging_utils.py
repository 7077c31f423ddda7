from __future__ import annotations

import logging
import os
import traceback
from datetime import datetime
from pathlib import Path

_LOGGER = logging.getLogger("drumseq.logging")
_PACKAGE_LOGGER = "drumseq"
LOG_DIR_ENV = "DRUMSEQ_LOG_DIR"
LOG_LEVEL_ENV = "DRUMSEQ_LOG_LEVEL"
DEBUG_ENV = "DRUMSEQ_DEBUG"
_LOG_FILE = "drumseq.log"


def debug_enabled() -> bool:
    return bool(os.environ.get(DEBUG_ENV))


def get_log_dir() -> Path:
    configured = os.environ.get(LOG_DIR_ENV)
    if configured:
        return Path(configured).expanduser()
    return Path.home() / ".cache" / "drumseq" / "logs"


def get_log_path(filename: str = _LOG_FILE) -> Path:
    return get_log_dir() / filename


def configure_logging(level: str | int | None = None) -> None:
    """Set the package logger level; handlers are left to the application."""

    logger = logging.getLogger(_PACKAGE_LOGGER)
    if level is None:
        level = os.environ.get(LOG_LEVEL_ENV, "WARNING")
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        if not isinstance(resolved, int):
            _LOGGER.warning("Unknown log level %r; using WARNING", level)
            resolved = logging.WARNING
        level = resolved
    logger.setLevel(level)
    if not any(isinstance(handler, logging.NullHandler) for handler in logger.handlers):
        logger.addHandler(logging.NullHandler())


def setup_file_logger(
    name: str,
    filename: str,
    *,
    level: int = logging.INFO,
) -> Path:
    logger = logging.getLogger(name)
    path = get_log_path(filename)
    path.parent.mkdir(parents=True, exist_ok=True)
    if any(isinstance(handler, logging.FileHandler) for handler in logger.handlers):
        return path
    logger.setLevel(level)
    handler = logging.FileHandler(path)
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    logger.addHandler(handler)
    return path


def log_exception(context: str, exc: BaseException) -> Path | None:
    try:
        log_dir = get_log_dir()
        log_dir.mkdir(parents=True, exist_ok=True)
        path = get_log_path()
        timestamp = datetime.now().isoformat()
        with path.open("a", encoding="utf-8") as handle:
            handle.write(f"[{timestamp}] {context} failed: {type(exc).__name__}: {exc}\n")
            traceback.print_exception(type(exc), exc, exc.__traceback__, file=handle)
            handle.write("\n")
        return path
    except Exception as log_exc:
        _LOGGER.warning("Failed to write log file: %s", log_exc, exc_info=True)
        return None
