from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from fleetalerts.config import LoggingConfig


DEBUG_LOGGER = "fleetalerts.debug"
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def _resolve(path: Path, base_dir: Path) -> Path:
    return path if path.is_absolute() else base_dir / path


def _has_file_handler(logger: logging.Logger, path: Path) -> bool:
    target = os.path.abspath(path)
    return any(
        isinstance(handler, logging.FileHandler) and handler.baseFilename == target
        for handler in logger.handlers
    )


def configure_logging(
    config: LoggingConfig,
    base_dir: Path,
    *,
    level_override: Optional[str] = None,
) -> logging.Logger:
    """
    Set the console level and route the ``fleetalerts.debug`` event family.

    With ``debug_file`` set, debug events (transitions, skipped evaluations,
    storage failovers) go only to that file, resolved under ``base_dir`` when
    relative. Without it they propagate to the console handlers.
    """
    level = (level_override or config.level).upper()
    logging.basicConfig(level=getattr(logging, level, logging.INFO), format=LOG_FORMAT)

    debug_logger = logging.getLogger(DEBUG_LOGGER)
    debug_logger.setLevel(getattr(logging, config.debug_level, logging.DEBUG))
    if config.debug_file is None:
        debug_logger.propagate = True
        return debug_logger

    log_path = _resolve(config.debug_file, base_dir)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    if not _has_file_handler(debug_logger, log_path):
        handler = logging.FileHandler(log_path, encoding="utf-8")
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S%z"))
        debug_logger.addHandler(handler)
    debug_logger.propagate = False
    return debug_logger
