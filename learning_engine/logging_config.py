"""
Logging Setup — rotating log file plus stderr warnings for the CLI

Every module logs under the ``learning_engine`` hierarchy
(``learning_engine.self_evaluator``, ``learning_engine.locking``, ...), so
handlers attach once to the package root and stdout stays free for command
output. Size and retention come from LEARNING_LOG_MAX_BYTES and
LEARNING_LOG_BACKUPS.

Usage:
    setup_logging(level=logging.DEBUG, log_dir=Path("/tmp/le-logs"))
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from . import config as cfg

LOGGER_NAME = "learning_engine"
LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"


def setup_logging(level: int = logging.INFO, log_dir: Optional[Path] = None) -> logging.Logger:
    """Attach the file and stderr handlers to the package logger; repeat calls only adjust the level."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    if logger.handlers:
        for handler in logger.handlers:
            if isinstance(handler, RotatingFileHandler):
                handler.setLevel(level)
        return logger

    log_dir = Path(log_dir) if log_dir else cfg.LOG_DIR
    log_dir.mkdir(parents=True, exist_ok=True)
    formatter = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    file_handler = RotatingFileHandler(
        log_dir / cfg.LOG_FILE,
        maxBytes=cfg.LOG_MAX_BYTES,
        backupCount=cfg.LOG_BACKUPS,
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)
    file_handler.setLevel(level)
    logger.addHandler(file_handler)

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(formatter)
    console.setLevel(logging.WARNING)
    logger.addHandler(console)

    logger.debug(f"Logging to {log_dir / cfg.LOG_FILE}")
    return logger
