"""
Tests for learning_engine.logging_config

Covers:
- Rotating log file created under the configured directory
- Package-level handlers shared by module loggers
- Idempotent re-initialisation
"""

import logging
from logging.handlers import RotatingFileHandler

import pytest

from learning_engine import config as cfg
from learning_engine.logging_config import LOGGER_NAME, setup_logging


@pytest.fixture
def clean_logger():
    logger = logging.getLogger(LOGGER_NAME)
    saved_handlers, saved_level = logger.handlers[:], logger.level
    logger.handlers = []
    yield logger
    for handler in logger.handlers:
        handler.close()
    logger.handlers = saved_handlers
    logger.setLevel(saved_level)


class TestSetupLogging:
    """Test setup_logging"""

    def test_creates_log_file(self, clean_logger, tmp_path):
        log_dir = tmp_path / "logs"
        setup_logging(log_dir=log_dir)

        logging.getLogger("learning_engine.self_evaluator").info("evaluated task-1")
        for handler in clean_logger.handlers:
            handler.flush()

        text = (log_dir / cfg.LOG_FILE).read_text(encoding="utf-8")
        assert "[learning_engine.self_evaluator] INFO: evaluated task-1" in text

    def test_rotation_settings(self, clean_logger, tmp_path):
        setup_logging(log_dir=tmp_path)
        file_handler = next(h for h in clean_logger.handlers if isinstance(h, RotatingFileHandler))
        assert file_handler.maxBytes == cfg.LOG_MAX_BYTES
        assert file_handler.backupCount == cfg.LOG_BACKUPS

    def test_console_only_warnings(self, clean_logger, tmp_path):
        setup_logging(log_dir=tmp_path)
        console = [h for h in clean_logger.handlers if not isinstance(h, RotatingFileHandler)]
        assert len(console) == 1
        assert console[0].level == logging.WARNING

    def test_repeat_calls_keep_handlers(self, clean_logger, tmp_path):
        setup_logging(log_dir=tmp_path)
        count = len(clean_logger.handlers)

        setup_logging(level=logging.DEBUG, log_dir=tmp_path / "elsewhere")
        assert len(clean_logger.handlers) == count
        assert clean_logger.level == logging.DEBUG
        assert not (tmp_path / "elsewhere").exists()
