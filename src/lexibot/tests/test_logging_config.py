"""Tests for logging setup."""
import logging
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from unittest.mock import patch

import pytest

from lexibot.config import settings
from lexibot.logging_config import setup_logging


@pytest.fixture(autouse=True)
def restore_root_logger():
    """Drop the handlers setup_logging installed."""
    root = logging.getLogger()
    level = root.level
    yield
    for handler in root.handlers[:]:
        if handler.formatter is not None and handler.formatter._fmt == settings.logging.format:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)


def test_console_only_by_default() -> None:
    with patch.object(settings.logging, "dir", None):
        setup_logging("Starting tests", level="DEBUG")

    root = logging.getLogger()
    assert root.level == logging.DEBUG
    assert len(root.handlers) == 1
    assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING


def test_log_file_when_dir_configured(tmp_path: Path) -> None:
    with patch.object(settings.logging, "dir", str(tmp_path)):
        setup_logging(level=logging.INFO)
        logging.getLogger("lexibot.test").info("hello")

    file_handlers = [h for h in logging.getLogger().handlers if isinstance(h, TimedRotatingFileHandler)]
    assert len(file_handlers) == 1
    file_handlers[0].flush()
    assert "hello" in (tmp_path / "lexibot.log").read_text(encoding="utf-8")
