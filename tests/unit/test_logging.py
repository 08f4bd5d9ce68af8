"""Unit tests for logging infrastructure."""
import pytest
import logging
from pathlib import Path
from videoconverter.infrastructure.logging import setup_logging


def _log_files(log_dir: Path):
    return sorted(log_dir.glob("video-converter-*.log"))


def test_setup_logging_creates_log_file(tmp_path):
    """Test that setup_logging creates a timestamped log file."""
    log_dir = tmp_path / "logs"

    logger = setup_logging(log_dir, debug=False)

    assert logger is not None
    assert isinstance(logger, logging.Logger)
    assert len(_log_files(log_dir)) == 1


def test_setup_logging_debug_mode(tmp_path):
    """Test setup_logging in debug mode echoes to the console."""
    logger = setup_logging(tmp_path / "logs", debug=True)

    assert logger.getEffectiveLevel() == logging.DEBUG
    root_handlers = logging.getLogger().handlers
    assert any(type(h) is logging.StreamHandler for h in root_handlers)


def test_setup_logging_normal_mode(tmp_path):
    """Test setup_logging in normal mode writes only to the file."""
    logger = setup_logging(tmp_path / "logs", debug=False)

    assert logger.getEffectiveLevel() == logging.INFO
    root_handlers = logging.getLogger().handlers
    assert any(isinstance(h, logging.FileHandler) for h in root_handlers)
    assert not any(type(h) is logging.StreamHandler for h in root_handlers)


def test_setup_logging_explicit_path(tmp_path):
    """Test that log_path overrides the log directory."""
    log_path = tmp_path / "custom" / "run.log"

    logger = setup_logging(tmp_path / "logs", log_path=log_path)
    logger.info("explicit path message")
    for handler in logging.getLogger().handlers:
        handler.flush()

    assert log_path.exists()
    assert "explicit path message" in log_path.read_text()
    assert _log_files(tmp_path / "logs") == []


def test_setup_logging_format_includes_level(tmp_path):
    """Test that log format includes timestamp and level."""
    log_dir = tmp_path / "logs"
    logger = setup_logging(log_dir, debug=False)
    logger.warning("format check")
    for handler in logging.getLogger().handlers:
        handler.flush()

    content = _log_files(log_dir)[0].read_text()
    assert " - WARNING - format check" in content
