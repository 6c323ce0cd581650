"""
Tests for logging configuration.
"""
import json
import logging

import pytest

from takeout_s3_migration.utils.logging_config import JsonFormatter, set_log_level, setup_logging


@pytest.fixture
def restore_root_logger():
    """Put the root logger back the way pytest configured it."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers = handlers
    root.setLevel(level)


class TestSetupLogging:
    """Tests for setup_logging."""

    def test_console_only(self, restore_root_logger):
        """Test the default console configuration."""
        logger = setup_logging(level="WARNING")
        assert logger.name == 'takeout_s3_migration'
        assert restore_root_logger.level == logging.WARNING
        assert len(restore_root_logger.handlers) == 1

    def test_file_and_error_log(self, restore_root_logger, tmp_path):
        """Test rotating file handlers."""
        log_file = tmp_path / 'logs' / 'upload.log'
        logger = setup_logging(log_file=str(log_file), level="INFO")

        logger.info("uploaded a.jpg")
        logger.error("failed b.jpg")
        for handler in restore_root_logger.handlers:
            handler.flush()

        assert "uploaded a.jpg" in log_file.read_text()
        error_log = tmp_path / 'logs' / 'upload_error.log'
        assert "failed b.jpg" in error_log.read_text()
        assert "uploaded a.jpg" not in error_log.read_text()

    def test_handler_levels(self, restore_root_logger, tmp_path):
        """Test that every handler except the error log follows the configured level."""
        setup_logging(log_file=str(tmp_path / 'upload.log'), level="warning")

        levels = sorted(h.level for h in restore_root_logger.handlers)
        assert levels == [logging.WARNING, logging.WARNING, logging.ERROR]

    def test_invalid_level(self, restore_root_logger):
        """Test that an unknown level is rejected before handlers are replaced."""
        handlers = list(restore_root_logger.handlers)
        with pytest.raises(ValueError, match="Invalid logging level"):
            setup_logging(level="verbose")
        assert restore_root_logger.handlers == handlers

    def test_set_log_level(self, restore_root_logger, tmp_path):
        """Test changing the level after setup."""
        setup_logging(log_file=str(tmp_path / 'upload.log'), level="INFO")
        set_log_level("debug")

        assert restore_root_logger.level == logging.DEBUG
        levels = sorted(h.level for h in restore_root_logger.handlers)
        assert levels == [logging.DEBUG, logging.DEBUG, logging.ERROR]

    def test_set_log_level_invalid(self):
        """Test rejecting unknown levels."""
        with pytest.raises(ValueError, match="Invalid logging level"):
            set_log_level("verbose")


def test_json_formatter():
    """Test structured output with archive and path fields."""
    record = logging.LogRecord('takeout_s3_migration.uploader', logging.ERROR, __file__, 1,
                               "Failed to upload %s", ('a.jpg',), None)
    record.archive = 'takeout-001'
    record.path = 'a.jpg'

    data = json.loads(JsonFormatter().format(record))

    assert data['message'] == "Failed to upload a.jpg"
    assert data['level'] == 'ERROR'
    assert data['archive'] == 'takeout-001'
    assert data['path'] == 'a.jpg'
    assert 'thread' in data
