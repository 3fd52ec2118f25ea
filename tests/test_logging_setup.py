"""
Tests for logging setup.
"""

import logging

import pytest
from loguru import logger as loguru_logger

from upload_relay.infrastructure.config.models import LoggingConfig
from upload_relay.infrastructure.logging import InterceptHandler, LoggingManager, setup_logging


@pytest.fixture(autouse=True)
def restore_loguru():
    yield
    loguru_logger.remove()


class TestSetupLogging:
    """Test cases for setup_logging."""

    def test_stdlib_records_reach_log_file(self, tmp_path):
        log_dir = tmp_path / "logs"
        setup_logging(LoggingConfig(level="INFO", log_directory=str(log_dir),
                                    console_enabled=False))

        logging.getLogger("upload_relay.test").info("routed through loguru")
        loguru_logger.remove()

        content = (log_dir / "upload-relay.log").read_text()
        assert "routed through loguru" in content
        assert "| INFO     |" in content

    def test_level_filters_records(self, tmp_path):
        log_dir = tmp_path / "logs"
        setup_logging(LoggingConfig(level="WARNING", log_directory=str(log_dir),
                                    console_enabled=False))

        logging.getLogger("upload_relay.test").info("too quiet")
        logging.getLogger("upload_relay.test").warning("loud enough")
        loguru_logger.remove()

        content = (log_dir / "upload-relay.log").read_text()
        assert "too quiet" not in content
        assert "loud enough" in content

    def test_root_logger_uses_intercept_handler(self, tmp_path):
        setup_logging(LoggingConfig(console_enabled=False, file_enabled=False,
                                    log_directory=str(tmp_path)))

        assert any(isinstance(h, InterceptHandler) for h in logging.getLogger().handlers)
        assert logging.getLogger("uvicorn").propagate is True


class TestLoggingManager:
    """Test cases for LoggingManager."""

    @pytest.mark.asyncio
    async def test_lifecycle(self, tmp_path):
        manager = LoggingManager(LoggingConfig(console_enabled=False,
                                               log_directory=str(tmp_path / "logs")))

        await manager.start()
        health = await manager.check_health()
        await manager.stop()

        assert health['status'] == 'running'
        assert (tmp_path / "logs").is_dir()
        assert (await manager.check_health())['status'] == 'stopped'
