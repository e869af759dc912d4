"""
test_logging_config.py — Tests for ledgersync/logging_config.py

Verifies Loguru setup, stdlib logging interception (the services and the
sync engine log through logging.getLogger), noisy library levels,
request context binding, and production JSON output.

Called by: pytest
Depends on: ledgersync/logging_config.py
"""

import logging
import os
from unittest.mock import patch

import pytest
from loguru import logger

from ledgersync.logging_config import setup_logging


@pytest.fixture(autouse=True)
def _clean_loguru():
    """Remove all handlers before/after each test for isolation."""
    logger.remove()
    yield
    logger.remove()


def test_setup_logging_adds_handler():
    assert len(logger._core.handlers) == 0
    with patch.dict(os.environ, {"APP_ENV": "development"}):
        setup_logging()
    assert len(logger._core.handlers) > 0


def test_service_logger_intercepted():
    """A module logger like ledgersync.sync_engine ends up in Loguru."""
    with patch.dict(os.environ, {"APP_ENV": "development"}):
        setup_logging()

    messages = []
    logger.add(lambda m: messages.append(str(m)), format="{message}")

    logging.getLogger("ledgersync.sync_engine").warning("Order fetch failed, window kept")

    assert any("Order fetch failed, window kept" in m for m in messages)


def test_log_level_from_env():
    with patch.dict(os.environ, {"APP_ENV": "development", "LOG_LEVEL": "WARNING"}):
        setup_logging()

    messages = []
    logger.add(lambda m: messages.append(str(m)), level="WARNING", format="{message}")

    logger.debug("should be filtered")
    logger.warning("should appear")

    assert any("should appear" in m for m in messages)
    assert not any("should be filtered" in m for m in messages)


def test_noisy_libraries_quieted():
    with patch.dict(os.environ, {"APP_ENV": "development"}):
        setup_logging()
    for name in ("httpx", "apscheduler", "sqlalchemy.engine"):
        assert logging.getLogger(name).level == logging.WARNING


def test_request_id_context():
    records = []
    logger.add(lambda m: records.append(m.record), format="{message}")

    with logger.contextualize(request_id="abc123"):
        logger.info("inside request")
    logger.info("after request")

    assert records[0]["extra"].get("request_id") == "abc123"
    assert "request_id" not in records[1]["extra"]


def test_production_mode_uses_serialize(tmp_path):
    log_file = tmp_path / "ledgersync.log"
    with patch.dict(os.environ, {"APP_ENV": "production", "LOG_FILE": str(log_file)}):
        with patch("loguru.logger.add") as mock_add:
            setup_logging()
    serialize_calls = [c for c in mock_add.call_args_list if c.kwargs.get("serialize") is True]
    assert len(serialize_calls) == 2
    assert any(c.args[0] == str(log_file) for c in serialize_calls)
