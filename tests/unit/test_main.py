"""
Unit tests for service wiring.
"""

import logging

import json_log_formatter
import pytest

from docschema.docregister.config import LogFormat, RegisterSettings
from docschema.docregister.main import create_register, setup_logging
from docschema.docregister.storage import MemoryStorage


@pytest.fixture
def root_logger():
    """Restore root logger handlers and level after the test."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    root.handlers = handlers
    root.setLevel(level)


class TestSetupLogging:
    """Tests for setup_logging."""

    def test_json_format(self, root_logger):
        setup_logging(RegisterSettings(log_format=LogFormat.JSON, log_level="debug"))

        (handler,) = root_logger.handlers
        assert isinstance(handler.formatter, json_log_formatter.JSONFormatter)
        assert root_logger.level == logging.DEBUG

    def test_text_format(self, root_logger):
        setup_logging(RegisterSettings(log_format=LogFormat.TEXT))

        (handler,) = root_logger.handlers
        assert not isinstance(handler.formatter, json_log_formatter.JSONFormatter)
        assert root_logger.level == logging.INFO

    def test_quiets_access_log(self, root_logger):
        setup_logging(RegisterSettings())

        assert logging.getLogger("uvicorn.access").level == logging.WARNING


def test_create_register_memory_backend():
    """The default backend is in-memory."""
    register = create_register(RegisterSettings(register_name="receipts"))

    assert isinstance(register.storage, MemoryStorage)
    assert register.name == "receipts"
