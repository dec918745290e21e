"""Unit tests for structlog setup."""

import logging

import pytest
import structlog

from dlob_publisher.core.logging import get_logger, setup_logging


@pytest.fixture(autouse=True)
def restore_logging():
    yield
    structlog.reset_defaults()
    logging.basicConfig(level=logging.WARNING, force=True)


class TestSetupLogging:
    """Tests for setup_logging."""

    def test_level_applied(self):
        setup_logging(level="debug")

        assert logging.getLogger().level == logging.DEBUG

    def test_unknown_level_falls_back_to_info(self):
        setup_logging(level="TRACE")

        assert logging.getLogger().level == logging.INFO

    def test_json_renderer(self):
        setup_logging(json_output=True)

        processors = structlog.get_config()["processors"]
        assert isinstance(processors[-1], structlog.processors.JSONRenderer)


class TestGetLogger:
    def test_namespaced(self):
        logger = get_logger("sink")

        assert logger._logger_factory_args == ("dlob_publisher.sink",)

    def test_already_namespaced(self):
        logger = get_logger("dlob_publisher.app")

        assert logger._logger_factory_args == ("dlob_publisher.app",)
