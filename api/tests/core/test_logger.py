"""Unit tests for core.logger module.

Tests the structlog-based logging configuration:
- configure_logging() sets up a single stdout handler
- LOG_FORMAT=json renders records as JSON with extra fields
- LOG_LEVEL controls the root level
- Noisy third-party loggers are quieted
"""

import json
import logging
import os
from unittest.mock import patch

import pytest
import structlog

from core.logger import configure_logging, get_logger


@pytest.fixture(autouse=True)
def _clean_root_logger():
    """Save and restore root logger state around each test."""
    root = logging.getLogger()
    original_handlers = root.handlers[:]
    original_level = root.level
    yield
    root.handlers = original_handlers
    root.setLevel(original_level)
    structlog.reset_defaults()


@pytest.mark.unit
class TestConfigureLogging:
    def test_adds_single_stdout_handler(self):
        configure_logging()
        configure_logging()

        root = logging.getLogger()
        assert len(root.handlers) == 1
        formatter = root.handlers[0].formatter
        assert isinstance(formatter, structlog.stdlib.ProcessorFormatter)

    def test_json_format_includes_extra_fields(self, capsys):
        with patch.dict(os.environ, {"LOG_FORMAT": "json"}):
            configure_logging()

        logging.getLogger("services.certificates_service").info(
            "certificate.issued",
            extra={"certificate_number": "BIT-2024-000001", "user_id": 501},
        )

        line = capsys.readouterr().out.strip().splitlines()[-1]
        parsed = json.loads(line)
        assert parsed["event"] == "certificate.issued"
        assert parsed["level"] == "info"
        assert parsed["logger"] == "services.certificates_service"
        assert parsed["certificate_number"] == "BIT-2024-000001"
        assert parsed["user_id"] == 501
        assert "timestamp" in parsed

    def test_json_format_renders_exceptions(self, capsys):
        with patch.dict(os.environ, {"LOG_FORMAT": "json"}):
            configure_logging()

        try:
            raise ValueError("boom")
        except ValueError:
            logging.getLogger("test").exception("pdf.render.failed")

        parsed = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert "ValueError" in parsed["exception"]

    def test_log_level_from_environment(self):
        with patch.dict(os.environ, {"LOG_LEVEL": "warning"}):
            configure_logging()

        assert logging.getLogger().level == logging.WARNING

    def test_unknown_log_level_defaults_to_info(self):
        with patch.dict(os.environ, {"LOG_LEVEL": "chatty"}):
            configure_logging()

        assert logging.getLogger().level == logging.INFO

    def test_quiets_noisy_loggers(self):
        configure_logging()

        assert logging.getLogger("uvicorn.access").level == logging.WARNING
        assert logging.getLogger("aiosqlite").level == logging.WARNING


@pytest.mark.unit
def test_get_logger_binds_keyword_fields(capsys):
    with patch.dict(os.environ, {"LOG_FORMAT": "json"}):
        configure_logging()

    get_logger("cli").info("template.seeded", name="Clásico")

    parsed = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
    assert parsed["event"] == "template.seeded"
    assert parsed["name"] == "Clásico"
