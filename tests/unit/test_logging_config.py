"""Tests for structlog configuration."""

from __future__ import annotations

import json
import logging

import pytest
import structlog

from batchops.observability.logging import configure_logging


@pytest.fixture(autouse=True)
def reset_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    structlog.reset_defaults()
    root.handlers[:] = handlers
    root.setLevel(level)


class TestConfigureLogging:
    def test_json_output(self, capsys: pytest.CaptureFixture[str]) -> None:
        configure_logging("INFO", "json")
        structlog.get_logger().info("batch_started", operation="create", total=3)

        line = capsys.readouterr().out.strip().splitlines()[-1]
        event = json.loads(line)
        assert event["event"] == "batch_started"
        assert event["total"] == 3
        assert event["level"] == "info"
        assert "timestamp" in event

    def test_level_filters_debug(self, capsys: pytest.CaptureFixture[str]) -> None:
        configure_logging("WARNING", "json")
        structlog.get_logger().info("quiet")
        assert capsys.readouterr().out == ""

    def test_console_renderer(self, capsys: pytest.CaptureFixture[str]) -> None:
        configure_logging("DEBUG", "console")
        structlog.get_logger().debug("chunk_processed", size=2)
        assert "chunk_processed" in capsys.readouterr().out
