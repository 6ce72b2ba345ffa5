"""Tests for structlog configuration."""

import json

import structlog

from src.shared.logging import setup_logging


class TestSetupLogging:
    def test_json_lines(self, capsys):
        setup_logging("INFO")
        structlog.get_logger().info("entity_scored", entity_id="tna-1", score=72)

        line = capsys.readouterr().out.strip().splitlines()[-1]
        event = json.loads(line)
        assert event["event"] == "entity_scored"
        assert event["score"] == 72
        assert event["level"] == "info"
        assert "timestamp" in event

    def test_level_filters_debug(self, capsys):
        setup_logging("WARNING")
        structlog.get_logger().info("quiet")
        structlog.get_logger().warning("loud")

        out = capsys.readouterr().out
        assert "quiet" not in out
        assert "loud" in out

    def teardown_method(self):
        structlog.reset_defaults()
