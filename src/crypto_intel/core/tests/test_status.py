"""Tests for the status line."""
from unittest.mock import MagicMock

import pytest

from crypto_intel.core.status import StatusLevel, StatusReporter


class TestStatusLevel:
    def test_colors(self):
        assert StatusLevel.INFO.color == "#e6e6e6"
        assert StatusLevel.SUCCESS.color == "#4cc9f0"
        assert StatusLevel.WARNING.color == "#fca311"
        assert StatusLevel.ERROR.color == "#f72585"

    def test_blink_only_for_warning_and_error(self):
        assert not StatusLevel.INFO.blink
        assert not StatusLevel.SUCCESS.blink
        assert StatusLevel.WARNING.blink
        assert StatusLevel.ERROR.blink


class TestStatusReporter:
    """Tests for StatusReporter."""

    def test_initial_message(self, status):
        assert status.current.message == "Initializing..."
        assert status.current.level is StatusLevel.INFO

    def test_update_replaces_line(self, status):
        line = status.update("Data fetch failed: boom", "error")

        assert status.current is line
        assert line.blink
        assert line.to_dict()["color"] == "#f72585"

    def test_listener_receives_status_event(self):
        listener = MagicMock()
        status = StatusReporter(on_change=listener)

        status.update("AI analysis complete", StatusLevel.SUCCESS)

        event = listener.call_args[0][0]
        assert event["type"] == "status"
        assert event["message"] == "AI analysis complete"
        assert event["level"] == "success"
        assert event["blink"] is False

    def test_listener_failure_does_not_propagate(self, status):
        status.set_listener(MagicMock(side_effect=RuntimeError("socket closed")))

        status.update("still works")

        assert status.current.message == "still works"

    def test_unknown_level_raises(self, status):
        with pytest.raises(ValueError):
            status.update("nope", "fatal")
