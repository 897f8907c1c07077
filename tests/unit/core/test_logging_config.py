"""Unit tests for structured logging configuration."""

from __future__ import annotations

import json

from core.logging_config import configure_logging, get_logger


def test_logger_emits_json_event_with_fields(capsys) -> None:
    """Events should render as JSON with their keyword fields."""
    configure_logging("INFO")

    get_logger("tests.logging").info("file_saved", name="notes")

    payload = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
    assert (payload["event"], payload["name"], payload["level"]) == ("file_saved", "notes", "info")


def test_configured_level_filters_lower_events(capsys) -> None:
    """Events below the configured level should be dropped."""
    configure_logging("WARNING")

    get_logger("tests.logging").info("context_saved")
    configure_logging("INFO")

    assert capsys.readouterr().out == ""
