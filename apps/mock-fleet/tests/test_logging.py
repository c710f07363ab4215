from __future__ import annotations

import json

import pytest

from mock_fleet.logging_utils import RichConsoleRenderer, configure_logging
from mock_fleet.output_config import ENV_VAR_NAME, get_log_format, log_level


@pytest.mark.parametrize(
    ("cli", "env", "expected"),
    [
        ("json", None, "json"),
        ("PLAIN", "json", "plain"),
        (None, "json", "json"),
        (None, "rich", "console"),
        (None, "auto", "console"),
        ("bogus", "plain", "plain"),
        (None, None, "console"),
    ],
)
def test_log_format_priority(cli: str | None, env: str | None, expected: str) -> None:
    environ = {ENV_VAR_NAME: env} if env else {}

    assert get_log_format(cli, environ) == expected


def test_log_level_follows_verbose_flag() -> None:
    assert log_level(True) == "DEBUG"
    assert log_level(False) == "INFO"


@pytest.mark.usefixtures("restore_logging")
def test_json_logs_carry_bound_context(capsys: pytest.CaptureFixture[str]) -> None:
    logger = configure_logging("INFO", "json")

    logger.bind(service="payments").info("server_started", port=9101)
    logger.debug("hidden_at_info_level")

    lines = [line for line in capsys.readouterr().out.splitlines() if line.strip()]
    assert len(lines) == 1
    record = json.loads(lines[0])
    assert record["event"] == "server_started"
    assert record["level"] == "info"
    assert record["service"] == "payments"
    assert record["port"] == 9101
    assert "timestamp" in record


@pytest.mark.usefixtures("restore_logging")
def test_console_renderer_outputs_event_and_fields(capsys: pytest.CaptureFixture[str]) -> None:
    logger = configure_logging("INFO", "console")

    logger.warning("port_collision", port=9101, service="users")

    out = capsys.readouterr().out
    assert "port_collision" in out
    assert "9101" in out
    assert "users" in out


def test_console_renderer_leads_with_service_origin() -> None:
    text = RichConsoleRenderer().render_text(
        {
            "timestamp": "2024-05-01T12:00:01.250123Z",
            "level": "info",
            "event": "request_served",
            "service": "payments",
            "port": 9101,
            "usecase": "happy",
            "method": "GET",
            "path": "/ping",
            "status": 200,
            "delay_ms": 0,
        }
    )

    assert text.plain.startswith("12:00:01.250 INFO  payments@9101 (happy)")
    assert "request_served  GET /ping -> 200 delay_ms=0" in text.plain
    assert "service=" not in text.plain


def test_console_renderer_attributes_unbound_events_to_fleet() -> None:
    renderer = RichConsoleRenderer()
    event_dict = {"level": "warning", "event": "port_collision", "port": 9101, "current_owner": "users"}

    text = renderer.render_text(event_dict)

    assert " WARN  fleet " in text.plain
    assert "current_owner=users port=9101" in text.plain
    assert event_dict["port"] == 9101
    assert "port_collision" in renderer(None, "warning", dict(event_dict))
