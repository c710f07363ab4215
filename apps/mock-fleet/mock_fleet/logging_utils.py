"""Structured logging helpers for mock-fleet."""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog
from rich.console import Console
from rich.text import Text

from .output_config import LogFormat

LEVEL_LABELS = {
    "debug": ("DEBUG", "dim cyan"),
    "info": ("INFO", "cyan"),
    "warning": ("WARN", "yellow"),
    "error": ("ERROR", "bold red"),
    "critical": ("CRIT", "bold white on red"),
}
ORIGIN_WIDTH = 28
HIDDEN_KEYS = ("color_message", "stack")


class RichConsoleRenderer:
    """Console renderer that leads every line with the service it came from.

    Lines read ``12:00:01.250 INFO  payments@9101 (happy)  request_served  GET /ping -> 200``;
    events without a bound service are attributed to ``fleet``.
    """

    def __init__(self, width: int = 200) -> None:
        self._console = Console(force_terminal=True, width=width, legacy_windows=False)

    def __call__(self, logger: Any, name: str, event_dict: dict[str, Any]) -> str:
        with self._console.capture() as capture:
            self._console.print(self.render_text(event_dict), end="")
        return capture.get()

    def render_text(self, event_dict: dict[str, Any]) -> Text:
        fields = dict(event_dict)
        label, style = LEVEL_LABELS.get(fields.pop("level", "info"), ("LOG", "white"))
        exception = fields.pop("exception", None)

        text = Text()
        text.append(_time_of_day(fields.pop("timestamp", "")), style="dim white")
        text.append(f" {label:<5} ", style=style)
        text.append(_origin(fields).ljust(ORIGIN_WIDTH), style="green")
        text.append(" ")
        text.append(str(fields.pop("event", "")), style="bold white")

        exchange = _exchange(fields)
        if exchange:
            text.append("  ")
            text.append(exchange, style="bright_white")
        for key, value in sorted(fields.items()):
            if key in HIDDEN_KEYS:
                continue
            text.append(f" {key}=", style="dim white")
            text.append(str(value), style="bright_cyan")
        if exception:
            text.append("\n" + str(exception), style="red")
        return text


def _time_of_day(timestamp: str) -> str:
    # Clock part of an ISO timestamp, millisecond precision.
    _, _, clock = timestamp.partition("T")
    return (clock or timestamp)[:12]


def _origin(fields: dict[str, Any]) -> str:
    service = fields.pop("service", None)
    port = fields.pop("port", None)
    if not service:
        if port is not None:
            fields["port"] = port
        return "fleet"
    origin = f"{service}@{port}" if port is not None else str(service)
    usecase = fields.pop("usecase", None)
    return f"{origin} ({usecase})" if usecase else origin


def _exchange(fields: dict[str, Any]) -> str:
    if "method" not in fields or "path" not in fields:
        return ""
    summary = f"{fields.pop('method')} {fields.pop('path')}"
    if "status" in fields:
        summary += f" -> {fields.pop('status')}"
    return summary


def configure_logging(log_level: str, log_format: LogFormat = "console") -> structlog.stdlib.BoundLogger:
    """Route structlog through stdlib logging on stdout with the requested renderer."""

    normalized_level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=normalized_level,
        stream=sys.stdout,
        format="%(message)s",
        force=True,
    )
    # watchdog logs every inotify event at debug level.
    logging.getLogger("watchdog").setLevel(max(normalized_level, logging.INFO))

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", key="timestamp"),
        structlog.processors.format_exc_info,
    ]

    if log_format == "console":
        processors.append(RichConsoleRenderer())
    elif log_format == "plain":
        processors.append(structlog.dev.ConsoleRenderer(colors=False))
    else:  # json
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(normalized_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    return structlog.get_logger("mock_fleet")
