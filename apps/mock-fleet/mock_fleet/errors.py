"""Exception hierarchy shared by the mock fleet runtime."""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .validation import ValidationReport


class MockFleetError(Exception):
    """Base class for every error raised by mock-fleet."""


class ConfigErrorReason(str, Enum):
    MISSING = "missing"
    UNREADABLE = "unreadable"
    MALFORMED = "malformed"
    EMPTY = "empty"


class ConfigError(MockFleetError):
    """A configuration file could not be turned into a usable record."""

    def __init__(
        self,
        path: Path,
        reason: ConfigErrorReason,
        message: str,
        cause: BaseException | None = None,
    ) -> None:
        self.path = Path(path)
        self.reason = reason
        self.message = message
        self.cause = cause
        text = f"Config error in '{self.path}' ({reason.value}): {message}"
        if cause is not None:
            text += f": {cause}"
        super().__init__(text)


class ValidationError(MockFleetError):
    """Raised when a validation report contains at least one error."""

    def __init__(self, report: "ValidationReport") -> None:
        self.report = report
        super().__init__(report.error_messages())


class BindError(MockFleetError):
    """The listener for a service could not bind its port."""

    def __init__(self, service: str, port: int, cause: BaseException | None = None) -> None:
        self.service = service
        self.port = port
        self.cause = cause
        text = f"Service '{service}' could not bind port {port}"
        if cause is not None:
            text += f": {cause}"
        super().__init__(text)


class ShutdownTimeoutError(MockFleetError):
    """Graceful drain exceeded its deadline; the listener was force-closed."""

    def __init__(self, service: str, timeout: float, outstanding: int) -> None:
        self.service = service
        self.timeout = timeout
        self.outstanding = outstanding
        super().__init__(
            f"Service '{service}' still had {outstanding} request(s) in flight after {timeout:.1f}s"
        )


class FleetError(MockFleetError):
    """Fleet-wide failure, e.g. no service could be started."""
