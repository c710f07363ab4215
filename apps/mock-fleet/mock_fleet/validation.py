"""Field-level validation of loaded configuration records.

Validators never raise on their own. They return a :class:`ValidationReport`
and the caller decides whether the issues are fatal: the fleet rejects the
whole global config on any error, but only the affected service when the
errors are scoped to a service or its mocks.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from .errors import ValidationError
from .models import GlobalConfig, MockEntry, ServiceConfig

Severity = Literal["error", "warning"]

VALID_METHODS = frozenset({"GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"})
PRIVILEGED_PORT_LIMIT = 1024
MAX_PORT = 65535


@dataclass(frozen=True)
class ValidationIssue:
    file: str
    field: str
    message: str
    severity: Severity = "error"

    def __str__(self) -> str:
        return f"[{self.file}] {self.field or '<root>'}: {self.message}"


@dataclass
class ValidationReport:
    path: Path
    issues: list[ValidationIssue] = field(default_factory=list)

    def add(self, field_name: str, message: str, severity: Severity = "error") -> None:
        self.issues.append(ValidationIssue(self.path.name, field_name, message, severity))

    @property
    def errors(self) -> list[ValidationIssue]:
        return [issue for issue in self.issues if issue.severity == "error"]

    @property
    def warnings(self) -> list[ValidationIssue]:
        return [issue for issue in self.issues if issue.severity == "warning"]

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def error_messages(self) -> str:
        if self.is_valid:
            return "Configuration valid"
        lines = [f"{len(self.errors)} validation error(s) found in {self.path}:"]
        lines.extend(f"{index}. {issue}" for index, issue in enumerate(self.errors, start=1))
        return "\n".join(lines)

    def raise_for_errors(self) -> None:
        if not self.is_valid:
            raise ValidationError(self)


def validate_global(config: GlobalConfig, path: Path) -> ValidationReport:
    report = ValidationReport(Path(path))
    if not config.services:
        report.add("services", "no services defined, at least one service must be specified")

    seen: set[str] = set()
    for index, ref in enumerate(config.services):
        prefix = f"services[{index}]"
        if not ref.name:
            report.add(f"{prefix}.name", "service name cannot be empty")
        if not ref.usecase:
            report.add(f"{prefix}.usecase", "usecase cannot be empty")
        if ref.name and ref.name in seen:
            report.add(f"{prefix}.name", f"duplicate service name '{ref.name}'")
        seen.add(ref.name)
    return report


def validate_service(config: ServiceConfig, path: Path) -> ValidationReport:
    report = ValidationReport(Path(path))
    if not config.name:
        report.add("name", "service name cannot be empty")

    if config.port <= 0 or config.port > MAX_PORT:
        report.add("port", f"invalid port number {config.port}, must be between 1 and {MAX_PORT}")
    elif config.port < PRIVILEGED_PORT_LIMIT:
        report.add("port", f"port {config.port} is privileged and may need elevated rights", "warning")

    delay = config.delay
    if delay.fixed < 0:
        report.add("delay.fixed", f"fixed delay cannot be negative: {delay.fixed}")
    if delay.enabled and delay.fixed <= 0 and delay.min > delay.max:
        report.add("delay", f"min delay {delay.min} exceeds max delay {delay.max}; no delay applied", "warning")
    return report


def validate_mocks(mocks: list[MockEntry], path: Path) -> ValidationReport:
    report = ValidationReport(Path(path))
    if not mocks:
        report.add("", "no mock configurations found")

    endpoints: set[tuple[str, str]] = set()
    for index, mock in enumerate(mocks):
        prefix = f"[{index}]"
        request = mock.request
        if not request.path:
            report.add(f"{prefix}.request.path", "path cannot be empty")

        method = request.method.upper()
        if not method:
            report.add(f"{prefix}.request.method", "method cannot be empty")
        elif method not in VALID_METHODS:
            report.add(f"{prefix}.request.method", f"invalid HTTP method '{request.method}'")

        # Only an entry without a body matcher shadows later entries on the same endpoint.
        key = (method, request.path)
        if key in endpoints:
            report.add(
                f"{prefix}.request",
                f"duplicate endpoint {method} {request.path}, an earlier entry always matches first",
                "warning",
            )
        if request.body is None:
            endpoints.add(key)

        status = mock.response.status_code
        if status < 100 or status > 599:
            report.add(f"{prefix}.response.statusCode", f"invalid HTTP status code: {status}")
    return report
