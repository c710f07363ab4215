"""Request matching against an ordered, immutable list of mock entries."""

from __future__ import annotations

import json
import random
from dataclasses import dataclass, field
from functools import cached_property
from typing import Any

from .models import DelayConfig, MockEntry

_INVALID = object()


@dataclass
class MockRequest:
    method: str
    path: str
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    @cached_property
    def json(self) -> Any:
        """Parsed JSON body, ``None`` when empty, ``_INVALID`` when unparseable."""

        if not self.body:
            return None
        try:
            return json.loads(self.body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            return _INVALID


def _strict_equal(expected: Any, actual: Any) -> bool:
    # JSON true must not compare equal to 1.
    if isinstance(expected, bool) or isinstance(actual, bool):
        return isinstance(expected, bool) and isinstance(actual, bool) and expected == actual
    if isinstance(expected, dict):
        if not isinstance(actual, dict) or expected.keys() != actual.keys():
            return False
        return all(_strict_equal(value, actual[key]) for key, value in expected.items())
    if isinstance(expected, list):
        if not isinstance(actual, list) or len(expected) != len(actual):
            return False
        return all(_strict_equal(e, a) for e, a in zip(expected, actual))
    return expected == actual


def body_matches(expected: dict[str, Any], actual: Any) -> bool:
    """Subset match: every expected key must be present in ``actual`` with an equal value.

    Nested objects recurse with the same rule, arrays and scalars must be
    exactly equal and keys only present in ``actual`` are ignored.
    """

    if not isinstance(actual, dict):
        return False
    for key, expected_value in expected.items():
        if key not in actual:
            return False
        actual_value = actual[key]
        if isinstance(expected_value, dict):
            if not body_matches(expected_value, actual_value):
                return False
            continue
        if not _strict_equal(expected_value, actual_value):
            return False
    return True


def compute_delay_ms(delay: DelayConfig | None, rng: random.Random | None = None) -> int:
    if delay is None or not delay.enabled:
        return 0
    if delay.fixed > 0:
        return delay.fixed
    if 0 <= delay.min <= delay.max:
        return (rng or random).randint(delay.min, delay.max)
    return 0


class RequestRouter:
    """First-match-wins lookup over the mock entries of one service usecase."""

    def __init__(self, mocks: list[MockEntry], delay: DelayConfig | None = None) -> None:
        self._mocks = tuple(mocks)
        self._delay = delay.model_copy() if delay is not None else DelayConfig()

    @property
    def mocks(self) -> tuple[MockEntry, ...]:
        return self._mocks

    @property
    def delay(self) -> DelayConfig:
        return self._delay

    def match(self, request: MockRequest) -> MockEntry | None:
        method = request.method.upper()
        for mock in self._mocks:
            if mock.request.method.upper() != method or mock.request.path != request.path:
                continue
            if mock.request.body is not None and not body_matches(mock.request.body, request.json):
                continue
            return mock
        return None

    def delay_ms(self) -> int:
        return compute_delay_ms(self._delay)

    def describe(self) -> list[str]:
        lines = []
        for mock in self._mocks:
            line = f"{mock.request.method.upper()} {mock.request.path}"
            if mock.request.body is not None:
                line += " (body match)"
            lines.append(line)
        return lines
