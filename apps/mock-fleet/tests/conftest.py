"""Test bootstrap for mock-fleet."""

from __future__ import annotations

import json
import socket
import sys
from pathlib import Path
from typing import Any, Iterator

import pytest
import yaml

APP_ROOT = Path(__file__).resolve().parents[1]

path_str = str(APP_ROOT)
if path_str not in sys.path:
    sys.path.insert(0, path_str)

from mock_fleet.logging_utils import configure_logging  # noqa: E402


def find_free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


class ConfigTree:
    """Writes a configuration directory the way operators lay it out."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def write_global(self, services: dict[str, str]) -> Path:
        payload = {"services": [{"name": name, "usecase": usecase} for name, usecase in services.items()]}
        path = self.root / "config.yaml"
        path.write_text(yaml.safe_dump(payload, sort_keys=False), encoding="utf-8")
        return path

    def write_service(self, name: str, port: int, /, **extra: Any) -> Path:
        service_dir = self.root / name
        service_dir.mkdir(parents=True, exist_ok=True)
        path = service_dir / "config.yaml"
        path.write_text(yaml.safe_dump({"port": port, **extra}, sort_keys=False), encoding="utf-8")
        return path

    def write_mocks(self, name: str, usecase: str, mocks: Any) -> Path:
        usecase_dir = self.root / name / "usecases" / usecase
        usecase_dir.mkdir(parents=True, exist_ok=True)
        path = usecase_dir / "all.json"
        text = mocks if isinstance(mocks, str) else json.dumps(mocks)
        path.write_text(text, encoding="utf-8")
        return path

    def add_service(self, name: str, usecase: str, port: int | None = None, *, status: int = 200) -> int:
        port = port or find_free_port()
        self.write_service(name, port)
        self.write_mocks(name, usecase, [ping_mock(status=status, body={"service": name, "usecase": usecase})])
        return port


def ping_mock(*, status: int = 200, body: Any = None, method: str = "GET", path: str = "/ping") -> dict[str, Any]:
    return {
        "request": {"path": path, "method": method},
        "response": {"statusCode": status, "headers": {"X-Mock": "fleet"}, "body": body or {"ok": True}},
    }


@pytest.fixture
def config_tree(tmp_path: Path) -> ConfigTree:
    root = tmp_path / "configs"
    root.mkdir()
    return ConfigTree(root)


@pytest.fixture(autouse=True, scope="session")
def _structured_logging() -> None:
    configure_logging("DEBUG", "plain")


@pytest.fixture
def restore_logging() -> Iterator[None]:
    yield
    configure_logging("DEBUG", "plain")
