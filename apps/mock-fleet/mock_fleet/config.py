"""Configuration loading for the global, service and mock files."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError as PydanticValidationError

from .errors import ConfigError, ConfigErrorReason
from .models import GlobalConfig, MockEntry, ServiceConfig

CONFIG_FILENAMES = ("config.yaml", "config.yml")
USECASES_DIR = "usecases"
MOCK_FILENAME = "all.json"


def _config_file(directory: Path) -> Path:
    for filename in CONFIG_FILENAMES:
        candidate = directory / filename
        if candidate.exists():
            return candidate
    return directory / CONFIG_FILENAMES[0]


def global_config_path(root: Path) -> Path:
    return _config_file(Path(root))


def service_config_path(root: Path, name: str) -> Path:
    return _config_file(Path(root) / name)


def mock_file_path(root: Path, name: str, usecase: str) -> Path:
    return Path(root) / name / USECASES_DIR / usecase / MOCK_FILENAME


def _read_text(path: Path, what: str) -> str:
    if not path.exists():
        raise ConfigError(path, ConfigErrorReason.MISSING, f"{what} not found")
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigError(path, ConfigErrorReason.UNREADABLE, f"error reading {what}", exc) from exc


def _load_yaml_mapping(path: Path, what: str) -> dict[str, Any]:
    text = _read_text(path, what)
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(
            path, ConfigErrorReason.MALFORMED, f"error parsing {what}, check YAML syntax", exc
        ) from exc
    if data is None:
        raise ConfigError(path, ConfigErrorReason.EMPTY, f"{what} is empty")
    if not isinstance(data, dict):
        raise ConfigError(path, ConfigErrorReason.MALFORMED, f"{what} must contain a mapping")
    return data


def load_global(path: Path) -> GlobalConfig:
    """Load the global configuration listing services and their usecases."""

    path = Path(path)
    data = _load_yaml_mapping(path, "global configuration")
    try:
        return GlobalConfig.model_validate(data)
    except PydanticValidationError as exc:
        raise ConfigError(
            path, ConfigErrorReason.MALFORMED, "global configuration has an unexpected shape", exc
        ) from exc


def load_service(root: Path, name: str) -> ServiceConfig:
    """Load ``<root>/<name>/config.yaml``; ``name`` defaults to the directory name."""

    path = service_config_path(root, name)
    data = _load_yaml_mapping(path, f"service configuration for '{name}'")
    try:
        config = ServiceConfig.model_validate(data)
    except PydanticValidationError as exc:
        raise ConfigError(
            path,
            ConfigErrorReason.MALFORMED,
            f"service configuration for '{name}' has an unexpected shape",
            exc,
        ) from exc
    if not config.name:
        config.name = name
    return config


def load_mocks(root: Path, name: str, usecase: str) -> list[MockEntry]:
    """Load the ordered mock list for one service usecase.

    An empty list is rejected: a service without mocks answers nothing but 404s.
    """

    path = mock_file_path(root, name, usecase)
    what = f"mock configurations for '{name}/{usecase}'"
    text = _read_text(path, what)
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ConfigError(
            path, ConfigErrorReason.MALFORMED, f"error parsing {what}, check JSON syntax", exc
        ) from exc
    if not isinstance(data, list):
        raise ConfigError(path, ConfigErrorReason.MALFORMED, f"{what} must be a JSON array")
    if not data:
        raise ConfigError(path, ConfigErrorReason.EMPTY, f"no {what} found")
    try:
        return [MockEntry.model_validate(item) for item in data]
    except PydanticValidationError as exc:
        raise ConfigError(path, ConfigErrorReason.MALFORMED, f"{what} have an unexpected shape", exc) from exc
