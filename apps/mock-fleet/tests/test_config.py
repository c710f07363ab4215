from __future__ import annotations

from pathlib import Path

import pytest

from mock_fleet.config import global_config_path, load_global, load_mocks, load_service
from mock_fleet.errors import ConfigError, ConfigErrorReason

from conftest import ConfigTree, ping_mock


def test_load_global_reads_service_references(config_tree: ConfigTree) -> None:
    path = config_tree.write_global({"payments": "happy", "users": "errors"})

    config = load_global(path)

    assert [(ref.name, ref.usecase) for ref in config.services] == [("payments", "happy"), ("users", "errors")]
    assert config.usecases() == {"payments": "happy", "users": "errors"}


def test_global_config_path_accepts_yml(config_tree: ConfigTree) -> None:
    (config_tree.root / "config.yml").write_text("services: []\n", encoding="utf-8")

    assert global_config_path(config_tree.root).name == "config.yml"


def test_load_global_missing_file(tmp_path: Path) -> None:
    with pytest.raises(ConfigError) as excinfo:
        load_global(tmp_path / "config.yaml")

    assert excinfo.value.reason is ConfigErrorReason.MISSING


def test_load_global_malformed_yaml(config_tree: ConfigTree) -> None:
    path = config_tree.root / "config.yaml"
    path.write_text("services: [\n  - name: a\n", encoding="utf-8")

    with pytest.raises(ConfigError) as excinfo:
        load_global(path)

    assert excinfo.value.reason is ConfigErrorReason.MALFORMED
    assert excinfo.value.cause is not None


def test_load_global_empty_document(config_tree: ConfigTree) -> None:
    path = config_tree.root / "config.yaml"
    path.write_text("", encoding="utf-8")

    with pytest.raises(ConfigError) as excinfo:
        load_global(path)

    assert excinfo.value.reason is ConfigErrorReason.EMPTY


def test_load_service_defaults_name_to_directory(config_tree: ConfigTree) -> None:
    config_tree.write_service("payments", 9100, delay={"enabled": True, "fixed": 250})

    config = load_service(config_tree.root, "payments")

    assert config.name == "payments"
    assert config.port == 9100
    assert config.delay.enabled is True
    assert config.delay.fixed == 250


def test_load_service_keeps_explicit_name(config_tree: ConfigTree) -> None:
    config_tree.write_service("payments", 9100, name="Payments API")

    assert load_service(config_tree.root, "payments").name == "Payments API"


def test_load_service_wrong_shape_is_malformed(config_tree: ConfigTree) -> None:
    config_tree.write_service("payments", "not-a-port")

    with pytest.raises(ConfigError) as excinfo:
        load_service(config_tree.root, "payments")

    assert excinfo.value.reason is ConfigErrorReason.MALFORMED


def test_load_mocks_preserves_file_order(config_tree: ConfigTree) -> None:
    config_tree.write_mocks(
        "payments",
        "happy",
        [
            ping_mock(path="/first"),
            {
                "request": {"path": "/second", "method": "POST", "body": {"id": 1}},
                "response": {"statusCode": 201, "headers": {}, "body": {"created": True}},
            },
        ],
    )

    mocks = load_mocks(config_tree.root, "payments", "happy")

    assert [mock.request.path for mock in mocks] == ["/first", "/second"]
    assert mocks[1].request.body == {"id": 1}
    assert mocks[1].response.status_code == 201


def test_load_mocks_empty_list_is_an_error(config_tree: ConfigTree) -> None:
    config_tree.write_mocks("payments", "happy", [])

    with pytest.raises(ConfigError) as excinfo:
        load_mocks(config_tree.root, "payments", "happy")

    assert excinfo.value.reason is ConfigErrorReason.EMPTY


def test_load_mocks_invalid_json(config_tree: ConfigTree) -> None:
    config_tree.write_mocks("payments", "happy", "[{not json")

    with pytest.raises(ConfigError) as excinfo:
        load_mocks(config_tree.root, "payments", "happy")

    assert excinfo.value.reason is ConfigErrorReason.MALFORMED
    assert "all.json" in str(excinfo.value)


def test_load_mocks_missing_usecase(config_tree: ConfigTree) -> None:
    with pytest.raises(ConfigError) as excinfo:
        load_mocks(config_tree.root, "payments", "absent")

    assert excinfo.value.reason is ConfigErrorReason.MISSING
