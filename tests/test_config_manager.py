"""
配置管理测试：config.json、环境变量回退与 YAML 表格定义
"""
import json
import os

import pytest

from gridkit.common.config_manager import ConfigManager, load_grid_definition
from gridkit.common.connection_registry import ConnectionRegistry


@pytest.fixture
def manager(monkeypatch):
    for name in ("DATABASE_URL", "GRIDKIT_DB_DRIVER", "GRIDKIT_DB_PATH", "GRIDKIT_DB_PORT"):
        monkeypatch.delenv(name, raising=False)
    manager = ConfigManager()
    os.makedirs(manager.config_dir, exist_ok=True)
    yield manager
    if os.path.exists(manager.config_file):
        os.remove(manager.config_file)
    manager.reload_config()


def _write_config(manager, data):
    with open(manager.config_file, "w", encoding="utf-8") as f:
        json.dump(data, f)
    return manager.reload_config()


def test_singleton():
    assert ConfigManager() is ConfigManager()


def test_config_file_sections(manager):
    config = _write_config(
        manager,
        {
            "databases": {"reports": {"driver": "sqlite", "path": ":memory:"}},
            "grid": {"records_per_page": 10},
        },
    )
    assert config["databases"]["reports"]["driver"] == "sqlite"
    assert manager.get_grid_defaults("records_per_page") == 10
    assert manager.get_grid_defaults("include_all_option") is True
    assert manager.get_database_settings("missing") is None


def test_broken_config_file_falls_back_to_defaults(manager):
    with open(manager.config_file, "w", encoding="utf-8") as f:
        f.write("{not json")
    manager.reload_config()
    assert manager.get_grid_defaults("records_per_page") == 25


def test_default_database_from_url(manager, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "sqlite:///:memory:")
    manager.reload_config()
    assert manager.get_database_settings() == {"url": "sqlite:///:memory:"}


def test_default_database_from_variables(manager, monkeypatch):
    monkeypatch.setenv("GRIDKIT_DB_DRIVER", "sqlite")
    monkeypatch.setenv("GRIDKIT_DB_PATH", ":memory:")
    monkeypatch.setenv("GRIDKIT_DB_PORT", "not-a-port")
    manager.reload_config()
    assert manager.get_database_settings() == {"driver": "sqlite", "path": ":memory:"}


def test_registry_uses_configured_settings(manager):
    _write_config(manager, {"databases": {"reports": {"driver": "sqlite", "path": ":memory:"}}})
    registry = ConnectionRegistry()
    db = registry.get("reports")
    assert db.driver == "sqlite"
    assert db.test_connection() is True
    registry.close_all()


def test_grid_definition_must_be_mapping(tmp_path):
    path = tmp_path / "grid.yaml"
    path.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_grid_definition(str(path))
