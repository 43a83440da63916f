import json
from pathlib import Path

import pytest

import marker_editor.config as config_module
from marker_editor.config import AppConfig, ConfigError, load_config


def test_from_mapping_resolves_paths(tmp_path: Path) -> None:
    config = AppConfig.from_mapping(
        {
            "plex_database": "plex/library.db",
            "storage_root": "storage",
            "database_file": "storage/marker_actions.db",
            "host": "0.0.0.0",
            "port": "8080",
        },
        base_path=tmp_path,
    )

    assert config.plex_database == (tmp_path / "plex" / "library.db").resolve()
    assert config.storage_root == (tmp_path / "storage").resolve()
    assert config.database_file == (tmp_path / "storage" / "marker_actions.db").resolve()
    assert config.host == "0.0.0.0"
    assert config.port == 8080
    assert config.storage_root.is_dir()


def test_defaults_apply_when_values_are_missing(tmp_path: Path) -> None:
    config = AppConfig.from_mapping({"plex_database": "library.db"}, base_path=tmp_path)

    assert config.host == config_module.DEFAULT_HOST
    assert config.port == config_module.DEFAULT_PORT
    assert config.database_file.name == "marker_actions.db"


def test_plex_database_is_required(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="plex_database"):
        AppConfig.from_mapping({"storage_root": "storage"}, base_path=tmp_path)


def test_invalid_port_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="port"):
        AppConfig.from_mapping({"plex_database": "library.db", "port": "http"}, base_path=tmp_path)


def test_storage_root_falls_back_when_preferred_is_unusable(
    tmp_path: Path, monkeypatch
) -> None:
    home_dir = tmp_path / "home"
    monkeypatch.setattr(config_module.Path, "home", lambda: home_dir)

    preferred_storage = tmp_path / "storage"
    preferred_storage.write_text("not a directory", encoding="utf-8")

    config = AppConfig.from_mapping(
        {
            "plex_database": "library.db",
            "storage_root": "storage",
            "database_file": "storage/marker_actions.db",
        },
        base_path=tmp_path,
    )

    expected_storage = (home_dir / ".marker_editor" / "storage").resolve()
    assert config.storage_root == expected_storage
    assert config.database_file == (expected_storage / "marker_actions.db").resolve()
    assert expected_storage.exists()


def test_load_config_honours_environment_override(tmp_path: Path, monkeypatch) -> None:
    path = tmp_path / "config" / "custom.json"
    path.parent.mkdir()
    path.write_text(json.dumps({"plex_database": "db/library.db", "port": 5000}), encoding="utf-8")
    monkeypatch.setenv(config_module.CONFIG_PATH_ENV, str(path))

    config = load_config()

    assert config.port == 5000
    assert config.plex_database == (tmp_path / "db" / "library.db").resolve()
    assert config.storage_root == (tmp_path / "storage").resolve()
