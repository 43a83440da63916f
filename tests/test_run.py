"""Tests for the run.py entrypoint helpers."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

import run


@pytest.fixture()
def config_file(tmp_path: Path, media_database: Path, monkeypatch) -> Path:
    monkeypatch.setattr(run, "_prepare_logging", lambda storage_root, **kwargs: None)
    path = tmp_path / "config" / "test.json"
    path.parent.mkdir()
    path.write_text(
        json.dumps(
            {
                "plex_database": str(media_database),
                "storage_root": "storage",
                "database_file": "storage/marker_actions.db",
                "port": 4000,
            }
        ),
        encoding="utf-8",
    )
    return path


@pytest.fixture()
def runner() -> CliRunner:
    return CliRunner()


def test_normalize_root_path() -> None:
    assert run._normalize_root_path(None) == ""
    assert run._normalize_root_path("  ") == ""
    assert run._normalize_root_path("markers/") == "/markers"
    assert run._normalize_root_path("/a/b") == "/a/b"


def test_check_shift_prints_json(runner: CliRunner, config_file: Path) -> None:
    result = runner.invoke(run.cli, ["check-shift", "10", "--json", "--config", str(config_file)])

    assert result.exit_code == 0, result.output
    body = json.loads(result.output)
    assert body["applied"] is False
    assert body["conflict"] is True
    assert [item["markerId"] for item in body["candidates"]] == [100, 101]


def test_shift_applies_clean_changes(runner: CliRunner, config_file: Path, marker_rows) -> None:
    result = runner.invoke(run.cli, ["shift", "11", "--start", "1000", "--config", str(config_file)])

    assert result.exit_code == 0, result.output
    assert "Shift applied" in result.output
    assert marker_rows()[102][:2] == (1000, 11000)


def test_shift_exits_with_two_when_resolution_is_needed(runner: CliRunner, config_file: Path, marker_rows) -> None:
    before = marker_rows()

    result = runner.invoke(run.cli, ["shift", "10", "--start", "20000", "--config", str(config_file)])

    assert result.exit_code == 2
    assert "Shift not applied (conflict=True, overflow=False)" in result.output
    assert "marker 101 (credits) on item 10: 560000-600000 -> 580000-600000 truncated" in result.output
    assert marker_rows() == before


def test_shift_with_ignored_marker(runner: CliRunner, config_file: Path, marker_rows) -> None:
    result = runner.invoke(
        run.cli,
        ["shift", "10", "--start", "20000", "--ignore", "100", "--config", str(config_file)],
    )

    assert result.exit_code == 0, result.output
    assert marker_rows()[101][:2] == (580000, 600000)
    assert marker_rows()[100][:2] == (500000, 550000)


def test_shift_reports_engine_errors(runner: CliRunner, config_file: Path) -> None:
    result = runner.invoke(run.cli, ["shift", "999", "--start", "1000", "--config", str(config_file)])

    assert result.exit_code == 1
    assert "Metadata item 999 not found" in result.output


def test_invalid_filter_is_rejected(runner: CliRunner, config_file: Path) -> None:
    result = runner.invoke(run.cli, ["check-shift", "10", "--apply-to", "9", "--config", str(config_file)])

    assert result.exit_code == 2


def test_initialization_failure_exits(runner: CliRunner, tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setattr(run, "_prepare_logging", lambda storage_root, **kwargs: None)
    path = tmp_path / "config" / "broken.json"
    path.parent.mkdir()
    path.write_text(json.dumps({"plex_database": "missing.db"}), encoding="utf-8")

    result = runner.invoke(run.cli, ["check-shift", "10", "--config", str(path)])

    assert result.exit_code == 1
    assert "Initialization failed" in result.output


def test_serve_wires_uvicorn(monkeypatch, config_file: Path) -> None:
    captured = {}

    class DummyConfig:
        def __init__(self, app, **kwargs):
            captured["app"] = app
            captured["config_kwargs"] = kwargs
            self.host = kwargs["host"]
            self.port = kwargs["port"]

    class DummyServer:
        def __init__(self, config):
            captured["server_config"] = config
            captured["server_instance"] = self

        def run(self):
            captured["server_run"] = True

    monkeypatch.setattr(run.uvicorn, "Config", DummyConfig)
    monkeypatch.setattr(run.uvicorn, "Server", DummyServer)

    run.serve(host=None, port=None, root_path="markers", config=config_file)

    kwargs = captured["config_kwargs"]
    assert kwargs["host"] == "127.0.0.1"
    assert kwargs["port"] == 4000
    assert kwargs["root_path"] == "/markers"
    assert captured["server_run"]
    assert captured["app"].state.server is captured["server_instance"]
    assert captured["app"].state.action_log is not None


def test_markers_command_lists_markers(runner: CliRunner, config_file: Path) -> None:
    result = runner.invoke(run.cli, ["markers", "2", "--config", str(config_file)])

    assert result.exit_code == 0, result.output
    assert "S01E01 Pilot" in result.output
    assert "3 markers across 2 items" in result.output


def test_markers_command_reports_unknown_items(runner: CliRunner, config_file: Path) -> None:
    result = runner.invoke(run.cli, ["markers", "999", "--config", str(config_file)])

    assert result.exit_code == 1
    assert "Lookup failed" in result.output
