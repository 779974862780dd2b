"""Tests for data-directory resolution."""

import json
from dataclasses import fields

from bakery import config


def test_session_value_wins(tmp_path, monkeypatch):
    monkeypatch.setenv(config.ENV_DATA_DIR, str(tmp_path / "env"))

    assert config.resolve_data_dir(str(tmp_path / "session")) == (tmp_path / "session").resolve()


def test_environment_variable(tmp_path, monkeypatch):
    monkeypatch.setenv(config.ENV_DATA_DIR, str(tmp_path / "env"))

    assert config.resolve_data_dir() == (tmp_path / "env").resolve()


def test_persisted_settings_then_default(tmp_path, monkeypatch):
    monkeypatch.delenv(config.ENV_DATA_DIR, raising=False)
    monkeypatch.setattr(config, "_default_data_dir", lambda: tmp_path)

    assert config.resolve_data_dir() == tmp_path.resolve()

    (tmp_path / config.CONFIG_FILE_NAME).write_text(json.dumps({"data_dir": str(tmp_path / "moved")}), encoding="utf-8")
    assert config.resolve_data_dir() == (tmp_path / "moved").resolve()


def test_unreadable_settings_file_ignored(tmp_path, monkeypatch):
    monkeypatch.delenv(config.ENV_DATA_DIR, raising=False)
    monkeypatch.setattr(config, "_default_data_dir", lambda: tmp_path)
    (tmp_path / config.CONFIG_FILE_NAME).write_text("{not json", encoding="utf-8")

    assert config.resolve_data_dir() == tmp_path.resolve()


def test_settings_carry_only_paths():
    assert [f.name for f in fields(config.Settings)] == ["data_dir", "db_path"]
