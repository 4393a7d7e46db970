from __future__ import annotations

import json
from pathlib import Path

import pytest

from docweave.config import feature_flags
from docweave.config.settings import Settings, load_settings

_ENV_VARS = (
    "DOCWEAVE_CONFIG",
    "DOCWEAVE_DATA_DIR",
    "DOCWEAVE_STORE",
    "DOCWEAVE_LOCK_TTL",
    "DOCWEAVE_HEARTBEAT_TIMEOUT",
    "DOCWEAVE_HOST",
    "DOCWEAVE_PORT",
    "DOCWEAVE_LOG_LEVEL",
    "DOCWEAVE_CORS_ORIGINS",
    "LOG_LEVEL",
    "LOG_DIR",
)


@pytest.fixture
def workdir(tmp_path, monkeypatch) -> Path:
    monkeypatch.chdir(tmp_path)
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    feature_flags.refresh_cache()
    yield tmp_path
    feature_flags.refresh_cache()


def _write(path: Path, payload: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload), encoding="utf-8")


def test_feature_defaults_without_config(workdir: Path) -> None:
    assert feature_flags.load_feature_flags(refresh=True) == feature_flags.FEATURE_DEFAULTS
    assert feature_flags.is_enabled("enable_collaboration") is True
    assert feature_flags.is_enabled("not_a_flag") is False
    assert feature_flags.is_enabled("not_a_flag", default=True) is True


def test_feature_overrides_from_config(workdir: Path) -> None:
    _write(
        workdir / "config" / "docweave.json",
        {"features": {"enable_collaboration": False, "ignored": "yes"}},
    )
    flags = feature_flags.refresh_cache()
    assert flags["enable_collaboration"] is False
    assert flags["enable_versioning_api"] is True
    assert "ignored" not in flags


def test_explicit_config_path_wins(workdir: Path, monkeypatch) -> None:
    _write(workdir / "docweave.json", {"features": {"enable_versioning_api": False}})
    explicit = workdir / "elsewhere.json"
    _write(explicit, {"features": {"enable_versioning_api": True, "merge_advance_on_conflict": False}})
    monkeypatch.setenv("DOCWEAVE_CONFIG", str(explicit))

    flags = feature_flags.refresh_cache()
    assert flags["enable_versioning_api"] is True
    assert flags["merge_advance_on_conflict"] is False


def test_malformed_feature_config_is_ignored(workdir: Path) -> None:
    (workdir / "docweave.json").write_text("{broken", encoding="utf-8")
    assert feature_flags.refresh_cache() == feature_flags.FEATURE_DEFAULTS


def test_settings_defaults(workdir: Path) -> None:
    assert load_settings() == Settings()


def test_settings_from_config_then_env(workdir: Path, monkeypatch) -> None:
    _write(
        workdir / "config" / "docweave.json",
        {"server": {"port": 9100, "store": "memory", "cors_origins": ["http://a", "http://b"]}},
    )
    cfg = load_settings()
    assert cfg.port == 9100
    assert cfg.store == "memory"
    assert cfg.cors_origins == ("http://a", "http://b")

    monkeypatch.setenv("DOCWEAVE_PORT", "9200")
    monkeypatch.setenv("DOCWEAVE_STORE", "file")
    monkeypatch.setenv("DOCWEAVE_DATA_DIR", str(workdir / "docs"))
    monkeypatch.setenv("LOG_LEVEL", "debug")
    cfg = load_settings()
    assert cfg.port == 9200
    assert cfg.store == "file"
    assert cfg.data_dir == workdir / "docs"
    assert cfg.log_level == "DEBUG"

    cfg = load_settings({"port": 9300})
    assert cfg.port == 9300


def test_settings_reject_bad_values(workdir: Path, monkeypatch) -> None:
    monkeypatch.setenv("DOCWEAVE_PORT", "99999")
    monkeypatch.setenv("DOCWEAVE_STORE", "postgres")
    monkeypatch.setenv("DOCWEAVE_LOCK_TTL", "soon")
    cfg = load_settings()
    assert cfg.port == 8000
    assert cfg.store == "file"
    assert cfg.lock_ttl == 300.0


def test_settings_to_dict_is_json_ready(workdir: Path) -> None:
    payload = Settings(cors_origins=("http://x",)).to_dict()
    assert payload["data_dir"] == "data"
    assert payload["cors_origins"] == ["http://x"]
    json.dumps(payload)
