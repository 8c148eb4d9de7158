"""Tests for sync_config.yaml loading and the environment Settings."""

from __future__ import annotations

import dataclasses
import textwrap
from pathlib import Path

import pytest

from src.config import Settings
from src.healthsync import config_loader
from src.healthsync.config_loader import (
    ConfigValidationError,
    LocalServerConfig,
    SyncConfig,
    get_sync_config,
    load_sync_config,
    reload_sync_config,
)


def _write(tmp_path: Path, body: str) -> Path:
    path = tmp_path / "sync_config.yaml"
    path.write_text(textwrap.dedent(body), encoding="utf-8")
    return path


@pytest.fixture
def restore_singleton():
    saved = config_loader._config
    yield
    config_loader._config = saved


# ---------------------------------------------------------------------------
# YAML loader
# ---------------------------------------------------------------------------


class TestLoadSyncConfig:
    def test_bundled_defaults(self) -> None:
        config = load_sync_config()
        assert config.scheduler.interval_seconds == 30
        assert config.local_server.base_url() == "http://192.168.1.100:8080/api/v1"
        assert config.local_server.page_limit == 500
        assert len(config.local_server.discovery_hosts) == 10
        assert config.radio.max_fragment_payload == 500
        assert config.radio.inter_fragment_delay_s == pytest.approx(0.1)
        assert config.storage.sync_state_key == "HybridSyncState"

    def test_holds_only_typed_sections(self) -> None:
        names = {f.name for f in dataclasses.fields(SyncConfig)}
        assert names == {"version", "scheduler", "local_server", "radio", "storage"}

    def test_missing_sections_use_defaults(self, tmp_path: Path) -> None:
        config = load_sync_config(_write(tmp_path, 'version: "2.0"\n'))
        assert config.version == "2.0"
        assert config.local_server.port == 8080
        assert config.radio.read_timeout_s == 10.0

    def test_all_errors_reported_together(self, tmp_path: Path) -> None:
        path = _write(
            tmp_path,
            """
            scheduler:
              interval_seconds: 0
            local_server:
              port: eighty
              api_prefix: api
            radio:
              max_fragment_payload: 0
            storage:
              sync_state_key: same
              retry_queue_key: same
            """,
        )
        with pytest.raises(ConfigValidationError) as excinfo:
            load_sync_config(path)
        message = str(excinfo.value)
        assert "5 validation error(s)" in message
        assert "scheduler.interval_seconds" in message
        assert "local_server.port must be a number" in message
        assert "api_prefix" in message
        assert "radio.max_fragment_payload" in message
        assert "storage keys must be distinct" in message

    def test_section_must_be_mapping(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigValidationError, match="'radio' must be a mapping"):
            load_sync_config(_write(tmp_path, "radio: [1, 2]\n"))

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_sync_config(tmp_path / "nope.yaml")

    def test_malformed_yaml(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigValidationError, match="YAML parse error"):
            load_sync_config(_write(tmp_path, "scheduler: [unclosed\n"))

    def test_base_url_overrides(self) -> None:
        config = LocalServerConfig(host="10.0.0.1", port=9000)
        assert config.base_url() == "http://10.0.0.1:9000/api/v1"
        assert config.base_url("other", 1) == "http://other:1/api/v1"


class TestSingleton:
    def test_get_is_cached(self, restore_singleton) -> None:
        assert get_sync_config() is get_sync_config()

    def test_reload_replaces(self, tmp_path: Path, restore_singleton) -> None:
        before = get_sync_config()
        path = _write(tmp_path, "scheduler:\n  interval_seconds: 5\n")
        after = reload_sync_config(path)
        assert after is not before
        assert get_sync_config().scheduler.interval_seconds == 5

    def test_invalid_reload_keeps_old(self, tmp_path: Path, restore_singleton) -> None:
        before = get_sync_config()
        with pytest.raises(ConfigValidationError):
            reload_sync_config(_write(tmp_path, "scheduler:\n  interval_seconds: -1\n"))
        assert get_sync_config() is before


# ---------------------------------------------------------------------------
# Environment settings
# ---------------------------------------------------------------------------


class TestSettings:
    def test_defaults(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        monkeypatch.chdir(tmp_path)
        settings = Settings()
        assert settings.app_name == "HealthSync"
        assert settings.local_server_host is None
        assert settings.discover_local_server is False
        assert settings.sync_interval_seconds is None
        assert "debug" not in Settings.model_fields

    def test_prefixed_environment(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("HEALTHSYNC_LOCAL_SERVER_HOST", "10.0.0.7")
        monkeypatch.setenv("HEALTHSYNC_LOCAL_SERVER_PORT", "9001")
        monkeypatch.setenv("HEALTHSYNC_SYNC_INTERVAL_SECONDS", "15")
        monkeypatch.setenv("HEALTHSYNC_DISCOVER_LOCAL_SERVER", "true")
        settings = Settings()
        assert settings.local_server_host == "10.0.0.7"
        assert settings.local_server_port == 9001
        assert settings.sync_interval_seconds == 15.0
        assert settings.discover_local_server is True
