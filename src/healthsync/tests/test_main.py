"""Tests for the headless runner wiring."""

from __future__ import annotations

from pathlib import Path

from src.config import Settings
from src.healthsync.models import TransportStatus
from src.healthsync.tests.fakes import at, hr
from src.main import build_coordinator


def test_build_coordinator_applies_overrides(tmp_path: Path) -> None:
    settings = Settings(
        local_server_host="10.0.0.5",
        state_file_path=str(tmp_path / "state.json"),
        health_store_path=str(tmp_path / "samples.jsonl"),
        sync_interval_seconds=12,
    )
    coordinator = build_coordinator(settings)
    assert coordinator.local_server_address == ("10.0.0.5", 8080)
    assert coordinator.sync_interval == 12
    assert coordinator.status().transport is TransportStatus.OFFLINE


def test_build_coordinator_restores_persisted_queue(tmp_path: Path) -> None:
    settings = Settings(
        state_file_path=str(tmp_path / "state.json"),
        health_store_path=str(tmp_path / "samples.jsonl"),
    )
    build_coordinator(settings).queue_outbound([hr("a", at(8))])
    assert build_coordinator(settings).status().pending_count == 1
