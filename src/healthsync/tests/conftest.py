"""Shared fixtures for the HealthSync test suite."""

from __future__ import annotations

from dataclasses import dataclass

import pytest

from src.healthsync.config_loader import SyncConfig, load_sync_config
from src.healthsync.coordinator import SyncCoordinator
from src.healthsync.sink import HealthSinkAdapter
from src.healthsync.state_store import InMemoryStore, SyncStateRepository
from src.healthsync.tests.fakes import FakeHealthStore, FakeRadioLink, FakeSyncServer, at
from src.healthsync.transports.local_server import LocalServerClient
from src.healthsync.transports.radio import RadioLinkClient

# Fixed "now" for every coordinator under test
NOW = at(12)


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sync_config() -> SyncConfig:
    """The bundled config, with radio pacing disabled so tests don't sleep."""
    config = load_sync_config()
    config.radio.inter_fragment_delay_ms = 0
    return config


# ---------------------------------------------------------------------------
# Collaborator fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def server() -> FakeSyncServer:
    return FakeSyncServer()


@pytest.fixture
def health_store() -> FakeHealthStore:
    return FakeHealthStore()


@pytest.fixture
def radio_link() -> FakeRadioLink:
    return FakeRadioLink()


@pytest.fixture
def kv_store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def local_client(server: FakeSyncServer, sync_config: SyncConfig) -> LocalServerClient:
    return LocalServerClient(config=sync_config.local_server, http_client=server.client())


@pytest.fixture
def radio_client(radio_link: FakeRadioLink, sync_config: SyncConfig) -> RadioLinkClient:
    return RadioLinkClient(radio_link, config=sync_config.radio)


# ---------------------------------------------------------------------------
# Coordinator harness
# ---------------------------------------------------------------------------


@dataclass
class Harness:
    coordinator: SyncCoordinator
    local: LocalServerClient
    radio: RadioLinkClient
    server: FakeSyncServer
    link: FakeRadioLink
    store: FakeHealthStore
    repository: SyncStateRepository
    kv: InMemoryStore


def build_harness(
    server: FakeSyncServer,
    link: FakeRadioLink,
    store: FakeHealthStore,
    kv: InMemoryStore,
    config: SyncConfig,
    local: LocalServerClient | None = None,
    radio: RadioLinkClient | None = None,
) -> Harness:
    local = local or LocalServerClient(config=config.local_server, http_client=server.client())
    radio = radio or RadioLinkClient(link, config=config.radio)
    repository = SyncStateRepository(kv, config.storage)
    coordinator = SyncCoordinator(
        local,
        radio,
        HealthSinkAdapter(store),
        repository,
        config=config,
        clock=lambda: NOW,
    )
    return Harness(coordinator, local, radio, server, link, store, repository, kv)


@pytest.fixture
def harness(
    server: FakeSyncServer,
    radio_link: FakeRadioLink,
    health_store: FakeHealthStore,
    kv_store: InMemoryStore,
    sync_config: SyncConfig,
) -> Harness:
    return build_harness(server, radio_link, health_store, kv_store, sync_config)
