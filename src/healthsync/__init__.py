"""HealthSync hybrid transport sync engine.

Synchronizes wearable health data between the watch and the phone-side
health store over whichever transport is available: the local sync server
(HTTP) or a direct radio link.

Subpackages:
    transports/ — LocalServerClient, RadioLinkClient, fragmentation

Core modules:
    models        — Records, Batch, SyncState watermarks, status snapshot
    schemas       — Pydantic wire schemas and encode/decode helpers
    errors        — Error taxonomy and the typed transport Result
    coordinator   — SyncCoordinator: transport selection and sync cycles
    sink          — HealthStore ABC and HealthSinkAdapter
    state_store   — Durable key-value storage for state and queues
    scheduler     — Cancellable periodic ticker
    dedup         — Record dedup keys and cache
    config_loader — Load/validate/hot-reload sync_config.yaml
"""

from src.healthsync.config_loader import SyncConfig, get_sync_config
from src.healthsync.coordinator import SyncCoordinator
from src.healthsync.models import (
    Batch,
    DataType,
    HeartRate,
    Sleep,
    StepCount,
    SyncState,
    SyncStatus,
    TransportStatus,
    Workout,
)

__all__ = [
    "SyncCoordinator",
    "Batch",
    "DataType",
    "HeartRate",
    "StepCount",
    "Sleep",
    "Workout",
    "SyncState",
    "SyncStatus",
    "TransportStatus",
    "SyncConfig",
    "get_sync_config",
]
