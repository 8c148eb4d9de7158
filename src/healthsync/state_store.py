"""Durable storage for the sync watermarks and pending record queues.

Everything the coordinator must remember across restarts lives behind a
tiny key-value interface:

    sync_state_key     → serialized SyncState (JSON)
    retry_queue_key    → records whose sink write failed (JSON Batch)
    outbound_queue_key → locally produced records not yet uploaded (JSON Batch)

``JsonFileStore`` keeps all keys in one JSON document on disk and replaces
it atomically on every write.  ``InMemoryStore`` is used by tests and by
callers that opt out of persistence.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path

from src.healthsync.config_loader import StorageConfig
from src.healthsync.errors import DecodingError
from src.healthsync.models import Batch, SyncState
from src.healthsync.schemas import decode_batch, decode_sync_state, encode_batch, encode_sync_state

logger = logging.getLogger("healthsync.state_store")


# ---------------------------------------------------------------------------
# Key-value stores
# ---------------------------------------------------------------------------


class KeyValueStore(ABC):
    """Minimal durable string store."""

    @abstractmethod
    def get(self, key: str) -> str | None:
        """Return the stored value, or None if the key is absent."""

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...


class InMemoryStore(KeyValueStore):
    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)


class JsonFileStore(KeyValueStore):
    """All keys in a single JSON object on disk.

    The file is read lazily on first access and rewritten through a temp
    file + ``os.replace`` so a crash mid-write never leaves a torn document.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()
        self._data: dict[str, str] | None = None

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> dict[str, str]:
        if self._data is not None:
            return self._data
        if not self._path.exists():
            self._data = {}
            return self._data
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("State file %s unreadable (%s); starting empty", self._path, exc)
            raw = {}
        if not isinstance(raw, dict):
            logger.warning("State file %s is not a JSON object; starting empty", self._path)
            raw = {}
        self._data = {str(k): str(v) for k, v in raw.items()}
        return self._data

    def _flush(self, data: dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self._path.name}.", dir=str(self._path.parent)
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, indent=2, sort_keys=True)
            os.replace(tmp_name, self._path)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._load()
            data[key] = value
            self._flush(data)

    def delete(self, key: str) -> None:
        with self._lock:
            data = self._load()
            if data.pop(key, None) is not None:
                self._flush(data)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class SyncStateRepository:
    """Typed load/save of the coordinator's persisted state.

    Corrupt entries are logged and treated as absent: a broken SyncState
    becomes a fresh (epoch) state, a broken queue becomes an empty batch.
    """

    def __init__(self, store: KeyValueStore, config: StorageConfig | None = None) -> None:
        self._store = store
        self._config = config or StorageConfig()

    # ── SyncState ──

    def load_state(self) -> SyncState:
        raw = self._store.get(self._config.sync_state_key)
        if raw is None:
            logger.info("No persisted sync state; starting from epoch")
            return SyncState()
        try:
            return decode_sync_state(raw)
        except DecodingError as exc:
            logger.warning("Persisted sync state is corrupt (%s); starting from epoch", exc)
            return SyncState()

    def save_state(self, state: SyncState) -> None:
        self._store.set(self._config.sync_state_key, encode_sync_state(state).decode("utf-8"))
        logger.debug("Persisted sync state (last_full_sync=%s)", state.last_full_sync)

    # ── Pending queues ──

    def load_retry_queue(self) -> Batch:
        return self._load_batch(self._config.retry_queue_key)

    def save_retry_queue(self, batch: Batch) -> None:
        self._save_batch(self._config.retry_queue_key, batch)

    def load_outbound(self) -> Batch:
        return self._load_batch(self._config.outbound_queue_key)

    def save_outbound(self, batch: Batch) -> None:
        self._save_batch(self._config.outbound_queue_key, batch)

    def clear(self) -> None:
        """Forget the state and both queues."""
        for key in (
            self._config.sync_state_key,
            self._config.retry_queue_key,
            self._config.outbound_queue_key,
        ):
            self._store.delete(key)
        logger.info("Cleared persisted sync data")

    def _load_batch(self, key: str) -> Batch:
        raw = self._store.get(key)
        if raw is None:
            return Batch()
        try:
            return decode_batch(raw)
        except DecodingError as exc:
            logger.warning("Persisted queue %r is corrupt (%s); discarding", key, exc)
            return Batch()

    def _save_batch(self, key: str, batch: Batch) -> None:
        if batch.is_empty:
            self._store.delete(key)
            return
        self._store.set(key, encode_batch(batch).decode("utf-8"))
