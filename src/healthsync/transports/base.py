"""Transport ABC shared by the local server and radio clients.

A transport only carries data.  It never decides what ``since`` means and
never touches the coordinator's SyncState; it publishes its own connection
flag to listeners so the coordinator can recompute which transport to use.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from src.healthsync.errors import Result, TransportError
from src.healthsync.models import Batch

logger = logging.getLogger("healthsync.transports")

StatusListener = Callable[["Transport"], None]


@dataclass(frozen=True)
class UploadReceipt:
    """Acknowledgement of a successful ``send``.

    Attributes:
        processed_count: Records the remote side reported as processed.
        duplicate:       True when the remote already held the batch (HTTP 409).
    """

    processed_count: int = 0
    duplicate: bool = False


class Transport(ABC):
    """Abstract base for every batch-carrying transport.

    Subclasses must define:
    - ``NAME``: human label used as the error-message prefix ("Local Server").

    And implement:
    - ``test_reachable``, ``fetch``, ``send``
    """

    NAME: str = ""

    def __init__(self) -> None:
        self._connected = False
        self._last_error: TransportError | None = None
        self._listeners: list[StatusListener] = []

    # ------------------------------------------------------------------
    # Connection status
    # ------------------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def last_error(self) -> TransportError | None:
        return self._last_error

    def add_status_listener(self, listener: StatusListener) -> None:
        """Register a callback fired whenever the connection flag or last error changes."""
        self._listeners.append(listener)

    def remove_status_listener(self, listener: StatusListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _set_connected(self, connected: bool) -> None:
        changed = connected != self._connected
        self._connected = connected
        if changed:
            logger.info("%s: %s", self.NAME, "connected" if connected else "disconnected")
        if connected and self._last_error is not None:
            self._last_error = None
            changed = True
        if changed:
            self._notify()

    def _set_error(self, error: TransportError | None) -> None:
        self._last_error = error
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self)

    # ------------------------------------------------------------------
    # Capability set
    # ------------------------------------------------------------------

    @abstractmethod
    async def test_reachable(self) -> bool:
        """Probe the remote side and update the connection flag."""

    @abstractmethod
    async def fetch(self, since: datetime) -> Result[Batch]:
        """Return remote records newer than ``since``."""

    @abstractmethod
    async def send(self, batch: Batch) -> Result[UploadReceipt]:
        """Deliver ``batch`` to the remote side."""
