"""Direct radio link to the paired watch.

The physical link (scanning, pairing, GATT-style reads and writes) is a
platform binding behind the ``RadioLink`` ABC.  ``RadioLinkClient`` adds the
connection state machine, fragmentation, inbound reassembly and the
``Transport`` contract on top of it.

Service layout:
    SERVICE_UUID               — custom sync service
    DATA_CHARACTERISTIC        — fragmented JSON Batch, write + notify
    SYNC_STATE_CHARACTERISTIC  — unfragmented JSON SyncState, read + write

Connection lifecycle::

    DISCONNECTED → SCANNING → CONNECTING → SERVICE_DISCOVERY → READY
                         any unexpected disconnect → DISCONNECTED

The client never reconnects on its own; the coordinator decides when to retry.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable

from src.healthsync.config_loader import MAX_FRAGMENTS, RadioConfig, get_sync_config
from src.healthsync.errors import (
    DecodingError,
    EncodingError,
    NetworkError,
    Result,
    TransportError,
    TransportUnavailableError,
)
from src.healthsync.models import Batch, SyncState
from src.healthsync.schemas import decode_batch, decode_sync_state, encode_batch, encode_sync_state
from src.healthsync.transports.base import Transport, UploadReceipt
from src.healthsync.transports.framing import FragmentAssembler, fragment

logger = logging.getLogger("healthsync.transports.radio")

SERVICE_UUID = "12345678-1234-5678-9ABC-DEF012345678"
DATA_CHARACTERISTIC = "12345678-1234-5678-9ABC-DEF012345679"
SYNC_STATE_CHARACTERISTIC = "12345678-1234-5678-9ABC-DEF01234567A"


class RadioState(str, Enum):
    DISCONNECTED = "DISCONNECTED"
    SCANNING = "SCANNING"
    CONNECTING = "CONNECTING"
    SERVICE_DISCOVERY = "SERVICE_DISCOVERY"
    READY = "READY"


@dataclass(frozen=True)
class RadioDevice:
    """A peer seen during a scan.

    Attributes:
        identifier: Platform address / UUID of the peer.
        name:       Advertised name, if any.
        rssi:       Signal strength at discovery time.
    """

    identifier: str
    name: str | None = None
    rssi: int | None = None


# ---------------------------------------------------------------------------
# Platform binding
# ---------------------------------------------------------------------------


class RadioLink(ABC):
    """Platform radio stack.  Implementations raise on any I/O failure.

    Notifications and link loss are delivered through the callbacks passed
    to ``subscribe`` and ``set_disconnect_handler``.
    """

    @abstractmethod
    async def scan(self, service_uuid: str) -> list[RadioDevice]:
        """Scan for peers advertising ``service_uuid`` and return what was seen."""

    @abstractmethod
    async def stop_scan(self) -> None:
        ...

    @abstractmethod
    async def connect(self, device: RadioDevice) -> None:
        ...

    @abstractmethod
    async def discover_services(self, service_uuid: str, characteristics: list[str]) -> None:
        """Resolve the service; raise if any characteristic is missing."""

    @abstractmethod
    async def disconnect(self) -> None:
        ...

    @abstractmethod
    async def write(self, characteristic: str, data: bytes) -> None:
        ...

    @abstractmethod
    async def read(self, characteristic: str) -> bytes:
        ...

    @abstractmethod
    async def subscribe(self, characteristic: str, on_notify: Callable[[bytes], None]) -> None:
        ...

    @abstractmethod
    def set_disconnect_handler(self, handler: Callable[[Exception | None], None]) -> None:
        ...


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class RadioLinkClient(Transport):
    """Connection-oriented transport over a ``RadioLink``.

    With ``link=None`` (no radio on this host) every operation reports the
    transport as unavailable.
    """

    NAME = "Radio"

    def __init__(self, link: RadioLink | None, config: RadioConfig | None = None) -> None:
        super().__init__()
        self._link = link
        self._config = config or get_sync_config().radio
        self._state = RadioState.DISCONNECTED
        self._device: RadioDevice | None = None
        self._discovered: list[RadioDevice] = []
        self._assembler = FragmentAssembler()
        self._inbound: list[Batch] = []
        self._closing = False
        if link is not None:
            link.set_disconnect_handler(self.handle_disconnect)

    @property
    def state(self) -> RadioState:
        return self._state

    @property
    def device(self) -> RadioDevice | None:
        return self._device

    @property
    def discovered_devices(self) -> list[RadioDevice]:
        return list(self._discovered)

    @property
    def pending_inbound(self) -> int:
        return len(self._inbound)

    def _transition(self, state: RadioState) -> None:
        if state is not self._state:
            logger.debug("Radio: %s → %s", self._state.value, state.value)
            self._state = state
            self._set_connected(state is RadioState.READY)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def matches(self, device: RadioDevice) -> bool:
        """True if the device's advertised name matches a configured pattern."""
        if not self._config.device_name_patterns:
            return True
        name = device.name or ""
        return any(pattern in name for pattern in self._config.device_name_patterns)

    async def start_scanning(self) -> list[RadioDevice]:
        """Scan for peers and keep those whose name matches the configured patterns."""
        if self._link is None:
            return []
        if self._state is RadioState.READY:
            logger.debug("Radio: already connected, scan skipped")
            return self.discovered_devices
        self._transition(RadioState.SCANNING)
        try:
            seen = await self._link.scan(SERVICE_UUID)
        except Exception as exc:
            self._transition(RadioState.DISCONNECTED)
            self._set_error(NetworkError(f"Scan failed: {exc}"))
            logger.warning("Radio: scan failed: %s", exc)
            return []
        self._discovered = [d for d in seen if self.matches(d)]
        logger.info(
            "Radio: scan saw %d device(s), %d match", len(seen), len(self._discovered)
        )
        self._transition(RadioState.DISCONNECTED)
        return self.discovered_devices

    async def stop_scanning(self) -> None:
        if self._link is None or self._state is not RadioState.SCANNING:
            return
        await self._link.stop_scan()
        self._transition(RadioState.DISCONNECTED)

    async def connect(self, device: RadioDevice) -> Result[None]:
        """Walk CONNECTING → SERVICE_DISCOVERY → READY."""
        if self._link is None:
            return Result.failure(TransportUnavailableError("No radio available"))
        if self._state is RadioState.READY and self._device == device:
            return Result.success(None)

        logger.info("Radio: connecting to %s (%s)", device.name, device.identifier)
        self._assembler.reset()
        self._transition(RadioState.CONNECTING)
        try:
            await self._link.connect(device)
            self._transition(RadioState.SERVICE_DISCOVERY)
            await self._link.discover_services(
                SERVICE_UUID, [DATA_CHARACTERISTIC, SYNC_STATE_CHARACTERISTIC]
            )
            await self._link.subscribe(DATA_CHARACTERISTIC, self.handle_notification)
        except Exception as exc:
            self._transition(RadioState.DISCONNECTED)
            error = NetworkError(f"Connection to {device.name or device.identifier} failed: {exc}")
            self._set_error(error)
            logger.warning("Radio: %s", error)
            return Result.failure(error)

        self._device = device
        self._transition(RadioState.READY)
        return Result.success(None)

    async def disconnect(self) -> None:
        """Deliberate disconnect.  Records no error."""
        if self._link is None or self._state is RadioState.DISCONNECTED:
            return
        self._closing = True
        try:
            await self._link.disconnect()
        finally:
            self._closing = False
            self._device = None
            self._assembler.reset()
            self._transition(RadioState.DISCONNECTED)

    def handle_disconnect(self, error: Exception | None = None) -> None:
        """Link-loss callback from the platform binding."""
        if self._closing or self._state is RadioState.DISCONNECTED:
            return
        logger.warning("Radio: link lost%s", f": {error}" if error else "")
        self._device = None
        self._assembler.reset()
        self._transition(RadioState.DISCONNECTED)
        self._set_error(NetworkError(f"Disconnected: {error}" if error else "Link lost"))

    def handle_notification(self, frame: bytes) -> None:
        """Data-channel notification callback: reassemble and buffer batches."""
        try:
            payload = self._assembler.add(frame)
        except DecodingError as exc:
            logger.warning("Radio: dropping bad frame: %s", exc)
            self._assembler.reset()
            self._set_error(exc)
            return
        if payload is None:
            return
        try:
            batch = decode_batch(payload)
        except DecodingError as exc:
            logger.warning("Radio: reassembled payload did not decode: %s", exc)
            self._set_error(exc)
            return
        self._inbound.append(batch)
        logger.info("Radio: received batch %s (%d record(s))", batch.id, batch.total_count)

    # ------------------------------------------------------------------
    # Sync-state channel
    # ------------------------------------------------------------------

    async def fetch_sync_state(self) -> Result[SyncState]:
        """Read the peer's SyncState checkpoint."""
        if not self._ready():
            return Result.failure(TransportUnavailableError("Radio not connected"))
        try:
            raw = await asyncio.wait_for(
                self._link.read(SYNC_STATE_CHARACTERISTIC), timeout=self._config.read_timeout_s
            )
        except asyncio.TimeoutError:
            return self._fail(NetworkError("Timed out reading peer sync state"))
        except Exception as exc:
            return self._fail(NetworkError(f"Sync state read failed: {exc}"))
        try:
            return Result.success(decode_sync_state(raw))
        except DecodingError as exc:
            return self._fail(exc)

    async def publish_sync_state(self, state: SyncState) -> Result[None]:
        """Write our own SyncState to the sync-state channel."""
        if not self._ready():
            return Result.failure(TransportUnavailableError("Radio not connected"))
        try:
            await self._link.write(SYNC_STATE_CHARACTERISTIC, encode_sync_state(state))
        except Exception as exc:
            return self._fail(NetworkError(f"Sync state write failed: {exc}"))
        return Result.success(None)

    # ------------------------------------------------------------------
    # Transport interface
    # ------------------------------------------------------------------

    async def test_reachable(self) -> bool:
        return self._ready()

    async def fetch(self, since: datetime) -> Result[Batch]:
        """Drain batches received over the data channel since the last call.

        The peer pushes what it considers new, so ``since`` is not applied
        here; the coordinator's watermarks still guard against regressions.
        """
        if not self._inbound:
            return Result.success(Batch())
        drained, self._inbound = self._inbound, []
        merged = drained[0]
        for batch in drained[1:]:
            merged = merged.merge(batch)
        logger.debug("Radio: drained %d inbound batch(es)", len(drained))
        return Result.success(merged)

    @property
    def max_message_bytes(self) -> int:
        """Largest encoded batch one fragmented message can carry."""
        return MAX_FRAGMENTS * self._config.max_fragment_payload

    def split_batch(self, batch: Batch) -> list[Batch]:
        """Split ``batch`` into sub-batches that each fit in one message.

        Halves the record list until every part encodes within
        ``max_message_bytes``.  A single record that is still too large is
        returned alone; sending it fails with ``EncodingError``.
        """
        records = batch.all_records()
        if len(records) <= 1:
            return [batch]
        try:
            if len(encode_batch(batch)) <= self.max_message_bytes:
                return [batch]
        except EncodingError:
            return [batch]
        middle = len(records) // 2
        return self.split_batch(Batch.build(records[:middle])) + self.split_batch(
            Batch.build(records[middle:])
        )

    async def send(self, batch: Batch) -> Result[UploadReceipt]:
        """Fragment ``batch`` and write each frame with inter-frame pacing."""
        if not self._ready():
            return Result.failure(TransportUnavailableError("Radio not connected"))
        try:
            frames = fragment(encode_batch(batch), self._config.max_fragment_payload)
        except EncodingError as exc:
            return self._fail(exc)

        logger.info("Radio: sending batch %s in %d fragment(s)", batch.id, len(frames))
        for index, frame in enumerate(frames):
            try:
                await self._link.write(DATA_CHARACTERISTIC, frame)
            except Exception as exc:
                return self._fail(
                    NetworkError(f"Write failed at fragment {index + 1}/{len(frames)}: {exc}")
                )
            if index < len(frames) - 1 and self._config.inter_fragment_delay_ms:
                await asyncio.sleep(self._config.inter_fragment_delay_s)
        return Result.success(UploadReceipt(processed_count=batch.total_count))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _ready(self) -> bool:
        return self._link is not None and self._state is RadioState.READY

    def _fail(self, error: TransportError) -> Result:
        logger.warning("Radio: %s error: %s", error.kind, error)
        self._set_error(error)
        return Result.failure(error)
