"""Hybrid transport sync coordinator.

Single authority for what data is missing, where to get it and where it goes.
One cycle (``perform_sync``):

1. Guard against re-entry (flag checked and set before any await)
2. Select a transport: Local Server > Radio > Error / Offline
3. Local server: probe → fetch since the earliest watermark → process into the
   sink → upload the outbound queue
   Radio: read the peer's SyncState → process inbound batches → send what
   the peer has not seen
4. Stamp the end of the cycle and persist SyncState

Failures never escape a cycle: they land in ``status().error_message``
prefixed by the transport that produced them, and the next tick retries.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable, Iterable

from src.healthsync.config_loader import SyncConfig, get_sync_config
from src.healthsync.errors import TransportError
from src.healthsync.models import (
    Batch,
    DataType,
    HealthRecord,
    SyncState,
    SyncStatus,
    TransportStatus,
    utc_now,
)
from src.healthsync.scheduler import SyncTicker
from src.healthsync.sink import HealthSinkAdapter
from src.healthsync.state_store import SyncStateRepository
from src.healthsync.transports.base import Transport, UploadReceipt
from src.healthsync.transports.local_server import LocalServerClient
from src.healthsync.transports.radio import RadioDevice, RadioLinkClient

logger = logging.getLogger("healthsync.coordinator")

StatusCallback = Callable[[SyncStatus], None]

NO_TRANSPORT_MESSAGE = "No transport available"
TRANSPORT_ERROR_MESSAGE = "Transport error"


class SyncCoordinator:
    """Owns SyncState and drives sync cycles over the best available transport.

    Usage::

        coordinator = SyncCoordinator(local, radio, sink, repository)
        coordinator.start()                 # periodic cycles
        await coordinator.perform_sync()    # one cycle now
        coordinator.status().error_message
    """

    def __init__(
        self,
        local_client: LocalServerClient,
        radio_client: RadioLinkClient,
        sink: HealthSinkAdapter,
        repository: SyncStateRepository,
        config: SyncConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the coordinator and load persisted state.

        Args:
            local_client: Local server transport.
            radio_client: Radio transport.
            sink:         Health sink adapter records are written through.
            repository:   Durable storage for SyncState and pending queues.
            config:       Sync settings (sync_config.yaml by default).
            clock:        Source of "now" (UTC), injectable for tests.
        """
        self._local = local_client
        self._radio = radio_client
        self._sink = sink
        self._repository = repository
        self._config = config or get_sync_config()
        self._clock = clock

        self._state = repository.load_state()
        self._retry = repository.load_retry_queue()
        self._outbound = repository.load_outbound()

        self._syncing = False
        self._full_resync_pending = False
        self._progress = 0.0
        self._last_sync_time: datetime | None = None
        self._error_message: str | None = None
        self._transport_status = TransportStatus.OFFLINE
        self._listeners: list[StatusCallback] = []
        self._task: asyncio.Task | None = None
        self._ticker = SyncTicker(self.perform_sync, self._config.scheduler.interval_seconds)

        for transport in (self._local, self._radio):
            transport.add_status_listener(self._on_transport_changed)
        self._transport_status = self.select_transport()

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def state(self) -> SyncState:
        """A copy of the current watermarks."""
        return self._state.copy()

    @property
    def is_syncing(self) -> bool:
        return self._syncing

    def status(self) -> SyncStatus:
        return SyncStatus(
            transport=self._transport_status,
            is_active=self._syncing,
            progress=self._progress,
            last_sync_time=self._last_sync_time,
            error_message=self._error_message,
            pending_count=self._retry.total_count + self._outbound.total_count,
        )

    def subscribe(self, listener: StatusCallback) -> Callable[[], None]:
        """Register a status-change callback.  Returns an unsubscribe function."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _publish(self) -> None:
        snapshot = self.status()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Status listener raised")

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def start_sync(self) -> asyncio.Task | None:
        """Fire-and-forget one cycle.

        Returns:
            The task running the cycle, or None when a cycle is already in flight.
        """
        if self._syncing or (self._task is not None and not self._task.done()):
            logger.debug("Sync already in progress; trigger ignored")
            return None
        self._task = asyncio.create_task(self.perform_sync())
        return self._task

    def force_full_sync(self) -> asyncio.Task | None:
        """Reset every watermark to the epoch, persist, then trigger a cycle.

        While a cycle is in flight the reset is deferred until that cycle
        ends, and a new cycle then starts from the epoch.

        Returns:
            The task running the new cycle, or None when the reset was deferred.
        """
        if self._syncing:
            logger.info("Full resync requested; deferred until the running cycle ends")
            self._full_resync_pending = True
            return None
        self._reset_watermarks()
        return self.start_sync()

    def _reset_watermarks(self) -> None:
        logger.info("Watermarks reset to epoch for a full resync")
        self._state = SyncState()
        self._save_state()
        self._publish()

    def start(self, sync_now: bool = True) -> None:
        """Start periodic cycles on the configured interval."""
        self._ticker.start(fire_immediately=sync_now)

    async def stop(self) -> None:
        await self._ticker.stop()

    def set_sync_interval(self, seconds: float) -> None:
        self._ticker.set_interval(seconds)

    @property
    def sync_interval(self) -> float:
        return self._ticker.interval_seconds

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    async def perform_sync(self) -> None:
        """Run one sync cycle.  A no-op while another cycle is in flight."""
        if self._syncing:
            logger.debug("perform_sync: cycle already active")
            return
        self._syncing = True
        self._progress = 0.0
        self._error_message = None
        self._publish()

        try:
            if not self._local.is_connected:
                await self._local.test_reachable()
            transport = self.select_transport()
            self._transport_status = transport
            logger.info("Sync cycle started (transport=%s)", transport.value)

            if transport is TransportStatus.LOCAL_SERVER:
                await self._sync_via_local_server()
            elif transport is TransportStatus.RADIO:
                await self._sync_via_radio()
            elif transport is TransportStatus.ERROR:
                self._error_message = TRANSPORT_ERROR_MESSAGE
            else:
                self._error_message = NO_TRANSPORT_MESSAGE
        finally:
            self._syncing = False
            self._progress = 1.0
            self._last_sync_time = self._clock()
            self._save_state()
            if self._error_message:
                logger.warning("Sync cycle ended with error: %s", self._error_message)
            else:
                logger.info("Sync cycle complete")
            self._publish()
            if self._full_resync_pending:
                self._full_resync_pending = False
                self._reset_watermarks()
                self._task = asyncio.create_task(self.perform_sync())

    def select_transport(self) -> TransportStatus:
        """Fixed priority: Local Server, then Radio, then Error / Offline."""
        if self._local.is_connected:
            return TransportStatus.LOCAL_SERVER
        if self._radio.is_connected:
            return TransportStatus.RADIO
        if self._local.last_error is not None or self._radio.last_error is not None:
            return TransportStatus.ERROR
        return TransportStatus.OFFLINE

    async def _sync_via_local_server(self) -> None:
        client = self._local
        self._set_progress(0.1)
        if not await client.test_reachable():
            self._fail(client, "Server unreachable", client.last_error)
            return

        since = self._state.earliest_watermark()
        self._set_progress(0.3)
        fetched = await client.fetch(since)
        if not fetched.ok:
            self._fail(client, "Fetch failed", fetched.error)
            return

        self._set_progress(0.6)
        if not fetched.value.is_empty or not self._retry.is_empty:
            await self.process_batch(fetched.value)

        self._set_progress(0.8)
        outbound = self.collect_pending_data()
        if not outbound.is_empty:
            uploaded = await client.send(outbound)
            if not uploaded.ok:
                self._fail(client, "Upload failed", uploaded.error)
                return
            self._complete_outbound(outbound, uploaded.value)
        self._set_progress(0.9)

    async def _sync_via_radio(self) -> None:
        client = self._radio
        self._set_progress(0.1)
        peer = await client.fetch_sync_state()
        if not peer.ok:
            self._fail(client, "Sync state read failed", peer.error)
            return

        self._set_progress(0.3)
        inbound = await client.fetch(self._state.earliest_watermark())
        if not inbound.ok:
            self._fail(client, "Fetch failed", inbound.error)
            return
        if not inbound.value.is_empty or not self._retry.is_empty:
            await self.process_batch(inbound.value)
            published = await client.publish_sync_state(self._state)
            if not published.ok:
                logger.warning("Radio: could not publish sync state: %s", published.error)

        self._set_progress(0.6)
        peer_state = peer.value
        pending = self.collect_pending_data(peer_state)
        covered = self._outbound.without(pending.all_records())
        if not covered.is_empty:
            logger.debug("Radio: peer already holds %d queued record(s)", covered.total_count)
            self._outbound = self._outbound.without(covered.all_records())
            self._save_outbound()

        self._set_progress(0.8)
        if not pending.is_empty:
            parts = client.split_batch(pending)
            if len(parts) > 1:
                logger.info("Radio: sending %d record(s) as %d messages", pending.total_count, len(parts))
            for part in parts:
                sent = await client.send(part)
                if not sent.ok:
                    self._fail(client, "Upload failed", sent.error)
                    return
                self._complete_outbound(part, sent.value)
        self._set_progress(0.9)

    # ------------------------------------------------------------------
    # Batch processing
    # ------------------------------------------------------------------

    async def process_batch(self, batch: Batch) -> Batch:
        """Write every record to the sink and advance watermarks.

        Records at or below their type's watermark were handled by an
        earlier cycle and are skipped.  Records retained from earlier failed
        writes are retried first.  Each record's watermark contribution is
        applied after its write attempt, whether or not the write succeeded;
        failed records go back to the retry queue.

        Returns:
            The records whose write failed.
        """
        fresh = batch.newer_than(self._state)
        if fresh.total_count < batch.total_count:
            logger.debug(
                "Skipping %d record(s) at or below their watermark",
                batch.total_count - fresh.total_count,
            )
        work = self._retry.merge(fresh) if not self._retry.is_empty else fresh
        failed: list[HealthRecord] = []
        for data_type in DataType:
            for record in work.records(data_type):
                if not await self._sink.save_record(record):
                    failed.append(record)
                self._state.advance(data_type, record.timestamp, now=self._clock())

        retry = Batch.build(failed)
        if failed:
            logger.warning(
                "Processed %d record(s); %d failed and are queued for retry",
                work.total_count, len(failed),
            )
        else:
            logger.info("Processed %d record(s)", work.total_count)
        self._retry = retry
        self._save_retry()
        self._save_state()
        self._publish()
        return retry

    # ------------------------------------------------------------------
    # Outbound data
    # ------------------------------------------------------------------

    def queue_outbound(self, records: Iterable[HealthRecord]) -> int:
        """Queue locally produced records for upload.

        Returns:
            Number of records now waiting in the outbound queue.
        """
        self._outbound = self._outbound.merge(Batch.build(records))
        self._save_outbound()
        self._publish()
        return self._outbound.total_count

    def collect_pending_data(self, reference_state: SyncState | None = None) -> Batch:
        """Outbound records the remote side has not seen.

        Args:
            reference_state: The remote side's checkpoint.  When given, only
                records newer than its per-type watermark are returned;
                otherwise the whole outbound queue is.
        """
        if reference_state is None:
            return Batch.build(self._outbound.all_records())
        return self._outbound.newer_than(reference_state)

    def _complete_outbound(self, sent: Batch, receipt: UploadReceipt) -> None:
        if receipt.duplicate:
            logger.info("Remote already held %d outbound record(s)", sent.total_count)
        self._outbound = self._outbound.without(sent.all_records())
        self._save_outbound()
        self._state.advance_from_batch(sent, now=self._clock())
        self._save_state()

    # ------------------------------------------------------------------
    # Transport delegation
    # ------------------------------------------------------------------

    @property
    def local_server_address(self) -> tuple[str, int]:
        return self._local.host, self._local.port

    async def update_local_server_address(self, host: str, port: int) -> bool:
        return await self._local.update_server_address(host, port)

    async def discover_local_servers(self) -> list[str]:
        return await self._local.discover()

    async def start_scanning(self) -> list[RadioDevice]:
        return await self._radio.start_scanning()

    async def stop_scanning(self) -> None:
        await self._radio.stop_scanning()

    async def connect(self, device: RadioDevice) -> bool:
        result = await self._radio.connect(device)
        return result.ok

    async def disconnect_radio(self) -> None:
        await self._radio.disconnect()

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def clear_local_data(self) -> None:
        """Forget watermarks, pending queues and the last sync time."""
        self._state = SyncState()
        self._retry = Batch()
        self._outbound = Batch()
        self._last_sync_time = None
        self._error_message = None
        self._repository.clear()
        logger.info("Local sync data cleared")
        self._publish()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _on_transport_changed(self, transport: Transport) -> None:
        self._transport_status = self.select_transport()
        if transport.last_error is not None and not self._syncing:
            self._error_message = f"{transport.NAME}: {transport.last_error}"
        self._publish()

    def _set_progress(self, value: float) -> None:
        self._progress = value
        self._publish()

    def _fail(self, transport: Transport, action: str, error: TransportError | None) -> None:
        detail = f"{action}: {error}" if error is not None else action
        self._error_message = f"{transport.NAME}: {detail}"

    def _save_state(self) -> None:
        try:
            self._repository.save_state(self._state)
        except OSError as exc:
            logger.error("Failed to persist sync state: %s", exc)
            self._error_message = f"Storage: {exc}"

    def _save_retry(self) -> None:
        try:
            self._repository.save_retry_queue(self._retry)
        except OSError as exc:
            logger.error("Failed to persist retry queue: %s", exc)
            self._error_message = f"Storage: {exc}"

    def _save_outbound(self) -> None:
        try:
            self._repository.save_outbound(self._outbound)
        except OSError as exc:
            logger.error("Failed to persist outbound queue: %s", exc)
            self._error_message = f"Storage: {exc}"
