"""HealthSync — headless sync runner.

Runs the sync coordinator against the local sync server on a fixed interval
and writes received samples to a JSON-lines health store.

Run locally:
    python -m src.main
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from pathlib import Path

from src.config import Settings, get_settings
from src.healthsync.config_loader import get_sync_config, reload_sync_config
from src.healthsync.coordinator import SyncCoordinator
from src.healthsync.models import SyncStatus
from src.healthsync.sink import HealthSinkAdapter, JsonLinesHealthStore
from src.healthsync.state_store import JsonFileStore, SyncStateRepository
from src.healthsync.transports import LocalServerClient, RadioLinkClient

logger = logging.getLogger("healthsync")


# ---------- Logging ----------

def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
    )


# ---------- Wiring ----------

def build_coordinator(settings: Settings) -> SyncCoordinator:
    """Construct the coordinator and its collaborators from settings."""
    config = (
        reload_sync_config(Path(settings.sync_config_path))
        if settings.sync_config_path
        else get_sync_config()
    )
    local = LocalServerClient(
        host=settings.local_server_host,
        port=settings.local_server_port,
        config=config.local_server,
        device_id=settings.device_id,
    )
    # No radio stack on a headless host
    radio = RadioLinkClient(link=None, config=config.radio)
    sink = HealthSinkAdapter(JsonLinesHealthStore(settings.health_store_path))
    repository = SyncStateRepository(JsonFileStore(settings.state_file_path), config.storage)

    coordinator = SyncCoordinator(local, radio, sink, repository, config=config)
    if settings.sync_interval_seconds:
        coordinator.set_sync_interval(settings.sync_interval_seconds)
    return coordinator


def _log_status(status: SyncStatus) -> None:
    if not status.is_active and status.progress >= 1.0:
        logger.debug(
            "Status: transport=%s pending=%d error=%s",
            status.transport.value, status.pending_count, status.error_message,
        )


# ---------- Run loop ----------

async def run(settings: Settings) -> None:
    logger.info("Starting %s v%s [%s]", settings.app_name, settings.app_version, settings.environment)
    coordinator = build_coordinator(settings)
    coordinator.subscribe(_log_status)

    if settings.discover_local_server and not settings.local_server_host:
        found = await coordinator.discover_local_servers()
        if found:
            _, port = coordinator.local_server_address
            await coordinator.update_local_server_address(found[0], port)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:  # Windows
            pass

    coordinator.start()
    try:
        await stop.wait()
    finally:
        await coordinator.stop()
        logger.info("%s shut down", settings.app_name)


def main() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)
    try:
        asyncio.run(run(settings))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
