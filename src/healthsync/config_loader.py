"""Load, validate, and hot-reload the HealthSync sync configuration.

The config lives in ``sync_config.yaml`` alongside this module.  At startup
it is loaded once and cached.  Call ``reload_sync_config()`` to re-read from
disk, no restart required.

Usage::

    from src.healthsync.config_loader import get_sync_config

    config = get_sync_config()
    config.scheduler.interval_seconds      # 30
    config.radio.max_fragment_payload      # 500
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger("healthsync.config")

# Path to the YAML file sitting next to this module
_CONFIG_PATH = Path(__file__).parent / "sync_config.yaml"

# One byte carries the fragment index and count on the radio link
MAX_FRAGMENTS = 255


# ---------------------------------------------------------------------------
# Typed config sections
# ---------------------------------------------------------------------------


@dataclass
class SchedulerConfig:
    interval_seconds: float = 30.0


@dataclass
class LocalServerConfig:
    """Local HTTP server transport settings."""

    host: str = "192.168.1.100"
    port: int = 8080
    api_prefix: str = "/api/v1"
    request_timeout_s: float = 5.0
    probe_timeout_s: float = 2.0
    page_limit: int = 500
    max_pages: int = 20
    discovery_hosts: list[str] = field(default_factory=list)

    def base_url(self, host: str | None = None, port: int | None = None) -> str:
        return f"http://{host or self.host}:{port or self.port}{self.api_prefix}"


@dataclass
class RadioConfig:
    """Direct radio link settings."""

    max_fragment_payload: int = 500
    inter_fragment_delay_ms: int = 100
    read_timeout_s: float = 10.0
    device_name_patterns: list[str] = field(default_factory=list)

    @property
    def inter_fragment_delay_s(self) -> float:
        return self.inter_fragment_delay_ms / 1000.0


@dataclass
class StorageConfig:
    """Keys used in the durable key-value store."""

    sync_state_key: str = "HybridSyncState"
    retry_queue_key: str = "HybridSyncRetryQueue"
    outbound_queue_key: str = "HybridSyncOutboundQueue"


@dataclass
class SyncConfig:
    """Complete, validated sync configuration.

    Attributes:
        version:      Config schema version string.
        scheduler:    Periodic sync settings.
        local_server: HTTP transport settings.
        radio:        Radio transport settings.
        storage:      Durable storage keys.
    """

    version: str = "1.0"
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    local_server: LocalServerConfig = field(default_factory=LocalServerConfig)
    radio: RadioConfig = field(default_factory=RadioConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)


# ---------------------------------------------------------------------------
# Loader / validation
# ---------------------------------------------------------------------------


class ConfigValidationError(ValueError):
    """Raised when sync_config.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    """Read and parse a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigValidationError: If the YAML is malformed.
    """
    if not path.exists():
        raise FileNotFoundError(f"Sync config not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc


def _validate_and_build(raw: dict) -> SyncConfig:
    """Validate the raw YAML dict and construct a SyncConfig.

    Every problem is collected before raising so one run reports them all.

    Raises:
        ConfigValidationError: If any value is missing the right type or range.
    """
    errors: list[str] = []

    def _number(section: dict, key: str, default: float, name: str, minimum: float = 0.0) -> float:
        value = section.get(key, default)
        try:
            number = float(value)
        except (TypeError, ValueError):
            errors.append(f"{name}.{key} must be a number, got {value!r}")
            return default
        if number < minimum:
            errors.append(f"{name}.{key} = {number} must be >= {minimum}")
        return number

    def _section(key: str) -> dict:
        section = raw.get(key) or {}
        if not isinstance(section, dict):
            errors.append(f"'{key}' must be a mapping")
            return {}
        return section

    version = str(raw.get("version", "1.0"))

    # ── Scheduler ──
    sched_raw = _section("scheduler")
    scheduler = SchedulerConfig(
        interval_seconds=_number(sched_raw, "interval_seconds", 30, "scheduler", minimum=1),
    )

    # ── Local server ──
    ls_raw = _section("local_server")
    hosts = ls_raw.get("discovery_hosts", [])
    if not isinstance(hosts, list) or not all(isinstance(h, str) for h in hosts):
        errors.append("local_server.discovery_hosts must be a list of host strings")
        hosts = []
    prefix = str(ls_raw.get("api_prefix", "/api/v1"))
    if not prefix.startswith("/"):
        errors.append(f"local_server.api_prefix must start with '/', got {prefix!r}")
    local_server = LocalServerConfig(
        host=str(ls_raw.get("host", "192.168.1.100")),
        port=int(_number(ls_raw, "port", 8080, "local_server", minimum=1)),
        api_prefix=prefix.rstrip("/"),
        request_timeout_s=_number(ls_raw, "request_timeout_s", 5.0, "local_server"),
        probe_timeout_s=_number(ls_raw, "probe_timeout_s", 2.0, "local_server"),
        page_limit=int(_number(ls_raw, "page_limit", 500, "local_server", minimum=1)),
        max_pages=int(_number(ls_raw, "max_pages", 20, "local_server", minimum=1)),
        discovery_hosts=list(hosts),
    )

    # ── Radio ──
    rd_raw = _section("radio")
    patterns = rd_raw.get("device_name_patterns", [])
    if not isinstance(patterns, list):
        errors.append("radio.device_name_patterns must be a list")
        patterns = []
    radio = RadioConfig(
        max_fragment_payload=int(
            _number(rd_raw, "max_fragment_payload", 500, "radio", minimum=1)
        ),
        inter_fragment_delay_ms=int(_number(rd_raw, "inter_fragment_delay_ms", 100, "radio")),
        read_timeout_s=_number(rd_raw, "read_timeout_s", 10.0, "radio"),
        device_name_patterns=[str(p) for p in patterns],
    )

    # ── Storage ──
    st_raw = _section("storage")
    storage = StorageConfig(
        sync_state_key=str(st_raw.get("sync_state_key", "HybridSyncState")),
        retry_queue_key=str(st_raw.get("retry_queue_key", "HybridSyncRetryQueue")),
        outbound_queue_key=str(st_raw.get("outbound_queue_key", "HybridSyncOutboundQueue")),
    )
    keys = [storage.sync_state_key, storage.retry_queue_key, storage.outbound_queue_key]
    if len(set(keys)) != len(keys):
        errors.append("storage keys must be distinct")

    if errors:
        raise ConfigValidationError(
            f"sync_config.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return SyncConfig(
        version=version,
        scheduler=scheduler,
        local_server=local_server,
        radio=radio,
        storage=storage,
    )


def load_sync_config(path: Path | None = None) -> SyncConfig:
    """Load and validate the sync config from disk.

    Args:
        path: Override path to YAML. Uses the bundled sync_config.yaml by default.
    """
    target = path or _CONFIG_PATH
    raw = _load_yaml(target)
    config = _validate_and_build(raw)
    logger.info("Loaded sync config v%s from %s", config.version, target)
    return config


# ---------------------------------------------------------------------------
# Global singleton with hot-reload support
# ---------------------------------------------------------------------------

_config: SyncConfig | None = None
_config_lock = threading.Lock()


def get_sync_config() -> SyncConfig:
    """Return the global SyncConfig singleton, loading it on first call.

    Thread-safe.  Use ``reload_sync_config()`` to refresh after YAML changes.
    """
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:  # double-checked locking
                _config = load_sync_config()
    return _config


def reload_sync_config(path: Path | None = None) -> SyncConfig:
    """Reload the sync config from disk and replace the global singleton.

    If validation fails, the old config is retained and the error is re-raised.

    Raises:
        ConfigValidationError: If the new config is invalid.
        FileNotFoundError:     If the config file is missing.
    """
    global _config
    new_config = load_sync_config(path)  # validate before acquiring lock
    with _config_lock:
        old_version = _config.version if _config else "none"
        _config = new_config
    logger.info("Reloaded sync config: %s → %s", old_version, new_config.version)
    return new_config
