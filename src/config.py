"""Application configuration loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is loaded from environment variables (or .env file).

    Tunables that rarely change per deployment (timeouts, fragment sizes,
    discovery hosts) live in ``src/healthsync/sync_config.yaml`` instead.
    """

    # --- App ---
    app_name: str = "HealthSync"
    app_version: str = "0.1.0"
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production

    # --- Local server (overrides sync_config.yaml when set) ---
    local_server_host: str | None = None
    local_server_port: int | None = None
    discover_local_server: bool = False

    # --- Storage ---
    state_file_path: str = "healthsync_state.json"
    health_store_path: str = "health_samples.jsonl"
    sync_config_path: str | None = None  # defaults to the bundled sync_config.yaml

    # --- Identity ---
    device_id: str = "healthsync-phone"

    # --- Scheduler ---
    sync_interval_seconds: float | None = None  # overrides sync_config.yaml when set

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "env_prefix": "HEALTHSYNC_"}


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]
