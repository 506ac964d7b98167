"""Application configuration loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is loaded from environment variables (or .env file).

    Tracking parameters (debounce, accuracy gate, bucket width, ...) live in
    ``tracking/tracking_config.yaml`` instead, so they can be hot-reloaded.
    """

    # --- App ---
    app_name: str = "TraceKit"
    app_version: str = "0.1.0"
    log_level: str = "INFO"

    # --- Sink server ---
    server_base_url: str = "https://trace.mnalavadi.org"
    request_timeout_seconds: float = 30.0

    # --- Storage ---
    database_path: str = ""  # empty = keep buckets in memory only

    # --- Scheduling ---
    auto_upload_enabled: bool = False
    heartbeat_enabled: bool = True

    # --- Local control API ---
    api_host: str = "127.0.0.1"
    api_port: int = 8000

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "env_prefix": "TRACE_"}


@lru_cache
def get_settings() -> Settings:
    return Settings()
