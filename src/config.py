"""Application configuration loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is loaded from environment variables (or .env file)."""

    # --- App ---
    app_name: str = "Open-iAPS"
    app_version: str = "0.1.0"
    log_level: str = "INFO"

    # --- Nightscout ---
    nightscout_url: str = ""
    nightscout_secret: str | None = None  # plain secret; only its SHA-1 goes on the wire

    # --- Request policy ---
    request_timeout_s: float = 60.0
    retry_count: int = 1
    retry_backoff_s: float = 0.0
    glucose_fetch_count: int = 1600

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache
def get_settings() -> Settings:
    return Settings()
