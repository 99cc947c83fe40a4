"""Application configuration loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is loaded from environment variables (or .env file)."""

    # --- App ---
    app_name: str = "MedReminder Sync"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production

    # --- Sync ---
    sync_config_path: str | None = None  # defaults to the bundled sync_config.yaml

    # --- Rate Limiting ---
    rate_limit_per_minute: int = 120

    # --- CORS ---
    cors_origins: list[str] = ["http://localhost:3000"]

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "env_prefix": "MEDREMINDER_"}


@lru_cache
def get_settings() -> Settings:
    return Settings()
