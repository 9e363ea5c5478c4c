"""Application configuration."""

import logging
from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime settings loaded from SIGNAL_HUB_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="SIGNAL_HUB_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Orchestrator
    max_concurrent_engines: int = 8
    engine_timeout: float = 30.0  # seconds per engine execution

    # Data bridge
    cache_timeout: float = 30.0  # seconds a bridged entry stays readable
    max_cache_size: int = 1000
    cache_cleanup_interval: float = 60.0
    enable_transformations: bool = True

    # Health monitoring
    health_check_interval: float = 30.0
    health_warning_threshold: float = 0.8
    health_critical_threshold: float = 0.7

    # Realtime sample quality gate
    validation_threshold: float = 0.8
    max_sample_age: float = 60.0
    stale_sample_age: float = 300.0

    # Resilience
    queue_concurrency: int = 3
    resilience_config_path: str | None = None  # None = backend/resilience.yaml

    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging and quiet noisy third-party loggers."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(levelname)s - %(message)s",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)
