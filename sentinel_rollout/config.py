"""Configuration for Sentinel rollout verification."""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RolloutSettings(BaseSettings):
    """Rollout engine settings."""

    model_config = SettingsConfigDict(
        env_prefix="SENTINEL_ROLLOUT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    log_level: str = "INFO"

    # Watcher Settings
    delay_sync: float = Field(
        default=3.0,
        description="Minimum seconds between two status syncs",
    )
    reminder_interval: float = Field(
        default=30.0,
        description="Seconds between 'still waiting' reminders",
    )
    global_timeout: Optional[float] = Field(
        default=None,
        description="Give up on verification after this many seconds",
    )
    max_threads: int = 8

    # Kubectl Settings
    kubectl_executable: str = "kubectl"
    kubectl_request_timeout: int = 15

    # Debug info Settings
    disable_fetching_log_info: bool = False
    disable_fetching_event_info: bool = False


@lru_cache
def get_settings() -> RolloutSettings:
    """Get cached settings instance."""
    return RolloutSettings()
