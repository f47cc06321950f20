"""Configuration settings for notesync."""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from notesync.types import CheckpointPolicy, MergePolicy


class SyncSettings(BaseSettings):
    """Sync settings loaded from ``NOTESYNC_*`` environment variables."""

    # Session (credentials.json takes lower priority, see notesync.session)
    backend_url: Optional[str] = None
    auth_token: Optional[str] = None
    user_id: Optional[str] = None

    # Local storage
    db_path: Optional[Path] = None

    # Engine policies
    merge_policy: MergePolicy = MergePolicy.NEWER_WINS
    checkpoint_policy: CheckpointPolicy = CheckpointPolicy.HIGH_WATER_MARK

    # Concurrency and remote call behaviour
    max_concurrency: int = Field(8, ge=1)  # simultaneous store/remote calls per phase
    request_timeout_s: float = Field(20.0, gt=0)
    mutation_retries: int = Field(2, ge=0)  # in-cycle retries for transport failures
    retry_backoff_s: float = Field(0.5, ge=0)

    # Pending-write queue
    max_write_attempts: int = Field(5, ge=1)  # cycles before a failed write is dead-lettered
    replay_pending: bool = True

    model_config = SettingsConfigDict(
        env_prefix="NOTESYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache
def get_settings() -> SyncSettings:
    """Get cached settings instance."""
    return SyncSettings()
