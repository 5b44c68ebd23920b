from __future__ import annotations

from uuid import uuid4

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from policycache.core.types import RenewalPolicy


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="POLICYCACHE_", env_file=".env", extra="ignore")

    # Identifies a cache instance in logs and metrics
    instance_id: str = Field(default_factory=lambda: str(uuid4())[:8])

    # Invalidation policy defaults (per-type policies override these)
    default_ttl_ms: int | None = Field(default=None, ge=0)
    default_renewal_policy: RenewalPolicy = RenewalPolicy.WRITE_ONLY

    # Expiration sweeper
    sweep_interval_seconds: float = Field(default=30.0, gt=0)
    sweep_evicts: bool = False

    # Watch notifications
    watch_queue_size: int = Field(default=100, ge=1)

    # Persistence
    snapshot_dir: str = ".policycache"
    snapshot_key: str = "policycache"
    snapshot_max_bytes: int | None = Field(default=None, ge=1)

    # Observability
    enable_metrics: bool = True
    log_json: bool = False

