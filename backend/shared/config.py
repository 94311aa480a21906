"""
Central configuration for the livescores services.
Uses pydantic-settings for env-based config with validation.
"""
from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic import Field, RedisDsn
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    DEV = "dev"
    STAGING = "staging"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """Root settings shared across the API, pollers and fanout."""

    model_config = SettingsConfigDict(
        env_prefix="LS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── General ──────────────────────────────────────────────
    environment: Environment = Environment.DEV
    debug: bool = False
    log_level: str = "INFO"
    instance_id: str = Field(default="", description="Pod/container ID bound to every log line")

    # ── Redis ────────────────────────────────────────────────
    redis_url: RedisDsn = Field(default="redis://redis:6379/0")
    redis_max_connections: int = 50

    # ── API / fanout ─────────────────────────────────────────
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    stream_heartbeat_s: float = 15.0
    stream_queue_size: int = 100
    cors_origins: list[str] = ["*"]

    # ── Provider (live-score-api) ────────────────────────────
    provider_name: str = "livescore"
    provider_base_url: str = "https://livescore-api.com"
    provider_key: str = ""
    provider_secret: str = ""
    provider_competition_ids: str = Field(
        default="",
        description="Comma-separated competition ids, e.g. '2,3,244'. Empty = provider default.",
    )
    provider_quota_per_day: int = 14500
    provider_request_timeout_s: float = 10.0

    # ── Poll cadence ─────────────────────────────────────────
    live_poll_interval_s: float = 60.0
    events_poll_interval_s: float = 60.0
    fixtures_poll_hour_utc: int = 6
    fixtures_poll_minute_utc: int = 5
    seed_on_start: bool = True

    # ── Event rotation ───────────────────────────────────────
    events_keep_last: int = 30
    events_per_tick_min: int = 8
    events_per_tick_max: int = 20
    events_full_rotation_ticks: int = 5

    # ── Resilience cooldowns (seconds) ───────────────────────
    cooldown_quota_s: float = 6 * 3600
    cooldown_unauthorized_s: float = 24 * 3600
    cooldown_transient_s: float = 5 * 60
    cooldown_payload_s: float = 10 * 60

    # ── Retention (seconds) ──────────────────────────────────
    ttl_not_started_s: int = 24 * 3600
    ttl_live_s: int = 6 * 3600
    ttl_finished_s: int = 48 * 3600
    ttl_unknown_s: int = 12 * 3600
    live_keys_ttl_s: int = 5 * 60
    seen_events_ttl_s: int = 12 * 3600
    standings_ttl_s: int = 5 * 60
    quota_counter_ttl_s: int = 2 * 86400

    # ── Observability ────────────────────────────────────────
    metrics_enabled: bool = True
    metrics_port: int = 9090

    @property
    def redis_url_str(self) -> str:
        return str(self.redis_url)

    @property
    def competition_ids(self) -> list[int]:
        """Parsed competition ids; blanks and non-numeric entries are skipped."""
        ids: list[int] = []
        for part in self.provider_competition_ids.split(","):
            part = part.strip()
            if part.isdigit():
                ids.append(int(part))
        return ids


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Singleton access to validated settings."""
    return Settings()
