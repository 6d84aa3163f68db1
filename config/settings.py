"""Global settings for DexSwipe.

Settings are split by domain (storage, cache, providers, plan, queue, feed) so that
new chains and pipeline stages can be wired without touching call sites.
Everything is loaded from environment variables through Pydantic Settings, which keeps
the service deployable anywhere (Docker, Kubernetes, serverless cron).
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import (
    AnyHttpUrl,
    BaseModel,
    Field,
    PositiveFloat,
    PositiveInt,
    RedisDsn,
    SecretStr,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parent.parent
ACCESSIBLE_ENV_FILE = BASE_DIR / "config" / "runtime.env"
DEFAULT_ENV_FILE = BASE_DIR / ".env"
ENV_FILE = ACCESSIBLE_ENV_FILE if ACCESSIBLE_ENV_FILE.exists() else DEFAULT_ENV_FILE


def _lenient_number(value, cast):
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        return cast(value)
    except (TypeError, ValueError):
        return None


class DatabaseSettings(BaseModel):
    """SQLModel + aiosqlite by default, Postgres ready."""

    dsn: str = Field(
        "sqlite+aiosqlite:///./database/dexswipe.db",
        description="SQLAlchemy/SQLModel connection string",
    )
    echo: bool = False


class CacheSettings(BaseModel):
    """aiocache backend (memory / redis)."""

    backend: Literal["memory", "redis"] = "memory"
    ttl_seconds: int = 60
    namespace: str = "dexswipe"
    redis_dsn: RedisDsn | None = None

    @model_validator(mode="after")
    def _redis_needs_dsn(self) -> "CacheSettings":
        if self.backend == "redis" and self.redis_dsn is None:
            raise ValueError("CACHE__BACKEND=redis requires CACHE__REDIS_DSN")
        return self


class RetrySettings(BaseModel):
    """Retry policy shared by every outbound provider call."""

    max_attempts: PositiveInt = 3
    base_delay_sec: PositiveFloat = 0.5
    max_delay_sec: PositiveFloat = 4.0
    timeout_sec: PositiveFloat = 15.0


class DexScreenerSettings(BaseModel):
    """Market-data provider."""

    base_url: AnyHttpUrl = Field("https://api.dexscreener.com", description="DexScreener API root")
    user_agent: str = "DexSwipe/1.0 (+https://dexswipe.app)"
    max_addresses_per_call: int = Field(30, ge=1, le=30)
    search_cache_ttl_sec: int = 30
    retry: RetrySettings = RetrySettings(timeout_sec=20.0)


class GoPlusSettings(BaseModel):
    """Security provider credentials and endpoints."""

    base_url: AnyHttpUrl = Field("https://api.gopluslabs.io/api/v1", description="GoPlus API root")
    access_token: SecretStr | None = None
    app_key: str | None = None
    app_secret: SecretStr | None = None
    api_key: SecretStr | None = Field(None, description="Legacy key, presented as an access token")
    retry: RetrySettings = RetrySettings(timeout_sec=12.0)

    @field_validator("access_token", "app_secret", "api_key", "app_key", mode="before")
    @classmethod
    def _empty_str_to_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value


class PlanSettings(BaseModel):
    """Raw subscription tier input. Clamped into PlanConfig by services.plan."""

    tier: str = "FREE"
    cu_budget_per_run: int | None = None
    cache_ttl_hours: int | None = None
    daily_max_scans: int | None = None
    min_liquidity_usd: float | None = None
    min_volume_24h_usd: float | None = None
    cu_costs: dict[str, int] = Field(
        default_factory=lambda: {
            "token_security:evm": 1,
            "token_security:solana": 2,
            "rugpull:evm": 1,
            "phishing_site": 1,
            "dapp_security": 1,
        },
        description="CU weight per provider operation, optionally per chain family",
    )

    @field_validator("cu_budget_per_run", "cache_ttl_hours", "daily_max_scans", mode="before")
    @classmethod
    def _invalid_int_to_none(cls, value):
        return _lenient_number(value, lambda v: int(float(v)))

    @field_validator("min_liquidity_usd", "min_volume_24h_usd", mode="before")
    @classmethod
    def _invalid_float_to_none(cls, value):
        return _lenient_number(value, float)


class StageQueueSettings(BaseModel):
    """Per-stage queue behaviour."""

    batch_size: PositiveInt = 20
    max_jobs_per_run: PositiveInt = 50
    backoff_base_sec: PositiveInt = 300
    backoff_cap_sec: PositiveInt = 3600
    success_rescan_minutes: PositiveInt = 360


class QueueSettings(BaseModel):
    """Work queue tuning shared by every pipeline stage."""

    lease_timeout_minutes: PositiveInt = 15
    terminal_suppress_days: PositiveInt = 5 * 365
    budget_retry_minutes: PositiveInt = 30
    market: StageQueueSettings = StageQueueSettings(
        batch_size=60,
        max_jobs_per_run=120,
        backoff_base_sec=120,
        backoff_cap_sec=3600,
        success_rescan_minutes=30,
    )
    security: StageQueueSettings = StageQueueSettings()
    quality: StageQueueSettings = StageQueueSettings(
        batch_size=20,
        max_jobs_per_run=30,
        backoff_base_sec=600,
        backoff_cap_sec=6 * 3600,
        success_rescan_minutes=24 * 60,
    )


class QualitySettings(BaseModel):
    """URL and rug-pull cache freshness."""

    link_ttl_hours: PositiveInt = 24
    rugpull_ttl_hours: PositiveInt = 24


class DiscoverySettings(BaseModel):
    """Profile / boost ingestion."""

    max_enqueue_per_run: PositiveInt = 120
    search_queries: list[str] = Field(default_factory=list)


class FeedSettings(BaseModel):
    """Request-time aggregation limits."""

    default_limit: int = 30
    max_limit: int = 100
    wishlist_default_limit: int = 100
    wishlist_max_limit: int = 200
    latency_budget_ms: PositiveInt = 1800
    stale_after_minutes: PositiveInt = 5
    overfetch_factor: PositiveInt = 3
    live_security_cu_budget: int = 10


class ApiSettings(BaseModel):
    """uvicorn bind address."""

    host: str = "0.0.0.0"
    port: PositiveInt = 8000


class ChainMappingSettings(BaseModel):
    """DexScreener chain id -> security provider mapping."""

    family: Literal["evm", "solana"] = "evm"
    provider_chain_id: str | None = None


def _default_chains() -> dict[str, ChainMappingSettings]:
    evm = {
        "ethereum": "1",
        "bsc": "56",
        "polygon": "137",
        "arbitrum": "42161",
        "base": "8453",
        "optimism": "10",
        "avalanche": "43114",
    }
    chains = {
        name: ChainMappingSettings(family="evm", provider_chain_id=chain_id)
        for name, chain_id in evm.items()
    }
    chains["solana"] = ChainMappingSettings(family="solana", provider_chain_id="solana")
    return chains


class AppSettings(BaseSettings):
    """Main DexSwipe settings container."""

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    environment: Literal["dev", "prod"] = "dev"
    log_json: bool = False
    database: DatabaseSettings = DatabaseSettings()
    cache: CacheSettings = CacheSettings()
    dexscreener: DexScreenerSettings = DexScreenerSettings()
    goplus: GoPlusSettings = GoPlusSettings()
    plan: PlanSettings = PlanSettings()
    queue: QueueSettings = QueueSettings()
    quality: QualitySettings = QualitySettings()
    discovery: DiscoverySettings = DiscoverySettings()
    feed: FeedSettings = FeedSettings()
    api: ApiSettings = ApiSettings()
    chains: dict[str, ChainMappingSettings] = Field(default_factory=_default_chains)

    @property
    def is_production(self) -> bool:
        """True when running in production."""

        return self.environment == "prod"


# Lazy singleton (avoids module-level globals elsewhere).
_settings: AppSettings | None = None


def get_settings() -> AppSettings:
    """Return the process-wide settings instance.

    Values are cached, so the .env file is parsed exactly once per process.
    """

    global _settings
    if _settings is None:
        _settings = AppSettings()
    return _settings


__all__ = [
    "ApiSettings",
    "AppSettings",
    "CacheSettings",
    "ChainMappingSettings",
    "DatabaseSettings",
    "DexScreenerSettings",
    "DiscoverySettings",
    "FeedSettings",
    "GoPlusSettings",
    "PlanSettings",
    "QualitySettings",
    "QueueSettings",
    "RetrySettings",
    "StageQueueSettings",
    "get_settings",
]
