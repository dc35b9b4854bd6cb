"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
trading mirror, loading and validating environment variables at startup.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        alias="DATABASE_URL",
        description="PostgreSQL connection string (SQLite accepted for local runs)",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate database URL format."""
        if not v.startswith(("postgresql://", "postgresql+asyncpg://", "sqlite+aiosqlite://")):
            raise ValueError(
                "DATABASE_URL must be a PostgreSQL connection string or sqlite+aiosqlite:// URL"
            )
        return v


class RedisSettings(BaseSettings):
    """Redis connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        default="redis://localhost:6379",
        alias="REDIS_URL",
        description="Redis connection string (sync leases)",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate Redis URL format."""
        if not v.startswith("redis://"):
            raise ValueError("REDIS_URL must start with redis://")
        return v


class PolymarketSettings(BaseSettings):
    """Polymarket API settings."""

    model_config = SettingsConfigDict(env_prefix="POLYMARKET_", extra="ignore")

    clob_host: str = Field(
        default="https://clob.polymarket.com",
        alias="POLYMARKET_CLOB_HOST",
        description="CLOB HTTP API host",
    )
    gamma_host: str = Field(
        default="https://gamma-api.polymarket.com",
        alias="POLYMARKET_GAMMA_HOST",
        description="Gamma market metadata API host",
    )
    data_api_host: str = Field(
        default="https://data-api.polymarket.com",
        alias="POLYMARKET_DATA_API_HOST",
        description="Data API host (token holdings)",
    )
    clob_chain_id: int = Field(
        default=137,
        alias="POLYMARKET_CLOB_CHAIN_ID",
        description="Chain ID for signing (Polygon=137)",
    )
    clob_private_key: SecretStr | None = Field(
        default=None,
        alias="POLYMARKET_CLOB_PRIVATE_KEY",
        description="Private key used for order signing",
    )
    clob_api_key: SecretStr | None = Field(
        default=None,
        alias="POLYMARKET_CLOB_API_KEY",
        description="CLOB API key (L2 auth)",
    )
    clob_api_secret: SecretStr | None = Field(
        default=None,
        alias="POLYMARKET_CLOB_API_SECRET",
        description="CLOB API secret (L2 auth)",
    )
    clob_api_passphrase: SecretStr | None = Field(
        default=None,
        alias="POLYMARKET_CLOB_API_PASSPHRASE",
        description="CLOB API passphrase (L2 auth)",
    )
    clob_signature_type: int | None = Field(
        default=None,
        alias="POLYMARKET_CLOB_SIGNATURE_TYPE",
        description="Optional signature type override for order signing (advanced)",
    )
    clob_funder: str | None = Field(
        default=None,
        alias="POLYMARKET_CLOB_FUNDER",
        description="Proxy/funder address holding the account's positions",
    )
    wallet_address: str | None = Field(
        default=None,
        alias="POLYMARKET_WALLET_ADDRESS",
        description="Wallet address used for holdings lookups when no funder is set",
    )

    @field_validator("clob_host", "gamma_host", "data_api_host")
    @classmethod
    def validate_http_host(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("Polymarket hosts must be HTTP(S) endpoints")
        return v.rstrip("/")


class KalshiSettings(BaseSettings):
    """Kalshi trading API settings."""

    model_config = SettingsConfigDict(env_prefix="KALSHI_", extra="ignore")

    base_url: str = Field(
        default="https://api.elections.kalshi.com/trade-api/v2",
        alias="KALSHI_BASE_URL",
        description="Kalshi trading API base URL (including the /trade-api/v2 prefix)",
    )
    api_key_id: str | None = Field(
        default=None,
        alias="KALSHI_API_KEY_ID",
        description="Kalshi API key id",
    )
    private_key: SecretStr | None = Field(
        default=None,
        alias="KALSHI_PRIVATE_KEY",
        description="RSA private key (PEM) used to sign requests",
    )
    private_key_path: Path | None = Field(
        default=None,
        alias="KALSHI_PRIVATE_KEY_PATH",
        description="Path to the RSA private key (PEM), used when KALSHI_PRIVATE_KEY is unset",
    )

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("KALSHI_BASE_URL must be an HTTP(S) endpoint")
        return v.rstrip("/")

    def load_private_key_pem(self) -> str | None:
        """Return the PEM text from the inline setting or the key file."""
        if self.private_key is not None:
            return self.private_key.get_secret_value()
        if self.private_key_path is not None:
            return self.private_key_path.read_text(encoding="utf-8")
        return None


class SyncSettings(BaseSettings):
    """Sync orchestration settings."""

    model_config = SettingsConfigDict(env_prefix="SYNC_", extra="ignore")

    max_pages: int = Field(
        default=10,
        alias="SYNC_MAX_PAGES",
        ge=1,
        le=100,
        description="Hard cap on pages followed per paginated endpoint",
    )
    page_limit: int = Field(
        default=500,
        alias="SYNC_PAGE_LIMIT",
        ge=1,
        le=1000,
        description="Rows requested per page",
    )
    metadata_batch_size: int = Field(
        default=90,
        alias="SYNC_METADATA_BATCH_SIZE",
        ge=1,
        le=500,
        description="Identifiers per market metadata request",
    )
    lease_ttl_seconds: int = Field(
        default=120,
        alias="SYNC_LEASE_TTL_SECONDS",
        ge=5,
        le=3600,
        description="TTL of the per-account sync lease",
    )
    stale_run_timeout_seconds: int = Field(
        default=900,
        alias="SYNC_STALE_RUN_TIMEOUT_SECONDS",
        ge=60,
        le=86_400,
        description="Runs still 'running' after this long are reaped as errors",
    )
    requests_per_second: float = Field(
        default=10.0,
        alias="SYNC_REQUESTS_PER_SECOND",
        gt=0.0,
        le=100.0,
        description="Per-adapter request rate limit",
    )


class ValuationSettings(BaseSettings):
    """Portfolio valuation and performance reconstruction settings."""

    model_config = SettingsConfigDict(env_prefix="VALUATION_", extra="ignore")

    pnl_top_n: int = Field(
        default=12,
        alias="VALUATION_PNL_TOP_N",
        ge=0,
        le=100,
        description="Positions (by value) priced for the approximate 24h PnL",
    )
    chart_top_n: int = Field(
        default=6,
        alias="VALUATION_CHART_TOP_N",
        ge=0,
        le=100,
        description="Positions (by value) included in the 30-day performance series",
    )
    stale_after_seconds: int = Field(
        default=240,
        alias="VALUATION_STALE_AFTER_SECONDS",
        ge=1,
        le=86_400,
        description="Mirror age after which the portfolio is flagged stale",
    )


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from trading_mirror.config import get_settings

        settings = get_settings()
        print(settings.database.url)
        print(settings.log_level)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # NOTE: Each nested BaseSettings must be given the same env_file, otherwise it
    # will only read from the process environment (and ignore `.env`).
    database: DatabaseSettings = Field(
        default_factory=lambda: DatabaseSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    redis: RedisSettings = Field(
        default_factory=lambda: RedisSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    polymarket: PolymarketSettings = Field(
        default_factory=lambda: PolymarketSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    kalshi: KalshiSettings = Field(
        default_factory=lambda: KalshiSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    sync: SyncSettings = Field(
        default_factory=lambda: SyncSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    valuation: ValuationSettings = Field(
        default_factory=lambda: ValuationSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )
    local_user_id: str = Field(
        default="local",
        alias="LOCAL_USER_ID",
        description="User id the CLI syncs for (credentials come from this environment)",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "database_url": self._redact_url(self.database.url),
            "redis_url": self._redact_url(self.redis.url),
            "polymarket": {
                "clob_host": self.polymarket.clob_host,
                "gamma_host": self.polymarket.gamma_host,
                "data_api_host": self.polymarket.data_api_host,
                "clob_chain_id": str(self.polymarket.clob_chain_id),
                "clob_private_key": "(set)" if self.polymarket.clob_private_key else "(not set)",
                "clob_api_key": "(set)" if self.polymarket.clob_api_key else "(not set)",
            },
            "kalshi": {
                "base_url": self.kalshi.base_url,
                "api_key_id": "(set)" if self.kalshi.api_key_id else "(not set)",
                "private_key": (
                    "(set)"
                    if self.kalshi.private_key or self.kalshi.private_key_path
                    else "(not set)"
                ),
            },
            "sync": {
                "max_pages": str(self.sync.max_pages),
                "metadata_batch_size": str(self.sync.metadata_batch_size),
                "lease_ttl_seconds": str(self.sync.lease_ttl_seconds),
                "stale_run_timeout_seconds": str(self.sync.stale_run_timeout_seconds),
            },
            "valuation": {
                "pnl_top_n": str(self.valuation.pnl_top_n),
                "chart_top_n": str(self.valuation.chart_top_n),
                "stale_after_seconds": str(self.valuation.stale_after_seconds),
            },
            "log_level": self.log_level,
            "local_user_id": self.local_user_id,
        }

    def validate_requirements(self, *, command: Literal["sync", "portfolio", "sweep"]) -> None:
        """Validate command-specific requirements.

        Partially configured accounts are refused rather than silently
        treated as disconnected.
        """
        if command != "sync":
            return
        poly = self.polymarket
        poly_parts = (poly.clob_api_key, poly.clob_api_secret, poly.clob_api_passphrase)
        if any(poly_parts) and not all(poly_parts):
            raise ValueError(
                "POLYMARKET_CLOB_API_KEY/POLYMARKET_CLOB_API_SECRET/POLYMARKET_CLOB_API_PASSPHRASE must be set together"
            )
        if all(poly_parts) and poly.clob_private_key is None:
            raise ValueError("POLYMARKET_CLOB_PRIVATE_KEY is required with CLOB API credentials")
        if all(poly_parts) and not (poly.clob_funder or poly.wallet_address):
            raise ValueError("POLYMARKET_CLOB_FUNDER or POLYMARKET_WALLET_ADDRESS is required for holdings")
        kalshi = self.kalshi
        has_key = kalshi.private_key is not None or kalshi.private_key_path is not None
        if bool(kalshi.api_key_id) != has_key:
            raise ValueError("KALSHI_API_KEY_ID and KALSHI_PRIVATE_KEY(_PATH) must be set together")

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            # URL has credentials - redact the password
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Uses LRU cache to ensure settings are loaded only once and
    reused across the application.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If required environment variables are missing
            or have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
