"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
Solana Signal service, loading and validating environment variables
at startup.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from functools import lru_cache
from typing import Literal

from pydantic import AliasChoices, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"

WRAPPED_SOL_MINT = "So11111111111111111111111111111111111111112"

DEFAULT_LIQUIDITY_SOURCES = ",".join(
    (
        "raydium-primary=https://api.raydium.io/v2/main/pairs",
        "backup-1=https://api.dexscreener.com/latest/dex/search?q=raydium",
        "backup-2=https://lite-api.jup.ag/tokens/v1/mints/tradable",
    )
)
DEFAULT_SWAP_KEYWORDS = "SWAP,RAYDIUM,JUPITER,ORCA,METEORA,PUMP"
DEFAULT_HISTORY_URL_TEMPLATE = (
    "https://api.helius.xyz/v0/addresses/{address}/transactions?api-key={api_key}"
)


@dataclass(frozen=True)
class SourceEntry:
    """A parsed ``name=url`` entry from a source list."""

    name: str
    url: str


def parse_source_entries(raw: str, *, default_prefix: str) -> tuple[SourceEntry, ...]:
    """Parse a comma-separated ``name=url`` list.

    Bare URLs get a generated name (``<default_prefix>-<n>``), numbered by
    their position in the list.
    """
    entries: list[SourceEntry] = []
    for index, chunk in enumerate(p.strip() for p in raw.split(",")):
        if not chunk:
            continue
        name, sep, url = chunk.partition("=")
        if sep and not name.strip().startswith(("http://", "https://")):
            name, url = name.strip(), url.strip()
        else:
            name, url = f"{default_prefix}-{index}", chunk
        if not url.startswith(("http://", "https://")):
            raise ValueError(f"Source URL must be an HTTP(S) endpoint: {url!r}")
        if not name:
            raise ValueError(f"Source entry is missing a name: {chunk!r}")
        entries.append(SourceEntry(name=name, url=url))
    return tuple(entries)


def _split_csv(raw: str) -> tuple[str, ...]:
    return tuple(p.strip() for p in raw.split(",") if p.strip())


class SourceSettings(BaseSettings):
    """Liquidity source chain settings."""

    model_config = SettingsConfigDict(env_prefix="LIQUIDITY_", extra="ignore")

    sources: str = Field(
        default=DEFAULT_LIQUIDITY_SOURCES,
        alias="LIQUIDITY_SOURCES",
        description="Primary failover chain, comma-separated name=url entries in priority order",
    )
    aux_sources: str = Field(
        default="",
        alias="LIQUIDITY_AUX_SOURCES",
        description="Auxiliary liquidity sources, polled independently and added to the total",
    )
    source_headers: dict[str, dict[str, str]] = Field(
        default_factory=dict,
        alias="LIQUIDITY_SOURCE_HEADERS",
        description="JSON mapping of source name to extra request headers (auth keys)",
    )

    @field_validator("sources")
    @classmethod
    def validate_sources(cls, v: str) -> str:
        if not parse_source_entries(v, default_prefix="liquidity"):
            raise ValueError("LIQUIDITY_SOURCES must list at least one source")
        return v

    @field_validator("aux_sources")
    @classmethod
    def validate_aux_sources(cls, v: str) -> str:
        parse_source_entries(v, default_prefix="aux")
        return v

    @property
    def primary_entries(self) -> tuple[SourceEntry, ...]:
        return parse_source_entries(self.sources, default_prefix="liquidity")

    @property
    def aux_entries(self) -> tuple[SourceEntry, ...]:
        return parse_source_entries(self.aux_sources, default_prefix="aux")


class FetchSettings(BaseSettings):
    """Bounded fetch limits applied to every upstream call."""

    model_config = SettingsConfigDict(env_prefix="FETCH_", extra="ignore")

    timeout_seconds: float = Field(
        default=10.0,
        alias="FETCH_TIMEOUT_SECONDS",
        gt=0.0,
        le=300.0,
        description="Wall-clock budget for a single request, body included",
    )
    max_bytes: int = Field(
        default=2 * 1024 * 1024,
        alias="FETCH_MAX_BYTES",
        ge=1024,
        le=512 * 1024 * 1024,
        description="Hard ceiling on bytes read from one response",
    )


class PollSettings(BaseSettings):
    """Scheduler intervals and fan-out limits."""

    model_config = SettingsConfigDict(env_prefix="POLL_", extra="ignore")

    liquidity_interval_seconds: float = Field(
        default=60.0,
        alias="POLL_LIQUIDITY_INTERVAL_SECONDS",
        ge=1.0,
        le=86_400.0,
        description="How often to run a liquidity failover cycle",
    )
    wallet_interval_seconds: float = Field(
        default=120.0,
        alias="POLL_WALLET_INTERVAL_SECONDS",
        ge=1.0,
        le=86_400.0,
        description="How often to poll watched wallets for swaps",
    )
    wallet_concurrency: int = Field(
        default=5,
        alias="POLL_WALLET_CONCURRENCY",
        ge=1,
        le=100,
        description="Maximum concurrent wallet history fetches",
    )
    dedup_max_entries: int | None = Field(
        default=None,
        alias="POLL_DEDUP_MAX_ENTRIES",
        ge=1,
        description="Optional capacity bound for the tracked-address ledger (unset = unbounded)",
    )


class WalletSettings(BaseSettings):
    """Wallet swap ingestion and win-rate settings."""

    model_config = SettingsConfigDict(env_prefix="WALLET_", extra="ignore")

    history_url_template: str = Field(
        default=DEFAULT_HISTORY_URL_TEMPLATE,
        alias="WALLET_HISTORY_URL_TEMPLATE",
        description="Transaction-history URL; {address} and {api_key} are substituted",
    )
    history_api_key: SecretStr | None = Field(
        default=None,
        alias="WALLET_HISTORY_API_KEY",
        description="API key for the transaction-history provider",
    )
    survival_threshold_minutes: float = Field(
        default=5.0,
        alias="WALLET_SURVIVAL_THRESHOLD_MINUTES",
        ge=0.0,
        le=365 * 24 * 60,
        description="Minimum time since first swap for a token to count as a win",
    )
    swap_keywords: str = Field(
        default=DEFAULT_SWAP_KEYWORDS,
        alias="WALLET_SWAP_KEYWORDS",
        description="Comma-separated venue/type keywords that classify an event as a swap",
    )
    ignored_mints: str = Field(
        default=WRAPPED_SOL_MINT,
        alias="WALLET_IGNORED_MINTS",
        description="Comma-separated quote mints that are never tracked as trades",
    )
    initial_wallets: str = Field(
        default="",
        alias="WALLET_INITIAL_WALLETS",
        description="Comma-separated wallets to watch at startup (address or address:label)",
    )

    @field_validator("history_url_template")
    @classmethod
    def validate_history_url_template(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("WALLET_HISTORY_URL_TEMPLATE must be an HTTP(S) endpoint")
        if "{address}" not in v:
            raise ValueError("WALLET_HISTORY_URL_TEMPLATE must contain an {address} placeholder")
        return v

    @field_validator("swap_keywords")
    @classmethod
    def validate_swap_keywords(cls, v: str) -> str:
        if not _split_csv(v):
            raise ValueError("WALLET_SWAP_KEYWORDS must contain at least one keyword")
        return v

    @property
    def survival_threshold(self) -> timedelta:
        return timedelta(minutes=self.survival_threshold_minutes)

    @property
    def keyword_set(self) -> frozenset[str]:
        return frozenset(k.upper() for k in _split_csv(self.swap_keywords))

    @property
    def ignored_mint_set(self) -> frozenset[str]:
        return frozenset(_split_csv(self.ignored_mints))

    @property
    def initial_wallet_entries(self) -> tuple[tuple[str, str | None], ...]:
        entries: list[tuple[str, str | None]] = []
        for chunk in _split_csv(self.initial_wallets):
            address, _, label = chunk.partition(":")
            entries.append((address.strip(), label.strip() or None))
        return tuple(entries)


class RedisSettings(BaseSettings):
    """Optional Redis mirror for the liquidity snapshot."""

    model_config = SettingsConfigDict(env_prefix="REDIS_", extra="ignore")

    url: str | None = Field(
        default=None,
        alias="REDIS_URL",
        description="Redis connection string (unset disables the snapshot mirror)",
    )
    snapshot_key: str = Field(
        default="solana_signal:snapshot",
        alias="REDIS_SNAPSHOT_KEY",
        description="Key the latest snapshot is published under",
    )
    snapshot_ttl_seconds: int = Field(
        default=600,
        alias="REDIS_SNAPSHOT_TTL_SECONDS",
        ge=10,
        le=7 * 24 * 3600,
        description="TTL of the mirrored snapshot",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Validate Redis URL format."""
        if v is None:
            return v
        if not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v

    @property
    def enabled(self) -> bool:
        return self.url is not None


class ApiSettings(BaseSettings):
    """HTTP API settings."""

    model_config = SettingsConfigDict(env_prefix="API_", extra="ignore")

    host: str = Field(
        default="0.0.0.0",
        alias="API_HOST",
        description="Interface the HTTP API binds to",
    )
    port: int = Field(
        default=3000,
        validation_alias=AliasChoices("API_PORT", "PORT"),
        ge=1,
        le=65535,
        description="HTTP API port",
    )


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from solana_signal.config import get_settings

        settings = get_settings()
        print(settings.fetch.timeout_seconds)
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
    sources: SourceSettings = Field(
        default_factory=lambda: SourceSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    fetch: FetchSettings = Field(
        default_factory=lambda: FetchSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    poll: PollSettings = Field(
        default_factory=lambda: PollSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    wallet: WalletSettings = Field(
        default_factory=lambda: WalletSettings(
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
    api: ApiSettings = Field(
        default_factory=lambda: ApiSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
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
            "sources": {
                "primary": ", ".join(e.name for e in self.sources.primary_entries),
                "aux": ", ".join(e.name for e in self.sources.aux_entries) or "(none)",
                "headers_for": ", ".join(sorted(self.sources.source_headers)) or "(none)",
            },
            "fetch": {
                "timeout_seconds": str(self.fetch.timeout_seconds),
                "max_bytes": str(self.fetch.max_bytes),
            },
            "poll": {
                "liquidity_interval_seconds": str(self.poll.liquidity_interval_seconds),
                "wallet_interval_seconds": str(self.poll.wallet_interval_seconds),
                "dedup_max_entries": str(self.poll.dedup_max_entries or "(unbounded)"),
            },
            "wallet": {
                "survival_threshold_minutes": str(self.wallet.survival_threshold_minutes),
                "history_api_key": "(set)" if self.wallet.history_api_key else "(not set)",
            },
            "redis_url": self._redact_url(self.redis.url) if self.redis.url else "(not set)",
            "api": f"{self.api.host}:{self.api.port}",
            "log_level": self.log_level,
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
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
