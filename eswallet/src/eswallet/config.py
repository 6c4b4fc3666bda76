"""
Configuration for Esplora wallet synchronization using pydantic-settings.

Values come from keyword arguments, ESPLORA_* environment variables or a
.env file, in that order of precedence.
"""

from __future__ import annotations

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from escore.constants import (
    DEFAULT_CONCURRENCY,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_RETRY_BACKOFF,
    DEFAULT_TIMEOUT,
    MAX_BATCH_SIZE,
)
from escore.errors import InvalidConfigurationError


class EsploraConfig(BaseSettings):
    """Configuration for an Esplora-backed wallet sync."""

    model_config = SettingsConfigDict(
        env_prefix="ESPLORA_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Base URL of the esplora service, e.g. https://blockstream.info/api
    base_url: str
    # Format: <scheme>://<user>:<password>@<host>:<port> (socks5 needs httpx[socks])
    proxy: str | None = None
    # Number of parallel requests sent to the esplora service
    concurrency: int = Field(default=DEFAULT_CONCURRENCY, ge=0)
    # Stop scanning a branch after an unused run of this length
    stop_gap: int = Field(..., ge=0)
    # Socket timeout in seconds
    timeout: float | None = Field(default=None, gt=0)

    max_attempts: int = Field(default=DEFAULT_MAX_ATTEMPTS, ge=0)
    retry_backoff: float = Field(default=DEFAULT_RETRY_BACKOFF, ge=0)
    # Scripts derived per scan step; derived from concurrency/stop_gap when unset
    batch_size: int | None = Field(default=None, ge=0)

    network: Literal["mainnet", "testnet", "signet", "regtest"] = "mainnet"
    verify_merkle_proofs: bool = False
    verify_unspent: bool = False
    # Use the blocking HTTP transport (requests run in worker threads)
    blocking: bool = False

    log_level: str = "INFO"

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        v = v.strip().rstrip("/")
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"base_url must be an http(s) URL, got {v!r}")
        return v

    @classmethod
    def new(cls, base_url: str, stop_gap: int) -> EsploraConfig:
        """Config with default values given the base url and stop gap."""
        return cls(base_url=base_url, stop_gap=stop_gap)

    @property
    def effective_timeout(self) -> float:
        return self.timeout if self.timeout is not None else DEFAULT_TIMEOUT

    @property
    def effective_batch_size(self) -> int:
        if self.batch_size is not None:
            return self.batch_size
        return min(max(self.concurrency, self.stop_gap), MAX_BATCH_SIZE)

    def validate_for_sync(self) -> None:
        """
        Reject values that would make a sync pass meaningless.

        Raises:
            InvalidConfigurationError: On zero stop_gap, concurrency,
                max_attempts or batch_size
        """
        if self.stop_gap == 0:
            raise InvalidConfigurationError("stop_gap must be a positive integer")
        if self.concurrency == 0:
            raise InvalidConfigurationError("concurrency must be a positive integer")
        if self.max_attempts == 0:
            raise InvalidConfigurationError("max_attempts must be a positive integer")
        if self.batch_size == 0:
            raise InvalidConfigurationError("batch_size must be a positive integer")


def get_config(**overrides: object) -> EsploraConfig:
    return EsploraConfig(**overrides)  # type: ignore[arg-type]
