from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from telemetry_forwarder.coordinator import QueueOptions

from .errors import ConfigurationError


class ForwarderSettings(BaseSettings):
    """Client configuration, read from TFWD_* environment variables or .env."""

    model_config = SettingsConfigDict(
        env_prefix="TFWD_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    api_key: str
    project_id: str
    api_url: str = "https://api.logsicle.com"
    api_version: int = 1

    environment: str = "development"
    service_name: str = "default-service"
    version: str = "1.0.0"
    debug: bool = False

    # ---- queue ----
    flush_interval_ms: int = 1000
    max_retries: int = 3
    max_batch_size: int = 50
    delivery_timeout_s: float = 10.0
    failure_scope: Literal["slice", "group"] = "slice"

    # ---- transport ----
    request_timeout_s: float = 5.0
    request_retries: int = 3  # extra attempts on 429/5xx/network errors
    retry_base_delay_ms: int = 500
    retry_max_delay_ms: int = 5000
    beacon_timeout_s: float = 1.0
    use_beacon: bool = True

    # ---- process ----
    handle_signals: bool = True

    @field_validator("api_key", "project_id")
    @classmethod
    def _required(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("must not be empty")
        return v.strip()

    @field_validator("api_url")
    @classmethod
    def _strip_slash(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"expected an http(s) URL, got {v!r}")
        return v.rstrip("/")

    @field_validator(
        "api_version", "flush_interval_ms", "max_batch_size", "delivery_timeout_s",
        "request_timeout_s", "beacon_timeout_s", "retry_base_delay_ms", "retry_max_delay_ms",
    )
    @classmethod
    def _positive(cls, v):
        if v <= 0:
            raise ValueError("must be > 0")
        return v

    @field_validator("max_retries", "request_retries")
    @classmethod
    def _non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("must be >= 0")
        return v

    @property
    def base_url(self) -> str:
        return f"{self.api_url}/v{self.api_version}"

    def queue_options(self) -> QueueOptions:
        return QueueOptions(
            flush_interval_ms=self.flush_interval_ms,
            max_retries=self.max_retries,
            max_batch_size=self.max_batch_size,
            delivery_timeout_s=self.delivery_timeout_s,
            failure_scope=self.failure_scope,
        )


def load_settings(**overrides) -> ForwarderSettings:
    """Build settings from explicit values, falling back to the environment.

    Raises ConfigurationError instead of pydantic's ValidationError.
    """
    values = {k: v for k, v in overrides.items() if v is not None}
    try:
        return ForwarderSettings(**values)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid forwarder configuration: {exc}") from exc


@lru_cache()
def get_settings() -> ForwarderSettings:
    return load_settings()
