import json
import re
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _parse_cors_origins(raw: Any) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, list):
        items = [str(v).strip() for v in raw]
        return [v for v in items if v]

    raw = str(raw).strip()
    if not raw or raw == "[]":
        return []
    if raw == "*":
        return ["*"]

    if raw.startswith("["):
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, list):
            items = [str(v).strip() for v in parsed]
            return [v for v in items if v]

    parts = [p for p in re.split(r"[,\s]+", raw) if p]
    if "*" in parts:
        return ["*"]
    # Deduplicate while preserving order.
    return list(dict.fromkeys(parts))


class PolicyOverride(BaseModel):
    """Startup override for a single named rate limit policy.

    Any field left unset keeps the built-in default for that policy. A policy
    name that has no built-in default must provide both ``max_requests`` and
    ``window_seconds``.
    """

    max_requests: int | None = None
    window_seconds: float | None = None
    key_prefix: str | None = None

    model_config = ConfigDict(extra="forbid")


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    """

    # Debug mode - enables detailed error responses
    debug: bool = False

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | json

    # Redis settings (shared counter store)
    redis_url: str = "redis://localhost:6379/0"
    redis_socket_timeout: float = 2.0  # Per-command socket timeout in seconds
    redis_connect_timeout: float = 2.0

    # Rate limiting settings
    rate_limit_enabled: bool = True
    rate_limit_store_timeout: float = 2.0  # Upper bound on one check round trip
    rate_limit_trust_forwarded_for: bool = False  # Only behind a trusted proxy
    rate_limit_default_policy: str = "default"  # Policy applied by the global middleware
    rate_limit_by_user: bool = False  # Global middleware keys by user when available

    # Per-policy overrides, e.g.
    # RATE_LIMIT_POLICIES='{"auth": {"max_requests": 10}, "search": {"max_requests": 30, "window_seconds": 60}}'
    rate_limit_policies: dict[str, PolicyOverride] = Field(default_factory=dict)

    # CORS settings
    cors_origins: Annotated[list[str], NoDecode] = ["*"]

    @field_validator("cors_origins", mode="before")
    @classmethod
    def decode_cors_origins(cls, v: Any) -> list[str]:
        return _parse_cors_origins(v)

    @field_validator(
        "redis_socket_timeout",
        "redis_connect_timeout",
        "rate_limit_store_timeout",
    )
    @classmethod
    def validate_timeout_positive(cls, v: float) -> float:
        """Validate timeout values are positive."""
        if v <= 0:
            raise ValueError("Timeout values must be positive")
        return v

    @field_validator("rate_limit_store_timeout")
    @classmethod
    def validate_store_timeout_bounded(cls, v: float) -> float:
        """Keep the limiter round trip short enough not to stall requests."""
        if v > 10:
            raise ValueError("rate_limit_store_timeout should not exceed 10 seconds")
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v = v.lower()
        if v not in ("text", "json"):
            raise ValueError("log_format must be one of: text, json")
        return v

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()
