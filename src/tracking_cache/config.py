from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# One week, in seconds
DEFAULT_EXPIRY = 60 * 60 * 24 * 7
DEFAULT_READY_TIMEOUT_MS = 5000
DEFAULT_LOCAL_TTL = 300.0


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="TRACKING_CACHE_", env_file=".env", extra="ignore"
    )

    # Redis
    redis_url: str = Field(default="redis://localhost:6379/0")

    # Tracked key prefixes (JSON list in the environment)
    prefixes: list[str] = Field(default_factory=list)

    # Remote expiry applied by set/mset when the caller passes none (0 = no expiry)
    default_expiry: int = DEFAULT_EXPIRY

    # Readiness wait for the primary and subscriber connections
    ready_timeout_ms: int = DEFAULT_READY_TIMEOUT_MS

    # Ceiling on local residency of any entry, in seconds
    local_ttl: float = DEFAULT_LOCAL_TTL

    # Observability
    log_level: str = "INFO"
    log_json: bool = True

    @field_validator("default_expiry", "ready_timeout_ms")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("must be >= 0")
        return value

    @field_validator("local_ttl")
    @classmethod
    def _positive_ttl(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be > 0")
        return value


settings = Settings()
