"""
Configuration management for the resilient todo sandbox.

Uses pydantic-settings for type-safe environment variable handling.
All timings are in seconds.
"""

from enum import Enum
from functools import lru_cache

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppEnvironment(str, Enum):
    """Application environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class ConsistencyMode(str, Enum):
    """Client policy deciding which signal gates visibility of a mutation."""

    SAFE = "Safe"
    OPTIMISTIC = "Optimistic"
    BRAVE = "Brave"


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Server-side fields drive the fault injector and the command queue;
    client-side fields drive the retry client and the confirmation stream.
    """

    model_config = SettingsConfigDict(
        env_prefix="TODO_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    env: AppEnvironment = Field(
        default=AppEnvironment.DEVELOPMENT,
        description="Application environment",
    )

    # Server configuration
    host: str = Field(default="127.0.0.1", description="Server host")
    port: int = Field(default=7686, ge=1024, le=65535, description="Server port")
    cors_origins: list[str] = Field(
        default=["http://localhost:5173", "http://127.0.0.1:5173"],
        description="Origins allowed to call the HTTP API from a browser",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )

    # Fault & latency injection
    ingress_delay_min_s: float = Field(
        default=1.0,
        ge=0,
        description="Lower bound of the uniform delay applied to every request",
    )
    ingress_delay_max_s: float = Field(
        default=5.0,
        ge=0,
        description="Upper bound of the uniform delay applied to every request",
    )
    failure_rate: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Probability that a request is aborted with a simulated 500",
    )

    # Command queue
    queue_tick_s: float = Field(
        default=0.5,
        gt=0,
        description="Dispatcher tick period; one command is popped per tick",
    )
    apply_delay_min_s: float = Field(
        default=3.0,
        ge=0,
        description="Lower bound of the delay between pop and apply",
    )
    apply_delay_max_s: float = Field(
        default=6.0,
        ge=0,
        description="Upper bound of the delay between pop and apply",
    )

    # Broadcast
    broadcast_send_timeout_s: float = Field(
        default=1.0,
        gt=0,
        description="Longest a subscriber may take to accept one confirmation before it is pruned",
    )

    # Client
    api_base_url: str = Field(
        default="http://127.0.0.1:7686",
        description="Base URL of the todo HTTP API",
    )
    ws_url: str = Field(
        default="ws://127.0.0.1:7686/ws",
        description="URL of the confirmation stream",
    )
    client_max_attempts: int = Field(
        default=5,
        ge=1,
        le=20,
        description="Total attempts per command before giving up",
    )
    client_backoff_base_s: float = Field(
        default=0.5,
        ge=0,
        description="Delay before the first retry; doubles for each further retry",
    )
    client_timeout_s: float = Field(
        default=10.0,
        gt=0,
        description="Per-attempt HTTP timeout",
    )
    stream_reconnect_delay_s: float = Field(
        default=1.0,
        ge=0,
        description="Pause before reconnecting a dropped confirmation stream",
    )
    consistency_mode: ConsistencyMode = Field(
        default=ConsistencyMode.SAFE,
        description="Initial client consistency mode",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_v = v.upper()
        if upper_v not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return upper_v

    @model_validator(mode="after")
    def validate_delay_ranges(self) -> "Settings":
        """Check delay ranges are ordered and apply outlasts a tick."""
        if self.ingress_delay_min_s > self.ingress_delay_max_s:
            raise ValueError("ingress_delay_min_s must not exceed ingress_delay_max_s")
        if self.apply_delay_min_s > self.apply_delay_max_s:
            raise ValueError("apply_delay_min_s must not exceed apply_delay_max_s")
        if self.apply_delay_min_s <= self.queue_tick_s:
            raise ValueError(
                "apply_delay_min_s must be greater than queue_tick_s "
                "so several commands can be in flight at once"
            )
        return self

    @property
    def is_development(self) -> bool:
        """Check if running in development."""
        return self.env == AppEnvironment.DEVELOPMENT

    def get_public_config(self) -> dict[str, str | int | float | bool]:
        """Get configuration dict safe for API responses."""
        return {
            "env": self.env.value,
            "host": self.host,
            "port": self.port,
            "log_level": self.log_level,
            "ingress_delay_min_s": self.ingress_delay_min_s,
            "ingress_delay_max_s": self.ingress_delay_max_s,
            "failure_rate": self.failure_rate,
            "queue_tick_s": self.queue_tick_s,
            "apply_delay_min_s": self.apply_delay_min_s,
            "apply_delay_max_s": self.apply_delay_max_s,
            "broadcast_send_timeout_s": self.broadcast_send_timeout_s,
        }


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure single instance throughout application.
    """
    return Settings()


def get_settings_dep() -> Settings:
    """
    Dependency for FastAPI routes to get settings.
    Allows for easy dependency override in tests.
    """
    return get_settings()
