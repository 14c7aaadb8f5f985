"""
Configuration Module for rtry

Retry and logging configuration loaded from environment variables (and an
optional ``.env`` file) using Pydantic v2 BaseSettings. Duration fields accept
whole milliseconds or duration tokens such as ``250ms``, ``1.5s`` or ``2m``.

Usage:
    from rtry.config import get_settings
    policy = get_settings().retry.to_policy()

Environment:
    RTRY_ATTEMPTS=5
    RTRY_MODE=lin
    RTRY_DELAY=250ms
    RTRY_JITTER=20%@pm
    RTRY_ON=default,429
    RTRY_LOG_LEVEL=DEBUG
"""

from __future__ import annotations

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Any, List, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .builder import RetryBuilder
from .duration import parse_duration_ms
from .exceptions import ConfigurationError
from .hedge import Hedge
from .jitter import Jitter
from .policy import BackoffMode, RetryPolicy
from .sequence import Sequence
from .tokens import normalize_token


# =============================================================================
# ENUMS
# =============================================================================

class LogLevel(str, Enum):
    """Logging level options."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


# =============================================================================
# BASE CONFIGURATION
# =============================================================================

class BaseConfig(BaseSettings):
    """Base configuration with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )


# =============================================================================
# RETRY CONFIGURATION
# =============================================================================

class RetrySettings(BaseConfig):
    """Default retry policy configuration."""

    model_config = SettingsConfigDict(
        env_prefix="RTRY_",
        env_file=".env",
        extra="ignore",
    )

    attempts: int = Field(
        default=3,
        ge=1,
        le=100,
        description="Total attempts including the first",
    )

    timeout: Optional[int] = Field(
        default=None,
        description="Advisory per-attempt timeout in milliseconds",
    )

    deadline: Optional[int] = Field(
        default=None,
        description="Wall-clock budget for the whole sequence in milliseconds",
    )

    start_after: int = Field(
        default=0,
        description="Delay before the first attempt in milliseconds",
    )

    mode: BackoffMode = Field(
        default=BackoffMode.EXPONENTIAL,
        description="Backoff model: lin, exp or seq",
    )

    base: float = Field(
        default=2.0,
        gt=0.0,
        le=100.0,
        description="Exponential growth factor",
    )

    delay: Optional[int] = Field(
        default=None,
        description="Linear increment in milliseconds",
    )

    cap: Optional[int] = Field(
        default=None,
        description="Upper bound on any computed delay in milliseconds",
    )

    follow_headers: bool = Field(
        default=True,
        description="Honour Retry-After and rate-limit reset headers",
    )

    on: str = Field(
        default="",
        description="Comma-separated failure tokens to retry on (empty = any failure)",
    )

    sequence: Optional[str] = Field(
        default=None,
        description="Explicit delays for seq mode, e.g. 100ms,250ms,1s*",
    )

    jitter: Optional[str] = Field(
        default=None,
        description="Jitter window, e.g. 100ms, 15% or 20%@pm",
    )

    hedge: Optional[str] = Field(
        default=None,
        description="Hedge descriptor, e.g. 2@50ms or 3@100ms&2",
    )

    seed: Optional[int] = Field(
        default=None,
        description="Seed for deterministic jitter",
    )

    @field_validator("timeout", "deadline", "start_after", "delay", "cap", mode="before")
    @classmethod
    def parse_duration(cls, v: Any) -> Any:
        """Accept duration tokens alongside plain millisecond counts."""
        if v is None or isinstance(v, int):
            return v
        if isinstance(v, str):
            if not v.strip():
                return None
            return parse_duration_ms(v.strip())
        return v

    @field_validator("mode", mode="before")
    @classmethod
    def parse_mode(cls, v: Any) -> BackoffMode:
        """Accept mode aliases such as ``linear`` or ``exponential``."""
        try:
            return BackoffMode.parse(v)
        except ConfigurationError as e:
            raise ValueError(e.message) from None

    @field_validator("sequence", "jitter", "hedge", mode="before")
    @classmethod
    def empty_as_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("sequence")
    @classmethod
    def validate_sequence(cls, v: Optional[str]) -> Optional[str]:
        if v is not None:
            try:
                Sequence.from_token(v)
            except ConfigurationError as e:
                raise ValueError(e.message) from None
        return v

    @field_validator("jitter")
    @classmethod
    def validate_jitter(cls, v: Optional[str]) -> Optional[str]:
        if v is not None:
            try:
                Jitter.from_token(v)
            except ConfigurationError as e:
                raise ValueError(e.message) from None
        return v

    @field_validator("hedge")
    @classmethod
    def validate_hedge(cls, v: Optional[str]) -> Optional[str]:
        if v is not None:
            try:
                Hedge.from_token(v)
            except ConfigurationError as e:
                raise ValueError(e.message) from None
        return v

    @model_validator(mode="after")
    def validate_mode_inputs(self) -> "RetrySettings":
        """Ensure the selected backoff mode has what it needs."""
        if self.mode == BackoffMode.SEQUENCE and self.sequence is None:
            raise ValueError("sequence required when mode is seq")
        for name in ("timeout", "deadline", "start_after", "delay", "cap"):
            value = getattr(self, name)
            if value is not None and value < 0:
                raise ValueError(f"{name} must be >= 0")
        return self

    @property
    def tokens(self) -> List[Any]:
        """Parsed ``on`` tokens; numeric entries become status codes."""
        return [normalize_token(t.strip()) for t in self.on.split(",") if t.strip()]

    def to_policy(self) -> RetryPolicy:
        """Build a fresh :class:`RetryPolicy` from these settings."""
        builder = RetryBuilder().with_attempts(self.attempts).with_start_after(self.start_after)

        if self.timeout is not None:
            builder.with_timeout(self.timeout)
        if self.deadline is not None:
            builder.with_deadline(self.deadline)

        if self.mode == BackoffMode.LINEAR:
            builder.with_linear_backoff(self.delay or 0)
        elif self.mode == BackoffMode.SEQUENCE:
            builder.with_sequence(self.sequence)
        else:
            builder.with_exponential_backoff(self.base)

        if self.cap is not None:
            builder.with_cap(self.cap)
        builder.follow_headers(self.follow_headers)

        if self.jitter is not None:
            jitter = Jitter.from_token(self.jitter)
            # "0" and "0%" mean no jitter
            if jitter.window_ms or jitter.percent:
                builder.with_jitter(jitter.window_ms, jitter.mode, jitter.percent)
        if self.hedge is not None:
            hedge = Hedge.from_token(self.hedge)
            builder.with_hedge(hedge.lanes, hedge.stagger_delay_ms, hedge.cancel_policy)

        tokens = self.tokens
        if tokens:
            builder.retry_on(*tokens)

        return builder.with_seed(self.seed).build()


# =============================================================================
# LOGGING CONFIGURATION
# =============================================================================

class LoggingSettings(BaseConfig):
    """Logging configuration."""

    model_config = SettingsConfigDict(
        env_prefix="RTRY_LOG_",
        env_file=".env",
        extra="ignore",
    )

    level: LogLevel = Field(
        default=LogLevel.INFO,
        description="Logging level",
    )

    format: str = Field(
        default="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        description="Log message format",
    )

    date_format: str = Field(
        default="%Y-%m-%d %H:%M:%S",
        description="Log date format",
    )

    file_enabled: bool = Field(
        default=False,
        description="Enable file logging",
    )

    file_path: Path = Field(
        default=Path("logs/rtry.log"),
        description="Log file path",
    )

    file_max_bytes: int = Field(
        default=10 * 1024 * 1024,  # 10 MB
        ge=1024,
        description="Max log file size in bytes",
    )

    file_backup_count: int = Field(
        default=5,
        ge=0,
        le=100,
        description="Number of backup log files",
    )


# =============================================================================
# APPLICATION SETTINGS (MAIN)
# =============================================================================

class Settings(BaseConfig):
    """
    Settings aggregating all configuration sections.

    Usage:
        settings = get_settings()
        policy = settings.retry.to_policy()
    """

    retry: RetrySettings = Field(default_factory=RetrySettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


# =============================================================================
# SINGLETON & CACHING
# =============================================================================

@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings: Cached settings singleton
    """
    return Settings()


def reload_settings() -> Settings:
    """
    Clear settings cache and reload from environment.

    Returns:
        Settings: Fresh settings instance
    """
    get_settings.cache_clear()
    return get_settings()


__all__ = [
    "Settings",
    "RetrySettings",
    "LoggingSettings",
    "LogLevel",
    "get_settings",
    "reload_settings",
]
