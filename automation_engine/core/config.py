"""Application configuration using Pydantic settings."""

from __future__ import annotations

from functools import lru_cache
from typing import List, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    """Service configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="NFE_",
        extra="ignore",
    )

    environment: Literal["local", "test", "staging", "production"] = Field(default="local")
    service_name: str = Field(default="notification-automation-engine")
    database_url: str = Field(default="sqlite:///./data/automation.db")
    sql_echo: bool = Field(default=False)
    log_level: str = Field(default="INFO")
    log_json: bool = Field(default=True)

    redis_url: str | None = Field(default=None)
    redis_token: str | None = Field(default=None)
    rule_cache_prefix: str = Field(default="nfe")
    rule_cache_ttl: int = Field(default=30)

    base_backoff_seconds: int = Field(default=60, ge=1)
    max_backoff_seconds: int = Field(default=3600, ge=1)
    default_max_attempts: int = Field(default=3, ge=1)
    claim_batch_size: int = Field(default=25, ge=1)
    claim_poll_interval: float = Field(default=5.0, gt=0)
    sender_fan_out: int = Field(default=10, ge=1)
    send_timeout_seconds: float = Field(default=20.0, gt=0)
    stale_claim_seconds: int = Field(default=300, ge=1)
    event_batch_size: int = Field(default=50, ge=1)
    process_events_inline: bool = Field(default=True)

    aws_region: str | None = Field(default=None)
    sns_channels: List[str] | str = Field(default_factory=lambda: ["sms", "push"])
    relay_url: str | None = Field(default=None)
    relay_token: str | None = Field(default=None)
    relay_channels: List[str] | str = Field(default_factory=lambda: ["email", "whatsapp"])
    inbound_sqs_url: str | None = Field(default=None)

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, value: str) -> str:
        return value.upper()

    @field_validator("sns_channels", "relay_channels")
    @classmethod
    def parse_channel_list(cls, value: str | List[str] | None) -> List[str]:
        if value is None or value == "":
            return []
        if isinstance(value, str):
            return [channel.strip().lower() for channel in value.split(",") if channel.strip()]
        return [channel.lower() for channel in value]

    @field_validator(
        "redis_url",
        "redis_token",
        "aws_region",
        "relay_url",
        "relay_token",
        "inbound_sqs_url",
        mode="before",
    )
    @classmethod
    def empty_string_to_none(cls, value: str | None) -> str | None:
        if value == "":
            return None
        return value

    @field_validator("rule_cache_ttl", mode="before")
    @classmethod
    def ensure_int_ttl(cls, value: int | str | None) -> int | str | None:
        if value in (None, ""):
            return 30
        return value


@lru_cache
def get_settings() -> AppSettings:
    """Return cached application settings instance."""

    return AppSettings()
