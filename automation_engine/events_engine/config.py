"""Configuration helpers for the automation engine."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from automation_engine.core.config import AppSettings, get_settings


@dataclass(frozen=True)
class EngineConfig:
    """Resolved tuning values shared by the scheduler and the delivery workers."""

    base_backoff_seconds: int = 60
    max_backoff_seconds: int = 3600
    default_max_attempts: int = 3
    claim_batch_size: int = 25
    claim_poll_interval: float = 5.0
    sender_fan_out: int = 10
    send_timeout_seconds: float = 20.0
    stale_claim_seconds: int = 300
    event_batch_size: int = 50


def get_engine_config(settings: Optional[AppSettings] = None) -> EngineConfig:
    """Materialize engine configuration from application settings."""

    settings = settings or get_settings()
    return EngineConfig(
        base_backoff_seconds=settings.base_backoff_seconds,
        max_backoff_seconds=settings.max_backoff_seconds,
        default_max_attempts=settings.default_max_attempts,
        claim_batch_size=settings.claim_batch_size,
        claim_poll_interval=settings.claim_poll_interval,
        sender_fan_out=settings.sender_fan_out,
        send_timeout_seconds=settings.send_timeout_seconds,
        stale_claim_seconds=settings.stale_claim_seconds,
        event_batch_size=settings.event_batch_size,
    )
