"""Event ingestion schemas."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from automation_engine.models.event import EventStatus


class EventAppendRequest(BaseModel):
    """Inbound payload for the event ingestion API and the queue consumer."""

    event_type: str = Field(..., min_length=3, max_length=128)
    idempotency_key: str = Field(
        ...,
        min_length=1,
        max_length=255,
        description='Unique per tenant; recommended form is "{event_type}:{natural_key}".',
    )
    payload: Dict[str, Any] = Field(default_factory=dict)
    source: Optional[str] = Field(default=None, max_length=128)
    occurred_at: Optional[datetime] = Field(
        default=None,
        description="Optional UTC timestamp provided by the producer.",
    )

    @field_validator("occurred_at")
    @classmethod
    def _ensure_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class InboundEventMessage(EventAppendRequest):
    """Queue message: the append request plus the owning tenant."""

    tenant_id: UUID


class EventResponse(BaseModel):
    """API response describing a stored event."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: UUID
    event_type: str
    idempotency_key: str
    source: Optional[str]
    payload: Dict[str, Any]
    occurred_at: datetime
    status: EventStatus
    error_reason: Optional[str]
    processed_at: Optional[datetime]
    created_at: datetime


class EventAppendResponse(EventResponse):
    is_new: bool
    notifications_created: int = 0
