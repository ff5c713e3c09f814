"""Notification lifecycle and audit schemas."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from automation_engine.models.attempt import AttemptResult
from automation_engine.models.notification import NotificationStatus


class NotificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: UUID
    rule_id: Optional[UUID]
    event_id: Optional[UUID]
    channel: str
    recipient: str
    template_key: str
    dedupe_key: Optional[str]
    status: NotificationStatus
    scheduled_for: datetime
    attempts_count: int
    max_attempts: int
    last_error: Optional[str]
    sent_at: Optional[datetime]
    cancelled_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime


class AttemptResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    notification_id: UUID
    attempt_number: int
    started_at: datetime
    finished_at: datetime
    result: AttemptResult
    error_message: Optional[str]
    response_metadata: Dict[str, Any]


class RescheduleRequest(BaseModel):
    scheduled_for: datetime

    @field_validator("scheduled_for")
    @classmethod
    def _ensure_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class ReprocessRequest(BaseModel):
    reset_attempts: bool = Field(
        default=False,
        description="Also zero attempts_count, granting a full new retry budget.",
    )


class AuditEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: UUID
    action: str
    actor_id: Optional[UUID]
    rule_id: Optional[UUID]
    event_id: Optional[UUID]
    notification_id: Optional[UUID]
    details: Dict[str, Any]
    created_at: datetime
