"""Normalized business events captured by the event store."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import Enum as SqlEnum
from sqlalchemy import Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from automation_engine.models.base import Base, TimestampMixin
from automation_engine.models.types import GUID, JSONType, UTCDateTime


class EventStatus(str, Enum):
    PENDING = "pending"
    PROCESSED = "processed"
    ERROR = "error"


class Event(TimestampMixin, Base):
    """Append-only record of something that happened in a tenant's business."""

    __tablename__ = "events"
    __table_args__ = (
        UniqueConstraint("tenant_id", "idempotency_key", name="uq_events_tenant_idempotency_key"),
        Index("ix_events_tenant_type", "tenant_id", "event_type"),
        Index("ix_events_status_created", "status", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(GUID(), nullable=False)
    event_type: Mapped[str] = mapped_column(String(length=128), nullable=False)
    idempotency_key: Mapped[str] = mapped_column(String(length=255), nullable=False)
    source: Mapped[Optional[str]] = mapped_column(String(length=128), nullable=True)
    payload: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    status: Mapped[EventStatus] = mapped_column(
        SqlEnum(
            EventStatus,
            name="event_status",
            native_enum=False,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
        default=EventStatus.PENDING,
    )
    error_reason: Mapped[Optional[str]] = mapped_column(String(length=1024), nullable=True)
    processed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
