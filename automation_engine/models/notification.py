"""Scheduled, trackable outbound notifications."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import Enum as SqlEnum
from sqlalchemy import ForeignKey, Index, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column

from automation_engine.models.base import Base, TimestampMixin
from automation_engine.models.types import GUID, JSONType, UTCDateTime


class NotificationStatus(str, Enum):
    SCHEDULED = "scheduled"
    SENDING = "sending"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"


ACTIVE_STATUSES = (NotificationStatus.SCHEDULED, NotificationStatus.SENDING)
TERMINAL_STATUSES = (NotificationStatus.SENT, NotificationStatus.FAILED, NotificationStatus.CANCELLED)

# Shared by the partial unique index and the ON CONFLICT target that relies on it.
ACTIVE_DEDUPE_PREDICATE = text("status IN ('scheduled', 'sending')")


class Notification(TimestampMixin, Base):
    """One unit of outbound communication produced by a matched rule action."""

    __tablename__ = "notifications"
    __table_args__ = (
        Index("ix_notifications_due", "status", "scheduled_for"),
        Index("ix_notifications_tenant_status", "tenant_id", "status"),
        Index("ix_notifications_event", "event_id"),
        Index(
            "uq_notifications_active_dedupe",
            "rule_id",
            "dedupe_key",
            unique=True,
            sqlite_where=ACTIVE_DEDUPE_PREDICATE,
            postgresql_where=ACTIVE_DEDUPE_PREDICATE,
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(GUID(), nullable=False)
    rule_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        GUID(),
        ForeignKey("notification_rules.id", ondelete="SET NULL"),
        nullable=True,
    )
    event_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        GUID(),
        ForeignKey("events.id", ondelete="SET NULL"),
        nullable=True,
    )
    channel: Mapped[str] = mapped_column(String(length=32), nullable=False)
    recipient: Mapped[str] = mapped_column(String(length=320), nullable=False)
    template_key: Mapped[str] = mapped_column(String(length=128), nullable=False)
    payload: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    dedupe_key: Mapped[Optional[str]] = mapped_column(String(length=64), nullable=True)
    status: Mapped[NotificationStatus] = mapped_column(
        SqlEnum(
            NotificationStatus,
            name="notification_status",
            native_enum=False,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
        default=NotificationStatus.SCHEDULED,
    )
    scheduled_for: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    attempts_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    claim_token: Mapped[Optional[str]] = mapped_column(String(length=36), nullable=True)
    claimed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    last_error: Mapped[Optional[str]] = mapped_column(String(length=1024), nullable=True)
    sent_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
