"""Delivery attempt history."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import Enum as SqlEnum
from sqlalchemy import ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from automation_engine.models.base import Base, utcnow
from automation_engine.models.types import GUID, JSONType, UTCDateTime


class AttemptResult(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


class Attempt(Base):
    """Immutable record of one delivery try."""

    __tablename__ = "notification_attempts"
    __table_args__ = (
        UniqueConstraint("notification_id", "attempt_number", name="uq_notification_attempts_number"),
        Index("ix_notification_attempts_notification", "notification_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    notification_id: Mapped[uuid.UUID] = mapped_column(
        GUID(),
        ForeignKey("notifications.id", ondelete="CASCADE"),
        nullable=False,
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(GUID(), nullable=False)
    attempt_number: Mapped[int] = mapped_column(Integer, nullable=False)
    started_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    finished_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)
    result: Mapped[AttemptResult] = mapped_column(
        SqlEnum(
            AttemptResult,
            name="attempt_result",
            native_enum=False,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
    )
    error_message: Mapped[Optional[str]] = mapped_column(String(length=1024), nullable=True)
    response_metadata: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
