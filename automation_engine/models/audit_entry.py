"""Automation audit log entries."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column

from automation_engine.models.base import Base, utcnow
from automation_engine.models.types import GUID, JSONType, UTCDateTime


class AuditEntry(Base):
    """Append-only trail of suppressions, skips and operator actions."""

    __tablename__ = "automation_audit_log"
    __table_args__ = (
        Index("ix_automation_audit_log_tenant_action", "tenant_id", "action"),
        Index("ix_automation_audit_log_notification", "notification_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(GUID(), nullable=False)
    action: Mapped[str] = mapped_column(String(length=120), nullable=False)
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID(), nullable=True)
    rule_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID(), nullable=True)
    event_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID(), nullable=True)
    notification_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID(), nullable=True)
    details: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)
