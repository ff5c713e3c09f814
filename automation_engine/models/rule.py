"""Tenant-authored notification rules."""

from __future__ import annotations

import uuid
from enum import Enum
from typing import List, Optional

from sqlalchemy import Boolean, Index, Integer, String
from sqlalchemy import Enum as SqlEnum
from sqlalchemy.orm import Mapped, mapped_column

from automation_engine.models.base import Base, TimestampMixin
from automation_engine.models.types import GUID, JSONType


class DedupeScope(str, Enum):
    NONE = "none"
    ORDER = "order"
    CUSTOMER = "customer"
    CART = "cart"


class Rule(TimestampMixin, Base):
    """Maps an event type plus payload filters to notification actions."""

    __tablename__ = "notification_rules"
    __table_args__ = (
        Index("ix_notification_rules_trigger", "tenant_id", "trigger_event_type", "is_enabled"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(GUID(), nullable=False)
    name: Mapped[str] = mapped_column(String(length=255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(length=1024), nullable=True)
    trigger_event_type: Mapped[str] = mapped_column(String(length=128), nullable=False)
    filters: Mapped[List[dict]] = mapped_column(JSONType, nullable=False, default=list)
    actions: Mapped[List[dict]] = mapped_column(JSONType, nullable=False, default=list)
    dedupe_scope: Mapped[DedupeScope] = mapped_column(
        SqlEnum(
            DedupeScope,
            name="rule_dedupe_scope",
            native_enum=False,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
        default=DedupeScope.NONE,
    )
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
