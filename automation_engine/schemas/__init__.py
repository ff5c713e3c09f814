"""Pydantic schemas for API payloads."""

from automation_engine.schemas.event import (
    EventAppendRequest,
    EventAppendResponse,
    EventResponse,
    InboundEventMessage,
)
from automation_engine.schemas.notification import (
    AttemptResponse,
    AuditEntryResponse,
    NotificationResponse,
    ReprocessRequest,
    RescheduleRequest,
)
from automation_engine.schemas.rule import (
    RuleAction,
    RuleCreate,
    RuleFilter,
    RuleResponse,
    RuleSnapshot,
    RuleUpdate,
)

__all__ = [
    "AttemptResponse",
    "AuditEntryResponse",
    "EventAppendRequest",
    "EventAppendResponse",
    "EventResponse",
    "InboundEventMessage",
    "NotificationResponse",
    "ReprocessRequest",
    "RescheduleRequest",
    "RuleAction",
    "RuleCreate",
    "RuleFilter",
    "RuleResponse",
    "RuleSnapshot",
    "RuleUpdate",
]
