"""Rule schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from automation_engine.events_engine.filters import FilterOperator
from automation_engine.models.rule import DedupeScope

ENQUEUE_NOTIFICATION = "enqueue_notification"


class RuleFilter(BaseModel):
    path: str = Field(..., min_length=1, max_length=255)
    operator: FilterOperator = Field(..., validation_alias=AliasChoices("operator", "op"))
    value: Any = None


class RuleAction(BaseModel):
    type: str = Field(default=ENQUEUE_NOTIFICATION, max_length=64)
    channel: str = Field(..., min_length=2, max_length=32)
    recipient_path: str = Field(..., min_length=1, max_length=255)
    template_key: str = Field(default="default", min_length=1, max_length=128)
    delay_seconds: int = Field(default=0, ge=0)
    max_attempts: Optional[int] = Field(default=None, ge=1, le=50)
    payload_override: Optional[Dict[str, Any]] = None

    @field_validator("channel")
    @classmethod
    def _normalize_channel(cls, value: str) -> str:
        return value.strip().lower()


class RuleBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=1024)
    trigger_event_type: str = Field(..., min_length=3, max_length=128)
    filters: List[RuleFilter] = Field(default_factory=list)
    actions: List[RuleAction] = Field(..., min_length=1)
    dedupe_scope: DedupeScope = DedupeScope.NONE
    priority: int = Field(default=0)
    is_enabled: bool = True


class RuleCreate(RuleBase):
    pass


class RuleUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=1024)
    trigger_event_type: Optional[str] = Field(default=None, min_length=3, max_length=128)
    filters: Optional[List[RuleFilter]] = None
    actions: Optional[List[RuleAction]] = Field(default=None, min_length=1)
    dedupe_scope: Optional[DedupeScope] = None
    priority: Optional[int] = None
    is_enabled: Optional[bool] = None


class RuleResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: UUID
    name: str
    description: Optional[str]
    trigger_event_type: str
    filters: List[Dict[str, Any]]
    actions: List[Dict[str, Any]]
    dedupe_scope: DedupeScope
    priority: int
    is_enabled: bool
    created_at: datetime
    updated_at: datetime


class RuleSnapshot(BaseModel):
    """Detached copy of a stored rule, safe to cache and to evaluate without a session.

    ``filters`` and ``actions`` stay as raw JSON so a malformed rule written
    outside the API surfaces as a per-rule match error instead of failing the
    whole load.
    """

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: UUID
    name: str
    trigger_event_type: str
    filters: Any = None
    actions: Any = None
    dedupe_scope: DedupeScope = DedupeScope.NONE
    priority: int = 0
    is_enabled: bool = True
    created_at: datetime
