"""Dependency injection helpers for FastAPI routes."""

from __future__ import annotations

from typing import Optional
from uuid import UUID

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from automation_engine.core.database import get_session
from automation_engine.events_engine.rule_cache import get_rule_cache
from automation_engine.events_engine.service import EventService
from automation_engine.services.audit import AuditService
from automation_engine.services.notifications import NotificationService
from automation_engine.services.rules import RuleService


def get_db_session() -> Session:
    yield from get_session()


def get_tenant_id(x_tenant_id: UUID = Header(..., alias="X-Tenant-Id")) -> UUID:
    return x_tenant_id


def get_actor_id(x_actor_id: Optional[UUID] = Header(default=None, alias="X-Actor-Id")) -> Optional[UUID]:
    return x_actor_id


def get_event_service(session: Session = Depends(get_db_session)) -> EventService:
    return EventService(session, cache=get_rule_cache())


def get_rule_service(session: Session = Depends(get_db_session)) -> RuleService:
    return RuleService(session, cache=get_rule_cache())


def get_notification_service(session: Session = Depends(get_db_session)) -> NotificationService:
    return NotificationService(session)


def get_audit_service(session: Session = Depends(get_db_session)) -> AuditService:
    return AuditService(session)
