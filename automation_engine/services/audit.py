"""Automation audit logging service."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from automation_engine.models.audit_entry import AuditEntry

# Action names written to the audit log.
NOTIFICATION_SUPPRESSED = "notification.suppressed"
NOTIFICATION_CANCELLED = "notification.cancelled"
NOTIFICATION_RESCHEDULED = "notification.rescheduled"
NOTIFICATION_REPROCESSED = "notification.reprocessed"
NOTIFICATION_EXHAUSTED = "notification.max_attempts_exceeded"
ATTEMPT_DROPPED = "attempt.dropped"
RECIPIENT_UNRESOLVED = "action.recipient_unresolved"
ACTION_SKIPPED = "action.skipped"
RULE_MATCH_ERROR = "rule.match_error"
RULE_CREATED = "rule.created"
RULE_UPDATED = "rule.updated"
RULE_DELETED = "rule.deleted"


class AuditService:
    """Persists audit entries and mirrors them to structured logs."""

    def __init__(self, session: Session) -> None:
        self._session = session
        self._logger = logging.getLogger("automation_engine.audit")

    def record(
        self,
        *,
        action: str,
        tenant_id: UUID,
        actor_id: Optional[UUID] = None,
        rule_id: Optional[UUID] = None,
        event_id: Optional[UUID] = None,
        notification_id: Optional[UUID] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> AuditEntry:
        entry = AuditEntry(
            tenant_id=tenant_id,
            action=action,
            actor_id=actor_id,
            rule_id=rule_id,
            event_id=event_id,
            notification_id=notification_id,
            details=details or {},
        )
        self._session.add(entry)
        self._session.flush()

        self._logger.info(
            "audit_event",
            extra={
                "action": action,
                "tenant_id": str(tenant_id),
                "actor_id": _optional_str(actor_id),
                "rule_id": _optional_str(rule_id),
                "event_id": _optional_str(event_id),
                "notification_id": _optional_str(notification_id),
            },
        )
        return entry

    def list_entries(
        self,
        *,
        tenant_id: UUID,
        action: Optional[str] = None,
        notification_id: Optional[UUID] = None,
        limit: int = 100,
    ) -> List[AuditEntry]:
        stmt = select(AuditEntry).where(AuditEntry.tenant_id == tenant_id)
        if action:
            stmt = stmt.where(AuditEntry.action == action)
        if notification_id:
            stmt = stmt.where(AuditEntry.notification_id == notification_id)
        stmt = stmt.order_by(AuditEntry.created_at.desc()).limit(limit)
        return list(self._session.scalars(stmt))


def _optional_str(value: Optional[UUID]) -> Optional[str]:
    return str(value) if value is not None else None
