"""Operator lifecycle actions on notifications."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from automation_engine.models.attempt import Attempt
from automation_engine.models.notification import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    Notification,
    NotificationStatus,
)
from automation_engine.services import audit
from automation_engine.services.audit import AuditService


class NotificationServiceError(Exception):
    """Base class for notification lifecycle errors."""


class NotificationNotFoundError(NotificationServiceError):
    """Raised when a notification does not exist for the tenant."""


class InvalidTransitionError(NotificationServiceError):
    """Raised when the requested action is not allowed from the current status."""

    def __init__(
        self,
        notification_id: UUID,
        status: NotificationStatus,
        action: str,
        reason: Optional[str] = None,
    ) -> None:
        super().__init__(reason or f"Cannot {action} notification {notification_id} in status '{status.value}'")
        self.notification_id = notification_id
        self.status = status
        self.action = action


class AlreadyTerminalError(InvalidTransitionError):
    """Raised when the notification already reached sent, failed or cancelled."""


class NotificationService:
    """Cancel, reschedule and reprocess notifications and expose their attempt history.

    Each transition is a conditional update on the status the action requires,
    so an operator racing a delivery worker gets a clean refusal instead of a
    lost update.
    """

    def __init__(self, session: Session, audit_service: Optional[AuditService] = None) -> None:
        self._session = session
        self._audit = audit_service or AuditService(session)
        self._logger = logging.getLogger("automation_engine.services.notifications")

    def get_notification(self, tenant_id: UUID, notification_id: UUID) -> Notification:
        notification = self._session.get(Notification, notification_id, populate_existing=True)
        if notification is None or notification.tenant_id != tenant_id:
            raise NotificationNotFoundError(f"Notification {notification_id} not found")
        return notification

    def list_notifications(
        self,
        tenant_id: UUID,
        *,
        status: Optional[NotificationStatus] = None,
        channel: Optional[str] = None,
        rule_id: Optional[UUID] = None,
        event_id: Optional[UUID] = None,
        scheduled_from: Optional[datetime] = None,
        scheduled_to: Optional[datetime] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Notification]:
        stmt = select(Notification).where(Notification.tenant_id == tenant_id)
        if status:
            stmt = stmt.where(Notification.status == status)
        if channel:
            stmt = stmt.where(Notification.channel == channel.lower())
        if rule_id:
            stmt = stmt.where(Notification.rule_id == rule_id)
        if event_id:
            stmt = stmt.where(Notification.event_id == event_id)
        if scheduled_from:
            stmt = stmt.where(Notification.scheduled_for >= scheduled_from)
        if scheduled_to:
            stmt = stmt.where(Notification.scheduled_for <= scheduled_to)
        stmt = stmt.order_by(Notification.scheduled_for.desc(), Notification.id.asc()).limit(limit).offset(offset)
        return list(self._session.scalars(stmt))

    def list_attempts(self, tenant_id: UUID, notification_id: UUID) -> List[Attempt]:
        self.get_notification(tenant_id, notification_id)
        stmt = (
            select(Attempt)
            .where(Attempt.notification_id == notification_id)
            .order_by(Attempt.attempt_number.asc())
        )
        return list(self._session.scalars(stmt))

    def cancel(self, tenant_id: UUID, notification_id: UUID, *, actor_id: Optional[UUID] = None) -> Notification:
        """Cancel a notification that has not reached a terminal status.

        A send already in flight is allowed to finish; the worker's outcome
        write is then dropped because the claim no longer holds.
        """

        now = datetime.now(timezone.utc)
        previous = self._transition(
            tenant_id,
            notification_id,
            action="cancel",
            allowed=ACTIVE_STATUSES,
            values={"status": NotificationStatus.CANCELLED, "cancelled_at": now, "claim_token": None},
            now=now,
        )
        return self._finish(
            tenant_id,
            notification_id,
            audit.NOTIFICATION_CANCELLED,
            actor_id,
            {"previous_status": previous.value},
        )

    def reschedule(
        self,
        tenant_id: UUID,
        notification_id: UUID,
        scheduled_for: datetime,
        *,
        actor_id: Optional[UUID] = None,
    ) -> Notification:
        """Move a ``scheduled`` notification to a new send time; counters are untouched."""

        if scheduled_for.tzinfo is None:
            scheduled_for = scheduled_for.replace(tzinfo=timezone.utc)
        original = self.get_notification(tenant_id, notification_id).scheduled_for
        self._transition(
            tenant_id,
            notification_id,
            action="reschedule",
            allowed=(NotificationStatus.SCHEDULED,),
            values={"scheduled_for": scheduled_for},
            now=datetime.now(timezone.utc),
        )
        return self._finish(
            tenant_id,
            notification_id,
            audit.NOTIFICATION_RESCHEDULED,
            actor_id,
            {"from": original.isoformat(), "to": scheduled_for.isoformat()},
        )

    def reprocess(
        self,
        tenant_id: UUID,
        notification_id: UUID,
        *,
        reset_attempts: bool = False,
        actor_id: Optional[UUID] = None,
    ) -> Notification:
        """Put a ``failed`` notification back in the queue for immediate delivery.

        Attempt history is kept. ``attempts_count`` is only zeroed when
        ``reset_attempts`` is requested; otherwise the next failure ends it again.
        """

        notification = self.get_notification(tenant_id, notification_id)
        if notification.status is NotificationStatus.FAILED and notification.dedupe_key:
            self._ensure_no_active_duplicate(notification)

        now = datetime.now(timezone.utc)
        values: dict[str, Any] = {"status": NotificationStatus.SCHEDULED, "scheduled_for": now}
        if reset_attempts:
            values["attempts_count"] = 0
        self._transition(
            tenant_id,
            notification_id,
            action="reprocess",
            allowed=(NotificationStatus.FAILED,),
            values=values,
            now=now,
        )
        return self._finish(
            tenant_id,
            notification_id,
            audit.NOTIFICATION_REPROCESSED,
            actor_id,
            {"reset_attempts": reset_attempts},
        )

    def _transition(
        self,
        tenant_id: UUID,
        notification_id: UUID,
        *,
        action: str,
        allowed: Sequence[NotificationStatus],
        values: dict[str, Any],
        now: datetime,
    ) -> NotificationStatus:
        current = self.get_notification(tenant_id, notification_id)
        previous = current.status
        result = self._session.execute(
            update(Notification)
            .where(Notification.id == notification_id)
            .where(Notification.status.in_(list(allowed)))
            .values(updated_at=now, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            return previous

        status = self.get_notification(tenant_id, notification_id).status
        self._logger.info(
            "notification_transition_rejected",
            extra={"notification_id": str(notification_id), "action": action, "status": status.value},
        )
        if status in TERMINAL_STATUSES:
            raise AlreadyTerminalError(notification_id, status, action)
        raise InvalidTransitionError(notification_id, status, action)

    def _ensure_no_active_duplicate(self, notification: Notification) -> None:
        active = self._session.scalar(
            select(Notification.id)
            .where(Notification.rule_id == notification.rule_id)
            .where(Notification.dedupe_key == notification.dedupe_key)
            .where(Notification.status.in_(list(ACTIVE_STATUSES)))
            .where(Notification.id != notification.id)
            .limit(1)
        )
        if active is not None:
            raise InvalidTransitionError(
                notification.id,
                notification.status,
                "reprocess",
                reason=f"Cannot reprocess notification {notification.id}: notification {active} with the same dedupe key is still active",
            )

    def _finish(
        self,
        tenant_id: UUID,
        notification_id: UUID,
        action: str,
        actor_id: Optional[UUID],
        details: dict[str, Any],
    ) -> Notification:
        notification = self.get_notification(tenant_id, notification_id)
        self._audit.record(
            action=action,
            tenant_id=tenant_id,
            actor_id=actor_id,
            rule_id=notification.rule_id,
            event_id=notification.event_id,
            notification_id=notification.id,
            details=details,
        )
        self._logger.info(
            action.replace(".", "_"),
            extra={
                "notification_id": str(notification_id),
                "tenant_id": str(tenant_id),
                "actor_id": str(actor_id) if actor_id else None,
            },
        )
        return notification
