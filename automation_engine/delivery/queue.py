"""Storage-backed delivery queue: atomic claims and compare-and-swap outcomes."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from automation_engine.core.dialects import lock_rows
from automation_engine.delivery.backoff import next_attempt_at
from automation_engine.delivery.senders import SendResult
from automation_engine.events_engine.config import EngineConfig, get_engine_config
from automation_engine.models.attempt import Attempt, AttemptResult
from automation_engine.models.notification import Notification, NotificationStatus
from automation_engine.services import audit
from automation_engine.services.audit import AuditService

LOGGER = logging.getLogger("automation_engine.delivery.queue")


@dataclass(frozen=True)
class ClaimedNotification:
    """Detached snapshot of a notification this worker holds the claim for."""

    id: UUID
    tenant_id: UUID
    rule_id: Optional[UUID]
    event_id: Optional[UUID]
    channel: str
    recipient: str
    template_key: str
    payload: Dict[str, Any]
    attempts_count: int
    max_attempts: int
    claim_token: str
    claimed_at: datetime

    @classmethod
    def from_row(cls, row: Notification) -> "ClaimedNotification":
        return cls(
            id=row.id,
            tenant_id=row.tenant_id,
            rule_id=row.rule_id,
            event_id=row.event_id,
            channel=row.channel,
            recipient=row.recipient,
            template_key=row.template_key,
            payload=dict(row.payload or {}),
            attempts_count=row.attempts_count,
            max_attempts=row.max_attempts,
            claim_token=row.claim_token or "",
            claimed_at=row.claimed_at,
        )


class Outcome(str, Enum):
    SENT = "sent"
    RETRY = "retry"
    FAILED = "failed"
    DROPPED = "dropped"


@dataclass(frozen=True)
class OutcomeRecord:
    notification_id: UUID
    outcome: Outcome
    attempt_number: Optional[int] = None
    next_attempt_at: Optional[datetime] = None
    details: Dict[str, Any] = field(default_factory=dict)


class NotificationQueue:
    """Claims due notifications and records delivery outcomes.

    Storage is the only coordination point between workers: a claim is one
    ``UPDATE`` that stamps a fresh ``claim_token`` on due rows, and every
    outcome is conditional on ``(id, status='sending', claim_token)`` still
    holding. An outcome whose condition fails (the notification was cancelled
    or its claim released meanwhile) is dropped and audited instead of applied.
    """

    def __init__(
        self,
        session: Session,
        *,
        config: Optional[EngineConfig] = None,
        audit_service: Optional[AuditService] = None,
    ) -> None:
        self._session = session
        self._config = config or get_engine_config()
        self._audit = audit_service or AuditService(session)

    def claim_due(self, *, limit: Optional[int] = None, now: Optional[datetime] = None) -> List[ClaimedNotification]:
        """Atomically move up to ``limit`` due notifications to ``sending``.

        Issue this as the first statement of a transaction: on SQLite the
        ``UPDATE`` then takes the write lock up front, which serializes
        concurrent claimers instead of deadlocking them.
        """

        now = now or datetime.now(timezone.utc)
        limit = limit or self._config.claim_batch_size
        token = str(uuid.uuid4())

        due = (
            select(Notification.id)
            .where(Notification.status == NotificationStatus.SCHEDULED)
            .where(Notification.scheduled_for <= now)
            .order_by(Notification.scheduled_for.asc(), Notification.id.asc())
            .limit(limit)
        )
        due = lock_rows(self._session, due)
        self._session.execute(
            update(Notification)
            .where(Notification.id.in_(due))
            .where(Notification.status == NotificationStatus.SCHEDULED)
            .values(
                status=NotificationStatus.SENDING,
                claim_token=token,
                claimed_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )

        rows = self._session.scalars(
            select(Notification)
            .where(Notification.claim_token == token)
            .order_by(Notification.scheduled_for.asc(), Notification.id.asc())
            .execution_options(populate_existing=True)
        ).all()
        claimed = [ClaimedNotification.from_row(row) for row in rows]
        if claimed:
            LOGGER.info("notifications_claimed", extra={"count": len(claimed), "claim_token": token})
        return claimed

    def record_success(
        self,
        claimed: ClaimedNotification,
        *,
        started_at: datetime,
        result: SendResult,
        now: Optional[datetime] = None,
    ) -> OutcomeRecord:
        now = now or datetime.now(timezone.utc)
        metadata = dict(result.metadata)
        if result.provider_message_id:
            metadata["provider_message_id"] = result.provider_message_id

        applied = self._compare_and_set(
            claimed,
            now,
            status=NotificationStatus.SENT,
            sent_at=now,
            last_error=None,
        )
        if not applied:
            return self._drop(claimed, result=AttemptResult.SUCCESS, error=None, now=now)

        attempt_number = self._append_attempt(
            claimed,
            started_at=started_at,
            finished_at=now,
            result=AttemptResult.SUCCESS,
            error_message=None,
            metadata=metadata,
        )
        LOGGER.info(
            "notification_sent",
            extra={
                "notification_id": str(claimed.id),
                "tenant_id": str(claimed.tenant_id),
                "channel": claimed.channel,
                "attempt_number": attempt_number,
                "provider_message_id": result.provider_message_id,
            },
        )
        return OutcomeRecord(notification_id=claimed.id, outcome=Outcome.SENT, attempt_number=attempt_number)

    def record_failure(
        self,
        claimed: ClaimedNotification,
        *,
        started_at: datetime,
        error: str,
        metadata: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> OutcomeRecord:
        """Record a failed try: retry with backoff, or ``failed`` once the budget is spent.

        Transient and permanent sender errors take this same path; only
        ``max_attempts`` ends the retries.
        """

        now = now or datetime.now(timezone.utc)
        error = error[:1024]
        exhausted = claimed.attempts_count + 1 >= claimed.max_attempts

        if exhausted:
            retry_at = None
            applied = self._compare_and_set(claimed, now, status=NotificationStatus.FAILED, last_error=error)
        else:
            retry_at = next_attempt_at(
                now,
                claimed.attempts_count,
                base_seconds=self._config.base_backoff_seconds,
                max_seconds=self._config.max_backoff_seconds,
            )
            applied = self._compare_and_set(
                claimed,
                now,
                status=NotificationStatus.SCHEDULED,
                scheduled_for=retry_at,
                last_error=error,
            )
        if not applied:
            return self._drop(claimed, result=AttemptResult.FAILURE, error=error, now=now)

        attempt_number = self._append_attempt(
            claimed,
            started_at=started_at,
            finished_at=now,
            result=AttemptResult.FAILURE,
            error_message=error,
            metadata=metadata or {},
        )

        if exhausted:
            LOGGER.warning(
                "notification_failed",
                extra={
                    "notification_id": str(claimed.id),
                    "tenant_id": str(claimed.tenant_id),
                    "attempts": claimed.attempts_count + 1,
                    "error": error,
                },
            )
            self._audit.record(
                action=audit.NOTIFICATION_EXHAUSTED,
                tenant_id=claimed.tenant_id,
                rule_id=claimed.rule_id,
                event_id=claimed.event_id,
                notification_id=claimed.id,
                details={"attempts": claimed.attempts_count + 1, "last_error": error},
            )
            return OutcomeRecord(notification_id=claimed.id, outcome=Outcome.FAILED, attempt_number=attempt_number)

        LOGGER.info(
            "notification_retry_scheduled",
            extra={
                "notification_id": str(claimed.id),
                "attempt_number": attempt_number,
                "next_attempt_at": retry_at.isoformat(),
                "error": error,
            },
        )
        return OutcomeRecord(
            notification_id=claimed.id,
            outcome=Outcome.RETRY,
            attempt_number=attempt_number,
            next_attempt_at=retry_at,
        )

    def release_stale_claims(
        self,
        *,
        older_than_seconds: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> int:
        """Return notifications stuck in ``sending`` (crashed worker) to ``scheduled``."""

        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(seconds=older_than_seconds or self._config.stale_claim_seconds)
        result = self._session.execute(
            update(Notification)
            .where(Notification.status == NotificationStatus.SENDING)
            .where(Notification.claimed_at < cutoff)
            .values(
                status=NotificationStatus.SCHEDULED,
                claim_token=None,
                claimed_at=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        released = result.rowcount or 0
        if released:
            LOGGER.warning("stale_claims_released", extra={"count": released, "cutoff": cutoff.isoformat()})
        return released

    def next_attempt_number(self, notification_id: UUID) -> int:
        current = self._session.scalar(
            select(func.max(Attempt.attempt_number)).where(Attempt.notification_id == notification_id)
        )
        return (current or 0) + 1

    def _compare_and_set(self, claimed: ClaimedNotification, now: datetime, **values: Any) -> bool:
        result = self._session.execute(
            update(Notification)
            .where(Notification.id == claimed.id)
            .where(Notification.status == NotificationStatus.SENDING)
            .where(Notification.claim_token == claimed.claim_token)
            .values(
                attempts_count=Notification.attempts_count + 1,
                claim_token=None,
                claimed_at=None,
                updated_at=now,
                **values,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _append_attempt(
        self,
        claimed: ClaimedNotification,
        *,
        started_at: datetime,
        finished_at: datetime,
        result: AttemptResult,
        error_message: Optional[str],
        metadata: Dict[str, Any],
    ) -> int:
        attempt_number = self.next_attempt_number(claimed.id)
        self._session.add(
            Attempt(
                notification_id=claimed.id,
                tenant_id=claimed.tenant_id,
                attempt_number=attempt_number,
                started_at=started_at,
                finished_at=finished_at,
                result=result,
                error_message=error_message,
                response_metadata=metadata,
            )
        )
        self._session.flush()
        return attempt_number

    def _drop(
        self,
        claimed: ClaimedNotification,
        *,
        result: AttemptResult,
        error: Optional[str],
        now: datetime,
    ) -> OutcomeRecord:
        current = self._session.scalar(select(Notification.status).where(Notification.id == claimed.id))
        status = current.value if current is not None else None
        LOGGER.warning(
            "attempt_dropped",
            extra={
                "notification_id": str(claimed.id),
                "current_status": status,
                "result": result.value,
            },
        )
        details = {"current_status": status, "result": result.value, "claim_token": claimed.claim_token}
        if error:
            details["error"] = error
        self._audit.record(
            action=audit.ATTEMPT_DROPPED,
            tenant_id=claimed.tenant_id,
            rule_id=claimed.rule_id,
            event_id=claimed.event_id,
            notification_id=claimed.id,
            details=details,
        )
        return OutcomeRecord(notification_id=claimed.id, outcome=Outcome.DROPPED, details=details)
