"""Durable, idempotent event log."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from automation_engine.core.dialects import insert_ignoring_conflicts, lock_rows
from automation_engine.models.base import utcnow
from automation_engine.models.event import Event, EventStatus

LOGGER = logging.getLogger("automation_engine.events_engine.store")


class EventNotFoundError(LookupError):
    """Raised when a requested event does not exist for the tenant."""


class EventStore:
    """Append-only storage for normalized business events.

    ``append`` is safe under concurrent producers: the insert is an
    insert-or-ignore against the ``(tenant_id, idempotency_key)`` unique
    constraint, so a replayed event never creates a second row.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    def append(
        self,
        *,
        tenant_id: UUID,
        event_type: str,
        idempotency_key: str,
        payload: Dict[str, Any],
        occurred_at: Optional[datetime] = None,
        source: Optional[str] = None,
    ) -> Tuple[Event, bool]:
        """Store an event; return ``(event, is_new)``.

        A key that already exists for the tenant returns the stored row with
        ``is_new=False``. That is a normal outcome, not an error.
        """

        new_id = uuid.uuid4()
        inserted = insert_ignoring_conflicts(
            self._session,
            Event,
            {
                "id": new_id,
                "tenant_id": tenant_id,
                "event_type": event_type,
                "idempotency_key": idempotency_key,
                "source": source,
                "payload": payload,
                "occurred_at": occurred_at or datetime.now(timezone.utc),
                "status": EventStatus.PENDING,
            },
            index_elements=("tenant_id", "idempotency_key"),
        )
        event = self._session.scalar(
            select(Event)
            .where(Event.tenant_id == tenant_id)
            .where(Event.idempotency_key == idempotency_key)
            .execution_options(populate_existing=True)
        )
        if event is None:  # pragma: no cover - the row exists after either branch
            raise EventNotFoundError(f"Event {idempotency_key!r} vanished after append")

        if inserted:
            LOGGER.info(
                "event_appended",
                extra={"event_id": str(event.id), "tenant_id": str(tenant_id), "event_type": event_type},
            )
        else:
            LOGGER.info(
                "event_append_deduplicated",
                extra={
                    "event_id": str(event.id),
                    "tenant_id": str(tenant_id),
                    "idempotency_key": idempotency_key,
                },
            )
        return event, inserted

    def mark_processed(self, event_id: UUID) -> bool:
        """Flip ``pending`` to ``processed``; any other status is left untouched."""

        return self._transition(event_id, EventStatus.PROCESSED, error_reason=None)

    def mark_error(self, event_id: UUID, reason: str) -> bool:
        """Flip ``pending`` to ``error``; any other status is left untouched."""

        return self._transition(event_id, EventStatus.ERROR, error_reason=reason[:1024])

    def get(self, tenant_id: UUID, event_id: UUID) -> Event:
        event = self._session.get(Event, event_id)
        if event is None or event.tenant_id != tenant_id:
            raise EventNotFoundError(f"Event {event_id} not found")
        return event

    def list_events(
        self,
        *,
        tenant_id: UUID,
        event_type: Optional[str] = None,
        status: Optional[EventStatus] = None,
        limit: int = 50,
    ) -> List[Event]:
        stmt = select(Event).where(Event.tenant_id == tenant_id)
        if event_type:
            stmt = stmt.where(Event.event_type == event_type)
        if status:
            stmt = stmt.where(Event.status == status)
        stmt = stmt.order_by(Event.created_at.desc()).limit(limit)
        return list(self._session.scalars(stmt))

    def pending(self, *, limit: int, tenant_id: Optional[UUID] = None) -> List[Event]:
        """Oldest pending events, row-locked so concurrent sweeps skip each other's work."""

        stmt = select(Event).where(Event.status == EventStatus.PENDING)
        if tenant_id:
            stmt = stmt.where(Event.tenant_id == tenant_id)
        stmt = stmt.order_by(Event.created_at.asc(), Event.id.asc()).limit(limit)
        return list(self._session.scalars(lock_rows(self._session, stmt)))

    def _transition(self, event_id: UUID, status: EventStatus, *, error_reason: Optional[str]) -> bool:
        result = self._session.execute(
            update(Event)
            .where(Event.id == event_id)
            .where(Event.status == EventStatus.PENDING)
            .values(status=status, error_reason=error_reason, processed_at=utcnow(), updated_at=utcnow())
            .execution_options(synchronize_session="fetch")
        )
        changed = result.rowcount == 1
        if not changed:
            LOGGER.debug("event_transition_skipped", extra={"event_id": str(event_id), "target": status.value})
        return changed
