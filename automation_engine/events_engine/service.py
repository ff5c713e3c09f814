"""Service layer for event ingestion and querying."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from automation_engine.core.config import get_settings
from automation_engine.events_engine.processor import EventProcessor, ProcessingStats
from automation_engine.events_engine.rule_cache import RuleCache
from automation_engine.events_engine.store import EventStore
from automation_engine.models.event import Event, EventStatus
from automation_engine.schemas.event import EventAppendRequest


@dataclass
class IngestResult:
    event: Event
    is_new: bool
    stats: ProcessingStats


class EventService:
    """Coordinates event ingestion, inline rule processing and querying."""

    def __init__(
        self,
        session: Session,
        *,
        process_inline: Optional[bool] = None,
        cache: Optional[RuleCache] = None,
    ) -> None:
        self._session = session
        self._store = EventStore(session)
        self._cache = cache
        self._process_inline = get_settings().process_events_inline if process_inline is None else process_inline
        self._logger = logging.getLogger("automation_engine.events_engine.service")

    def ingest(self, tenant_id: UUID, request: EventAppendRequest) -> IngestResult:
        """Append an event and, for new events, run it through the tenant's rules.

        A replayed idempotency key returns the stored event untouched and
        never schedules anything.
        """

        event, is_new = self._store.append(
            tenant_id=tenant_id,
            event_type=request.event_type,
            idempotency_key=request.idempotency_key,
            payload=request.payload,
            occurred_at=request.occurred_at,
            source=request.source,
        )
        stats = ProcessingStats()
        if is_new and self._process_inline:
            stats = EventProcessor(self._session, cache=self._cache).process_event(event)
            self._session.refresh(event)

        self._logger.info(
            "event_ingest_success",
            extra={
                "event_id": str(event.id),
                "tenant_id": str(tenant_id),
                "event_type": event.event_type,
                "is_new": is_new,
                "notifications_created": stats.notifications_created,
            },
        )
        return IngestResult(event=event, is_new=is_new, stats=stats)

    def get_event(self, tenant_id: UUID, event_id: UUID) -> Event:
        return self._store.get(tenant_id, event_id)

    def list_events(
        self,
        *,
        tenant_id: UUID,
        event_type: Optional[str] = None,
        status: Optional[EventStatus] = None,
        limit: int = 50,
    ) -> List[Event]:
        return self._store.list_events(tenant_id=tenant_id, event_type=event_type, status=status, limit=limit)
