"""Runs stored events through rule matching and action scheduling."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from automation_engine.events_engine.config import EngineConfig, get_engine_config
from automation_engine.events_engine.matcher import RuleMatcher, RuleRejection
from automation_engine.events_engine.rule_cache import RuleCache
from automation_engine.events_engine.scheduler import ActionScheduler
from automation_engine.events_engine.store import EventStore
from automation_engine.models.event import Event, EventStatus
from automation_engine.services import audit
from automation_engine.services.audit import AuditService

LOGGER = logging.getLogger("automation_engine.events_engine.processor")


@dataclass
class ProcessingStats:
    events_fetched: int = 0
    events_processed: int = 0
    events_errored: int = 0
    rules_matched: int = 0
    notifications_created: int = 0
    notifications_suppressed: int = 0
    actions_skipped: int = 0

    def merge(self, other: "ProcessingStats") -> None:
        for key, value in asdict(other).items():
            setattr(self, key, getattr(self, key) + value)

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


class EventProcessor:
    """Matches an event against its tenant's rules and schedules the resulting notifications.

    Everything for one event happens in the caller's transaction, so the
    notifications and the ``processed`` status commit or roll back together.
    Storage errors propagate; anything else marks the event ``error``.
    """

    def __init__(
        self,
        session: Session,
        *,
        config: Optional[EngineConfig] = None,
        cache: Optional[RuleCache] = None,
    ) -> None:
        self._session = session
        self._config = config or get_engine_config()
        self._store = EventStore(session)
        self._audit = AuditService(session)
        self._matcher = RuleMatcher(session, cache=cache, on_rejected=self._record_rejection)
        self._scheduler = ActionScheduler(session, config=self._config, audit_service=self._audit)

    def process_event(self, event: Event, *, now: Optional[datetime] = None) -> ProcessingStats:
        stats = ProcessingStats(events_fetched=1)
        if event.status is not EventStatus.PENDING:
            LOGGER.debug("event_already_handled", extra={"event_id": str(event.id), "status": event.status.value})
            return stats

        try:
            matched = self._matcher.match(event)
            stats.rules_matched = len(matched)
            for match in matched:
                result = self._scheduler.schedule(event, match.rule, now=now)
                stats.notifications_created += len(result.notifications)
                stats.notifications_suppressed += result.suppressed
                stats.actions_skipped += result.skipped
        except SQLAlchemyError:
            raise
        except Exception as exc:  # noqa: BLE001 - isolate one bad event from the sweep
            LOGGER.exception("event_processing_failed", extra={"event_id": str(event.id)})
            self._store.mark_error(event.id, f"{type(exc).__name__}: {exc}")
            stats.events_errored = 1
            return stats

        self._store.mark_processed(event.id)
        stats.events_processed = 1
        LOGGER.info(
            "event_processed",
            extra={
                "event_id": str(event.id),
                "tenant_id": str(event.tenant_id),
                "event_type": event.event_type,
                "rules_matched": stats.rules_matched,
                "notifications_created": stats.notifications_created,
                "notifications_suppressed": stats.notifications_suppressed,
            },
        )
        return stats

    def process_pending(self, *, limit: Optional[int] = None, tenant_id: Optional[UUID] = None) -> ProcessingStats:
        """Sweep events left ``pending`` (inline processing disabled, or a crashed producer)."""

        stats = ProcessingStats()
        events = self._store.pending(limit=limit or self._config.event_batch_size, tenant_id=tenant_id)
        for event in events:
            stats.merge(self.process_event(event))
        if events:
            LOGGER.info("pending_events_swept", extra=stats.as_dict())
        return stats

    def _record_rejection(self, event: Event, rejection: RuleRejection) -> None:
        self._audit.record(
            action=audit.RULE_MATCH_ERROR,
            tenant_id=event.tenant_id,
            rule_id=rejection.rule.id,
            event_id=event.id,
            details={"error": rejection.error},
        )
