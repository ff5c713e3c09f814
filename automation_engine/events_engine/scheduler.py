"""Turns matched rule actions into scheduled notifications."""

from __future__ import annotations

import hashlib
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional

from pydantic import ValidationError
from sqlalchemy.orm import Session

from automation_engine.core.dialects import insert_ignoring_conflicts
from automation_engine.events_engine.config import EngineConfig, get_engine_config
from automation_engine.events_engine.filters import MISSING, resolve_path
from automation_engine.models.event import Event
from automation_engine.models.notification import ACTIVE_DEDUPE_PREDICATE, Notification, NotificationStatus
from automation_engine.models.rule import DedupeScope
from automation_engine.schemas.rule import ENQUEUE_NOTIFICATION, RuleAction, RuleSnapshot
from automation_engine.services import audit
from automation_engine.services.audit import AuditService

LOGGER = logging.getLogger("automation_engine.events_engine.scheduler")

# Payload paths probed, in order, for each dedupe scope's entity identifier.
SCOPE_IDENTIFIER_PATHS: Dict[DedupeScope, tuple[str, ...]] = {
    DedupeScope.ORDER: ("order_id", "order.id"),
    DedupeScope.CUSTOMER: ("customer_id", "customer.id"),
    DedupeScope.CART: ("cart_id", "cart.id", "checkout_id", "session_id"),
}


class RecipientUnresolved(LookupError):
    """Raised when an action's recipient path does not resolve in the payload."""


@dataclass
class ScheduleResult:
    notifications: List[Notification] = field(default_factory=list)
    suppressed: int = 0
    skipped: int = 0


def resolve_recipient(payload: Mapping[str, Any], recipient_path: str) -> str:
    value = resolve_path(payload, recipient_path)
    if value is MISSING or value is None or isinstance(value, (dict, list)):
        raise RecipientUnresolved(recipient_path)
    recipient = str(value).strip()
    if not recipient:
        raise RecipientUnresolved(recipient_path)
    return recipient


def scope_entity(scope: DedupeScope, payload: Mapping[str, Any], event_id: Any) -> tuple[str, str]:
    """Return ``(entity_type, entity_id)`` identifying what a dedupe scope collapses on.

    An explicit ``subject`` object on the payload wins; otherwise the
    scope-specific identifier paths are probed, falling back to the event id.
    """

    subject = payload.get("subject")
    if isinstance(subject, Mapping) and subject.get("id"):
        return str(subject.get("type") or scope.value), str(subject["id"])
    for path in SCOPE_IDENTIFIER_PATHS.get(scope, ()):
        value = resolve_path(payload, path)
        if value is not MISSING and value not in (None, ""):
            return scope.value, str(value)
    LOGGER.info("dedupe_scope_fallback_to_event", extra={"scope": scope.value, "event_id": str(event_id)})
    return scope.value, str(event_id)


def compute_dedupe_key(
    *,
    tenant_id: Any,
    rule_id: Any,
    scope: DedupeScope,
    payload: Mapping[str, Any],
    event_id: Any,
    channel: str,
    template_key: str,
) -> Optional[str]:
    if scope is DedupeScope.NONE:
        return None
    entity_type, entity_id = scope_entity(scope, payload, event_id)
    raw = "|".join([str(tenant_id), str(rule_id), entity_type, entity_id, channel, template_key])
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:48]


class ActionScheduler:
    """Creates one Notification per rule action, honouring the rule's dedupe scope."""

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

    def schedule(self, event: Event, rule: RuleSnapshot, *, now: Optional[datetime] = None) -> ScheduleResult:
        now = now or datetime.now(timezone.utc)
        payload: Mapping[str, Any] = event.payload or {}
        result = ScheduleResult()

        raw_actions = rule.actions if isinstance(rule.actions, list) else []
        for position, raw_action in enumerate(raw_actions):
            action = self._parse_action(event, rule, position, raw_action)
            if action is None:
                result.skipped += 1
                continue

            try:
                recipient = resolve_recipient(payload, action.recipient_path)
            except RecipientUnresolved:
                result.skipped += 1
                LOGGER.warning(
                    "recipient_unresolved",
                    extra={
                        "rule_id": str(rule.id),
                        "event_id": str(event.id),
                        "recipient_path": action.recipient_path,
                        "channel": action.channel,
                    },
                )
                self._audit.record(
                    action=audit.RECIPIENT_UNRESOLVED,
                    tenant_id=event.tenant_id,
                    rule_id=rule.id,
                    event_id=event.id,
                    details={"position": position, "recipient_path": action.recipient_path, "channel": action.channel},
                )
                continue

            notification = self._insert(event, rule, action, recipient, payload, now)
            if notification is None:
                result.suppressed += 1
            else:
                result.notifications.append(notification)

        return result

    def _parse_action(self, event: Event, rule: RuleSnapshot, position: int, raw_action: Any) -> Optional[RuleAction]:
        try:
            action = RuleAction.model_validate(raw_action)
        except ValidationError as exc:
            reason = f"invalid action: {exc.error_count()} validation error(s)"
        else:
            if action.type == ENQUEUE_NOTIFICATION:
                return action
            reason = f"unsupported action type {action.type!r}"

        LOGGER.warning(
            "action_skipped",
            extra={"rule_id": str(rule.id), "event_id": str(event.id), "position": position, "reason": reason},
        )
        self._audit.record(
            action=audit.ACTION_SKIPPED,
            tenant_id=event.tenant_id,
            rule_id=rule.id,
            event_id=event.id,
            details={"position": position, "reason": reason},
        )
        return None

    def _insert(
        self,
        event: Event,
        rule: RuleSnapshot,
        action: RuleAction,
        recipient: str,
        payload: Mapping[str, Any],
        now: datetime,
    ) -> Optional[Notification]:
        dedupe_key = compute_dedupe_key(
            tenant_id=event.tenant_id,
            rule_id=rule.id,
            scope=rule.dedupe_scope,
            payload=payload,
            event_id=event.id,
            channel=action.channel,
            template_key=action.template_key,
        )
        notification_id = uuid.uuid4()
        inserted = insert_ignoring_conflicts(
            self._session,
            Notification,
            {
                "id": notification_id,
                "tenant_id": event.tenant_id,
                "rule_id": rule.id,
                "event_id": event.id,
                "channel": action.channel,
                "recipient": recipient,
                "template_key": action.template_key,
                "payload": action.payload_override if action.payload_override is not None else dict(payload),
                "dedupe_key": dedupe_key,
                "status": NotificationStatus.SCHEDULED,
                "scheduled_for": now + timedelta(seconds=action.delay_seconds),
                "attempts_count": 0,
                "max_attempts": action.max_attempts or self._config.default_max_attempts,
            },
            index_elements=("rule_id", "dedupe_key"),
            index_where=ACTIVE_DEDUPE_PREDICATE,
        )

        if not inserted:
            LOGGER.info(
                "notification_suppressed",
                extra={"rule_id": str(rule.id), "event_id": str(event.id), "dedupe_key": dedupe_key},
            )
            self._audit.record(
                action=audit.NOTIFICATION_SUPPRESSED,
                tenant_id=event.tenant_id,
                rule_id=rule.id,
                event_id=event.id,
                details={
                    "dedupe_key": dedupe_key,
                    "dedupe_scope": rule.dedupe_scope.value,
                    "channel": action.channel,
                    "template_key": action.template_key,
                },
            )
            return None

        notification = self._session.get(Notification, notification_id)
        LOGGER.info(
            "notification_scheduled",
            extra={
                "notification_id": str(notification_id),
                "rule_id": str(rule.id),
                "event_id": str(event.id),
                "channel": action.channel,
                "delay_seconds": action.delay_seconds,
            },
        )
        return notification
