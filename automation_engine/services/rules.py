"""Rule authoring service logic."""

from __future__ import annotations

import logging
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from automation_engine.events_engine.rule_cache import RuleCache, get_rule_cache
from automation_engine.models.notification import Notification
from automation_engine.models.rule import Rule
from automation_engine.schemas.rule import RuleCreate, RuleUpdate
from automation_engine.services import audit
from automation_engine.services.audit import AuditService


class RuleServiceError(Exception):
    """Base class for rule service errors."""


class RuleNotFoundError(RuleServiceError):
    """Raised when a rule cannot be found for the tenant."""


class RuleValidationError(RuleServiceError):
    """Raised when a rule change would leave the rule unusable."""


class RuleService:
    """CRUD for notification rules.

    Every write invalidates the tenant's cached rule sets so the matcher sees
    the change on its next load.
    """

    def __init__(
        self,
        session: Session,
        audit_service: Optional[AuditService] = None,
        cache: Optional[RuleCache] = None,
    ) -> None:
        self._session = session
        self._audit = audit_service or AuditService(session)
        self._logger = logging.getLogger("automation_engine.services.rules")
        self._cache = cache or get_rule_cache()

    def create_rule(self, tenant_id: UUID, payload: RuleCreate, *, actor_id: Optional[UUID] = None) -> Rule:
        rule = Rule(
            tenant_id=tenant_id,
            name=payload.name,
            description=payload.description,
            trigger_event_type=payload.trigger_event_type,
            filters=[item.model_dump(mode="json") for item in payload.filters],
            actions=[item.model_dump(mode="json", exclude_none=True) for item in payload.actions],
            dedupe_scope=payload.dedupe_scope,
            priority=payload.priority,
            is_enabled=payload.is_enabled,
        )
        self._session.add(rule)
        self._session.flush()

        self._audit.record(
            action=audit.RULE_CREATED,
            tenant_id=tenant_id,
            actor_id=actor_id,
            rule_id=rule.id,
            details={"name": rule.name, "trigger_event_type": rule.trigger_event_type},
        )
        self._logger.info(
            "rule_created",
            extra={"rule_id": str(rule.id), "tenant_id": str(tenant_id), "actor_id": str(actor_id) if actor_id else None},
        )
        self._cache.invalidate_for_tenant(tenant_id)
        return rule

    def get_rule(self, tenant_id: UUID, rule_id: UUID) -> Rule:
        rule = self._session.get(Rule, rule_id)
        if rule is None or rule.tenant_id != tenant_id:
            raise RuleNotFoundError(f"Rule {rule_id} not found")
        return rule

    def list_rules(
        self,
        tenant_id: UUID,
        *,
        trigger_event_type: Optional[str] = None,
        is_enabled: Optional[bool] = None,
    ) -> List[Rule]:
        stmt = select(Rule).where(Rule.tenant_id == tenant_id)
        if trigger_event_type:
            stmt = stmt.where(Rule.trigger_event_type == trigger_event_type)
        if is_enabled is not None:
            stmt = stmt.where(Rule.is_enabled.is_(is_enabled))
        stmt = stmt.order_by(Rule.priority.desc(), Rule.created_at.asc(), Rule.id.asc())
        return list(self._session.scalars(stmt))

    def update_rule(
        self,
        tenant_id: UUID,
        rule_id: UUID,
        payload: RuleUpdate,
        *,
        actor_id: Optional[UUID] = None,
    ) -> Rule:
        rule = self.get_rule(tenant_id, rule_id)
        updates = payload.model_dump(exclude_unset=True)

        for required in ("name", "trigger_event_type", "actions", "dedupe_scope", "priority", "is_enabled"):
            if required in updates and updates[required] is None:
                raise RuleValidationError(f"{required} cannot be null")

        changed: List[str] = []
        for key in ("name", "description", "trigger_event_type", "dedupe_scope", "priority", "is_enabled"):
            if key in updates:
                setattr(rule, key, updates[key])
                changed.append(key)
        if "filters" in updates:
            rule.filters = [item.model_dump(mode="json") for item in payload.filters or []]
            changed.append("filters")
        if "actions" in updates:
            rule.actions = [item.model_dump(mode="json", exclude_none=True) for item in payload.actions or []]
            changed.append("actions")

        self._session.add(rule)
        self._session.flush()

        self._audit.record(
            action=audit.RULE_UPDATED,
            tenant_id=tenant_id,
            actor_id=actor_id,
            rule_id=rule.id,
            details={"changes": sorted(changed)},
        )
        self._logger.info(
            "rule_updated",
            extra={"rule_id": str(rule.id), "tenant_id": str(tenant_id), "fields": sorted(changed)},
        )
        self._cache.invalidate_for_tenant(tenant_id)
        return rule

    def delete_rule(self, tenant_id: UUID, rule_id: UUID, *, actor_id: Optional[UUID] = None) -> None:
        """Delete a rule; its notifications are kept and detached from it."""

        rule = self.get_rule(tenant_id, rule_id)
        self._session.execute(
            update(Notification)
            .where(Notification.rule_id == rule.id)
            .values(rule_id=None)
            .execution_options(synchronize_session=False)
        )
        self._session.delete(rule)
        self._session.flush()

        self._audit.record(
            action=audit.RULE_DELETED,
            tenant_id=tenant_id,
            actor_id=actor_id,
            rule_id=rule_id,
            details={"name": rule.name},
        )
        self._logger.info("rule_deleted", extra={"rule_id": str(rule_id), "tenant_id": str(tenant_id)})
        self._cache.invalidate_for_tenant(tenant_id)
