"""Rule matching for stored events."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, List, Mapping, Optional, Sequence

import httpx
from sqlalchemy import select
from sqlalchemy.orm import Session

from automation_engine.events_engine.filters import RuleMatchError, compile_filters, evaluate_filters
from automation_engine.events_engine.rule_cache import RuleCache, cache_key, get_rule_cache
from automation_engine.models.event import Event
from automation_engine.models.rule import Rule
from automation_engine.schemas.rule import RuleSnapshot

LOGGER = logging.getLogger("automation_engine.events_engine.matcher")


@dataclass(frozen=True)
class MatchedRule:
    rule: RuleSnapshot


@dataclass(frozen=True)
class RuleRejection:
    rule: RuleSnapshot
    error: str


@dataclass
class MatchResult:
    matched: List[MatchedRule] = field(default_factory=list)
    rejected: List[RuleRejection] = field(default_factory=list)


def evaluation_order(rules: Sequence[RuleSnapshot]) -> List[RuleSnapshot]:
    """Enabled rules sorted by priority (highest first), then creation order."""

    enabled = [rule for rule in rules if rule.is_enabled]
    return sorted(enabled, key=lambda rule: (-rule.priority, rule.created_at, str(rule.id)))


def select_matching_rules(
    event_type: str,
    payload: Mapping[str, Any],
    rules: Sequence[RuleSnapshot],
) -> MatchResult:
    """Pure evaluation of ``rules`` against one payload.

    A rule whose filters cannot be compiled is reported in ``rejected`` and
    never prevents the remaining rules from being evaluated.
    """

    result = MatchResult()
    for rule in evaluation_order(rules):
        if rule.trigger_event_type != event_type:
            continue
        try:
            predicates = compile_filters(rule.filters)
        except RuleMatchError as exc:
            result.rejected.append(RuleRejection(rule=rule, error=str(exc)))
            continue
        if evaluate_filters(predicates, payload):
            result.matched.append(MatchedRule(rule=rule))
    return result


def load_enabled_rules(session: Session, tenant_id: Any, event_type: str) -> List[RuleSnapshot]:
    stmt = (
        select(Rule)
        .where(Rule.tenant_id == tenant_id)
        .where(Rule.trigger_event_type == event_type)
        .where(Rule.is_enabled.is_(True))
        .order_by(Rule.priority.desc(), Rule.created_at.asc(), Rule.id.asc())
    )
    return [RuleSnapshot.model_validate(rule) for rule in session.scalars(stmt)]


class RuleMatcher:
    """Loads a tenant's enabled rules for an event and evaluates their filters."""

    def __init__(
        self,
        session: Session,
        *,
        cache: Optional[RuleCache] = None,
        on_rejected: Optional[Callable[[Event, RuleRejection], None]] = None,
    ) -> None:
        self._session = session
        self._cache = cache if cache is not None else get_rule_cache()
        self._on_rejected = on_rejected

    def rules_for(self, tenant_id: Any, event_type: str) -> List[RuleSnapshot]:
        """Enabled rules for the pair, from the cache when it can answer, else from storage.

        Cache failures never fail matching: storage is authoritative.
        """

        key = cache_key(tenant_id, event_type)
        try:
            cached = self._cache.get(key)
        except (httpx.HTTPError, ValueError) as exc:
            LOGGER.warning("rule_cache_read_failed", extra={"tenant_id": str(tenant_id), "error": str(exc)})
            cached = None
        if cached is not None:
            return cached

        rules = load_enabled_rules(self._session, tenant_id, event_type)
        try:
            self._cache.set(key, rules)
        except httpx.HTTPError as exc:
            LOGGER.warning("rule_cache_write_failed", extra={"tenant_id": str(tenant_id), "error": str(exc)})
        return rules

    def match(self, event: Event) -> List[MatchedRule]:
        rules = self.rules_for(event.tenant_id, event.event_type)
        result = select_matching_rules(event.event_type, event.payload or {}, rules)

        for rejection in result.rejected:
            LOGGER.warning(
                "rule_match_error",
                extra={
                    "rule_id": str(rejection.rule.id),
                    "event_id": str(event.id),
                    "tenant_id": str(event.tenant_id),
                    "error": rejection.error,
                },
            )
            if self._on_rejected is not None:
                self._on_rejected(event, rejection)

        LOGGER.debug(
            "rules_matched",
            extra={
                "event_id": str(event.id),
                "event_type": event.event_type,
                "candidates": len(rules),
                "matched": len(result.matched),
            },
        )
        return result.matched
