from __future__ import annotations

from datetime import datetime, timedelta, timezone
from uuid import uuid4

from automation_engine.core.database import session_scope
from automation_engine.events_engine.matcher import RuleMatcher, evaluation_order, select_matching_rules
from automation_engine.events_engine.rule_cache import InMemoryRuleCache, cache_key
from automation_engine.events_engine.store import EventStore
from automation_engine.schemas.rule import RuleSnapshot

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


def snapshot(name: str, *, priority: int = 0, offset: int = 0, filters=None, enabled: bool = True) -> RuleSnapshot:
    return RuleSnapshot(
        id=uuid4(),
        tenant_id=uuid4(),
        name=name,
        trigger_event_type="order.created",
        filters=filters or [],
        actions=[],
        priority=priority,
        is_enabled=enabled,
        created_at=BASE_TIME + timedelta(seconds=offset),
    )


def test_evaluation_order_is_priority_then_creation() -> None:
    rules = [
        snapshot("late-low", priority=1, offset=5),
        snapshot("early-low", priority=1, offset=1),
        snapshot("high", priority=10, offset=9),
        snapshot("disabled", priority=99, enabled=False),
    ]
    assert [rule.name for rule in evaluation_order(rules)] == ["high", "early-low", "late-low"]


def test_malformed_rule_is_rejected_without_blocking_others() -> None:
    good = snapshot("good", filters=[{"path": "total", "operator": "gte", "value": 10}])
    bad = snapshot("bad", priority=5, filters=[{"path": "total", "operator": "approximately", "value": 10}])

    result = select_matching_rules("order.created", {"total": 50}, [bad, good])

    assert [match.rule.name for match in result.matched] == ["good"]
    assert [rejection.rule.name for rejection in result.rejected] == ["bad"]
    assert "approximately" in result.rejected[0].error


def test_matching_is_deterministic_for_identical_input() -> None:
    rules = [snapshot(f"rule-{index}", priority=index % 3, offset=index) for index in range(6)]
    first = select_matching_rules("order.created", {}, rules)
    second = select_matching_rules("order.created", {}, list(reversed(rules)))
    assert [m.rule.id for m in first.matched] == [m.rule.id for m in second.matched]


def test_rule_matcher_reads_through_cache(make_rule, tenant_id) -> None:
    rule_id = make_rule(filters=[{"path": "total", "operator": "gte", "value": 100}])
    make_rule(trigger_event_type="order.shipped")
    make_rule(name="disabled", is_enabled=False)
    cache = InMemoryRuleCache(ttl_seconds=60)

    with session_scope() as session:
        event, _ = EventStore(session).append(
            tenant_id=tenant_id,
            event_type="order.created",
            idempotency_key="k",
            payload={"total": 150},
        )
        matched = RuleMatcher(session, cache=cache).match(event)

    assert [match.rule.id for match in matched] == [rule_id]
    cached = cache.get(cache_key(tenant_id, "order.created"))
    assert cached is not None and [rule.id for rule in cached] == [rule_id]


def test_rule_matcher_reports_rejections(make_rule, tenant_id) -> None:
    make_rule(name="broken", filters=[{"path": "", "operator": "eq"}])
    rejected = []

    with session_scope() as session:
        event, _ = EventStore(session).append(tenant_id=tenant_id, event_type="order.created", idempotency_key="k", payload={})
        matched = RuleMatcher(session, on_rejected=lambda evt, rejection: rejected.append(rejection)).match(event)

    assert matched == []
    assert [rejection.rule.name for rejection in rejected] == ["broken"]
