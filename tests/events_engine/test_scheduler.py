from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from sqlalchemy import create_engine, func, select, update
from sqlalchemy.orm import sessionmaker

from automation_engine.core.database import session_scope
from automation_engine.events_engine.matcher import load_enabled_rules
from automation_engine.events_engine.scheduler import ActionScheduler, compute_dedupe_key, scope_entity
from automation_engine.events_engine.store import EventStore
from automation_engine.models import Base, Rule
from automation_engine.models.audit_entry import AuditEntry
from automation_engine.models.notification import Notification, NotificationStatus
from automation_engine.models.rule import DedupeScope
from automation_engine.services import audit

NOW = datetime(2024, 6, 1, 9, 0, tzinfo=timezone.utc)


def _schedule(session, tenant_id, key, payload, config, event_type="order.created"):
    event, _ = EventStore(session).append(
        tenant_id=tenant_id,
        event_type=event_type,
        idempotency_key=key,
        payload=payload,
    )
    rule = load_enabled_rules(session, tenant_id, event_type)[0]
    return ActionScheduler(session, config=config).schedule(event, rule, now=NOW)


def test_each_action_becomes_a_notification(make_rule, tenant_id, engine_config) -> None:
    make_rule(
        actions=[
            {"channel": "SMS", "recipient_path": "customer.phone", "template_key": "order_sms"},
            {
                "channel": "email",
                "recipient_path": "customer.email",
                "template_key": "order_email",
                "delay_seconds": 900,
                "max_attempts": 5,
                "payload_override": {"subject": "Thanks"},
            },
        ]
    )
    payload = {"order_id": "o-1", "customer": {"phone": "+100", "email": "a@example.com"}}

    with session_scope() as session:
        result = _schedule(session, tenant_id, "k-1", payload, engine_config)

        sms, email = result.notifications
        assert (sms.channel, sms.recipient, sms.template_key) == ("sms", "+100", "order_sms")
        assert sms.scheduled_for == NOW
        assert sms.max_attempts == engine_config.default_max_attempts
        assert sms.payload == payload
        assert sms.status is NotificationStatus.SCHEDULED
        assert sms.attempts_count == 0
        assert sms.dedupe_key is None

        assert email.scheduled_for == NOW + timedelta(seconds=900)
        assert email.max_attempts == 5
        assert email.payload == {"subject": "Thanks"}


def test_unresolved_recipient_skips_only_that_action(make_rule, tenant_id, engine_config) -> None:
    make_rule(
        actions=[
            {"channel": "whatsapp", "recipient_path": "customer.whatsapp"},
            {"channel": "sms", "recipient_path": "customer.phone"},
        ]
    )

    with session_scope() as session:
        result = _schedule(session, tenant_id, "k-1", {"customer": {"phone": "+100", "whatsapp": ""}}, engine_config)

        assert result.skipped == 1
        assert [n.channel for n in result.notifications] == ["sms"]
        entries = session.scalars(select(AuditEntry).where(AuditEntry.action == audit.RECIPIENT_UNRESOLVED)).all()
        assert len(entries) == 1
        assert entries[0].details["recipient_path"] == "customer.whatsapp"


def test_unsupported_and_invalid_actions_are_skipped(make_rule, tenant_id, engine_config) -> None:
    make_rule(
        actions=[
            {"type": "post_webhook", "channel": "http", "recipient_path": "url"},
            {"channel": "sms"},
            {"channel": "sms", "recipient_path": "phone"},
        ]
    )

    with session_scope() as session:
        result = _schedule(session, tenant_id, "k-1", {"phone": "+1"}, engine_config)

        assert result.skipped == 2
        assert len(result.notifications) == 1
        skipped = session.scalars(select(AuditEntry).where(AuditEntry.action == audit.ACTION_SKIPPED)).all()
        assert sorted(entry.details["position"] for entry in skipped) == [0, 1]


def test_order_scope_suppresses_until_terminal(make_rule, tenant_id, engine_config) -> None:
    make_rule(dedupe_scope=DedupeScope.ORDER)
    payload = {"order_id": "o-42", "customer": {"phone": "+100"}}

    with session_scope() as session:
        first = _schedule(session, tenant_id, "k-1", payload, engine_config)
        second = _schedule(session, tenant_id, "k-2", payload, engine_config)

        assert len(first.notifications) == 1
        assert second.notifications == []
        assert second.suppressed == 1
        suppressed = session.scalars(select(AuditEntry).where(AuditEntry.action == audit.NOTIFICATION_SUPPRESSED)).all()
        assert len(suppressed) == 1

        session.execute(
            update(Notification)
            .where(Notification.id == first.notifications[0].id)
            .values(status=NotificationStatus.SENT)
        )
        third = _schedule(session, tenant_id, "k-3", payload, engine_config)
        assert len(third.notifications) == 1
        assert third.notifications[0].dedupe_key == first.notifications[0].dedupe_key


def test_scope_none_never_suppresses(make_rule, tenant_id, engine_config) -> None:
    make_rule(dedupe_scope=DedupeScope.NONE)
    payload = {"order_id": "o-42", "customer": {"phone": "+100"}}

    with session_scope() as session:
        first = _schedule(session, tenant_id, "k-1", payload, engine_config)
        second = _schedule(session, tenant_id, "k-2", payload, engine_config)
        assert len(first.notifications) == len(second.notifications) == 1


def test_sibling_actions_do_not_suppress_each_other(make_rule, tenant_id, engine_config) -> None:
    make_rule(
        dedupe_scope=DedupeScope.CUSTOMER,
        actions=[
            {"channel": "sms", "recipient_path": "customer.phone", "template_key": "welcome"},
            {"channel": "sms", "recipient_path": "customer.phone", "template_key": "coupon"},
        ],
    )

    with session_scope() as session:
        result = _schedule(session, tenant_id, "k-1", {"customer": {"id": "c-1", "phone": "+100"}}, engine_config)
        assert len(result.notifications) == 2
        assert result.suppressed == 0


def test_scope_entity_resolution_order() -> None:
    event_id = uuid4()
    assert scope_entity(DedupeScope.ORDER, {"subject": {"type": "order", "id": "s-1"}, "order_id": "o-1"}, event_id) == (
        "order",
        "s-1",
    )
    assert scope_entity(DedupeScope.ORDER, {"order": {"id": "o-2"}}, event_id) == ("order", "o-2")
    assert scope_entity(DedupeScope.CART, {"checkout_id": "ch-1"}, event_id) == ("cart", "ch-1")
    assert scope_entity(DedupeScope.CUSTOMER, {}, event_id) == ("customer", str(event_id))


def test_dedupe_key_varies_by_channel_and_template() -> None:
    common = dict(tenant_id="t", rule_id="r", scope=DedupeScope.ORDER, payload={"order_id": "o-1"}, event_id="e")
    sms = compute_dedupe_key(channel="sms", template_key="a", **common)
    email = compute_dedupe_key(channel="email", template_key="a", **common)
    other_template = compute_dedupe_key(channel="sms", template_key="b", **common)

    assert len({sms, email, other_template}) == 3
    assert sms == compute_dedupe_key(channel="sms", template_key="a", **common)
    assert len(sms) == 48
    assert compute_dedupe_key(channel="sms", template_key="a", **{**common, "scope": DedupeScope.NONE}) is None


def test_concurrent_events_for_one_order_schedule_once(tmp_path, engine_config) -> None:
    file_engine = create_engine(
        f"sqlite:///{tmp_path / 'dedupe.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=file_engine)
    factory = sessionmaker(bind=file_engine, autoflush=False, expire_on_commit=False)
    tenant = uuid4()
    with session_scope(factory) as session:
        session.add(
            Rule(
                tenant_id=tenant,
                name="order confirmation",
                trigger_event_type="order.created",
                filters=[],
                actions=[{"type": "enqueue_notification", "channel": "sms", "recipient_path": "customer.phone"}],
                dedupe_scope=DedupeScope.ORDER,
                priority=0,
                is_enabled=True,
            )
        )

    producers = 8
    barrier = threading.Barrier(producers)
    created: list[int] = []
    errors: list[BaseException] = []
    lock = threading.Lock()

    def producer(index: int) -> None:
        try:
            barrier.wait()
            with session_scope(factory) as session:
                result = _schedule(
                    session,
                    tenant,
                    f"order.created:O-9:{index}",
                    {"order_id": "O-9", "customer": {"phone": "+100"}},
                    engine_config,
                )
            with lock:
                created.append(len(result.notifications))
        except BaseException as exc:  # noqa: BLE001
            errors.append(exc)

    threads = [threading.Thread(target=producer, args=(index,)) for index in range(producers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert sorted(created) == [0] * (producers - 1) + [1]
    with session_scope(factory) as session:
        active = session.scalar(
            select(func.count())
            .select_from(Notification)
            .where(Notification.status == NotificationStatus.SCHEDULED)
        )
        assert active == 1
    file_engine.dispose()
