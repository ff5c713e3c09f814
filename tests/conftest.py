import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("NFE_ENVIRONMENT", "test")
os.environ.setdefault("NFE_DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("NFE_REDIS_URL", "")
os.environ.setdefault("NFE_REDIS_TOKEN", "")
os.environ.setdefault("NFE_RELAY_URL", "")
os.environ.setdefault("NFE_AWS_REGION", "")
os.environ.setdefault("NFE_LOG_JSON", "false")

PROJECT_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(PROJECT_ROOT))

from automation_engine.core.config import get_settings

get_settings.cache_clear()

from automation_engine.core.database import engine, session_scope  # noqa: E402
from automation_engine.delivery.senders import SendResult, set_channel_sender  # noqa: E402
from automation_engine.events_engine.config import EngineConfig  # noqa: E402
from automation_engine.events_engine.rule_cache import InMemoryRuleCache, set_rule_cache  # noqa: E402
from automation_engine.main import create_app  # noqa: E402
from automation_engine.models import Base, Rule  # noqa: E402
from automation_engine.models.rule import DedupeScope  # noqa: E402


class StubSender:
    """Records every send; pops scripted outcomes (exceptions or results) in order."""

    def __init__(self, outcomes: Optional[List[Any]] = None) -> None:
        self.calls: List[Dict[str, Any]] = []
        self.outcomes = list(outcomes or [])

    def send(self, channel, recipient, template_key, payload, *, idempotency_key=None):
        self.calls.append(
            {
                "channel": channel,
                "recipient": recipient,
                "template_key": template_key,
                "payload": dict(payload),
                "idempotency_key": idempotency_key,
            }
        )
        if self.outcomes:
            outcome = self.outcomes.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome
        return SendResult(provider_message_id=f"msg-{len(self.calls)}")


@pytest.fixture(autouse=True)
def reset_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    set_rule_cache(InMemoryRuleCache(ttl_seconds=30))
    set_channel_sender(StubSender())
    yield
    Base.metadata.drop_all(bind=engine)
    set_channel_sender(None)


@pytest.fixture()
def client() -> TestClient:  # noqa: ANN001
    app = create_app()
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture()
def tenant_id() -> UUID:
    return uuid4()


@pytest.fixture()
def engine_config() -> EngineConfig:
    return EngineConfig(
        base_backoff_seconds=60,
        max_backoff_seconds=3600,
        default_max_attempts=3,
        claim_batch_size=25,
        claim_poll_interval=0.01,
        sender_fan_out=5,
        send_timeout_seconds=2.0,
        stale_claim_seconds=300,
        event_batch_size=50,
    )


@pytest.fixture()
def stub_sender() -> StubSender:
    return StubSender()


@pytest.fixture()
def make_rule(tenant_id):
    """Persist a rule directly and return its id."""

    def _make_rule(
        *,
        trigger_event_type: str = "order.created",
        filters: Optional[list] = None,
        actions: Optional[list] = None,
        dedupe_scope: DedupeScope = DedupeScope.NONE,
        priority: int = 0,
        is_enabled: bool = True,
        name: str = "rule",
        tenant: Optional[UUID] = None,
    ) -> UUID:
        with session_scope() as session:
            rule = Rule(
                tenant_id=tenant or tenant_id,
                name=name,
                trigger_event_type=trigger_event_type,
                filters=filters or [],
                actions=actions
                if actions is not None
                else [{"type": "enqueue_notification", "channel": "sms", "recipient_path": "customer.phone"}],
                dedupe_scope=dedupe_scope,
                priority=priority,
                is_enabled=is_enabled,
            )
            session.add(rule)
            session.flush()
            return rule.id

    return _make_rule


@pytest.fixture()
def make_notification(tenant_id):
    """Persist a notification directly and return its id."""

    from automation_engine.models.base import utcnow
    from automation_engine.models.notification import Notification, NotificationStatus

    def _make_notification(
        *,
        status: NotificationStatus = NotificationStatus.SCHEDULED,
        scheduled_for=None,
        attempts_count: int = 0,
        max_attempts: int = 3,
        channel: str = "sms",
        recipient: str = "+15550001",
        rule_id: Optional[UUID] = None,
        dedupe_key: Optional[str] = None,
        tenant: Optional[UUID] = None,
    ) -> UUID:
        with session_scope() as session:
            notification = Notification(
                tenant_id=tenant or tenant_id,
                rule_id=rule_id,
                channel=channel,
                recipient=recipient,
                template_key="order_confirmation",
                payload={"order_id": "o-1"},
                dedupe_key=dedupe_key,
                status=status,
                scheduled_for=scheduled_for or utcnow(),
                attempts_count=attempts_count,
                max_attempts=max_attempts,
            )
            session.add(notification)
            session.flush()
            return notification.id

    return _make_notification


@pytest.fixture()
def sender_cls():
    """The scripted stub sender class, for tests that need their own outcomes."""

    return StubSender
