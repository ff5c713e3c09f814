from __future__ import annotations

import json
from uuid import uuid4

import pytest
from pydantic import ValidationError
from sqlalchemy import select

from automation_engine.core.database import session_scope
from automation_engine.events_engine.consumers.base import SQSEventConsumer, unwrap_sns_envelope
from automation_engine.events_engine.consumers.inbound import handle_inbound_message
from automation_engine.models.event import Event, EventStatus
from automation_engine.models.notification import Notification


def test_unwrap_sns_envelope_handles_plain_json() -> None:
    payload = {"event_type": "order.created"}
    result = unwrap_sns_envelope(json.dumps(payload))
    assert result == payload


def test_unwrap_sns_envelope_handles_sns_wrapping() -> None:
    inner = {"event_type": "order.created", "payload": {"order_id": "o-1"}}
    body = json.dumps({"Message": json.dumps(inner)})
    result = unwrap_sns_envelope(body)
    assert result == inner


class FakeSQS:
    def __init__(self, messages) -> None:
        self.messages = messages
        self.deleted = []

    def receive_message(self, **kwargs):
        messages, self.messages = self.messages, []
        return {"Messages": messages}

    def delete_message(self, *, QueueUrl, ReceiptHandle):
        self.deleted.append(ReceiptHandle)


def test_poll_once_deletes_only_handled_messages() -> None:
    handled = []

    def handler(message):
        if message.get("poison"):
            raise ValueError("cannot handle")
        handled.append(message)

    sqs = FakeSQS(
        [
            {"ReceiptHandle": "r-1", "Body": json.dumps({"Message": json.dumps({"n": 1})})},
            {"ReceiptHandle": "r-2", "Body": json.dumps({"poison": True})},
        ]
    )
    consumer = SQSEventConsumer(queue_url="https://sqs.local/queue", handler=handler, client=sqs)

    assert consumer.poll_once() == 1
    assert handled == [{"n": 1}]
    assert sqs.deleted == ["r-1"]


def test_inbound_handler_appends_and_processes_event(make_rule, tenant_id) -> None:
    make_rule(trigger_event_type="order.created")
    message = {
        "tenant_id": str(tenant_id),
        "event_type": "order.created",
        "idempotency_key": "order.created:o-1",
        "payload": {"order_id": "o-1", "customer": {"phone": "+100"}},
    }

    handle_inbound_message(message)
    handle_inbound_message(message)

    with session_scope() as session:
        events = session.scalars(select(Event)).all()
        assert len(events) == 1
        assert events[0].status is EventStatus.PROCESSED
        notifications = session.scalars(select(Notification)).all()
        assert [n.recipient for n in notifications] == ["+100"]


def test_inbound_handler_rejects_message_without_tenant() -> None:
    with pytest.raises(ValidationError):
        handle_inbound_message({"event_type": "order.created", "idempotency_key": str(uuid4())})
