from __future__ import annotations

import json

import httpx
import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from automation_engine.core.config import AppSettings
from automation_engine.delivery.senders import (
    ChannelPermanentFailure,
    ChannelRouter,
    ChannelTransientFailure,
    HttpRelayChannelSender,
    LoggingChannelSender,
    SendResult,
    SnsChannelSender,
    build_channel_sender,
)


class FakeSnsClient:
    def __init__(self, error=None) -> None:
        self.error = error
        self.published = []

    def publish(self, **kwargs):
        self.published.append(kwargs)
        if self.error is not None:
            raise self.error
        return {"MessageId": "sns-1"}


def _client_error(code: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, "Publish")


def test_sns_sms_uses_phone_number_and_message_text() -> None:
    client = FakeSnsClient()
    result = SnsChannelSender(client=client).send("sms", "+4915100000", "otp", {"message": "Your code is 1234"})

    assert result.provider_message_id == "sns-1"
    assert client.published[0]["PhoneNumber"] == "+4915100000"
    assert client.published[0]["Message"] == "Your code is 1234"


def test_sns_push_targets_endpoint_arn_with_json_body() -> None:
    client = FakeSnsClient()
    SnsChannelSender(client=client).send("push", "arn:aws:sns:endpoint/1", "order_shipped", {"order_id": "o-1"})

    published = client.published[0]
    assert published["TargetArn"] == "arn:aws:sns:endpoint/1"
    assert json.loads(published["Message"]) == {"template_key": "order_shipped", "data": {"order_id": "o-1"}}


@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (_client_error("Throttling"), ChannelTransientFailure),
        (_client_error("InvalidParameter"), ChannelPermanentFailure),
        (EndpointConnectionError(endpoint_url="https://sns.local"), ChannelTransientFailure),
    ],
)
def test_sns_errors_are_classified(error, expected) -> None:
    with pytest.raises(expected):
        SnsChannelSender(client=FakeSnsClient(error)).send("sms", "+1", "otp", {})


def test_sns_rejects_unsupported_channel() -> None:
    with pytest.raises(ChannelPermanentFailure):
        SnsChannelSender(client=FakeSnsClient()).send("email", "a@example.com", "welcome", {})


def _relay(handler) -> HttpRelayChannelSender:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return HttpRelayChannelSender(url="https://relay.local/send", client=client)


def test_relay_posts_payload_with_idempotency_key() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        seen["key"] = request.headers.get("Idempotency-Key")
        return httpx.Response(202, json={"id": "relay-9"})

    result = _relay(handler).send("email", "a@example.com", "welcome", {"name": "Ada"}, idempotency_key="n-1:1")

    assert result == SendResult(provider_message_id="relay-9", metadata={"provider": "relay", "status_code": 202})
    assert seen["body"]["recipient"] == "a@example.com"
    assert seen["key"] == "n-1:1"


@pytest.mark.parametrize(
    ("status_code", "expected"),
    [(503, ChannelTransientFailure), (429, ChannelTransientFailure), (422, ChannelPermanentFailure)],
)
def test_relay_status_codes_are_classified(status_code, expected) -> None:
    sender = _relay(lambda request: httpx.Response(status_code, text="nope"))
    with pytest.raises(expected):
        sender.send("whatsapp", "+1", "cart_reminder", {})


def test_relay_transport_errors_are_transient() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    with pytest.raises(ChannelTransientFailure):
        _relay(handler).send("email", "a@example.com", "welcome", {})


def test_router_dispatches_by_channel_and_rejects_unknown() -> None:
    sms = FakeSnsClient()
    router = ChannelRouter({"SMS": SnsChannelSender(client=sms)})

    router.send("sms", "+1", "otp", {})
    assert len(sms.published) == 1
    with pytest.raises(ChannelPermanentFailure):
        router.send("fax", "+1", "otp", {})


def test_build_channel_sender_falls_back_to_logging() -> None:
    sender = build_channel_sender(AppSettings(aws_region=None, relay_url=None))
    result = sender.send("email", "a@example.com", "welcome", {}, idempotency_key="n-1:1")
    assert result.metadata == {"provider": "log"}
    assert isinstance(LoggingChannelSender().send("sms", "+1", "otp", {}), SendResult)
