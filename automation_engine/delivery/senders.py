"""Channel senders: the transport seam between the delivery worker and providers."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Protocol

import boto3
import httpx
from botocore.exceptions import BotoCoreError, ClientError

from automation_engine.core.config import AppSettings, get_settings

LOGGER = logging.getLogger("automation_engine.delivery.senders")

# SNS error codes worth another try; everything else is a caller-side problem.
_SNS_TRANSIENT_CODES = frozenset(
    {
        "Throttling",
        "ThrottlingException",
        "ThrottledException",
        "InternalError",
        "InternalFailure",
        "ServiceUnavailable",
        "KMSThrottling",
    }
)

_sender: Optional["ChannelSender"] = None


class ChannelSendError(RuntimeError):
    """Base class for delivery failures reported by a channel sender."""


class ChannelTransientFailure(ChannelSendError):
    """Timeouts, throttling and provider-side 5xx responses."""


class ChannelPermanentFailure(ChannelSendError):
    """Invalid recipient, unknown template, rejected payload."""


@dataclass(frozen=True)
class SendResult:
    provider_message_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class ChannelSender(Protocol):
    """Transport abstraction for outbound notifications."""

    def send(
        self,
        channel: str,
        recipient: str,
        template_key: str,
        payload: Mapping[str, Any],
        *,
        idempotency_key: Optional[str] = None,
    ) -> SendResult:
        ...


class LoggingChannelSender(ChannelSender):
    """Sender that only logs; used locally and when no provider is configured."""

    def send(
        self,
        channel: str,
        recipient: str,
        template_key: str,
        payload: Mapping[str, Any],
        *,
        idempotency_key: Optional[str] = None,
    ) -> SendResult:
        LOGGER.info(
            "notification_send_logged",
            extra={
                "channel": channel,
                "recipient": recipient,
                "template_key": template_key,
                "idempotency_key": idempotency_key,
            },
        )
        return SendResult(provider_message_id=idempotency_key, metadata={"provider": "log"})


class SnsChannelSender(ChannelSender):
    """Delivers SMS directly to phone numbers and push messages to SNS endpoint ARNs."""

    def __init__(self, *, region_name: Optional[str] = None, client: Any = None) -> None:
        self._client = client or boto3.client("sns", region_name=region_name)

    def send(
        self,
        channel: str,
        recipient: str,
        template_key: str,
        payload: Mapping[str, Any],
        *,
        idempotency_key: Optional[str] = None,
    ) -> SendResult:
        message = payload.get("message") if isinstance(payload.get("message"), str) else None
        if message is None:
            message = json.dumps({"template_key": template_key, "data": dict(payload)}, default=str)
        attributes = {"template_key": {"DataType": "String", "StringValue": template_key}}

        kwargs: Dict[str, Any] = {"Message": message, "MessageAttributes": attributes}
        if channel == "sms":
            kwargs["PhoneNumber"] = recipient
        elif channel == "push":
            kwargs["TargetArn"] = recipient
        else:
            raise ChannelPermanentFailure(f"SNS sender does not support channel {channel!r}")

        try:
            response = self._client.publish(**kwargs)
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code", "")
            LOGGER.warning("sns_publish_failed", extra={"channel": channel, "error_code": code})
            if code in _SNS_TRANSIENT_CODES:
                raise ChannelTransientFailure(f"SNS {code}: {exc}") from exc
            raise ChannelPermanentFailure(f"SNS {code or 'ClientError'}: {exc}") from exc
        except BotoCoreError as exc:
            LOGGER.warning("sns_publish_failed", extra={"channel": channel, "error": str(exc)})
            raise ChannelTransientFailure(f"SNS transport error: {exc}") from exc

        return SendResult(
            provider_message_id=response.get("MessageId"),
            metadata={"provider": "sns", "channel": channel},
        )


class HttpRelayChannelSender(ChannelSender):
    """Posts notifications to an HTTP relay (email/WhatsApp gateways)."""

    def __init__(
        self,
        *,
        url: str,
        token: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._url = url
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = client or httpx.Client(timeout=timeout, headers=headers)

    def send(
        self,
        channel: str,
        recipient: str,
        template_key: str,
        payload: Mapping[str, Any],
        *,
        idempotency_key: Optional[str] = None,
    ) -> SendResult:
        body = {
            "channel": channel,
            "recipient": recipient,
            "template_key": template_key,
            "payload": dict(payload),
        }
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        try:
            response = self._client.post(self._url, json=body, headers=headers)
        except httpx.HTTPError as exc:
            raise ChannelTransientFailure(f"relay transport error: {exc}") from exc

        if response.status_code == 429 or response.status_code >= 500:
            raise ChannelTransientFailure(f"relay returned {response.status_code}")
        if response.status_code >= 400:
            raise ChannelPermanentFailure(f"relay rejected message: {response.status_code} {response.text[:200]}")

        try:
            data = response.json()
        except ValueError:
            data = {}
        message_id = (data.get("id") or data.get("message_id")) if isinstance(data, dict) else None
        return SendResult(
            provider_message_id=message_id,
            metadata={"provider": "relay", "status_code": response.status_code},
        )


class ChannelRouter(ChannelSender):
    """Routes each send to the sender registered for its channel."""

    def __init__(self, routes: Mapping[str, ChannelSender], *, default: Optional[ChannelSender] = None) -> None:
        self._routes = {channel.lower(): sender for channel, sender in routes.items()}
        self._default = default

    def send(
        self,
        channel: str,
        recipient: str,
        template_key: str,
        payload: Mapping[str, Any],
        *,
        idempotency_key: Optional[str] = None,
    ) -> SendResult:
        sender = self._routes.get(channel.lower(), self._default)
        if sender is None:
            raise ChannelPermanentFailure(f"No sender configured for channel {channel!r}")
        return sender.send(channel, recipient, template_key, payload, idempotency_key=idempotency_key)


def build_channel_sender(settings: AppSettings) -> ChannelSender:
    routes: Dict[str, ChannelSender] = {}
    if settings.aws_region:
        sns = SnsChannelSender(region_name=settings.aws_region)
        for channel in settings.sns_channels:
            routes[channel] = sns
    if settings.relay_url:
        relay = HttpRelayChannelSender(
            url=settings.relay_url,
            token=settings.relay_token,
            timeout=settings.send_timeout_seconds,
        )
        for channel in settings.relay_channels:
            routes[channel] = relay
    return ChannelRouter(routes, default=LoggingChannelSender())


def get_channel_sender() -> ChannelSender:
    """Return the process-wide channel sender, building it from settings on first use."""

    global _sender
    if _sender is None:
        _sender = build_channel_sender(get_settings())
    return _sender


def set_channel_sender(sender: Optional[ChannelSender]) -> None:
    """Override the cached sender (primarily for tests)."""

    global _sender
    _sender = sender
