"""Reusable SQS consumer utilities for the events engine."""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Dict, Optional, Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError

LOGGER = logging.getLogger("automation_engine.events_engine.consumer")


class EventHandler(Protocol):
    """Handler invoked for each deserialized message."""

    def __call__(self, message: Dict[str, Any]) -> None:
        ...


def unwrap_sns_envelope(message_body: str) -> Dict[str, Any]:
    """Extract the inner payload when delivered via SNS -> SQS."""

    payload = json.loads(message_body)
    if isinstance(payload, dict) and "Message" in payload:
        inner = payload["Message"]
        if isinstance(inner, str):
            return json.loads(inner)
        if isinstance(inner, dict):
            return inner
    return payload


class SQSEventConsumer:
    """Long-polling consumer that feeds messages to a handler.

    A message is deleted only after its handler returns; a handler failure
    leaves it on the queue for redelivery once the visibility timeout lapses.
    """

    def __init__(
        self,
        *,
        queue_url: str,
        handler: EventHandler,
        region_name: Optional[str] = None,
        wait_time_seconds: int = 20,
        visibility_timeout: Optional[int] = None,
        max_messages: int = 5,
        client: Any = None,
    ) -> None:
        self._queue_url = queue_url
        self._handler = handler
        self._receive_kwargs: Dict[str, Any] = {
            "QueueUrl": queue_url,
            "MaxNumberOfMessages": max_messages,
            "WaitTimeSeconds": wait_time_seconds,
            "MessageAttributeNames": ["All"],
        }
        if visibility_timeout is not None:
            self._receive_kwargs["VisibilityTimeout"] = visibility_timeout
        self._sqs = client or boto3.client("sqs", region_name=region_name)

    def run_forever(self) -> None:
        LOGGER.info("sqs_consumer_started", extra={"queue_url": self._queue_url})
        while True:
            try:
                self.poll_once()
            except (BotoCoreError, ClientError) as exc:  # pragma: no cover - resiliency
                LOGGER.exception("sqs_receive_failed", extra={"error": str(exc)})
                time.sleep(5)

    def poll_once(self) -> int:
        """Receive one batch and handle it; return how many messages were acknowledged."""

        response = self._sqs.receive_message(**self._receive_kwargs)
        acknowledged = 0
        for message in response.get("Messages", []):
            receipt_handle = message["ReceiptHandle"]
            try:
                payload = unwrap_sns_envelope(message.get("Body", ""))
                self._handler(payload)
            except Exception as exc:  # noqa: BLE001 - one poison message must not stop the consumer
                LOGGER.exception(
                    "sqs_message_failed",
                    extra={"error": str(exc), "message_id": message.get("MessageId")},
                )
                continue

            try:
                self._sqs.delete_message(QueueUrl=self._queue_url, ReceiptHandle=receipt_handle)
                acknowledged += 1
            except (BotoCoreError, ClientError) as exc:  # pragma: no cover - resiliency
                LOGGER.exception(
                    "sqs_delete_failed",
                    extra={"error": str(exc), "receipt_handle": receipt_handle},
                )
        return acknowledged
