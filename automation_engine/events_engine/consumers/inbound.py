"""Business-event ingestion from an SQS queue."""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional

from sqlalchemy.orm import sessionmaker

from automation_engine.core.config import get_settings
from automation_engine.core.database import session_scope
from automation_engine.events_engine.consumers.base import SQSEventConsumer
from automation_engine.events_engine.service import EventService
from automation_engine.schemas.event import InboundEventMessage

LOGGER = logging.getLogger("automation_engine.events_engine.consumers.inbound")


def handle_inbound_message(payload: Dict[str, Any], *, session_factory: Optional[sessionmaker] = None) -> None:
    message = InboundEventMessage.model_validate(payload)
    with session_scope(session_factory) as session:
        result = EventService(session).ingest(message.tenant_id, message)
        LOGGER.info(
            "inbound_event_ingested",
            extra={
                "event_id": str(result.event.id),
                "tenant_id": str(message.tenant_id),
                "event_type": message.event_type,
                "is_new": result.is_new,
            },
        )


class InboundSQSEventConsumer(SQSEventConsumer):
    """SQS consumer that appends producer events to the event store."""

    def __init__(
        self,
        *,
        queue_url: str,
        region_name: str | None = None,
        wait_time_seconds: int = 20,
        visibility_timeout: int | None = None,
        max_messages: int = 5,
        client: Any = None,
    ) -> None:
        super().__init__(
            queue_url=queue_url,
            handler=handle_inbound_message,
            region_name=region_name,
            wait_time_seconds=wait_time_seconds,
            visibility_timeout=visibility_timeout,
            max_messages=max_messages,
            client=client,
        )


def build_inbound_consumer_from_env() -> InboundSQSEventConsumer:
    """Construct an inbound consumer from settings and standard environment variables."""

    settings = get_settings()
    if not settings.inbound_sqs_url:
        raise RuntimeError("NFE_INBOUND_SQS_URL must be set to run the inbound consumer")
    max_messages = int(os.getenv("NFE_INBOUND_SQS_MAX_MESSAGES", "5"))
    wait_time = int(os.getenv("NFE_INBOUND_SQS_WAIT_TIME", "20"))
    visibility_timeout = os.getenv("NFE_INBOUND_SQS_VISIBILITY_TIMEOUT")
    visibility = int(visibility_timeout) if visibility_timeout else None

    return InboundSQSEventConsumer(
        queue_url=settings.inbound_sqs_url,
        region_name=settings.aws_region or os.getenv("AWS_REGION") or os.getenv("AWS_DEFAULT_REGION"),
        max_messages=max_messages,
        wait_time_seconds=wait_time,
        visibility_timeout=visibility,
    )
