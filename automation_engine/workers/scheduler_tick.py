"""One housekeeping pass for cron-style deployments without a long-running worker."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import sessionmaker

from automation_engine.core.database import session_scope
from automation_engine.delivery.senders import ChannelSender
from automation_engine.delivery.worker import DeliveryWorker
from automation_engine.events_engine.config import EngineConfig, get_engine_config
from automation_engine.events_engine.processor import EventProcessor

LOGGER = logging.getLogger("automation_engine.workers.scheduler_tick")


def run_tick(
    *,
    session_factory: Optional[sessionmaker] = None,
    sender: Optional[ChannelSender] = None,
    config: Optional[EngineConfig] = None,
    event_limit: Optional[int] = None,
    deliver: bool = True,
) -> Dict[str, Any]:
    """Sweep pending events, then run one delivery cycle (which also releases stale claims)."""

    config = config or get_engine_config()
    with session_scope(session_factory) as session:
        processing = EventProcessor(session, config=config).process_pending(limit=event_limit)

    summary: Dict[str, Any] = {"events": processing.as_dict()}
    if deliver:
        worker = DeliveryWorker(session_factory=session_factory, sender=sender, config=config)
        summary["delivery"] = asyncio.run(worker.run_once()).as_dict()

    LOGGER.info("scheduler_tick_complete", extra=summary)
    return summary
