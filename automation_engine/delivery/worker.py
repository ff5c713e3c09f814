"""Async delivery worker: claim due notifications, send them, record outcomes."""

from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from automation_engine.core.database import session_scope
from automation_engine.delivery.queue import ClaimedNotification, NotificationQueue, Outcome, OutcomeRecord
from automation_engine.delivery.senders import (
    ChannelPermanentFailure,
    ChannelSender,
    ChannelSendError,
    SendResult,
    get_channel_sender,
)
from automation_engine.events_engine.config import EngineConfig, get_engine_config
from automation_engine.models.base import utcnow

LOGGER = logging.getLogger("automation_engine.delivery.worker")

_MAX_ERROR_BACKOFF_SECONDS = 60.0
_MAX_ERROR_EXPONENT = 16


def error_backoff(poll_interval: float, consecutive_errors: int) -> float:
    """Delay before retrying a cycle that failed on storage, capped at a minute."""

    exponent = min(max(consecutive_errors, 0), _MAX_ERROR_EXPONENT)
    return min(poll_interval * 2**exponent, _MAX_ERROR_BACKOFF_SECONDS)


@dataclass
class DeliveryStats:
    claimed: int = 0
    sent: int = 0
    retried: int = 0
    failed: int = 0
    dropped: int = 0
    released: int = 0

    def record(self, outcome: Outcome) -> None:
        if outcome is Outcome.SENT:
            self.sent += 1
        elif outcome is Outcome.RETRY:
            self.retried += 1
        elif outcome is Outcome.FAILED:
            self.failed += 1
        else:
            self.dropped += 1

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


class DeliveryWorker:
    """One stateless delivery worker; any number may run against the same database.

    Sender calls run in threads, at most ``sender_fan_out`` at a time, each
    bounded by ``send_timeout_seconds``. Database work runs on one dedicated
    storage thread per cycle, off the event loop and serialized, and each
    outcome commits in its own transaction, so one bad notification never
    rolls back its siblings.
    """

    def __init__(
        self,
        *,
        session_factory: Optional[sessionmaker] = None,
        sender: Optional[ChannelSender] = None,
        config: Optional[EngineConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._sender = sender or get_channel_sender()
        self._config = config or get_engine_config()
        self._clock = clock

    async def run_once(self) -> DeliveryStats:
        stats = DeliveryStats()
        loop = asyncio.get_running_loop()

        with ThreadPoolExecutor(max_workers=1, thread_name_prefix="delivery-storage") as storage:
            stats.released = await loop.run_in_executor(storage, self._release_stale_claims)
            claimed = await loop.run_in_executor(storage, self._claim_due)
            stats.claimed = len(claimed)
            if not claimed:
                return stats

            semaphore = asyncio.Semaphore(self._config.sender_fan_out)
            results = await asyncio.gather(
                *(self._deliver(notification, semaphore, storage) for notification in claimed),
                return_exceptions=True,
            )

        storage_error: Optional[BaseException] = None
        for notification, result in zip(claimed, results):
            if isinstance(result, OutcomeRecord):
                stats.record(result.outcome)
            elif isinstance(result, SQLAlchemyError):
                storage_error = storage_error or result
            elif isinstance(result, BaseException):
                LOGGER.error(
                    "delivery_record_failed",
                    exc_info=result,
                    extra={"notification_id": str(notification.id)},
                )
        LOGGER.info("delivery_cycle_complete", extra=stats.as_dict())
        if storage_error is not None:
            raise storage_error
        return stats

    async def run_forever(self, stop_event: Optional[asyncio.Event] = None) -> None:
        stop_event = stop_event or asyncio.Event()
        consecutive_errors = 0
        LOGGER.info("delivery_worker_started", extra={"poll_interval": self._config.claim_poll_interval})

        while not stop_event.is_set():
            try:
                stats = await self.run_once()
            except SQLAlchemyError:
                consecutive_errors += 1
                delay = error_backoff(self._config.claim_poll_interval, consecutive_errors)
                LOGGER.exception(
                    "delivery_cycle_storage_error",
                    extra={"consecutive_errors": consecutive_errors, "retry_in": delay},
                )
            else:
                consecutive_errors = 0
                # A full batch means more work is probably due right now.
                delay = 0.0 if stats.claimed >= self._config.claim_batch_size else self._config.claim_poll_interval

            if delay <= 0:
                continue
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                continue
        LOGGER.info("delivery_worker_stopped")

    async def _deliver(
        self,
        notification: ClaimedNotification,
        semaphore: asyncio.Semaphore,
        storage: ThreadPoolExecutor,
    ) -> OutcomeRecord:
        async with semaphore:
            started_at = self._clock()
            result, error, metadata = await self._send(notification)

        return await asyncio.get_running_loop().run_in_executor(
            storage,
            self._record_outcome,
            notification,
            started_at,
            result,
            error,
            metadata,
        )

    def _release_stale_claims(self) -> int:
        with session_scope(self._session_factory) as session:
            return NotificationQueue(session, config=self._config).release_stale_claims(now=self._clock())

    def _claim_due(self) -> list[ClaimedNotification]:
        with session_scope(self._session_factory) as session:
            return NotificationQueue(session, config=self._config).claim_due(now=self._clock())

    def _record_outcome(
        self,
        notification: ClaimedNotification,
        started_at: datetime,
        result: Optional[SendResult],
        error: Optional[str],
        metadata: Dict[str, Any],
    ) -> OutcomeRecord:
        with session_scope(self._session_factory) as session:
            queue = NotificationQueue(session, config=self._config)
            if result is not None:
                return queue.record_success(notification, started_at=started_at, result=result, now=self._clock())
            return queue.record_failure(
                notification,
                started_at=started_at,
                error=error or "unknown error",
                metadata=metadata,
                now=self._clock(),
            )

    async def _send(self, notification: ClaimedNotification) -> tuple[Optional[SendResult], Optional[str], Dict[str, Any]]:
        timeout = self._config.send_timeout_seconds
        try:
            result = await asyncio.wait_for(
                asyncio.to_thread(
                    self._sender.send,
                    notification.channel,
                    notification.recipient,
                    notification.template_key,
                    notification.payload,
                    idempotency_key=f"{notification.id}:{notification.attempts_count + 1}",
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            LOGGER.warning("notification_send_timeout", extra={"notification_id": str(notification.id), "timeout": timeout})
            return None, f"send timed out after {timeout:g}s", {"error_class": "timeout"}
        except ChannelSendError as exc:
            error_class = "permanent" if isinstance(exc, ChannelPermanentFailure) else "transient"
            LOGGER.warning(
                "notification_send_failed",
                extra={"notification_id": str(notification.id), "error_class": error_class, "error": str(exc)},
            )
            return None, f"{type(exc).__name__}: {exc}", {"error_class": error_class}
        except Exception as exc:  # noqa: BLE001 - a misbehaving sender fails only its own notification
            LOGGER.exception("notification_send_crashed", extra={"notification_id": str(notification.id)})
            return None, f"{type(exc).__name__}: {exc}", {"error_class": "unexpected"}
        return result, None, {}

