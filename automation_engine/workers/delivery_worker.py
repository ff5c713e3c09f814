"""Delivery worker entry point."""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

from automation_engine.core.config import get_settings
from automation_engine.core.logging import configure_logging
from automation_engine.delivery.worker import DeliveryWorker


async def run_worker() -> None:
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:  # pragma: no cover - Windows
            pass
    await DeliveryWorker().run_forever(stop_event)


def main() -> None:
    """Run the delivery worker until SIGINT/SIGTERM."""
    configure_logging(get_settings())
    try:
        asyncio.run(run_worker())
    except Exception:  # noqa: BLE001
        logging.getLogger("automation_engine.workers.delivery").exception("delivery_worker_crashed")
        sys.exit(1)


if __name__ == "__main__":
    main()
