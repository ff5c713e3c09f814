"""Runs the inbound SQS consumer that feeds the event store."""

from __future__ import annotations

from automation_engine.core.config import get_settings
from automation_engine.core.logging import configure_logging
from automation_engine.events_engine.consumers.inbound import build_inbound_consumer_from_env


def main() -> None:
    configure_logging(get_settings())
    consumer = build_inbound_consumer_from_env()
    consumer.run_forever()


if __name__ == "__main__":
    main()
