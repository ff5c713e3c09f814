#!/usr/bin/env python
"""CLI utility that runs one scheduler tick: sweep pending events, then deliver due notifications."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from automation_engine.workers.scheduler_tick import run_tick


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run one notification scheduler tick.")
    parser.add_argument("--event-limit", type=int, default=None, help="Maximum pending events to process.")
    parser.add_argument("--skip-delivery", action="store_true", help="Only process pending events.")
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging.")
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        summary = run_tick(event_limit=args.event_limit, deliver=not args.skip_delivery)
    except SQLAlchemyError as exc:
        logging.error("Scheduler tick failed: %s", exc)
        return 1

    print(json.dumps(summary, sort_keys=True))
    return 0


if __name__ == "__main__":
    sys.exit(main())
