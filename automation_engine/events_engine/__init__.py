"""Events engine: idempotent event log, rule matching and action scheduling."""

from .store import EventNotFoundError, EventStore  # noqa: F401
