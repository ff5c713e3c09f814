"""SQLAlchemy ORM models for the automation engine."""

from automation_engine.models.base import Base  # noqa: F401
from automation_engine.models.event import Event, EventStatus  # noqa: F401
from automation_engine.models.rule import DedupeScope, Rule  # noqa: F401
from automation_engine.models.notification import Notification, NotificationStatus  # noqa: F401
from automation_engine.models.attempt import Attempt, AttemptResult  # noqa: F401
from automation_engine.models.audit_entry import AuditEntry  # noqa: F401
