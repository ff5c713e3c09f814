"""Initial schema for events, rules, notifications, attempts and the audit log."""

from __future__ import annotations
from typing import Union, Sequence

from alembic import op
import sqlalchemy as sa
from automation_engine.models.types import GUID, JSONType, UTCDateTime

# revision identifiers, used by Alembic.
revision: str = "0001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ACTIVE_DEDUPE_PREDICATE = sa.text("status IN ('scheduled', 'sending')")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", UTCDateTime(), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", UTCDateTime(), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
    ]


def upgrade() -> None:
    """Initial schema for events, rules, notifications, attempts and the audit log."""
    event_status_ref = sa.Enum("pending", "processed", "error", name="event_status", native_enum=False)
    dedupe_scope_ref = sa.Enum("none", "order", "customer", "cart", name="rule_dedupe_scope", native_enum=False)
    notification_status_ref = sa.Enum(
        "scheduled",
        "sending",
        "sent",
        "failed",
        "cancelled",
        name="notification_status",
        native_enum=False,
    )
    attempt_result_ref = sa.Enum("success", "failure", name="attempt_result", native_enum=False)

    op.create_table(
        "events",
        sa.Column("id", GUID(), nullable=False),
        sa.Column("tenant_id", GUID(), nullable=False),
        sa.Column("event_type", sa.String(length=128), nullable=False),
        sa.Column("idempotency_key", sa.String(length=255), nullable=False),
        sa.Column("source", sa.String(length=128), nullable=True),
        sa.Column("payload", JSONType(), nullable=False),
        sa.Column("occurred_at", UTCDateTime(), nullable=False),
        sa.Column("status", event_status_ref, nullable=False),
        sa.Column("error_reason", sa.String(length=1024), nullable=True),
        sa.Column("processed_at", UTCDateTime(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_events")),
        sa.UniqueConstraint("tenant_id", "idempotency_key", name="uq_events_tenant_idempotency_key"),
    )
    op.create_index("ix_events_tenant_type", "events", ["tenant_id", "event_type"], unique=False)
    op.create_index("ix_events_status_created", "events", ["status", "created_at"], unique=False)

    op.create_table(
        "notification_rules",
        sa.Column("id", GUID(), nullable=False),
        sa.Column("tenant_id", GUID(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.String(length=1024), nullable=True),
        sa.Column("trigger_event_type", sa.String(length=128), nullable=False),
        sa.Column("filters", JSONType(), nullable=False),
        sa.Column("actions", JSONType(), nullable=False),
        sa.Column("dedupe_scope", dedupe_scope_ref, nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False),
        sa.Column("is_enabled", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_notification_rules")),
    )
    op.create_index(
        "ix_notification_rules_trigger",
        "notification_rules",
        ["tenant_id", "trigger_event_type", "is_enabled"],
        unique=False,
    )

    op.create_table(
        "notifications",
        sa.Column("id", GUID(), nullable=False),
        sa.Column("tenant_id", GUID(), nullable=False),
        sa.Column("rule_id", GUID(), nullable=True),
        sa.Column("event_id", GUID(), nullable=True),
        sa.Column("channel", sa.String(length=32), nullable=False),
        sa.Column("recipient", sa.String(length=320), nullable=False),
        sa.Column("template_key", sa.String(length=128), nullable=False),
        sa.Column("payload", JSONType(), nullable=False),
        sa.Column("dedupe_key", sa.String(length=64), nullable=True),
        sa.Column("status", notification_status_ref, nullable=False),
        sa.Column("scheduled_for", UTCDateTime(), nullable=False),
        sa.Column("attempts_count", sa.Integer(), nullable=False),
        sa.Column("max_attempts", sa.Integer(), nullable=False),
        sa.Column("claim_token", sa.String(length=36), nullable=True),
        sa.Column("claimed_at", UTCDateTime(), nullable=True),
        sa.Column("last_error", sa.String(length=1024), nullable=True),
        sa.Column("sent_at", UTCDateTime(), nullable=True),
        sa.Column("cancelled_at", UTCDateTime(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ["rule_id"],
            ["notification_rules.id"],
            name=op.f("fk_notifications_rule_id_notification_rules"),
            ondelete="SET NULL",
        ),
        sa.ForeignKeyConstraint(
            ["event_id"],
            ["events.id"],
            name=op.f("fk_notifications_event_id_events"),
            ondelete="SET NULL",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_notifications")),
    )
    op.create_index("ix_notifications_due", "notifications", ["status", "scheduled_for"], unique=False)
    op.create_index("ix_notifications_tenant_status", "notifications", ["tenant_id", "status"], unique=False)
    op.create_index("ix_notifications_event", "notifications", ["event_id"], unique=False)
    op.create_index(
        "uq_notifications_active_dedupe",
        "notifications",
        ["rule_id", "dedupe_key"],
        unique=True,
        sqlite_where=ACTIVE_DEDUPE_PREDICATE,
        postgresql_where=ACTIVE_DEDUPE_PREDICATE,
    )

    op.create_table(
        "notification_attempts",
        sa.Column("id", GUID(), nullable=False),
        sa.Column("notification_id", GUID(), nullable=False),
        sa.Column("tenant_id", GUID(), nullable=False),
        sa.Column("attempt_number", sa.Integer(), nullable=False),
        sa.Column("started_at", UTCDateTime(), nullable=False),
        sa.Column("finished_at", UTCDateTime(), nullable=False),
        sa.Column("result", attempt_result_ref, nullable=False),
        sa.Column("error_message", sa.String(length=1024), nullable=True),
        sa.Column("response_metadata", JSONType(), nullable=False),
        sa.ForeignKeyConstraint(
            ["notification_id"],
            ["notifications.id"],
            name=op.f("fk_notification_attempts_notification_id_notifications"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_notification_attempts")),
        sa.UniqueConstraint("notification_id", "attempt_number", name="uq_notification_attempts_number"),
    )
    op.create_index(
        "ix_notification_attempts_notification",
        "notification_attempts",
        ["notification_id"],
        unique=False,
    )

    op.create_table(
        "automation_audit_log",
        sa.Column("id", GUID(), nullable=False),
        sa.Column("tenant_id", GUID(), nullable=False),
        sa.Column("action", sa.String(length=120), nullable=False),
        sa.Column("actor_id", GUID(), nullable=True),
        sa.Column("rule_id", GUID(), nullable=True),
        sa.Column("event_id", GUID(), nullable=True),
        sa.Column("notification_id", GUID(), nullable=True),
        sa.Column("details", JSONType(), nullable=False),
        sa.Column("created_at", UTCDateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_automation_audit_log")),
    )
    op.create_index(
        "ix_automation_audit_log_tenant_action",
        "automation_audit_log",
        ["tenant_id", "action"],
        unique=False,
    )
    op.create_index(
        "ix_automation_audit_log_notification",
        "automation_audit_log",
        ["notification_id"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_automation_audit_log_notification", table_name="automation_audit_log")
    op.drop_index("ix_automation_audit_log_tenant_action", table_name="automation_audit_log")
    op.drop_table("automation_audit_log")
    op.drop_index("ix_notification_attempts_notification", table_name="notification_attempts")
    op.drop_table("notification_attempts")
    op.drop_index("uq_notifications_active_dedupe", table_name="notifications")
    op.drop_index("ix_notifications_event", table_name="notifications")
    op.drop_index("ix_notifications_tenant_status", table_name="notifications")
    op.drop_index("ix_notifications_due", table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("ix_notification_rules_trigger", table_name="notification_rules")
    op.drop_table("notification_rules")
    op.drop_index("ix_events_status_created", table_name="events")
    op.drop_index("ix_events_tenant_type", table_name="events")
    op.drop_table("events")
