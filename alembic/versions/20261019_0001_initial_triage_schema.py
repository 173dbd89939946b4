"""Initial triage schema: tasks, outbox, event ledger, cleaners, incidents."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "cleaning_tasks",
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("property_id", sa.String(), nullable=False),
        sa.Column("booking_id", sa.String(), nullable=True),
        sa.Column("scheduled_start_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("scheduled_end_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("assigned_cleaner_id", sa.String(), nullable=True),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payment_status", sa.String(), nullable=False, server_default="none"),
        sa.Column("payment_amount_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("vendor", sa.String(), nullable=False, server_default="none"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("task_id"),
        sa.CheckConstraint(
            "status IN ('scheduled', 'assigned', 'in_progress', 'completed', 'canceled', 'failed')",
            name="ck_cleaning_tasks_status",
        ),
    )
    op.create_index("ix_cleaning_tasks_tenant_id", "cleaning_tasks", ["tenant_id"])
    op.create_index("ix_cleaning_tasks_property_id", "cleaning_tasks", ["property_id"])
    op.create_index("ix_cleaning_tasks_booking_id", "cleaning_tasks", ["booking_id"])
    op.create_index("ix_cleaning_tasks_status", "cleaning_tasks", ["status"])
    op.create_index(
        "ix_cleaning_tasks_assigned_cleaner_id",
        "cleaning_tasks",
        ["assigned_cleaner_id"],
    )
    op.create_index(
        "ix_cleaning_tasks_status_start",
        "cleaning_tasks",
        ["status", "scheduled_start_at"],
    )
    op.create_index(
        "uq_cleaning_tasks_active_booking",
        "cleaning_tasks",
        ["tenant_id", "booking_id"],
        unique=True,
        sqlite_where=sa.text("booking_id IS NOT NULL AND status != 'canceled'"),
    )

    op.create_table(
        "outbox",
        sa.Column("outbox_id", sa.String(), nullable=False),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("payload_json", sa.Text(), nullable=False),
        sa.Column("idempotency_key", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("next_attempt_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("outbox_id"),
        sa.UniqueConstraint("idempotency_key", name="uq_outbox_idempotency_key"),
    )
    op.create_index("ix_outbox_tenant_id", "outbox", ["tenant_id"])
    op.create_index("ix_outbox_type", "outbox", ["type"])
    op.create_index("ix_outbox_status_next_attempt", "outbox", ["status", "next_attempt_at"])

    op.create_table(
        "events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.String(), nullable=True),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("payload_json", sa.Text(), nullable=False),
        sa.Column("request_id", sa.String(), nullable=True),
        sa.Column("span", sa.String(), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.Column("entity_type", sa.String(), nullable=True),
        sa.Column("entity_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_events_tenant_id", "events", ["tenant_id"])
    op.create_index("ix_events_type", "events", ["type"])
    op.create_index("ix_events_request_id", "events", ["request_id"])
    op.create_index("ix_events_entity_type", "events", ["entity_id", "type"])

    op.create_table(
        "cleaners",
        sa.Column("cleaner_id", sa.String(), nullable=False),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("phone", sa.String(), nullable=True),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("cleaner_id"),
    )
    op.create_index("ix_cleaners_tenant_id", "cleaners", ["tenant_id"])

    op.create_table(
        "cleaner_properties",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("cleaner_id", sa.String(), nullable=False),
        sa.Column("property_id", sa.String(), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["cleaner_id"], ["cleaners.cleaner_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "property_id",
            "priority",
            "cleaner_id",
            name="uq_cleaner_properties_property_priority_cleaner",
        ),
    )
    op.create_index("ix_cleaner_properties_cleaner_id", "cleaner_properties", ["cleaner_id"])
    op.create_index("ix_cleaner_properties_property_id", "cleaner_properties", ["property_id"])

    op.create_table(
        "incidents",
        sa.Column("incident_id", sa.String(), nullable=False),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("property_id", sa.String(), nullable=False),
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("severity", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["task_id"], ["cleaning_tasks.task_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("incident_id"),
    )
    op.create_index("ix_incidents_tenant_id", "incidents", ["tenant_id"])
    op.create_index("ix_incidents_property_id", "incidents", ["property_id"])
    op.create_index("ix_incidents_task_id", "incidents", ["task_id"])


def downgrade() -> None:
    op.drop_table("incidents")
    op.drop_table("cleaner_properties")
    op.drop_table("cleaners")
    op.drop_table("events")
    op.drop_table("outbox")
    op.drop_table("cleaning_tasks")
