"""SQLModel ORM tables for triage storage."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Text, UniqueConstraint, text
from sqlmodel import Field, SQLModel


class CleaningTask(SQLModel, table=True):
    __tablename__ = "cleaning_tasks"  # type: ignore[bad-override]
    __table_args__ = (
        Index(
            "uq_cleaning_tasks_active_booking",
            "tenant_id",
            "booking_id",
            unique=True,
            sqlite_where=text("booking_id IS NOT NULL AND status != 'canceled'"),
        ),
        Index("ix_cleaning_tasks_status_start", "status", "scheduled_start_at"),
    )

    task_id: str = Field(primary_key=True)
    tenant_id: str = Field(index=True)
    property_id: str = Field(index=True)
    booking_id: str | None = Field(default=None, index=True)
    scheduled_start_at: datetime = Field(
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    scheduled_end_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    status: str = Field(index=True)
    assigned_cleaner_id: str | None = Field(default=None, index=True)
    confirmed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    completed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    payment_status: str = "none"
    payment_amount_cents: int = 0
    vendor: str = "none"
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class OutboxEntry(SQLModel, table=True):
    __tablename__ = "outbox"  # type: ignore[bad-override]
    __table_args__ = (Index("ix_outbox_status_next_attempt", "status", "next_attempt_at"),)

    outbox_id: str = Field(primary_key=True)
    tenant_id: str = Field(index=True)
    type: str = Field(index=True)
    payload_json: str = Field(sa_column=Column(Text(), nullable=False))
    idempotency_key: str = Field(unique=True)
    status: str
    attempts: int = 0
    last_error: str | None = Field(default=None, sa_column=Column(Text()))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    next_attempt_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class LedgerEvent(SQLModel, table=True):
    __tablename__ = "events"  # type: ignore[bad-override]
    __table_args__ = (Index("ix_events_entity_type", "entity_id", "type"),)

    id: int | None = Field(default=None, primary_key=True)
    tenant_id: str | None = Field(default=None, index=True)
    type: str = Field(index=True)
    payload_json: str = Field(sa_column=Column(Text(), nullable=False))
    request_id: str | None = Field(default=None, index=True)
    span: str | None = None
    duration_ms: int | None = None
    entity_type: str | None = None
    entity_id: str | None = None
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class Cleaner(SQLModel, table=True):
    __tablename__ = "cleaners"  # type: ignore[bad-override]

    cleaner_id: str = Field(primary_key=True)
    tenant_id: str = Field(index=True)
    name: str
    phone: str | None = None
    email: str | None = None
    status: str = "active"
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class CleanerProperty(SQLModel, table=True):
    __tablename__ = "cleaner_properties"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint(
            "property_id",
            "priority",
            "cleaner_id",
            name="uq_cleaner_properties_property_priority_cleaner",
        ),
    )

    id: int | None = Field(default=None, primary_key=True)
    cleaner_id: str = Field(
        sa_column=Column(
            ForeignKey("cleaners.cleaner_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    property_id: str = Field(index=True)
    priority: int
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class Incident(SQLModel, table=True):
    __tablename__ = "incidents"  # type: ignore[bad-override]

    incident_id: str = Field(primary_key=True)
    tenant_id: str = Field(index=True)
    property_id: str = Field(index=True)
    task_id: str = Field(
        sa_column=Column(
            ForeignKey("cleaning_tasks.task_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    type: str
    severity: str
    description: str = Field(sa_column=Column(Text(), nullable=False))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
