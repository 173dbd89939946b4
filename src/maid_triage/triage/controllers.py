"""Controllers for triage CLI commands."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path

from maid_triage.config import Settings
from maid_triage.storage.common import from_iso, utc_now
from maid_triage.storage.database import TriageDatabase
from maid_triage.triage.models import (
    BookingEvent,
    BookingStatus,
    CleanerStatus,
    CleaningTaskCreate,
    CleaningTaskView,
    EventRecordView,
    OutboxEntryView,
    OutboxStatus,
    TaskOperationResult,
    TaskStatus,
)
from maid_triage.triage.services import TriageServices, build_triage_services
from maid_triage.triage.sweeper import SweepRunner, SweepSummary


@dataclass(slots=True)
class CleanerAddCommand:
    db_path: Path | None
    tenant_id: str
    name: str
    phone: str | None
    email: str | None
    cleaner_id: str | None


@dataclass(slots=True)
class CleanerLinkCommand:
    db_path: Path | None
    tenant_id: str
    cleaner_id: str
    property_id: str
    priority: int


@dataclass(slots=True)
class CleanerStatusCommand:
    db_path: Path | None
    tenant_id: str
    cleaner_id: str
    status: str


@dataclass(slots=True)
class CleanerListCommand:
    db_path: Path | None
    tenant_id: str


@dataclass(slots=True)
class BookingEventCommand:
    """CLI input for one upstream booking change."""

    db_path: Path | None
    tenant_id: str
    booking_id: str
    property_id: str
    checkout_at: str
    cleaning_duration_minutes: int
    status: str
    payment_amount_cents: int
    request_id: str | None


@dataclass(slots=True)
class TaskCreateCommand:
    db_path: Path | None
    tenant_id: str
    property_id: str
    start_at: str
    end_at: str
    payment_amount_cents: int


@dataclass(slots=True)
class TaskListCommand:
    db_path: Path | None
    tenant_id: str
    property_id: str | None
    status: str | None
    limit: int


@dataclass(slots=True)
class TaskRefCommand:
    """CLI input for operations addressing one task."""

    db_path: Path | None
    tenant_id: str
    task_id: str
    request_id: str | None = None
    reason: str | None = None
    cleaner_id: str | None = None


@dataclass(slots=True)
class SweepCommand:
    """CLI input for no-show / ladder sweeps."""

    db_path: Path | None
    once: bool
    max_sweeps: int | None
    tenant_id: str | None
    now: str | None
    run_no_show: bool = True
    run_ladder: bool = True


@dataclass(slots=True)
class OutboxListCommand:
    db_path: Path | None
    tenant_id: str | None
    status: str | None
    entry_type: str | None
    limit: int


@dataclass(slots=True)
class OutboxPendingCommand:
    db_path: Path | None
    limit: int | None


@dataclass(slots=True)
class OutboxMarkCommand:
    """CLI input for delivery-worker acknowledgements."""

    db_path: Path | None
    outbox_id: str
    failed: bool
    retry_in_seconds: int = 60
    error: str | None = None


@dataclass(slots=True)
class EventListCommand:
    db_path: Path | None
    tenant_id: str | None
    task_id: str | None
    event_type: str | None
    include_spans: bool
    limit: int


class TriageCliController:
    """Coordinates store, service and sweep CLI operations."""

    def add_cleaner(self, command: CleanerAddCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _services(settings) as services:
            cleaner = services.cleaners.add_cleaner(
                tenant_id=command.tenant_id,
                name=command.name,
                phone=command.phone,
                email=command.email,
                cleaner_id=command.cleaner_id,
            )
        return [f"Cleaner added: cleaner_id={cleaner.cleaner_id} name={cleaner.name}"]

    def link_cleaner(self, command: CleanerLinkCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _services(settings) as services:
            linked = services.cleaners.link_property(
                tenant_id=command.tenant_id,
                cleaner_id=command.cleaner_id,
                property_id=command.property_id,
                priority=command.priority,
            )
        if not linked:
            return [
                f"Cleaner not linked: {command.cleaner_id} is unknown or already linked "
                f"to {command.property_id} at priority {command.priority}",
            ]
        return [
            f"Cleaner linked: cleaner_id={command.cleaner_id} "
            f"property_id={command.property_id} priority={command.priority}",
        ]

    def set_cleaner_status(self, command: CleanerStatusCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        status = CleanerStatus(command.status.lower())
        with _services(settings) as services:
            updated = services.cleaners.set_status(
                tenant_id=command.tenant_id,
                cleaner_id=command.cleaner_id,
                status=status,
            )
        if not updated:
            return [f"Cleaner not found: {command.cleaner_id}"]
        return [f"Cleaner {command.cleaner_id} is now {status.value}"]

    def list_cleaners(self, command: CleanerListCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _services(settings) as services:
            cleaners = services.cleaners.list_cleaners(tenant_id=command.tenant_id)
        lines = [f"Cleaners: {len(cleaners)}"]
        for cleaner in cleaners:
            lines.append(
                f"  {cleaner.cleaner_id} name={cleaner.name} status={cleaner.status.value} "
                f"phone={cleaner.phone or '-'} email={cleaner.email or '-'}",
            )
        return lines

    def booking_event(self, command: BookingEventCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _services(settings) as services:
            result = services.bookings.handle_booking_event(
                BookingEvent(
                    tenant_id=command.tenant_id,
                    booking_id=command.booking_id,
                    property_id=command.property_id,
                    checkout_at=from_iso(command.checkout_at),
                    cleaning_duration_minutes=command.cleaning_duration_minutes,
                    status=BookingStatus(command.status.lower()),
                    request_id=command.request_id,
                    payment_amount_cents=command.payment_amount_cents,
                ),
            )
        return [
            f"Booking {command.booking_id}: "
            f"action={result.action.value} task_id={result.task_id or '-'}",
        ]

    def create_task(self, command: TaskCreateCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _services(settings) as services:
            created = services.tasks.create(
                CleaningTaskCreate(
                    tenant_id=command.tenant_id,
                    property_id=command.property_id,
                    scheduled_start_at=from_iso(command.start_at),
                    scheduled_end_at=from_iso(command.end_at),
                    payment_amount_cents=command.payment_amount_cents,
                ),
            )
        if not created.ok or created.task is None:
            return [f"Task not created: {created.detail}"]
        return ["Task created: " + _task_line(created.task)]

    def list_tasks(self, command: TaskListCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        status = TaskStatus(command.status.lower()) if command.status else None
        with _services(settings) as services:
            tasks = services.tasks.list_tasks(
                tenant_id=command.tenant_id,
                property_id=command.property_id,
                status=status,
                limit=command.limit,
            )
        lines = [f"Tasks: {len(tasks)}"]
        lines.extend(f"  {_task_line(task)}" for task in tasks)
        return lines

    def inspect_task(self, command: TaskRefCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _services(settings) as services:
            task = services.tasks.get(tenant_id=command.tenant_id, task_id=command.task_id)
            if task is None:
                return [f"Task not found: {command.task_id}"]
            incidents = services.incidents.list_for_task(
                tenant_id=command.tenant_id,
                task_id=command.task_id,
            )
            events = [
                event
                for event in services.ledger.find_by_entity_and_type_prefix(command.task_id, "")
                if event.span is None
            ]

        lines = [
            f"Task: {task.task_id}",
            f"Property: {task.property_id}",
            f"Booking: {task.booking_id or '-'}",
            f"Status: {task.status.value}",
            f"Start: {task.scheduled_start_at.isoformat()}",
            f"End: {task.scheduled_end_at.isoformat()}",
            f"Cleaner: {task.assigned_cleaner_id or '-'}",
            f"Confirmed at: {_iso_or_dash(task.confirmed_at)}",
            f"Completed at: {_iso_or_dash(task.completed_at)}",
            f"Payment: {task.payment_status.value} ({task.payment_amount_cents} cents)",
            f"Vendor: {task.vendor}",
            f"Incidents: {len(incidents)}",
        ]
        for incident in incidents:
            lines.append(
                f"  {incident.created_at.isoformat()} {incident.type.value} "
                f"severity={incident.severity.value} {incident.description}",
            )
        lines.append(f"Events: {len(events)}")
        lines.extend(f"  {_event_line(event)}" for event in events)
        return lines

    def dispatch_task(self, command: TaskRefCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _services(settings) as services:
            result = services.dispatch.dispatch_task(
                command.tenant_id,
                command.task_id,
                request_id=command.request_id,
            )
        if not result.success:
            return [f"Dispatch failed: task_id={command.task_id} error={result.error}"]
        return [f"Task dispatched: task_id={command.task_id} cleaner_id={result.cleaner_id}"]

    def accept_task(self, command: TaskRefCommand) -> list[str]:
        return self._task_operation(
            command,
            "accepted",
            lambda services: services.dispatch.accept_task(
                command.tenant_id,
                command.task_id,
                cleaner_id=command.cleaner_id,
                request_id=command.request_id,
            ),
        )

    def check_in_task(self, command: TaskRefCommand) -> list[str]:
        return self._task_operation(
            command,
            "checked in",
            lambda services: services.dispatch.check_in_task(
                command.tenant_id,
                command.task_id,
                request_id=command.request_id,
            ),
        )

    def complete_task(self, command: TaskRefCommand) -> list[str]:
        return self._task_operation(
            command,
            "completed",
            lambda services: services.dispatch.complete_task(
                command.tenant_id,
                command.task_id,
                request_id=command.request_id,
            ),
        )

    def cancel_task(self, command: TaskRefCommand) -> list[str]:
        return self._task_operation(
            command,
            "canceled",
            lambda services: services.dispatch.cancel_task(
                command.tenant_id,
                command.task_id,
                reason=command.reason,
                request_id=command.request_id,
            ),
        )

    def fail_task(self, command: TaskRefCommand) -> list[str]:
        return self._task_operation(
            command,
            "failed",
            lambda services: services.dispatch.fail_task(
                command.tenant_id,
                command.task_id,
                reason=command.reason,
                request_id=command.request_id,
            ),
        )

    def run_sweep(self, command: SweepCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.sweep.run_no_show = command.run_no_show
        settings.sweep.run_ladder = command.run_ladder
        with _services(settings) as services:
            runner = SweepRunner(
                no_show=services.no_show,
                ladder=services.ladder,
                settings=settings.sweep,
            )
            if command.once:
                now = from_iso(command.now) if command.now else None
                summary = runner.run_once(now=now, tenant_id=command.tenant_id)
            else:
                summary = runner.run_loop(
                    max_sweeps=command.max_sweeps,
                    tenant_id=command.tenant_id,
                )
        return _sweep_lines(summary)

    def list_outbox(self, command: OutboxListCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        status = OutboxStatus(command.status.lower()) if command.status else None
        with _services(settings) as services:
            entries = services.outbox.list_entries(
                tenant_id=command.tenant_id,
                status=status,
                entry_type=command.entry_type,
                limit=command.limit,
            )
        lines = [f"Outbox entries: {len(entries)}"]
        lines.extend(f"  {_outbox_line(entry)}" for entry in entries)
        return lines

    def pending_outbox(self, command: OutboxPendingCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        limit = command.limit or settings.outbox.dequeue_limit
        with _services(settings) as services:
            entries = services.outbox.dequeue_pending(limit)
        lines = [f"Pending outbox entries: {len(entries)}"]
        lines.extend(f"  {_outbox_line(entry)}" for entry in entries)
        return lines

    def mark_outbox(self, command: OutboxMarkCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _services(settings) as services:
            if not command.failed:
                sent = services.outbox.mark_sent(command.outbox_id)
                if not sent:
                    return [f"Outbox entry not pending: {command.outbox_id}"]
                return [f"Outbox entry sent: {command.outbox_id}"]
            entry = services.outbox.mark_failed(
                command.outbox_id,
                next_attempt_at=utc_now() + timedelta(seconds=command.retry_in_seconds),
                error=command.error,
            )
        if entry is None:
            return [f"Outbox entry not pending: {command.outbox_id}"]
        return [f"Outbox entry failed attempt recorded: {_outbox_line(entry)}"]

    def list_events(self, command: EventListCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _services(settings) as services:
            if command.task_id:
                events = services.ledger.find_by_entity_and_type_prefix(
                    command.task_id,
                    command.event_type or "",
                )
                if not command.include_spans:
                    events = [event for event in events if event.span is None]
            elif command.event_type:
                events = services.ledger.find_by_type(
                    command.event_type,
                    tenant_id=command.tenant_id,
                    limit=command.limit,
                )
            else:
                events = services.ledger.find_recent(
                    tenant_id=command.tenant_id,
                    include_spans=command.include_spans,
                    limit=command.limit,
                )
        lines = [f"Events: {len(events)}"]
        lines.extend(f"  {_event_line(event)}" for event in events[: command.limit])
        return lines

    def _task_operation(
        self,
        command: TaskRefCommand,
        label: str,
        operation: Callable[[TriageServices], TaskOperationResult],
    ) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _services(settings) as services:
            result = operation(services)
        if not result.success:
            return [f"Task not {label}: task_id={command.task_id} error={result.error}"]
        lines = [f"Task {label}: {command.task_id}"]
        if result.payment_requested is not None:
            lines.append(f"Payment requested: {'yes' if result.payment_requested else 'no'}")
        return lines


def _task_line(task: CleaningTaskView) -> str:
    return (
        f"{task.task_id} property={task.property_id} status={task.status.value} "
        f"start={task.scheduled_start_at.isoformat()} end={task.scheduled_end_at.isoformat()} "
        f"cleaner={task.assigned_cleaner_id or '-'} payment={task.payment_status.value}"
    )


def _outbox_line(entry: OutboxEntryView) -> str:
    return (
        f"{entry.outbox_id} type={entry.type} status={entry.status.value} "
        f"attempts={entry.attempts} key={entry.idempotency_key} "
        f"next_attempt_at={entry.next_attempt_at.isoformat()}"
    )


def _event_line(event: EventRecordView) -> str:
    return f"{event.created_at.isoformat()} {event.type} entity={event.entity_id or '-'}"


def _iso_or_dash(value: datetime | None) -> str:
    return value.isoformat() if value is not None else "-"


def _sweep_lines(summary: SweepSummary) -> list[str]:
    lines = [
        "Sweep summary: "
        f"sweeps={summary.sweeps} checked={summary.checked} no_shows={summary.no_shows} "
        f"backup_assigned={summary.backup_assigned} manual_needed={summary.manual_needed} "
        f"ladder_evaluated={summary.ladder_evaluated} "
        f"ladder_actions={len(summary.ladder_actions)} errors={summary.errors}",
    ]
    for action in summary.ladder_actions:
        lines.append(
            f"  {action.task_id} step={action.step.value} "
            f"success={'yes' if action.success else 'no'} detail={action.detail or '-'}",
        )
    return lines


@contextmanager
def _services(settings: Settings) -> Iterator[TriageServices]:
    settings.validate()
    database = TriageDatabase(
        settings.db_path,
        busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    database.init_schema()
    try:
        yield build_triage_services(database.engine, settings)
    finally:
        database.close()
