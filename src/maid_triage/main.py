"""CLI entrypoint for maid-triage."""

import logging
import os
from pathlib import Path

import rich_click as click

from maid_triage import __version__
from maid_triage.triage.controllers import (
    BookingEventCommand,
    CleanerAddCommand,
    CleanerLinkCommand,
    CleanerListCommand,
    CleanerStatusCommand,
    EventListCommand,
    OutboxListCommand,
    OutboxMarkCommand,
    OutboxPendingCommand,
    SweepCommand,
    TaskCreateCommand,
    TaskListCommand,
    TaskRefCommand,
    TriageCliController,
)

click.rich_click.USE_MARKDOWN = True
TRIAGE_CONTROLLER = TriageCliController()

db_path_option = click.option(
    "--db-path",
    type=click.Path(path_type=Path),
    default=None,
    help="SQLite DB path.",
)
tenant_option = click.option("--tenant", "tenant_id", required=True, help="Tenant id.")
task_id_option = click.option("--task-id", required=True, help="Task id.")
request_id_option = click.option(
    "--request-id",
    default=None,
    help="Optional correlation id stored with ledger events.",
)


@click.group()
@click.version_option(version=__version__, prog_name="maid-triage")
@click.option(
    "--log-level",
    type=click.Choice(["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"], case_sensitive=False),
    default=None,
    help="Log level; defaults to MAID_TRIAGE_LOG_LEVEL or INFO.",
)
def maid_triage(log_level: str | None) -> None:
    """Cleaning task triage CLI."""

    level = (log_level or os.getenv("MAID_TRIAGE_LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@maid_triage.group()
def cleaners() -> None:
    """Cleaner directory commands."""


@cleaners.command("add")
@db_path_option
@tenant_option
@click.option("--name", required=True, help="Cleaner display name.")
@click.option("--phone", default=None, help="Phone number for notifications.")
@click.option("--email", default=None, help="Email for notifications.")
@click.option("--cleaner-id", default=None, help="Explicit cleaner id; generated when omitted.")
def cleaners_add(  # noqa: PLR0913
    db_path: Path | None,
    tenant_id: str,
    name: str,
    phone: str | None,
    email: str | None,
    cleaner_id: str | None,
) -> None:
    """Add a cleaner."""

    _emit_lines(
        TRIAGE_CONTROLLER.add_cleaner(
            CleanerAddCommand(
                db_path=db_path,
                tenant_id=tenant_id,
                name=name,
                phone=phone,
                email=email,
                cleaner_id=cleaner_id,
            ),
        ),
    )


@cleaners.command("link")
@db_path_option
@tenant_option
@click.option("--cleaner-id", required=True, help="Cleaner id.")
@click.option("--property", "property_id", required=True, help="Property id.")
@click.option(
    "--priority",
    type=click.IntRange(min=1),
    default=1,
    show_default=True,
    help="1 = primary, 2 = backup.",
)
def cleaners_link(
    db_path: Path | None,
    tenant_id: str,
    cleaner_id: str,
    property_id: str,
    priority: int,
) -> None:
    """Link a cleaner to a property at a priority."""

    _emit_lines(
        TRIAGE_CONTROLLER.link_cleaner(
            CleanerLinkCommand(
                db_path=db_path,
                tenant_id=tenant_id,
                cleaner_id=cleaner_id,
                property_id=property_id,
                priority=priority,
            ),
        ),
    )


@cleaners.command("status")
@db_path_option
@tenant_option
@click.option("--cleaner-id", required=True, help="Cleaner id.")
@click.option(
    "--status",
    type=click.Choice(["active", "inactive"], case_sensitive=False),
    required=True,
    help="New cleaner status.",
)
def cleaners_status(db_path: Path | None, tenant_id: str, cleaner_id: str, status: str) -> None:
    """Activate or deactivate a cleaner."""

    _emit_lines(
        TRIAGE_CONTROLLER.set_cleaner_status(
            CleanerStatusCommand(
                db_path=db_path,
                tenant_id=tenant_id,
                cleaner_id=cleaner_id,
                status=status,
            ),
        ),
    )


@cleaners.command("list")
@db_path_option
@tenant_option
def cleaners_list(db_path: Path | None, tenant_id: str) -> None:
    """List cleaners of a tenant."""

    _emit_lines(
        TRIAGE_CONTROLLER.list_cleaners(CleanerListCommand(db_path=db_path, tenant_id=tenant_id)),
    )


@maid_triage.group()
def bookings() -> None:
    """Booking reconciliation commands."""


@bookings.command("event")
@db_path_option
@tenant_option
@click.option("--booking-id", required=True, help="Upstream booking id.")
@click.option("--property", "property_id", required=True, help="Property id.")
@click.option("--checkout-at", required=True, help="Checkout time, ISO 8601.")
@click.option(
    "--duration-minutes",
    type=click.IntRange(min=1),
    default=120,
    show_default=True,
    help="Cleaning duration used for the scheduled end.",
)
@click.option(
    "--status",
    type=click.Choice(["booked", "canceled"], case_sensitive=False),
    default="booked",
    show_default=True,
    help="Booking status.",
)
@click.option(
    "--amount-cents",
    type=click.IntRange(min=0),
    default=0,
    show_default=True,
    help="Cleaner payout for a newly created task.",
)
@request_id_option
def bookings_event(  # noqa: PLR0913
    db_path: Path | None,
    tenant_id: str,
    booking_id: str,
    property_id: str,
    checkout_at: str,
    duration_minutes: int,
    status: str,
    amount_cents: int,
    request_id: str | None,
) -> None:
    """Apply one booking created/updated/canceled event."""

    _emit_lines(
        TRIAGE_CONTROLLER.booking_event(
            BookingEventCommand(
                db_path=db_path,
                tenant_id=tenant_id,
                booking_id=booking_id,
                property_id=property_id,
                checkout_at=checkout_at,
                cleaning_duration_minutes=duration_minutes,
                status=status,
                payment_amount_cents=amount_cents,
                request_id=request_id,
            ),
        ),
    )


@maid_triage.group()
def tasks() -> None:
    """Cleaning task commands."""


@tasks.command("create")
@db_path_option
@tenant_option
@click.option("--property", "property_id", required=True, help="Property id.")
@click.option("--start-at", required=True, help="Scheduled start, ISO 8601.")
@click.option("--end-at", required=True, help="Scheduled end, ISO 8601.")
@click.option(
    "--amount-cents",
    type=click.IntRange(min=0),
    default=0,
    show_default=True,
    help="Cleaner payout.",
)
def tasks_create(  # noqa: PLR0913
    db_path: Path | None,
    tenant_id: str,
    property_id: str,
    start_at: str,
    end_at: str,
    amount_cents: int,
) -> None:
    """Create a task not tied to a booking."""

    _emit_lines(
        TRIAGE_CONTROLLER.create_task(
            TaskCreateCommand(
                db_path=db_path,
                tenant_id=tenant_id,
                property_id=property_id,
                start_at=start_at,
                end_at=end_at,
                payment_amount_cents=amount_cents,
            ),
        ),
    )


@tasks.command("list")
@db_path_option
@tenant_option
@click.option("--property", "property_id", default=None, help="Optional property filter.")
@click.option(
    "--status",
    type=click.Choice(
        ["scheduled", "assigned", "in_progress", "completed", "canceled", "failed"],
        case_sensitive=False,
    ),
    default=None,
    help="Optional status filter.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=50,
    show_default=True,
    help="Max tasks to print.",
)
def tasks_list(
    db_path: Path | None,
    tenant_id: str,
    property_id: str | None,
    status: str | None,
    limit: int,
) -> None:
    """List tasks ordered by scheduled start."""

    _emit_lines(
        TRIAGE_CONTROLLER.list_tasks(
            TaskListCommand(
                db_path=db_path,
                tenant_id=tenant_id,
                property_id=property_id,
                status=status,
                limit=limit,
            ),
        ),
    )


@tasks.command("inspect")
@db_path_option
@tenant_option
@task_id_option
def tasks_inspect(db_path: Path | None, tenant_id: str, task_id: str) -> None:
    """Inspect one task with incidents and event history."""

    _emit_lines(
        TRIAGE_CONTROLLER.inspect_task(
            TaskRefCommand(db_path=db_path, tenant_id=tenant_id, task_id=task_id),
        ),
    )


@tasks.command("dispatch")
@db_path_option
@tenant_option
@task_id_option
@request_id_option
def tasks_dispatch(
    db_path: Path | None,
    tenant_id: str,
    task_id: str,
    request_id: str | None,
) -> None:
    """Assign the property's primary cleaner."""

    _emit_lines(
        TRIAGE_CONTROLLER.dispatch_task(
            TaskRefCommand(
                db_path=db_path,
                tenant_id=tenant_id,
                task_id=task_id,
                request_id=request_id,
            ),
        ),
    )


@tasks.command("accept")
@db_path_option
@tenant_option
@task_id_option
@click.option("--cleaner-id", default=None, help="Only accept if this cleaner is the assignee.")
@request_id_option
def tasks_accept(
    db_path: Path | None,
    tenant_id: str,
    task_id: str,
    cleaner_id: str | None,
    request_id: str | None,
) -> None:
    """Confirm the assignment on behalf of the cleaner."""

    _emit_lines(
        TRIAGE_CONTROLLER.accept_task(
            TaskRefCommand(
                db_path=db_path,
                tenant_id=tenant_id,
                task_id=task_id,
                request_id=request_id,
                cleaner_id=cleaner_id,
            ),
        ),
    )


@tasks.command("check-in")
@db_path_option
@tenant_option
@task_id_option
@request_id_option
def tasks_check_in(
    db_path: Path | None,
    tenant_id: str,
    task_id: str,
    request_id: str | None,
) -> None:
    """Start the cleaning (assigned -> in_progress)."""

    _emit_lines(
        TRIAGE_CONTROLLER.check_in_task(
            TaskRefCommand(
                db_path=db_path,
                tenant_id=tenant_id,
                task_id=task_id,
                request_id=request_id,
            ),
        ),
    )


@tasks.command("complete")
@db_path_option
@tenant_option
@task_id_option
@request_id_option
def tasks_complete(
    db_path: Path | None,
    tenant_id: str,
    task_id: str,
    request_id: str | None,
) -> None:
    """Finish the cleaning and request payment."""

    _emit_lines(
        TRIAGE_CONTROLLER.complete_task(
            TaskRefCommand(
                db_path=db_path,
                tenant_id=tenant_id,
                task_id=task_id,
                request_id=request_id,
            ),
        ),
    )


@tasks.command("cancel")
@db_path_option
@tenant_option
@task_id_option
@click.option("--reason", default=None, help="Reason stored with the ledger event.")
@request_id_option
def tasks_cancel(
    db_path: Path | None,
    tenant_id: str,
    task_id: str,
    reason: str | None,
    request_id: str | None,
) -> None:
    """Cancel a scheduled or assigned task."""

    _emit_lines(
        TRIAGE_CONTROLLER.cancel_task(
            TaskRefCommand(
                db_path=db_path,
                tenant_id=tenant_id,
                task_id=task_id,
                request_id=request_id,
                reason=reason,
            ),
        ),
    )


@tasks.command("fail")
@db_path_option
@tenant_option
@task_id_option
@click.option("--reason", default=None, help="Reason stored with the ledger event.")
@request_id_option
def tasks_fail(
    db_path: Path | None,
    tenant_id: str,
    task_id: str,
    reason: str | None,
    request_id: str | None,
) -> None:
    """Mark an assigned or in-progress task as failed."""

    _emit_lines(
        TRIAGE_CONTROLLER.fail_task(
            TaskRefCommand(
                db_path=db_path,
                tenant_id=tenant_id,
                task_id=task_id,
                request_id=request_id,
                reason=reason,
            ),
        ),
    )


@maid_triage.group()
def sweep() -> None:
    """No-show detector and escalation ladder sweeps."""


@sweep.command("run")
@db_path_option
@click.option(
    "--once/--loop",
    default=True,
    show_default=True,
    help="Run one sweep or keep sweeping on MAID_TRIAGE_SWEEP_INTERVAL_SECONDS.",
)
@click.option(
    "--max-sweeps",
    type=click.IntRange(min=1),
    default=None,
    help="Optional cap for sweeps in loop mode.",
)
@click.option("--tenant", "tenant_id", default=None, help="Optional tenant filter.")
@click.option(
    "--now",
    default=None,
    help="Evaluate as of this ISO 8601 instant (single sweep only).",
)
@click.option(
    "--no-show/--skip-no-show",
    "run_no_show",
    default=True,
    show_default=True,
    help="Run the no-show detector.",
)
@click.option(
    "--ladder/--skip-ladder",
    "run_ladder",
    default=True,
    show_default=True,
    help="Run the escalation ladder.",
)
def sweep_run(  # noqa: PLR0913
    db_path: Path | None,
    once: bool,
    max_sweeps: int | None,
    tenant_id: str | None,
    now: str | None,
    run_no_show: bool,
    run_ladder: bool,
) -> None:
    """Run the no-show detector and the escalation ladder."""

    _emit_lines(
        TRIAGE_CONTROLLER.run_sweep(
            SweepCommand(
                db_path=db_path,
                once=once,
                max_sweeps=max_sweeps,
                tenant_id=tenant_id,
                now=now,
                run_no_show=run_no_show,
                run_ladder=run_ladder,
            ),
        ),
    )


@maid_triage.group()
def outbox() -> None:
    """Outbox inspection and delivery acknowledgements."""


@outbox.command("list")
@db_path_option
@click.option("--tenant", "tenant_id", default=None, help="Optional tenant filter.")
@click.option(
    "--status",
    type=click.Choice(["pending", "sent", "failed"], case_sensitive=False),
    default=None,
    help="Optional status filter.",
)
@click.option("--type", "entry_type", default=None, help="Optional type filter.")
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=100,
    show_default=True,
    help="Max entries to print.",
)
def outbox_list(
    db_path: Path | None,
    tenant_id: str | None,
    status: str | None,
    entry_type: str | None,
    limit: int,
) -> None:
    """List outbox entries, oldest first."""

    _emit_lines(
        TRIAGE_CONTROLLER.list_outbox(
            OutboxListCommand(
                db_path=db_path,
                tenant_id=tenant_id,
                status=status,
                entry_type=entry_type,
                limit=limit,
            ),
        ),
    )


@outbox.command("pending")
@db_path_option
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=None,
    help="Max entries; defaults to MAID_TRIAGE_OUTBOX_DEQUEUE_LIMIT.",
)
def outbox_pending(db_path: Path | None, limit: int | None) -> None:
    """Show entries due for delivery now."""

    _emit_lines(
        TRIAGE_CONTROLLER.pending_outbox(OutboxPendingCommand(db_path=db_path, limit=limit)),
    )


@outbox.command("mark-sent")
@db_path_option
@click.option("--outbox-id", required=True, help="Outbox entry id.")
def outbox_mark_sent(db_path: Path | None, outbox_id: str) -> None:
    """Acknowledge a delivered entry."""

    _emit_lines(
        TRIAGE_CONTROLLER.mark_outbox(
            OutboxMarkCommand(db_path=db_path, outbox_id=outbox_id, failed=False),
        ),
    )


@outbox.command("mark-failed")
@db_path_option
@click.option("--outbox-id", required=True, help="Outbox entry id.")
@click.option(
    "--retry-in-seconds",
    type=click.IntRange(min=0),
    default=60,
    show_default=True,
    help="Delay before the next delivery attempt.",
)
@click.option("--error", default=None, help="Delivery error summary.")
def outbox_mark_failed(
    db_path: Path | None,
    outbox_id: str,
    retry_in_seconds: int,
    error: str | None,
) -> None:
    """Record a failed delivery attempt."""

    _emit_lines(
        TRIAGE_CONTROLLER.mark_outbox(
            OutboxMarkCommand(
                db_path=db_path,
                outbox_id=outbox_id,
                failed=True,
                retry_in_seconds=retry_in_seconds,
                error=error,
            ),
        ),
    )


@maid_triage.group()
def events() -> None:
    """Event ledger inspection."""


@events.command("list")
@db_path_option
@click.option("--tenant", "tenant_id", default=None, help="Optional tenant filter.")
@click.option("--task-id", default=None, help="Only events of this task.")
@click.option(
    "--type",
    "event_type",
    default=None,
    help="Event type; a prefix such as 'ladder.' when combined with --task-id.",
)
@click.option(
    "--include-spans/--no-spans",
    default=False,
    show_default=True,
    help="Include service.span timing records.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=50,
    show_default=True,
    help="Max events to print.",
)
def events_list(  # noqa: PLR0913
    db_path: Path | None,
    tenant_id: str | None,
    task_id: str | None,
    event_type: str | None,
    include_spans: bool,
    limit: int,
) -> None:
    """List ledger events."""

    _emit_lines(
        TRIAGE_CONTROLLER.list_events(
            EventListCommand(
                db_path=db_path,
                tenant_id=tenant_id,
                task_id=task_id,
                event_type=event_type,
                include_spans=include_spans,
                limit=limit,
            ),
        ),
    )


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    maid_triage()
