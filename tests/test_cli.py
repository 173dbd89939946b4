from __future__ import annotations

from pathlib import Path

import allure
from click.testing import CliRunner, Result

from maid_triage import __version__
from maid_triage.main import maid_triage

pytestmark = [
    allure.epic("Cleaning Triage"),
    allure.feature("CLI"),
]

TENANT_ARGS = ["--tenant", "tenant-a"]


def _invoke(runner: CliRunner, db_path: Path, *args: str) -> Result:
    group, command, *rest = args
    result = runner.invoke(maid_triage, [group, command, "--db-path", str(db_path), *rest])
    assert result.exit_code == 0, result.output
    return result


def _seed_property(runner: CliRunner, db_path: Path) -> None:
    for cleaner_id, priority in (("ana", "1"), ("ben", "2")):
        _invoke(
            runner,
            db_path,
            "cleaners",
            "add",
            *TENANT_ARGS,
            "--name",
            cleaner_id.title(),
            "--cleaner-id",
            cleaner_id,
        )
        _invoke(
            runner,
            db_path,
            "cleaners",
            "link",
            *TENANT_ARGS,
            "--cleaner-id",
            cleaner_id,
            "--property",
            "prop-1",
            "--priority",
            priority,
        )


def _book(runner: CliRunner, db_path: Path, *extra: str) -> str:
    result = _invoke(
        runner,
        db_path,
        "bookings",
        "event",
        *TENANT_ARGS,
        "--booking-id",
        "bk-1",
        "--property",
        "prop-1",
        "--checkout-at",
        "2026-10-04T11:00:00Z",
        "--duration-minutes",
        "90",
        *extra,
    )
    return _line_starting(result, "Booking ")


def _line_starting(result: Result, prefix: str) -> str:
    return next(line for line in result.output.splitlines() if line.startswith(prefix))


def test_version_option() -> None:
    result = CliRunner().invoke(maid_triage, ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.output


def test_booking_to_payment_lifecycle(tmp_path: Path) -> None:
    runner = CliRunner()
    db_path = tmp_path / "triage.db"
    _seed_property(runner, db_path)

    booked = _book(runner, db_path, "--amount-cents", "4500")
    assert booked.startswith("Booking bk-1: action=created task_id=")
    task_id = booked.rsplit("task_id=", 1)[1]
    task_args = [*TENANT_ARGS, "--task-id", task_id]

    dispatched = _invoke(runner, db_path, "tasks", "dispatch", *task_args)
    assert f"Task dispatched: task_id={task_id} cleaner_id=ana" in dispatched.output
    accepted = _invoke(runner, db_path, "tasks", "accept", *task_args, "--cleaner-id", "ana")
    assert f"Task accepted: {task_id}" in accepted.output
    _invoke(runner, db_path, "tasks", "check-in", *task_args)
    completed = _invoke(runner, db_path, "tasks", "complete", *task_args)
    assert f"Task completed: {task_id}" in completed.output
    assert "Payment requested: yes" in completed.output

    inspected = _invoke(runner, db_path, "tasks", "inspect", *task_args)
    assert "Status: completed" in inspected.output
    assert "Payment: requested (4500 cents)" in inspected.output

    outbox = _invoke(runner, db_path, "outbox", "list", "--type", "payment_request")
    assert "Outbox entries: 1" in outbox.output
    assert f"key=payment-{task_id}" in outbox.output


def test_sweep_reassigns_no_show_to_backup(tmp_path: Path) -> None:
    runner = CliRunner()
    db_path = tmp_path / "triage.db"
    _seed_property(runner, db_path)
    task_id = _book(runner, db_path).rsplit("task_id=", 1)[1]
    _invoke(runner, db_path, "tasks", "dispatch", *TENANT_ARGS, "--task-id", task_id)

    swept = _invoke(
        runner,
        db_path,
        "sweep",
        "run",
        "--once",
        "--now",
        "2026-10-04T11:31:00Z",
        "--skip-ladder",
    )

    assert "Sweep summary: sweeps=1 checked=1 no_shows=1 backup_assigned=1" in swept.output
    listed = _invoke(runner, db_path, "tasks", "list", *TENANT_ARGS, "--status", "assigned")
    assert "Tasks: 1" in listed.output
    assert "cleaner=ben" in listed.output


def test_canceled_booking_cancels_task(tmp_path: Path) -> None:
    runner = CliRunner()
    db_path = tmp_path / "triage.db"
    task_id = _book(runner, db_path).rsplit("task_id=", 1)[1]

    canceled = _book(runner, db_path, "--status", "canceled")

    assert canceled == f"Booking bk-1: action=canceled task_id={task_id}"
    events = _invoke(runner, db_path, "events", "list", "--task-id", task_id)
    assert "task.canceled" in events.output


def test_dispatch_failure_is_reported(tmp_path: Path) -> None:
    runner = CliRunner()
    db_path = tmp_path / "triage.db"
    task_id = _book(runner, db_path).rsplit("task_id=", 1)[1]

    result = _invoke(runner, db_path, "tasks", "dispatch", *TENANT_ARGS, "--task-id", task_id)

    assert f"Dispatch failed: task_id={task_id} error=no_primary_cleaner" in result.output


def test_outbox_delivery_reporting(tmp_path: Path) -> None:
    runner = CliRunner()
    db_path = tmp_path / "triage.db"
    _seed_property(runner, db_path)
    task_id = _book(runner, db_path).rsplit("task_id=", 1)[1]
    _invoke(runner, db_path, "tasks", "dispatch", *TENANT_ARGS, "--task-id", task_id)

    pending = _invoke(runner, db_path, "outbox", "pending")
    assert "Pending outbox entries: 1" in pending.output
    outbox_id = _line_starting(pending, "  ").split()[0]

    failed = _invoke(
        runner,
        db_path,
        "outbox",
        "mark-failed",
        "--outbox-id",
        outbox_id,
        "--error",
        "sms gateway down",
    )
    assert "attempts=1" in failed.output
    sent = _invoke(runner, db_path, "outbox", "mark-sent", "--outbox-id", outbox_id)
    assert f"Outbox entry sent: {outbox_id}" in sent.output
    again = _invoke(runner, db_path, "outbox", "mark-sent", "--outbox-id", outbox_id)
    assert f"Outbox entry not pending: {outbox_id}" in again.output
