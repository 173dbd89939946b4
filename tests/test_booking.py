from __future__ import annotations

from datetime import UTC, datetime, timedelta

import allure
import pytest

from helpers import CHECKOUT, PROPERTY, TENANT
from maid_triage.triage.models import BookingAction, BookingEvent, BookingStatus, TaskStatus
from maid_triage.triage.services import TriageServices

pytestmark = [
    allure.epic("Cleaning Triage"),
    allure.feature("Booking Reconciler"),
]


def _event(
    *,
    checkout_at: datetime = CHECKOUT,
    status: BookingStatus = BookingStatus.BOOKED,
    duration: int = 90,
) -> BookingEvent:
    return BookingEvent(
        tenant_id=TENANT,
        booking_id="bk-1",
        property_id=PROPERTY,
        checkout_at=checkout_at,
        cleaning_duration_minutes=duration,
        status=status,
        request_id="req-booking",
        payment_amount_cents=6_000,
    )


def test_new_booking_creates_task_at_checkout(services: TriageServices) -> None:
    result = services.bookings.handle_booking_event(_event())

    assert result.action is BookingAction.CREATED
    assert result.task_id is not None
    task = services.tasks.get(tenant_id=TENANT, task_id=result.task_id)
    assert task is not None
    assert task.status is TaskStatus.SCHEDULED
    assert task.scheduled_start_at == datetime(2026, 10, 4, 11, 0, tzinfo=UTC)
    assert task.scheduled_end_at == datetime(2026, 10, 4, 12, 30, tzinfo=UTC)
    assert task.booking_id == "bk-1"
    assert task.payment_amount_cents == 6_000
    created = services.ledger.find_by_entity_and_type_prefix(result.task_id, "task.created")
    assert created[0].request_id == "req-booking"


def test_unchanged_booking_is_a_no_op(services: TriageServices) -> None:
    created = services.bookings.handle_booking_event(_event())

    repeat = services.bookings.handle_booking_event(_event())

    assert repeat.action is BookingAction.NO_OP
    assert repeat.task_id == created.task_id
    assert len(services.tasks.list_tasks(tenant_id=TENANT)) == 1


def test_moved_checkout_reschedules_task(services: TriageServices) -> None:
    created = services.bookings.handle_booking_event(_event())
    moved_to = CHECKOUT + timedelta(hours=2)

    result = services.bookings.handle_booking_event(_event(checkout_at=moved_to, duration=60))

    assert result.action is BookingAction.RESCHEDULED
    assert result.task_id == created.task_id
    task = services.tasks.get(tenant_id=TENANT, task_id=created.task_id or "")
    assert task is not None
    assert task.scheduled_start_at == moved_to
    assert task.scheduled_end_at == moved_to + timedelta(minutes=60)
    events = services.ledger.find_by_entity_and_type_prefix(task.task_id, "task.rescheduled")
    assert events[0].payload["old_start_at"] == CHECKOUT.isoformat()
    assert events[0].payload["new_start_at"] == moved_to.isoformat()


def test_started_task_is_not_rescheduled(services: TriageServices) -> None:
    created = services.bookings.handle_booking_event(_event())
    task_id = created.task_id or ""
    services.tasks.assign_cleaner(tenant_id=TENANT, task_id=task_id, cleaner_id="c1")
    services.tasks.transition(tenant_id=TENANT, task_id=task_id, to_status=TaskStatus.IN_PROGRESS)

    result = services.bookings.handle_booking_event(
        _event(checkout_at=CHECKOUT + timedelta(hours=1)),
    )

    assert result.action is BookingAction.NO_OP
    task = services.tasks.get(tenant_id=TENANT, task_id=task_id)
    assert task is not None and task.scheduled_start_at == CHECKOUT


def test_canceled_booking_cancels_scheduled_task(services: TriageServices) -> None:
    created = services.bookings.handle_booking_event(_event())

    result = services.bookings.handle_booking_event(_event(status=BookingStatus.CANCELED))

    assert result.action is BookingAction.CANCELED
    assert result.task_id == created.task_id
    task = services.tasks.get(tenant_id=TENANT, task_id=created.task_id or "")
    assert task is not None and task.status is TaskStatus.CANCELED
    canceled = services.ledger.find_by_entity_and_type_prefix(task.task_id, "task.canceled")
    assert canceled[0].payload["reason"] == "booking_canceled"


def test_cancel_without_task_is_a_no_op(services: TriageServices) -> None:
    result = services.bookings.handle_booking_event(_event(status=BookingStatus.CANCELED))

    assert result.action is BookingAction.NO_OP
    assert result.task_id is None


def test_rebooking_after_cancel_creates_fresh_task(services: TriageServices) -> None:
    first = services.bookings.handle_booking_event(_event())
    services.bookings.handle_booking_event(_event(status=BookingStatus.CANCELED))

    second = services.bookings.handle_booking_event(_event())

    assert second.action is BookingAction.CREATED
    assert second.task_id != first.task_id


def test_non_positive_duration_is_rejected(services: TriageServices) -> None:
    with pytest.raises(ValueError, match="cleaning_duration_minutes"):
        services.bookings.handle_booking_event(_event(duration=0))
