"""Translate upstream booking changes into cleaning task changes."""

from __future__ import annotations

import logging
from datetime import timedelta

from maid_triage.triage.ledger import EventLedger
from maid_triage.triage.models import (
    BookingAction,
    BookingEvent,
    BookingHandlerResult,
    BookingStatus,
    CleaningTaskCreate,
    TaskErrorCode,
    TaskStatus,
)
from maid_triage.triage.task_store import TaskStore

logger = logging.getLogger(__name__)


class BookingReconciler:
    """Keeps exactly one live cleaning task per booking, starting at checkout."""

    def __init__(self, *, tasks: TaskStore, ledger: EventLedger) -> None:
        self.tasks = tasks
        self.ledger = ledger

    def handle_booking_event(self, event: BookingEvent) -> BookingHandlerResult:
        if event.cleaning_duration_minutes <= 0:
            raise ValueError("cleaning_duration_minutes must be > 0")

        with self.ledger.span(
            "handle_booking_event",
            tenant_id=event.tenant_id,
            request_id=event.request_id,
        ):
            if event.status is BookingStatus.CANCELED:
                return self._cancel(event)
            return self._upsert(event)

    def _cancel(self, event: BookingEvent) -> BookingHandlerResult:
        existing = self.tasks.find_by_booking_id(
            tenant_id=event.tenant_id,
            booking_id=event.booking_id,
        )
        if existing is None:
            return BookingHandlerResult(action=BookingAction.NO_OP)

        canceled = self.tasks.transition(
            tenant_id=event.tenant_id,
            task_id=existing.task_id,
            to_status=TaskStatus.CANCELED,
        )
        if not canceled.ok:
            logger.info(
                "Booking %s canceled but task %s could not be canceled: %s",
                event.booking_id,
                existing.task_id,
                canceled.detail,
            )
            return BookingHandlerResult(action=BookingAction.NO_OP, task_id=existing.task_id)

        self.ledger.record_task_event(
            tenant_id=event.tenant_id,
            task_id=existing.task_id,
            event_type="task.canceled",
            request_id=event.request_id,
            reason="booking_canceled",
            booking_id=event.booking_id,
        )
        return BookingHandlerResult(action=BookingAction.CANCELED, task_id=existing.task_id)

    def _upsert(self, event: BookingEvent) -> BookingHandlerResult:
        start = event.checkout_at
        end = start + timedelta(minutes=event.cleaning_duration_minutes)

        existing = self.tasks.find_by_booking_id(
            tenant_id=event.tenant_id,
            booking_id=event.booking_id,
        )
        if existing is not None:
            if existing.scheduled_start_at == start:
                return BookingHandlerResult(action=BookingAction.NO_OP, task_id=existing.task_id)
            rescheduled = self.tasks.reschedule(
                tenant_id=event.tenant_id,
                task_id=existing.task_id,
                scheduled_start_at=start,
                scheduled_end_at=end,
            )
            if not rescheduled.ok:
                logger.info(
                    "Booking %s moved but task %s was not rescheduled: %s",
                    event.booking_id,
                    existing.task_id,
                    rescheduled.detail,
                )
                return BookingHandlerResult(action=BookingAction.NO_OP, task_id=existing.task_id)
            self.ledger.record_task_event(
                tenant_id=event.tenant_id,
                task_id=existing.task_id,
                event_type="task.rescheduled",
                request_id=event.request_id,
                booking_id=event.booking_id,
                old_start_at=existing.scheduled_start_at.isoformat(),
                new_start_at=start.isoformat(),
            )
            return BookingHandlerResult(action=BookingAction.RESCHEDULED, task_id=existing.task_id)

        created = self.tasks.create(
            CleaningTaskCreate(
                tenant_id=event.tenant_id,
                property_id=event.property_id,
                booking_id=event.booking_id,
                scheduled_start_at=start,
                scheduled_end_at=end,
                payment_amount_cents=event.payment_amount_cents,
            ),
        )
        if not created.ok:
            if created.error is TaskErrorCode.DUPLICATE_BOOKING:
                # A concurrent handler created the task first.
                winner = self.tasks.find_by_booking_id(
                    tenant_id=event.tenant_id,
                    booking_id=event.booking_id,
                )
                return BookingHandlerResult(
                    action=BookingAction.NO_OP,
                    task_id=winner.task_id if winner else None,
                )
            return BookingHandlerResult(action=BookingAction.NO_OP)

        self.ledger.record_task_event(
            tenant_id=event.tenant_id,
            task_id=created.task_id,
            event_type="task.created",
            request_id=event.request_id,
            booking_id=event.booking_id,
            property_id=event.property_id,
        )
        logger.info("Task %s created for booking %s", created.task_id, event.booking_id)
        return BookingHandlerResult(action=BookingAction.CREATED, task_id=created.task_id)
