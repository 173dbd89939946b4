"""Dispatch service: cleaner assignment and cleaner-driven lifecycle steps."""

from __future__ import annotations

import logging
from uuid import uuid4

from maid_triage.errors import OutboxWriteError
from maid_triage.triage.collaborators import CleanerLookup, PaymentRequest
from maid_triage.triage.ledger import EventLedger
from maid_triage.triage.models import (
    PRIMARY_PRIORITY,
    CleaningTaskView,
    DispatchResult,
    TaskErrorCode,
    TaskMutationResult,
    TaskOperationResult,
    TaskStatus,
)
from maid_triage.triage.outbox import Outbox
from maid_triage.triage.task_store import TaskStore

logger = logging.getLogger(__name__)

OUTBOX_WRITE_FAILED = "outbox_write_failed"
NOTIFY_CLEANER = "notify_cleaner"


class DispatchService:
    """Assign cleaners to tasks and move tasks through their lifecycle.

    All operations report expected failures through result objects. A failed
    outbox write fails the operation even when the preceding state change is
    already stored; callers see ``outbox_write_failed`` in that case.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        tasks: TaskStore,
        outbox: Outbox,
        ledger: EventLedger,
        cleaners: CleanerLookup,
        payments: PaymentRequest | None = None,
    ) -> None:
        self.tasks = tasks
        self.outbox = outbox
        self.ledger = ledger
        self.cleaners = cleaners
        self.payments = payments

    def dispatch_task(
        self,
        tenant_id: str,
        task_id: str,
        *,
        request_id: str | None = None,
    ) -> DispatchResult:
        """Assign the primary cleaner of the task's property and notify them."""

        with self.ledger.span(
            "dispatch_task",
            tenant_id=tenant_id,
            task_id=task_id,
            request_id=request_id,
        ):
            task = self.tasks.get(tenant_id=tenant_id, task_id=task_id)
            if task is None:
                return DispatchResult(success=False, task_id=task_id, error="task_not_found")
            if task.status is not TaskStatus.SCHEDULED:
                return DispatchResult(
                    success=False,
                    task_id=task_id,
                    error=f"invalid_status:{task.status.value}",
                )

            cleaner = self.cleaners.find_cleaner_for_property(
                tenant_id,
                task.property_id,
                PRIMARY_PRIORITY,
            )
            if cleaner is None:
                return DispatchResult(success=False, task_id=task_id, error="no_primary_cleaner")

            assigned = self.tasks.assign_cleaner(
                tenant_id=tenant_id,
                task_id=task_id,
                cleaner_id=cleaner.cleaner_id,
            )
            if not assigned.ok:
                return DispatchResult(
                    success=False,
                    task_id=task_id,
                    error=_assign_error(assigned),
                )

            try:
                self.outbox.enqueue(
                    tenant_id=tenant_id,
                    entry_type=NOTIFY_CLEANER,
                    payload={
                        **_schedule_payload(task),
                        "cleaner_id": cleaner.cleaner_id,
                        "cleaner_name": cleaner.name,
                        "cleaner_phone": cleaner.phone,
                        "cleaner_email": cleaner.email,
                        "action": "assignment",
                    },
                    idempotency_key=(
                        f"dispatch-{task_id}-{cleaner.cleaner_id}-{uuid4().hex[:8]}"
                    ),
                )
            except OutboxWriteError:
                return DispatchResult(
                    success=False,
                    task_id=task_id,
                    cleaner_id=cleaner.cleaner_id,
                    error=OUTBOX_WRITE_FAILED,
                )

            self.ledger.record_task_event(
                tenant_id=tenant_id,
                task_id=task_id,
                event_type="task.assigned",
                request_id=request_id,
                cleaner_id=cleaner.cleaner_id,
                cleaner_name=cleaner.name,
            )
            logger.info("Task %s assigned to primary cleaner %s", task_id, cleaner.cleaner_id)
            return DispatchResult(success=True, task_id=task_id, cleaner_id=cleaner.cleaner_id)

    def dispatch_to_backup(
        self,
        tenant_id: str,
        task_id: str,
        cleaner_id: str,
        *,
        request_id: str | None = None,
    ) -> DispatchResult:
        """Assign a specific cleaner to a task whose previous assignee was released."""

        with self.ledger.span(
            "dispatch_to_backup",
            tenant_id=tenant_id,
            task_id=task_id,
            request_id=request_id,
        ):
            task = self.tasks.get(tenant_id=tenant_id, task_id=task_id)
            if task is None:
                return DispatchResult(success=False, task_id=task_id, error="task_not_found")
            if task.status is not TaskStatus.SCHEDULED:
                return DispatchResult(
                    success=False,
                    task_id=task_id,
                    error=f"invalid_status:{task.status.value}",
                )

            assigned = self.tasks.assign_cleaner(
                tenant_id=tenant_id,
                task_id=task_id,
                cleaner_id=cleaner_id,
            )
            if not assigned.ok:
                return DispatchResult(
                    success=False,
                    task_id=task_id,
                    error=_assign_error(assigned),
                )

            try:
                self.outbox.enqueue(
                    tenant_id=tenant_id,
                    entry_type=NOTIFY_CLEANER,
                    payload={
                        **_schedule_payload(task),
                        "cleaner_id": cleaner_id,
                        "action": "backup_assignment",
                    },
                    idempotency_key=f"backup-dispatch-{task_id}-{cleaner_id}-{uuid4().hex[:8]}",
                )
            except OutboxWriteError:
                return DispatchResult(
                    success=False,
                    task_id=task_id,
                    cleaner_id=cleaner_id,
                    error=OUTBOX_WRITE_FAILED,
                )

            self.ledger.record_task_event(
                tenant_id=tenant_id,
                task_id=task_id,
                event_type="task.backup_assigned",
                request_id=request_id,
                cleaner_id=cleaner_id,
                reason="primary_no_show",
            )
            logger.info("Task %s assigned to backup cleaner %s", task_id, cleaner_id)
            return DispatchResult(success=True, task_id=task_id, cleaner_id=cleaner_id)

    def accept_task(
        self,
        tenant_id: str,
        task_id: str,
        *,
        cleaner_id: str | None = None,
        request_id: str | None = None,
    ) -> TaskOperationResult:
        """Record the confirmation; with ``cleaner_id`` only that assignee may confirm."""

        with self.ledger.span(
            "accept_task",
            tenant_id=tenant_id,
            task_id=task_id,
            request_id=request_id,
        ):
            confirmed = self.tasks.confirm(
                tenant_id=tenant_id,
                task_id=task_id,
                cleaner_id=cleaner_id,
            )
            if not confirmed.ok:
                return TaskOperationResult(success=False, task_id=task_id, error=confirmed.detail)
            self.ledger.record_task_event(
                tenant_id=tenant_id,
                task_id=task_id,
                event_type="task.confirmed",
                request_id=request_id,
                cleaner_id=confirmed.task.assigned_cleaner_id if confirmed.task else None,
            )
            return TaskOperationResult(success=True, task_id=task_id)

    def check_in_task(
        self,
        tenant_id: str,
        task_id: str,
        *,
        request_id: str | None = None,
    ) -> TaskOperationResult:
        with self.ledger.span(
            "check_in_task",
            tenant_id=tenant_id,
            task_id=task_id,
            request_id=request_id,
        ):
            return self._transition(
                tenant_id,
                task_id,
                to_status=TaskStatus.IN_PROGRESS,
                event_type="task.checked_in",
                request_id=request_id,
            )

    def complete_task(
        self,
        tenant_id: str,
        task_id: str,
        *,
        request_id: str | None = None,
    ) -> TaskOperationResult:
        """Complete the task and trigger the payment request.

        A failed payment request is logged; it does not fail the completion.
        """

        with self.ledger.span(
            "complete_task",
            tenant_id=tenant_id,
            task_id=task_id,
            request_id=request_id,
        ):
            result = self._transition(
                tenant_id,
                task_id,
                to_status=TaskStatus.COMPLETED,
                event_type="task.completed",
                request_id=request_id,
            )
            if not result.success or self.payments is None:
                return result

            payment = self.payments.request(tenant_id, task_id, request_id=request_id)
            if not payment.success:
                logger.warning(
                    "Payment request for completed task %s not created: %s",
                    task_id,
                    payment.error,
                )
            result.payment_requested = payment.success
            return result

    def cancel_task(
        self,
        tenant_id: str,
        task_id: str,
        *,
        reason: str | None = None,
        request_id: str | None = None,
    ) -> TaskOperationResult:
        with self.ledger.span(
            "cancel_task",
            tenant_id=tenant_id,
            task_id=task_id,
            request_id=request_id,
        ):
            return self._transition(
                tenant_id,
                task_id,
                to_status=TaskStatus.CANCELED,
                event_type="task.canceled",
                request_id=request_id,
                reason=reason,
            )

    def fail_task(
        self,
        tenant_id: str,
        task_id: str,
        *,
        reason: str | None = None,
        request_id: str | None = None,
    ) -> TaskOperationResult:
        with self.ledger.span(
            "fail_task",
            tenant_id=tenant_id,
            task_id=task_id,
            request_id=request_id,
        ):
            return self._transition(
                tenant_id,
                task_id,
                to_status=TaskStatus.FAILED,
                event_type="task.failed",
                request_id=request_id,
                reason=reason,
            )

    def _transition(  # noqa: PLR0913
        self,
        tenant_id: str,
        task_id: str,
        *,
        to_status: TaskStatus,
        event_type: str,
        request_id: str | None,
        reason: str | None = None,
    ) -> TaskOperationResult:
        updated = self.tasks.transition(tenant_id=tenant_id, task_id=task_id, to_status=to_status)
        if not updated.ok or updated.task is None:
            return TaskOperationResult(success=False, task_id=task_id, error=updated.detail)

        details: dict[str, object] = {"cleaner_id": updated.task.assigned_cleaner_id}
        if updated.task.completed_at is not None:
            details["completed_at"] = updated.task.completed_at.isoformat()
        if reason is not None:
            details["reason"] = reason
        self.ledger.record_task_event(
            tenant_id=tenant_id,
            task_id=task_id,
            event_type=event_type,
            request_id=request_id,
            **details,
        )
        return TaskOperationResult(success=True, task_id=task_id)


def _assign_error(result: TaskMutationResult) -> str:
    if result.error is TaskErrorCode.INVALID_TRANSITION and result.from_status is not None:
        return f"invalid_status:{result.from_status.value}"
    return result.detail or "assign_failed"


def _schedule_payload(task: CleaningTaskView) -> dict[str, object]:
    return {
        "task_id": task.task_id,
        "property_id": task.property_id,
        "scheduled_start_at": task.scheduled_start_at.isoformat(),
        "scheduled_end_at": task.scheduled_end_at.isoformat(),
    }
