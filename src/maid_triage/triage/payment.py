"""Payment requests for completed cleaning tasks."""

from __future__ import annotations

import logging

from maid_triage.errors import OutboxWriteError
from maid_triage.triage.ledger import EventLedger
from maid_triage.triage.models import PaymentRequestResult, PaymentStatus, TaskStatus
from maid_triage.triage.outbox import Outbox
from maid_triage.triage.task_store import TaskStore

logger = logging.getLogger(__name__)

PAYMENT_CURRENCY = "USD"


class PaymentService:
    """Queue a payment request for a completed task; settlement happens elsewhere."""

    def __init__(self, *, tasks: TaskStore, outbox: Outbox, ledger: EventLedger) -> None:
        self.tasks = tasks
        self.outbox = outbox
        self.ledger = ledger

    def request(
        self,
        tenant_id: str,
        task_id: str,
        *,
        request_id: str | None = None,
    ) -> PaymentRequestResult:
        with self.ledger.span(
            "request_payment",
            tenant_id=tenant_id,
            task_id=task_id,
            request_id=request_id,
        ):
            task = self.tasks.get(tenant_id=tenant_id, task_id=task_id)
            if task is None:
                return PaymentRequestResult(success=False, task_id=task_id, error="task_not_found")
            if task.status is not TaskStatus.COMPLETED:
                return PaymentRequestResult(
                    success=False,
                    task_id=task_id,
                    error=f"task_not_completed:{task.status.value}",
                )
            if task.payment_status is not PaymentStatus.NONE:
                return PaymentRequestResult(
                    success=False,
                    task_id=task_id,
                    error=f"payment_already_{task.payment_status.value}",
                )
            if not task.assigned_cleaner_id:
                return PaymentRequestResult(
                    success=False,
                    task_id=task_id,
                    error="no_cleaner_assigned",
                )
            if task.payment_amount_cents <= 0:
                return PaymentRequestResult(
                    success=False,
                    task_id=task_id,
                    error="no_payment_amount",
                )

            marked = self.tasks.update_payment_status(
                tenant_id=tenant_id,
                task_id=task_id,
                expected=PaymentStatus.NONE,
                to=PaymentStatus.REQUESTED,
            )
            if not marked.ok:
                current = marked.task.payment_status.value if marked.task else "unknown"
                return PaymentRequestResult(
                    success=False,
                    task_id=task_id,
                    error=f"payment_already_{current}",
                )

            try:
                enqueued = self.outbox.enqueue(
                    tenant_id=tenant_id,
                    entry_type="payment_request",
                    payload={
                        "task_id": task_id,
                        "cleaner_id": task.assigned_cleaner_id,
                        "property_id": task.property_id,
                        "amount_cents": task.payment_amount_cents,
                        "currency": PAYMENT_CURRENCY,
                        "description": f"Cleaning task {task_id}",
                    },
                    idempotency_key=f"payment-{task_id}",
                )
            except OutboxWriteError:
                return PaymentRequestResult(
                    success=False,
                    task_id=task_id,
                    error="outbox_write_failed",
                )

            self.ledger.record_task_event(
                tenant_id=tenant_id,
                task_id=task_id,
                event_type="payment.requested",
                request_id=request_id,
                cleaner_id=task.assigned_cleaner_id,
                amount_cents=task.payment_amount_cents,
            )
            logger.info(
                "Payment requested for task %s: %d cents",
                task_id,
                task.payment_amount_cents,
            )
            return PaymentRequestResult(
                success=True,
                task_id=task_id,
                outbox_id=enqueued.entry.outbox_id,
            )
