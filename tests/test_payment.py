from __future__ import annotations

from collections.abc import Callable

import allure

from helpers import TENANT
from maid_triage.triage.models import CleaningTaskView, PaymentStatus, TaskStatus
from maid_triage.triage.services import TriageServices

pytestmark = [
    allure.epic("Cleaning Triage"),
    allure.feature("Payment Requests"),
]

MakeTask = Callable[..., CleaningTaskView]


def _completed_task(services: TriageServices, make_task: MakeTask, **kwargs) -> CleaningTaskView:
    task = make_task(**kwargs)
    services.tasks.assign_cleaner(tenant_id=TENANT, task_id=task.task_id, cleaner_id="c1")
    for status in (TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED):
        services.tasks.transition(tenant_id=TENANT, task_id=task.task_id, to_status=status)
    return task


def test_payment_is_requested_once(services: TriageServices, make_task: MakeTask) -> None:
    task = _completed_task(services, make_task)

    first = services.payments.request(TENANT, task.task_id)
    second = services.payments.request(TENANT, task.task_id)

    assert first.success and first.outbox_id is not None
    assert not second.success
    assert second.error == "payment_already_requested"
    entry = services.outbox.get(first.outbox_id)
    assert entry is not None
    assert entry.payload["currency"] == "USD"
    assert len(services.outbox.list_entries(entry_type="payment_request")) == 1


def test_payment_requires_completed_task(services: TriageServices, make_task: MakeTask) -> None:
    task = make_task()

    result = services.payments.request(TENANT, task.task_id)

    assert result.error == "task_not_completed:scheduled"
    stored = services.tasks.get(tenant_id=TENANT, task_id=task.task_id)
    assert stored is not None and stored.payment_status is PaymentStatus.NONE


def test_payment_requires_amount(services: TriageServices, make_task: MakeTask) -> None:
    task = _completed_task(services, make_task, amount_cents=0)

    assert services.payments.request(TENANT, task.task_id).error == "no_payment_amount"


def test_payment_for_unknown_task(services: TriageServices) -> None:
    assert services.payments.request(TENANT, "missing").error == "task_not_found"
