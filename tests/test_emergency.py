from __future__ import annotations

from collections.abc import Callable
from datetime import timedelta

import allure

from helpers import CHECKOUT, PROPERTY, TENANT
from maid_triage.triage.emergency import EMERGENCY_VENDOR
from maid_triage.triage.models import CleaningTaskView, IncidentSeverity, IncidentType
from maid_triage.triage.services import TriageServices

pytestmark = [
    allure.epic("Cleaning Triage"),
    allure.feature("Emergency Cleaning"),
]

MakeTask = Callable[..., CleaningTaskView]


def test_emergency_attaches_to_next_active_task(
    services: TriageServices,
    make_task: MakeTask,
) -> None:
    task = make_task()

    result = services.emergency.request(
        TENANT,
        PROPERTY,
        CHECKOUT + timedelta(hours=1),
        "guest arriving early",
        idempotency_key="abc",
    )

    assert result.success
    assert result.task_id == task.task_id
    incidents = services.incidents.list_for_task(tenant_id=TENANT, task_id=task.task_id)
    assert [(item.type, item.severity) for item in incidents] == [
        (IncidentType.OTHER, IncidentSeverity.HIGH),
    ]
    keys = {entry.idempotency_key for entry in services.outbox.list_entries(tenant_id=TENANT)}
    assert keys == {f"emergency-clean-{PROPERTY}-abc", f"host-notify-emergency-{task.task_id}-abc"}
    events = services.ledger.find_by_entity_and_type_prefix(task.task_id, "emergency.")
    assert [event.type for event in events] == ["emergency.clean_requested"]


def test_emergency_creates_vendor_task_when_property_is_idle(services: TriageServices) -> None:
    needed_by = CHECKOUT + timedelta(hours=2)

    result = services.emergency.request(TENANT, "prop-9", needed_by, "deep clean")

    assert result.success and result.task_id is not None
    task = services.tasks.get(tenant_id=TENANT, task_id=result.task_id)
    assert task is not None
    assert task.vendor == EMERGENCY_VENDOR
    assert task.scheduled_start_at == needed_by
    assert task.scheduled_end_at == needed_by + timedelta(minutes=120)


def test_repeated_request_with_same_key_orders_once(
    services: TriageServices,
    make_task: MakeTask,
) -> None:
    make_task()

    for _ in range(2):
        services.emergency.request(
            TENANT,
            PROPERTY,
            CHECKOUT,
            "ladder escalation",
            idempotency_key="ladder-emergency-t1",
        )

    orders = services.outbox.list_entries(tenant_id=TENANT, entry_type="emergency_clean_request")
    assert len(orders) == 1
