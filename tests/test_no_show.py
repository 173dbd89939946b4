from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import timedelta

import allure
import pytest

from helpers import CHECKOUT, PROPERTY, TENANT
from maid_triage.errors import OutboxWriteError
from maid_triage.triage.models import (
    CleanerStatus,
    CleaningTaskView,
    IncidentType,
    TaskStatus,
)
from maid_triage.triage.services import TriageServices

pytestmark = [
    allure.epic("Cleaning Triage"),
    allure.feature("No-Show Detector"),
]

MakeTask = Callable[..., CleaningTaskView]
SeedCleaners = Callable[..., dict[str, str]]

PAST_DEADLINE = CHECKOUT + timedelta(minutes=31)


def _dispatched_task(services: TriageServices, make_task: MakeTask, **kwargs) -> CleaningTaskView:
    task = make_task(**kwargs)
    assert services.dispatch.dispatch_task(TENANT, task.task_id).success
    return task


def _incident_types(services: TriageServices, task_id: str) -> list[IncidentType]:
    return [
        incident.type
        for incident in services.incidents.list_for_task(tenant_id=TENANT, task_id=task_id)
    ]


def test_unconfirmed_task_moves_to_backup(
    services: TriageServices,
    make_task: MakeTask,
    seed_cleaners: SeedCleaners,
) -> None:
    cleaners = seed_cleaners()
    task = _dispatched_task(services, make_task)

    result = services.no_show.run(now=PAST_DEADLINE)

    assert (result.checked, result.no_shows, result.backup_assigned) == (1, 1, 1)
    assert result.manual_needed == 0
    stored = services.tasks.get(tenant_id=TENANT, task_id=task.task_id)
    assert stored is not None
    assert stored.status is TaskStatus.ASSIGNED
    assert stored.assigned_cleaner_id == cleaners["backup"]
    assert stored.confirmed_at is None
    assert _incident_types(services, task.task_id) == [IncidentType.NO_SHOW]

    host_notice = services.outbox.find_by_idempotency_key(
        f"host-notify-backup-{task.task_id}-{cleaners['primary']}",
    )
    assert host_notice is not None
    assert host_notice.payload["backup_cleaner_id"] == cleaners["backup"]
    event_types = [
        event.type for event in services.ledger.find_by_entity_and_type_prefix(task.task_id, "")
    ]
    assert "incident.no_show" in event_types
    assert "task.backup_assigned" in event_types


def test_task_within_deadline_is_left_alone(
    services: TriageServices,
    make_task: MakeTask,
    seed_cleaners: SeedCleaners,
) -> None:
    seed_cleaners()
    task = _dispatched_task(services, make_task)

    result = services.no_show.run(now=CHECKOUT + timedelta(minutes=29))

    assert result.checked == 0
    assert _incident_types(services, task.task_id) == []


def test_confirmed_task_is_not_a_no_show(
    services: TriageServices,
    make_task: MakeTask,
    seed_cleaners: SeedCleaners,
) -> None:
    seed_cleaners()
    task = _dispatched_task(services, make_task)
    services.dispatch.accept_task(TENANT, task.task_id)

    assert services.no_show.run(now=PAST_DEADLINE).checked == 0


def test_missing_backup_escalates_to_host(
    services: TriageServices,
    make_task: MakeTask,
    seed_cleaners: SeedCleaners,
) -> None:
    cleaners = seed_cleaners()
    services.cleaners.set_status(
        tenant_id=TENANT,
        cleaner_id=cleaners["backup"],
        status=CleanerStatus.INACTIVE,
    )
    task = _dispatched_task(services, make_task)

    result = services.no_show.run(now=PAST_DEADLINE, tenant_id=TENANT)

    assert (result.no_shows, result.backup_assigned, result.manual_needed) == (1, 0, 1)
    stored = services.tasks.get(tenant_id=TENANT, task_id=task.task_id)
    assert stored is not None
    assert stored.status is TaskStatus.SCHEDULED
    assert stored.assigned_cleaner_id is None
    assert sorted(_incident_types(services, task.task_id)) == [
        IncidentType.NO_SHOW,
        IncidentType.OTHER,
    ]
    manual = services.outbox.find_by_idempotency_key(
        f"host-notify-manual-{task.task_id}-{cleaners['primary']}",
    )
    assert manual is not None
    assert manual.payload["event"] == "manual_intervention_needed"


def test_backup_equal_to_no_show_cleaner_is_not_reused(
    services: TriageServices,
    make_task: MakeTask,
    seed_cleaners: SeedCleaners,
) -> None:
    cleaners = seed_cleaners(backup=False)
    services.cleaners.link_property(
        tenant_id=TENANT,
        cleaner_id=cleaners["primary"],
        property_id=PROPERTY,
        priority=2,
    )
    _dispatched_task(services, make_task)

    result = services.no_show.run(now=PAST_DEADLINE)

    assert (result.backup_assigned, result.manual_needed) == (0, 1)


def test_rerun_does_not_duplicate_incidents(
    services: TriageServices,
    make_task: MakeTask,
    seed_cleaners: SeedCleaners,
) -> None:
    seed_cleaners()
    task = _dispatched_task(services, make_task)

    services.no_show.run(now=PAST_DEADLINE)
    services.dispatch.accept_task(TENANT, task.task_id)
    rerun = services.no_show.run(now=PAST_DEADLINE + timedelta(minutes=1))

    assert rerun.no_shows == 0
    assert _incident_types(services, task.task_id) == [IncidentType.NO_SHOW]


def test_sweep_is_tenant_scoped(
    services: TriageServices,
    make_task: MakeTask,
    seed_cleaners: SeedCleaners,
) -> None:
    seed_cleaners()
    _dispatched_task(services, make_task)

    result = services.no_show.run(now=PAST_DEADLINE, tenant_id="tenant-b")

    assert result.checked == 0


def test_failure_on_one_task_does_not_stop_the_sweep(
    services: TriageServices,
    make_task: MakeTask,
    seed_cleaners: SeedCleaners,
    monkeypatch: pytest.MonkeyPatch,
    caplog: pytest.LogCaptureFixture,
) -> None:
    seed_cleaners()
    other_cleaners = seed_cleaners(property_id="prop-2")
    broken = _dispatched_task(services, make_task)
    healthy = _dispatched_task(services, make_task, property_id="prop-2")
    create_incident = services.incidents.create

    def _create(tenant_id, property_id, task_id, *args, **kwargs):
        if task_id == broken.task_id:
            raise RuntimeError("database is locked")
        return create_incident(tenant_id, property_id, task_id, *args, **kwargs)

    monkeypatch.setattr(services.incidents, "create", _create)

    with caplog.at_level(logging.ERROR, logger="maid_triage.triage.no_show"):
        result = services.no_show.run(now=PAST_DEADLINE)

    assert (result.checked, result.errors, result.backup_assigned) == (2, 1, 1)
    stored = services.tasks.get(tenant_id=TENANT, task_id=healthy.task_id)
    assert stored is not None
    assert stored.assigned_cleaner_id == other_cleaners["backup"]
    assert any(
        broken.task_id in record.getMessage() and "released" in record.getMessage()
        for record in caplog.records
    )


def test_backup_notification_failure_is_an_error_not_a_missing_backup(
    services: TriageServices,
    make_task: MakeTask,
    seed_cleaners: SeedCleaners,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    cleaners = seed_cleaners()
    task = _dispatched_task(services, make_task)
    enqueue = services.outbox.enqueue

    def _enqueue(**kwargs):
        if kwargs["idempotency_key"].startswith("backup-dispatch"):
            raise OutboxWriteError("outbox unavailable")
        return enqueue(**kwargs)

    monkeypatch.setattr(services.outbox, "enqueue", _enqueue)

    result = services.no_show.run(now=PAST_DEADLINE)

    assert (result.no_shows, result.errors, result.manual_needed) == (1, 1, 0)
    stored = services.tasks.get(tenant_id=TENANT, task_id=task.task_id)
    assert stored is not None
    assert stored.status is TaskStatus.ASSIGNED
    assert stored.assigned_cleaner_id == cleaners["backup"]
    assert _incident_types(services, task.task_id) == [IncidentType.NO_SHOW]
    assert (
        services.outbox.find_by_idempotency_key(
            f"host-notify-manual-{task.task_id}-{cleaners['primary']}",
        )
        is None
    )
