from __future__ import annotations

from collections.abc import Callable
from datetime import timedelta

import allure
import pytest

from helpers import CHECKOUT, TENANT, FrozenClock
from maid_triage.config import SweepSettings
from maid_triage.triage.models import CleaningTaskView, LadderStep, TaskStatus
from maid_triage.triage.services import TriageServices
from maid_triage.triage.sweeper import SweepRunner

pytestmark = [
    allure.epic("Cleaning Triage"),
    allure.feature("Sweep Timer"),
]

MakeTask = Callable[..., CleaningTaskView]
SeedCleaners = Callable[..., dict[str, str]]


def _runner(
    services: TriageServices,
    clock: FrozenClock,
    **settings: object,
) -> SweepRunner:
    return SweepRunner(
        no_show=services.no_show,
        ladder=services.ladder,
        settings=SweepSettings(interval_seconds=0.01, **settings),  # type: ignore[arg-type]
        clock=clock,
    )


def test_run_once_runs_detector_then_ladder(
    services: TriageServices,
    make_task: MakeTask,
    seed_cleaners: SeedCleaners,
    clock: FrozenClock,
) -> None:
    cleaners = seed_cleaners()
    task = make_task()
    services.dispatch.dispatch_task(TENANT, task.task_id)

    summary = _runner(services, clock).run_once(now=CHECKOUT + timedelta(minutes=31))

    assert summary.sweeps == 1
    assert (summary.checked, summary.no_shows, summary.backup_assigned) == (1, 1, 1)
    assert summary.ladder_evaluated == 1
    assert [(action.step, action.detail) for action in summary.ladder_actions] == [
        (LadderStep.SWITCH_BACKUP, f"backup_already_assigned:{cleaners['backup']}"),
    ]
    stored = services.tasks.get(tenant_id=TENANT, task_id=task.task_id)
    assert stored is not None
    assert stored.status is TaskStatus.ASSIGNED
    assert stored.assigned_cleaner_id == cleaners["backup"]
    incidents = services.incidents.list_for_task(tenant_id=TENANT, task_id=task.task_id)
    assert len(incidents) == 1


def test_disabled_sweeps_are_skipped(
    services: TriageServices,
    make_task: MakeTask,
    seed_cleaners: SeedCleaners,
    clock: FrozenClock,
) -> None:
    seed_cleaners()
    task = make_task()
    services.dispatch.dispatch_task(TENANT, task.task_id)

    summary = _runner(services, clock, run_no_show=False).run_once(
        now=CHECKOUT + timedelta(minutes=12),
    )

    assert summary.checked == 0
    assert [action.step for action in summary.ladder_actions] == [LadderStep.REMIND_PRIMARY]


def test_run_loop_stops_after_max_sweeps(
    services: TriageServices,
    make_task: MakeTask,
    seed_cleaners: SeedCleaners,
    clock: FrozenClock,
) -> None:
    seed_cleaners()
    task = make_task()
    services.dispatch.dispatch_task(TENANT, task.task_id)
    clock.now = CHECKOUT + timedelta(minutes=11)

    summary = _runner(services, clock).run_loop(max_sweeps=3, tenant_id=TENANT)

    assert summary.sweeps == 3
    assert summary.errors == 0
    assert [action.step for action in summary.ladder_actions] == [LadderStep.REMIND_PRIMARY]


def test_run_loop_counts_failed_sweeps_and_continues(
    services: TriageServices,
    clock: FrozenClock,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    runner = _runner(services, clock)

    def _boom(**_: object) -> None:
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(services.no_show, "run", _boom)

    summary = runner.run_loop(max_sweeps=2)

    assert summary.sweeps == 2
    assert summary.errors == 2


def test_request_stop_ends_loop_before_first_sweep(
    services: TriageServices,
    clock: FrozenClock,
) -> None:
    runner = _runner(services, clock)
    runner.request_stop()

    summary = runner.run_loop()

    assert summary.sweeps == 0
