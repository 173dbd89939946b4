"""No-show escalation ladder.

Timeline, in minutes past the scheduled start of an unconfirmed task::

    T+10  remind the assigned cleaner
    T+20  switch to the backup cleaner
    T+40  request an emergency clean from the marketplace
    T+60  hand over to the host with the no-show runbook

Each executed rung appends a ``ladder.<step>`` ledger event; a sweep only runs
the single highest rung that is due and above every rung already recorded.
A task first seen 70 minutes late therefore goes straight to ``host_manual``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Collection
from datetime import datetime, timedelta

from maid_triage.config import TriageSettings
from maid_triage.storage.common import utc_now
from maid_triage.triage.collaborators import CleanerLookup, EmergencyRequest, IncidentSink
from maid_triage.triage.dispatch import NOTIFY_CLEANER, OUTBOX_WRITE_FAILED, DispatchService
from maid_triage.triage.ledger import EventLedger
from maid_triage.triage.models import (
    BACKUP_PRIORITY,
    CleaningTaskView,
    IncidentSeverity,
    IncidentType,
    LadderRunResult,
    LadderStep,
    LadderStepResult,
)
from maid_triage.triage.outbox import Outbox
from maid_triage.triage.task_store import TaskStore

logger = logging.getLogger(__name__)

LADDER_EVENT_PREFIX = "ladder."
RUNBOOK_PATH = "/docs/RUNBOOK_NO_SHOW.md"
LADDER_ORDER = (
    LadderStep.REMIND_PRIMARY,
    LadderStep.SWITCH_BACKUP,
    LadderStep.EMERGENCY_REQUEST,
    LadderStep.HOST_MANUAL,
)
_STEPS_BY_EVENT_TYPE = {step.event_type: step for step in LADDER_ORDER}
_ERROR_DETAILS = frozenset({"error", OUTBOX_WRITE_FAILED})


def ladder_thresholds(settings: TriageSettings) -> dict[LadderStep, int]:
    return {
        LadderStep.REMIND_PRIMARY: settings.ladder_remind_primary_minutes,
        LadderStep.SWITCH_BACKUP: settings.ladder_switch_backup_minutes,
        LadderStep.EMERGENCY_REQUEST: settings.ladder_emergency_request_minutes,
        LadderStep.HOST_MANUAL: settings.ladder_host_manual_minutes,
    }


def next_ladder_step(
    minutes_late: float,
    done_steps: Collection[LadderStep],
    thresholds: dict[LadderStep, int],
) -> LadderStep | None:
    """Highest due rung above the highest recorded one, or None.

    Rungs below a recorded rung count as done: the ladder never steps down.
    """

    recorded = max((LADDER_ORDER.index(step) for step in done_steps), default=-1)
    for step in reversed(LADDER_ORDER[recorded + 1 :]):
        if minutes_late >= thresholds[step]:
            return step
    return None


class EscalationLadder:
    """Time-indexed recovery for assigned tasks nobody confirmed."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        tasks: TaskStore,
        outbox: Outbox,
        ledger: EventLedger,
        cleaners: CleanerLookup,
        incidents: IncidentSink,
        dispatch: DispatchService,
        emergency: EmergencyRequest,
        settings: TriageSettings | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.tasks = tasks
        self.outbox = outbox
        self.ledger = ledger
        self.cleaners = cleaners
        self.incidents = incidents
        self.dispatch = dispatch
        self.emergency = emergency
        self.settings = settings or TriageSettings()
        self.thresholds = ladder_thresholds(self.settings)
        self._clock = clock

    def run(
        self,
        *,
        now: datetime | None = None,
        tenant_id: str | None = None,
        request_id: str | None = None,
    ) -> LadderRunResult:
        now = now or self._clock()
        with self.ledger.span("run_no_show_ladder", tenant_id=tenant_id, request_id=request_id):
            candidates = self._candidates(now, tenant_id=tenant_id)
            result = LadderRunResult(evaluated=len(candidates))
            for task in candidates:
                try:
                    action = self._advance(task, now=now, request_id=request_id)
                except Exception:  # noqa: BLE001
                    result.errors += 1
                    logger.exception("Ladder evaluation failed for task %s", task.task_id)
                    continue
                if action is None:
                    continue
                if action.detail in _ERROR_DETAILS:
                    result.errors += 1
                result.actions.append(action)

        if result.actions or result.errors:
            logger.info(
                "Ladder sweep: evaluated=%d errors=%d actions=%s",
                result.evaluated,
                result.errors,
                ", ".join(f"{action.task_id}:{action.step.value}" for action in result.actions),
            )
        return result

    def _candidates(self, now: datetime, *, tenant_id: str | None) -> list[CleaningTaskView]:
        """Late unconfirmed tasks plus tasks a ``no_backup`` switch left unassigned."""

        candidates = self.tasks.find_ladder_candidates(now, tenant_id=tenant_id)
        stranded = self.tasks.find_stranded_after_switch(now, tenant_id=tenant_id)
        seen = {task.task_id for task in candidates}
        candidates.extend(task for task in stranded if task.task_id not in seen)
        return candidates

    def _advance(
        self,
        task: CleaningTaskView,
        *,
        now: datetime,
        request_id: str | None,
    ) -> LadderStepResult | None:
        minutes_late = (now - task.scheduled_start_at).total_seconds() / 60
        step = next_ladder_step(minutes_late, self._done_steps(task.task_id), self.thresholds)
        if step is None:
            return None
        return self._execute(step, task, now=now, request_id=request_id)

    def _done_steps(self, task_id: str) -> set[LadderStep]:
        events = self.ledger.find_by_entity_and_type_prefix(task_id, LADDER_EVENT_PREFIX)
        return {
            _STEPS_BY_EVENT_TYPE[event.type]
            for event in events
            if event.type in _STEPS_BY_EVENT_TYPE
        }

    def _execute(
        self,
        step: LadderStep,
        task: CleaningTaskView,
        *,
        now: datetime,
        request_id: str | None,
    ) -> LadderStepResult:
        try:
            if step is LadderStep.REMIND_PRIMARY:
                return self._remind_primary(task, request_id=request_id)
            if step is LadderStep.SWITCH_BACKUP:
                return self._switch_backup(task, request_id=request_id)
            if step is LadderStep.EMERGENCY_REQUEST:
                return self._emergency_request(task, now=now, request_id=request_id)
            return self._host_manual(task, request_id=request_id)
        except Exception:  # noqa: BLE001
            logger.exception("Ladder step %s failed for task %s", step.value, task.task_id)
            return LadderStepResult(task_id=task.task_id, step=step, success=False, detail="error")

    def _remind_primary(
        self,
        task: CleaningTaskView,
        *,
        request_id: str | None,
    ) -> LadderStepResult:
        self.outbox.enqueue(
            tenant_id=task.tenant_id,
            entry_type=NOTIFY_CLEANER,
            payload={
                "cleaner_id": task.assigned_cleaner_id,
                "task_id": task.task_id,
                "property_id": task.property_id,
                "action": "reminder",
                "message": (
                    "You have not confirmed your cleaning assignment. Please check in now."
                ),
            },
            idempotency_key=f"ladder-remind-{task.task_id}",
        )
        self._record(task, LadderStep.REMIND_PRIMARY, request_id=request_id)
        return LadderStepResult(task_id=task.task_id, step=LadderStep.REMIND_PRIMARY, success=True)

    def _switch_backup(
        self,
        task: CleaningTaskView,
        *,
        request_id: str | None,
    ) -> LadderStepResult:
        step = LadderStep.SWITCH_BACKUP
        no_show_cleaner_id = task.assigned_cleaner_id
        backup = self.cleaners.find_cleaner_for_property(
            task.tenant_id,
            task.property_id,
            BACKUP_PRIORITY,
        )
        if backup is not None and backup.cleaner_id == no_show_cleaner_id:
            # The no-show detector already handed the task to the backup.
            self._record(
                task,
                step,
                request_id=request_id,
                backup_cleaner_id=backup.cleaner_id,
                result="backup_already_assigned",
            )
            return LadderStepResult(
                task_id=task.task_id,
                step=step,
                success=True,
                detail=f"backup_already_assigned:{backup.cleaner_id}",
            )

        released = self.tasks.unassign(
            tenant_id=task.tenant_id,
            task_id=task.task_id,
            expected_cleaner_id=no_show_cleaner_id,
            only_unconfirmed=True,
        )
        if not released.ok:
            return LadderStepResult(
                task_id=task.task_id,
                step=step,
                success=False,
                detail=f"claim_failed:{released.detail}",
            )

        self.incidents.create(
            task.tenant_id,
            task.property_id,
            task.task_id,
            IncidentType.NO_SHOW,
            IncidentSeverity.MED,
            f"Primary cleaner ({no_show_cleaner_id}) did not confirm within "
            f"{self.thresholds[step]} minutes of scheduled start. Switching to backup.",
        )

        if backup is not None:
            dispatched = self.dispatch.dispatch_to_backup(
                task.tenant_id,
                task.task_id,
                backup.cleaner_id,
                request_id=request_id,
            )
            if dispatched.success:
                self.outbox.enqueue(
                    tenant_id=task.tenant_id,
                    entry_type="notify_host",
                    payload={
                        "task_id": task.task_id,
                        "property_id": task.property_id,
                        "event": "backup_cleaner_assigned",
                        "backup_cleaner_id": backup.cleaner_id,
                    },
                    idempotency_key=f"ladder-backup-notify-{task.task_id}",
                )
                self._record(
                    task,
                    step,
                    request_id=request_id,
                    backup_cleaner_id=backup.cleaner_id,
                    result="backup_assigned",
                )
                return LadderStepResult(
                    task_id=task.task_id,
                    step=step,
                    success=True,
                    detail=f"backup_assigned:{backup.cleaner_id}",
                )
            if dispatched.error == OUTBOX_WRITE_FAILED:
                # Assignment is stored; the next sweep records backup_already_assigned.
                logger.error(
                    "Task %s assigned to backup %s but its notification was not queued",
                    task.task_id,
                    backup.cleaner_id,
                )
                return LadderStepResult(
                    task_id=task.task_id,
                    step=step,
                    success=False,
                    detail=OUTBOX_WRITE_FAILED,
                )
            logger.warning(
                "Ladder backup dispatch for task %s failed: %s",
                task.task_id,
                dispatched.error,
            )

        # Recorded either way so the next sweep can escalate further.
        self._record(task, step, request_id=request_id, result="no_backup")
        return LadderStepResult(task_id=task.task_id, step=step, success=False, detail="no_backup")

    def _emergency_request(
        self,
        task: CleaningTaskView,
        *,
        now: datetime,
        request_id: str | None,
    ) -> LadderStepResult:
        step = LadderStep.EMERGENCY_REQUEST
        emergency = self.emergency.request(
            task.tenant_id,
            task.property_id,
            now + timedelta(minutes=self.settings.emergency_lead_minutes),
            "No-show ladder escalation: primary and backup cleaners unavailable.",
            request_id=request_id,
            idempotency_key=f"ladder-emergency-{task.task_id}",
        )
        self._record(task, step, request_id=request_id, emergency_result=emergency.success)
        return LadderStepResult(
            task_id=task.task_id,
            step=step,
            success=emergency.success,
            detail=f"incident:{emergency.incident_id}" if emergency.success else emergency.error,
        )

    def _host_manual(
        self,
        task: CleaningTaskView,
        *,
        request_id: str | None,
    ) -> LadderStepResult:
        step = LadderStep.HOST_MANUAL
        self.incidents.create(
            task.tenant_id,
            task.property_id,
            task.task_id,
            IncidentType.OTHER,
            IncidentSeverity.HIGH,
            "All automated escalation steps exhausted. Host must arrange cleaning manually. "
            f"See {RUNBOOK_PATH}.",
        )
        self.outbox.enqueue(
            tenant_id=task.tenant_id,
            entry_type="notify_host",
            payload={
                "task_id": task.task_id,
                "property_id": task.property_id,
                "event": "manual_intervention_needed",
                "message": (
                    "All cleaning options exhausted. Please arrange cleaning manually. "
                    f"Runbook: {RUNBOOK_PATH}"
                ),
            },
            idempotency_key=f"ladder-manual-{task.task_id}",
        )
        self._record(task, step, request_id=request_id)
        return LadderStepResult(task_id=task.task_id, step=step, success=True)

    def _record(
        self,
        task: CleaningTaskView,
        step: LadderStep,
        *,
        request_id: str | None,
        **payload: object,
    ) -> None:
        self.ledger.record_task_event(
            tenant_id=task.tenant_id,
            task_id=task.task_id,
            event_type=step.event_type,
            request_id=request_id,
            **payload,
        )
