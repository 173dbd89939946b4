"""No-show detection: release unconfirmed assignments and hand them to backups."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from maid_triage.storage.common import utc_now
from maid_triage.triage.collaborators import CleanerLookup, IncidentSink
from maid_triage.triage.dispatch import OUTBOX_WRITE_FAILED, DispatchService
from maid_triage.triage.ledger import EventLedger
from maid_triage.triage.models import (
    BACKUP_PRIORITY,
    CleaningTaskView,
    IncidentSeverity,
    IncidentType,
    NoShowCheckResult,
)
from maid_triage.triage.outbox import Outbox
from maid_triage.triage.task_store import TaskStore

logger = logging.getLogger(__name__)

MANUAL_INTERVENTION_MESSAGE = (
    "Primary cleaner no-show and no backup available. Please arrange cleaning manually."
)


class NoShowDetector:
    """Periodic sweep over assigned tasks nobody confirmed in time.

    The confirm deadline is measured from the scheduled start, not from the
    moment of assignment.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        tasks: TaskStore,
        outbox: Outbox,
        ledger: EventLedger,
        cleaners: CleanerLookup,
        incidents: IncidentSink,
        dispatch: DispatchService,
        confirm_timeout_minutes: int = 30,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.tasks = tasks
        self.outbox = outbox
        self.ledger = ledger
        self.cleaners = cleaners
        self.incidents = incidents
        self.dispatch = dispatch
        self.confirm_timeout_minutes = confirm_timeout_minutes
        self._clock = clock

    def run(
        self,
        *,
        now: datetime | None = None,
        tenant_id: str | None = None,
        request_id: str | None = None,
    ) -> NoShowCheckResult:
        now = now or self._clock()
        deadline = now - timedelta(minutes=self.confirm_timeout_minutes)
        with self.ledger.span("check_for_no_shows", tenant_id=tenant_id, request_id=request_id):
            candidates = self.tasks.find_unconfirmed_past_deadline(deadline, tenant_id=tenant_id)
            result = NoShowCheckResult(checked=len(candidates))
            for task in candidates:
                try:
                    self._handle(task, result=result, request_id=request_id)
                except Exception:  # noqa: BLE001
                    result.errors += 1
                    logger.exception("No-show handling failed for task %s", task.task_id)

        if result.no_shows or result.errors:
            logger.info(
                "No-show sweep: checked=%d no_shows=%d backup_assigned=%d manual_needed=%d "
                "errors=%d",
                result.checked,
                result.no_shows,
                result.backup_assigned,
                result.manual_needed,
                result.errors,
            )
        return result

    def _handle(
        self,
        task: CleaningTaskView,
        *,
        result: NoShowCheckResult,
        request_id: str | None,
    ) -> None:
        no_show_cleaner_id = task.assigned_cleaner_id
        released = self.tasks.unassign(
            tenant_id=task.tenant_id,
            task_id=task.task_id,
            expected_cleaner_id=no_show_cleaner_id,
            only_unconfirmed=True,
        )
        if not released.ok:
            logger.info(
                "Task %s changed since it was selected (%s); skipping",
                task.task_id,
                released.detail,
            )
            return

        result.no_shows += 1
        try:
            self._recover(task, no_show_cleaner_id, result=result, request_id=request_id)
        except Exception:
            logger.error(
                "Task %s was released from cleaner %s but no-show follow-up failed; "
                "check its assignment and notify the host manually",
                task.task_id,
                no_show_cleaner_id,
            )
            raise

    def _recover(
        self,
        task: CleaningTaskView,
        no_show_cleaner_id: str | None,
        *,
        result: NoShowCheckResult,
        request_id: str | None,
    ) -> None:
        self.incidents.create(
            task.tenant_id,
            task.property_id,
            task.task_id,
            IncidentType.NO_SHOW,
            IncidentSeverity.MED,
            f"Primary cleaner ({no_show_cleaner_id}) did not confirm within "
            f"{self.confirm_timeout_minutes} minutes.",
        )
        self.ledger.record_task_event(
            tenant_id=task.tenant_id,
            task_id=task.task_id,
            event_type="incident.no_show",
            request_id=request_id,
            cleaner_id=no_show_cleaner_id,
        )

        backup = self.cleaners.find_cleaner_for_property(
            task.tenant_id,
            task.property_id,
            BACKUP_PRIORITY,
        )
        if backup is not None and backup.cleaner_id != no_show_cleaner_id:
            dispatched = self.dispatch.dispatch_to_backup(
                task.tenant_id,
                task.task_id,
                backup.cleaner_id,
                request_id=request_id,
            )
            if dispatched.success:
                result.backup_assigned += 1
                self.outbox.enqueue(
                    tenant_id=task.tenant_id,
                    entry_type="notify_host",
                    payload={
                        "task_id": task.task_id,
                        "property_id": task.property_id,
                        "event": "backup_cleaner_assigned",
                        "backup_cleaner_id": backup.cleaner_id,
                    },
                    idempotency_key=f"host-notify-backup-{task.task_id}-{no_show_cleaner_id}",
                )
                return
            if dispatched.error == OUTBOX_WRITE_FAILED:
                # The backup holds the task; only its notification is missing.
                result.errors += 1
                logger.error(
                    "Task %s assigned to backup %s but its notification was not queued",
                    task.task_id,
                    backup.cleaner_id,
                )
                return
            logger.warning(
                "Backup dispatch for task %s failed: %s",
                task.task_id,
                dispatched.error,
            )

        result.manual_needed += 1
        self.incidents.create(
            task.tenant_id,
            task.property_id,
            task.task_id,
            IncidentType.OTHER,
            IncidentSeverity.HIGH,
            "No backup cleaner available. Manual intervention required.",
        )
        self.outbox.enqueue(
            tenant_id=task.tenant_id,
            entry_type="notify_host",
            payload={
                "task_id": task.task_id,
                "property_id": task.property_id,
                "event": "manual_intervention_needed",
                "message": MANUAL_INTERVENTION_MESSAGE,
            },
            idempotency_key=f"host-notify-manual-{task.task_id}-{no_show_cleaner_id}",
        )
        self.ledger.record_task_event(
            tenant_id=task.tenant_id,
            task_id=task.task_id,
            event_type="incident.manual_needed",
            request_id=request_id,
            reason="no_backup_cleaner",
        )
