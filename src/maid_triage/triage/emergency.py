"""Emergency cleaning requests to the marketplace vendor."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from uuid import uuid4

from maid_triage.errors import OutboxWriteError
from maid_triage.triage.collaborators import IncidentSink
from maid_triage.triage.ledger import EventLedger
from maid_triage.triage.models import (
    CleaningTaskCreate,
    EmergencyRequestResult,
    IncidentSeverity,
    IncidentType,
)
from maid_triage.triage.outbox import Outbox
from maid_triage.triage.task_store import TaskStore

logger = logging.getLogger(__name__)

EMERGENCY_VENDOR = "handy"


class EmergencyService:
    """Request an emergency clean for a property.

    The request is attached to the property's next active task, or to a new
    task created for the emergency vendor when none exists.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        tasks: TaskStore,
        outbox: Outbox,
        ledger: EventLedger,
        incidents: IncidentSink,
        window_minutes: int = 120,
    ) -> None:
        self.tasks = tasks
        self.outbox = outbox
        self.ledger = ledger
        self.incidents = incidents
        self.window_minutes = window_minutes

    def request(  # noqa: PLR0913
        self,
        tenant_id: str,
        property_id: str,
        needed_by: datetime,
        reason: str,
        *,
        request_id: str | None = None,
        idempotency_key: str | None = None,
    ) -> EmergencyRequestResult:
        """Create the incident and queue marketplace and host notifications.

        ``idempotency_key`` pins the outbox keys so a repeated request does not
        produce a second marketplace order.
        """

        with self.ledger.span(
            "request_emergency_cleaning",
            tenant_id=tenant_id,
            request_id=request_id,
        ):
            task_id = self._resolve_task_id(tenant_id, property_id, needed_by)
            if task_id is None:
                return EmergencyRequestResult(success=False, error="task_create_failed")

            needed_by_iso = needed_by.isoformat()
            incident = self.incidents.create(
                tenant_id,
                property_id,
                task_id,
                IncidentType.OTHER,
                IncidentSeverity.HIGH,
                f"Emergency cleaning requested. Reason: {reason}. Needed by: {needed_by_iso}.",
            )

            suffix = idempotency_key or uuid4().hex[:8]
            try:
                order = self.outbox.enqueue(
                    tenant_id=tenant_id,
                    entry_type="emergency_clean_request",
                    payload={
                        "property_id": property_id,
                        "task_id": task_id,
                        "needed_by": needed_by_iso,
                        "reason": reason,
                    },
                    idempotency_key=f"emergency-clean-{property_id}-{suffix}",
                )
                self.outbox.enqueue(
                    tenant_id=tenant_id,
                    entry_type="notify_host",
                    payload={
                        "property_id": property_id,
                        "task_id": task_id,
                        "event": "emergency_clean_requested",
                        "reason": reason,
                        "needed_by": needed_by_iso,
                    },
                    idempotency_key=f"host-notify-emergency-{task_id}-{suffix}",
                )
            except OutboxWriteError:
                return EmergencyRequestResult(
                    success=False,
                    task_id=task_id,
                    incident_id=incident.incident_id,
                    error="outbox_write_failed",
                )

            self.ledger.record_task_event(
                tenant_id=tenant_id,
                task_id=task_id,
                event_type="emergency.clean_requested",
                request_id=request_id,
                property_id=property_id,
                reason=reason,
                needed_by=needed_by_iso,
            )
            logger.warning(
                "Emergency cleaning requested for property %s (task=%s): %s",
                property_id,
                task_id,
                reason,
            )
            return EmergencyRequestResult(
                success=True,
                task_id=task_id,
                incident_id=incident.incident_id,
                outbox_id=order.entry.outbox_id,
            )

    def _resolve_task_id(
        self,
        tenant_id: str,
        property_id: str,
        needed_by: datetime,
    ) -> str | None:
        active = self.tasks.find_next_active(tenant_id=tenant_id, property_id=property_id)
        if active is not None:
            return active.task_id

        created = self.tasks.create(
            CleaningTaskCreate(
                tenant_id=tenant_id,
                property_id=property_id,
                scheduled_start_at=needed_by,
                scheduled_end_at=needed_by + timedelta(minutes=self.window_minutes),
                vendor=EMERGENCY_VENDOR,
            ),
        )
        if not created.ok:
            logger.error(
                "Could not create emergency task for property %s: %s",
                property_id,
                created.detail,
            )
            return None
        return created.task_id
