"""Cleaning task persistence with compare-and-swap state transitions."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import exists
from sqlalchemy import update as sa_update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from maid_triage.storage.common import (
    optional_utc,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from maid_triage.storage.sqlmodel_models import CleaningTask, LedgerEvent
from maid_triage.triage.models import (
    CleaningTaskCreate,
    CleaningTaskView,
    LadderStep,
    PaymentStatus,
    TaskErrorCode,
    TaskMutationResult,
    TaskStatus,
    is_valid_transition,
)

logger = logging.getLogger(__name__)

MAX_CAS_ATTEMPTS = 3
ACTIVE_STATUSES = (TaskStatus.SCHEDULED, TaskStatus.ASSIGNED, TaskStatus.IN_PROGRESS)
RESCHEDULABLE_STATUSES = frozenset({TaskStatus.SCHEDULED, TaskStatus.ASSIGNED})

# Returns the error for the observed row, or None when the mutation may proceed.
_Check = Callable[[CleaningTask, TaskStatus], TaskErrorCode | None]


class TaskStore:
    """Tenant-scoped task persistence that owns the task state machine.

    Every mutation is a single conditional ``UPDATE`` keyed on the status read
    just before it. When another writer wins the race the row is re-read and
    the mutation re-validated, up to ``MAX_CAS_ATTEMPTS`` times.
    """

    def __init__(self, engine: Engine, *, clock: Callable[[], datetime] = utc_now) -> None:
        self.engine = engine
        self._clock = clock

    def create(self, payload: CleaningTaskCreate) -> TaskMutationResult:
        """Create a task in ``scheduled`` status."""

        if payload.scheduled_end_at < payload.scheduled_start_at:
            raise ValueError("scheduled_end_at must not be earlier than scheduled_start_at")

        now = to_db_datetime(self._clock())
        task_id = payload.task_id or str(uuid4())
        with Session(self.engine) as session:
            row = CleaningTask(
                task_id=task_id,
                tenant_id=payload.tenant_id,
                property_id=payload.property_id,
                booking_id=payload.booking_id,
                scheduled_start_at=to_db_datetime(payload.scheduled_start_at),
                scheduled_end_at=to_db_datetime(payload.scheduled_end_at),
                status=TaskStatus.SCHEDULED.value,
                payment_status=PaymentStatus.NONE.value,
                payment_amount_cents=payload.payment_amount_cents,
                vendor=payload.vendor,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                logger.info(
                    "Task for booking %s already exists (tenant=%s)",
                    payload.booking_id,
                    payload.tenant_id,
                )
                return TaskMutationResult(
                    ok=False,
                    task_id=task_id,
                    error=TaskErrorCode.DUPLICATE_BOOKING,
                )
            session.refresh(row)
            return TaskMutationResult(
                ok=True,
                task_id=task_id,
                task=_to_task_view(row),
                to_status=TaskStatus.SCHEDULED,
            )

    def get(self, *, tenant_id: str, task_id: str) -> CleaningTaskView | None:
        with Session(self.engine) as session:
            row = _select_task(session, tenant_id=tenant_id, task_id=task_id)
            return _to_task_view(row) if row is not None else None

    def find_by_booking_id(self, *, tenant_id: str, booking_id: str) -> CleaningTaskView | None:
        """Return the non-canceled task linked to a booking."""

        with Session(self.engine) as session:
            row = session.exec(
                select(CleaningTask).where(
                    CleaningTask.tenant_id == tenant_id,
                    CleaningTask.booking_id == booking_id,
                    CleaningTask.status != TaskStatus.CANCELED.value,
                ),
            ).first()
            return _to_task_view(row) if row is not None else None

    def find_next_active(self, *, tenant_id: str, property_id: str) -> CleaningTaskView | None:
        """Earliest scheduled/assigned/in-progress task for a property."""

        with Session(self.engine) as session:
            row = session.exec(
                select(CleaningTask)
                .where(
                    CleaningTask.tenant_id == tenant_id,
                    CleaningTask.property_id == property_id,
                    col(CleaningTask.status).in_([status.value for status in ACTIVE_STATUSES]),
                )
                .order_by(col(CleaningTask.scheduled_start_at).asc())
                .limit(1),
            ).first()
            return _to_task_view(row) if row is not None else None

    def list_tasks(  # noqa: PLR0913
        self,
        *,
        tenant_id: str,
        property_id: str | None = None,
        status: TaskStatus | None = None,
        start_from: datetime | None = None,
        start_to: datetime | None = None,
        limit: int = 100,
    ) -> list[CleaningTaskView]:
        statement = select(CleaningTask).where(CleaningTask.tenant_id == tenant_id)
        if property_id is not None:
            statement = statement.where(CleaningTask.property_id == property_id)
        if status is not None:
            statement = statement.where(CleaningTask.status == status.value)
        if start_from is not None:
            statement = statement.where(
                col(CleaningTask.scheduled_start_at) >= to_db_datetime(start_from),
            )
        if start_to is not None:
            statement = statement.where(
                col(CleaningTask.scheduled_start_at) <= to_db_datetime(start_to),
            )
        statement = statement.order_by(col(CleaningTask.scheduled_start_at).asc()).limit(limit)
        with Session(self.engine) as session:
            rows = session.exec(statement).all()
        return [_to_task_view(row) for row in rows]

    def find_unconfirmed_past_deadline(
        self,
        confirm_deadline: datetime,
        *,
        tenant_id: str | None = None,
    ) -> list[CleaningTaskView]:
        """Assigned, unconfirmed tasks whose scheduled start is at or before the deadline."""

        return self._find_assigned_unconfirmed(started_by=confirm_deadline, tenant_id=tenant_id)

    def find_ladder_candidates(
        self,
        now: datetime,
        *,
        tenant_id: str | None = None,
    ) -> list[CleaningTaskView]:
        """Assigned, unconfirmed tasks already past their scheduled start."""

        return self._find_assigned_unconfirmed(started_by=now, tenant_id=tenant_id)

    def find_stranded_after_switch(
        self,
        now: datetime,
        *,
        tenant_id: str | None = None,
    ) -> list[CleaningTaskView]:
        """Scheduled tasks past their start that a ladder backup switch left unassigned."""

        switched = exists().where(
            col(LedgerEvent.entity_id) == col(CleaningTask.task_id),
            col(LedgerEvent.type) == LadderStep.SWITCH_BACKUP.event_type,
        )
        statement = select(CleaningTask).where(
            CleaningTask.status == TaskStatus.SCHEDULED.value,
            col(CleaningTask.scheduled_start_at) <= to_db_datetime(now),
            switched,
        )
        if tenant_id is not None:
            statement = statement.where(CleaningTask.tenant_id == tenant_id)
        statement = statement.order_by(col(CleaningTask.scheduled_start_at).asc())
        with Session(self.engine) as session:
            rows = session.exec(statement).all()
        return [_to_task_view(row) for row in rows]

    def assign_cleaner(
        self,
        *,
        tenant_id: str,
        task_id: str,
        cleaner_id: str,
    ) -> TaskMutationResult:
        """Assign a cleaner to a scheduled task (scheduled -> assigned)."""

        return self._mutate(
            tenant_id=tenant_id,
            task_id=task_id,
            to_status=TaskStatus.ASSIGNED,
            check=_transition_check(TaskStatus.ASSIGNED),
            values=lambda _row, _now: {
                "status": TaskStatus.ASSIGNED.value,
                "assigned_cleaner_id": cleaner_id,
                "confirmed_at": None,
            },
        )

    def confirm(
        self,
        *,
        tenant_id: str,
        task_id: str,
        cleaner_id: str | None = None,
    ) -> TaskMutationResult:
        """Record the assignee's confirmation; status stays ``assigned``.

        When ``cleaner_id`` is given the confirmation only applies to that assignee.
        """

        def check(row: CleaningTask, current: TaskStatus) -> TaskErrorCode | None:
            if current is not TaskStatus.ASSIGNED:
                return TaskErrorCode.INVALID_TRANSITION
            if cleaner_id is not None and row.assigned_cleaner_id != cleaner_id:
                return TaskErrorCode.PRECONDITION_FAILED
            return None

        conditions = []
        if cleaner_id is not None:
            conditions.append(col(CleaningTask.assigned_cleaner_id) == cleaner_id)
        return self._mutate(
            tenant_id=tenant_id,
            task_id=task_id,
            to_status=TaskStatus.ASSIGNED,
            check=check,
            values=lambda _row, now: {"confirmed_at": now},
            conditions=conditions,
        )

    def transition(
        self,
        *,
        tenant_id: str,
        task_id: str,
        to_status: TaskStatus,
    ) -> TaskMutationResult:
        """Move a task along the state machine."""

        def values(_row: CleaningTask, now: datetime) -> dict[str, Any]:
            changes: dict[str, Any] = {"status": to_status.value}
            if to_status is TaskStatus.COMPLETED:
                changes["completed_at"] = now
            if to_status is TaskStatus.SCHEDULED:
                changes["assigned_cleaner_id"] = None
                changes["confirmed_at"] = None
            return changes

        return self._mutate(
            tenant_id=tenant_id,
            task_id=task_id,
            to_status=to_status,
            check=_transition_check(to_status),
            values=values,
        )

    def unassign(
        self,
        *,
        tenant_id: str,
        task_id: str,
        expected_cleaner_id: str | None = None,
        only_unconfirmed: bool = False,
    ) -> TaskMutationResult:
        """Return an assigned task to ``scheduled``, clearing assignee and confirmation.

        Sweeps pass ``expected_cleaner_id`` and ``only_unconfirmed`` so they only
        release the exact unconfirmed assignment they observed.
        """

        def check(row: CleaningTask, current: TaskStatus) -> TaskErrorCode | None:
            if current is not TaskStatus.ASSIGNED:
                return TaskErrorCode.INVALID_TRANSITION
            if expected_cleaner_id is not None and row.assigned_cleaner_id != expected_cleaner_id:
                return TaskErrorCode.PRECONDITION_FAILED
            if only_unconfirmed and row.confirmed_at is not None:
                return TaskErrorCode.PRECONDITION_FAILED
            return None

        conditions = []
        if expected_cleaner_id is not None:
            conditions.append(col(CleaningTask.assigned_cleaner_id) == expected_cleaner_id)
        if only_unconfirmed:
            conditions.append(col(CleaningTask.confirmed_at).is_(None))
        return self._mutate(
            tenant_id=tenant_id,
            task_id=task_id,
            to_status=TaskStatus.SCHEDULED,
            check=check,
            values=lambda _row, _now: {
                "status": TaskStatus.SCHEDULED.value,
                "assigned_cleaner_id": None,
                "confirmed_at": None,
            },
            conditions=conditions,
        )

    def reschedule(
        self,
        *,
        tenant_id: str,
        task_id: str,
        scheduled_start_at: datetime,
        scheduled_end_at: datetime,
    ) -> TaskMutationResult:
        """Move the scheduled window of a task that has not started yet."""

        if scheduled_end_at < scheduled_start_at:
            raise ValueError("scheduled_end_at must not be earlier than scheduled_start_at")

        def check(_row: CleaningTask, current: TaskStatus) -> TaskErrorCode | None:
            if current not in RESCHEDULABLE_STATUSES:
                return TaskErrorCode.INVALID_TRANSITION
            return None

        return self._mutate(
            tenant_id=tenant_id,
            task_id=task_id,
            to_status=None,
            check=check,
            values=lambda _row, _now: {
                "scheduled_start_at": to_db_datetime(scheduled_start_at),
                "scheduled_end_at": to_db_datetime(scheduled_end_at),
            },
        )

    def update_payment_status(
        self,
        *,
        tenant_id: str,
        task_id: str,
        expected: PaymentStatus,
        to: PaymentStatus,
    ) -> TaskMutationResult:
        """Compare-and-swap the payment status of a task."""

        now = to_db_datetime(self._clock())
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(CleaningTask)
                .where(
                    col(CleaningTask.task_id) == task_id,
                    col(CleaningTask.tenant_id) == tenant_id,
                    col(CleaningTask.payment_status) == expected.value,
                )
                .values(payment_status=to.value, updated_at=now),
            )
            if result.rowcount != 1:
                session.rollback()
                row = _select_task(session, tenant_id=tenant_id, task_id=task_id)
                return TaskMutationResult(
                    ok=False,
                    task_id=task_id,
                    task=_to_task_view(row) if row is not None else None,
                    error=(
                        TaskErrorCode.NOT_FOUND
                        if row is None
                        else TaskErrorCode.PRECONDITION_FAILED
                    ),
                )
            session.commit()
            row = _select_task(session, tenant_id=tenant_id, task_id=task_id)
            return TaskMutationResult(
                ok=True,
                task_id=task_id,
                task=_to_task_view(row) if row is not None else None,
            )

    def _find_assigned_unconfirmed(
        self,
        *,
        started_by: datetime,
        tenant_id: str | None,
    ) -> list[CleaningTaskView]:
        statement = select(CleaningTask).where(
            CleaningTask.status == TaskStatus.ASSIGNED.value,
            col(CleaningTask.confirmed_at).is_(None),
            col(CleaningTask.scheduled_start_at) <= to_db_datetime(started_by),
        )
        if tenant_id is not None:
            statement = statement.where(CleaningTask.tenant_id == tenant_id)
        statement = statement.order_by(col(CleaningTask.scheduled_start_at).asc())
        with Session(self.engine) as session:
            rows = session.exec(statement).all()
        return [_to_task_view(row) for row in rows]

    def _mutate(  # noqa: PLR0913
        self,
        *,
        tenant_id: str,
        task_id: str,
        to_status: TaskStatus | None,
        check: _Check,
        values: Callable[[CleaningTask, datetime], dict[str, Any]],
        conditions: list[Any] | None = None,
    ) -> TaskMutationResult:
        for _ in range(MAX_CAS_ATTEMPTS):
            now = to_db_datetime(self._clock())
            with Session(self.engine) as session:
                row = _select_task(session, tenant_id=tenant_id, task_id=task_id)
                if row is None:
                    return TaskMutationResult(
                        ok=False,
                        task_id=task_id,
                        error=TaskErrorCode.NOT_FOUND,
                        to_status=to_status,
                    )

                current = TaskStatus(row.status)
                error = check(row, current)
                if error is not None:
                    return TaskMutationResult(
                        ok=False,
                        task_id=task_id,
                        task=_to_task_view(row),
                        error=error,
                        from_status=current,
                        to_status=to_status,
                    )

                result = session.exec(
                    sa_update(CleaningTask)
                    .where(
                        col(CleaningTask.task_id) == task_id,
                        col(CleaningTask.tenant_id) == tenant_id,
                        col(CleaningTask.status) == current.value,
                        *(conditions or []),
                    )
                    .values(**values(row, now), updated_at=now),
                )
                if result.rowcount != 1:
                    session.rollback()
                    logger.debug("Task %s changed concurrently; re-reading", task_id)
                    continue

                session.commit()
                session.refresh(row)
                return TaskMutationResult(
                    ok=True,
                    task_id=task_id,
                    task=_to_task_view(row),
                    from_status=current,
                    to_status=to_status or current,
                )

        logger.warning("Task %s kept changing concurrently; giving up", task_id)
        return TaskMutationResult(
            ok=False,
            task_id=task_id,
            error=TaskErrorCode.CONCURRENT_UPDATE,
            to_status=to_status,
        )


def _transition_check(to_status: TaskStatus) -> _Check:
    def check(_row: CleaningTask, current: TaskStatus) -> TaskErrorCode | None:
        if not is_valid_transition(current, to_status):
            return TaskErrorCode.INVALID_TRANSITION
        return None

    return check


def _select_task(session: Session, *, tenant_id: str, task_id: str) -> CleaningTask | None:
    return session.exec(
        select(CleaningTask).where(
            CleaningTask.task_id == task_id,
            CleaningTask.tenant_id == tenant_id,
        ),
    ).one_or_none()


def _to_task_view(row: CleaningTask) -> CleaningTaskView:
    return CleaningTaskView(
        task_id=row.task_id,
        tenant_id=row.tenant_id,
        property_id=row.property_id,
        booking_id=row.booking_id,
        scheduled_start_at=to_utc_aware_datetime(row.scheduled_start_at),
        scheduled_end_at=to_utc_aware_datetime(row.scheduled_end_at),
        status=TaskStatus(row.status),
        assigned_cleaner_id=row.assigned_cleaner_id,
        confirmed_at=optional_utc(row.confirmed_at),
        completed_at=optional_utc(row.completed_at),
        payment_status=PaymentStatus(row.payment_status),
        payment_amount_cents=row.payment_amount_cents,
        vendor=row.vendor,
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )
