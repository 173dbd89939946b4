"""Domain models for cleaning tasks, outbox effects and escalation results."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

TASK_ENTITY_TYPE = "cleaning_task"
PRIMARY_PRIORITY = 1
BACKUP_PRIORITY = 2


class TaskStatus(str, Enum):
    """Cleaning task lifecycle states."""

    SCHEDULED = "scheduled"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELED = "canceled"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.CANCELED, TaskStatus.FAILED})

_ALLOWED_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.SCHEDULED: frozenset({TaskStatus.ASSIGNED, TaskStatus.CANCELED}),
    TaskStatus.ASSIGNED: frozenset(
        {
            TaskStatus.IN_PROGRESS,
            TaskStatus.CANCELED,
            TaskStatus.FAILED,
            TaskStatus.SCHEDULED,
        },
    ),
    TaskStatus.IN_PROGRESS: frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.CANCELED: frozenset(),
    TaskStatus.FAILED: frozenset(),
}


def allowed_transitions(status: TaskStatus) -> frozenset[TaskStatus]:
    """Statuses reachable from ``status`` in one step."""

    return _ALLOWED_TRANSITIONS[status]


def is_valid_transition(from_status: TaskStatus, to_status: TaskStatus) -> bool:
    return to_status in _ALLOWED_TRANSITIONS[from_status]


class PaymentStatus(str, Enum):
    NONE = "none"
    REQUESTED = "requested"
    PAID = "paid"
    FAILED = "failed"


class OutboxStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class CleanerStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class IncidentType(str, Enum):
    NO_SHOW = "NO_SHOW"
    LATE_START = "LATE_START"
    DAMAGE = "DAMAGE"
    SUPPLIES = "SUPPLIES"
    ACCESS = "ACCESS"
    OTHER = "OTHER"


class IncidentSeverity(str, Enum):
    LOW = "low"
    MED = "med"
    HIGH = "high"


class TaskErrorCode(str, Enum):
    """Reasons a task store mutation did not apply."""

    NOT_FOUND = "task_not_found"
    INVALID_TRANSITION = "invalid_transition"
    PRECONDITION_FAILED = "precondition_failed"
    CONCURRENT_UPDATE = "concurrent_update"
    DUPLICATE_BOOKING = "duplicate_booking"


@dataclass(slots=True)
class CleaningTaskCreate:
    """Input payload for creating a cleaning task."""

    tenant_id: str
    property_id: str
    scheduled_start_at: datetime
    scheduled_end_at: datetime
    booking_id: str | None = None
    task_id: str | None = None
    payment_amount_cents: int = 0
    vendor: str = "none"


@dataclass(slots=True)
class CleaningTaskView:
    """Readable cleaning task state."""

    task_id: str
    tenant_id: str
    property_id: str
    booking_id: str | None
    scheduled_start_at: datetime
    scheduled_end_at: datetime
    status: TaskStatus
    assigned_cleaner_id: str | None
    confirmed_at: datetime | None
    completed_at: datetime | None
    payment_status: PaymentStatus
    payment_amount_cents: int
    vendor: str
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class TaskMutationResult:
    """Outcome of a task store mutation; failures are values, not exceptions."""

    ok: bool
    task_id: str
    task: CleaningTaskView | None = None
    error: TaskErrorCode | None = None
    from_status: TaskStatus | None = None
    to_status: TaskStatus | None = None

    @property
    def detail(self) -> str | None:
        """Stable error string used in service results."""

        if self.error is None:
            return None
        if self.error is TaskErrorCode.INVALID_TRANSITION and self.from_status and self.to_status:
            return f"invalid_transition:{self.from_status.value}->{self.to_status.value}"
        return self.error.value


@dataclass(slots=True)
class OutboxEntryView:
    """Persisted outbox entry as seen by a delivery worker."""

    outbox_id: str
    tenant_id: str
    type: str
    payload: dict[str, Any]
    idempotency_key: str
    status: OutboxStatus
    attempts: int
    last_error: str | None
    created_at: datetime
    updated_at: datetime
    next_attempt_at: datetime


@dataclass(slots=True)
class OutboxEnqueueResult:
    """Enqueue outcome; ``created`` is False when the key already existed."""

    entry: OutboxEntryView
    created: bool


@dataclass(slots=True)
class EventRecordWrite:
    """Input for one ledger append."""

    event_type: str
    tenant_id: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)
    entity_type: str | None = None
    entity_id: str | None = None
    request_id: str | None = None
    span: str | None = None
    duration_ms: int | None = None


@dataclass(slots=True)
class EventRecordView:
    """Ledger entry for audit and idempotency checks."""

    event_id: int
    tenant_id: str | None
    type: str
    payload: dict[str, Any]
    request_id: str | None
    span: str | None
    duration_ms: int | None
    entity_type: str | None
    entity_id: str | None
    created_at: datetime


@dataclass(slots=True)
class CleanerView:
    cleaner_id: str
    tenant_id: str
    name: str
    phone: str | None
    email: str | None
    status: CleanerStatus


@dataclass(slots=True)
class IncidentView:
    incident_id: str
    tenant_id: str
    property_id: str
    task_id: str
    type: IncidentType
    severity: IncidentSeverity
    description: str
    created_at: datetime


@dataclass(slots=True)
class DispatchResult:
    """Outcome of assigning a cleaner to a task."""

    success: bool
    task_id: str
    cleaner_id: str | None = None
    error: str | None = None


@dataclass(slots=True)
class TaskOperationResult:
    """Outcome of a cleaner-driven lifecycle step."""

    success: bool
    task_id: str
    error: str | None = None
    payment_requested: bool | None = None


@dataclass(slots=True)
class PaymentRequestResult:
    success: bool
    task_id: str
    error: str | None = None
    outbox_id: str | None = None


@dataclass(slots=True)
class EmergencyRequestResult:
    success: bool
    task_id: str | None = None
    incident_id: str | None = None
    outbox_id: str | None = None
    error: str | None = None


@dataclass(slots=True)
class NoShowCheckResult:
    """Aggregate counters for one no-show sweep."""

    checked: int = 0
    no_shows: int = 0
    backup_assigned: int = 0
    manual_needed: int = 0
    errors: int = 0


class LadderStep(str, Enum):
    """Escalation ladder rungs, lowest first."""

    REMIND_PRIMARY = "remind_primary"
    SWITCH_BACKUP = "switch_backup"
    EMERGENCY_REQUEST = "emergency_request"
    HOST_MANUAL = "host_manual"

    @property
    def event_type(self) -> str:
        return f"ladder.{self.value}"


@dataclass(slots=True)
class LadderStepResult:
    task_id: str
    step: LadderStep
    success: bool
    detail: str | None = None


@dataclass(slots=True)
class LadderRunResult:
    evaluated: int = 0
    actions: list[LadderStepResult] = field(default_factory=list)
    errors: int = 0


class BookingStatus(str, Enum):
    BOOKED = "booked"
    CANCELED = "canceled"


class BookingAction(str, Enum):
    CREATED = "created"
    CANCELED = "canceled"
    RESCHEDULED = "rescheduled"
    NO_OP = "no_op"


@dataclass(slots=True)
class BookingEvent:
    """Upstream booking change; ``checkout_at`` is when cleaning should start."""

    tenant_id: str
    booking_id: str
    property_id: str
    checkout_at: datetime
    cleaning_duration_minutes: int
    status: BookingStatus
    request_id: str | None = None
    payment_amount_cents: int = 0


@dataclass(slots=True)
class BookingHandlerResult:
    action: BookingAction
    task_id: str | None = None
