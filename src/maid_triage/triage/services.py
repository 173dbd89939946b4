"""Wiring of stores and services over one shared engine."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.engine import Engine

from maid_triage.config import Settings
from maid_triage.storage.common import utc_now
from maid_triage.triage.booking import BookingReconciler
from maid_triage.triage.cleaners import CleanerDirectory
from maid_triage.triage.dispatch import DispatchService
from maid_triage.triage.emergency import EmergencyService
from maid_triage.triage.incidents import IncidentRepository
from maid_triage.triage.ladder import EscalationLadder
from maid_triage.triage.ledger import EventLedger
from maid_triage.triage.no_show import NoShowDetector
from maid_triage.triage.outbox import Outbox
from maid_triage.triage.payment import PaymentService
from maid_triage.triage.task_store import TaskStore


@dataclass(slots=True)
class TriageServices:
    """Every store and service, built once per process or test."""

    tasks: TaskStore
    outbox: Outbox
    ledger: EventLedger
    cleaners: CleanerDirectory
    incidents: IncidentRepository
    payments: PaymentService
    emergency: EmergencyService
    dispatch: DispatchService
    no_show: NoShowDetector
    ladder: EscalationLadder
    bookings: BookingReconciler


def build_triage_services(
    engine: Engine,
    settings: Settings,
    *,
    clock: Callable[[], datetime] = utc_now,
) -> TriageServices:
    tasks = TaskStore(engine, clock=clock)
    outbox = Outbox(engine, max_attempts=settings.outbox.max_attempts, clock=clock)
    ledger = EventLedger(engine, clock=clock)
    cleaners = CleanerDirectory(engine, clock=clock)
    incidents = IncidentRepository(engine, clock=clock)
    payments = PaymentService(tasks=tasks, outbox=outbox, ledger=ledger)
    emergency = EmergencyService(
        tasks=tasks,
        outbox=outbox,
        ledger=ledger,
        incidents=incidents,
        window_minutes=settings.triage.emergency_window_minutes,
    )
    dispatch = DispatchService(
        tasks=tasks,
        outbox=outbox,
        ledger=ledger,
        cleaners=cleaners,
        payments=payments,
    )
    return TriageServices(
        tasks=tasks,
        outbox=outbox,
        ledger=ledger,
        cleaners=cleaners,
        incidents=incidents,
        payments=payments,
        emergency=emergency,
        dispatch=dispatch,
        no_show=NoShowDetector(
            tasks=tasks,
            outbox=outbox,
            ledger=ledger,
            cleaners=cleaners,
            incidents=incidents,
            dispatch=dispatch,
            confirm_timeout_minutes=settings.triage.confirm_timeout_minutes,
            clock=clock,
        ),
        ladder=EscalationLadder(
            tasks=tasks,
            outbox=outbox,
            ledger=ledger,
            cleaners=cleaners,
            incidents=incidents,
            dispatch=dispatch,
            emergency=emergency,
            settings=settings.triage,
            clock=clock,
        ),
        bookings=BookingReconciler(tasks=tasks, ledger=ledger),
    )
