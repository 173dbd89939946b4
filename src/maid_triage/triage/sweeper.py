"""Fixed-interval timer driving the no-show detector and the escalation ladder."""

from __future__ import annotations

import logging
import signal
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime

from maid_triage.config import SweepSettings
from maid_triage.storage.common import utc_now
from maid_triage.triage.ladder import EscalationLadder
from maid_triage.triage.models import LadderStepResult, NoShowCheckResult
from maid_triage.triage.no_show import NoShowDetector

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SweepSummary:
    """Aggregate sweep counters for CLI reporting."""

    sweeps: int = 0
    checked: int = 0
    no_shows: int = 0
    backup_assigned: int = 0
    manual_needed: int = 0
    ladder_evaluated: int = 0
    ladder_actions: list[LadderStepResult] = field(default_factory=list)
    errors: int = 0

    def add_no_show(self, result: NoShowCheckResult) -> None:
        self.checked += result.checked
        self.no_shows += result.no_shows
        self.backup_assigned += result.backup_assigned
        self.manual_needed += result.manual_needed
        self.errors += result.errors

    def merge(self, other: SweepSummary) -> None:
        self.sweeps += other.sweeps
        self.checked += other.checked
        self.no_shows += other.no_shows
        self.backup_assigned += other.backup_assigned
        self.manual_needed += other.manual_needed
        self.ladder_evaluated += other.ladder_evaluated
        self.ladder_actions.extend(other.ladder_actions)
        self.errors += other.errors


class SweepRunner:
    """Runs both sweeps on one timer; instances may run concurrently."""

    def __init__(
        self,
        *,
        no_show: NoShowDetector,
        ladder: EscalationLadder,
        settings: SweepSettings | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.no_show = no_show
        self.ladder = ladder
        self.settings = settings or SweepSettings()
        self._clock = clock
        self._stop_requested = False
        self._stop_signal_name: str | None = None

    def run_once(
        self,
        *,
        now: datetime | None = None,
        tenant_id: str | None = None,
    ) -> SweepSummary:
        """One detector pass followed by one ladder pass at the same instant."""

        now = now or self._clock()
        summary = SweepSummary(sweeps=1)
        if self.settings.run_no_show:
            summary.add_no_show(self.no_show.run(now=now, tenant_id=tenant_id))
        if self.settings.run_ladder:
            ladder = self.ladder.run(now=now, tenant_id=tenant_id)
            summary.ladder_evaluated = ladder.evaluated
            summary.ladder_actions = ladder.actions
            summary.errors += ladder.errors
        return summary

    def run_loop(
        self,
        *,
        max_sweeps: int | None = None,
        tenant_id: str | None = None,
    ) -> SweepSummary:
        """Sweep every ``interval_seconds`` until stopped or ``max_sweeps`` is reached."""

        aggregate = SweepSummary()
        with self._signal_handlers():
            while not self._stop_requested:
                if max_sweeps is not None and aggregate.sweeps >= max_sweeps:
                    break
                try:
                    aggregate.merge(self.run_once(tenant_id=tenant_id))
                except Exception:  # noqa: BLE001
                    aggregate.sweeps += 1
                    aggregate.errors += 1
                    logger.exception("Sweep failed; retrying on next tick")
                if max_sweeps is not None and aggregate.sweeps >= max_sweeps:
                    break
                self._sleep_with_stop(self.settings.interval_seconds)

        if self._stop_signal_name is not None:
            logger.info("Sweep loop stopped by %s", self._stop_signal_name)
        return aggregate

    def request_stop(self, *, signal_name: str = "manual") -> None:
        self._stop_requested = True
        self._stop_signal_name = signal_name

    def _sleep_with_stop(self, seconds: float) -> None:
        deadline = time.monotonic() + seconds
        while not self._stop_requested and time.monotonic() < deadline:
            time.sleep(min(0.1, max(0.0, deadline - time.monotonic())))

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if not hasattr(signal, "SIGINT"):
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            self.request_stop(signal_name=name)

        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
            installed = True
        except ValueError:
            # Signal handlers can only be installed in main thread.
            installed = False
        try:
            yield
        finally:
            if installed:
                signal.signal(signal.SIGINT, original_sigint)
                signal.signal(signal.SIGTERM, original_sigterm)
