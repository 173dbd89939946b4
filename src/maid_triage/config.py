"""Runtime configuration for the triage engine."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}


@dataclass(slots=True)
class TriageSettings:
    """No-show deadline and escalation ladder thresholds, in minutes."""

    confirm_timeout_minutes: int = 30
    ladder_remind_primary_minutes: int = 10
    ladder_switch_backup_minutes: int = 20
    ladder_emergency_request_minutes: int = 40
    ladder_host_manual_minutes: int = 60
    emergency_lead_minutes: int = 120
    emergency_window_minutes: int = 120


@dataclass(slots=True)
class SweepSettings:
    """Timer settings for the periodic no-show and ladder sweeps."""

    interval_seconds: float = 60.0
    run_no_show: bool = True
    run_ladder: bool = True


@dataclass(slots=True)
class OutboxSettings:
    """Outbox retry policy."""

    max_attempts: int = 5
    dequeue_limit: int = 50


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".maid_triage.db")
    sqlite_busy_timeout_ms: int = 5_000
    log_level: str = "INFO"
    triage: TriageSettings = field(default_factory=TriageSettings)
    sweep: SweepSettings = field(default_factory=SweepSettings)
    outbox: OutboxSettings = field(default_factory=OutboxSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=db_path or Path(os.getenv("MAID_TRIAGE_DB_PATH", ".maid_triage.db")),
            sqlite_busy_timeout_ms=int(os.getenv("MAID_TRIAGE_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            log_level=os.getenv("MAID_TRIAGE_LOG_LEVEL", "INFO").strip().upper(),
            triage=TriageSettings(
                confirm_timeout_minutes=int(os.getenv("CONFIRM_TIMEOUT_MINUTES", "30")),
                ladder_remind_primary_minutes=int(
                    os.getenv("LADDER_REMIND_PRIMARY_MINUTES", "10"),
                ),
                ladder_switch_backup_minutes=int(
                    os.getenv("LADDER_SWITCH_BACKUP_MINUTES", "20"),
                ),
                ladder_emergency_request_minutes=int(
                    os.getenv("LADDER_EMERGENCY_REQUEST_MINUTES", "40"),
                ),
                ladder_host_manual_minutes=int(os.getenv("LADDER_HOST_MANUAL_MINUTES", "60")),
                emergency_lead_minutes=int(
                    os.getenv("MAID_TRIAGE_EMERGENCY_LEAD_MINUTES", "120"),
                ),
                emergency_window_minutes=int(
                    os.getenv("MAID_TRIAGE_EMERGENCY_WINDOW_MINUTES", "120"),
                ),
            ),
            sweep=SweepSettings(
                interval_seconds=float(os.getenv("MAID_TRIAGE_SWEEP_INTERVAL_SECONDS", "60")),
                run_no_show=_env_bool("MAID_TRIAGE_SWEEP_NO_SHOW", default=True),
                run_ladder=_env_bool("MAID_TRIAGE_SWEEP_LADDER", default=True),
            ),
            outbox=OutboxSettings(
                max_attempts=int(os.getenv("MAID_TRIAGE_OUTBOX_MAX_ATTEMPTS", "5")),
                dequeue_limit=int(os.getenv("MAID_TRIAGE_OUTBOX_DEQUEUE_LIMIT", "50")),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for inconsistent thresholds or limits."""

        triage = self.triage
        if triage.confirm_timeout_minutes < 0:
            raise ValueError("CONFIRM_TIMEOUT_MINUTES must be >= 0.")
        ladder = (
            ("LADDER_REMIND_PRIMARY_MINUTES", triage.ladder_remind_primary_minutes),
            ("LADDER_SWITCH_BACKUP_MINUTES", triage.ladder_switch_backup_minutes),
            ("LADDER_EMERGENCY_REQUEST_MINUTES", triage.ladder_emergency_request_minutes),
            ("LADDER_HOST_MANUAL_MINUTES", triage.ladder_host_manual_minutes),
        )
        for name, minutes in ladder:
            if minutes < 0:
                raise ValueError(f"{name} must be >= 0.")
        for (lower_name, lower), (upper_name, upper) in zip(ladder, ladder[1:], strict=False):
            if upper <= lower:
                raise ValueError(
                    f"Ladder thresholds must increase: {upper_name}={upper} "
                    f"is not greater than {lower_name}={lower}.",
                )
        if triage.emergency_window_minutes <= 0:
            raise ValueError("MAID_TRIAGE_EMERGENCY_WINDOW_MINUTES must be > 0.")
        if self.sweep.interval_seconds <= 0:
            raise ValueError("MAID_TRIAGE_SWEEP_INTERVAL_SECONDS must be > 0.")
        if self.outbox.max_attempts <= 0:
            raise ValueError("MAID_TRIAGE_OUTBOX_MAX_ATTEMPTS must be > 0.")
        if self.outbox.dequeue_limit <= 0:
            raise ValueError("MAID_TRIAGE_OUTBOX_DEQUEUE_LIMIT must be > 0.")
        if self.sqlite_busy_timeout_ms <= 0:
            raise ValueError("MAID_TRIAGE_SQLITE_BUSY_TIMEOUT_MS must be > 0.")
        if self.log_level not in _LOG_LEVELS:
            raise ValueError(f"Invalid MAID_TRIAGE_LOG_LEVEL: {self.log_level!r}")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
