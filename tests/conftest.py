"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from datetime import datetime, timedelta
from pathlib import Path

import pytest

from helpers import CHECKOUT, PROPERTY, TENANT, FrozenClock
from maid_triage.config import Settings
from maid_triage.storage.database import TriageDatabase
from maid_triage.triage.models import (
    BACKUP_PRIORITY,
    PRIMARY_PRIORITY,
    CleaningTaskCreate,
    CleaningTaskView,
)
from maid_triage.triage.services import TriageServices, build_triage_services


@pytest.fixture()
def clock() -> FrozenClock:
    return FrozenClock(CHECKOUT - timedelta(hours=2))


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(db_path=tmp_path / "triage.db")


@pytest.fixture()
def database(settings: Settings) -> Iterator[TriageDatabase]:
    database = TriageDatabase(settings.db_path, busy_timeout_ms=settings.sqlite_busy_timeout_ms)
    database.init_schema()
    yield database
    database.close()


@pytest.fixture()
def services(database: TriageDatabase, settings: Settings, clock: FrozenClock) -> TriageServices:
    return build_triage_services(database.engine, settings, clock=clock)


@pytest.fixture()
def seed_cleaners(services: TriageServices) -> Callable[..., dict[str, str]]:
    """Create primary and/or backup cleaners for a property; returns role -> cleaner id."""

    def _seed(
        *,
        property_id: str = PROPERTY,
        primary: bool = True,
        backup: bool = True,
        tenant_id: str = TENANT,
    ) -> dict[str, str]:
        seeded: dict[str, str] = {}
        roles = []
        if primary:
            roles.append(("primary", PRIMARY_PRIORITY))
        if backup:
            roles.append(("backup", BACKUP_PRIORITY))
        for role, priority in roles:
            cleaner = services.cleaners.add_cleaner(
                tenant_id=tenant_id,
                name=f"{role.title()} Cleaner",
                phone="+15550100",
                cleaner_id=f"{role}-{property_id}",
            )
            assert services.cleaners.link_property(
                tenant_id=tenant_id,
                cleaner_id=cleaner.cleaner_id,
                property_id=property_id,
                priority=priority,
            )
            seeded[role] = cleaner.cleaner_id
        return seeded

    return _seed


@pytest.fixture()
def make_task(services: TriageServices) -> Callable[..., CleaningTaskView]:
    def _make(
        *,
        start: datetime = CHECKOUT,
        duration_minutes: int = 90,
        property_id: str = PROPERTY,
        booking_id: str | None = None,
        amount_cents: int = 4_500,
        tenant_id: str = TENANT,
    ) -> CleaningTaskView:
        created = services.tasks.create(
            CleaningTaskCreate(
                tenant_id=tenant_id,
                property_id=property_id,
                scheduled_start_at=start,
                scheduled_end_at=start + timedelta(minutes=duration_minutes),
                booking_id=booking_id,
                payment_amount_cents=amount_cents,
            ),
        )
        assert created.ok and created.task is not None
        return created.task

    return _make
