from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

import allure

from maid_triage.storage.common import from_iso, optional_utc, to_db_datetime, to_utc_aware_datetime

pytestmark = [
    allure.epic("Cleaning Triage"),
    allure.feature("Storage"),
]


def test_from_iso_accepts_zulu_and_offsets() -> None:
    expected = datetime(2026, 10, 4, 11, 0, tzinfo=UTC)

    assert from_iso("2026-10-04T11:00:00Z") == expected
    assert from_iso("2026-10-04T13:00:00+02:00") == expected
    assert from_iso("2026-10-04T11:00:00") == expected


def test_db_datetimes_are_naive_utc() -> None:
    local = datetime(2026, 10, 4, 7, 0, tzinfo=timezone(timedelta(hours=-4)))

    stored = to_db_datetime(local)

    assert stored == datetime(2026, 10, 4, 11, 0)
    assert stored.tzinfo is None
    assert to_utc_aware_datetime(stored) == local
    assert optional_utc(None) is None
