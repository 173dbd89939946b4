from __future__ import annotations

from pathlib import Path

import allure
import pytest

from helpers import TENANT, FrozenClock
from maid_triage.storage.common import build_sqlite_engine
from maid_triage.triage.ledger import SPAN_EVENT_TYPE, EventLedger
from maid_triage.triage.models import TASK_ENTITY_TYPE, EventRecordWrite
from maid_triage.triage.services import TriageServices

pytestmark = [
    allure.epic("Cleaning Triage"),
    allure.feature("Event Ledger"),
]


def test_task_events_carry_task_id_and_entity(services: TriageServices) -> None:
    event = services.ledger.record_task_event(
        tenant_id=TENANT,
        task_id="t1",
        event_type="task.assigned",
        request_id="req-1",
        cleaner_id="c1",
    )

    assert event is not None
    assert event.payload == {"task_id": "t1", "cleaner_id": "c1"}
    assert event.entity_type == TASK_ENTITY_TYPE
    assert event.entity_id == "t1"
    assert [item.event_id for item in services.ledger.find_by_request_id("req-1")] == [
        event.event_id,
    ]


def test_prefix_query_is_scoped_to_entity_and_ordered(services: TriageServices) -> None:
    ledger = services.ledger
    ledger.record_task_event(tenant_id=TENANT, task_id="t1", event_type="ladder.remind_primary")
    ledger.record_task_event(tenant_id=TENANT, task_id="t1", event_type="task.assigned")
    ledger.record_task_event(tenant_id=TENANT, task_id="t2", event_type="ladder.remind_primary")
    ledger.record_task_event(tenant_id=TENANT, task_id="t1", event_type="ladder.switch_backup")
    ledger.record_task_event(tenant_id=TENANT, task_id="t1", event_type="ladderXbogus")

    events = ledger.find_by_entity_and_type_prefix("t1", "ladder.")

    assert [event.type for event in events] == ["ladder.remind_primary", "ladder.switch_backup"]


def test_span_records_duration_even_on_error(services: TriageServices) -> None:
    with pytest.raises(RuntimeError), services.ledger.span(
        "dispatch_task",
        tenant_id=TENANT,
        task_id="t1",
        request_id="req-9",
    ):
        raise RuntimeError("boom")

    spans = services.ledger.find_by_type(SPAN_EVENT_TYPE, tenant_id=TENANT)
    assert len(spans) == 1
    assert spans[0].span == "dispatch_task"
    assert spans[0].duration_ms is not None and spans[0].duration_ms >= 0
    assert spans[0].entity_id == "t1"
    assert spans[0].request_id == "req-9"


def test_find_recent_is_newest_first_and_hides_spans(
    services: TriageServices,
    clock: FrozenClock,
) -> None:
    services.ledger.record_task_event(tenant_id=TENANT, task_id="t1", event_type="task.created")
    since = clock.advance(minutes=5)
    with services.ledger.span("noop", tenant_id=TENANT):
        services.ledger.record_task_event(
            tenant_id=TENANT,
            task_id="t1",
            event_type="task.assigned",
        )
    services.ledger.record_task_event(tenant_id=TENANT, task_id="t1", event_type="task.confirmed")

    recent = services.ledger.find_recent(tenant_id=TENANT, since=since)
    with_spans = services.ledger.find_recent(tenant_id=TENANT, include_spans=True)

    assert [event.type for event in recent] == ["task.confirmed", "task.assigned"]
    assert SPAN_EVENT_TYPE in {event.type for event in with_spans}


def test_append_failure_is_logged_not_raised(
    tmp_path: Path,
    caplog: pytest.LogCaptureFixture,
) -> None:
    engine = build_sqlite_engine(db_path=tmp_path / "empty.db", busy_timeout_ms=1000)
    ledger = EventLedger(engine)

    result = ledger.append(EventRecordWrite(event_type="task.assigned", entity_id="t1"))

    assert result is None
    assert "Failed to append ledger event task.assigned for t1" in caplog.text
    engine.dispose()
