"""Append-only event ledger used for audit trails and step idempotency."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Any

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from maid_triage.storage.common import to_db_datetime, to_utc_aware_datetime, utc_now
from maid_triage.storage.sqlmodel_models import LedgerEvent
from maid_triage.triage.models import TASK_ENTITY_TYPE, EventRecordView, EventRecordWrite

logger = logging.getLogger(__name__)

SPAN_EVENT_TYPE = "service.span"


class EventLedger:
    """Best-effort event log.

    ``append`` never raises: a failed write is logged and dropped so that audit
    bookkeeping can not block task progression. Readers therefore treat the
    ledger as a hint, not as a transactional record.
    """

    def __init__(self, engine: Engine, *, clock: Callable[[], datetime] = utc_now) -> None:
        self.engine = engine
        self._clock = clock

    def append(self, record: EventRecordWrite) -> EventRecordView | None:
        try:
            payload_json = json.dumps(
                record.payload,
                ensure_ascii=True,
                sort_keys=True,
                default=str,
            )
            with Session(self.engine) as session:
                row = LedgerEvent(
                    tenant_id=record.tenant_id,
                    type=record.event_type,
                    payload_json=payload_json,
                    request_id=record.request_id,
                    span=record.span,
                    duration_ms=record.duration_ms,
                    entity_type=record.entity_type,
                    entity_id=record.entity_id,
                    created_at=to_db_datetime(self._clock()),
                )
                session.add(row)
                session.commit()
                session.refresh(row)
                return _to_event_view(row)
        except (SQLAlchemyError, TypeError, ValueError):
            logger.exception(
                "Failed to append ledger event %s for %s",
                record.event_type,
                record.entity_id or "-",
            )
            return None

    def record_task_event(
        self,
        *,
        tenant_id: str,
        task_id: str,
        event_type: str,
        request_id: str | None = None,
        **payload: Any,
    ) -> EventRecordView | None:
        """Append an event about one cleaning task; ``task_id`` is always in the payload."""

        return self.append(
            EventRecordWrite(
                event_type=event_type,
                tenant_id=tenant_id,
                payload={"task_id": task_id, **payload},
                entity_type=TASK_ENTITY_TYPE,
                entity_id=task_id,
                request_id=request_id,
            ),
        )

    @contextmanager
    def span(
        self,
        name: str,
        *,
        tenant_id: str | None = None,
        task_id: str | None = None,
        request_id: str | None = None,
    ) -> Iterator[None]:
        """Time the wrapped block and append a ``service.span`` record, even on error."""

        started = time.perf_counter()
        try:
            yield
        finally:
            duration_ms = int((time.perf_counter() - started) * 1000)
            self.append(
                EventRecordWrite(
                    event_type=SPAN_EVENT_TYPE,
                    tenant_id=tenant_id,
                    payload={"span_name": name},
                    entity_type=TASK_ENTITY_TYPE if task_id else None,
                    entity_id=task_id,
                    request_id=request_id,
                    span=name,
                    duration_ms=duration_ms,
                ),
            )

    def find_by_entity_and_type_prefix(
        self,
        entity_id: str,
        type_prefix: str,
    ) -> list[EventRecordView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(LedgerEvent)
                .where(
                    LedgerEvent.entity_id == entity_id,
                    col(LedgerEvent.type).startswith(type_prefix, autoescape=True),
                )
                .order_by(col(LedgerEvent.id).asc()),
            ).all()
        return [_to_event_view(row) for row in rows]

    def find_by_type(
        self,
        event_type: str,
        *,
        tenant_id: str | None = None,
        limit: int = 100,
    ) -> list[EventRecordView]:
        statement = select(LedgerEvent).where(LedgerEvent.type == event_type)
        if tenant_id is not None:
            statement = statement.where(LedgerEvent.tenant_id == tenant_id)
        statement = statement.order_by(col(LedgerEvent.id).asc()).limit(limit)
        with Session(self.engine) as session:
            rows = session.exec(statement).all()
        return [_to_event_view(row) for row in rows]

    def find_by_request_id(self, request_id: str) -> list[EventRecordView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(LedgerEvent)
                .where(LedgerEvent.request_id == request_id)
                .order_by(col(LedgerEvent.id).asc()),
            ).all()
        return [_to_event_view(row) for row in rows]

    def find_recent(
        self,
        *,
        tenant_id: str | None = None,
        since: datetime | None = None,
        include_spans: bool = False,
        limit: int = 50,
    ) -> list[EventRecordView]:
        """Newest events first."""

        statement = select(LedgerEvent)
        if tenant_id is not None:
            statement = statement.where(LedgerEvent.tenant_id == tenant_id)
        if since is not None:
            statement = statement.where(col(LedgerEvent.created_at) >= to_db_datetime(since))
        if not include_spans:
            statement = statement.where(LedgerEvent.type != SPAN_EVENT_TYPE)
        statement = statement.order_by(col(LedgerEvent.id).desc()).limit(limit)
        with Session(self.engine) as session:
            rows = session.exec(statement).all()
        return [_to_event_view(row) for row in rows]


def _to_event_view(row: LedgerEvent) -> EventRecordView:
    return EventRecordView(
        event_id=row.id or 0,
        tenant_id=row.tenant_id,
        type=row.type,
        payload=json.loads(row.payload_json),
        request_id=row.request_id,
        span=row.span,
        duration_ms=row.duration_ms,
        entity_type=row.entity_type,
        entity_id=row.entity_id,
        created_at=to_utc_aware_datetime(row.created_at),
    )
