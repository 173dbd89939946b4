"""Durable, idempotent queue of external side effects."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import update as sa_update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, col, select

from maid_triage.errors import OutboxWriteError
from maid_triage.storage.common import to_db_datetime, to_utc_aware_datetime, utc_now
from maid_triage.storage.sqlmodel_models import OutboxEntry
from maid_triage.triage.models import OutboxEnqueueResult, OutboxEntryView, OutboxStatus

logger = logging.getLogger(__name__)


class Outbox:
    """Pending external effects, deduplicated by idempotency key.

    Delivery is owned by an external worker which polls ``dequeue_pending`` and
    reports back through ``mark_sent`` / ``mark_failed``.
    """

    def __init__(
        self,
        engine: Engine,
        *,
        max_attempts: int = 5,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.engine = engine
        self.max_attempts = max_attempts
        self._clock = clock

    def enqueue(
        self,
        *,
        tenant_id: str,
        entry_type: str,
        payload: dict[str, Any],
        idempotency_key: str,
    ) -> OutboxEnqueueResult:
        """Durably record one external effect.

        An existing ``idempotency_key`` turns the call into a no-op that reports
        the stored entry. Raises ``OutboxWriteError`` when nothing could be stored.
        """

        now = to_db_datetime(self._clock())
        try:
            payload_json = json.dumps(payload, ensure_ascii=True, sort_keys=True, default=str)
        except (TypeError, ValueError) as error:
            raise OutboxWriteError(f"Outbox payload for {idempotency_key} is not JSON") from error

        try:
            with Session(self.engine) as session:
                row = OutboxEntry(
                    outbox_id=str(uuid4()),
                    tenant_id=tenant_id,
                    type=entry_type,
                    payload_json=payload_json,
                    idempotency_key=idempotency_key,
                    status=OutboxStatus.PENDING.value,
                    attempts=0,
                    created_at=now,
                    updated_at=now,
                    next_attempt_at=now,
                )
                session.add(row)
                try:
                    session.commit()
                except IntegrityError:
                    session.rollback()
                    existing = _select_by_key(session, idempotency_key)
                    if existing is None:
                        raise
                    logger.debug("Outbox key %s already enqueued", idempotency_key)
                    return OutboxEnqueueResult(entry=_to_entry_view(existing), created=False)
                session.refresh(row)
                logger.info(
                    "Outbox entry enqueued: type=%s key=%s tenant=%s",
                    entry_type,
                    idempotency_key,
                    tenant_id,
                )
                return OutboxEnqueueResult(entry=_to_entry_view(row), created=True)
        except SQLAlchemyError as error:
            logger.exception("Outbox write failed for key %s", idempotency_key)
            raise OutboxWriteError(f"Could not enqueue outbox entry {idempotency_key}") from error

    def dequeue_pending(self, limit: int = 50) -> list[OutboxEntryView]:
        """Pending entries due now, oldest first; empty for a non-positive ``limit``."""

        if limit <= 0:
            return []

        now = to_db_datetime(self._clock())
        with Session(self.engine) as session:
            rows = session.exec(
                select(OutboxEntry)
                .where(
                    OutboxEntry.status == OutboxStatus.PENDING.value,
                    col(OutboxEntry.next_attempt_at) <= now,
                )
                .order_by(col(OutboxEntry.created_at).asc(), col(OutboxEntry.outbox_id).asc())
                .limit(limit),
            ).all()
        return [_to_entry_view(row) for row in rows]

    def mark_sent(self, outbox_id: str) -> bool:
        now = to_db_datetime(self._clock())
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(OutboxEntry)
                .where(
                    col(OutboxEntry.outbox_id) == outbox_id,
                    col(OutboxEntry.status) == OutboxStatus.PENDING.value,
                )
                .values(status=OutboxStatus.SENT.value, last_error=None, updated_at=now),
            )
            session.commit()
        return result.rowcount == 1

    def mark_failed(
        self,
        outbox_id: str,
        *,
        next_attempt_at: datetime,
        error: str | None = None,
    ) -> OutboxEntryView | None:
        """Record a failed delivery attempt.

        The entry goes back to ``pending`` at ``next_attempt_at`` until it has
        used ``max_attempts``; after that it stays ``failed``.
        """

        now = to_db_datetime(self._clock())
        with Session(self.engine) as session:
            row = session.exec(
                select(OutboxEntry).where(OutboxEntry.outbox_id == outbox_id),
            ).one_or_none()
            if row is None or row.status != OutboxStatus.PENDING.value:
                return None

            attempts = row.attempts + 1
            status = OutboxStatus.PENDING if attempts < self.max_attempts else OutboxStatus.FAILED
            result = session.exec(
                sa_update(OutboxEntry)
                .where(
                    col(OutboxEntry.outbox_id) == outbox_id,
                    col(OutboxEntry.status) == OutboxStatus.PENDING.value,
                    col(OutboxEntry.attempts) == row.attempts,
                )
                .values(
                    status=status.value,
                    attempts=attempts,
                    last_error=error,
                    next_attempt_at=to_db_datetime(next_attempt_at),
                    updated_at=now,
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return None
            session.commit()
            session.refresh(row)
            if status is OutboxStatus.FAILED:
                logger.warning(
                    "Outbox entry %s gave up after %d attempts: %s",
                    outbox_id,
                    attempts,
                    error or "-",
                )
            return _to_entry_view(row)

    def get(self, outbox_id: str) -> OutboxEntryView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(OutboxEntry).where(OutboxEntry.outbox_id == outbox_id),
            ).one_or_none()
            return _to_entry_view(row) if row is not None else None

    def find_by_idempotency_key(self, idempotency_key: str) -> OutboxEntryView | None:
        with Session(self.engine) as session:
            row = _select_by_key(session, idempotency_key)
            return _to_entry_view(row) if row is not None else None

    def list_entries(
        self,
        *,
        tenant_id: str | None = None,
        status: OutboxStatus | None = None,
        entry_type: str | None = None,
        limit: int = 100,
    ) -> list[OutboxEntryView]:
        statement = select(OutboxEntry)
        if tenant_id is not None:
            statement = statement.where(OutboxEntry.tenant_id == tenant_id)
        if status is not None:
            statement = statement.where(OutboxEntry.status == status.value)
        if entry_type is not None:
            statement = statement.where(OutboxEntry.type == entry_type)
        statement = statement.order_by(
            col(OutboxEntry.created_at).asc(),
            col(OutboxEntry.outbox_id).asc(),
        ).limit(limit)
        with Session(self.engine) as session:
            rows = session.exec(statement).all()
        return [_to_entry_view(row) for row in rows]


def _select_by_key(session: Session, idempotency_key: str) -> OutboxEntry | None:
    return session.exec(
        select(OutboxEntry).where(OutboxEntry.idempotency_key == idempotency_key),
    ).one_or_none()


def _to_entry_view(row: OutboxEntry) -> OutboxEntryView:
    return OutboxEntryView(
        outbox_id=row.outbox_id,
        tenant_id=row.tenant_id,
        type=row.type,
        payload=json.loads(row.payload_json),
        idempotency_key=row.idempotency_key,
        status=OutboxStatus(row.status),
        attempts=row.attempts,
        last_error=row.last_error,
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
        next_attempt_at=to_utc_aware_datetime(row.next_attempt_at),
    )
