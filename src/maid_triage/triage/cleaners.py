"""Cleaner directory: cleaners and their priority-ranked property links."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from uuid import uuid4

from sqlalchemy import update as sa_update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from maid_triage.storage.common import to_db_datetime, utc_now
from maid_triage.storage.sqlmodel_models import Cleaner, CleanerProperty
from maid_triage.triage.models import CleanerStatus, CleanerView

logger = logging.getLogger(__name__)


class CleanerDirectory:
    """SQLite-backed ``CleanerLookup``."""

    def __init__(self, engine: Engine, *, clock: Callable[[], datetime] = utc_now) -> None:
        self.engine = engine
        self._clock = clock

    def add_cleaner(  # noqa: PLR0913
        self,
        *,
        tenant_id: str,
        name: str,
        phone: str | None = None,
        email: str | None = None,
        cleaner_id: str | None = None,
        status: CleanerStatus = CleanerStatus.ACTIVE,
    ) -> CleanerView:
        with Session(self.engine) as session:
            row = Cleaner(
                cleaner_id=cleaner_id or str(uuid4()),
                tenant_id=tenant_id,
                name=name,
                phone=phone,
                email=email,
                status=status.value,
                created_at=to_db_datetime(self._clock()),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_cleaner_view(row)

    def link_property(
        self,
        *,
        tenant_id: str,
        cleaner_id: str,
        property_id: str,
        priority: int,
    ) -> bool:
        """Link a cleaner to a property; False if unknown cleaner or duplicate link."""

        if priority < 1:
            raise ValueError("priority must be >= 1")
        with Session(self.engine) as session:
            cleaner = session.exec(
                select(Cleaner).where(
                    Cleaner.cleaner_id == cleaner_id,
                    Cleaner.tenant_id == tenant_id,
                ),
            ).one_or_none()
            if cleaner is None:
                return False
            session.add(
                CleanerProperty(
                    cleaner_id=cleaner_id,
                    property_id=property_id,
                    priority=priority,
                    created_at=to_db_datetime(self._clock()),
                ),
            )
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                logger.info(
                    "Cleaner %s already linked to %s at priority %d",
                    cleaner_id,
                    property_id,
                    priority,
                )
                return False
            return True

    def set_status(self, *, tenant_id: str, cleaner_id: str, status: CleanerStatus) -> bool:
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(Cleaner)
                .where(
                    col(Cleaner.cleaner_id) == cleaner_id,
                    col(Cleaner.tenant_id) == tenant_id,
                )
                .values(status=status.value),
            )
            session.commit()
        return result.rowcount == 1

    def get(self, *, tenant_id: str, cleaner_id: str) -> CleanerView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(Cleaner).where(
                    Cleaner.cleaner_id == cleaner_id,
                    Cleaner.tenant_id == tenant_id,
                ),
            ).one_or_none()
            return _to_cleaner_view(row) if row is not None else None

    def list_cleaners(self, *, tenant_id: str) -> list[CleanerView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(Cleaner)
                .where(Cleaner.tenant_id == tenant_id)
                .order_by(col(Cleaner.name).asc()),
            ).all()
        return [_to_cleaner_view(row) for row in rows]

    def find_cleaner_for_property(
        self,
        tenant_id: str,
        property_id: str,
        priority: int,
    ) -> CleanerView | None:
        """Active cleaner linked to the property at ``priority``, earliest link first."""

        with Session(self.engine) as session:
            row = session.exec(
                select(Cleaner)
                .join(CleanerProperty, col(CleanerProperty.cleaner_id) == col(Cleaner.cleaner_id))
                .where(
                    Cleaner.tenant_id == tenant_id,
                    Cleaner.status == CleanerStatus.ACTIVE.value,
                    CleanerProperty.property_id == property_id,
                    CleanerProperty.priority == priority,
                )
                .order_by(col(CleanerProperty.created_at).asc(), col(CleanerProperty.id).asc())
                .limit(1),
            ).first()
            return _to_cleaner_view(row) if row is not None else None


def _to_cleaner_view(row: Cleaner) -> CleanerView:
    return CleanerView(
        cleaner_id=row.cleaner_id,
        tenant_id=row.tenant_id,
        name=row.name,
        phone=row.phone,
        email=row.email,
        status=CleanerStatus(row.status),
    )
