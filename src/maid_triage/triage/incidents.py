"""Incident records attached to cleaning tasks."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from uuid import uuid4

from sqlalchemy.engine import Engine
from sqlmodel import Session, col, select

from maid_triage.storage.common import to_db_datetime, to_utc_aware_datetime, utc_now
from maid_triage.storage.sqlmodel_models import Incident
from maid_triage.triage.models import IncidentSeverity, IncidentType, IncidentView

logger = logging.getLogger(__name__)


class IncidentRepository:
    """SQLite-backed ``IncidentSink``."""

    def __init__(self, engine: Engine, *, clock: Callable[[], datetime] = utc_now) -> None:
        self.engine = engine
        self._clock = clock

    def create(  # noqa: PLR0913
        self,
        tenant_id: str,
        property_id: str,
        task_id: str,
        incident_type: IncidentType,
        severity: IncidentSeverity,
        description: str,
    ) -> IncidentView:
        with Session(self.engine) as session:
            row = Incident(
                incident_id=str(uuid4()),
                tenant_id=tenant_id,
                property_id=property_id,
                task_id=task_id,
                type=incident_type.value,
                severity=severity.value,
                description=description,
                created_at=to_db_datetime(self._clock()),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            logger.info(
                "Incident %s recorded: type=%s severity=%s task=%s",
                row.incident_id,
                row.type,
                row.severity,
                task_id,
            )
            return _to_incident_view(row)

    def list_for_task(self, *, tenant_id: str, task_id: str) -> list[IncidentView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(Incident)
                .where(Incident.tenant_id == tenant_id, Incident.task_id == task_id)
                .order_by(col(Incident.created_at).asc()),
            ).all()
        return [_to_incident_view(row) for row in rows]

    def list_for_tenant(
        self,
        *,
        tenant_id: str,
        incident_type: IncidentType | None = None,
        limit: int = 100,
    ) -> list[IncidentView]:
        statement = select(Incident).where(Incident.tenant_id == tenant_id)
        if incident_type is not None:
            statement = statement.where(Incident.type == incident_type.value)
        statement = statement.order_by(col(Incident.created_at).desc()).limit(limit)
        with Session(self.engine) as session:
            rows = session.exec(statement).all()
        return [_to_incident_view(row) for row in rows]


def _to_incident_view(row: Incident) -> IncidentView:
    return IncidentView(
        incident_id=row.incident_id,
        tenant_id=row.tenant_id,
        property_id=row.property_id,
        task_id=row.task_id,
        type=IncidentType(row.type),
        severity=IncidentSeverity(row.severity),
        description=row.description,
        created_at=to_utc_aware_datetime(row.created_at),
    )
