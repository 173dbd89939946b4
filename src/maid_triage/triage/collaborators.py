"""Interfaces of the collaborators the triage services depend on."""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from maid_triage.triage.models import (
    CleanerView,
    EmergencyRequestResult,
    IncidentSeverity,
    IncidentType,
    IncidentView,
    PaymentRequestResult,
)


class CleanerLookup(Protocol):
    def find_cleaner_for_property(
        self,
        tenant_id: str,
        property_id: str,
        priority: int,
    ) -> CleanerView | None: ...


class IncidentSink(Protocol):
    def create(  # noqa: PLR0913
        self,
        tenant_id: str,
        property_id: str,
        task_id: str,
        incident_type: IncidentType,
        severity: IncidentSeverity,
        description: str,
    ) -> IncidentView: ...


class PaymentRequest(Protocol):
    def request(
        self,
        tenant_id: str,
        task_id: str,
        *,
        request_id: str | None = None,
    ) -> PaymentRequestResult: ...


class EmergencyRequest(Protocol):
    def request(  # noqa: PLR0913
        self,
        tenant_id: str,
        property_id: str,
        needed_by: datetime,
        reason: str,
        *,
        request_id: str | None = None,
        idempotency_key: str | None = None,
    ) -> EmergencyRequestResult: ...
