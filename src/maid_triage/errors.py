"""Exceptions raised for failures that are not part of a normal business outcome."""

from __future__ import annotations


class TriageError(RuntimeError):
    """Base class for unexpected triage engine failures."""


class OutboxWriteError(TriageError):
    """The outbox could not durably record an external side effect."""
