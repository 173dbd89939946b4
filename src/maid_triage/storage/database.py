"""Shared database handle injected into every store."""

from __future__ import annotations

from pathlib import Path

from maid_triage.storage.alembic_runner import current_revision, upgrade_head
from maid_triage.storage.common import build_sqlite_engine


class TriageDatabase:
    """Owns the SQLAlchemy engine shared by the task store, outbox and ledger."""

    def __init__(self, db_path: Path, *, busy_timeout_ms: int = 5000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)

    def init_schema(self) -> None:
        """Run schema migrations up to head."""

        upgrade_head(self.db_path)

    def schema_revision(self) -> str | None:
        return current_revision(self.engine)

    def close(self) -> None:
        self.engine.dispose()
