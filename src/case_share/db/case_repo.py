"""Read access to cases and their timeline content.

Case CRUD belongs to the surrounding application; this subsystem only needs
owner lookups and the read-only content behind an access code.
"""

from __future__ import annotations

from typing import Any

from case_share.models import CaseRecord
from case_share.protocols import RecordStore

from .query import Query


class CaseRepository:
    """Cases plus their emails and events, backed by a RecordStore."""

    TABLE = "cases"
    EMAILS_TABLE = "emails"
    EVENTS_TABLE = "events"

    def __init__(self, store: RecordStore) -> None:
        self._store = store

    async def get(self, case_id: str) -> CaseRecord | None:
        rows = await self._store.select(Query(self.TABLE).eq("id", case_id).first())
        return CaseRecord.from_row(rows[0]) if rows else None

    async def list_emails(self, case_id: str) -> list[dict[str, Any]]:
        """Emails for one case, newest first."""
        return await self._store.select(
            Query(self.EMAILS_TABLE).eq("case_id", case_id).order_by("date", desc=True)
        )

    async def list_events(self, case_id: str) -> list[dict[str, Any]]:
        """Events for one case, newest first."""
        return await self._store.select(
            Query(self.EVENTS_TABLE).eq("case_id", case_id).order_by("date", desc=True)
        )
