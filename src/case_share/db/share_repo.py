"""Case share grants persisted in the case_shares table.

The table carries a unique index on (case_id, shared_with_user_id). A second
insert for the same pair raises ``SupabaseConflictError`` with
``is_unique_violation`` set; callers decide whether that is a conflict
(direct share) or an idempotent success (invite redemption).
"""

from __future__ import annotations

from case_share.models import CaseShare, Permissions
from case_share.protocols import RecordStore

from .query import Query


class CaseShareRepository:
    """Share grants backed by a RecordStore."""

    TABLE = "case_shares"

    def __init__(self, store: RecordStore) -> None:
        self._store = store

    def _pair(self, case_id: str, user_id: str) -> Query:
        return Query(self.TABLE).eq("case_id", case_id).eq("shared_with_user_id", user_id)

    async def get(self, case_id: str, user_id: str) -> CaseShare | None:
        rows = await self._store.select(self._pair(case_id, user_id).first())
        return CaseShare.from_row(rows[0]) if rows else None

    async def create(self, share: CaseShare) -> CaseShare:
        rows = await self._store.insert(self.TABLE, share.as_row())
        return CaseShare.from_row(rows[0]) if rows else share

    async def list_for_case(self, case_id: str) -> list[CaseShare]:
        rows = await self._store.select(
            Query(self.TABLE).eq("case_id", case_id).order_by("created_at")
        )
        return [CaseShare.from_row(r) for r in rows]

    async def update_permissions(
        self, case_id: str, user_id: str, permissions: Permissions,
    ) -> int:
        """Overwrite both flags. Returns the number of rows touched (0 or 1)."""
        rows = await self._store.update(self._pair(case_id, user_id), permissions.as_row())
        return len(rows)

    async def delete(self, case_id: str, user_id: str) -> int:
        rows = await self._store.delete(self._pair(case_id, user_id))
        return len(rows)
