"""Pending case invites persisted in the case_share_invites table.

Unique indexes:
  - (case_id, email): one pending invite per address per case.
  - token_hash: tokens are never reused across rows.

Rows are hard-deleted on redemption, cancellation and expiry. There is no
status column; expiry is evaluated by callers against ``expires_at``.
"""

from __future__ import annotations

from datetime import datetime

from case_share.models import CaseInvite
from case_share.protocols import RecordStore

from .query import Query


class CaseInviteRepository:
    """Invite rows backed by a RecordStore."""

    TABLE = "case_share_invites"

    def __init__(self, store: RecordStore) -> None:
        self._store = store

    async def get_by_token_hash(self, token_hash: str) -> CaseInvite | None:
        rows = await self._store.select(
            Query(self.TABLE).eq("token_hash", token_hash).first()
        )
        return CaseInvite.from_row(rows[0]) if rows else None

    async def find(self, case_id: str, email: str) -> CaseInvite | None:
        rows = await self._store.select(
            Query(self.TABLE).eq("case_id", case_id).eq("email", email).first()
        )
        return CaseInvite.from_row(rows[0]) if rows else None

    async def create(self, invite: CaseInvite) -> CaseInvite:
        rows = await self._store.insert(self.TABLE, invite.as_row())
        return CaseInvite.from_row(rows[0]) if rows else invite

    async def delete(self, invite_id: str, *, case_id: str | None = None) -> int:
        query = Query(self.TABLE).eq("id", invite_id)
        if case_id is not None:
            query = query.eq("case_id", case_id)
        rows = await self._store.delete(query)
        return len(rows)

    async def list_unexpired(self, case_id: str, now: datetime) -> list[CaseInvite]:
        """Invites for a case whose expiry is strictly after ``now``.

        Query-time filter only; expired rows are left in place.
        """
        rows = await self._store.select(
            Query(self.TABLE)
            .eq("case_id", case_id)
            .gt("expires_at", now.isoformat())
            .order_by("created_at")
        )
        return [CaseInvite.from_row(r) for r in rows]

    async def purge_expired(self, now: datetime) -> int:
        rows = await self._store.delete(
            Query(self.TABLE).lte("expires_at", now.isoformat())
        )
        return len(rows)
