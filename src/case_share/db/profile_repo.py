"""Identity lookups against the profiles table."""

from __future__ import annotations

from case_share.models import Profile, fold_email
from case_share.protocols import RecordStore

from .query import Query


class ProfileDirectory:
    """Resolves registered identities by email or id."""

    TABLE = "profiles"

    def __init__(self, store: RecordStore) -> None:
        self._store = store

    async def lookup_by_email(self, email: str) -> Profile | None:
        folded = fold_email(email)
        if not folded:
            return None
        rows = await self._store.select(Query(self.TABLE).eq("email", folded).first())
        return Profile.from_row(rows[0]) if rows else None

    async def get_many(self, user_ids: list[str]) -> list[Profile]:
        if not user_ids:
            return []
        rows = await self._store.select(Query(self.TABLE).in_("id", user_ids))
        return [Profile.from_row(r) for r in rows]
