"""Anonymous access codes persisted in the case_access_codes table."""

from __future__ import annotations

from case_share.models import AccessCode
from case_share.protocols import RecordStore

from .query import Query


class AccessCodeRepository:
    """Code → case mappings. The code column is unique."""

    TABLE = "case_access_codes"

    def __init__(self, store: RecordStore) -> None:
        self._store = store

    async def get(self, code: str) -> AccessCode | None:
        rows = await self._store.select(
            Query(self.TABLE).select("code,case_id").eq("code", code).first()
        )
        if not rows:
            return None
        return AccessCode(code=rows[0]["code"], case_id=str(rows[0]["case_id"]))

    async def create(self, code: AccessCode) -> AccessCode:
        await self._store.insert(
            self.TABLE,
            {"code": code.code, "case_id": code.case_id, "user_id": code.user_id},
        )
        return code
