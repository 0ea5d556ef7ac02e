"""Anonymous, read-only case access through capability codes.

Anyone holding a code sees the mapped case with its emails and events.
The code is the only credential, so every sub-query is scoped to the mapped
case id and each returned row is checked again before it leaves this
module. A row carrying a different case id is dropped and logged.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

from case_share.db.access_code_repo import AccessCodeRepository
from case_share.db.case_repo import CaseRepository
from case_share.db.errors import STORE_ERRORS, SupabaseConflictError
from case_share.models import (
    AccessCode,
    CaseBundle,
    IssuedAccessCode,
    generate_access_code,
    issued_code_form,
    redact_token,
)
from case_share.observability import get_logger
from case_share.observability.metrics import record_foreign_rows
from case_share.security.token_verify import AuthIdentity

from .guard import authorize_case_owner
from .outcomes import ErrorKind, Ok, ReadDegraded, ReadOutcome, WriteFailed, WriteOutcome

logger = get_logger(__name__)

MAX_ISSUE_ATTEMPTS = 5


class AccessCodeGateway:
    """Resolve and issue access codes.

    Args:
        codes: Code to case mappings.
        cases: Case rows and their emails and events.
        code_factory: Code generator; injectable to force collisions in tests.
    """

    def __init__(
        self,
        *,
        codes: AccessCodeRepository,
        cases: CaseRepository,
        code_factory: Callable[[], str] = generate_access_code,
    ) -> None:
        self._codes = codes
        self._cases = cases
        self._code_factory = code_factory

    async def resolve(self, code: str) -> ReadOutcome[CaseBundle | None]:
        """Return the case bundle behind ``code``, or None if unknown."""
        code = (code or '').strip()
        if not code:
            return Ok(None)

        try:
            mapping = await self._codes.get(code)
            issued_form = issued_code_form(code)
            if mapping is None and issued_form not in (None, code):
                mapping = await self._codes.get(issued_form)
            if mapping is None:
                return Ok(None)
            case = await self._cases.get(mapping.case_id)
        except STORE_ERRORS as exc:
            logger.warning('access_code_lookup_degraded', code=redact_token(code, 3), error=str(exc))
            return ReadDegraded('store_unavailable', None)

        if case is None or case.id != mapping.case_id:
            logger.warning('access_code_dangling', code=redact_token(code, 3), case_id=mapping.case_id)
            return Ok(None)

        (emails, emails_ok), (events, events_ok) = await asyncio.gather(
            self._scoped('emails', self._cases.list_emails, case.id),
            self._scoped('events', self._cases.list_events, case.id),
        )
        bundle = CaseBundle(case=dict(case.data), emails=tuple(emails), events=tuple(events))
        if not (emails_ok and events_ok):
            return ReadDegraded('partial_content', bundle)
        return Ok(bundle)

    async def _scoped(
        self,
        kind: str,
        fetch: Callable[[str], Awaitable[list[dict[str, Any]]]],
        case_id: str,
    ) -> tuple[list[dict[str, Any]], bool]:
        try:
            rows = await fetch(case_id)
        except STORE_ERRORS as exc:
            logger.warning('access_code_content_degraded', kind=kind, case_id=case_id, error=str(exc))
            return [], False

        kept = [r for r in rows if str(r.get('case_id')) == case_id]
        if len(kept) != len(rows):
            record_foreign_rows(kind, len(rows) - len(kept))
            logger.warning(
                'access_code_foreign_rows_dropped',
                kind=kind,
                case_id=case_id,
                dropped=len(rows) - len(kept),
            )
        return kept, True

    async def issue(
        self, case_id: str, owner: AuthIdentity | None,
    ) -> WriteOutcome[IssuedAccessCode]:
        """Mint a new code for the case. Owner only.

        Raises:
            Unauthenticated, Forbidden: Actor missing or not the owner.
        """
        try:
            actor = await authorize_case_owner(self._cases, case_id, owner)
            for _ in range(MAX_ISSUE_ATTEMPTS):
                code = self._code_factory()
                try:
                    await self._codes.create(AccessCode(code=code, case_id=case_id, user_id=actor.user_id))
                except SupabaseConflictError as exc:
                    if not exc.is_unique_violation:
                        raise
                    logger.info('access_code_collision', case_id=case_id)
                    continue
                logger.info('access_code_issued', case_id=case_id, code=redact_token(code, 3))
                return Ok(IssuedAccessCode(code=code, case_id=case_id))
        except STORE_ERRORS as exc:
            logger.warning('access_code_issue_failed', case_id=case_id, error=str(exc))
            return WriteFailed(ErrorKind.INTERNAL_ERROR, 'Failed to issue access code')

        return WriteFailed(ErrorKind.INTERNAL_ERROR, 'Could not allocate a unique access code')
