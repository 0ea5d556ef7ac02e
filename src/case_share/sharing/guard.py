"""Owner check shared by the registry, the invite ledger and access codes."""

from __future__ import annotations

from case_share.db.case_repo import CaseRepository
from case_share.security.authorization import require_authenticated, require_ownership
from case_share.security.token_verify import AuthIdentity


async def authorize_case_owner(
    cases: CaseRepository,
    case_id: str,
    actor: AuthIdentity | None,
) -> AuthIdentity:
    """Return the actor if it owns ``case_id``.

    Raises:
        Unauthenticated: No actor.
        Forbidden: Case missing or owned by someone else.
    """
    actor = require_authenticated(actor)
    case = await cases.get(case_id)
    require_ownership(case.user_id if case is not None else None, actor.user_id)
    return actor
