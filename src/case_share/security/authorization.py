"""Stateless authorization checks for case-scoped operations.

Both checks run before any mutation is attempted. They raise rather than
return a result so a forgotten check cannot be silently ignored.
"""

from __future__ import annotations

from .token_verify import AuthIdentity


class AuthorizationError(Exception):
    """Base class for actor-presence and ownership failures."""

    kind = 'forbidden'

    def __init__(self, detail: str = '') -> None:
        self.detail = detail
        super().__init__(detail or self.kind)


class Unauthenticated(AuthorizationError):
    kind = 'unauthenticated'


class Forbidden(AuthorizationError):
    kind = 'forbidden'


def require_authenticated(actor: AuthIdentity | None) -> AuthIdentity:
    """Return the actor unchanged, or raise Unauthenticated if absent."""
    if actor is None or not actor.user_id:
        raise Unauthenticated('Authentication required')
    return actor


def is_owner(case_owner_id: str | None, actor_id: str | None) -> bool:
    return bool(case_owner_id) and bool(actor_id) and str(case_owner_id) == str(actor_id)


def require_ownership(case_owner_id: str | None, actor_id: str | None) -> None:
    """Raise Forbidden unless the actor owns the case.

    An unknown owner (missing case) is treated as not owned.
    """
    if not is_owner(case_owner_id, actor_id):
        raise Forbidden('Only the case owner can manage sharing')
