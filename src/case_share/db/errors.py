"""PostgREST error hierarchy shared by the record stores.

The in-memory store raises the same classes so sharing code only ever
distinguishes Supabase errors, never backend-specific ones. None of these
carry httpx.Response objects or request headers (which hold secrets).
"""

from __future__ import annotations

from dataclasses import dataclass

import httpx

# PostgreSQL SQLSTATE for unique_violation.
UNIQUE_VIOLATION = "23505"


@dataclass(frozen=True, slots=True)
class SupabaseError(Exception):
    """Base error for record store requests."""

    status_code: int
    message: str
    code: str | None = None
    details: str | None = None
    hint: str | None = None

    def __str__(self) -> str:
        bits: list[str] = [f"SupabaseError(status={self.status_code})", self.message]
        if self.code:
            bits.append(f"code={self.code}")
        if self.details:
            bits.append(f"details={self.details}")
        return " ".join(bits)


class SupabaseAuthError(SupabaseError):
    """401/403 auth errors (bad key, RLS, expired session, etc.)."""


class SupabaseNotFoundError(SupabaseError):
    """404 errors (missing table/view/route)."""


class SupabaseConflictError(SupabaseError):
    """409 conflicts (unique violations, foreign keys, etc.)."""

    @property
    def is_unique_violation(self) -> bool:
        return self.code == UNIQUE_VIOLATION


def unique_violation(message: str, details: str | None = None) -> SupabaseConflictError:
    """Build the error PostgREST reports for a duplicate key."""
    return SupabaseConflictError(
        status_code=409,
        message=message,
        code=UNIQUE_VIOLATION,
        details=details,
    )


# Anything a store call may raise that is not a programming error.
STORE_ERRORS: tuple[type[Exception], ...] = (SupabaseError, httpx.HTTPError)
