"""Record store access for the sharing subsystem (Supabase/PostgREST)."""

from .access_code_repo import AccessCodeRepository
from .audit_emitter import SupabaseAuditEmitter
from .case_repo import CaseRepository
from .errors import (
    STORE_ERRORS,
    SupabaseAuthError,
    SupabaseConflictError,
    SupabaseError,
    SupabaseNotFoundError,
)
from .invite_repo import CaseInviteRepository
from .profile_repo import ProfileDirectory
from .query import PostgrestFilter, Query
from .share_repo import CaseShareRepository
from .supabase_client import SupabaseClient

__all__ = [
    "AccessCodeRepository",
    "CaseInviteRepository",
    "CaseRepository",
    "CaseShareRepository",
    "PostgrestFilter",
    "ProfileDirectory",
    "Query",
    "STORE_ERRORS",
    "SupabaseAuditEmitter",
    "SupabaseAuthError",
    "SupabaseClient",
    "SupabaseConflictError",
    "SupabaseError",
    "SupabaseNotFoundError",
]
