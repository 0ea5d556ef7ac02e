"""Durable case grants to already-registered identities.

Every operation authorizes the actor as case owner before touching the
store. Grants are unique per (case, grantee): the registry checks for an
existing row first and also treats a unique violation on insert as
``already_shared``, so a race between two owners' tabs never yields two rows.
"""

from __future__ import annotations

from case_share.db.case_repo import CaseRepository
from case_share.db.errors import STORE_ERRORS, SupabaseConflictError
from case_share.db.profile_repo import ProfileDirectory
from case_share.db.share_repo import CaseShareRepository
from case_share.models import CaseShare, Permissions, SharedUser, normalize_email
from case_share.observability import get_logger
from case_share.security.token_verify import AuthIdentity

from .guard import authorize_case_owner
from .outcomes import (
    ConflictReason,
    ErrorKind,
    Ok,
    ReadDegraded,
    ReadOutcome,
    WriteFailed,
    WriteOutcome,
)

logger = get_logger(__name__)


class ShareRegistry:
    def __init__(
        self,
        *,
        cases: CaseRepository,
        shares: CaseShareRepository,
        profiles: ProfileDirectory,
    ) -> None:
        self._cases = cases
        self._shares = shares
        self._profiles = profiles

    async def share_with_user(
        self,
        case_id: str,
        owner: AuthIdentity | None,
        target_email: str,
        permissions: Permissions | None = None,
    ) -> WriteOutcome[SharedUser]:
        """Grant ``target_email``'s account access to the case.

        Defaults to view-only. Returns NOT_FOUND when no account has the
        email, which callers use to fall back to an invite.

        Raises:
            Unauthenticated, Forbidden: Actor missing or not the owner.
            ValueError: Blank or malformed email.
        """
        perms = permissions or Permissions()
        email = normalize_email(target_email)
        try:
            actor = await authorize_case_owner(self._cases, case_id, owner)

            profile = await self._profiles.lookup_by_email(email)
            if profile is None:
                return WriteFailed(ErrorKind.NOT_FOUND, 'No registered user with that email')
            if profile.id == actor.user_id:
                return WriteFailed.conflict_of(
                    ConflictReason.SELF_SHARE, 'Cannot share a case with yourself',
                )
            if await self._shares.get(case_id, profile.id) is not None:
                return WriteFailed.conflict_of(
                    ConflictReason.ALREADY_SHARED, 'Case is already shared with this user',
                )

            try:
                share = await self._shares.create(CaseShare(
                    case_id=case_id,
                    shared_with_user_id=profile.id,
                    shared_by_user_id=actor.user_id,
                    can_view=perms.can_view,
                    can_edit=perms.can_edit,
                ))
            except SupabaseConflictError as exc:
                if not exc.is_unique_violation:
                    raise
                return WriteFailed.conflict_of(
                    ConflictReason.ALREADY_SHARED, 'Case is already shared with this user',
                )
        except STORE_ERRORS as exc:
            logger.warning('share_create_failed', case_id=case_id, error=str(exc))
            return WriteFailed(ErrorKind.INTERNAL_ERROR, 'Failed to share case')

        logger.info('case_shared', case_id=case_id, grantee_id=profile.id)
        return Ok(SharedUser(
            user_id=profile.id,
            email=profile.email,
            display_name=profile.display_name,
            share_id=share.id,
            can_view=share.can_view,
            can_edit=share.can_edit,
        ))

    async def list_shared_users(
        self, case_id: str, owner: AuthIdentity | None,
    ) -> ReadOutcome[list[SharedUser]]:
        """Grants on the case joined with grantee profiles, oldest first."""
        try:
            await authorize_case_owner(self._cases, case_id, owner)
            shares = await self._shares.list_for_case(case_id)
            profiles = {
                p.id: p
                for p in await self._profiles.get_many([s.shared_with_user_id for s in shares])
            }
        except STORE_ERRORS as exc:
            logger.warning('list_shared_users_degraded', case_id=case_id, error=str(exc))
            return ReadDegraded('store_unavailable', [])

        users: list[SharedUser] = []
        for share in shares:
            profile = profiles.get(share.shared_with_user_id)
            if profile is None:
                continue
            users.append(SharedUser(
                user_id=share.shared_with_user_id,
                email=profile.email,
                display_name=profile.display_name,
                share_id=share.id,
                can_view=share.can_view,
                can_edit=share.can_edit,
            ))
        return Ok(users)

    async def update_permissions(
        self,
        case_id: str,
        owner: AuthIdentity | None,
        grantee_id: str,
        permissions: Permissions,
    ) -> WriteOutcome[dict]:
        """Overwrite both flags on an existing grant. No row is not an error."""
        try:
            await authorize_case_owner(self._cases, case_id, owner)
            updated = await self._shares.update_permissions(case_id, grantee_id, permissions)
        except STORE_ERRORS as exc:
            logger.warning('share_update_failed', case_id=case_id, error=str(exc))
            return WriteFailed(ErrorKind.INTERNAL_ERROR, 'Failed to update permissions')

        logger.info('share_permissions_updated', case_id=case_id, grantee_id=grantee_id, updated=updated)
        return Ok({
            'user_id': grantee_id,
            'can_view': permissions.can_view,
            'can_edit': permissions.can_edit,
            'updated': updated > 0,
        })

    async def unshare(
        self, case_id: str, owner: AuthIdentity | None, grantee_id: str,
    ) -> WriteOutcome[dict]:
        """Revoke a grant. Succeeds whether or not one existed."""
        try:
            await authorize_case_owner(self._cases, case_id, owner)
            removed = await self._shares.delete(case_id, grantee_id)
        except STORE_ERRORS as exc:
            logger.warning('unshare_failed', case_id=case_id, error=str(exc))
            return WriteFailed(ErrorKind.INTERNAL_ERROR, 'Failed to remove share')

        logger.info('case_unshared', case_id=case_id, grantee_id=grantee_id, removed=removed)
        return Ok({'user_id': grantee_id, 'removed': removed > 0})
