"""Pending, token-addressed invitations for emails without an account.

Lifecycle::

    create ──► Pending ──► redeem  ──► (row deleted, Share created)
                  │
                  ├──────► cancel  ──► (row deleted)
                  │
                  └──────► expiry passes ──► latent-expired
                                 │
                                 ├── preview: reported invalid, row kept
                                 └── redeem / sweep: row deleted

There is no status column. Only the SHA-256 of the token is stored; the
plaintext is returned once from ``create`` inside the invite link.

Concurrent redemptions of one token are serialized by the unique index on
(case_id, shared_with_user_id): the loser's insert fails with a unique
violation, which is reported as success since the grant now exists.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable

from case_share.db.case_repo import CaseRepository
from case_share.db.errors import STORE_ERRORS, SupabaseConflictError
from case_share.db.invite_repo import CaseInviteRepository
from case_share.db.profile_repo import ProfileDirectory
from case_share.db.share_repo import CaseShareRepository
from case_share.models import (
    DEFAULT_INVITE_TTL,
    CaseInvite,
    CaseShare,
    InviteCreated,
    InvitePreview,
    PendingInvite,
    Permissions,
    Redemption,
    build_invite_link,
    fold_email,
    generate_invite_token,
    hash_token,
    normalize_email,
    redact_token,
    utcnow,
)
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

DEFAULT_CASE_TITLE = 'a case'


class InviteLedger:
    """Invite state machine over the case_share_invites table.

    Args:
        cases: Owner lookups and preview titles.
        invites: Invite rows.
        shares: Grants materialized on redemption.
        profiles: Registered-email check on create.
        ttl: Fixed lifetime of a new invite.
        default_origin: Origin for invite links when the caller gives none.
        clock: Source of "now"; injectable for expiry tests.
    """

    def __init__(
        self,
        *,
        cases: CaseRepository,
        invites: CaseInviteRepository,
        shares: CaseShareRepository,
        profiles: ProfileDirectory,
        ttl: timedelta = DEFAULT_INVITE_TTL,
        default_origin: str = '',
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if ttl <= timedelta(0):
            raise ValueError('invite ttl must be positive')
        self._cases = cases
        self._invites = invites
        self._shares = shares
        self._profiles = profiles
        self._ttl = ttl
        self._default_origin = default_origin
        self._clock = clock

    async def create(
        self,
        case_id: str,
        owner: AuthIdentity | None,
        email: str,
        permissions: Permissions | None = None,
        origin: str | None = None,
    ) -> WriteOutcome[InviteCreated]:
        """Offer access to an email that has no account yet.

        A latent-expired invite for the same (case, email) is replaced.

        Raises:
            Unauthenticated, Forbidden: Actor missing or not the owner.
            ValueError: Blank or malformed email, or no origin available.
        """
        link_origin = origin or self._default_origin
        if not link_origin:
            raise ValueError('origin is required to build invite links')
        perms = permissions or Permissions()
        normalized = normalize_email(email)

        try:
            actor = await authorize_case_owner(self._cases, case_id, owner)
            now = self._clock()

            existing = await self._invites.find(case_id, normalized)
            if existing is not None:
                if not existing.is_expired(now):
                    return WriteFailed.conflict_of(
                        ConflictReason.ALREADY_INVITED, 'An invite is already pending for this email',
                    )
                await self._invites.delete(existing.id, case_id=case_id)
                logger.info('expired_invite_replaced', case_id=case_id, invite_id=existing.id)

            if await self._profiles.lookup_by_email(normalized) is not None:
                return WriteFailed.conflict_of(
                    ConflictReason.ALREADY_REGISTERED,
                    'This email belongs to a registered user; share directly instead',
                )

            token = generate_invite_token()
            try:
                invite = await self._invites.create(CaseInvite(
                    case_id=case_id,
                    email=normalized,
                    invited_by_user_id=actor.user_id,
                    token_hash=hash_token(token),
                    expires_at=now + self._ttl,
                    can_view=perms.can_view,
                    can_edit=perms.can_edit,
                ))
            except SupabaseConflictError as exc:
                if not exc.is_unique_violation:
                    raise
                return WriteFailed.conflict_of(
                    ConflictReason.ALREADY_INVITED, 'An invite is already pending for this email',
                )
        except STORE_ERRORS as exc:
            logger.warning('invite_create_failed', case_id=case_id, error=str(exc))
            return WriteFailed(ErrorKind.INTERNAL_ERROR, 'Failed to create invite')

        logger.info(
            'invite_created',
            case_id=case_id,
            invite_id=invite.id,
            token=redact_token(token),
            expires_at=invite.expires_at.isoformat(),
        )
        return Ok(InviteCreated(
            invite_id=invite.id,
            case_id=case_id,
            email=normalized,
            token=token,
            invite_link=build_invite_link(link_origin, token),
            expires_at=invite.expires_at,
        ))

    async def preview(self, token: str) -> ReadOutcome[InvitePreview | None]:
        """Describe an invite without consuming it. Never deletes."""
        if not token:
            return Ok(None)
        try:
            invite = await self._invites.get_by_token_hash(hash_token(token))
            if invite is None:
                return Ok(None)
            if invite.is_expired(self._clock()):
                return Ok(InvitePreview(
                    case_id=invite.case_id,
                    case_title='',
                    email=invite.email,
                    expires_at=invite.expires_at,
                    valid=False,
                ))
            case = await self._cases.get(invite.case_id)
        except STORE_ERRORS as exc:
            logger.warning('invite_preview_degraded', token=redact_token(token), error=str(exc))
            return ReadDegraded('store_unavailable', None)

        return Ok(InvitePreview(
            case_id=invite.case_id,
            case_title=(case.title if case is not None else '') or DEFAULT_CASE_TITLE,
            email=invite.email,
            expires_at=invite.expires_at,
            valid=True,
        ))

    async def redeem(
        self, token: str, actor_id: str, actor_email: str,
    ) -> WriteOutcome[Redemption]:
        """Turn a pending invite into a Share for the authenticated actor.

        The actor's email must match the invited email case-insensitively.
        A failed share insert leaves the invite intact so the call can be
        retried.
        """
        token_ref = redact_token(token)
        try:
            invite = await self._invites.get_by_token_hash(hash_token(token)) if token else None
            if invite is None:
                return WriteFailed(ErrorKind.NOT_FOUND, 'Invite not found')

            if invite.is_expired(self._clock()):
                try:
                    await self._invites.delete(invite.id)
                except STORE_ERRORS as exc:
                    logger.warning('expired_invite_delete_failed', invite_id=invite.id, error=str(exc))
                logger.info('invite_expired', case_id=invite.case_id, token=token_ref)
                return WriteFailed(ErrorKind.EXPIRED, 'This invite has expired')

            if fold_email(actor_email) != fold_email(invite.email):
                logger.info('invite_email_mismatch', case_id=invite.case_id, token=token_ref)
                return WriteFailed(
                    ErrorKind.EMAIL_MISMATCH, 'This invite was sent to a different email address',
                )

            already_granted = False
            try:
                await self._shares.create(CaseShare(
                    case_id=invite.case_id,
                    shared_with_user_id=actor_id,
                    shared_by_user_id=invite.invited_by_user_id,
                    can_view=invite.can_view,
                    can_edit=invite.can_edit,
                ))
            except SupabaseConflictError as exc:
                if not exc.is_unique_violation:
                    raise
                already_granted = True
        except STORE_ERRORS as exc:
            logger.warning('invite_redeem_failed', token=token_ref, error=str(exc))
            return WriteFailed(ErrorKind.INTERNAL_ERROR, 'Failed to redeem invite; please retry')

        # The grant exists at this point; a leftover row is harmless and
        # cannot be redeemed into a second share.
        try:
            await self._invites.delete(invite.id)
        except STORE_ERRORS as exc:
            logger.warning('invite_cleanup_failed', invite_id=invite.id, error=str(exc))

        logger.info(
            'invite_redeemed',
            case_id=invite.case_id,
            user_id=actor_id,
            already_granted=already_granted,
        )
        return Ok(Redemption(case_id=invite.case_id, already_granted=already_granted))

    async def cancel(
        self, case_id: str, owner: AuthIdentity | None, invite_id: str,
    ) -> WriteOutcome[dict]:
        """Withdraw an invite. Succeeds whether or not it still existed."""
        try:
            await authorize_case_owner(self._cases, case_id, owner)
            removed = await self._invites.delete(invite_id, case_id=case_id)
        except STORE_ERRORS as exc:
            logger.warning('invite_cancel_failed', case_id=case_id, error=str(exc))
            return WriteFailed(ErrorKind.INTERNAL_ERROR, 'Failed to cancel invite')

        logger.info('invite_cancelled', case_id=case_id, invite_id=invite_id, removed=removed)
        return Ok({'invite_id': invite_id, 'removed': removed > 0})

    async def list_pending(
        self, case_id: str, owner: AuthIdentity | None,
    ) -> ReadOutcome[list[PendingInvite]]:
        """Unexpired invites for the case. Expired rows are filtered, not deleted."""
        try:
            await authorize_case_owner(self._cases, case_id, owner)
            invites = await self._invites.list_unexpired(case_id, self._clock())
        except STORE_ERRORS as exc:
            logger.warning('list_pending_degraded', case_id=case_id, error=str(exc))
            return ReadDegraded('store_unavailable', [])

        return Ok([
            PendingInvite(
                id=i.id,
                email=i.email,
                can_view=i.can_view,
                can_edit=i.can_edit,
                expires_at=i.expires_at,
                created_at=i.created_at,
            )
            for i in invites
        ])

    async def purge_expired(self, now: datetime | None = None) -> int:
        """Delete every invite whose expiry is at or before ``now``."""
        purged = await self._invites.purge_expired(now or self._clock())
        if purged:
            logger.info('expired_invites_purged', count=purged)
        return purged
