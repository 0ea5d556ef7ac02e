"""Application-boundary orchestration of sharing operations.

The controller is the only component routes talk to. For each operation it
checks that an actor is present, delegates to the registry, ledger or
gateway, records a metric, and on success schedules an audit event.

Audit events are fire-and-forget: emission runs as a background task so a
slow or failing audit store never delays or fails the operation.
``drain()`` waits for outstanding emissions (shutdown and tests).

Audit shape::

    emit("permission_change", {
        "user_id": actor.user_id,
        "resource_type": "case",
        "resource_id": case_id,
        "request_id": <X-Request-ID>,
        "metadata": {"action": "share_created", ...},
    })
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, TypeVar

from case_share.models import (
    CaseBundle,
    InviteCreated,
    InvitePreview,
    IssuedAccessCode,
    Permissions,
    Redemption,
    SharedUser,
    ShareOrInvite,
    SharingOverview,
)
from case_share.observability import get_logger, request_id_ctx
from case_share.observability.metrics import record_operation, record_redemption
from case_share.protocols import AuditEmitter
from case_share.security.authorization import AuthorizationError, require_authenticated
from case_share.security.token_verify import AuthIdentity

from .access import AccessCodeGateway
from .invites import InviteLedger
from .outcomes import (
    ErrorKind,
    Ok,
    ReadDegraded,
    ReadOutcome,
    WriteFailed,
    WriteOutcome,
)
from .registry import ShareRegistry

logger = get_logger(__name__)

AUDIT_EVENT = 'permission_change'
AUDIT_RESOURCE_TYPE = 'case'

O = TypeVar('O')


def _outcome_label(outcome: Any) -> str:
    if isinstance(outcome, WriteFailed):
        return outcome.kind.value
    if isinstance(outcome, ReadDegraded):
        return 'degraded'
    return 'ok'


class ShareController:
    def __init__(
        self,
        *,
        registry: ShareRegistry,
        ledger: InviteLedger,
        gateway: AccessCodeGateway,
        audit: AuditEmitter,
    ) -> None:
        self._registry = registry
        self._ledger = ledger
        self._gateway = gateway
        self._audit_emitter = audit
        self._pending: set[asyncio.Task] = set()

    # ── Plumbing ──────────────────────────────────────────────────

    async def _run(self, operation: str, call: Awaitable[O]) -> O:
        try:
            outcome = await call
        except AuthorizationError as exc:
            record_operation(operation, exc.kind)
            raise
        record_operation(operation, _outcome_label(outcome))
        return outcome

    def _audit(self, actor: AuthIdentity, case_id: str, action: str, **details: Any) -> None:
        data = {
            'user_id': actor.user_id,
            'resource_type': AUDIT_RESOURCE_TYPE,
            'resource_id': case_id,
            'request_id': request_id_ctx.get(),
            'metadata': {'action': action, **details},
        }
        task = asyncio.create_task(self._emit(data))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _emit(self, data: dict[str, Any]) -> None:
        try:
            await self._audit_emitter.emit(AUDIT_EVENT, data)
        except Exception:
            logger.exception(
                'audit_emit_failed',
                resource_id=data['resource_id'],
                action=data['metadata']['action'],
            )

    async def drain(self) -> None:
        """Wait for every scheduled audit emission to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ── Direct shares ─────────────────────────────────────────────

    async def share_with_user(
        self,
        case_id: str,
        actor: AuthIdentity | None,
        email: str,
        permissions: Permissions | None = None,
    ) -> WriteOutcome[SharedUser]:
        actor = require_authenticated(actor)
        outcome = await self._run(
            'share_with_user',
            self._registry.share_with_user(case_id, actor, email, permissions),
        )
        if isinstance(outcome, Ok):
            self._audit_share_created(actor, case_id, outcome.data)
        return outcome

    def _audit_share_created(self, actor: AuthIdentity, case_id: str, user: SharedUser) -> None:
        self._audit(
            actor, case_id, 'share_created',
            shared_with_user_id=user.user_id,
            can_view=user.can_view,
            can_edit=user.can_edit,
        )

    async def share_or_invite(
        self,
        case_id: str,
        actor: AuthIdentity | None,
        email: str,
        permissions: Permissions | None = None,
        origin: str | None = None,
    ) -> WriteOutcome[ShareOrInvite]:
        """Share directly if the email has an account, otherwise invite it."""
        actor = require_authenticated(actor)
        shared = await self._run(
            'share_with_user',
            self._registry.share_with_user(case_id, actor, email, permissions),
        )
        if isinstance(shared, Ok):
            self._audit_share_created(actor, case_id, shared.data)
            return Ok(ShareOrInvite(pending=False, share=shared.data))
        if shared.kind is not ErrorKind.NOT_FOUND:
            return shared

        invited = await self.create_invite(case_id, actor, email, permissions, origin)
        if isinstance(invited, Ok):
            return Ok(ShareOrInvite(pending=True, invite=invited.data))
        return invited

    async def list_shared_users(
        self, case_id: str, actor: AuthIdentity | None,
    ) -> ReadOutcome[list[SharedUser]]:
        actor = require_authenticated(actor)
        return await self._run('list_shared_users', self._registry.list_shared_users(case_id, actor))

    async def update_permissions(
        self,
        case_id: str,
        actor: AuthIdentity | None,
        grantee_id: str,
        permissions: Permissions,
    ) -> WriteOutcome[dict]:
        actor = require_authenticated(actor)
        outcome = await self._run(
            'update_permissions',
            self._registry.update_permissions(case_id, actor, grantee_id, permissions),
        )
        if isinstance(outcome, Ok):
            self._audit(
                actor, case_id, 'permissions_updated',
                shared_with_user_id=grantee_id,
                can_view=permissions.can_view,
                can_edit=permissions.can_edit,
            )
        return outcome

    async def unshare(
        self, case_id: str, actor: AuthIdentity | None, grantee_id: str,
    ) -> WriteOutcome[dict]:
        actor = require_authenticated(actor)
        outcome = await self._run('unshare', self._registry.unshare(case_id, actor, grantee_id))
        if isinstance(outcome, Ok):
            self._audit(actor, case_id, 'unshared', shared_with_user_id=grantee_id)
        return outcome

    # ── Invites ───────────────────────────────────────────────────

    async def create_invite(
        self,
        case_id: str,
        actor: AuthIdentity | None,
        email: str,
        permissions: Permissions | None = None,
        origin: str | None = None,
    ) -> WriteOutcome[InviteCreated]:
        actor = require_authenticated(actor)
        outcome = await self._run(
            'create_invite',
            self._ledger.create(case_id, actor, email, permissions, origin),
        )
        if isinstance(outcome, Ok):
            perms = permissions or Permissions()
            self._audit(
                actor, case_id, 'invite_sent',
                invite_id=outcome.data.invite_id,
                can_view=perms.can_view,
                can_edit=perms.can_edit,
            )
        return outcome

    async def list_pending_invites(self, case_id: str, actor: AuthIdentity | None):
        actor = require_authenticated(actor)
        return await self._run('list_pending_invites', self._ledger.list_pending(case_id, actor))

    async def cancel_invite(
        self, case_id: str, actor: AuthIdentity | None, invite_id: str,
    ) -> WriteOutcome[dict]:
        actor = require_authenticated(actor)
        outcome = await self._run('cancel_invite', self._ledger.cancel(case_id, actor, invite_id))
        if isinstance(outcome, Ok):
            self._audit(actor, case_id, 'invite_cancelled', invite_id=invite_id)
        return outcome

    async def preview_invite(self, token: str) -> ReadOutcome[InvitePreview | None]:
        return await self._run('preview_invite', self._ledger.preview(token))

    async def redeem_invite(
        self, token: str, actor: AuthIdentity | None,
    ) -> WriteOutcome[Redemption]:
        try:
            actor = require_authenticated(actor)
        except AuthorizationError as exc:
            record_redemption(exc.kind)
            raise
        outcome = await self._run(
            'redeem_invite',
            self._ledger.redeem(token, actor.user_id, actor.email),
        )
        record_redemption(_outcome_label(outcome))
        if isinstance(outcome, Ok):
            self._audit(
                actor, outcome.data.case_id, 'invite_redeemed',
                already_granted=outcome.data.already_granted,
            )
        return outcome

    # ── Composite reads ───────────────────────────────────────────

    async def sharing_overview(
        self, case_id: str, actor: AuthIdentity | None,
    ) -> ReadOutcome[SharingOverview]:
        """Shared users and pending invites, fetched concurrently."""
        actor = require_authenticated(actor)
        users, invites = await asyncio.gather(
            self._registry.list_shared_users(case_id, actor),
            self._ledger.list_pending(case_id, actor),
            return_exceptions=True,
        )
        for result in (users, invites):
            if isinstance(result, BaseException):
                label = result.kind if isinstance(result, AuthorizationError) else 'error'
                record_operation('sharing_overview', label)
                raise result

        overview = SharingOverview(
            shared_users=tuple(users.data or ()),
            pending_invites=tuple(invites.data or ()),
        )
        degraded = [r.reason for r in (users, invites) if isinstance(r, ReadDegraded)]
        outcome: ReadOutcome[SharingOverview]
        outcome = ReadDegraded(degraded[0], overview) if degraded else Ok(overview)
        record_operation('sharing_overview', _outcome_label(outcome))
        return outcome

    # ── Access codes ──────────────────────────────────────────────

    async def issue_access_code(
        self, case_id: str, actor: AuthIdentity | None,
    ) -> WriteOutcome[IssuedAccessCode]:
        actor = require_authenticated(actor)
        return await self._run('issue_access_code', self._gateway.issue(case_id, actor))

    async def resolve_access_code(self, code: str) -> ReadOutcome[CaseBundle | None]:
        return await self._run('resolve_access_code', self._gateway.resolve(code))
