"""Case sharing API endpoints.

  POST   /api/v1/cases/{case_id}/shares               → share or invite
  GET    /api/v1/cases/{case_id}/shares               → list shared users
  PATCH  /api/v1/cases/{case_id}/shares/{grantee_id}  → update permissions
  DELETE /api/v1/cases/{case_id}/shares/{grantee_id}  → unshare
  POST   /api/v1/cases/{case_id}/invites              → create invite
  GET    /api/v1/cases/{case_id}/invites              → list pending invites
  DELETE /api/v1/cases/{case_id}/invites/{invite_id}  → cancel invite
  GET    /api/v1/cases/{case_id}/overview             → users + invites
  POST   /api/v1/cases/{case_id}/access-codes         → issue access code
  GET    /api/v1/invites/{token}                      → preview (public)
  POST   /api/v1/invites/{token}/redeem               → redeem
  GET    /api/v1/access/{code}                        → case bundle (public)

Auth contract:
  - Case-scoped endpoints require the case owner.
  - Redeem requires any authenticated actor whose email matches the invite.
  - Preview and access-code resolution are anonymous.

Status codes:
  401 unauthenticated, 403 forbidden or email mismatch, 404 not found,
  409 conflict, 410 expired, 422 malformed input, 503 store failure.
"""

from __future__ import annotations

from typing import Any, Awaitable

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator

from case_share.models import Permissions, normalize_email
from case_share.security.auth_guard import get_optional_identity
from case_share.security.authorization import AuthorizationError, Unauthenticated
from case_share.security.token_verify import AuthIdentity

from .controller import ShareController
from .outcomes import ErrorKind, ReadDegraded, WriteFailed

_STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.UNAUTHENTICATED: 401,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.EXPIRED: 410,
    ErrorKind.EMAIL_MISMATCH: 403,
    ErrorKind.INTERNAL_ERROR: 503,
}


# ── Request schemas ──────────────────────────────────────────────────


class _EmailBody(BaseModel):
    email: str = Field(..., min_length=1, max_length=320)
    can_view: bool = True
    can_edit: bool = False

    @field_validator('email')
    @classmethod
    def _normalize(cls, value: str) -> str:
        return normalize_email(value)

    @property
    def permissions(self) -> Permissions:
        return Permissions(can_view=self.can_view, can_edit=self.can_edit)


class ShareRequest(_EmailBody):
    """Share with a registered user, or invite the email if unregistered."""


class InviteRequest(_EmailBody):
    """Invite an email that has no account yet."""


class PermissionsRequest(BaseModel):
    """Both flags are required; the update overwrites them."""

    can_view: bool
    can_edit: bool


# ── Response helpers ─────────────────────────────────────────────────


def _error(kind: ErrorKind, detail: str) -> JSONResponse:
    return JSONResponse(
        status_code=_STATUS_BY_KIND[kind],
        content={'success': False, 'error': kind.value, 'detail': detail},
    )


def _respond(outcome: Any, *, status_code: int = 200) -> JSONResponse:
    if isinstance(outcome, WriteFailed):
        return JSONResponse(status_code=_STATUS_BY_KIND[outcome.kind], content=outcome.to_dict())
    if isinstance(outcome, ReadDegraded) and outcome.data is None:
        return _error(ErrorKind.INTERNAL_ERROR, 'Temporarily unavailable; please retry')
    return JSONResponse(status_code=status_code, content=outcome.to_dict())


async def _invoke(call: Awaitable[Any], *, status_code: int = 200) -> JSONResponse:
    try:
        outcome = await call
    except AuthorizationError as exc:
        kind = ErrorKind.UNAUTHENTICATED if isinstance(exc, Unauthenticated) else ErrorKind.FORBIDDEN
        response = _error(kind, exc.detail)
        if kind is ErrorKind.UNAUTHENTICATED:
            response.headers['WWW-Authenticate'] = 'Bearer'
        return response
    except ValueError as exc:
        return JSONResponse(
            status_code=422,
            content={'success': False, 'error': 'invalid_request', 'detail': str(exc)},
        )
    return _respond(outcome, status_code=status_code)


def _not_found(outcome: Any, detail: str) -> JSONResponse | None:
    if not isinstance(outcome, ReadDegraded) and outcome.data is None:
        return _error(ErrorKind.NOT_FOUND, detail)
    return None


# ── Route factory ────────────────────────────────────────────────────


def create_case_share_router(controller: ShareController) -> APIRouter:
    """Create the sharing router around an injected controller."""
    router = APIRouter(prefix='/api/v1', tags=['case-sharing'])

    @router.post('/cases/{case_id}/shares')
    async def share_case(
        case_id: str,
        body: ShareRequest,
        identity: AuthIdentity | None = Depends(get_optional_identity),
    ):
        """Share directly, or fall back to an invite for unknown emails.

        201 for a new grant or invite; the body's ``pending`` tells which.
        """
        return await _invoke(
            controller.share_or_invite(case_id, identity, body.email, body.permissions),
            status_code=201,
        )

    @router.get('/cases/{case_id}/shares')
    async def list_shares(
        case_id: str,
        identity: AuthIdentity | None = Depends(get_optional_identity),
    ):
        return await _invoke(controller.list_shared_users(case_id, identity))

    @router.patch('/cases/{case_id}/shares/{grantee_id}')
    async def update_share(
        case_id: str,
        grantee_id: str,
        body: PermissionsRequest,
        identity: AuthIdentity | None = Depends(get_optional_identity),
    ):
        perms = Permissions(can_view=body.can_view, can_edit=body.can_edit)
        return await _invoke(controller.update_permissions(case_id, identity, grantee_id, perms))

    @router.delete('/cases/{case_id}/shares/{grantee_id}')
    async def delete_share(
        case_id: str,
        grantee_id: str,
        identity: AuthIdentity | None = Depends(get_optional_identity),
    ):
        """Revoke a grant. Idempotent."""
        return await _invoke(controller.unshare(case_id, identity, grantee_id))

    @router.post('/cases/{case_id}/invites')
    async def create_invite(
        case_id: str,
        body: InviteRequest,
        identity: AuthIdentity | None = Depends(get_optional_identity),
    ):
        """Create an invite. The plaintext token is returned once, here."""
        return await _invoke(
            controller.create_invite(case_id, identity, body.email, body.permissions),
            status_code=201,
        )

    @router.get('/cases/{case_id}/invites')
    async def list_invites(
        case_id: str,
        identity: AuthIdentity | None = Depends(get_optional_identity),
    ):
        return await _invoke(controller.list_pending_invites(case_id, identity))

    @router.delete('/cases/{case_id}/invites/{invite_id}')
    async def cancel_invite(
        case_id: str,
        invite_id: str,
        identity: AuthIdentity | None = Depends(get_optional_identity),
    ):
        return await _invoke(controller.cancel_invite(case_id, identity, invite_id))

    @router.get('/cases/{case_id}/overview')
    async def sharing_overview(
        case_id: str,
        identity: AuthIdentity | None = Depends(get_optional_identity),
    ):
        return await _invoke(controller.sharing_overview(case_id, identity))

    @router.post('/cases/{case_id}/access-codes')
    async def issue_access_code(
        case_id: str,
        identity: AuthIdentity | None = Depends(get_optional_identity),
    ):
        return await _invoke(controller.issue_access_code(case_id, identity), status_code=201)

    @router.get('/invites/{token}')
    async def preview_invite(token: str):
        """Public invite preview. Expired invites report ``valid: false``."""
        outcome = await controller.preview_invite(token)
        return _not_found(outcome, 'Invite not found') or _respond(outcome)

    @router.post('/invites/{token}/redeem')
    async def redeem_invite(
        token: str,
        identity: AuthIdentity | None = Depends(get_optional_identity),
    ):
        return await _invoke(controller.redeem_invite(token, identity))

    @router.get('/access/{code}')
    async def resolve_access_code(code: str):
        """Public, read-only case content for an access code."""
        outcome = await controller.resolve_access_code(code)
        return _not_found(outcome, 'Access code not found') or _respond(outcome)

    return router
