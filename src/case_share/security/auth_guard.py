"""Bearer authentication middleware.

Sets ``request.state.auth_identity`` to the verified ``AuthIdentity`` or
None. The sharing API has public endpoints (invite preview, access codes),
so a missing token passes through anonymously and the route decides
whether an actor is required.
A token that is present but invalid is always rejected with 401.

Local development may identify the actor with ``X-User-ID`` and
``X-User-Email`` headers instead of a JWT (``allow_dev_headers``).
"""

from __future__ import annotations

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from case_share.observability import get_logger

from .token_verify import (
    AuthIdentity,
    TokenVerificationError,
    TokenVerifier,
    extract_bearer_token,
)

logger = get_logger(__name__)

DEFAULT_EXEMPT_PREFIXES: tuple[str, ...] = (
    '/health',
    '/metrics',
    '/docs',
    '/openapi.json',
)


def _unauthorized(code: str, detail: str) -> JSONResponse:
    return JSONResponse(
        status_code=401,
        content={'success': False, 'error': 'unauthenticated', 'code': code, 'detail': detail},
        headers={'WWW-Authenticate': 'Bearer'},
    )


class AuthGuardMiddleware(BaseHTTPMiddleware):
    """Resolve the request actor from a bearer token (or dev headers).

    Args:
        app: The ASGI application.
        token_verifier: Verifier for Supabase JWTs. None disables bearer auth.
        exempt_prefixes: Paths that skip identity resolution entirely.
        allow_dev_headers: Accept X-User-ID / X-User-Email (local only).
    """

    def __init__(
        self,
        app,
        token_verifier: TokenVerifier | None,
        exempt_prefixes: tuple[str, ...] = DEFAULT_EXEMPT_PREFIXES,
        allow_dev_headers: bool = False,
    ) -> None:
        super().__init__(app)
        self._verifier = token_verifier
        self._exempt_prefixes = exempt_prefixes
        self._allow_dev_headers = allow_dev_headers

    def _is_exempt(self, path: str) -> bool:
        return any(path.startswith(prefix) for prefix in self._exempt_prefixes)

    def _dev_identity(self, request: Request) -> AuthIdentity | None:
        user_id = request.headers.get('x-user-id', '').strip()
        if not user_id:
            return None
        email = request.headers.get('x-user-email', '').strip().lower()
        return AuthIdentity(user_id=user_id, email=email)

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint,
    ) -> Response:
        request.state.auth_identity = None

        if self._is_exempt(request.url.path):
            return await call_next(request)

        token = extract_bearer_token(request.headers.get('authorization'))
        if token and self._verifier is not None:
            try:
                request.state.auth_identity = self._verifier.verify(token)
            except TokenVerificationError as exc:
                logger.info('bearer_rejected', reason=exc.code)
                return _unauthorized(exc.code, exc.detail)
        elif self._allow_dev_headers:
            request.state.auth_identity = self._dev_identity(request)

        return await call_next(request)


def get_optional_identity(request: Request) -> AuthIdentity | None:
    """FastAPI dependency: the request actor, or None when anonymous."""
    return getattr(request.state, 'auth_identity', None)
