"""Supabase access-token verification.

Turns ``Authorization: Bearer <jwt>`` into an ``AuthIdentity``. Two key
sources are supported:

  - JWKS (RS256): keys fetched from ``<supabase_url>/auth/v1/.well-known/jwks.json``
    and cached by PyJWKClient.
  - Static secret (HS256): the project's legacy JWT secret, also used by tests.

The verified identity is the actor struct every sharing operation receives.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

import jwt
from jwt import PyJWKClient, PyJWKClientError

# ── Constants ─────────────────────────────────────────────────────────

DEFAULT_AUDIENCE = 'authenticated'
JWKS_CACHE_TTL_SECONDS = 300
BEARER_PREFIX = 'bearer '

# ── Types ─────────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class AuthIdentity:
    """The authenticated actor, populated once per request.

    Attributes:
        user_id: Supabase auth.users UUID (``sub`` claim).
        email: Lower-cased email claim; may be empty for service tokens.
        role: Supabase role claim.
    """

    user_id: str
    email: str = ''
    role: str = 'authenticated'


class TokenVerificationError(Exception):
    """Raised when a bearer token cannot be verified."""

    def __init__(self, code: str, detail: str = '') -> None:
        self.code = code
        self.detail = detail
        super().__init__(f'{code}: {detail}' if detail else code)


class KeyProvider(Protocol):
    def get_signing_key(self, token: str) -> Any: ...


class JWKSKeyProvider:
    """Resolves the signing key matching a token's ``kid`` from a JWKS URL."""

    def __init__(self, jwks_url: str, cache_ttl: int = JWKS_CACHE_TTL_SECONDS) -> None:
        self._client = PyJWKClient(jwks_url, cache_jwk_set=True, lifespan=cache_ttl)

    def get_signing_key(self, token: str) -> Any:
        try:
            return self._client.get_signing_key_from_jwt(token).key
        except PyJWKClientError as exc:
            raise TokenVerificationError('jwks_fetch_error', str(exc)) from exc


class StaticKeyProvider:
    """Returns one shared HS256 secret for every token."""

    def __init__(self, secret: str) -> None:
        self._secret = secret

    def get_signing_key(self, token: str) -> str:
        return self._secret


# ── Verifier ──────────────────────────────────────────────────────────


class TokenVerifier:
    """Checks signature, audience and expiry, then extracts the identity."""

    def __init__(
        self,
        key_provider: KeyProvider,
        audience: str = DEFAULT_AUDIENCE,
        algorithms: list[str] | None = None,
    ) -> None:
        self._key_provider = key_provider
        self._audience = audience
        self._algorithms = algorithms or ['RS256']

    def verify(self, token: str) -> AuthIdentity:
        """Verify a raw JWT (no ``Bearer`` prefix).

        Raises:
            TokenVerificationError: On any verification failure.
        """
        if not token or not token.strip():
            raise TokenVerificationError('empty_token')

        key = self._key_provider.get_signing_key(token)
        try:
            claims = jwt.decode(
                token,
                key,
                algorithms=self._algorithms,
                audience=self._audience,
                options={'require': ['sub', 'exp', 'aud']},
            )
        except jwt.ExpiredSignatureError as exc:
            raise TokenVerificationError('token_expired') from exc
        except jwt.InvalidAudienceError as exc:
            raise TokenVerificationError('invalid_audience', f'expected {self._audience}') from exc
        except jwt.InvalidTokenError as exc:
            raise TokenVerificationError('invalid_token', str(exc)) from exc

        user_id = claims.get('sub')
        if not user_id:
            raise TokenVerificationError('missing_sub_claim')

        return AuthIdentity(
            user_id=str(user_id),
            email=(claims.get('email') or '').strip().lower(),
            role=claims.get('role', 'authenticated'),
        )


def extract_bearer_token(authorization: str | None) -> str | None:
    """Return the token from an ``Authorization`` header value, if Bearer."""
    if not authorization:
        return None
    if authorization[: len(BEARER_PREFIX)].lower() != BEARER_PREFIX:
        return None
    return authorization[len(BEARER_PREFIX):].strip() or None


def create_token_verifier(
    supabase_url: str | None = None,
    jwt_secret: str | None = None,
    audience: str = DEFAULT_AUDIENCE,
) -> TokenVerifier:
    """Build a verifier from whichever key source is configured.

    An explicit ``jwt_secret`` wins (HS256); otherwise JWKS discovery under
    ``supabase_url`` is used (RS256).

    Raises:
        ValueError: If neither is provided.
    """
    if jwt_secret:
        return TokenVerifier(StaticKeyProvider(jwt_secret), audience, ['HS256'])
    if supabase_url:
        jwks_url = f'{supabase_url.rstrip("/")}/auth/v1/.well-known/jwks.json'
        return TokenVerifier(JWKSKeyProvider(jwks_url), audience, ['RS256'])
    raise ValueError('Either supabase_url (for JWKS) or jwt_secret (for HS256) is required')
