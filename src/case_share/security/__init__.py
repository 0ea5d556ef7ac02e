"""Authentication middleware and authorization checks."""

from .auth_guard import AuthGuardMiddleware, get_optional_identity
from .authorization import (
    AuthorizationError,
    Forbidden,
    Unauthenticated,
    is_owner,
    require_authenticated,
    require_ownership,
)
from .token_verify import (
    AuthIdentity,
    TokenVerificationError,
    TokenVerifier,
    create_token_verifier,
    extract_bearer_token,
)

__all__ = [
    'AuthGuardMiddleware',
    'AuthIdentity',
    'AuthorizationError',
    'Forbidden',
    'TokenVerificationError',
    'TokenVerifier',
    'Unauthenticated',
    'create_token_verifier',
    'extract_bearer_token',
    'get_optional_identity',
    'is_owner',
    'require_authenticated',
    'require_ownership',
]
