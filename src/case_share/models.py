"""Case sharing domain model.

Records mirror the PostgREST tables:

  - ``cases``             : the shareable record (owner in ``user_id``).
  - ``profiles``          : registered identities, looked up by email.
  - ``case_shares``       : durable grants, unique per (case_id, shared_with_user_id).
  - ``case_share_invites``: pending offers, unique per (case_id, email) and
                             per token_hash.
  - ``case_access_codes`` : anonymous capability codes.

Invite state is never stored. A row that exists is Pending until its expiry
passes; Redeemed, Expired and Cancelled are all represented by the row being
gone.

Security invariant:
  The plaintext invite token is generated once and handed to the inviter.
  Only its SHA-256 hash is persisted and used for lookups.
"""

from __future__ import annotations

import hashlib
import re
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping

# ── Constants ─────────────────────────────────────────────────────────

TOKEN_BYTES = 32  # 256-bit invite tokens.
DEFAULT_INVITE_TTL = timedelta(days=7)

# Human-transcribable: no 0/O, 1/I/L.
ACCESS_CODE_ALPHABET = '23456789ABCDEFGHJKMNPQRSTUVWXYZ'
ACCESS_CODE_LENGTH = 12
TOKEN_LOG_PREFIX = 8

# Postgres drops trailing zeros from fractional seconds.
_FRACTION = re.compile(r'\.(\d+)')


# ── Helpers ───────────────────────────────────────────────────────────


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse a PostgREST timestamp (ISO string) into an aware datetime."""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        ts = value
    else:
        text = str(value).replace('Z', '+00:00')
        text = _FRACTION.sub(lambda m: '.' + m.group(1)[:6].ljust(6, '0'), text, count=1)
        ts = datetime.fromisoformat(text)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def fold_email(email: str | None) -> str:
    """Case-fold and trim an email for comparison."""
    return (email or '').strip().lower()


def normalize_email(email: str) -> str:
    """Normalize caller-supplied email input.

    Raises:
        ValueError: If the value is blank or obviously not an address.
    """
    folded = fold_email(email)
    if not folded:
        raise ValueError('email is required')
    if '@' not in folded or folded.startswith('@') or folded.endswith('@'):
        raise ValueError(f'invalid email address: {email!r}')
    return folded


def generate_invite_token() -> str:
    """Generate a cryptographically random URL-safe invite token."""
    return secrets.token_urlsafe(TOKEN_BYTES)


def hash_token(plaintext: str) -> str:
    """SHA-256 of a plaintext invite token (the stored lookup key)."""
    return hashlib.sha256(plaintext.encode('utf-8')).hexdigest()


def generate_access_code(length: int = ACCESS_CODE_LENGTH) -> str:
    return ''.join(secrets.choice(ACCESS_CODE_ALPHABET) for _ in range(length))


def issued_code_form(code: str) -> str | None:
    """Upper-cased ``code`` if it could be one this service generated, else None.

    Generated codes are upper case, so hand-typed lower case still finds them.
    Codes stored by other writers are matched exactly.
    """
    upper = code.upper()
    if len(upper) == ACCESS_CODE_LENGTH and all(c in ACCESS_CODE_ALPHABET for c in upper):
        return upper
    return None


def build_invite_link(origin: str, token: str) -> str:
    return f'{origin.rstrip("/")}/invite/{token}'


def redact_token(token: str | None, prefix: int = TOKEN_LOG_PREFIX) -> str:
    """Truncate a token or access code to a loggable prefix."""
    if not token or len(token) <= prefix * 2:
        return '<redacted>'
    return f'{token[:prefix]}...'


# ── Records ───────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class Permissions:
    """Coarse per-case access flags.

    The two flags are independent: can_edit=True does not imply can_view.
    """

    can_view: bool = True
    can_edit: bool = False

    def as_row(self) -> dict[str, bool]:
        return {'can_view': self.can_view, 'can_edit': self.can_edit}


@dataclass(frozen=True, slots=True)
class CaseRecord:
    id: str
    user_id: str | None
    title: str
    data: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> CaseRecord:
        return cls(
            id=str(row['id']),
            user_id=row.get('user_id'),
            title=row.get('title') or '',
            data=dict(row),
        )


@dataclass(frozen=True, slots=True)
class Profile:
    id: str
    email: str
    first_name: str | None = None
    last_name: str | None = None

    @property
    def display_name(self) -> str:
        parts = [p for p in (self.first_name, self.last_name) if p]
        return ' '.join(parts) or self.email

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> Profile:
        return cls(
            id=str(row['id']),
            email=row.get('email') or '',
            first_name=row.get('first_name'),
            last_name=row.get('last_name'),
        )


@dataclass(frozen=True, slots=True)
class CaseShare:
    """A durable grant matching the case_shares table."""

    case_id: str
    shared_with_user_id: str
    shared_by_user_id: str
    can_view: bool = True
    can_edit: bool = False
    id: str | None = None
    created_at: datetime | None = None

    def as_row(self) -> dict[str, Any]:
        row: dict[str, Any] = {
            'case_id': self.case_id,
            'shared_with_user_id': self.shared_with_user_id,
            'shared_by_user_id': self.shared_by_user_id,
            'can_view': self.can_view,
            'can_edit': self.can_edit,
        }
        if self.created_at is not None:
            row['created_at'] = self.created_at.isoformat()
        return row

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> CaseShare:
        return cls(
            id=str(row['id']) if row.get('id') is not None else None,
            case_id=str(row['case_id']),
            shared_with_user_id=str(row['shared_with_user_id']),
            shared_by_user_id=str(row.get('shared_by_user_id') or ''),
            can_view=bool(row.get('can_view', True)),
            can_edit=bool(row.get('can_edit', False)),
            created_at=parse_timestamp(row.get('created_at')),
        )


@dataclass(frozen=True, slots=True)
class CaseInvite:
    """A pending invite matching the case_share_invites table."""

    case_id: str
    email: str
    invited_by_user_id: str
    token_hash: str
    expires_at: datetime
    can_view: bool = True
    can_edit: bool = False
    id: str | None = None
    created_at: datetime | None = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

    def as_row(self) -> dict[str, Any]:
        row: dict[str, Any] = {
            'case_id': self.case_id,
            'email': self.email,
            'invited_by_user_id': self.invited_by_user_id,
            'token_hash': self.token_hash,
            'expires_at': self.expires_at.isoformat(),
            'can_view': self.can_view,
            'can_edit': self.can_edit,
        }
        if self.created_at is not None:
            row['created_at'] = self.created_at.isoformat()
        return row

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> CaseInvite:
        return cls(
            id=str(row['id']) if row.get('id') is not None else None,
            case_id=str(row['case_id']),
            email=row.get('email') or '',
            invited_by_user_id=str(row.get('invited_by_user_id') or ''),
            token_hash=row.get('token_hash') or '',
            expires_at=parse_timestamp(row['expires_at']),
            can_view=bool(row.get('can_view', True)),
            can_edit=bool(row.get('can_edit', False)),
            created_at=parse_timestamp(row.get('created_at')),
        )


@dataclass(frozen=True, slots=True)
class AccessCode:
    code: str
    case_id: str
    user_id: str | None = None


# ── Operation results ─────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class SharedUser:
    """A share joined with the grantee's profile."""

    user_id: str
    email: str
    display_name: str
    share_id: str | None
    can_view: bool
    can_edit: bool


@dataclass(frozen=True, slots=True)
class PendingInvite:
    id: str | None
    email: str
    can_view: bool
    can_edit: bool
    expires_at: datetime
    created_at: datetime | None


@dataclass(frozen=True, slots=True)
class InviteCreated:
    """Returned once to the inviter; the only place the plaintext token lives."""

    invite_id: str | None
    case_id: str
    email: str
    token: str
    invite_link: str
    expires_at: datetime


@dataclass(frozen=True, slots=True)
class InvitePreview:
    case_id: str
    case_title: str
    email: str
    expires_at: datetime
    valid: bool


@dataclass(frozen=True, slots=True)
class Redemption:
    case_id: str
    already_granted: bool = False


@dataclass(frozen=True, slots=True)
class CaseBundle:
    """Read-only case content reached through an access code."""

    case: Mapping[str, Any]
    emails: tuple[Mapping[str, Any], ...] = ()
    events: tuple[Mapping[str, Any], ...] = ()


@dataclass(frozen=True, slots=True)
class IssuedAccessCode:
    code: str
    case_id: str


@dataclass(frozen=True, slots=True)
class ShareOrInvite:
    """Direct share when the email is registered, otherwise a pending invite."""

    pending: bool
    share: SharedUser | None = None
    invite: InviteCreated | None = None


@dataclass(frozen=True, slots=True)
class SharingOverview:
    shared_users: tuple[SharedUser, ...] = ()
    pending_invites: tuple[PendingInvite, ...] = ()
