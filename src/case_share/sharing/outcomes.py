"""Discriminated results for sharing operations.

Mutations return ``Ok`` or ``WriteFailed``; reads return ``Ok`` or
``ReadDegraded``. Authorization failures are exceptions instead
(see ``case_share.security.authorization``) and never appear here.

Every outcome renders to the JSON shape the API returns::

    {"success": true, ...data}
    {"success": false, "error": "conflict", "reason": "already_shared", "detail": "..."}
"""

from __future__ import annotations

import dataclasses
import enum
from datetime import datetime
from typing import Any, Generic, TypeVar, Union

T = TypeVar('T')


class ErrorKind(str, enum.Enum):
    UNAUTHENTICATED = 'unauthenticated'
    FORBIDDEN = 'forbidden'
    NOT_FOUND = 'not_found'
    CONFLICT = 'conflict'
    EXPIRED = 'expired'
    EMAIL_MISMATCH = 'email_mismatch'
    INTERNAL_ERROR = 'internal_error'


class ConflictReason(str, enum.Enum):
    ALREADY_SHARED = 'already_shared'
    ALREADY_INVITED = 'already_invited'
    ALREADY_REGISTERED = 'already_registered'
    SELF_SHARE = 'self_share'


def to_jsonable(value: Any) -> Any:
    """Convert dataclasses, enums and datetimes into JSON-ready values."""
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_jsonable(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value


def _data_fields(data: Any) -> dict[str, Any]:
    rendered = to_jsonable(data)
    if rendered is None:
        return {}
    if isinstance(rendered, dict):
        return rendered
    return {'data': rendered}


@dataclasses.dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    data: T = None

    success = True

    def to_dict(self) -> dict[str, Any]:
        return {'success': True, **_data_fields(self.data)}


@dataclasses.dataclass(frozen=True, slots=True)
class ReadDegraded(Generic[T]):
    """A read that could not reach the store; ``data`` is the empty fallback."""

    reason: str
    data: T = None

    success = True

    def to_dict(self) -> dict[str, Any]:
        return {'success': True, 'degraded': True, **_data_fields(self.data)}


@dataclasses.dataclass(frozen=True, slots=True)
class WriteFailed:
    kind: ErrorKind
    detail: str = ''
    conflict: ConflictReason | None = None

    success = False

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {'success': False, 'error': self.kind.value, 'detail': self.detail}
        if self.conflict is not None:
            body['reason'] = self.conflict.value
        return body

    @classmethod
    def conflict_of(cls, reason: ConflictReason, detail: str) -> WriteFailed:
        return cls(ErrorKind.CONFLICT, detail, reason)


WriteOutcome = Union[Ok[T], WriteFailed]
ReadOutcome = Union[Ok[T], ReadDegraded[T]]
