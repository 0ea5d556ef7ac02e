"""Collaborator protocol interfaces for dependency injection.

These protocols define the contracts that concrete implementations
(InMemory for local dev and tests, Supabase for non-local) must satisfy.
The app factory accepts any implementation that matches them.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Mapping, Protocol, Sequence, runtime_checkable

if TYPE_CHECKING:
    from .db.query import Query


@runtime_checkable
class RecordStore(Protocol):
    """Generic access to named record collections.

    Implementations must raise ``SupabaseConflictError`` with code 23505 on
    unique-key violations so callers can tell them apart from other failures.
    """

    async def select(self, query: Query) -> list[dict[str, Any]]: ...

    async def insert(
        self,
        table: str,
        data: Mapping[str, Any] | Sequence[Mapping[str, Any]],
    ) -> list[dict[str, Any]]: ...

    async def update(self, query: Query, data: Mapping[str, Any]) -> list[dict[str, Any]]: ...

    async def delete(self, query: Query) -> list[dict[str, Any]]: ...


@runtime_checkable
class AuditEmitter(Protocol):
    """Audit event emission. Must never raise."""

    async def emit(self, event_type: str, data: dict[str, Any]) -> None: ...
