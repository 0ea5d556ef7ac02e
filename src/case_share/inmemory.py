"""In-memory implementations for local development and tests.

These are used when ENVIRONMENT=local. They satisfy the protocol interfaces
but store everything in dicts (no persistence across restarts).

The record store enforces the same unique indexes as the Supabase schema and
raises the same ``SupabaseConflictError`` on violation, so sharing code sees
identical behavior against either backend.
"""

from __future__ import annotations

import asyncio
import copy
import re
import uuid
from datetime import datetime
from typing import Any, Mapping, Sequence

from .db.errors import SupabaseError, unique_violation
from .db.query import PostgrestFilter, Query
from .models import parse_timestamp, utcnow

# Unique indexes per table, mirroring the migrations.
DEFAULT_UNIQUE_KEYS: dict[str, tuple[tuple[str, ...], ...]] = {
    "case_shares": (("case_id", "shared_with_user_id"),),
    "case_share_invites": (("case_id", "email"), ("token_hash",)),
    "case_access_codes": (("code",),),
    "profiles": (("email",),),
}

_ISO_PREFIX = re.compile(r"^\d{4}-\d{2}-\d{2}[T ]")


def _comparable(value: Any) -> Any:
    if isinstance(value, datetime):
        return parse_timestamp(value)
    if isinstance(value, str) and _ISO_PREFIX.match(value):
        try:
            return parse_timestamp(value)
        except ValueError:
            return value
    return value


def _matches(row: Mapping[str, Any], f: PostgrestFilter) -> bool:
    actual = row.get(f.column)
    op = f.op

    if op == "is":
        return actual is f.value
    if op == "in":
        return actual in tuple(f.value)
    if op == "eq":
        return _comparable(actual) == _comparable(f.value)

    if actual is None:
        return False
    left, right = _comparable(actual), _comparable(f.value)
    if op == "gt":
        return left > right
    if op == "lte":
        return left <= right
    raise ValueError(f"unsupported filter operator: {op}")


def _project(row: dict[str, Any], columns: str) -> dict[str, Any]:
    if columns.strip() == "*":
        return copy.deepcopy(row)
    wanted = [c.strip() for c in columns.split(",") if c.strip()]
    return {c: copy.deepcopy(row.get(c)) for c in wanted}


def _sort(rows: list[dict[str, Any]], order: str | None) -> list[dict[str, Any]]:
    if not order:
        return rows
    column, _, direction = order.partition(".")
    desc = direction == "desc"
    present = [r for r in rows if r.get(column) is not None]
    missing = [r for r in rows if r.get(column) is None]
    present.sort(key=lambda r: _comparable(r[column]), reverse=desc)
    # PostgREST default: NULLS LAST for asc, NULLS FIRST for desc.
    return missing + present if desc else present + missing


class InMemoryRecordStore:
    """RecordStore over per-table lists of row dicts.

    ``inject_failure`` makes the next matching call raise, for exercising
    degraded and retryable paths.
    """

    def __init__(
        self,
        unique_keys: Mapping[str, Sequence[Sequence[str]]] | None = None,
    ) -> None:
        keys = DEFAULT_UNIQUE_KEYS if unique_keys is None else unique_keys
        self._unique_keys = {t: tuple(tuple(k) for k in ks) for t, ks in keys.items()}
        self._tables: dict[str, list[dict[str, Any]]] = {}
        self._failures: list[list[Any]] = []

    # ── Test helpers ──────────────────────────────────────────────

    def seed(self, table: str, *rows: Mapping[str, Any]) -> None:
        """Insert rows directly, bypassing unique checks and failure injection."""
        bucket = self._tables.setdefault(table, [])
        for row in rows:
            bucket.append(self._with_defaults(row))

    def rows(self, table: str) -> list[dict[str, Any]]:
        return copy.deepcopy(self._tables.get(table, []))

    def inject_failure(
        self,
        operation: str,
        table: str,
        exc: Exception | None = None,
        *,
        times: int = 1,
    ) -> None:
        """Make the next ``times`` calls of ``operation`` on ``table`` raise."""
        if exc is None:
            exc = SupabaseError(status_code=503, message=f"injected {operation} failure on {table}")
        self._failures.append([operation, table, exc, times])

    def _maybe_fail(self, operation: str, table: str) -> None:
        for entry in self._failures:
            op, tbl, exc, remaining = entry
            if op == operation and tbl == table and remaining > 0:
                entry[3] = remaining - 1
                if entry[3] == 0:
                    self._failures.remove(entry)
                raise exc

    # ── Internals ─────────────────────────────────────────────────

    @staticmethod
    def _with_defaults(row: Mapping[str, Any]) -> dict[str, Any]:
        stored = copy.deepcopy(dict(row))
        stored.setdefault("id", str(uuid.uuid4()))
        stored.setdefault("created_at", utcnow().isoformat())
        return stored

    def _check_unique(
        self,
        table: str,
        candidate: Mapping[str, Any],
        existing: Sequence[Mapping[str, Any]],
    ) -> None:
        for key in self._unique_keys.get(table, ()):
            values = tuple(candidate.get(c) for c in key)
            if any(v is None for v in values):
                continue
            for other in existing:
                if other is candidate:
                    continue
                if tuple(other.get(c) for c in key) == values:
                    raise unique_violation(
                        f'duplicate key value violates unique constraint "{table}_{"_".join(key)}_key"',
                        details=f"Key ({', '.join(key)}) already exists.",
                    )

    def _matching(self, query: Query) -> list[dict[str, Any]]:
        return [
            row for row in self._tables.get(query.table, [])
            if all(_matches(row, f) for f in query.filters)
        ]

    # ── RecordStore ───────────────────────────────────────────────

    async def select(self, query: Query) -> list[dict[str, Any]]:
        await asyncio.sleep(0)
        self._maybe_fail("select", query.table)
        rows = _sort(self._matching(query), query.order)
        if query.limit is not None:
            rows = rows[: query.limit]
        return [_project(r, query.columns) for r in rows]

    async def insert(
        self,
        table: str,
        data: Mapping[str, Any] | Sequence[Mapping[str, Any]],
    ) -> list[dict[str, Any]]:
        await asyncio.sleep(0)
        self._maybe_fail("insert", table)
        incoming = [data] if isinstance(data, Mapping) else list(data)
        bucket = self._tables.setdefault(table, [])

        staged: list[dict[str, Any]] = []
        for row in incoming:
            stored = self._with_defaults(row)
            self._check_unique(table, stored, [*bucket, *staged])
            staged.append(stored)

        # All-or-nothing, like a single INSERT statement.
        bucket.extend(staged)
        return copy.deepcopy(staged)

    async def update(self, query: Query, data: Mapping[str, Any]) -> list[dict[str, Any]]:
        if not query.filters:
            raise ValueError("refusing to update without filters")
        await asyncio.sleep(0)
        self._maybe_fail("update", query.table)
        bucket = self._tables.get(query.table, [])
        matched = self._matching(query)
        for row in matched:
            proposed = {**row, **copy.deepcopy(dict(data))}
            self._check_unique(query.table, proposed, [r for r in bucket if r is not row])
        for row in matched:
            row.update(copy.deepcopy(dict(data)))
        return copy.deepcopy(matched)

    async def delete(self, query: Query) -> list[dict[str, Any]]:
        if not query.filters:
            raise ValueError("refusing to delete without filters")
        await asyncio.sleep(0)
        self._maybe_fail("delete", query.table)
        matched = self._matching(query)
        if matched:
            self._tables[query.table] = [
                r for r in self._tables.get(query.table, [])
                if not any(r is m for m in matched)
            ]
        return copy.deepcopy(matched)


class InMemoryAuditEmitter:
    def __init__(self) -> None:
        self.events: list[dict[str, Any]] = []

    async def emit(self, event_type: str, data: dict[str, Any]) -> None:
        self.events.append({"type": event_type, **data})
