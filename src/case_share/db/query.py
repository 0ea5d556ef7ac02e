"""Immutable record-store request descriptions.

A ``Query`` names a table plus its filters, projection, ordering and limit.
Every refinement returns a new instance, so a query can be shared between
concurrent coroutines without one call leaking filters into another.

Queries also know their PostgREST encoding (``filter_params`` /
``select_params``); the in-memory store interprets the same filters directly.

Usage::

    q = Query("case_shares").eq("case_id", case_id).order_by("created_at")
    rows = await store.select(q)
"""

from __future__ import annotations

import json
from dataclasses import dataclass, replace
from typing import Any


def _literal(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


@dataclass(frozen=True, slots=True)
class PostgrestFilter:
    column: str
    op: str
    value: Any

    def encode(self) -> str:
        """Render the right-hand side of ``column=op.value``.

        Raises:
            ValueError: None outside ``is``, or a non-sequence for ``in``.
        """
        if self.op == "in":
            if not isinstance(self.value, (list, tuple, set, frozenset)):
                raise ValueError("in operator requires an iterable of values")
            # Strings are quoted inside in.(...) so commas survive.
            items = (json.dumps(v) if isinstance(v, str) else _literal(v) for v in self.value)
            return f"in.({','.join(items)})"
        if self.value is None and self.op != "is":
            raise ValueError(f"{self.op} does not support None; use op='is' with value=None")
        return f"{self.op}.{_literal(self.value)}"


@dataclass(frozen=True, slots=True)
class Query:
    table: str
    filters: tuple[PostgrestFilter, ...] = ()
    columns: str = "*"
    order: str | None = None
    limit: int | None = None

    def where(self, column: str, op: str, value: Any) -> Query:
        return replace(self, filters=(*self.filters, PostgrestFilter(column, op, value)))

    def eq(self, column: str, value: Any) -> Query:
        return self.where(column, "eq", value)

    def gt(self, column: str, value: Any) -> Query:
        return self.where(column, "gt", value)

    def lte(self, column: str, value: Any) -> Query:
        return self.where(column, "lte", value)

    def in_(self, column: str, values: Any) -> Query:
        return self.where(column, "in", tuple(values))

    def select(self, columns: str) -> Query:
        return replace(self, columns=columns)

    def order_by(self, column: str, *, desc: bool = False) -> Query:
        return replace(self, order=f"{column}.{'desc' if desc else 'asc'}")

    def first(self) -> Query:
        return replace(self, limit=1)

    def filter_params(self) -> list[tuple[str, str]]:
        # A list, not a dict: two filters on one column (a date range)
        # must both reach PostgREST.
        return [(f.column, f.encode()) for f in self.filters]

    def select_params(self) -> list[tuple[str, str]]:
        params = self.filter_params()
        params.append(("select", self.columns))
        if self.limit is not None:
            params.append(("limit", str(int(self.limit))))
        if self.order:
            params.append(("order", self.order))
        return params
