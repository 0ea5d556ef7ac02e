"""PostgREST record store for Supabase.

All sharing persistence goes through this class in non-local environments.
It implements ``RecordStore``: reads and writes take an immutable ``Query``
(inserts take a table name) and return plain row dicts. Writes always ask
for ``return=representation`` so callers can count affected rows.

Unique-key violations surface as ``SupabaseConflictError`` with
``is_unique_violation`` set; invite redemption depends on that.
"""

from __future__ import annotations

from typing import Any, Mapping, Sequence

import httpx

from case_share.observability import get_logger

from .errors import (
    SupabaseAuthError,
    SupabaseConflictError,
    SupabaseError,
    SupabaseNotFoundError,
)
from .query import Query

logger = get_logger(__name__)

_RETURN_ROWS = "return=representation"
_WRITE_METHODS = frozenset({"POST", "PATCH", "DELETE"})

_ERROR_BY_STATUS: dict[int, type[SupabaseError]] = {
    401: SupabaseAuthError,
    403: SupabaseAuthError,
    404: SupabaseNotFoundError,
    409: SupabaseConflictError,
}


def _error_from_response(resp: httpx.Response) -> SupabaseError:
    """Build a typed error from a PostgREST error body. Headers never leak."""
    body: Any = None
    try:
        body = resp.json()
    except ValueError:
        pass
    fields = body if isinstance(body, dict) else {}
    err_cls = _ERROR_BY_STATUS.get(resp.status_code, SupabaseError)
    return err_cls(
        status_code=resp.status_code,
        message=fields.get("message") or resp.text,
        code=fields.get("code"),
        details=fields.get("details"),
        hint=fields.get("hint"),
    )


class SupabaseClient:
    """Service-role PostgREST client.

    Args:
        supabase_url: Project URL, e.g. ``https://xyz.supabase.co``.
        service_role_key: Service-role key. Sent as ``apikey`` and bearer.
        default_schema: Schema for unqualified table names.
        http_client: Injected client (tests use ``httpx.MockTransport``).
            When omitted the store owns a client and ``aclose`` closes it.
        timeout_seconds: Per-request timeout.
    """

    def __init__(
        self,
        *,
        supabase_url: str,
        service_role_key: str,
        default_schema: str = "public",
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        if not supabase_url:
            raise ValueError("supabase_url is required")
        if not service_role_key:
            raise ValueError("service_role_key is required")

        self._rest_url = f"{supabase_url.rstrip('/')}/rest/v1"
        self._key = service_role_key
        self._default_schema = default_schema or "public"
        self._timeout = float(timeout_seconds)
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient()

    @property
    def base_rest_url(self) -> str:
        return self._rest_url

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _resolve(self, table: str) -> tuple[str, str]:
        # "cloud.case_shares" targets a non-public schema through the
        # Accept-Profile / Content-Profile headers.
        schema, sep, name = table.partition(".")
        if not sep:
            return self._default_schema, table.strip()
        return schema.strip(), name.strip()

    def _headers(self, method: str, schema: str, prefer: str | None) -> dict[str, str]:
        headers = {
            "apikey": self._key,
            "Authorization": f"Bearer {self._key}",
            "Accept-Profile": schema,
        }
        if method in _WRITE_METHODS:
            headers["Content-Profile"] = schema
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def _request(
        self,
        method: str,
        table: str,
        *,
        params: list[tuple[str, str]] | None = None,
        body: Any = None,
        prefer: str | None = None,
    ) -> list[dict[str, Any]]:
        schema, name = self._resolve(table)
        resp = await self._client.request(
            method,
            f"{self._rest_url}/{name}",
            params=params,
            json=body,
            headers=self._headers(method, schema, prefer),
            timeout=self._timeout,
        )
        if resp.status_code >= 400:
            err = _error_from_response(resp)
            logger.debug("postgrest_error", method=method, table=name, status=err.status_code, pg_code=err.code)
            raise err

        try:
            rows = resp.json()
        except ValueError as exc:
            raise SupabaseError(
                status_code=resp.status_code,
                message=f"non-JSON response from {method} {name}",
            ) from exc
        if not isinstance(rows, list):
            raise SupabaseError(
                status_code=500,
                message=f"expected list response from {method} {name}",
            )
        return rows

    @staticmethod
    def _require_filters(query: Query, verb: str) -> None:
        if not query.filters:
            raise ValueError(f"refusing to {verb} without filters")

    async def select(self, query: Query) -> list[dict[str, Any]]:
        return await self._request("GET", query.table, params=query.select_params())

    async def insert(
        self,
        table: str,
        data: Mapping[str, Any] | Sequence[Mapping[str, Any]],
    ) -> list[dict[str, Any]]:
        return await self._request("POST", table, body=data, prefer=_RETURN_ROWS)

    async def update(self, query: Query, data: Mapping[str, Any]) -> list[dict[str, Any]]:
        self._require_filters(query, "update")
        return await self._request(
            "PATCH", query.table, params=query.filter_params(), body=dict(data), prefer=_RETURN_ROWS,
        )

    async def delete(self, query: Query) -> list[dict[str, Any]]:
        self._require_filters(query, "delete")
        return await self._request(
            "DELETE", query.table, params=query.filter_params(), prefer=_RETURN_ROWS,
        )
