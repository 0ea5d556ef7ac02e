"""Unit tests for path normalization and request-ID handling."""

from __future__ import annotations

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from case_share.observability import request_id_ctx
from case_share.observability.middleware import RequestIdMiddleware, normalize_path


@pytest.mark.parametrize(
    'path,expected',
    [
        ('/api/v1/invites/s3cr3t-token', '/api/v1/invites/{token}'),
        ('/api/v1/invites/s3cr3t-token/redeem', '/api/v1/invites/{token}/redeem'),
        ('/api/v1/access/ABCD2345EFGH', '/api/v1/access/{code}'),
        ('/api/v1/cases/case-1/shares', '/api/v1/cases/{case_id}/shares'),
        ('/api/v1/cases/case-1/shares/user-9', '/api/v1/cases/{case_id}/shares/{id}'),
        ('/api/v1/cases/case-1/invites/inv-9', '/api/v1/cases/{case_id}/invites/{id}'),
        ('/health', '/health'),
    ],
)
def test_normalize_path(path, expected):
    assert normalize_path(path) == expected


def _app() -> FastAPI:
    app = FastAPI()
    app.add_middleware(RequestIdMiddleware)

    @app.get('/rid')
    async def rid():
        return {'rid': request_id_ctx.get()}

    return app


@pytest.mark.asyncio
async def test_request_id_is_echoed_and_visible_to_handlers():
    async with AsyncClient(transport=ASGITransport(app=_app()), base_url='http://test') as c:
        r = await c.get('/rid', headers={'X-Request-ID': 'abcdef12-3456'})
    assert r.headers['x-request-id'] == 'abcdef12-3456'
    assert r.json() == {'rid': 'abcdef12-3456'}


@pytest.mark.asyncio
async def test_malformed_request_id_is_replaced():
    async with AsyncClient(transport=ASGITransport(app=_app()), base_url='http://test') as c:
        r = await c.get('/rid', headers={'X-Request-ID': 'bad id!'})
    assert r.headers['x-request-id'] != 'bad id!'
    assert r.json()['rid'] == r.headers['x-request-id']


def test_credential_keys_are_truncated_before_rendering():
    from case_share.observability.logging import _truncate_credentials

    event = {'event': 'x', 'token': 'abcdefghijkl', 'code': 'ABC...', 'case_id': 'case-1'}
    out = _truncate_credentials(None, 'info', event)
    assert out == {'event': 'x', 'token': 'abc...', 'code': 'ABC...', 'case_id': 'case-1'}


def test_request_id_is_bound_to_log_events():
    from case_share.observability.logging import _bind_request_id

    token = request_id_ctx.set('rid-123')
    try:
        assert _bind_request_id(None, 'info', {'event': 'x'})['request_id'] == 'rid-123'
    finally:
        request_id_ctx.reset(token)
    assert 'request_id' not in _bind_request_id(None, 'info', {'event': 'x'})
