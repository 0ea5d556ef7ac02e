"""HTTP tests for the sharing router, driven through the app factory.

Local settings accept ``X-User-ID`` / ``X-User-Email`` as the actor.
"""

from __future__ import annotations

from datetime import timedelta

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from case_share.main import create_app

from conftest import BOB, CASE_ID, NEWCOMER, OWNER, PUBLIC_ORIGIN


def as_user(identity) -> dict[str, str]:
    return {'X-User-ID': identity.user_id, 'X-User-Email': identity.email}


@pytest.fixture
def app(settings, store, audit, clock):
    return create_app(settings, store=store, audit_emitter=audit, clock=clock)


@pytest_asyncio.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url='http://test') as c:
        yield c


async def _invite(client, email=NEWCOMER.email) -> dict:
    r = await client.post(
        f'/api/v1/cases/{CASE_ID}/invites', json={'email': email}, headers=as_user(OWNER),
    )
    assert r.status_code == 201, r.text
    return r.json()


class TestShares:
    @pytest.mark.asyncio
    async def test_share_registered_user(self, client, store):
        r = await client.post(
            f'/api/v1/cases/{CASE_ID}/shares',
            json={'email': BOB.email, 'can_edit': True},
            headers=as_user(OWNER),
        )

        assert r.status_code == 201
        body = r.json()
        assert body['success'] is True
        assert body['pending'] is False
        assert body['share']['user_id'] == BOB.user_id
        assert body['share']['can_edit'] is True
        assert len(store.rows('case_shares')) == 1

    @pytest.mark.asyncio
    async def test_share_unknown_email_creates_invite(self, client):
        r = await client.post(
            f'/api/v1/cases/{CASE_ID}/shares',
            json={'email': NEWCOMER.email},
            headers=as_user(OWNER),
        )

        assert r.status_code == 201
        invite = r.json()['invite']
        assert r.json()['pending'] is True
        assert invite['invite_link'] == f"{PUBLIC_ORIGIN}/invite/{invite['token']}"

    @pytest.mark.asyncio
    async def test_duplicate_share_is_409_with_reason(self, client):
        body = {'email': BOB.email}
        await client.post(f'/api/v1/cases/{CASE_ID}/shares', json=body, headers=as_user(OWNER))
        r = await client.post(f'/api/v1/cases/{CASE_ID}/shares', json=body, headers=as_user(OWNER))

        assert r.status_code == 409
        assert r.json() == {
            'success': False,
            'error': 'conflict',
            'reason': 'already_shared',
            'detail': r.json()['detail'],
        }

    @pytest.mark.asyncio
    async def test_list_update_and_delete(self, client, store):
        await client.post(
            f'/api/v1/cases/{CASE_ID}/shares', json={'email': BOB.email}, headers=as_user(OWNER),
        )

        patched = await client.patch(
            f'/api/v1/cases/{CASE_ID}/shares/{BOB.user_id}',
            json={'can_view': True, 'can_edit': True},
            headers=as_user(OWNER),
        )
        listed = await client.get(f'/api/v1/cases/{CASE_ID}/shares', headers=as_user(OWNER))
        deleted = await client.delete(
            f'/api/v1/cases/{CASE_ID}/shares/{BOB.user_id}', headers=as_user(OWNER),
        )
        again = await client.delete(
            f'/api/v1/cases/{CASE_ID}/shares/{BOB.user_id}', headers=as_user(OWNER),
        )

        assert patched.status_code == 200
        assert listed.json()['data'][0]['can_edit'] is True
        assert deleted.json()['removed'] is True
        assert again.status_code == 200
        assert again.json()['removed'] is False
        assert store.rows('case_shares') == []

    @pytest.mark.asyncio
    async def test_patch_requires_both_flags(self, client):
        r = await client.patch(
            f'/api/v1/cases/{CASE_ID}/shares/{BOB.user_id}',
            json={'can_edit': True},
            headers=as_user(OWNER),
        )
        assert r.status_code == 422

    @pytest.mark.asyncio
    async def test_malformed_email_is_422(self, client, store):
        r = await client.post(
            f'/api/v1/cases/{CASE_ID}/shares', json={'email': 'not-an-email'}, headers=as_user(OWNER),
        )
        assert r.status_code == 422
        assert store.rows('case_shares') == []

    @pytest.mark.asyncio
    async def test_anonymous_is_401(self, client):
        r = await client.get(f'/api/v1/cases/{CASE_ID}/shares')
        assert r.status_code == 401
        assert r.json()['error'] == 'unauthenticated'
        assert r.headers['www-authenticate'] == 'Bearer'

    @pytest.mark.asyncio
    async def test_non_owner_is_403(self, client, store):
        r = await client.post(
            f'/api/v1/cases/{CASE_ID}/shares', json={'email': BOB.email}, headers=as_user(BOB),
        )
        assert r.status_code == 403
        assert r.json()['error'] == 'forbidden'
        assert store.rows('case_shares') == []

    @pytest.mark.asyncio
    async def test_degraded_list_still_returns_200(self, client, store):
        store.inject_failure('select', 'case_shares')
        r = await client.get(f'/api/v1/cases/{CASE_ID}/shares', headers=as_user(OWNER))
        assert r.status_code == 200
        assert r.json() == {'success': True, 'degraded': True, 'data': []}


class TestInvites:
    @pytest.mark.asyncio
    async def test_invite_registered_email_is_409(self, client):
        r = await client.post(
            f'/api/v1/cases/{CASE_ID}/invites', json={'email': BOB.email}, headers=as_user(OWNER),
        )
        assert r.status_code == 409
        assert r.json()['reason'] == 'already_registered'

    @pytest.mark.asyncio
    async def test_list_pending_hides_tokens(self, client):
        created = await _invite(client)
        r = await client.get(f'/api/v1/cases/{CASE_ID}/invites', headers=as_user(OWNER))

        [pending] = r.json()['data']
        assert pending['email'] == NEWCOMER.email
        assert created['token'] not in r.text

    @pytest.mark.asyncio
    async def test_preview_is_public(self, client):
        created = await _invite(client)
        r = await client.get(f"/api/v1/invites/{created['token']}")

        assert r.status_code == 200
        assert r.json()['valid'] is True
        assert r.json()['case_title'] == 'Smith v. Jones'

    @pytest.mark.asyncio
    async def test_preview_unknown_is_404(self, client):
        r = await client.get('/api/v1/invites/does-not-exist')
        assert r.status_code == 404
        assert r.json()['error'] == 'not_found'

    @pytest.mark.asyncio
    async def test_preview_store_failure_is_503(self, client, store):
        store.inject_failure('select', 'case_share_invites')
        r = await client.get('/api/v1/invites/some-token')
        assert r.status_code == 503

    @pytest.mark.asyncio
    async def test_redeem_flow(self, client, store):
        created = await _invite(client)

        r = await client.post(
            f"/api/v1/invites/{created['token']}/redeem", headers=as_user(NEWCOMER),
        )

        assert r.status_code == 200
        assert r.json() == {'success': True, 'case_id': CASE_ID, 'already_granted': False}
        assert store.rows('case_share_invites') == []
        [share] = store.rows('case_shares')
        assert share['shared_with_user_id'] == NEWCOMER.user_id

    @pytest.mark.asyncio
    async def test_redeem_requires_login(self, client):
        created = await _invite(client)
        r = await client.post(f"/api/v1/invites/{created['token']}/redeem")
        assert r.status_code == 401

    @pytest.mark.asyncio
    async def test_redeem_wrong_email_is_403(self, client, store):
        created = await _invite(client)
        r = await client.post(f"/api/v1/invites/{created['token']}/redeem", headers=as_user(BOB))

        assert r.status_code == 403
        assert r.json()['error'] == 'email_mismatch'
        assert len(store.rows('case_share_invites')) == 1

    @pytest.mark.asyncio
    async def test_redeem_expired_is_410(self, client, clock):
        created = await _invite(client)
        clock.advance(timedelta(days=8))

        r = await client.post(
            f"/api/v1/invites/{created['token']}/redeem", headers=as_user(NEWCOMER),
        )
        assert r.status_code == 410
        assert r.json()['error'] == 'expired'

    @pytest.mark.asyncio
    async def test_redeem_unknown_is_404(self, client):
        r = await client.post('/api/v1/invites/nope/redeem', headers=as_user(NEWCOMER))
        assert r.status_code == 404

    @pytest.mark.asyncio
    async def test_cancel_invite(self, client, store):
        created = await _invite(client)
        r = await client.delete(
            f"/api/v1/cases/{CASE_ID}/invites/{created['invite_id']}", headers=as_user(OWNER),
        )
        assert r.status_code == 200
        assert store.rows('case_share_invites') == []

    @pytest.mark.asyncio
    async def test_overview(self, client):
        await client.post(
            f'/api/v1/cases/{CASE_ID}/shares', json={'email': BOB.email}, headers=as_user(OWNER),
        )
        await _invite(client)

        r = await client.get(f'/api/v1/cases/{CASE_ID}/overview', headers=as_user(OWNER))

        body = r.json()
        assert [u['user_id'] for u in body['shared_users']] == [BOB.user_id]
        assert [i['email'] for i in body['pending_invites']] == [NEWCOMER.email]


class TestAccessCodes:
    @pytest.mark.asyncio
    async def test_issue_and_resolve(self, client):
        issued = await client.post(
            f'/api/v1/cases/{CASE_ID}/access-codes', headers=as_user(OWNER),
        )
        assert issued.status_code == 201
        code = issued.json()['code']

        r = await client.get(f'/api/v1/access/{code.lower()}')

        assert r.status_code == 200
        body = r.json()
        assert body['case']['id'] == CASE_ID
        assert [e['id'] for e in body['emails']] == ['em-2', 'em-1']
        assert [e['id'] for e in body['events']] == ['ev-1']

    @pytest.mark.asyncio
    async def test_unknown_code_is_404(self, client):
        r = await client.get('/api/v1/access/ZZZZZZZZZZZZ')
        assert r.status_code == 404

    @pytest.mark.asyncio
    async def test_only_owner_issues(self, client):
        r = await client.post(f'/api/v1/cases/{CASE_ID}/access-codes', headers=as_user(BOB))
        assert r.status_code == 403
