"""Unit tests for the invite state machine."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from case_share.db import (
    CaseInviteRepository,
    CaseRepository,
    CaseShareRepository,
    ProfileDirectory,
)
from case_share.db.errors import unique_violation
from case_share.models import Permissions, hash_token
from case_share.security.authorization import Forbidden
from case_share.sharing.invites import InviteLedger
from case_share.sharing.outcomes import ConflictReason, ErrorKind, Ok, ReadDegraded

from conftest import BOB, CASE_ID, NEWCOMER, OTHER_CASE_ID, OWNER, PUBLIC_ORIGIN, T0


async def _invite(ledger, email=NEWCOMER.email, **kwargs):
    outcome = await ledger.create(CASE_ID, OWNER, email, **kwargs)
    assert isinstance(outcome, Ok), outcome
    return outcome.data


class TestCreate:
    @pytest.mark.asyncio
    async def test_stores_hash_and_returns_link(self, ledger, store):
        created = await _invite(ledger)

        assert created.invite_link == f'{PUBLIC_ORIGIN}/invite/{created.token}'
        assert created.expires_at == T0 + timedelta(days=7)
        [row] = store.rows('case_share_invites')
        assert row['token_hash'] == hash_token(created.token)
        assert created.token not in row.values()
        assert row['email'] == NEWCOMER.email
        assert row['invited_by_user_id'] == OWNER.user_id

    @pytest.mark.asyncio
    async def test_tokens_are_unique_and_high_entropy(self, ledger):
        first = await _invite(ledger, 'a@example.com')
        second = await _invite(ledger, 'b@example.com')
        assert first.token != second.token
        assert len(first.token) >= 40

    @pytest.mark.asyncio
    async def test_caller_origin_overrides_default(self, ledger):
        outcome = await ledger.create(CASE_ID, OWNER, NEWCOMER.email, origin='https://other.test/')
        assert outcome.data.invite_link.startswith('https://other.test/invite/')

    @pytest.mark.asyncio
    async def test_email_is_normalized(self, ledger, store):
        await _invite(ledger, '  New.Person@Example.COM ')
        assert store.rows('case_share_invites')[0]['email'] == NEWCOMER.email

    @pytest.mark.asyncio
    async def test_second_invite_for_same_email_conflicts(self, ledger, store):
        await _invite(ledger)
        outcome = await ledger.create(CASE_ID, OWNER, NEWCOMER.email.upper())

        assert outcome.conflict is ConflictReason.ALREADY_INVITED
        assert len(store.rows('case_share_invites')) == 1

    @pytest.mark.asyncio
    async def test_unique_violation_on_insert_is_already_invited(self, ledger, store):
        store.inject_failure('insert', 'case_share_invites', unique_violation('dup'))
        outcome = await ledger.create(CASE_ID, OWNER, NEWCOMER.email)
        assert outcome.conflict is ConflictReason.ALREADY_INVITED

    @pytest.mark.asyncio
    async def test_registered_email_conflicts(self, ledger, store):
        outcome = await ledger.create(CASE_ID, OWNER, BOB.email)
        assert outcome.conflict is ConflictReason.ALREADY_REGISTERED
        assert store.rows('case_share_invites') == []

    @pytest.mark.asyncio
    async def test_latent_expired_invite_is_replaced(self, ledger, store, clock):
        old = await _invite(ledger)
        clock.advance(timedelta(days=8))

        fresh = await _invite(ledger)

        [row] = store.rows('case_share_invites')
        assert row['token_hash'] == hash_token(fresh.token)
        assert fresh.token != old.token

    @pytest.mark.asyncio
    async def test_non_owner_is_forbidden(self, ledger, store):
        with pytest.raises(Forbidden):
            await ledger.create(OTHER_CASE_ID, OWNER, NEWCOMER.email)
        assert store.rows('case_share_invites') == []


class TestPreview:
    @pytest.mark.asyncio
    async def test_valid_invite(self, ledger):
        created = await _invite(ledger)
        outcome = await ledger.preview(created.token)

        assert outcome.data.valid is True
        assert outcome.data.case_title == 'Smith v. Jones'
        assert outcome.data.email == NEWCOMER.email

    @pytest.mark.asyncio
    async def test_unknown_token_is_none(self, ledger):
        assert (await ledger.preview('nope')).data is None
        assert (await ledger.preview('')).data is None

    @pytest.mark.asyncio
    async def test_expired_invite_is_reported_but_not_deleted(self, ledger, store, clock):
        created = await _invite(ledger)
        clock.advance(timedelta(days=7))

        outcome = await ledger.preview(created.token)

        assert outcome.data.valid is False
        assert outcome.data.case_title == ''
        assert len(store.rows('case_share_invites')) == 1

    @pytest.mark.asyncio
    async def test_missing_case_row_uses_default_title(self, ledger, store):
        created = await _invite(ledger)
        store._tables['cases'] = [c for c in store._tables['cases'] if c['id'] != CASE_ID]

        outcome = await ledger.preview(created.token)
        assert outcome.data.case_title == 'a case'

    @pytest.mark.asyncio
    async def test_store_failure_degrades(self, ledger, store):
        created = await _invite(ledger)
        store.inject_failure('select', 'case_share_invites')
        outcome = await ledger.preview(created.token)
        assert isinstance(outcome, ReadDegraded)
        assert outcome.data is None


class TestRedeem:
    @pytest.mark.asyncio
    async def test_creates_share_and_deletes_invite(self, ledger, store):
        created = await _invite(ledger, permissions=Permissions(can_view=True, can_edit=True))

        outcome = await ledger.redeem(created.token, NEWCOMER.user_id, NEWCOMER.email)

        assert isinstance(outcome, Ok)
        assert outcome.data.case_id == CASE_ID
        assert outcome.data.already_granted is False
        [share] = store.rows('case_shares')
        assert share['shared_with_user_id'] == NEWCOMER.user_id
        assert share['shared_by_user_id'] == OWNER.user_id
        assert (share['can_view'], share['can_edit']) == (True, True)
        assert store.rows('case_share_invites') == []

    @pytest.mark.asyncio
    async def test_email_comparison_ignores_case(self, ledger):
        created = await _invite(ledger)
        outcome = await ledger.redeem(created.token, NEWCOMER.user_id, 'NEW.PERSON@EXAMPLE.COM')
        assert outcome.success

    @pytest.mark.asyncio
    async def test_email_mismatch_leaves_invite(self, ledger, store):
        created = await _invite(ledger)
        outcome = await ledger.redeem(created.token, 'intruder', 'intruder@example.com')

        assert outcome.kind is ErrorKind.EMAIL_MISMATCH
        assert len(store.rows('case_share_invites')) == 1
        assert store.rows('case_shares') == []

    @pytest.mark.asyncio
    async def test_expired_invite_is_deleted(self, ledger, store, clock):
        created = await _invite(ledger)
        clock.advance(timedelta(days=7, seconds=1))
        assert len(store.rows('case_share_invites')) == 1

        outcome = await ledger.redeem(created.token, NEWCOMER.user_id, NEWCOMER.email)

        assert outcome.kind is ErrorKind.EXPIRED
        assert store.rows('case_share_invites') == []
        assert store.rows('case_shares') == []

    @pytest.mark.asyncio
    async def test_expiry_boundary_is_expired(self, ledger, clock):
        created = await _invite(ledger)
        clock.advance(timedelta(days=7))
        outcome = await ledger.redeem(created.token, NEWCOMER.user_id, NEWCOMER.email)
        assert outcome.kind is ErrorKind.EXPIRED

    @pytest.mark.asyncio
    async def test_unknown_token_not_found(self, ledger):
        outcome = await ledger.redeem('bogus', NEWCOMER.user_id, NEWCOMER.email)
        assert outcome.kind is ErrorKind.NOT_FOUND

    @pytest.mark.asyncio
    async def test_existing_share_counts_as_success(self, ledger, store):
        created = await _invite(ledger)
        store.inject_failure('insert', 'case_shares', unique_violation('dup'))

        outcome = await ledger.redeem(created.token, NEWCOMER.user_id, NEWCOMER.email)

        assert outcome.success
        assert outcome.data.already_granted is True
        assert store.rows('case_share_invites') == []

    @pytest.mark.asyncio
    async def test_sequential_double_redeem_yields_one_share(self, ledger, store):
        created = await _invite(ledger)
        first = await ledger.redeem(created.token, NEWCOMER.user_id, NEWCOMER.email)
        # Simulate the slower racer: it loaded the invite before the first
        # call deleted it, then hit the unique index on insert.
        store.seed('case_share_invites', {
            'case_id': CASE_ID,
            'email': NEWCOMER.email,
            'invited_by_user_id': OWNER.user_id,
            'token_hash': hash_token(created.token),
            'expires_at': (T0 + timedelta(days=7)).isoformat(),
            'can_view': True,
            'can_edit': False,
        })
        second = await ledger.redeem(created.token, NEWCOMER.user_id, NEWCOMER.email)

        assert first.success and second.success
        assert second.data.already_granted is True
        assert len(store.rows('case_shares')) == 1

    @pytest.mark.asyncio
    async def test_concurrent_redeems_both_succeed_with_one_share(self, ledger, store):
        created = await _invite(ledger)

        results = await asyncio.gather(
            ledger.redeem(created.token, NEWCOMER.user_id, NEWCOMER.email),
            ledger.redeem(created.token, NEWCOMER.user_id, NEWCOMER.email),
        )

        assert all(r.success for r in results)
        assert sorted(r.data.already_granted for r in results) == [False, True]
        assert len(store.rows('case_shares')) == 1
        assert store.rows('case_share_invites') == []

    @pytest.mark.asyncio
    async def test_share_insert_failure_keeps_invite_for_retry(self, ledger, store):
        created = await _invite(ledger)
        store.inject_failure('insert', 'case_shares')

        failed = await ledger.redeem(created.token, NEWCOMER.user_id, NEWCOMER.email)
        assert failed.kind is ErrorKind.INTERNAL_ERROR
        assert len(store.rows('case_share_invites')) == 1

        retried = await ledger.redeem(created.token, NEWCOMER.user_id, NEWCOMER.email)
        assert retried.success

    @pytest.mark.asyncio
    async def test_invite_cleanup_failure_still_succeeds(self, ledger, store):
        created = await _invite(ledger)
        store.inject_failure('delete', 'case_share_invites')

        outcome = await ledger.redeem(created.token, NEWCOMER.user_id, NEWCOMER.email)

        assert outcome.success
        assert len(store.rows('case_shares')) == 1


class TestCancelAndList:
    @pytest.mark.asyncio
    async def test_cancel_removes_invite(self, ledger, store):
        created = await _invite(ledger)
        outcome = await ledger.cancel(CASE_ID, OWNER, created.invite_id)

        assert outcome.data == {'invite_id': created.invite_id, 'removed': True}
        assert store.rows('case_share_invites') == []

    @pytest.mark.asyncio
    async def test_cancel_missing_invite_succeeds(self, ledger):
        outcome = await ledger.cancel(CASE_ID, OWNER, 'gone')
        assert isinstance(outcome, Ok)
        assert outcome.data['removed'] is False

    @pytest.mark.asyncio
    async def test_cancel_is_scoped_to_case(self, ledger, store):
        store.seed('case_share_invites', {
            'id': 'foreign',
            'case_id': OTHER_CASE_ID,
            'email': 'x@example.com',
            'token_hash': 'h',
            'expires_at': (T0 + timedelta(days=1)).isoformat(),
        })
        outcome = await ledger.cancel(CASE_ID, OWNER, 'foreign')

        assert outcome.data['removed'] is False
        assert len(store.rows('case_share_invites')) == 1

    @pytest.mark.asyncio
    async def test_list_pending_excludes_expired_without_deleting(self, ledger, store, clock):
        await _invite(ledger, 'early@example.com')
        clock.advance(timedelta(days=3))
        await _invite(ledger, 'late@example.com')
        clock.advance(timedelta(days=4))  # first invite now exactly at expiry

        outcome = await ledger.list_pending(CASE_ID, OWNER)

        assert [i.email for i in outcome.data] == ['late@example.com']
        assert all(i.expires_at > clock() for i in outcome.data)
        assert len(store.rows('case_share_invites')) == 2

    @pytest.mark.asyncio
    async def test_list_pending_degrades_on_store_failure(self, ledger, store):
        store.inject_failure('select', 'case_share_invites')
        outcome = await ledger.list_pending(CASE_ID, OWNER)
        assert isinstance(outcome, ReadDegraded)
        assert outcome.data == []

    @pytest.mark.asyncio
    async def test_purge_expired(self, ledger, store, clock):
        await _invite(ledger, 'early@example.com')
        clock.advance(timedelta(days=3))
        await _invite(ledger, 'late@example.com')
        clock.advance(timedelta(days=4))

        assert await ledger.purge_expired() == 1
        assert [r['email'] for r in store.rows('case_share_invites')] == ['late@example.com']


def test_rejects_non_positive_ttl():
    with pytest.raises(ValueError):
        InviteLedger(
            cases=None, invites=None, shares=None, profiles=None, ttl=timedelta(0),
        )


@pytest.mark.asyncio
async def test_create_without_any_origin_is_rejected(store, clock):
    bare = InviteLedger(
        cases=CaseRepository(store),
        invites=CaseInviteRepository(store),
        shares=CaseShareRepository(store),
        profiles=ProfileDirectory(store),
        clock=clock,
    )
    with pytest.raises(ValueError):
        await bare.create(CASE_ID, OWNER, NEWCOMER.email)
    assert store.rows('case_share_invites') == []


@pytest.mark.asyncio
async def test_malformed_email_is_rejected_before_reading_the_case(ledger, store):
    store.inject_failure('select', 'cases')
    with pytest.raises(ValueError):
        await ledger.create(OTHER_CASE_ID, OWNER, 'not-an-email')
    assert store.rows('case_share_invites') == []
