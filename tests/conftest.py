"""Pytest configuration for case_share tests."""
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Add src/ to path for src-layout imports
_SRC = Path(__file__).parent.parent / 'src'
if str(_SRC) not in sys.path:
    sys.path.insert(0, str(_SRC))

import pytest

from case_share.inmemory import InMemoryAuditEmitter, InMemoryRecordStore
from case_share.main import AppDependencies
from case_share.security.token_verify import AuthIdentity
from case_share.settings import CaseShareSettings

OWNER = AuthIdentity(user_id='owner-1', email='owner@example.com')
OTHER_OWNER = AuthIdentity(user_id='owner-2', email='other@example.com')
BOB = AuthIdentity(user_id='user-bob', email='bob@example.com')
NEWCOMER = AuthIdentity(user_id='user-new', email='new.person@example.com')

CASE_ID = 'case-1'
OTHER_CASE_ID = 'case-2'
PUBLIC_ORIGIN = 'https://app.example.com'
T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Manually advanced clock for expiry tests."""

    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


def seed_fixtures(store: InMemoryRecordStore) -> None:
    store.seed(
        'cases',
        {'id': CASE_ID, 'user_id': OWNER.user_id, 'title': 'Smith v. Jones'},
        {'id': OTHER_CASE_ID, 'user_id': OTHER_OWNER.user_id, 'title': 'Other matter'},
    )
    store.seed(
        'profiles',
        {'id': OWNER.user_id, 'email': OWNER.email, 'first_name': 'Olivia', 'last_name': 'Owner'},
        {'id': OTHER_OWNER.user_id, 'email': OTHER_OWNER.email},
        {'id': BOB.user_id, 'email': BOB.email, 'first_name': 'Bob', 'last_name': 'Builder'},
    )
    store.seed(
        'emails',
        {'id': 'em-1', 'case_id': CASE_ID, 'subject': 'First', 'date': '2026-01-01T09:00:00+00:00'},
        {'id': 'em-2', 'case_id': CASE_ID, 'subject': 'Second', 'date': '2026-01-05T09:00:00+00:00'},
        {'id': 'em-x', 'case_id': OTHER_CASE_ID, 'subject': 'Private', 'date': '2026-01-03T09:00:00+00:00'},
    )
    store.seed(
        'events',
        {'id': 'ev-1', 'case_id': CASE_ID, 'title': 'Hearing', 'date': '2026-02-01T09:00:00+00:00'},
        {'id': 'ev-x', 'case_id': OTHER_CASE_ID, 'title': 'Private', 'date': '2026-02-02T09:00:00+00:00'},
    )


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def store() -> InMemoryRecordStore:
    s = InMemoryRecordStore()
    seed_fixtures(s)
    return s


@pytest.fixture
def audit() -> InMemoryAuditEmitter:
    return InMemoryAuditEmitter()


@pytest.fixture
def settings() -> CaseShareSettings:
    return CaseShareSettings(public_origin=PUBLIC_ORIGIN)


@pytest.fixture
def deps(settings, store, audit, clock) -> AppDependencies:
    return AppDependencies.build(settings, store, audit, clock)


@pytest.fixture
def controller(deps):
    return deps.controller


@pytest.fixture
def ledger(deps):
    return deps.ledger
