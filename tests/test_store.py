"""Unit tests for auth/store.py -- CredentialStore.

Covers:
- account create / lookup by id, email, username and external subject
- UNIQUE constraints raise IntegrityError (email, username, external subject)
- federated accounts (NULL password, NULL subject) coexist
- update_account() whitelist and updated_at stamping
- touch_last_seen() throttle
- one-time code latest-unconsumed lookup, single-winner consume, expiry purge
- refresh token conditional delete and bulk revocation
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from auth.models import Account
from auth.store import now_iso, to_iso


def _future(minutes: int = 10) -> str:
    return to_iso(datetime.now(timezone.utc) + timedelta(minutes=minutes))


def _past(minutes: int = 10) -> str:
    return to_iso(datetime.now(timezone.utc) - timedelta(minutes=minutes))


def _account(store, email="a@example.com", username="alice", **kw) -> str:
    return store.create_account(Account(email=email, username=username, password_hash="h", **kw))


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


def test_create_and_find_account(store):
    account_id = _account(store)
    by_id = store.find_account_by_id(account_id)
    assert by_id is not None
    assert by_id.email == "a@example.com"
    assert by_id.second_factor_enabled is False
    assert by_id.created_at == by_id.updated_at
    assert store.find_account_by_email("a@example.com").id == account_id
    assert store.find_account_by_username("alice").id == account_id
    assert store.account_exists(account_id) is True
    assert store.account_exists("missing") is False


def test_lookups_miss_return_none(store):
    assert store.find_account_by_id("nope") is None
    assert store.find_account_by_email("nope@example.com") is None
    assert store.find_account_by_username("nope") is None
    assert store.find_account_by_external_subject("nope") is None


def test_duplicate_email_raises(store):
    _account(store)
    with pytest.raises(IntegrityError):
        _account(store, username="other")


def test_duplicate_username_raises(store):
    _account(store)
    with pytest.raises(IntegrityError):
        _account(store, email="other@example.com")


def test_external_subject_unique_but_nullable(store):
    _account(store, email="a@example.com", username="a1")
    _account(store, email="b@example.com", username="b1")
    store.create_account(Account(email="c@example.com", username="c1", external_subject_id="g-1"))
    with pytest.raises(IntegrityError):
        store.create_account(Account(email="d@example.com", username="d1", external_subject_id="g-1"))
    federated = store.find_account_by_external_subject("g-1")
    assert federated.password_hash is None


def test_update_account(store):
    account_id = _account(store)
    before = store.find_account_by_id(account_id)
    assert store.update_account(account_id, second_factor_enabled=True, avatar_url="http://img") is True
    after = store.find_account_by_id(account_id)
    assert after.second_factor_enabled is True
    assert after.avatar_url == "http://img"
    assert after.updated_at >= before.updated_at
    assert store.update_account("missing", avatar_url="x") is False


def test_update_account_rejects_unknown_field(store):
    account_id = _account(store)
    with pytest.raises(ValueError):
        store.update_account(account_id, id="hijack")


def test_touch_last_seen_throttled(store):
    account_id = _account(store)
    assert store.touch_last_seen(account_id, min_interval_seconds=60) is True
    first = store.find_account_by_id(account_id).last_seen
    assert first is not None
    assert store.touch_last_seen(account_id, min_interval_seconds=60) is False
    assert store.find_account_by_id(account_id).last_seen == first
    assert store.touch_last_seen(account_id, min_interval_seconds=0) is True


# ---------------------------------------------------------------------------
# One-time codes
# ---------------------------------------------------------------------------


def test_latest_unconsumed_code_wins(store):
    account_id = _account(store)
    store.create_one_time_code(account_id, "old", _future())
    newest = store.create_one_time_code(account_id, "new", _future())
    found = store.find_latest_unconsumed_code(account_id, now_iso())
    assert found.id == newest
    assert found.code_hash == "new"


def test_expired_code_not_returned_and_purged(store):
    account_id = _account(store)
    store.create_one_time_code(account_id, "stale", _past())
    assert store.find_latest_unconsumed_code(account_id, now_iso()) is None
    assert store.delete_expired_codes(now_iso(), account_id) == 1
    assert store.delete_expired_codes(now_iso()) == 0


def test_mark_code_consumed_once(store):
    account_id = _account(store)
    code_id = store.create_one_time_code(account_id, "h", _future())
    assert store.mark_code_consumed(code_id) is True
    assert store.mark_code_consumed(code_id) is False
    assert store.find_latest_unconsumed_code(account_id, now_iso()) is None


def test_invalidate_and_delete_codes(store):
    account_id = _account(store)
    store.create_one_time_code(account_id, "a", _future())
    store.create_one_time_code(account_id, "b", _future())
    assert store.invalidate_unconsumed_codes(account_id) == 2
    assert store.find_latest_unconsumed_code(account_id, now_iso()) is None
    assert store.delete_codes_for_account(account_id) == 2


# ---------------------------------------------------------------------------
# Refresh tokens
# ---------------------------------------------------------------------------


def test_refresh_token_lifecycle(store):
    account_id = _account(store)
    store.create_refresh_token("tok-1", account_id, _future())
    store.create_refresh_token("tok-2", account_id, _future())
    assert store.find_refresh_token("tok-1").account_id == account_id
    assert store.count_refresh_tokens(account_id) == 2
    assert store.delete_refresh_token("tok-1") is True
    assert store.delete_refresh_token("tok-1") is False
    assert store.find_refresh_token("tok-1") is None
    assert store.delete_all_refresh_tokens(account_id) == 1
    assert store.count_refresh_tokens(account_id) == 0


def test_duplicate_refresh_token_raises(store):
    account_id = _account(store)
    store.create_refresh_token("tok", account_id, _future())
    with pytest.raises(IntegrityError):
        store.create_refresh_token("tok", account_id, _future())


def test_ping(store):
    assert store.ping() is True
