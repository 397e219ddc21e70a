"""Unit tests for auth/refresh.py -- RefreshTokenManager.

Covers:
- rotate() consumes the presented token and returns a working pair
- a rotated token never rotates again
- unknown, expired, revoked and orphaned tokens fail with InvalidTokenError
- concurrent rotations of one token: exactly one wins
- revoke_all() removes every token of the account
"""

import asyncio
from datetime import timedelta

import pytest

from auth.errors import InvalidTokenError
from auth.models import Account
from auth.refresh import RefreshTokenManager
from auth.tokens import TokenSigner

SECRET = "refresh-test-secret-at-least-32-characters"


@pytest.fixture
def signer() -> TokenSigner:
    return TokenSigner(SECRET)


@pytest.fixture
def manager(store, signer) -> RefreshTokenManager:
    return RefreshTokenManager(store, signer)


@pytest.fixture
def account_id(store) -> str:
    return store.create_account(Account(email="a@example.com", username="alice", password_hash="h"))


def test_rotate_returns_new_pair(store, manager, signer, account_id):
    async def scenario():
        old = await manager.issue(account_id)
        pair = await manager.rotate(old)
        return old, pair

    old, pair = asyncio.run(scenario())
    assert pair.refresh_token != old
    assert store.find_refresh_token(old) is None
    assert store.find_refresh_token(pair.refresh_token).account_id == account_id
    assert signer.verify(pair.access_token).account_id == account_id


def test_rotated_token_cannot_rotate_again(manager, account_id):
    async def scenario():
        old = await manager.issue(account_id)
        await manager.rotate(old)
        await manager.rotate(old)

    with pytest.raises(InvalidTokenError):
        asyncio.run(scenario())


@pytest.mark.parametrize("token", ["", "does-not-exist"])
def test_unknown_token(manager, token):
    with pytest.raises(InvalidTokenError):
        asyncio.run(manager.rotate(token))


def test_expired_token_rejected_and_deleted(store, signer, account_id):
    manager = RefreshTokenManager(store, signer, ttl=timedelta(seconds=-1))
    token = asyncio.run(manager.issue(account_id))
    with pytest.raises(InvalidTokenError):
        asyncio.run(manager.rotate(token))
    assert store.find_refresh_token(token) is None


def test_token_of_missing_account(store, manager):
    store.create_refresh_token("orphan", "gone-account", "9999-12-31T00:00:00.000000+00:00")
    with pytest.raises(InvalidTokenError):
        asyncio.run(manager.rotate("orphan"))


def test_concurrent_rotation_single_winner(store, manager, account_id):
    async def scenario():
        old = await manager.issue(account_id)
        return await asyncio.gather(*(manager.rotate(old) for _ in range(5)), return_exceptions=True)

    results = asyncio.run(scenario())
    winners = [r for r in results if not isinstance(r, BaseException)]
    assert len(winners) == 1
    assert all(isinstance(r, InvalidTokenError) for r in results if isinstance(r, BaseException))
    assert store.count_refresh_tokens(account_id) == 1


def test_revoke_all(store, manager, account_id):
    async def scenario():
        tokens = [await manager.issue(account_id) for _ in range(3)]
        removed = await manager.revoke_all(account_id)
        return tokens, removed

    tokens, removed = asyncio.run(scenario())
    assert removed == 3
    for token in tokens:
        with pytest.raises(InvalidTokenError):
            asyncio.run(manager.rotate(token))
