"""
auth/refresh.py -- Store-backed, single-use refresh tokens.

Rotation is delete-then-use: the presented token is deleted with a
conditional DELETE before anything is minted. When two rotations race on the
same token, the database lets exactly one DELETE remove the row; the loser sees
rowcount 0 and gets InvalidTokenError. Replaying a rotated token therefore
always fails.

Absent, expired, rotated and revoked tokens all fail with the same
InvalidTokenError and message; the caller cannot tell which.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone

from auth.errors import InvalidTokenError
from auth.models import SessionTokens
from auth.store import CredentialStore, now_iso, to_iso
from auth.tokens import TokenSigner, generate_refresh_token

logger = logging.getLogger("arena.auth.refresh")


class RefreshTokenManager:
    def __init__(self, store: CredentialStore, signer: TokenSigner, ttl: timedelta = timedelta(days=7)) -> None:
        self.store = store
        self.signer = signer
        self.ttl = ttl

    async def issue(self, account_id: str) -> str:
        token = generate_refresh_token()
        expires_at = to_iso(datetime.now(timezone.utc) + self.ttl)
        await asyncio.to_thread(self.store.create_refresh_token, token, account_id, expires_at)
        return token

    async def rotate(self, old_token: str) -> SessionTokens:
        """Consume old_token and return a new access/refresh pair.

        Raises InvalidTokenError if the token is unknown, already consumed by a
        concurrent rotation, expired, or its account no longer exists.
        """
        if not old_token:
            raise InvalidTokenError()

        record = await asyncio.to_thread(self.store.find_refresh_token, old_token)
        if record is None:
            raise InvalidTokenError()

        if not await asyncio.to_thread(self.store.delete_refresh_token, old_token):
            logger.warning("Refresh token for account %s lost a concurrent rotation", record.account_id)
            raise InvalidTokenError()

        if record.expires_at <= now_iso():
            logger.info("Expired refresh token presented for account %s", record.account_id)
            raise InvalidTokenError()

        account = await asyncio.to_thread(self.store.find_account_by_id, record.account_id)
        if account is None:
            raise InvalidTokenError()

        access_token = self.signer.issue_for(account.id, account.email)
        refresh_token = await self.issue(account.id)
        logger.info("Rotated refresh token for account %s", account.id)
        return SessionTokens(access_token=access_token, refresh_token=refresh_token)

    async def revoke_all(self, account_id: str) -> int:
        """Delete every refresh token of the account. Returns how many were removed."""
        removed = await asyncio.to_thread(self.store.delete_all_refresh_tokens, account_id)
        logger.info("Revoked %d refresh token(s) for account %s", removed, account_id)
        return removed
