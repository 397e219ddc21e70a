"""
auth/codes.py -- One-time second-factor codes.

A code is six decimal digits drawn from the secrets CSPRNG. Only its bcrypt
hash is persisted, with an expiry. Verification follows a fixed order:

  1. purge expired, unconsumed codes for the account
  2. pick the most recently issued unconsumed, unexpired code
  3. none -> NoValidCodeError
  4. bcrypt-compare the candidate (constant time)
  5. match -> claim the record with a conditional UPDATE; only the caller that
     flips consumed 0 -> 1 succeeds. Mismatch leaves the record untouched.

Store and bcrypt calls run in worker threads so the event loop never waits on
them.

Issuing a new code leaves earlier unconsumed codes valid until they expire
unless invalidate_previous is set, in which case they are marked consumed.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from datetime import datetime, timedelta, timezone

from auth.errors import NoValidCodeError
from auth.hashing import SecretHasher
from auth.store import CredentialStore, now_iso, to_iso

logger = logging.getLogger("arena.auth.codes")

CODE_DIGITS = 6


def generate_code() -> str:
    """Return a uniformly random 6-digit code in 100000..999999."""
    low = 10 ** (CODE_DIGITS - 1)
    return str(low + secrets.randbelow(9 * low))


class OneTimeCodeEngine:
    def __init__(
        self,
        store: CredentialStore,
        hasher: SecretHasher,
        ttl: timedelta = timedelta(minutes=10),
        *,
        invalidate_previous: bool = False,
    ) -> None:
        self.store = store
        self.hasher = hasher
        self.ttl = ttl
        self.invalidate_previous = invalidate_previous

    async def purge_expired(self, account_id: str | None = None) -> int:
        """Delete expired, unconsumed codes for one account (or every account)."""
        removed = await asyncio.to_thread(self.store.delete_expired_codes, now_iso(), account_id)
        if removed:
            logger.debug("Purged %d expired code(s)", removed)
        return removed

    async def issue(self, account_id: str) -> str:
        """Create, hash and persist a new code; return the plaintext for dispatch."""
        await self.purge_expired(account_id)
        if self.invalidate_previous:
            await asyncio.to_thread(self.store.invalidate_unconsumed_codes, account_id)

        code = generate_code()
        code_hash = await asyncio.to_thread(self.hasher.hash, code)
        expires_at = to_iso(datetime.now(timezone.utc) + self.ttl)
        await asyncio.to_thread(self.store.create_one_time_code, account_id, code_hash, expires_at)
        logger.info("Issued second-factor code for account %s (expires %s)", account_id, expires_at)
        return code

    async def verify(self, account_id: str, candidate: str) -> bool:
        """Check candidate against the account's authoritative code.

        Returns True exactly once per code. Raises NoValidCodeError when the
        account has no unconsumed, unexpired code.
        """
        await self.purge_expired(account_id)
        record = await asyncio.to_thread(self.store.find_latest_unconsumed_code, account_id, now_iso())
        if record is None:
            raise NoValidCodeError()

        if not await asyncio.to_thread(self.hasher.verify, candidate, record.code_hash):
            logger.info("Second-factor code mismatch for account %s", account_id)
            return False

        if not await asyncio.to_thread(self.store.mark_code_consumed, record.id):
            # Another verification consumed the same record first.
            logger.info("Second-factor code %s already consumed", record.id)
            return False
        return True
