"""
auth/linking.py -- Map a verified external identity onto exactly one account.

Resolution order:
  1. external subject id match        -> that account (avatar refreshed)
  2. email match                      -> attach subject id to that account
  3. neither                          -> new federated-only account

An account already linked to a different subject is never re-linked through an
email match; that raises ConflictError.

A new account gets a username synthesized from the display name (or the email
local part) and probed for availability with numeric suffixes. Two concurrent
resolves can still race to the same free name or subject; the UNIQUE
constraints pick a winner. The loser re-checks the subject id so a concurrent
resolve of the same identity converges on one account; when only the username
was taken it looks for the next free suffix and retries, a bounded number of
times. A lost race on the email is a ConflictError.

Accounts are never deleted here.
"""

from __future__ import annotations

import asyncio
import logging
import re

from sqlalchemy.exc import IntegrityError

from auth.errors import ConflictError
from auth.models import Account, ExternalProfile
from auth.store import CredentialStore

logger = logging.getLogger("arena.auth.linking")

USERNAME_MAX_LENGTH = 30
USERNAME_MIN_LENGTH = 3
CREATE_ATTEMPTS = 5

_WHITESPACE = re.compile(r"\s+")
_DISALLOWED = re.compile(r"[^a-zA-Z0-9_-]")


def synthesize_username(display_name: str | None, email: str) -> str:
    """Derive a base username from a provider profile.

    >>> synthesize_username("Alice Smith", "alice@example.com")
    'Alice_Smith'
    >>> synthesize_username(None, "bo@example.com")
    'user_bo'
    """
    if display_name and display_name.strip():
        base = _WHITESPACE.sub("_", display_name.strip())
    else:
        base = email.split("@", 1)[0]
    base = _DISALLOWED.sub("", base)[:USERNAME_MAX_LENGTH]
    if len(base) < USERNAME_MIN_LENGTH:
        base = f"user_{base}" if base else "user"
    return base


class IdentityLinker:
    def __init__(self, store: CredentialStore) -> None:
        self.store = store

    async def resolve(self, profile: ExternalProfile) -> Account:
        """Return the account for profile, linking or creating one as needed."""
        account = await asyncio.to_thread(self.store.find_account_by_external_subject, profile.subject_id)
        if account is not None:
            return await self._refresh_avatar(account, profile)

        account = await asyncio.to_thread(self.store.find_account_by_email, profile.email)
        if account is not None:
            return await self._attach(account, profile)

        return await self._create(profile)

    async def _refresh_avatar(self, account: Account, profile: ExternalProfile) -> Account:
        if profile.avatar_url and profile.avatar_url != account.avatar_url:
            await asyncio.to_thread(self.store.update_account, account.id, avatar_url=profile.avatar_url)
            account.avatar_url = profile.avatar_url
        return account

    async def _attach(self, account: Account, profile: ExternalProfile) -> Account:
        if account.external_subject_id and account.external_subject_id != profile.subject_id:
            logger.warning("Account %s is already linked to a different external identity", account.id)
            raise ConflictError("Email is already linked to a different external identity")

        fields = {"external_subject_id": profile.subject_id}
        if profile.avatar_url:
            fields["avatar_url"] = profile.avatar_url
        try:
            await asyncio.to_thread(self.store.update_account, account.id, **fields)
        except IntegrityError as exc:
            # The subject id was attached elsewhere in the meantime.
            return await self._converge(profile, exc)

        account.external_subject_id = profile.subject_id
        account.avatar_url = fields.get("avatar_url", account.avatar_url)
        logger.info("Linked external identity to existing account %s", account.id)
        return account

    async def _create(self, profile: ExternalProfile) -> Account:
        base = synthesize_username(profile.display_name, profile.email)
        last_error: IntegrityError | None = None
        for _ in range(CREATE_ATTEMPTS):
            username = await self._free_username(base)
            account = Account(
                email=profile.email,
                username=username,
                external_subject_id=profile.subject_id,
                avatar_url=profile.avatar_url,
            )
            try:
                account_id = await asyncio.to_thread(self.store.create_account, account)
            except IntegrityError as exc:
                winner = await asyncio.to_thread(self.store.find_account_by_external_subject, profile.subject_id)
                if winner is not None:
                    return winner
                if await asyncio.to_thread(self.store.find_account_by_email, profile.email) is not None:
                    raise ConflictError("Could not link external identity: email already in use") from exc
                # Only the username was taken; look for the next free one.
                logger.info("Username %s taken during federated signup, retrying", username)
                last_error = exc

            created = await asyncio.to_thread(self.store.find_account_by_id, account_id)
            logger.info("Created federated account %s (username=%s)", account_id, username)
            return created

        raise ConflictError("Could not link external identity: no free username") from last_error

    async def _free_username(self, base: str) -> str:
        candidate = base
        suffix = 0
        while await asyncio.to_thread(self.store.find_account_by_username, candidate) is not None:
            suffix += 1
            candidate = f"{base}_{suffix}"
        return candidate

    async def _converge(self, profile: ExternalProfile, exc: IntegrityError) -> Account:
        winner = await asyncio.to_thread(self.store.find_account_by_external_subject, profile.subject_id)
        if winner is not None:
            return winner
        raise ConflictError("Could not link external identity: account already exists") from exc
