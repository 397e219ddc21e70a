"""
auth/service.py -- Authentication orchestrator.

AuthService composes the store, hasher, signer, code engine, refresh-token
manager, linking engine, mail dispatcher and provider client into the
user-facing flows. It owns its collaborators for its lifetime; nothing here is
module-level state.

Login is a small state machine per attempt:

  CREDENTIALS_PENDING --(second factor off)--> AUTHENTICATED
  CREDENTIALS_PENDING --(second factor on)---> SECOND_FACTOR_PENDING
  SECOND_FACTOR_PENDING --(valid code)-------> AUTHENTICATED

Any failure ends the attempt. The pending handle is the account id; the client
sends it back together with the mailed code.

The authentication gate (authenticate) verifies the access token, confirms the
account still exists, and schedules a throttled last_seen write as a detached
task. That task never delays or fails the request; its errors are logged.
aclose() waits for outstanding tasks so shutdown does not drop them mid-write.

Security:
  [C1] Unknown usernames still pay for one bcrypt comparison against a dummy
       digest, so response time does not reveal which usernames exist.
  Unknown username and wrong password raise the same AuthError message.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta

from sqlalchemy.exc import IntegrityError

from auth.codes import OneTimeCodeEngine
from auth.errors import (
    AuthError,
    ConflictError,
    InvalidTokenError,
    NoValidCodeError,
    SessionExpiredError,
)
from auth.hashing import SecretHasher
from auth.linking import IdentityLinker
from auth.mailer import CodeDispatcher, SmtpMailer
from auth.models import Account, LoginResult, LoginState, SessionTokens
from auth.oauth import GoogleProfileClient, ProfileFetcher
from auth.refresh import RefreshTokenManager
from auth.store import CredentialStore
from auth.tokens import TokenSigner
from auth.validation import validate_code, validate_login, validate_registration

logger = logging.getLogger("arena.auth")


class AuthService:
    def __init__(
        self,
        store: CredentialStore,
        signer: TokenSigner,
        mailer: CodeDispatcher,
        provider: ProfileFetcher,
        *,
        password_hasher: SecretHasher | None = None,
        code_hasher: SecretHasher | None = None,
        refresh_ttl: timedelta = timedelta(days=7),
        code_ttl: timedelta = timedelta(minutes=10),
        invalidate_previous_codes: bool = False,
        last_seen_interval_seconds: int = 60,
    ) -> None:
        self.store = store
        self.signer = signer
        self.mailer = mailer
        self.provider = provider
        self.hasher = password_hasher or SecretHasher()
        self.codes = OneTimeCodeEngine(
            store,
            code_hasher or SecretHasher(rounds=10),
            code_ttl,
            invalidate_previous=invalidate_previous_codes,
        )
        self.refresh_tokens = RefreshTokenManager(store, signer, refresh_ttl)
        self.linker = IdentityLinker(store)
        self.last_seen_interval_seconds = last_seen_interval_seconds
        self._background: set[asyncio.Task] = set()

    @classmethod
    def from_settings(
        cls,
        settings,
        store: CredentialStore,
        mailer: CodeDispatcher | None = None,
        provider: ProfileFetcher | None = None,
    ) -> "AuthService":
        """Wire a service from application settings.

        mailer and provider default to SmtpMailer and GoogleProfileClient.
        """
        return cls(
            store,
            TokenSigner(settings.secret_key, timedelta(seconds=settings.access_token_expire_seconds)),
            mailer or SmtpMailer.from_settings(settings),
            provider or GoogleProfileClient(settings.google_userinfo_url, settings.provider_timeout_seconds),
            password_hasher=SecretHasher(settings.password_bcrypt_rounds),
            code_hasher=SecretHasher(settings.otp_bcrypt_rounds),
            refresh_ttl=timedelta(days=settings.refresh_token_expire_days),
            code_ttl=timedelta(minutes=settings.otp_expire_minutes),
            invalidate_previous_codes=settings.otp_invalidate_previous,
            last_seen_interval_seconds=settings.last_seen_update_seconds,
        )

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    async def register(self, email: str, username: str, password: str) -> str:
        """Create a password account and return its id.

        Raises ValidationError before touching the store, ConflictError when
        the email or username is taken (including by a concurrent registration).
        """
        validate_registration(email, username, password)

        if await asyncio.to_thread(self.store.find_account_by_email, email) is not None:
            raise ConflictError("Email already in use", field="email")
        if await asyncio.to_thread(self.store.find_account_by_username, username) is not None:
            raise ConflictError("Username already in use", field="username")

        password_hash = await asyncio.to_thread(self.hasher.hash, password)
        account = Account(email=email, username=username, password_hash=password_hash)
        try:
            account_id = await asyncio.to_thread(self.store.create_account, account)
        except IntegrityError as exc:
            raise await self._registration_conflict(email) from exc

        logger.info("Registered account %s (username=%s)", account_id, username)
        return account_id

    async def _registration_conflict(self, email: str) -> ConflictError:
        # Lost an insert race: report whichever unique field the winner took.
        if await asyncio.to_thread(self.store.find_account_by_email, email) is not None:
            return ConflictError("Email already in use", field="email")
        return ConflictError("Username already in use", field="username")

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    async def login(self, username: str, password: str) -> LoginResult:
        validate_login(username, password)

        account = await asyncio.to_thread(self.store.find_account_by_username, username)
        if account is None:
            await asyncio.to_thread(self.hasher.verify, password, self.hasher.dummy_hash)  # [C1]
            logger.info("Login failed: unknown username")
            raise AuthError()

        if account.password_hash is None:
            logger.info("Password login attempted on federated account %s", account.id)
            raise AuthError("This account uses Google sign-in. Please log in with Google.")

        if not await asyncio.to_thread(self.hasher.verify, password, account.password_hash):
            logger.info("Login failed: wrong password for account %s", account.id)
            raise AuthError()

        if account.second_factor_enabled:
            code = await self.codes.issue(account.id)
            await self.mailer.send_second_factor_code(account.email, code, account.username)
            logger.info("Second factor required for account %s", account.id)
            return LoginResult(state=LoginState.SECOND_FACTOR_PENDING, account_id=account.id)

        tokens = await self._issue_session(account)
        logger.info("Login succeeded for account %s", account.id)
        return LoginResult(state=LoginState.AUTHENTICATED, account_id=account.id, account=account, tokens=tokens)

    async def verify_second_factor(self, account_id: str, code: str) -> LoginResult:
        validate_code(code)

        account = await asyncio.to_thread(self.store.find_account_by_id, account_id)
        if account is None:
            raise AuthError("Account not found")
        if not account.second_factor_enabled:
            raise AuthError("Second factor is not enabled for this account")

        try:
            verified = await self.codes.verify(account.id, code)
        except NoValidCodeError as exc:
            raise AuthError(exc.message) from exc
        if not verified:
            raise AuthError("Invalid verification code")

        tokens = await self._issue_session(account)
        logger.info("Second factor verified for account %s", account.id)
        return LoginResult(state=LoginState.AUTHENTICATED, account_id=account.id, account=account, tokens=tokens)

    async def federated_login(self, provider_token: str) -> LoginResult:
        """Sign in with a provider access token. No second factor applies.

        ProviderError from the profile fetch and ConflictError from linking
        propagate as they are.
        """
        profile = await self.provider.fetch_profile(provider_token)
        account = await self.linker.resolve(profile)
        tokens = await self._issue_session(account)
        logger.info("Federated login succeeded for account %s", account.id)
        return LoginResult(state=LoginState.AUTHENTICATED, account_id=account.id, account=account, tokens=tokens)

    async def _issue_session(self, account: Account) -> SessionTokens:
        access_token = self.signer.issue_for(account.id, account.email)
        refresh_token = await self.refresh_tokens.issue(account.id)
        return SessionTokens(access_token=access_token, refresh_token=refresh_token)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def refresh(self, refresh_token: str) -> SessionTokens:
        try:
            return await self.refresh_tokens.rotate(refresh_token)
        except InvalidTokenError as exc:
            raise SessionExpiredError() from exc

    async def logout(self, account_id: str) -> int:
        """Revoke every refresh token of the account.

        Access tokens already issued stay valid until they expire.
        """
        return await self.refresh_tokens.revoke_all(account_id)

    async def authenticate(self, access_token: str) -> Account:
        """Gate for protected operations. Returns the live account.

        Raises ExpiredError / InvalidSignatureError from the signer, or
        AuthError when the account behind a valid token no longer exists.
        """
        claims = self.signer.verify(access_token)
        account = await asyncio.to_thread(self.store.find_account_by_id, claims.account_id)
        if account is None:
            raise AuthError("Account no longer exists")
        self._schedule_last_seen(account.id)
        return account

    def _schedule_last_seen(self, account_id: str) -> None:
        task = asyncio.create_task(self._touch_last_seen(account_id))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _touch_last_seen(self, account_id: str) -> None:
        try:
            await asyncio.to_thread(self.store.touch_last_seen, account_id, self.last_seen_interval_seconds)
        except Exception:
            logger.exception("Failed to update last_seen for account %s", account_id)

    # ------------------------------------------------------------------
    # Account management
    # ------------------------------------------------------------------

    async def get_account(self, account_id: str) -> Account:
        account = await asyncio.to_thread(self.store.find_account_by_id, account_id)
        if account is None:
            raise AuthError("Account not found")
        return account

    async def set_second_factor(self, account_id: str, enabled: bool) -> Account:
        """Turn the second factor on or off. Turning it off discards outstanding codes."""
        account = await self.get_account(account_id)
        await asyncio.to_thread(self.store.update_account, account.id, second_factor_enabled=enabled)
        if not enabled:
            await asyncio.to_thread(self.store.delete_codes_for_account, account.id)
        account.second_factor_enabled = enabled
        logger.info("Second factor %s for account %s", "enabled" if enabled else "disabled", account.id)
        return account

    async def aclose(self) -> None:
        """Wait for in-flight last_seen writes."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
