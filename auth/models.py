"""
auth/models.py -- Domain dataclasses for identity and session entities.

Pattern: Data class (pure data container, zero logic). The store maps rows to
these records; the service and routes do the work.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


@dataclass
class Account:
    """An identity record.

    password_hash is None for accounts created through federation; such
    accounts always carry external_subject_id and reject password login.
    external_subject_id is the identity provider's stable user ID and is unique
    when present.
    """

    email: str
    username: str
    id: str | None = None
    password_hash: str | None = None  # None = federated-only account
    external_subject_id: str | None = None
    second_factor_enabled: bool = False
    avatar_url: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    last_seen: str | None = None


@dataclass
class OneTimeCode:
    """A hashed second-factor code. The plaintext is never persisted."""

    account_id: str
    code_hash: str
    expires_at: str
    id: int | None = None
    consumed: bool = False
    created_at: str | None = None


@dataclass
class RefreshToken:
    """A persisted, single-use session-continuation credential."""

    token: str
    account_id: str
    expires_at: str
    id: int | None = None
    created_at: str | None = None


@dataclass(frozen=True)
class AccessClaims:
    """Verified contents of an access token."""

    account_id: str
    email: str | None
    issued_at: int
    expires_at: int


@dataclass(frozen=True)
class SessionTokens:
    """An access/refresh pair handed to the transport layer."""

    access_token: str
    refresh_token: str


@dataclass(frozen=True)
class ExternalProfile:
    """Identity asserted by the external provider after token exchange."""

    subject_id: str
    email: str
    display_name: str | None = None
    avatar_url: str | None = None


class LoginState(str, Enum):
    CREDENTIALS_PENDING = "credentials_pending"
    SECOND_FACTOR_PENDING = "second_factor_pending"
    AUTHENTICATED = "authenticated"


@dataclass(frozen=True)
class LoginResult:
    """Outcome of a successful gate in the login state machine.

    state is SECOND_FACTOR_PENDING after a correct password on an account with
    the second factor enabled: tokens is None and account_id is the handle the
    caller passes back to verify_second_factor(). Otherwise state is
    AUTHENTICATED and tokens is set.
    """

    state: LoginState
    account_id: str
    account: Account | None = None
    tokens: SessionTokens | None = None

    @property
    def requires_second_factor(self) -> bool:
        return self.state is LoginState.SECOND_FACTOR_PENDING
