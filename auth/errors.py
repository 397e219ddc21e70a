"""
auth/errors.py -- Closed error taxonomy for the identity service.

Every expected failure is an IdentityError tagged with an ErrorKind. The kind
is the contract: the transport layer maps kinds to status codes through a
single table, and a test asserts that table covers every member of ErrorKind.
The subclasses exist so callers can catch one kind precisely; each pins its
kind and carries nothing else.

Anything that is not an IdentityError (store unavailable, hashing primitive
failure) is unexpected and must propagate unchanged.

Layer rule: no imports from api/, core/, or other auth/ modules.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    CONFLICT = "conflict"
    AUTH = "auth"
    INVALID_TOKEN = "invalid_token"
    SESSION_EXPIRED = "session_expired"
    TOKEN_EXPIRED = "token_expired"
    INVALID_SIGNATURE = "invalid_signature"
    NO_VALID_CODE = "no_valid_code"
    PROVIDER = "provider"
    DELIVERY = "delivery"


class IdentityError(Exception):
    """Base for every expected, typed failure: kind + message + optional metadata."""

    kind: ErrorKind = ErrorKind.AUTH
    default_message = "Authentication failed"

    def __init__(self, message: str | None = None, **meta: Any) -> None:
        self.message = message or self.default_message
        self.meta: dict[str, Any] = meta
        super().__init__(self.message)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind.value!r}, message={self.message!r})"


class ValidationError(IdentityError):
    """Malformed input, rejected before any store access."""

    kind = ErrorKind.VALIDATION
    default_message = "Invalid input"


class ConflictError(IdentityError):
    kind = ErrorKind.CONFLICT
    default_message = "Resource already exists"


class AuthError(IdentityError):
    """Bad credentials, bad or missing second-factor code, unknown account.

    Unknown username and wrong password share this class and one message so
    login responses never reveal whether a username exists.
    """

    kind = ErrorKind.AUTH
    default_message = "Invalid username or password"


class InvalidTokenError(IdentityError):
    """Refresh token absent, expired, already rotated or revoked (indistinguishable)."""

    kind = ErrorKind.INVALID_TOKEN
    default_message = "Invalid refresh token"


class SessionExpiredError(IdentityError):
    kind = ErrorKind.SESSION_EXPIRED
    default_message = "Session expired, please log in again"


class ExpiredError(IdentityError):
    """Access token signature is valid but its exp claim has passed."""

    kind = ErrorKind.TOKEN_EXPIRED
    default_message = "Access token expired"


class InvalidSignatureError(IdentityError):
    """Access token is malformed, forged, or missing mandatory claims."""

    kind = ErrorKind.INVALID_SIGNATURE
    default_message = "Invalid access token"


class NoValidCodeError(IdentityError):
    kind = ErrorKind.NO_VALID_CODE
    default_message = "No valid verification code found or code expired"


class ProviderError(IdentityError):
    """External identity provider failed or returned an unusable profile."""

    kind = ErrorKind.PROVIDER
    default_message = "Identity provider request failed"


class DeliveryError(IdentityError):
    """A second-factor code could not be handed to the mail transport."""

    kind = ErrorKind.DELIVERY
    default_message = "Could not deliver verification code"
