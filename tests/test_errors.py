"""Unit tests for auth/errors.py and the HTTP status table in api/main.py.

Covers:
- every ErrorKind has exactly one HTTP status
- each subclass pins its kind and default message
- metadata travels on the exception
"""

import pytest

from api.main import STATUS_BY_KIND
from auth.errors import (
    AuthError,
    ConflictError,
    DeliveryError,
    ErrorKind,
    ExpiredError,
    IdentityError,
    InvalidSignatureError,
    InvalidTokenError,
    NoValidCodeError,
    ProviderError,
    SessionExpiredError,
    ValidationError,
)


def test_status_table_covers_every_kind():
    assert set(STATUS_BY_KIND) == set(ErrorKind)


@pytest.mark.parametrize(
    "cls, kind",
    [
        (ValidationError, ErrorKind.VALIDATION),
        (ConflictError, ErrorKind.CONFLICT),
        (AuthError, ErrorKind.AUTH),
        (InvalidTokenError, ErrorKind.INVALID_TOKEN),
        (SessionExpiredError, ErrorKind.SESSION_EXPIRED),
        (ExpiredError, ErrorKind.TOKEN_EXPIRED),
        (InvalidSignatureError, ErrorKind.INVALID_SIGNATURE),
        (NoValidCodeError, ErrorKind.NO_VALID_CODE),
        (ProviderError, ErrorKind.PROVIDER),
        (DeliveryError, ErrorKind.DELIVERY),
    ],
)
def test_subclass_pins_kind(cls, kind):
    err = cls()
    assert isinstance(err, IdentityError)
    assert err.kind is kind
    assert err.message
    assert str(err) == err.message


def test_custom_message_and_meta():
    err = ConflictError("Email already in use", field="email")
    assert err.message == "Email already in use"
    assert err.meta == {"field": "email"}
    assert "conflict" in repr(err)


def test_default_messages():
    assert AuthError().message == "Invalid username or password"
    assert InvalidTokenError().message == "Invalid refresh token"
    assert NoValidCodeError().message == "No valid verification code found or code expired"
