"""Unit tests for auth/validation.py -- input format rules.

Covers:
- a well-formed registration passes
- every broken rule is reported, joined with " | "
- email, username and password boundary cases
- login presence checks and 6-digit code format
"""

import pytest

from auth.errors import ValidationError
from auth.validation import (
    email_errors,
    password_errors,
    username_errors,
    validate_code,
    validate_login,
    validate_registration,
)


def test_valid_registration_passes():
    validate_registration("a@example.com", "alice", "Sup3r$ecret")


def test_all_violations_reported_together():
    with pytest.raises(ValidationError) as excinfo:
        validate_registration("not-an-email", "a!", "short")
    err = excinfo.value
    assert "Invalid email format" in err.meta["errors"]
    assert "Username too short" in err.meta["errors"]
    assert "Password must be at least 8 characters long" in err.meta["errors"]
    assert err.message == " | ".join(err.meta["errors"])


@pytest.mark.parametrize(
    "email, expected",
    [
        ("", ["Email is required"]),
        ("a@b", ["Invalid email format"]),
        ("a b@example.com", ["Invalid email format"]),
        ("a@example.com\n", ["Invalid email format"]),
        ("a" * 250 + "@example.com", ["Email too long"]),
        ("a@example.com", []),
    ],
)
def test_email_rules(email, expected):
    assert email_errors(email) == expected


@pytest.mark.parametrize(
    "username, expected",
    [
        ("", ["Username is required"]),
        ("ab", ["Username too short"]),
        ("abcdefghijk", ["Username too long"]),
        ("bad name", ["Username can only contain letters, numbers, underscores and hyphens"]),
        ("alice1\n", ["Username can only contain letters, numbers, underscores and hyphens"]),
        ("abc", []),
        ("a_b-c12345", []),
    ],
)
def test_username_rules(username, expected):
    assert username_errors(username) == expected


def test_password_missing_classes():
    errors = password_errors("alllowercase")
    assert "Password must contain at least one uppercase letter" in errors
    assert "Password must contain at least one digit" in errors
    assert "Password must contain at least one special character" in errors
    assert "Password must contain at least one lowercase letter" not in errors


def test_password_over_bcrypt_limit():
    errors = password_errors("Aa1!" + "x" * 80)
    assert errors == ["Password must be at most 72 bytes long"]


def test_password_strong():
    assert password_errors("Sup3r$ecret") == []


def test_login_presence_only():
    validate_login("x", "y")
    with pytest.raises(ValidationError) as excinfo:
        validate_login("", "")
    assert excinfo.value.meta["errors"] == ["Username is required", "Password is required"]


@pytest.mark.parametrize(
    "code", ["12345", "1234567", "abcdef", "123456\n", "\u0661\u0662\u0663\u0664\u0665\u0666", "", None]
)
def test_code_format_rejected(code):
    with pytest.raises(ValidationError):
        validate_code(code)


def test_code_format_accepted():
    validate_code("012345")
