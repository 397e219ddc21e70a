"""
auth/validation.py -- Input format gate, run before any store access.

Every rule is checked and all violations are reported together, so a client
can fix a form in one round trip. The joined message uses " | " as separator;
the individual messages travel in ValidationError.meta["errors"].
"""

from __future__ import annotations

import re

from auth.errors import ValidationError

EMAIL_MAX_LENGTH = 255
USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 10
PASSWORD_MIN_LENGTH = 8
# bcrypt only reads the first 72 bytes of its input; longer secrets are refused
# rather than silently truncated.
PASSWORD_MAX_BYTES = 72
PASSWORD_SYMBOLS = '!@#$%^&*(),.?":{}|<>'

_EMAIL_RE = re.compile(r"[^\s@]+@[^\s@]+\.[^\s@]+")
_USERNAME_RE = re.compile(r"[A-Za-z0-9_-]+")
_CODE_RE = re.compile(r"[0-9]{6}")


def email_errors(email: object) -> list[str]:
    if not email or not isinstance(email, str):
        return ["Email is required"]
    if not _EMAIL_RE.fullmatch(email):
        return ["Invalid email format"]
    if len(email) > EMAIL_MAX_LENGTH:
        return ["Email too long"]
    return []


def username_errors(username: object) -> list[str]:
    if not username or not isinstance(username, str):
        return ["Username is required"]
    if len(username) < USERNAME_MIN_LENGTH:
        return ["Username too short"]
    if len(username) > USERNAME_MAX_LENGTH:
        return ["Username too long"]
    if not _USERNAME_RE.fullmatch(username):
        return ["Username can only contain letters, numbers, underscores and hyphens"]
    return []


def password_errors(password: object) -> list[str]:
    if not password or not isinstance(password, str):
        return ["Password is required"]
    errors: list[str] = []
    if len(password) < PASSWORD_MIN_LENGTH:
        errors.append(f"Password must be at least {PASSWORD_MIN_LENGTH} characters long")
    if len(password.encode("utf-8")) > PASSWORD_MAX_BYTES:
        errors.append(f"Password must be at most {PASSWORD_MAX_BYTES} bytes long")
    if not re.search(r"[A-Z]", password):
        errors.append("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", password):
        errors.append("Password must contain at least one lowercase letter")
    if not re.search(r"\d", password):
        errors.append("Password must contain at least one digit")
    if not any(ch in PASSWORD_SYMBOLS for ch in password):
        errors.append("Password must contain at least one special character")
    return errors


def _raise_if(errors: list[str]) -> None:
    if errors:
        raise ValidationError(" | ".join(errors), errors=errors)


def validate_registration(email: object, username: object, password: object) -> None:
    """Raise ValidationError listing every broken registration rule."""
    _raise_if(email_errors(email) + username_errors(username) + password_errors(password))


def validate_login(username: object, password: object) -> None:
    """Presence checks only. Strength rules apply at registration time."""
    errors: list[str] = []
    if not username or not isinstance(username, str):
        errors.append("Username is required")
    if not password or not isinstance(password, str):
        errors.append("Password is required")
    _raise_if(errors)


def validate_code(code: object) -> None:
    if not isinstance(code, str) or not _CODE_RE.fullmatch(code):
        raise ValidationError("Verification code must be 6 digits", errors=["Verification code must be 6 digits"])
