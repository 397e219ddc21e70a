"""
auth/tokens.py -- Access-token signing and verification, refresh-token material.

Security design decisions:
  JWT: python-jose with HS256, keyed by SECRET_KEY. Access tokens carry the
       account id as "sub", the email as an informational claim, iat, exp, and
       type="access". Verification is purely cryptographic plus expiry -- no
       store lookup. The authentication gate adds the account-exists check.

  Refresh tokens are not JWTs: they are opaque random strings whose validity
       lives in the store. secrets.token_hex(64) gives 512 bits of entropy, so
       collisions are negligible; the store's UNIQUE constraint is still the
       authoritative guard.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone

from jose import ExpiredSignatureError, JWTError, jwt

from auth.errors import ExpiredError, InvalidSignatureError
from auth.models import AccessClaims

_ALGORITHM = "HS256"
_TOKEN_TYPE = "access"

REFRESH_TOKEN_BYTES = 64


class TokenSigner:
    """Issues and verifies short-lived, self-contained access tokens."""

    def __init__(self, secret_key: str, default_ttl: timedelta = timedelta(days=1), algorithm: str = _ALGORITHM) -> None:
        if len(secret_key) < 32:
            raise ValueError("Signing key must be at least 32 characters.")
        self._secret_key = secret_key
        self._algorithm = algorithm
        self.default_ttl = default_ttl

    def issue(self, claims: dict, ttl: timedelta | None = None) -> str:
        """Encode claims into a signed JWT that expires after ttl.

        claims must contain "sub" (the account id). Reserved claims iat, exp
        and type are set here and override caller values.
        """
        if not claims.get("sub"):
            raise ValueError("Access token claims require a 'sub' (account id).")
        now = datetime.now(timezone.utc)
        payload = dict(claims)
        payload.update(
            {
                "iat": int(now.timestamp()),
                "exp": int((now + (ttl or self.default_ttl)).timestamp()),
                "type": _TOKEN_TYPE,
            }
        )
        return jwt.encode(payload, self._secret_key, algorithm=self._algorithm)

    def issue_for(self, account_id: str, email: str | None, ttl: timedelta | None = None) -> str:
        return self.issue({"sub": account_id, "email": email}, ttl)

    def verify(self, token: str) -> AccessClaims:
        """Decode and verify token.

        Raises:
            ExpiredError:          signature valid, exp in the past.
            InvalidSignatureError: anything else -- bad signature, malformed
                                   token, wrong type, missing sub.
        """
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[self._algorithm])
        except ExpiredSignatureError as exc:
            raise ExpiredError() from exc
        except JWTError as exc:
            raise InvalidSignatureError() from exc

        if payload.get("type") != _TOKEN_TYPE or not payload.get("sub"):
            raise InvalidSignatureError()
        return AccessClaims(
            account_id=str(payload["sub"]),
            email=payload.get("email"),
            issued_at=int(payload.get("iat", 0)),
            expires_at=int(payload.get("exp", 0)),
        )


def generate_refresh_token() -> str:
    """Return a fresh opaque refresh token: 64 CSPRNG bytes as 128 hex chars."""
    return secrets.token_hex(REFRESH_TOKEN_BYTES)
