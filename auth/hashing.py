"""
auth/hashing.py -- One-way secret hashing with bcrypt.

Using bcrypt directly rather than a passlib wrapper: passlib's wrap-bug
detection feeds bcrypt a password longer than 72 bytes, which bcrypt 4.x+
rejects. Direct usage has no compatibility shim.

bcrypt is the right primitive for low-entropy secrets (passwords, 6-digit
codes): the cost factor makes offline brute force expensive, and checkpw()
compares digests in constant time.

The raw secret is never logged, stored, or returned.
"""

from __future__ import annotations

import bcrypt

_DEFAULT_ROUNDS = 12


class SecretHasher:
    """Salted, adaptive one-way hashing.

    rounds is bcrypt's log2 work factor. 12 costs a few hundred milliseconds
    on commodity hardware; tests use 4 (the bcrypt minimum).
    """

    def __init__(self, rounds: int = _DEFAULT_ROUNDS) -> None:
        self.rounds = rounds
        self._dummy_hash: str | None = None

    def hash(self, secret: str) -> str:
        """Return a bcrypt digest of secret.

        Failures (e.g. a secret over bcrypt's 72-byte input limit) propagate;
        the validation layer keeps such input away from here.
        """
        return bcrypt.hashpw(secret.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, secret: str, digest: str) -> bool:
        """Return True if secret matches digest. Never raises on a mismatch or a malformed digest."""
        try:
            return bcrypt.checkpw(secret.encode("utf-8"), digest.encode("utf-8"))
        except ValueError:
            return False

    @property
    def dummy_hash(self) -> str:
        """A digest at this hasher's cost, for timing equalization [C1].

        Verifying against it when a username does not exist makes unknown-user
        and wrong-password responses take the same time.
        """
        if self._dummy_hash is None:
            self._dummy_hash = self.hash("arena_timing_dummy")
        return self._dummy_hash
