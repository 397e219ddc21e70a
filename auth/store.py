"""
auth/store.py -- SQLAlchemy Core persistence layer for identity entities.

Pattern: Repository + Data Mapper. CredentialStore is the repository;
_row_to_account / _row_to_code / _row_to_refresh_token are the mappers.
Service code never touches SQL directly, and the store holds no auth logic
beyond query shaping.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Uniqueness of email, username, external_subject_id and refresh token strings
  is enforced by UNIQUE constraints. Inserts raise
  sqlalchemy.exc.IntegrityError on violation; callers translate that into a
  conflict. SQLite treats NULLs as distinct in UNIQUE constraints, which is
  exactly the rule for external_subject_id (unique when present).

Atomic claims:
  mark_code_consumed() and delete_refresh_token() are conditional writes that
  report whether this call changed the row. Under concurrency exactly one
  caller sees True; that is the single-winner guarantee for code consumption
  and refresh-token rotation.

Timestamps are ISO 8601 UTC strings with fixed microsecond precision, so
string comparison in SQL matches chronological order.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, select, text
from sqlalchemy.engine import Engine

from auth.models import Account, OneTimeCode, RefreshToken

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("username", String(64), nullable=False, unique=True),
    Column("password_hash", Text),  # NULL for federated-only accounts
    Column("external_subject_id", String(255), unique=True),
    Column("second_factor_enabled", Integer, nullable=False, server_default="0"),
    Column("avatar_url", Text),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("last_seen", String(32)),
)

_codes = Table(
    "one_time_codes",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("account_id", String(36), nullable=False, index=True),
    Column("code_hash", Text, nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("consumed", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
)

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("token", String(128), nullable=False, unique=True),
    Column("account_id", String(36), nullable=False, index=True),
    Column("expires_at", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
)

# Columns update_account() may touch. Anything else is a programming error.
_UPDATABLE_ACCOUNT_FIELDS = frozenset(
    {"email", "username", "password_hash", "external_subject_id", "second_factor_enabled", "avatar_url"}
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers never block behind a writer.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def to_iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def now_iso() -> str:
    return to_iso(datetime.now(timezone.utc))


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CredentialStore:
    """Keyed CRUD for accounts, one-time codes and refresh tokens.

    Usage:
        store = CredentialStore("sqlite:///identity.db")
        account_id = store.create_account(Account(email="a@x.com", username="alice1"))
        account = store.find_account_by_username("alice1")
        store.close()

    Safe to share between threads: every method checks out its own
    connection from the engine pool.
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def find_account_by_id(self, account_id: str) -> Account | None:
        return self._find_account(_accounts.c.id == account_id)

    def find_account_by_email(self, email: str) -> Account | None:
        """Exact (case-sensitive) match."""
        return self._find_account(_accounts.c.email == email)

    def find_account_by_username(self, username: str) -> Account | None:
        """Exact (case-sensitive) match."""
        return self._find_account(_accounts.c.username == username)

    def find_account_by_external_subject(self, subject_id: str) -> Account | None:
        return self._find_account(_accounts.c.external_subject_id == subject_id)

    def _find_account(self, clause) -> Account | None:
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(clause)).fetchone()
        return _row_to_account(row) if row is not None else None

    def account_exists(self, account_id: str) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(select(_accounts.c.id).where(_accounts.c.id == account_id)).fetchone()
        return row is not None

    def create_account(self, account: Account) -> str:
        """Insert a new account and return its id.

        account.id is used when set; otherwise a UUID4 string is assigned.
        Raises sqlalchemy.exc.IntegrityError if email, username or
        external_subject_id is already taken.
        """
        account_id = account.id or str(uuid.uuid4())
        stamp = now_iso()
        with self.engine.connect() as conn:
            conn.execute(
                _accounts.insert().values(
                    id=account_id,
                    email=account.email,
                    username=account.username,
                    password_hash=account.password_hash,
                    external_subject_id=account.external_subject_id,
                    second_factor_enabled=1 if account.second_factor_enabled else 0,
                    avatar_url=account.avatar_url,
                    created_at=stamp,
                    updated_at=stamp,
                )
            )
            conn.commit()
        return account_id

    def update_account(self, account_id: str, **fields) -> bool:
        """Update mutable fields on an existing account.

        Accepted fields: email, username, password_hash, external_subject_id,
        second_factor_enabled, avatar_url. Unknown keys raise ValueError.
        updated_at is stamped automatically.

        Returns True if a row was updated, False if account_id was not found.
        May raise IntegrityError when a unique column would collide.
        """
        unknown = set(fields) - _UPDATABLE_ACCOUNT_FIELDS
        if unknown:
            raise ValueError(f"Unknown account fields: {unknown!r}")
        if "second_factor_enabled" in fields:
            fields["second_factor_enabled"] = 1 if fields["second_factor_enabled"] else 0
        fields["updated_at"] = now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(_accounts.update().where(_accounts.c.id == account_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def touch_last_seen(self, account_id: str, min_interval_seconds: int = 0) -> bool:
        """Stamp last_seen unless it was stamped less than min_interval_seconds ago.

        The threshold is part of the WHERE clause, so a burst of requests
        produces at most one write per interval. Returns True if a row changed.
        """
        now = datetime.now(timezone.utc)
        threshold = to_iso(now - timedelta(seconds=min_interval_seconds))
        with self.engine.connect() as conn:
            result = conn.execute(
                _accounts.update()
                .where(
                    (_accounts.c.id == account_id)
                    & (_accounts.c.last_seen.is_(None) | (_accounts.c.last_seen <= threshold))
                )
                .values(last_seen=to_iso(now))
            )
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # One-time codes
    # ------------------------------------------------------------------

    def create_one_time_code(self, account_id: str, code_hash: str, expires_at: str) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _codes.insert().values(
                    account_id=account_id,
                    code_hash=code_hash,
                    expires_at=expires_at,
                    consumed=0,
                    created_at=now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def find_latest_unconsumed_code(self, account_id: str, now: str) -> OneTimeCode | None:
        """Return the most recently issued unconsumed code that expires after now."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _codes.select()
                .where((_codes.c.account_id == account_id) & (_codes.c.consumed == 0) & (_codes.c.expires_at > now))
                .order_by(_codes.c.id.desc())
                .limit(1)
            ).fetchone()
        return _row_to_code(row) if row is not None else None

    def mark_code_consumed(self, code_id: int) -> bool:
        """Flip consumed 0 -> 1. False means the code was already consumed."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _codes.update().where((_codes.c.id == code_id) & (_codes.c.consumed == 0)).values(consumed=1)
            )
            conn.commit()
        return result.rowcount > 0

    def delete_expired_codes(self, now: str, account_id: str | None = None) -> int:
        """Delete expired, unconsumed codes -- for one account, or all when account_id is None."""
        clause = (_codes.c.expires_at <= now) & (_codes.c.consumed == 0)
        if account_id is not None:
            clause = clause & (_codes.c.account_id == account_id)
        with self.engine.connect() as conn:
            result = conn.execute(_codes.delete().where(clause))
            conn.commit()
        return result.rowcount

    def invalidate_unconsumed_codes(self, account_id: str) -> int:
        """Mark every outstanding code of the account consumed. Returns the count."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _codes.update().where((_codes.c.account_id == account_id) & (_codes.c.consumed == 0)).values(consumed=1)
            )
            conn.commit()
        return result.rowcount

    def delete_codes_for_account(self, account_id: str) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(_codes.delete().where(_codes.c.account_id == account_id))
            conn.commit()
        return result.rowcount

    # ------------------------------------------------------------------
    # Refresh tokens
    # ------------------------------------------------------------------

    def create_refresh_token(self, token: str, account_id: str, expires_at: str) -> int:
        """Insert a refresh token. Raises IntegrityError on a duplicate token string."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _refresh_tokens.insert().values(
                    token=token,
                    account_id=account_id,
                    expires_at=expires_at,
                    created_at=now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def find_refresh_token(self, token: str) -> RefreshToken | None:
        with self.engine.connect() as conn:
            row = conn.execute(_refresh_tokens.select().where(_refresh_tokens.c.token == token)).fetchone()
        return _row_to_refresh_token(row) if row is not None else None

    def delete_refresh_token(self, token: str) -> bool:
        """Delete one token. False means it was already gone (rotated or revoked)."""
        with self.engine.connect() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.token == token))
            conn.commit()
        return result.rowcount > 0

    def delete_all_refresh_tokens(self, account_id: str) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.account_id == account_id))
            conn.commit()
        return result.rowcount

    def count_refresh_tokens(self, account_id: str) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                text("SELECT COUNT(*) FROM refresh_tokens WHERE account_id = :account_id"),
                {"account_id": account_id},
            ).scalar()
        return result or 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        email=row.email,
        username=row.username,
        password_hash=row.password_hash,
        external_subject_id=row.external_subject_id,
        second_factor_enabled=bool(row.second_factor_enabled),
        avatar_url=row.avatar_url,
        created_at=row.created_at,
        updated_at=row.updated_at,
        last_seen=row.last_seen,
    )


def _row_to_code(row) -> OneTimeCode:
    return OneTimeCode(
        id=row.id,
        account_id=row.account_id,
        code_hash=row.code_hash,
        expires_at=row.expires_at,
        consumed=bool(row.consumed),
        created_at=row.created_at,
    )


def _row_to_refresh_token(row) -> RefreshToken:
    return RefreshToken(
        id=row.id,
        token=row.token,
        account_id=row.account_id,
        expires_at=row.expires_at,
        created_at=row.created_at,
    )
