"""
tests/conftest.py -- Shared test fixtures for the identity service.

This module provides:
  - store:      CredentialStore on a fresh file-backed SQLite DB per test
  - mailer:     FakeMailer that records dispatched codes instead of sending them
  - provider:   FakeProvider that maps provider tokens to canned profiles
  - service:    AuthService wired to the above with bcrypt cost 4
  - api_client: TestClient with a patched lifespan wiring the same pieces

Design: file-backed SQLite databases under tmp_path (not shared-cache
:memory:) because the service runs store calls in worker threads and the
concurrency tests issue overlapping writes. WAL plus SQLite's busy timeout
serialize those writers; shared-cache memory databases raise "table is locked"
instead of waiting.

The DEBUG env var must be set before any auth/core import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.errors import DeliveryError, ProviderError
from auth.hashing import SecretHasher
from auth.models import ExternalProfile
from auth.service import AuthService
from auth.store import CredentialStore
from auth.tokens import TokenSigner
from core.config import get_settings

TEST_SECRET = "test-secret-key-that-is-at-least-32-characters"
STRONG_PASSWORD = "Sup3r$ecret"


# ---------------------------------------------------------------------------
# Collaborator fakes
# ---------------------------------------------------------------------------


class FakeMailer:
    """Records every dispatched code. Set fail=True to simulate an SMTP outage."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []
        self.fail = False

    async def send_second_factor_code(self, email: str, code: str, username: str | None = None) -> None:
        if self.fail:
            raise DeliveryError("Failed to send verification code")
        self.sent.append((email, code))

    def last_code(self, email: str) -> str:
        codes = [code for to, code in self.sent if to == email]
        assert codes, f"no code was sent to {email}"
        return codes[-1]


class FakeProvider:
    """Resolves provider tokens from a dict. Unknown tokens raise ProviderError."""

    def __init__(self) -> None:
        self.profiles: dict[str, ExternalProfile] = {}
        self.calls = 0

    async def fetch_profile(self, access_token: str) -> ExternalProfile:
        self.calls += 1
        try:
            return self.profiles[access_token]
        except KeyError as exc:
            raise ProviderError("Failed to fetch Google profile") from exc


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


def make_store(path) -> CredentialStore:
    return CredentialStore(f"sqlite:///{path / 'identity.db'}")


def make_service(store: CredentialStore, mailer: FakeMailer, provider: FakeProvider, **kwargs) -> AuthService:
    kwargs.setdefault("last_seen_interval_seconds", 0)
    return AuthService(
        store,
        TokenSigner(TEST_SECRET),
        mailer,
        provider,
        password_hasher=SecretHasher(rounds=4),
        code_hasher=SecretHasher(rounds=4),
        **kwargs,
    )


@pytest.fixture
def store(tmp_path) -> Generator[CredentialStore, None, None]:
    s = make_store(tmp_path)
    yield s
    s.close()


@pytest.fixture
def mailer() -> FakeMailer:
    return FakeMailer()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def service(store: CredentialStore, mailer: FakeMailer, provider: FakeProvider) -> AuthService:
    return make_service(store, mailer, provider)


def _patch_lifespan(store: CredentialStore, service: AuthService):
    """Return an async context manager that replaces the real lifespan.

    Wires the test store and service into app.state so routes hit an isolated
    database and never send mail or call a real provider.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.settings = get_settings()
        app.state.store = store
        app.state.auth_service = service
        yield
        await service.aclose()

    return test_lifespan


@pytest.fixture
def api_client(tmp_path) -> Generator[tuple[TestClient, FakeMailer, FakeProvider], None, None]:
    """Yield (client, mailer, provider) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan, so tests
    exercise real routing, dependencies and exception handlers.
    """
    test_store = make_store(tmp_path)
    test_mailer = FakeMailer()
    test_provider = FakeProvider()
    test_service = make_service(test_store, test_mailer, test_provider)

    app.router.lifespan_context = _patch_lifespan(test_store, test_service)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, test_mailer, test_provider

    test_store.close()
