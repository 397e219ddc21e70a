"""Unit tests for auth/oauth.py -- GoogleProfileClient.

The provider is replaced with httpx.MockTransport, so no network is used.

Covers:
- a good userinfo response maps to ExternalProfile
- the provider token is sent as a Bearer header
- non-2xx, non-JSON, missing sub/email, unverified email and transport errors
  all raise ProviderError
"""

import asyncio

import httpx
import pytest

from auth.errors import ProviderError
from auth.oauth import GoogleProfileClient

USERINFO = "https://provider.test/userinfo"


def _client(handler) -> GoogleProfileClient:
    return GoogleProfileClient(USERINFO, timeout=2.0, transport=httpx.MockTransport(handler))


def test_fetch_profile_maps_fields():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers.get("Authorization")
        return httpx.Response(
            200,
            json={
                "sub": "1234567890",
                "email": "alice@example.com",
                "email_verified": True,
                "name": "Alice Smith",
                "picture": "https://img.test/a.png",
            },
        )

    profile = asyncio.run(_client(handler).fetch_profile("provider-token"))
    assert seen["auth"] == "Bearer provider-token"
    assert profile.subject_id == "1234567890"
    assert profile.email == "alice@example.com"
    assert profile.display_name == "Alice Smith"
    assert profile.avatar_url == "https://img.test/a.png"


def test_missing_optional_fields():
    def handler(request):
        return httpx.Response(200, json={"sub": "1", "email": "bo@example.com"})

    profile = asyncio.run(_client(handler).fetch_profile("t"))
    assert profile.display_name is None
    assert profile.avatar_url is None


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(401, json={"error": "invalid_token"}),
        httpx.Response(500, text="boom"),
        httpx.Response(200, text="<html>not json</html>"),
        httpx.Response(200, json=["not", "a", "dict"]),
        httpx.Response(200, json={"email": "a@example.com"}),
        httpx.Response(200, json={"sub": "1"}),
        httpx.Response(200, json={"sub": "1", "email": "a@example.com", "email_verified": False}),
    ],
)
def test_bad_responses_raise_provider_error(response):
    def handler(request):
        return response

    with pytest.raises(ProviderError):
        asyncio.run(_client(handler).fetch_profile("t"))


def test_transport_error_raises_provider_error():
    def handler(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    with pytest.raises(ProviderError):
        asyncio.run(_client(handler).fetch_profile("t"))


def test_empty_token_rejected_without_request():
    def handler(request):
        raise AssertionError("no request expected")

    with pytest.raises(ProviderError):
        asyncio.run(_client(handler).fetch_profile(""))
