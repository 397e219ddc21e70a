"""
API request and response models for the identity REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Request models only check shape (field present, right type). Content rules
(email format, password strength, code format) live in auth/validation.py so
that every violation is reported together in the service's own words.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import Account

# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Body for POST /api/v1/auth/register."""

    email: str
    username: str
    password: str


class LoginRequest(BaseModel):
    """Body for POST /api/v1/auth/login."""

    username: str
    password: str


class VerifySecondFactorRequest(BaseModel):
    """Body for POST /api/v1/auth/verify-2fa.

    account_id is the pending handle returned by a login that required a
    second factor.
    """

    account_id: str = Field(min_length=1)
    code: str


class RefreshRequest(BaseModel):
    """Body for POST /api/v1/auth/refresh. Falls back to the refresh_token cookie."""

    refresh_token: Optional[str] = None


class SecondFactorPatch(BaseModel):
    """Body for PATCH /api/v1/auth/2fa."""

    enabled: bool


class FederatedLoginRequest(BaseModel):
    """Body for POST /api/v1/auth/federated/google.

    access_token is the provider-issued OAuth access token, obtained by the
    client after the authorization-code exchange.
    """

    access_token: str = Field(min_length=1)


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class AccountResponse(BaseModel):
    """Public view of an account. Never includes the password hash."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    username: str
    second_factor_enabled: bool
    federated: bool
    avatar_url: Optional[str] = None
    created_at: Optional[str] = None
    last_seen: Optional[str] = None

    @classmethod
    def from_account(cls, account: Account) -> "AccountResponse":
        return cls(
            id=account.id,
            email=account.email,
            username=account.username,
            second_factor_enabled=account.second_factor_enabled,
            federated=account.external_subject_id is not None,
            avatar_url=account.avatar_url,
            created_at=account.created_at,
            last_seen=account.last_seen,
        )


class RegisterResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    account_id: str


class TokenPairResponse(BaseModel):
    """Access + refresh token pair. Also set as httpOnly cookies."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int


class LoginResponse(BaseModel):
    """Response for login, second-factor verification and federated login.

    When requires_second_factor is true only account_id is set; the tokens
    arrive after POST /auth/verify-2fa.
    """

    model_config = ConfigDict(frozen=True)

    requires_second_factor: bool
    account_id: str
    account: Optional[AccountResponse] = None
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    token_type: Optional[str] = None
    expires_in: Optional[int] = None


class LogoutResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str
    revoked_sessions: int


class SessionStatusResponse(BaseModel):
    """Result of GET /auth/session. refreshed is true when new cookies were set."""

    model_config = ConfigDict(frozen=True)

    authenticated: bool
    refreshed: bool = False


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
