"""
api/routes/v1/auth.py -- Authentication and session REST endpoints.

Routes:
  POST  /api/v1/auth/register          -- create a password account; 201
  POST  /api/v1/auth/login             -- password login; tokens or second-factor challenge
  POST  /api/v1/auth/verify-2fa        -- complete a second-factor login
  POST  /api/v1/auth/refresh           -- rotate the refresh token (body or cookie)
  POST  /api/v1/auth/federated/google  -- sign in with a Google access token
  GET   /api/v1/auth/session           -- signed-in check; renews cookies from the refresh cookie
  POST  /api/v1/auth/logout            -- revoke every refresh token (requires auth)
  GET   /api/v1/auth/me                -- current account profile (requires auth)
  PATCH /api/v1/auth/2fa               -- enable/disable the second factor (requires auth)

Every IdentityError raised by AuthService propagates to the exception handler
in api/main.py, which maps its kind to a status code.

Security:
  [C1] AuthService.login() provides timing equalization -- never inline a
       username lookup + password check here.
  [M5] Cache-Control: no-store on every response that carries tokens.
  Tokens are also set as httpOnly cookies (samesite=lax, secure per
  SECURE_COOKIES).
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.models import (
    AccountResponse,
    FederatedLoginRequest,
    LoginRequest,
    LoginResponse,
    LogoutResponse,
    RefreshRequest,
    RegisterRequest,
    RegisterResponse,
    SecondFactorPatch,
    SessionStatusResponse,
    TokenPairResponse,
    VerifySecondFactorRequest,
)
from auth.dependencies import extract_access_token, get_current_account
from auth.errors import IdentityError
from auth.models import Account, LoginResult, SessionTokens
from auth.service import AuthService

# Auth policy:
# - POST  /auth/register, /auth/login, /auth/verify-2fa, /auth/refresh,
#         /auth/federated/google, GET /auth/session: public
# - POST  /auth/logout, GET /auth/me, PATCH /auth/2fa: get_current_account
router = APIRouter()
logger = logging.getLogger("arena.api.auth")


def _service(request: Request) -> AuthService:
    return request.app.state.auth_service


def _set_session_cookies(request: Request, response: JSONResponse, tokens: SessionTokens) -> None:
    settings = request.app.state.settings
    response.set_cookie(
        "access_token",
        value=tokens.access_token,
        httponly=True,
        samesite="lax",
        secure=settings.secure_cookies,
        max_age=settings.access_token_expire_seconds,
    )
    response.set_cookie(
        "refresh_token",
        value=tokens.refresh_token,
        httponly=True,
        samesite="lax",
        secure=settings.secure_cookies,
        max_age=settings.refresh_token_expire_days * 24 * 60 * 60,
    )


def _login_response(request: Request, result: LoginResult) -> JSONResponse:
    if result.tokens is None:
        body = LoginResponse(requires_second_factor=True, account_id=result.account_id)
    else:
        body = LoginResponse(
            requires_second_factor=False,
            account_id=result.account_id,
            account=AccountResponse.from_account(result.account),
            access_token=result.tokens.access_token,
            refresh_token=result.tokens.refresh_token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=request.app.state.settings.access_token_expire_seconds,
        )
    resp = JSONResponse(status_code=200, content=body.model_dump())
    if result.tokens is not None:
        _set_session_cookies(request, resp, result.tokens)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


def _session_response(status: SessionStatusResponse) -> JSONResponse:
    resp = JSONResponse(status_code=200, content=status.model_dump())
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=RegisterResponse, status_code=201)
async def register(request: Request, body: RegisterRequest) -> RegisterResponse:
    """Create a password account. 400 on invalid input, 409 on a taken email or username."""
    account_id = await _service(request).register(body.email, body.username, body.password)
    return RegisterResponse(account_id=account_id)


@router.post("/auth/login", response_model=LoginResponse)
async def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username and password.

    With the second factor off the response carries tokens and sets cookies.
    With it on, a code is mailed and the response only carries account_id.
    """
    result = await _service(request).login(body.username, body.password)
    return _login_response(request, result)


@router.post("/auth/verify-2fa", response_model=LoginResponse)
async def verify_second_factor(request: Request, body: VerifySecondFactorRequest) -> JSONResponse:
    result = await _service(request).verify_second_factor(body.account_id, body.code)
    return _login_response(request, result)


@router.post("/auth/federated/google", response_model=LoginResponse)
async def federated_google(request: Request, body: FederatedLoginRequest) -> JSONResponse:
    """Sign in with a Google OAuth access token. Links or creates the account."""
    result = await _service(request).federated_login(body.access_token)
    return _login_response(request, result)


@router.post("/auth/refresh", response_model=TokenPairResponse)
async def refresh(request: Request, body: RefreshRequest | None = None) -> JSONResponse:
    """Rotate a refresh token. The presented token is single-use.

    The token comes from the body, or from the refresh_token cookie when the
    body omits it.
    """
    token = (body.refresh_token if body else None) or request.cookies.get("refresh_token")
    if not token:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Refresh token required."},
        )

    tokens = await _service(request).refresh(token)
    resp = JSONResponse(
        status_code=200,
        content=TokenPairResponse(
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=request.app.state.settings.access_token_expire_seconds,
        ).model_dump(),
    )
    _set_session_cookies(request, resp, tokens)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.get("/auth/session", response_model=SessionStatusResponse)
async def session_status(request: Request) -> JSONResponse:
    """Report whether the caller is signed in.

    A valid access token answers directly. Otherwise the refresh_token cookie,
    when present, is rotated and both cookies are re-issued. Any failure just
    reports authenticated=false.
    """
    service = _service(request)
    token = extract_access_token(request)
    if token is not None:
        try:
            await service.authenticate(token)
        except IdentityError as exc:
            logger.debug("Session check: access token rejected (%s)", exc.kind.value)
        else:
            return _session_response(SessionStatusResponse(authenticated=True))

    refresh_token = request.cookies.get("refresh_token")
    if not refresh_token:
        return _session_response(SessionStatusResponse(authenticated=False))

    try:
        tokens = await service.refresh(refresh_token)
    except IdentityError as exc:
        logger.info("Session check: refresh failed (%s)", exc.kind.value)
        resp = _session_response(SessionStatusResponse(authenticated=False))
        resp.delete_cookie("refresh_token")
        return resp

    resp = _session_response(SessionStatusResponse(authenticated=True, refreshed=True))
    _set_session_cookies(request, resp, tokens)
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout", response_model=LogoutResponse)
async def logout(request: Request, current_account: Account = Depends(get_current_account)) -> JSONResponse:
    """Revoke every refresh token of the caller and clear the cookies.

    Access tokens already issued stay valid until they expire.
    """
    revoked = await _service(request).logout(current_account.id)
    resp = JSONResponse(content=LogoutResponse(message="Logged out.", revoked_sessions=revoked).model_dump())
    resp.delete_cookie("access_token")
    resp.delete_cookie("refresh_token")
    return resp


@router.get("/auth/me", response_model=AccountResponse)
async def me(current_account: Account = Depends(get_current_account)) -> AccountResponse:
    """Return the profile of the currently authenticated account."""
    return AccountResponse.from_account(current_account)


@router.patch("/auth/2fa", response_model=AccountResponse)
async def set_second_factor(
    request: Request,
    body: SecondFactorPatch,
    current_account: Account = Depends(get_current_account),
) -> AccountResponse:
    """Enable or disable the second factor. Disabling discards outstanding codes."""
    account = await _service(request).set_second_factor(current_account.id, body.enabled)
    return AccountResponse.from_account(account)
