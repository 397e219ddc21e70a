"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

The access token is read from, in priority order:
  1. the "access_token" cookie, set by the login routes
  2. an Authorization: Bearer <token> header, for API clients

Both converge on AuthService.authenticate(), the single gate: signature and
expiry check, account-exists check, and the detached last_seen update.

Layer rule: auth/dependencies.py may import from fastapi (for
HTTPException/Request) because it is part of the dependency injection system.
No imports from api/ or core/.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.errors import IdentityError
from auth.models import Account


def extract_access_token(request: Request) -> str | None:
    token: str | None = request.cookies.get("access_token")
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:]
    return token or None


async def get_current_account(request: Request) -> Account:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(account: Account = Depends(get_current_account)): ...
    """
    token = extract_access_token(request)
    if token is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    try:
        return await request.app.state.auth_service.authenticate(token)
    except IdentityError as exc:
        raise HTTPException(
            status_code=401,
            detail={"code": exc.kind.value, "message": exc.message},
        ) from exc
