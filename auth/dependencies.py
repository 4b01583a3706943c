"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Only one auth method exists: the Authorization: Bearer <token> header carrying
a JWT issued by signup or verify-otp. There are no cookies and no server-side
sessions.

get_auth_service() hands routes the AuthService the lifespan put on app.state.
get_current_user() resolves the bearer token through the service; failures
surface as AuthorizationError, which the app-level handler in api/main.py
turns into a 401 envelope.

Layer rule: may import from fastapi (this module is part of the FastAPI
dependency injection system); never imports from api/.
"""

from __future__ import annotations

from fastapi import Request

from auth.models import User
from auth.service import AuthService


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def bearer_token(request: Request) -> str | None:
    """Extract the token from an 'Authorization: Bearer <token>' header, if present.

    The scheme name is matched case-insensitively (RFC 7235).
    """
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


def get_current_user(request: Request) -> User:
    """Require a valid bearer token. Raises AuthorizationError (401) otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...
    """
    return get_auth_service(request).get_current_user(bearer_token(request))
