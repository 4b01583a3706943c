"""
api/routes/v1/auth.py -- Signup, two-step login, and current-user REST endpoints.

Routes:
  POST /api/v1/auth/signup           -- create account; 201 {user, token}
  POST /api/v1/auth/login            -- step 1: check password, issue OTP; 200 {otp, expiresIn}
  POST /api/v1/auth/verify-otp       -- step 2: re-check password, consume OTP; 200 {user, token}
  GET  /api/v1/auth/me               -- current user (Bearer token)
  POST /api/v1/auth/change-password  -- replace password (Bearer token)

Handlers are plain `def`, not `async def`: bcrypt and the store are blocking,
and FastAPI runs sync handlers in its threadpool so one slow hash never stalls
the event loop for other requests.

Handlers contain no error handling of their own. AuthService raises the
auth/errors.py taxonomy; the handler registered in api/main.py renders it.

Cache-Control: no-store on every response that carries a token or a code.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from api.models import (
    AuthResponse,
    ChangePasswordRequest,
    LoginRequest,
    LoginResponse,
    MeResponse,
    MessageResponse,
    SignupRequest,
    UserResponse,
    VerifyOtpRequest,
)
from auth.dependencies import get_auth_service, get_current_user
from auth.models import User
from auth.service import AuthService

# Auth policy:
# - POST /auth/signup, /auth/login, /auth/verify-otp: public -- these ARE the way in
# - GET  /auth/me, POST /auth/change-password:        require a bearer token (get_current_user)
router = APIRouter()


@router.post("/auth/signup", response_model=AuthResponse, status_code=201)
def signup(body: SignupRequest, service: AuthService = Depends(get_auth_service)) -> JSONResponse:
    """Register a new account. Signup implies an authenticated session: no OTP step."""
    result = service.signup(body.name, body.email, body.password, body.confirm_password)
    return _no_store(201, AuthResponse(user=UserResponse.from_user(result.user), token=result.token))


@router.post("/auth/login", response_model=LoginResponse)
def login(body: LoginRequest, service: AuthService = Depends(get_auth_service)) -> JSONResponse:
    """Step 1: verify email + password and issue a one-time code.

    Unknown email and wrong password return the same 401 body.
    """
    challenge = service.login(body.email, body.password)
    return _no_store(
        200,
        LoginResponse(
            message="Credentials verified. OTP generated. Please verify OTP to complete login.",
            otp=challenge.code,
            expires_in=challenge.expires_in,
        ),
    )


@router.post("/auth/verify-otp", response_model=AuthResponse)
def verify_otp(body: VerifyOtpRequest, service: AuthService = Depends(get_auth_service)) -> JSONResponse:
    """Step 2: verify email + password again, consume the code, return a token.

    Wrong, expired and already-used codes return the same 401 body.
    """
    result = service.verify_otp(body.email, body.password, body.otp)
    return _no_store(200, AuthResponse(user=UserResponse.from_user(result.user), token=result.token))


@router.get("/auth/me", response_model=MeResponse)
def me(current_user: User = Depends(get_current_user)) -> MeResponse:
    """Return the account the bearer token was issued for."""
    return MeResponse(user=UserResponse.from_user(current_user))


@router.post("/auth/change-password", response_model=MessageResponse)
def change_password(
    body: ChangePasswordRequest,
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """Replace the caller's password after re-checking the current one."""
    service.change_password(current_user.id, body.current_password, body.new_password, body.confirm_password)
    return MessageResponse(message="Password updated.")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _no_store(status_code: int, model: BaseModel) -> JSONResponse:
    resp = JSONResponse(status_code=status_code, content=model.model_dump(by_alias=True))
    resp.headers["Cache-Control"] = "no-store"
    return resp
