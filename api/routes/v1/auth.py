"""
api/routes/v1/auth.py -- Authentication and password reset REST endpoints.

Routes:
  POST /api/v1/auth/login                    -- email/password sign-in; sets session cookie
  POST /api/v1/auth/logout                   -- deletes the session; clears cookie
  GET  /api/v1/auth/me                       -- current user info (requires auth)
  POST /api/v1/auth/forgot-password          -- email a reset link to a verified user
  POST /api/v1/auth/reset-password/{token}   -- consume token, set password, sign in

Security:
  POST /login and POST /forgot-password are rate-limited per IP.
  authenticate_user() provides timing equalization -- use it, never inline.
  Cache-Control: no-store on every response that sets a session cookie.
  forgot-password answers "invalid_email" for unknown and unverified
  addresses alike.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.errors import error_response
from api.models import (
    ForgotPasswordRequest,
    LoginRequest,
    LoginResponse,
    MeResponse,
    MessageResponse,
    ResetPasswordRequest,
    ResetPasswordResponse,
)
from auth.dependencies import get_current_user
from auth.models import User
from auth.password_reset import PasswordResetError, request_password_reset, reset_password
from auth.sessions import SessionManager
from auth.store import UserStore
from auth.tokens import authenticate_user
from core.config import get_settings
from core.http import request_base_url
from core.limiter import limiter

_settings = get_settings()

router = APIRouter()

# HTTP status for each PasswordResetError code.
_RESET_ERROR_STATUS: dict[str, int] = {
    "invalid_email": 400,
    "send_failed": 503,
    "missing_token": 400,
    "password_mismatch": 400,
    "password_too_short": 400,
    "password_too_long": 400,
    "token_not_found": 404,
    "token_expired": 410,
}


def _reset_error_response(exc: PasswordResetError) -> JSONResponse:
    return error_response(
        _RESET_ERROR_STATUS.get(exc.code, 400),
        exc.code,
        exc.message,
        detail="expired" if exc.expired else None,
    )


# ---------------------------------------------------------------------------
# Sign-in / sign-out
# ---------------------------------------------------------------------------


@router.post("/auth/login", response_model=LoginResponse)
@limiter.limit(_settings.login_rate_limit)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; set the session cookie.

    Returns the same "bad_credentials" error for an unknown email and a wrong
    password.
    """
    user_store: UserStore = request.app.state.user_store
    sessions: SessionManager = request.app.state.sessions

    user = authenticate_user(user_store, body.email, body.password)
    if user is None:
        return error_response(
            401,
            "bad_credentials",
            "Invalid email or password.",
            headers={"Cache-Control": "no-store"},
        )

    session = sessions.create_session(user.id)
    resp = JSONResponse(content=LoginResponse(user_id=user.id, email=user.email).model_dump())
    sessions.create_session_cookie(resp, session.id)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request) -> JSONResponse:
    """Delete the current session (if any) and clear the cookie."""
    sessions: SessionManager = request.app.state.sessions
    session_id = sessions.read_session_cookie(request)
    if session_id:
        sessions.invalidate_session(session_id)
    resp = JSONResponse(content=MessageResponse(message="Logged out.").model_dump())
    sessions.create_blank_session_cookie(resp)
    return resp


@router.get("/auth/me", response_model=MeResponse)
def me(current_user: User = Depends(get_current_user)) -> MeResponse:
    """Return identity information for the currently authenticated user."""
    return MeResponse(
        user_id=current_user.id,
        email=current_user.email,
        email_verified=current_user.email_verified,
        username=current_user.username,
        avatar_url=current_user.avatar_url,
    )


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


@router.post("/auth/forgot-password", response_model=MessageResponse)
@limiter.limit(_settings.forgot_password_rate_limit)
def forgot_password(request: Request, body: ForgotPasswordRequest) -> JSONResponse:
    """Email a password reset link to a verified account."""
    try:
        result = request_password_reset(
            request.app.state.user_store,
            request.app.state.email_client,
            body.email,
            request_base_url(request),
        )
    except PasswordResetError as exc:
        return _reset_error_response(exc)
    return JSONResponse(content=MessageResponse(message=result.message).model_dump())


@router.post("/auth/reset-password/{token}", response_model=ResetPasswordResponse)
def reset_password_api(request: Request, token: str, body: ResetPasswordRequest) -> JSONResponse:
    """Set a new password with a reset token; all other sessions are revoked."""
    sessions: SessionManager = request.app.state.sessions
    try:
        session = reset_password(
            request.app.state.user_store,
            sessions,
            token,
            body.password,
            body.password_confirm,
        )
    except PasswordResetError as exc:
        return _reset_error_response(exc)

    resp = JSONResponse(content=ResetPasswordResponse(redirect=_settings.default_redirect_url).model_dump())
    sessions.create_session_cookie(resp, session.id)
    resp.headers["Cache-Control"] = "no-store"
    return resp
