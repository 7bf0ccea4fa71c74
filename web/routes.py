"""
web/routes.py -- Jinja2 template routes for the Gatehouse web UI.

These routes serve server-rendered HTML. They share app.state with the API
routes (same user store, session manager, email client) but re-render forms
with messages instead of returning JSON.

Route registration order matters: POST /reset-password (no token) is
registered before POST /reset-password/{token} so an empty token segment
never reaches the path-param route.

Routes:
  GET  /                          -- home page (auth required)
  GET  /signin                    -- sign-in form
  POST /signin                    -- handle password sign-in
  POST /signout                   -- delete session, clear cookie, redirect /signin
  GET  /forgot-password           -- request a reset link
  POST /forgot-password           -- send the reset link
  GET  /reset-password/{token}    -- new password form
  POST /reset-password            -- missing token: re-render with message
  POST /reset-password/{token}    -- consume token, set cookie, redirect
"""

import logging
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Form, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates
from slowapi.errors import RateLimitExceeded

from auth.dependencies import try_get_current_user
from auth.password_reset import PasswordResetError, request_password_reset, reset_password
from auth.sessions import SessionManager
from auth.store import UserStore
from auth.tokens import authenticate_user
from core.config import get_settings
from core.http import request_base_url, safe_next
from core.limiter import limiter

logger = logging.getLogger("gatehouse.web")

_settings = get_settings()

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
# Expose try_get_current_user as a Jinja2 global so layout.html can show the
# sign-out button without every handler passing current_user explicitly.
templates.env.globals["try_get_current_user"] = try_get_current_user
router = APIRouter()

# ---------------------------------------------------------------------------
# Auth helpers
# ---------------------------------------------------------------------------


def _redirect_if_signed_in(request: Request) -> Optional[RedirectResponse]:
    """Signed-in users have no business on the sign-in and reset pages."""
    if try_get_current_user(request) is not None:
        return RedirectResponse(_settings.default_redirect_url, status_code=307)
    return None


def _session_redirect(sessions: SessionManager, session_id: str, location: str) -> RedirectResponse:
    resp = RedirectResponse(location, status_code=302)
    sessions.create_session_cookie(resp, session_id)
    resp.headers["Cache-Control"] = "no-store"
    return resp


RATE_LIMITED_MESSAGE = "Too many requests, please try again later."


def rate_limited_page(request: Request, exc: RateLimitExceeded) -> HTMLResponse:
    """Re-render the throttled form with a 429 and the rate-limit message."""
    retry_after = int(getattr(exc, "retry_after", 60))
    logger.warning("Rate limit hit on %s from %s", request.url.path, request.client.host if request.client else "?")
    if request.url.path == "/forgot-password":
        name, context = "forgot_password.html", {"errors": {"email": RATE_LIMITED_MESSAGE}}
    else:
        name, context = "signin.html", {"error_msg": RATE_LIMITED_MESSAGE, "next": ""}
    return templates.TemplateResponse(
        request, name, context, status_code=429, headers={"Retry-After": str(retry_after)}
    )


# ---------------------------------------------------------------------------
# GET / -- home
# ---------------------------------------------------------------------------


@router.get("/", response_class=HTMLResponse)
def home(request: Request) -> HTMLResponse:
    user = try_get_current_user(request)
    if user is None:
        return RedirectResponse(f"/signin?next={request.url.path}", status_code=302)
    return templates.TemplateResponse(request, "home.html", {"user": user})


# ---------------------------------------------------------------------------
# Sign-in / sign-out
# ---------------------------------------------------------------------------


@router.get("/signin", response_class=HTMLResponse)
def signin_form(request: Request) -> HTMLResponse:
    """Render the sign-in form."""
    if redirect := _redirect_if_signed_in(request):
        return redirect
    return templates.TemplateResponse(request, "signin.html", {"next": request.query_params.get("next", "")})


@router.post("/signin", response_class=HTMLResponse)
@limiter.limit(_settings.login_rate_limit)
def signin_post(
    request: Request,
    email: str = Form(default=""),
    password: str = Form(default=""),
    next_url: str = Form(default="", alias="next"),
) -> HTMLResponse:
    """Handle email/password sign-in form submission."""
    user_store: UserStore = request.app.state.user_store
    sessions: SessionManager = request.app.state.sessions

    user = authenticate_user(user_store, email, password)
    if user is None:
        logger.info("Sign-in rejected from %s", request.client.host if request.client else "unknown")
        return templates.TemplateResponse(
            request,
            "signin.html",
            {"error_msg": "Invalid email or password.", "email": email, "next": next_url},
        )

    session = sessions.create_session(user.id)
    return _session_redirect(sessions, session.id, safe_next(next_url))


@router.post("/signout")
def signout(request: Request) -> RedirectResponse:
    """Delete the current session, clear the cookie, and go back to /signin."""
    sessions: SessionManager = request.app.state.sessions
    session_id = sessions.read_session_cookie(request)
    if session_id:
        sessions.invalidate_session(session_id)
    resp = RedirectResponse("/signin", status_code=302)
    sessions.create_blank_session_cookie(resp)
    return resp


# ---------------------------------------------------------------------------
# Forgot password
# ---------------------------------------------------------------------------


@router.get("/forgot-password", response_class=HTMLResponse)
def forgot_password_form(request: Request) -> HTMLResponse:
    if redirect := _redirect_if_signed_in(request):
        return redirect
    return templates.TemplateResponse(request, "forgot_password.html", {})


@router.post("/forgot-password", response_class=HTMLResponse)
@limiter.limit(_settings.forgot_password_rate_limit)
def forgot_password_post(request: Request, email: str = Form(default="")) -> HTMLResponse:
    """Send a reset link, or re-render the form with the field error."""
    try:
        result = request_password_reset(
            request.app.state.user_store,
            request.app.state.email_client,
            email,
            request_base_url(request),
        )
    except PasswordResetError as exc:
        return templates.TemplateResponse(
            request,
            "forgot_password.html",
            {"errors": {"email": exc.message}, "email": email},
        )
    return templates.TemplateResponse(request, "forgot_password.html", {"message": result.message})


# ---------------------------------------------------------------------------
# Reset password
# ---------------------------------------------------------------------------


@router.get("/reset-password/{token}", response_class=HTMLResponse)
def reset_password_form(request: Request, token: str) -> HTMLResponse:
    if redirect := _redirect_if_signed_in(request):
        return redirect
    return templates.TemplateResponse(request, "reset_password.html", {"token": token})


@router.post("/reset-password", response_class=HTMLResponse)
def reset_password_missing_token(
    request: Request,
    password: str = Form(default=""),
    password_confirm: str = Form(default="", alias="password-confirm"),
) -> HTMLResponse:
    return _reset_password(request, None, password, password_confirm)


@router.post("/reset-password/{token}", response_class=HTMLResponse)
def reset_password_post(
    request: Request,
    token: str,
    password: str = Form(default=""),
    password_confirm: str = Form(default="", alias="password-confirm"),
) -> HTMLResponse:
    return _reset_password(request, token, password, password_confirm)


def _reset_password(request: Request, token: Optional[str], password: str, password_confirm: str) -> HTMLResponse:
    """Consume the token and sign the user in, or re-render with the error.

    Success sets the new session cookie on a 302 to DEFAULT_REDIRECT_URL.
    Every other session of the user has been deleted by then.
    """
    sessions: SessionManager = request.app.state.sessions
    try:
        session = reset_password(request.app.state.user_store, sessions, token, password, password_confirm)
    except PasswordResetError as exc:
        return templates.TemplateResponse(
            request,
            "reset_password.html",
            {"token": token, "errors": {"message": exc.message, "expired": exc.expired}},
        )
    return _session_redirect(sessions, session.id, _settings.default_redirect_url)
