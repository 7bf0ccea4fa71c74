"""
api/main.py -- The Gatehouse FastAPI application.

Run with:      uvicorn asgi:app --reload

Middleware, outermost first:
  TrustedHostMiddleware  Host header must match ALLOWED_HOSTS
  SlowAPIMiddleware      per-IP limits declared with @limiter.limit
  log_requests           one line per request, route template instead of path

The lifespan owns every long-lived object and hangs it on app.state:
  user_store     UserStore over DATABASE_URL
  sessions       SessionManager wrapping user_store
  email_client   Postmark, or the console client in debug mode
  purge_task     deletes expired sessions and reset tokens periodically
Tests swap the lifespan out (tests/conftest.py) to inject their own objects.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError

from api.errors import register_exception_handlers
from api.models import HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.sessions import SessionManager
from auth.store import UserStore
from core.config import get_settings
from core.limiter import limiter
from mail.client import get_email_client

__version__ = "0.1.0"

_settings = get_settings()

logging.basicConfig(
    level=logging.DEBUG if _settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("gatehouse.api")


async def _purge_loop(app: FastAPI, interval: int) -> None:
    """Delete expired sessions and reset tokens every `interval` seconds.

    The store call blocks, so it runs in a worker thread. A failed purge is
    logged and retried on the next tick; cancellation ends the loop.
    """
    while True:
        await asyncio.sleep(interval)
        try:
            counts = await asyncio.to_thread(app.state.user_store.purge_expired)
        except SQLAlchemyError:
            logger.exception("Purge of expired sessions and reset tokens failed")
            continue
        if any(counts.values()):
            logger.info(
                "Purged %d expired session(s) and %d reset token(s)",
                counts["sessions"],
                counts["reset_tokens"],
            )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    store = UserStore(_settings.database_url)
    app.state.user_store = store
    app.state.sessions = SessionManager(store)
    app.state.email_client = get_email_client(_settings)
    app.state.purge_task = asyncio.create_task(_purge_loop(app, _settings.purge_interval_seconds))
    logger.info(
        "Gatehouse %s started (email=%s, secure_cookies=%s)",
        __version__,
        "postmark" if _settings.email_enabled else "console",
        _settings.secure_cookies,
    )
    try:
        yield
    finally:
        app.state.purge_task.cancel()
        app.state.email_client.close()
        store.close()
        logger.info("Gatehouse stopped")


app = FastAPI(
    title="Gatehouse",
    description="Sign-in, sign-out and password reset for a server-rendered web app.",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)
app.add_middleware(SlowAPIMiddleware)
# SlowAPIMiddleware and the @limit decorators find the limiter here.
app.state.limiter = limiter

register_exception_handlers(app)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000
    # Reset URLs carry the token in the path; log "/reset-password/{token}".
    route = request.scope.get("route")
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        getattr(route, "path", request.url.path),
        response.status_code,
        elapsed_ms,
        request.client.host if request.client else "unknown",
    )
    return response


app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
# asgi.py adds the HTML router.


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Liveness plus a database round trip. Not rate-limited."""
    try:
        db_ok = request.app.state.user_store.ping()
    except SQLAlchemyError:
        logger.exception("Health check database ping failed")
        db_ok = False
    return HealthResponse(
        status="healthy" if db_ok else "degraded",
        version=__version__,
        components={"app": "ok", "database": "ok" if db_ok else "error"},
    )
