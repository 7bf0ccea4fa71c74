"""
api/errors.py -- The JSON error envelope and the handlers that produce it.

Every non-2xx JSON response has the shape
    {"error": {"code": ..., "message": ..., "detail": ...}}
whether it comes from a route (bad credentials, reset failures) or from an
exception handler (validation, rate limit, HTTPException, crashes).

HTML routes re-render their forms instead of raising, so only a rate-limit
hit can reach this module from them. asgi.py sends those to the web layer
and keeps on_rate_limit() for paths under /api/.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException

from api.models import ErrorDetail, ErrorResponse

logger = logging.getLogger("gatehouse.api")


def error_response(
    status_code: int,
    code: str,
    message: str,
    detail: Optional[str] = None,
    headers: Optional[dict[str, str]] = None,
) -> JSONResponse:
    body = ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail))
    return JSONResponse(status_code=status_code, content=body.model_dump(), headers=headers)


async def on_rate_limit(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    retry_after = int(getattr(exc, "retry_after", 60))
    logger.warning("Rate limit hit on %s from %s", request.url.path, request.client.host if request.client else "?")
    return error_response(
        429,
        "rate_limited",
        "Too many requests.",
        detail=str(exc.detail),
        headers={"Retry-After": str(retry_after)},
    )


async def _on_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Field locations and types only; submitted values can hold passwords.
    problems = "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors())
    return error_response(422, "validation_error", "Request validation failed.", detail=problems)


async def _on_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
    # get_current_user() raises with a ready-made {"code", "message"} detail.
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)
    return error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail), headers=exc.headers)


async def _on_unhandled(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return error_response(500, "internal_error", "An unexpected error occurred.")


def register_exception_handlers(app: FastAPI) -> None:
    """Attach the envelope-producing handlers to app."""
    app.add_exception_handler(RateLimitExceeded, on_rate_limit)
    app.add_exception_handler(RequestValidationError, _on_validation_error)
    app.add_exception_handler(HTTPException, _on_http_exception)
    app.add_exception_handler(Exception, _on_unhandled)
