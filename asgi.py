"""
asgi.py -- Application assembly for Gatehouse.

This is the ONLY file that imports from both api/ and web/. It joins the two
independent layers into a single ASGI app without coupling them to each other.

Run with:  uvicorn asgi:app --reload
"""

from fastapi import Request
from slowapi.errors import RateLimitExceeded

from api.errors import on_rate_limit
from api.main import app
from web.routes import rate_limited_page
from web.routes import router as web_router


async def _dispatch_rate_limit(request: Request, exc: RateLimitExceeded):
    """JSON envelope under /api/, the re-rendered form everywhere else."""
    if request.url.path.startswith("/api/"):
        return await on_rate_limit(request, exc)
    return rate_limited_page(request, exc)


# Mount the web UI router here, not in api/main.py.
app.include_router(web_router, tags=["Web UI"])
app.add_exception_handler(RateLimitExceeded, _dispatch_rate_limit)
