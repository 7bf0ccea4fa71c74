"""
core/http.py -- Small request helpers shared by the api/ and web/ layers.
"""

from __future__ import annotations

from typing import Optional

from starlette.requests import Request

from core.config import get_settings

_DEFAULT_PORTS = {"http": 80, "https": 443}


def request_base_url(request: Request) -> str:
    """Return "scheme://host[:port]" for links sent outside the app (emails).

    PUBLIC_BASE_URL wins when configured. Otherwise the value is rebuilt from
    the request URL, omitting the port when it is the scheme's default.
    The host is taken from the netloc so IPv6 literals keep their brackets.
    """
    configured = get_settings().public_base_url
    if configured:
        return configured.rstrip("/")
    url = request.url
    host = url.netloc.rpartition("@")[2]
    if url.port is not None and url.port == _DEFAULT_PORTS.get(url.scheme):
        host = host.rsplit(":", 1)[0]
    return f"{url.scheme}://{host}"


def safe_next(next_url: Optional[str]) -> str:
    """Validate a post-login redirect target. Only accept relative paths.

    Prevents open redirect attacks where an attacker crafts a URL like:
      /signin?next=https://attacker.com  or  /signin?next=//attacker.com

    Both would redirect off-site after sign-in. We only allow paths that:
    - Start with "/" (relative, server-local)
    - Do NOT start with "//" or "/\\" (browsers treat both as protocol-relative)
    """
    if next_url and next_url.startswith("/") and not next_url.startswith(("//", "/\\")):
        return next_url
    return get_settings().default_redirect_url
