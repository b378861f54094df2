"""Post-login redirect targets.

Learn: `next` arrives in a query string, so it's attacker-controlled.
Only same-site relative paths are honored; anything else (absolute URLs,
protocol-relative //evil.example, backslash tricks) falls back to the
default landing page.
"""

from typing import Optional
from urllib.parse import urlencode

from fastapi import Request

from microlearn.config import settings

SIGNIN_PATH = "/auth/signin"
VERIFY_EMAIL_PATH = "/auth/verify-email"


def safe_next(next_path: Optional[str], default: Optional[str] = None) -> str:
    fallback = default or settings.default_redirect_path
    if not next_path or not next_path.startswith("/"):
        return fallback
    if next_path.startswith("//") or "\\" in next_path:
        return fallback
    return next_path


def site_url(request: Request, path: str, **query: str) -> str:
    """Absolute front-end URL for a path (same origin if site_url is unset)."""
    base = (settings.site_url or str(request.base_url)).rstrip("/")
    url = f"{base}{path}"
    if query:
        url = f"{url}?{urlencode(query)}"
    return url


def signin_error_url(request: Request, message: str) -> str:
    return site_url(request, SIGNIN_PATH, error=message)
