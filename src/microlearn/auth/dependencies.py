"""FastAPI auth dependencies.

Learn: These are used as Depends() in route handlers to build the
per-request service objects and to extract the current identity.

Two credentials are accepted:
1. Access token — Authorization: Bearer header, or the access cookie
   set by the redirect routes (for users)
2. Admin API key in the x-api-key header (for maintenance routes)
"""

import secrets
from typing import Any, AsyncIterator, Optional

import httpx
from fastapi import Cookie, Depends, Header, HTTPException

from microlearn.auth.cookies import ACCESS_COOKIE
from microlearn.auth.jwt import TokenError, verify_token
from microlearn.config import settings
from microlearn.schemas.identity import Identity
from microlearn.services.auth_callback import CallbackReconciler
from microlearn.services.enrollment_store import EnrollmentStore
from microlearn.services.identity_service import IdentityService
from microlearn.services.profile_resolver import ProfileResolver
from microlearn.services.profile_store import RestProfileStore


class CurrentIdentity:
    """The authenticated identity making the request.

    Learn: Built from verified token claims, so no call to the identity
    service is needed. The raw token is kept so record store calls run
    under this user's row-level security.
    """

    def __init__(
        self,
        user_id: str,
        access_token: str,
        email: Optional[str] = None,
        user_metadata: Optional[dict[str, Any]] = None,
        app_metadata: Optional[dict[str, Any]] = None,
    ):
        self.user_id = user_id
        self.access_token = access_token
        self.email = email
        self.user_metadata = user_metadata or {}
        self.app_metadata = app_metadata or {}

    def to_identity(self) -> Identity:
        return Identity(
            id=self.user_id,
            email=self.email,
            user_metadata=self.user_metadata,
            app_metadata=self.app_metadata,
        )


# ─── Service objects ─────────────────────────────────────


async def get_http_client() -> AsyncIterator[httpx.AsyncClient]:
    """FastAPI dependency — yields an HTTP client per request, auto-closes."""
    async with httpx.AsyncClient(timeout=settings.http_timeout_seconds) as client:
        yield client


def get_identity_service(
    http: httpx.AsyncClient = Depends(get_http_client),
) -> IdentityService:
    return IdentityService(http)


def get_callback_reconciler(
    identity: IdentityService = Depends(get_identity_service),
    http: httpx.AsyncClient = Depends(get_http_client),
) -> CallbackReconciler:
    # Profile reads run as the user whose code was just exchanged
    store = RestProfileStore(http, token_provider=lambda: identity.access_token)
    return CallbackReconciler(identity, store)


def get_service_profile_store(
    http: httpx.AsyncClient = Depends(get_http_client),
) -> RestProfileStore:
    """Profile store authorized with the service role key (bypasses RLS)."""
    if not settings.supabase_service_role_key:
        raise HTTPException(
            status_code=503, detail="Service role key is not configured"
        )
    return RestProfileStore(
        http,
        api_key=settings.supabase_service_role_key,
        token_provider=lambda: settings.supabase_service_role_key,
    )


# ─── Identity extraction ─────────────────────────────────


def get_access_token(
    authorization: Optional[str] = Header(None),
    access_cookie: Optional[str] = Cookie(None, alias=ACCESS_COOKIE),
) -> Optional[str]:
    """Bearer header first, then the session cookie."""
    if authorization and authorization.startswith("Bearer "):
        return authorization[7:]
    return access_cookie


async def get_current_identity_optional(
    token: Optional[str] = Depends(get_access_token),
) -> Optional[CurrentIdentity]:
    """Extract current identity (optional — returns None if no token).

    An invalid or expired token is still a 401: the client should
    refresh it, not silently continue as anonymous.
    """
    if not token:
        return None
    try:
        payload = verify_token(token)
    except TokenError as e:
        raise HTTPException(
            status_code=401,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )
    return CurrentIdentity(
        user_id=payload["sub"],
        access_token=token,
        email=payload.get("email"),
        user_metadata=payload.get("user_metadata"),
        app_metadata=payload.get("app_metadata"),
    )


async def get_current_identity(
    identity: Optional[CurrentIdentity] = Depends(get_current_identity_optional),
) -> CurrentIdentity:
    """Extract current identity (required — 401 if no token)."""
    if not identity:
        raise HTTPException(
            status_code=401,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return identity


def get_profile_resolver(
    identity: CurrentIdentity = Depends(get_current_identity),
    http: httpx.AsyncClient = Depends(get_http_client),
) -> ProfileResolver:
    store = RestProfileStore(http, token_provider=lambda: identity.access_token)
    return ProfileResolver(store)


def get_enrollment_store(
    identity: CurrentIdentity = Depends(get_current_identity),
    http: httpx.AsyncClient = Depends(get_http_client),
) -> EnrollmentStore:
    return EnrollmentStore(http, token_provider=lambda: identity.access_token)


def require_admin(x_api_key: Optional[str] = Header(None)) -> None:
    """Gate for maintenance routes: x-api-key must match MICROLEARN_ADMIN_API_KEY."""
    if not settings.admin_api_key:
        raise HTTPException(status_code=503, detail="Admin API key is not configured")
    if not x_api_key or not secrets.compare_digest(x_api_key, settings.admin_api_key):
        raise HTTPException(status_code=401, detail="Invalid API key")
