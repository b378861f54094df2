"""Dependency checks shared by GET /health and `microlearn doctor`.

Learn: Each check reports "ok" or "error: <reason>" (or "not configured")
and never raises — a broken dependency is exactly what this is meant to
report.
"""

import httpx

from microlearn import __version__
from microlearn.config import settings
from microlearn.services.identity_service import IdentityError, IdentityService
from microlearn.services.profile_store import PROFILES_TABLE
from microlearn.services.record_store import RecordStore, RecordStoreError

NOT_CONFIGURED = "not configured"


def check_config() -> dict[str, str]:
    """Which required settings are present (values are never echoed)."""
    return {
        "supabase_url": "ok" if settings.supabase_url else "missing",
        "supabase_anon_key": "ok" if settings.supabase_anon_key else "missing",
        "supabase_service_role_key": (
            "ok" if settings.supabase_service_role_key else "missing"
        ),
        "admin_api_key": "ok" if settings.admin_api_key else "missing",
    }


async def run_checks(http: httpx.AsyncClient) -> dict[str, str]:
    """Check the identity service, the profiles table, and Redis."""
    checks = {"server": "ok", "version": __version__}

    if not settings.is_configured:
        checks["identity"] = NOT_CONFIGURED
        checks["profiles"] = NOT_CONFIGURED
    else:
        try:
            await IdentityService(http).health()
            checks["identity"] = "ok"
        except IdentityError as e:
            checks["identity"] = f"error: {e}"

        try:
            await RecordStore(http).ping(PROFILES_TABLE)
            checks["profiles"] = "ok"
        except RecordStoreError as e:
            checks["profiles"] = f"error: {e}"

    try:
        from redis.asyncio import from_url

        r = from_url(settings.redis_url)
        try:
            await r.ping()
        finally:
            await r.aclose()
        checks["redis"] = "ok"
    except Exception as e:
        checks["redis"] = f"error: {e}"

    return checks


def overall_status(checks: dict[str, str]) -> str:
    return "healthy" if all(
        v == "ok" for k, v in checks.items() if k != "version"
    ) else "degraded"
