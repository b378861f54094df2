"""Health check endpoint.

Learn: Simple GET endpoint that verifies the server is running and its
dependencies (identity service, profiles table, Redis) are reachable.
"""

import httpx
from fastapi import APIRouter, Depends

from microlearn.auth.dependencies import get_http_client
from microlearn.services.diagnostics import check_config, overall_status, run_checks

router = APIRouter()


@router.get("/health")
async def health_check(http: httpx.AsyncClient = Depends(get_http_client)):
    """Check server health and dependency connectivity."""
    checks = await run_checks(http)
    return {"status": overall_status(checks), **checks, "config": check_config()}
