"""API route aggregation.

All routers registered here get mounted in main.py.

Learn: Auth is applied at the include_router level using FastAPI's
dependencies parameter. Health, auth and the callback are open; the
callback authenticates itself by exchanging its one-time code.
Maintenance routes need the admin API key instead of a user token.
"""

from fastapi import APIRouter, Depends

from microlearn.api.admin import router as admin_router
from microlearn.api.auth import router as auth_router
from microlearn.api.callback import router as callback_router
from microlearn.api.enrollments import router as enrollments_router
from microlearn.api.health import router as health_router
from microlearn.auth.dependencies import get_current_identity, require_admin

api_router = APIRouter(prefix="/api/v1")

# Open routes (no auth required)
api_router.include_router(health_router, tags=["health"])
api_router.include_router(auth_router, tags=["auth"])
api_router.include_router(callback_router, tags=["auth"])

# Protected routes
api_router.include_router(
    enrollments_router, tags=["enrollments"], dependencies=[Depends(get_current_identity)]
)
api_router.include_router(
    admin_router, tags=["maintenance"], dependencies=[Depends(require_admin)]
)
