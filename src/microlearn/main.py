"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. Lifespan manages startup/shutdown (Redis for rate limiting).
Middleware, CORS, and routers all registered here.

The app owns no database: identities and profile rows live in the
hosted service, reached per request through httpx.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from microlearn import __version__
from microlearn.api import api_router
from microlearn.cache import close_redis, init_redis
from microlearn.config import settings

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: Anything before `yield` runs at startup, after `yield` runs at
    shutdown.
    """
    logger.info(
        "microlearn.starting",
        version=__version__,
        environment=settings.environment,
        port=settings.port,
        identity_configured=settings.is_configured,
    )
    if not settings.is_configured:
        logger.warning("microlearn.identity_not_configured")

    try:
        await init_redis()
        logger.info("microlearn.redis_connected", url=settings.redis_url)
    except Exception as e:
        # Redis is optional; only rate limiting depends on it
        logger.warning("microlearn.redis_unavailable", error=str(e))
        await close_redis()

    yield

    logger.info("microlearn.shutdown")
    await close_redis()


def create_app() -> FastAPI:
    """Build and return the FastAPI application."""
    app = FastAPI(
        title="Microlearn",
        description="Microlearning marketplace backend — sessions, profiles, enrollments",
        version=__version__,
        lifespan=lifespan,
    )

    # ── Middleware stack ──────────────────────────────────────
    # Note: Starlette middleware executes in reverse order of registration.
    # Request flow: CORS → RateLimit → Security → RequestId → handler

    from microlearn.middleware.rate_limit import RateLimitMiddleware
    from microlearn.middleware.request_id import RequestIdMiddleware
    from microlearn.middleware.security import SecurityHeadersMiddleware

    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        RateLimitMiddleware,
        default_rpm=settings.rate_limit_rpm,
        auth_rpm=settings.rate_limit_auth_rpm,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router)

    return app


# Default app instance (used by uvicorn: microlearn.main:app)
app = create_app()
