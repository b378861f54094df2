"""Test fixtures — the app wired to an in-memory hosted service.

Learn: The app owns no database, so instead of rolling back transactions
we replace the network. Route tests override the get_http_client
dependency so every identity service and record store object the app
builds talks to FakeSupabase (see tests/fakes.py).
"""

import os

# Settings are read once at import time, so configure before importing the app
os.environ["MICROLEARN_SUPABASE_URL"] = "https://project.supabase.test"
os.environ["MICROLEARN_SUPABASE_ANON_KEY"] = "anon-test-key"
os.environ["MICROLEARN_SUPABASE_SERVICE_ROLE_KEY"] = "service-role-test-key"
os.environ["MICROLEARN_JWT_SECRET"] = "test-jwt-secret-with-enough-length-for-hs256"
os.environ["MICROLEARN_ADMIN_API_KEY"] = "admin-test-key"
os.environ["MICROLEARN_SITE_URL"] = "http://app.test"
os.environ["MICROLEARN_PROFILE_RETRY_DELAY_SECONDS"] = "0"
os.environ["MICROLEARN_CALLBACK_GRACE_SECONDS"] = "0"
os.environ["MICROLEARN_ENVIRONMENT"] = "development"

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from microlearn.main import app
from tests.fakes import FakeSupabase


# ═══════════════════════════════════════════════════════════
# Fixtures
# ═══════════════════════════════════════════════════════════


@pytest.fixture()
def fake():
    return FakeSupabase()


@pytest_asyncio.fixture()
async def http(fake):
    async with fake.http_client() as client:
        yield client


@pytest_asyncio.fixture()
async def client(fake):
    """HTTP client for the app, with all outbound calls served by `fake`.

    Learn: Overriding the one get_http_client dependency is enough —
    every identity service and record store object a route builds
    receives that client.
    """
    from microlearn.auth.dependencies import get_http_client

    async def override_get_http_client():
        async with fake.http_client() as http_client:
            yield http_client

    app.dependency_overrides[get_http_client] = override_get_http_client

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture()
def user(fake):
    """A confirmed user with a password and one profile row."""
    u = fake.add_user(
        "ada@example.com",
        metadata={"full_name": "Ada Lovelace", "role": "instructor"},
    )
    fake.add_profile(u["id"], email=u["email"], full_name="Ada Lovelace", role="instructor")
    return u


@pytest.fixture()
def auth_headers(fake, user):
    return {"Authorization": f"Bearer {fake.issue_token(user)}"}
