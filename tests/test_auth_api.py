"""Auth API tests.

Learn: Tests cover:
1. Email/password sign-in → tokens + cookies
2. Sign-up with and without email confirmation
3. OAuth start → provider redirect + PKCE verifier cookie
4. Resend and confirmation status
5. Sign-out (always succeeds locally)
6. /auth/me → identity + reconciled profile
"""

from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from microlearn.auth.cookies import ACCESS_COOKIE, REFRESH_COOKIE, VERIFIER_COOKIE
from microlearn.auth.pkce import code_challenge
from tests.fakes import cookie_value, set_cookie_headers


# ═══════════════════════════════════════════════════════════
# Sign-in
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_signin_success(client, user):
    r = await client.post(
        "/api/v1/auth/signin",
        json={"email": "ada@example.com", "password": "pw-123456"},
    )
    assert r.status_code == 200
    data = r.json()
    assert data["user_id"] == user["id"]
    assert data["access_token"]
    assert data["refresh_token"]
    assert cookie_value(r, ACCESS_COOKIE) == data["access_token"]
    assert cookie_value(r, REFRESH_COOKIE) == data["refresh_token"]
    assert "httponly" in set_cookie_headers(r).lower()


@pytest.mark.asyncio
async def test_signin_wrong_password(client, user):
    r = await client.post(
        "/api/v1/auth/signin",
        json={"email": "ada@example.com", "password": "nope"},
    )
    assert r.status_code == 401
    assert r.json()["detail"] == "Invalid login credentials"
    assert ACCESS_COOKIE not in set_cookie_headers(r)


@pytest.mark.asyncio
async def test_signin_unconfirmed_email(client, fake):
    fake.add_user("new@example.com", "pw-123456", confirmed=False)
    r = await client.post(
        "/api/v1/auth/signin",
        json={"email": "new@example.com", "password": "pw-123456"},
    )
    assert r.status_code == 401
    assert r.json()["detail"] == "Email not confirmed"


@pytest.mark.asyncio
async def test_signin_service_unreachable(client, fake, monkeypatch):
    def down(request):
        raise httpx.ConnectError("refused", request=request)

    monkeypatch.setattr(fake, "handler", down)
    r = await client.post(
        "/api/v1/auth/signin",
        json={"email": "ada@example.com", "password": "pw-123456"},
    )
    assert r.status_code == 502


# ═══════════════════════════════════════════════════════════
# Sign-up
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_signup_requires_confirmation(client, fake):
    fake.confirm_email = True
    r = await client.post(
        "/api/v1/auth/signup",
        json={
            "email": "new@example.com",
            "password": "pw-123456",
            "full_name": "New Instructor",
            "role": "instructor",
        },
    )
    assert r.status_code == 201
    data = r.json()
    assert data["status"] == "confirmation_required"
    assert data["next"] == "/auth/verify-email"
    assert data["tokens"] is None

    verifier = cookie_value(r, VERIFIER_COOKIE)
    assert verifier
    assert ACCESS_COOKIE not in set_cookie_headers(r)

    request = fake.requests_to("POST", "/auth/v1/signup")[0]
    redirect_to = request.url.params["redirect_to"]
    assert redirect_to.startswith("http://test/api/v1/auth/callback")
    assert parse_qs(urlparse(redirect_to).query)["next"] == ["/dashboard"]

    created = next(iter(fake.users.values()))
    assert created["user_metadata"] == {"full_name": "New Instructor", "role": "instructor"}


@pytest.mark.asyncio
async def test_signup_signed_in_immediately(client, fake):
    r = await client.post(
        "/api/v1/auth/signup",
        json={"email": "new@example.com", "password": "pw-123456"},
    )
    assert r.status_code == 201
    data = r.json()
    assert data["status"] == "signed_in"
    assert data["next"] == "/dashboard"
    assert data["tokens"]["access_token"]
    assert cookie_value(r, ACCESS_COOKIE) == data["tokens"]["access_token"]


@pytest.mark.asyncio
async def test_signup_existing_email(client, user):
    r = await client.post(
        "/api/v1/auth/signup",
        json={"email": "ada@example.com", "password": "pw-123456"},
    )
    assert r.status_code == 400
    assert r.json()["detail"] == "User already registered"


@pytest.mark.asyncio
async def test_signup_rate_limited_passthrough(client, fake):
    fake.rate_limited = True
    r = await client.post(
        "/api/v1/auth/signup",
        json={"email": "new@example.com", "password": "pw-123456"},
    )
    assert r.status_code == 429


@pytest.mark.asyncio
async def test_signup_validation(client):
    r = await client.post(
        "/api/v1/auth/signup",
        json={"email": "new@example.com", "password": "abc"},
    )
    assert r.status_code == 422

    r = await client.post(
        "/api/v1/auth/signup",
        json={"email": "new@example.com", "password": "pw-123456", "role": "admin"},
    )
    assert r.status_code == 422


# ═══════════════════════════════════════════════════════════
# OAuth
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_oauth_redirects_to_provider(client):
    r = await client.get(
        "/api/v1/auth/oauth/google", params={"role": "instructor", "next": "/courses/new"}
    )
    assert r.status_code == 302

    location = urlparse(r.headers["location"])
    query = parse_qs(location.query)
    assert location.netloc == "project.supabase.test"
    assert location.path == "/auth/v1/authorize"
    assert query["provider"] == ["google"]
    assert query["code_challenge_method"] == ["s256"]

    verifier = cookie_value(r, VERIFIER_COOKIE)
    assert query["code_challenge"] == [code_challenge(verifier)]

    callback = urlparse(query["redirect_to"][0])
    assert callback.path == "/api/v1/auth/callback"
    assert parse_qs(callback.query) == {"next": ["/courses/new"], "role": ["instructor"]}


@pytest.mark.asyncio
async def test_oauth_rejects_external_next(client):
    r = await client.get(
        "/api/v1/auth/oauth/github", params={"next": "https://evil.example/"}
    )
    query = parse_qs(urlparse(r.headers["location"]).query)
    callback = urlparse(query["redirect_to"][0])
    assert parse_qs(callback.query) == {"next": ["/dashboard"]}


# ═══════════════════════════════════════════════════════════
# Email confirmation
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_resend(client, fake):
    r = await client.post("/api/v1/auth/resend", json={"email": "new@example.com"})
    assert r.status_code == 200
    assert r.json() == {"status": "sent"}
    assert fake.resent == ["new@example.com"]


@pytest.mark.asyncio
async def test_resend_rate_limited(client, fake):
    fake.rate_limited = True
    r = await client.post("/api/v1/auth/resend", json={"email": "new@example.com"})
    assert r.status_code == 429
    assert "60 seconds" in r.json()["detail"]


@pytest.mark.asyncio
async def test_confirm_without_session(client):
    r = await client.get("/api/v1/auth/confirm")
    assert r.status_code == 200
    assert r.json()["status"] == "error"


@pytest.mark.asyncio
async def test_confirm_confirmed(client, auth_headers):
    r = await client.get("/api/v1/auth/confirm", headers=auth_headers)
    assert r.json() == {"status": "success", "message": "Email confirmed successfully!"}


@pytest.mark.asyncio
async def test_confirm_pending(client, fake):
    pending = fake.add_user("new@example.com", confirmed=False)
    r = await client.get(
        "/api/v1/auth/confirm",
        headers={"Authorization": f"Bearer {fake.issue_token(pending)}"},
    )
    assert r.json()["status"] == "pending"


@pytest.mark.asyncio
async def test_confirm_reads_session_cookie(client, fake, user):
    r = await client.get(
        "/api/v1/auth/confirm",
        headers={"Cookie": f"{ACCESS_COOKIE}={fake.issue_token(user)}"},
    )
    assert r.json()["status"] == "success"


# ═══════════════════════════════════════════════════════════
# Sign-out
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_signout_revokes_and_clears_cookies(client, fake, auth_headers):
    r = await client.post("/api/v1/auth/signout", headers=auth_headers)
    assert r.status_code == 200
    assert r.json() == {"signed_out": True}
    assert len(fake.requests_to("POST", "/auth/v1/logout")) == 1
    cookies = set_cookie_headers(r)
    assert f"{ACCESS_COOKIE}=" in cookies
    assert "Max-Age=0" in cookies


@pytest.mark.asyncio
async def test_signout_succeeds_when_service_fails(client, fake, auth_headers):
    fake.logout_status = 500
    r = await client.post("/api/v1/auth/signout", headers=auth_headers)
    assert r.status_code == 200
    assert f"{ACCESS_COOKIE}=" in set_cookie_headers(r)


@pytest.mark.asyncio
async def test_signout_without_session(client, fake):
    r = await client.post("/api/v1/auth/signout")
    assert r.status_code == 200
    assert fake.requests_to("POST", "/auth/v1/logout") == []


# ═══════════════════════════════════════════════════════════
# Current identity
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_me_requires_auth(client):
    r = await client.get("/api/v1/auth/me")
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_me_invalid_token(client):
    r = await client.get(
        "/api/v1/auth/me", headers={"Authorization": "Bearer not-a-jwt"}
    )
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_me_expired_token(client, fake, user):
    token = fake.issue_token(user, expires_in=-60)
    r = await client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 401
    assert r.json()["detail"] == "Token has expired"


@pytest.mark.asyncio
async def test_me_ready(client, user, auth_headers):
    r = await client.get("/api/v1/auth/me", headers=auth_headers)
    assert r.status_code == 200
    data = r.json()
    assert data["status"] == "ready"
    assert data["is_loading"] is False
    assert data["identity"]["id"] == user["id"]
    assert data["profile"]["role"] == "instructor"
    assert data["profile"]["full_name"] == "Ada Lovelace"


@pytest.mark.asyncio
async def test_me_creates_missing_profile(client, fake):
    newcomer = fake.add_user("new@example.com", metadata={"full_name": "Newcomer"})
    r = await client.get(
        "/api/v1/auth/me",
        headers={"Authorization": f"Bearer {fake.issue_token(newcomer)}"},
    )
    data = r.json()
    assert data["status"] == "ready"
    assert data["profile"]["role"] == "learner"
    assert data["profile"]["points"] == 0
    assert len(fake.profiles(newcomer["id"])) == 1
    assert len(fake.requests_to("GET", "/rest/v1/profiles")) == 3


@pytest.mark.asyncio
async def test_me_degraded_when_store_unreachable(client, fake, user, auth_headers):
    fake.rest_down = True
    r = await client.get("/api/v1/auth/me", headers=auth_headers)
    assert r.status_code == 200
    data = r.json()
    assert data["status"] == "degraded"
    assert data["profile"] is None
    assert data["identity"]["id"] == user["id"]
    assert data["error"]
