"""Identity service client tests — request shapes, sessions, auth events."""

import json
import time
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from microlearn.auth.pkce import code_challenge
from microlearn.events.types import SIGNED_IN, SIGNED_OUT, TOKEN_REFRESHED
from microlearn.services.identity_service import (
    IdentityNotConfiguredError,
    IdentityRejectedError,
    IdentityService,
    IdentityTransportError,
)
from tests.fakes import SUPABASE_URL, make_identity, make_session


def _recorder(service: IdentityService) -> list[tuple[str, object]]:
    events = []

    async def handler(event, session):
        events.append((event, session.user.id if session else None))

    service.on_auth_state_change(handler)
    return events


# ═══════════════════════════════════════════════════════════
# Sign-in / sign-up
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_sign_in_holds_session_and_emits(fake, http):
    user = fake.add_user("ada@example.com", "pw-123456")
    service = IdentityService(http)
    events = _recorder(service)

    session = await service.sign_in_with_password("ada@example.com", "pw-123456")

    assert session.user.id == user["id"]
    assert service.access_token == session.access_token
    assert await service.get_session() == session
    assert events == [(SIGNED_IN, user["id"])]

    request = fake.requests[-1]
    assert request.url.path == "/auth/v1/token"
    assert request.url.params["grant_type"] == "password"
    assert request.headers["apikey"] == "anon-test-key"


@pytest.mark.asyncio
async def test_sign_in_rejected(fake, http):
    fake.add_user("ada@example.com", "pw-123456")
    service = IdentityService(http)

    with pytest.raises(IdentityRejectedError) as exc:
        await service.sign_in_with_password("ada@example.com", "wrong")

    assert exc.value.message == "Invalid login credentials"
    assert exc.value.status == 400
    assert service.access_token is None


@pytest.mark.asyncio
async def test_sign_up_with_redirect_sends_pkce_challenge(fake, http):
    fake.confirm_email = True
    service = IdentityService(http)

    result, verifier = await service.sign_up(
        "new@example.com",
        "pw-123456",
        {"full_name": "New", "role": "instructor"},
        email_redirect_to="http://test/api/v1/auth/callback",
    )

    assert result.confirmation_required
    assert result.identity.email == "new@example.com"
    assert result.identity.role_hint == "instructor"
    request = fake.requests_to("POST", "/auth/v1/signup")[0]
    body = json.loads(request.content)
    assert body["code_challenge"] == code_challenge(verifier)
    assert body["code_challenge_method"] == "s256"
    assert body["data"] == {"full_name": "New", "role": "instructor"}
    assert request.url.params["redirect_to"] == "http://test/api/v1/auth/callback"


@pytest.mark.asyncio
async def test_sign_up_without_confirmation_signs_in(fake, http):
    service = IdentityService(http)
    events = _recorder(service)

    result, verifier = await service.sign_up("new@example.com", "pw-123456")

    assert not result.confirmation_required
    assert verifier is None
    assert service.access_token == result.session.access_token
    assert events == [(SIGNED_IN, result.identity.id)]


@pytest.mark.asyncio
async def test_oauth_url_carries_challenge(http):
    service = IdentityService(http)

    start = await service.sign_in_with_oauth("github", "http://test/cb?next=%2Fx")

    url = urlparse(start.url)
    query = parse_qs(url.query)
    assert f"{url.scheme}://{url.netloc}{url.path}" == f"{SUPABASE_URL}/auth/v1/authorize"
    assert query["provider"] == ["github"]
    assert query["redirect_to"] == ["http://test/cb?next=%2Fx"]
    assert query["code_challenge"] == [code_challenge(start.code_verifier)]


@pytest.mark.asyncio
async def test_exchange_code_for_session(fake, http):
    user = fake.add_user("ada@example.com", confirmed=False)
    code = fake.issue_code(user)
    service = IdentityService(http)
    events = _recorder(service)

    session = await service.exchange_code_for_session(code, "verifier-1")

    assert session.user.id == user["id"]
    assert session.user.is_email_confirmed
    body = json.loads(fake.requests[-1].content)
    assert body == {"auth_code": code, "code_verifier": "verifier-1"}
    assert events == [(SIGNED_IN, user["id"])]


@pytest.mark.asyncio
async def test_exchange_unknown_code_rejected(http):
    service = IdentityService(http)
    with pytest.raises(IdentityRejectedError) as exc:
        await service.exchange_code_for_session("nope", "verifier")
    assert "flow state" in exc.value.message


# ═══════════════════════════════════════════════════════════
# Sessions
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_expired_session_is_refreshed(fake, http):
    user = fake.add_user("ada@example.com")
    old = fake.session_for(user)
    old["expires_at"] = int(time.time()) - 60
    service = IdentityService(http, session=make_session(**old))
    events = _recorder(service)

    session = await service.get_session()

    assert session.access_token != old["access_token"]
    assert events == [(TOKEN_REFRESHED, user["id"])]


@pytest.mark.asyncio
async def test_rejected_refresh_signs_out(fake, http):
    expired = make_session(make_identity("u1"), expires_at=int(time.time()) - 60)
    service = IdentityService(http, session=expired)
    events = _recorder(service)

    with pytest.raises(IdentityRejectedError):
        await service.get_session()

    assert service.access_token is None
    assert events == [(SIGNED_OUT, None)]


@pytest.mark.asyncio
async def test_get_user_without_session_rejected(http):
    with pytest.raises(IdentityRejectedError) as exc:
        await IdentityService(http).get_user()
    assert exc.value.status == 401


# ═══════════════════════════════════════════════════════════
# Sign-out
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_sign_out_revokes_and_emits(fake, http):
    fake.add_user("ada@example.com", "pw-123456")
    service = IdentityService(http)
    await service.sign_in_with_password("ada@example.com", "pw-123456")
    events = _recorder(service)

    await service.sign_out()

    assert service.access_token is None
    assert events == [(SIGNED_OUT, None)]
    assert len(fake.requests_to("POST", "/auth/v1/logout")) == 1


@pytest.mark.asyncio
async def test_sign_out_already_revoked_is_fine(fake, http):
    fake.logout_status = 401
    service = IdentityService(http, session=make_session())

    await service.sign_out()

    assert service.access_token is None


@pytest.mark.asyncio
async def test_sign_out_failure_still_clears_session(fake, http):
    fake.logout_status = 500
    service = IdentityService(http, session=make_session())
    events = _recorder(service)

    with pytest.raises(IdentityRejectedError):
        await service.sign_out()

    assert service.access_token is None
    assert events == [(SIGNED_OUT, None)]


# ═══════════════════════════════════════════════════════════
# Events and errors
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_failing_handler_does_not_stop_others(fake, http):
    fake.add_user("ada@example.com", "pw-123456")
    service = IdentityService(http)

    async def broken(event, session):
        raise RuntimeError("handler bug")

    service.on_auth_state_change(broken)
    events = _recorder(service)

    await service.sign_in_with_password("ada@example.com", "pw-123456")

    assert [event for event, _ in events] == [SIGNED_IN]


@pytest.mark.asyncio
async def test_unsubscribe(fake, http):
    fake.add_user("ada@example.com", "pw-123456")
    service = IdentityService(http)
    events = []

    async def handler(event, session):
        events.append(event)

    unsubscribe = service.on_auth_state_change(handler)
    unsubscribe()
    await service.sign_in_with_password("ada@example.com", "pw-123456")

    assert events == []


@pytest.mark.asyncio
async def test_transport_error_mapped():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        with pytest.raises(IdentityTransportError):
            await IdentityService(http).health()


@pytest.mark.asyncio
async def test_not_configured(http):
    with pytest.raises(IdentityNotConfiguredError):
        await IdentityService(http, url="", api_key="").health()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body, expected",
    [
        ({"error": "invalid_grant", "error_description": "Bad creds"}, "Bad creds"),
        ({"code": 422, "msg": "Password too short"}, "Password too short"),
        ({"message": "Service down"}, "Service down"),
        ([], "Identity service returned HTTP 422"),
    ],
)
async def test_error_body_shapes(body, expected):
    def handler(request):
        return httpx.Response(422, json=body)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        with pytest.raises(IdentityRejectedError) as exc:
            await IdentityService(http).resend("a@example.com")

    assert exc.value.message == expected
    assert exc.value.status == 422
