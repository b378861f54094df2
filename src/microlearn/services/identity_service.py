"""Identity service client — sign-in, sign-up, sessions, auth events.

Learn: The hosted identity service exposes a small REST API under
/auth/v1. This client wraps it with httpx and also plays the role the
browser SDK plays in a front end: it holds the current session in memory
and notifies subscribers (the session reconciler) whenever that session
changes.

Failures come in two flavours, and callers treat them differently:
- IdentityTransportError: the service couldn't be reached
- IdentityRejectedError: the service answered and said no
  (bad credentials, unconfirmed email, rate limit, ...)
"""

from typing import Any, Awaitable, Callable, Optional
from urllib.parse import urlencode

import httpx
import structlog

from microlearn.auth.pkce import code_challenge, generate_code_verifier
from microlearn.config import settings
from microlearn.events.types import SIGNED_IN, SIGNED_OUT, TOKEN_REFRESHED
from microlearn.schemas.identity import AuthSession, Identity, OAuthStart, SignUpResult

logger = structlog.get_logger()

AuthHandler = Callable[[str, Optional[AuthSession]], Awaitable[None]]


class IdentityError(Exception):
    """Base class for identity service failures."""


class IdentityNotConfiguredError(IdentityError):
    """Raised when the service URL or API key is missing."""


class IdentityTransportError(IdentityError):
    """Raised when the identity service can't be reached."""


class IdentityRejectedError(IdentityError):
    """Raised when the identity service rejects a request."""

    def __init__(
        self, message: str, status: Optional[int] = None, code: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code


class IdentityService:
    """Client for the hosted identity service, holding one session."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        session: Optional[AuthSession] = None,
    ):
        self.http = http
        self.url = (url if url is not None else settings.supabase_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.supabase_anon_key
        self._session = session
        self._handlers: list[AuthHandler] = []

    @property
    def access_token(self) -> Optional[str]:
        """Access token of the held session (None when signed out)."""
        return self._session.access_token if self._session else None

    # ─── Sessions ─────────────────────────────────────────

    async def get_session(self) -> Optional[AuthSession]:
        """Current session, refreshed first if its access token expired."""
        if self._session is None:
            return None
        if self._session.is_expired():
            return await self.refresh_session()
        return self._session

    async def refresh_session(self) -> Optional[AuthSession]:
        """Trade the refresh token for a new session.

        A rejected refresh token ends the session (SIGNED_OUT); a transport
        failure leaves it in place so the caller can try again.
        """
        if self._session is None:
            return None
        try:
            data = await self._request(
                "POST",
                "/token",
                params={"grant_type": "refresh_token"},
                json={"refresh_token": self._session.refresh_token},
            )
        except IdentityRejectedError:
            logger.warning("identity.refresh_rejected", user_id=self._session.user.id)
            self._session = None
            await self._emit(SIGNED_OUT, None)
            raise
        session = AuthSession.model_validate(data)
        await self._set_session(session, TOKEN_REFRESHED)
        return session

    async def get_user(self, access_token: Optional[str] = None) -> Identity:
        """Fetch the identity behind a token (default: the held session's)."""
        token = access_token or self.access_token
        if not token:
            raise IdentityRejectedError("No active session", status=401)
        data = await self._request("GET", "/user", access_token=token)
        return Identity.model_validate(data)

    # ─── Sign-in / sign-up ────────────────────────────────

    async def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        data = await self._request(
            "POST",
            "/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        session = AuthSession.model_validate(data)
        await self._set_session(session, SIGNED_IN)
        return session

    async def sign_up(
        self,
        email: str,
        password: str,
        metadata: Optional[dict[str, Any]] = None,
        *,
        email_redirect_to: Optional[str] = None,
    ) -> tuple[SignUpResult, Optional[str]]:
        """Register a new identity.

        Returns the result plus the PKCE verifier that the confirmation
        link's code must later be exchanged with (None without a redirect).
        """
        body: dict[str, Any] = {
            "email": email,
            "password": password,
            "data": metadata or {},
        }
        params = {}
        verifier = None
        if email_redirect_to:
            params["redirect_to"] = email_redirect_to
            verifier = generate_code_verifier()
            body["code_challenge"] = code_challenge(verifier)
            body["code_challenge_method"] = "s256"

        data = await self._request("POST", "/signup", params=params, json=body)

        # With email confirmation on, the service returns only the user
        if data.get("access_token"):
            session = AuthSession.model_validate(data)
            await self._set_session(session, SIGNED_IN)
            return SignUpResult(identity=session.user, session=session), verifier

        identity = Identity.model_validate(data.get("user") or data)
        return SignUpResult(identity=identity, session=None), verifier

    async def sign_in_with_oauth(self, provider: str, redirect_to: str) -> OAuthStart:
        """Build the provider authorize URL for a PKCE code flow.

        Learn: Nothing is sent yet — the browser follows the URL, the
        provider redirects back to `redirect_to` with ?code=..., and the
        callback route exchanges it with the verifier returned here.
        """
        self._require_config()
        verifier = generate_code_verifier()
        query = urlencode(
            {
                "provider": provider,
                "redirect_to": redirect_to,
                "code_challenge": code_challenge(verifier),
                "code_challenge_method": "s256",
            }
        )
        return OAuthStart(url=f"{self.url}/auth/v1/authorize?{query}", code_verifier=verifier)

    async def exchange_code_for_session(self, code: str, code_verifier: str) -> AuthSession:
        data = await self._request(
            "POST",
            "/token",
            params={"grant_type": "pkce"},
            json={"auth_code": code, "code_verifier": code_verifier},
        )
        session = AuthSession.model_validate(data)
        await self._set_session(session, SIGNED_IN)
        return session

    async def resend(
        self,
        email: str,
        *,
        type: str = "signup",
        email_redirect_to: Optional[str] = None,
    ) -> None:
        """Re-send a confirmation email."""
        params = {"redirect_to": email_redirect_to} if email_redirect_to else {}
        await self._request(
            "POST", "/resend", params=params, json={"type": type, "email": email}
        )

    async def sign_out(self, access_token: Optional[str] = None) -> None:
        """Revoke the session remotely and drop it locally.

        The local session is cleared and SIGNED_OUT emitted even when the
        remote call fails; the failure is then re-raised.
        """
        token = access_token or self.access_token
        self._session = None
        try:
            if token:
                try:
                    await self._request("POST", "/logout", access_token=token)
                except IdentityRejectedError as e:
                    # Already expired or revoked, nothing left to revoke
                    if e.status not in (401, 403, 404):
                        raise
        finally:
            await self._emit(SIGNED_OUT, None)

    async def health(self) -> dict:
        return await self._request("GET", "/health")

    # ─── Auth events ──────────────────────────────────────

    def on_auth_state_change(self, handler: AuthHandler) -> Callable[[], None]:
        """Register an async (event, session) handler. Returns an unsubscribe callable."""
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    async def _set_session(self, session: AuthSession, event: str) -> None:
        self._session = session
        await self._emit(event, session)

    async def _emit(self, event: str, session: Optional[AuthSession]) -> None:
        for handler in list(self._handlers):
            try:
                await handler(event, session)
            except Exception:
                logger.exception("identity.auth_handler_failed", auth_event=event)

    # ─── HTTP ─────────────────────────────────────────────

    def _require_config(self) -> None:
        if not self.url or not self.api_key:
            raise IdentityNotConfiguredError(
                "Identity service is not configured "
                "(set MICROLEARN_SUPABASE_URL and MICROLEARN_SUPABASE_ANON_KEY)"
            )

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[dict] = None,
        json: Optional[dict] = None,
        access_token: Optional[str] = None,
    ) -> dict:
        self._require_config()
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {access_token or self.api_key}",
        }
        try:
            resp = await self.http.request(
                method,
                f"{self.url}/auth/v1{path}",
                params=params,
                json=json,
                headers=headers,
            )
        except httpx.TransportError as e:
            raise IdentityTransportError(f"Identity service unreachable: {e}") from e

        if resp.status_code >= 400:
            raise _rejection(resp)
        if resp.status_code == 204 or not resp.content:
            return {}
        return resp.json()


def _rejection(resp: httpx.Response) -> IdentityRejectedError:
    """Map an error response body to IdentityRejectedError.

    The service has used several error shapes over time:
    {"error", "error_description"}, {"code", "msg"}, {"message"}.
    """
    try:
        body = resp.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    message = (
        body.get("error_description")
        or body.get("msg")
        or body.get("message")
        or body.get("error")
        or f"Identity service returned HTTP {resp.status_code}"
    )
    code = body.get("error_code") or body.get("error") or body.get("code")
    return IdentityRejectedError(
        str(message),
        status=resp.status_code,
        code=str(code) if code is not None else None,
    )
