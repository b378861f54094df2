"""Auth API — sign-in, sign-up, OAuth start, confirmation, sign-out.

Learn: Routes for the browser-facing half of authentication. The
identity service does the real work; these routes translate its answers
into HTTP responses and cookies:
- POST /auth/signin → email/password → session cookies + tokens
- POST /auth/signup → new identity (maybe pending email confirmation)
- GET /auth/oauth/:provider → 302 to the provider (PKCE verifier cookie)
- POST /auth/resend → re-send the confirmation email
- GET /auth/confirm → has the current identity confirmed its email?
- POST /auth/signout → always clears cookies
- GET /auth/me → identity + resolved profile
"""

from typing import Literal, Optional
from urllib.parse import urlencode

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, Field

from microlearn.auth.cookies import (
    clear_session_cookies,
    set_session_cookies,
    set_verifier_cookie,
)
from microlearn.auth.dependencies import (
    CurrentIdentity,
    get_access_token,
    get_current_identity,
    get_identity_service,
    get_profile_resolver,
)
from microlearn.auth.redirects import VERIFY_EMAIL_PATH, safe_next
from microlearn.schemas.identity import AuthSession
from microlearn.schemas.profile import Role
from microlearn.schemas.session import SessionSnapshot
from microlearn.services.identity_service import (
    IdentityError,
    IdentityNotConfiguredError,
    IdentityRejectedError,
    IdentityService,
)
from microlearn.services.profile_resolver import ProfileResolver
from microlearn.services.session_reconciler import AuthState

logger = structlog.get_logger()

router = APIRouter(prefix="/auth")


# ─── Schemas ─────────────────────────────────────────────


class SignInRequest(BaseModel):
    email: str
    password: str = Field(min_length=1)


class SignUpRequest(BaseModel):
    email: str
    password: str = Field(min_length=6)
    full_name: str = ""
    role: Role = "learner"


class ResendRequest(BaseModel):
    email: str


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_at: Optional[int] = None
    user_id: str

    @classmethod
    def from_session(cls, session: AuthSession) -> "TokenResponse":
        return cls(
            access_token=session.access_token,
            refresh_token=session.refresh_token,
            token_type=session.token_type,
            expires_at=session.expires_at,
            user_id=session.user.id,
        )


class SignUpResponse(BaseModel):
    status: Literal["confirmation_required", "signed_in"]
    user_id: str
    next: str
    tokens: Optional[TokenResponse] = None


class ConfirmResponse(BaseModel):
    status: Literal["success", "pending", "error"]
    message: str


def _http_error(e: IdentityError, rejected_status: int = 400) -> HTTPException:
    """Map identity service failures to HTTP errors.

    Learn: Rejections carry a user-facing message (shown as-is);
    rate limits keep their 429; transport trouble is a 502.
    """
    if isinstance(e, IdentityNotConfiguredError):
        return HTTPException(status_code=503, detail=str(e))
    if isinstance(e, IdentityRejectedError):
        status = 429 if e.status == 429 else rejected_status
        return HTTPException(status_code=status, detail=e.message)
    return HTTPException(status_code=502, detail=str(e))


def _callback_url(request: Request, **query: str) -> str:
    url = str(request.url_for("auth_callback"))
    if query:
        url = f"{url}?{urlencode(query)}"
    return url


# ─── Sign-in ─────────────────────────────────────────────


@router.post("/signin", response_model=TokenResponse)
async def sign_in(
    body: SignInRequest,
    response: Response,
    identity: IdentityService = Depends(get_identity_service),
):
    """Email/password sign-in → session cookies + tokens."""
    try:
        session = await identity.sign_in_with_password(body.email, body.password)
    except IdentityError as e:
        logger.info("auth.signin_failed", email=body.email, error=str(e))
        raise _http_error(e, rejected_status=401)

    set_session_cookies(response, session)
    return TokenResponse.from_session(session)


# ─── Sign-up ─────────────────────────────────────────────


@router.post("/signup", response_model=SignUpResponse, status_code=201)
async def sign_up(
    body: SignUpRequest,
    request: Request,
    response: Response,
    identity: IdentityService = Depends(get_identity_service),
):
    """Create an identity. The role is stored as signup metadata.

    Learn: If the project requires email confirmation the service returns
    no session; the browser goes to the verify-email page and the
    confirmation link later lands on /auth/callback with a code.
    """
    next_path = safe_next(None)
    try:
        result, verifier = await identity.sign_up(
            body.email,
            body.password,
            {"full_name": body.full_name, "role": body.role},
            email_redirect_to=_callback_url(request, next=next_path),
        )
    except IdentityError as e:
        logger.info("auth.signup_failed", email=body.email, error=str(e))
        raise _http_error(e)

    if verifier:
        set_verifier_cookie(response, verifier)

    if result.confirmation_required:
        return SignUpResponse(
            status="confirmation_required",
            user_id=result.identity.id,
            next=VERIFY_EMAIL_PATH,
        )

    set_session_cookies(response, result.session)
    return SignUpResponse(
        status="signed_in",
        user_id=result.identity.id,
        next=next_path,
        tokens=TokenResponse.from_session(result.session),
    )


# ─── OAuth ───────────────────────────────────────────────


@router.get("/oauth/{provider}")
async def oauth_start(
    provider: str,
    request: Request,
    role: Optional[Role] = Query(None),
    next: Optional[str] = Query(None),
    identity: IdentityService = Depends(get_identity_service),
):
    """Redirect to the OAuth provider; it comes back to /auth/callback."""
    query = {"next": safe_next(next)}
    if role:
        query["role"] = role
    try:
        start = await identity.sign_in_with_oauth(
            provider, _callback_url(request, **query)
        )
    except IdentityError as e:
        raise _http_error(e)

    redirect = RedirectResponse(start.url, status_code=302)
    set_verifier_cookie(redirect, start.code_verifier)
    return redirect


# ─── Email confirmation ──────────────────────────────────


@router.post("/resend")
async def resend_confirmation(
    body: ResendRequest,
    request: Request,
    identity: IdentityService = Depends(get_identity_service),
):
    """Re-send the sign-up confirmation email."""
    try:
        await identity.resend(
            body.email,
            email_redirect_to=_callback_url(request, next=safe_next(None)),
        )
    except IdentityError as e:
        raise _http_error(e)
    return {"status": "sent"}


@router.get("/confirm", response_model=ConfirmResponse)
async def confirm_status(
    token: Optional[str] = Depends(get_access_token),
    identity: IdentityService = Depends(get_identity_service),
):
    """Report whether the signed-in identity has confirmed its email."""
    if not token:
        return ConfirmResponse(
            status="error", message="No active session found. Please sign in again."
        )
    try:
        user = await identity.get_user(token)
    except IdentityError as e:
        logger.warning("auth.confirm_check_failed", error=str(e))
        return ConfirmResponse(status="error", message="Failed to verify session")

    if user.is_email_confirmed:
        return ConfirmResponse(status="success", message="Email confirmed successfully!")
    return ConfirmResponse(
        status="pending",
        message=(
            "Email verification is still pending. Please check your email "
            "and click the confirmation link."
        ),
    )


# ─── Sign-out ────────────────────────────────────────────


@router.post("/signout")
async def sign_out(
    response: Response,
    token: Optional[str] = Depends(get_access_token),
    identity: IdentityService = Depends(get_identity_service),
):
    """Revoke the session. Cookies are cleared even if revocation fails."""
    if token:
        try:
            await identity.sign_out(access_token=token)
        except IdentityError as e:
            logger.warning("auth.signout_failed", error=str(e))
    clear_session_cookies(response)
    return {"signed_out": True}


# ─── Current identity ────────────────────────────────────


@router.get("/me", response_model=SessionSnapshot)
async def get_me(
    current: CurrentIdentity = Depends(get_current_identity),
    resolver: ProfileResolver = Depends(get_profile_resolver),
):
    """Identity plus its reconciled profile.

    Learn: status is "ready" with a profile, or "degraded" when no usable
    profile could be resolved. The user is still signed in either way.
    """
    identity = current.to_identity()
    resolution = await resolver.resolve(identity)
    if resolution.profile is not None:
        state = AuthState.ready(identity, resolution.profile)
    else:
        error = str(resolution.error) if resolution.error else "Profile unavailable"
        state = AuthState.degraded(identity, error)
    return state.snapshot()
