"""Auth cookies set by the redirect routes.

Learn: The access token is short-lived and the refresh token long-lived;
both are httponly so page scripts never see them. The PKCE verifier only
has to survive the round trip to the provider and back.
"""

from fastapi import Response

from microlearn.config import settings
from microlearn.schemas.identity import AuthSession

ACCESS_COOKIE = "microlearn-access-token"
REFRESH_COOKIE = "microlearn-refresh-token"
VERIFIER_COOKIE = "microlearn-code-verifier"

VERIFIER_MAX_AGE = 600  # 10 minutes
REFRESH_MAX_AGE = 60 * 60 * 24 * 30  # 30 days


def _secure() -> bool:
    return settings.environment != "development"


def set_session_cookies(response: Response, session: AuthSession) -> None:
    response.set_cookie(
        ACCESS_COOKIE,
        session.access_token,
        max_age=session.expires_in,
        httponly=True,
        secure=_secure(),
        samesite="lax",
    )
    response.set_cookie(
        REFRESH_COOKIE,
        session.refresh_token,
        max_age=REFRESH_MAX_AGE,
        httponly=True,
        secure=_secure(),
        samesite="lax",
    )


def clear_session_cookies(response: Response) -> None:
    response.delete_cookie(ACCESS_COOKIE)
    response.delete_cookie(REFRESH_COOKIE)


def set_verifier_cookie(response: Response, verifier: str) -> None:
    response.set_cookie(
        VERIFIER_COOKIE,
        verifier,
        max_age=VERIFIER_MAX_AGE,
        httponly=True,
        secure=_secure(),
        samesite="lax",
    )
