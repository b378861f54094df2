"""Auth callback — where OAuth and email-confirmation redirects land.

Learn: This is the only place the server reconciles a profile on its
own. The browser arrives with ?code= (and our PKCE verifier cookie),
and always leaves with a redirect: to `next` on success, to the sign-in
page with ?error= when the code can't be exchanged.
"""

from typing import Optional

import structlog
from fastapi import APIRouter, Cookie, Depends, Query, Request
from fastapi.responses import RedirectResponse

from microlearn.auth.cookies import VERIFIER_COOKIE, set_session_cookies
from microlearn.auth.dependencies import get_callback_reconciler
from microlearn.auth.redirects import safe_next, signin_error_url, site_url
from microlearn.services.auth_callback import CallbackReconciler
from microlearn.services.identity_service import IdentityError

logger = structlog.get_logger()

router = APIRouter(prefix="/auth")


@router.get("/callback", name="auth_callback")
async def auth_callback(
    request: Request,
    code: Optional[str] = Query(None),
    next: Optional[str] = Query(None),
    role: Optional[str] = Query(None),
    code_verifier: Optional[str] = Cookie(None, alias=VERIFIER_COOKIE),
    reconciler: CallbackReconciler = Depends(get_callback_reconciler),
):
    target = site_url(request, safe_next(next))
    if not code:
        return RedirectResponse(target, status_code=302)

    try:
        result = await reconciler.complete(code, code_verifier or "", role_hint=role)
    except IdentityError as e:
        logger.warning("callback.code_exchange_failed", error=str(e))
        return RedirectResponse(signin_error_url(request, str(e)), status_code=302)
    except Exception:
        logger.exception("callback.unexpected_error")
        return RedirectResponse(
            signin_error_url(request, "unexpected_error"), status_code=302
        )

    response = RedirectResponse(target, status_code=302)
    set_session_cookies(response, result.session)
    response.delete_cookie(VERIFIER_COOKIE)
    return response
