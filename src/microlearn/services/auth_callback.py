"""One-shot reconciliation for the sign-in / email-confirmation redirect.

Learn: OAuth sign-ins and email confirmation links come back to the
server with a one-time ?code=. Within that single request we:

1. exchange the code (plus the PKCE verifier) for a session
2. wait a short grace period for the sign-up trigger to create the profile
3. read once; create the profile if it's missing (the role hint from the
   redirect applies only here), clean up if there are duplicates

A failed code exchange is the only error the caller sees — it decides
where the browser goes. Profile problems are logged and the redirect
still happens; the client-side reconciler retries on the next page load.
"""

from dataclasses import dataclass
from typing import Optional

import structlog

from microlearn.schemas.identity import AuthSession
from microlearn.schemas.profile import DedupeResult
from microlearn.services.identity_service import IdentityService
from microlearn.services.profile_maintenance import ProfileMaintenance
from microlearn.services.profile_resolver import (
    ProfileResolver,
    Resolution,
    ResolutionOutcome,
    Tiebreak,
)
from microlearn.services.profile_store import ProfileStore
from microlearn.services.record_store import RecordStoreError
from microlearn.services.retry import RetryPolicy

logger = structlog.get_logger()


@dataclass
class CallbackResult:
    session: AuthSession
    resolution: Resolution
    dedupe: Optional[DedupeResult] = None


class CallbackReconciler:
    def __init__(
        self,
        identity: IdentityService,
        store: ProfileStore,
        *,
        policy: Optional[RetryPolicy] = None,
        tiebreak: Optional[Tiebreak | str] = None,
    ):
        self.identity = identity
        self.resolver = ProfileResolver(
            store, policy or RetryPolicy.callback_from_settings(), tiebreak=tiebreak
        )
        self.maintenance = ProfileMaintenance(store, tiebreak=tiebreak)

    async def complete(
        self, code: str, code_verifier: str, *, role_hint: Optional[str] = None
    ) -> CallbackResult:
        """Exchange the code and reconcile the profile.

        Raises IdentityError if the exchange fails.
        """
        session = await self.identity.exchange_code_for_session(code, code_verifier)
        user = session.user
        logger.info("callback.code_exchanged", user_id=user.id)

        resolution = await self.resolver.resolve(user, role_hint=role_hint)
        if resolution.outcome == ResolutionOutcome.FAILED:
            logger.error(
                "callback.profile_unresolved",
                user_id=user.id,
                error=str(resolution.error),
            )

        dedupe = None
        if resolution.outcome == ResolutionOutcome.DUPLICATES:
            try:
                dedupe = await self.maintenance.dedupe(user.id)
            except RecordStoreError as e:
                logger.error("callback.dedupe_failed", user_id=user.id, error=str(e))

        if user.is_email_confirmed:
            logger.info("callback.email_confirmed", user_id=user.id)

        return CallbackResult(session=session, resolution=resolution, dedupe=dedupe)
