"""Session reconciler — the observable {identity, profile, is_loading} state.

Learn: One SessionReconciler is owned per client session (no module
globals). It listens to the identity service's auth events and walks a
small state machine:

  initializing ──► unauthenticated
       │               ▲
       ▼               │ sign-out / no session / session read failed
  resolving_profile ───┤
       ├─► ready(identity, profile)
       └─► degraded(identity, error)     # authenticated, no usable profile

Every resolution is stamped with a generation number when it starts.
Its result is applied only if no newer event (another sign-in, a
sign-out) has happened meanwhile, so a slow lookup for a stale identity
can never overwrite the current state.
"""

import enum
from dataclasses import dataclass
from typing import Callable, Optional

import structlog

from microlearn.events.types import (
    AUTH_EVENTS,
    INITIAL_SESSION,
    SIGNED_OUT,
    TOKEN_REFRESHED,
)
from microlearn.schemas.identity import AuthSession, Identity
from microlearn.schemas.profile import Profile
from microlearn.schemas.session import SessionSnapshot
from microlearn.services.identity_service import IdentityError, IdentityService
from microlearn.services.profile_resolver import ProfileResolver

logger = structlog.get_logger()


class AuthStatus(str, enum.Enum):
    INITIALIZING = "initializing"
    UNAUTHENTICATED = "unauthenticated"
    RESOLVING_PROFILE = "resolving_profile"
    READY = "ready"
    DEGRADED = "degraded"


@dataclass(frozen=True)
class AuthState:
    status: AuthStatus
    identity: Optional[Identity] = None
    profile: Optional[Profile] = None
    error: Optional[str] = None

    @property
    def is_loading(self) -> bool:
        return self.status in (AuthStatus.INITIALIZING, AuthStatus.RESOLVING_PROFILE)

    @classmethod
    def initializing(cls) -> "AuthState":
        return cls(AuthStatus.INITIALIZING)

    @classmethod
    def unauthenticated(cls) -> "AuthState":
        return cls(AuthStatus.UNAUTHENTICATED)

    @classmethod
    def resolving(cls, identity: Identity) -> "AuthState":
        return cls(AuthStatus.RESOLVING_PROFILE, identity=identity)

    @classmethod
    def ready(cls, identity: Identity, profile: Profile) -> "AuthState":
        return cls(AuthStatus.READY, identity=identity, profile=profile)

    @classmethod
    def degraded(cls, identity: Identity, error: str) -> "AuthState":
        return cls(AuthStatus.DEGRADED, identity=identity, error=error)

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            status=self.status.value,
            identity=self.identity,
            profile=self.profile,
            is_loading=self.is_loading,
            error=self.error,
        )


Listener = Callable[[AuthState], None]


class SessionReconciler:
    """Owns the auth state for one client session.

    Usage:
        async with SessionReconciler(identity, resolver) as session:
            await identity.sign_in_with_password(email, password)
            session.snapshot()
    """

    def __init__(self, identity: IdentityService, resolver: ProfileResolver):
        self.identity = identity
        self.resolver = resolver
        self._state = AuthState.initializing()
        self._generation = 0
        self._listeners: list[Listener] = []
        self._unsubscribe: Optional[Callable[[], None]] = None

    # ─── Lifecycle ────────────────────────────────────────

    async def start(self) -> None:
        """Subscribe to auth events and resolve the current session."""
        if self._unsubscribe is None:
            self._unsubscribe = self.identity.on_auth_state_change(self._on_auth_event)
        await self.refresh()

    async def close(self) -> None:
        """Stop listening. Results of in-flight resolutions are dropped."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._generation += 1
        self._listeners.clear()

    async def __aenter__(self) -> "SessionReconciler":
        await self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    # ─── Observable state ─────────────────────────────────

    @property
    def state(self) -> AuthState:
        return self._state

    def snapshot(self) -> SessionSnapshot:
        return self._state.snapshot()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call `listener(state)` on every transition. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ─── Transitions ──────────────────────────────────────

    async def refresh(self) -> None:
        """Re-read the session from the identity service and resolve it."""
        generation = self._next_generation()
        try:
            session = await self.identity.get_session()
        except IdentityError as e:
            logger.warning("reconciler.session_read_failed", error=str(e))
            self._apply(generation, AuthState.unauthenticated())
            return
        logger.info(
            "reconciler.auth_event",
            auth_event=INITIAL_SESSION,
            user_id=session.user.id if session else None,
        )
        await self._reconcile(generation, session)

    async def sign_out(self) -> None:
        """Sign out remotely; locally always ends in unauthenticated."""
        try:
            await self.identity.sign_out()
        except IdentityError as e:
            logger.warning("reconciler.sign_out_failed", error=str(e))
        self._next_generation()
        # The identity service usually announced SIGNED_OUT already
        if self._state.status != AuthStatus.UNAUTHENTICATED:
            self._set(AuthState.unauthenticated())

    async def _on_auth_event(self, event: str, session: Optional[AuthSession]) -> None:
        if event not in AUTH_EVENTS:
            logger.warning("reconciler.unknown_auth_event", auth_event=event)
            return
        logger.info(
            "reconciler.auth_event",
            auth_event=event,
            user_id=session.user.id if session else None,
        )
        if event == SIGNED_OUT:
            self._next_generation()
            self._set(AuthState.unauthenticated())
            return

        # A token refresh for the identity we already resolved changes nothing
        if (
            event == TOKEN_REFRESHED
            and session is not None
            and self._state.status == AuthStatus.READY
            and self._state.identity is not None
            and self._state.identity.id == session.user.id
        ):
            return

        await self._reconcile(self._next_generation(), session)

    async def _reconcile(self, generation: int, session: Optional[AuthSession]) -> None:
        if session is None:
            logger.info("reconciler.session_missing")
            self._apply(generation, AuthState.unauthenticated())
            return

        identity = session.user
        if not self._apply(generation, AuthState.resolving(identity)):
            return

        try:
            resolution = await self.resolver.resolve(identity)
        except Exception as e:
            logger.exception("reconciler.resolution_crashed", user_id=identity.id)
            self._apply(generation, AuthState.degraded(identity, str(e)))
            return

        if resolution.profile is not None:
            self._apply(generation, AuthState.ready(identity, resolution.profile))
        else:
            error = str(resolution.error) if resolution.error else "Profile unavailable"
            self._apply(generation, AuthState.degraded(identity, error))

    def _next_generation(self) -> int:
        self._generation += 1
        return self._generation

    def _apply(self, generation: int, state: AuthState) -> bool:
        """Set `state` unless a newer transition superseded this one."""
        if generation != self._generation:
            logger.info(
                "reconciler.stale_result_dropped",
                generation=generation,
                current=self._generation,
                status=state.status.value,
            )
            return False
        self._set(state)
        return True

    def _set(self, state: AuthState) -> None:
        self._state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("reconciler.listener_failed", status=state.status.value)
