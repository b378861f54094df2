"""Profile resolver — converge an identity to exactly one profile row.

Learn: The database trigger that creates a profile on sign-up races with
our own create-if-missing fallback, so for a given identity we observe
zero, one, or several rows. Resolution:

  read rows (retrying per RetryPolicy while the read fails or is empty)
    ├─ read still failing → FAILED
    ├─ still zero rows    → create one from identity metadata
    │                         ├─ created           → CREATED
    │                         ├─ unique violation  → re-read once, settle
    │                         └─ other failure     → FAILED
    ├─ one row            → FOUND
    └─ several rows       → DUPLICATES (canonical row picked, nothing deleted)

Deleting the extra rows is ProfileMaintenance's job, never this one's.
"""

import enum
from dataclasses import dataclass, field
from typing import Optional

import structlog

from microlearn.config import settings
from microlearn.schemas.identity import Identity
from microlearn.schemas.profile import NewProfile, Profile
from microlearn.services.profile_store import ProfileStore
from microlearn.services.record_store import RecordStoreError, UniqueViolationError
from microlearn.services.retry import RetryPolicy

logger = structlog.get_logger()


class Tiebreak(str, enum.Enum):
    """How the canonical row is chosen among duplicates."""

    EARLIEST_CREATED = "earliest_created"
    RETRIEVAL_ORDER = "retrieval_order"


def pick_canonical(rows: list[Profile], tiebreak: Tiebreak) -> Profile:
    """Choose the surviving row. Rows without created_at sort last."""
    if not rows:
        raise ValueError("pick_canonical needs at least one row")
    if tiebreak == Tiebreak.RETRIEVAL_ORDER:
        return rows[0]
    # min() keeps the earliest index on ties, so store order breaks them
    return min(
        rows,
        key=lambda row: (
            row.created_at is None,
            row.created_at.timestamp() if row.created_at else 0.0,
        ),
    )


class ResolutionOutcome(str, enum.Enum):
    FOUND = "found"
    CREATED = "created"
    DUPLICATES = "duplicates"
    FAILED = "failed"


@dataclass
class Resolution:
    outcome: ResolutionOutcome
    profile: Optional[Profile] = None
    rows: list[Profile] = field(default_factory=list)
    attempts: int = 0
    error: Optional[Exception] = None

    @property
    def created(self) -> bool:
        return self.outcome == ResolutionOutcome.CREATED


class ProfileResolver:
    """Runs one resolution per call; holds no per-identity state."""

    def __init__(
        self,
        store: ProfileStore,
        policy: Optional[RetryPolicy] = None,
        *,
        tiebreak: Optional[Tiebreak | str] = None,
    ):
        self.store = store
        self.policy = policy or RetryPolicy.from_settings()
        self.tiebreak = Tiebreak(tiebreak or settings.duplicate_tiebreak)

    async def resolve(
        self, identity: Identity, *, role_hint: Optional[str] = None
    ) -> Resolution:
        """Resolve the canonical profile for an identity.

        `role_hint` only matters if a brand-new profile has to be created.
        """
        rows, error, attempts = await self._read_with_retries(identity.id)

        if error is not None:
            logger.error(
                "resolver.profile_lookup_exhausted",
                user_id=identity.id,
                attempts=attempts,
                error=str(error),
            )
            return Resolution(ResolutionOutcome.FAILED, attempts=attempts, error=error)

        if not rows:
            return await self._create(identity, role_hint, attempts)

        return self._settle(identity.id, rows, attempts)

    async def _read_with_retries(
        self, user_id: str
    ) -> tuple[list[Profile], Optional[RecordStoreError], int]:
        rows: list[Profile] = []
        error: Optional[RecordStoreError] = None
        attempt = 0
        async for attempt in self.policy.attempts():
            try:
                rows = await self.store.list_profiles(user_id)
            except RecordStoreError as e:
                error = e
                logger.warning(
                    "resolver.profile_lookup_failed",
                    user_id=user_id,
                    attempt=attempt,
                    error=str(e),
                )
                continue
            error = None
            if rows:
                break
            logger.info("resolver.profile_missing", user_id=user_id, attempt=attempt)
        return rows, error, attempt

    async def _create(
        self, identity: Identity, role_hint: Optional[str], attempts: int
    ) -> Resolution:
        new_profile = NewProfile.from_identity(identity, role_hint)
        logger.warning(
            "resolver.creating_profile",
            user_id=identity.id,
            role=new_profile.role,
            attempts=attempts,
        )
        try:
            profile = await self.store.create_profile(new_profile)
        except UniqueViolationError:
            # The trigger got there between our last read and the insert
            logger.info("resolver.profile_created_concurrently", user_id=identity.id)
            try:
                rows = await self.store.list_profiles(identity.id)
            except RecordStoreError as e:
                return Resolution(ResolutionOutcome.FAILED, attempts=attempts, error=e)
            if not rows:
                return Resolution(
                    ResolutionOutcome.FAILED,
                    attempts=attempts,
                    error=RecordStoreError(
                        f"Profile for {identity.id} exists but is not readable"
                    ),
                )
            return self._settle(identity.id, rows, attempts)
        except RecordStoreError as e:
            logger.error(
                "resolver.profile_create_failed", user_id=identity.id, error=str(e)
            )
            return Resolution(ResolutionOutcome.FAILED, attempts=attempts, error=e)

        logger.info("resolver.profile_created", user_id=identity.id)
        return Resolution(
            ResolutionOutcome.CREATED, profile=profile, rows=[profile], attempts=attempts
        )

    def _settle(self, user_id: str, rows: list[Profile], attempts: int) -> Resolution:
        if len(rows) == 1:
            return Resolution(
                ResolutionOutcome.FOUND, profile=rows[0], rows=rows, attempts=attempts
            )
        canonical = pick_canonical(rows, self.tiebreak)
        logger.warning(
            "resolver.duplicate_profiles",
            user_id=user_id,
            count=len(rows),
            tiebreak=self.tiebreak.value,
        )
        return Resolution(
            ResolutionOutcome.DUPLICATES, profile=canonical, rows=rows, attempts=attempts
        )
