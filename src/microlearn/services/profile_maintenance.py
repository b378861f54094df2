"""Duplicate-profile maintenance — keep one row per identity, delete the rest.

Learn: Never run during normal resolution. It is triggered explicitly
(admin route, CLI, or the sign-in callback when it sees duplicates).
The survivor is chosen with the same tie-break the resolver uses, so
the row users have been shown is the row that stays. Deletion is one
conditional batch delete, and running it again once a single row is
left issues no delete at all. The rows are read back afterwards: more
than one survivor is an error, never a silent success.
"""

from typing import Optional

import structlog

from microlearn.config import settings
from microlearn.schemas.profile import DedupeResult
from microlearn.services.profile_resolver import Tiebreak, pick_canonical
from microlearn.services.profile_store import ProfileStore
from microlearn.services.record_store import RecordStoreError

logger = structlog.get_logger()


class ProfileMaintenance:
    def __init__(self, store: ProfileStore, *, tiebreak: Optional[Tiebreak | str] = None):
        self.store = store
        self.tiebreak = Tiebreak(tiebreak or settings.duplicate_tiebreak)

    async def dedupe(self, user_id: str) -> DedupeResult:
        rows = await self.store.list_profiles(user_id)
        if len(rows) <= 1:
            return DedupeResult(user_id=user_id, kept=rows[0] if rows else None)

        keep = pick_canonical(rows, self.tiebreak)
        deleted = await self.store.delete_duplicates(user_id, keep)
        logger.warning(
            "maintenance.duplicates_deleted",
            user_id=user_id,
            found=len(rows),
            deleted=deleted,
        )

        # Rows sharing the kept row's created_at survive the batch delete
        remaining = await self.store.list_profiles(user_id)
        if len(remaining) > 1:
            logger.error(
                "maintenance.duplicates_remaining",
                user_id=user_id,
                remaining=len(remaining),
            )
            raise RecordStoreError(
                f"{len(remaining)} profile rows remain for {user_id}; "
                "they share the kept row's created_at"
            )
        return DedupeResult(user_id=user_id, kept=keep, deleted=deleted)
