"""Profile rows in the record store.

Learn: ProfileStore is the seam the resolver and maintenance code depend
on. RestProfileStore is the real implementation; tests swap in an
in-memory one with the same three methods.
"""

from typing import Protocol

from microlearn.schemas.profile import NewProfile, Profile
from microlearn.services.record_store import RecordStore, RecordStoreError

PROFILES_TABLE = "profiles"


class ProfileStore(Protocol):
    async def list_profiles(self, user_id: str) -> list[Profile]:
        """All rows whose id matches, in store order."""
        ...

    async def create_profile(self, profile: NewProfile) -> Profile:
        ...

    async def delete_duplicates(self, user_id: str, keep: Profile) -> int:
        """Delete every row for user_id except `keep`. Returns rows deleted."""
        ...


class RestProfileStore(RecordStore):
    """ProfileStore backed by the REST gateway."""

    async def list_profiles(self, user_id: str) -> list[Profile]:
        # Explicit order so "first row" never depends on the planner
        rows = await self.select(
            PROFILES_TABLE,
            {"id": f"eq.{user_id}", "order": "created_at.asc"},
        )
        return [Profile.model_validate(row) for row in rows]

    async def create_profile(self, profile: NewProfile) -> Profile:
        rows = await self.insert(PROFILES_TABLE, profile.model_dump())
        if not rows:
            # Row-level security may hide the inserted row from the response
            return Profile.model_validate(profile.model_dump())
        return Profile.model_validate(rows[0])

    async def delete_duplicates(self, user_id: str, keep: Profile) -> int:
        """Single conditional batch delete: same id, different created_at."""
        if keep.created_at is None:
            raise RecordStoreError(
                f"Cannot separate duplicate profiles of {user_id}: "
                "kept row has no created_at"
            )
        deleted = await self.delete(
            PROFILES_TABLE,
            {
                "id": f"eq.{user_id}",
                "created_at": f"neq.{keep.created_at.isoformat()}",
            },
        )
        return len(deleted)

