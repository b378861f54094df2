"""Maintenance API — inspect and de-duplicate profile rows.

Learn: Duplicate cleanup is never part of a normal sign-in. These routes
are the explicit trigger, guarded by the admin API key and running with
the service role key (so row-level security doesn't hide rows).
"""

import structlog
from fastapi import APIRouter, Depends, HTTPException

from microlearn.auth.dependencies import get_service_profile_store
from microlearn.schemas.profile import DedupeResult, Profile
from microlearn.services.profile_maintenance import ProfileMaintenance
from microlearn.services.profile_store import RestProfileStore
from microlearn.services.record_store import RecordStoreError

logger = structlog.get_logger()

router = APIRouter(prefix="/admin")


@router.get("/profiles/{user_id}", response_model=list[Profile])
async def list_profiles(
    user_id: str,
    store: RestProfileStore = Depends(get_service_profile_store),
):
    """All profile rows stored for one identity (normally exactly one)."""
    try:
        return await store.list_profiles(user_id)
    except RecordStoreError as e:
        raise HTTPException(status_code=502, detail=str(e))


@router.post("/profiles/{user_id}/dedupe", response_model=DedupeResult)
async def dedupe_profiles(
    user_id: str,
    store: RestProfileStore = Depends(get_service_profile_store),
):
    """Keep the canonical profile row and delete the others."""
    try:
        return await ProfileMaintenance(store).dedupe(user_id)
    except RecordStoreError as e:
        logger.error("maintenance.dedupe_failed", user_id=user_id, error=str(e))
        raise HTTPException(status_code=502, detail=str(e))
