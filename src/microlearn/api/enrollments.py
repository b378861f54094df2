"""Course enrollment API.

Learn: Runs under the learner's own token, so row-level security decides
who may enroll. Enrolling twice is answered with 409 and a friendly
message instead of a raw constraint error.
"""

import structlog
from fastapi import APIRouter, Depends, HTTPException

from microlearn.auth.dependencies import (
    CurrentIdentity,
    get_current_identity,
    get_enrollment_store,
)
from microlearn.schemas.enrollment import Enrollment
from microlearn.services.enrollment_store import EnrollmentStore
from microlearn.services.record_store import RecordStoreError, RecordStoreRejectedError

logger = structlog.get_logger()

router = APIRouter()


@router.post("/courses/{course_id}/enroll", response_model=Enrollment, status_code=201)
async def enroll(
    course_id: str,
    current: CurrentIdentity = Depends(get_current_identity),
    store: EnrollmentStore = Depends(get_enrollment_store),
):
    try:
        result = await store.enroll(current.user_id, course_id)
    except RecordStoreRejectedError as e:
        if e.status and e.status < 500:
            raise HTTPException(status_code=e.status, detail=e.message)
        logger.error("enrollment.failed", course_id=course_id, error=str(e))
        raise HTTPException(status_code=502, detail=str(e))
    except RecordStoreError as e:
        logger.error("enrollment.failed", course_id=course_id, error=str(e))
        raise HTTPException(status_code=502, detail=str(e))

    if result.status == "already_enrolled":
        raise HTTPException(
            status_code=409, detail="You are already enrolled in this course"
        )
    if result.enrollment is None:
        raise HTTPException(status_code=502, detail="Enrollment was not returned")
    return result.enrollment
