"""Course enrollments in the record store.

Learn: The enrollments table has a unique (learner_id, course_id)
constraint. Enrolling twice is not an error from the learner's point of
view, so a unique violation comes back as "already_enrolled" rather than
an exception.
"""

import structlog

from microlearn.schemas.enrollment import Enrollment, EnrollmentResult
from microlearn.services.record_store import RecordStore, UniqueViolationError

logger = structlog.get_logger()

ENROLLMENTS_TABLE = "enrollments"


class EnrollmentStore(RecordStore):
    async def enroll(self, learner_id: str, course_id: str) -> EnrollmentResult:
        try:
            rows = await self.insert(
                ENROLLMENTS_TABLE,
                {"learner_id": learner_id, "course_id": course_id},
            )
        except UniqueViolationError:
            logger.info(
                "enrollment.already_enrolled",
                learner_id=learner_id,
                course_id=course_id,
            )
            return EnrollmentResult(status="already_enrolled")

        enrollment = Enrollment.model_validate(rows[0]) if rows else None
        return EnrollmentResult(status="enrolled", enrollment=enrollment)
