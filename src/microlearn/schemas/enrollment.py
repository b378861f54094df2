"""Pydantic schemas for course enrollments."""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class Enrollment(BaseModel):
    id: str
    learner_id: str
    course_id: str
    status: Literal["active", "completed", "dropped"] = "active"
    progress_percentage: int = Field(0, ge=0, le=100)
    enrolled_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    model_config = ConfigDict(extra="ignore")


class EnrollmentResult(BaseModel):
    status: Literal["enrolled", "already_enrolled"]
    enrollment: Optional[Enrollment] = None
