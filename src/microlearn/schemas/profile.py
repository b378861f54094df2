"""Pydantic schemas for profile rows in the record store."""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from microlearn.schemas.identity import Identity

Role = Literal["instructor", "learner"]

ROLES = ("instructor", "learner")
DEFAULT_ROLE: Role = "learner"


def normalize_role(*candidates: Optional[str]) -> Role:
    """First candidate that is a known role, else the default role."""
    for candidate in candidates:
        if candidate in ROLES:
            return candidate  # type: ignore[return-value]
    return DEFAULT_ROLE


class Profile(BaseModel):
    """Application-level user row, one expected per identity id."""

    id: str
    email: str
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None
    role: Role = DEFAULT_ROLE
    bio: Optional[str] = None
    points: int = Field(0, ge=0)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(extra="ignore")


class NewProfile(BaseModel):
    """Insert payload for a manually created profile."""

    id: str
    email: str
    full_name: str = ""
    avatar_url: Optional[str] = None
    role: Role = DEFAULT_ROLE
    points: int = 0

    @classmethod
    def from_identity(
        cls, identity: Identity, role_hint: Optional[str] = None
    ) -> "NewProfile":
        """Build the insert payload from identity metadata.

        The role stored at sign-up wins over the hint carried on the
        redirect; the hint only matters for brand-new OAuth identities.
        """
        return cls(
            id=identity.id,
            email=identity.email or "",
            full_name=identity.full_name,
            avatar_url=identity.avatar_url,
            role=normalize_role(identity.role_hint, role_hint),
            points=0,
        )


class DedupeResult(BaseModel):
    """Outcome of a duplicate-profile cleanup for one user."""

    user_id: str
    kept: Optional[Profile] = None
    deleted: int = 0
