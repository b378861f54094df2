"""What the session reconciler publishes to its consumers."""

from typing import Optional

from pydantic import BaseModel

from microlearn.schemas.identity import Identity
from microlearn.schemas.profile import Profile


class SessionSnapshot(BaseModel):
    """Consumers must read profile=None as "not ready", never as "guest"."""

    status: str
    identity: Optional[Identity] = None
    profile: Optional[Profile] = None
    is_loading: bool = False
    error: Optional[str] = None
