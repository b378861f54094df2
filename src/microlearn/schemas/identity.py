"""Pydantic schemas for identities and sessions issued by the identity service.

Learn: The identity service owns these objects — we only ever read them.
Unknown fields in its JSON are ignored so that new service releases
don't break parsing.
"""

import time
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class Identity(BaseModel):
    """The authenticated principal (the identity service's "user" object)."""

    id: str
    email: Optional[str] = None
    user_metadata: dict[str, Any] = Field(default_factory=dict)
    app_metadata: dict[str, Any] = Field(default_factory=dict)
    email_confirmed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(extra="ignore")

    @property
    def full_name(self) -> str:
        # OAuth providers put the display name under "name"
        meta = self.user_metadata
        return meta.get("full_name") or meta.get("name") or ""

    @property
    def role_hint(self) -> Optional[str]:
        return self.user_metadata.get("role")

    @property
    def avatar_url(self) -> Optional[str]:
        return self.user_metadata.get("avatar_url")

    @property
    def is_email_confirmed(self) -> bool:
        return self.email_confirmed_at is not None


class AuthSession(BaseModel):
    """Access/refresh token pair plus the identity it was issued for."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: Optional[int] = None
    expires_at: Optional[int] = None
    user: Identity

    model_config = ConfigDict(extra="ignore")

    def is_expired(self, leeway: int = 10) -> bool:
        """True if the access token expires within `leeway` seconds."""
        if self.expires_at is None:
            return False
        return self.expires_at - leeway <= int(time.time())


class SignUpResult(BaseModel):
    """Outcome of a sign-up.

    `session` is None when the service requires email confirmation first.
    """

    identity: Identity
    session: Optional[AuthSession] = None

    @property
    def confirmation_required(self) -> bool:
        return self.session is None


class OAuthStart(BaseModel):
    """Authorize URL to redirect the browser to, plus the PKCE verifier to keep."""

    url: str
    code_verifier: str
