"""Access token verification.

Learn: The identity service signs access tokens with the project's JWT
secret (HS256). Verifying them locally means protected routes don't need
a round trip per request. The token carries everything we need:
- sub: the identity id
- email, user_metadata, app_metadata: enough to build an Identity
- aud: "authenticated" for signed-in users
"""

import jwt

from microlearn.config import settings


class TokenError(Exception):
    """Raised when token verification fails."""


def verify_token(token: str) -> dict:
    """Verify and decode an access token.

    Returns the payload dict on success.
    Raises TokenError on failure.
    """
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
        )
    except jwt.ExpiredSignatureError:
        raise TokenError("Token has expired")
    except jwt.InvalidTokenError as e:
        raise TokenError(f"Invalid token: {e}")
    if not payload.get("sub"):
        raise TokenError("Invalid token: missing subject")
    return payload
