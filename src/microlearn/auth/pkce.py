"""PKCE helpers for the OAuth / email-link code flow.

Learn: PKCE (RFC 7636) binds the one-time code in the redirect to the
browser that started the flow. We keep a random verifier in a cookie,
send only its SHA-256 challenge to the identity service, and present the
verifier again when exchanging the code for a session.
"""

import base64
import hashlib
import secrets


def generate_code_verifier() -> str:
    """Random 64-char verifier from the URL-safe alphabet."""
    return secrets.token_urlsafe(48)


def code_challenge(verifier: str) -> str:
    """S256 challenge: base64url(sha256(verifier)) without padding."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
