"""Application configuration via environment variables.

Uses pydantic-settings to load config from env vars with MICROLEARN_ prefix.
No YAML files, no file-based config — just env vars (12-factor app style).

Learn: The hosted auth/database service is addressed by a project URL plus
an anon (public) key. The service role key bypasses row-level security and
is only used by the duplicate-profile maintenance path.
"""

from pydantic import model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All app configuration. Set via MICROLEARN_* env vars."""

    # Hosted identity service + record store
    supabase_url: str = ""
    supabase_anon_key: str = ""
    supabase_service_role_key: str = ""

    # Access token verification (the identity service signs with this secret)
    jwt_secret: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    jwt_audience: str = "authenticated"

    # Front end that post-login redirects point at (empty = same origin)
    site_url: str = ""
    default_redirect_path: str = "/dashboard"

    # Redis (rate limiting)
    redis_url: str = "redis://localhost:6379/0"

    # Maintenance endpoints
    admin_api_key: str = ""

    # Profile reconciliation policy
    profile_retry_attempts: int = 3
    profile_retry_delay_seconds: float = 1.0
    callback_grace_seconds: float = 1.5
    duplicate_tiebreak: str = "earliest_created"  # or "retrieval_order"

    # Server
    environment: str = "development"
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 8000
    http_timeout_seconds: float = 10.0

    # CORS
    cors_origins: list[str] = [
        "http://localhost:3000",
    ]

    # Rate limiting
    rate_limit_rpm: int = 100  # requests per minute per IP
    rate_limit_auth_rpm: int = 10  # stricter limit for sign-in/sign-up/resend

    model_config = {"env_prefix": "MICROLEARN_"}

    @property
    def is_configured(self) -> bool:
        """True when the identity service URL and anon key are both set."""
        return bool(self.supabase_url and self.supabase_anon_key)

    @model_validator(mode="after")
    def validate_production_settings(self):
        """Ensure sensitive defaults are changed in non-development environments."""
        if (
            self.environment != "development"
            and self.jwt_secret == "change-me-in-production"
        ):
            raise ValueError(
                "MICROLEARN_JWT_SECRET must be set to the identity service's "
                "JWT secret in non-development environments."
            )
        if self.duplicate_tiebreak not in ("earliest_created", "retrieval_order"):
            raise ValueError(
                "MICROLEARN_DUPLICATE_TIEBREAK must be 'earliest_created' "
                "or 'retrieval_order'"
            )
        return self


# Singleton: import this everywhere
settings = Settings()
