"""Application configuration loaded from environment variables.

Settings for database, session credentials, guest access, rate limiting,
booking policy and outbound email. Uses pydantic-settings for validation
and .env file support.
"""

from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Known insecure default password that must not be used in production
# Security: Runtime check in check_production_security() prevents use in production
_INSECURE_DEFAULT_PASSWORD = "luxride_dev_password"  # nosec B105

# Development-only signing secret; rejected in production
_INSECURE_DEFAULT_AUTH_SECRET = "luxride-dev-secret-do-not-use-in-production"  # nosec B105

# Minimum length for AUTH_SECRET in production (256 bits = 32 bytes)
_MIN_AUTH_SECRET_LENGTH = 32


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Database
    database_host: str = "localhost"
    database_port: int = 5432
    database_name: str = "luxride_bookings"
    database_user: str = "luxride_user"
    database_password: str = _INSECURE_DEFAULT_PASSWORD
    # Every statement and pool checkout carries a short deadline
    database_command_timeout_seconds: float = 3.0
    database_pool_timeout_seconds: float = 5.0

    # API
    # 0.0.0.0 binds to all network interfaces (required for Docker containers)
    api_host: str = "0.0.0.0"  # nosec B104
    api_port: int = 8000

    # CORS (Security)
    # CRITICAL: Never set to ["*"] when allow_credentials=True
    allowed_origins: list[str] = ["http://localhost:5173"]

    # Application
    environment: str = "development"
    log_level: str = "INFO"

    # Session credentials
    auth_secret: SecretStr = SecretStr(_INSECURE_DEFAULT_AUTH_SECRET)
    auth_issuer: str = "luxride-bookings"
    auth_audience: str = "luxride-api"
    guest_session_ttl_minutes: int = 30
    access_token_ttl_minutes: int = 60
    refresh_token_ttl_days: int = 7

    # Account email verification
    email_verification_ttl_hours: int = 2

    # Guest access codes
    guest_code_ttl_minutes: int = 15
    guest_code_max_attempts: int = 5

    # Rate Limiting (Security)
    # Fixed-window counters stored in the rate_limits table.
    # rate_limit_fail_open: allow requests when the counter store is down.
    rate_limit_enabled: bool = True
    rate_limit_fail_open: bool = True
    guest_access_rate_limit: int = 5
    guest_access_rate_window_seconds: int = 900
    guest_verify_rate_limit: int = 10
    guest_verify_rate_window_seconds: int = 60
    booking_create_rate_limit: int = 20
    booking_create_rate_window_seconds: int = 3600
    login_rate_limit: int = 5
    login_rate_window_seconds: int = 900

    # Idempotency
    idempotency_ttl_hours: int = 24

    # Booking policy
    cancellation_cutoff_hours: int = 24
    max_reschedules: int = 2

    # Email
    email_from: str = "noreply@luxride.example"
    resend_api_key: SecretStr = SecretStr("")
    email_timeout_seconds: float = 5.0

    # Frontend URL (magic links point here)
    frontend_url: str = "http://localhost:5173"

    @property
    def database_url(self) -> str:
        """Async database URL for SQLAlchemy."""
        return (
            f"postgresql+asyncpg://{self.database_user}:{self.database_password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
        )

    @property
    def database_url_sync(self) -> str:
        """Sync database URL for Alembic."""
        return (
            f"postgresql://{self.database_user}:{self.database_password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
        )

    @model_validator(mode="after")
    def check_production_security(self) -> "Settings":
        """Validate security requirements.

        Checks:
        - Guest code attempt cap and TTLs must be positive (all environments)
        - Reschedule cap must not be negative
        - CORS must not use wildcard origin (incompatible with credentials)
        - Database password must not be the default in production
        - AUTH_SECRET must be set and >= 32 chars in production
        """
        if self.guest_code_max_attempts < 1:
            msg = (
                "GUEST_CODE_MAX_ATTEMPTS must be at least 1. "
                f"Got: {self.guest_code_max_attempts}"
            )
            raise ValueError(msg)
        if self.guest_code_ttl_minutes <= 0 or self.guest_session_ttl_minutes <= 0:
            msg = "Guest code and guest session TTLs must be positive."
            raise ValueError(msg)
        if self.max_reschedules < 0:
            msg = f"MAX_RESCHEDULES must not be negative. Got: {self.max_reschedules}"
            raise ValueError(msg)

        if "*" in self.allowed_origins:
            msg = (
                "ALLOWED_ORIGINS must not contain '*' (wildcard). "
                "Wildcard CORS origins are incompatible with credentials."
            )
            raise ValueError(msg)

        if self.environment == "production":
            if self.database_password == _INSECURE_DEFAULT_PASSWORD:
                msg = (
                    "Cannot use default database password in production. "
                    "Set DATABASE_PASSWORD environment variable to a secure value."
                )
                raise ValueError(msg)

            secret_value = self.auth_secret.get_secret_value()
            if not secret_value or secret_value == _INSECURE_DEFAULT_AUTH_SECRET:
                msg = (
                    "AUTH_SECRET must be set to a non-default value in production. "
                    'Generate with: python -c "import secrets; '
                    'print(secrets.token_hex(32))"'
                )
                raise ValueError(msg)
            if len(secret_value) < _MIN_AUTH_SECRET_LENGTH:
                msg = (
                    f"AUTH_SECRET must be at least {_MIN_AUTH_SECRET_LENGTH} "
                    "characters for adequate security."
                )
                raise ValueError(msg)

        return self


settings = Settings()
