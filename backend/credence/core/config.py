"""Application configuration loaded from environment variables.

Settings for database, token signing, verification codes, password policy,
rate limiting, federated login, and outbound email. Uses pydantic-settings
for validation and .env file support.
"""

from typing import Literal

from limits import parse
from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Known insecure default password that must not be used in production
# Security: Runtime check in check_production_security() prevents use in production
_INSECURE_DEFAULT_PASSWORD = "credence_dev_password"  # nosec B105

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
    database_name: str = "credence"
    database_user: str = "credence_user"
    database_password: str = _INSECURE_DEFAULT_PASSWORD

    # API
    # 0.0.0.0 binds to all network interfaces (required for Docker containers)
    api_host: str = "0.0.0.0"  # nosec B104
    api_port: int = 8000
    allowed_origins: list[str] = ["http://localhost:3000"]

    # Application
    environment: str = "development"
    log_level: str = "INFO"

    # Token signing (access/refresh pairs)
    auth_secret: SecretStr = SecretStr("")
    auth_issuer: str = "credence"
    auth_audience: str = "credence-app"
    access_token_ttl_minutes: int = 15
    refresh_token_ttl_days: int = 7

    # Verification codes (email OTP, password reset)
    verification_code_length: int = 6
    email_verification_ttl_minutes: int = 15
    password_reset_ttl_minutes: int = 15
    verification_max_issues_per_hour: int = 5

    # Password policy
    password_min_length: int = 8
    password_max_length: int = 128
    password_breach_check_remote: bool = False

    # Federated login (Firebase ID tokens)
    federated_provider: Literal["firebase", "disabled"] = "disabled"
    firebase_project_id: str = ""

    # Email delivery via Resend
    email_from: str = "noreply@credence.local"
    resend_api_key: SecretStr = SecretStr("")

    # Rate Limiting (Security)
    # Format: "count/period" (e.g., "5/15minute", "3/hour")
    rate_limit_enabled: bool = True  # Disable for testing
    # limits storage URI; "redis://host:6379" shares counters across instances
    rate_limit_storage_uri: str = "memory://"
    rate_limit_login: str = "5/15minute"
    rate_limit_register: str = "3/hour"
    rate_limit_otp: str = "5/hour"
    rate_limit_otp_verify: str = "10/15minute"
    rate_limit_password_reset: str = "3/hour"
    rate_limit_refresh: str = "30/minute"
    rate_limit_default: str = "100/15minute"

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

    @property
    def rate_limit_rules(self) -> dict[str, str]:
        """Per-action rate limit rule strings, keyed by action name."""
        return {
            "login": self.rate_limit_login,
            "register": self.rate_limit_register,
            "otp": self.rate_limit_otp,
            "otp_verify": self.rate_limit_otp_verify,
            "password_reset": self.rate_limit_password_reset,
            "refresh": self.rate_limit_refresh,
        }

    @model_validator(mode="after")
    def check_production_security(self) -> "Settings":
        """Validate security requirements.

        Checks:
        - Access token TTL must be shorter than refresh token TTL (all environments)
        - Verification code length must be between 4 and 12 (all environments)
        - Rate limit rules must parse (all environments)
        - Database password must not be the default in production
        - AUTH_SECRET must be set and >= 32 chars in production
        - Federated login requires FIREBASE_PROJECT_ID (all environments)
        """
        if self.access_token_ttl_minutes <= 0 or self.refresh_token_ttl_days <= 0:
            msg = "Token TTLs must be positive."
            raise ValueError(msg)
        if self.access_token_ttl_minutes >= self.refresh_token_ttl_days * 24 * 60:
            msg = (
                "ACCESS_TOKEN_TTL_MINUTES must be shorter than REFRESH_TOKEN_TTL_DAYS. "
                f"Got: {self.access_token_ttl_minutes} minutes vs "
                f"{self.refresh_token_ttl_days} days"
            )
            raise ValueError(msg)

        if not 4 <= self.verification_code_length <= 12:
            msg = (
                "VERIFICATION_CODE_LENGTH must be between 4 and 12. "
                f"Got: {self.verification_code_length}"
            )
            raise ValueError(msg)

        for rule in (*self.rate_limit_rules.values(), self.rate_limit_default):
            try:
                parse(rule)
            except ValueError as exc:
                msg = f"Invalid rate limit rule: {rule!r}"
                raise ValueError(msg) from exc

        if self.federated_provider == "firebase" and not self.firebase_project_id:
            msg = "FIREBASE_PROJECT_ID must be set when FEDERATED_PROVIDER=firebase."
            raise ValueError(msg)

        if self.environment == "production":
            if self.database_password == _INSECURE_DEFAULT_PASSWORD:
                msg = (
                    "Cannot use default database password in production. "
                    "Set DATABASE_PASSWORD environment variable to a secure value."
                )
                raise ValueError(msg)

            secret_value = self.auth_secret.get_secret_value()
            if not secret_value:
                msg = (
                    "AUTH_SECRET must be set in production. "
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
