"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for authcore happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead,
or better, receive the Settings instance from api.main.create_app().

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. token_ttl_hours -> TOKEN_TTL_HOURS).

  @model_validator(mode="after"): DEBUG-conditional SECRET_KEY logic. Dev mode
      generates a key with a warning; production mode refuses to start without
      one.

Security notes:
  SECRET_KEY shorter than 32 chars is rejected outright. JWT signing relies on
  key entropy -- a short key weakens every token the process issues.

  The key is loaded once and never rotated at runtime. Changing it invalidates
  every outstanding token.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("authcore.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'authcore.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. Tests usually pass overrides as
    keyword arguments: Settings(debug=True, argon2_memory_cost=1024).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    environment: str = "development"
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = Field(default="", validation_alias=AliasChoices("secret_key", "SECRET_KEY", "JWT_SECRET"))
    api_prefix: str = "/api/v1"

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    token_ttl_hours: float = 24

    # ------------------------------------------------------------------
    # Login guard
    # ------------------------------------------------------------------

    login_max_attempts: int = 5
    login_lockout_secs: int = 300

    # ------------------------------------------------------------------
    # Password reset (OTP)
    # ------------------------------------------------------------------

    otp_limit_per_hour: int = 5
    otp_min_interval_secs: int = 60
    otp_expiry_minutes: int = 10
    otp_digits: int = Field(default=6, ge=4, le=10)

    # ------------------------------------------------------------------
    # Rate limiting (IP keyed)
    # ------------------------------------------------------------------

    enable_rate_limiting: bool = True
    rate_limit_general_requests: int = 100
    rate_limit_general_window_minutes: float = 1
    rate_limit_auth_requests: int = 5
    rate_limit_auth_window_minutes: float = 5

    # ------------------------------------------------------------------
    # Password policy and hashing cost
    # ------------------------------------------------------------------

    password_min_length: int = 8
    password_max_length: int = 128
    argon2_time_cost: int = 3
    argon2_memory_cost: int = 65536  # KiB
    argon2_parallelism: int = 4

    # ------------------------------------------------------------------
    # Persistence and email
    # ------------------------------------------------------------------

    database_url: str = _DEFAULT_DB_URL
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_from: str = ""
    smtp_timeout_secs: float = 10

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    enable_security_headers: bool = True
    cors_allowed_origins: str = ""

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def is_production(self) -> bool:
        return self.environment.strip().lower() == "production"

    @property
    def token_ttl_seconds(self) -> int:
        return int(self.token_ttl_hours * 3600)

    @property
    def general_window_secs(self) -> int:
        return max(1, int(self.rate_limit_general_window_minutes * 60))

    @property
    def auth_window_secs(self) -> int:
        return max(1, int(self.rate_limit_auth_window_minutes * 60))

    @property
    def smtp_configured(self) -> bool:
        return bool(self.smtp_host and self.smtp_from)

    @property
    def cors_origins(self) -> list[str]:
        return [o.strip() for o in self.cors_allowed_origins.split(",") if o.strip()]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Tokens will not survive a restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. Tokens will not survive restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        if self.password_min_length > self.password_max_length:
            raise ValueError("PASSWORD_MIN_LENGTH must not exceed PASSWORD_MAX_LENGTH.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: construct Settings(...) directly and hand it to create_app(),
    or call get_settings.cache_clear() after changing the environment.
    """
    return Settings()
