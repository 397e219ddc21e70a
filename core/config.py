"""
core/config.py -- Environment-driven settings for the identity service.

Every tunable (token lifetimes, bcrypt cost, SMTP, provider endpoint) is a
field on Settings; pydantic-settings maps each field to the upper-cased env var
of the same name and reads .env as a fallback. get_settings() caches one
instance per process. Nothing else in the tree reads os.environ.

The settings object is handed to factories (AuthService.from_settings,
SmtpMailer.from_settings); auth/ never imports this module.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. It keys HS256
       signing for every access token.

  [M7] Outside debug mode a missing SECRET_KEY is a hard startup failure. A
       random per-process key would silently invalidate every session on
       restart.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("arena.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'arena_identity.db'}"


class Settings(BaseSettings):
    """Identity service settings. Every field has a default, so tests need no .env."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    database_url: str = _DEFAULT_DB_URL
    log_level: str = "INFO"

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    access_token_expire_seconds: int = Field(default=24 * 60 * 60, gt=0)
    refresh_token_expire_days: int = Field(default=7, gt=0)
    secure_cookies: bool = False
    # Minimum gap between two last_seen writes for the same account.
    last_seen_update_seconds: int = Field(default=60, ge=0)

    # ------------------------------------------------------------------
    # Hashing cost (bcrypt log2 rounds, 4..31)
    # ------------------------------------------------------------------

    password_bcrypt_rounds: int = Field(default=12, ge=4, le=31)
    otp_bcrypt_rounds: int = Field(default=10, ge=4, le=31)

    # ------------------------------------------------------------------
    # Second factor
    # ------------------------------------------------------------------

    otp_expire_minutes: int = Field(default=10, gt=0)
    # False keeps earlier unconsumed codes usable until they expire; True marks
    # them consumed whenever a new code is issued.
    otp_invalidate_previous: bool = False

    # ------------------------------------------------------------------
    # Outbound mail (empty smtp_host means "not configured")
    # ------------------------------------------------------------------

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    mail_from: str = ""
    mail_from_name: str = "Arena Auth"

    # ------------------------------------------------------------------
    # External identity provider
    # ------------------------------------------------------------------

    google_userinfo_url: str = "https://www.googleapis.com/oauth2/v3/userinfo"
    provider_timeout_seconds: float = Field(default=10.0, gt=0)

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
        Production mode: refuse to start if SECRET_KEY is missing.
        Both modes: reject keys shorter than 32 characters [M6].
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("WARNING: Using auto-generated SECRET_KEY. Sessions will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
