"""
core/config.py -- Gatehouse settings, read once from the environment and .env.

Only this module touches the environment. Everything else calls
get_settings(), which builds Settings on first use and caches it.

Env var names are the upper-cased field names (SESSION_EXPIRE_DAYS,
POSTMARK_API_TOKEN, ...). Startup fails fast on a configuration that cannot
work: production without Postmark credentials, or lifetimes too short to use.

Layer rule: core/ imports nothing from api/, web/, auth/ or mail/.
"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("gatehouse.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'gatehouse.db'}"


class Settings(BaseSettings):
    """Every tunable of the app. All fields default; DEBUG=true is enough to run."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    database_url: str = _DEFAULT_DB_URL
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    # Where successful sign-in / password reset lands the browser.
    default_redirect_url: str = "/"
    # Scheme + host used in emailed links. Empty string means "derive from
    # the incoming request".
    public_base_url: str = ""

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    session_cookie_name: str = "session"
    session_expire_days: int = 30

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    reset_token_expire_seconds: int = 2 * 60 * 60
    purge_interval_seconds: int = 60 * 60

    # ------------------------------------------------------------------
    # Email (Postmark)
    # ------------------------------------------------------------------

    postmark_api_token: str = ""
    postmark_default_from: str = ""
    postmark_api_url: str = "https://api.postmarkapp.com/email"
    email_timeout_seconds: int = 10

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    forgot_password_rate_limit: str = "5/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @property
    def email_enabled(self) -> bool:
        """True when Postmark credentials are configured."""
        return bool(self.postmark_api_token and self.postmark_default_from)

    @model_validator(mode="after")
    def validate_email_settings(self) -> "Settings":
        """Require Postmark outside debug mode; bound the lifetimes.

        Without Postmark no reset link can be delivered, so production refuses
        to start. Debug mode logs a warning and uses the console email client.
        """
        if not self.email_enabled:
            if not self.debug:
                raise ValueError(
                    "POSTMARK_API_TOKEN and POSTMARK_DEFAULT_FROM must be set unless DEBUG=true. "
                    "Put them in the environment or in .env."
                )
            logger.warning("Postmark is not configured; emails will be logged instead of sent.")
        if self.session_expire_days < 1:
            raise ValueError("SESSION_EXPIRE_DAYS must be at least 1.")
        if self.reset_token_expire_seconds < 60:
            raise ValueError("RESET_TOKEN_EXPIRE_SECONDS must be at least 60.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Cached Settings. Tests call get_settings.cache_clear() after changing env vars."""
    return Settings()
