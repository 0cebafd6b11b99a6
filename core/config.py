"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Keyward happen here. No module should
call os.getenv() or os.environ.get() directly. The application edge (asgi.py)
calls get_settings() and hands the result to api.main.create_app(); the auth
core never reads settings itself, it receives what it needs by constructor.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY).

  @model_validator(mode="after"): Enforces the SECRET_KEY policy once all
      fields are resolved. The session cookie is signed with this key, so a
      missing key is a startup failure, not a runtime one.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure raised as ConfigurationError. pydantic only wraps
       ValueError/AssertionError raised from validators, so ConfigurationError
       reaches the caller unchanged.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("keyward.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'keyward.db'}"

# User columns the store allows a field-existence probe on. Secrets never appear here.
_PROBEABLE_USER_FIELDS = frozenset({"username", "email"})


class ConfigurationError(Exception):
    """Fatal misconfiguration detected at startup. Never caught by the app."""


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file (with DEBUG=true). The
    model_validator enforces production-safety rules at startup.
    """

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

    # ------------------------------------------------------------------
    # Session cookie policy (passed through to SessionMiddleware as-is)
    # ------------------------------------------------------------------

    session_cookie: str = "keyward_session"
    session_max_age: int = 24 * 3600
    same_site: str = "lax"
    secure_cookies: bool = False
    session_purge_interval: int = 6 * 3600

    # ------------------------------------------------------------------
    # User routes
    # ------------------------------------------------------------------

    # Columns a client may probe through POST /user/field-exists.
    user_field_options: list[str] = ["username", "email"]
    # The temp-password route returns a plaintext credential in its body.
    # Leave off unless the route sits behind a trusted delivery channel.
    expose_temp_password_route: bool = False

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Sessions will not survive restart -- acceptable for local dev.

        Production mode: refuse to start if SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters [M6].
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. Sessions will not persist across restarts.")
            else:
                raise ConfigurationError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ConfigurationError("SECRET_KEY must be at least 32 characters.")
        return self

    @model_validator(mode="after")
    def validate_user_field_options(self) -> "Settings":
        """Refuse to start with a field-exists key the user store cannot probe."""
        unknown = sorted(set(self.user_field_options) - _PROBEABLE_USER_FIELDS)
        if unknown:
            raise ConfigurationError(
                f"USER_FIELD_OPTIONS may only name {sorted(_PROBEABLE_USER_FIELDS)}; got {unknown}."
            )
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables, or build Settings(...) directly.
    """
    return Settings()
