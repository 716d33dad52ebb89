"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for the library backend happen here. No module
should call os.getenv() or os.environ.get() directly -- import get_settings()
instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. jwt_key -> JWT_KEY). Type coercion and validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. A missing signing key, issuer or audience
      is a hard startup failure -- there is no auto-generated fallback key.

Security notes:
  JWT_KEY shorter than 32 chars is rejected outright. HS512 signing relies on
  key entropy -- a short key weakens every issued session token.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
from functools import lru_cache
from pathlib import Path

import pydantic
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.errors import ConfigurationError

logger = logging.getLogger("library.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'library_identity.db'}"

_MIN_KEY_LENGTH = 32


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    The three JWT fields default to the empty string so the validator can
    report every missing value in one message instead of pydantic's generic
    "field required" error.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Token signing
    # ------------------------------------------------------------------

    jwt_key: str = ""
    jwt_issuer: str = ""
    jwt_audience: str = ""

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Two-factor enrollment
    # ------------------------------------------------------------------

    # Label shown by authenticator apps next to the account email.
    totp_issuer: str = "Library online app"

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------

    log_level: str = "INFO"

    @model_validator(mode="after")
    def validate_jwt_settings(self) -> "Settings":
        """Refuse to start without a complete token signing configuration."""
        missing = [
            name.upper() for name in ("jwt_key", "jwt_issuer", "jwt_audience") if not getattr(self, name).strip()
        ]
        if missing:
            raise ValueError(f"Missing required settings: {', '.join(missing)}. Set them in the environment or .env.")
        if len(self.jwt_key) < _MIN_KEY_LENGTH:
            raise ValueError(f"JWT_KEY must be at least {_MIN_KEY_LENGTH} characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Raises ConfigurationError when the environment is incomplete. Callers at
    startup (API lifespan, CLI) let it propagate so the process never serves
    requests with a broken signing setup.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    try:
        return Settings()
    except pydantic.ValidationError as exc:
        logger.error("Configuration rejected: %s", exc.errors()[0].get("msg", "invalid settings"))
        raise ConfigurationError(str(exc)) from exc
