"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Tokenward happen here. No module should
call os.getenv() or os.environ.get() directly.

Design patterns used:
  Immutable value object: Settings is a frozen pydantic model. It is built
      once at a process entry point (api/main.py lifespan, main.py CLI) and
      passed into every component constructor. Nothing writes to it after
      construction, so request handlers share it without locking.

  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call. Only entry points call it; library code receives the instance.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY).

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. JWT signing and
       the HMAC token hashes both rely on key entropy.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import re
import secrets
from datetime import timedelta
from functools import lru_cache
from typing import Literal

from pydantic import Field, ValidationInfo, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("tokenward.config")

_DURATION_RE = re.compile(r"^\s*(\d+)\s*([smhd])\s*$")
_DURATION_UNITS = {"s": "seconds", "m": "minutes", "h": "hours", "d": "days"}


def parse_duration(value: str) -> timedelta:
    """Convert a lifetime string such as "30m", "1h" or "7d" to a timedelta.

    Raises ValueError for anything else, including zero-length lifetimes.
    """
    match = _DURATION_RE.match(value or "")
    if match is None:
        raise ValueError(f"Invalid duration {value!r}; expected <int><s|m|h|d>, e.g. '30m' or '7d'.")
    amount, unit = int(match.group(1)), match.group(2)
    if amount <= 0:
        raise ValueError(f"Duration must be positive, got {value!r}.")
    return timedelta(**{_DURATION_UNITS[unit]: amount})


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults (except SECRET_KEY outside debug mode) so
    Settings(secret_key=...) can be instantiated in tests without a .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    # debug must be declared before secret_key: the secret_key validator
    # reads the already-validated debug flag from info.data.
    debug: bool = False
    secret_key: str = Field(default="", validate_default=True)
    log_level: str = "INFO"
    database_url: str = "sqlite:///tokenward.db"

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    token_issuer: str = "tokenward"
    access_token_ttl: str = "30m"
    refresh_token_ttl: str = "7d"
    # "rotate": a refresh call revokes the presented token's session.
    # "reuse":  the presented token stays valid next to the new pair.
    refresh_rotation: Literal["rotate", "reuse"] = "rotate"

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("secret_key")
    @classmethod
    def validate_secret_key(cls, value: str, info: ValidationInfo) -> str:
        """Enforce SECRET_KEY policy [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Issued tokens will not survive a restart.

        Production mode: refuse to start if SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters [M6].
        """
        if not value:
            if info.data.get("debug"):
                logger.warning("Using auto-generated SECRET_KEY. Issued tokens will not survive a restart.")
                return secrets.token_hex(32)
            raise ValueError(
                "SECRET_KEY is required in production mode. "
                "Set SECRET_KEY in your environment or .env file. "
                "To run in development mode, set DEBUG=true."
            )
        if len(value) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return value

    @field_validator("access_token_ttl", "refresh_token_ttl")
    @classmethod
    def validate_ttl(cls, value: str) -> str:
        parse_duration(value)
        return value.strip()

    @model_validator(mode="after")
    def validate_token_lifetimes(self) -> "Settings":
        """An access token must always expire before the refresh token issued with it."""
        if parse_duration(self.access_token_ttl) >= parse_duration(self.refresh_token_ttl):
            raise ValueError(
                f"ACCESS_TOKEN_TTL ({self.access_token_ttl}) must be shorter than "
                f"REFRESH_TOKEN_TTL ({self.refresh_token_ttl})."
            )
        return self

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def access_token_lifetime(self) -> timedelta:
        return parse_duration(self.access_token_ttl)

    @property
    def refresh_token_lifetime(self) -> timedelta:
        return parse_duration(self.refresh_token_ttl)


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide Settings instance.

    Call this from entry points only and pass the result down. In tests,
    construct Settings(...) directly or call get_settings.cache_clear()
    after changing environment variables.
    """
    return Settings()
