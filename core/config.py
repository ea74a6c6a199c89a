"""
core/config.py -- Centralized configuration for the auth core via pydantic-settings.

All environment variable reads happen here. No module should call os.getenv()
or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved. Dev mode generates a signing key with a warning, production
      mode refuses to start without one.

Security notes:
  [M6] Signing secrets shorter than 32 chars are rejected outright. HS256
       signing relies on key entropy -- a short key weakens every token.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure.

Layer rule: core/ is the kernel. This module may not import from auth/.
"""

import logging
import secrets
from datetime import datetime
from functools import lru_cache
from typing import Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("authcore.config")

MIN_SECRET_LENGTH = 32


class Settings(BaseSettings):
    """Auth core settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file (with DEBUG=true).
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
    # Empty string is the sentinel for "not configured".
    secret_key: str = ""
    database_url: str = "sqlite:///authcore.db"

    # ------------------------------------------------------------------
    # Signing keys
    # ------------------------------------------------------------------

    # Secrets retired by the last rotation. Accepted for verification only,
    # for key_rotation_grace_seconds after key_rotated_at. JSON list in the
    # env var. Leave key_rotated_at unset and the grace period restarts with
    # every process start, so a key listed here stays valid until removed.
    previous_secret_keys: list[str] = Field(default_factory=list)
    key_rotation_grace_seconds: int = 86400
    key_rotated_at: Optional[datetime] = None  # ISO 8601, timezone-aware

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    access_token_ttl_seconds: int = 30 * 60
    refresh_token_ttl_seconds: int = 24 * 60 * 60

    # ------------------------------------------------------------------
    # Password hashing
    # ------------------------------------------------------------------

    password_algorithm: str = "argon2id"  # "argon2id" or "bcrypt"
    argon2_time_cost: int = 3
    argon2_memory_cost: int = 65536  # KiB
    argon2_parallelism: int = 4
    bcrypt_rounds: int = 12

    # ------------------------------------------------------------------
    # Login throttling
    # ------------------------------------------------------------------

    login_attempt_threshold: int = 5
    login_window_seconds: int = 60
    credential_lookup_timeout_seconds: float = 2.0

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Tokens will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters [M6], including
            any previous key still accepted for verification.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("WARNING: Using auto-generated SECRET_KEY. " "Tokens will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        for key in [self.secret_key, *self.previous_secret_keys]:
            if len(key) < MIN_SECRET_LENGTH:
                raise ValueError(f"Signing secrets must be at least {MIN_SECRET_LENGTH} characters.")
        return self

    @model_validator(mode="after")
    def validate_limits(self) -> "Settings":
        """Reject non-positive lifetimes and thresholds.

        A zero TTL would issue tokens whose expiry equals their issue time,
        which are dead on arrival.
        """
        positive = {
            "access_token_ttl_seconds": self.access_token_ttl_seconds,
            "refresh_token_ttl_seconds": self.refresh_token_ttl_seconds,
            "login_attempt_threshold": self.login_attempt_threshold,
            "login_window_seconds": self.login_window_seconds,
            "credential_lookup_timeout_seconds": self.credential_lookup_timeout_seconds,
        }
        for name, value in positive.items():
            if value <= 0:
                raise ValueError(f"{name} must be positive, got {value!r}")
        if self.key_rotation_grace_seconds < 0:
            raise ValueError("key_rotation_grace_seconds must not be negative")
        if self.key_rotated_at is not None and self.key_rotated_at.tzinfo is None:
            raise ValueError("key_rotated_at must include a timezone offset")
        if self.password_algorithm not in ("argon2id", "bcrypt"):
            raise ValueError(f"Unsupported password_algorithm: {self.password_algorithm!r}")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
