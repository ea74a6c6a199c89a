"""
auth/keys.py -- Signing-key provider with rotation.

Tokens are signed with the *current* key and carry its id in the JWT "kid"
header. Verification looks the kid up: the current key always matches, a
retired key matches only until retired_at + grace. After that, tokens signed
with it fail as InvalidSignature.

Key ids default to a short SHA-256 fingerprint of the secret so the same
secret maps to the same kid across restarts and processes without any
shared state.

Secrets shorter than 32 characters are refused [M6].
"""

from __future__ import annotations

import hashlib
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from core.clock import SystemClock
from core.config import MIN_SECRET_LENGTH

if TYPE_CHECKING:
    from auth.ports import Clock
    from core.config import Settings

logger = logging.getLogger("authcore.keys")


def key_id_for(secret: str) -> str:
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()[:16]


@dataclass(frozen=True)
class SigningKey:
    kid: str
    secret: str
    retired_at: datetime | None = None

    def __repr__(self) -> str:
        # Never print the secret.
        return f"SigningKey(kid={self.kid!r}, retired_at={self.retired_at!r})"


def _make_key(secret: str, kid: str | None = None, retired_at: datetime | None = None) -> SigningKey:
    if len(secret) < MIN_SECRET_LENGTH:
        raise ValueError(f"Signing secrets must be at least {MIN_SECRET_LENGTH} characters.")
    return SigningKey(kid=kid or key_id_for(secret), secret=secret, retired_at=retired_at)


class RotatingKeyProvider:
    """Holds the current signing key plus retired keys still inside their grace period.

    Usage:
        keys = RotatingKeyProvider(settings.secret_key, grace=timedelta(days=1))
        keys.rotate(new_secret)      # old key still verifies for one day
    """

    def __init__(
        self,
        secret: str,
        *,
        kid: str | None = None,
        grace: timedelta = timedelta(days=1),
        clock: Clock | None = None,
        previous: tuple[str, ...] = (),
        retired_at: datetime | None = None,
    ) -> None:
        self._clock = clock or SystemClock()
        self._grace = grace
        self._lock = threading.Lock()
        self._current = _make_key(secret, kid)
        # Without a recorded rotation time, previous keys retire at startup and
        # every restart opens a fresh grace period for them.
        retired_at = retired_at or self._clock.now()
        self._retired: dict[str, SigningKey] = {}
        for old in previous:
            key = _make_key(old, retired_at=retired_at)
            if key.kid != self._current.kid:
                self._retired[key.kid] = key

    @classmethod
    def from_settings(cls, settings: Settings, clock: Clock | None = None) -> RotatingKeyProvider:
        return cls(
            settings.secret_key,
            grace=timedelta(seconds=settings.key_rotation_grace_seconds),
            clock=clock,
            previous=tuple(settings.previous_secret_keys),
            retired_at=settings.key_rotated_at,
        )

    def signing_key(self) -> SigningKey:
        with self._lock:
            return self._current

    def verification_key(self, kid: str) -> SigningKey | None:
        """Return the key for ``kid`` if it is current or still within its grace period."""
        with self._lock:
            if kid == self._current.kid:
                return self._current
            key = self._retired.get(kid)
        if key is None:
            return None
        if self._clock.now() >= key.retired_at + self._grace:
            return None
        return key

    def rotate(self, new_secret: str, kid: str | None = None) -> SigningKey:
        """Make ``new_secret`` current; the old key enters its grace period now."""
        new_key = _make_key(new_secret, kid)
        now = self._clock.now()
        with self._lock:
            old = self._current
            if new_key.kid == old.kid:
                raise ValueError("Rotation requires a different key")
            self._retired[old.kid] = SigningKey(kid=old.kid, secret=old.secret, retired_at=now)
            self._current = new_key
            # Drop keys whose grace has fully elapsed.
            self._retired = {k: v for k, v in self._retired.items() if now < v.retired_at + self._grace}
        logger.info("Rotated signing key %s -> %s", old.kid, new_key.kid)
        return new_key
