"""Shared constants and cheap hasher factories for the test suite."""

from __future__ import annotations

from datetime import datetime, timezone

from auth.vault import Argon2Hasher, BcryptHasher

SECRET = "test-signing-secret-0123456789abcdef"
OTHER_SECRET = "another-signing-secret-fedcba9876543210"

START = datetime(2024, 12, 5, 12, 0, tzinfo=timezone.utc)


def fast_argon2() -> Argon2Hasher:
    """Lowest cost parameters argon2-cffi accepts."""
    return Argon2Hasher(time_cost=1, memory_cost=8, parallelism=1)


def fast_bcrypt() -> BcryptHasher:
    return BcryptHasher(rounds=4)
