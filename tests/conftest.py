"""
tests/conftest.py -- Shared fixtures for authcore tests.

This module provides:
  - clock: ManualClock pinned to 2024-12-05T12:00:00Z; tests advance it
  - keys / tokens: a RotatingKeyProvider and TokenService on that clock
  - credentials / vault: in-memory credential store and a vault with cheap
    hashing parameters (Argon2 t=1, m=8 KiB; bcrypt rounds=4)
  - limiter: threshold 5 per 60 s window
  - audit: MemoryAuditSink so tests can assert on emitted events
  - authn: a fully wired Authenticator over all of the above

Design: the real cost parameters make every hash take ~50-100 ms, which
adds up across a suite. Tests exercise the same code paths with the lowest
parameters the libraries accept.

The DEBUG env var is set before any core import so get_settings() can
auto-generate SECRET_KEY in dev mode instead of raising ValueError.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from datetime import timedelta

# CRITICAL: Set DEBUG before any core import.
os.environ.setdefault("DEBUG", "true")

import pytest

from auth.audit import MemoryAuditSink
from auth.keys import RotatingKeyProvider
from auth.memory import MemoryCredentialStore, MemoryRevocationStore, MemoryWindowStore
from auth.ratelimit import RateLimiter
from auth.service import Authenticator
from auth.tokens import TokenService
from auth.vault import CredentialVault
from core.clock import ManualClock
from tests.helpers import SECRET, START, fast_argon2, fast_bcrypt


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(START)


@pytest.fixture
def keys(clock: ManualClock) -> RotatingKeyProvider:
    return RotatingKeyProvider(SECRET, grace=timedelta(hours=1), clock=clock)


@pytest.fixture
def revocations() -> MemoryRevocationStore:
    return MemoryRevocationStore()


@pytest.fixture
def tokens(keys: RotatingKeyProvider, revocations: MemoryRevocationStore, clock: ManualClock) -> TokenService:
    return TokenService(
        keys,
        revocations,
        clock=clock,
        access_ttl=timedelta(minutes=30),
        refresh_ttl=timedelta(days=1),
    )


@pytest.fixture
def credentials() -> MemoryCredentialStore:
    return MemoryCredentialStore()


@pytest.fixture
def vault(credentials: MemoryCredentialStore, clock: ManualClock) -> CredentialVault:
    return CredentialVault(credentials, hasher=fast_argon2(), legacy_hashers=(fast_bcrypt(),), clock=clock)


@pytest.fixture
def limiter(clock: ManualClock) -> RateLimiter:
    return RateLimiter(MemoryWindowStore(), threshold=5, window=timedelta(seconds=60), clock=clock)


@pytest.fixture
def audit() -> MemoryAuditSink:
    return MemoryAuditSink()


@pytest.fixture
def authn(
    vault: CredentialVault,
    credentials: MemoryCredentialStore,
    limiter: RateLimiter,
    tokens: TokenService,
    audit: MemoryAuditSink,
    clock: ManualClock,
) -> Generator[Authenticator, None, None]:
    """Authenticator wired to in-memory stores and the manual clock."""
    authenticator = Authenticator(
        vault=vault,
        credentials=credentials,
        limiter=limiter,
        tokens=tokens,
        audit=audit,
        clock=clock,
        lookup_timeout=2.0,
    )
    yield authenticator
    authenticator.close()


@pytest.fixture
def alice(authn: Authenticator) -> Authenticator:
    """authn with alice registered as an editor holding read:users."""
    authn.register("alice", "correct-pw", roles=["editor"], scopes=["read:users"])
    return authn
