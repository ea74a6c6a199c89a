"""
auth/vault.py -- Credential Vault: password hashing, verification, storage.

Security design decisions:
  Algorithm: Argon2id (argon2-cffi) is the configured default. It is
       memory-hard, so GPU/ASIC brute force costs memory as well as time.
       Cost parameters (time_cost, memory_cost, parallelism) come from
       Settings.

  Legacy: bcrypt stays registered as a verifier so records written with it
       keep working. Every record carries its algorithm tag; needs_upgrade()
       flags records not on the configured algorithm and upgrade() writes a
       new record version. Records are never rewritten in place.

  Constant time: both libraries compare digests in constant time internally.
       verify() never compares hash strings itself.

  Salts: each hash call draws a fresh random salt inside the library, so
       hashing the same password twice gives different strings.

  Timing equalization [C1]: dummy_verify() runs a full verification against
       a throwaway hash so a login for an unknown identity costs the same as
       a wrong password.

Layer rule: no imports from auth/service.py or auth/tokens.py.
"""

from __future__ import annotations

import logging
from functools import cached_property
from typing import TYPE_CHECKING

import bcrypt
from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerificationError

from auth.models import CredentialHash, CredentialRecord, Grants
from core.clock import SystemClock
from core.errors import WeakPassword

if TYPE_CHECKING:
    from auth.ports import Clock, CredentialStore
    from core.config import Settings

logger = logging.getLogger("authcore.vault")

MIN_PASSWORD_LENGTH = 8

ARGON2ID = "argon2id"
BCRYPT = "bcrypt"


# ---------------------------------------------------------------------------
# Hashers -- one per algorithm tag
# ---------------------------------------------------------------------------


class Argon2Hasher:
    algorithm = ARGON2ID

    def __init__(self, time_cost: int = 3, memory_cost: int = 65536, parallelism: int = 4) -> None:
        self._hasher = PasswordHasher(
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
            type=Type.ID,
        )

    def hash(self, plain: str) -> CredentialHash:
        encoded = self._hasher.hash(plain)
        # $argon2id$v=19$m=...,t=...,p=...$<salt>$<digest>
        salt = encoded.split("$")[4]
        return CredentialHash(password_hash=encoded, salt=salt, algorithm=self.algorithm)

    def verify(self, plain: str, password_hash: str) -> bool:
        try:
            return self._hasher.verify(password_hash, plain)
        except (VerificationError, InvalidHash):
            return False


class BcryptHasher:
    """bcrypt, used directly rather than through passlib.

    Passwords longer than 72 bytes are rejected by bcrypt 4.x+ with
    ValueError; hash() lets that propagate, verify() reports False.
    """

    algorithm = BCRYPT

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds

    def hash(self, plain: str) -> CredentialHash:
        encoded = bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")
        # $2b$<cost>$<22-char salt><31-char digest>
        return CredentialHash(password_hash=encoded, salt=encoded[:29], algorithm=self.algorithm)

    def verify(self, plain: str, password_hash: str) -> bool:
        try:
            return bcrypt.checkpw(plain.encode("utf-8"), password_hash.encode("utf-8"))
        except (ValueError, TypeError):
            return False


def check_password_strength(plain: str) -> None:
    """Raise WeakPassword unless the password is >= 8 chars and not purely numeric."""
    if not isinstance(plain, str) or len(plain) < MIN_PASSWORD_LENGTH:
        raise WeakPassword()
    if plain.isdigit():
        raise WeakPassword()


# ---------------------------------------------------------------------------
# Vault
# ---------------------------------------------------------------------------


class CredentialVault:
    """Owns credential records. Nothing outside the vault sees a password hash.

    Usage:
        vault = CredentialVault(store, hasher=Argon2Hasher())
        vault.store("alice", "correct-horse")
        record = store.get_credential("alice")
        vault.verify("correct-horse", record)   # True
    """

    def __init__(
        self,
        store: CredentialStore,
        hasher: Argon2Hasher | BcryptHasher | None = None,
        legacy_hashers: tuple = (),
        clock: Clock | None = None,
    ) -> None:
        self._store = store
        self._hasher = hasher or Argon2Hasher()
        self._clock = clock or SystemClock()
        self._hashers = {h.algorithm: h for h in legacy_hashers}
        self._hashers[self._hasher.algorithm] = self._hasher

    @classmethod
    def from_settings(cls, settings: Settings, store: CredentialStore, clock: Clock | None = None) -> CredentialVault:
        argon2 = Argon2Hasher(
            time_cost=settings.argon2_time_cost,
            memory_cost=settings.argon2_memory_cost,
            parallelism=settings.argon2_parallelism,
        )
        legacy = BcryptHasher(rounds=settings.bcrypt_rounds)
        if settings.password_algorithm == BCRYPT:
            return cls(store, hasher=legacy, legacy_hashers=(argon2,), clock=clock)
        return cls(store, hasher=argon2, legacy_hashers=(legacy,), clock=clock)

    @property
    def algorithm(self) -> str:
        return self._hasher.algorithm

    def hash_password(self, plain: str) -> CredentialHash:
        """Hash with the configured algorithm and a fresh salt."""
        return self._hasher.hash(plain)

    def verify(self, plain: str, stored: CredentialHash | CredentialRecord) -> bool:
        """Return True if ``plain`` matches ``stored``.

        Dispatches on the stored algorithm tag. An unknown tag verifies as
        False rather than raising -- a corrupt record must not look like an
        outage.
        """
        hasher = self._hashers.get(stored.algorithm)
        if hasher is None:
            logger.warning("Unknown password algorithm %r on stored credential", stored.algorithm)
            return False
        return hasher.verify(plain, stored.password_hash)

    @cached_property
    def _dummy_hash(self) -> CredentialHash:
        return self._hasher.hash("authcore_timing_dummy")

    def dummy_verify(self, plain: str) -> None:
        """Burn one verification's worth of work. Used when the identity is unknown [C1]."""
        self._hasher.verify(plain, self._dummy_hash.password_hash)

    def store(self, identity_key: str, plain: str, grants: Grants | None = None) -> CredentialRecord:
        """Create and persist the first credential for ``identity_key``.

        ``grants`` are written in the same store call as the record.

        Raises WeakPassword before any hashing work, DuplicateIdentity if the
        store already holds a record, StorageUnavailable if the store fails.
        """
        check_password_strength(plain)
        hashed = self.hash_password(plain)
        record = CredentialRecord(
            identity_key=identity_key,
            password_hash=hashed.password_hash,
            salt=hashed.salt,
            algorithm=hashed.algorithm,
            created_at=self._clock.now(),
            version=1,
        )
        self._store.put_credential(record, grants)
        logger.info("Stored credential for %s (algorithm=%s)", identity_key, record.algorithm)
        return record

    def needs_upgrade(self, record: CredentialRecord) -> bool:
        return record.algorithm != self._hasher.algorithm

    def upgrade(self, record: CredentialRecord, plain: str) -> CredentialRecord | None:
        """Write ``record.version + 1`` hashed with the configured algorithm.

        Call only after ``plain`` has been verified against ``record``.
        Returns None when a concurrent upgrade already wrote that version.
        """
        hashed = self.hash_password(plain)
        upgraded = CredentialRecord(
            identity_key=record.identity_key,
            password_hash=hashed.password_hash,
            salt=hashed.salt,
            algorithm=hashed.algorithm,
            created_at=self._clock.now(),
            version=record.version + 1,
        )
        if not self._store.add_credential_version(upgraded):
            return None
        logger.info(
            "Migrated credential for %s from %s to %s (version %d)",
            record.identity_key,
            record.algorithm,
            upgraded.algorithm,
            upgraded.version,
        )
        return upgraded
