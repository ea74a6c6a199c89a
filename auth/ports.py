"""Ports describing the collaborators the auth core consumes."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Protocol

from auth.models import AuditEventKind, CredentialRecord, Grants, RateLimitWindow


class Clock(Protocol):
    def now(self) -> datetime:
        """Return the current time as a timezone-aware UTC datetime."""


class CredentialStore(Protocol):
    """Persistence collaborator for credential records and token grants.

    Implementations raise core.errors.StorageUnavailable when the backing
    store fails, and core.errors.DuplicateIdentity from put_credential when
    the identity already has a record. Uniqueness must be enforced atomically.
    """

    def get_credential(self, identity_key: str) -> CredentialRecord | None:
        """Return the newest record version for ``identity_key``, or None."""

    def put_credential(self, record: CredentialRecord, grants: Grants | None = None) -> None:
        """Insert the first record for an identity, and its grants, as one write.

        Either both land or neither does.
        """

    def add_credential_version(self, record: CredentialRecord) -> bool:
        """Insert ``record`` as a new version. False if that version already exists."""

    def get_grants(self, identity_key: str) -> Grants:
        """Return the roles/scopes for ``identity_key`` (empty when none are set)."""

    def set_grants(self, identity_key: str, grants: Grants) -> None:
        """Replace the roles/scopes for ``identity_key``."""


class RevocationStore(Protocol):
    """Shared set of revoked token ids."""

    def add(self, token_id: str, expires_at: datetime) -> bool:
        """Insert ``token_id``. Return True only if it was not already present.

        A repeat insert keeps the later of the stored and new ``expires_at``;
        an entry's purge deadline never moves earlier.
        """

    def contains(self, token_id: str) -> bool:
        """Return True if ``token_id`` has been revoked."""

    def purge_expired(self, now: datetime) -> int:
        """Drop entries whose token expired before ``now``. Return rows removed."""


class WindowStore(Protocol):
    """Per-key fixed-window counters."""

    def hit(self, key: str, now: datetime, window: timedelta) -> RateLimitWindow:
        """Atomically record one attempt for ``key`` and return the updated window.

        Starts a new window (count 1) when none exists or when
        ``now >= window_start + window``; otherwise increments the count.
        """


class AuditSink(Protocol):
    def record(self, kind: AuditEventKind, identity_key: str, timestamp: datetime) -> None:
        """Record an audit event. May raise; callers must not let that fail a flow."""


__all__ = ["AuditSink", "Clock", "CredentialStore", "RevocationStore", "WindowStore"]
