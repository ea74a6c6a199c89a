"""
auth/memory.py -- Thread-safe in-memory stores.

Used for single-process deployments and tests. Each store guards its state
with one threading.Lock; every public method is a single critical section,
which is what gives hit() and add() their atomic read-modify-write semantics.

For multi-process deployments use the SQL stores in auth/store.py -- state
here is per-process and is lost on restart.
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta

from auth.models import CredentialRecord, Grants, RateLimitWindow
from core.errors import DuplicateIdentity


class MemoryCredentialStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: dict[str, list[CredentialRecord]] = {}
        self._grants: dict[str, Grants] = {}

    def get_credential(self, identity_key: str) -> CredentialRecord | None:
        with self._lock:
            versions = self._records.get(identity_key)
            return versions[-1] if versions else None

    def put_credential(self, record: CredentialRecord, grants: Grants | None = None) -> None:
        with self._lock:
            if record.identity_key in self._records:
                raise DuplicateIdentity()
            self._records[record.identity_key] = [record]
            if grants is not None:
                self._grants[record.identity_key] = grants

    def add_credential_version(self, record: CredentialRecord) -> bool:
        with self._lock:
            versions = self._records.setdefault(record.identity_key, [])
            if any(v.version == record.version for v in versions):
                return False
            versions.append(record)
            versions.sort(key=lambda r: r.version)
            return True

    def get_grants(self, identity_key: str) -> Grants:
        with self._lock:
            return self._grants.get(identity_key, Grants())

    def set_grants(self, identity_key: str, grants: Grants) -> None:
        with self._lock:
            self._grants[identity_key] = grants


class MemoryRevocationStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._revoked: dict[str, datetime] = {}  # token_id -> token expiry

    def add(self, token_id: str, expires_at: datetime) -> bool:
        with self._lock:
            current = self._revoked.get(token_id)
            if current is not None:
                # The purge deadline only ever moves later.
                self._revoked[token_id] = max(current, expires_at)
                return False
            self._revoked[token_id] = expires_at
            return True

    def contains(self, token_id: str) -> bool:
        with self._lock:
            return token_id in self._revoked

    def expires_at(self, token_id: str) -> datetime | None:
        with self._lock:
            return self._revoked.get(token_id)

    def purge_expired(self, now: datetime) -> int:
        """Drop ids whose token has expired; verify rejects those by expiry anyway."""
        with self._lock:
            stale = [tid for tid, exp in self._revoked.items() if exp <= now]
            for tid in stale:
                del self._revoked[tid]
            return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._revoked)


class MemoryWindowStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._windows: dict[str, RateLimitWindow] = {}

    def hit(self, key: str, now: datetime, window: timedelta) -> RateLimitWindow:
        with self._lock:
            current = self._windows.get(key)
            if current is None or now >= current.window_start + window:
                updated = RateLimitWindow(key=key, count=1, window_start=now)
            else:
                updated = RateLimitWindow(key=key, count=current.count + 1, window_start=current.window_start)
            self._windows[key] = updated
            return updated

    def get(self, key: str) -> RateLimitWindow | None:
        with self._lock:
            return self._windows.get(key)
