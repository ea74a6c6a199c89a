"""Unit tests for auth/store.py -- SQLAlchemy-backed repositories.

Each test gets a fresh in-memory SQLite database. Plain :memory: is fine
here because every call happens on the test thread.

Covers:
- credential insert/get, duplicate -> DuplicateIdentity, versioning
- grants round trip and replacement
- revocation add is idempotent and reports first insert; purge by expiry
- window upsert: start, increment, rollover at window_start + window
- driver failures surface as StorageUnavailable
"""

from __future__ import annotations

from collections.abc import Generator
from datetime import timedelta

import pytest
from sqlalchemy.engine import Engine

from auth.models import CredentialRecord, Grants
from auth.store import SQLCredentialStore, SQLRevocationStore, SQLWindowStore, create_store_engine
from core.errors import DuplicateIdentity, StorageUnavailable
from tests.helpers import START


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    eng = create_store_engine("sqlite:///:memory:")
    yield eng
    eng.dispose()


def _record(identity: str = "alice", version: int = 1, algorithm: str = "argon2id") -> CredentialRecord:
    return CredentialRecord(
        identity_key=identity,
        password_hash=f"$hash${identity}${version}",
        salt=f"salt-{identity}-{version}",
        algorithm=algorithm,
        created_at=START,
        version=version,
    )


class TestSQLCredentialStore:
    def test_put_and_get(self, engine: Engine) -> None:
        store = SQLCredentialStore(engine=engine)
        store.put_credential(_record())
        assert store.get_credential("alice") == _record()

    def test_missing_identity(self, engine: Engine) -> None:
        assert SQLCredentialStore(engine=engine).get_credential("nobody") is None

    def test_duplicate_identity(self, engine: Engine) -> None:
        store = SQLCredentialStore(engine=engine)
        store.put_credential(_record())
        with pytest.raises(DuplicateIdentity):
            store.put_credential(_record())

    def test_get_returns_newest_version(self, engine: Engine) -> None:
        store = SQLCredentialStore(engine=engine)
        store.put_credential(_record(algorithm="bcrypt"))
        assert store.add_credential_version(_record(version=2)) is True
        assert store.get_credential("alice").version == 2
        assert [r.version for r in store.list_versions("alice")] == [1, 2]
        assert store.list_versions("alice")[0].algorithm == "bcrypt"

    def test_add_existing_version_returns_false(self, engine: Engine) -> None:
        store = SQLCredentialStore(engine=engine)
        store.put_credential(_record())
        assert store.add_credential_version(_record(version=1)) is False

    def test_grants_default_empty(self, engine: Engine) -> None:
        assert SQLCredentialStore(engine=engine).get_grants("alice") == Grants()

    def test_grants_round_trip_and_replace(self, engine: Engine) -> None:
        store = SQLCredentialStore(engine=engine)
        store.set_grants("alice", Grants(roles=("editor",), scopes=("read:users", "write:posts")))
        assert store.get_grants("alice") == Grants(roles=("editor",), scopes=("read:users", "write:posts"))
        store.set_grants("alice", Grants(roles=("admin",)))
        assert store.get_grants("alice") == Grants(roles=("admin",), scopes=())

    def test_put_with_grants(self, engine: Engine) -> None:
        store = SQLCredentialStore(engine=engine)
        store.put_credential(_record(), Grants(roles=("editor",), scopes=("read:users",)))
        assert store.get_credential("alice") == _record()
        assert store.get_grants("alice") == Grants(roles=("editor",), scopes=("read:users",))

    def test_failed_grants_write_rolls_back_record(self, engine: Engine) -> None:
        """Record and grants land together or not at all; a retry sees the same failure."""
        store = SQLCredentialStore(engine=engine)
        with engine.connect() as conn:
            conn.exec_driver_sql("DROP TABLE grants")
            conn.commit()
        with pytest.raises(StorageUnavailable):
            store.put_credential(_record(), Grants(roles=("editor",)))
        assert store.get_credential("alice") is None
        with pytest.raises(StorageUnavailable):
            store.put_credential(_record(), Grants(roles=("editor",)))

    def test_driver_failure_is_storage_unavailable(self, engine: Engine) -> None:
        store = SQLCredentialStore(engine=engine)
        with engine.connect() as conn:
            conn.exec_driver_sql("DROP TABLE credentials")
            conn.commit()
        with pytest.raises(StorageUnavailable):
            store.get_credential("alice")

    def test_requires_url_or_engine(self) -> None:
        with pytest.raises(ValueError):
            SQLCredentialStore()


class TestSQLRevocationStore:
    def test_add_and_contains(self, engine: Engine) -> None:
        store = SQLRevocationStore(engine=engine)
        assert store.contains("abc") is False
        assert store.add("abc", START + timedelta(minutes=30)) is True
        assert store.contains("abc") is True

    def test_add_is_idempotent(self, engine: Engine) -> None:
        store = SQLRevocationStore(engine=engine)
        assert store.add("abc", START) is True
        assert store.add("abc", START) is False
        assert store.contains("abc") is True

    def test_repeat_add_only_extends_deadline(self, engine: Engine) -> None:
        store = SQLRevocationStore(engine=engine)
        early, late = START + timedelta(minutes=1), START + timedelta(days=1)
        store.add("abc", early)
        assert store.add("abc", late) is False
        assert store.expires_at("abc") == late
        store.add("abc", early)
        assert store.expires_at("abc") == late

    def test_purge_expired(self, engine: Engine) -> None:
        store = SQLRevocationStore(engine=engine)
        store.add("short", START + timedelta(minutes=30))
        store.add("long", START + timedelta(days=1))
        assert store.purge_expired(START + timedelta(hours=1)) == 1
        assert store.contains("short") is False
        assert store.contains("long") is True


class TestSQLWindowStore:
    def test_first_hit_opens_window(self, engine: Engine) -> None:
        window = SQLWindowStore(engine=engine).hit("alice", START, timedelta(seconds=60))
        assert window.count == 1
        assert window.window_start == START

    def test_hits_increment_within_window(self, engine: Engine) -> None:
        store = SQLWindowStore(engine=engine)
        for _ in range(5):
            store.hit("alice", START, timedelta(seconds=60))
        window = store.hit("alice", START + timedelta(seconds=59), timedelta(seconds=60))
        assert window.count == 6
        assert window.window_start == START

    def test_rollover_resets(self, engine: Engine) -> None:
        store = SQLWindowStore(engine=engine)
        for _ in range(7):
            store.hit("alice", START, timedelta(seconds=60))
        later = START + timedelta(seconds=60)
        window = store.hit("alice", later, timedelta(seconds=60))
        assert window.count == 1
        assert window.window_start == later

    def test_keys_independent(self, engine: Engine) -> None:
        store = SQLWindowStore(engine=engine)
        store.hit("alice", START, timedelta(seconds=60))
        store.hit("alice", START, timedelta(seconds=60))
        assert store.hit("bob", START, timedelta(seconds=60)).count == 1
