"""
auth/store.py -- SQLAlchemy Core persistence layer for the auth core.

Pattern: Repository + Data Mapper. Each store class is a repository;
_row_to_record is the mapper. Services never touch SQL directly.

Three repositories share one schema (and usually one database):
  SQLCredentialStore  -- credential records (versioned) and token grants
  SQLRevocationStore  -- revoked token ids with the token's natural expiry
  SQLWindowStore      -- fixed-window login attempt counters

Atomicity:
  Credential uniqueness is the (identity_key, version) primary key. Two
  concurrent registrations race on the INSERT; the loser gets IntegrityError,
  which becomes DuplicateIdentity.

  Revocation insert is idempotent via the token_id primary key.

  Window updates are one INSERT ... ON CONFLICT DO UPDATE ... RETURNING
  statement, so the reset-or-increment decision and the write happen inside
  the database with no read-then-write gap. Supported on SQLite (3.35+) and
  PostgreSQL.

Failure mapping:
  Any SQLAlchemyError other than an expected IntegrityError is logged and
  re-raised as StorageUnavailable, chained to the original.

Timestamps used in arithmetic (revocation expiry, window start) are stored
as REAL epoch seconds; created_at is ISO 8601 text.

Security:
  All queries use bound parameters. No f-strings in SQL.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone

from sqlalchemy import Column, Float, Integer, MetaData, String, Table, Text, case, create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.models import CredentialRecord, Grants, RateLimitWindow, ordered_set
from core.errors import DuplicateIdentity, StorageUnavailable

logger = logging.getLogger("authcore.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_credentials = Table(
    "credentials",
    _metadata,
    Column("identity_key", String(255), primary_key=True),
    Column("version", Integer, primary_key=True),
    Column("password_hash", Text, nullable=False),
    Column("salt", String(128), nullable=False),
    Column("algorithm", String(30), nullable=False),
    Column("created_at", String(32), nullable=False),
)

_grants = Table(
    "grants",
    _metadata,
    Column("identity_key", String(255), primary_key=True),
    Column("roles", Text, nullable=False, server_default="[]"),  # JSON list
    Column("scopes", Text, nullable=False, server_default="[]"),  # JSON list
)

_revoked_tokens = Table(
    "revoked_tokens",
    _metadata,
    Column("token_id", String(64), primary_key=True),
    Column("expires_at", Float, nullable=False, index=True),
)

_rate_limit_windows = Table(
    "rate_limit_windows",
    _metadata,
    Column("limit_key", String(255), primary_key=True),
    Column("attempts", Integer, nullable=False),
    Column("window_start", Float, nullable=False),
)


# ---------------------------------------------------------------------------
# Engine helpers
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def create_store_engine(db_url: str) -> Engine:
    """Create an engine and make sure every auth table exists."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    _metadata.create_all(engine)
    return engine


@contextmanager
def _storage_errors(operation: str) -> Iterator[None]:
    """Translate driver failures into StorageUnavailable.

    IntegrityError passes through untouched -- callers that expect it
    (duplicate inserts) turn it into a domain answer themselves.
    """
    try:
        yield
    except IntegrityError:
        raise
    except SQLAlchemyError as exc:
        logger.error("Storage failure during %s: %s", operation, exc.__class__.__name__)
        raise StorageUnavailable() from exc


def _epoch(moment: datetime) -> float:
    return moment.timestamp()


def _from_epoch(value: float) -> datetime:
    return datetime.fromtimestamp(value, tz=timezone.utc)


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


class SQLCredentialStore:
    """Repository for credential records and grants.

    Usage:
        store = SQLCredentialStore("sqlite:///authcore.db")
        store.put_credential(record)
        latest = store.get_credential("alice")
        store.close()
    """

    def __init__(self, db_url: str | None = None, engine: Engine | None = None) -> None:
        if engine is None:
            if db_url is None:
                raise ValueError("SQLCredentialStore needs a db_url or an engine")
            engine = create_store_engine(db_url)
        self.engine = engine

    def get_credential(self, identity_key: str) -> CredentialRecord | None:
        with _storage_errors("get_credential"), self.engine.connect() as conn:
            row = conn.execute(
                _credentials.select()
                .where(_credentials.c.identity_key == identity_key)
                .order_by(_credentials.c.version.desc())
                .limit(1)
            ).fetchone()
        return _row_to_record(row) if row is not None else None

    def put_credential(self, record: CredentialRecord, grants: Grants | None = None) -> None:
        """Insert the first record for an identity, plus its grants, in one transaction.

        Raises DuplicateIdentity if a record exists. Any failure rolls both
        writes back.
        """
        try:
            with _storage_errors("put_credential"), self.engine.begin() as conn:
                conn.execute(_credentials.insert().values(**_record_values(record)))
                if grants is not None:
                    _write_grants(conn, record.identity_key, grants)
        except IntegrityError as exc:
            raise DuplicateIdentity() from exc

    def add_credential_version(self, record: CredentialRecord) -> bool:
        try:
            with _storage_errors("add_credential_version"), self.engine.connect() as conn:
                conn.execute(_credentials.insert().values(**_record_values(record)))
                conn.commit()
        except IntegrityError:
            return False
        return True

    def list_versions(self, identity_key: str) -> list[CredentialRecord]:
        """Return every stored version for an identity, oldest first."""
        with _storage_errors("list_versions"), self.engine.connect() as conn:
            rows = conn.execute(
                _credentials.select()
                .where(_credentials.c.identity_key == identity_key)
                .order_by(_credentials.c.version)
            ).fetchall()
        return [_row_to_record(r) for r in rows]

    def get_grants(self, identity_key: str) -> Grants:
        with _storage_errors("get_grants"), self.engine.connect() as conn:
            row = conn.execute(_grants.select().where(_grants.c.identity_key == identity_key)).fetchone()
        if row is None:
            return Grants()
        return Grants(roles=ordered_set(json.loads(row.roles)), scopes=ordered_set(json.loads(row.scopes)))

    def set_grants(self, identity_key: str, grants: Grants) -> None:
        with _storage_errors("set_grants"), self.engine.begin() as conn:
            _write_grants(conn, identity_key, grants)

    def close(self) -> None:
        self.engine.dispose()


class SQLRevocationStore:
    """Repository for the revocation set. Shared across processes via the database."""

    def __init__(self, db_url: str | None = None, engine: Engine | None = None) -> None:
        if engine is None:
            if db_url is None:
                raise ValueError("SQLRevocationStore needs a db_url or an engine")
            engine = create_store_engine(db_url)
        self.engine = engine

    def add(self, token_id: str, expires_at: datetime) -> bool:
        """Insert ``token_id``; on a repeat, only ever extend its purge deadline."""
        try:
            with _storage_errors("revoke"), self.engine.connect() as conn:
                conn.execute(_revoked_tokens.insert().values(token_id=token_id, expires_at=_epoch(expires_at)))
                conn.commit()
        except IntegrityError:
            with _storage_errors("revoke"), self.engine.connect() as conn:
                conn.execute(
                    _revoked_tokens.update()
                    .where(_revoked_tokens.c.token_id == token_id)
                    .where(_revoked_tokens.c.expires_at < _epoch(expires_at))
                    .values(expires_at=_epoch(expires_at))
                )
                conn.commit()
            return False
        return True

    def expires_at(self, token_id: str) -> datetime | None:
        """Return the purge deadline stored for ``token_id``, or None."""
        with _storage_errors("revocation_expiry"), self.engine.connect() as conn:
            row = conn.execute(
                _revoked_tokens.select().where(_revoked_tokens.c.token_id == token_id)
            ).fetchone()
        return _from_epoch(row.expires_at) if row is not None else None

    def contains(self, token_id: str) -> bool:
        with _storage_errors("is_revoked"), self.engine.connect() as conn:
            row = conn.execute(
                _revoked_tokens.select().where(_revoked_tokens.c.token_id == token_id)
            ).fetchone()
        return row is not None

    def purge_expired(self, now: datetime) -> int:
        """Delete revocations whose token has expired. Returns number of rows removed."""
        with _storage_errors("purge_expired"), self.engine.connect() as conn:
            result = conn.execute(_revoked_tokens.delete().where(_revoked_tokens.c.expires_at <= _epoch(now)))
            conn.commit()
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


class SQLWindowStore:
    """Repository for fixed-window attempt counters."""

    def __init__(self, db_url: str | None = None, engine: Engine | None = None) -> None:
        if engine is None:
            if db_url is None:
                raise ValueError("SQLWindowStore needs a db_url or an engine")
            engine = create_store_engine(db_url)
        self.engine = engine
        dialect = engine.dialect.name
        if dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert
        elif dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        else:
            raise ValueError(f"SQLWindowStore needs an upsert-capable database, got {dialect!r}")
        self._insert = insert

    def hit(self, key: str, now: datetime, window: timedelta) -> RateLimitWindow:
        table = _rate_limit_windows
        stmt = self._insert(table).values(limit_key=key, attempts=1, window_start=_epoch(now))
        rolled_over = stmt.excluded.window_start >= table.c.window_start + window.total_seconds()
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.limit_key],
            set_={
                "attempts": case((rolled_over, 1), else_=table.c.attempts + 1),
                "window_start": case((rolled_over, stmt.excluded.window_start), else_=table.c.window_start),
            },
        ).returning(table.c.attempts, table.c.window_start)
        with _storage_errors("rate_limit_hit"), self.engine.connect() as conn:
            row = conn.execute(stmt).one()
            conn.commit()
        return RateLimitWindow(key=key, count=row.attempts, window_start=_from_epoch(row.window_start))

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _write_grants(conn, identity_key: str, grants: Grants) -> None:
    """Update-then-insert the grants row inside the caller's transaction."""
    values = {"roles": json.dumps(list(grants.roles)), "scopes": json.dumps(list(grants.scopes))}
    result = conn.execute(_grants.update().where(_grants.c.identity_key == identity_key).values(**values))
    if result.rowcount == 0:
        conn.execute(_grants.insert().values(identity_key=identity_key, **values))


def _record_values(record: CredentialRecord) -> dict:
    return {
        "identity_key": record.identity_key,
        "version": record.version,
        "password_hash": record.password_hash,
        "salt": record.salt,
        "algorithm": record.algorithm,
        "created_at": record.created_at.isoformat(),
    }


def _row_to_record(row) -> CredentialRecord:
    return CredentialRecord(
        identity_key=row.identity_key,
        password_hash=row.password_hash,
        salt=row.salt,
        algorithm=row.algorithm,
        created_at=datetime.fromisoformat(row.created_at),
        version=row.version,
    )
