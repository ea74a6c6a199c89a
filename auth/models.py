"""
auth/models.py -- Domain dataclasses for the auth core.

Pattern: Data class (pure data container, near-zero logic). Stores and
services do the work; these only own the shape of the data that flows
between them.

Layer rule: no imports from auth/ service modules.
"""

from __future__ import annotations

import enum
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime


def ordered_set(values: Iterable[str] | None) -> tuple[str, ...]:
    """De-duplicate while keeping first-seen order. Roles and scopes use this."""
    if not values:
        return ()
    return tuple(dict.fromkeys(str(v) for v in values))


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CredentialHash:
    """Output of a single hashing call.

    password_hash is the full encoded hash string as produced by the hashing
    library (it embeds salt and cost parameters). salt is stored alongside
    it so operators can audit salt uniqueness without parsing the encoding.
    """

    password_hash: str
    salt: str
    algorithm: str  # "argon2id" | "bcrypt"


@dataclass(frozen=True)
class CredentialRecord:
    """A stored password credential for one identity.

    Never leaves the vault/store boundary. The algorithm identifier is
    immutable: moving a user to a new algorithm writes version + 1.
    """

    identity_key: str
    password_hash: str
    salt: str
    algorithm: str
    created_at: datetime
    version: int = 1


@dataclass(frozen=True)
class Grants:
    """Roles and scopes placed into tokens issued for an identity."""

    roles: tuple[str, ...] = ()
    scopes: tuple[str, ...] = ()


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------


class TokenKind(str, enum.Enum):
    ACCESS = "access"
    REFRESH = "refresh"


@dataclass(frozen=True)
class Claims:
    """The verified payload of a token. expires_at is always after issued_at."""

    subject: str
    roles: tuple[str, ...]
    scopes: tuple[str, ...]
    issued_at: datetime
    expires_at: datetime
    token_id: str
    kind: TokenKind


@dataclass(frozen=True)
class Token:
    """An encoded token together with the claims it was signed over."""

    encoded: str
    claims: Claims

    def __str__(self) -> str:
        return self.encoded


@dataclass(frozen=True)
class TokenPair:
    access_token: Token
    refresh_token: Token

    def as_dict(self) -> dict:
        """Shape returned to HTTP clients (OAuth2 token response style)."""
        access = self.access_token.claims
        return {
            "access_token": self.access_token.encoded,
            "refresh_token": self.refresh_token.encoded,
            "token_type": "bearer",  # noqa: S105 # nosec B105 -- OAuth token type, not a password
            "expires_in": int((access.expires_at - access.issued_at).total_seconds()),
        }


# ---------------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RateLimitWindow:
    key: str
    count: int
    window_start: datetime


class RateDecision(str, enum.Enum):
    ALLOWED = "allowed"
    THROTTLED = "throttled"


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Subject:
    """The authenticated party as seen by policies.

    attributes holds anything beyond roles/scopes a policy may want
    (department, tenant, ...). It is empty for token-derived subjects unless
    the caller enriches it.
    """

    id: str
    roles: frozenset[str] = frozenset()
    scopes: frozenset[str] = frozenset()
    attributes: Mapping[str, object] = field(default_factory=dict)


@dataclass(frozen=True)
class SubjectContext:
    """What a successful authorize() hands back to the caller."""

    subject: Subject
    claims: Claims
    context: Mapping[str, object] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------


class AuditEventKind(str, enum.Enum):
    LOGIN_SUCCEEDED = "login_succeeded"
    LOGIN_FAILED = "login_failed"  # identity exists, wrong password
    UNKNOWN_IDENTITY = "unknown_identity"  # no credential record; reported as InvalidCredentials
    LOGIN_THROTTLED = "login_throttled"
    TOKEN_REFRESHED = "token_refreshed"
    TOKEN_REVOKED = "token_revoked"
    ACCESS_DENIED = "access_denied"


@dataclass(frozen=True)
class AuditEvent:
    kind: AuditEventKind
    identity_key: str
    timestamp: datetime
