"""
auth/service.py -- Authentication Orchestrator.

The only module that wires components together:

  login      Rate Limiter -> credential lookup -> Vault -> Token Service
  refresh    Token Service (rotation)
  authorize  Token Service (verify) -> Policy Engine
  revoke     Token Service

Login rules:
  - A throttled attempt short-circuits before any lookup or hashing.
  - Unknown identity and wrong password both raise InvalidCredentials. The
    unknown-identity path still runs a dummy verification so response time
    does not reveal which case happened [C1]. The audit sink gets distinct
    event kinds for the two cases.
  - The credential lookup runs on a worker thread bounded by a timeout. A
    timeout is StorageUnavailable, never InvalidCredentials.
  - Records hashed with a non-current algorithm are migrated after a
    successful login (new record version). Migration failure is logged and
    does not fail the login.

Authorization rules:
  - Any token verification failure becomes Unauthorized, before any policy
    runs. Only a verified access token reaches the Policy Engine.
  - A denied requirement becomes Forbidden.

Audit sink calls are fire-and-forget: exceptions are logged and dropped.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from typing import TYPE_CHECKING, TypeVar

from auth import policy
from auth.audit import LoggingAuditSink
from auth.keys import RotatingKeyProvider
from auth.models import (
    AuditEventKind,
    Claims,
    CredentialRecord,
    Grants,
    RateDecision,
    Subject,
    SubjectContext,
    TokenKind,
    TokenPair,
    ordered_set,
)
from auth.policy import Requirement, RequirementMap
from auth.ratelimit import RateLimiter
from auth.store import SQLCredentialStore, SQLRevocationStore, SQLWindowStore, create_store_engine
from auth.tokens import TokenService
from auth.vault import CredentialVault
from core.clock import SystemClock
from core.config import get_settings
from core.errors import (
    Forbidden,
    InvalidCredentials,
    RateLimited,
    StorageUnavailable,
    TokenError,
    Unauthorized,
)

if TYPE_CHECKING:
    from auth.ports import AuditSink, Clock, CredentialStore, RevocationStore, WindowStore
    from core.config import Settings

logger = logging.getLogger("authcore.service")

T = TypeVar("T")


class Authenticator:
    """The public face of the auth core.

    Usage:
        authn = Authenticator.from_settings()
        authn.register("alice", "correct-horse", roles=["editor"], scopes=["read:users"])
        pair = authn.login("alice", "correct-horse")
        ctx = authn.authorize(pair.access_token.encoded, Requirement(scopes={"read:users"}))
        authn.revoke(pair.refresh_token.encoded)
    """

    def __init__(
        self,
        *,
        vault: CredentialVault,
        credentials: CredentialStore,
        limiter: RateLimiter,
        tokens: TokenService,
        audit: AuditSink | None = None,
        clock: Clock | None = None,
        lookup_timeout: float = 2.0,
        requirements: RequirementMap | None = None,
    ) -> None:
        self.vault = vault
        self.credentials = credentials
        self.limiter = limiter
        self.tokens = tokens
        self.audit = audit or LoggingAuditSink()
        self.requirements = requirements or RequirementMap()
        self._clock = clock or SystemClock()
        self._lookup_timeout = lookup_timeout
        self._executor = ThreadPoolExecutor(max_workers=8, thread_name_prefix="authcore-lookup")
        self._closeables: list = []

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        *,
        clock: Clock | None = None,
        audit: AuditSink | None = None,
        credentials: CredentialStore | None = None,
        revocations: RevocationStore | None = None,
        windows: WindowStore | None = None,
        requirements: RequirementMap | None = None,
    ) -> Authenticator:
        """Build a fully wired Authenticator.

        Stores not passed in are created as SQL stores sharing one engine on
        settings.database_url.
        """
        settings = settings or get_settings()
        clock = clock or SystemClock()
        closeables = []
        if credentials is None or revocations is None or windows is None:
            engine = create_store_engine(settings.database_url)
            if credentials is None:
                credentials = SQLCredentialStore(engine=engine)
            if revocations is None:
                revocations = SQLRevocationStore(engine=engine)
            if windows is None:
                windows = SQLWindowStore(engine=engine)
            closeables.append(engine)
        keys = RotatingKeyProvider.from_settings(settings, clock=clock)
        authn = cls(
            vault=CredentialVault.from_settings(settings, credentials, clock=clock),
            credentials=credentials,
            limiter=RateLimiter.from_settings(settings, windows, clock=clock),
            tokens=TokenService.from_settings(settings, keys, revocations, clock=clock),
            audit=audit,
            clock=clock,
            lookup_timeout=settings.credential_lookup_timeout_seconds,
            requirements=requirements,
        )
        authn._closeables = closeables
        return authn

    @property
    def clock(self) -> Clock:
        return self._clock

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _audit(self, kind: AuditEventKind, identity_key: str) -> None:
        try:
            self.audit.record(kind, identity_key, self._clock.now())
        except Exception:  # noqa: BLE001 -- audit must never fail the flow
            logger.exception("Audit sink failed to record %s for %s", kind.value, identity_key)

    def _call_store(self, fn: Callable[..., T], *args, timeout: float | None = None) -> T:
        """Run a store call on a worker thread; a timeout surfaces as StorageUnavailable."""
        limit = self._lookup_timeout if timeout is None else timeout
        future = self._executor.submit(fn, *args)
        try:
            return future.result(timeout=limit)
        except FuturesTimeout as exc:
            future.cancel()
            logger.error("Credential store call %s timed out after %.2fs", getattr(fn, "__name__", fn), limit)
            raise StorageUnavailable("Credential storage timed out.") from exc

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(
        self,
        identity_key: str,
        password: str,
        roles: Iterable[str] = (),
        scopes: Iterable[str] = (),
    ) -> CredentialRecord:
        """Store a new credential and the grants its tokens will carry.

        The record and its grants are one store write, so a failure leaves
        nothing behind and a retry sees the same error.

        Raises WeakPassword, DuplicateIdentity, or StorageUnavailable.
        """
        grants = Grants(roles=ordered_set(roles), scopes=ordered_set(scopes))
        return self.vault.store(identity_key, password, grants)

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login(self, identity_key: str, password: str, timeout: float | None = None) -> TokenPair:
        """Exchange a username/password for an access + refresh token pair.

        Raises RateLimited, InvalidCredentials, or StorageUnavailable.
        """
        if self.limiter.check_and_record(identity_key) is RateDecision.THROTTLED:
            self._audit(AuditEventKind.LOGIN_THROTTLED, identity_key)
            raise RateLimited()

        record = self._call_store(self.credentials.get_credential, identity_key, timeout=timeout)
        if record is None:
            self.vault.dummy_verify(password)
            self._audit(AuditEventKind.UNKNOWN_IDENTITY, identity_key)
            raise InvalidCredentials()

        if not self.vault.verify(password, record):
            self._audit(AuditEventKind.LOGIN_FAILED, identity_key)
            raise InvalidCredentials()

        grants = self._call_store(self.credentials.get_grants, identity_key, timeout=timeout)

        if self.vault.needs_upgrade(record):
            try:
                self.vault.upgrade(record, password)
            except StorageUnavailable:
                logger.warning("Could not migrate credential for %s; will retry on next login", identity_key)

        pair = self.tokens.issue_pair(identity_key, grants.roles, grants.scopes)
        self._audit(AuditEventKind.LOGIN_SUCCEEDED, identity_key)
        return pair

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    def refresh(self, refresh_token: str) -> TokenPair:
        """Rotate a refresh token. Raises InvalidSignature, Expired, or Revoked."""
        pair = self.tokens.refresh(refresh_token)
        self._audit(AuditEventKind.TOKEN_REFRESHED, pair.access_token.claims.subject)
        return pair

    def revoke(self, token: str) -> None:
        """Logout / forced invalidation. Idempotent."""
        subject = self.tokens.inspect(token).get("sub")
        self.tokens.revoke(token)
        self._audit(AuditEventKind.TOKEN_REVOKED, subject if isinstance(subject, str) else "")

    # ------------------------------------------------------------------
    # Authorization
    # ------------------------------------------------------------------

    def authorize(
        self,
        access_token: str,
        requirement: Requirement | str,
        resource: Mapping | None = None,
        context: Mapping | None = None,
        attributes: Mapping | None = None,
    ) -> SubjectContext:
        """Verify ``access_token`` and check it against ``requirement``.

        ``requirement`` may be a Requirement or an operation name looked up
        in self.requirements (unknown names deny). ``attributes`` enrich the
        subject for attribute-based policies.

        Raises Unauthorized (verification failed) or Forbidden (policy denied).
        """
        claims = self.authenticate(access_token)
        return self.check(claims, requirement, resource, context, attributes)

    def authenticate(self, access_token: str) -> Claims:
        """Verify ``access_token`` and return its claims. Raises Unauthorized.

        Callers that must load a resource before checking a requirement call
        this first, so nothing is looked up for an unverified token.
        """
        try:
            claims = self.tokens.verify(access_token)
        except TokenError as exc:
            raise Unauthorized(exc.message) from exc
        if claims.kind is not TokenKind.ACCESS:
            raise Unauthorized("An access token is required.")
        return claims

    def check(
        self,
        claims: Claims,
        requirement: Requirement | str,
        resource: Mapping | None = None,
        context: Mapping | None = None,
        attributes: Mapping | None = None,
    ) -> SubjectContext:
        """Evaluate ``requirement`` for already-verified ``claims``. Raises Forbidden."""
        if isinstance(requirement, str):
            requirement = self.requirements.for_operation(requirement)

        subject = Subject(
            id=claims.subject,
            roles=frozenset(claims.roles),
            scopes=frozenset(claims.scopes),
            attributes=dict(attributes or {}),
        )
        if not policy.authorize(requirement, subject, resource, context):
            self._audit(AuditEventKind.ACCESS_DENIED, claims.subject)
            raise Forbidden()
        return SubjectContext(subject=subject, claims=claims, context=dict(context or {}))

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def purge_revocations(self) -> int:
        return self.tokens.purge_revocations()

    def close(self) -> None:
        self._executor.shutdown(wait=False)
        for engine in self._closeables:
            engine.dispose()

