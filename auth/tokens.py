"""
auth/tokens.py -- Token Service: issue, verify, refresh, and revoke JWTs.

Security design decisions:
  JWT: python-jose with HS256. The header carries "kid" so verification can
       pick the right key from the RotatingKeyProvider, including a retired
       key inside its grace period. The signature covers header and every
       claim, so any mutation fails as InvalidSignature.

  Claims: sub, roles, scopes, iat, exp, jti, kind. iat/exp are integer
       epoch seconds (standard JWT NumericDate). jti is a random UUID hex
       string used for revocation lookups. kind is "access" or "refresh".

  Verification order: signature first -- no other claim is trusted before
       the signature checks out. Then expiry against the injected clock
       (now >= exp is expired), then the revocation set. python-jose's own
       time checks are switched off so the injected clock is the single
       source of time.

  Lifecycle: Issued -> Active -> {Expired | Revoked}. Tokens are immutable;
       revocation is insertion of the jti into the revocation store, which
       the service owns.

  Refresh rotation: a refresh token is single-use. refresh() claims the old
       jti with an atomic add() on the revocation store before issuing, so
       two concurrent refreshes with the same token cannot both succeed, and
       a replay of a superseded token fails as Revoked.

Layer rule: no imports from auth/service.py or auth/vault.py.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from jose import JWTError, jwt

from auth.models import Claims, Token, TokenKind, TokenPair, ordered_set
from core.clock import SystemClock
from core.errors import Expired, InvalidSignature, Revoked

if TYPE_CHECKING:
    from auth.keys import RotatingKeyProvider
    from auth.ports import Clock, RevocationStore
    from core.config import Settings

logger = logging.getLogger("authcore.tokens")

_ALGORITHM = "HS256"

# Time-based checks are done against the injected clock, not by python-jose.
_DECODE_OPTIONS = {
    "verify_exp": False,
    "verify_nbf": False,
    "verify_iat": False,
}


def _to_datetime(value: int) -> datetime:
    return datetime.fromtimestamp(value, tz=timezone.utc)


def _claims_from_payload(payload: dict) -> Claims:
    """Map a signature-verified payload to Claims; reject anything malformed."""
    try:
        subject = payload["sub"]
        issued_at = payload["iat"]
        expires_at = payload["exp"]
        token_id = payload["jti"]
        kind = TokenKind(payload["kind"])
        roles = payload.get("roles", [])
        scopes = payload.get("scopes", [])
    except (KeyError, ValueError) as exc:
        raise InvalidSignature("Token claims are malformed.") from exc
    if not isinstance(subject, str) or not isinstance(token_id, str):
        raise InvalidSignature("Token claims are malformed.")
    if not isinstance(issued_at, int) or not isinstance(expires_at, int) or expires_at <= issued_at:
        raise InvalidSignature("Token claims are malformed.")
    if not isinstance(roles, list) or not isinstance(scopes, list):
        raise InvalidSignature("Token claims are malformed.")
    return Claims(
        subject=subject,
        roles=ordered_set(roles),
        scopes=ordered_set(scopes),
        issued_at=_to_datetime(issued_at),
        expires_at=_to_datetime(expires_at),
        token_id=token_id,
        kind=kind,
    )


class TokenService:
    """Issues and checks signed identity tokens.

    Usage:
        tokens = TokenService(keys, MemoryRevocationStore())
        pair = tokens.issue_pair("alice", roles=["editor"], scopes=["read:users"])
        claims = tokens.verify(pair.access_token.encoded)
        tokens.revoke(pair.access_token.encoded)
    """

    def __init__(
        self,
        keys: RotatingKeyProvider,
        revocations: RevocationStore,
        clock: Clock | None = None,
        access_ttl: timedelta = timedelta(minutes=30),
        refresh_ttl: timedelta = timedelta(days=1),
    ) -> None:
        if access_ttl.total_seconds() < 1 or refresh_ttl.total_seconds() < 1:
            raise ValueError("Token lifetimes must be at least one second")
        self._keys = keys
        self._revocations = revocations
        self._clock = clock or SystemClock()
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        keys: RotatingKeyProvider,
        revocations: RevocationStore,
        clock: Clock | None = None,
    ) -> TokenService:
        return cls(
            keys,
            revocations,
            clock=clock,
            access_ttl=timedelta(seconds=settings.access_token_ttl_seconds),
            refresh_ttl=timedelta(seconds=settings.refresh_token_ttl_seconds),
        )

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def _issue(self, kind: TokenKind, identity: str, roles: Iterable[str], scopes: Iterable[str]) -> Token:
        ttl = self.access_ttl if kind is TokenKind.ACCESS else self.refresh_ttl
        issued_at = int(self._clock.now().timestamp())
        expires_at = issued_at + int(ttl.total_seconds())
        claims = Claims(
            subject=identity,
            roles=ordered_set(roles),
            scopes=ordered_set(scopes),
            issued_at=_to_datetime(issued_at),
            expires_at=_to_datetime(expires_at),
            token_id=uuid.uuid4().hex,
            kind=kind,
        )
        payload = {
            "sub": claims.subject,
            "roles": list(claims.roles),
            "scopes": list(claims.scopes),
            "iat": issued_at,
            "exp": expires_at,
            "jti": claims.token_id,
            "kind": kind.value,
        }
        key = self._keys.signing_key()
        encoded = jwt.encode(payload, key.secret, algorithm=_ALGORITHM, headers={"kid": key.kid})
        return Token(encoded=encoded, claims=claims)

    def issue_access_token(self, identity: str, roles: Iterable[str] = (), scopes: Iterable[str] = ()) -> Token:
        return self._issue(TokenKind.ACCESS, identity, roles, scopes)

    def issue_refresh_token(self, identity: str, roles: Iterable[str] = (), scopes: Iterable[str] = ()) -> Token:
        return self._issue(TokenKind.REFRESH, identity, roles, scopes)

    def issue_pair(self, identity: str, roles: Iterable[str] = (), scopes: Iterable[str] = ()) -> TokenPair:
        roles, scopes = ordered_set(roles), ordered_set(scopes)
        return TokenPair(
            access_token=self.issue_access_token(identity, roles, scopes),
            refresh_token=self.issue_refresh_token(identity, roles, scopes),
        )

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def _decode(self, token: str) -> Claims:
        """Check the signature and return the claims. Nothing is trusted before this."""
        if not isinstance(token, str) or not token:
            raise InvalidSignature("Token is missing.")
        try:
            header = jwt.get_unverified_header(token)
        except JWTError as exc:
            raise InvalidSignature("Token is malformed.") from exc
        kid = header.get("kid")
        key = self._keys.verification_key(kid) if isinstance(kid, str) else None
        if key is None:
            logger.debug("Rejected token signed with unknown or expired key id %r", kid)
            raise InvalidSignature("Token was signed with an unknown key.")
        try:
            payload = jwt.decode(token, key.secret, algorithms=[_ALGORITHM], options=_DECODE_OPTIONS)
        except JWTError as exc:
            raise InvalidSignature() from exc
        return _claims_from_payload(payload)

    def verify(self, token: str) -> Claims:
        """Return the claims of a valid token.

        Raises InvalidSignature, Expired, or Revoked -- checked in that order.
        A token is expired at exactly its exp timestamp.
        """
        claims = self._decode(token)
        if self._clock.now() >= claims.expires_at:
            raise Expired()
        if self._revocations.contains(claims.token_id):
            raise Revoked()
        return claims

    # ------------------------------------------------------------------
    # Refresh / revoke
    # ------------------------------------------------------------------

    def refresh(self, refresh_token: str) -> TokenPair:
        """Exchange a refresh token for a new access token and a new refresh token.

        The presented refresh token is revoked as part of the exchange. Access
        tokens are not accepted here (InvalidSignature).
        """
        claims = self.verify(refresh_token)
        if claims.kind is not TokenKind.REFRESH:
            raise InvalidSignature("Token is not a refresh token.")
        if not self._revocations.add(claims.token_id, claims.expires_at):
            # Lost the race to a concurrent refresh with the same token.
            raise Revoked()
        pair = self.issue_pair(claims.subject, claims.roles, claims.scopes)
        logger.info("Rotated refresh token %s -> %s", claims.token_id, pair.refresh_token.claims.token_id)
        return pair

    def inspect(self, token: str) -> dict:
        """Return the payload WITHOUT verifying it. Never use for access decisions."""
        if not isinstance(token, str) or not token:
            raise InvalidSignature("Token is missing.")
        try:
            return jwt.get_unverified_claims(token)
        except JWTError as exc:
            raise InvalidSignature("Token is malformed.") from exc

    def revoke(self, token: str) -> None:
        """Blacklist a token's id. Works on expired or tampered tokens; idempotent.

        Raises InvalidSignature only when no token id can be extracted at all.

        The entry's purge deadline is the token's exp only when the signature
        checks out. An unsigned exp is attacker-controlled, so those entries
        are kept for the longest lifetime any issued token can have.
        """
        payload = self.inspect(token)
        token_id = payload.get("jti")
        if not isinstance(token_id, str) or not token_id:
            raise InvalidSignature("Token has no identifier.")
        try:
            expires_at = self._decode(token).expires_at
        except InvalidSignature:
            expires_at = self._clock.now() + max(self.access_ttl, self.refresh_ttl)
        if self._revocations.add(token_id, expires_at):
            logger.info("Revoked token %s", token_id)

    def purge_revocations(self) -> int:
        """Garbage-collect revocations for tokens that have expired anyway."""
        removed = self._revocations.purge_expired(self._clock.now())
        if removed:
            logger.info("Purged %d expired revocation entries", removed)
        return removed
