"""
core/errors.py -- Typed error taxonomy for the auth core.

Every failure the core can report has its own exception class so callers can
map outcomes to distinct user-visible results without parsing messages. Each
class carries:
  code:        stable machine-readable identifier (snake_case)
  status_code: the HTTP status an HTTP adapter should answer with

The hierarchy groups token verification failures under TokenError so the
authorization flow can collapse all of them into Unauthorized with a single
except clause.

Nothing here is retried inside the core -- retries are caller policy.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for every error the auth core raises on purpose."""

    code: str = "auth_error"
    status_code: int = 400
    default_message: str = "Authentication error."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_detail(self) -> dict:
        """Return the {"code", "message"} body used by HTTP adapters."""
        return {"code": self.code, "message": self.message}


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------


class InvalidCredentials(AuthError):
    """Unknown identity OR wrong password. Deliberately indistinguishable."""

    code = "invalid_credentials"
    status_code = 401
    default_message = "Invalid username or password."


class RateLimited(AuthError):
    code = "rate_limited"
    status_code = 429
    default_message = "Too many attempts. Try again later."


class StorageUnavailable(AuthError):
    """The persistence collaborator failed or timed out."""

    code = "storage_unavailable"
    status_code = 503
    default_message = "Credential storage is unavailable."


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


class DuplicateIdentity(AuthError):
    code = "duplicate_identity"
    status_code = 409
    default_message = "A credential already exists for this identity."


class WeakPassword(AuthError):
    code = "weak_password"
    status_code = 422
    default_message = "Password must be at least 8 characters and not purely numeric."


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------


class TokenError(AuthError):
    """Base for the three token verification failures."""

    code = "invalid_token"
    status_code = 401
    default_message = "Invalid token."


class InvalidSignature(TokenError):
    """Signature mismatch, unknown key, or a structure that is not a token."""

    code = "invalid_signature"
    default_message = "Token signature is invalid."


class Expired(TokenError):
    code = "token_expired"
    default_message = "Token has expired."


class Revoked(TokenError):
    code = "token_revoked"
    default_message = "Token has been revoked."


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------


class Unauthorized(AuthError):
    code = "unauthorized"
    status_code = 401
    default_message = "Authentication required."


class Forbidden(AuthError):
    code = "forbidden"
    status_code = 403
    default_message = "Access denied."
