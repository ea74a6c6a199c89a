"""
auth/dependencies.py -- FastAPI Depends() helpers around the Authenticator.

This is an adapter, not a route table. An application stores an
Authenticator on app.state.authenticator and protects its own routes with:

    @router.get("/users")
    def list_users(ctx: SubjectContext = Depends(require(Requirement(scopes={"read:users"})))): ...

or by operation name, resolved through the Authenticator's RequirementMap:

    ctx: SubjectContext = Depends(require("users:list"))

Error mapping (every AuthError carries its own status_code):
  Unauthorized -> 401 with WWW-Authenticate: Bearer
  Forbidden    -> 403
  RateLimited  -> 429
  StorageUnavailable -> 503

Context passed to attribute-based policies is built from the request:
  {"ip": client host, "time": now (UTC), "path": request path}
Routes that need resource attributes (e.g. owner_id) pass a resource
loader to require().

Layer rule: the only module in auth/ allowed to import fastapi.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping

from fastapi import HTTPException, Request

from auth.models import SubjectContext
from auth.policy import Requirement
from auth.service import Authenticator
from core.errors import AuthError, Unauthorized


def bearer_token(header_value: str | None) -> str | None:
    """Extract the token from an ``Authorization: Bearer <token>`` header value."""
    if not header_value:
        return None
    scheme, _, token = header_value.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def http_error(exc: AuthError) -> HTTPException:
    """Convert a core error into the HTTPException a route should raise."""
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return HTTPException(status_code=exc.status_code, detail=exc.to_detail(), headers=headers)


def get_authenticator(request: Request) -> Authenticator:
    return request.app.state.authenticator


def request_context(request: Request, authenticator: Authenticator) -> dict:
    return {
        "ip": request.client.host if request.client else None,
        "time": authenticator.clock.now(),
        "path": request.url.path,
    }


def require(
    requirement: Requirement | str,
    resource_loader: Callable[[Request], Mapping | None] | None = None,
) -> Callable[[Request], SubjectContext]:
    """Build a dependency that authorizes the request against ``requirement``.

    Verification failures short-circuit as 401 before the resource loader
    or any policy runs.
    """

    def dependency(request: Request) -> SubjectContext:
        authenticator = get_authenticator(request)
        token = bearer_token(request.headers.get("Authorization"))
        if token is None:
            raise http_error(Unauthorized())
        try:
            claims = authenticator.authenticate(token)
        except AuthError as exc:
            raise http_error(exc) from exc
        # Only a verified caller may make the loader touch storage.
        resource = resource_loader(request) if resource_loader is not None else None
        try:
            return authenticator.check(
                claims,
                requirement,
                resource=resource,
                context=request_context(request, authenticator),
            )
        except AuthError as exc:
            raise http_error(exc) from exc

    return dependency
