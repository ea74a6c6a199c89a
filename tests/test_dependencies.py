"""Tests for auth/dependencies.py -- the FastAPI adapter.

A small app stores the Authenticator on app.state and protects routes with
require(). Checks the HTTP status mapping, the WWW-Authenticate header on 401
and that request context reaches attribute-based policies.
"""

from __future__ import annotations

import pytest
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.testclient import TestClient

from auth.dependencies import bearer_token, http_error, require
from auth.models import SubjectContext
from auth.policy import Requirement, ip_allowlist_policy, ownership_policy
from auth.service import Authenticator
from core.clock import ManualClock
from core.errors import Forbidden, RateLimited, StorageUnavailable, Unauthorized


LOADED: list[str] = []


def _load_document(request: Request) -> dict:
    """Stand-in for a database lookup that 404s on unknown ids."""
    doc_id = request.path_params["doc_id"]
    LOADED.append(doc_id)
    if doc_id != "1":
        raise HTTPException(status_code=404, detail="Document not found")
    return {"owner_id": "alice"}


@pytest.fixture
def client(alice: Authenticator) -> TestClient:
    app = FastAPI()
    app.state.authenticator = alice

    @app.get("/users")
    def list_users(ctx: SubjectContext = Depends(require(Requirement(scopes={"read:users"})))):
        return {"subject": ctx.subject.id}

    @app.get("/admin")
    def admin(ctx: SubjectContext = Depends(require(Requirement(roles={"admin"})))):
        return {"subject": ctx.subject.id}

    @app.get("/profiles/{owner}")
    def profile(
        ctx: SubjectContext = Depends(
            require(
                Requirement(policies=[ownership_policy]),
                resource_loader=lambda request: {"owner_id": request.path_params["owner"]},
            )
        )
    ):
        return {"subject": ctx.subject.id}

    @app.get("/documents/{doc_id}")
    def document(
        ctx: SubjectContext = Depends(
            require(Requirement(policies=[ownership_policy]), resource_loader=_load_document)
        )
    ):
        return {"subject": ctx.subject.id}

    @app.get("/internal")
    def internal(ctx: SubjectContext = Depends(require(Requirement(policies=[ip_allowlist_policy(["10.0.0.0/8"])])))):
        return {"ip": ctx.context["ip"]}

    return TestClient(app)


@pytest.fixture
def token(alice: Authenticator) -> str:
    return alice.login("alice", "correct-pw").access_token.encoded


def _auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


class TestBearerToken:
    @pytest.mark.parametrize(
        "header,expected",
        [
            ("Bearer abc.def.ghi", "abc.def.ghi"),
            ("bearer abc", "abc"),
            ("Bearer   abc  ", "abc"),
            ("Basic dXNlcjpwdw==", None),
            ("Bearer", None),
            ("Bearer    ", None),
            ("", None),
            (None, None),
        ],
    )
    def test_parsing(self, header: str | None, expected: str | None) -> None:
        assert bearer_token(header) == expected


class TestHttpError:
    def test_unauthorized_carries_challenge(self) -> None:
        exc = http_error(Unauthorized())
        assert exc.status_code == 401
        assert exc.headers == {"WWW-Authenticate": "Bearer"}
        assert exc.detail["code"] == "unauthorized"

    @pytest.mark.parametrize("error,status", [(Forbidden(), 403), (RateLimited(), 429), (StorageUnavailable(), 503)])
    def test_status_mapping(self, error, status: int) -> None:
        exc = http_error(error)
        assert exc.status_code == status
        assert exc.headers is None


class TestRequire:
    def test_granted(self, client: TestClient, token: str) -> None:
        resp = client.get("/users", headers=_auth(token))
        assert resp.status_code == 200
        assert resp.json() == {"subject": "alice"}

    def test_missing_token_is_401(self, client: TestClient) -> None:
        resp = client.get("/users")
        assert resp.status_code == 401
        assert resp.headers["WWW-Authenticate"] == "Bearer"

    def test_invalid_token_is_401(self, client: TestClient) -> None:
        resp = client.get("/users", headers=_auth("not-a-token"))
        assert resp.status_code == 401
        assert resp.json()["detail"]["code"] == "unauthorized"

    def test_expired_token_is_401_even_for_denied_route(
        self, client: TestClient, token: str, clock: ManualClock
    ) -> None:
        clock.advance(hours=1)
        assert client.get("/admin", headers=_auth(token)).status_code == 401

    def test_missing_role_is_403(self, client: TestClient, token: str) -> None:
        resp = client.get("/admin", headers=_auth(token))
        assert resp.status_code == 403
        assert resp.json()["detail"]["code"] == "forbidden"

    def test_resource_loader_feeds_policies(self, client: TestClient, token: str) -> None:
        assert client.get("/profiles/alice", headers=_auth(token)).status_code == 200
        assert client.get("/profiles/bob", headers=_auth(token)).status_code == 403

    def test_request_ip_reaches_context(self, client: TestClient, token: str) -> None:
        """TestClient's peer is not an IP address, so the allowlist denies."""
        assert client.get("/internal", headers=_auth(token)).status_code == 403


class TestVerificationBeforeResourceLoad:
    @pytest.fixture(autouse=True)
    def _reset_loads(self) -> None:
        LOADED.clear()

    def test_expired_token_is_401_not_404(self, client: TestClient, token: str, clock: ManualClock) -> None:
        """The loader never runs for an unverified caller, so it cannot leak existence."""
        clock.advance(hours=1)
        resp = client.get("/documents/404", headers=_auth(token))
        assert resp.status_code == 401
        assert LOADED == []

    def test_forged_token_never_loads(self, client: TestClient) -> None:
        assert client.get("/documents/1", headers=_auth("a.b.c")).status_code == 401
        assert LOADED == []

    def test_verified_caller_sees_loader_result(self, client: TestClient, token: str) -> None:
        assert client.get("/documents/404", headers=_auth(token)).status_code == 404
        assert client.get("/documents/1", headers=_auth(token)).status_code == 200
        assert LOADED == ["404", "1"]
