"""Integration tests for the tenant context middleware."""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any

import jwt
import pytest
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.testclient import TestClient

from app.core.tenant_context import get_current_roles, get_current_tenant_id
from app.core.tenant_middleware import TenantContextMiddleware


@pytest.fixture(autouse=True)
def tenant_token_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure the middleware is enabled by configuring token settings."""

    monkeypatch.setenv("TENANT_TOKEN_SECRET", "secret-key")
    monkeypatch.setenv("TENANT_TOKEN_AUDIENCE", "queue-engine")
    monkeypatch.setenv("TENANT_TOKEN_ISSUER", "auth.queue-engine")
    monkeypatch.setenv("TENANT_TOKEN_ALGORITHM", "HS256")


def _create_app() -> FastAPI:
    """Build a FastAPI application instrumented with the tenant middleware."""

    app = FastAPI()
    app.add_middleware(TenantContextMiddleware)

    @app.get("/context")
    async def read_context(request: Request) -> JSONResponse:
        """Return the tenant context captured by the middleware."""

        return JSONResponse(
            {
                "tenant_id": request.state.tenant_id,
                "user_id": request.state.user_id,
                "roles": request.state.roles,
                "context_tenant": get_current_tenant_id(),
                "context_roles": get_current_roles(),
            }
        )

    @app.get("/api/health")
    async def health() -> JSONResponse:
        """Public health endpoint."""
        return JSONResponse({"status": "ok"})

    @app.post("/api/webhooks/evolution/clinic")
    async def webhook() -> JSONResponse:
        """Provider callbacks carry no bearer token."""
        return JSONResponse({"received": 0})

    return app


@pytest.fixture
def client() -> TestClient:
    return TestClient(_create_app(), raise_server_exceptions=False)


@pytest.fixture
def tenant_token_factory() -> Callable[..., str]:
    """Return a callable that issues signed tenant tokens for testing."""

    def _issue_token(
        *,
        tenant_id: str = "tenant-1",
        user_id: str = "user-1",
        roles: Any = ("Attendant",),
        expires_in: int = 300,
    ) -> str:
        payload: dict[str, Any] = {
            "tenant_id": tenant_id,
            "user_id": user_id,
            "roles": roles if isinstance(roles, str) else list(roles),
            "aud": "queue-engine",
            "iss": "auth.queue-engine",
            "exp": int(time.time()) + expires_in,
            "type": "access",
        }
        token = jwt.encode(payload, "secret-key", algorithm="HS256")
        return str(token)

    return _issue_token


def test_middleware_sets_state_and_context(
    client: TestClient, tenant_token_factory: Callable[..., str]
) -> None:
    """Ensure the middleware populates the request state and the context var."""

    token = tenant_token_factory()

    response = client.get("/context", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 200
    assert response.json() == {
        "tenant_id": "tenant-1",
        "user_id": "user-1",
        "roles": ["attendant"],
        "context_tenant": "tenant-1",
        "context_roles": ["attendant"],
    }
    assert get_current_tenant_id() is None


def test_single_role_string_is_accepted(
    client: TestClient, tenant_token_factory: Callable[..., str]
) -> None:
    token = tenant_token_factory(roles="supervisor")

    response = client.get("/context", headers={"Authorization": f"Bearer {token}"})

    assert response.json()["roles"] == ["supervisor"]


def test_missing_token_returns_unauthorized(client: TestClient) -> None:
    """Requests without credentials must fail with HTTP 401."""

    response = client.get("/context")

    assert response.status_code == 401
    assert response.headers["WWW-Authenticate"] == "Bearer"
    assert get_current_tenant_id() is None


@pytest.mark.parametrize(
    "authorization",
    ["Basic dXNlcjpwYXNz", "Bearer", "Bearer not-a-jwt"],
)
def test_malformed_authorization_returns_unauthorized(
    client: TestClient, authorization: str
) -> None:
    response = client.get("/context", headers={"Authorization": authorization})

    assert response.status_code == 401


def test_invalid_token_returns_unauthorized(
    client: TestClient, tenant_token_factory: Callable[..., str]
) -> None:
    """Invalid tokens should trigger the HTTPException raised by auth helpers."""

    invalid_token = tenant_token_factory(tenant_id="tenant-2")[:-1] + "x"

    response = client.get(
        "/context", headers={"Authorization": f"Bearer {invalid_token}"}
    )

    assert response.status_code == 401
    assert get_current_tenant_id() is None


def test_expired_token_returns_unauthorized(
    client: TestClient, tenant_token_factory: Callable[..., str]
) -> None:
    token = tenant_token_factory(expires_in=-60)

    response = client.get("/context", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 401
    assert response.json()["detail"] == "Tenant token has expired."


def test_public_endpoints_bypass_auth(client: TestClient) -> None:
    """Health checks and provider webhooks are reachable without a token."""

    assert client.get("/api/health").json() == {"status": "ok"}
    assert client.post("/api/webhooks/evolution/clinic").json() == {"received": 0}
    assert get_current_tenant_id() is None


def test_middleware_is_inactive_without_token_settings(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.delenv("TENANT_TOKEN_SECRET")
    app = FastAPI()
    app.add_middleware(TenantContextMiddleware)

    @app.get("/open")
    async def open_route() -> JSONResponse:
        return JSONResponse({"tenant": get_current_tenant_id()})

    response = TestClient(app).get("/open")

    assert response.status_code == 200
    assert response.json() == {"tenant": None}
