from __future__ import annotations

import os
import sys
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any
from urllib.parse import parse_qs, urlparse

# Settings are read at import time; the provider values must exist first.
os.environ["APP_ENV"] = "test"
os.environ.setdefault("LOG_LEVEL", "info")
os.environ.setdefault("OIDC_AUTHORITY_HOST", "login.example.test")
os.environ.setdefault("OIDC_TENANT_ID", "tenant-123")
os.environ.setdefault("OIDC_CLIENT_ID", "client-abc")
os.environ.setdefault("OIDC_CLIENT_SECRET", "client-secret-do-not-log")
os.environ.setdefault("OIDC_REDIRECT_URI", "http://localhost:8000/auth/callback")
os.environ.setdefault("FRONTEND_URL", "http://localhost:3000")
os.environ.pop("DATABASE_URL", None)
os.environ.pop("REDIS_URL", None)

# Ensure repo root is on sys.path so `import app` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import httpx  # noqa: E402
import jwt  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from app.api.dependencies import get_token_client, memory_user_repo  # noqa: E402
from app.core.config import SETTINGS  # noqa: E402
from app.main import app  # noqa: E402
from app.services.oidc_client import TokenExchangeClient  # noqa: E402
from app.services.session_store import session_store  # noqa: E402

# Provider-side signing key for minted ID tokens.  The service does not
# verify signatures, so any key works; HS256 keeps the fixtures simple.
PROVIDER_KEY = "test-provider-signing-key-0123456789abcdef"
AUTH_CODE = "auth-code-single-use-123"


@pytest.fixture(autouse=True)
def reset_user_repo() -> None:
    memory_user_repo.clear()


@pytest.fixture(autouse=True)
def reset_session_store() -> None:
    if hasattr(session_store, "clear"):
        session_store.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_dependency_overrides() -> Iterator[None]:
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def client() -> TestClient:
    return TestClient(app, follow_redirects=False)


# ---------------------------------------------------------------------------
# Identity provider fakes
# ---------------------------------------------------------------------------


def mint_id_token(claims: dict[str, Any]) -> str:
    return jwt.encode(claims, PROVIDER_KEY, algorithm="HS256")


def token_response(claims: dict[str, Any], **extra: Any) -> httpx.Response:
    body = {
        "id_token": mint_id_token(claims),
        "access_token": "provider-access-token-xyz",
        "token_type": "Bearer",
        **extra,
    }
    return httpx.Response(200, json=body)


def mock_token_client(
    handler: Callable[[httpx.Request], httpx.Response],
) -> TokenExchangeClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return TokenExchangeClient(SETTINGS.provider, http_client=http_client)


class FakeProvider:
    """Token endpoint that answers with an ID token for ``claims``.

    Records each form it receives and, like a real provider, accepts a
    given authorization code only once.
    """

    def __init__(self, claims: dict[str, Any]) -> None:
        self.claims = claims
        self.requests: list[dict[str, list[str]]] = []
        self._used_codes: set[str] = set()

    def __call__(self, request: httpx.Request) -> httpx.Response:
        form = parse_qs(request.content.decode())
        self.requests.append(form)
        code = form.get("code", [""])[0]
        if code in self._used_codes:
            return httpx.Response(400, json={"error": "invalid_grant"})
        self._used_codes.add(code)
        return token_response(self.claims)


def install_provider(claims: dict[str, Any]) -> FakeProvider:
    provider = FakeProvider(claims)
    app.dependency_overrides[get_token_client] = lambda: mock_token_client(provider)
    return provider


# ---------------------------------------------------------------------------
# Browser flow helpers
# ---------------------------------------------------------------------------


def start_login(client: TestClient) -> str:
    """GET /auth/login and return the ``state`` sent to the provider."""
    resp = client.get("/auth/login")
    assert resp.status_code == 302
    query = parse_qs(urlparse(resp.headers["location"]).query)
    return query["state"][0]


def sign_in(client: TestClient, claims: dict[str, Any]) -> httpx.Response:
    """Run login + callback against a fake provider; return the callback response."""
    install_provider(claims)
    state = start_login(client)
    return client.get("/auth/callback", params={"code": AUTH_CODE, "state": state})


def default_claims(sub: str = "subject-jane", **overrides: Any) -> dict[str, Any]:
    claims: dict[str, Any] = {
        "sub": sub,
        "email": "jane@example.com",
        "given_name": "Jane",
        "family_name": "Doe",
        "name": "Jane Doe",
    }
    claims.update(overrides)
    return claims


@pytest.fixture
def signed_in_client(client: TestClient) -> TestClient:
    resp = sign_in(client, default_claims())
    assert resp.headers["location"].endswith("/dashboard")
    return client
