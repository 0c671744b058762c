from __future__ import annotations

import asyncio
from urllib.parse import parse_qs, urlparse

from fastapi.testclient import TestClient

from app.api.dependencies import get_session_store, memory_user_repo
from app.core.config import SETTINGS
from app.main import app
from app.services import session_service
from app.services.session_store import InMemorySessionStore, SessionStoreError, session_store
from tests.conftest import (
    AUTH_CODE,
    default_claims,
    install_provider,
    sign_in,
    start_login,
)

COOKIE = SETTINGS.session_cookie_name


def _stored_session(client: TestClient):
    sid = session_service.decode_session_cookie(
        client.cookies.get(COOKIE), secret=SETTINGS.session_secret
    )
    return asyncio.run(session_service.load_session(session_store, sid))


# ---- login ----


def test_login_redirects_to_provider_with_pkce(client: TestClient) -> None:
    resp = client.get("/auth/login")

    assert resp.status_code == 302
    location = urlparse(resp.headers["location"])
    assert location.netloc == "login.example.test"
    assert location.path == "/tenant-123/oauth2/v2.0/authorize"
    query = parse_qs(location.query)
    assert query["code_challenge_method"] == ["S256"]
    assert query["client_id"] == ["client-abc"]


def test_login_sets_session_cookie_attributes(client: TestClient) -> None:
    resp = client.get("/auth/login")
    set_cookie = resp.headers["set-cookie"]
    assert set_cookie.startswith(f"{COOKIE}=")
    assert "HttpOnly" in set_cookie
    assert "SameSite=lax" in set_cookie
    assert f"Max-Age={SETTINGS.session_ttl_seconds}" in set_cookie
    # Not prod, so no Secure flag.
    assert "Secure" not in set_cookie


def test_login_store_failure_redirects_with_login_failed(client: TestClient) -> None:
    class DownStore(InMemorySessionStore):
        async def write(self, session_id: str, payload: dict) -> None:
            raise SessionStoreError("write failed: ConnectionError")

    app.dependency_overrides[get_session_store] = lambda: DownStore(ttl_seconds=60)
    resp = client.get("/auth/login")

    assert resp.status_code == 302
    assert resp.headers["location"] == "http://localhost:3000/login?error=login_failed"


# ---- callback ----


def test_full_flow_authenticates_session(client: TestClient) -> None:
    resp = sign_in(client, default_claims())

    assert resp.status_code == 302
    assert resp.headers["location"] == "http://localhost:3000/dashboard"

    session = _stored_session(client)
    assert session.is_authenticated
    assert session.data.pending is None

    user = asyncio.run(memory_user_repo.get_by_external_id("subject-jane"))
    assert user is not None
    principal = session.principal
    assert principal is not None
    assert principal.local_id == user.id
    assert principal.external_subject_id == user.external_subject_id
    assert principal.email == user.email
    assert principal.first_name == user.first_name
    assert principal.last_name == user.last_name
    assert principal.role == user.role


def test_sign_in_issues_new_cookie_and_retires_pre_login_one(client: TestClient) -> None:
    install_provider(default_claims())
    state = start_login(client)
    pre_login_cookie = client.cookies.get(COOKIE)

    resp = client.get("/auth/callback", params={"code": AUTH_CODE, "state": state})

    assert resp.headers["location"] == "http://localhost:3000/dashboard"
    assert client.cookies.get(COOKIE) != pre_login_cookie
    assert client.get("/api/profile").status_code == 200

    # Someone holding the cookie issued before sign-in gains nothing.
    planted = TestClient(app, follow_redirects=False)
    planted.cookies.set(COOKIE, pre_login_cookie)
    resp = planted.get("/api/profile")
    assert resp.status_code == 401
    assert resp.json()["redirectTo"] == "/login"


def test_second_sign_in_reuses_user(client: TestClient) -> None:
    sign_in(client, default_claims())
    first = asyncio.run(memory_user_repo.get_by_external_id("subject-jane"))

    other = TestClient(app, follow_redirects=False)
    sign_in(other, default_claims(email="jane.new@example.com"))
    second = asyncio.run(memory_user_repo.get_by_external_id("subject-jane"))

    assert first is not None and second is not None
    assert second.id == first.id
    assert second.claims_snapshot["email"] == "jane.new@example.com"


def test_callback_with_wrong_state_redirects_generic_error(client: TestClient) -> None:
    provider = install_provider(default_claims())
    start_login(client)

    resp = client.get("/auth/callback", params={"code": AUTH_CODE, "state": "forged"})

    assert resp.status_code == 302
    assert resp.headers["location"] == "http://localhost:3000/login?error=auth_failed"
    assert provider.requests == []
    assert not _stored_session(client).is_authenticated


def test_callback_without_state_redirects_generic_error(client: TestClient) -> None:
    install_provider(default_claims())
    start_login(client)
    resp = client.get("/auth/callback", params={"code": AUTH_CODE})
    assert resp.headers["location"] == "http://localhost:3000/login?error=auth_failed"


def test_callback_without_code_redirects_generic_error(client: TestClient) -> None:
    install_provider(default_claims())
    state = start_login(client)
    resp = client.get("/auth/callback", params={"state": state})
    assert resp.headers["location"] == "http://localhost:3000/login?error=auth_failed"


def test_callback_without_prior_login_redirects_generic_error(client: TestClient) -> None:
    install_provider(default_claims())
    resp = client.get("/auth/callback", params={"code": AUTH_CODE, "state": "x"})
    assert resp.headers["location"] == "http://localhost:3000/login?error=auth_failed"


def test_replayed_callback_does_not_crash(client: TestClient) -> None:
    install_provider(default_claims())
    state = start_login(client)
    stale_cookie = client.cookies.get(COOKIE)

    ok = client.get("/auth/callback", params={"code": AUTH_CODE, "state": state})
    assert ok.headers["location"].endswith("/dashboard")

    # The pending handshake was cleared, so the replay is rejected before
    # it ever reaches the provider.
    replay = TestClient(app, follow_redirects=False)
    replay.cookies.set(COOKIE, stale_cookie)
    resp = replay.get("/auth/callback", params={"code": AUTH_CODE, "state": state})
    assert resp.status_code == 302
    assert resp.headers["location"].endswith("error=auth_failed")


def test_error_redirect_never_echoes_details(client: TestClient) -> None:
    install_provider({"email": "no-subject@example.com"})
    state = start_login(client)
    resp = client.get("/auth/callback", params={"code": AUTH_CODE, "state": state})
    location = resp.headers["location"]
    assert parse_qs(urlparse(location).query) == {"error": ["auth_failed"]}
    assert resp.content == b""


# ---- logout ----


def test_logout_destroys_session_and_clears_cookie(signed_in_client: TestClient) -> None:
    stale_cookie = signed_in_client.cookies.get(COOKIE)
    assert signed_in_client.get("/api/profile").status_code == 200

    resp = signed_in_client.post("/auth/logout")

    assert resp.status_code == 200
    assert resp.json() == {"success": True, "redirectTo": "/login"}
    assert "Max-Age=0" in resp.headers["set-cookie"]

    # The same (stale) cookie no longer authenticates.
    replay = TestClient(app, follow_redirects=False)
    replay.cookies.set(COOKIE, stale_cookie)
    resp = replay.get("/api/profile")
    assert resp.status_code == 401
    assert resp.json()["redirectTo"] == "/login"


def test_logout_without_session_succeeds(client: TestClient) -> None:
    resp = client.post("/auth/logout")
    assert resp.status_code == 200
    assert resp.json()["success"] is True


def test_logout_store_failure_returns_500(signed_in_client: TestClient) -> None:
    class DownStore(InMemorySessionStore):
        async def destroy(self, session_id: str) -> None:
            raise SessionStoreError("destroy failed: ConnectionError")

    app.dependency_overrides[get_session_store] = lambda: DownStore(ttl_seconds=60)
    resp = signed_in_client.post("/auth/logout")

    assert resp.status_code == 500
    assert resp.json() == {"success": False}
    assert "set-cookie" not in resp.headers
