from __future__ import annotations

import asyncio

from fastapi.testclient import TestClient

from app.api.dependencies import get_session_store, memory_user_repo
from app.core.config import SETTINGS
from app.main import app
from app.services import session_service
from app.services.session_store import InMemorySessionStore, SessionStoreError, session_store


def test_get_profile_returns_safe_projection(signed_in_client: TestClient) -> None:
    resp = signed_in_client.get("/api/profile")

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    user = body["user"]
    assert user["email"] == "jane@example.com"
    assert user["firstName"] == "Jane"
    assert user["lastName"] == "Doe"
    assert user["role"] == "user"
    assert user["isActive"] is True
    assert user["emailVerified"] is True
    assert user["lastLogin"] is not None
    assert "createdAt" in user
    assert "claimsSnapshot" not in user
    assert "externalSubjectId" not in user


def test_update_profile_changes_record_and_session(signed_in_client: TestClient) -> None:
    resp = signed_in_client.put(
        "/api/profile", json={"firstName": " Janet ", "email": "Janet@Example.com"}
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["message"] == "Profile updated successfully"
    assert body["user"]["firstName"] == "Janet"
    assert body["user"]["lastName"] == "Doe"
    assert body["user"]["email"] == "janet@example.com"

    stored = asyncio.run(memory_user_repo.get_by_external_id("subject-jane"))
    assert stored is not None
    assert stored.first_name == "Janet"

    # The session copy was refreshed along with the record.
    sid = session_service.decode_session_cookie(
        signed_in_client.cookies.get(SETTINGS.session_cookie_name),
        secret=SETTINGS.session_secret,
    )
    session = asyncio.run(session_service.load_session(session_store, sid))
    assert session.principal is not None
    assert session.principal.first_name == "Janet"
    assert session.principal.email == "janet@example.com"

    dashboard = signed_in_client.get("/api/dashboard").json()
    assert dashboard["data"]["welcomeMessage"] == "Welcome back, Janet!"


def test_update_profile_store_outage_leaves_record_and_session_in_step(
    signed_in_client: TestClient,
) -> None:
    class ReadOnlyStore(InMemorySessionStore):
        async def read(self, session_id: str):
            return await session_store.read(session_id)

        async def write(self, session_id: str, payload: dict) -> None:
            raise SessionStoreError("write failed: ConnectionError")

    app.dependency_overrides[get_session_store] = lambda: ReadOnlyStore(ttl_seconds=60)
    resp = signed_in_client.put("/api/profile", json={"firstName": "Janet"})

    assert resp.status_code == 503
    assert resp.json() == {"success": False, "error": "Session store unavailable"}
    stored = asyncio.run(memory_user_repo.get_by_external_id("subject-jane"))
    assert stored is not None
    assert stored.first_name == "Jane"

    app.dependency_overrides.pop(get_session_store)
    dashboard = signed_in_client.get("/api/dashboard").json()
    assert dashboard["data"]["welcomeMessage"] == "Welcome back, Jane!"


def test_update_profile_requires_a_field(signed_in_client: TestClient) -> None:
    resp = signed_in_client.put("/api/profile", json={})
    assert resp.status_code == 400
    assert resp.json() == {"success": False, "error": "At least one field must be provided"}


def test_update_profile_rejects_bad_email(signed_in_client: TestClient) -> None:
    resp = signed_in_client.put("/api/profile", json={"email": "nope"})
    assert resp.status_code == 400
    assert resp.json()["success"] is False


def test_update_profile_requires_session(client: TestClient) -> None:
    resp = client.put("/api/profile", json={"firstName": "X"})
    assert resp.status_code == 401


def test_dashboard_payload(signed_in_client: TestClient) -> None:
    resp = signed_in_client.get("/api/dashboard")

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["welcomeMessage"] == "Welcome back, Jane!"
    assert data["user"]["name"] == "Jane Doe"
    assert data["user"]["email"] == "jane@example.com"
    assert data["user"]["role"] == "user"
    assert isinstance(data["user"]["id"], int)
    assert len(data["features"]) == 3
