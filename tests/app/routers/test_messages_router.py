"""Tests for the visitor messages API."""

import pytest
from fastapi.testclient import TestClient

from livechat.db import get_db
from livechat.main import create_app
from livechat.routers.utils.dependencies import get_current_user
from livechat.schemas.auth import AuthUser

COOKIE = "anonymous_session_id"


@pytest.fixture
def client_with_db(db):
    """Client with db override; callers are anonymous unless get_current_user is overridden."""
    app = create_app(testing=True)

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def test_first_visit_creates_anonymous_session(client_with_db: TestClient):
    resp = client_with_db.get("/messages")
    assert resp.status_code == 200
    assert resp.json() == []
    assert client_with_db.cookies.get(COOKIE)


def test_send_and_list_own_conversation(client_with_db: TestClient):
    client_with_db.cookies.set(COOKIE, "S1")

    resp = client_with_db.post("/messages", json={"content": "hello"})

    assert resp.status_code == 201
    body = resp.json()
    assert body["session_id"] == "S1"
    assert body["sender_id"] is None
    assert body["message_status"] == "sent"
    assert body["sender"] == "user"

    listed = client_with_db.get("/messages").json()
    assert [m["id"] for m in listed] == [body["id"]]


def test_blank_message_is_rejected(client_with_db: TestClient):
    resp = client_with_db.post("/messages", json={"content": "   "})
    assert resp.status_code == 422
    assert "blank" in resp.json()["detail"].lower()


def test_signed_in_visitor_sends_as_user(client_with_db: TestClient, setup_visitor):
    client_with_db.app.dependency_overrides[get_current_user] = lambda: AuthUser(
        user_id=setup_visitor.id
    )
    resp = client_with_db.post("/messages", json={"content": "hi"})
    assert resp.status_code == 201
    assert resp.json()["sender_id"] == setup_visitor.id
    assert resp.json()["session_id"] is None


def test_visitor_acknowledges_admin_reply(client_with_db: TestClient, setup_admin):
    client_with_db.cookies.set(COOKIE, "S1")
    own = client_with_db.post("/messages", json={"content": "hello"}).json()

    app = client_with_db.app
    app.dependency_overrides[get_current_user] = lambda: AuthUser(user_id=setup_admin.id)
    reply = client_with_db.post("/conversations/S1/messages", json={"content": "hi!"}).json()
    del app.dependency_overrides[get_current_user]
    assert reply["sender"] == "admin"

    resp = client_with_db.patch(f"/messages/{reply['id']}/status", json={"status": "read"})
    assert resp.status_code == 200
    assert resp.json() == {"message_id": reply["id"], "applied": True}

    resp = client_with_db.patch(
        f"/messages/{reply['id']}/status", json={"status": "delivered"}
    )
    assert resp.json()["applied"] is False

    resp = client_with_db.patch(f"/messages/{own['id']}/status", json={"status": "read"})
    assert resp.status_code == 403


def test_status_for_foreign_message_is_not_found(client_with_db: TestClient):
    client_with_db.cookies.set(COOKIE, "S1")
    other = client_with_db.post("/messages", json={"content": "mine"}).json()
    client_with_db.cookies.set(COOKIE, "S2")

    resp = client_with_db.patch(f"/messages/{other['id']}/status", json={"status": "read"})

    assert resp.status_code == 404


def test_invalid_status_value(client_with_db: TestClient):
    resp = client_with_db.patch("/messages/x/status", json={"status": "seen"})
    assert resp.status_code == 422
