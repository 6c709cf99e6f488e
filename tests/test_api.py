import time

import pytest
from fastapi.testclient import TestClient

from talky import config
from talky.backends import MemoryContentBackend
from talky.main import create_app
from talky.store import Store

PAYLOAD = {"ciphertext": "Y2lwaGVy", "nonce": "bm9uY2U=", "keyHash": "hash1"}


@pytest.fixture
def client():
    store = Store(MemoryContentBackend(), freshness=60.0, backoff=0)
    with TestClient(create_app(store=store)) as c:
        yield c


def _signup(client, username, password="password123"):
    r = client.post("/api/auth/signup", json={"username": username, "password": password})
    assert r.status_code == 201, r.text
    body = r.json()
    return body["user"], {"Authorization": f"Bearer {body['token']}"}


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["ok"] is True


def test_auth_flow(client):
    user, headers = _signup(client, "alice")
    assert "passwordHash" not in user
    assert user["isAdmin"] is True

    assert client.get("/api/me", headers=headers).json()["user"]["id"] == user["id"]
    assert client.get("/api/me").status_code == 401
    assert client.get("/api/me", headers={"Authorization": "Bearer junk"}).status_code == 401

    r = client.post("/api/auth/login", json={"username": "alice", "password": "nope-nope"})
    assert r.status_code == 401
    assert r.json() == {"error": "invalid credentials", "kind": "unauthorized"}

    r = client.post("/api/auth/signup", json={"username": "Alice", "password": "password123"})
    assert r.status_code == 400
    assert r.json()["kind"] == "invalid"


def test_chat_and_messages(client):
    alice, ah = _signup(client, "alice")
    bob, bh = _signup(client, "bob")
    _, ch = _signup(client, "carol")

    users = client.get("/api/users", headers=ah).json()["users"]
    assert [u["username"] for u in users] == ["bob", "carol"]

    r = client.post("/api/chats", headers=ah, json={
        "name": "Test", "participantIds": [bob["id"]], "encryptionFingerprint": "hash1"})
    assert r.status_code == 201
    chat = r.json()["chat"]
    assert chat["kind"] == "direct"
    assert chat["participantIds"] == [alice["id"], bob["id"]]

    r = client.post("/api/messages", headers=bh, json={"chatId": chat["id"], "payload": PAYLOAD})
    assert r.status_code == 201
    assert r.json()["message"]["payload"] == PAYLOAD

    listed = client.get("/api/chats", headers=ah).json()["chats"]
    assert listed[0]["lastMessage"]["fromUserId"] == bob["id"]
    msgs = client.get(f"/api/chats/{chat['id']}/messages", headers=ah).json()["messages"]
    assert len(msgs) == 1

    assert client.get(f"/api/chats/{chat['id']}", headers=ch).status_code == 404

    r = client.post(f"/api/chats/{chat['id']}/rotate", headers=ah,
                    json={"encryptionFingerprint": "hash2"})
    fresh = r.json()["chat"]
    assert r.json()["replaces"] == chat["id"]
    assert fresh["id"] != chat["id"]
    assert client.get(f"/api/chats/{fresh['id']}/messages", headers=ah).json()["messages"] == []
    assert client.get(f"/api/chats/{chat['id']}", headers=ah).status_code == 404


def test_call_and_signaling(client):
    alice, ah = _signup(client, "alice")
    bob, bh = _signup(client, "bob")

    r = client.post("/api/calls", headers=ah, json={"calleeId": bob["id"], "kind": "audio"})
    assert r.status_code == 201
    call = r.json()["call"]
    assert call["status"] == "ringing"

    pending = client.get("/api/calls/pending", headers=bh).json()["calls"]
    assert [c["id"] for c in pending] == [call["id"]]

    assert client.post(f"/api/calls/{call['id']}/accept", headers=ah).status_code == 403
    r = client.post(f"/api/calls/{call['id']}/accept", headers=bh)
    assert r.json()["call"]["status"] == "connected"
    assert client.post(f"/api/calls/{call['id']}/accept", headers=bh).status_code == 404

    r = client.post(f"/api/calls/{call['id']}/signals", headers=ah,
                    json={"kind": "offer", "data": {"sdp": "v=0"}})
    assert r.status_code == 201
    body = client.get(f"/api/calls/{call['id']}/signals", headers=bh).json()
    assert [e["kind"] for e in body["events"]] == ["offer"]
    assert body["status"] == "connected"
    again = client.get(f"/api/calls/{call['id']}/signals",
                       headers=bh, params={"since": body["cursor"]}).json()
    assert again["events"] == []
    assert again["cursor"] == body["cursor"]

    r = client.post(f"/api/calls/{call['id']}/hangup", headers=ah)
    assert r.json()["call"]["status"] == "ended"


def test_admin_controls(client, monkeypatch):
    alice, ah = _signup(client, "alice")
    bob, bh = _signup(client, "bob")

    assert client.get("/api/admin/users", headers=bh).status_code == 403
    monkeypatch.setattr(config, "ADMIN_PASSWORD", "letmein")
    assert client.post("/api/admin/login", headers=bh, json={"password": "bad"}).status_code == 403

    r = client.put("/api/admin/flags", headers=ah, json={"messagesPaused": True})
    assert r.json()["flags"]["messagesPaused"] is True
    chat = client.post("/api/chats", headers=bh, json={"participantIds": [alice["id"]]}).json()["chat"]
    r = client.post("/api/messages", headers=bh, json={"chatId": chat["id"], "payload": PAYLOAD})
    assert r.status_code == 423
    assert r.json()["kind"] == "disabled"

    doc = client.get("/api/admin/document", headers=ah).json()
    assert len(doc["users"]) == 2
    assert all("passwordHash" not in u for u in doc["users"])

    assert client.delete(f"/api/admin/users/{alice['id']}", headers=ah).status_code == 400
    assert client.delete(f"/api/admin/users/{bob['id']}", headers=ah).status_code == 200
    assert client.get("/api/me", headers=bh).status_code == 401


def test_logout_all_invalidates_existing_tokens(client):
    _, ah = _signup(client, "alice")
    time.sleep(0.01)
    assert client.post("/api/admin/logout-all", headers=ah).status_code == 200
    assert client.get("/api/me", headers=ah).status_code == 401

    time.sleep(0.01)
    r = client.post("/api/auth/login", json={"username": "alice", "password": "password123"})
    headers = {"Authorization": f"Bearer {r.json()['token']}"}
    assert client.get("/api/me", headers=headers).status_code == 200


def test_rejected_profile_update_is_not_partially_applied(client):
    user, headers = _signup(client, "alice")
    r = client.patch("/api/me", headers=headers, json={"username": "renamed", "password": "x"})
    assert r.status_code == 400
    assert r.json()["kind"] == "invalid"
    store = client.app.state.store
    assert [u.username for u in store.load().users] == ["alice"]

    r = client.patch("/api/me", headers=headers, json={"username": "renamed"})
    assert r.json()["user"]["username"] == "renamed"
