from fastapi.testclient import TestClient

import database
from conftest import auth
from main import app


def test_root(client):
    r = client.get("/")
    assert r.status_code == 200
    assert r.json()["message"].startswith("ReFocus backend")


def test_test_endpoint_has_sections(client):
    r = client.get("/test")
    assert r.status_code == 200
    j = r.json()
    assert "database" in j and "jwt" in j and "cors" in j and "email" in j
    assert j["email"]["transport"] == "disabled"
    assert j["connection_status"] == "In-memory"


def test_unknown_route_uses_message_envelope(client):
    r = client.get("/api/does-not-exist")
    assert r.status_code == 404
    assert "message" in r.json()


def test_malformed_body_is_a_400_validation_error(client, user):
    r = client.post("/api/sessions/start", json={"category": "study", "duration": "abc"}, headers=user["headers"])
    assert r.status_code == 400
    body = r.json()
    assert body["message"] == "Validation error"
    assert body["errors"]


def test_missing_token_is_rejected(client):
    r = client.get("/api/auth/me")
    assert r.status_code == 403
    assert r.json()["message"] == "Access denied. No token."


def test_garbage_token_is_rejected(client):
    r = client.get("/api/auth/me", headers=auth("not-a-jwt"))
    assert r.status_code == 401
    assert r.json()["message"] == "Invalid token"


def test_invalid_object_id_is_a_400(client, user):
    r = client.get("/api/sessions/not-an-id", headers=user["headers"])
    assert r.status_code == 400
    assert r.json()["message"] == "Invalid ID format"


def test_startup_creates_unique_indexes():
    for name in database.db.list_collection_names():
        database.db.drop_collection(name)
    with TestClient(app) as c:
        assert c.get("/").status_code == 200
    user_indexes = database.db["user"].index_information()
    assert any(spec["key"] == [("email", 1)] and spec.get("unique") for spec in user_indexes.values())
