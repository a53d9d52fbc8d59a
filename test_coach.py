import pytest
from pymongo.errors import PyMongoError

import database
import routes_coach

BIO = "I have spent the last decade helping students build calm, repeatable study routines that stick. " * 2
EXPERIENCE = "Eight years coaching university students on deep work and exam prep."


def apply(client, user, **overrides):
    body = {"expertise": ["Study habits", "Exam prep"], "bio": BIO, "experience": EXPERIENCE}
    body.update(overrides)
    return client.post("/api/coach/apply", json=body, headers=user["headers"])


def test_apply_validates_input(client, user):
    r = apply(client, user, expertise=[])
    assert r.status_code == 400
    assert r.json()["message"] == "Please provide at least one area of expertise"

    r = apply(client, user, bio="too short")
    assert r.json()["message"] == "Bio must be at least 100 characters"

    r = apply(client, user, experience="short")
    assert r.json()["message"] == "Experience description must be at least 50 characters"

    r = apply(client, user, expertise=["a", "b", "c", "d", "e", "f"])
    assert r.status_code == 400
    assert r.json()["message"] == "Validation error"


def test_apply_twice_is_rejected(client, user):
    r = apply(client, user)
    assert r.status_code == 201
    assert r.json()["application"]["status"] == "pending"

    r = apply(client, user)
    assert r.status_code == 400
    assert r.json()["message"] == "You already have a pending coach application"
    assert database.db["coachrequest"].count_documents({"userId": user["id"]}) == 1

    me = client.get("/api/auth/me", headers=user["headers"]).json()["user"]
    assert me["coachStatus"] == "pending"
    assert me["isPendingCoach"] is True


def test_approval_creates_profile_once(client, user, admin):
    application_id = apply(client, user).json()["application"]["id"]

    pending = client.get("/api/coach/applications", params={"status": "pending"}, headers=admin["headers"]).json()
    assert pending["count"] == 1
    assert pending["applications"][0]["user"]["email"] == user["email"]

    r = client.put(f"/api/coach/applications/{application_id}/approve", headers=admin["headers"])
    assert r.status_code == 200
    profile_id = r.json()["coachProfileId"]

    r = client.put(f"/api/coach/applications/{application_id}/approve", headers=admin["headers"])
    assert r.status_code == 400
    assert r.json()["message"] == "Application already reviewed"
    r = client.put(f"/api/coach/applications/{application_id}/reject", json={"rejectionReason": "late"},
                   headers=admin["headers"])
    assert r.status_code == 400

    assert database.db["coachprofile"].count_documents({"userId": user["id"]}) == 1
    me = client.get("/api/auth/me", headers=user["headers"]).json()["user"]
    assert me["role"] == "coach"
    assert me["coachStatus"] == "approved"
    assert me["coachProfileId"] == profile_id

    public = client.get(f"/api/coach/profile/{profile_id}").json()["profile"]
    assert public["displayName"] == user["name"]
    assert public["expertise"] == ["Study habits", "Exam prep"]

    assert apply(client, user).json()["message"] == "You are already an approved coach"


def test_rejection_requires_reason(client, user, admin):
    application_id = apply(client, user).json()["application"]["id"]
    url = f"/api/coach/applications/{application_id}/reject"
    assert client.put(url, json={}, headers=admin["headers"]).status_code == 400

    r = client.put(url, json={"rejectionReason": "Needs more experience"}, headers=admin["headers"])
    assert r.status_code == 200
    assert r.json()["application"]["status"] == "rejected"
    me = client.get("/api/auth/me", headers=user["headers"]).json()["user"]
    assert me["coachStatus"] == "rejected"

    # a rejected user may apply again
    assert apply(client, user).status_code == 201
    latest = client.get("/api/coach/my-application", headers=user["headers"]).json()["application"]
    assert latest["status"] == "pending"


def test_unknown_application_is_404(client, admin):
    r = client.put("/api/coach/applications/5f0000000000000000000000/approve", headers=admin["headers"])
    assert r.status_code == 404


def test_coach_edits_own_profile(client, user, admin):
    application_id = apply(client, user).json()["application"]["id"]
    client.put(f"/api/coach/applications/{application_id}/approve", headers=admin["headers"])

    r = client.put("/api/coach/my-profile", json={"rating": 5}, headers=user["headers"])
    assert r.status_code == 400
    assert r.json()["restrictedFields"] == ["rating"]

    r = client.put("/api/coach/my-profile", json={"maxMentees": 500}, headers=user["headers"])
    assert r.json()["message"] == "Max mentees must be between 1 and 100"

    r = client.put("/api/coach/my-profile", json={"isAvailable": False, "maxMentees": "5"}, headers=user["headers"])
    assert r.status_code == 200
    profile = r.json()["profile"]
    assert profile["isAvailable"] is False
    assert profile["maxMentees"] == 5

    available = client.get("/api/coach/profiles", params={"isAvailable": "true"}).json()
    assert available["count"] == 0
    assert client.get("/api/coach/profiles").json()["count"] == 1


def test_non_coach_has_no_profile(client, user):
    r = client.get("/api/coach/my-profile", headers=user["headers"])
    assert r.status_code == 403


def test_profile_avatar_is_editable(client, user, admin):
    application_id = apply(client, user).json()["application"]["id"]
    client.put(f"/api/coach/applications/{application_id}/approve", headers=admin["headers"])

    r = client.put("/api/coach/my-profile", json={"avatar": "/uploads/avatars/me.png"}, headers=user["headers"])
    assert r.status_code == 200
    assert r.json()["profile"]["avatar"] == "/uploads/avatars/me.png"
    stored = database.db["coachprofile"].find_one({"userId": user["id"]})
    assert stored["avatar"] == "/uploads/avatars/me.png"


def test_failed_application_insert_releases_pending_status(client, user, monkeypatch):
    def broken_insert(collection, document):
        raise PyMongoError("insert failed")

    monkeypatch.setattr(routes_coach, "create_document", broken_insert)
    with pytest.raises(PyMongoError):
        apply(client, user)

    stored = database.db["user"].find_one({"email": user["email"]})
    assert stored["coachStatus"] == "none"
    assert database.db["coachrequest"].count_documents({"userId": user["id"]}) == 0

    monkeypatch.undo()
    assert apply(client, user).status_code == 201
