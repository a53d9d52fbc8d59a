from datetime import timedelta

from bson import ObjectId

import database


def start(client, user, category="study", duration=25):
    r = client.post("/api/sessions/start", json={"category": category, "duration": duration}, headers=user["headers"])
    assert r.status_code == 201, r.text
    return r.json()["session"]


def test_start_requires_category_and_positive_duration(client, user):
    r = client.post("/api/sessions/start", json={"duration": 25}, headers=user["headers"])
    assert r.status_code == 400
    assert r.json()["message"] == "Category is required"

    r = client.post("/api/sessions/start", json={"category": "study", "duration": 0}, headers=user["headers"])
    assert r.status_code == 400
    assert r.json()["message"] == "Duration must be a positive whole number of minutes"


def test_end_session_updates_progress_once(client, user):
    session = start(client, user, duration=30)
    assert session["completed"] is False
    assert session["userId"] == user["id"]

    r = client.post("/api/sessions/end", json={"sessionId": session["id"]}, headers=user["headers"])
    assert r.status_code == 200
    assert r.json()["session"]["completed"] is True

    r = client.post("/api/sessions/end", json={"sessionId": session["id"]}, headers=user["headers"])
    assert r.status_code == 400
    assert r.json()["message"] == "Session already ended"

    stats = client.get("/api/sessions/stats/data", headers=user["headers"]).json()
    assert stats["totalMinutes"] == 30
    assert stats["completedCount"] == 1
    assert stats["progress"]["totalMinutes"] == 30
    assert stats["progress"]["sessionsCompleted"] == 1


def test_progress_accumulates_across_sessions(client, user):
    for minutes in (10, 15):
        s = start(client, user, duration=minutes)
        client.post("/api/sessions/end", json={"sessionId": s["id"]}, headers=user["headers"])
    progress = database.db["progress"].find_one({"userId": user["id"]})
    assert progress["totalMinutes"] == 25
    assert progress["sessionsCompleted"] == 2
    assert database.db["progress"].count_documents({"userId": user["id"]}) == 1


def test_list_sessions_week_filter(client, user):
    recent = start(client, user)
    old = start(client, user)
    database.db["session"].update_one(
        {"_id": ObjectId(old["id"])},
        {"$set": {"startedAt": database.utcnow() - timedelta(days=10)}},
    )

    all_sessions = client.get("/api/sessions", headers=user["headers"]).json()
    assert all_sessions["count"] == 2

    week = client.get("/api/sessions", params={"filter": "week"}, headers=user["headers"]).json()
    assert [s["id"] for s in week["sessions"]] == [recent["id"]]

    month = client.get("/api/sessions", params={"filter": "month"}, headers=user["headers"]).json()
    assert month["count"] == 2


def test_other_users_sessions_are_private(client, make_user):
    owner, stranger = make_user(), make_user()
    session = start(client, owner)

    r = client.get(f"/api/sessions/{session['id']}", headers=stranger["headers"])
    assert r.status_code == 403

    r = client.get("/api/sessions", params={"userId": owner["id"]}, headers=stranger["headers"])
    assert r.status_code == 403


def test_admin_may_read_any_session(client, user, admin):
    session = start(client, user)
    r = client.get(f"/api/sessions/{session['id']}", headers=admin["headers"])
    assert r.status_code == 200


def test_unknown_session_is_404(client, user):
    r = client.get(f"/api/sessions/{ObjectId()}", headers=user["headers"])
    assert r.status_code == 404
    assert r.json()["message"] == "Session not found"


def test_goal_upsert_keeps_one_goal(client, user):
    r = client.get(f"/api/goals/{user['id']}", headers=user["headers"])
    assert r.status_code == 404
    assert r.json()["message"] == "No goal found"

    assert client.post("/api/goals", json={"goalText": ""}, headers=user["headers"]).status_code == 400

    client.post("/api/goals", json={"goalText": "Two hours a day"}, headers=user["headers"])
    r = client.post("/api/goals", json={"goalText": "Three hours a day"}, headers=user["headers"])
    assert r.status_code == 200

    goal = client.get(f"/api/goals/{user['id']}", headers=user["headers"]).json()["goal"]
    assert goal["goalText"] == "Three hours a day"
    assert database.db["goal"].count_documents({"userId": user["id"]}) == 1


def test_survey_returns_latest_submission(client, user):
    r = client.get(f"/api/survey/{user['id']}", headers=user["headers"])
    assert r.status_code == 404
    assert r.json()["message"] == "No survey found for this user"

    first = {"mainGoal": "study", "consistency": 2}
    second = {"mainGoal": "deep-work", "distractions": ["notifications", "social-media"], "consistency": 4}
    assert client.post("/api/survey", json={"answers": first}, headers=user["headers"]).status_code == 201
    assert client.post("/api/survey", json={"answers": second}, headers=user["headers"]).status_code == 201

    survey = client.get(f"/api/survey/{user['id']}", headers=user["headers"]).json()["survey"]
    assert survey["answers"]["mainGoal"] == "deep-work"
    assert survey["answers"]["consistency"] == 4


def test_survey_rejects_bad_answers(client, user):
    r = client.post("/api/survey", json={}, headers=user["headers"])
    assert r.status_code == 400
    assert r.json()["message"] == "userId and answers are required"

    r = client.post("/api/survey", json={"answers": {"consistency": 9}}, headers=user["headers"])
    assert r.status_code == 400
    assert r.json()["message"] == "Invalid survey answers"
    assert r.json()["errors"]


def test_survey_distractions_vocabulary(client, user):
    off_list = {"distractions": ["phone"]}
    r = client.post("/api/survey", json={"answers": off_list}, headers=user["headers"])
    assert r.status_code == 400
    assert r.json()["message"] == "Invalid survey answers"

    too_many = {"distractions": ["social-media", "notifications", "messages", "noise"]}
    r = client.post("/api/survey", json={"answers": too_many}, headers=user["headers"])
    assert r.status_code == 400

    three = {"distractions": ["social-media", "notifications", "messages"]}
    assert client.post("/api/survey", json={"answers": three}, headers=user["headers"]).status_code == 201
