from bson import ObjectId

TEMPLATE = {
    "title": "Seven Day Focus Sprint",
    "description": "Log at least one focused hour every day for a week.",
    "category": "focus",
    "difficulty": "easy",
    "duration": {"value": 1, "unit": "weeks"},
    "targetValue": 10,
    "pointsReward": 50,
}


def create_template(client, author, **overrides):
    r = client.post("/api/challenge-templates", json={**TEMPLATE, **overrides}, headers=author["headers"])
    assert r.status_code == 201, r.text
    return r.json()["template"]


def join(client, user, template_id):
    r = client.post(f"/api/challenges/join/{template_id}", headers=user["headers"])
    assert r.status_code == 201, r.text
    return r.json()["challenge"]


def test_only_coaches_and_admins_create_templates(client, user, coach):
    r = client.post("/api/challenge-templates", json=TEMPLATE, headers=user["headers"])
    assert r.status_code == 403
    template = create_template(client, coach)
    assert template["createdBy"] == coach["id"]
    assert template["totalParticipants"] == 0


def test_create_accumulates_errors(client, coach):
    r = client.post("/api/challenge-templates", json={"duration": {"value": 0}}, headers=coach["headers"])
    assert r.status_code == 400
    assert r.json()["errors"] == ["Title is required", "Description is required", "Valid duration is required"]


def test_listing_hides_private_templates_from_non_admins(client, coach, admin):
    create_template(client, coach)
    create_template(client, coach, title="Hidden Draft", isPublic=False)

    public = client.get("/api/challenge-templates").json()
    assert [t["title"] for t in public["templates"]] == ["Seven Day Focus Sprint"]

    everything = client.get("/api/challenge-templates", headers=admin["headers"]).json()
    assert everything["pagination"]["totalTemplates"] == 2

    private = client.get("/api/challenge-templates", params={"isPublic": "false"}, headers=admin["headers"]).json()
    assert [t["title"] for t in private["templates"]] == ["Hidden Draft"]

    found = client.get("/api/challenge-templates", params={"search": "sprint"}).json()
    assert found["pagination"]["totalTemplates"] == 1


def test_only_creator_or_admin_may_edit(client, make_user, admin):
    owner, other = make_user("coach"), make_user("coach")
    template = create_template(client, owner)
    url = f"/api/challenge-templates/{template['id']}"

    r = client.put(url, json={"title": "Stolen"}, headers=other["headers"])
    assert r.status_code == 403
    assert r.json()["message"] == "You can only manage challenge templates you created"

    r = client.put(url, json={"difficulty": "hard"}, headers=owner["headers"])
    assert r.status_code == 200
    assert r.json()["template"]["difficulty"] == "hard"

    r = client.put(url, json={"difficulty": "impossible"}, headers=admin["headers"])
    assert r.status_code == 400


def test_join_progress_and_complete(client, coach, user):
    template = create_template(client, coach)
    challenge = join(client, user, template["id"])
    assert challenge["status"] == "in_progress"
    assert challenge["pointsReward"] == 50

    r = client.post(f"/api/challenges/join/{template['id']}", headers=user["headers"])
    assert r.status_code == 400
    assert r.json()["message"] == "You are already participating in this challenge"

    url = f"/api/challenges/{challenge['id']}/progress"
    assert client.post(url, json={"value": -1}, headers=user["headers"]).status_code == 400

    r = client.post(url, json={"value": 4}, headers=user["headers"])
    assert r.json()["message"] == "Progress logged"
    progressed = r.json()["challenge"]
    assert progressed["progressPercentage"] == 40
    assert progressed["streakCount"] == 1

    r = client.post(url, json={"value": 8, "notes": "Big day"}, headers=user["headers"])
    assert r.json()["message"] == "Challenge completed!"
    done = r.json()["challenge"]
    assert done["status"] == "completed"
    assert done["progressPercentage"] == 100
    assert done["badgeEarned"] is True
    assert done["pointsEarned"] == 50
    assert len(done["dailyProgress"]) == 2

    r = client.post(url, json={"value": 1}, headers=user["headers"])
    assert r.status_code == 400
    assert r.json()["message"] == "Only challenges in progress accept progress"

    stats = client.get(f"/api/challenge-templates/{template['id']}").json()["template"]
    assert stats["totalParticipants"] == 1
    assert stats["totalCompletions"] == 1
    assert stats["completionRate"] == 100
    assert stats["activeParticipants"] == 0


def test_challenges_are_private_to_their_owner(client, coach, make_user):
    template = create_template(client, coach)
    owner, stranger = make_user(), make_user()
    challenge = join(client, owner, template["id"])
    r = client.get(f"/api/challenges/{challenge['id']}", headers=stranger["headers"])
    assert r.status_code == 404
    assert r.json()["message"] == "Challenge not found"

    mine = client.get("/api/challenges/mine", headers=owner["headers"]).json()
    assert mine["count"] == 1


def test_inactive_template_cannot_be_joined(client, coach, user):
    template = create_template(client, coach, isActive=False)
    r = client.post(f"/api/challenges/join/{template['id']}", headers=user["headers"])
    assert r.status_code == 400
    assert r.json()["message"] == "This challenge is not available"


def test_delete_template_rules(client, coach, user):
    template = create_template(client, coach)
    url = f"/api/challenge-templates/{template['id']}"
    challenge = join(client, user, template["id"])

    r = client.request("DELETE", url, json={"confirmTitle": "wrong"}, headers=coach["headers"])
    assert r.status_code == 400
    assert r.json()["message"] == "Title confirmation does not match. Cannot delete challenge."

    r = client.request("DELETE", url, json={"confirmTitle": TEMPLATE["title"]}, headers=coach["headers"])
    assert r.status_code == 400
    assert r.json()["activeParticipants"] == 1

    r = client.post(f"/api/challenges/{challenge['id']}/abandon", headers=user["headers"])
    assert r.json()["challenge"]["status"] == "abandoned"
    assert client.post(f"/api/challenges/{challenge['id']}/abandon", headers=user["headers"]).status_code == 400

    r = client.request("DELETE", url, json={"confirmTitle": TEMPLATE["title"]}, headers=coach["headers"])
    assert r.status_code == 200
    assert client.get(url).status_code == 404


def test_template_stats_admin_only(client, coach, admin, user):
    template = create_template(client, coach)
    join(client, user, template["id"])
    assert client.get("/api/challenge-templates/stats", headers=coach["headers"]).status_code == 403
    stats = client.get("/api/challenge-templates/stats", headers=admin["headers"]).json()["stats"]
    assert stats["templates"]["total"] == 1
    assert stats["challenges"]["active"] == 1
    assert stats["byCategory"] == {"focus": 1}


def test_unknown_template(client):
    assert client.get(f"/api/challenge-templates/{ObjectId()}").status_code == 404


def test_template_tags_are_stored_and_editable(client, coach):
    template = create_template(client, coach, tags=["focus", "<b>week</b>"])
    assert template["tags"] == ["focus", "week"]

    r = client.put(f"/api/challenge-templates/{template['id']}", json={"tags": ["sprint"]},
                   headers=coach["headers"])
    assert r.status_code == 200
    assert r.json()["template"]["tags"] == ["sprint"]
