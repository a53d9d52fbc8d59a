import database
from conftest import PASSWORD


def test_admin_routes_require_admin(client, user):
    r = client.get("/api/admin/users", headers=user["headers"])
    assert r.status_code == 403
    assert r.json()["message"] == "Access denied. Insufficient permissions."
    assert r.json()["current"] == "user"


def test_list_users_filters_and_paginates(client, admin, make_user):
    make_user(name="Alice Focus")
    make_user(name="Bob Focus")
    make_user("developer", name="Dana Dev")

    r = client.get("/api/admin/users", params={"role": "user"}, headers=admin["headers"])
    assert r.status_code == 200
    body = r.json()
    assert body["pagination"]["totalUsers"] == 2
    assert {u["name"] for u in body["users"]} == {"Alice Focus", "Bob Focus"}

    r = client.get("/api/admin/users", params={"search": "dana"}, headers=admin["headers"])
    assert [u["name"] for u in r.json()["users"]] == ["Dana Dev"]

    r = client.get("/api/admin/users", params={"limit": 2, "page": 2}, headers=admin["headers"])
    assert r.json()["pagination"]["totalPages"] == 2
    assert len(r.json()["users"]) == 2


def test_update_user_validates_role_changes(client, admin, user):
    url = f"/api/admin/users/{user['id']}"
    r = client.put(url, json={"role": "wizard"}, headers=admin["headers"])
    assert r.status_code == 400

    r = client.put(url, json={"role": "coach"}, headers=admin["headers"])
    assert r.status_code == 400
    assert r.json()["message"] == "Users become coaches through an approved coach application"

    r = client.put(url, json={"role": "developer", "name": "Renamed User"}, headers=admin["headers"])
    assert r.status_code == 200
    assert r.json()["user"]["role"] == "developer"

    r = client.put(url, json={"password": "ignored"}, headers=admin["headers"])
    assert r.status_code == 400
    assert r.json()["message"] == "No valid fields to update"


def test_demoting_approved_coach_clears_coach_status(client, admin, coach):
    r = client.put(f"/api/admin/users/{coach['id']}", json={"role": "user"}, headers=admin["headers"])
    assert r.status_code == 200
    assert r.json()["user"]["coachStatus"] == "none"
    assert r.json()["user"]["isApprovedCoach"] is False


def test_ban_and_unban_are_audited(client, admin, user):
    url = f"/api/admin/users/{user['id']}"
    assert client.put(f"{url}/ban", json={}, headers=admin["headers"]).status_code == 400

    r = client.put(f"{url}/ban", json={"reason": "spam"}, headers=admin["headers"])
    assert r.status_code == 200
    assert r.json()["user"]["isBanned"] is True
    assert r.json()["user"]["isActive"] is False

    r = client.put(f"{url}/ban", json={"reason": "again"}, headers=admin["headers"])
    assert r.status_code == 400
    assert r.json()["message"] == "User is already banned"

    r = client.post("/api/auth/login", json={"email": user["email"], "password": PASSWORD})
    assert r.status_code == 403

    r = client.put(f"{url}/unban", headers=admin["headers"])
    assert r.status_code == 200

    actions = client.get(f"{url}/actions", headers=admin["headers"]).json()
    assert [a["actionType"] for a in actions["actions"]] == ["unban", "ban"]
    assert actions["actions"][1]["reason"] == "spam"


def test_deactivate_then_activate(client, admin, user):
    url = f"/api/admin/users/{user['id']}"
    r = client.put(f"{url}/deactivate", json={"reason": "requested"}, headers=admin["headers"])
    assert r.status_code == 200
    r = client.put(f"{url}/deactivate", json={"reason": "requested"}, headers=admin["headers"])
    assert r.json()["message"] == "User is already deactivated"
    r = client.put(f"{url}/activate", headers=admin["headers"])
    assert r.status_code == 200
    assert r.json()["user"]["isActive"] is True


def test_reset_password(client, admin, user):
    url = f"/api/admin/users/{user['id']}/reset-password"
    r = client.put(url, json={"newPassword": "abc"}, headers=admin["headers"])
    assert r.status_code == 400
    r = client.put(url, json={"newPassword": "simple1"}, headers=admin["headers"])
    assert r.status_code == 200
    r = client.post("/api/auth/login", json={"email": user["email"], "password": "simple1"})
    assert r.status_code == 200


def test_delete_user_requires_matching_email(client, admin, user):
    url = f"/api/admin/users/{user['id']}"
    r = client.request("DELETE", url, json={"reason": "cleanup", "confirmEmail": "wrong@example.com"},
                       headers=admin["headers"])
    assert r.status_code == 400

    r = client.request("DELETE", url, json={"reason": "cleanup", "confirmEmail": user["email"]},
                       headers=admin["headers"])
    assert r.status_code == 200
    assert client.get(url, headers=admin["headers"]).status_code == 404

    actions = client.get("/api/admin/actions", params={"actionType": "delete"}, headers=admin["headers"]).json()
    assert actions["pagination"]["totalActions"] == 1


def test_admin_cannot_delete_self(client, admin):
    r = client.request("DELETE", f"/api/admin/users/{admin['id']}",
                       json={"reason": "oops", "confirmEmail": admin["email"]}, headers=admin["headers"])
    assert r.status_code == 400
    assert r.json()["message"] == "You cannot delete your own account"


def test_stats_overview(client, admin, make_user):
    make_user()
    r = client.get("/api/admin/stats", headers=admin["headers"])
    assert r.status_code == 200
    stats = r.json()["stats"]
    assert stats["overview"]["totalUsers"] == 2
    assert stats["usersByRole"] == {"admin": 1, "user": 1}
    assert len(stats["growth"]["dailyRegistrations"]) == 7


def test_export_csv_and_json(client, admin, user):
    r = client.get("/api/admin/users/export", headers=admin["headers"])
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/csv")
    assert user["email"] in r.text

    r = client.get("/api/admin/users/export", params={"format": "json"}, headers=admin["headers"])
    assert r.json()["count"] == 2

    r = client.get("/api/admin/users/export", params={"format": "xml"}, headers=admin["headers"])
    assert r.status_code == 400


def test_activate_rules(client, admin, user):
    url = f"/api/admin/users/{user['id']}"
    r = client.put(f"{url}/activate", headers=admin["headers"])
    assert r.status_code == 400
    assert r.json()["message"] == "User is already active"

    client.put(f"{url}/ban", json={"reason": "spam"}, headers=admin["headers"])
    r = client.put(f"{url}/activate", headers=admin["headers"])
    assert r.status_code == 400
    assert r.json()["message"] == "User is banned; unban instead"
    stored = database.db["user"].find_one({"email": user["email"]})
    assert stored["isActive"] is False
    assert stored["isBanned"] is True
