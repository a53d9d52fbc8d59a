import io
import os

import database
from test_games import LICENSE, create_game


def license_url(game):
    return f"/api/dev/games/{game['id']}/license"


def pdf(name="engine.pdf"):
    return ("files", (name, io.BytesIO(b"%PDF-1.4 license"), "application/pdf"))


def test_requirements_are_listed(client, developer):
    r = client.get("/api/dev/licenses/requirements", headers=developer["headers"])
    assert r.status_code == 200
    requirements = r.json()["requirements"]
    assert requirements["declarations"]["required"] is True
    assert "Engine License" in requirements["fileUploads"]["types"]


def test_save_validates_every_required_field(client, developer):
    game = create_game(client, developer)
    assert client.get(license_url(game), headers=developer["headers"]).status_code == 404

    r = client.post(license_url(game), json={}, headers=developer["headers"])
    assert r.status_code == 400
    errors = r.json()["errors"]
    assert errors[0] == "Engine name is required"
    assert "You must accept the agreement" in errors
    assert len(errors) == 9

    r = client.post(license_url(game), json={**LICENSE, "engine": {"name": "GameMaker", "licenseType": "Not Applicable"}},
                    headers=developer["headers"])
    assert r.status_code == 400
    assert r.json()["message"] == "Validation error"


def test_first_save_creates_then_updates(client, developer):
    game = create_game(client, developer)
    r = client.post(license_url(game), json=LICENSE, headers=developer["headers"])
    assert r.json()["message"] == "License information submitted successfully"
    created = r.json()["license"]
    assert created["isComplete"] is True
    assert created["completionPercentage"] == 71
    assert created["validation"]["status"] == "Pending"
    assert created["version"] == 1

    asset = {
        "assetType": "Audio/Music", "assetName": "Rain loop", "source": "Free/CC Licensed",
        "licenseType": "CC BY (Attribution)", "attribution": "Rain by Someone",
    }
    r = client.put(license_url(game), json={**LICENSE, "assets": [asset]}, headers=developer["headers"])
    assert r.json()["message"] == "License information updated successfully"
    updated = r.json()["license"]
    assert updated["version"] == 2
    assert updated["assets"][0]["assetName"] == "Rain loop"
    assert updated["completionPercentage"] == 86
    assert database.db["license"].count_documents({"gameId": game["id"]}) == 1

    listing = client.get("/api/dev/licenses", headers=developer["headers"]).json()
    assert listing["count"] == 1
    assert listing["licenses"][0]["game"]["title"] == game["title"]


def test_license_of_another_developers_game(client, developer, make_user):
    game = create_game(client, developer)
    other = make_user("developer")
    r = client.post(license_url(game), json=LICENSE, headers=other["headers"])
    assert r.status_code == 404


def test_file_upload_and_delete(client, developer):
    game = create_game(client, developer)
    url = f"{license_url(game)}/files"

    r = client.post(url, files=[pdf()], headers=developer["headers"])
    assert r.status_code == 404
    assert r.json()["message"] == "License information not found. Please submit license information first."

    client.post(license_url(game), json=LICENSE, headers=developer["headers"])

    r = client.post(url, files=[("files", ("run.exe", io.BytesIO(b"MZ"), "application/octet-stream"))],
                    headers=developer["headers"])
    assert r.status_code == 400

    r = client.post(url, files=[pdf(), pdf("ip.pdf")], data={"fileType": "Engine License"},
                    headers=developer["headers"])
    assert r.status_code == 200
    body = r.json()
    assert body["message"] == "2 license file(s) uploaded successfully"
    assert body["licenseStatus"]["totalFiles"] == 2
    uploaded = body["uploadedFiles"]
    assert "filePath" not in uploaded[0]
    assert uploaded[0]["fileName"] == "engine.pdf"
    assert uploaded[0]["fileUrl"].startswith("/uploads/licenses/")

    stored = database.db["license"].find_one({"gameId": game["id"]})["uploadedFiles"][0]
    assert os.path.exists(stored["filePath"])

    r = client.delete(f"{url}/{uploaded[0]['id']}", headers=developer["headers"])
    assert r.json() == {"message": "License file deleted successfully", "remainingFiles": 1}
    assert not os.path.exists(stored["filePath"])

    r = client.delete(f"{url}/{uploaded[0]['id']}", headers=developer["headers"])
    assert r.status_code == 404
    assert r.json()["message"] == "File not found"


def test_unknown_file_type_is_rejected(client, developer):
    game = create_game(client, developer)
    client.post(license_url(game), json=LICENSE, headers=developer["headers"])
    r = client.post(f"{license_url(game)}/files", files=[pdf()], data={"fileType": "Napkin"},
                    headers=developer["headers"])
    assert r.status_code == 400


def test_submit_incomplete_license(client, developer):
    game = create_game(client, developer)
    client.post(license_url(game), json=LICENSE, headers=developer["headers"])
    database.db["license"].update_one({"gameId": game["id"]}, {"$set": {"declarations.agreementAccepted": False}})

    r = client.post(f"{license_url(game)}/submit", headers=developer["headers"])
    assert r.status_code == 400
    assert r.json()["message"] == "License information is incomplete"
    assert r.json()["missingItems"] == ["One or more required declarations"]


def test_submit_and_review(client, developer, admin):
    game = create_game(client, developer)
    license_id = client.post(license_url(game), json=LICENSE, headers=developer["headers"]).json()["license"]["id"]

    r = client.post(f"{license_url(game)}/submit", headers=developer["headers"])
    assert r.status_code == 200
    checks = r.json()["validation"]["complianceChecks"]
    assert checks["engineLicenseValid"] is True
    assert checks["filesAuthentic"] is False

    r = client.put(license_url(game), json=LICENSE, headers=developer["headers"])
    assert r.status_code == 403
    r = client.post(f"{license_url(game)}/submit", headers=developer["headers"])
    assert r.status_code == 400
    assert r.json()["message"] == "Illegal status transition"

    queue = client.get("/api/admin/licenses", params={"status": "In Review"}, headers=admin["headers"]).json()
    assert [lic["id"] for lic in queue["licenses"]] == [license_id]

    review_url = f"/api/admin/licenses/{license_id}/review"
    assert client.put(review_url, json={"status": "Pending"}, headers=admin["headers"]).status_code == 400
    r = client.put(review_url, json={"status": "Rejected"}, headers=admin["headers"])
    assert r.json()["message"] == "Rejection reason is required"

    r = client.put(review_url, json={"status": "Needs Revision", "notes": "Add the engine EULA",
                                     "complianceChecks": {"filesAuthentic": False}}, headers=admin["headers"])
    assert r.status_code == 200
    assert r.json()["message"] == "License needs revision"
    validation = r.json()["license"]["validation"]
    assert validation["reviewedBy"] == admin["id"]
    assert validation["complianceChecks"]["engineLicenseValid"] is True

    # editable again after a revision request
    r = client.put(license_url(game), json=LICENSE, headers=developer["headers"])
    assert r.status_code == 200
    client.post(f"{license_url(game)}/submit", headers=developer["headers"])

    r = client.put(review_url, json={"status": "Approved"}, headers=admin["headers"])
    assert r.json()["message"] == "License approved"
    r = client.put(review_url, json={"status": "Rejected", "rejectionReason": "late"}, headers=admin["headers"])
    assert r.status_code == 400
    assert r.json()["from"] == "Approved"


def test_license_admin_routes_require_admin(client, developer):
    assert client.get("/api/admin/licenses", headers=developer["headers"]).status_code == 403
