from datetime import timedelta

import database
from test_games import create_game


def played(game_id, player, days_ago=0, **fields):
    when = database.utcnow() - timedelta(days=days_ago)
    doc = {
        "gameId": game_id,
        "userId": player["id"],
        "startTime": when,
        "duration": 60,
        "score": None,
        "completed": False,
        "deviceType": None,
        "createdAt": when,
        "updatedAt": when,
    }
    doc.update(fields)
    database.db["gamesession"].insert_one(doc)


def seeded_game(client, developer, make_user):
    game = create_game(client, developer)
    first, second = make_user(), make_user()
    played(game["id"], first, score=100, duration=60, completed=True, deviceType="desktop")
    played(game["id"], first, score=300, duration=120, deviceType="mobile")
    played(game["id"], second, score=50, duration=30, completed=True, deviceType="desktop")
    played(game["id"], second, days_ago=20, score=10, duration=600)
    return game, first, second


def test_developer_overview_counts_recent_sessions(client, developer, make_user):
    game, _, _ = seeded_game(client, developer, make_user)
    r = client.get("/api/dev/analytics/games", headers=developer["headers"])
    assert r.status_code == 200
    row = r.json()["games"][0]
    assert row["id"] == game["id"]
    assert row["sessionsInPeriod"] == 3
    assert row["uniquePlayersInPeriod"] == 2
    assert row["totalPlayTime"] == 210
    assert row["avgScore"] == 150
    assert row["completionRate"] == 66.67

    month = client.get("/api/dev/analytics/games", params={"days": 30}, headers=developer["headers"]).json()
    assert month["games"][0]["sessionsInPeriod"] == 4


def test_game_detail_breakdowns(client, developer, make_user):
    game, first, _ = seeded_game(client, developer, make_user)
    r = client.get(f"/api/dev/games/{game['id']}/analytics", headers=developer["headers"])
    assert r.status_code == 200
    body = r.json()
    assert body["overall"]["totalPlays"] == 3
    assert body["overall"]["returningPlayers"] == 1
    assert body["overall"]["retentionRate"] == 50
    assert body["overall"]["maxScore"] == 300
    assert body["deviceBreakdown"][0] == {"deviceType": "desktop", "sessions": 2, "percentage": 66.67}
    assert sum(d["totalPlays"] for d in body["dailyStats"]) == 3
    assert body["topPlayers"][0]["user"]["id"] == first["id"]
    assert body["topPlayers"][0]["totalScore"] == 400


def test_trends_cover_every_day(client, developer, make_user):
    game, _, _ = seeded_game(client, developer, make_user)
    r = client.get(f"/api/dev/games/{game['id']}/analytics/trends", params={"days": 30},
                   headers=developer["headers"])
    assert r.status_code == 200
    daily = r.json()["trends"]["daily"]
    assert len(daily) == 31
    assert sum(d["plays"] for d in daily) == 4
    lengths = {b["range"]: b["count"] for b in r.json()["trends"]["sessionLengthDistribution"]}
    assert lengths["600-1800"] == 1

    r = client.get(f"/api/dev/games/{game['id']}/analytics/trends", params={"days": 0},
                   headers=developer["headers"])
    assert r.status_code == 400


def test_analytics_are_scoped_to_owner(client, developer, make_user):
    game, _, _ = seeded_game(client, developer, make_user)
    other = make_user("developer")
    r = client.get(f"/api/dev/games/{game['id']}/analytics", headers=other["headers"])
    assert r.status_code == 404
    assert client.get("/api/dev/analytics/games", headers=other["headers"]).json()["games"] == []


def test_compare_games(client, developer, make_user):
    game, _, _ = seeded_game(client, developer, make_user)
    quiet = create_game(client, developer, title="Quiet Garden")

    r = client.get("/api/dev/analytics/compare", headers=developer["headers"])
    assert r.status_code == 400
    assert r.json()["message"] == "gameIds parameter is required (comma-separated)"

    ids = f"{game['id']},{quiet['id']}"
    r = client.get("/api/dev/analytics/compare", params={"gameIds": ids}, headers=developer["headers"])
    assert r.status_code == 200
    comparison = r.json()["comparison"]
    assert [c["gameId"] for c in comparison] == [game["id"], quiet["id"]]
    assert [c["totalSessions"] for c in comparison] == [3, 0]

    foreign = create_game(client, make_user("developer"), title="Not Mine")
    r = client.get("/api/dev/analytics/compare", params={"gameIds": f"{game['id']},{foreign['id']}"},
                   headers=developer["headers"])
    assert r.status_code == 403


def test_platform_analytics(client, admin, developer, make_user, user):
    seeded_game(client, developer, make_user)
    session = client.post("/api/sessions/start", json={"category": "study", "duration": 25},
                          headers=user["headers"]).json()["session"]
    client.post("/api/sessions/end", json={"sessionId": session["id"]}, headers=user["headers"])

    r = client.get("/api/admin/analytics/platform", headers=admin["headers"])
    assert r.status_code == 200
    analytics = r.json()["analytics"]
    total = database.db["user"].count_documents({})
    assert analytics["users"]["total"] == total
    assert analytics["users"]["byRole"]["developer"] == 1
    assert analytics["users"]["byRole"]["admin"] == 1
    assert analytics["games"]["sessionsInPeriod"] == 4
    assert analytics["games"]["byStatus"] == {"Draft": 1}
    assert analytics["focusSessions"]["totalMinutes"] == 25

    assert client.get("/api/admin/analytics/platform", headers=user["headers"]).status_code == 403


def test_user_growth_and_engagement(client, admin, user):
    session = client.post("/api/sessions/start", json={"category": "reading", "duration": 15},
                          headers=user["headers"]).json()["session"]
    client.post("/api/sessions/end", json={"sessionId": session["id"]}, headers=user["headers"])
    client.post("/api/sessions/start", json={"category": "reading", "duration": 40}, headers=user["headers"])

    growth = client.get("/api/admin/analytics/user-growth", params={"days": 7}, headers=admin["headers"]).json()
    assert growth["growth"]["newUsers"] == 2
    assert len(growth["growth"]["cumulativeUsers"]) == 8
    assert growth["growth"]["cumulativeUsers"][-1]["total"] == 2

    engagement = client.get("/api/admin/analytics/engagement", headers=admin["headers"]).json()["engagement"]
    assert engagement["sessionsByCategory"] == [{"category": "reading", "sessions": 2, "focusMinutes": 15}]
    assert engagement["focusMinutes"] == 15
    assert sum(d["users"] for d in engagement["dailyActiveUsers"]) == 2
