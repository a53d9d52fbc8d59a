"""
Usage analytics.

Developers read play statistics for their own games under /api/dev. Admins
read platform-wide numbers under /api/admin/analytics. Everything is computed
on request from the session collections; nothing is cached.
"""

import logging
from collections import Counter, defaultdict
from datetime import timedelta
from typing import Optional, List, Dict, Any

from fastapi import APIRouter, Depends, HTTPException, Query

from database import db, to_object_id, utcnow
from routes_games import own_game
from security import Principal, require_roles, ROLE_ADMIN, ROLE_DEVELOPER

logger = logging.getLogger(__name__)

dev_router = APIRouter(prefix="/api/dev", tags=["analytics"])
admin_router = APIRouter(prefix="/api/admin/analytics", tags=["analytics"])

developer_only = require_roles(ROLE_DEVELOPER)
admin_only = require_roles(ROLE_ADMIN)

SCORE_BUCKETS = (0, 100, 200, 300, 400, 500, 1000, 5000, 10000)
LENGTH_BUCKETS = (0, 60, 120, 300, 600, 1800, 3600)


def _since(days: int):
    return utcnow() - timedelta(days=days)


def _day(value) -> str:
    return value.date().isoformat()


def _days_between(since, days: int) -> List[str]:
    start = since.date()
    return [(start + timedelta(days=i)).isoformat() for i in range(days + 1)]


def _pct(part: float, whole: float) -> float:
    return round(part / whole * 100, 2) if whole else 0


def _game_sessions(game_id: str, since) -> List[Dict[str, Any]]:
    return list(db["gamesession"].find({"gameId": game_id, "createdAt": {"$gte": since}}))


def _session_summary(sessions: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Totals shared by the overview, detail and comparison views."""
    durations = [s.get("duration") or 0 for s in sessions]
    scores = [s["score"] for s in sessions if s.get("score") is not None]
    completed = sum(1 for s in sessions if s.get("completed"))
    total = len(sessions)
    return {
        "totalPlays": total,
        "uniquePlayers": len({s["userId"] for s in sessions}),
        "totalPlayTime": sum(durations),
        "avgSessionLength": round(sum(durations) / total) if total else 0,
        "avgScore": round(sum(scores) / len(scores), 2) if scores else 0,
        "maxScore": max(scores) if scores else None,
        "completedSessions": completed,
        "completionRate": _pct(completed, total),
    }


def _bucket(value: float, bounds) -> str:
    for low, high in zip(bounds, bounds[1:]):
        if low <= value < high:
            return f"{low}-{high}"
    return f"{bounds[-1]}+"


# ---------------------------------------------------------------------
# Developer: per-game analytics
# ---------------------------------------------------------------------

@dev_router.get("/analytics/games")
def developer_games_analytics(days: int = Query(7, ge=1, le=365), current: Principal = Depends(developer_only)):
    since = _since(days)
    games = []
    for game in db["game"].find({"developerId": current.user_id}).sort("createdAt", -1):
        summary = _session_summary(_game_sessions(str(game["_id"]), since))
        games.append({
            "id": str(game["_id"]),
            "title": game["title"],
            "category": game.get("category"),
            "submissionStatus": game.get("submissionStatus"),
            "isActive": game.get("isActive", True),
            "totalPlaysAllTime": game.get("totalPlays", 0),
            "totalPlayersAllTime": game.get("totalPlayers", 0),
            "sessionsInPeriod": summary["totalPlays"],
            "uniquePlayersInPeriod": summary["uniquePlayers"],
            "avgSessionLength": summary["avgSessionLength"],
            "totalPlayTime": summary["totalPlayTime"],
            "avgScore": summary["avgScore"],
            "completionRate": summary["completionRate"],
        })
    return {"message": "Game analytics loaded", "timeRange": days, "count": len(games), "games": games}


@dev_router.get("/games/{game_id}/analytics")
def game_analytics(game_id: str, days: int = Query(7, ge=1, le=365), current: Principal = Depends(developer_only)):
    game = own_game(game_id, current)
    since = _since(days)
    sessions = _game_sessions(game_id, since)
    overall = _session_summary(sessions)

    by_player = Counter(s["userId"] for s in sessions)
    returning = sum(1 for count in by_player.values() if count > 1)
    overall["returningPlayers"] = returning
    overall["retentionRate"] = _pct(returning, overall["uniquePlayers"])
    overall["totalPlayTimeHours"] = round(overall["totalPlayTime"] / 3600, 2)

    daily: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
    for s in sessions:
        daily[_day(s["createdAt"])].append(s)
    daily_stats = []
    for day in sorted(daily):
        summary = _session_summary(daily[day])
        daily_stats.append({
            "date": day,
            "totalPlays": summary["totalPlays"],
            "dailyActiveUsers": summary["uniquePlayers"],
            "totalDuration": summary["totalPlayTime"],
            "avgSessionLength": summary["avgSessionLength"],
            "completionRate": summary["completionRate"],
        })

    devices = Counter(s.get("deviceType") or "unknown" for s in sessions)
    hours = Counter(s["createdAt"].hour for s in sessions)

    players: Dict[str, Dict[str, Any]] = {}
    for s in sessions:
        row = players.setdefault(s["userId"], {"sessions": 0, "totalScore": 0, "totalPlayTime": 0})
        row["sessions"] += 1
        row["totalScore"] += s.get("score") or 0
        row["totalPlayTime"] += s.get("duration") or 0
    top_players = []
    for user_id, row in sorted(players.items(), key=lambda item: item[1]["totalScore"], reverse=True)[:10]:
        user = db["user"].find_one({"_id": to_object_id(user_id)}, {"name": 1, "avatar": 1})
        if not user:
            continue
        top_players.append({"user": {"id": user_id, "name": user.get("name"), "avatar": user.get("avatar")}, **row})

    return {
        "message": "Game analytics loaded",
        "game": {
            "id": game_id,
            "title": game["title"],
            "category": game.get("category"),
            "submissionStatus": game.get("submissionStatus"),
            "totalPlaysAllTime": game.get("totalPlays", 0),
        },
        "timeRange": {"days": days, "from": since.isoformat(), "to": utcnow().isoformat()},
        "overall": overall,
        "dailyStats": daily_stats,
        "deviceBreakdown": [
            {"deviceType": device, "sessions": count, "percentage": _pct(count, len(sessions))}
            for device, count in devices.most_common()
        ],
        "hourlyDistribution": [{"hour": hour, "sessions": hours[hour]} for hour in sorted(hours)],
        "topPlayers": top_players,
    }


@dev_router.get("/games/{game_id}/analytics/trends")
def game_trends(game_id: str, days: int = Query(30, ge=1, le=365), current: Principal = Depends(developer_only)):
    own_game(game_id, current)
    since = _since(days)
    sessions = _game_sessions(game_id, since)

    plays = Counter(_day(s["createdAt"]) for s in sessions)
    players: Dict[str, set] = defaultdict(set)
    for s in sessions:
        players[_day(s["createdAt"])].add(s["userId"])

    scores = Counter(_bucket(s["score"], SCORE_BUCKETS) for s in sessions if s.get("score") is not None)
    lengths = Counter(_bucket(s.get("duration") or 0, LENGTH_BUCKETS) for s in sessions)
    return {
        "message": "Game trends loaded",
        "timeRange": days,
        "trends": {
            "daily": [
                {"date": day, "plays": plays.get(day, 0), "uniquePlayers": len(players.get(day, ()))}
                for day in _days_between(since, days)
            ],
            "scoreDistribution": [{"range": k, "count": v} for k, v in sorted(scores.items())],
            "sessionLengthDistribution": [{"range": k, "count": v} for k, v in sorted(lengths.items())],
        },
    }


@dev_router.get("/analytics/compare")
def compare_games(gameIds: Optional[str] = None, days: int = Query(7, ge=1, le=365),
                  current: Principal = Depends(developer_only)):
    ids = [i.strip() for i in (gameIds or "").split(",") if i.strip()]
    if not ids:
        raise HTTPException(status_code=400, detail="gameIds parameter is required (comma-separated)")
    if len(ids) > 10:
        raise HTTPException(status_code=400, detail="At most 10 games can be compared")
    oids = [to_object_id(i) for i in ids]
    games = {str(g["_id"]): g for g in db["game"].find({"_id": {"$in": oids}, "developerId": current.user_id})}
    if len(games) != len(set(ids)):
        raise HTTPException(status_code=403, detail="Some games not found or you don't have access")

    since = _since(days)
    comparison = []
    for game_id in dict.fromkeys(ids):
        game = games[game_id]
        summary = _session_summary(_game_sessions(game_id, since))
        comparison.append({
            "gameId": game_id,
            "title": game["title"],
            "category": game.get("category"),
            "totalSessions": summary["totalPlays"],
            "uniquePlayers": summary["uniquePlayers"],
            "avgSessionLength": summary["avgSessionLength"],
            "avgScore": summary["avgScore"],
            "completionRate": summary["completionRate"],
        })
    return {"message": "Game comparison loaded", "timeRange": days, "comparison": comparison}


# ---------------------------------------------------------------------
# Admin: platform analytics
# ---------------------------------------------------------------------

def _count_by(collection: str, field: str, filt: Optional[Dict[str, Any]] = None) -> Dict[str, int]:
    rows = db[collection].aggregate([
        {"$match": filt or {}},
        {"$group": {"_id": f"${field}", "count": {"$sum": 1}}},
    ])
    return {row["_id"]: row["count"] for row in rows if row["_id"] is not None}


@admin_router.get("/platform")
def platform_analytics(days: int = Query(30, ge=1, le=365), current: Principal = Depends(admin_only)):
    since = _since(days)
    in_period = {"$gte": since}

    users = db["user"]
    total_users = users.count_documents({})
    active_in_period = users.count_documents({"lastLogin": in_period})

    templates = db["challengetemplate"]
    challenges = db["challenge"]
    active_participants = challenges.count_documents({"status": {"$in": ["not_started", "in_progress"]}})
    completed_challenges = challenges.count_documents({"status": "completed", "completedDate": in_period})

    audio_plays = sum(a.get("playCount", 0) for a in db["audiofile"].find({}, {"playCount": 1}))
    game_summary = _session_summary(list(db["gamesession"].find({"createdAt": in_period})))
    focus = list(db["session"].find({"startedAt": in_period}))

    return {
        "message": "Platform analytics loaded",
        "analytics": {
            "timeFrame": {"days": days, "from": since.isoformat(), "to": utcnow().isoformat()},
            "users": {
                "total": total_users,
                "active": users.count_documents({"isActive": True}),
                "verified": users.count_documents({"isEmailVerified": True}),
                "banned": users.count_documents({"isBanned": True}),
                "newSignups": users.count_documents({"createdAt": in_period}),
                "activeInPeriod": active_in_period,
                "engagementRate": _pct(active_in_period, total_users),
                "byRole": _count_by("user", "role"),
            },
            "challenges": {
                "totalTemplates": templates.count_documents({}),
                "activeTemplates": templates.count_documents({"isActive": True}),
                "activeParticipants": active_participants,
                "completedInPeriod": completed_challenges,
                "completionRate": _pct(completed_challenges, active_participants + completed_challenges),
                "popular": [
                    {
                        "id": str(t["_id"]),
                        "title": t["title"],
                        "participants": t.get("totalParticipants", 0),
                        "completions": t.get("totalCompletions", 0),
                    }
                    for t in templates.find({"isActive": True}).sort("totalParticipants", -1).limit(5)
                ],
            },
            "audio": {
                "totalFiles": db["audiofile"].count_documents({"isActive": True}),
                "totalPlays": audio_plays,
            },
            "games": {
                "published": db["game"].count_documents({"submissionStatus": "Published", "isActive": True}),
                "byStatus": _count_by("game", "submissionStatus"),
                "sessionsInPeriod": game_summary["totalPlays"],
                "totalPlayTime": game_summary["totalPlayTime"],
                "avgSessionLength": game_summary["avgSessionLength"],
            },
            "focusSessions": {
                "totalSessions": len(focus),
                "completedSessions": sum(1 for s in focus if s.get("completed")),
                "totalMinutes": sum(s.get("duration", 0) for s in focus if s.get("completed")),
            },
            "coaches": {
                "approved": users.count_documents({"coachStatus": "approved"}),
                "pendingApplications": db["coachrequest"].count_documents({"status": "pending"}),
            },
            "adminActivity": {
                "totalActions": db["adminaction"].count_documents({"createdAt": in_period}),
                "byType": _count_by("adminaction", "actionType", {"createdAt": in_period}),
            },
        },
    }


@admin_router.get("/user-growth")
def user_growth(days: int = Query(30, ge=1, le=365), current: Principal = Depends(admin_only)):
    since = _since(days)
    users = list(db["user"].find({"createdAt": {"$gte": since}}, {"createdAt": 1, "role": 1}))
    baseline = db["user"].count_documents({"createdAt": {"$lt": since}})

    per_day = Counter(_day(u["createdAt"]) for u in users)
    per_role: Dict[str, Counter] = defaultdict(Counter)
    for u in users:
        per_role[_day(u["createdAt"])][u.get("role", "user")] += 1

    cumulative, total = [], baseline
    for day in _days_between(since, days):
        total += per_day.get(day, 0)
        cumulative.append({"date": day, "total": total})
    return {
        "message": "User growth loaded",
        "growth": {
            "newUsers": len(users),
            "dailyRegistrations": [
                {"date": day, "count": per_day[day], "byRole": dict(per_role[day])} for day in sorted(per_day)
            ],
            "cumulativeUsers": cumulative,
        },
    }


@admin_router.get("/engagement")
def engagement(days: int = Query(30, ge=1, le=365), current: Principal = Depends(admin_only)):
    since = _since(days)
    logins = Counter(_day(u["lastLogin"]) for u in db["user"].find({"lastLogin": {"$gte": since}}, {"lastLogin": 1}))

    categories: Dict[str, Dict[str, int]] = {}
    for s in db["session"].find({"startedAt": {"$gte": since}}):
        row = categories.setdefault(s.get("category") or "other", {"sessions": 0, "focusMinutes": 0})
        row["sessions"] += 1
        if s.get("completed"):
            row["focusMinutes"] += s.get("duration", 0)

    games: Dict[str, Dict[str, int]] = defaultdict(lambda: {"sessions": 0, "totalDuration": 0})
    for s in db["gamesession"].find({"createdAt": {"$gte": since}}):
        day = games[_day(s["createdAt"])]
        day["sessions"] += 1
        day["totalDuration"] += s.get("duration") or 0

    return {
        "message": "Engagement loaded",
        "engagement": {
            "dailyActiveUsers": [{"date": day, "users": logins[day]} for day in sorted(logins)],
            "sessionsByCategory": [{"category": k, **v} for k, v in sorted(categories.items())],
            "focusMinutes": sum(v["focusMinutes"] for v in categories.values()),
            "dailyGameSessions": [{"date": day, **games[day]} for day in sorted(games)],
        },
    }
