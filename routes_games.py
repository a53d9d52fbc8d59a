"""
Game submission pipeline.

Developers create games, submit them for review and manage versions under
/api/dev. Admins review under /api/admin/reviews. Published games are served
to players from /api/games.

Every change of `submissionStatus` goes through `_move_game`, which checks
the transition table and filters the update on the status it was read with.
"""

import re
import logging
from datetime import timedelta
from typing import Optional, List, Dict, Any

from bson import ObjectId
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ValidationError
from pymongo import ReturnDocument

import compliance
from accounts import find_user
from database import db, create_document, serialize, to_object_id, utcnow
from schemas import Game, GameVersion, GameReview, GameSession, RequestedChange, Screenshot
from security import Principal, get_current_user, require_roles, ROLE_ADMIN, ROLE_DEVELOPER
from validation import sanitize_input
from workflow import (
    DRAFT, IN_REVIEW, CHANGES_REQUESTED, APPROVED, PUBLISHED, REJECTED, REVIEW_DECISIONS,
    ensure_transition, is_locked, increment_version,
)

logger = logging.getLogger(__name__)

dev_router = APIRouter(prefix="/api/dev", tags=["developer"])
reviews_router = APIRouter(prefix="/api/admin/reviews", tags=["reviews"])
library_router = APIRouter(prefix="/api/games", tags=["games"])

developer_only = require_roles(ROLE_DEVELOPER)
admin_only = require_roles(ROLE_ADMIN)

NOT_FOUND = "Game not found or you don't have access"
GAME_UPDATES = (
    "title", "description", "shortDescription", "category", "difficulty", "gameUrl",
    "thumbnailUrl", "coverImageUrl", "screenshots", "tags", "minPlayTime", "maxPlayTime",
    "isPublic", "isActive",
)
SNAPSHOT_FIELDS = (
    "title", "description", "shortDescription", "category", "difficulty", "gameUrl",
    "thumbnailUrl", "coverImageUrl", "screenshots", "minPlayTime", "maxPlayTime", "tags",
)
COMPARED_FIELDS = (
    "title", "description", "shortDescription", "category", "difficulty", "gameUrl",
    "thumbnailUrl", "coverImageUrl", "minPlayTime", "maxPlayTime",
)
DEV_SORT_FIELDS = ("createdAt", "updatedAt", "title", "totalPlays")
LIBRARY_SORT_FIELDS = ("createdAt", "title", "totalPlays", "totalPlayers")


class GameRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    shortDescription: Optional[str] = None
    category: Optional[str] = None
    difficulty: Optional[str] = None
    gameUrl: Optional[str] = None
    thumbnailUrl: Optional[str] = None
    coverImageUrl: Optional[str] = None
    screenshots: Optional[List[Dict[str, Any]]] = None
    tags: Optional[List[str]] = None
    minPlayTime: Optional[int] = None
    maxPlayTime: Optional[int] = None
    isPublic: Optional[bool] = None
    isActive: Optional[bool] = None


class ConfirmTitleRequest(BaseModel):
    confirmTitle: Optional[str] = None


class SubmitRequest(BaseModel):
    changeLog: Optional[str] = None
    changes: Optional[List[Dict[str, Any]]] = None


class RevertRequest(BaseModel):
    confirmation: Optional[str] = None


class DecisionRequest(BaseModel):
    status: Optional[str] = None
    overallComments: Optional[str] = None
    functionalityTest: Optional[Dict[str, Any]] = None
    policyCompliance: Optional[Dict[str, Any]] = None
    contentReview: Optional[Dict[str, Any]] = None
    performanceTest: Optional[Dict[str, Any]] = None
    uiuxEvaluation: Optional[Dict[str, Any]] = None
    requestedChanges: Optional[List[Dict[str, Any]]] = None
    rejectionReason: Optional[str] = None


class PlayRequest(BaseModel):
    duration: int = 0
    score: Optional[float] = None
    level: Optional[int] = None
    completed: bool = False
    deviceType: Optional[str] = None


def _errors(exc: ValidationError) -> List[str]:
    return [f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in exc.errors()]


def _search_clause(search: str) -> Dict[str, Any]:
    pattern = {"$regex": re.escape(search), "$options": "i"}
    return {"$or": [{"title": pattern}, {"description": pattern}, {"tags": pattern}]}


# ---------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------

def own_game(game_id: str, current: Principal) -> Dict[str, Any]:
    """The caller's game, or 404 whether it is missing or someone else's."""
    game = db["game"].find_one({"_id": to_object_id(game_id), "developerId": current.user_id})
    if not game:
        raise HTTPException(status_code=404, detail=NOT_FOUND)
    return game


def _move_game(game: Dict[str, Any], target: str, extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    current = game.get("submissionStatus")
    ensure_transition(current, target)
    updated = db["game"].find_one_and_update(
        {"_id": game["_id"], "submissionStatus": current},
        {"$set": {"submissionStatus": target, "isLocked": is_locked(target), "updatedAt": utcnow(), **(extra or {})}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise HTTPException(status_code=409, detail="Game status changed concurrently, please retry")
    logger.info("Game %s moved %s -> %s", game["_id"], current, target)
    return updated


def current_version(game_id: str) -> Optional[Dict[str, Any]]:
    return db["gameversion"].find_one({"gameId": game_id, "isCurrentVersion": True}, sort=[("createdAt", -1)])


def _snapshot(game: Dict[str, Any]) -> Dict[str, Any]:
    snap = {f: game.get(f) for f in SNAPSHOT_FIELDS}
    snap["screenshots"] = snap["screenshots"] or []
    snap["tags"] = snap["tags"] or []
    return snap


def _record_version(game: Dict[str, Any], version_number: str, tag: str, status: str, change_log: str,
                    created_by: str, snapshot: Optional[Dict[str, Any]] = None, changes=None, **extra) -> str:
    """Retire the current version and store a new current snapshot."""
    game_id = str(game["_id"])
    db["gameversion"].update_many({"gameId": game_id, "isCurrentVersion": True}, {"$set": {"isCurrentVersion": False}})
    version = GameVersion(
        game_id=game_id,
        version_number=version_number,
        version_tag=tag,
        snapshot=snapshot if snapshot is not None else _snapshot(game),
        status=status,
        change_log=change_log,
        changes=changes or [],
        created_by=created_by,
        is_current_version=True,
        **extra,
    )
    return create_document("gameversion", version)


def can_revert_to(version: Dict[str, Any]) -> bool:
    return bool(version.get("isApproved")) and version.get("status") != REJECTED and not version.get("isRevert")


def _version_out(version: Dict[str, Any]) -> Dict[str, Any]:
    out = serialize(version)
    out["canRevertTo"] = can_revert_to(version)
    return out


def compare_snapshots(first: Dict[str, Any], second: Dict[str, Any]) -> List[Dict[str, Any]]:
    differences = []
    for field in COMPARED_FIELDS:
        if first.get(field) != second.get(field):
            differences.append({"field": field, "oldValue": first.get(field), "newValue": second.get(field), "type": "modified"})
    if (first.get("tags") or []) != (second.get("tags") or []):
        differences.append({"field": "tags", "oldValue": first.get("tags"), "newValue": second.get("tags"), "type": "modified"})

    shots1 = first.get("screenshots") or []
    shots2 = second.get("screenshots") or []
    if len(shots1) != len(shots2):
        differences.append({
            "field": "screenshots",
            "oldValue": f"{len(shots1)} screenshots",
            "newValue": f"{len(shots2)} screenshots",
            "type": "count_changed",
        })
    urls1 = sorted(s.get("url") for s in shots1)
    urls2 = sorted(s.get("url") for s in shots2)
    added = [u for u in urls2 if u not in urls1]
    removed = [u for u in urls1 if u not in urls2]
    if added:
        differences.append({"field": "screenshots", "type": "added", "value": added})
    if removed:
        differences.append({"field": "screenshots", "type": "removed", "value": removed})
    return differences


def _screenshots(raw: Optional[List[Dict[str, Any]]]) -> List[Dict[str, Any]]:
    shots = []
    for i, s in enumerate(raw or []):
        shot = Screenshot.model_validate({"order": i, **s})
        shots.append(shot.model_dump(by_alias=True))
    return shots


# ---------------------------------------------------------------------
# Developer: games
# ---------------------------------------------------------------------

@dev_router.get("/games")
def list_games(
    isActive: Optional[str] = None,
    isPublic: Optional[str] = None,
    category: Optional[str] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sortBy: str = "createdAt",
    sortOrder: str = "desc",
    current: Principal = Depends(developer_only),
):
    filt: Dict[str, Any] = {"developerId": current.user_id}
    if isActive is not None:
        filt["isActive"] = isActive == "true"
    if isPublic is not None:
        filt["isPublic"] = isPublic == "true"
    if category:
        filt["category"] = category
    if search:
        filt.update(_search_clause(search))

    sort_field = sortBy if sortBy in DEV_SORT_FIELDS else "createdAt"
    direction = -1 if sortOrder == "desc" else 1
    total = db["game"].count_documents(filt)
    games = [serialize(g) for g in db["game"].find(filt).sort([(sort_field, direction), ("_id", direction)])
             .skip((page - 1) * limit).limit(limit)]
    return {
        "message": "Games loaded",
        "games": games,
        "pagination": {"currentPage": page, "totalPages": (total + limit - 1) // limit, "totalGames": total, "limit": limit},
    }


@dev_router.post("/games", status_code=201)
def create_game(req: GameRequest, current: Principal = Depends(developer_only)):
    title = sanitize_input(req.title or "")
    description = sanitize_input(req.description or "")
    game_url = (req.gameUrl or "").strip()

    errors = []
    if not title:
        errors.append("Title is required")
    if not description:
        errors.append("Description is required")
    if not game_url:
        errors.append("Game URL is required")
    if len(title) > 200:
        errors.append("Title must not exceed 200 characters")
    if len(description) > 2000:
        errors.append("Description must not exceed 2000 characters")
    if errors:
        raise HTTPException(status_code=400, detail={"message": "Validation error", "errors": errors})

    developer = find_user(current.user_id)
    if not developer:
        raise HTTPException(status_code=404, detail="Developer not found")

    try:
        game = Game(
            title=title,
            description=description,
            short_description=sanitize_input(req.shortDescription),
            category=req.category or "focus",
            difficulty=req.difficulty or "medium",
            game_url=game_url,
            thumbnail_url=req.thumbnailUrl,
            cover_image_url=req.coverImageUrl,
            screenshots=_screenshots(req.screenshots),
            tags=[sanitize_input(t) for t in (req.tags or [])],
            min_play_time=req.minPlayTime,
            max_play_time=req.maxPlayTime,
            developer_id=current.user_id,
            developer_name=developer.get("name"),
            is_public=bool(req.isPublic),
            is_active=True if req.isActive is None else req.isActive,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail={"message": "Validation error", "errors": _errors(exc)})

    game_id = create_document("game", game)
    logger.info("Developer %s created game %s", current.user_id, game_id)
    return {"message": "Game created successfully", "game": serialize(own_game(game_id, current))}


@dev_router.get("/games/{game_id}")
def get_game(game_id: str, current: Principal = Depends(developer_only)):
    game = own_game(game_id, current)
    license_doc = db["license"].find_one({"gameId": game_id})
    out = serialize(game)
    out["license"] = compliance.validation_summary(license_doc) if license_doc else None
    return {"message": "Game loaded", "game": out}


@dev_router.put("/games/{game_id}")
def update_game(game_id: str, req: GameRequest, current: Principal = Depends(developer_only)):
    game = own_game(game_id, current)
    if game.get("isLocked"):
        raise HTTPException(status_code=403, detail="Game is locked during review and cannot be edited")

    updates = {k: v for k, v in req.model_dump(exclude_unset=True).items() if k in GAME_UPDATES}
    for field in ("title", "description", "shortDescription"):
        if field in updates:
            updates[field] = sanitize_input(updates[field]) or ""

    errors = []
    if "title" in updates and not updates["title"]:
        errors.append("Title cannot be empty")
    if "description" in updates and not updates["description"]:
        errors.append("Description cannot be empty")
    if "gameUrl" in updates and not (updates["gameUrl"] or "").strip():
        errors.append("Game URL cannot be empty")
    if len(updates.get("title") or "") > 200:
        errors.append("Title must not exceed 200 characters")
    if len(updates.get("description") or "") > 2000:
        errors.append("Description must not exceed 2000 characters")
    if errors:
        raise HTTPException(status_code=400, detail={"message": "Validation error", "errors": errors})

    try:
        if "screenshots" in updates:
            updates["screenshots"] = _screenshots(updates["screenshots"])
        clean = Game.model_validate({**game, **updates}).model_dump(by_alias=True)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail={"message": "Validation error", "errors": _errors(exc)})
    updates = {k: clean[k] for k in updates}
    updates["updatedAt"] = utcnow()

    # the lock may have been taken since the read above
    game = db["game"].find_one_and_update(
        {"_id": game["_id"], "isLocked": {"$ne": True}}, {"$set": updates}, return_document=ReturnDocument.AFTER
    )
    if game is None:
        raise HTTPException(status_code=403, detail="Game is locked during review and cannot be edited")
    return {"message": "Game updated successfully", "game": serialize(game)}


@dev_router.delete("/games/{game_id}")
def delete_game(game_id: str, req: ConfirmTitleRequest, current: Principal = Depends(developer_only)):
    game = own_game(game_id, current)
    if game.get("isLocked"):
        raise HTTPException(status_code=403, detail="Game is locked during review and cannot be deleted")
    if req.confirmTitle != game["title"]:
        raise HTTPException(status_code=400, detail="Title confirmation does not match. Cannot delete game.")

    active = db["gamesession"].count_documents({"gameId": game_id, "endTime": None})
    if active > 0:
        raise HTTPException(status_code=400, detail={
            "message": f"Cannot delete game. {active} active session(s) in progress.",
            "activeSessions": active,
        })

    db["game"].delete_one({"_id": game["_id"]})
    db["gameversion"].delete_many({"gameId": game_id})
    db["license"].delete_many({"gameId": game_id})
    logger.info("Developer %s deleted game %s", current.user_id, game_id)
    return {
        "message": "Game deleted successfully",
        "deletedGame": {
            "id": game_id,
            "title": game["title"],
            "category": game.get("category"),
            "totalPlays": game.get("totalPlays", 0),
            "totalPlayers": game.get("totalPlayers", 0),
        },
    }


# ---------------------------------------------------------------------
# Developer: submission
# ---------------------------------------------------------------------

@dev_router.post("/games/{game_id}/submit")
def submit_game(game_id: str, req: Optional[SubmitRequest] = None, current: Principal = Depends(developer_only)):
    req = req or SubmitRequest()
    game = own_game(game_id, current)
    if game.get("submissionStatus") == IN_REVIEW:
        raise HTTPException(status_code=400, detail="Game is already in review")

    errors = []
    if not (game.get("title") or "").strip():
        errors.append("Title is required")
    if not (game.get("description") or "").strip():
        errors.append("Description is required")
    if not game.get("gameUrl"):
        errors.append("Game file is required")
    if not game.get("coverImageUrl"):
        errors.append("Cover image is required")
    if len(game.get("screenshots") or []) < 2:
        errors.append("At least 2 screenshots are required")
    license_doc = db["license"].find_one({"gameId": game_id})
    if not compliance.is_complete(license_doc):
        errors.append("Complete license information is required")
    if errors:
        raise HTTPException(status_code=400, detail={
            "message": "Game cannot be submitted. Please complete all required fields.",
            "errors": errors,
        })

    now = utcnow()
    game = _move_game(game, IN_REVIEW, {"submittedForReviewAt": now})
    snapshot = _snapshot(game)
    snapshot.update({"hasLicense": True, "licenseId": str(license_doc["_id"])})
    version_id = _record_version(
        game, game.get("version") or "1.0.0", "stable", IN_REVIEW,
        sanitize_input(req.changeLog) or "Initial submission for review", current.user_id,
        snapshot=snapshot, changes=req.changes,
    )
    return {
        "message": "Game submitted for review successfully. Your game is now locked and cannot be edited "
                   "during the review process.",
        "submission": {
            "gameId": game_id,
            "versionId": version_id,
            "status": game["submissionStatus"],
            "submittedAt": serialize(now),
            "isLocked": game["isLocked"],
        },
    }


@dev_router.post("/games/{game_id}/resubmit")
def resubmit_game(game_id: str, req: Optional[SubmitRequest] = None, current: Principal = Depends(developer_only)):
    req = req or SubmitRequest()
    game = own_game(game_id, current)
    if game.get("submissionStatus") not in (CHANGES_REQUESTED, REJECTED):
        raise HTTPException(
            status_code=400, detail="Game can only be resubmitted if changes were requested or it was rejected"
        )

    unresolved = [c for c in game.get("requestedChanges") or [] if c.get("priority") == "Critical" and not c.get("resolved")]
    if unresolved:
        raise HTTPException(status_code=400, detail={
            "message": "All critical changes must be resolved before resubmission",
            "unresolvedChanges": [c["change"] for c in unresolved],
        })

    now = utcnow()
    version_number = increment_version(game.get("version"))
    game = _move_game(game, IN_REVIEW, {"submittedForReviewAt": now, "version": version_number})
    version_id = _record_version(
        game, version_number, "resubmission", IN_REVIEW,
        sanitize_input(req.changeLog) or "Resubmission after requested changes", current.user_id,
        changes=req.changes,
    )
    return {
        "message": "Game resubmitted for review successfully",
        "submission": {
            "gameId": game_id,
            "versionId": version_id,
            "versionNumber": version_number,
            "status": game["submissionStatus"],
            "submittedAt": serialize(now),
            "isLocked": game["isLocked"],
        },
    }


@dev_router.put("/games/{game_id}/changes/{change_id}/resolve")
def resolve_change(game_id: str, change_id: str, current: Principal = Depends(developer_only)):
    game = own_game(game_id, current)
    changes = game.get("requestedChanges") or []
    change = next((c for c in changes if c.get("id") == change_id), None)
    if change is None:
        raise HTTPException(status_code=404, detail="Requested change not found")

    change["resolved"] = True
    change["resolvedAt"] = utcnow()
    db["game"].update_one({"_id": game["_id"]}, {"$set": {"requestedChanges": changes, "updatedAt": utcnow()}})

    remaining = sum(1 for c in changes if not c.get("resolved"))
    return {"message": "Change marked as resolved", "allChangesResolved": remaining == 0, "remainingChanges": remaining}


@dev_router.get("/games/{game_id}/submission")
def submission_status(game_id: str, current: Principal = Depends(developer_only)):
    game = own_game(game_id, current)
    status = game.get("submissionStatus")

    timeline = [{"status": DRAFT, "date": game.get("createdAt"), "completed": True}]
    if game.get("submittedForReviewAt"):
        timeline.append({"status": IN_REVIEW, "date": game["submittedForReviewAt"], "completed": status != DRAFT})
    if status == CHANGES_REQUESTED:
        timeline.append({"status": CHANGES_REQUESTED, "date": game.get("lastReviewedAt"), "completed": True})
    if status == REJECTED:
        timeline.append({"status": REJECTED, "date": game.get("lastReviewedAt"), "completed": True})
    if game.get("approvedAt"):
        timeline.append({"status": APPROVED, "date": game["approvedAt"], "completed": True})
    if game.get("publishedAt"):
        timeline.append({"status": PUBLISHED, "date": game["publishedAt"], "completed": True})

    latest = db["gamereview"].find_one({"gameId": game_id}, sort=[("createdAt", -1), ("_id", -1)])
    versions = db["gameversion"].find({"gameId": game_id}).sort([("createdAt", -1), ("_id", -1)]).limit(5)
    return {
        "message": "Submission status loaded",
        "submission": serialize({
            "gameId": game_id,
            "title": game["title"],
            "currentStatus": status,
            "isLocked": game.get("isLocked", False),
            "timeline": timeline,
            "submittedAt": game.get("submittedForReviewAt"),
            "lastReviewedAt": game.get("lastReviewedAt"),
            "approvedAt": game.get("approvedAt"),
            "publishedAt": game.get("publishedAt"),
            "reviewerComments": game.get("reviewerComments"),
            "rejectionReason": game.get("rejectionReason"),
            "requestedChanges": game.get("requestedChanges") or [],
            "latestReview": latest,
            "recentVersions": [
                {"id": v["_id"], "versionNumber": v["versionNumber"], "status": v["status"],
                 "isApproved": v.get("isApproved", False), "createdAt": v.get("createdAt")}
                for v in versions
            ],
        }),
    }


@dev_router.get("/submissions")
def list_submissions(status: Optional[str] = None, current: Principal = Depends(developer_only)):
    filt: Dict[str, Any] = {"developerId": current.user_id}
    if status:
        filt["submissionStatus"] = status
    submissions = []
    for game in db["game"].find(filt).sort([("submittedForReviewAt", -1), ("_id", -1)]):
        changes = game.get("requestedChanges") or []
        submissions.append(serialize({
            "id": game["_id"],
            "title": game["title"],
            "status": game.get("submissionStatus"),
            "isLocked": game.get("isLocked", False),
            "submittedAt": game.get("submittedForReviewAt"),
            "lastReviewedAt": game.get("lastReviewedAt"),
            "approvedAt": game.get("approvedAt"),
            "publishedAt": game.get("publishedAt"),
            "pendingChanges": sum(1 for c in changes if not c.get("resolved")),
            "totalChanges": len(changes),
        }))
    return {"message": "Submissions loaded", "count": len(submissions), "submissions": submissions}


@dev_router.post("/games/{game_id}/publish")
def publish_game(game_id: str, current: Principal = Depends(developer_only)):
    game = own_game(game_id, current)
    now = utcnow()
    game = _move_game(game, PUBLISHED, {"publishedAt": now, "isPublic": True})
    version = current_version(game_id)
    if version:
        db["gameversion"].update_one(
            {"_id": version["_id"]},
            {"$set": {"status": PUBLISHED, "isPublished": True, "publishedAt": now, "updatedAt": now}},
        )
    return {"message": "Game published successfully", "game": serialize(game)}


# ---------------------------------------------------------------------
# Developer: versions
# ---------------------------------------------------------------------

@dev_router.get("/games/{game_id}/versions")
def list_versions(game_id: str, current: Principal = Depends(developer_only)):
    game = own_game(game_id, current)
    versions = [_version_out(v) for v in db["gameversion"].find({"gameId": game_id}).sort([("createdAt", -1), ("_id", -1)])]
    return {
        "message": "Versions loaded",
        "count": len(versions),
        "currentVersion": game.get("version"),
        "versions": versions,
    }


@dev_router.get("/games/{game_id}/versions/compare")
def compare_versions(game_id: str, versionId1: Optional[str] = None, versionId2: Optional[str] = None,
                     current: Principal = Depends(developer_only)):
    own_game(game_id, current)
    if not versionId1 or not versionId2:
        raise HTTPException(status_code=400, detail="Both versionId1 and versionId2 query parameters are required")
    first = db["gameversion"].find_one({"_id": to_object_id(versionId1), "gameId": game_id})
    second = db["gameversion"].find_one({"_id": to_object_id(versionId2), "gameId": game_id})
    if not first or not second:
        raise HTTPException(status_code=404, detail="One or both versions not found")

    differences = compare_snapshots(first.get("snapshot") or {}, second.get("snapshot") or {})

    def summary(v):
        return serialize({"id": v["_id"], "versionNumber": v["versionNumber"], "createdAt": v.get("createdAt"),
                          "status": v["status"]})

    return {
        "message": "Versions compared",
        "comparison": {
            "version1": summary(first),
            "version2": summary(second),
            "differences": differences,
            "hasChanges": bool(differences),
        },
    }


@dev_router.get("/games/{game_id}/versions/{version_id}")
def get_version(game_id: str, version_id: str, current: Principal = Depends(developer_only)):
    own_game(game_id, current)
    version = db["gameversion"].find_one({"_id": to_object_id(version_id), "gameId": game_id})
    if not version:
        raise HTTPException(status_code=404, detail="Version not found")
    return {"message": "Version loaded", "version": _version_out(version)}


@dev_router.post("/games/{game_id}/versions/{version_id}/revert")
def revert_version(game_id: str, version_id: str, req: RevertRequest, current: Principal = Depends(developer_only)):
    game = own_game(game_id, current)
    if is_locked(game.get("submissionStatus")) or game.get("isLocked"):
        raise HTTPException(status_code=403, detail="Cannot revert version while game is locked during review")
    if not req.confirmation or req.confirmation != game["title"]:
        raise HTTPException(status_code=400, detail={
            "message": "Please confirm the revert by providing the exact game title",
            "required": "Set confirmation field to the exact game title",
        })

    target = db["gameversion"].find_one({"_id": to_object_id(version_id), "gameId": game_id})
    if not target:
        raise HTTPException(status_code=404, detail="Version not found")
    if not can_revert_to(target):
        raise HTTPException(status_code=400, detail={
            "message": "This version cannot be reverted to. Only approved, non-rejected, non-revert versions "
                       "can be restored.",
            "versionStatus": target.get("status"),
            "isApproved": target.get("isApproved", False),
            "isRevert": target.get("isRevert", False),
        })

    previous = current_version(game_id)
    snapshot = dict(target.get("snapshot") or {})
    restored = {f: snapshot.get(f) for f in SNAPSHOT_FIELDS}
    restored["screenshots"] = [{**s, "order": i} for i, s in enumerate(snapshot.get("screenshots") or [])]
    restored["tags"] = restored["tags"] or []
    new_number = increment_version(game.get("version"))
    restored["version"] = new_number

    now = utcnow()
    game = _move_game(game, DRAFT, restored)
    _record_version(
        game, new_number, "revert", DRAFT, f"Reverted to version {target['versionNumber']}", current.user_id,
        snapshot=snapshot,
        changes=[{"type": "Other", "description": f"Restored game state from version {target['versionNumber']}"}],
        is_revert=True,
        reverted_from=str(previous["_id"]) if previous else None,
        reverted_to=str(target["_id"]),
        reverted_at=now,
        reverted_by=current.user_id,
    )
    logger.info("Game %s reverted to version %s", game_id, target["versionNumber"])
    return {
        "message": f"Successfully reverted to version {target['versionNumber']}. Your game has been restored "
                   "to its previous stable state.",
        "revert": {
            "newVersionNumber": new_number,
            "revertedToVersion": target["versionNumber"],
            "revertedAt": serialize(now),
            "newStatus": game["submissionStatus"],
            "isLocked": game["isLocked"],
            "snapshot": {
                "title": game["title"],
                "description": game["description"],
                "gameUrl": game.get("gameUrl"),
                "screenshotCount": len(game.get("screenshots") or []),
            },
        },
    }


# ---------------------------------------------------------------------
# Admin: review queue
# ---------------------------------------------------------------------

@reviews_router.get("/pending")
def pending_reviews(current: Principal = Depends(admin_only)):
    games = []
    for game in db["game"].find({"submissionStatus": IN_REVIEW}).sort([("submittedForReviewAt", 1), ("_id", 1)]):
        developer = find_user(game["developerId"]) if ObjectId.is_valid(game["developerId"]) else None
        games.append(serialize({
            "id": game["_id"],
            "title": game["title"],
            "developer": {
                "id": game["developerId"],
                "name": game.get("developerName") or (developer or {}).get("name"),
                "email": (developer or {}).get("email"),
            },
            "submittedAt": game.get("submittedForReviewAt"),
            "version": game.get("version"),
            "category": game.get("category"),
        }))
    return {"message": "Pending reviews loaded", "count": len(games), "games": games}


def _open_review(game_id: str, reviewer_id: str) -> Optional[Dict[str, Any]]:
    return db["gamereview"].find_one({"gameId": game_id, "reviewerId": reviewer_id, "completedAt": None})


@reviews_router.post("/{game_id}/start")
def start_review(game_id: str, current: Principal = Depends(admin_only)):
    game = db["game"].find_one({"_id": to_object_id(game_id)})
    if not game:
        raise HTTPException(status_code=404, detail="Game not found")
    if game.get("submissionStatus") != IN_REVIEW:
        raise HTTPException(status_code=400, detail="Game is not in review status")

    review = _open_review(game_id, current.user_id)
    if review is None:
        version = current_version(game_id)
        review_id = create_document("gamereview", GameReview(
            game_id=game_id,
            version_id=str(version["_id"]) if version else None,
            reviewer_id=current.user_id,
            started_at=utcnow(),
        ))
        review = db["gamereview"].find_one({"_id": to_object_id(review_id)})
    return {
        "message": "Review started successfully",
        "review": serialize({
            "id": review["_id"],
            "gameId": game_id,
            "gameTitle": game["title"],
            "status": review["status"],
            "startedAt": review["startedAt"],
        }),
    }


@reviews_router.post("/{game_id}/decision")
def review_decision(game_id: str, req: DecisionRequest, current: Principal = Depends(admin_only)):
    game = db["game"].find_one({"_id": to_object_id(game_id)})
    if not game:
        raise HTTPException(status_code=404, detail="Game not found")
    if req.status not in REVIEW_DECISIONS:
        raise HTTPException(status_code=400, detail=f"Status must be one of: {', '.join(REVIEW_DECISIONS)}")

    try:
        changes = [RequestedChange.model_validate(c).model_dump(by_alias=True) for c in (req.requestedChanges or [])]
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail={"message": "Validation error", "errors": _errors(exc)})
    reason = sanitize_input(req.rejectionReason)
    if req.status == CHANGES_REQUESTED and not changes:
        raise HTTPException(status_code=400, detail="At least one requested change is required")
    if req.status == REJECTED and not reason:
        raise HTTPException(status_code=400, detail="Rejection reason is required")

    now = utcnow()
    comments = sanitize_input(req.overallComments)
    extra: Dict[str, Any] = {"lastReviewedAt": now, "lastReviewedBy": current.user_id, "reviewerComments": comments}
    if req.status == APPROVED:
        extra.update({"approvedAt": now, "approvedBy": current.user_id})
    elif req.status == CHANGES_REQUESTED:
        extra["requestedChanges"] = [{**c, "id": str(ObjectId()), "resolved": False} for c in changes]
    else:
        extra.update({"rejectedAt": now, "rejectionReason": reason})
    game = _move_game(game, req.status, extra)

    review = _open_review(game_id, current.user_id)
    if review is None:
        version = current_version(game_id)
        review_id = create_document("gamereview", GameReview(
            game_id=game_id,
            version_id=str(version["_id"]) if version else None,
            reviewer_id=current.user_id,
            started_at=now,
        ))
        review = db["gamereview"].find_one({"_id": to_object_id(review_id)})
    started = review["startedAt"]
    if started.tzinfo is None:
        started = started.replace(tzinfo=now.tzinfo)
    review = db["gamereview"].find_one_and_update(
        {"_id": review["_id"]},
        {"$set": {
            "status": req.status,
            "overallComments": comments,
            "functionalityTest": req.functionalityTest or {},
            "policyCompliance": req.policyCompliance or {},
            "contentReview": req.contentReview or {},
            "performanceTest": req.performanceTest or {},
            "uiuxEvaluation": req.uiuxEvaluation or {},
            "requestedChanges": changes,
            "rejectionReason": reason,
            "completedAt": now,
            "reviewDuration": int((now - started).total_seconds() // 60),
            "updatedAt": now,
        }},
        return_document=ReturnDocument.AFTER,
    )

    version = current_version(game_id)
    if version:
        version_changes: Dict[str, Any] = {
            "status": req.status, "reviewedAt": now, "reviewedBy": current.user_id,
            "reviewerComments": comments, "updatedAt": now,
        }
        if req.status == APPROVED:
            version_changes.update({"isApproved": True, "approvedAt": now, "approvedBy": current.user_id})
        elif req.status == REJECTED:
            version_changes["rejectionReason"] = reason
        db["gameversion"].update_one({"_id": version["_id"]}, {"$set": version_changes})

    return {
        "message": f"Game {req.status.lower()} successfully",
        "review": serialize({
            "id": review["_id"],
            "status": review["status"],
            "completedAt": review["completedAt"],
            "reviewDuration": review["reviewDuration"],
        }),
        "game": {"id": game_id, "submissionStatus": game["submissionStatus"], "isLocked": game["isLocked"]},
    }


# ---------------------------------------------------------------------
# Public library
# ---------------------------------------------------------------------

LIBRARY_FILTER = {"submissionStatus": PUBLISHED, "isPublic": True, "isActive": True}


def _library_game(game_id: str) -> Dict[str, Any]:
    game = db["game"].find_one({"_id": to_object_id(game_id), **LIBRARY_FILTER})
    if not game:
        raise HTTPException(status_code=404, detail="Game not found or not available")
    return game


def _library_item(game: Dict[str, Any]) -> Dict[str, Any]:
    keep = (
        "_id", "title", "description", "shortDescription", "category", "difficulty", "gameUrl",
        "thumbnailUrl", "coverImageUrl", "screenshots", "developerName", "totalPlays", "totalPlayers",
        "averageSessionLength", "tags", "minPlayTime", "maxPlayTime", "version",
    )
    return serialize({k: game.get(k) for k in keep})


@library_router.get("/library")
def game_library(
    category: Optional[str] = None,
    difficulty: Optional[str] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    sortBy: str = "totalPlays",
    sortOrder: str = "desc",
):
    filt: Dict[str, Any] = dict(LIBRARY_FILTER)
    if category:
        filt["category"] = category
    if difficulty:
        filt["difficulty"] = difficulty
    if search:
        filt.update(_search_clause(search))

    sort_field = sortBy if sortBy in LIBRARY_SORT_FIELDS else "totalPlays"
    direction = -1 if sortOrder == "desc" else 1
    total = db["game"].count_documents(filt)
    games = [_library_item(g) for g in db["game"].find(filt).sort([(sort_field, direction), ("_id", direction)])
             .skip((page - 1) * limit).limit(limit)]
    categories = {
        row["_id"]: row["count"]
        for row in db["game"].aggregate([
            {"$match": dict(LIBRARY_FILTER)},
            {"$group": {"_id": "$category", "count": {"$sum": 1}}},
        ])
    }
    total_pages = (total + limit - 1) // limit
    return {
        "message": "Game library fetched successfully",
        "games": games,
        "categories": categories,
        "pagination": {
            "currentPage": page,
            "totalPages": total_pages,
            "totalGames": total,
            "limit": limit,
            "hasNextPage": page < total_pages,
            "hasPrevPage": page > 1,
        },
    }


@library_router.get("/library/{game_id}")
def library_game(game_id: str):
    return {"message": "Game details fetched successfully", "game": _library_item(_library_game(game_id))}


@library_router.post("/library/{game_id}/play", status_code=201)
def record_play(game_id: str, req: Optional[PlayRequest] = None, current: Principal = Depends(get_current_user)):
    req = req or PlayRequest()
    if req.duration < 0:
        raise HTTPException(status_code=400, detail="Duration must not be negative")
    game = _library_game(game_id)

    first_play = db["gamesession"].find_one({"gameId": game_id, "userId": current.user_id}) is None
    now = utcnow()
    try:
        session = GameSession(
            game_id=game_id,
            user_id=current.user_id,
            start_time=now - timedelta(seconds=req.duration),
            end_time=now,
            duration=req.duration,
            score=req.score,
            level=req.level,
            completed=req.completed,
            device_type=req.deviceType,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail={"message": "Validation error", "errors": _errors(exc)})
    session_id = create_document("gamesession", session)

    game = db["game"].find_one_and_update(
        {"_id": game["_id"]},
        {"$inc": {"totalPlays": 1, "totalPlayTime": req.duration, "totalPlayers": 1 if first_play else 0}},
        return_document=ReturnDocument.AFTER,
    )
    average = game["totalPlayTime"] / game["totalPlays"] if game.get("totalPlays") else 0
    db["game"].update_one({"_id": game["_id"]}, {"$set": {"averageSessionLength": average}})
    return {
        "message": "Play session recorded",
        "sessionId": session_id,
        "stats": {
            "totalPlays": game["totalPlays"],
            "totalPlayers": game["totalPlayers"],
            "totalPlayTime": game["totalPlayTime"],
            "averageSessionLength": average,
        },
    }
