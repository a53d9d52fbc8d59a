"""
Challenge templates (curated by coaches and admins) and users' participation
in them.
"""

import re
import logging
from datetime import timedelta
from typing import Optional, List, Dict, Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ValidationError
from pymongo import ReturnDocument

from database import db, create_document, serialize, to_object_id, utcnow
from schemas import ChallengeTemplate, Challenge, DailyProgress
from security import (
    Principal, get_current_user, get_optional_user, require_roles,
    ROLE_ADMIN, ROLE_COACH,
)
from validation import sanitize_input

logger = logging.getLogger(__name__)

templates_router = APIRouter(prefix="/api/challenge-templates", tags=["challenge-templates"])
challenges_router = APIRouter(prefix="/api/challenges", tags=["challenges"])

ACTIVE_STATUSES = ["not_started", "in_progress"]
SORT_FIELDS = ("createdAt", "updatedAt", "title", "category", "difficulty", "totalParticipants")
TEMPLATE_UPDATES = (
    "title", "description", "category", "difficulty", "duration", "targetMetric",
    "targetValue", "targetUnit", "pointsReward", "isPublic", "isActive", "isFeatured", "tags",
)
UNIT_DAYS = {"days": 1, "weeks": 7, "months": 30}


class TemplateRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    difficulty: Optional[str] = None
    duration: Optional[Dict[str, Any]] = None
    targetMetric: Optional[str] = None
    targetValue: Optional[float] = None
    targetUnit: Optional[str] = None
    pointsReward: Optional[int] = None
    isPublic: Optional[bool] = None
    isActive: Optional[bool] = None
    isFeatured: Optional[bool] = None
    tags: Optional[List[str]] = None


class DeleteTemplateRequest(BaseModel):
    confirmTitle: Optional[str] = None


class ProgressRequest(BaseModel):
    value: Optional[float] = None
    notes: Optional[str] = None


def _errors(exc: ValidationError) -> List[str]:
    return [f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in exc.errors()]


def _parse_bool(value: Optional[str]) -> Optional[bool]:
    if value is None:
        return None
    return value == "true"


# ---------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------

def _template_or_404(template_id: str) -> Dict[str, Any]:
    template = db["challengetemplate"].find_one({"_id": to_object_id(template_id)})
    if not template:
        raise HTTPException(status_code=404, detail="Challenge template not found")
    return template


def _ensure_template_owner(template: Dict[str, Any], current: Principal) -> None:
    if current.role != ROLE_ADMIN and template.get("createdBy") != current.user_id:
        raise HTTPException(status_code=403, detail="You can only manage challenge templates you created")


def _completion_rate(template: Dict[str, Any]) -> float:
    participants = template.get("totalParticipants", 0)
    if not participants:
        return 0
    return round(template.get("totalCompletions", 0) / participants * 100, 2)


def _template_out(template: Dict[str, Any]) -> Dict[str, Any]:
    out = serialize(template)
    out["completionRate"] = _completion_rate(template)
    return out


def _active_participants(template_id: str) -> int:
    return db["challenge"].count_documents({"templateId": template_id, "status": {"$in": ACTIVE_STATUSES}})


@templates_router.get("")
def list_templates(
    category: Optional[str] = None,
    difficulty: Optional[str] = None,
    isPublic: Optional[str] = None,
    isActive: Optional[str] = None,
    isFeatured: Optional[str] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sortBy: str = "createdAt",
    sortOrder: str = "desc",
    viewer: Optional[Principal] = Depends(get_optional_user),
):
    filt: Dict[str, Any] = {}
    if viewer is not None and viewer.role == ROLE_ADMIN:
        for field, value in (("isPublic", isPublic), ("isActive", isActive)):
            if _parse_bool(value) is not None:
                filt[field] = _parse_bool(value)
    else:
        filt.update({"isPublic": True, "isActive": True})
    if category:
        filt["category"] = category
    if difficulty:
        filt["difficulty"] = difficulty
    if _parse_bool(isFeatured) is not None:
        filt["isFeatured"] = _parse_bool(isFeatured)
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        filt["$or"] = [{"title": pattern}, {"description": pattern}]

    sort_field = sortBy if sortBy in SORT_FIELDS else "createdAt"
    direction = -1 if sortOrder == "desc" else 1
    total = db["challengetemplate"].count_documents(filt)
    cursor = (
        db["challengetemplate"].find(filt)
        .sort([(sort_field, direction), ("_id", direction)])
        .skip((page - 1) * limit)
        .limit(limit)
    )
    templates = [_template_out(t) for t in cursor]
    return {
        "message": "Challenge templates loaded",
        "templates": templates,
        "pagination": {
            "currentPage": page,
            "totalPages": (total + limit - 1) // limit,
            "totalTemplates": total,
            "limit": limit,
        },
    }


@templates_router.get("/stats")
def template_stats(current: Principal = Depends(require_roles(ROLE_ADMIN))):
    templates = db["challengetemplate"]
    challenges = db["challenge"]
    total_challenges = challenges.count_documents({})
    completed = challenges.count_documents({"status": "completed"})

    by_category: Dict[str, int] = {}
    by_difficulty: Dict[str, int] = {}
    for t in templates.find({}, {"category": 1, "difficulty": 1}):
        by_category[t.get("category")] = by_category.get(t.get("category"), 0) + 1
        by_difficulty[t.get("difficulty")] = by_difficulty.get(t.get("difficulty"), 0) + 1

    top = templates.find({"isActive": True}).sort("totalCompletions", -1).limit(5)
    return {
        "message": "Challenge statistics loaded",
        "stats": {
            "templates": {
                "total": templates.count_documents({}),
                "active": templates.count_documents({"isActive": True}),
                "public": templates.count_documents({"isPublic": True}),
                "featured": templates.count_documents({"isFeatured": True}),
            },
            "challenges": {
                "total": total_challenges,
                "active": challenges.count_documents({"status": {"$in": ACTIVE_STATUSES}}),
                "completed": completed,
                "completionRate": round(completed / total_challenges * 100, 2) if total_challenges else 0,
            },
            "byCategory": by_category,
            "byDifficulty": by_difficulty,
            "topPerformers": [
                {
                    "id": str(t["_id"]),
                    "title": t["title"],
                    "participants": t.get("totalParticipants", 0),
                    "completions": t.get("totalCompletions", 0),
                    "completionRate": _completion_rate(t),
                }
                for t in top
            ],
        },
    }


@templates_router.get("/{template_id}")
def get_template(template_id: str):
    template = _template_or_404(template_id)
    out = _template_out(template)
    out["activeParticipants"] = _active_participants(template_id)
    return {"message": "Challenge template loaded", "template": out}


@templates_router.post("", status_code=201)
def create_template(req: TemplateRequest, current: Principal = Depends(require_roles(ROLE_COACH, ROLE_ADMIN))):
    title = sanitize_input(req.title or "")
    description = sanitize_input(req.description or "")
    errors = []
    if not title:
        errors.append("Title is required")
    if not description:
        errors.append("Description is required")
    if not req.duration or not isinstance(req.duration.get("value"), (int, float)) or req.duration["value"] < 1:
        errors.append("Valid duration is required")
    if len(title) > 200:
        errors.append("Title must not exceed 200 characters")
    if len(description) > 2000:
        errors.append("Description must not exceed 2000 characters")
    if errors:
        raise HTTPException(status_code=400, detail={"message": "Validation error", "errors": errors})

    try:
        template = ChallengeTemplate(
            title=title,
            description=description,
            category=req.category or "focus",
            difficulty=req.difficulty or "medium",
            duration={"value": int(req.duration["value"]), "unit": req.duration.get("unit") or "days"},
            target_metric=req.targetMetric,
            target_value=req.targetValue or 0,
            target_unit=req.targetUnit,
            points_reward=req.pointsReward or 0,
            is_public=True if req.isPublic is None else req.isPublic,
            is_active=True if req.isActive is None else req.isActive,
            is_featured=bool(req.isFeatured),
            tags=[sanitize_input(t) for t in (req.tags or [])],
            created_by=current.user_id,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail={"message": "Validation error", "errors": _errors(exc)})

    template_id = create_document("challengetemplate", template)
    logger.info("Challenge template %s created by %s", template_id, current.user_id)
    return {"message": "Challenge template created successfully", "template": _template_out(_template_or_404(template_id))}


@templates_router.put("/{template_id}")
def update_template(template_id: str, req: TemplateRequest,
                    current: Principal = Depends(require_roles(ROLE_COACH, ROLE_ADMIN))):
    template = _template_or_404(template_id)
    _ensure_template_owner(template, current)

    updates = {k: v for k, v in req.model_dump(exclude_unset=True).items() if k in TEMPLATE_UPDATES}
    for field in ("title", "description", "targetMetric", "targetUnit"):
        if field in updates:
            updates[field] = sanitize_input(updates[field])

    errors = []
    if "title" in updates and not updates["title"]:
        errors.append("Title cannot be empty")
    if "description" in updates and not updates["description"]:
        errors.append("Description cannot be empty")
    if updates.get("title") and len(updates["title"]) > 200:
        errors.append("Title must not exceed 200 characters")
    if updates.get("description") and len(updates["description"]) > 2000:
        errors.append("Description must not exceed 2000 characters")
    if errors:
        raise HTTPException(status_code=400, detail={"message": "Validation error", "errors": errors})

    try:
        merged = ChallengeTemplate.model_validate({**template, **updates})
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail={"message": "Validation error", "errors": _errors(exc)})
    clean = merged.model_dump(by_alias=True)
    updates = {k: clean[k] for k in updates}
    updates.update({"lastModifiedBy": current.user_id, "updatedAt": utcnow()})

    template = db["challengetemplate"].find_one_and_update(
        {"_id": template["_id"]}, {"$set": updates}, return_document=ReturnDocument.AFTER
    )
    return {"message": "Challenge template updated successfully", "template": _template_out(template)}


@templates_router.delete("/{template_id}")
def delete_template(template_id: str, req: DeleteTemplateRequest,
                    current: Principal = Depends(require_roles(ROLE_COACH, ROLE_ADMIN))):
    template = _template_or_404(template_id)
    _ensure_template_owner(template, current)
    if req.confirmTitle != template["title"]:
        raise HTTPException(status_code=400, detail="Title confirmation does not match. Cannot delete challenge.")

    active = _active_participants(template_id)
    if active > 0:
        raise HTTPException(status_code=400, detail={
            "message": f"Cannot delete challenge. {active} user(s) are currently participating.",
            "activeParticipants": active,
        })

    db["challengetemplate"].delete_one({"_id": template["_id"]})
    logger.info("Challenge template %s deleted by %s", template_id, current.user_id)
    return {
        "message": "Challenge template deleted successfully",
        "deletedTemplate": {
            "id": template_id,
            "title": template["title"],
            "category": template.get("category"),
            "totalParticipants": template.get("totalParticipants", 0),
        },
    }


# ---------------------------------------------------------------------
# Participation
# ---------------------------------------------------------------------

def _own_challenge(challenge_id: str, current: Principal) -> Dict[str, Any]:
    challenge = db["challenge"].find_one({"_id": to_object_id(challenge_id)})
    if not challenge or (challenge["userId"] != current.user_id and current.role != ROLE_ADMIN):
        raise HTTPException(status_code=404, detail="Challenge not found")
    return challenge


def _streak(daily: List[Dict[str, Any]], today) -> int:
    """Consecutive days, ending today, with at least one completed entry."""
    days = {d["date"].date() for d in daily if d.get("completed")}
    streak = 0
    day = today
    while day in days:
        streak += 1
        day -= timedelta(days=1)
    return streak


@challenges_router.post("/join/{template_id}", status_code=201)
def join_challenge(template_id: str, current: Principal = Depends(get_current_user)):
    template = _template_or_404(template_id)
    if not template.get("isActive") or (not template.get("isPublic") and current.role != ROLE_ADMIN):
        raise HTTPException(status_code=400, detail="This challenge is not available")
    if db["challenge"].find_one({"templateId": template_id, "userId": current.user_id,
                                 "status": {"$in": ACTIVE_STATUSES}}):
        raise HTTPException(status_code=400, detail="You are already participating in this challenge")

    now = utcnow()
    duration = template["duration"]
    challenge = Challenge(
        template_id=template_id,
        user_id=current.user_id,
        title=template["title"],
        description=template["description"],
        category=template["category"],
        difficulty=template["difficulty"],
        duration=duration,
        target_metric=template.get("targetMetric"),
        target_value=template.get("targetValue", 0),
        target_unit=template.get("targetUnit"),
        status="in_progress",
        start_date=now,
        end_date=now + timedelta(days=duration["value"] * UNIT_DAYS.get(duration.get("unit"), 1)),
        points_reward=template.get("pointsReward", 0),
    )
    challenge_id = create_document("challenge", challenge)
    db["challengetemplate"].update_one({"_id": template["_id"]}, {"$inc": {"totalParticipants": 1}})
    logger.info("User %s joined challenge template %s", current.user_id, template_id)
    return {"message": "Challenge joined", "challenge": serialize(_own_challenge(challenge_id, current))}


@challenges_router.get("/mine")
def my_challenges(status: Optional[str] = None, current: Principal = Depends(get_current_user)):
    filt: Dict[str, Any] = {"userId": current.user_id}
    if status:
        filt["status"] = status
    challenges = [serialize(c) for c in db["challenge"].find(filt).sort("createdAt", -1)]
    return {"message": "Challenges loaded", "count": len(challenges), "challenges": challenges}


@challenges_router.get("/{challenge_id}")
def get_challenge(challenge_id: str, current: Principal = Depends(get_current_user)):
    return {"message": "Challenge loaded", "challenge": serialize(_own_challenge(challenge_id, current))}


@challenges_router.post("/{challenge_id}/progress")
def log_progress(challenge_id: str, req: ProgressRequest, current: Principal = Depends(get_current_user)):
    challenge = _own_challenge(challenge_id, current)
    if challenge["status"] != "in_progress":
        raise HTTPException(status_code=400, detail="Only challenges in progress accept progress")
    if req.value is None or req.value < 0:
        raise HTTPException(status_code=400, detail="Progress value must be a non-negative number")

    now = utcnow()
    entry = DailyProgress(date=now, value=req.value, notes=sanitize_input(req.notes), completed=req.value > 0)
    daily = challenge.get("dailyProgress", []) + [entry.model_dump(by_alias=True)]
    current_progress = challenge.get("currentProgress", 0) + req.value
    target = challenge.get("targetValue") or 0
    streak = _streak(daily, now.date())

    changes: Dict[str, Any] = {
        "currentProgress": current_progress,
        "streakCount": streak,
        "longestStreak": max(streak, challenge.get("longestStreak", 0)),
        "updatedAt": now,
    }
    if target > 0:
        changes["progressPercentage"] = min(100, current_progress / target * 100)
    completed = target > 0 and current_progress >= target
    if completed:
        changes.update({
            "status": "completed",
            "completedDate": now,
            "progressPercentage": 100,
            "badgeEarned": True,
            "pointsEarned": challenge.get("pointsReward", 0),
        })

    updated = db["challenge"].find_one_and_update(
        {"_id": challenge["_id"], "status": "in_progress"},
        {"$set": changes, "$push": {"dailyProgress": entry.model_dump(by_alias=True)}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise HTTPException(status_code=400, detail="Only challenges in progress accept progress")
    if completed:
        db["challengetemplate"].update_one(
            {"_id": to_object_id(challenge["templateId"])}, {"$inc": {"totalCompletions": 1}}
        )
        logger.info("User %s completed challenge %s", current.user_id, challenge_id)

    return {
        "message": "Challenge completed!" if completed else "Progress logged",
        "challenge": serialize(updated),
    }


@challenges_router.post("/{challenge_id}/abandon")
def abandon_challenge(challenge_id: str, current: Principal = Depends(get_current_user)):
    challenge = _own_challenge(challenge_id, current)
    updated = db["challenge"].find_one_and_update(
        {"_id": challenge["_id"], "status": {"$in": ACTIVE_STATUSES}},
        {"$set": {"status": "abandoned", "updatedAt": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise HTTPException(status_code=400, detail="Only active challenges can be abandoned")
    return {"message": "Challenge abandoned", "challenge": serialize(updated)}
