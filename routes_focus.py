"""
Focus tracking: timed sessions with a per-user progress accumulator, the
user's current goal, and the onboarding survey.

Every route is authenticated. A `userId` supplied by the client defaults to
the caller and may only name someone else when the caller is an admin.
"""

import logging
from datetime import timedelta
from typing import Optional, Dict, Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ValidationError
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from accounts import find_user
from database import db, create_document, serialize, to_object_id, utcnow
from schemas import Session, SurveyAnswers
from security import Principal, get_current_user, ensure_owner_or_admin
from validation import sanitize_input

logger = logging.getLogger(__name__)

sessions_router = APIRouter(prefix="/api/sessions", tags=["sessions"])
goals_router = APIRouter(prefix="/api/goals", tags=["goals"])
survey_router = APIRouter(prefix="/api/survey", tags=["survey"])

TIME_RANGES = {"week": 7, "month": 30}


class StartSessionRequest(BaseModel):
    userId: Optional[str] = None
    category: Optional[str] = None
    duration: Optional[int] = None


class EndSessionRequest(BaseModel):
    sessionId: Optional[str] = None


class GoalRequest(BaseModel):
    userId: Optional[str] = None
    goalText: Optional[str] = None


class SurveyRequest(BaseModel):
    userId: Optional[str] = None
    answers: Optional[Dict[str, Any]] = None


# ---------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------

def _session_or_404(session_id: str, current: Principal) -> Dict[str, Any]:
    session = db["session"].find_one({"_id": to_object_id(session_id)})
    if not session:
        raise HTTPException(status_code=404, detail="Session not found")
    ensure_owner_or_admin(current, session["userId"])
    return session


def _bump_progress(user_id: str, minutes: int) -> None:
    now = utcnow()
    update = {
        "$inc": {"totalMinutes": minutes, "sessionsCompleted": 1},
        "$set": {"updatedAt": now},
        "$setOnInsert": {"createdAt": now},
    }
    try:
        db["progress"].update_one({"userId": user_id}, update, upsert=True)
    except DuplicateKeyError:
        # a concurrent upsert created the row first; it exists now
        db["progress"].update_one({"userId": user_id}, update)


@sessions_router.post("/start", status_code=201)
def start_session(req: StartSessionRequest, current: Principal = Depends(get_current_user)):
    user_id = ensure_owner_or_admin(current, req.userId)
    category = sanitize_input(req.category or "")
    if not category:
        raise HTTPException(status_code=400, detail="Category is required")
    if req.duration is None or req.duration <= 0:
        raise HTTPException(status_code=400, detail="Duration must be a positive whole number of minutes")

    session = Session(user_id=user_id, category=category, duration=req.duration, started_at=utcnow())
    session_id = create_document("session", session)
    return {"message": "Session started", "session": serialize(db["session"].find_one({"_id": to_object_id(session_id)}))}


@sessions_router.post("/end")
def end_session(req: EndSessionRequest, current: Principal = Depends(get_current_user)):
    if not req.sessionId:
        raise HTTPException(status_code=400, detail="sessionId is required")
    session = _session_or_404(req.sessionId, current)

    now = utcnow()
    ended = db["session"].find_one_and_update(
        {"_id": session["_id"], "completed": False},
        {"$set": {"completed": True, "endedAt": now, "updatedAt": now}},
        return_document=ReturnDocument.AFTER,
    )
    if ended is None:
        raise HTTPException(status_code=400, detail="Session already ended")

    _bump_progress(ended["userId"], ended["duration"])
    logger.info("Session %s ended (%d min)", req.sessionId, ended["duration"])
    return {"message": "Session ended", "session": serialize(ended)}


@sessions_router.get("")
def list_sessions(userId: Optional[str] = None, filter: Optional[str] = None,
                  current: Principal = Depends(get_current_user)):
    user_id = ensure_owner_or_admin(current, userId)
    query: Dict[str, Any] = {"userId": user_id}
    if filter in TIME_RANGES:
        query["startedAt"] = {"$gte": utcnow() - timedelta(days=TIME_RANGES[filter])}
    sessions = [serialize(s) for s in db["session"].find(query).sort("startedAt", -1)]
    return {"message": "Sessions loaded", "count": len(sessions), "sessions": sessions}


@sessions_router.get("/stats/data")
def session_stats(userId: Optional[str] = None, current: Principal = Depends(get_current_user)):
    user_id = ensure_owner_or_admin(current, userId)
    total_minutes = 0
    completed_count = 0
    for s in db["session"].find({"userId": user_id, "completed": True}):
        total_minutes += s.get("duration", 0)
        completed_count += 1

    progress = db["progress"].find_one({"userId": user_id})
    return {
        "message": "Session stats loaded",
        "totalMinutes": total_minutes,
        "completedCount": completed_count,
        "progress": serialize(progress) if progress else None,
    }


@sessions_router.get("/{session_id}")
def get_session(session_id: str, current: Principal = Depends(get_current_user)):
    return {"message": "Session loaded", "session": serialize(_session_or_404(session_id, current))}


# ---------------------------------------------------------------------
# Goals
# ---------------------------------------------------------------------

@goals_router.post("")
def set_goal(req: GoalRequest, current: Principal = Depends(get_current_user)):
    user_id = ensure_owner_or_admin(current, req.userId)
    goal_text = sanitize_input(req.goalText or "")
    if not goal_text:
        raise HTTPException(status_code=400, detail="Goal text is required")

    now = utcnow()
    update = {
        "$set": {"goalText": goal_text, "updatedAt": now},
        "$setOnInsert": {"userId": user_id, "createdAt": now},
    }
    try:
        goal = db["goal"].find_one_and_update(
            {"userId": user_id}, update, upsert=True, return_document=ReturnDocument.AFTER
        )
    except DuplicateKeyError:
        goal = db["goal"].find_one_and_update(
            {"userId": user_id}, {"$set": update["$set"]}, return_document=ReturnDocument.AFTER
        )
    return {"message": "Goal saved", "goal": serialize(goal)}


@goals_router.get("/{user_id}")
def get_goal(user_id: str, current: Principal = Depends(get_current_user)):
    ensure_owner_or_admin(current, user_id)
    goal = db["goal"].find_one({"userId": user_id})
    if not goal:
        raise HTTPException(status_code=404, detail="No goal found")
    return {"message": "Goal loaded", "goal": serialize(goal)}


# ---------------------------------------------------------------------
# Survey
# ---------------------------------------------------------------------

@survey_router.post("", status_code=201)
def submit_survey(req: SurveyRequest, current: Principal = Depends(get_current_user)):
    user_id = ensure_owner_or_admin(current, req.userId)
    if not req.answers:
        raise HTTPException(status_code=400, detail="userId and answers are required")
    if not find_user(user_id):
        raise HTTPException(status_code=404, detail="User not found")

    try:
        answers = SurveyAnswers.model_validate(req.answers)
    except ValidationError as exc:
        errors = [f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in exc.errors()]
        raise HTTPException(status_code=400, detail={"message": "Invalid survey answers", "errors": errors})

    survey_id = create_document("survey", {"userId": user_id, "answers": answers.model_dump(by_alias=True)})
    survey = db["survey"].find_one({"_id": to_object_id(survey_id)})
    return {"message": "Survey saved successfully", "survey": serialize(survey)}


@survey_router.get("/{user_id}")
def get_survey(user_id: str, current: Principal = Depends(get_current_user)):
    ensure_owner_or_admin(current, user_id)
    survey = db["survey"].find_one({"userId": user_id}, sort=[("createdAt", -1), ("_id", -1)])
    if not survey:
        raise HTTPException(status_code=404, detail="No survey found for this user")
    return {"message": "Survey loaded", "survey": serialize(survey)}
