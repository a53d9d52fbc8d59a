"""
Coach onboarding: users apply, admins approve or reject exactly once, and
approved coaches manage a public profile.

Approval and rejection only touch a request that is still pending
(`find_one_and_update` filtered on status), and coach profiles are unique per
user, so concurrent decisions on one request cannot produce two profiles.
"""

import logging
from typing import Optional, List, Dict, Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ValidationError
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from accounts import find_user, get_user_or_404
from database import db, create_document, serialize, to_object_id, utcnow
from notifications import send_coach_approval_email, send_coach_rejection_email
from schemas import CoachRequest, CoachProfile, Certification, SocialLinks
from security import Principal, get_current_user, require_roles, ROLE_ADMIN, ROLE_COACH
from validation import sanitize_input

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/coach", tags=["coach"])

PROFILE_UPDATES = (
    "displayName", "avatar", "bio", "expertise", "experience",
    "certifications", "socialLinks", "isAvailable", "maxMentees",
)
PROFILE_RESTRICTED = (
    "userId", "coachRequestId", "rating", "totalReviews", "totalMentees",
    "activeMentees", "completedSessions", "isVerified",
)


class ApplyRequest(BaseModel):
    expertise: Optional[List[str]] = None
    bio: Optional[str] = None
    experience: Optional[str] = None
    certifications: Optional[List[Dict[str, Any]]] = None
    socialLinks: Optional[Dict[str, Any]] = None


class ReviewRequest(BaseModel):
    adminNotes: Optional[str] = None
    rejectionReason: Optional[str] = None


def _validation_errors(exc: ValidationError) -> List[str]:
    return [f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in exc.errors()]


def _with_user(doc: Dict[str, Any], field: str = "userId") -> Dict[str, Any]:
    out = serialize(doc)
    user = find_user(doc[field]) if doc.get(field) else None
    out["user"] = {"id": str(user["_id"]), "name": user.get("name"), "email": user.get("email")} if user else None
    return out


# ---------------------------------------------------------------------
# Public profiles
# ---------------------------------------------------------------------

@router.get("/profiles")
def list_profiles(isAvailable: Optional[str] = None, expertise: Optional[str] = None):
    filt: Dict[str, Any] = {"isPubliclyVisible": True}
    if isAvailable == "true":
        filt["isAvailable"] = True
    if expertise:
        filt["expertise"] = expertise
    profiles = [_with_user(p) for p in db["coachprofile"].find(filt).sort([("rating", -1), ("totalReviews", -1)])]
    return {"message": "Coach profiles loaded", "count": len(profiles), "profiles": profiles}


@router.get("/profile/{coach_id}")
def get_profile(coach_id: str):
    profile = db["coachprofile"].find_one({"_id": to_object_id(coach_id)})
    if not profile:
        raise HTTPException(status_code=404, detail="Coach profile not found")
    if not profile.get("isPubliclyVisible"):
        raise HTTPException(status_code=403, detail="This coach profile is not publicly visible")
    return {"message": "Coach profile loaded", "profile": _with_user(profile)}


# ---------------------------------------------------------------------
# Applying
# ---------------------------------------------------------------------

@router.post("/apply", status_code=201)
def apply(req: ApplyRequest, current: Principal = Depends(get_current_user)):
    expertise = [sanitize_input(e) for e in (req.expertise or []) if isinstance(e, str) and e.strip()]
    bio = sanitize_input(req.bio or "")
    experience = sanitize_input(req.experience or "")

    if not expertise:
        raise HTTPException(status_code=400, detail="Please provide at least one area of expertise")
    if len(bio) < 100:
        raise HTTPException(status_code=400, detail="Bio must be at least 100 characters")
    if len(experience) < 50:
        raise HTTPException(status_code=400, detail="Experience description must be at least 50 characters")

    try:
        application = CoachRequest(
            user_id=current.user_id,
            expertise=expertise,
            bio=bio,
            experience=experience,
            certifications=[Certification.model_validate(c) for c in (req.certifications or [])],
            social_links=SocialLinks.model_validate(req.socialLinks or {}),
        )
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail={"message": "Validation error", "errors": _validation_errors(exc)})

    user = get_user_or_404(current.user_id)
    claimed = db["user"].find_one_and_update(
        {"_id": user["_id"], "coachStatus": {"$nin": ["pending", "approved"]}},
        {"$set": {"coachStatus": "pending", "updatedAt": utcnow()}},
    )
    if claimed is None:
        if user.get("coachStatus") == "approved":
            raise HTTPException(status_code=400, detail="You are already an approved coach")
        raise HTTPException(status_code=400, detail="You already have a pending coach application")

    try:
        request_id = create_document("coachrequest", application)
    except Exception:
        # claimed is the pre-update document, so this restores the previous state
        db["user"].update_one(
            {"_id": user["_id"], "coachStatus": "pending"},
            {"$set": {"coachStatus": claimed.get("coachStatus", "none")}},
        )
        logger.exception("Coach application insert failed for %s", current.user_id)
        raise
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"coachRequestId": request_id}})
    logger.info("User %s applied to become a coach (%s)", current.user_id, request_id)

    doc = db["coachrequest"].find_one({"_id": to_object_id(request_id)})
    return {
        "message": "Coach application submitted successfully",
        "application": {"id": request_id, "status": doc["status"], "submittedAt": serialize(doc["createdAt"])},
    }


@router.get("/my-application")
def my_application(current: Principal = Depends(get_current_user)):
    application = db["coachrequest"].find_one({"userId": current.user_id}, sort=[("createdAt", -1), ("_id", -1)])
    if not application:
        raise HTTPException(status_code=404, detail="No coach application found")
    return {"message": "Application loaded", "application": serialize(application)}


# ---------------------------------------------------------------------
# Coach's own profile
# ---------------------------------------------------------------------

def _own_profile(current: Principal) -> Dict[str, Any]:
    user = get_user_or_404(current.user_id)
    if user.get("coachStatus") != "approved":
        raise HTTPException(status_code=403, detail="You are not an approved coach")
    profile = db["coachprofile"].find_one({"userId": current.user_id})
    if not profile:
        raise HTTPException(status_code=404, detail="Coach profile not found")
    return profile


@router.get("/my-profile")
def my_profile(current: Principal = Depends(get_current_user)):
    return {"message": "Coach profile loaded", "profile": serialize(_own_profile(current))}


@router.put("/my-profile")
def update_my_profile(body: Dict[str, Any], current: Principal = Depends(get_current_user)):
    profile = _own_profile(current)

    restricted = [k for k in body if k in PROFILE_RESTRICTED]
    if restricted:
        raise HTTPException(status_code=400, detail={
            "message": "Cannot update restricted fields",
            "restrictedFields": restricted,
        })

    updates = {k: v for k, v in body.items() if k in PROFILE_UPDATES}
    for field in ("displayName", "bio", "experience"):
        if field in updates:
            updates[field] = sanitize_input(updates[field])
    if updates.get("bio") and len(updates["bio"]) > 1000:
        raise HTTPException(status_code=400, detail="Bio must not exceed 1000 characters")
    if updates.get("experience") and len(updates["experience"]) > 1000:
        raise HTTPException(status_code=400, detail="Experience must not exceed 1000 characters")
    if "expertise" in updates:
        if not isinstance(updates["expertise"], list) or not updates["expertise"]:
            raise HTTPException(status_code=400, detail="Expertise must be a non-empty array")
        if len(updates["expertise"]) > 10:
            raise HTTPException(status_code=400, detail="Maximum 10 areas of expertise allowed")
    if "maxMentees" in updates:
        try:
            max_mentees = int(updates["maxMentees"])
        except (TypeError, ValueError):
            max_mentees = 0
        if max_mentees < 1 or max_mentees > 100:
            raise HTTPException(status_code=400, detail="Max mentees must be between 1 and 100")
        updates["maxMentees"] = max_mentees
    if "isAvailable" in updates and not isinstance(updates["isAvailable"], bool):
        raise HTTPException(status_code=400, detail="isAvailable must be true or false")

    try:
        merged = CoachProfile.model_validate({**profile, **updates})
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail={"message": "Validation error", "errors": _validation_errors(exc)})
    clean = merged.model_dump(by_alias=True)
    updates = {k: clean[k] for k in updates}

    updates["updatedAt"] = utcnow()
    profile = db["coachprofile"].find_one_and_update(
        {"_id": profile["_id"]}, {"$set": updates}, return_document=ReturnDocument.AFTER
    )
    return {"message": "Coach profile updated successfully", "profile": serialize(profile)}


# ---------------------------------------------------------------------
# Admin review
# ---------------------------------------------------------------------

@router.get("/applications")
def list_applications(status: Optional[str] = None, current: Principal = Depends(require_roles(ROLE_ADMIN))):
    filt: Dict[str, Any] = {}
    if status in ("pending", "approved", "rejected"):
        filt["status"] = status
    applications = [_with_user(a) for a in db["coachrequest"].find(filt).sort("createdAt", -1)]
    return {"message": "Applications loaded", "count": len(applications), "applications": applications}


def _decide(application_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
    """Move a pending application to its decision; 404 if missing, 400 if already decided."""
    oid = to_object_id(application_id)
    application = db["coachrequest"].find_one_and_update(
        {"_id": oid, "status": "pending"},
        {"$set": {**changes, "updatedAt": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if application is None:
        if db["coachrequest"].find_one({"_id": oid}) is None:
            raise HTTPException(status_code=404, detail="Application not found")
        raise HTTPException(status_code=400, detail="Application already reviewed")
    return application


@router.put("/applications/{application_id}/approve")
def approve_application(application_id: str, req: Optional[ReviewRequest] = None,
                        current: Principal = Depends(require_roles(ROLE_ADMIN))):
    application = _decide(application_id, {
        "status": "approved",
        "reviewedBy": current.user_id,
        "reviewedAt": utcnow(),
        "adminNotes": sanitize_input(req.adminNotes) if req else None,
    })
    user = find_user(application["userId"])
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    profile = CoachProfile(
        user_id=application["userId"],
        display_name=user["name"],
        bio=application["bio"],
        expertise=application["expertise"],
        experience=application.get("experience"),
        certifications=application.get("certifications") or [],
        social_links=application.get("socialLinks") or {},
        verified_at=utcnow(),
    )
    try:
        profile_id = create_document("coachprofile", profile)
    except DuplicateKeyError:
        profile_id = str(db["coachprofile"].find_one({"userId": application["userId"]})["_id"])

    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {
            "role": ROLE_COACH,
            "coachStatus": "approved",
            "coachProfileId": profile_id,
            "updatedAt": utcnow(),
        }},
    )
    logger.info("Coach application %s approved by %s", application_id, current.user_id)
    send_coach_approval_email(user["email"], user["name"])

    return {
        "message": "Coach application approved successfully",
        "application": serialize(application),
        "coachProfileId": profile_id,
    }


@router.put("/applications/{application_id}/reject")
def reject_application(application_id: str, req: ReviewRequest, current: Principal = Depends(require_roles(ROLE_ADMIN))):
    reason = sanitize_input(req.rejectionReason or "")
    if not reason:
        raise HTTPException(status_code=400, detail="Rejection reason is required")

    application = _decide(application_id, {
        "status": "rejected",
        "reviewedBy": current.user_id,
        "reviewedAt": utcnow(),
        "rejectionReason": reason,
        "adminNotes": sanitize_input(req.adminNotes),
    })
    user = find_user(application["userId"])
    if user:
        db["user"].update_one(
            {"_id": user["_id"]},
            {"$set": {"coachStatus": "rejected", "updatedAt": utcnow()}},
        )
        send_coach_rejection_email(user["email"], user["name"], reason)
    logger.info("Coach application %s rejected by %s", application_id, current.user_id)

    return {"message": "Coach application rejected", "application": serialize(application)}
