import os
import secrets
from datetime import timedelta
from typing import Optional, Dict, Any, Tuple

from fastapi import HTTPException

from database import db, serialize, to_object_id, utcnow

SECRET_FIELDS = ("password", "verificationToken", "verificationTokenExpires", "avatarPath")

# 1 = new and changed email addresses must be confirmed before login
REQUIRE_EMAIL_VERIFICATION = os.getenv("REQUIRE_EMAIL_VERIFICATION", "0") == "1"
VERIFICATION_TOKEN_HOURS = 24


def new_verification_token() -> Tuple[str, Any]:
    return secrets.token_hex(32), utcnow() + timedelta(hours=VERIFICATION_TOKEN_HOURS)


def safe_user(user: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """User projection for responses: no secrets, coach flags derived from coachStatus."""
    if not user:
        return user
    out = serialize({k: v for k, v in user.items() if k not in SECRET_FIELDS})
    status = user.get("coachStatus", "none")
    out["isPendingCoach"] = status == "pending"
    out["isApprovedCoach"] = status == "approved"
    return out


def public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    """The handful of fields other users may see."""
    return {
        "id": str(user["_id"]),
        "name": user.get("name"),
        "avatar": user.get("avatar"),
        "bio": user.get("bio"),
        "role": user.get("role"),
        "specialization": user.get("specialization"),
        "yearsOfExperience": user.get("yearsOfExperience"),
        "createdAt": serialize(user.get("createdAt")),
    }


def find_user(user_id: str) -> Optional[Dict[str, Any]]:
    return db["user"].find_one({"_id": to_object_id(user_id)})


def get_user_or_404(user_id: str) -> Dict[str, Any]:
    user = find_user(user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


def find_user_by_email(email: str) -> Optional[Dict[str, Any]]:
    if not email:
        return None
    return db["user"].find_one({"email": email.strip().lower()})


def email_taken(email: str, exclude_id=None) -> bool:
    query: Dict[str, Any] = {"email": email.strip().lower()}
    if exclude_id is not None:
        query["_id"] = {"$ne": exclude_id}
    return db["user"].find_one(query) is not None


def coach_status_filter(is_pending: Optional[bool] = None, is_approved: Optional[bool] = None) -> Dict[str, Any]:
    """Translate the isPendingCoach/isApprovedCoach flags into a coachStatus query."""
    clauses = []
    if is_pending is not None:
        clauses.append({"coachStatus": "pending"} if is_pending else {"coachStatus": {"$ne": "pending"}})
    if is_approved is not None:
        clauses.append({"coachStatus": "approved"} if is_approved else {"coachStatus": {"$ne": "approved"}})
    if not clauses:
        return {}
    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}
