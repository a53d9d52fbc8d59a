"""
Admin user management: listing, detail, field updates, password resets,
account status changes, deletion and the audit log.

Every mutation of another user's account writes an AdminAction record.
"""

import csv
import io
import logging
import re
from datetime import datetime, timedelta
from typing import Optional, Dict, Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import Response
from pydantic import BaseModel, ValidationError
from pymongo import ReturnDocument

from accounts import safe_user, get_user_or_404, email_taken, coach_status_filter
from database import db, create_document, serialize, to_object_id, utcnow
from notifications import send_password_reset_notification
from schemas import AdminAction, Preferences
from security import Principal, require_roles, hash_password, ROLES, ROLE_ADMIN, ROLE_COACH
from validation import sanitize_input, validate_email, validate_name

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])
admin_only = require_roles(ROLE_ADMIN)

ALLOWED_UPDATES = (
    "name", "email", "role", "avatar", "bio", "phone", "dateOfBirth",
    "gender", "isActive", "isBanned", "isEmailVerified", "preferences",
)
SORT_FIELDS = ("createdAt", "updatedAt", "name", "email", "lastLogin", "loginCount", "role")
MIN_RESET_PASSWORD_LENGTH = 6


class ReasonRequest(BaseModel):
    reason: Optional[str] = None


class ResetPasswordRequest(BaseModel):
    newPassword: Optional[str] = None


class DeleteUserRequest(BaseModel):
    confirmEmail: Optional[str] = None
    reason: Optional[str] = None


def _client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def record_action(action_type: str, target: Dict[str, Any], current: Principal, request: Request,
                  reason: Optional[str] = None, metadata: Optional[Dict[str, Any]] = None) -> str:
    admin = db["user"].find_one({"_id": to_object_id(current.user_id)}) or {}
    action = AdminAction(
        action_type=action_type,
        reason=reason,
        target_user_id=str(target["_id"]),
        target_user_email=target.get("email"),
        target_user_name=target.get("name"),
        admin_id=current.user_id,
        admin_email=admin.get("email", current.email),
        admin_name=admin.get("name"),
        metadata=metadata or {},
        ip_address=_client_ip(request),
    )
    action_id = create_document("adminaction", action)
    logger.info("Admin %s performed %s on user %s", current.user_id, action_type, target["_id"])
    return action_id


def _parse_bool(value: Optional[str]) -> Optional[bool]:
    if value is None:
        return None
    return value.lower() == "true"


def _parse_date(value: Optional[str], field: str) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {field}, expected an ISO date")


def build_user_filter(role=None, roles=None, is_active=None, is_banned=None, is_email_verified=None,
                      is_pending_coach=None, is_approved_coach=None, search=None,
                      date_from=None, date_to=None) -> Dict[str, Any]:
    filt: Dict[str, Any] = {}
    if roles:
        filt["role"] = {"$in": [r.strip() for r in roles.split(",") if r.strip()]}
    elif role:
        filt["role"] = role

    for field, value in (("isActive", is_active), ("isBanned", is_banned), ("isEmailVerified", is_email_verified)):
        parsed = _parse_bool(value)
        if parsed is not None:
            filt[field] = parsed

    filt.update(coach_status_filter(_parse_bool(is_pending_coach), _parse_bool(is_approved_coach)))

    start = _parse_date(date_from, "dateFrom")
    end = _parse_date(date_to, "dateTo")
    if start or end:
        filt["createdAt"] = {}
        if start:
            filt["createdAt"]["$gte"] = start
        if end:
            filt["createdAt"]["$lte"] = end

    if search:
        pattern = {"$regex": re.escape(search.strip()), "$options": "i"}
        filt["$or"] = [{"name": pattern}, {"email": pattern}, {"phone": pattern}]
    return filt


# ---------------------------------------------------------------------
# Stats
# ---------------------------------------------------------------------

def _percentage(part: int, whole: int) -> float:
    return round(part / whole * 100, 2) if whole else 0


def _group_counts(collection: str, field: str) -> Dict[str, int]:
    rows = db[collection].aggregate([{"$group": {"_id": f"${field}", "count": {"$sum": 1}}}])
    return {str(row["_id"]): row["count"] for row in rows}


@router.get("/stats")
def system_stats(current: Principal = Depends(admin_only)):
    users = db["user"]
    now = utcnow()
    seven_days_ago = now - timedelta(days=7)
    thirty_days_ago = now - timedelta(days=30)

    total = users.count_documents({})
    active = users.count_documents({"isActive": True})
    verified = users.count_documents({"isEmailVerified": True})
    total_coaches = users.count_documents({"coachStatus": "approved"})
    pending_coaches = users.count_documents({"coachStatus": "pending"})

    daily = []
    for offset in range(6, -1, -1):
        day_start = (now - timedelta(days=offset)).replace(hour=0, minute=0, second=0, microsecond=0)
        day_end = day_start + timedelta(days=1)
        daily.append({
            "date": day_start.date().isoformat(),
            "count": users.count_documents({"createdAt": {"$gte": day_start, "$lt": day_end}}),
        })

    return {
        "message": "Stats loaded",
        "stats": {
            "overview": {
                "totalUsers": total,
                "activeUsers": active,
                "inactiveUsers": users.count_documents({"isActive": False}),
                "bannedUsers": users.count_documents({"isBanned": True}),
                "verifiedUsers": verified,
                "unverifiedUsers": users.count_documents({"isEmailVerified": False}),
                "activePercentage": _percentage(active, total),
                "verifiedPercentage": _percentage(verified, total),
            },
            "coaches": {
                "totalCoaches": total_coaches,
                "pendingCoaches": pending_coaches,
                "pendingApplications": db["coachrequest"].count_documents({"status": "pending"}),
                "approvalRate": _percentage(total_coaches, total_coaches + pending_coaches),
            },
            "usersByRole": _group_counts("user", "role"),
            "growth": {
                "newUsersLast7Days": users.count_documents({"createdAt": {"$gte": seven_days_ago}}),
                "newUsersLast30Days": users.count_documents({"createdAt": {"$gte": thirty_days_ago}}),
                "activeInLast30Days": users.count_documents({"lastLogin": {"$gte": thirty_days_ago}}),
                "dailyRegistrations": daily,
            },
            "adminActivity": {
                "recentActions": db["adminaction"].count_documents({"createdAt": {"$gte": thirty_days_ago}}),
                "actionsByType": _group_counts("adminaction", "actionType"),
            },
        },
    }


# ---------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------

@router.get("/users")
def list_users(
    role: Optional[str] = None,
    roles: Optional[str] = None,
    isActive: Optional[str] = None,
    isBanned: Optional[str] = None,
    isEmailVerified: Optional[str] = None,
    isPendingCoach: Optional[str] = None,
    isApprovedCoach: Optional[str] = None,
    search: Optional[str] = None,
    dateFrom: Optional[str] = None,
    dateTo: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sortBy: str = "createdAt",
    sortOrder: str = "desc",
    current: Principal = Depends(admin_only),
):
    filt = build_user_filter(role, roles, isActive, isBanned, isEmailVerified,
                             isPendingCoach, isApprovedCoach, search, dateFrom, dateTo)
    sort_field = sortBy if sortBy in SORT_FIELDS else "createdAt"
    direction = -1 if sortOrder == "desc" else 1

    users = db["user"]
    cursor = users.find(filt).sort(sort_field, direction).skip((page - 1) * limit).limit(limit)
    total = users.count_documents(filt)

    def count(extra):
        return users.count_documents({"$and": [filt, extra]}) if filt else users.count_documents(extra)

    return {
        "message": "Users loaded",
        "users": [safe_user(u) for u in cursor],
        "filterStats": {
            "active": count({"isActive": True}),
            "inactive": count({"isActive": False}),
            "banned": count({"isBanned": True}),
            "verified": count({"isEmailVerified": True}),
            "unverified": count({"isEmailVerified": False}),
        },
        "pagination": {
            "currentPage": page,
            "totalPages": (total + limit - 1) // limit,
            "totalUsers": total,
            "limit": limit,
        },
    }


EXPORT_COLUMNS = ("id", "name", "email", "role", "isActive", "isBanned", "isEmailVerified",
                  "isApprovedCoach", "loginCount", "lastLogin", "createdAt")


@router.get("/users/export")
def export_users(
    format: str = "csv",
    role: Optional[str] = None,
    isActive: Optional[str] = None,
    isBanned: Optional[str] = None,
    current: Principal = Depends(admin_only),
):
    if format not in ("csv", "json"):
        raise HTTPException(status_code=400, detail="Invalid format. Supported formats: csv, json")
    filt = build_user_filter(role=role, is_active=isActive, is_banned=isBanned)
    rows = [{col: safe_user(u).get(col) for col in EXPORT_COLUMNS}
            for u in db["user"].find(filt).sort("createdAt", -1)]

    if format == "json":
        return {"message": "Users exported", "count": len(rows), "users": rows}

    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=EXPORT_COLUMNS)
    writer.writeheader()
    writer.writerows(rows)
    stamp = utcnow().strftime("%Y%m%d")
    return Response(
        content=buffer.getvalue(),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="users-{stamp}.csv"'},
    )


@router.get("/users/{user_id}")
def user_details(user_id: str, current: Principal = Depends(admin_only)):
    user = get_user_or_404(user_id)
    coach_request = db["coachrequest"].find_one({"userId": user_id}, sort=[("createdAt", -1)])
    coach_profile = db["coachprofile"].find_one({"userId": user_id})
    return {
        "message": "User loaded",
        "user": safe_user(user),
        "coachRequest": serialize(coach_request),
        "coachProfile": serialize(coach_profile),
    }


@router.put("/users/{user_id}")
def update_user(user_id: str, body: Dict[str, Any], request: Request, current: Principal = Depends(admin_only)):
    user = get_user_or_404(user_id)
    updates = {k: v for k, v in body.items() if k in ALLOWED_UPDATES}

    if "role" in updates:
        if updates["role"] not in ROLES:
            raise HTTPException(status_code=400, detail="Invalid role. Must be: user, coach, admin, or developer")
        if updates["role"] == ROLE_COACH and user.get("coachStatus") != "approved":
            raise HTTPException(status_code=400, detail="Users become coaches through an approved coach application")
        if updates["role"] != ROLE_COACH and user.get("coachStatus") == "approved":
            updates["coachStatus"] = "none"

    if "name" in updates:
        updates["name"] = sanitize_input(updates["name"])
        result = validate_name(updates["name"])
        if not result.is_valid:
            raise HTTPException(status_code=400, detail=result.error)

    if "email" in updates:
        email = sanitize_input(updates["email"] or "")
        result = validate_email(email)
        if not result.is_valid:
            raise HTTPException(status_code=400, detail=result.error)
        email = email.lower()
        if email_taken(email, exclude_id=user["_id"]):
            raise HTTPException(status_code=409, detail="Email already in use")
        updates["email"] = email

    for flag in ("isActive", "isBanned", "isEmailVerified"):
        if flag in updates and not isinstance(updates[flag], bool):
            raise HTTPException(status_code=400, detail=f"{flag} must be true or false")

    if "bio" in updates and updates["bio"] and len(updates["bio"]) > 500:
        raise HTTPException(status_code=400, detail="Bio must not exceed 500 characters")

    if "dateOfBirth" in updates and updates["dateOfBirth"]:
        updates["dateOfBirth"] = _parse_date(updates["dateOfBirth"], "dateOfBirth")

    if "preferences" in updates:
        try:
            merged = {**user.get("preferences", {}), **(updates["preferences"] or {})}
            updates["preferences"] = Preferences.model_validate(merged).model_dump(by_alias=True)
        except ValidationError:
            raise HTTPException(status_code=400, detail="Invalid preferences")

    if not updates:
        raise HTTPException(status_code=400, detail="No valid fields to update")

    updates["updatedAt"] = utcnow()
    updated = db["user"].find_one_and_update(
        {"_id": user["_id"]}, {"$set": updates}, return_document=ReturnDocument.AFTER
    )
    record_action("update", user, current, request,
                  metadata={"fields": sorted(k for k in updates if k != "updatedAt")})
    return {"message": "User updated successfully", "user": safe_user(updated)}


@router.put("/users/{user_id}/reset-password")
def reset_password(user_id: str, req: ResetPasswordRequest, request: Request,
                   current: Principal = Depends(admin_only)):
    if not req.newPassword:
        raise HTTPException(status_code=400, detail="New password is required")
    if len(req.newPassword) < MIN_RESET_PASSWORD_LENGTH:
        raise HTTPException(status_code=400, detail=f"Password must be at least {MIN_RESET_PASSWORD_LENGTH} characters")

    user = get_user_or_404(user_id)
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"password": hash_password(req.newPassword), "updatedAt": utcnow()}},
    )
    record_action("password_reset", user, current, request)
    emailed = send_password_reset_notification(user["email"], user.get("name", ""))
    return {"message": "Password reset successfully. User has been notified via email.", "emailed": emailed}


def _flip_status(user_id: str, guard: Dict[str, Any], changes: Dict[str, Any], current: Principal,
                 reason: Optional[str], conflict_message: str):
    """Apply `changes` only if the user still matches `guard`; 400 when it no longer does."""
    oid = to_object_id(user_id)
    now = utcnow()
    updated = db["user"].find_one_and_update(
        {"_id": oid, **guard},
        {"$set": {
            **changes,
            "statusChangedAt": now,
            "statusChangedBy": current.user_id,
            "statusChangeReason": reason,
            "updatedAt": now,
        }},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        get_user_or_404(user_id)
        raise HTTPException(status_code=400, detail=conflict_message)
    return updated


@router.put("/users/{user_id}/deactivate")
def deactivate_user(user_id: str, req: ReasonRequest, request: Request, current: Principal = Depends(admin_only)):
    reason = sanitize_input(req.reason or "")
    if not reason:
        raise HTTPException(status_code=400, detail="Reason for deactivation is required")
    user = _flip_status(user_id, {"isActive": True}, {"isActive": False}, current, reason,
                        "User is already deactivated")
    record_action("deactivate", user, current, request, reason=reason)
    return {"message": "User deactivated successfully", "user": safe_user(user)}


@router.put("/users/{user_id}/activate")
def activate_user(user_id: str, request: Request, req: Optional[ReasonRequest] = None,
                  current: Principal = Depends(admin_only)):
    reason = sanitize_input(req.reason) if req and req.reason else "Account reactivated by admin"
    if get_user_or_404(user_id).get("isBanned"):
        raise HTTPException(status_code=400, detail="User is banned; unban instead")
    user = _flip_status(user_id, {"isActive": False, "isBanned": {"$ne": True}}, {"isActive": True},
                        current, reason, "User is already active")
    record_action("activate", user, current, request, reason=reason)
    return {"message": "User activated successfully", "user": safe_user(user)}


@router.put("/users/{user_id}/ban")
def ban_user(user_id: str, req: ReasonRequest, request: Request, current: Principal = Depends(admin_only)):
    reason = sanitize_input(req.reason or "")
    if not reason:
        raise HTTPException(status_code=400, detail="Ban reason is required")
    user = _flip_status(user_id, {"isBanned": {"$ne": True}}, {"isBanned": True, "isActive": False},
                        current, reason, "User is already banned")
    record_action("ban", user, current, request, reason=reason)
    return {"message": "User banned successfully", "user": safe_user(user)}


@router.put("/users/{user_id}/unban")
def unban_user(user_id: str, request: Request, req: Optional[ReasonRequest] = None,
               current: Principal = Depends(admin_only)):
    reason = sanitize_input(req.reason) if req and req.reason else "Ban lifted by admin"
    user = _flip_status(user_id, {"isBanned": True}, {"isBanned": False, "isActive": True},
                        current, reason, "User is not banned")
    record_action("unban", user, current, request, reason=reason)
    return {"message": "User unbanned successfully", "user": safe_user(user)}


@router.delete("/users/{user_id}")
def delete_user(user_id: str, req: DeleteUserRequest, request: Request, current: Principal = Depends(admin_only)):
    reason = sanitize_input(req.reason or "")
    if not reason:
        raise HTTPException(status_code=400, detail="Reason for deletion is required")
    user = get_user_or_404(user_id)
    if req.confirmEmail != user["email"]:
        raise HTTPException(status_code=400, detail="Email confirmation does not match. Cannot delete user.")
    if user_id == current.user_id:
        raise HTTPException(status_code=400, detail="You cannot delete your own account")

    # audit first so the record survives even if the cascade fails midway
    record_action("delete", user, current, request, reason=reason,
                  metadata={"role": user.get("role"), "coachStatus": user.get("coachStatus")})
    requests_deleted = db["coachrequest"].delete_many({"userId": user_id}).deleted_count
    profiles_deleted = db["coachprofile"].delete_many({"userId": user_id}).deleted_count
    db["user"].delete_one({"_id": user["_id"]})

    return {
        "message": "User and associated data deleted permanently",
        "deletedUser": {"id": user_id, "email": user["email"], "name": user.get("name")},
        "cascade": {"coachRequests": requests_deleted, "coachProfiles": profiles_deleted},
    }


# ---------------------------------------------------------------------
# Audit log
# ---------------------------------------------------------------------

def _list_actions(filt: Dict[str, Any], page: int, limit: int) -> Dict[str, Any]:
    cursor = db["adminaction"].find(filt).sort([("createdAt", -1), ("_id", -1)]).skip((page - 1) * limit).limit(limit)
    total = db["adminaction"].count_documents(filt)
    return {
        "actions": serialize(list(cursor)),
        "pagination": {
            "currentPage": page,
            "totalPages": (total + limit - 1) // limit,
            "totalActions": total,
            "limit": limit,
        },
    }


@router.get("/actions")
def admin_actions(
    userId: Optional[str] = None,
    adminId: Optional[str] = None,
    actionType: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    current: Principal = Depends(admin_only),
):
    filt: Dict[str, Any] = {}
    if userId:
        filt["targetUserId"] = userId
    if adminId:
        filt["adminId"] = adminId
    if actionType:
        filt["actionType"] = actionType
    return {"message": "Admin actions loaded", **_list_actions(filt, page, limit)}


@router.get("/users/{user_id}/actions")
def user_admin_actions(user_id: str, page: int = Query(1, ge=1), limit: int = Query(50, ge=1, le=200),
                       current: Principal = Depends(admin_only)):
    user = get_user_or_404(user_id)
    return {
        "message": "Admin actions loaded",
        "user": {"id": user_id, "name": user.get("name"), "email": user.get("email")},
        **_list_actions({"targetUserId": user_id}, page, limit),
    }
