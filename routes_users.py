import logging
from typing import Optional, Dict, Any

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from pydantic import BaseModel, ValidationError
from pymongo import ReturnDocument

import accounts
from accounts import safe_user, public_user, get_user_or_404, email_taken, new_verification_token
from database import db, utcnow
from notifications import send_verification_email
from schemas import Preferences
from security import Principal, get_current_user, require_roles, hash_password, verify_password, ROLE_ADMIN
from storage import save_upload, remove_upload
from validation import sanitize_input, validate_name, validate_email, validate_password

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["users"])

IMAGE_TYPES = ("image/jpeg", "image/png", "image/gif", "image/webp")
MAX_PICTURE_BYTES = 5 * 1024 * 1024


class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    profilePicture: Optional[str] = None
    bio: Optional[str] = None
    specialization: Optional[str] = None
    yearsOfExperience: Optional[float] = None
    preferences: Optional[Dict[str, Any]] = None


class ChangePasswordRequest(BaseModel):
    currentPassword: Optional[str] = None
    newPassword: Optional[str] = None
    confirmPassword: Optional[str] = None


@router.get("/profile")
def get_profile(current: Principal = Depends(get_current_user)):
    user = get_user_or_404(current.user_id)
    return {"message": "Profile loaded", "user": safe_user(user)}


@router.put("/profile")
def update_profile(req: ProfileUpdate, current: Principal = Depends(get_current_user)):
    user = get_user_or_404(current.user_id)
    fields = req.model_dump(exclude_unset=True)
    updates: Dict[str, Any] = {}
    errors = []
    email_changed = False

    if "name" in fields:
        name = sanitize_input(req.name or "")
        result = validate_name(name)
        if result.is_valid:
            updates["name"] = name
        else:
            errors.append(result.error)

    if req.email is not None and req.email.strip().lower() != user["email"]:
        email = sanitize_input(req.email)
        result = validate_email(email)
        if not result.is_valid:
            errors.append(result.error)
        else:
            email = email.lower()
            if email_taken(email, exclude_id=user["_id"]):
                raise HTTPException(status_code=409, detail="Email is already in use by another account")
            updates["email"] = email
            email_changed = True

    if "profilePicture" in fields:
        if req.profilePicture and not req.profilePicture.startswith("http"):
            errors.append("Profile picture must be a valid URL")
        else:
            updates["avatar"] = req.profilePicture

    if "bio" in fields:
        bio = sanitize_input(req.bio)
        if bio and len(bio) > 500:
            errors.append("Bio must not exceed 500 characters")
        else:
            updates["bio"] = bio

    if "specialization" in fields:
        specialization = sanitize_input(req.specialization)
        if specialization and len(specialization) > 200:
            errors.append("Specialization must not exceed 200 characters")
        else:
            updates["specialization"] = specialization

    if "yearsOfExperience" in fields and req.yearsOfExperience is not None:
        if req.yearsOfExperience < 0 or req.yearsOfExperience > 100:
            errors.append("Years of experience must be between 0 and 100")
        else:
            updates["yearsOfExperience"] = int(req.yearsOfExperience)

    if req.preferences is not None:
        merged = {**user.get("preferences", {}), **req.preferences}
        try:
            updates["preferences"] = Preferences.model_validate(merged).model_dump(by_alias=True)
        except ValidationError:
            errors.append("Invalid preferences")

    if errors:
        raise HTTPException(status_code=400, detail={"message": "Validation error", "errors": errors})

    if email_changed and accounts.REQUIRE_EMAIL_VERIFICATION:
        token, expires = new_verification_token()
        updates.update({"isEmailVerified": False, "verificationToken": token, "verificationTokenExpires": expires})
        send_verification_email(updates["email"], updates.get("name", user["name"]), token)

    if updates:
        updates["updatedAt"] = utcnow()
        user = db["user"].find_one_and_update(
            {"_id": user["_id"]}, {"$set": updates}, return_document=ReturnDocument.AFTER
        )

    body = {
        "message": "Profile updated. Please verify your new email address."
        if email_changed and accounts.REQUIRE_EMAIL_VERIFICATION else "Profile updated successfully",
        "user": safe_user(user),
    }
    if email_changed:
        body["emailChanged"] = True
    return body


@router.put("/change-password")
def change_password(req: ChangePasswordRequest, current: Principal = Depends(get_current_user)):
    if not req.currentPassword or not req.newPassword or not req.confirmPassword:
        raise HTTPException(
            status_code=400, detail="Current password, new password, and confirm password are required"
        )
    if req.newPassword != req.confirmPassword:
        raise HTTPException(status_code=400, detail="New password and confirm password do not match")
    result = validate_password(req.newPassword)
    if not result.is_valid:
        raise HTTPException(
            status_code=400, detail={"message": "New password does not meet requirements", "errors": result.errors}
        )

    user = get_user_or_404(current.user_id)
    if not verify_password(req.currentPassword, user.get("password")):
        raise HTTPException(status_code=401, detail="Current password is incorrect")
    if verify_password(req.newPassword, user.get("password")):
        raise HTTPException(status_code=400, detail="New password must be different from current password")

    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"password": hash_password(req.newPassword), "updatedAt": utcnow()}},
    )
    logger.info("User %s changed their password", current.user_id)
    return {"message": "Password changed successfully"}


@router.post("/profile/picture")
def upload_profile_picture(profilePicture: UploadFile = File(...), current: Principal = Depends(get_current_user)):
    user = get_user_or_404(current.user_id)
    stored = save_upload(profilePicture, "profile-pictures", IMAGE_TYPES, MAX_PICTURE_BYTES)
    if user.get("avatarPath"):
        remove_upload(user["avatarPath"])
    user = db["user"].find_one_and_update(
        {"_id": user["_id"]},
        {"$set": {"avatar": stored["fileUrl"], "avatarPath": stored["filePath"], "updatedAt": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    return {"message": "Profile picture uploaded successfully", "profilePicture": stored["fileUrl"], "user": safe_user(user)}


@router.delete("/profile/picture")
def delete_profile_picture(current: Principal = Depends(get_current_user)):
    user = get_user_or_404(current.user_id)
    if not user.get("avatar"):
        raise HTTPException(status_code=400, detail="No profile picture to delete")
    if user.get("avatarPath"):
        remove_upload(user["avatarPath"])
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"avatar": None, "avatarPath": None, "updatedAt": utcnow()}},
    )
    return {"message": "Profile picture deleted successfully"}


@router.get("/coaches")
def list_coaches(current: Principal = Depends(get_current_user)):
    coaches = [public_user(u) for u in db["user"].find({"coachStatus": "approved"}).sort("createdAt", -1)]
    return {"message": "Coaches loaded", "count": len(coaches), "coaches": coaches}


@router.get("/coaches/{coach_id}")
def get_coach(coach_id: str, current: Principal = Depends(get_current_user)):
    user = accounts.find_user(coach_id)
    if not user:
        raise HTTPException(status_code=404, detail="Coach not found")
    if user.get("coachStatus") != "approved":
        raise HTTPException(status_code=403, detail="This user is not an approved coach")
    return {"message": "Coach loaded", "coach": public_user(user)}


@router.get("/{user_id}")
def get_user(user_id: str, current: Principal = Depends(require_roles(ROLE_ADMIN))):
    user = get_user_or_404(user_id)
    return {"message": "User loaded", "user": {**public_user(user), "email": user.get("email")}}
