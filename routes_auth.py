import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

import accounts
from accounts import safe_user, find_user_by_email, get_user_or_404, email_taken, new_verification_token
from database import db, create_document, utcnow
from notifications import send_verification_email
from schemas import User
from security import Principal, get_current_user, hash_password, verify_password, mint_jwt
from validation import sanitize_input, validate_name, validate_email, validate_password

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

MAX_GOAL_LENGTH = 200


class RegisterRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class ResendVerificationRequest(BaseModel):
    email: Optional[str] = None


class UpdateMeRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    goal: Optional[str] = None


@router.post("/register", status_code=201)
def register(req: RegisterRequest):
    name = sanitize_input(req.name or "")
    email = sanitize_input(req.email or "")
    password = req.password or ""

    result = validate_name(name)
    if not result.is_valid:
        raise HTTPException(status_code=400, detail=result.error)
    result = validate_email(email)
    if not result.is_valid:
        raise HTTPException(status_code=400, detail=result.error)
    result = validate_password(password)
    if not result.is_valid:
        raise HTTPException(status_code=400, detail={"message": result.error, "errors": result.errors})

    email = email.lower()
    if find_user_by_email(email):
        raise HTTPException(status_code=409, detail="Email already registered")

    token, expires = (None, None)
    if accounts.REQUIRE_EMAIL_VERIFICATION:
        token, expires = new_verification_token()

    user = User(
        name=name,
        email=email,
        password=hash_password(password),
        is_email_verified=not accounts.REQUIRE_EMAIL_VERIFICATION,
        verification_token=token,
        verification_token_expires=expires,
    )
    try:
        user_id = create_document("user", user)
    except DuplicateKeyError:
        # lost a race with a concurrent registration for the same address
        raise HTTPException(status_code=409, detail="Email already registered")

    logger.info("Registered user %s", user_id)
    if token:
        send_verification_email(email, name, token)

    doc = get_user_or_404(user_id)
    message = "User registered successfully"
    if accounts.REQUIRE_EMAIL_VERIFICATION:
        message += ". Please check your email to verify your account."
    return {"message": message, "user": safe_user(doc)}


@router.post("/login")
def login(req: LoginRequest):
    if not req.email or not req.password:
        raise HTTPException(status_code=400, detail="Email and password are required")

    user = find_user_by_email(req.email)
    if not user or not verify_password(req.password, user.get("password")):
        raise HTTPException(status_code=401, detail="Invalid email or password")

    # account state is only revealed once the password is known to be right
    if accounts.REQUIRE_EMAIL_VERIFICATION and not user.get("isEmailVerified"):
        raise HTTPException(status_code=403, detail={
            "message": "Please verify your email before logging in",
            "needsVerification": True,
            "email": user["email"],
        })
    if user.get("isBanned"):
        raise HTTPException(status_code=403, detail="Your account has been banned. Please contact support.")
    if not user.get("isActive", True):
        raise HTTPException(status_code=403, detail="Your account has been deactivated. Please contact support.")

    now = utcnow()
    user = db["user"].find_one_and_update(
        {"_id": user["_id"]},
        {"$set": {"lastLogin": now, "updatedAt": now}, "$inc": {"loginCount": 1}},
        return_document=ReturnDocument.AFTER,
    )
    token = mint_jwt(str(user["_id"]), user["email"], user.get("role", "user"))
    logger.info("User %s logged in", user["_id"])
    return {"message": "Login successful", "token": token, "user": safe_user(user)}


@router.get("/verify-email/{token}")
def verify_email(token: str):
    now = utcnow()
    user = db["user"].find_one_and_update(
        {"verificationToken": token, "verificationTokenExpires": {"$gt": now}},
        {
            "$set": {"isEmailVerified": True, "updatedAt": now},
            "$unset": {"verificationToken": "", "verificationTokenExpires": ""},
        },
        return_document=ReturnDocument.AFTER,
    )
    if not user:
        raise HTTPException(status_code=400, detail="Invalid or expired verification token")
    return {"message": "Email verified successfully. You can now log in.", "user": safe_user(user)}


@router.post("/resend-verification")
def resend_verification(req: ResendVerificationRequest):
    if not req.email:
        raise HTTPException(status_code=400, detail="Email is required")
    user = find_user_by_email(req.email)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    if user.get("isEmailVerified"):
        raise HTTPException(status_code=400, detail="Email is already verified")

    token, expires = new_verification_token()
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"verificationToken": token, "verificationTokenExpires": expires, "updatedAt": utcnow()}},
    )
    emailed = send_verification_email(user["email"], user.get("name", ""), token)
    return {"message": "Verification email sent", "emailed": emailed}


@router.get("/me")
def me(current: Principal = Depends(get_current_user)):
    user = get_user_or_404(current.user_id)
    return {"message": "User data loaded", "user": safe_user(user)}


@router.put("/me")
def update_me(req: UpdateMeRequest, current: Principal = Depends(get_current_user)):
    user = get_user_or_404(current.user_id)
    updates = {}

    if req.name is not None:
        name = sanitize_input(req.name)
        result = validate_name(name)
        if not result.is_valid:
            raise HTTPException(status_code=400, detail=result.error)
        updates["name"] = name

    if req.email is not None:
        email = sanitize_input(req.email)
        result = validate_email(email)
        if not result.is_valid:
            raise HTTPException(status_code=400, detail=result.error)
        email = email.lower()
        if email != user["email"] and email_taken(email, exclude_id=user["_id"]):
            raise HTTPException(status_code=409, detail="Email is already in use by another account")
        updates["email"] = email

    if req.goal is not None:
        goal = sanitize_input(req.goal)
        if len(goal) > MAX_GOAL_LENGTH:
            raise HTTPException(status_code=400, detail=f"Goal must not exceed {MAX_GOAL_LENGTH} characters")
        updates["goal"] = goal

    if updates:
        updates["updatedAt"] = utcnow()
        user = db["user"].find_one_and_update(
            {"_id": user["_id"]}, {"$set": updates}, return_document=ReturnDocument.AFTER
        )
    return {"message": "Profile updated", "user": safe_user(user)}


@router.post("/logout")
def logout(current: Principal = Depends(get_current_user)):
    # tokens are stateless; the client discards its copy
    return {"message": "Logged out successfully"}
