import os
import logging
from datetime import timedelta
from typing import Optional, Iterable, Dict, Any

import bcrypt
import jwt
from fastapi import Depends, Header, HTTPException
from pydantic import BaseModel

from database import utcnow

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------
# Token settings
# ---------------------------------------------------------------------

JWT_SECRET = os.getenv("JWT_SECRET", "dev_secret_change_me")
JWT_ISSUER = os.getenv("JWT_ISSUER", "refocus-api")
JWT_AUDIENCE = os.getenv("JWT_AUDIENCE", "refocus-app")
JWT_EXP_HOURS = int(os.getenv("JWT_EXP_HOURS", "168"))  # 7 days default
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "10"))

if not os.getenv("JWT_SECRET"):
    logger.warning("JWT_SECRET is not set, using the development default")

ROLE_USER = "user"
ROLE_COACH = "coach"
ROLE_ADMIN = "admin"
ROLE_DEVELOPER = "developer"
ROLES = (ROLE_USER, ROLE_COACH, ROLE_ADMIN, ROLE_DEVELOPER)


class Principal(BaseModel):
    """Identity decoded from a bearer token."""
    user_id: str
    email: Optional[str] = None
    role: str = ROLE_USER


# ---------------------------------------------------------------------
# Passwords
# ---------------------------------------------------------------------

def _password_bytes(password: str) -> bytes:
    # bcrypt only reads the first 72 bytes
    return password.encode("utf-8")[:72]


def hash_password(password: str) -> str:
    return bcrypt.hashpw(_password_bytes(password), bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(password: str, hashed: Optional[str]) -> bool:
    if not password or not hashed:
        return False
    try:
        return bcrypt.checkpw(_password_bytes(password), hashed.encode("utf-8"))
    except ValueError:
        return False


# ---------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------

def mint_jwt(user_id: str, email: str, role: str) -> str:
    now = utcnow()
    payload = {
        "userId": user_id,
        "email": email,
        "role": role,
        "iss": JWT_ISSUER,
        "aud": JWT_AUDIENCE,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(hours=JWT_EXP_HOURS)).timestamp()),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm="HS256")


def decode_jwt(token: str) -> Dict[str, Any]:
    return jwt.decode(token, JWT_SECRET, algorithms=["HS256"], audience=JWT_AUDIENCE, issuer=JWT_ISSUER)


def get_current_user(authorization: Optional[str] = Header(None)) -> Principal:
    """Read `Authorization: Bearer <token>` and return the decoded principal."""
    if not authorization:
        raise HTTPException(status_code=403, detail="Access denied. No token.")
    parts = authorization.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer" or not parts[1]:
        raise HTTPException(status_code=403, detail="Access denied. Invalid token format.")
    try:
        payload = decode_jwt(parts[1])
    except jwt.PyJWTError:
        raise HTTPException(status_code=401, detail="Invalid token")
    if not payload.get("userId"):
        raise HTTPException(status_code=401, detail="Invalid token")
    return Principal(user_id=payload["userId"], email=payload.get("email"), role=payload.get("role") or ROLE_USER)


def get_optional_user(authorization: Optional[str] = Header(None)) -> Optional[Principal]:
    """Like get_current_user, but anonymous callers get None instead of an error."""
    if not authorization:
        return None
    try:
        return get_current_user(authorization)
    except HTTPException:
        return None


# ---------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------

def check_role(principal: Optional[Principal], allowed: Iterable[str]) -> Principal:
    allowed = list(allowed)
    if principal is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    if principal.role not in allowed:
        raise HTTPException(
            status_code=403,
            detail={
                "message": "Access denied. Insufficient permissions.",
                "required": allowed,
                "current": principal.role,
            },
        )
    return principal


def require_roles(*roles: str):
    """Dependency factory: authenticate, then require one of `roles`."""
    def dependency(current: Principal = Depends(get_current_user)) -> Principal:
        return check_role(current, roles)
    return dependency


def ensure_owner_or_admin(current: Principal, user_id: Optional[str]) -> str:
    """Resolve a userId from input, defaulting to the caller. Only admins may act for someone else."""
    target = user_id or current.user_id
    if target != current.user_id and current.role != ROLE_ADMIN:
        raise HTTPException(status_code=403, detail="You can only access your own data")
    return target
