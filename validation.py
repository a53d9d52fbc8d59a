"""
Input validation helpers shared by the auth, user and admin routes.

Passwords follow the strict policy everywhere a user picks their own password:
8-128 characters with lowercase, uppercase, digit and special characters, and
not one of a short list of very common passwords.
"""

import re
from typing import Any, List, Optional

from pydantic import BaseModel, Field

MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 128
MAX_EMAIL_LENGTH = 254
MIN_NAME_LENGTH = 2
MAX_NAME_LENGTH = 100

COMMON_PASSWORDS = {
    "password", "password123", "12345678", "qwerty", "abc123",
    "monkey", "1234567", "letmein", "trustno1", "dragon",
}

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
NAME_RE = re.compile(r"^[a-zA-Z\s\-']+$")
SPECIAL_RE = re.compile(r"[!@#$%^&*()_+\-=\[\]{};':\"\\|,.<>/?]")


class ValidationResult(BaseModel):
    is_valid: bool
    errors: List[str] = Field(default_factory=list)

    @property
    def error(self) -> Optional[str]:
        return self.errors[0] if self.errors else None


def validate_password(password: Optional[str]) -> ValidationResult:
    if not password:
        return ValidationResult(is_valid=False, errors=["Password is required"])

    errors = []
    if len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    if len(password) > MAX_PASSWORD_LENGTH:
        errors.append(f"Password must not exceed {MAX_PASSWORD_LENGTH} characters")
    if not re.search(r"[a-z]", password):
        errors.append("Password must contain at least one lowercase letter")
    if not re.search(r"[A-Z]", password):
        errors.append("Password must contain at least one uppercase letter")
    if not re.search(r"\d", password):
        errors.append("Password must contain at least one number")
    if not SPECIAL_RE.search(password):
        errors.append("Password must contain at least one special character (!@#$%^&*...)")
    if password.lower() in COMMON_PASSWORDS:
        errors.append("Password is too common. Please choose a more secure password")

    return ValidationResult(is_valid=not errors, errors=errors)


def validate_email(email: Optional[str]) -> ValidationResult:
    if not email:
        return ValidationResult(is_valid=False, errors=["Email is required"])
    if not EMAIL_RE.fullmatch(email):
        return ValidationResult(is_valid=False, errors=["Invalid email format"])
    if len(email) > MAX_EMAIL_LENGTH:
        return ValidationResult(is_valid=False, errors=["Email is too long"])
    return ValidationResult(is_valid=True)


def validate_name(name: Optional[str]) -> ValidationResult:
    if not name or not name.strip():
        return ValidationResult(is_valid=False, errors=["Name is required"])
    if len(name) < MIN_NAME_LENGTH:
        return ValidationResult(is_valid=False, errors=[f"Name must be at least {MIN_NAME_LENGTH} characters"])
    if len(name) > MAX_NAME_LENGTH:
        return ValidationResult(is_valid=False, errors=[f"Name must not exceed {MAX_NAME_LENGTH} characters"])
    if not NAME_RE.fullmatch(name):
        return ValidationResult(
            is_valid=False,
            errors=["Name can only contain letters, spaces, hyphens, and apostrophes"],
        )
    return ValidationResult(is_valid=True)


def sanitize_input(value: Any) -> Any:
    """Strip angle brackets and surrounding whitespace. Not HTML escaping."""
    if not isinstance(value, str):
        return value
    return value.replace("<", "").replace(">", "").strip()
