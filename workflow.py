"""
Status transition tables for the game submission and license review pipelines.

Every write of `submissionStatus` (Game, GameVersion) or `validation.status`
(License) goes through `ensure_transition`, and the update itself filters on the
current status so a concurrent writer cannot move the document from a state it
no longer holds.
"""

from typing import Dict, FrozenSet, Optional

from fastapi import HTTPException

DRAFT = "Draft"
IN_REVIEW = "In Review"
CHANGES_REQUESTED = "Changes Requested"
APPROVED = "Approved"
PUBLISHED = "Published"
REJECTED = "Rejected"

SUBMISSION_STATUSES = (DRAFT, IN_REVIEW, CHANGES_REQUESTED, APPROVED, PUBLISHED, REJECTED)
REVIEW_DECISIONS = (APPROVED, CHANGES_REQUESTED, REJECTED)

SUBMISSION_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    DRAFT: frozenset({IN_REVIEW, DRAFT}),
    IN_REVIEW: frozenset({APPROVED, CHANGES_REQUESTED, REJECTED}),
    CHANGES_REQUESTED: frozenset({IN_REVIEW, DRAFT}),
    REJECTED: frozenset({IN_REVIEW, DRAFT}),
    APPROVED: frozenset({PUBLISHED, DRAFT}),
    PUBLISHED: frozenset({DRAFT}),
}

LICENSE_PENDING = "Pending"
LICENSE_IN_REVIEW = "In Review"
LICENSE_APPROVED = "Approved"
LICENSE_REJECTED = "Rejected"
LICENSE_NEEDS_REVISION = "Needs Revision"

LICENSE_DECISIONS = (LICENSE_APPROVED, LICENSE_REJECTED, LICENSE_NEEDS_REVISION)

LICENSE_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    LICENSE_PENDING: frozenset({LICENSE_IN_REVIEW}),
    LICENSE_NEEDS_REVISION: frozenset({LICENSE_IN_REVIEW}),
    LICENSE_REJECTED: frozenset({LICENSE_IN_REVIEW}),
    LICENSE_IN_REVIEW: frozenset({LICENSE_APPROVED, LICENSE_REJECTED, LICENSE_NEEDS_REVISION}),
    LICENSE_APPROVED: frozenset(),
}

# license states in which the developer may still edit the declarations
LICENSE_EDITABLE = frozenset({LICENSE_PENDING, LICENSE_NEEDS_REVISION, LICENSE_REJECTED})


def can_transition(current: Optional[str], target: str, table: Dict[str, FrozenSet[str]] = SUBMISSION_TRANSITIONS) -> bool:
    return target in table.get(current or "", frozenset())


def ensure_transition(current: Optional[str], target: str, table: Dict[str, FrozenSet[str]] = SUBMISSION_TRANSITIONS) -> str:
    """Return `target` if (current, target) is a legal move, else raise 400."""
    if not can_transition(current, target, table):
        raise HTTPException(
            status_code=400,
            detail={"message": "Illegal status transition", "from": current, "to": target},
        )
    return target


def is_locked(status: Optional[str]) -> bool:
    return status == IN_REVIEW


def increment_version(version: Optional[str]) -> str:
    """Bump the patch component of a dotted version string."""
    parts = (version or "1.0.0").split(".")
    while len(parts) < 3:
        parts.append("0")
    try:
        parts[2] = str(int(parts[2]) + 1)
    except ValueError:
        parts[2] = "1"
    return ".".join(parts)
