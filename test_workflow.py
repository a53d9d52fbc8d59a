import pytest
from fastapi import HTTPException

from workflow import (
    DRAFT, IN_REVIEW, CHANGES_REQUESTED, APPROVED, PUBLISHED, REJECTED,
    LICENSE_PENDING, LICENSE_IN_REVIEW, LICENSE_APPROVED, LICENSE_TRANSITIONS,
    can_transition, ensure_transition, is_locked, increment_version,
)


@pytest.mark.parametrize("current,target", [
    (DRAFT, IN_REVIEW),
    (IN_REVIEW, APPROVED),
    (IN_REVIEW, CHANGES_REQUESTED),
    (IN_REVIEW, REJECTED),
    (CHANGES_REQUESTED, IN_REVIEW),
    (APPROVED, PUBLISHED),
    (PUBLISHED, DRAFT),
])
def test_legal_submission_moves(current, target):
    assert ensure_transition(current, target) == target


@pytest.mark.parametrize("current,target", [
    (DRAFT, PUBLISHED),
    (DRAFT, APPROVED),
    (IN_REVIEW, PUBLISHED),
    (IN_REVIEW, DRAFT),
    (PUBLISHED, IN_REVIEW),
    (None, IN_REVIEW),
])
def test_illegal_submission_moves_raise_400(current, target):
    with pytest.raises(HTTPException) as exc:
        ensure_transition(current, target)
    assert exc.value.status_code == 400
    assert exc.value.detail["from"] == current
    assert exc.value.detail["to"] == target


def test_license_table():
    assert can_transition(LICENSE_PENDING, LICENSE_IN_REVIEW, LICENSE_TRANSITIONS)
    assert can_transition(LICENSE_IN_REVIEW, LICENSE_APPROVED, LICENSE_TRANSITIONS)
    assert not can_transition(LICENSE_APPROVED, LICENSE_IN_REVIEW, LICENSE_TRANSITIONS)
    assert not can_transition(LICENSE_PENDING, LICENSE_APPROVED, LICENSE_TRANSITIONS)


def test_only_in_review_locks():
    assert is_locked(IN_REVIEW)
    assert not is_locked(CHANGES_REQUESTED)
    assert not is_locked(DRAFT)


def test_increment_version():
    assert increment_version("1.0.0") == "1.0.1"
    assert increment_version("2.3.9") == "2.3.10"
    assert increment_version("1.2") == "1.2.1"
    assert increment_version(None) == "1.0.1"
    assert increment_version("1.0.beta") == "1.0.1"
