"""Two-tier blind review.

Two reviewers score each application independently on a 0-100 scale.

- The first submission fills the Reviewer 1 slot and moves the application
  to ``under_review``.
- The second submission (by a different user) fills Reviewer 2, averages
  both scores into ``total_score`` and decides: average >= passing
  threshold approves, anything lower rejects.

Until both reviews are in, a reviewer only sees their own slot. Admins can
lock a result, which freezes reviews and per-criterion scoring alike.
"""
from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.orm import Session

from portal.cache import revalidate_application
from portal.config import get_settings
from portal.errors import ActionError, action, ok
from portal.models import REVIEWER_ROLES, Application, EligibilityResult, User
from portal.scoring import active_config_id, find_result
from portal.services import notify_decision

log = logging.getLogger(__name__)

REVIEW_ROLES = (*REVIEWER_ROLES, "admin")


def _now() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


def _get_application(session: Session, application_id: int) -> Application:
    application = session.get(Application, application_id)
    if application is None:
        raise ActionError("Application not found")
    return application


# ---------------------------------------------------------------------------
# Submit
# ---------------------------------------------------------------------------


@action("Failed to submit review")
def submit_review(
    session: Session, user: User | None, application_id: int, score: float, notes: str | None = None,
) -> dict[str, Any]:
    if user is None:
        raise ActionError("Unauthorized")
    if user.role not in REVIEW_ROLES:
        raise ActionError("You don't have permission to review applications")
    application = _get_application(session, application_id)
    result = find_result(session, application_id)

    if result is not None and result.is_locked:
        raise ActionError("Application is locked and cannot be modified")
    if result is not None and user.id in (result.reviewer1_id, result.reviewer2_id):
        if result.reviewer1_score is not None or result.reviewer2_id == user.id:
            raise ActionError("You have already reviewed this application")

    if result is None or result.reviewer1_score is None:
        return _submit_first(session, application, result, user, score, notes)
    if result.reviewer2_id is None:
        return _submit_second(session, application, result, user, score, notes)
    raise ActionError("Both review slots are already filled")


def _submit_first(
    session: Session, application: Application, result: EligibilityResult | None,
    user: User, score: float, notes: str | None,
) -> dict[str, Any]:
    if result is None:
        result = EligibilityResult(
            application_id=application.id,
            scoring_config_id=active_config_id(session),
            is_eligible=False,
        )
        session.add(result)
    result.reviewer1_id = user.id
    result.reviewer1_score = score
    result.reviewer1_notes = notes
    result.reviewer1_at = _now()
    result.total_score = score  # provisional until the second review averages it

    if application.status in ("submitted", "under_review"):
        application.status = "under_review"
    session.commit()
    revalidate_application(application.id)
    log.info("Application %d: first review by %s", application.id, user.email)
    return ok("Review submitted. Awaiting second reviewer.")


def _submit_second(
    session: Session, application: Application, result: EligibilityResult,
    user: User, score: float, notes: str | None,
) -> dict[str, Any]:
    average = ((result.reviewer1_score or 0.0) + score) / 2
    approved = average >= get_settings().passing_threshold

    result.reviewer2_id = user.id
    result.reviewer2_score = score
    result.reviewer2_notes = notes
    result.reviewer2_at = _now()
    result.total_score = round(average, 2)
    result.is_eligible = approved
    application.status = "approved" if approved else "rejected"
    session.commit()
    revalidate_application(application.id)
    notify_decision(application)

    verdict = "Approved" if approved else "Rejected"
    log.info("Application %d: second review by %s, final %.1f (%s)",
             application.id, user.email, average, verdict)
    return ok(f"Review complete. Final Score: {average:.1f} ({verdict})")


# ---------------------------------------------------------------------------
# Lock / unlock
# ---------------------------------------------------------------------------


def _admin_result(session: Session, user: User | None, application_id: int, verb: str) -> EligibilityResult:
    if user is None:
        raise ActionError("Unauthorized")
    if user.role != "admin":
        raise ActionError(f"Only admins can {verb} applications")
    _get_application(session, application_id)
    result = find_result(session, application_id)
    if result is None:
        raise ActionError("No eligibility result found")
    return result


@action("Failed to lock application")
def lock_application(
    session: Session, user: User | None, application_id: int, reason: str | None = None,
) -> dict[str, Any]:
    result = _admin_result(session, user, application_id, "lock")
    if result.is_locked:
        raise ActionError("Application is already locked")
    result.is_locked = True
    result.locked_by = user.id
    result.locked_at = _now()
    result.lock_reason = reason or "Locked by admin"
    session.commit()
    revalidate_application(application_id)
    return ok("Application locked successfully")


@action("Failed to unlock application")
def unlock_application(
    session: Session, user: User | None, application_id: int, reason: str | None = None,
) -> dict[str, Any]:
    result = _admin_result(session, user, application_id, "unlock")
    if not result.is_locked:
        raise ActionError("Application is not locked")
    result.is_locked = False
    result.lock_reason = f"Unlocked by admin: {reason or 'No reason provided'}"
    session.commit()
    revalidate_application(application_id)
    return ok("Application unlocked successfully")


# ---------------------------------------------------------------------------
# Status (blind)
# ---------------------------------------------------------------------------


def _user_name(session: Session, user_id: str | None) -> str | None:
    if not user_id:
        return None
    other = session.get(User, user_id)
    return other.display_name if other else None


def _slot(session: Session, result: EligibilityResult, n: int, visible: bool, is_current: bool) -> dict | None:
    reviewer_id = getattr(result, f"reviewer{n}_id")
    score = getattr(result, f"reviewer{n}_score")
    if not reviewer_id or score is None:
        return None
    reviewed_at = getattr(result, f"reviewer{n}_at")
    return {
        "id": reviewer_id,
        "name": _user_name(session, reviewer_id) if visible else f"Reviewer {n} (Blind)",
        "score": score if visible else None,
        "notes": getattr(result, f"reviewer{n}_notes") if visible else None,
        "reviewed_at": reviewed_at.isoformat() if reviewed_at else None,
        "is_current_user": is_current,
    }


@action("Failed to get review status")
def get_review_status(session: Session, user: User | None, application_id: int) -> dict[str, Any]:
    application = _get_application(session, application_id)
    result = application.eligibility
    viewer_id = user.id if user else None

    if result is None:
        return ok(data={
            "application_status": application.status,
            "reviewer1": None, "reviewer2": None,
            "is_blind_review": True, "current_user_has_reviewed": False,
            "both_reviews_complete": False,
            "can_submit_review": application.status not in ("approved", "rejected"),
            "is_locked": False, "locked_by": None, "locked_at": None, "lock_reason": None,
            "final_score": None, "is_eligible": None, "eligibility_id": None,
        })

    is_r1 = result.reviewer1_score is not None and result.reviewer1_id == viewer_id
    is_r2 = result.reviewer2_id is not None and result.reviewer2_id == viewer_id
    has_reviewed = is_r1 or is_r2
    both = result.reviewer1_score is not None and result.reviewer2_score is not None

    return ok(data={
        "application_status": application.status,
        "reviewer1": _slot(session, result, 1, both or is_r1, is_r1),
        "reviewer2": _slot(session, result, 2, both or is_r2, is_r2),
        "is_blind_review": not both and not has_reviewed,
        "current_user_has_reviewed": has_reviewed,
        "both_reviews_complete": both,
        "can_submit_review": (
            not has_reviewed and not result.is_locked
            and application.status not in ("approved", "rejected")
        ),
        "is_locked": result.is_locked,
        "locked_by": _user_name(session, result.locked_by),
        "locked_at": result.locked_at.isoformat() if result.locked_at else None,
        "lock_reason": result.lock_reason,
        "final_score": result.total_score if both else None,
        "is_eligible": result.is_eligible,
        "eligibility_id": result.id,
    })
