"""Application lifecycle, listings, stats and user administration."""
from __future__ import annotations

import json
import logging
from collections import Counter
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from portal import emails
from portal.auth import create_user
from portal.cache import page_cache, revalidate_application
from portal.config import applications_open, get_settings
from portal.eligibility import record_eligibility
from portal.errors import ActionError, action, ok
from portal.models import ROLES, STATUSES, TRACKS, Applicant, Application, Business, User, UserProfile
from portal.schemas import ApplicationSubmit

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Shared field tuples
# ---------------------------------------------------------------------------

APPLICANT_FIELDS = (
    "first_name", "last_name", "id_passport_number", "gender", "dob", "phone_number", "email",
)

BUSINESS_FIELDS = (
    "name", "is_registered", "registration_type", "sector", "description", "problem_solved",
    "country", "county", "city", "years_operational", "employees", "revenue_last_year",
    "has_financial_records", "has_audited_accounts",
)

DECISION_STATUSES = ("approved", "rejected")

# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------


_MISSING = object()


def json_parse(value: str | None, default: Any = _MISSING) -> Any:
    try:
        return json.loads(value or "")
    except (json.JSONDecodeError, TypeError):
        return {} if default is _MISSING else default


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def applicant_for(application: Application) -> Applicant:
    return application.business.applicant


def application_summary(application: Application) -> dict[str, Any]:
    business = application.business
    applicant = business.applicant
    result = application.eligibility
    return {
        "id": application.id,
        "track": application.track,
        "status": application.status,
        "is_observation_only": application.is_observation_only,
        "business_name": business.name,
        "applicant_name": f"{applicant.first_name} {applicant.last_name}",
        "applicant_email": applicant.email,
        "county": business.county,
        "sector": business.sector,
        "submitted_at": _iso(application.submitted_at),
        "total_score": result.total_score if result else None,
        "is_eligible": result.is_eligible if result else None,
        "is_locked": result.is_locked if result else False,
    }


def application_detail(application: Application) -> dict[str, Any]:
    business = application.business
    applicant = business.applicant
    base = application_summary(application)
    base["referral_source"] = application.referral_source
    base["applicant"] = {f: getattr(applicant, f) for f in APPLICANT_FIELDS}
    if base["applicant"]["dob"] is not None:
        base["applicant"]["dob"] = base["applicant"]["dob"].isoformat()
    base["business"] = {f: getattr(business, f) for f in BUSINESS_FIELDS}
    base["business"]["track_answers"] = json_parse(business.track_answers_json, {})
    result = application.eligibility
    base["eligibility"] = None if result is None else {
        "id": result.id,
        "age_eligible": result.age_eligible,
        "registration_eligible": result.registration_eligible,
        "revenue_eligible": result.revenue_eligible,
        "business_plan_eligible": result.business_plan_eligible,
        "impact_eligible": result.impact_eligible,
        "lock_reason": result.lock_reason,
        "locked_at": _iso(result.locked_at),
    }
    return base


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def get_user_application(session: Session, user_id: str) -> Application | None:
    return session.execute(
        select(Application).where(Application.user_id == user_id)
    ).scalars().first()


def list_applications(
    session: Session, *, status: str | None = None, track: str | None = None,
    search: str | None = None, observation_only: bool | None = None,
) -> list[dict[str, Any]]:
    """Newest first. *status* and *track* accept comma-separated values.

    *observation_only* narrows to (or excludes) the low-revenue Foundation
    applicants who join for observation only.
    """
    stmt = select(Application).join(Application.business).join(Business.applicant)
    if status:
        stmt = stmt.where(Application.status.in_([s.strip() for s in status.split(",")]))
    if track:
        stmt = stmt.where(Application.track.in_([t.strip().lower() for t in track.split(",")]))
    if search:
        q = f"%{search.strip()}%"
        stmt = stmt.where(or_(
            Business.name.ilike(q), Applicant.first_name.ilike(q),
            Applicant.last_name.ilike(q), Applicant.email.ilike(q),
        ))
    if observation_only is not None:
        stmt = stmt.where(Application.is_observation_only.is_(observation_only))
    stmt = stmt.order_by(Application.created_at.desc(), Application.id.desc())
    return [application_summary(a) for a in session.execute(stmt).scalars().all()]


def compute_stats(session: Session) -> dict:
    applications = session.execute(select(Application)).scalars().all()
    by_status: Counter[str] = Counter()
    by_track: Counter[str] = Counter()
    by_sector: Counter[str] = Counter()
    by_county: Counter[str] = Counter()
    by_gender: Counter[str] = Counter()
    observation = scored = locked = 0
    for application in applications:
        by_status[application.status] += 1
        by_track[application.track or "unassigned"] += 1
        business = application.business
        by_sector[business.sector or "unspecified"] += 1
        by_county[business.county or "unspecified"] += 1
        by_gender[business.applicant.gender or "unspecified"] += 1
        if application.is_observation_only:
            observation += 1
        result = application.eligibility
        if result is not None:
            if result.scores or result.reviewer1_score is not None:
                scored += 1
            if result.is_locked:
                locked += 1
    return {
        "total": len(applications), "by_status": dict(by_status), "by_track": dict(by_track),
        "by_sector": dict(by_sector), "by_county": dict(by_county), "by_gender": dict(by_gender),
        "observation_only": observation, "scored": scored, "locked": locked,
    }


# ---------------------------------------------------------------------------
# Application lifecycle
# ---------------------------------------------------------------------------


def _now() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


@action("Failed to submit application")
def submit_application(
    session: Session, user: User | None, track: str, payload: ApplicationSubmit,
) -> dict[str, Any]:
    if user is None:
        raise ActionError("Unauthorized")
    if not applications_open():
        raise ActionError(
            "Applications are closed. The next application period opens in "
            f"{get_settings().next_application_period}."
        )
    track = (track or "").lower()
    if track not in TRACKS:
        raise ActionError(f"Invalid track: {track}")
    if get_user_application(session, user.id) is not None:
        raise ActionError("You have already submitted an application")

    details = payload.applicant.model_dump()
    applicant = session.execute(
        select(Applicant).where(Applicant.user_id == user.id)
    ).scalars().first()
    if applicant is None:
        applicant = Applicant(user_id=user.id, **details)
        session.add(applicant)
    else:
        for field in APPLICANT_FIELDS:
            setattr(applicant, field, details[field])

    business_data = payload.business.model_dump()
    track_answers = business_data.pop("track_answers")
    business = Business(**business_data, track_answers_json=json.dumps(track_answers))
    applicant.businesses.append(business)

    application = Application(
        user_id=user.id,
        business=business,
        track=track,
        status="submitted",
        is_observation_only=payload.observation_only,
        referral_source=payload.referral_source,
        submitted_at=_now(),
    )
    session.add(application)
    session.flush()
    record_eligibility(session, application)
    session.commit()
    page_cache.invalidate("/admin", "/admin/applications")
    log.info("Application %d submitted by %s (%s)", application.id, user.email, track)

    emails.notify(applicant.email, emails.application_submission_email(
        applicant_name=f"{applicant.first_name} {applicant.last_name}",
        business_name=business.name,
        application_id=application.id,
        track=track,
    ))
    return ok("Application submitted successfully", application_id=application.id)


def notify_decision(application: Application) -> bool:
    if application.status not in DECISION_STATUSES:
        return False
    applicant = applicant_for(application)
    return emails.notify(applicant.email, emails.application_decision_email(
        applicant_name=f"{applicant.first_name} {applicant.last_name}",
        business_name=application.business.name,
        status=application.status,
    ))


@action("Failed to update application status")
def update_application_status(
    session: Session, user: User | None, application_id: int, status: str,
) -> dict[str, Any]:
    if user is None or user.role not in ("admin", "oversight"):
        raise ActionError("Unauthorized")
    if status not in STATUSES:
        raise ActionError(f"Invalid status: {status}")
    application = session.get(Application, application_id)
    if application is None:
        raise ActionError("Application not found")
    previous = application.status
    application.status = status
    session.commit()
    revalidate_application(application_id)
    log.info("Application %d status %s -> %s by %s", application_id, previous, status, user.email)
    if status != previous:
        notify_decision(application)
    return ok("Application status updated")


# ---------------------------------------------------------------------------
# User administration
# ---------------------------------------------------------------------------


def user_row(user: User) -> dict[str, Any]:
    return {
        "id": user.id, "email": user.email, "name": user.display_name, "role": user.role,
        "last_active": _iso(user.last_active),
    }


def search_users(session: Session, query: str | None = None, role: str | None = None) -> list[dict]:
    stmt = select(User).outerjoin(User.profile)
    if query:
        q = f"%{query.strip()}%"
        stmt = stmt.where(or_(User.email.ilike(q), User.name.ilike(q)))
    if role:
        stmt = stmt.where(UserProfile.role == role)
    stmt = stmt.order_by(User.email)
    return [user_row(u) for u in session.execute(stmt).scalars().all()]


@action("Failed to update user role")
def update_user_role(session: Session, user: User | None, user_id: str, role: str) -> dict[str, Any]:
    if user is None or user.role != "admin":
        raise ActionError("Unauthorized")
    if role not in ROLES:
        raise ActionError(f"Invalid role: {role}")
    if user_id == user.id and role != "admin":
        raise ActionError("You cannot remove your own admin role")
    target = session.get(User, user_id)
    if target is None:
        raise ActionError("User not found")
    if target.profile is None:
        target.profile = UserProfile(email=target.email, role=role)
    else:
        target.profile.role = role
    session.commit()
    log.info("Role of %s set to %s by %s", target.email, role, user.email)
    return ok("User role updated", user=user_row(target))


@action("Failed to create user")
def create_staff_user(
    session: Session, user: User | None, *, email: str, password: str,
    first_name: str, last_name: str, role: str,
) -> dict[str, Any]:
    if user is None or user.role != "admin":
        raise ActionError("Unauthorized")
    try:
        created = create_user(
            session, email=email, password=password,
            first_name=first_name, last_name=last_name, role=role,
        )
    except ValueError as exc:
        raise ActionError(str(exc)) from exc
    session.commit()
    log.info("Staff account %s (%s) created by %s", created.email, role, user.email)
    emails.notify(created.email, emails.staff_account_email(
        name=created.display_name, email=created.email, role=role,
    ))
    return ok("User created", user=user_row(created))
