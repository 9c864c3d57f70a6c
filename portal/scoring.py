"""Per-criterion scoring and scoring configuration management.

Scores hang off an application's EligibilityResult, one row per criterion.
Reviewers save progress as often as they like; each save upserts by
``(eligibility_result_id, criteria_id)``. Once an admin locks the result,
saves are refused without touching the database.
"""
from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any, Iterable

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from portal.cache import page_cache, revalidate_application
from portal.criteria import DEFAULT_CONFIG_DESCRIPTION, DEFAULT_CONFIG_NAME, DEFAULT_CRITERIA
from portal.errors import ActionError, action, ok
from portal.models import (
    Application, ApplicationScore, EligibilityResult, ScoringConfiguration, ScoringCriteria, User,
)
from portal.schemas import ScoreItem

log = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


# ---------------------------------------------------------------------------
# Eligibility result lookup
# ---------------------------------------------------------------------------


def find_result(session: Session, application_id: int) -> EligibilityResult | None:
    return session.execute(
        select(EligibilityResult).where(EligibilityResult.application_id == application_id)
    ).scalars().first()


def get_or_create_result(session: Session, application_id: int, reviewer: User) -> EligibilityResult:
    """Fetch the application's result, creating a blank one on first scoring."""
    result = find_result(session, application_id)
    if result is not None:
        return result
    if session.get(Application, application_id) is None:
        raise ActionError("Application not found")
    result = EligibilityResult(
        application_id=application_id,
        scoring_config_id=active_config_id(session),
        reviewer1_id=reviewer.id,
        reviewer1_at=_now(),
        total_score=0.0,
        is_eligible=False,
        age_eligible=True,
        registration_eligible=True,
        revenue_eligible=True,
        business_plan_eligible=True,
        impact_eligible=True,
    )
    session.add(result)
    session.flush()
    return result


def score_row(score: ApplicationScore) -> dict[str, Any]:
    return {
        "id": score.id,
        "eligibility_result_id": score.eligibility_result_id,
        "criteria_id": score.criteria_id,
        "score": score.score,
        "reviewer_comment": score.reviewer_comment,
    }


# ---------------------------------------------------------------------------
# Scoring progress
# ---------------------------------------------------------------------------


@action("Failed to save progress")
def save_scoring_progress(
    session: Session, user: User | None, application_id: int, scores: Iterable[ScoreItem],
) -> dict[str, Any]:
    if user is None:
        raise ActionError("Unauthorized")
    result = get_or_create_result(session, application_id, user)
    if result.is_locked:
        raise ActionError("Application is locked")

    for item in scores:
        existing = session.execute(
            select(ApplicationScore).where(
                ApplicationScore.eligibility_result_id == result.id,
                ApplicationScore.criteria_id == item.criteria_id,
            )
        ).scalars().first()
        if existing is not None:
            existing.score = item.score
            existing.reviewer_comment = item.notes
        else:
            session.add(ApplicationScore(
                eligibility_result_id=result.id,
                criteria_id=item.criteria_id,
                config_id=result.scoring_config_id,
                score=item.score,
                reviewer_comment=item.notes,
            ))
        # Flush per row: a criteria id repeated later in the batch must find this row.
        session.flush()

    session.commit()
    revalidate_application(application_id)
    return ok("Progress saved")


@action("Failed to fetch scores")
def get_detailed_scores(session: Session, application_id: int) -> dict[str, Any]:
    result = find_result(session, application_id)
    if result is None:
        return ok(data=[])
    rows = session.execute(
        select(ApplicationScore)
        .where(ApplicationScore.eligibility_result_id == result.id)
        .order_by(ApplicationScore.criteria_id)
    ).scalars().all()
    return ok(data=[score_row(s) for s in rows])


def criteria_total(session: Session, application_id: int) -> float:
    """Sum of saved per-criterion scores for an application."""
    result = find_result(session, application_id)
    if result is None:
        return 0.0
    return float(sum(s.score for s in result.scores))


# ---------------------------------------------------------------------------
# Scoring configurations
# ---------------------------------------------------------------------------


def active_config_id(session: Session) -> int | None:
    return session.execute(
        select(ScoringConfiguration.id).where(ScoringConfiguration.is_active.is_(True))
    ).scalars().first()


def create_default_configuration(session: Session) -> ScoringConfiguration:
    """Insert the default configuration with all criteria (caller must commit)."""
    config = ScoringConfiguration(name=DEFAULT_CONFIG_NAME, description=DEFAULT_CONFIG_DESCRIPTION)
    for track, rows in DEFAULT_CRITERIA.items():
        for category, name, weight in rows:
            config.criteria.append(ScoringCriteria(
                category=category, criteria_name=name, track=track, weight=weight,
            ))
    session.add(config)
    session.flush()
    return config


def config_summary(config: ScoringConfiguration) -> dict[str, Any]:
    return {
        "id": config.id,
        "name": config.name,
        "is_active": config.is_active,
        "description": config.description,
        "criteria": [
            {"id": c.id, "category": c.category, "criteria_name": c.criteria_name,
             "track": c.track, "weight": c.weight}
            for c in config.criteria
        ],
    }


def list_configurations(session: Session) -> list[dict[str, Any]]:
    configs = session.execute(
        select(ScoringConfiguration).order_by(ScoringConfiguration.id)
    ).scalars().all()
    return [config_summary(c) for c in configs]


def track_criteria(session: Session, track: str) -> list[ScoringCriteria]:
    config_id = active_config_id(session)
    if config_id is None:
        return []
    return list(session.execute(
        select(ScoringCriteria)
        .where(ScoringCriteria.config_id == config_id, ScoringCriteria.track == track)
        .order_by(ScoringCriteria.id)
    ).scalars().all())


@action("Failed to activate configuration")
def activate_configuration(session: Session, user: User | None, config_id: int) -> dict[str, Any]:
    if user is None or user.role != "admin":
        raise ActionError("Unauthorized")
    config = session.get(ScoringConfiguration, config_id)
    if config is None:
        raise ActionError("Scoring configuration not found")
    for other in session.execute(select(ScoringConfiguration)).scalars():
        other.is_active = other.id == config_id
    session.commit()
    page_cache.invalidate_prefix("/admin")
    return ok(f"Activated {config.name}")


@action("Failed to initialize default configuration")
def initialize_default_configuration(
    session: Session, user: User | None, force: bool = False,
) -> dict[str, Any]:
    if user is None or user.role != "admin":
        raise ActionError("Unauthorized")
    existing = session.execute(
        select(ScoringConfiguration).where(ScoringConfiguration.name == DEFAULT_CONFIG_NAME)
    ).scalars().first()
    if existing is not None:
        if not force:
            raise ActionError(
                "Default scoring configuration already exists. Use force=true to reinitialize."
            )
        session.execute(delete(ScoringCriteria).where(ScoringCriteria.config_id == existing.id))
        session.delete(existing)
        session.flush()
    config = create_default_configuration(session)
    for other in session.execute(select(ScoringConfiguration)).scalars():
        other.is_active = other.id == config.id
    session.commit()
    page_cache.invalidate_prefix("/admin")
    return ok("Default configuration initialized", data=config_summary(config))
