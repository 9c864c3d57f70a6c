"""Mandatory eligibility criteria, recorded on the application's EligibilityResult."""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any

from sqlalchemy.orm import Session

from portal.cache import revalidate_application
from portal.errors import ActionError, action, ok
from portal.models import Application, Business, EligibilityResult
from portal.scoring import active_config_id, find_result

log = logging.getLogger(__name__)

MIN_YEARS_OPERATIONAL = 1
MIN_REVENUE = 500_000
MIN_NARRATIVE_LENGTH = 50


@dataclass(frozen=True)
class MandatoryCriteria:
    age_eligible: bool
    registration_eligible: bool
    revenue_eligible: bool
    business_plan_eligible: bool
    impact_eligible: bool

    @property
    def is_eligible(self) -> bool:
        return all(asdict(self).values())


def check_mandatory_criteria(business: Business) -> MandatoryCriteria:
    return MandatoryCriteria(
        age_eligible=(business.years_operational or 0) >= MIN_YEARS_OPERATIONAL,
        registration_eligible=bool(business.is_registered),
        revenue_eligible=(business.revenue_last_year or 0) >= MIN_REVENUE,
        business_plan_eligible=bool(business.has_financial_records),
        impact_eligible=(
            len(business.description or "") > MIN_NARRATIVE_LENGTH
            and len(business.problem_solved or "") > MIN_NARRATIVE_LENGTH
        ),
    )


def record_eligibility(session: Session, application: Application) -> EligibilityResult:
    """Create or refresh the criteria flags (caller must commit)."""
    result = find_result(session, application.id)
    if result is not None and result.is_locked:
        raise ActionError("Application is locked")
    criteria = check_mandatory_criteria(application.business)
    if result is None:
        result = EligibilityResult(application_id=application.id, scoring_config_id=active_config_id(session))
        session.add(result)
    for key, value in asdict(criteria).items():
        setattr(result, key, value)
    result.is_eligible = criteria.is_eligible
    session.flush()
    return result


@action("Failed to check eligibility")
def check_eligibility(session: Session, application_id: int) -> dict[str, Any]:
    application = session.get(Application, application_id)
    if application is None:
        raise ActionError("Application not found")
    result = record_eligibility(session, application)
    session.commit()
    revalidate_application(application_id)
    log.info("Application %d mandatory criteria: eligible=%s", application_id, result.is_eligible)
    return ok(data={
        "eligibility_result_id": result.id,
        "is_eligible": result.is_eligible,
        **asdict(check_mandatory_criteria(application.business)),
    })
