"""Pre-application eligibility screening.

Applicants answer a handful of questions about their business before they
see an application form. The answers are classified into one of:

- **disqualified** with reasons (unregistered business, no financial records),
- **Foundation** track, flagged observation-only when revenue is below
  KES 500k so the business is kept for data collection,
- **Acceleration** track for revenue above KES 3M.

Routing looks at registration, financial records and revenue only. Years
of operation, headcount and audited accounts are collected so reviewers see
them on the application, but they never disqualify and never move a business
between tracks: an Acceleration-sized business with two years of trading and
no audit still goes to Acceleration.
"""
from __future__ import annotations

from dataclasses import dataclass, field

from pydantic import BaseModel, Field

OBSERVATION_REVENUE_CEILING = 500_000
ACCELERATION_REVENUE_FLOOR = 3_000_000

ELIGIBLE = "eligible"
DISQUALIFIED = "disqualified"

REASON_UNREGISTERED = "Business must be registered in Kenya to participate."
REASON_NO_RECORDS = (
    "We require at least 1 year of financial records "
    "(e.g. books, bank/M-PESA statements)."
)


class ScreeningInput(BaseModel):
    registered: bool
    business_type: str = "limited_company"
    years_operating: float = Field(0, ge=0)
    annual_revenue: float = Field(0, ge=0)
    employees: int = Field(0, ge=0)
    has_financial_records: bool = True
    has_audited_accounts: bool = False


@dataclass(frozen=True)
class ScreeningOutcome:
    status: str
    track: str | None = None
    observation_only: bool = False
    reasons: list[str] = field(default_factory=list)

    @property
    def eligible(self) -> bool:
        return self.status == ELIGIBLE

    def form_path(self) -> str | None:
        """Where the applicant continues after screening."""
        if self.track == "acceleration":
            return "/apply/acceleration"
        if self.track == "foundation":
            return "/apply/foundation?observation=true" if self.observation_only else "/apply/foundation"
        return None


def screen(facts: ScreeningInput) -> ScreeningOutcome:
    if not facts.registered or facts.business_type == "unregistered":
        return ScreeningOutcome(DISQUALIFIED, reasons=[REASON_UNREGISTERED])
    if not facts.has_financial_records:
        return ScreeningOutcome(DISQUALIFIED, reasons=[REASON_NO_RECORDS])
    if facts.annual_revenue < OBSERVATION_REVENUE_CEILING:
        return ScreeningOutcome(ELIGIBLE, track="foundation", observation_only=True)
    if facts.annual_revenue > ACCELERATION_REVENUE_FLOOR:
        return ScreeningOutcome(ELIGIBLE, track="acceleration")
    return ScreeningOutcome(ELIGIBLE, track="foundation")
