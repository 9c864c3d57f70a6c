"""Pydantic request/response schemas for the portal API."""
from __future__ import annotations

from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, EmailStr, Field, field_validator


def _normalize_email(v: str) -> str:
    return v.strip().lower()


# ---------------------------------------------------------------------------
# Auth & users
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    email: EmailStr
    password: str

    @field_validator("email")
    @classmethod
    def email_lowercase(cls, v: str) -> str:
        return _normalize_email(v)


class SignupRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=100)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)

    @field_validator("email")
    @classmethod
    def email_lowercase(cls, v: str) -> str:
        return _normalize_email(v)


class UserCreate(SignupRequest):
    role: str = "reviewer_1"


class PasswordChange(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=8, max_length=100)
    confirm_password: str


class RoleUpdate(BaseModel):
    role: str


# ---------------------------------------------------------------------------
# Applications
# ---------------------------------------------------------------------------


class ApplicantDetails(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    id_passport_number: str = ""
    gender: str = ""
    dob: date | None = None
    phone_number: str = ""
    email: EmailStr

    @field_validator("email")
    @classmethod
    def email_lowercase(cls, v: str) -> str:
        return _normalize_email(v)


class BusinessDetails(BaseModel):
    name: str = Field(..., min_length=1)
    is_registered: bool
    registration_type: str = ""
    sector: str = ""
    description: str = ""
    problem_solved: str = ""
    country: str = "kenya"
    county: str = ""
    city: str = ""
    years_operational: int = Field(0, ge=0)
    employees: int = Field(0, ge=0)
    revenue_last_year: float = Field(0, ge=0)
    has_financial_records: bool = False
    has_audited_accounts: bool = False
    track_answers: dict[str, Any] = {}


class ApplicationSubmit(BaseModel):
    applicant: ApplicantDetails
    business: BusinessDetails
    referral_source: str = ""
    observation_only: bool = False


class StatusUpdate(BaseModel):
    status: str


class ApplicationOut(BaseModel):
    id: int
    track: str | None
    status: str
    is_observation_only: bool
    business_name: str
    applicant_name: str
    applicant_email: str
    county: str
    sector: str
    submitted_at: str | None = None
    total_score: float | None = None
    is_eligible: bool | None = None
    is_locked: bool = False


class StatsOut(BaseModel):
    total: int
    by_status: dict[str, int]
    by_track: dict[str, int]
    by_sector: dict[str, int]
    by_county: dict[str, int]
    by_gender: dict[str, int]
    observation_only: int
    scored: int
    locked: int


# ---------------------------------------------------------------------------
# Scoring & review
# ---------------------------------------------------------------------------


class ScoreItem(BaseModel):
    criteria_id: int
    score: float = Field(..., ge=0)
    notes: str | None = None


class ScoringProgressRequest(BaseModel):
    scores: list[ScoreItem]


class ReviewSubmit(BaseModel):
    score: float = Field(..., ge=0, le=100)
    notes: str | None = None


class LockRequest(BaseModel):
    reason: str | None = None


class AssignmentRequest(BaseModel):
    evaluator_id: str = ""
    application_ids: list[int] = []


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------


class ExportFilters(BaseModel):
    status: list[str] = []
    track: list[str] = []
    country: list[str] = []
    sector: list[str] = []
    is_eligible: bool | None = None
    submitted_after: datetime | None = None
    submitted_before: datetime | None = None


class ExportRequest(BaseModel):
    # Plain strings: unknown values are answered with 400, not 422.
    type: str | None = None
    format: str | None = None
    filters: ExportFilters = ExportFilters()
