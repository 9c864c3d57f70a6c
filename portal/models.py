from __future__ import annotations

import uuid
from datetime import date, datetime

from sqlalchemy import (
    Boolean, Date, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint, func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

ROLES = ("applicant", "reviewer_1", "reviewer_2", "technical_reviewer", "oversight", "admin")
REVIEWER_ROLES = ("reviewer_1", "reviewer_2", "technical_reviewer")
STATUSES = ("submitted", "under_review", "shortlisted", "approved", "rejected")
TRACKS = ("foundation", "acceleration")


def _uuid() -> str:
    return uuid.uuid4().hex


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_uuid)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), default="")
    password_hash: Mapped[str] = mapped_column(String(200), default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    last_active: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    profile: Mapped[UserProfile | None] = relationship(
        "UserProfile", back_populates="user", uselist=False, cascade="all, delete-orphan",
    )
    sessions: Mapped[list[AuthSession]] = relationship(
        "AuthSession", back_populates="user", cascade="all, delete-orphan",
    )

    @property
    def role(self) -> str:
        return self.profile.role if self.profile else "applicant"

    @property
    def display_name(self) -> str:
        return self.name or self.email


class AuthSession(Base):
    __tablename__ = "auth_sessions"

    token: Mapped[str] = mapped_column(String(100), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(32), ForeignKey("users.id"), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    user: Mapped[User] = relationship("User", back_populates="sessions")


class UserProfile(Base):
    __tablename__ = "user_profiles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(32), ForeignKey("users.id"), unique=True, nullable=False)
    first_name: Mapped[str] = mapped_column(String(100), default="")
    last_name: Mapped[str] = mapped_column(String(100), default="")
    email: Mapped[str] = mapped_column(String(255), default="")
    role: Mapped[str] = mapped_column(String(30), default="applicant", nullable=False)  # see ROLES
    phone_number: Mapped[str] = mapped_column(String(20), default="")
    country: Mapped[str] = mapped_column(String(100), default="")
    organization: Mapped[str] = mapped_column(Text, default="")
    is_completed: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    user: Mapped[User] = relationship("User", back_populates="profile")


class Applicant(Base):
    __tablename__ = "applicants"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(32), ForeignKey("users.id"), unique=True, nullable=False)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    id_passport_number: Mapped[str] = mapped_column(String(50), default="")
    gender: Mapped[str] = mapped_column(String(10), default="")  # male | female | other
    dob: Mapped[date | None] = mapped_column(Date, nullable=True)
    phone_number: Mapped[str] = mapped_column(String(20), default="")
    email: Mapped[str] = mapped_column(String(255), default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    businesses: Mapped[list[Business]] = relationship(
        "Business", back_populates="applicant", cascade="all, delete-orphan",
    )


class Business(Base):
    __tablename__ = "businesses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    applicant_id: Mapped[int] = mapped_column(Integer, ForeignKey("applicants.id"), nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    is_registered: Mapped[bool] = mapped_column(Boolean, default=False)
    registration_type: Mapped[str] = mapped_column(String(50), default="")
    sector: Mapped[str] = mapped_column(String(50), default="")
    description: Mapped[str] = mapped_column(Text, default="")
    problem_solved: Mapped[str] = mapped_column(Text, default="")
    country: Mapped[str] = mapped_column(String(30), default="kenya")
    county: Mapped[str] = mapped_column(String(50), default="")
    city: Mapped[str] = mapped_column(String(100), default="")
    years_operational: Mapped[int] = mapped_column(Integer, default=0)
    employees: Mapped[int] = mapped_column(Integer, default=0)
    revenue_last_year: Mapped[float] = mapped_column(Float, default=0.0)
    has_financial_records: Mapped[bool] = mapped_column(Boolean, default=False)
    has_audited_accounts: Mapped[bool] = mapped_column(Boolean, default=False)
    track_answers_json: Mapped[str] = mapped_column(Text, default="{}")
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    applicant: Mapped[Applicant] = relationship("Applicant", back_populates="businesses")


class Application(Base):
    __tablename__ = "applications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(32), ForeignKey("users.id"), nullable=False)
    business_id: Mapped[int] = mapped_column(Integer, ForeignKey("businesses.id"), nullable=False)
    track: Mapped[str | None] = mapped_column(String(20), nullable=True)  # foundation | acceleration
    status: Mapped[str] = mapped_column(String(30), default="submitted", nullable=False)  # see STATUSES
    is_observation_only: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    referral_source: Mapped[str] = mapped_column(String(100), default="")
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    business: Mapped[Business] = relationship("Business")
    eligibility: Mapped[EligibilityResult | None] = relationship(
        "EligibilityResult", back_populates="application", uselist=False,
    )


class EligibilityResult(Base):
    __tablename__ = "eligibility_results"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    application_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("applications.id"), unique=True, nullable=False,
    )
    scoring_config_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_eligible: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    age_eligible: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    registration_eligible: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    revenue_eligible: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    business_plan_eligible: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    impact_eligible: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    total_score: Mapped[float | None] = mapped_column(Float, nullable=True)

    reviewer1_id: Mapped[str | None] = mapped_column(String(32), ForeignKey("users.id"), nullable=True)
    reviewer1_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    reviewer1_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    reviewer1_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    reviewer2_id: Mapped[str | None] = mapped_column(String(32), ForeignKey("users.id"), nullable=True)
    reviewer2_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    reviewer2_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    reviewer2_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    is_locked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    locked_by: Mapped[str | None] = mapped_column(String(32), ForeignKey("users.id"), nullable=True)
    locked_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    lock_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    application: Mapped[Application] = relationship("Application", back_populates="eligibility")
    scores: Mapped[list[ApplicationScore]] = relationship(
        "ApplicationScore", back_populates="eligibility_result", cascade="all, delete-orphan",
    )


class ScoringConfiguration(Base):
    __tablename__ = "scoring_configurations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    criteria: Mapped[list[ScoringCriteria]] = relationship(
        "ScoringCriteria", back_populates="config", cascade="all, delete-orphan",
    )


class ScoringCriteria(Base):
    __tablename__ = "scoring_criteria"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    config_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("scoring_configurations.id"), nullable=True)
    category: Mapped[str] = mapped_column(Text, nullable=False)
    criteria_name: Mapped[str] = mapped_column(Text, nullable=False)
    track: Mapped[str] = mapped_column(String(20), nullable=False)
    weight: Mapped[int] = mapped_column(Integer, nullable=False)  # max marks
    scoring_logic: Mapped[str] = mapped_column(Text, default="manual")

    config: Mapped[ScoringConfiguration | None] = relationship("ScoringConfiguration", back_populates="criteria")


class ApplicationScore(Base):
    __tablename__ = "application_scores"
    __table_args__ = (
        UniqueConstraint("eligibility_result_id", "criteria_id", name="uq_application_scores_result_criteria"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    eligibility_result_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("eligibility_results.id"), nullable=False,
    )
    criteria_id: Mapped[int] = mapped_column(Integer, ForeignKey("scoring_criteria.id"), nullable=False)
    config_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("scoring_configurations.id"), nullable=True)
    score: Mapped[float] = mapped_column(Float, nullable=False)
    reviewer_comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    eligibility_result: Mapped[EligibilityResult] = relationship("EligibilityResult", back_populates="scores")
