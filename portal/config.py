"""Portal settings loaded from the environment (and an optional ``.env``)."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

EAT = timezone(timedelta(hours=3))


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = Field(default="BIRE Programme Portal", alias="APP_NAME")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO", alias="LOG_LEVEL")

    database_url: str | None = Field(default=None, alias="DATABASE_URL")

    # Auth
    session_cookie_name: str = Field(default="portal_session", alias="SESSION_COOKIE_NAME")
    session_ttl_hours: int = Field(default=24 * 7, alias="SESSION_TTL_HOURS")
    secure_cookies: bool = Field(default=False, alias="SECURE_COOKIES")

    # Email (Resend HTTP API)
    resend_api_key: str | None = Field(default=None, alias="RESEND_API_KEY")
    resend_from_email: str = Field(default="BIRE <verify@bireprogramme.org>", alias="RESEND_FROM_EMAIL")
    resend_api_url: str = Field(default="https://api.resend.com/emails", alias="RESEND_API_URL")

    # Programme
    application_deadline: datetime = Field(
        default=datetime(2026, 1, 30, 23, 59, 59, tzinfo=EAT), alias="APPLICATION_DEADLINE",
    )
    next_application_period: str = Field(default="2027", alias="NEXT_APPLICATION_PERIOD")
    passing_threshold: float = Field(default=70.0, alias="PASSING_THRESHOLD")


@lru_cache
def get_settings() -> Settings:
    return Settings()


def applications_open(now: datetime | None = None) -> bool:
    deadline = get_settings().application_deadline
    if deadline.tzinfo is None:
        deadline = deadline.replace(tzinfo=EAT)
    now = now or datetime.now(timezone.utc)
    return now < deadline
