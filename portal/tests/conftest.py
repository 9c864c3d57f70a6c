"""Shared fixtures: in-memory SQLite database, users, applications, TestClient."""
from __future__ import annotations

import json
from datetime import datetime
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from portal.auth import create_session, create_user
from portal.cache import page_cache
from portal.config import get_settings
from portal.db import seed_scoring_configuration
from portal.models import Applicant, Application, Base, Business, User

PASSWORD = "correct-horse-battery"


@pytest.fixture()
def test_db():
    """Create a temporary SQLite in-memory database for testing.

    Uses StaticPool so all connections share the same in-memory database.
    """
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    TestSession = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    seed = TestSession()
    seed_scoring_configuration(seed)
    seed.close()
    return engine, TestSession


@pytest.fixture()
def session(test_db):
    _, TestSession = test_db
    sess = TestSession()
    try:
        yield sess
    finally:
        sess.close()


@pytest.fixture(autouse=True)
def _fresh_state(monkeypatch):
    monkeypatch.delenv("RESEND_API_KEY", raising=False)
    get_settings.cache_clear()
    page_cache.clear()
    yield
    get_settings.cache_clear()
    page_cache.clear()


@pytest.fixture()
def make_user(session: Session):
    counter = iter(range(1, 1000))

    def _make(role: str = "applicant", email: str | None = None, first_name: str = "Test") -> User:
        n = next(counter)
        user = create_user(
            session, email=email or f"{role}{n}@example.org", password=PASSWORD,
            first_name=first_name, last_name=f"{role.title()} {n}", role=role,
        )
        session.commit()
        return user

    return _make


@pytest.fixture()
def make_application(session: Session):
    def _make(user: User, track: str = "foundation", status: str = "submitted", **business) -> Application:
        applicant = Applicant(
            user_id=user.id, first_name="Amina", last_name="Otieno",
            email=user.email, phone_number="+254700000000", gender="female",
        )
        fields = {
            "name": "Jua Kali Solar", "is_registered": True, "sector": "energy",
            "county": "nairobi", "country": "kenya",
            "description": "Affordable solar kits for informal workshops across Nairobi county.",
            "problem_solved": "Unreliable grid power halts production in small metal workshops.",
            "years_operational": 3, "employees": 12, "revenue_last_year": 1_200_000,
            "has_financial_records": True, "track_answers_json": json.dumps({}),
        }
        fields.update(business)
        biz = Business(**fields)
        applicant.businesses.append(biz)
        application = Application(
            user_id=user.id, business=biz, track=track, status=status,
            submitted_at=datetime(2026, 1, 15, 9, 30, 0),
        )
        session.add_all([applicant, application])
        session.commit()
        return application

    return _make


@pytest.fixture()
def client(test_db):
    """FastAPI TestClient using the in-memory database."""
    engine, TestSession = test_db
    from portal.app import app, db_session

    def override_db_session():
        session = TestSession()
        try:
            yield session
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    app.dependency_overrides[db_session] = override_db_session
    with patch("portal.app.init_db"), TestClient(app, raise_server_exceptions=True) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture()
def login(client, session: Session):
    """Attach a fresh session cookie for *user* to the test client."""

    def _login(user: User) -> TestClient:
        auth_session = create_session(session, user)
        session.commit()
        client.cookies.set(get_settings().session_cookie_name, auth_session.token)
        return client

    return _login
