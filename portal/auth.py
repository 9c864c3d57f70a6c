"""Authentication, DB-backed sessions and role guards.

Pages and JSON actions share the same role allow-lists but fail differently:

- ``require_roles(...)`` (pages) redirects anonymous users to ``/login`` and
  users with another role to their own home page, before the route body
  loads any data.
- ``authorize(...)`` (actions) answers ``{"success": false, "error":
  "Unauthorized"}`` with 401/403.
"""
from __future__ import annotations

import logging
import re
import secrets
from datetime import UTC, datetime, timedelta
from typing import Callable

import bcrypt
from fastapi import Depends, Request
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from portal.config import get_settings
from portal.db import db_session
from portal.errors import ActionError, action, ok
from portal.models import REVIEWER_ROLES, ROLES, AuthSession, User, UserProfile

log = logging.getLogger(__name__)

STAFF_ROLES = (*REVIEWER_ROLES, "oversight", "admin")

ROLE_HOME = {
    "applicant": "/apply",
    "reviewer_1": "/reviewer",
    "reviewer_2": "/reviewer",
    "technical_reviewer": "/reviewer",
    "oversight": "/oversight",
    "admin": "/admin",
}


class RedirectRequired(Exception):
    """Raised by page guards; the app turns it into a 303 redirect."""

    def __init__(self, location: str):
        super().__init__(location)
        self.location = location


class ActionDenied(Exception):
    """Raised by action guards; the app turns it into a JSON failure."""

    def __init__(self, status_code: int = 403, error: str = "Unauthorized"):
        super().__init__(error)
        self.status_code = status_code
        self.error = error


def _now() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


# ---------------------------------------------------------------------------
# Passwords
# ---------------------------------------------------------------------------


def hash_password(password: str) -> str:
    # bcrypt only looks at the first 72 bytes
    return bcrypt.hashpw(password.encode("utf-8")[:72], bcrypt.gensalt()).decode("ascii")


def verify_password(password: str, hashed: str) -> bool:
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8")[:72], hashed.encode("ascii"))
    except ValueError:
        log.warning("Malformed password hash")
        return False


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


def find_user_by_email(session: Session, email: str) -> User | None:
    return session.execute(
        select(User).where(User.email == email.strip().lower())
    ).scalars().first()


def create_user(
    session: Session, *, email: str, password: str, first_name: str, last_name: str,
    role: str = "applicant",
) -> User:
    """Create a user with profile (caller must commit). Raises ValueError on conflicts."""
    if role not in ROLES:
        raise ValueError(f"Invalid role: {role}")
    email = email.strip().lower()
    if find_user_by_email(session, email) is not None:
        raise ValueError("An account with this email already exists")
    user = User(
        email=email,
        name=f"{first_name} {last_name}".strip(),
        password_hash=hash_password(password),
    )
    user.profile = UserProfile(first_name=first_name, last_name=last_name, email=email, role=role)
    session.add(user)
    session.flush()
    return user


def authenticate(session: Session, email: str, password: str) -> User | None:
    user = find_user_by_email(session, email)
    if user is None or not verify_password(password, user.password_hash):
        return None
    return user


# upper, lower, digit and symbol, at least 8 characters
STRONG_PASSWORD_RE = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[@$!%*?&])[A-Za-z\d@$!%*?&]{8,}$")


@action("Failed to update password")
def change_password(
    session: Session, user: User | None, current_password: str, new_password: str, confirm_password: str,
    keep_token: str | None = None,
) -> dict:
    """Self-service password change for any signed-in user.

    Every other session of the user is ended; *keep_token* (the caller's own
    session) stays valid.
    """
    if user is None:
        raise ActionError("Unauthorized")
    if new_password != confirm_password:
        raise ActionError("New passwords do not match")
    if not STRONG_PASSWORD_RE.match(new_password):
        raise ActionError(
            "Password must be at least 8 characters long and include an uppercase letter, "
            "a lowercase letter, a number and a special character (@$!%*?&)"
        )
    if not verify_password(current_password, user.password_hash):
        raise ActionError("Incorrect current password")
    user.password_hash = hash_password(new_password)
    stale = delete(AuthSession).where(AuthSession.user_id == user.id)
    if keep_token:
        stale = stale.where(AuthSession.token != keep_token)
    session.execute(stale)
    session.commit()
    log.info("Password changed for %s", user.email)
    return ok("Password updated successfully")


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


def create_session(session: Session, user: User) -> AuthSession:
    ttl = timedelta(hours=get_settings().session_ttl_hours)
    auth_session = AuthSession(
        token=secrets.token_urlsafe(32), user_id=user.id, expires_at=_now() + ttl,
    )
    user.last_active = _now()
    session.add(auth_session)
    session.flush()
    return auth_session


def end_session(session: Session, token: str) -> None:
    session.execute(delete(AuthSession).where(AuthSession.token == token))


def user_for_token(session: Session, token: str | None) -> User | None:
    if not token:
        return None
    auth_session = session.get(AuthSession, token)
    if auth_session is None:
        return None
    if auth_session.expires_at <= _now():
        session.delete(auth_session)
        session.commit()
        return None
    return auth_session.user


def home_for(user: User) -> str:
    return ROLE_HOME.get(user.role, "/")


# ---------------------------------------------------------------------------
# FastAPI dependencies
# ---------------------------------------------------------------------------


def current_user(request: Request, session: Session = Depends(db_session)) -> User | None:
    token = request.cookies.get(get_settings().session_cookie_name)
    return user_for_token(session, token)


def require_roles(*roles: str) -> Callable[..., User]:
    """Page guard: redirect unless the session user holds one of *roles*."""
    allowed = set(roles)

    def guard(user: User | None = Depends(current_user)) -> User:
        if user is None:
            raise RedirectRequired("/login")
        if user.role not in allowed:
            log.info("Redirecting %s (%s) away from a %s page", user.email, user.role, "/".join(roles))
            raise RedirectRequired(home_for(user))
        return user

    return guard


def authorize(*roles: str) -> Callable[..., User]:
    """Action guard: 401 when anonymous, 403 when the role is not allowed."""
    allowed = set(roles)

    def guard(user: User | None = Depends(current_user)) -> User:
        if user is None:
            raise ActionDenied(401)
        if user.role not in allowed:
            raise ActionDenied(403)
        return user

    return guard
