"""Evaluator lookup and assignment.

Assignment storage is not part of the data model yet, so every assignment
operation answers with a fixed failure. Only the evaluator lookup works.
"""
from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from portal.errors import ActionError, action, fail, ok
from portal.models import REVIEWER_ROLES, User, UserProfile

log = logging.getLogger(__name__)

NOT_AVAILABLE = "Evaluator assignment is not available yet"


@action("Failed to fetch evaluators")
def get_evaluators_by_role(session: Session, user: User | None, role: str | None = None) -> dict[str, Any]:
    if user is None or user.role != "admin":
        raise ActionError("Unauthorized")
    roles = (role,) if role else REVIEWER_ROLES
    if any(r not in REVIEWER_ROLES for r in roles):
        raise ActionError(f"Invalid evaluator role: {role}")
    evaluators = session.execute(
        select(User).join(User.profile).where(UserProfile.role.in_(roles)).order_by(User.email)
    ).scalars().all()
    return ok(data=[
        {"id": u.id, "email": u.email, "name": u.display_name, "role": u.role}
        for u in evaluators
    ])


def get_evaluator_workloads(session: Session, user: User | None) -> dict[str, Any]:
    return fail(NOT_AVAILABLE)


def assign_applications_to_evaluators(
    session: Session, user: User | None, evaluator_id: str, application_ids: list[int],
) -> dict[str, Any]:
    log.info("Assignment of %d applications to %s requested; not available",
             len(application_ids), evaluator_id)
    return fail(NOT_AVAILABLE)


def auto_assign_applications(session: Session, user: User | None) -> dict[str, Any]:
    return fail(NOT_AVAILABLE)


def remove_evaluator_assignments(
    session: Session, user: User | None, evaluator_id: str, application_ids: list[int],
) -> dict[str, Any]:
    return fail(NOT_AVAILABLE)


def get_evaluator_assignments(session: Session, user: User | None, evaluator_id: str) -> dict[str, Any]:
    return fail(NOT_AVAILABLE)
