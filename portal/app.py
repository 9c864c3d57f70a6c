from __future__ import annotations

import html
import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from sqlalchemy import select
from sqlalchemy.orm import Session

from portal import assignments, review, scoring, services
from portal.auth import (
    STAFF_ROLES,
    ActionDenied,
    RedirectRequired,
    authenticate,
    authorize,
    change_password,
    create_session,
    create_user,
    current_user,
    end_session,
    home_for,
    require_roles,
)
from portal.cache import page_cache
from portal.config import applications_open, get_settings
from portal.db import db_session, init_db
from portal.eligibility import check_eligibility
from portal.export import EXPORT_FORMATS, EXPORT_TYPES, export_data
from portal.models import REVIEWER_ROLES, TRACKS, Application, User
from portal.schemas import (
    ApplicationOut,
    ApplicationSubmit,
    AssignmentRequest,
    ExportRequest,
    LockRequest,
    LoginRequest,
    PasswordChange,
    ReviewSubmit,
    RoleUpdate,
    ScoringProgressRequest,
    SignupRequest,
    StatsOut,
    StatusUpdate,
    UserCreate,
)
from portal.screening import ScreeningInput, screen

log = logging.getLogger(__name__)

REVIEW_ROLES = (*REVIEWER_ROLES, "admin")
DECISION_ROLES = ("admin", "oversight")


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(
    title="BIRE Programme Portal",
    version="0.1.0",
    description=(
        "Application intake, screening, scoring and two-tier review for the BIRE "
        "Programme. Actions answer with {success, error} JSON; pages are role-gated."
    ),
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Auth", "description": "Sign up, sign in and sign out."},
        {"name": "Applications", "description": "Screening, submission and status changes."},
        {"name": "Scoring", "description": "Per-criterion scores and scoring configurations."},
        {"name": "Review", "description": "Two-tier blind review and locking."},
        {"name": "Users", "description": "Staff accounts and roles."},
        {"name": "Assignments", "description": "Evaluator lookup and assignment."},
        {"name": "Export", "description": "CSV, JSON and XLSX downloads."},
        {"name": "Pages", "description": "Role-gated HTML pages."},
    ],
)


@app.exception_handler(RedirectRequired)
async def redirect_required(request: Request, exc: RedirectRequired):
    return RedirectResponse(exc.location, status_code=303)


@app.exception_handler(ActionDenied)
async def action_denied(request: Request, exc: ActionDenied):
    return JSONResponse({"success": False, "error": exc.error}, status_code=exc.status_code)


# ---------------------------------------------------------------------------
# Dependencies & Helpers
# ---------------------------------------------------------------------------


def _get_or_404(session: Session, model, entity_id: int, label: str = "Entity"):
    obj = session.execute(select(model).where(model.id == entity_id)).scalars().first()
    if not obj:
        raise HTTPException(404, f"{label} not found")
    return obj


def _set_session_cookie(response: Response, token: str) -> None:
    settings = get_settings()
    response.set_cookie(
        settings.session_cookie_name, token,
        max_age=settings.session_ttl_hours * 3600,
        httponly=True, samesite="lax", secure=settings.secure_cookies,
    )


# ---------------------------------------------------------------------------
# Routes: Auth
# ---------------------------------------------------------------------------


@app.post("/api/auth/signup", tags=["Auth"], summary="Create an applicant account and sign in")
async def signup(body: SignupRequest, response: Response, session: Session = Depends(db_session)):
    try:
        user = create_user(
            session, email=body.email, password=body.password,
            first_name=body.first_name, last_name=body.last_name,
        )
    except ValueError as exc:
        return JSONResponse({"success": False, "error": str(exc)}, status_code=400)
    auth_session = create_session(session, user)
    session.commit()
    _set_session_cookie(response, auth_session.token)
    return {"success": True, "redirect": home_for(user)}


@app.post("/api/auth/login", tags=["Auth"], summary="Sign in with email and password")
async def login(body: LoginRequest, response: Response, session: Session = Depends(db_session)):
    user = authenticate(session, body.email, body.password)
    if user is None:
        log.info("Failed login for %s", body.email)
        return JSONResponse({"success": False, "error": "Invalid email or password"}, status_code=401)
    auth_session = create_session(session, user)
    session.commit()
    _set_session_cookie(response, auth_session.token)
    return {"success": True, "redirect": home_for(user)}


@app.post("/api/auth/logout", tags=["Auth"], summary="End the current session")
async def logout(request: Request, response: Response, session: Session = Depends(db_session)):
    name = get_settings().session_cookie_name
    token = request.cookies.get(name)
    if token:
        end_session(session, token)
        session.commit()
    response.delete_cookie(name)
    return {"success": True}


@app.post("/api/auth/password", tags=["Auth"], summary="Change the signed-in user's password")
async def update_password(
    body: PasswordChange, request: Request,
    session: Session = Depends(db_session), user: User | None = Depends(current_user),
):
    if user is None:
        raise ActionDenied(401)
    return change_password(
        session, user, body.current_password, body.new_password, body.confirm_password,
        keep_token=request.cookies.get(get_settings().session_cookie_name),
    )


@app.get("/api/auth/me", tags=["Auth"], summary="Current user, or 401")
async def me(user: User | None = Depends(current_user)):
    if user is None:
        raise ActionDenied(401)
    return services.user_row(user)


# ---------------------------------------------------------------------------
# Routes: Applications
# ---------------------------------------------------------------------------


@app.post("/api/screening", tags=["Applications"], summary="Run the eligibility screening questions")
async def run_screening(body: ScreeningInput):
    outcome = screen(body)
    return {
        "status": outcome.status,
        "eligible": outcome.eligible,
        "track": outcome.track,
        "observation_only": outcome.observation_only,
        "reasons": list(outcome.reasons),
        "form_path": outcome.form_path(),
        "applications_open": applications_open(),
    }


@app.post("/api/applications/{track}", tags=["Applications"], summary="Submit an application for a track")
async def submit_application(
    track: str, body: ApplicationSubmit,
    session: Session = Depends(db_session), user: User = Depends(authorize("applicant")),
):
    return services.submit_application(session, user, track, body)


@app.get("/api/my-application", tags=["Applications"], summary="The signed-in applicant's application")
async def my_application(
    session: Session = Depends(db_session), user: User = Depends(authorize("applicant")),
):
    application = services.get_user_application(session, user.id)
    if application is None:
        return {"success": True, "data": None}
    summary = services.application_summary(application)
    # applicants only see the outcome, never scores
    for key in ("total_score", "is_eligible", "is_locked"):
        summary.pop(key)
    return {"success": True, "data": summary}


@app.get("/api/applications", response_model=list[ApplicationOut],
         tags=["Applications"], summary="List applications with optional filters")
async def list_applications(
    status: str | None = Query(None, description="Comma-separated statuses"),
    track: str | None = Query(None, description="Comma-separated tracks"),
    search: str | None = Query(None, description="Business or applicant name / email"),
    observation_only: bool | None = Query(None, description="Only (or no) observation-only applicants"),
    session: Session = Depends(db_session), user: User = Depends(authorize(*STAFF_ROLES)),
):
    return services.list_applications(session, status=status, track=track, search=search,
                                      observation_only=observation_only)


@app.get("/api/applications/{application_id}", tags=["Applications"], summary="Full application detail")
async def get_application(
    application_id: int,
    session: Session = Depends(db_session), user: User = Depends(authorize(*STAFF_ROLES)),
):
    detail = services.application_detail(_get_or_404(session, Application, application_id, "Application"))
    detail["criteria_total"] = scoring.criteria_total(session, application_id)
    return detail


@app.put("/api/applications/{application_id}/status", tags=["Applications"], summary="Change status")
async def update_status(
    application_id: int, body: StatusUpdate,
    session: Session = Depends(db_session), user: User = Depends(authorize(*DECISION_ROLES)),
):
    return services.update_application_status(session, user, application_id, body.status)


@app.post("/api/applications/{application_id}/eligibility", tags=["Applications"],
          summary="Re-run the mandatory eligibility criteria")
async def run_eligibility(
    application_id: int,
    session: Session = Depends(db_session), user: User = Depends(authorize("admin")),
):
    return check_eligibility(session, application_id)


@app.get("/api/stats", response_model=StatsOut, tags=["Applications"], summary="Aggregate statistics")
async def get_stats(session: Session = Depends(db_session), user: User = Depends(authorize(*STAFF_ROLES))):
    return services.compute_stats(session)


# ---------------------------------------------------------------------------
# Routes: Scoring
# ---------------------------------------------------------------------------


@app.post("/api/applications/{application_id}/scores", tags=["Scoring"], summary="Save scoring progress")
async def save_scores(
    application_id: int, body: ScoringProgressRequest,
    session: Session = Depends(db_session), user: User = Depends(authorize(*REVIEW_ROLES)),
):
    return scoring.save_scoring_progress(session, user, application_id, body.scores)


@app.get("/api/applications/{application_id}/scores", tags=["Scoring"], summary="Saved per-criterion scores")
async def detailed_scores(
    application_id: int,
    session: Session = Depends(db_session), user: User = Depends(authorize(*STAFF_ROLES)),
):
    return scoring.get_detailed_scores(session, application_id)


@app.get("/api/scoring/configurations", tags=["Scoring"], summary="List scoring configurations")
async def scoring_configurations(
    session: Session = Depends(db_session), user: User = Depends(authorize(*STAFF_ROLES)),
):
    return {"success": True, "data": scoring.list_configurations(session)}


@app.get("/api/scoring/criteria/{track}", tags=["Scoring"], summary="Active criteria for a track")
async def scoring_criteria(
    track: str,
    session: Session = Depends(db_session), user: User = Depends(authorize(*STAFF_ROLES)),
):
    if track not in TRACKS:
        raise HTTPException(404, "Track not found")
    return {"success": True, "data": [
        {"id": c.id, "category": c.category, "criteria_name": c.criteria_name, "weight": c.weight}
        for c in scoring.track_criteria(session, track)
    ]}


@app.post("/api/scoring/configurations/default", tags=["Scoring"],
          summary="Create (or with force, recreate) the default configuration")
async def init_default_configuration(
    force: bool = Query(False),
    session: Session = Depends(db_session), user: User = Depends(authorize("admin")),
):
    return scoring.initialize_default_configuration(session, user, force=force)


@app.post("/api/scoring/configurations/{config_id}/activate", tags=["Scoring"],
          summary="Make a configuration the active one")
async def activate_configuration(
    config_id: int,
    session: Session = Depends(db_session), user: User = Depends(authorize("admin")),
):
    return scoring.activate_configuration(session, user, config_id)


# ---------------------------------------------------------------------------
# Routes: Review
# ---------------------------------------------------------------------------


@app.post("/api/applications/{application_id}/review", tags=["Review"], summary="Submit a 0-100 review")
async def submit_review(
    application_id: int, body: ReviewSubmit,
    session: Session = Depends(db_session), user: User = Depends(authorize(*REVIEW_ROLES)),
):
    return review.submit_review(session, user, application_id, body.score, body.notes)


@app.get("/api/applications/{application_id}/review-status", tags=["Review"],
         summary="Blind review status for the current user")
async def review_status(
    application_id: int,
    session: Session = Depends(db_session), user: User = Depends(authorize(*STAFF_ROLES)),
):
    return review.get_review_status(session, user, application_id)


@app.post("/api/applications/{application_id}/lock", tags=["Review"], summary="Lock scoring and review")
async def lock_application(
    application_id: int, body: LockRequest | None = None,
    session: Session = Depends(db_session), user: User = Depends(authorize("admin")),
):
    return review.lock_application(session, user, application_id, body.reason if body else None)


@app.post("/api/applications/{application_id}/unlock", tags=["Review"], summary="Unlock scoring and review")
async def unlock_application(
    application_id: int, body: LockRequest | None = None,
    session: Session = Depends(db_session), user: User = Depends(authorize("admin")),
):
    return review.unlock_application(session, user, application_id, body.reason if body else None)


# ---------------------------------------------------------------------------
# Routes: Users
# ---------------------------------------------------------------------------


@app.get("/api/users", tags=["Users"], summary="Search users by email or name")
async def search_users(
    q: str | None = Query(None), role: str | None = Query(None),
    session: Session = Depends(db_session), user: User = Depends(authorize("admin")),
):
    return {"success": True, "data": services.search_users(session, q, role)}


@app.post("/api/users", tags=["Users"], summary="Create a staff account")
async def create_staff_user(
    body: UserCreate,
    session: Session = Depends(db_session), user: User = Depends(authorize("admin")),
):
    return services.create_staff_user(
        session, user, email=body.email, password=body.password,
        first_name=body.first_name, last_name=body.last_name, role=body.role,
    )


@app.put("/api/users/{user_id}/role", tags=["Users"], summary="Change a user's role")
async def update_user_role(
    user_id: str, body: RoleUpdate,
    session: Session = Depends(db_session), user: User = Depends(authorize("admin")),
):
    return services.update_user_role(session, user, user_id, body.role)


# ---------------------------------------------------------------------------
# Routes: Assignments
# ---------------------------------------------------------------------------


@app.get("/api/evaluators", tags=["Assignments"], summary="Evaluators, optionally by role")
async def evaluators(
    role: str | None = Query(None),
    session: Session = Depends(db_session), user: User = Depends(authorize("admin")),
):
    return assignments.get_evaluators_by_role(session, user, role)


@app.get("/api/evaluators/workloads", tags=["Assignments"], summary="Assigned application counts")
async def evaluator_workloads(
    session: Session = Depends(db_session), user: User = Depends(authorize("admin")),
):
    return assignments.get_evaluator_workloads(session, user)


@app.get("/api/evaluators/{evaluator_id}/assignments", tags=["Assignments"],
         summary="Applications assigned to an evaluator")
async def evaluator_assignments(
    evaluator_id: str,
    session: Session = Depends(db_session), user: User = Depends(authorize("admin")),
):
    return assignments.get_evaluator_assignments(session, user, evaluator_id)


@app.post("/api/assignments", tags=["Assignments"], summary="Assign applications to an evaluator")
async def assign(
    body: AssignmentRequest,
    session: Session = Depends(db_session), user: User = Depends(authorize("admin")),
):
    return assignments.assign_applications_to_evaluators(
        session, user, body.evaluator_id, body.application_ids,
    )


@app.post("/api/assignments/auto", tags=["Assignments"], summary="Distribute unassigned applications")
async def auto_assign(session: Session = Depends(db_session), user: User = Depends(authorize("admin"))):
    return assignments.auto_assign_applications(session, user)


@app.post("/api/assignments/remove", tags=["Assignments"], summary="Remove evaluator assignments")
async def remove_assignments(
    body: AssignmentRequest,
    session: Session = Depends(db_session), user: User = Depends(authorize("admin")),
):
    return assignments.remove_evaluator_assignments(
        session, user, body.evaluator_id, body.application_ids,
    )


# ---------------------------------------------------------------------------
# Routes: Export
# ---------------------------------------------------------------------------


@app.post("/api/export", tags=["Export"], summary="Download applications, applicants or eligibility data")
async def export(
    body: ExportRequest,
    session: Session = Depends(db_session), user: User = Depends(authorize(*DECISION_ROLES)),
):
    if body.type not in EXPORT_TYPES:
        raise HTTPException(400, "Invalid export type")
    if body.format not in EXPORT_FORMATS:
        raise HTTPException(400, "Invalid export format")
    result = export_data(session, body.type, body.format, body.filters)
    if not result["success"]:
        return JSONResponse({"error": result["error"]}, status_code=500)
    return Response(
        content=result["data"],
        media_type=result["content_type"],
        headers={"Content-Disposition": f'attachment; filename="{result["file_name"]}"'},
    )


# ---------------------------------------------------------------------------
# Routes: Pages
# ---------------------------------------------------------------------------


def _page(title: str, body: str, user: User | None = None) -> str:
    nav = ""
    if user is not None:
        nav = (f'<p class="who">{html.escape(user.display_name)} ({html.escape(user.role)}) '
               '<form method="post" action="/api/auth/logout" style="display:inline">'
               '<button>Sign out</button></form></p>')
    return (
        "<!doctype html><html><head><meta charset=\"utf-8\">"
        f"<title>{html.escape(title)} - {html.escape(get_settings().app_name)}</title></head>"
        f"<body><h1>{html.escape(title)}</h1>{nav}{body}</body></html>"
    )


def _applications_table(rows: list[dict[str, Any]], link: bool = False) -> str:
    if not rows:
        return "<p>No applications yet.</p>"
    cells = []
    for r in rows:
        name = html.escape(r["business_name"])
        if link:
            name = f'<a href="/admin/applications/{r["id"]}">{name}</a>'
        cells.append(
            f"<tr><td>{r['id']}</td><td>{name}</td><td>{html.escape(r['track'] or '')}</td>"
            f"<td>{html.escape(r['status'])}</td><td>{html.escape(r['county'])}</td></tr>"
        )
    return ("<table><tr><th>ID</th><th>Business</th><th>Track</th><th>Status</th><th>County</th></tr>"
            + "".join(cells) + "</table>")


def _stats_list(stats: dict[str, Any]) -> str:
    items = [f"<li>Total: {stats['total']}</li>"]
    items += [f"<li>{html.escape(k)}: {v}</li>" for k, v in sorted(stats["by_status"].items())]
    items.append(f"<li>Observation only: {stats['observation_only']}</li>")
    return "<ul>" + "".join(items) + "</ul>"


@app.get("/", response_class=HTMLResponse, tags=["Pages"])
async def root(user: User | None = Depends(current_user)):
    if user is not None:
        return RedirectResponse(home_for(user), status_code=303)
    return HTMLResponse(_page(
        "BIRE Programme",
        "<p>Apply to the Foundation or Acceleration track.</p>"
        '<p><a href="/login">Sign in</a></p>',
    ))


@app.get("/login", response_class=HTMLResponse, tags=["Pages"])
async def login_page(user: User | None = Depends(current_user)):
    if user is not None:
        return RedirectResponse(home_for(user), status_code=303)
    return HTMLResponse(_page(
        "Sign in",
        '<form id="login"><input name="email" type="email" placeholder="Email">'
        '<input name="password" type="password" placeholder="Password">'
        "<button>Sign in</button></form>",
    ))


@app.get("/apply", response_class=HTMLResponse, tags=["Pages"])
async def apply_page(
    user: User = Depends(require_roles("applicant")), session: Session = Depends(db_session),
):
    application = services.get_user_application(session, user.id)
    if application is not None:
        body = (f"<p>Application #{application.id} for "
                f"<strong>{html.escape(application.business.name)}</strong> is "
                f"<strong>{html.escape(application.status.replace('_', ' '))}</strong>.</p>")
    elif applications_open():
        body = "<p>Answer the screening questions to find your track.</p>"
    else:
        body = ("<p>Applications are closed. The next period opens in "
                f"{html.escape(get_settings().next_application_period)}.</p>")
    return HTMLResponse(_page("Your application", body, user))


@app.get("/reviewer", response_class=HTMLResponse, tags=["Pages"])
async def reviewer_page(
    user: User = Depends(require_roles(*REVIEW_ROLES)), session: Session = Depends(db_session),
):
    rows = services.list_applications(session, status="submitted,under_review")
    return HTMLResponse(_page("Applications to review", _applications_table(rows), user))


@app.get("/oversight", response_class=HTMLResponse, tags=["Pages"])
async def oversight_page(
    user: User = Depends(require_roles(*DECISION_ROLES)), session: Session = Depends(db_session),
):
    body = _stats_list(services.compute_stats(session)) + _applications_table(
        services.list_applications(session)
    )
    return HTMLResponse(_page("Programme oversight", body, user))


@app.get("/admin", response_class=HTMLResponse, tags=["Pages"])
async def admin_page(
    request: Request,
    user: User = Depends(require_roles("admin")), session: Session = Depends(db_session),
):
    path = request.url.path
    body = page_cache.get(path)
    if body is None:
        body = _stats_list(services.compute_stats(session)) + _applications_table(
            services.list_applications(session), link=True,
        )
        page_cache.set(path, body)
    return HTMLResponse(_page("Administration", body, user))


@app.get("/admin/applications/{application_id}", response_class=HTMLResponse, tags=["Pages"])
async def admin_application_page(
    application_id: int, request: Request,
    user: User = Depends(require_roles("admin")), session: Session = Depends(db_session),
):
    path = request.url.path
    body = page_cache.get(path)
    if body is None:
        detail = services.application_detail(_get_or_404(session, Application, application_id, "Application"))
        fields = [
            ("Business", detail["business_name"]),
            ("Applicant", f"{detail['applicant_name']} <{detail['applicant_email']}>"),
            ("Track", detail["track"] or ""),
            ("Status", detail["status"]),
            ("Observation only", "Yes" if detail["is_observation_only"] else "No"),
            ("Total score", "" if detail["total_score"] is None else f"{detail['total_score']:.1f}"),
            ("Criteria points", f"{scoring.criteria_total(session, application_id):g}"),
            ("Locked", "Yes" if detail["is_locked"] else "No"),
        ]
        body = "<dl>" + "".join(
            f"<dt>{html.escape(k)}</dt><dd>{html.escape(str(v))}</dd>" for k, v in fields
        ) + "</dl>"
        page_cache.set(path, body)
    return HTMLResponse(_page(f"Application #{application_id}", body, user))


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


def main():
    import uvicorn
    logging.basicConfig(
        level=get_settings().log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run("portal.app:app", host="127.0.0.1", port=8000, reload=True)


if __name__ == "__main__":
    main()
