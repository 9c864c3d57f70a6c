"""Bulk data export to CSV, JSON and XLSX.

Each export type builds flat rows keyed by human-readable headers, then one
of the writers serializes them. ``export_data`` returns the file bytes plus
the name and MIME type the HTTP layer needs for the download.
"""
from __future__ import annotations

import csv
import io
import json
import logging
from datetime import UTC, date, datetime
from typing import Any, Callable

import openpyxl
from openpyxl.styles import Alignment, Font, PatternFill
from sqlalchemy import select
from sqlalchemy.orm import Session

from portal.errors import ActionError, action, ok
from portal.models import Applicant, Application, EligibilityResult, User
from portal.schemas import ExportFilters

log = logging.getLogger(__name__)

EXPORT_TYPES = ("applications", "applicants", "eligibility")
EXPORT_FORMATS = ("csv", "json", "xlsx")

CONTENT_TYPES = {
    "csv": "text/csv",
    "json": "application/json",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}

NO_DATA = "No data found matching the specified filters"


def format_export_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d %H:%M:%S")
    if isinstance(value, date):
        return value.strftime("%Y-%m-%d")
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value)
    if isinstance(value, str):
        return value.strip()
    return str(value)


def _label(value: str | None) -> str:
    return (value or "").replace("_", " ")


def _reviewer_name(session: Session, user_id: str | None) -> str:
    if not user_id:
        return ""
    user = session.get(User, user_id)
    return user.display_name if user else user_id


# ---------------------------------------------------------------------------
# Filtering
# ---------------------------------------------------------------------------


def _as_utc(value: datetime) -> datetime:
    # submitted_at is stored as naive UTC
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def _filtered_applications(session: Session, filters: ExportFilters) -> list[Application]:
    stmt = select(Application)
    if filters.status:
        stmt = stmt.where(Application.status.in_(filters.status))
    if filters.track:
        stmt = stmt.where(Application.track.in_(filters.track))
    if filters.submitted_after:
        stmt = stmt.where(Application.submitted_at >= _as_utc(filters.submitted_after))
    if filters.submitted_before:
        stmt = stmt.where(Application.submitted_at <= _as_utc(filters.submitted_before))
    stmt = stmt.order_by(Application.created_at.desc(), Application.id.desc())
    applications = session.execute(stmt).scalars().all()

    def keep(app: Application) -> bool:
        business = app.business
        if filters.country and business.country not in filters.country:
            return False
        if filters.sector and business.sector not in filters.sector:
            return False
        if filters.is_eligible is not None:
            result = app.eligibility
            if result is None or result.is_eligible != filters.is_eligible:
                return False
        return True

    return [a for a in applications if keep(a)]


# ---------------------------------------------------------------------------
# Row builders
# ---------------------------------------------------------------------------


def _application_rows(session: Session, filters: ExportFilters) -> list[dict[str, str]]:
    rows = []
    for app in _filtered_applications(session, filters):
        business = app.business
        applicant = business.applicant
        result = app.eligibility
        rows.append({
            "Application ID": str(app.id),
            "Track": app.track.title() if app.track else "N/A",
            "Status": _label(app.status).upper(),
            "Observation Only": format_export_value(app.is_observation_only),
            "Submitted At": format_export_value(app.submitted_at),
            "Created At": format_export_value(app.created_at),
            "Referral Source": format_export_value(app.referral_source),
            "First Name": applicant.first_name,
            "Last Name": applicant.last_name,
            "Email": applicant.email,
            "Phone": applicant.phone_number,
            "Gender": applicant.gender,
            "ID/Passport": applicant.id_passport_number,
            "Business Name": business.name,
            "Business Years Operational": format_export_value(business.years_operational),
            "Business Country": (business.country or "N/A").upper(),
            "Business County": _label(business.county).upper() or "N/A",
            "Business City": business.city,
            "Is Registered": format_export_value(business.is_registered),
            "Registration Type": _label(business.registration_type),
            "Sector": _label(business.sector),
            "Business Description": business.description,
            "Problem Solved": business.problem_solved,
            "Revenue Last Year": format_export_value(business.revenue_last_year),
            "Employees": format_export_value(business.employees),
            "Is Eligible": format_export_value(result.is_eligible if result else None),
            "Total Score": format_export_value(result.total_score if result else None),
            "Reviewer 1": _reviewer_name(session, result.reviewer1_id) if result else "",
            "Reviewer 1 Score": format_export_value(result.reviewer1_score if result else None),
            "Reviewer 1 Notes": format_export_value(result.reviewer1_notes if result else None),
            "Reviewer 1 At": format_export_value(result.reviewer1_at if result else None),
            "Reviewer 2": _reviewer_name(session, result.reviewer2_id) if result else "",
            "Reviewer 2 Score": format_export_value(result.reviewer2_score if result else None),
            "Reviewer 2 Notes": format_export_value(result.reviewer2_notes if result else None),
            "Reviewer 2 At": format_export_value(result.reviewer2_at if result else None),
            "Is Locked": format_export_value(result.is_locked if result else None),
            "Lock Reason": format_export_value(result.lock_reason if result else None),
        })
    return rows


def _applicant_rows(session: Session, filters: ExportFilters) -> list[dict[str, str]]:
    applicants = session.execute(
        select(Applicant).order_by(Applicant.created_at.desc(), Applicant.id.desc())
    ).scalars().all()
    rows = []
    for applicant in applicants:
        businesses = applicant.businesses
        if filters.country and not any(b.country in filters.country for b in businesses):
            continue
        if filters.sector and not any(b.sector in filters.sector for b in businesses):
            continue
        rows.append({
            "ID": str(applicant.id),
            "User ID": applicant.user_id,
            "First Name": applicant.first_name,
            "Last Name": applicant.last_name,
            "Email": applicant.email,
            "Phone": applicant.phone_number,
            "Gender": applicant.gender,
            "ID/Passport": applicant.id_passport_number,
            "Business Names": format_export_value([b.name for b in businesses if b.name]),
            "Business Counties": format_export_value([_label(b.county).upper() for b in businesses if b.county]),
            "Business Sectors": format_export_value([_label(b.sector) for b in businesses if b.sector]),
            "Created At": format_export_value(applicant.created_at),
        })
    return rows


def _eligibility_rows(session: Session, filters: ExportFilters) -> list[dict[str, str]]:
    results = session.execute(
        select(EligibilityResult).order_by(EligibilityResult.created_at.desc(), EligibilityResult.id.desc())
    ).scalars().all()
    allowed = {a.id for a in _filtered_applications(session, filters)}
    rows = []
    for result in results:
        if result.application_id not in allowed:
            continue
        app = result.application
        rows.append({
            "Eligibility ID": str(result.id),
            "Application ID": str(app.id),
            "Business Name": app.business.name,
            "Track": app.track.title() if app.track else "N/A",
            "Status": _label(app.status).upper(),
            "Is Eligible": format_export_value(result.is_eligible),
            "Age Eligible": format_export_value(result.age_eligible),
            "Registration Eligible": format_export_value(result.registration_eligible),
            "Revenue Eligible": format_export_value(result.revenue_eligible),
            "Business Plan Eligible": format_export_value(result.business_plan_eligible),
            "Impact Eligible": format_export_value(result.impact_eligible),
            "Total Score": format_export_value(result.total_score),
            "Criteria Scored": str(len(result.scores)),
            "Reviewer 1 Score": format_export_value(result.reviewer1_score),
            "Reviewer 2 Score": format_export_value(result.reviewer2_score),
            "Is Locked": format_export_value(result.is_locked),
            "Locked At": format_export_value(result.locked_at),
            "Created At": format_export_value(result.created_at),
        })
    return rows


ROW_BUILDERS: dict[str, Callable[[Session, ExportFilters], list[dict[str, str]]]] = {
    "applications": _application_rows,
    "applicants": _applicant_rows,
    "eligibility": _eligibility_rows,
}


# ---------------------------------------------------------------------------
# Writers
# ---------------------------------------------------------------------------


def to_csv(rows: list[dict[str, str]]) -> bytes:
    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=list(rows[0]))
    writer.writeheader()
    writer.writerows(rows)
    return buf.getvalue().encode("utf-8")


def to_json(rows: list[dict[str, str]]) -> bytes:
    return json.dumps(rows, indent=2, ensure_ascii=False).encode("utf-8")


def to_xlsx(rows: list[dict[str, str]]) -> bytes:
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = "Export"
    headers = list(rows[0])
    ws.append(headers)
    for row in rows:
        ws.append([row.get(h, "") for h in headers])

    ws.freeze_panes = "A2"
    header_fill = PatternFill(fill_type="solid", fgColor="1F4E78")
    header_font = Font(color="FFFFFF", bold=True)
    for cell in ws[1]:
        cell.fill = header_fill
        cell.font = header_font
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)
    for col_cells in ws.columns:
        width = max(len(str(c.value or "")) for c in col_cells)
        ws.column_dimensions[col_cells[0].column_letter].width = min(max(width + 2, 10), 60)

    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


WRITERS: dict[str, Callable[[list[dict[str, str]]], bytes]] = {
    "csv": to_csv,
    "json": to_json,
    "xlsx": to_xlsx,
}


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


@action("Failed to export data")
def export_data(
    session: Session, export_type: str, fmt: str, filters: ExportFilters | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    if export_type not in ROW_BUILDERS:
        raise ActionError(f"Invalid export type: {export_type}")
    if fmt not in WRITERS:
        raise ActionError(f"Invalid export format: {fmt}")
    rows = ROW_BUILDERS[export_type](session, filters or ExportFilters())
    if not rows:
        raise ActionError(NO_DATA)

    stamp = (now or datetime.now()).strftime("%Y-%m-%d_%H-%M-%S")
    data = WRITERS[fmt](rows)
    log.info("Exported %d %s rows as %s", len(rows), export_type, fmt)
    return ok(
        data=data,
        file_name=f"BIRE_{export_type}_export_{stamp}.{fmt}",
        content_type=CONTENT_TYPES[fmt],
        record_count=len(rows),
    )
