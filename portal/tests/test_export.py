from __future__ import annotations

import csv
import io
import json
from datetime import date, datetime, timedelta, timezone
from unittest.mock import Mock, patch

import openpyxl
import pytest

from portal.eligibility import record_eligibility
from portal.export import NO_DATA, export_data, format_export_value
from portal.schemas import ExportFilters


class TestFormatExportValue:
    @pytest.mark.parametrize("value,expected", [
        (None, ""),
        (True, "Yes"),
        (False, "No"),
        (datetime(2026, 1, 5, 14, 3, 9), "2026-01-05 14:03:09"),
        (date(2026, 1, 5), "2026-01-05"),
        (["a", "b"], "a, b"),
        ("  ", ""),
        (12.5, "12.5"),
        (0, "0"),
    ])
    def test_values(self, value, expected):
        assert format_export_value(value) == expected


@pytest.fixture()
def two_applications(session, make_user, make_application):
    first = make_application(make_user(), track="foundation", sector="agriculture")
    second = make_application(make_user(), track="acceleration", status="approved",
                              name="Maji Safi", revenue_last_year=4_500_000)
    record_eligibility(session, first)
    session.commit()
    return first, second


class TestExportData:
    def test_csv(self, session, two_applications):
        result = export_data(session, "applications", "csv", now=datetime(2026, 2, 1, 8, 0, 0))

        assert result["success"] is True
        assert result["file_name"] == "BIRE_applications_export_2026-02-01_08-00-00.csv"
        assert result["content_type"] == "text/csv"
        assert result["record_count"] == 2
        rows = list(csv.DictReader(io.StringIO(result["data"].decode("utf-8"))))
        assert {r["Business Name"] for r in rows} == {"Jua Kali Solar", "Maji Safi"}
        assert {r["Is Registered"] for r in rows} == {"Yes"}
        assert rows[0]["Submitted At"] == "2026-01-15 09:30:00"

    def test_json_with_filters(self, session, two_applications):
        result = export_data(session, "applications", "json",
                             ExportFilters(track=["acceleration"], status=["approved"]))
        rows = json.loads(result["data"])
        assert [r["Business Name"] for r in rows] == ["Maji Safi"]
        assert rows[0]["Track"] == "Acceleration"
        assert rows[0]["Status"] == "APPROVED"

    def test_xlsx(self, session, two_applications):
        result = export_data(session, "applicants", "xlsx")
        assert result["content_type"].endswith("spreadsheetml.sheet")
        wb = openpyxl.load_workbook(io.BytesIO(result["data"]))
        ws = wb.active
        assert ws.max_row == 3
        assert ws.cell(row=1, column=1).value == "ID"

    def test_sector_filter_on_applicants(self, session, two_applications):
        result = export_data(session, "applicants", "json", ExportFilters(sector=["agriculture"]))
        assert result["record_count"] == 1

    def test_eligibility_filter(self, session, two_applications):
        result = export_data(session, "eligibility", "json", ExportFilters(is_eligible=True))
        rows = json.loads(result["data"])
        assert len(rows) == 1
        assert rows[0]["Business Name"] == "Jua Kali Solar"
        assert rows[0]["Registration Eligible"] == "Yes"

    def test_date_range(self, session, two_applications):
        result = export_data(session, "applications", "csv",
                             ExportFilters(submitted_after=datetime(2026, 2, 1)))
        assert result == {"success": False, "error": NO_DATA}

    def test_date_range_with_offset(self, session, two_applications):
        eat = timezone(timedelta(hours=3))
        after = export_data(session, "applications", "json",
                            ExportFilters(submitted_after=datetime(2026, 1, 15, 11, 0, tzinfo=eat)))
        assert after["record_count"] == 2
        before = export_data(session, "applications", "json",
                             ExportFilters(submitted_before=datetime(2026, 1, 15, 12, 0, tzinfo=eat)))
        assert before == {"success": False, "error": NO_DATA}

    def test_no_data(self, session):
        assert export_data(session, "applications", "csv") == {"success": False, "error": NO_DATA}

    def test_invalid_type(self, session):
        assert export_data(session, "payments", "csv")["success"] is False


class TestExportEndpoint:
    def test_requires_login(self, client):
        resp = client.post("/api/export", json={"type": "applications", "format": "csv"})
        assert resp.status_code == 401

    def test_reviewer_forbidden(self, make_user, login):
        resp = login(make_user("reviewer_1")).post(
            "/api/export", json={"type": "applications", "format": "csv"},
        )
        assert resp.status_code == 403

    @pytest.mark.parametrize("body", [
        {"type": "payments", "format": "csv"},
        {"type": "applications", "format": "pdf"},
        {"format": "csv"},
        {"type": "applications"},
    ])
    def test_invalid_type_or_format_is_400(self, make_user, login, body):
        resp = login(make_user("admin")).post("/api/export", json=body)
        assert resp.status_code == 400

    def test_download(self, two_applications, make_user, login):
        resp = login(make_user("oversight")).post(
            "/api/export", json={"type": "applications", "format": "csv", "filters": {"track": ["foundation"]}},
        )
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/csv")
        disposition = resp.headers["content-disposition"]
        assert disposition.startswith('attachment; filename="BIRE_applications_export_')
        assert disposition.endswith('.csv"')
        assert "Jua Kali Solar" in resp.text

    def test_offset_date_filter(self, two_applications, make_user, login):
        resp = login(make_user("admin")).post("/api/export", json={
            "type": "applications", "format": "json",
            "filters": {"submitted_after": "2026-01-15T11:00:00+03:00"},
        })
        assert resp.status_code == 200
        assert len(resp.json()) == 2

    def test_empty_export_is_500(self, make_user, login):
        resp = login(make_user("admin")).post("/api/export", json={"type": "eligibility", "format": "json"})
        assert resp.status_code == 500
        assert resp.json() == {"error": NO_DATA}

    def test_unexpected_failure_is_500(self, two_applications, make_user, login):
        c = login(make_user("admin"))
        with patch.dict("portal.export.WRITERS", {"json": Mock(side_effect=RuntimeError("boom"))}):
            resp = c.post("/api/export", json={"type": "applications", "format": "json"})
        assert resp.status_code == 500
        assert resp.json() == {"error": "Failed to export data"}
