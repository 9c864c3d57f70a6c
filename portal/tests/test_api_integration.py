"""Integration tests for the FastAPI endpoints.

Uses TestClient against an in-memory database; email delivery stays
unconfigured so notifications are logged and skipped.
"""
from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest

from portal.cache import page_cache
from portal.config import applications_open, get_settings
from portal.models import Application, EligibilityResult, User
from portal.scoring import track_criteria

from conftest import PASSWORD


def _submission(**business) -> dict:
    data = {
        "name": "Shamba Fresh", "is_registered": True, "sector": "agriculture",
        "county": "kiambu", "years_operational": 2, "employees": 8,
        "revenue_last_year": 900_000, "has_financial_records": True,
        "description": "Cold storage and aggregation for smallholder vegetable farmers in Kiambu.",
        "problem_solved": "Post-harvest losses wipe out up to a third of smallholder farm income.",
        "track_answers": {"customers": 140},
    }
    data.update(business)
    return {
        "applicant": {"first_name": "Grace", "last_name": "Njeri", "email": "grace@example.org"},
        "business": data,
        "referral_source": "radio",
    }


@pytest.fixture()
def applications_are_open():
    with patch("portal.services.applications_open", return_value=True):
        yield


class TestDeadline:
    def test_open_before_deadline(self):
        assert applications_open(datetime(2026, 1, 30, 20, 59, 0, tzinfo=timezone.utc)) is True

    def test_closed_after_deadline(self):
        assert applications_open(datetime(2026, 1, 30, 21, 0, 0, tzinfo=timezone.utc)) is False

    def test_deadline_from_environment(self, monkeypatch):
        monkeypatch.setenv("APPLICATION_DEADLINE", "2030-06-30T23:59:59+03:00")
        assert applications_open(datetime(2029, 1, 1, tzinfo=timezone.utc)) is True


class TestScreeningEndpoint:
    def test_acceleration(self, client):
        resp = client.post("/api/screening", json={"registered": True, "annual_revenue": 5_000_000})
        data = resp.json()
        assert data["eligible"] is True
        assert data["track"] == "acceleration"
        assert data["form_path"] == "/apply/acceleration"

    def test_disqualified(self, client):
        data = client.post("/api/screening", json={"registered": False}).json()
        assert data["status"] == "disqualified"
        assert data["reasons"]


class TestSubmission:
    def test_submit_and_read_back(self, make_user, login, session, applications_are_open):
        c = login(make_user())
        resp = c.post("/api/applications/foundation", json=_submission())
        body = resp.json()
        assert body["success"] is True

        mine = c.get("/api/my-application").json()["data"]
        assert mine["id"] == body["application_id"]
        assert mine["status"] == "submitted"
        assert "total_score" not in mine

        application = session.get(Application, body["application_id"])
        assert application.referral_source == "radio"
        assert application.eligibility.is_eligible is True

    def test_one_application_per_user(self, make_user, login, applications_are_open):
        c = login(make_user())
        c.post("/api/applications/foundation", json=_submission())
        resp = c.post("/api/applications/foundation", json=_submission())
        assert resp.json() == {"success": False, "error": "You have already submitted an application"}

    def test_mandatory_criteria_recorded(self, make_user, login, session, applications_are_open):
        c = login(make_user())
        body = c.post("/api/applications/acceleration",
                      json=_submission(revenue_last_year=100_000, description="short")).json()
        result = session.get(Application, body["application_id"]).eligibility
        assert result.revenue_eligible is False
        assert result.impact_eligible is False
        assert result.is_eligible is False

    def test_closed(self, make_user, login):
        with patch("portal.services.applications_open", return_value=False):
            resp = login(make_user()).post("/api/applications/foundation", json=_submission())
        assert resp.json()["success"] is False
        assert "closed" in resp.json()["error"]

    def test_invalid_track(self, make_user, login, applications_are_open):
        resp = login(make_user()).post("/api/applications/observation", json=_submission())
        assert resp.json()["error"] == "Invalid track: observation"

    def test_confirmation_email_sent(self, make_user, login, applications_are_open):
        with patch("portal.services.emails.notify", return_value=True) as notify:
            login(make_user()).post("/api/applications/foundation", json=_submission())
        to, message = notify.call_args.args
        assert to == "grace@example.org"
        assert "Submitted" in message.subject

    def test_non_json_email_reply_keeps_submission(self, make_user, login, session, monkeypatch,
                                                   applications_are_open):
        monkeypatch.setenv("RESEND_API_KEY", "re_test_key")
        get_settings.cache_clear()
        reply = MagicMock(status_code=200, text="OK")
        reply.json.side_effect = ValueError("Expecting value")
        with patch("portal.emails.httpx.post", return_value=reply):
            body = login(make_user()).post("/api/applications/foundation", json=_submission()).json()
        assert body["success"] is True
        assert session.get(Application, body["application_id"]) is not None

    def test_staff_cannot_submit(self, make_user, login):
        resp = login(make_user("reviewer_1")).post("/api/applications/foundation", json=_submission())
        assert resp.status_code == 403


class TestApplicationsApi:
    def test_list_and_filter(self, make_user, make_application, login):
        make_application(make_user(), track="foundation")
        make_application(make_user(), track="acceleration", name="Maji Safi")
        c = login(make_user("reviewer_1"))

        assert len(c.get("/api/applications").json()) == 2
        rows = c.get("/api/applications", params={"track": "acceleration"}).json()
        assert [r["business_name"] for r in rows] == ["Maji Safi"]
        assert c.get("/api/applications", params={"search": "maji"}).json()[0]["track"] == "acceleration"

    def test_detail_and_404(self, make_user, make_application, login):
        application = make_application(make_user())
        c = login(make_user("oversight"))
        detail = c.get(f"/api/applications/{application.id}").json()
        assert detail["business"]["name"] == "Jua Kali Solar"
        assert detail["applicant"]["first_name"] == "Amina"
        assert detail["criteria_total"] == 0.0
        assert c.get("/api/applications/9999").status_code == 404

    def test_status_update_by_oversight(self, make_user, make_application, login, session):
        application = make_application(make_user())
        c = login(make_user("oversight"))
        with patch("portal.services.notify_decision") as notify:
            resp = c.put(f"/api/applications/{application.id}/status", json={"status": "approved"})
        assert resp.json()["success"] is True
        session.expire_all()
        assert session.get(Application, application.id).status == "approved"
        notify.assert_called_once()

    def test_invalid_status(self, make_user, make_application, login):
        application = make_application(make_user())
        resp = login(make_user("admin")).put(
            f"/api/applications/{application.id}/status", json={"status": "finalist"},
        )
        assert resp.json() == {"success": False, "error": "Invalid status: finalist"}

    def test_reviewer_cannot_change_status(self, make_user, make_application, login):
        application = make_application(make_user())
        resp = login(make_user("reviewer_2")).put(
            f"/api/applications/{application.id}/status", json={"status": "approved"},
        )
        assert resp.status_code == 403

    def test_eligibility_check(self, make_user, make_application, login):
        application = make_application(make_user(), years_operational=0)
        data = login(make_user("admin")).post(f"/api/applications/{application.id}/eligibility").json()
        assert data["success"] is True
        assert data["age_eligible"] is False
        assert data["is_eligible"] is False

    def test_eligibility_check_refused_when_locked(self, make_user, make_application, login, session):
        application = make_application(make_user())
        session.add(EligibilityResult(application_id=application.id, is_locked=True))
        session.commit()
        data = login(make_user("admin")).post(f"/api/applications/{application.id}/eligibility").json()
        assert data == {"success": False, "error": "Application is locked"}

    def test_stats(self, make_user, make_application, login):
        make_application(make_user())
        make_application(make_user(), track="acceleration", status="approved")
        stats = login(make_user("oversight")).get("/api/stats").json()
        assert stats["total"] == 2
        assert stats["by_status"] == {"submitted": 1, "approved": 1}
        assert stats["by_track"] == {"foundation": 1, "acceleration": 1}

    def test_stats_distributions(self, make_user, make_application, login, session):
        make_application(make_user())
        other = make_application(make_user(), sector="agriculture", county="kisumu")
        other.business.applicant.gender = ""
        session.commit()
        stats = login(make_user("admin")).get("/api/stats").json()
        assert stats["by_sector"] == {"energy": 1, "agriculture": 1}
        assert stats["by_county"] == {"nairobi": 1, "kisumu": 1}
        assert stats["by_gender"] == {"female": 1, "unspecified": 1}

    def test_observation_only_filter(self, make_user, make_application, login, session):
        make_application(make_user(), name="Full Member")
        observer = make_application(make_user(), name="Observer Co", revenue_last_year=300_000)
        observer.is_observation_only = True
        session.commit()
        c = login(make_user("oversight"))

        rows = c.get("/api/applications", params={"observation_only": "true"}).json()
        assert [r["business_name"] for r in rows] == ["Observer Co"]
        rows = c.get("/api/applications", params={"observation_only": "false"}).json()
        assert [r["business_name"] for r in rows] == ["Full Member"]
        assert len(c.get("/api/applications").json()) == 2


class TestReviewApi:
    def test_two_tier_flow(self, make_user, make_application, login, session):
        application = make_application(make_user())
        r1, r2 = make_user("reviewer_1"), make_user("reviewer_2")

        resp = login(r1).post(f"/api/applications/{application.id}/review", json={"score": 85})
        assert resp.json()["success"] is True
        status = login(r2).get(f"/api/applications/{application.id}/review-status").json()["data"]
        assert status["reviewer1"]["score"] is None

        resp = login(r2).post(f"/api/applications/{application.id}/review", json={"score": 75})
        assert "Approved" in resp.json()["message"]
        session.expire_all()
        assert session.get(Application, application.id).status == "approved"

    def test_score_out_of_range(self, make_user, make_application, login):
        application = make_application(make_user())
        resp = login(make_user("reviewer_1")).post(
            f"/api/applications/{application.id}/review", json={"score": 120},
        )
        assert resp.status_code == 422

    def test_scoring_progress_and_lock(self, make_user, make_application, login, session):
        application = make_application(make_user())
        criteria = track_criteria(session, "foundation")[:2]
        reviewer = make_user("technical_reviewer")
        admin = make_user("admin")

        c = login(reviewer)
        resp = c.post(f"/api/applications/{application.id}/scores",
                      json={"scores": [{"criteria_id": cr.id, "score": 6} for cr in criteria]})
        assert resp.json() == {"success": True, "message": "Progress saved"}
        assert len(c.get(f"/api/applications/{application.id}/scores").json()["data"]) == 2
        assert login(admin).get(f"/api/applications/{application.id}").json()["criteria_total"] == 12.0

        assert login(admin).post(f"/api/applications/{application.id}/lock",
                                 json={"reason": "Committee sign-off"}).json()["success"] is True
        resp = login(reviewer).post(f"/api/applications/{application.id}/scores",
                                    json={"scores": [{"criteria_id": criteria[0].id, "score": 9}]})
        assert resp.json() == {"success": False, "error": "Application is locked"}

        assert login(admin).post(f"/api/applications/{application.id}/unlock").json()["success"] is True

    def test_lock_is_admin_only(self, make_user, make_application, login):
        application = make_application(make_user())
        resp = login(make_user("oversight")).post(f"/api/applications/{application.id}/lock")
        assert resp.status_code == 403


class TestUsersApi:
    def test_create_staff_and_search(self, make_user, login):
        c = login(make_user("admin"))
        resp = c.post("/api/users", json={
            "email": "kip@example.org", "password": PASSWORD,
            "first_name": "Kip", "last_name": "Rono", "role": "reviewer_2",
        })
        assert resp.json()["success"] is True
        assert resp.json()["user"]["role"] == "reviewer_2"

        found = c.get("/api/users", params={"q": "kip"}).json()["data"]
        assert [u["email"] for u in found] == ["kip@example.org"]
        assert c.get("/api/users", params={"role": "reviewer_2"}).json()["data"][0]["name"] == "Kip Rono"

    def test_duplicate_staff_email(self, make_user, login):
        existing = make_user()
        resp = login(make_user("admin")).post("/api/users", json={
            "email": existing.email, "password": PASSWORD, "first_name": "A", "last_name": "B",
        })
        assert resp.json()["success"] is False

    def test_update_role(self, make_user, login, session):
        target = make_user()
        resp = login(make_user("admin")).put(f"/api/users/{target.id}/role", json={"role": "oversight"})
        assert resp.json()["success"] is True
        session.expire_all()
        assert session.get(User, target.id).role == "oversight"

    def test_admin_cannot_demote_self(self, make_user, login):
        admin = make_user("admin")
        resp = login(admin).put(f"/api/users/{admin.id}/role", json={"role": "reviewer_1"})
        assert resp.json() == {"success": False, "error": "You cannot remove your own admin role"}

    def test_invalid_role(self, make_user, login):
        target = make_user()
        resp = login(make_user("admin")).put(f"/api/users/{target.id}/role", json={"role": "owner"})
        assert resp.json()["error"] == "Invalid role: owner"


class TestAssignmentsApi:
    def test_evaluators_by_role(self, make_user, login):
        make_user("reviewer_1")
        make_user("technical_reviewer")
        make_user("oversight")
        c = login(make_user("admin"))
        assert len(c.get("/api/evaluators").json()["data"]) == 2
        assert len(c.get("/api/evaluators", params={"role": "reviewer_1"}).json()["data"]) == 1
        assert c.get("/api/evaluators", params={"role": "admin"}).json()["success"] is False

    @pytest.mark.parametrize("method,path,body", [
        ("get", "/api/evaluators/workloads", None),
        ("get", "/api/evaluators/abc/assignments", None),
        ("post", "/api/assignments", {"evaluator_id": "abc", "application_ids": [1]}),
        ("post", "/api/assignments/auto", None),
        ("post", "/api/assignments/remove", {"evaluator_id": "abc", "application_ids": [1]}),
    ])
    def test_assignment_operations_unavailable(self, make_user, login, method, path, body):
        c = login(make_user("admin"))
        resp = c.request(method.upper(), path, json=body)
        assert resp.json() == {"success": False, "error": "Evaluator assignment is not available yet"}


class TestPages:
    def test_admin_application_page_is_cached(self, make_user, make_application, login, session):
        application = make_application(make_user())
        c = login(make_user("admin"))
        path = f"/admin/applications/{application.id}"

        assert "Jua Kali Solar" in c.get(path).text
        assert page_cache.get(path) is not None

        c.put(f"/api/applications/{application.id}/status", json={"status": "shortlisted"})
        assert page_cache.get(path) is None
        assert "shortlisted" in c.get(path).text

    def test_missing_application_page(self, make_user, login):
        assert login(make_user("admin")).get("/admin/applications/9999").status_code == 404

    def test_apply_page_shows_status(self, make_user, make_application, login):
        applicant = make_user()
        make_application(applicant, status="under_review")
        assert "under review" in login(applicant).get("/apply").text

    def test_reviewer_page_lists_open_applications(self, make_user, make_application, login):
        make_application(make_user(), name="Open One")
        make_application(make_user(), name="Closed One", status="rejected")
        text = login(make_user("reviewer_1")).get("/reviewer").text
        assert "Open One" in text
        assert "Closed One" not in text

    def test_page_title_uses_app_name(self, client, monkeypatch):
        monkeypatch.setenv("APP_NAME", "BIRE Intake")
        get_settings.cache_clear()
        assert "<title>BIRE Programme - BIRE Intake</title>" in client.get("/").text
