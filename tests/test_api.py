"""Tests for the FastAPI surface."""

import logging
from dataclasses import replace

import pytest
from fastapi.testclient import TestClient

from burnout_pulse.api import create_app
from burnout_pulse.errors import RecomputeFailedError

from conftest import BEST, MIDDLE, csv_bytes


def staff(role="admin", user_id=99):
    return {"X-API-Key": "test-key", "X-Caller-Role": role, "X-Caller-Id": str(user_id)}


@pytest.fixture
def client(settings, database, clock, teams):
    return TestClient(create_app(settings, database, clock))


@pytest.fixture
def token(client, teams):
    response = client.post(f"/api/teams/{teams['ALPHA']}/tokens", headers=staff())
    assert response.status_code == 201
    return response.json()["token"]["token"]


class TestHealth:
    def test_healthz(self, client):
        response = client.get("/healthz")

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}


class TestAccessControl:
    def test_missing_api_key(self, client, teams):
        response = client.get(f"/api/dashboard/team/{teams['ALPHA']}/overview", headers={"X-Caller-Role": "admin"})

        assert response.status_code == 401

    @pytest.mark.parametrize("role", ["intern", ""])
    def test_unknown_or_missing_role(self, client, teams, role):
        response = client.get(f"/api/dashboard/team/{teams['ALPHA']}/overview", headers=staff(role=role))

        assert response.status_code == 403

    def test_hr_cannot_upload(self, client):
        response = client.post(
            "/api/attendance/upload",
            files={"file": ("week.csv", csv_bytes("employee_id,team_id,date,status"), "text/csv")},
            headers=staff(role="hr"),
        )

        assert response.status_code == 403

    def test_manager_cannot_open_hr_dashboard(self, client):
        assert client.get("/api/hr/dashboard", headers=staff(role="manager", user_id=1)).status_code == 403

    def test_foreign_team_looks_missing(self, client, teams):
        foreign = client.get(f"/api/dashboard/team/{teams['ALPHA']}/overview", headers=staff("manager", 2))
        missing = client.get("/api/dashboard/team/4040/overview", headers=staff())

        assert foreign.status_code == missing.status_code == 404
        assert foreign.json() == missing.json() == {"error": "Team not found or access denied"}


class TestPublicCheckin:
    def test_verify_valid_token(self, client, token):
        response = client.get(f"/api/public/checkin/{token}")

        assert response.status_code == 200
        assert response.json() == {"valid": True, "team": {"code": "ALPHA", "name": "Alpha Squad"}}

    def test_verify_invalid_token(self, client):
        response = client.get("/api/public/checkin/nope")

        assert response.status_code == 404
        assert response.json() == {"valid": False, "error": "Invalid or expired token"}

    def test_submit(self, client, token):
        response = client.post(f"/api/public/checkin/{token}", json=MIDDLE)

        assert response.status_code == 201
        body = response.json()
        assert body["burnout_score"] == 50.0
        assert body["risk_level"] == "moderate"

    def test_submit_with_invalid_token(self, client):
        response = client.post("/api/public/checkin/nope", json=MIDDLE)

        assert response.status_code == 401
        assert response.json() == {"error": "Invalid or expired token"}

    @pytest.mark.parametrize(
        "payload",
        [
            {**MIDDLE, "stress": 5},
            {**MIDDLE, "stress": "2"},
            {**MIDDLE, "stress": 2.5},
            {key: value for key, value in MIDDLE.items() if key != "sleep"},
            {**MIDDLE, "employee_id": "E1"},
        ],
    )
    def test_submit_rejects_bad_answers(self, client, token, payload):
        response = client.post(f"/api/public/checkin/{token}", json=payload)

        assert response.status_code == 400
        assert response.json()["errors"]

    def test_link_by_team_code(self, client, token):
        response = client.get("/api/public/checkin/by-team/alpha")

        assert response.status_code == 200
        assert response.json() == {
            "token": token,
            "checkin_url": f"https://pulse.example.com/checkin/{token}",
        }

    def test_link_by_team_code_without_token(self, client, teams):
        assert client.get("/api/public/checkin/by-team/BETA").status_code == 404

    def test_request_log_hides_token(self, client, token, caplog):
        with caplog.at_level(logging.INFO, logger="burnout_pulse.api"):
            client.get(f"/api/public/checkin/{token}")

        messages = [record.getMessage() for record in caplog.records if record.name == "burnout_pulse.api"]
        assert any("/api/public/checkin/{token}" in message for message in messages)
        assert not any(token in message for message in messages)


class TestTokens:
    def test_issue_list_and_revoke(self, client, teams):
        team_id = teams["ALPHA"]
        issued = client.post(
            f"/api/teams/{team_id}/tokens",
            json={"expires_at": "2025-06-01T00:00:00Z"},
            headers=staff("manager", 1),
        )
        assert issued.status_code == 201
        token = issued.json()["token"]
        assert token["expires_at"] == "2025-06-01T00:00:00+00:00"
        assert issued.json()["checkin_url"].endswith(token["token"])

        listed = client.get(f"/api/teams/{team_id}/tokens", headers=staff("manager", 1)).json()["tokens"]
        assert [entry["state"] for entry in listed] == ["active"]

        revoked = client.delete(f"/api/teams/{team_id}/tokens/{token['id']}", headers=staff("manager", 1))
        assert revoked.status_code == 204
        assert client.get(f"/api/public/checkin/{token['token']}").status_code == 404

    def test_past_expiry_rejected(self, client, teams):
        response = client.post(
            f"/api/teams/{teams['ALPHA']}/tokens",
            json={"expires_at": "2020-01-01T00:00:00Z"},
            headers=staff(),
        )

        assert response.status_code == 400


class TestAttendance:
    def upload(self, client, content, filename="week.csv", headers=None):
        return client.post(
            "/api/attendance/upload",
            files={"file": (filename, content, "text/csv")},
            headers=headers or staff(),
        )

    def test_upload_summary(self, client, teams):
        response = self.upload(
            client,
            csv_bytes("employee_id,team_id,date,status", "E1,ALPHA,2025-01-13,Present", "E2,ALPHA,2025-01-13,Absent"),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["teams_in_file"] == ["ALPHA"]
        assert body["summary"]["inserted"] == 2

    def test_upload_validation_errors(self, client, teams):
        response = self.upload(
            client, csv_bytes("employee_id,team_id,date,status", "E1,ALPHA,2025-01-13,Gone")
        )

        assert response.status_code == 400
        assert response.json() == {
            "error": "Validation errors",
            "errors": ["Row 2: status must be one of: Present, Absent, Leave, Sick"],
        }

    def test_unsupported_format(self, client, teams):
        response = self.upload(client, b"hello", filename="notes.txt")

        assert response.status_code == 400

    def test_upload_size_cap(self, settings, database, clock, teams):
        small = TestClient(create_app(replace(settings, max_upload_bytes=16), database, clock))

        response = self.upload(small, csv_bytes("employee_id,team_id,date,status", "E1,ALPHA,2025-01-13,Present"))

        assert response.status_code == 413

    def test_stats_and_records(self, client, teams):
        self.upload(
            client,
            csv_bytes(
                "employee_id,team_id,date,status",
                "E1,ALPHA,2025-01-13,Present",
                "E2,ALPHA,2025-01-13,Absent",
                "E1,ALPHA,2025-01-14,Sick",
                "E2,ALPHA,2025-01-14,Present",
            ),
        )
        team_id = teams["ALPHA"]

        stats = client.get(f"/api/attendance/team/{team_id}/stats", headers=staff("hr", 98)).json()["statistics"]
        assert stats["total_records"] == 4
        assert stats["unique_employees"] == 2
        assert stats["absence_rate"] == 25.0
        assert stats["breakdown"] == {"present": 2, "absent": 1, "leave": 0, "sick": 1}

        page = client.get(
            f"/api/attendance/team/{team_id}/records",
            params={"employee_id": "E1", "limit": 1},
            headers=staff("manager", 1),
        ).json()
        assert page["total"] == 2
        assert [record["date"] for record in page["records"]] == ["2025-01-14"]

    def test_template(self, client):
        response = client.get("/api/attendance/template", headers=staff())

        assert response.status_code == 200
        assert "instructions" in response.json()


class TestDashboards:
    def test_overview(self, client, teams, token):
        client.post(f"/api/public/checkin/{token}", json=BEST)

        response = client.get(f"/api/dashboard/team/{teams['ALPHA']}/overview", headers=staff("hr", 98))

        assert response.status_code == 200
        assert response.json()["overview"]["total_checkins"] == 1

    @pytest.mark.parametrize(
        "params",
        [
            {"period": "year"},
            {"start_date": "2025-01-01"},
            {"start_date": "2025-02-01", "end_date": "2025-01-01"},
            {"start_date": "01/02/2025", "end_date": "2025-02-01"},
        ],
    )
    def test_bad_period_parameters(self, client, teams, params):
        response = client.get(f"/api/dashboard/team/{teams['ALPHA']}/overview", params=params, headers=staff())

        assert response.status_code == 400

    def test_correlation_and_activity(self, client, teams):
        team_id = teams["ALPHA"]
        params = {"start_date": "2025-01-01", "end_date": "2025-01-31"}

        correlation = client.get(f"/api/dashboard/team/{team_id}/correlation", params=params, headers=staff())
        activity = client.get(f"/api/dashboard/team/{team_id}/activity", params=params, headers=staff())

        assert correlation.status_code == 200
        assert correlation.json()["r"] is None
        assert activity.json() == {"activity": []}

    def test_recommendations(self, client, teams, token):
        client.post(f"/api/public/checkin/{token}", json=BEST)

        response = client.get(f"/api/manager/recommendations/{teams['ALPHA']}", headers=staff("manager", 1))

        assert response.status_code == 200
        assert response.json()["risk"] == "Low"

    def test_hr_dashboard(self, client, teams):
        response = client.get("/api/hr/dashboard", headers=staff("hr", 98))

        assert response.status_code == 200
        assert response.json()["summary"]["total_teams"] == 2


class TestMaintenance:
    def test_admin_recalculates(self, client, token):
        client.post(f"/api/public/checkin/{token}", json=BEST)

        response = client.post("/api/admin/maintenance/recalculate-burnout", headers=staff())

        assert response.status_code == 200
        assert response.json()["updated"] == 1

    def test_manager_forbidden(self, client):
        response = client.post("/api/admin/maintenance/recalculate-burnout", headers=staff("manager", 1))

        assert response.status_code == 403

    def test_failure_is_generic(self, client, database, monkeypatch):
        def broken(compute):
            raise RecomputeFailedError("sqlite exploded at /var/db")

        monkeypatch.setattr(database, "recompute_checkins", broken)

        response = client.post("/api/admin/maintenance/recalculate-burnout", headers=staff())

        assert response.status_code == 500
        assert response.json() == {"error": "Internal server error"}

    def test_unhandled_error_is_logged_and_generic(self, settings, database, clock, teams, monkeypatch, caplog):
        def broken(compute):
            raise RuntimeError("disk vanished")

        monkeypatch.setattr(database, "recompute_checkins", broken)
        client = TestClient(create_app(settings, database, clock), raise_server_exceptions=False)

        with caplog.at_level(logging.INFO, logger="burnout_pulse.api"):
            response = client.post("/api/admin/maintenance/recalculate-burnout", headers=staff())

        assert response.status_code == 500
        assert response.json() == {"error": "Internal server error"}
        messages = [record.getMessage() for record in caplog.records if record.name == "burnout_pulse.api"]
        assert any("POST /api/admin/maintenance/recalculate-burnout -> 500" in message for message in messages)
