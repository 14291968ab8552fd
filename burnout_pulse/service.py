"""Core orchestration logic for Burnout Pulse."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, Optional

from .analytics import AnalyticsAggregator
from .attendance import AttendanceReconciler, template
from .checkins import CheckinIngestion
from .config import Settings
from .correlation import CorrelationEngine
from .db import Database
from .models import CallerScope
from .periods import TimeWindow, resolve_window
from .schemas import CheckinSubmission
from .tokens import Clock, TokenGate, TokenManager, utc_now


MAX_PAGE = 500


class BurnoutPulseService:
    """High-level service wiring every component to one shared database."""

    def __init__(self, settings: Settings, database: Database, clock: Clock = utc_now) -> None:
        self.settings = settings
        self.database = database
        self.clock = clock
        self.gate = TokenGate(database)
        self.tokens = TokenManager(database, settings.token_ttl_days, clock)
        self.ingestion = CheckinIngestion(database, self.gate, clock)
        self.reconciler = AttendanceReconciler(database, settings.upload_dir)
        self.analytics = AnalyticsAggregator(database)
        self.correlation = CorrelationEngine(database)

    def window(
        self,
        period: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        default: str = "week",
    ) -> TimeWindow:
        return resolve_window(period, start_date, end_date, today=self.clock().date(), default=default)

    def checkin_url(self, token: str) -> str:
        return f"{self.settings.frontend_url}/checkin/{token}"

    # region Public check-in
    def verify_token(self, token: str) -> Dict[str, Any]:
        team = self.gate.validate(token, self.clock())
        return {"valid": True, "team": {"code": team.team_code, "name": team.team_name}}

    def link_for_team(self, team_code: str) -> Dict[str, str]:
        token = self.gate.latest_for_team_code(team_code, self.clock())
        return {"token": token, "checkin_url": self.checkin_url(token)}

    def submit_checkin(self, token: str, submission: CheckinSubmission) -> Dict[str, Any]:
        return self.ingestion.submit(token, **submission.model_dump())

    # endregion

    # region Tokens
    def issue_token(self, team_id: int, scope: CallerScope, expires_at: Optional[datetime] = None) -> Dict[str, Any]:
        issued = self.tokens.issue(team_id, scope, expires_at)
        return {
            "token": {
                "id": issued.id,
                "token": issued.token,
                "team_id": issued.team_id,
                "is_active": issued.is_active,
                "expires_at": issued.expires_at.isoformat() if issued.expires_at else None,
                "created_at": issued.created_at.isoformat(),
            },
            "checkin_url": self.checkin_url(issued.token),
        }

    def list_tokens(self, team_id: int, scope: CallerScope) -> Dict[str, Any]:
        return {"tokens": self.tokens.list(team_id, scope)}

    def revoke_token(self, team_id: int, token_id: int, scope: CallerScope) -> None:
        self.tokens.revoke(team_id, token_id, scope)

    # endregion

    # region Attendance
    def upload_attendance(self, filename: str, content: bytes, scope: CallerScope) -> Dict[str, Any]:
        summary = self.reconciler.reconcile_upload(filename, content, scope)
        return {"message": "Attendance data uploaded successfully", **summary.to_dict()}

    def attendance_template(self) -> Dict[str, Any]:
        return template()

    def attendance_stats(self, team_id: int, window: TimeWindow, scope: CallerScope) -> Dict[str, Any]:
        self.database.require_team(team_id, scope)
        row = self.database.attendance_stats(team_id, window)
        total = row["total_records"] or 0
        absent = row["absent_count"] or 0
        return {
            "statistics": {
                "total_records": total,
                "unique_employees": row["unique_employees"] or 0,
                "days_covered": row["days_covered"] or 0,
                "absence_rate": round(absent / total * 100, 2) if total else 0.0,
                "breakdown": {
                    "present": row["present_count"] or 0,
                    "absent": absent,
                    "leave": row["leave_count"] or 0,
                    "sick": row["sick_count"] or 0,
                },
            }
        }

    def attendance_records(
        self,
        team_id: int,
        scope: CallerScope,
        *,
        employee_id: Optional[str] = None,
        window: Optional[TimeWindow] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> Dict[str, Any]:
        team = self.database.require_team(team_id, scope)
        limit = max(1, min(limit, MAX_PAGE))
        offset = max(offset, 0)
        total, rows = self.database.list_attendance(
            team_id,
            employee_id=(employee_id or "").strip() or None,
            window=window,
            limit=limit,
            offset=offset,
        )
        return {
            "team": {"id": team["id"], "team_code": team["team_code"], "team_name": team["team_name"]},
            "total": total,
            "limit": limit,
            "offset": offset,
            "records": [dict(row) for row in rows],
        }

    # endregion

    # region Dashboards
    def team_overview(self, team_id: int, scope: CallerScope, period: str, window: TimeWindow) -> Dict[str, Any]:
        return self.analytics.team_overview(team_id, window, scope, granularity=period)

    def team_activity(self, team_id: int, scope: CallerScope, window: TimeWindow) -> Dict[str, Any]:
        return self.analytics.team_activity(team_id, window, scope)

    def team_correlation(self, team_id: int, scope: CallerScope, window: TimeWindow) -> Dict[str, Any]:
        return self.correlation.correlate(team_id, window, scope)

    def team_recommendations(self, team_id: int, scope: CallerScope, period: str, window: TimeWindow) -> Dict[str, Any]:
        return self.analytics.team_recommendations(team_id, window, scope, self.clock(), period)

    def organization(self, period: str, window: TimeWindow) -> Dict[str, Any]:
        return self.analytics.organization(window, self.clock(), granularity=period)

    # endregion

    def recalculate_burnout(self) -> Dict[str, Any]:
        updated = self.ingestion.recompute_all()
        return {"message": "Burnout scores recalculated", "updated": updated}


__all__ = ["BurnoutPulseService"]
