"""Team and organisation burnout aggregates for dashboards."""

from __future__ import annotations

from datetime import datetime, time, timedelta, timezone
from typing import Any, Dict, List, Optional

from .db import Database, from_db_timestamp
from .models import RISK_ORDER, CallerScope
from .periods import TimeWindow
from .scoring import recommendations, risk_label

TREND_PERIODS = 12
ORG_SERIES_DAYS = 14
ORG_AVERAGE_DAYS = 42


def _round(value: Optional[float], digits: int = 2) -> Optional[float]:
    return None if value is None else round(value, digits)


def format_time_ago(moment: Optional[datetime], now: datetime) -> Optional[str]:
    if moment is None:
        return None
    seconds = max(0, int((now - moment).total_seconds()))
    minutes, hours, days = seconds // 60, seconds // 3600, seconds // 86400
    if minutes < 1:
        return "just now"
    if minutes < 60:
        return f"{minutes} minute{'' if minutes == 1 else 's'} ago"
    if hours < 24:
        return f"{hours} hour{'' if hours == 1 else 's'} ago"
    return f"{days} day{'' if days == 1 else 's'} ago"


class AnalyticsAggregator:
    """Time-windowed aggregates over stored check-ins.

    Passing ``team_id=None`` to the shape builders aggregates across every
    active team.
    """

    def __init__(self, database: Database) -> None:
        self.database = database

    # region Shapes
    def overview(self, team_id: Optional[int], window: Optional[TimeWindow]) -> Dict[str, Any]:
        row = self.database.checkin_overview(team_id, window)
        return {
            "average_burnout": round(row["avg_burnout"] or 0, 2),
            "total_checkins": row["total_checkins"] or 0,
            "active_days": row["active_days"] or 0,
        }

    def risk_distribution(self, team_id: Optional[int], window: Optional[TimeWindow]) -> List[Dict[str, Any]]:
        found = {row["risk_level"]: row for row in self.database.risk_distribution(team_id, window)}
        distribution = []
        for level in RISK_ORDER:
            row = found.get(level.value)
            distribution.append(
                {
                    "risk_level": level.value,
                    "count": row["count"] if row else 0,
                    "avg_score": _round(row["avg_score"]) if row else None,
                }
            )
        return distribution

    def trend(self, team_id: Optional[int], granularity: str = "week", limit: int = TREND_PERIODS) -> List[Dict[str, Any]]:
        rows = self.database.checkin_trend(team_id, granularity, limit)
        key = "week_number" if granularity == "week" else "month_number"
        # newest first from storage, chronological for display
        return [
            {
                "year": row["year"],
                key: row["period"],
                "avg_burnout": _round(row["avg_burnout"]),
                "checkin_count": row["checkin_count"],
            }
            for row in reversed(rows)
        ]

    def activity(self, team_id: Optional[int], window: Optional[TimeWindow]) -> List[Dict[str, Any]]:
        return [
            {
                "date": row["date"],
                "checkin_count": row["checkin_count"],
                "avg_burnout": _round(row["avg_burnout"]),
            }
            for row in self.database.daily_activity(team_id, window)
        ]

    # endregion

    # region Team views
    def team_overview(
        self, team_id: int, window: TimeWindow, scope: CallerScope, granularity: str = "week"
    ) -> Dict[str, Any]:
        team = self.database.require_team(team_id, scope)
        return {
            "team": {"id": team["id"], "team_code": team["team_code"], "team_name": team["team_name"]},
            "overview": self.overview(team_id, window),
            "risk_distribution": self.risk_distribution(team_id, window),
            "trends": self.trend(team_id, granularity),
        }

    def team_activity(self, team_id: int, window: TimeWindow, scope: CallerScope) -> Dict[str, Any]:
        self.database.require_team(team_id, scope)
        return {"activity": self.activity(team_id, window)}

    def team_recommendations(
        self, team_id: int, window: TimeWindow, scope: CallerScope, now: datetime, period: str = "week"
    ) -> Dict[str, Any]:
        team = self.database.require_team(team_id, scope)
        row = self.database.checkin_overview(team_id, window)
        latest = from_db_timestamp(self.database.checkin_overview(team_id, None)["last_checkin_at"])
        score = row["avg_burnout"] or 0.0
        return {
            "team": {"id": team["id"], "team_code": team["team_code"], "team_name": team["team_name"]},
            "burnout_score": round(score, 1),
            "risk": risk_label(score),
            "last_checkin": format_time_ago(latest, now) or "No check-ins",
            "last_checkin_at": latest.isoformat() if latest else None,
            "recommendations": recommendations(score),
            "basis": {"type": "average", "period": period, "total_checkins": row["total_checkins"] or 0},
        }

    # endregion

    def organization(
        self, window: TimeWindow, now: datetime, granularity: str = "week"
    ) -> Dict[str, Any]:
        """Cross-team dashboard over every active team, ranked by average score."""

        today = now.astimezone(timezone.utc).date()
        teams = []
        for row in self.database.team_rankings(window):
            score = _round(row["avg_burnout"], 1)
            latest = from_db_timestamp(row["last_checkin_at"])
            teams.append(
                {
                    "id": row["id"],
                    "name": row["team_name"],
                    "team_code": row["team_code"],
                    "burnout_score": score,
                    "risk": risk_label(score) if score is not None else "No Data",
                    "last_checkin": format_time_ago(latest, now) or "No check-ins",
                    "last_checkin_at": latest.isoformat() if latest else None,
                    "checkins": row["checkin_count"] or 0,
                }
            )

        scored = [team["burnout_score"] for team in teams if team["burnout_score"] is not None]
        org_average = round(sum(scored) / len(scored), 1) if scored else 0.0
        bands = {"low_risk": 0, "moderate_risk": 0, "high_risk": 0}
        for team in teams:
            if team["risk"] == "Low":
                bands["low_risk"] += 1
            elif team["risk"] == "Moderate":
                bands["moderate_risk"] += 1
            elif team["risk"] in ("High", "Critical"):
                bands["high_risk"] += 1

        midnight = datetime.combine(today, time.min, tzinfo=timezone.utc)
        last_week = TimeWindow(midnight - timedelta(days=7))
        six_weeks = TimeWindow(midnight - timedelta(days=ORG_AVERAGE_DAYS))
        series_window = TimeWindow(midnight - timedelta(days=ORG_SERIES_DAYS))
        period_row = self.database.checkin_overview(None, window)
        last_activity = from_db_timestamp(period_row["last_checkin_at"])

        return {
            "summary": {
                "total_teams": self.database.count_active_teams(),
                "total_employees": self.database.count_distinct_employees(),
                "this_week_checkins": self.database.checkin_overview(None, last_week)["total_checkins"] or 0,
                "last_6_weeks_avg": round(self.database.checkin_overview(None, six_weeks)["avg_burnout"] or 0, 1),
            },
            "organizational_burnout": {"avg_score": org_average, **bands},
            "organizational_overview": {
                "overall_average": org_average,
                "total_checkins_in_period": period_row["total_checkins"] or 0,
                "last_activity_at": last_activity.isoformat() if last_activity else None,
                "daily_series": self.activity(None, series_window),
            },
            "overview": self.overview(None, window),
            "risk_distribution": self.risk_distribution(None, window),
            "organizational_trend": self.trend(None, granularity),
            "at_risk_teams": [team for team in teams if team["risk"] in ("High", "Critical")],
            "teams": teams,
        }


__all__ = ["AnalyticsAggregator", "format_time_ago", "TREND_PERIODS"]
