"""Weekly attendance versus burnout correlation."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .db import Database
from .models import CallerScope
from .periods import TimeWindow

WEEKS_SHOWN = 12


@dataclass(slots=True)
class WeeklyPoint:
    week_start: str
    absence_rate: Optional[float]
    avg_burnout: Optional[float]
    checkin_count: int
    total_records: int = 0
    absent_records: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "week_start": self.week_start,
            "absence_rate": None if self.absence_rate is None else round(self.absence_rate, 1),
            "avg_burnout": None if self.avg_burnout is None else round(self.avg_burnout, 2),
            "checkin_count": self.checkin_count,
            "total_records": self.total_records,
            "absent_records": self.absent_records,
        }


def pearson(xs: Sequence[float], ys: Sequence[float]) -> Optional[float]:
    """Pearson r, or ``None`` with fewer than two pairs or a constant series."""

    if len(xs) != len(ys):
        raise ValueError("series must have the same length")
    n = len(xs)
    if n < 2:
        return None
    if min(xs) == max(xs) or min(ys) == max(ys):
        return None
    mean_x = sum(xs) / n
    mean_y = sum(ys) / n
    cov = sum((x - mean_x) * (y - mean_y) for x, y in zip(xs, ys))
    var_x = sum((x - mean_x) ** 2 for x in xs)
    var_y = sum((y - mean_y) ** 2 for y in ys)
    if var_x == 0 or var_y == 0:
        return None
    r = cov / math.sqrt(var_x * var_y)
    return max(-1.0, min(1.0, r))


def merge_weeks(absence_rows: Iterable[Any], burnout_rows: Iterable[Any]) -> List[WeeklyPoint]:
    """Outer-join weekly attendance and check-in buckets on week start.

    Weeks with no attendance rows keep ``absence_rate`` as ``None``.
    """

    points: Dict[str, WeeklyPoint] = {}
    for row in absence_rows:
        total = row["total_records"] or 0
        if not total:
            continue
        absent = row["absent_records"] or 0
        points[row["week_start"]] = WeeklyPoint(
            week_start=row["week_start"],
            absence_rate=(absent / total) * 100,
            avg_burnout=None,
            checkin_count=0,
            total_records=total,
            absent_records=absent,
        )
    for row in burnout_rows:
        point = points.get(row["week_start"])
        if point is None:
            point = points[row["week_start"]] = WeeklyPoint(
                week_start=row["week_start"], absence_rate=None, avg_burnout=None, checkin_count=0
            )
        point.avg_burnout = row["avg_burnout"]
        point.checkin_count = row["checkin_count"] or 0
    return [points[key] for key in sorted(points)]


def paired(points: Iterable[WeeklyPoint]) -> List[WeeklyPoint]:
    """Weeks where both signals are present."""

    return [p for p in points if p.absence_rate is not None and p.avg_burnout is not None]


class CorrelationEngine:
    def __init__(self, database: Database) -> None:
        self.database = database

    def correlate(self, team_id: int, window: TimeWindow, scope: CallerScope) -> Dict[str, Any]:
        self.database.require_team(team_id, scope)
        weeks = merge_weeks(
            self.database.weekly_absence(team_id, window),
            self.database.weekly_burnout(team_id, window),
        )
        pairs = paired(weeks)
        r = pearson([p.absence_rate for p in pairs], [p.avg_burnout for p in pairs])

        total_records = sum(p.total_records for p in weeks)
        absent_records = sum(p.absent_records for p in weeks)
        checkins = sum(p.checkin_count for p in weeks)
        burnout_total = sum(p.avg_burnout * p.checkin_count for p in weeks if p.avg_burnout is not None)
        return {
            "weekly": [p.to_dict() for p in weeks[-WEEKS_SHOWN:]],
            "r": None if r is None else round(r, 4),
            "point_count": len(pairs),
            "overall": {
                "absence_rate": round(absent_records / total_records, 4) if total_records else None,
                "average_burnout": round(burnout_total / checkins, 2) if checkins else None,
            },
        }


__all__ = ["CorrelationEngine", "WeeklyPoint", "pearson", "merge_weeks", "paired"]
