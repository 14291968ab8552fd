"""Dataclasses representing Burnout Pulse domain models."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum


class RiskLevel(str, Enum):
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"
    CRITICAL = "critical"


RISK_ORDER = (RiskLevel.LOW, RiskLevel.MODERATE, RiskLevel.HIGH, RiskLevel.CRITICAL)


class AttendanceStatus(str, Enum):
    PRESENT = "Present"
    ABSENT = "Absent"
    LEAVE = "Leave"
    SICK = "Sick"


class RowOutcome(str, Enum):
    """Result of writing one attendance row."""

    INSERTED = "inserted"
    UPDATED = "updated"
    SKIPPED = "skipped"


class Role(str, Enum):
    ADMIN = "admin"
    MANAGER = "manager"
    HR = "hr"


@dataclass(slots=True)
class Team:
    id: int
    team_code: str
    team_name: str
    manager_id: int | None = None
    is_active: bool = True


@dataclass(slots=True)
class CheckinToken:
    id: int
    token: str
    team_id: int
    is_active: bool
    expires_at: datetime | None
    created_by: int | None
    created_at: datetime


@dataclass(slots=True)
class CheckIn:
    """One anonymous submission. Carries no respondent identity."""

    team_id: int
    token_used: str
    workload: int
    stress: int
    sleep: int
    engagement: int
    recovery: int
    burnout_score: float
    risk_level: RiskLevel
    week_number: int
    iso_year: int
    month_number: int
    year: int
    submitted_at: datetime


@dataclass(slots=True)
class AttendanceRecord:
    team_id: int
    employee_id: str
    date: date
    status: AttendanceStatus
    uploaded_by: int | None = None


@dataclass(frozen=True, slots=True)
class CallerScope:
    """Who is asking; managers only see the teams they own."""

    user_id: int | None
    role: Role

    @property
    def restricted(self) -> bool:
        return self.role is Role.MANAGER


__all__ = [
    "RiskLevel",
    "RISK_ORDER",
    "AttendanceStatus",
    "RowOutcome",
    "Role",
    "Team",
    "CheckinToken",
    "CheckIn",
    "AttendanceRecord",
    "CallerScope",
]
