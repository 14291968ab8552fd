"""Shared fixtures: temporary database, seeded teams and a controllable clock."""

from __future__ import annotations

import io
from datetime import datetime, timedelta, timezone
from typing import Dict

import pytest

from burnout_pulse.config import Settings
from burnout_pulse.db import Database
from burnout_pulse.models import CallerScope, Role
from burnout_pulse.service import BurnoutPulseService

FIXED_NOW = datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

ADMIN = CallerScope(user_id=99, role=Role.ADMIN)
HR = CallerScope(user_id=98, role=Role.HR)
MANAGER_ALPHA = CallerScope(user_id=1, role=Role.MANAGER)
MANAGER_BETA = CallerScope(user_id=2, role=Role.MANAGER)

BEST = dict(workload=4, stress=0, sleep=4, engagement=4, recovery=4)
MIDDLE = dict(workload=2, stress=2, sleep=2, engagement=2, recovery=2)
WORST = dict(workload=0, stress=4, sleep=0, engagement=0, recovery=0)


class FrozenClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def csv_bytes(*lines: str) -> bytes:
    return ("\n".join(lines) + "\n").encode("utf-8")


def xlsx_bytes(rows) -> bytes:
    from openpyxl import Workbook

    workbook = Workbook()
    sheet = workbook.active
    for row in rows:
        sheet.append(list(row))
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(FIXED_NOW)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        api_key="test-key",
        database_path=tmp_path / "burnout.db",
        upload_dir=tmp_path / "uploads",
        frontend_url="https://pulse.example.com",
    )


@pytest.fixture
def database(settings) -> Database:
    return Database(settings.database_path)


@pytest.fixture
def teams(database) -> Dict[str, int]:
    return {
        "ALPHA": database.create_team("ALPHA", "Alpha Squad", manager_id=1),
        "BETA": database.create_team("beta", "Beta Crew", manager_id=2),
    }


@pytest.fixture
def service(settings, database, clock, teams) -> BurnoutPulseService:
    return BurnoutPulseService(settings, database, clock)


@pytest.fixture
def alpha_token(service, teams) -> str:
    return service.tokens.issue(teams["ALPHA"], ADMIN).token


@pytest.fixture
def beta_token(service, teams) -> str:
    return service.tokens.issue(teams["BETA"], ADMIN).token


def submit_at(service: BurnoutPulseService, clock: FrozenClock, token: str, when: datetime, answers: dict) -> dict:
    """Submit a check-in as if it arrived at ``when``."""

    original = clock.now
    clock.now = when
    try:
        return service.ingestion.submit(token, **answers)
    finally:
        clock.now = original
