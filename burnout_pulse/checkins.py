"""Anonymous check-in ingestion and score maintenance."""

from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Any, Dict

from .db import Database, to_db_timestamp
from .models import CheckIn
from .periods import iso_year, month_number, week_number, year
from .scoring import ScoreResult, calculate_burnout_score
from .tokens import Clock, TokenGate, utc_now

logger = logging.getLogger(__name__)


class CheckinIngestion:
    """Token gate, then scoring, then period indexing, then one insert."""

    def __init__(self, database: Database, gate: TokenGate, clock: Clock = utc_now) -> None:
        self.database = database
        self.gate = gate
        self.clock = clock

    def submit(
        self,
        token: str,
        workload: int,
        stress: int,
        sleep: int,
        engagement: int,
        recovery: int,
    ) -> Dict[str, Any]:
        now = self.clock()
        team = self.gate.validate(token, now)
        result: ScoreResult = calculate_burnout_score(workload, stress, sleep, engagement, recovery)

        checkin = CheckIn(
            team_id=team.id,
            token_used=token,
            workload=workload,
            stress=stress,
            sleep=sleep,
            engagement=engagement,
            recovery=recovery,
            burnout_score=result.score,
            risk_level=result.risk_level,
            week_number=week_number(now),
            iso_year=iso_year(now),
            month_number=month_number(now),
            year=year(now),
            submitted_at=now,
        )
        record = asdict(checkin)
        record["risk_level"] = checkin.risk_level.value
        record["submitted_at"] = to_db_timestamp(now)
        self.database.insert_checkin(record)
        logger.info("Recorded check-in for team %s", team.id)

        return {
            "burnout_score": result.score,
            "risk_level": result.risk_level.value,
            "submitted_at": to_db_timestamp(now),
            "breakdown": result.components,
        }

    def recompute_all(self) -> int:
        """Rescore every stored check-in with the current formula, atomically."""

        def compute(row) -> tuple[float, str]:
            result = calculate_burnout_score(
                row["workload"], row["stress"], row["sleep"], row["engagement"], row["recovery"]
            )
            return result.score, result.risk_level.value

        updated = self.database.recompute_checkins(compute)
        logger.info("Recalculated burnout scores for %s check-ins", updated)
        return updated


__all__ = ["CheckinIngestion"]
