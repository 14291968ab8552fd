"""Burnout scoring from the five check-in answers.

Workload manageability, sleep quality, engagement and recovery are protective
scales (higher is better) and are inverted with ``4 - value``. Stress is
already a risk scale. The five risk components sum to at most 20, which is
normalised to a 0-100 score.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List

from .errors import InvalidInputError
from .models import RiskLevel

QUESTIONS = ("workload", "stress", "sleep", "engagement", "recovery")
PROTECTIVE = frozenset({"workload", "sleep", "engagement", "recovery"})
MAX_ANSWER = 4
MAX_SUM = MAX_ANSWER * len(QUESTIONS)

# Inclusive upper bounds.
RISK_BANDS = (
    (30.0, RiskLevel.LOW),
    (60.0, RiskLevel.MODERATE),
    (80.0, RiskLevel.HIGH),
)

RECOMMENDATIONS = {
    RiskLevel.CRITICAL: [
        "Encourage regular breaks",
        "Delegate tasks to reduce workload",
        "Provide mental health support resources",
    ],
    RiskLevel.HIGH: [
        "Offer flexible working hours",
        "Focus on workload management",
        "Monitor work/life balance",
    ],
    RiskLevel.MODERATE: [
        "Consider a team-building event",
        "Encourage open communication",
    ],
    RiskLevel.LOW: ["Ensure the team maintains good morale"],
}


@dataclass(slots=True)
class ScoreResult:
    """Structured representation of a burnout assessment."""

    score: float
    risk_level: RiskLevel
    risk_sum: int
    components: Dict[str, int] = field(default_factory=dict)


def _check_answer(name: str, value: object) -> int:
    # bool is an int subclass but never a valid answer
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidInputError(f"{name} must be an integer between 0 and {MAX_ANSWER}")
    if value < 0 or value > MAX_ANSWER:
        raise InvalidInputError(f"{name} must be an integer between 0 and {MAX_ANSWER}")
    return value


def classify_risk(score: float) -> RiskLevel:
    """Return the risk level for a 0-100 score."""

    for upper, level in RISK_BANDS:
        if score <= upper:
            return level
    return RiskLevel.CRITICAL


def calculate_burnout_score(
    workload: int, stress: int, sleep: int, engagement: int, recovery: int
) -> ScoreResult:
    """Score one set of answers; raises ``InvalidInputError`` on bad input."""

    answers = dict(zip(QUESTIONS, (workload, stress, sleep, engagement, recovery)))
    components: Dict[str, int] = {}
    for name, value in answers.items():
        value = _check_answer(name, value)
        components[name] = MAX_ANSWER - value if name in PROTECTIVE else value

    risk_sum = sum(components.values())
    score = round((risk_sum / MAX_SUM) * 100, 2)
    return ScoreResult(
        score=score,
        risk_level=classify_risk(score),
        risk_sum=risk_sum,
        components=components,
    )


def risk_label(score: float) -> str:
    return classify_risk(score).value.title()


def recommendations(score: float) -> List[str]:
    """Advice for a team whose average score is ``score``.

    Bands are whole-number thresholds (31, 61, 81), so averages such as 30.5
    still get the low-risk advice.
    """

    if score >= 81:
        level = RiskLevel.CRITICAL
    elif score >= 61:
        level = RiskLevel.HIGH
    elif score >= 31:
        level = RiskLevel.MODERATE
    else:
        level = RiskLevel.LOW
    return list(RECOMMENDATIONS[level])


__all__ = [
    "QUESTIONS",
    "ScoreResult",
    "calculate_burnout_score",
    "classify_risk",
    "risk_label",
    "recommendations",
]
