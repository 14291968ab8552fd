"""Error taxonomy shared by the Burnout Pulse components."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence, Union


class BurnoutPulseError(Exception):
    """Base class for every error raised by Burnout Pulse."""


class InvalidInputError(BurnoutPulseError, ValueError):
    """Raised when scoring or period inputs are malformed or out of range."""


class TokenInvalidError(BurnoutPulseError):
    """Raised for any unusable check-in token.

    The message never says which condition failed.
    """

    def __init__(self) -> None:
        super().__init__("Invalid or expired token")


class EmptyOrUnparseableError(BurnoutPulseError):
    """Raised when an uploaded attendance file cannot be read or has no rows."""


class NotFoundOrUnauthorizedError(BurnoutPulseError):
    """Raised when a team is missing, inactive or outside the caller's scope."""

    def __init__(self) -> None:
        super().__init__("Team not found or access denied")


class InternalError(BurnoutPulseError):
    """Unexpected storage failure; the message is safe to show to callers."""


class RecomputeFailedError(InternalError):
    """The bulk burnout recompute was rolled back."""


@dataclass(frozen=True, slots=True)
class RowValidationError:
    row: int
    message: str

    def __str__(self) -> str:
        return f"Row {self.row}: {self.message}"


@dataclass(frozen=True, slots=True)
class TeamResolutionError:
    code: str

    def __str__(self) -> str:
        return f"Team {self.code} not found or access denied"


BatchError = Union[RowValidationError, TeamResolutionError]


class AttendanceRejectedError(BurnoutPulseError):
    """The whole attendance batch was rejected before anything was written."""

    def __init__(self, errors: Sequence[BatchError]) -> None:
        super().__init__(f"{len(errors)} validation error(s) in attendance file")
        self.errors: List[BatchError] = list(errors)

    @property
    def messages(self) -> List[str]:
        return [str(error) for error in self.errors]


__all__ = [
    "BurnoutPulseError",
    "InvalidInputError",
    "TokenInvalidError",
    "EmptyOrUnparseableError",
    "NotFoundOrUnauthorizedError",
    "InternalError",
    "RecomputeFailedError",
    "RowValidationError",
    "TeamResolutionError",
    "BatchError",
    "AttendanceRejectedError",
]
