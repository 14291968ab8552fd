"""Anonymous check-in token gate and token lifecycle."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from .db import Database, Row, from_db_timestamp
from .errors import InvalidInputError, NotFoundOrUnauthorizedError, TokenInvalidError
from .models import CallerScope, CheckinToken, Team

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def is_usable(row: Row, now: datetime) -> bool:
    """All conditions a token row must meet to admit a submission."""

    if not row["is_active"] or not row["team_is_active"]:
        return False
    expires_at = from_db_timestamp(row["expires_at"])
    return expires_at is None or expires_at > now


def _team_from_row(row: Row) -> Team:
    return Team(id=row["team_id"], team_code=row["team_code"], team_name=row["team_name"])


class TokenGate:
    """Read-only gate, evaluated on every call with the caller's ``now``."""

    def __init__(self, database: Database) -> None:
        self.database = database

    def validate(self, token: str, now: datetime) -> Team:
        """Return the owning team or raise ``TokenInvalidError``."""

        row = self.database.get_token_with_team(token) if token else None
        if row is None or not is_usable(row, now):
            raise TokenInvalidError()
        return _team_from_row(row)

    def latest_for_team_code(self, team_code: str, now: datetime) -> str:
        """Newest usable token for a team code."""

        for row in self.database.get_tokens_for_code(team_code.strip().upper()):
            if is_usable(row, now):
                return row["token"]
        raise TokenInvalidError()


class TokenManager:
    """Issues, lists and revokes team tokens for staff callers."""

    def __init__(self, database: Database, ttl_days: int = 365, clock: Clock = utc_now) -> None:
        self.database = database
        self.ttl_days = ttl_days
        self.clock = clock

    def issue(self, team_id: int, scope: CallerScope, expires_at: Optional[datetime] = None) -> CheckinToken:
        self.database.require_team(team_id, scope)
        now = self.clock()
        if expires_at is None:
            expires_at = now + timedelta(days=self.ttl_days)
        elif expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        if expires_at <= now:
            raise InvalidInputError("expires_at must be in the future")

        row = self.database.create_token(team_id, uuid.uuid4().hex, scope.user_id, expires_at, now)
        logger.info("Issued check-in token %s for team %s", row["id"], team_id)
        return CheckinToken(
            id=row["id"],
            token=row["token"],
            team_id=row["team_id"],
            is_active=bool(row["is_active"]),
            expires_at=from_db_timestamp(row["expires_at"]),
            created_by=row["created_by"],
            created_at=from_db_timestamp(row["created_at"]),
        )

    def list(self, team_id: int, scope: CallerScope) -> List[Dict[str, Any]]:
        self.database.require_team(team_id, scope)
        now = self.clock()
        tokens = []
        for row in self.database.list_tokens(team_id):
            expires_at = from_db_timestamp(row["expires_at"])
            if not row["is_active"]:
                state = "revoked"
            elif expires_at is not None and expires_at <= now:
                state = "expired"
            else:
                state = "active"
            tokens.append(
                {
                    "id": row["id"],
                    "token": row["token"],
                    "state": state,
                    "expires_at": row["expires_at"],
                    "created_at": row["created_at"],
                    "usage_count": row["usage_count"],
                }
            )
        return tokens

    def revoke(self, team_id: int, token_id: int, scope: CallerScope) -> None:
        self.database.require_team(team_id, scope)
        if not self.database.deactivate_token(team_id, token_id):
            raise NotFoundOrUnauthorizedError()
        logger.info("Revoked check-in token %s for team %s", token_id, team_id)


__all__ = ["TokenGate", "TokenManager", "is_usable", "utc_now"]
