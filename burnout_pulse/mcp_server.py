"""MCP server exposing Burnout Pulse dashboard tools."""

from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime
from typing import Optional

from mcp.server.fastmcp import FastMCP

from .config import load_settings
from .db import Database
from .errors import InvalidInputError, TokenInvalidError
from .models import CallerScope, Role
from .periods import TimeWindow
from .service import BurnoutPulseService

logger = logging.getLogger(__name__)

# Tools run on behalf of the operator who launched the server.
OPERATOR_SCOPE = CallerScope(user_id=None, role=Role.ADMIN)


def _parse_day(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError as exc:
        raise InvalidInputError(f"invalid date {value!r} (expected YYYY-MM-DD)") from exc


def build_mcp(service: BurnoutPulseService) -> FastMCP:
    """Register read-only tools; database work runs in worker threads off the event loop."""

    mcp = FastMCP("burnout-pulse")

    def window(period: Optional[str], start_date: Optional[str], end_date: Optional[str], default: str) -> TimeWindow:
        return service.window(period, _parse_day(start_date), _parse_day(end_date), default=default)

    @mcp.tool()
    async def get_team_overview(
        team_id: int,
        period: str = "week",
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> dict:
        """Return average burnout, risk distribution and trend for a team."""

        return await asyncio.to_thread(service.team_overview, team_id, OPERATOR_SCOPE, period, window(period, start_date, end_date, "week"))

    @mcp.tool()
    async def get_team_correlation(
        team_id: int,
        period: str = "month",
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> dict:
        """Return weekly absence rate against burnout with Pearson's r."""

        return await asyncio.to_thread(service.team_correlation, team_id, OPERATOR_SCOPE, window(period, start_date, end_date, "month"))

    @mcp.tool()
    async def get_team_activity(
        team_id: int,
        period: str = "month",
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> dict:
        """Return daily check-in counts and average burnout for a team."""

        return await asyncio.to_thread(service.team_activity, team_id, OPERATOR_SCOPE, window(period, start_date, end_date, "month"))

    @mcp.tool()
    async def get_team_recommendations(team_id: int, period: str = "week") -> dict:
        """Return the risk label and suggested actions for a team."""

        return await asyncio.to_thread(service.team_recommendations, team_id, OPERATOR_SCOPE, period, window(period, None, None, "week"))

    @mcp.tool()
    async def get_attendance_stats(team_id: int, period: str = "month") -> dict:
        """Return attendance totals and absence rate for a team."""

        return await asyncio.to_thread(service.attendance_stats, team_id, window(period, None, None, "month"), OPERATOR_SCOPE)

    @mcp.tool()
    async def get_organization_dashboard(
        period: str = "week",
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> dict:
        """Return the cross-team dashboard ranked by average burnout."""

        return await asyncio.to_thread(service.organization, period, window(period, start_date, end_date, "week"))

    @mcp.tool()
    async def verify_checkin_token(token: str) -> dict:
        """Report whether a check-in token can currently accept submissions."""

        try:
            return await asyncio.to_thread(service.verify_token, token)
        except TokenInvalidError as exc:
            return {"valid": False, "error": str(exc)}

    return mcp


def main() -> None:
    settings = load_settings()
    logging.basicConfig(level=settings.log_level.upper())
    service = BurnoutPulseService(settings, Database(settings.database_path))
    logger.info("Starting Burnout Pulse MCP server")
    build_mcp(service).run()


__all__ = ["build_mcp", "main", "OPERATOR_SCOPE"]


if __name__ == "__main__":  # pragma: no cover
    main()
