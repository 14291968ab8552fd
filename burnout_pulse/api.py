"""FastAPI application exposing the Burnout Pulse REST API."""

from __future__ import annotations

import logging
import time
from datetime import date
from typing import Any, Callable, Dict, Literal, Optional

from fastapi import Body, Depends, FastAPI, File, Header, HTTPException, Request, Response, UploadFile, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .config import Settings, load_settings
from .db import Database
from .errors import (
    AttendanceRejectedError,
    EmptyOrUnparseableError,
    InternalError,
    InvalidInputError,
    NotFoundOrUnauthorizedError,
    TokenInvalidError,
)
from .models import CallerScope, Role
from .periods import TimeWindow
from .schemas import CheckinSubmission, TokenRequest
from .service import BurnoutPulseService
from .tokens import Clock, utc_now

logger = logging.getLogger(__name__)

Period = Literal["week", "month"]


def _log_request(request: Request, status_code: int, start: float) -> None:
    elapsed_ms = (time.perf_counter() - start) * 1000
    # route template only: concrete paths can carry check-in tokens
    route = request.scope.get("route")
    path = getattr(route, "path", "<unmatched>")
    logger.info("%s %s -> %s (%.0fms)", request.method, path, status_code, elapsed_ms)


def create_app(
    settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    clock: Clock = utc_now,
) -> FastAPI:
    settings = settings or load_settings()
    database = database or Database(settings.database_path)
    service = BurnoutPulseService(settings, database, clock)

    app = FastAPI(title="Burnout Pulse API", version="1.0.0")

    # region Middleware and error mapping
    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            # the catch-all handler answers outside this middleware
            _log_request(request, 500, start)
            raise
        _log_request(request, response.status_code, start)
        return response

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": "Invalid request", "errors": jsonable_encoder(exc.errors())})

    @app.exception_handler(InvalidInputError)
    async def invalid_input_handler(request: Request, exc: InvalidInputError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": str(exc)})

    @app.exception_handler(TokenInvalidError)
    async def token_invalid_handler(request: Request, exc: TokenInvalidError) -> JSONResponse:
        return JSONResponse(status_code=401, content={"error": str(exc)})

    @app.exception_handler(EmptyOrUnparseableError)
    async def unparseable_handler(request: Request, exc: EmptyOrUnparseableError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": str(exc)})

    @app.exception_handler(AttendanceRejectedError)
    async def rejected_handler(request: Request, exc: AttendanceRejectedError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": "Validation errors", "errors": exc.messages})

    @app.exception_handler(NotFoundOrUnauthorizedError)
    async def not_found_handler(request: Request, exc: NotFoundOrUnauthorizedError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"error": str(exc)})

    @app.exception_handler(InternalError)
    async def internal_handler(request: Request, exc: InternalError) -> JSONResponse:
        logger.error("Internal error: %s", exc)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    @app.exception_handler(Exception)
    async def unexpected_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error")
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    # endregion

    # region Dependencies
    async def verify_api_key(x_api_key: Optional[str] = Header(None, alias="X-API-Key")) -> None:
        if not x_api_key or x_api_key != settings.api_key:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid api key")

    async def caller_scope(
        x_caller_role: Optional[str] = Header(None, alias="X-Caller-Role"),
        x_caller_id: Optional[int] = Header(None, alias="X-Caller-Id"),
    ) -> CallerScope:
        try:
            role = Role((x_caller_role or "").strip().lower())
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="unknown caller role") from exc
        return CallerScope(user_id=x_caller_id, role=role)

    def require_roles(*roles: Role) -> Callable[..., Any]:
        async def dependency(scope: CallerScope = Depends(caller_scope)) -> CallerScope:
            if scope.role not in roles:
                raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="insufficient permissions")
            return scope

        return dependency

    def window_dependency(default: str) -> Callable[..., TimeWindow]:
        def dependency(
            period: Optional[Period] = None,
            start_date: Optional[date] = None,
            end_date: Optional[date] = None,
        ) -> TimeWindow:
            return service.window(period, start_date, end_date, default=default)

        return dependency

    def get_service() -> BurnoutPulseService:
        return service

    staff = [Depends(verify_api_key)]
    dashboard_roles = require_roles(Role.MANAGER, Role.ADMIN, Role.HR)
    writer_roles = require_roles(Role.MANAGER, Role.ADMIN)
    # endregion

    @app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    # region Public check-in
    @app.get("/api/public/checkin/by-team/{team_code}")
    def checkin_link_for_team(team_code: str, svc: BurnoutPulseService = Depends(get_service)) -> Dict[str, str]:
        try:
            return svc.link_for_team(team_code)
        except TokenInvalidError:
            raise HTTPException(status_code=404, detail="No active check-in link for this team") from None

    @app.get("/api/public/checkin/{token}")
    def verify_checkin_token(token: str, svc: BurnoutPulseService = Depends(get_service)) -> Any:
        try:
            return svc.verify_token(token)
        except TokenInvalidError as exc:
            return JSONResponse(status_code=404, content={"valid": False, "error": str(exc)})

    @app.post("/api/public/checkin/{token}", status_code=status.HTTP_201_CREATED)
    def submit_checkin(
        token: str,
        submission: CheckinSubmission,
        svc: BurnoutPulseService = Depends(get_service),
    ) -> Dict[str, Any]:
        result = svc.submit_checkin(token, submission)
        return {"message": "Check-in submitted successfully", **result}

    # endregion

    # region Tokens
    @app.post("/api/teams/{team_id}/tokens", status_code=status.HTTP_201_CREATED, dependencies=staff)
    def issue_token(
        team_id: int,
        request: Optional[TokenRequest] = Body(None),
        scope: CallerScope = Depends(writer_roles),
        svc: BurnoutPulseService = Depends(get_service),
    ) -> Dict[str, Any]:
        return svc.issue_token(team_id, scope, request.expires_at if request else None)

    @app.get("/api/teams/{team_id}/tokens", dependencies=staff)
    def list_tokens(
        team_id: int,
        scope: CallerScope = Depends(writer_roles),
        svc: BurnoutPulseService = Depends(get_service),
    ) -> Dict[str, Any]:
        return svc.list_tokens(team_id, scope)

    @app.delete("/api/teams/{team_id}/tokens/{token_id}", dependencies=staff)
    def revoke_token(
        team_id: int,
        token_id: int,
        scope: CallerScope = Depends(writer_roles),
        svc: BurnoutPulseService = Depends(get_service),
    ) -> Response:
        svc.revoke_token(team_id, token_id, scope)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    # endregion

    # region Attendance
    @app.post("/api/attendance/upload", dependencies=staff)
    def upload_attendance(
        file: UploadFile = File(...),
        scope: CallerScope = Depends(writer_roles),
        svc: BurnoutPulseService = Depends(get_service),
    ) -> Dict[str, Any]:
        content = file.file.read(settings.max_upload_bytes + 1)
        if len(content) > settings.max_upload_bytes:
            raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail="File too large")
        return svc.upload_attendance(file.filename or "", content, scope)

    @app.get("/api/attendance/template", dependencies=staff)
    def attendance_template(svc: BurnoutPulseService = Depends(get_service)) -> Dict[str, Any]:
        return svc.attendance_template()

    @app.get("/api/attendance/team/{team_id}/stats", dependencies=staff)
    def attendance_stats(
        team_id: int,
        window: TimeWindow = Depends(window_dependency("month")),
        scope: CallerScope = Depends(dashboard_roles),
        svc: BurnoutPulseService = Depends(get_service),
    ) -> Dict[str, Any]:
        return svc.attendance_stats(team_id, window, scope)

    @app.get("/api/attendance/team/{team_id}/records", dependencies=staff)
    def attendance_records(
        team_id: int,
        employee_id: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        limit: int = 100,
        offset: int = 0,
        scope: CallerScope = Depends(writer_roles),
        svc: BurnoutPulseService = Depends(get_service),
    ) -> Dict[str, Any]:
        window = svc.window(None, start_date, end_date) if start_date or end_date else None
        return svc.attendance_records(
            team_id, scope, employee_id=employee_id, window=window, limit=limit, offset=offset
        )

    # endregion

    # region Dashboards
    @app.get("/api/dashboard/team/{team_id}/overview", dependencies=staff)
    def team_overview(
        team_id: int,
        period: Period = "week",
        window: TimeWindow = Depends(window_dependency("week")),
        scope: CallerScope = Depends(dashboard_roles),
        svc: BurnoutPulseService = Depends(get_service),
    ) -> Dict[str, Any]:
        return svc.team_overview(team_id, scope, period, window)

    @app.get("/api/dashboard/team/{team_id}/correlation", dependencies=staff)
    def team_correlation(
        team_id: int,
        window: TimeWindow = Depends(window_dependency("month")),
        scope: CallerScope = Depends(dashboard_roles),
        svc: BurnoutPulseService = Depends(get_service),
    ) -> Dict[str, Any]:
        return svc.team_correlation(team_id, scope, window)

    @app.get("/api/dashboard/team/{team_id}/activity", dependencies=staff)
    def team_activity(
        team_id: int,
        window: TimeWindow = Depends(window_dependency("month")),
        scope: CallerScope = Depends(dashboard_roles),
        svc: BurnoutPulseService = Depends(get_service),
    ) -> Dict[str, Any]:
        return svc.team_activity(team_id, scope, window)

    @app.get("/api/manager/recommendations/{team_id}", dependencies=staff)
    def team_recommendations(
        team_id: int,
        period: Period = "week",
        window: TimeWindow = Depends(window_dependency("week")),
        scope: CallerScope = Depends(writer_roles),
        svc: BurnoutPulseService = Depends(get_service),
    ) -> Dict[str, Any]:
        return svc.team_recommendations(team_id, scope, period, window)

    @app.get("/api/hr/dashboard", dependencies=staff)
    def organization_dashboard(
        period: Period = "week",
        window: TimeWindow = Depends(window_dependency("week")),
        _: CallerScope = Depends(require_roles(Role.HR, Role.ADMIN)),
        svc: BurnoutPulseService = Depends(get_service),
    ) -> Dict[str, Any]:
        return svc.organization(period, window)

    # endregion

    @app.post("/api/admin/maintenance/recalculate-burnout", dependencies=staff)
    def recalculate_burnout(
        _: CallerScope = Depends(require_roles(Role.ADMIN)),
        svc: BurnoutPulseService = Depends(get_service),
    ) -> Dict[str, Any]:
        return svc.recalculate_burnout()

    return app


__all__ = ["create_app"]
