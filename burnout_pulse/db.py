"""SQLite persistence layer for Burnout Pulse."""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterable
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from .errors import NotFoundOrUnauthorizedError, RecomputeFailedError
from .models import CallerScope, RowOutcome
from .periods import TimeWindow

Connection = sqlite3.Connection
Row = sqlite3.Row

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

# Monday of the ISO week for a stored date or timestamp.
WEEK_START_SQL = "date({column}, 'weekday 0', '-6 days')"

UNIQUE_VIOLATIONS = {"SQLITE_CONSTRAINT_UNIQUE", "SQLITE_CONSTRAINT_PRIMARYKEY"}


def is_unique_violation(exc: sqlite3.IntegrityError) -> bool:
    name = getattr(exc, "sqlite_errorname", None)
    if name is None:
        # sqlite_errorname arrived in Python 3.11
        return str(exc).startswith("UNIQUE constraint failed")
    return name in UNIQUE_VIOLATIONS


def to_db_timestamp(value: datetime) -> str:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime(TIMESTAMP_FORMAT)


def from_db_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


def _window_clause(column: str, window: Optional[TimeWindow], params: List[Any], *, as_date: bool = False) -> str:
    """Build ``AND column >= ? [AND column < ?]`` for a window."""

    if window is None:
        return ""
    if as_date:
        lower: Any = window.start.date().isoformat()
        upper: Any = window.end.date().isoformat() if window.end else None
    else:
        lower = to_db_timestamp(window.start)
        upper = to_db_timestamp(window.end) if window.end else None
    clause = f" AND {column} >= ?"
    params.append(lower)
    if upper is not None:
        clause += f" AND {column} < ?"
        params.append(upper)
    return clause


def _team_clause(column: str, team_id: Optional[int], params: List[Any]) -> str:
    if team_id is None:
        return ""
    params.append(team_id)
    return f" AND {column} = ?"


class Database:
    """Lightweight wrapper around SQLite operations.

    Built once per process and handed to each component. Every query joins
    ``teams`` and filters on ``is_active`` so inactive teams stay invisible.
    """

    def __init__(self, path: Path, timeout: float = 30.0) -> None:
        self._path = Path(path)
        self._timeout = timeout
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize()

    @property
    def path(self) -> Path:
        return self._path

    @contextmanager
    def connect(self) -> Iterator[Connection]:
        conn = sqlite3.connect(self._path, timeout=self._timeout)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
        finally:
            conn.close()

    def _initialize(self) -> None:
        with self.connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS teams (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    team_code TEXT NOT NULL UNIQUE,
                    team_name TEXT NOT NULL,
                    manager_id INTEGER,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS team_tokens (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    team_id INTEGER NOT NULL,
                    token TEXT NOT NULL UNIQUE,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    expires_at TEXT,
                    created_by INTEGER,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY(team_id) REFERENCES teams(id)
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS check_ins (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    team_id INTEGER NOT NULL,
                    token_used TEXT NOT NULL,
                    workload INTEGER NOT NULL CHECK (workload BETWEEN 0 AND 4),
                    stress INTEGER NOT NULL CHECK (stress BETWEEN 0 AND 4),
                    sleep INTEGER NOT NULL CHECK (sleep BETWEEN 0 AND 4),
                    engagement INTEGER NOT NULL CHECK (engagement BETWEEN 0 AND 4),
                    recovery INTEGER NOT NULL CHECK (recovery BETWEEN 0 AND 4),
                    burnout_score REAL NOT NULL,
                    risk_level TEXT NOT NULL,
                    week_number INTEGER NOT NULL,
                    iso_year INTEGER NOT NULL,
                    month_number INTEGER NOT NULL,
                    year INTEGER NOT NULL,
                    submitted_at TEXT NOT NULL,
                    FOREIGN KEY(team_id) REFERENCES teams(id)
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS attendance (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    team_id INTEGER NOT NULL,
                    employee_id TEXT NOT NULL,
                    date TEXT NOT NULL,
                    status TEXT NOT NULL,
                    uploaded_by INTEGER,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE(team_id, employee_id, date),
                    FOREIGN KEY(team_id) REFERENCES teams(id)
                )
                """
            )
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_check_ins_team_time ON check_ins(team_id, submitted_at)"
            )
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_attendance_team_date ON attendance(team_id, date)"
            )
            conn.commit()

    # region Teams
    def create_team(self, team_code: str, team_name: str, manager_id: Optional[int] = None) -> int:
        with self.connect() as conn:
            cursor = conn.execute(
                "INSERT INTO teams (team_code, team_name, manager_id) VALUES (?, ?, ?)",
                (team_code.strip().upper(), team_name, manager_id),
            )
            conn.commit()
            return int(cursor.lastrowid)

    def set_team_active(self, team_id: int, active: bool) -> None:
        with self.connect() as conn:
            conn.execute("UPDATE teams SET is_active = ? WHERE id = ?", (int(active), team_id))
            conn.commit()

    def get_team(self, team_id: int, manager_id: Optional[int] = None, *, restricted: bool = False) -> Optional[Row]:
        sql = "SELECT id, team_code, team_name, manager_id FROM teams WHERE id = ? AND is_active = 1"
        params: List[Any] = [team_id]
        if restricted:
            sql += " AND manager_id = ?"
            params.append(manager_id)
        with self.connect() as conn:
            return conn.execute(sql, params).fetchone()

    def require_team(self, team_id: int, scope: CallerScope) -> Row:
        """Active team visible to ``scope``; missing and foreign teams look the same."""

        team = self.get_team(team_id, scope.user_id, restricted=scope.restricted)
        if team is None:
            raise NotFoundOrUnauthorizedError()
        return team

    def get_teams_by_codes(
        self, codes: Sequence[str], manager_id: Optional[int] = None, *, restricted: bool = False
    ) -> List[Row]:
        if not codes:
            return []
        placeholders = ", ".join("?" for _ in codes)
        sql = f"SELECT id, team_code, team_name FROM teams WHERE team_code IN ({placeholders}) AND is_active = 1"
        params: List[Any] = list(codes)
        if restricted:
            sql += " AND manager_id = ?"
            params.append(manager_id)
        with self.connect() as conn:
            return conn.execute(sql, params).fetchall()

    def count_active_teams(self) -> int:
        with self.connect() as conn:
            return conn.execute("SELECT COUNT(*) FROM teams WHERE is_active = 1").fetchone()[0]

    # endregion

    # region Tokens
    def create_token(
        self,
        team_id: int,
        token: str,
        created_by: Optional[int],
        expires_at: Optional[datetime],
        created_at: datetime,
    ) -> Row:
        with self.connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO team_tokens (team_id, token, created_by, expires_at, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    team_id,
                    token,
                    created_by,
                    to_db_timestamp(expires_at) if expires_at else None,
                    to_db_timestamp(created_at),
                ),
            )
            conn.commit()
            return conn.execute("SELECT * FROM team_tokens WHERE id = ?", (cursor.lastrowid,)).fetchone()

    def get_token_with_team(self, token: str) -> Optional[Row]:
        with self.connect() as conn:
            return conn.execute(
                """
                SELECT tt.id, tt.token, tt.is_active, tt.expires_at, tt.team_id,
                       t.team_code, t.team_name, t.is_active AS team_is_active
                FROM team_tokens tt
                JOIN teams t ON t.id = tt.team_id
                WHERE tt.token = ?
                """,
                (token,),
            ).fetchone()

    def get_tokens_for_code(self, team_code: str) -> List[Row]:
        with self.connect() as conn:
            return conn.execute(
                """
                SELECT tt.id, tt.token, tt.is_active, tt.expires_at, tt.team_id,
                       t.team_code, t.team_name, t.is_active AS team_is_active
                FROM team_tokens tt
                JOIN teams t ON t.id = tt.team_id
                WHERE t.team_code = ?
                ORDER BY tt.created_at DESC, tt.id DESC
                """,
                (team_code,),
            ).fetchall()

    def list_tokens(self, team_id: int) -> List[Row]:
        with self.connect() as conn:
            return conn.execute(
                """
                SELECT tt.id, tt.token, tt.is_active, tt.expires_at, tt.created_at,
                       (SELECT COUNT(*) FROM check_ins c WHERE c.token_used = tt.token) AS usage_count
                FROM team_tokens tt
                WHERE tt.team_id = ?
                ORDER BY tt.created_at DESC, tt.id DESC
                """,
                (team_id,),
            ).fetchall()

    def deactivate_token(self, team_id: int, token_id: int) -> bool:
        with self.connect() as conn:
            cursor = conn.execute(
                "UPDATE team_tokens SET is_active = 0 WHERE id = ? AND team_id = ?",
                (token_id, team_id),
            )
            conn.commit()
            return cursor.rowcount > 0

    # endregion

    # region Check-ins
    def insert_checkin(self, record: Dict[str, Any]) -> int:
        with self.connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO check_ins
                    (team_id, token_used, workload, stress, sleep, engagement, recovery,
                     burnout_score, risk_level, week_number, iso_year, month_number, year, submitted_at)
                VALUES
                    (:team_id, :token_used, :workload, :stress, :sleep, :engagement, :recovery,
                     :burnout_score, :risk_level, :week_number, :iso_year, :month_number, :year, :submitted_at)
                """,
                record,
            )
            conn.commit()
            return int(cursor.lastrowid)

    def recompute_checkins(self, compute: Callable[[Row], Tuple[float, str]]) -> int:
        """Rewrite score and risk level for every check-in in one transaction."""

        with self.connect() as conn:
            try:
                rows = conn.execute(
                    "SELECT id, workload, stress, sleep, engagement, recovery FROM check_ins"
                ).fetchall()
                updates = []
                for row in rows:
                    score, level = compute(row)
                    updates.append((score, level, row["id"]))
                conn.executemany(
                    "UPDATE check_ins SET burnout_score = ?, risk_level = ? WHERE id = ?",
                    updates,
                )
                conn.commit()
            except Exception as exc:
                conn.rollback()
                logger.exception("Burnout recompute rolled back")
                raise RecomputeFailedError("Failed to recalculate burnout scores") from exc
            return len(updates)

    def checkin_overview(self, team_id: Optional[int], window: Optional[TimeWindow]) -> Row:
        params: List[Any] = []
        team_sql = _team_clause("c.team_id", team_id, params)
        window_sql = _window_clause("c.submitted_at", window, params)
        with self.connect() as conn:
            return conn.execute(
                f"""
                SELECT AVG(c.burnout_score) AS avg_burnout,
                       COUNT(*) AS total_checkins,
                       COUNT(DISTINCT date(c.submitted_at)) AS active_days,
                       MAX(c.submitted_at) AS last_checkin_at
                FROM check_ins c
                JOIN teams t ON t.id = c.team_id
                WHERE t.is_active = 1{team_sql}{window_sql}
                """,
                params,
            ).fetchone()

    def risk_distribution(self, team_id: Optional[int], window: Optional[TimeWindow]) -> List[Row]:
        params: List[Any] = []
        team_sql = _team_clause("c.team_id", team_id, params)
        window_sql = _window_clause("c.submitted_at", window, params)
        with self.connect() as conn:
            return conn.execute(
                f"""
                SELECT c.risk_level, COUNT(*) AS count, AVG(c.burnout_score) AS avg_score
                FROM check_ins c
                JOIN teams t ON t.id = c.team_id
                WHERE t.is_active = 1{team_sql}{window_sql}
                GROUP BY c.risk_level
                """,
                params,
            ).fetchall()

    def checkin_trend(self, team_id: Optional[int], granularity: str, limit: int) -> List[Row]:
        """Most recent ``limit`` period buckets, newest first."""

        if granularity == "week":
            period_year, period = "c.iso_year", "c.week_number"
        else:
            period_year, period = "c.year", "c.month_number"
        params: List[Any] = []
        team_sql = _team_clause("c.team_id", team_id, params)
        params.append(limit)
        with self.connect() as conn:
            return conn.execute(
                f"""
                SELECT {period_year} AS year, {period} AS period,
                       AVG(c.burnout_score) AS avg_burnout, COUNT(*) AS checkin_count
                FROM check_ins c
                JOIN teams t ON t.id = c.team_id
                WHERE t.is_active = 1{team_sql}
                GROUP BY {period_year}, {period}
                ORDER BY {period_year} DESC, {period} DESC
                LIMIT ?
                """,
                params,
            ).fetchall()

    def daily_activity(self, team_id: Optional[int], window: Optional[TimeWindow]) -> List[Row]:
        params: List[Any] = []
        team_sql = _team_clause("c.team_id", team_id, params)
        window_sql = _window_clause("c.submitted_at", window, params)
        with self.connect() as conn:
            return conn.execute(
                f"""
                SELECT date(c.submitted_at) AS date,
                       COUNT(*) AS checkin_count,
                       AVG(c.burnout_score) AS avg_burnout
                FROM check_ins c
                JOIN teams t ON t.id = c.team_id
                WHERE t.is_active = 1{team_sql}{window_sql}
                GROUP BY date(c.submitted_at)
                ORDER BY date ASC
                """,
                params,
            ).fetchall()

    def weekly_burnout(self, team_id: int, window: Optional[TimeWindow]) -> List[Row]:
        week = WEEK_START_SQL.format(column="c.submitted_at")
        params: List[Any] = [team_id]
        window_sql = _window_clause("c.submitted_at", window, params)
        with self.connect() as conn:
            return conn.execute(
                f"""
                SELECT {week} AS week_start,
                       AVG(c.burnout_score) AS avg_burnout,
                       COUNT(*) AS checkin_count
                FROM check_ins c
                WHERE c.team_id = ?{window_sql}
                GROUP BY week_start
                """,
                params,
            ).fetchall()

    def team_rankings(self, window: Optional[TimeWindow]) -> List[Row]:
        params: List[Any] = []
        window_sql = _window_clause("c.submitted_at", window, params)
        with self.connect() as conn:
            return conn.execute(
                f"""
                SELECT t.id, t.team_code, t.team_name,
                       AVG(c.burnout_score) AS avg_burnout,
                       COUNT(c.id) AS checkin_count,
                       MAX(c.submitted_at) AS last_checkin_at
                FROM teams t
                LEFT JOIN check_ins c ON c.team_id = t.id{window_sql}
                WHERE t.is_active = 1
                GROUP BY t.id, t.team_code, t.team_name
                ORDER BY COALESCE(AVG(c.burnout_score), 0) DESC, t.team_name ASC
                """,
                params,
            ).fetchall()

    # endregion

    # region Attendance
    def upsert_attendance(self, records: Iterable[Dict[str, Any]]) -> List[RowOutcome]:
        """Write rows sequentially, keyed on (team, employee, date).

        An existing key has its status and uploader overwritten. A unique
        constraint race with a concurrent upload is reported as skipped; any
        other integrity failure rolls the whole batch back.
        """

        outcomes: List[RowOutcome] = []
        with self.connect() as conn:
            try:
                for record in records:
                    try:
                        existing = conn.execute(
                            "SELECT 1 FROM attendance WHERE team_id = ? AND employee_id = ? AND date = ?",
                            (record["team_id"], record["employee_id"], record["date"]),
                        ).fetchone()
                        conn.execute(
                            """
                            INSERT INTO attendance (team_id, employee_id, date, status, uploaded_by)
                            VALUES (:team_id, :employee_id, :date, :status, :uploaded_by)
                            ON CONFLICT(team_id, employee_id, date) DO UPDATE SET
                                status=excluded.status,
                                uploaded_by=excluded.uploaded_by
                            """,
                            record,
                        )
                    except sqlite3.IntegrityError as exc:
                        if not is_unique_violation(exc):
                            raise
                        logger.info(
                            "Skipped attendance row for team %s on %s after concurrent write",
                            record["team_id"],
                            record["date"],
                        )
                        outcomes.append(RowOutcome.SKIPPED)
                        continue
                    outcomes.append(RowOutcome.UPDATED if existing else RowOutcome.INSERTED)
                conn.commit()
            except Exception:
                conn.rollback()
                raise
        return outcomes

    def weekly_absence(self, team_id: int, window: Optional[TimeWindow]) -> List[Row]:
        week = WEEK_START_SQL.format(column="a.date")
        params: List[Any] = [team_id]
        window_sql = _window_clause("a.date", window, params, as_date=True)
        with self.connect() as conn:
            return conn.execute(
                f"""
                SELECT {week} AS week_start,
                       COUNT(*) AS total_records,
                       SUM(CASE WHEN a.status = 'Absent' THEN 1 ELSE 0 END) AS absent_records
                FROM attendance a
                WHERE a.team_id = ?{window_sql}
                GROUP BY week_start
                """,
                params,
            ).fetchall()

    def attendance_stats(self, team_id: int, window: Optional[TimeWindow]) -> Row:
        params: List[Any] = [team_id]
        window_sql = _window_clause("a.date", window, params, as_date=True)
        with self.connect() as conn:
            return conn.execute(
                f"""
                SELECT COUNT(*) AS total_records,
                       COUNT(DISTINCT a.employee_id) AS unique_employees,
                       COUNT(DISTINCT a.date) AS days_covered,
                       SUM(CASE WHEN a.status = 'Present' THEN 1 ELSE 0 END) AS present_count,
                       SUM(CASE WHEN a.status = 'Absent' THEN 1 ELSE 0 END) AS absent_count,
                       SUM(CASE WHEN a.status = 'Leave' THEN 1 ELSE 0 END) AS leave_count,
                       SUM(CASE WHEN a.status = 'Sick' THEN 1 ELSE 0 END) AS sick_count
                FROM attendance a
                WHERE a.team_id = ?{window_sql}
                """,
                params,
            ).fetchone()

    def list_attendance(
        self,
        team_id: int,
        *,
        employee_id: Optional[str] = None,
        window: Optional[TimeWindow] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> Tuple[int, List[Row]]:
        params: List[Any] = [team_id]
        where = "a.team_id = ?"
        if employee_id:
            where += " AND a.employee_id = ?"
            params.append(employee_id)
        where += _window_clause("a.date", window, params, as_date=True)
        with self.connect() as conn:
            total = conn.execute(f"SELECT COUNT(*) FROM attendance a WHERE {where}", params).fetchone()[0]
            rows = conn.execute(
                f"""
                SELECT a.id, a.employee_id, a.date, a.status, a.created_at, a.uploaded_by
                FROM attendance a
                WHERE {where}
                ORDER BY a.date DESC, a.employee_id ASC
                LIMIT ? OFFSET ?
                """,
                [*params, limit, offset],
            ).fetchall()
        return total, rows

    def count_distinct_employees(self) -> int:
        with self.connect() as conn:
            return conn.execute(
                """
                SELECT COUNT(DISTINCT a.employee_id)
                FROM attendance a
                JOIN teams t ON t.id = a.team_id
                WHERE t.is_active = 1 AND TRIM(a.employee_id) <> ''
                """
            ).fetchone()[0]

    # endregion


__all__ = ["Database", "to_db_timestamp", "from_db_timestamp", "is_unique_violation"]
