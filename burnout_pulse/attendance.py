"""Attendance file reconciliation.

Uploads go through parse, normalise, per-row validation, team resolution and
finally an idempotent upsert. Any validation or team error rejects the whole
batch before a single row is written; a unique-key race during the upsert
only marks that row as skipped.
"""

from __future__ import annotations

import csv
import logging
import os
import re
import tempfile
import zipfile
from collections import Counter
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple
from xml.etree.ElementTree import ParseError

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from .db import Database
from .errors import (
    AttendanceRejectedError,
    BatchError,
    EmptyOrUnparseableError,
    RowValidationError,
    TeamResolutionError,
)
from .models import AttendanceRecord, AttendanceStatus, CallerScope, RowOutcome

logger = logging.getLogger(__name__)

CSV_EXTENSIONS = {".csv"}
SPREADSHEET_EXTENSIONS = {".xlsx", ".xlsm"}
VALID_STATUSES = tuple(status.value for status in AttendanceStatus)
# Spreadsheet row 1 is the header and rows are 1-indexed.
ROW_OFFSET = 2

_KEY_SEPARATORS = re.compile(r"[\s_]+")

TEMPLATE_ROWS = [
    {"employee_id": "E1", "team_id": "TEAM-A", "date": "2025-01-15", "status": "Present"},
    {"employee_id": "E2", "team_id": "TEAM-A", "date": "2025-01-15", "status": "Absent"},
    {"employee_id": "E1", "team_id": "TEAM-A", "date": "2025-01-16", "status": "Present"},
]
TEMPLATE_INSTRUCTIONS = {
    "employee_id": "Unique identifier for employee (string)",
    "team_id": "Team code (must match existing team)",
    "date": "Date in YYYY-MM-DD format",
    "status": "One of: " + ", ".join(VALID_STATUSES),
}


@dataclass(slots=True)
class ReconcileSummary:
    teams_in_file: List[str]
    total_records: int
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "teams_in_file": list(self.teams_in_file),
            "summary": {
                "total_records": self.total_records,
                "inserted": self.inserted,
                "updated": self.updated,
                "skipped": self.skipped,
                "errors": self.errors,
            },
        }


@dataclass(slots=True)
class ValidatedBatch:
    records: List[Tuple[str, AttendanceRecord]] = field(default_factory=list)
    team_codes: List[str] = field(default_factory=list)
    errors: List[BatchError] = field(default_factory=list)


# region Parsing
@contextmanager
def staged_upload(content: bytes, suffix: str, upload_dir: Optional[Path] = None) -> Iterator[Path]:
    """Write upload bytes to a temporary file that is always removed afterwards."""

    if upload_dir is not None:
        upload_dir.mkdir(parents=True, exist_ok=True)
    fd, name = tempfile.mkstemp(suffix=suffix, dir=upload_dir)
    path = Path(name)
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(content)
        yield path
    finally:
        path.unlink(missing_ok=True)


def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _read_csv(path: Path) -> List[Dict[str, Any]]:
    try:
        with path.open(newline="", encoding="utf-8-sig") as handle:
            reader = csv.DictReader(handle)
            return [dict(row) for row in reader]
    except (UnicodeDecodeError, csv.Error) as exc:
        raise EmptyOrUnparseableError("File could not be parsed") from exc


def _read_spreadsheet(path: Path) -> List[Dict[str, Any]]:
    # read-only workbooks parse sheet XML lazily, so iteration can fail too
    try:
        workbook = load_workbook(path, read_only=True, data_only=True)
        try:
            sheet = workbook.worksheets[0]
            rows = sheet.iter_rows(values_only=True)
            header = next(rows, None)
            if header is None:
                return []
            keys = [_cell_text(cell) for cell in header]
            return [
                {key: _cell_text(value) for key, value in zip(keys, row) if key}
                for row in rows
            ]
        finally:
            workbook.close()
    except (InvalidFileException, zipfile.BadZipFile, ParseError, KeyError, ValueError, OSError) as exc:
        raise EmptyOrUnparseableError("File could not be parsed") from exc


def parse_upload(path: Path, filename: str) -> List[Dict[str, Any]]:
    """Read the raw rows of a delimited-text or spreadsheet attendance file."""

    extension = Path(filename).suffix.lower()
    if extension in CSV_EXTENSIONS:
        rows = _read_csv(path)
    elif extension in SPREADSHEET_EXTENSIONS:
        rows = _read_spreadsheet(path)
    else:
        raise EmptyOrUnparseableError("Unsupported file format. Upload a CSV or XLSX file")
    if not rows:
        raise EmptyOrUnparseableError("File is empty")
    return rows


# endregion


# region Normalisation and validation
def normalize_key(key: Any) -> str:
    return _KEY_SEPARATORS.sub("_", str(key or "").strip().lower())


def is_blank(record: Dict[str, Any]) -> bool:
    return all(value is None or str(value).strip() == "" for value in record.values())


def normalize_rows(rows: Iterable[Dict[str, Any]]) -> List[Dict[str, str]]:
    """Canonicalise column names and drop rows whose cells are all empty."""

    normalized: List[Dict[str, str]] = []
    for row in rows:
        record = {
            normalize_key(key): _cell_text(value)
            for key, value in row.items()
            if key is not None
        }
        if not is_blank(record):
            normalized.append(record)
    return normalized


def _parse_date(value: str) -> Optional[date]:
    try:
        return datetime.strptime(value.strip(), "%Y-%m-%d").date()
    except ValueError:
        return None


def validate_row(record: Dict[str, str], row_number: int) -> Tuple[Optional[Tuple[str, AttendanceRecord]], List[RowValidationError]]:
    """Check one normalised row; returns the team code and record when valid."""

    errors: List[RowValidationError] = []
    employee_id = (record.get("employee_id") or "").strip()
    team_code = (record.get("team_id") or "").strip().upper()
    raw_date = (record.get("date") or "").strip()
    status = (record.get("status") or "").strip()

    if not employee_id:
        errors.append(RowValidationError(row_number, "employee_id is required"))
    if not team_code:
        errors.append(RowValidationError(row_number, "team_id is required"))

    parsed_date: Optional[date] = None
    if not raw_date:
        errors.append(RowValidationError(row_number, "date is required"))
    else:
        parsed_date = _parse_date(raw_date)
        if parsed_date is None:
            errors.append(RowValidationError(row_number, "invalid date format (expected YYYY-MM-DD)"))

    if not status:
        errors.append(RowValidationError(row_number, "status is required"))
    elif status not in VALID_STATUSES:
        errors.append(
            RowValidationError(row_number, "status must be one of: " + ", ".join(VALID_STATUSES))
        )

    if errors:
        return None, errors
    # team_id is filled in once the code has been resolved
    record_obj = AttendanceRecord(
        team_id=0,
        employee_id=employee_id,
        date=parsed_date,
        status=AttendanceStatus(status),
    )
    return (team_code, record_obj), errors


def validate_rows(records: Sequence[Dict[str, str]]) -> ValidatedBatch:
    """Validate every row before anything else happens; errors never short-circuit."""

    batch = ValidatedBatch()
    for index, record in enumerate(records):
        valid, errors = validate_row(record, index + ROW_OFFSET)
        if errors:
            batch.errors.extend(errors)
            continue
        team_code, attendance = valid
        if team_code not in batch.team_codes:
            batch.team_codes.append(team_code)
        batch.records.append((team_code, attendance))
    return batch


def fold_outcomes(outcomes: Iterable[RowOutcome]) -> Dict[RowOutcome, int]:
    counts = Counter(outcomes)
    return {outcome: counts.get(outcome, 0) for outcome in RowOutcome}


# endregion


class AttendanceReconciler:
    """Turns an uploaded attendance file into upserted attendance rows."""

    def __init__(self, database: Database, upload_dir: Optional[Path] = None) -> None:
        self.database = database
        self.upload_dir = upload_dir

    def reconcile_upload(self, filename: str, content: bytes, scope: CallerScope) -> ReconcileSummary:
        """Stage the uploaded bytes on disk, reconcile them, then delete the file."""

        suffix = Path(filename).suffix.lower()
        with staged_upload(content, suffix, self.upload_dir) as path:
            rows = parse_upload(path, filename)
        return self.reconcile(rows, scope)

    def resolve_teams(self, codes: Sequence[str], scope: CallerScope) -> Tuple[Dict[str, int], List[TeamResolutionError]]:
        rows = self.database.get_teams_by_codes(codes, scope.user_id, restricted=scope.restricted)
        team_ids = {row["team_code"]: row["id"] for row in rows}
        errors = [TeamResolutionError(code) for code in codes if code not in team_ids]
        return team_ids, errors

    def reconcile(self, raw_rows: Iterable[Dict[str, Any]], scope: CallerScope) -> ReconcileSummary:
        records = normalize_rows(raw_rows)
        if not records:
            raise EmptyOrUnparseableError("File is empty")

        batch = validate_rows(records)
        team_ids, team_errors = self.resolve_teams(batch.team_codes, scope)
        errors: List[BatchError] = [*batch.errors, *team_errors]
        if errors:
            logger.info("Rejected attendance upload with %s error(s)", len(errors))
            raise AttendanceRejectedError(errors)

        payload = []
        for team_code, record in batch.records:
            record.team_id = team_ids[team_code]
            record.uploaded_by = scope.user_id
            payload.append(
                {
                    "team_id": record.team_id,
                    "employee_id": record.employee_id,
                    "date": record.date.isoformat(),
                    "status": record.status.value,
                    "uploaded_by": record.uploaded_by,
                }
            )

        counts = fold_outcomes(self.database.upsert_attendance(payload))
        summary = ReconcileSummary(
            teams_in_file=list(batch.team_codes),
            total_records=len(records),
            inserted=counts[RowOutcome.INSERTED],
            updated=counts[RowOutcome.UPDATED],
            skipped=counts[RowOutcome.SKIPPED],
        )
        logger.info(
            "Attendance upload: %s inserted, %s updated, %s skipped",
            summary.inserted,
            summary.updated,
            summary.skipped,
        )
        return summary


def template() -> Dict[str, Any]:
    return {"template": [dict(row) for row in TEMPLATE_ROWS], "instructions": dict(TEMPLATE_INSTRUCTIONS)}


__all__ = [
    "AttendanceReconciler",
    "ReconcileSummary",
    "staged_upload",
    "parse_upload",
    "normalize_rows",
    "validate_row",
    "validate_rows",
    "fold_outcomes",
    "template",
]
