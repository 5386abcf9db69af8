"""Import records for activity-completion-upload.

Reads upload files (CSV with a header row) into ImportRecord values and
performs the field-presence check that gates reconciliation.

Expected columns (case-insensitive):
- course: value matched against the configured course field
- user: value matched against the configured user field
- section: section name, or "0" for the unnamed first section
- activity: activity name
- completiondate: Unix timestamp or ISO-8601 date/datetime
"""

from __future__ import annotations

import csv
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("course", "user", "section", "activity", "completiondate")

# Sentinel section name that selects the first, unnamed section of a course.
UNNAMED_SECTION = "0"


class ImportFileError(Exception):
    """Raised when an upload file cannot be read as an import file."""

    pass


@dataclass(frozen=True)
class ImportRecord:
    """One row of completion data to reconcile against the platform."""

    course_field: str
    course_value: str
    user_field: str
    user_value: str
    section_name: str
    activity_name: str
    completion_date: int

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "course_field": self.course_field,
            "course_value": self.course_value,
            "user_field": self.user_field,
            "user_value": self.user_value,
            "section_name": self.section_name,
            "activity_name": self.activity_name,
            "completion_date": self.completion_date,
        }


@dataclass(frozen=True)
class ImportRow:
    """A parsed line of an upload file.

    Either `record` is set, or `problem` explains why the line could not
    be turned into a record.
    """

    line: int
    record: ImportRecord | None
    problem: str | None = None


def missing_fields(record: ImportRecord) -> list[str]:
    """Return the names of required fields that are empty."""
    missing = []
    if not record.course_value:
        missing.append("course")
    if not record.user_value:
        missing.append("user")
    if not record.section_name:
        missing.append("section")
    if not record.activity_name:
        missing.append("activity")
    return missing


def validate_import_record(record: ImportRecord) -> bool:
    """Check we have the minimum info to reconcile a completion."""
    return not missing_fields(record)


def parse_completion_date(value: str) -> int:
    """Parse a completion date into a Unix timestamp.

    Accepts integer timestamps ("1700000000") and ISO-8601 dates or
    datetimes ("2024-03-01", "2024-03-01T09:30:00+01:00"). Naive values
    are taken as UTC.

    Raises:
        ValueError: If the value is empty or not a recognised date.
    """
    value = value.strip()
    if not value:
        raise ValueError("Completion date is empty")

    if value.lstrip("-").isdigit():
        return int(value)

    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        raise ValueError(f"Unrecognised completion date '{value}'") from None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return int(parsed.timestamp())


def _normalise_header(row: Mapping[str | None, Any]) -> dict[str, str]:
    """Lower-case and trim column names and values; drop overflow cells."""
    normalised: dict[str, str] = {}
    for key, value in row.items():
        if key is None:
            continue
        normalised[key.strip().lower()] = (value or "").strip()
    return normalised


def parse_import_rows(
    rows: Iterable[Mapping[str | None, Any]],
    course_field: str,
    user_field: str,
    first_line: int = 2,
) -> list[ImportRow]:
    """Turn mapping rows (as produced by csv.DictReader) into ImportRows.

    Args:
        rows: Row mappings keyed by column name.
        course_field: Course column the course value is matched against.
        user_field: User column the user value is matched against.
        first_line: Line number of the first row (header is line 1).

    Returns:
        One ImportRow per input row, in order.
    """
    parsed: list[ImportRow] = []
    for offset, raw in enumerate(rows):
        line = first_line + offset
        row = _normalise_header(raw)

        try:
            completion_date = parse_completion_date(row.get("completiondate", ""))
        except ValueError as e:
            parsed.append(ImportRow(line=line, record=None, problem=str(e)))
            continue

        record = ImportRecord(
            course_field=course_field,
            course_value=row.get("course", ""),
            user_field=user_field,
            user_value=row.get("user", ""),
            section_name=row.get("section", ""),
            activity_name=row.get("activity", ""),
            completion_date=completion_date,
        )
        parsed.append(ImportRow(line=line, record=record))

    return parsed


def read_import_file(
    path: Path | str,
    course_field: str,
    user_field: str,
) -> list[ImportRow]:
    """Read an upload CSV file.

    Raises:
        ImportFileError: If the file is missing, empty, or lacks required columns.
    """
    path = Path(path)
    if not path.exists():
        raise ImportFileError(f"Import file not found: {path}")

    with path.open(newline="", encoding="utf-8-sig") as handle:
        reader = csv.DictReader(handle)
        if reader.fieldnames is None:
            raise ImportFileError(f"Import file is empty: {path}")

        columns = {name.strip().lower() for name in reader.fieldnames if name}
        missing = [c for c in REQUIRED_COLUMNS if c not in columns]
        if missing:
            raise ImportFileError(
                f"Import file {path.name} is missing column(s): {', '.join(missing)}"
            )

        rows = parse_import_rows(reader, course_field, user_field)

    logger.debug(f"Read {len(rows)} row(s) from {path}")
    return rows
