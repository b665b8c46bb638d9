"""
Incident spreadsheet loading for the ranking browser.

Headers are normalized (case, accents, dots and spacing ignored) and checked
against the required set before any row is read. Rows missing ELEMENTO or
INCIDENCIA are skipped; unreadable dates become ``None`` with a warning.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from rapidfuzz import fuzz, process

from reit_common.normalize import normalize_header, resolve_field
from reit_common.schema import REQUIRED_INCIDENT_COLUMNS, StructuralError
from reit_merge.tables import Rows, read_table_rows

LOGGER = logging.getLogger(__name__)

DATE_FIELD = "DATA"
EXCEL_EPOCH = date(1899, 12, 30)
_DATE_FORMATS = (
    "%Y-%m-%d",
    "%d/%m/%Y",
    "%d/%m/%y",
    "%d-%m-%Y",
    "%Y/%m/%d",
    "%d/%m/%Y %H:%M",
    "%d/%m/%Y %H:%M:%S",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S",
)

Incident = Dict[str, Any]


@dataclass
class IncidentTable:
    records: List[Incident]
    headers: List[str]
    skipped_rows: int = 0
    bad_dates: int = 0
    extra_columns: List[str] = field(default_factory=list)


def _suggest(column: str, headers: Sequence[str]) -> str:
    if not headers:
        return ""
    match = process.extractOne(column, list(headers), scorer=fuzz.WRatio)
    if match and match[1] > 60:
        return match[0]
    return ""


def validate_headers(headers: Sequence[str], required: Iterable[str] = REQUIRED_INCIDENT_COLUMNS) -> None:
    """Raise StructuralError naming every required column the headers lack."""

    present = {normalize_header(h) for h in headers}
    missing = [col for col in required if normalize_header(col) not in present]
    if not missing:
        return

    hints = []
    for col in missing:
        suggestion = _suggest(col, [str(h) for h in headers])
        if suggestion:
            hints.append(f"{col} (closest header: '{suggestion}')")
    message = f"Missing required columns: {', '.join(missing)}"
    if hints:
        message += f". Suggestions: {'; '.join(hints)}"
    raise StructuralError(message)


def parse_date(value: Any) -> Optional[date]:
    """
    Coerce a cell into a date.

    Accepts date/datetime objects, Excel serial numbers and the usual ISO and
    day-first text formats. Anything else yields ``None`` and a warning.
    """

    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        if value > 0:
            return EXCEL_EPOCH + timedelta(days=int(value))
        LOGGER.warning("Unrecognized date value: %r", value)
        return None

    text = str(value).strip()
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    LOGGER.warning("Unrecognized date value: %r", value)
    return None


def build_incident_records(rows: Rows) -> IncidentTable:
    """Turn decoded rows (header first) into normalized incident dicts."""

    if len(rows) < 2:
        raise StructuralError("Sheet is empty or has no data rows.")

    original_headers = [str(h or "").strip() for h in rows[0]]
    validate_headers(original_headers)
    keys = [normalize_header(h) for h in original_headers]

    records: List[Incident] = []
    skipped = 0
    bad_dates = 0
    for raw in rows[1:]:
        record: Incident = {}
        for idx, key in enumerate(keys):
            if not key:
                continue
            value = raw[idx] if idx < len(raw) else ""
            if key == DATE_FIELD:
                parsed = parse_date(value)
                if parsed is None and value not in (None, ""):
                    bad_dates += 1
                record[key] = parsed.isoformat() if parsed else None
            else:
                record[key] = "" if value is None else str(value).strip()
        if not record.get("ELEMENTO") or not record.get("INCIDENCIA"):
            skipped += 1
            continue
        records.append(record)

    required_keys = {normalize_header(c) for c in REQUIRED_INCIDENT_COLUMNS}
    extras = [h for h, k in zip(original_headers, keys) if k and k not in required_keys]
    LOGGER.info("Loaded %d incident(s); %d row(s) skipped, %d bad date(s)", len(records), skipped, bad_dates)
    return IncidentTable(records, original_headers, skipped, bad_dates, extras)


def load_incident_file(source: Any, filename: str | Path | None = None, sheet_name: str | int | None = None) -> IncidentTable:
    """Read a CSV or workbook (first sheet by default) into an IncidentTable."""

    return build_incident_records(read_table_rows(source, filename, sheet_name))


def _as_date(value: Any) -> Optional[date]:
    if value in (None, ""):
        return None
    if isinstance(value, date):
        return value if not isinstance(value, datetime) else value.date()
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def filter_by_date_range(
    records: Iterable[Mapping[str, Any]],
    start: date | str | None = None,
    end: date | str | None = None,
) -> List[Mapping[str, Any]]:
    """Inclusive date-range filter; undated rows drop out once any bound is set."""

    start_d = _as_date(start)
    end_d = _as_date(end)
    if start_d is None and end_d is None:
        return list(records)

    kept = []
    for record in records:
        when = _as_date(resolve_field(record, DATE_FIELD))
        if when is None:
            continue
        if start_d is not None and when < start_d:
            continue
        if end_d is not None and when > end_d:
            continue
        kept.append(record)
    return kept


__all__ = [
    "Incident",
    "IncidentTable",
    "build_incident_records",
    "filter_by_date_range",
    "load_incident_file",
    "parse_date",
    "validate_headers",
]
