"""
Workbook/CSV decoding into row-major cell lists and encoding of flat records
into an ``.xlsx`` blob.

Decoding goes through openpyxl in read-only mode so large inspection exports
are streamed instead of materialized as a styled workbook. CSV input goes
through Polars with every column read as text.
"""

from __future__ import annotations

from io import BytesIO
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

import openpyxl
import pandas as pd
import polars as pl

from reit_common.schema import StructuralError

Rows = List[List[Any]]


def _excel_source(path_or_bytes: Any) -> Any:
    """Return a rewindable source openpyxl can load."""

    if isinstance(path_or_bytes, BytesIO):
        path_or_bytes.seek(0)
        return path_or_bytes
    if isinstance(path_or_bytes, (bytes, bytearray)):
        return BytesIO(path_or_bytes)
    return path_or_bytes


def _get_worksheet(wb, sheet_name):
    if sheet_name is None:
        return wb.worksheets[0]
    if isinstance(sheet_name, int):
        if sheet_name >= len(wb.worksheets):
            raise StructuralError(f"Sheet index {sheet_name} not found in workbook.")
        return wb.worksheets[sheet_name]
    if sheet_name not in wb.sheetnames:
        raise StructuralError(f'Sheet "{sheet_name}" not found in workbook.')
    return wb[sheet_name]


def sheet_names(path_or_bytes: Any) -> List[str]:
    wb = openpyxl.load_workbook(_excel_source(path_or_bytes), read_only=True, data_only=True)
    try:
        return list(wb.sheetnames)
    finally:
        wb.close()


def read_workbook_rows(path_or_bytes: Any, sheet_name: str | int | None = None) -> Rows:
    """
    Decode one sheet into a list of rows (header at index 0).

    Rows keep their natural width; empty cells come back as ``""`` so column
    positions stay addressable by index.
    """

    wb = openpyxl.load_workbook(_excel_source(path_or_bytes), read_only=True, data_only=True)
    try:
        ws = _get_worksheet(wb, sheet_name)
        return [
            ["" if value is None else value for value in row]
            for row in ws.iter_rows(values_only=True)
        ]
    finally:
        wb.close()


def read_csv_rows(path_or_bytes: Any) -> Rows:
    """Decode a CSV file into rows; every value is kept as text."""

    source = _excel_source(path_or_bytes)
    frame = pl.read_csv(source, infer_schema_length=0, truncate_ragged_lines=True)
    rows: Rows = [list(frame.columns)]
    rows.extend(["" if v is None else v for v in row] for row in frame.iter_rows())
    return rows


def read_table_rows(
    path_or_bytes: Any,
    filename: str | Path | None = None,
    sheet_name: str | int | None = None,
) -> Rows:
    """Dispatch on the file extension (``.csv`` vs workbook)."""

    label = str(filename if filename is not None else path_or_bytes).lower()
    if label.endswith(".csv"):
        return read_csv_rows(path_or_bytes)
    if label.endswith((".xlsx", ".xlsm")) or isinstance(path_or_bytes, (bytes, bytearray, BytesIO)):
        return read_workbook_rows(path_or_bytes, sheet_name)
    raise StructuralError(f"Unsupported file format: {filename or path_or_bytes}")


def sanitize_for_excel(val):
    """Prevent formula injection in Excel."""
    if val is None:
        return ""
    s = str(val)
    if s.startswith(("=", "+", "@")):
        return "'" + s
    return s


def records_frame(records: Iterable[Mapping[str, Any]], columns: Sequence[str]) -> pl.DataFrame:
    """Build a text-typed frame with a fixed column order."""

    data: Dict[str, List[str]] = {col: [] for col in columns}
    for record in records:
        for col in columns:
            data[col].append(sanitize_for_excel(record.get(col, "")))
    return pl.DataFrame(data, schema={col: pl.Utf8 for col in columns})


def write_frame_xlsx(frame: pl.DataFrame, sheet_name: str) -> bytes:
    """Serialize a frame into a single-sheet workbook via xlsxwriter."""

    pandas_df = pd.DataFrame(frame.to_dict(as_series=False), columns=frame.columns)
    buffer = BytesIO()
    with pd.ExcelWriter(buffer, engine="xlsxwriter") as writer:
        pandas_df.to_excel(writer, sheet_name=sheet_name, index=False)
        worksheet = writer.sheets[sheet_name]
        for idx, col in enumerate(frame.columns):
            longest = max([len(col), *(len(str(v)) for v in frame[col].to_list())])
            worksheet.set_column(idx, idx, min(longest + 2, 60))
    return buffer.getvalue()


def write_records_xlsx(
    records: Iterable[Mapping[str, Any]],
    sheet_name: str,
    columns: Optional[Sequence[str]] = None,
) -> bytes:
    """
    Encode flat records into an ``.xlsx`` blob with a single sheet.

    When ``columns`` is omitted the keys of the first record define the
    header order.
    """

    materialized = list(records)
    if columns is None:
        columns = list(materialized[0].keys()) if materialized else []
    return write_frame_xlsx(records_frame(materialized, columns), sheet_name)


__all__ = [
    "Rows",
    "read_csv_rows",
    "read_table_rows",
    "read_workbook_rows",
    "records_frame",
    "sanitize_for_excel",
    "sheet_names",
    "write_frame_xlsx",
    "write_records_xlsx",
]
