"""
Build typed rows from the inspection and recurrence workbooks and reconcile
them by protection-device key.

The reconciliation is a keyed symmetric difference: a device present in both
workbooks is considered already handled and is dropped from both sides, so
only one-sided rows survive. Output keeps recurrence rows first, then
inspection rows, each in input order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Sequence

import polars as pl

from reit_common.normalize import cell_text, column_letter_to_index, normalize_key
from reit_common.schema import EXPORT_COLUMNS, INSPECTION_COLUMNS, RECURRENCE_COLUMNS

from .tables import records_frame

LOGGER = logging.getLogger(__name__)

INSPECTION = "INSPECAO"
RECURRENCE = "REITERADA"


@dataclass(frozen=True)
class MergedRow:
    """One reconciled row; recurrence rows reuse ``protection_device`` for the element."""

    key: str
    kind: str
    protection_device: str
    new_installation: str = ""
    work_order: str = ""
    feeder: str = ""

    def as_record(self) -> Dict[str, str]:
        return {
            "TIPO": self.kind,
            "DISPOSITIVO_PROTECAO": self.protection_device,
            "ALIMENTADOR": self.feeder,
            "INSTALACAO_NOVA": self.new_installation,
            "NUMERO_OT": self.work_order,
        }


def _cell(row: Sequence[Any], index: int) -> str:
    if index >= len(row):
        return ""
    return cell_text(row[index])


def _indices(columns: Mapping[str, str], required: Iterable[str]) -> Dict[str, int]:
    missing = [name for name in required if name not in columns]
    if missing:
        raise ValueError(f"Column layout missing letters for: {', '.join(missing)}")
    return {name: column_letter_to_index(columns[name]) for name in required}


def build_inspection_rows(
    rows: Sequence[Sequence[Any]],
    columns: Mapping[str, str] = INSPECTION_COLUMNS,
) -> List[MergedRow]:
    """Map inspection sheet rows (header skipped) keyed by protection device."""

    idx = _indices(columns, ("new_installation", "work_order", "protection_device"))
    built: List[MergedRow] = []
    for row in rows[1:]:
        device = _cell(row, idx["protection_device"])
        key = normalize_key(device)
        if not key:
            continue
        built.append(
            MergedRow(
                key=key,
                kind=INSPECTION,
                protection_device=device,
                new_installation=_cell(row, idx["new_installation"]),
                work_order=_cell(row, idx["work_order"]),
            )
        )
    LOGGER.debug("Inspection rows: %d of %d kept", len(built), max(len(rows) - 1, 0))
    return built


def build_recurrence_rows(
    rows: Sequence[Sequence[Any]],
    columns: Mapping[str, str] = RECURRENCE_COLUMNS,
) -> List[MergedRow]:
    """Map recurrence sheet rows (header skipped) keyed by element."""

    idx = _indices(columns, ("element", "feeder"))
    built: List[MergedRow] = []
    for row in rows[1:]:
        element = _cell(row, idx["element"])
        key = normalize_key(element)
        if not key:
            continue
        built.append(
            MergedRow(
                key=key,
                kind=RECURRENCE,
                protection_device=element,
                feeder=_cell(row, idx["feeder"]),
            )
        )
    LOGGER.debug("Recurrence rows: %d of %d kept", len(built), max(len(rows) - 1, 0))
    return built


def merge_rows(inspection: Sequence[MergedRow], recurrence: Sequence[MergedRow]) -> List[MergedRow]:
    """Keyed symmetric difference: unmatched recurrence rows, then unmatched inspection rows."""

    shared = {r.key for r in inspection} & {r.key for r in recurrence}
    merged = [r for r in recurrence if r.key not in shared]
    merged.extend(r for r in inspection if r.key not in shared)
    LOGGER.info(
        "Reconciled %d inspection / %d recurrence rows: %d shared key(s) dropped, %d row(s) kept",
        len(inspection),
        len(recurrence),
        len(shared),
        len(merged),
    )
    return merged


def merged_rows_frame(rows: Iterable[MergedRow]) -> pl.DataFrame:
    """Flat export table (TIPO, DISPOSITIVO_PROTECAO, ALIMENTADOR, INSTALACAO_NOVA, NUMERO_OT)."""

    return records_frame((r.as_record() for r in rows), EXPORT_COLUMNS)


__all__ = [
    "INSPECTION",
    "RECURRENCE",
    "MergedRow",
    "build_inspection_rows",
    "build_recurrence_rows",
    "merge_rows",
    "merged_rows_frame",
]
