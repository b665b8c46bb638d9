"""
Coordinate index over KML placemarks and the categorized KML output.

The output document nests placemarks as region folder -> kind folder
(inspection first, recurrence second). Rows whose device, installation and
feeder all miss the index are left out of the document and reported back in
``KmlResult.missing_rows`` so the caller can tell the user how many points
could not be placed.
"""

from __future__ import annotations

import html
import logging
import math
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

from reit_common.normalize import normalize_key
from reit_common.schema import (
    INSPECTION_COLOR,
    KML_DOCUMENT_NAME,
    MISSING_COLUMNS,
    PUSH_PIN_ICON,
    RECURRENCE_COLOR,
)

from .categorize import DEFAULT_CATEGORY_TABLE, CategoryTable, categorize
from .geo_archive import Placemark
from .reconcile import INSPECTION, MergedRow
from .tables import records_frame

LOGGER = logging.getLogger(__name__)

INSPECTION_FOLDER = "INSPEÇÃO"
RECURRENCE_FOLDER = "REITERADA"
FOLDER_LABELS = {INSPECTION_FOLDER: "🟣 INSPEÇÃO", RECURRENCE_FOLDER: "⚪ REITERADA"}


@dataclass(frozen=True)
class GeoPoint:
    lat: float
    lon: float


GeoIndex = Dict[str, GeoPoint]


@dataclass
class KmlResult:
    document: str
    missing_count: int
    missing_rows: List[Dict[str, str]] = field(default_factory=list)
    placemark_count: int = 0


def parse_coordinate_tuple(text: str) -> Optional[GeoPoint]:
    """
    Parse ``"lon,lat[,alt]"``.

    Zero, NaN or unparsable values count as missing, so a point exactly on
    the equator or the prime meridian is dropped too.
    """

    parts = (text or "").strip().split(",")
    if len(parts) < 2:
        return None
    try:
        lon = float(parts[0])
        lat = float(parts[1])
    except ValueError:
        return None
    if math.isnan(lat) or math.isnan(lon) or not lat or not lon:
        return None
    return GeoPoint(lat=lat, lon=lon)


def build_geo_index(placemarks: Iterable[Placemark]) -> GeoIndex:
    """Strict-normalized placemark name -> first coordinate seen for it."""

    index: GeoIndex = {}
    skipped = 0
    for placemark in placemarks:
        key = normalize_key(placemark.name)
        point = parse_coordinate_tuple(placemark.coordinates)
        if not key or point is None:
            skipped += 1
            continue
        index.setdefault(key, point)
    LOGGER.info("Geo index: %d key(s), %d placemark(s) without usable name/coordinates", len(index), skipped)
    return index


def find_coordinates(row: MergedRow, index: GeoIndex) -> Optional[GeoPoint]:
    """Try the device, then the new installation, then the feeder."""

    for candidate in (row.protection_device, row.new_installation, row.feeder):
        key = normalize_key(candidate)
        if key and key in index:
            return index[key]
    return None


def _esc(value: object) -> str:
    return html.escape(str(value or ""), quote=True)


def _render_placemark(row: MergedRow, point: GeoPoint, category: str, folder: str) -> str:
    color = INSPECTION_COLOR if folder == INSPECTION_FOLDER else RECURRENCE_COLOR
    name = row.protection_device.strip()
    feeder_ref = (row.feeder or row.new_installation).strip()
    return f"""
<Placemark>
  <name>{_esc(name)}</name>
  <Style>
    <IconStyle>
      <color>{color}</color>
      <scale>1.8</scale>
      <Icon><href>{PUSH_PIN_ICON}</href></Icon>
    </IconStyle>
  </Style>
  <description><![CDATA[
    <b>CATEGORIA:</b> {_esc(category)}<br/>
    <b>TIPO:</b> {_esc(folder)}<br/>
    <b>DISPOSITIVO_PROTECAO / ELEMENTO:</b> {_esc(name)}<br/>
    <b>OT:</b> {_esc(row.work_order or "-")}<br/>
    <b>ALIMENTADOR (ref):</b> {_esc(feeder_ref or "-")}<br/>
    <b>INSTALACAO_NOVA:</b> {_esc(row.new_installation or "-")}<br/>
  ]]></description>
  <Point><coordinates>{point.lon},{point.lat},0</coordinates></Point>
</Placemark>"""


def _render_region(category: str, buckets: Dict[str, List[str]]) -> str:
    sub_folders = "\n".join(
        f"""
  <Folder>
    <name>{_esc(FOLDER_LABELS[folder])}</name>
    {"".join(buckets[folder])}
  </Folder>"""
        for folder in (INSPECTION_FOLDER, RECURRENCE_FOLDER)
    )
    return f"""
<Folder>
  <name>{_esc(category)}</name>
{sub_folders}
</Folder>"""


def emit_kml(
    rows: Sequence[MergedRow],
    index: GeoIndex,
    table: CategoryTable = DEFAULT_CATEGORY_TABLE,
    document_name: str = KML_DOCUMENT_NAME,
) -> KmlResult:
    """Render resolved rows grouped region -> kind; unresolved rows are listed, not drawn."""

    groups: Dict[str, Dict[str, List[str]]] = {}
    missing: List[Dict[str, str]] = []
    placed = 0

    for row in rows:
        point = find_coordinates(row, index)
        if point is None:
            record = row.as_record()
            missing.append({col: record[col] for col in MISSING_COLUMNS})
            continue

        category = categorize(row, table)
        folder = INSPECTION_FOLDER if row.kind == INSPECTION else RECURRENCE_FOLDER
        buckets = groups.setdefault(category, {INSPECTION_FOLDER: [], RECURRENCE_FOLDER: []})
        buckets[folder].append(_render_placemark(row, point, category, folder))
        placed += 1

    order = [c for c in table.order if c != table.default]
    order.extend(sorted(c for c in groups if c not in order and c != table.default))
    order.append(table.default)
    folders = "\n".join(_render_region(c, groups[c]) for c in order if c in groups)

    document = f"""<?xml version="1.0" encoding="UTF-8"?>
<kml xmlns="http://www.opengis.net/kml/2.2">
<Document>
  <name>{_esc(document_name)}</name>
{folders}
</Document>
</kml>"""

    if missing:
        LOGGER.warning("%d row(s) without coordinates", len(missing))
    return KmlResult(document=document, missing_count=len(missing), missing_rows=missing, placemark_count=placed)


def missing_rows_frame(result: KmlResult):
    """Not-found report as a frame (TIPO, DISPOSITIVO_PROTECAO, INSTALACAO_NOVA, ALIMENTADOR, NUMERO_OT)."""

    return records_frame(result.missing_rows, MISSING_COLUMNS)


__all__ = [
    "GeoIndex",
    "GeoPoint",
    "KmlResult",
    "build_geo_index",
    "emit_kml",
    "find_coordinates",
    "missing_rows_frame",
    "parse_coordinate_tuple",
]
