"""
KML / KMZ decoding into flat placemark entries.

Only the placemark name and its first coordinate tuple are kept; styles,
folders and geometry types are ignored. Tags are matched by local name so
documents with or without the KML 2.2 default namespace parse the same way.
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import List, Optional
from zipfile import BadZipFile, ZipFile

from reit_common.schema import StructuralError

LOGGER = logging.getLogger(__name__)

KMZ_DEFAULT_ENTRY = "doc.kml"


@dataclass(frozen=True)
class Placemark:
    name: str
    coordinates: str  # first "lon,lat[,alt]" tuple, may be empty


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _first_text(node: ET.Element, local_name: str) -> str:
    for child in node.iter():
        if child is not node and _local(child.tag) == local_name:
            return child.text or ""
    return ""


def extract_kml_text(data: bytes, filename: str | Path) -> str:
    """Return the KML markup, unzipping KMZ archives first."""

    if str(filename).lower().endswith(".kmz"):
        try:
            with ZipFile(BytesIO(data)) as zf:
                names = zf.namelist()
                entry: Optional[str] = KMZ_DEFAULT_ENTRY if KMZ_DEFAULT_ENTRY in names else None
                if entry is None:
                    entry = next((n for n in names if n.lower().endswith(".kml")), None)
                if entry is None:
                    raise StructuralError(f"KMZ archive {filename} contains no .kml document.")
                LOGGER.debug("Reading %s from %s", entry, filename)
                payload = zf.read(entry)
        except BadZipFile as exc:
            raise StructuralError(f"Invalid KMZ archive {filename}: {exc}") from exc
    else:
        payload = data
    return payload.decode("utf-8-sig", errors="replace")


def parse_placemarks(kml_text: str) -> List[Placemark]:
    """Collect every ``Placemark`` in document order."""

    try:
        root = ET.fromstring(kml_text)
    except ET.ParseError as exc:
        raise StructuralError(f"Invalid KML document: {exc}") from exc

    placemarks: List[Placemark] = []
    for node in root.iter():
        if _local(node.tag) != "Placemark":
            continue
        name = _first_text(node, "name").strip()
        coords = _first_text(node, "coordinates").split()
        placemarks.append(Placemark(name=name, coordinates=coords[0] if coords else ""))
    return placemarks


def read_placemarks(data: bytes, filename: str | Path) -> List[Placemark]:
    placemarks = parse_placemarks(extract_kml_text(data, filename))
    LOGGER.info("Read %d placemark(s) from %s", len(placemarks), filename)
    return placemarks


__all__ = ["Placemark", "extract_kml_text", "parse_placemarks", "read_placemarks"]
