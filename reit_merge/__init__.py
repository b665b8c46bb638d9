"""
Inspection x recurrence reconciliation and the categorized KML output.
"""

from .categorize import DEFAULT_CATEGORY_TABLE, CategoryTable, categorize  # noqa: F401
from .geo_archive import Placemark, read_placemarks  # noqa: F401
from .kml import (  # noqa: F401
    GeoPoint,
    KmlResult,
    build_geo_index,
    emit_kml,
    find_coordinates,
    missing_rows_frame,
)
from .reconcile import (  # noqa: F401
    INSPECTION,
    RECURRENCE,
    MergedRow,
    build_inspection_rows,
    build_recurrence_rows,
    merge_rows,
    merged_rows_frame,
)

__all__ = [
    "DEFAULT_CATEGORY_TABLE",
    "CategoryTable",
    "categorize",
    "Placemark",
    "read_placemarks",
    "GeoPoint",
    "KmlResult",
    "build_geo_index",
    "emit_kml",
    "find_coordinates",
    "missing_rows_frame",
    "INSPECTION",
    "RECURRENCE",
    "MergedRow",
    "build_inspection_rows",
    "build_recurrence_rows",
    "merge_rows",
    "merged_rows_frame",
]
