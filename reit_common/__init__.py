"""
Shared key normalization, field lookup and static tables used by both the
inspection/recurrence merge and the incident ranking browser.
"""

from .schema import (  # noqa: F401
    ALL_REGIONS,
    CATEGORY_BY_FEEDER,
    CATEGORY_BY_PREFIX,
    CATEGORY_ORDER,
    CLUSTER_COORDINATES,
    DEFAULT_CATEGORY,
    INSPECTION_COLUMNS,
    INSPECTION_SHEET,
    MIN_REPEAT_COUNT,
    NOT_INFORMED,
    RECURRENCE_COLUMNS,
    REQUIRED_INCIDENT_COLUMNS,
    StructuralError,
    canonical_region,
)

from .normalize import (  # noqa: F401
    cell_text,
    clean_one_line,
    column_letter_to_index,
    fold_text,
    normalize_header,
    normalize_key,
    normalize_label,
    resolve_field,
)

__all__ = [
    "ALL_REGIONS",
    "CATEGORY_BY_FEEDER",
    "CATEGORY_BY_PREFIX",
    "CATEGORY_ORDER",
    "CLUSTER_COORDINATES",
    "DEFAULT_CATEGORY",
    "INSPECTION_COLUMNS",
    "INSPECTION_SHEET",
    "MIN_REPEAT_COUNT",
    "NOT_INFORMED",
    "RECURRENCE_COLUMNS",
    "REQUIRED_INCIDENT_COLUMNS",
    "StructuralError",
    "canonical_region",
    "cell_text",
    "clean_one_line",
    "column_letter_to_index",
    "fold_text",
    "normalize_header",
    "normalize_key",
    "normalize_label",
    "resolve_field",
]
