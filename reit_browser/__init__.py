"""
Incident ranking browser: loading, rankings, reports, heatmap and storage.

The Streamlit surface lives in ``reit_browser.dashboard`` and is not imported
here.
"""

from .heatmap import HeatmapPoint, HeatmapResult, aggregate_heatmap, cluster_index  # noqa: F401
from .incidents import (  # noqa: F401
    IncidentTable,
    build_incident_records,
    filter_by_date_range,
    load_incident_file,
    parse_date,
    validate_headers,
)
from .ranking import (  # noqa: F401
    ALL_TYPES,
    RankingEntry,
    ViewState,
    apply_view,
    classify_element_type,
    most_frequent_value,
    rank_by_field,
    rank_elements,
    summarize_distinct_values,
)
from .report import build_ranking_report, export_filename, export_ranking_xlsx  # noqa: F401
from .store import IncidentStore, RetryingBatchWriter, RetryPolicy, TransientStoreError  # noqa: F401

__all__ = [
    "HeatmapPoint",
    "HeatmapResult",
    "aggregate_heatmap",
    "cluster_index",
    "IncidentTable",
    "build_incident_records",
    "filter_by_date_range",
    "load_incident_file",
    "parse_date",
    "validate_headers",
    "ALL_TYPES",
    "RankingEntry",
    "ViewState",
    "apply_view",
    "classify_element_type",
    "most_frequent_value",
    "rank_by_field",
    "rank_elements",
    "summarize_distinct_values",
    "build_ranking_report",
    "export_filename",
    "export_ranking_xlsx",
    "IncidentStore",
    "RetryingBatchWriter",
    "RetryPolicy",
    "TransientStoreError",
]
