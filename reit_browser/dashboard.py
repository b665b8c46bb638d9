from __future__ import annotations

import os
from datetime import date
from pathlib import Path
from typing import List, Optional, Sequence

import pandas as pd
import polars as pl
import streamlit as st

from reit_browser.heatmap import aggregate_heatmap, cluster_index
from reit_browser.incidents import IncidentTable, filter_by_date_range, load_incident_file
from reit_browser.ranking import ALL_TYPES, ELEMENT_TYPES, FEEDER_FIELD, RankingEntry, ViewState, apply_view, most_frequent_value, rank_elements
from reit_browser.report import build_ranking_report, export_filename, export_ranking_xlsx
from reit_browser.store import IncidentStore, RetryingBatchWriter
from reit_cli import CONFIG_ENV_KEY, AppConfig, ConfigError, load_config
from reit_common.schema import StructuralError


def ranking_frame(view: Sequence[RankingEntry]) -> pl.DataFrame:
    """Flat table of the current view for display."""

    return pl.DataFrame(
        {
            "ELEMENTO": [entry.value for entry in view],
            "OCORRENCIAS": [entry.count for entry in view],
            "ALIMENTADOR": [most_frequent_value(entry.occurrences, FEEDER_FIELD) for entry in view],
        },
        schema={"ELEMENTO": pl.Utf8, "OCORRENCIAS": pl.Int64, "ALIMENTADOR": pl.Utf8},
    )


def load_app_config() -> AppConfig:
    env_path = os.environ.get(CONFIG_ENV_KEY)
    try:
        return load_config(Path(env_path) if env_path else None)
    except ConfigError as exc:
        st.error(f"Config error: {exc}")
        st.stop()


def load_incidents() -> Optional[IncidentTable]:
    st.sidebar.header("Incidents")
    uploaded = st.sidebar.file_uploader("Incident spreadsheet", type=["xlsx", "xlsm", "csv"])
    if uploaded is None:
        return None
    try:
        return load_incident_file(uploaded.getvalue(), uploaded.name)
    except StructuralError as exc:
        st.error(str(exc))
        st.stop()


def render_filters() -> tuple[ViewState, Optional[date], Optional[date]]:
    st.sidebar.header("Filters")
    start = st.sidebar.date_input("Start date", value=None, key="start_date")
    end = st.sidebar.date_input("End date", value=None, key="end_date")
    type_filter = st.sidebar.selectbox("Element type", options=[ALL_TYPES, *ELEMENT_TYPES], key="type_filter")
    search = st.sidebar.text_input("Search element", key="search_text")
    return ViewState.create(type_filter, search), start, end


def render_heatmap(records: List[dict], config: AppConfig) -> None:
    result = aggregate_heatmap(records, cluster_index(extra=config.ranking.extra_clusters))
    if not result.points:
        st.info("No cluster could be placed on the map.")
    else:
        frame = pd.DataFrame(
            {
                "lat": [p.lat for p in result.points],
                "lon": [p.lon for p in result.points],
                "size": [200 + 150 * p.intensity for p in result.points],
            }
        )
        st.map(frame, latitude="lat", longitude="lon", size="size")
    if result.missing:
        st.caption("Clusters without coordinates: " + ", ".join(f"{name} ({count})" for name, count in result.missing))


def render_store(table: IncidentTable, config: AppConfig) -> None:
    st.subheader("Store")
    regional = st.text_input("Regional", value=config.store.default_region)
    if st.button("Save incidents"):
        store = IncidentStore(
            config.store.path,
            RetryingBatchWriter(config.store.policy()),
            config.store.delete_page_size,
        )
        with st.spinner("Writing batches..."):
            upload_id, report = store.upsert(table.records, regional)
        st.success(f"Upload {upload_id}: {report.records} record(s) in {report.batches} batch(es).")


def main() -> None:
    st.set_page_config(page_title="Reiteradas", layout="wide")
    st.title("Ranking de reiteradas")
    st.caption("Repeat occurrences per element, cause summary and cluster heatmap.")

    config = load_app_config()
    table = load_incidents()
    if table is None:
        st.info("Upload an incident spreadsheet to build the ranking.")
        return

    state, start, end = render_filters()
    records = filter_by_date_range(table.records, start, end)
    ranking = rank_elements(records, config.ranking.min_count)
    view = apply_view(ranking, state)

    cols = st.columns(3)
    cols[0].metric("Incidents", f"{len(records)}")
    cols[1].metric("Repeated elements", f"{len(ranking)}")
    cols[2].metric("In view", f"{len(view)}")

    tabs = st.tabs(["Ranking", "Report", "Heatmap", "Store"])
    with tabs[0]:
        st.dataframe(ranking_frame(view), use_container_width=True)
        if view:
            st.download_button(
                label="Download Excel",
                data=export_ranking_xlsx(view),
                file_name=export_filename(
                    start.isoformat() if start else None,
                    end.isoformat() if end else None,
                ),
                mime="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            )
    with tabs[1]:
        st.code(
            build_ranking_report(
                ranking,
                state,
                start=start,
                end=end,
                link=config.ranking.report_link,
                max_items=config.ranking.max_items,
                max_causes=config.ranking.max_causes,
            ),
            language=None,
        )
    with tabs[2]:
        render_heatmap(records, config)
    with tabs[3]:
        render_store(table, config)


if __name__ == "__main__":
    main()
