#!/usr/bin/env python3
"""Reiteradas toolkit CLI (openpyxl + Polars + DuckDB).

Reconciles the inspection workbook against the recurrence ("reiteradas")
workbook, places the surviving rows on a categorized KML map, and ranks
repeat occurrences from incident spreadsheets.

Commands
--------
- ``merge``    keyed symmetric difference of inspection x recurrence -> xlsx
- ``kml``      same reconciliation, resolved against a KML/KMZ -> categorized KML
- ``rank``     element ranking, text report and Excel export
- ``heatmap``  incidents per cluster (CONJUNTO) with coordinates
- ``store``    upload / delete / fetch / list incident uploads in DuckDB

Sample ``config.yaml``
----------------------
```yaml
# Every key is optional. Relative paths resolve from the config file location.
merge:
  inspection_sheet: PBM-CE - Inspecao
  recurrence_sheet: null          # null -> first sheet
  inspection_columns:
    new_installation: E
    work_order: H
    protection_device: AP
  recurrence_columns:
    element: A
    feeder: C
  categories:
    feeders:
      CND01C9: Canindé
    prefixes:
      XYZ: Nova Russas

ranking:
  min_count: 2
  max_causes: 12
  max_items: 30
  report_link: https://example.org/painel
  clusters:
    NOVO CONJUNTO: [-4.10, -39.20]

store:
  path: ./data/reiteradas.duckdb
  default_region: TODOS
  batch_size: 200
  max_retries: 5
  initial_backoff: 2.0
  max_backoff: 60.0
  jitter: 1.0
  throttle: 0.0
  delete_page_size: 100
```
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Dict, Mapping, Optional, Sequence, Tuple

import polars as pl
import yaml

from reit_browser.heatmap import aggregate_heatmap, cluster_index
from reit_browser.incidents import filter_by_date_range, load_incident_file
from reit_browser.ranking import ViewState, apply_view, rank_elements
from reit_browser.report import (
    MAX_ITEMS_PER_SECTION,
    build_ranking_report,
    export_filename,
    export_ranking_xlsx,
)
from reit_browser.store import DELETE_PAGE_SIZE, IncidentStore, RetryingBatchWriter, RetryPolicy
from reit_common.normalize import column_letter_to_index
from reit_common.schema import (
    ALL_REGIONS,
    INSPECTION_COLUMNS,
    INSPECTION_SHEET,
    KML_DOCUMENT_NAME,
    MAX_SUMMARY_ITEMS,
    MIN_REPEAT_COUNT,
    RECURRENCE_COLUMNS,
    StructuralError,
)
from reit_merge.categorize import DEFAULT_CATEGORY_TABLE, CategoryTable
from reit_merge.geo_archive import read_placemarks
from reit_merge.kml import build_geo_index, emit_kml, missing_rows_frame
from reit_merge.reconcile import (
    MergedRow,
    build_inspection_rows,
    build_recurrence_rows,
    merge_rows,
    merged_rows_frame,
)
from reit_merge.tables import read_table_rows, records_frame, write_frame_xlsx

LOGGER = logging.getLogger(__name__)
CONFIG_ENV_KEY = "REIT_CONFIG"
DEFAULT_STORE_NAME = "reiteradas.duckdb"
MERGED_SHEET = "Reiteradas_x_Inspecao"
MISSING_SHEET = "NAO_ENCONTRADOS"
EXIT_STRUCTURAL = 2


@dataclass
class MergeSettings:
    inspection_sheet: str | int | None = INSPECTION_SHEET
    recurrence_sheet: str | int | None = None
    inspection_columns: Dict[str, str] = field(default_factory=lambda: dict(INSPECTION_COLUMNS))
    recurrence_columns: Dict[str, str] = field(default_factory=lambda: dict(RECURRENCE_COLUMNS))
    document_name: str = KML_DOCUMENT_NAME
    categories: CategoryTable = DEFAULT_CATEGORY_TABLE


@dataclass
class RankingSettings:
    min_count: int = MIN_REPEAT_COUNT
    max_causes: int = MAX_SUMMARY_ITEMS
    max_items: int = MAX_ITEMS_PER_SECTION
    report_link: Optional[str] = None
    extra_clusters: Dict[str, Tuple[float, float]] = field(default_factory=dict)


@dataclass
class StoreSettings:
    path: Path = Path("data") / DEFAULT_STORE_NAME
    default_region: str = ALL_REGIONS
    batch_size: int = 200
    max_retries: int = 5
    initial_backoff: float = 2.0
    max_backoff: float = 60.0
    jitter: float = 0.0
    throttle: float = 0.0
    delete_page_size: int = DELETE_PAGE_SIZE

    def policy(self) -> RetryPolicy:
        return RetryPolicy(
            batch_size=self.batch_size,
            max_retries=self.max_retries,
            initial_backoff=self.initial_backoff,
            max_backoff=self.max_backoff,
            jitter=self.jitter,
            throttle=self.throttle,
        )


@dataclass
class AppConfig:
    path: Optional[Path] = None
    merge: MergeSettings = field(default_factory=MergeSettings)
    ranking: RankingSettings = field(default_factory=RankingSettings)
    store: StoreSettings = field(default_factory=StoreSettings)


class ConfigError(ValueError):
    """Raised when the YAML configuration is invalid."""


def _resolve_path(base: Path, value: str) -> Path:
    return (base / value).expanduser().resolve()


def _section(raw: Mapping[str, object], name: str) -> Mapping[str, object]:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"`{name}` must be a mapping")
    return value


def _column_layout(value: object, fallback: Mapping[str, str], label: str) -> Dict[str, str]:
    if value is None:
        return dict(fallback)
    if not isinstance(value, dict):
        raise ConfigError(f"`merge.{label}` must map field names to column letters")
    layout = {**fallback, **{str(k): str(v).strip().upper() for k, v in value.items()}}
    for name, letter in layout.items():
        try:
            column_letter_to_index(letter)
        except ValueError as exc:
            raise ConfigError(f"`merge.{label}.{name}` is not a column letter: {letter!r}") from exc
    return layout


def _mapping(value: object, label: str) -> Dict[str, str]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"`{label}` must be a mapping")
    return {str(k): str(v) for k, v in value.items()}


def _clusters(value: object) -> Dict[str, Tuple[float, float]]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError("`ranking.clusters` must map cluster names to [lat, lon]")
    clusters: Dict[str, Tuple[float, float]] = {}
    for name, coords in value.items():
        try:
            lat, lon = coords
            clusters[str(name)] = (float(lat), float(lon))
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Cluster '{name}' needs [lat, lon], got {coords!r}") from exc
    return clusters


def load_config(path: Optional[Path] = None) -> AppConfig:
    """Load the YAML configuration; ``None`` gives the built-in defaults."""

    if path is None:
        return AppConfig()
    if not path.exists():
        raise ConfigError(f"Configuration file not found: {path}")

    with path.open("r", encoding="utf-8") as handle:
        try:
            raw = yaml.safe_load(handle) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError("Top level of the configuration must be a mapping")

    base = path.parent
    try:
        merge_cfg = _section(raw, "merge")
        categories_cfg = _section(merge_cfg, "categories")
        merge = MergeSettings(
            inspection_sheet=merge_cfg.get("inspection_sheet", INSPECTION_SHEET),
            recurrence_sheet=merge_cfg.get("recurrence_sheet"),
            inspection_columns=_column_layout(merge_cfg.get("inspection_columns"), INSPECTION_COLUMNS, "inspection_columns"),
            recurrence_columns=_column_layout(merge_cfg.get("recurrence_columns"), RECURRENCE_COLUMNS, "recurrence_columns"),
            document_name=str(merge_cfg.get("document_name", KML_DOCUMENT_NAME)),
            categories=DEFAULT_CATEGORY_TABLE.with_overrides(
                _mapping(categories_cfg.get("feeders"), "merge.categories.feeders"),
                _mapping(categories_cfg.get("prefixes"), "merge.categories.prefixes"),
            ),
        )

        ranking_cfg = _section(raw, "ranking")
        link = ranking_cfg.get("report_link")
        ranking = RankingSettings(
            min_count=int(ranking_cfg.get("min_count", MIN_REPEAT_COUNT)),
            max_causes=int(ranking_cfg.get("max_causes", MAX_SUMMARY_ITEMS)),
            max_items=int(ranking_cfg.get("max_items", MAX_ITEMS_PER_SECTION)),
            report_link=str(link) if link else None,
            extra_clusters=_clusters(ranking_cfg.get("clusters")),
        )

        store_cfg = _section(raw, "store")
        store = StoreSettings(
            path=_resolve_path(base, str(store_cfg.get("path", f"./data/{DEFAULT_STORE_NAME}"))),
            default_region=str(store_cfg.get("default_region", ALL_REGIONS)),
            batch_size=int(store_cfg.get("batch_size", 200)),
            max_retries=int(store_cfg.get("max_retries", 5)),
            initial_backoff=float(store_cfg.get("initial_backoff", 2.0)),
            max_backoff=float(store_cfg.get("max_backoff", 60.0)),
            jitter=float(store_cfg.get("jitter", 0.0)),
            throttle=float(store_cfg.get("throttle", 0.0)),
            delete_page_size=int(store_cfg.get("delete_page_size", DELETE_PAGE_SIZE)),
        )
    except (TypeError, ValueError) as exc:
        if isinstance(exc, ConfigError):
            raise
        raise ConfigError(f"Invalid value in {path}: {exc}") from exc

    if ranking.min_count < 1 or store.batch_size < 1:
        raise ConfigError("`ranking.min_count` and `store.batch_size` must be positive")

    return AppConfig(path=path, merge=merge, ranking=ranking, store=store)


def _write_bytes(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)


def _reconcile(args: argparse.Namespace, config: AppConfig) -> list[MergedRow]:
    settings = config.merge
    inspection = build_inspection_rows(
        read_table_rows(args.inspection, args.inspection, settings.inspection_sheet),
        settings.inspection_columns,
    )
    recurrence = build_recurrence_rows(
        read_table_rows(args.recurrence, args.recurrence, settings.recurrence_sheet),
        settings.recurrence_columns,
    )
    return merge_rows(inspection, recurrence)


def cmd_merge(args: argparse.Namespace, config: AppConfig) -> None:
    merged = _reconcile(args, config)
    frame = merged_rows_frame(merged)
    _write_bytes(args.output, write_frame_xlsx(frame, MERGED_SHEET))
    LOGGER.info("Wrote %d merged row(s) to %s", frame.height, args.output)


def cmd_kml(args: argparse.Namespace, config: AppConfig) -> None:
    merged = _reconcile(args, config)
    index = build_geo_index(read_placemarks(args.geo.read_bytes(), args.geo))
    result = emit_kml(merged, index, config.merge.categories, config.merge.document_name)

    args.output.parent.mkdir(parents=True, exist_ok=True)
    args.output.write_text(result.document, encoding="utf-8")
    LOGGER.info("Wrote %d placemark(s) to %s", result.placemark_count, args.output)

    if result.missing_count and args.missing_report:
        _write_bytes(args.missing_report, write_frame_xlsx(missing_rows_frame(result), MISSING_SHEET))
        LOGGER.info("Wrote %d row(s) without coordinates to %s", result.missing_count, args.missing_report)


def _iso(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value else None


def cmd_rank(args: argparse.Namespace, config: AppConfig) -> None:
    table = load_incident_file(args.incidents, args.incidents, args.sheet)
    records = filter_by_date_range(table.records, args.start, args.end)
    ranking = rank_elements(records, config.ranking.min_count)
    state = ViewState.create(args.type, args.search)

    report = build_ranking_report(
        ranking,
        state,
        start=args.start,
        end=args.end,
        link=config.ranking.report_link,
        max_items=config.ranking.max_items,
        max_causes=config.ranking.max_causes,
    )
    if args.report:
        args.report.parent.mkdir(parents=True, exist_ok=True)
        args.report.write_text(report + "\n", encoding="utf-8")
        LOGGER.info("Wrote report to %s", args.report)
    else:
        print(report)

    if args.export:
        view = apply_view(ranking, state)
        if not view:
            LOGGER.warning("Nothing to export for the current filter.")
            return
        target = args.export
        if target.is_dir():
            target = target / export_filename(_iso(args.start), _iso(args.end))
        _write_bytes(target, export_ranking_xlsx(view))
        LOGGER.info("Wrote ranking export to %s", target)


def cmd_heatmap(args: argparse.Namespace, config: AppConfig) -> None:
    table = load_incident_file(args.incidents, args.incidents, args.sheet)
    records = filter_by_date_range(table.records, args.start, args.end)
    result = aggregate_heatmap(records, cluster_index(extra=config.ranking.extra_clusters))

    frame = pl.DataFrame(
        {
            "CONJUNTO": [p.cluster for p in result.points],
            "LAT": [p.lat for p in result.points],
            "LON": [p.lon for p in result.points],
            "OCORRENCIAS": [p.intensity for p in result.points],
        },
        schema={"CONJUNTO": pl.Utf8, "LAT": pl.Float64, "LON": pl.Float64, "OCORRENCIAS": pl.Int64},
    ).sort("OCORRENCIAS", descending=True)

    if args.output:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        frame.write_csv(args.output)
        LOGGER.info("Wrote %d cluster(s) to %s", frame.height, args.output)
    else:
        print(frame)


def _open_store(config: AppConfig) -> IncidentStore:
    settings = config.store
    return IncidentStore(settings.path, RetryingBatchWriter(settings.policy()), settings.delete_page_size)


def cmd_store_upload(args: argparse.Namespace, config: AppConfig) -> None:
    table = load_incident_file(args.incidents, args.incidents, args.sheet)
    regional = args.regional or config.store.default_region
    upload_id, report = _open_store(config).upsert(table.records, regional, args.upload_id)
    print(upload_id)
    LOGGER.info("Upload %s: %d record(s), %d retr(ies)", upload_id, report.records, report.retries)


def cmd_store_delete(args: argparse.Namespace, config: AppConfig) -> None:
    store = _open_store(config)
    if args.upload_id:
        store.delete_upload(args.upload_id)
    else:
        store.delete_all(args.regional or ALL_REGIONS)


def cmd_store_fetch(args: argparse.Namespace, config: AppConfig) -> None:
    records = _open_store(config).fetch(args.regional or config.store.default_region, args.start, args.end)
    LOGGER.info("Fetched %d record(s)", len(records))
    if not args.output:
        for record in records:
            print(record)
        return

    columns: list[str] = []
    for record in records:
        columns.extend(key for key in record if key not in columns)
    frame = records_frame(records, columns)
    if args.output.suffix.lower() == ".csv":
        args.output.parent.mkdir(parents=True, exist_ok=True)
        frame.write_csv(args.output)
    else:
        _write_bytes(args.output, write_frame_xlsx(frame, "Incidencias"))
    LOGGER.info("Wrote %d record(s) to %s", frame.height, args.output)


def cmd_store_uploads(args: argparse.Namespace, config: AppConfig) -> None:
    for info in _open_store(config).list_uploads():
        print(f"{info.upload_id}\t{info.regional}\t{info.records}\t{info.uploaded_at:%Y-%m-%d %H:%M:%S}")


def _date_arg(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM-DD, got {value!r}") from exc


def _add_incident_args(parser: argparse.ArgumentParser, dates: bool = True) -> None:
    parser.add_argument("--incidents", type=Path, required=True, help="Incident spreadsheet (.xlsx or .csv).")
    parser.add_argument("--sheet", default=None, help="Sheet name (default: first sheet).")
    if dates:
        parser.add_argument("--start", type=_date_arg, help="First day included (YYYY-MM-DD).")
        parser.add_argument("--end", type=_date_arg, help="Last day included (YYYY-MM-DD).")


def _add_merge_inputs(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--inspection", type=Path, required=True, help="Inspection workbook.")
    parser.add_argument("--recurrence", type=Path, required=True, help="Recurrence (reiteradas) workbook.")


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Reiteradas x inspection reconciliation and ranking tools")
    parser.add_argument(
        "--config",
        type=Path,
        default=Path(os.environ[CONFIG_ENV_KEY]) if os.environ.get(CONFIG_ENV_KEY) else None,
        help=f"Path to YAML config (default: ${CONFIG_ENV_KEY} or built-in defaults)",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging.")
    subparsers = parser.add_subparsers(dest="command")

    merge = subparsers.add_parser("merge", help="Write the reconciled rows to a workbook.")
    _add_merge_inputs(merge)
    merge.add_argument("--output", type=Path, default=Path(f"{MERGED_SHEET}.xlsx"), help="Output .xlsx path.")
    merge.set_defaults(func=cmd_merge)

    kml = subparsers.add_parser("kml", help="Place reconciled rows on a categorized KML.")
    _add_merge_inputs(kml)
    kml.add_argument("--geo", type=Path, required=True, help="KML or KMZ with the reference placemarks.")
    kml.add_argument("--output", type=Path, default=Path("reiteradas_inspecao.kml"), help="Output .kml path.")
    kml.add_argument("--missing-report", type=Path, help="Optional .xlsx listing rows without coordinates.")
    kml.set_defaults(func=cmd_kml)

    rank = subparsers.add_parser("rank", help="Element ranking with text report and Excel export.")
    _add_incident_args(rank)
    rank.add_argument("--type", default=None, help="TRAFO, FUSIVEL, RELIGADOR or TODOS.")
    rank.add_argument("--search", default=None, help="Substring filter on the element.")
    rank.add_argument("--report", type=Path, help="Write the text report here instead of stdout.")
    rank.add_argument("--export", type=Path, help="Excel export path (a directory gets a stamped filename).")
    rank.set_defaults(func=cmd_rank)

    heatmap = subparsers.add_parser("heatmap", help="Incidents per cluster with coordinates.")
    _add_incident_args(heatmap)
    heatmap.add_argument("--output", type=Path, help="Optional CSV path.")
    heatmap.set_defaults(func=cmd_heatmap)

    store = subparsers.add_parser("store", help="Persistent incident store.")
    store_sub = store.add_subparsers(dest="store_command")

    upload = store_sub.add_parser("upload", help="Upsert an incident spreadsheet.")
    _add_incident_args(upload, dates=False)
    upload.add_argument("--regional", help="Region partition key.")
    upload.add_argument("--upload-id", help="Reuse an upload id instead of generating one.")
    upload.set_defaults(func=cmd_store_upload)

    delete = store_sub.add_parser("delete", help="Delete one upload or every record of a region.")
    group = delete.add_mutually_exclusive_group(required=True)
    group.add_argument("--upload-id")
    group.add_argument("--all", action="store_true", help="Delete everything (optionally one --regional).")
    delete.add_argument("--regional")
    delete.set_defaults(func=cmd_store_delete)

    fetch = store_sub.add_parser("fetch", help="Read stored incidents, newest first.")
    fetch.add_argument("--regional")
    fetch.add_argument("--start", type=_date_arg)
    fetch.add_argument("--end", type=_date_arg)
    fetch.add_argument("--output", type=Path, help=".xlsx or .csv output; prints when omitted.")
    fetch.set_defaults(func=cmd_store_fetch)

    uploads = store_sub.add_parser("uploads", help="List uploads.")
    uploads.set_defaults(func=cmd_store_uploads)

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_arg_parser()
    args = parser.parse_args(argv)

    if not getattr(args, "func", None):
        parser.print_help()
        return 1

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )
    try:
        config = load_config(args.config)
        args.func(args, config)
    except (StructuralError, ConfigError, FileNotFoundError) as exc:
        LOGGER.error("%s", exc)
        return EXIT_STRUCTURAL
    return 0


if __name__ == "__main__":
    sys.exit(main())
