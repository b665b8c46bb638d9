"""
Persistent incident store on DuckDB plus the generic batching writer it uses.

Each incident is stored once per region under a deterministic id, so
re-uploading the same spreadsheet replaces rows instead of duplicating them.
Writes and deletes run in pages; transient failures (a locked database file,
for instance) are retried with capped exponential backoff.
"""

from __future__ import annotations

import hashlib
import json
import logging
import random
import time
import uuid
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable, Iterable, List, Mapping, Optional, Sequence, TypeVar

import duckdb

from reit_common.normalize import resolve_field
from reit_common.schema import ALL_REGIONS, canonical_region

from .incidents import filter_by_date_range

LOGGER = logging.getLogger(__name__)

TABLE_NAME = "incidents"
DELETE_PAGE_SIZE = 100

T = TypeVar("T")


class TransientStoreError(RuntimeError):
    """A storage failure worth retrying."""


@dataclass(frozen=True)
class RetryPolicy:
    batch_size: int = 200
    max_retries: int = 5
    initial_backoff: float = 2.0
    max_backoff: float = 60.0
    jitter: float = 0.0
    throttle: float = 0.0

    def delay(self, attempt: int, rand: float = 0.0) -> float:
        """Sleep before retry number ``attempt`` (0-based), never above ``max_backoff``."""

        base = self.initial_backoff * (2 ** attempt)
        return min(base + self.jitter * rand, self.max_backoff)


@dataclass
class WriteReport:
    batches: int = 0
    records: int = 0
    retries: int = 0


class RetryingBatchWriter:
    """
    Split work into batches and push each through a sink with retries.

    Only :class:`TransientStoreError` is retried. Anything else, or a transient
    error that survives ``max_retries`` attempts, propagates to the caller.
    """

    def __init__(
        self,
        policy: RetryPolicy = RetryPolicy(),
        sleep: Callable[[float], None] = time.sleep,
        rand: Callable[[], float] = random.random,
    ):
        if policy.batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.policy = policy
        self._sleep = sleep
        self._rand = rand

    def call(self, func: Callable[..., T], *args: Any, report: Optional[WriteReport] = None) -> T:
        attempt = 0
        while True:
            try:
                return func(*args)
            except TransientStoreError as exc:
                if attempt >= self.policy.max_retries:
                    LOGGER.error("Giving up after %d retries: %s", attempt, exc)
                    raise
                wait = self.policy.delay(attempt, self._rand())
                LOGGER.warning("Transient store error (%s); retry %d in %.1fs", exc, attempt + 1, wait)
                self._sleep(wait)
                attempt += 1
                if report is not None:
                    report.retries += 1

    def write(self, items: Iterable[T], sink: Callable[[List[T]], Any]) -> WriteReport:
        items = list(items)
        report = WriteReport()
        size = self.policy.batch_size
        for start in range(0, len(items), size):
            if start and self.policy.throttle > 0:
                self._sleep(self.policy.throttle)
            batch = items[start:start + size]
            self.call(sink, batch, report=report)
            report.batches += 1
            report.records += len(batch)
            LOGGER.debug("Batch %d written (%d records)", report.batches, len(batch))
        return report


@dataclass(frozen=True)
class UploadInfo:
    upload_id: str
    regional: str
    records: int
    uploaded_at: datetime


def _iso_day(value: Any) -> Optional[date]:
    if value in (None, ""):
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def record_id(record: Mapping[str, Any], regional: str) -> str:
    """Deterministic id from region, INCIDENCIA, ELEMENTO and DATA."""

    parts = [canonical_region(regional)]
    parts.extend(str(resolve_field(record, name) or "").strip() for name in ("INCIDENCIA", "ELEMENTO", "DATA"))
    return hashlib.sha1("|".join(parts).encode("utf-8")).hexdigest()


class IncidentStore:
    """Incidents partitioned by region in a DuckDB file."""

    def __init__(
        self,
        path: str | Path,
        writer: Optional[RetryingBatchWriter] = None,
        delete_page_size: int = DELETE_PAGE_SIZE,
    ):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.writer = writer or RetryingBatchWriter()
        self.delete_page_size = max(1, int(delete_page_size))
        with self._connect() as con:
            con.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {TABLE_NAME} (
                    record_id VARCHAR PRIMARY KEY,
                    upload_id VARCHAR NOT NULL,
                    regional VARCHAR NOT NULL,
                    data DATE,
                    uploaded_at TIMESTAMP NOT NULL,
                    payload VARCHAR NOT NULL
                )
                """
            )

    def _connect(self) -> duckdb.DuckDBPyConnection:
        try:
            return duckdb.connect(str(self.path))
        except duckdb.IOException as exc:
            raise TransientStoreError(str(exc)) from exc

    def upsert(
        self,
        records: Sequence[Mapping[str, Any]],
        regional: str,
        upload_id: Optional[str] = None,
    ) -> tuple[str, WriteReport]:
        """Insert or replace ``records`` under ``regional``; returns the upload id used."""

        region = canonical_region(regional)
        upload_id = upload_id or uuid.uuid4().hex[:12]
        uploaded_at = datetime.now()
        rows = [
            (
                record_id(record, region),
                upload_id,
                region,
                _iso_day(resolve_field(record, "DATA")),
                uploaded_at,
                json.dumps(dict(record), ensure_ascii=False, default=str),
            )
            for record in records
        ]

        def sink(batch):
            try:
                with self._connect() as con:
                    con.executemany(f"INSERT OR REPLACE INTO {TABLE_NAME} VALUES (?, ?, ?, ?, ?, ?)", batch)
            except duckdb.IOException as exc:
                raise TransientStoreError(str(exc)) from exc

        report = self.writer.write(rows, sink)
        LOGGER.info("Stored %d incident(s) for %s in %d batch(es) (upload %s)", report.records, region, report.batches, upload_id)
        return upload_id, report

    def _delete_pages(self, where: str, params: Sequence[Any]) -> int:
        def page() -> int:
            try:
                with self._connect() as con:
                    ids = [
                        row[0]
                        for row in con.execute(
                            f"SELECT record_id FROM {TABLE_NAME} WHERE {where} LIMIT {self.delete_page_size}",
                            list(params),
                        ).fetchall()
                    ]
                    if ids:
                        marks = ", ".join("?" for _ in ids)
                        con.execute(f"DELETE FROM {TABLE_NAME} WHERE record_id IN ({marks})", ids)
                    return len(ids)
            except duckdb.IOException as exc:
                raise TransientStoreError(str(exc)) from exc

        total = 0
        while True:
            removed = self.writer.call(page)
            if not removed:
                break
            total += removed
            LOGGER.debug("Deleted page of %d record(s)", removed)
        return total

    def delete_upload(self, upload_id: str) -> int:
        removed = self._delete_pages("upload_id = ?", [upload_id])
        LOGGER.info("Deleted %d record(s) of upload %s", removed, upload_id)
        return removed

    def delete_all(self, regional: str = ALL_REGIONS) -> int:
        region = canonical_region(regional)
        if region == ALL_REGIONS:
            removed = self._delete_pages("TRUE", [])
        else:
            removed = self._delete_pages("regional = ?", [region])
        LOGGER.info("Deleted %d record(s) from %s", removed, region)
        return removed

    def fetch(
        self,
        regional: str = ALL_REGIONS,
        start: date | str | None = None,
        end: date | str | None = None,
    ) -> List[dict]:
        """Stored incidents of a region (``TODOS`` for every region), newest first."""

        region = canonical_region(regional)
        sql = f"SELECT payload FROM {TABLE_NAME}"
        params: List[Any] = []
        if region != ALL_REGIONS:
            sql += " WHERE regional = ?"
            params.append(region)
        sql += " ORDER BY data DESC NULLS LAST, record_id"
        with self._connect() as con:
            payloads = [json.loads(row[0]) for row in con.execute(sql, params).fetchall()]
        return filter_by_date_range(payloads, start, end)

    def list_uploads(self) -> List[UploadInfo]:
        with self._connect() as con:
            rows = con.execute(
                f"""
                SELECT upload_id, regional, COUNT(*) AS records, MIN(uploaded_at) AS uploaded_at
                FROM {TABLE_NAME}
                GROUP BY upload_id, regional
                ORDER BY uploaded_at DESC, upload_id
                """
            ).fetchall()
        return [UploadInfo(*row) for row in rows]


__all__ = [
    "DELETE_PAGE_SIZE",
    "IncidentStore",
    "RetryPolicy",
    "RetryingBatchWriter",
    "TransientStoreError",
    "UploadInfo",
    "WriteReport",
    "record_id",
]
