"""Consultas de lectura sobre la tabla de registros."""

from __future__ import annotations

import logging
import time
from datetime import tzinfo

from glooko_ingest.consolidate import summarize_treatments
from glooko_ingest.keys import pad_timestamp
from glooko_ingest.model import (
    AGGREGATE_TYPE,
    BolusRecord,
    CarbsRecord,
    DiabetesRecord,
    ManualInsulinRecord,
    TreatmentSummary,
    record_from_dict,
)
from glooko_ingest.table import INDEX_ALL, INDEX_TYPE, Table
from glooko_ingest.timestamps import format_date

logger = logging.getLogger(__name__)

HOUR_MS = 60 * 60 * 1000

# Sorts after every "#<hash>" suffix and every digit.
_RANGE_END = "~"


class RecordQueries:
    """Read access to one user's records."""

    def __init__(self, table: Table, user_id: str, zone: tzinfo | None = None):
        self._table = table
        self._user_id = user_id
        self._zone = zone

    def _records(self, items: list[dict]) -> list[DiabetesRecord]:
        out: list[DiabetesRecord] = []
        for item in items:
            try:
                out.append(record_from_dict(item["data"]))
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping unreadable item %s: %s", item.get("pk"), exc)
        return out

    def query_by_type_and_range(
        self,
        record_type: str,
        start_ms: int,
        end_ms: int,
        limit: int | None = None,
    ) -> list[DiabetesRecord]:
        """Records of one type with ``start_ms <= timestamp <= end_ms``.

        Daily aggregates are matched by their date instead, so every day the
        window touches is returned.

        Args:
            record_type: One of ``RECORD_TYPES``.
            start_ms: Window start (UTC milliseconds, inclusive).
            end_ms: Window end (UTC milliseconds, inclusive).
            limit: Maximum number of records to return.

        Returns:
            Records ordered newest first.
        """
        start_date = format_date(start_ms, self._zone)
        end_date = format_date(end_ms, self._zone)
        if record_type == AGGREGATE_TYPE:
            # Aggregates sort by bare date: match whole days in the window.
            start_key, end_key = start_date, end_date
        else:
            start_key = f"{start_date}#{pad_timestamp(start_ms)}"
            end_key = f"{end_date}#{pad_timestamp(end_ms)}{_RANGE_END}"
        items = self._table.query(
            f"USR#{self._user_id}#{record_type.upper()}",
            start_key,
            end_key,
            index=INDEX_TYPE,
            limit=limit,
            newest_first=True,
        )
        return self._records(items)

    def query_all_types_by_range(
        self, start_ms: int, end_ms: int, limit: int | None = None
    ) -> list[DiabetesRecord]:
        """Records of every type in the window, newest first."""
        items = self._table.query(
            f"USR#{self._user_id}#ALL",
            pad_timestamp(start_ms),
            pad_timestamp(end_ms),
            index=INDEX_ALL,
            limit=limit,
            newest_first=True,
        )
        return self._records(items)

    def query_daily_aggregates_by_date_range(
        self, start_date: str, end_date: str
    ) -> dict[str, float]:
        """Total daily insulin keyed by ``YYYY-MM-DD``, both ends inclusive."""
        items = self._table.query(
            f"USR#{self._user_id}#{AGGREGATE_TYPE.upper()}",
            start_date,
            end_date,
            index=INDEX_TYPE,
        )
        totals: dict[str, float] = {}
        for item in items:
            data = item["data"]
            totals[str(data["date"])] = float(data["total_insulin_units"])
        return totals

    def get_treatment_summary(
        self, window_hours: float = 4, now_ms: int | None = None
    ) -> TreatmentSummary:
        """Insulin and carbs recorded in the trailing ``window_hours``."""
        end_ms = int(time.time() * 1000) if now_ms is None else int(now_ms)
        start_ms = end_ms - int(window_hours * HOUR_MS)

        boluses = [
            r
            for r in self.query_by_type_and_range(
                BolusRecord.record_type, start_ms, end_ms
            )
            if isinstance(r, BolusRecord)
        ]
        carbs = [
            r
            for r in self.query_by_type_and_range(
                CarbsRecord.record_type, start_ms, end_ms
            )
            if isinstance(r, CarbsRecord)
        ]
        manual = [
            r
            for r in self.query_by_type_and_range(
                ManualInsulinRecord.record_type, start_ms, end_ms
            )
            if isinstance(r, ManualInsulinRecord)
        ]
        return summarize_treatments(
            boluses,
            carbs,
            manual,
            window_start_ms=start_ms,
            window_end_ms=end_ms,
        )
