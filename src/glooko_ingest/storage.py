"""Escritura idempotente de registros y metadatos de importación."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict
from datetime import tzinfo
from typing import Any

from glooko_ingest.keys import derive_key, import_key, import_partition
from glooko_ingest.model import (
    DailyInsulinSummary,
    DiabetesRecord,
    ImportMetadata,
    StoreResult,
    record_to_dict,
)
from glooko_ingest.table import ConditionalWriteFailed, Table

logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 25
AGGREGATE_GUARD_ATTR = "total_insulin_units"

_WRITTEN = "written"
_DUPLICATE = "duplicate"


def record_item(
    user_id: str, record: DiabetesRecord, zone: tzinfo | None = None
) -> dict[str, Any]:
    """Table item (keys plus payload) for one record."""
    key = derive_key(user_id, record, zone)
    return {
        "pk": key.partition_key,
        "sk": key.sort_key,
        "gsi1pk": key.all_records_partition,
        "gsi1sk": key.all_records_sort,
        "gsi2pk": key.type_partition,
        "gsi2sk": key.type_sort,
        "data": record_to_dict(record),
    }


class RecordStore:
    """Writes records exactly once per identity into a :class:`Table`."""

    def __init__(
        self,
        table: Table,
        user_id: str,
        *,
        batch_size: int = MAX_BATCH_SIZE,
        zone: tzinfo | None = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self._table = table
        self._user_id = user_id
        self._batch_size = min(batch_size, MAX_BATCH_SIZE)
        self._zone = zone

    @property
    def user_id(self) -> str:
        return self._user_id

    def _write_one(self, record: DiabetesRecord) -> str:
        item = record_item(self._user_id, record, self._zone)
        try:
            if isinstance(record, DailyInsulinSummary):
                self._table.put_if_greater(
                    item, AGGREGATE_GUARD_ATTR, record.total_insulin_units
                )
            else:
                self._table.put_if_absent(item)
        except ConditionalWriteFailed:
            return _DUPLICATE
        return _WRITTEN

    def store_records(self, records: Sequence[DiabetesRecord]) -> StoreResult:
        """Persist records, counting new writes and duplicates.

        Batches are written one after another; the writes inside a batch run
        concurrently. A failure other than a conditional miss is recorded in
        ``errors`` and does not stop the remaining writes.

        Args:
            records: Records from one or more parsed files.

        Returns:
            Counts of written and duplicate records plus error messages.
        """
        written = 0
        duplicates = 0
        errors: list[str] = []
        total = len(records)

        for start in range(0, total, self._batch_size):
            batch = records[start : start + self._batch_size]
            with ThreadPoolExecutor(max_workers=len(batch)) as pool:
                futures = [pool.submit(self._write_one, record) for record in batch]
                for record, future in zip(batch, futures):
                    try:
                        outcome = future.result()
                    except Exception as exc:  # noqa: BLE001
                        logger.warning(
                            "Failed to store %s at %d: %s",
                            record.record_type,
                            record.timestamp,
                            exc,
                        )
                        errors.append(str(exc))
                        continue
                    if outcome == _WRITTEN:
                        written += 1
                    else:
                        duplicates += 1
            logger.debug(
                "Stored batch %d-%d of %d", start + 1, start + len(batch), total
            )

        logger.info(
            "Store finished: %d written, %d duplicates, %d errors",
            written,
            duplicates,
            len(errors),
        )
        return StoreResult(written=written, duplicates=duplicates, errors=errors)

    def store_import_metadata(self, metadata: ImportMetadata) -> None:
        """Persist the summary row of one ingestion run."""
        pk, sk = import_key(self._user_id, metadata)
        self._table.put({"pk": pk, "sk": sk, "data": asdict(metadata)})

    def recent_imports(self, limit: int = 10) -> list[ImportMetadata]:
        """Most recent import runs, newest first."""
        items = self._table.query(
            import_partition(self._user_id), limit=limit, newest_first=True
        )
        out: list[ImportMetadata] = []
        for item in items:
            data = item["data"]
            out.append(
                ImportMetadata(
                    import_id=str(data["import_id"]),
                    started_at=int(data["started_at"]),
                    completed_at=int(data["completed_at"]),
                    data_start_date=str(data["data_start_date"]),
                    data_end_date=str(data["data_end_date"]),
                    record_counts={
                        str(k): int(v) for k, v in data["record_counts"].items()
                    },
                    total_records=int(data["total_records"]),
                    errors=[str(e) for e in data.get("errors", [])],
                )
            )
        return out
