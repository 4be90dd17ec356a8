"""Una corrida de importación: parseo, guardado y metadatos."""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import tzinfo

from glooko_ingest.model import (
    ExtractedFile,
    ImportMetadata,
    ParseResult,
    StoreResult,
)
from glooko_ingest.parser import parse_export
from glooko_ingest.sources.archive import extract_files
from glooko_ingest.storage import MAX_BATCH_SIZE, RecordStore
from glooko_ingest.table import Table
from glooko_ingest.timestamps import SOURCE_TZ, format_date

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ImportOutcome:
    """Everything one ingestion run produced."""

    parse: ParseResult
    store: StoreResult
    metadata: ImportMetadata

    @property
    def errors(self) -> list[str]:
        return self.metadata.errors


def _now_ms() -> int:
    return int(time.time() * 1000)


def run_import(
    export: bytes | Sequence[ExtractedFile],
    table: Table,
    user_id: str,
    *,
    batch_size: int = MAX_BATCH_SIZE,
    zone: tzinfo | None = None,
    import_id: str | None = None,
) -> ImportOutcome:
    """Ingest one export into ``table``.

    Never raises for bad input data: container, file and row problems end up
    in the outcome's errors or are skipped.

    Args:
        export: Raw ZIP bytes or already extracted files.
        table: Destination table.
        user_id: Owner of the records.
        batch_size: Store batch size (capped at 25).
        zone: Timezone of naive timestamps (default: source timezone).
        import_id: Identifier for this run (default: random UUID).

    Returns:
        Parse and store results plus the persisted import metadata.
    """
    zone = zone or SOURCE_TZ
    started_at = _now_ms()
    run_id = import_id or str(uuid.uuid4())

    files = extract_files(export) if isinstance(export, bytes) else list(export)
    logger.info("Import %s: %d files", run_id, len(files))

    parsed = parse_export(files, imported_at=started_at, zone=zone)
    store = RecordStore(table, user_id, batch_size=batch_size, zone=zone)
    stored = store.store_records(parsed.records)

    if parsed.records:
        timestamps = [r.timestamp for r in parsed.records]
        start_date = format_date(min(timestamps), zone)
        end_date = format_date(max(timestamps), zone)
    else:
        start_date = end_date = format_date(started_at, zone)

    metadata = ImportMetadata(
        import_id=run_id,
        started_at=started_at,
        completed_at=_now_ms(),
        data_start_date=start_date,
        data_end_date=end_date,
        record_counts=dict(parsed.counts),
        total_records=len(parsed.records),
        errors=[*parsed.errors, *stored.errors],
    )
    try:
        store.store_import_metadata(metadata)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Failed to store metadata for import %s", run_id)
        metadata.errors.append(f"Error storing import metadata: {exc}")

    logger.info(
        "Import %s done: %d records (%d new, %d duplicates, %d errors) %s..%s",
        run_id,
        metadata.total_records,
        stored.written,
        stored.duplicates,
        len(metadata.errors),
        start_date,
        end_date,
    )
    return ImportOutcome(parse=parsed, store=stored, metadata=metadata)
