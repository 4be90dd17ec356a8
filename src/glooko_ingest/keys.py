"""Claves de tabla y hash de deduplicación por registro.

Esquema (particionado por fecha):

- PK: ``USR#{user}#{TYPE}#{YYYY-MM-DD}``, SK: ``{timestamp}#{hash}``
- Índice A (todos los tipos, por tiempo): ``USR#{user}#ALL`` / ``{timestamp}``
- Índice B (por tipo, por fecha): ``USR#{user}#{TYPE}`` / ``{date}#{timestamp}``

El resumen diario de insulina usa SK constante ``_``: un único ítem por fecha.
"""

from __future__ import annotations

from datetime import tzinfo
from hashlib import sha256

from glooko_ingest.model import (
    AlarmRecord,
    BasalRecord,
    BgReading,
    BolusRecord,
    CarbsRecord,
    CgmReading,
    DailyInsulinSummary,
    DiabetesRecord,
    ExerciseRecord,
    FoodRecord,
    ImportMetadata,
    ManualInsulinRecord,
    MedicationRecord,
    NoteRecord,
    RecordKey,
)
from glooko_ingest.timestamps import format_date

HASH_LENGTH = 12
TIMESTAMP_WIDTH = 15
SINGLETON_SORT_KEY = "_"


def pad_timestamp(timestamp_ms: int) -> str:
    """Zero-padded timestamp so lexical order equals numeric order."""
    return str(int(timestamp_ms)).zfill(TIMESTAMP_WIDTH)


def _canonical(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def distinguishing_fields(record: DiabetesRecord) -> tuple[object, ...]:
    """Fields that identify the real-world event behind a record."""
    if isinstance(record, (CgmReading, BgReading)):
        return (record.timestamp, record.glucose_mg_dl)
    if isinstance(record, BolusRecord):
        return (
            record.timestamp,
            record.insulin_delivered_units,
            record.carbs_input_grams,
        )
    if isinstance(record, BasalRecord):
        return (record.timestamp, record.rate, record.duration_minutes)
    if isinstance(record, DailyInsulinSummary):
        return (record.date,)
    if isinstance(record, AlarmRecord):
        return (record.timestamp, record.event)
    if isinstance(record, CarbsRecord):
        return (record.timestamp, record.carbs_grams)
    if isinstance(record, FoodRecord):
        return (record.timestamp, record.name, record.carbs_grams)
    if isinstance(record, ExerciseRecord):
        return (record.timestamp, record.name)
    if isinstance(record, MedicationRecord):
        return (record.timestamp, record.name, record.value)
    if isinstance(record, ManualInsulinRecord):
        return (record.timestamp, record.units)
    if isinstance(record, NoteRecord):
        return (record.timestamp, record.text)
    raise TypeError(f"Unsupported record: {type(record).__name__}")


def record_hash(record: DiabetesRecord) -> str:
    """Short SHA-256 digest of the record's distinguishing fields."""
    payload = ":".join(_canonical(v) for v in distinguishing_fields(record))
    return sha256(payload.encode("utf-8")).hexdigest()[:HASH_LENGTH]


def derive_key(
    user_id: str, record: DiabetesRecord, zone: tzinfo | None = None
) -> RecordKey:
    """Deterministic table keys for ``record`` owned by ``user_id``."""
    timestamp = pad_timestamp(record.timestamp)
    type_upper = record.record_type.upper()
    all_partition = f"USR#{user_id}#ALL"
    type_partition = f"USR#{user_id}#{type_upper}"

    if isinstance(record, DailyInsulinSummary):
        return RecordKey(
            partition_key=f"{type_partition}#{record.date}",
            sort_key=SINGLETON_SORT_KEY,
            all_records_partition=all_partition,
            all_records_sort=timestamp,
            type_partition=type_partition,
            type_sort=record.date,
        )

    date = format_date(record.timestamp, zone)
    return RecordKey(
        partition_key=f"{type_partition}#{date}",
        sort_key=f"{timestamp}#{record_hash(record)}",
        all_records_partition=all_partition,
        all_records_sort=timestamp,
        type_partition=type_partition,
        type_sort=f"{date}#{timestamp}",
    )


def import_partition(user_id: str) -> str:
    return f"USR#{user_id}#IMPORT"


def import_key(user_id: str, metadata: ImportMetadata) -> tuple[str, str]:
    """``(pk, sk)`` of an import metadata row."""
    return (
        import_partition(user_id),
        f"{pad_timestamp(metadata.started_at)}#{metadata.import_id}",
    )
