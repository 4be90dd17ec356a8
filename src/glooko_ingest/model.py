"""Modelos tipados para registros de una exportación de Glooko."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from typing import Any, ClassVar, Literal, Union


@dataclass(frozen=True)
class ExtractedFile:
    """One text file pulled out of an export archive."""

    name: str
    content: str


@dataclass(frozen=True)
class CgmReading:
    """Continuous glucose monitor reading (cgm_data_*.csv)."""

    record_type: ClassVar[str] = "cgm"

    timestamp: int
    glucose_mg_dl: float
    device_serial: str | None = None
    source_file: str | None = None
    imported_at: int = 0


@dataclass(frozen=True)
class BgReading:
    """Fingerstick blood glucose reading (bg_data_*.csv)."""

    record_type: ClassVar[str] = "bg"

    timestamp: int
    glucose_mg_dl: float
    is_manual: bool = False
    device_serial: str | None = None
    source_file: str | None = None
    imported_at: int = 0


BolusType = Literal["Normal", "Extended", "Combo", "Other"]


@dataclass(frozen=True)
class BolusRecord:
    """Insulin bolus with its carb/BG calculator context (bolus_data_*.csv)."""

    record_type: ClassVar[str] = "bolus"

    timestamp: int
    insulin_delivered_units: float
    carbs_input_grams: float = 0.0
    bolus_type: BolusType = "Normal"
    bg_input_mg_dl: float = 0.0
    carb_ratio: float = 0.0
    initial_delivery_units: float | None = None
    extended_delivery_units: float | None = None
    device_serial: str | None = None
    source_file: str | None = None
    imported_at: int = 0


@dataclass(frozen=True)
class BasalRecord:
    """Basal rate segment (basal_data_*.csv)."""

    record_type: ClassVar[str] = "basal"

    timestamp: int
    basal_type: str = "Scheduled"
    duration_minutes: float = 0.0
    percentage: float | None = None
    rate: float | None = None
    insulin_delivered_units: float | None = None
    device_serial: str | None = None
    source_file: str | None = None
    imported_at: int = 0


@dataclass(frozen=True)
class DailyInsulinSummary:
    """Running daily insulin totals, one per calendar date (insulin_data_*.csv).

    ``date`` is the calendar date in the source timezone, never the UTC date.
    """

    record_type: ClassVar[str] = "daily_insulin"

    timestamp: int
    date: str
    total_bolus_units: float = 0.0
    total_basal_units: float = 0.0
    total_insulin_units: float = 0.0
    device_serial: str | None = None
    source_file: str | None = None
    imported_at: int = 0


@dataclass(frozen=True)
class CarbsRecord:
    """Standalone carbohydrate entry (carbs_data_*.csv)."""

    record_type: ClassVar[str] = "carbs"

    timestamp: int
    carbs_grams: float
    source_file: str | None = None
    imported_at: int = 0


@dataclass(frozen=True)
class AlarmRecord:
    """Device alarm or event (alarms_data_*.csv)."""

    record_type: ClassVar[str] = "alarm"

    timestamp: int
    event: str
    device_serial: str | None = None
    source_file: str | None = None
    imported_at: int = 0


@dataclass(frozen=True)
class FoodRecord:
    """Food log entry (food_data_*.csv)."""

    record_type: ClassVar[str] = "food"

    timestamp: int
    name: str
    carbs_grams: float | None = None
    fat_grams: float | None = None
    protein_grams: float | None = None
    calories: float | None = None
    serving_quantity: float | None = None
    number_of_servings: float | None = None
    source_file: str | None = None
    imported_at: int = 0


ExerciseIntensity = Literal["Low", "Medium", "High", "Other"]


@dataclass(frozen=True)
class ExerciseRecord:
    """Exercise entry (exercise_data_*.csv)."""

    record_type: ClassVar[str] = "exercise"

    timestamp: int
    name: str
    intensity: ExerciseIntensity | None = None
    duration_minutes: float | None = None
    calories_burned: float | None = None
    source_file: str | None = None
    imported_at: int = 0


@dataclass(frozen=True)
class MedicationRecord:
    """Non-insulin medication entry (medication_data_*.csv)."""

    record_type: ClassVar[str] = "medication"

    timestamp: int
    name: str
    value: float | None = None
    medication_type: str | None = None
    source_file: str | None = None
    imported_at: int = 0


@dataclass(frozen=True)
class ManualInsulinRecord:
    """Pen or syringe injection logged by hand (manual_insulin_data_*.csv)."""

    record_type: ClassVar[str] = "manual_insulin"

    timestamp: int
    units: float
    name: str | None = None
    insulin_type: str | None = None
    source_file: str | None = None
    imported_at: int = 0


@dataclass(frozen=True)
class NoteRecord:
    """Free-text note (notes_data_*.csv)."""

    record_type: ClassVar[str] = "note"

    timestamp: int
    text: str
    source_file: str | None = None
    imported_at: int = 0


DiabetesRecord = Union[
    CgmReading,
    BgReading,
    BolusRecord,
    BasalRecord,
    DailyInsulinSummary,
    CarbsRecord,
    AlarmRecord,
    FoodRecord,
    ExerciseRecord,
    MedicationRecord,
    ManualInsulinRecord,
    NoteRecord,
]

RECORD_CLASSES: dict[str, type[Any]] = {
    cls.record_type: cls
    for cls in (
        CgmReading,
        BgReading,
        BolusRecord,
        BasalRecord,
        DailyInsulinSummary,
        CarbsRecord,
        AlarmRecord,
        FoodRecord,
        ExerciseRecord,
        MedicationRecord,
        ManualInsulinRecord,
        NoteRecord,
    )
}

RECORD_TYPES: tuple[str, ...] = tuple(RECORD_CLASSES)

AGGREGATE_TYPE = DailyInsulinSummary.record_type


def record_to_dict(record: DiabetesRecord) -> dict[str, Any]:
    """Serialize a record to a plain dict tagged with ``type``."""
    return {"type": record.record_type, **asdict(record)}


def record_from_dict(data: dict[str, Any]) -> DiabetesRecord:
    """Rebuild a record from :func:`record_to_dict` output.

    Raises:
        ValueError: If the ``type`` tag is unknown.
    """
    record_type = data.get("type")
    cls = RECORD_CLASSES.get(str(record_type))
    if cls is None:
        raise ValueError(f"Unknown record type: {record_type!r}")
    names = {f.name for f in fields(cls)}
    kwargs = {k: v for k, v in data.items() if k in names}
    kwargs["timestamp"] = int(kwargs["timestamp"])
    if "imported_at" in kwargs:
        kwargs["imported_at"] = int(kwargs["imported_at"])
    return cls(**kwargs)


@dataclass(frozen=True)
class RecordKey:
    """Primary and secondary-index keys for one stored record."""

    partition_key: str
    sort_key: str
    all_records_partition: str
    all_records_sort: str
    type_partition: str
    type_sort: str


@dataclass(frozen=True)
class ParseResult:
    """Output of parsing every file of one export."""

    records: list[DiabetesRecord] = field(default_factory=list)
    counts: dict[str, int] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class StoreResult:
    """Tally of one batch write."""

    written: int = 0
    duplicates: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ImportMetadata:
    """Summary row persisted once per ingestion run."""

    import_id: str
    started_at: int
    completed_at: int
    data_start_date: str
    data_end_date: str
    record_counts: dict[str, int]
    total_records: int
    errors: list[str] = field(default_factory=list)


TreatmentKind = Literal["insulin", "carbs"]


@dataclass(frozen=True)
class Treatment:
    """Single insulin or carb event for chart overlays."""

    timestamp: int
    kind: TreatmentKind
    value: float


@dataclass(frozen=True)
class TreatmentSummary:
    """Insulin and carb totals inside a trailing window."""

    window_start_ms: int
    window_end_ms: int
    total_insulin_units: float
    total_carbs_grams: float
    bolus_count: int
    treatments: list[Treatment] = field(default_factory=list)
