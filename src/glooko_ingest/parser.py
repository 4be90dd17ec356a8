"""Clasificación y parseo de los CSV de una exportación de Glooko.

Cada archivo se clasifica por su nombre, se localizan sus columnas por alias
y cada fila válida se convierte en un registro tipado. Una fila inválida se
descarta sin abortar el resto del archivo.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from datetime import tzinfo

from glooko_ingest.csv_utils import (
    cell,
    find_column,
    find_header_and_data_start,
    parse_csv_line,
    parse_number,
    split_lines,
)
from glooko_ingest.model import (
    AlarmRecord,
    BasalRecord,
    BgReading,
    BolusRecord,
    BolusType,
    CarbsRecord,
    CgmReading,
    DailyInsulinSummary,
    DiabetesRecord,
    ExerciseIntensity,
    ExerciseRecord,
    ExtractedFile,
    FoodRecord,
    ManualInsulinRecord,
    MedicationRecord,
    NoteRecord,
    ParseResult,
)
from glooko_ingest.timestamps import SOURCE_TZ, format_date, parse_timestamp
from glooko_ingest.validation import (
    is_valid_basal_rate,
    is_valid_carbs,
    is_valid_glucose,
    is_valid_insulin_bolus,
)

logger = logging.getLogger(__name__)

COLUMN_ALIASES: dict[str, tuple[str, ...]] = {
    "timestamp": ("timestamp", "datetime", "time"),
    "serial": ("serialnumber",),
    "cgm_glucose": ("cgmglucosevaluemgdl", "glucosevalue", "glucose"),
    "bg_glucose": ("glucosevaluemgdl", "glucosevalue", "glucose"),
    "manual": ("manualreading", "manual"),
    "insulin_delivered": ("insulindeliveredu", "insulindelivered", "delivered"),
    "carbs_input": ("carbsinputg", "carbsinput", "carbs"),
    "bolus_type": ("insulintype", "bolustype", "type"),
    "bg_input": ("bloodglucoseinputmgdl", "bginput", "glucose"),
    "carb_ratio": ("carbsratio", "ratio"),
    "initial_delivery": ("initialdeliveryu", "initialdelivery"),
    "extended_delivery": ("extendeddeliveryu", "extendeddelivery"),
    "basal_type": ("insulintype", "basaltype", "type"),
    "duration": ("durationminutes", "duration"),
    "percentage": ("percentage",),
    "rate": ("rate",),
    "total_bolus": ("totalbolusu", "totalbolus", "bolus"),
    "total_basal": ("totalbasalu", "totalbasal", "basal"),
    "total_insulin": ("totalinsulinu", "totalinsulin", "total"),
    "alarm_event": ("alarmevent", "alarm", "event"),
    "carbs": ("carbsg", "carbs"),
    "food_name": ("name", "food", "description"),
    "fat": ("fatg", "fat"),
    "protein": ("proteing", "protein"),
    "calories": ("calories",),
    "serving_quantity": ("servingquantity", "serving"),
    "servings": ("numberofservings", "servings"),
    "exercise_name": ("name", "exercise", "activity"),
    "intensity": ("intensity",),
    "calories_burned": ("caloriesburned", "calories"),
    "medication_name": ("name", "medication"),
    "medication_value": ("value", "dose"),
    "medication_type": ("medicationtype", "type"),
    "manual_units": ("value", "units", "dose"),
    "insulin_name": ("name", "insulin"),
    "insulin_type": ("insulintype", "type"),
    "note_text": ("value", "note", "text"),
}


@dataclass(frozen=True)
class _RowContext:
    source_file: str
    imported_at: int
    zone: tzinfo


Columns = dict[str, int | None]
RowBuilder = Callable[
    [Sequence[str], int, Columns, _RowContext], DiabetesRecord | None
]


@dataclass(frozen=True)
class _FileSpec:
    required: tuple[str, ...]
    optional: tuple[str, ...]
    build: RowBuilder


def _num(row: Sequence[str], cols: Columns, name: str) -> float | None:
    return parse_number(cell(row, cols.get(name)))


def _num0(row: Sequence[str], cols: Columns, name: str) -> float:
    value = _num(row, cols, name)
    return value if value is not None else 0.0


def _positive_or_none(row: Sequence[str], cols: Columns, name: str) -> float | None:
    value = _num(row, cols, name)
    return value if value is not None and value > 0 else None


def _text(row: Sequence[str], cols: Columns, name: str) -> str:
    return cell(row, cols.get(name)).strip()


def _text_or_none(row: Sequence[str], cols: Columns, name: str) -> str | None:
    return _text(row, cols, name) or None


def _build_cgm(
    row: Sequence[str], ts: int, cols: Columns, ctx: _RowContext
) -> CgmReading | None:
    glucose = _num(row, cols, "cgm_glucose")
    if glucose is None or not is_valid_glucose(glucose):
        return None
    return CgmReading(
        timestamp=ts,
        glucose_mg_dl=glucose,
        device_serial=_text_or_none(row, cols, "serial"),
        source_file=ctx.source_file,
        imported_at=ctx.imported_at,
    )


def _build_bg(
    row: Sequence[str], ts: int, cols: Columns, ctx: _RowContext
) -> BgReading | None:
    glucose = _num(row, cols, "bg_glucose")
    if glucose is None or not is_valid_glucose(glucose):
        return None
    manual = _text(row, cols, "manual")
    return BgReading(
        timestamp=ts,
        glucose_mg_dl=glucose,
        is_manual=manual.upper() == "M" or manual.lower() == "true",
        device_serial=_text_or_none(row, cols, "serial"),
        source_file=ctx.source_file,
        imported_at=ctx.imported_at,
    )


def _bolus_type(raw: str) -> BolusType:
    lower = raw.lower()
    if "extend" in lower:
        return "Extended"
    if "combo" in lower:
        return "Combo"
    return "Normal"


def _build_bolus(
    row: Sequence[str], ts: int, cols: Columns, ctx: _RowContext
) -> BolusRecord | None:
    insulin = _num0(row, cols, "insulin_delivered")
    carbs = _num0(row, cols, "carbs_input")
    valid_insulin = is_valid_insulin_bolus(insulin)
    valid_carbs = is_valid_carbs(carbs)
    if not valid_insulin and not valid_carbs:
        return None
    bg_input = _num0(row, cols, "bg_input")
    return BolusRecord(
        timestamp=ts,
        insulin_delivered_units=insulin if valid_insulin else 0.0,
        carbs_input_grams=carbs if valid_carbs else 0.0,
        bolus_type=_bolus_type(_text(row, cols, "bolus_type")),
        bg_input_mg_dl=bg_input if is_valid_glucose(bg_input) else 0.0,
        carb_ratio=_num0(row, cols, "carb_ratio"),
        initial_delivery_units=_positive_or_none(row, cols, "initial_delivery"),
        extended_delivery_units=_positive_or_none(row, cols, "extended_delivery"),
        device_serial=_text_or_none(row, cols, "serial"),
        source_file=ctx.source_file,
        imported_at=ctx.imported_at,
    )


def _build_basal(
    row: Sequence[str], ts: int, cols: Columns, ctx: _RowContext
) -> BasalRecord | None:
    rate = _num(row, cols, "rate")
    if rate is None or rate <= 0 or not is_valid_basal_rate(rate):
        return None
    return BasalRecord(
        timestamp=ts,
        basal_type=_text(row, cols, "basal_type") or "Scheduled",
        duration_minutes=_num0(row, cols, "duration"),
        percentage=_positive_or_none(row, cols, "percentage"),
        rate=rate,
        insulin_delivered_units=_positive_or_none(row, cols, "insulin_delivered"),
        device_serial=_text_or_none(row, cols, "serial"),
        source_file=ctx.source_file,
        imported_at=ctx.imported_at,
    )


def _build_daily_insulin(
    row: Sequence[str], ts: int, cols: Columns, ctx: _RowContext
) -> DailyInsulinSummary | None:
    total = _num(row, cols, "total_insulin")
    if total is None or total <= 0:
        return None
    return DailyInsulinSummary(
        timestamp=ts,
        date=format_date(ts, ctx.zone),
        total_bolus_units=_num0(row, cols, "total_bolus"),
        total_basal_units=_num0(row, cols, "total_basal"),
        total_insulin_units=total,
        device_serial=_text_or_none(row, cols, "serial"),
        source_file=ctx.source_file,
        imported_at=ctx.imported_at,
    )


def _build_alarm(
    row: Sequence[str], ts: int, cols: Columns, ctx: _RowContext
) -> AlarmRecord | None:
    event = _text(row, cols, "alarm_event")
    if not event:
        return None
    return AlarmRecord(
        timestamp=ts,
        event=event,
        device_serial=_text_or_none(row, cols, "serial"),
        source_file=ctx.source_file,
        imported_at=ctx.imported_at,
    )


def _build_carbs(
    row: Sequence[str], ts: int, cols: Columns, ctx: _RowContext
) -> CarbsRecord | None:
    carbs = _num(row, cols, "carbs")
    if carbs is None or not is_valid_carbs(carbs):
        return None
    return CarbsRecord(
        timestamp=ts,
        carbs_grams=carbs,
        source_file=ctx.source_file,
        imported_at=ctx.imported_at,
    )


def _build_food(
    row: Sequence[str], ts: int, cols: Columns, ctx: _RowContext
) -> FoodRecord | None:
    name = _text(row, cols, "food_name")
    if not name:
        return None
    carbs = _num0(row, cols, "carbs")
    return FoodRecord(
        timestamp=ts,
        name=name,
        carbs_grams=carbs if is_valid_carbs(carbs) else None,
        fat_grams=_positive_or_none(row, cols, "fat"),
        protein_grams=_positive_or_none(row, cols, "protein"),
        calories=_positive_or_none(row, cols, "calories"),
        serving_quantity=_positive_or_none(row, cols, "serving_quantity"),
        number_of_servings=_positive_or_none(row, cols, "servings"),
        source_file=ctx.source_file,
        imported_at=ctx.imported_at,
    )


def _intensity(raw: str) -> ExerciseIntensity | None:
    if not raw:
        return None
    lower = raw.lower()
    if "low" in lower:
        return "Low"
    if "high" in lower:
        return "High"
    if "med" in lower:
        return "Medium"
    return "Other"


def _build_exercise(
    row: Sequence[str], ts: int, cols: Columns, ctx: _RowContext
) -> ExerciseRecord | None:
    name = _text(row, cols, "exercise_name")
    if not name:
        return None
    return ExerciseRecord(
        timestamp=ts,
        name=name,
        intensity=_intensity(_text(row, cols, "intensity")),
        duration_minutes=_positive_or_none(row, cols, "duration"),
        calories_burned=_positive_or_none(row, cols, "calories_burned"),
        source_file=ctx.source_file,
        imported_at=ctx.imported_at,
    )


def _build_medication(
    row: Sequence[str], ts: int, cols: Columns, ctx: _RowContext
) -> MedicationRecord | None:
    name = _text(row, cols, "medication_name")
    if not name:
        return None
    return MedicationRecord(
        timestamp=ts,
        name=name,
        value=_positive_or_none(row, cols, "medication_value"),
        medication_type=_text_or_none(row, cols, "medication_type"),
        source_file=ctx.source_file,
        imported_at=ctx.imported_at,
    )


def _build_manual_insulin(
    row: Sequence[str], ts: int, cols: Columns, ctx: _RowContext
) -> ManualInsulinRecord | None:
    units = _num(row, cols, "manual_units")
    if units is None or not is_valid_insulin_bolus(units):
        return None
    return ManualInsulinRecord(
        timestamp=ts,
        units=units,
        name=_text_or_none(row, cols, "insulin_name"),
        insulin_type=_text_or_none(row, cols, "insulin_type"),
        source_file=ctx.source_file,
        imported_at=ctx.imported_at,
    )


def _build_note(
    row: Sequence[str], ts: int, cols: Columns, ctx: _RowContext
) -> NoteRecord | None:
    text = _text(row, cols, "note_text")
    if not text:
        return None
    return NoteRecord(
        timestamp=ts,
        text=text,
        source_file=ctx.source_file,
        imported_at=ctx.imported_at,
    )


FILE_SPECS: dict[str, _FileSpec] = {
    "cgm": _FileSpec(("timestamp", "cgm_glucose"), ("serial",), _build_cgm),
    "bg": _FileSpec(("timestamp", "bg_glucose"), ("manual", "serial"), _build_bg),
    "bolus": _FileSpec(
        ("timestamp", "insulin_delivered"),
        (
            "carbs_input",
            "bolus_type",
            "bg_input",
            "carb_ratio",
            "initial_delivery",
            "extended_delivery",
            "serial",
        ),
        _build_bolus,
    ),
    "basal": _FileSpec(
        ("timestamp", "rate"),
        ("basal_type", "duration", "percentage", "insulin_delivered", "serial"),
        _build_basal,
    ),
    "daily_insulin": _FileSpec(
        ("timestamp", "total_insulin"),
        ("total_bolus", "total_basal", "serial"),
        _build_daily_insulin,
    ),
    "alarm": _FileSpec(("timestamp", "alarm_event"), ("serial",), _build_alarm),
    "carbs": _FileSpec(("timestamp", "carbs"), (), _build_carbs),
    "food": _FileSpec(
        ("timestamp", "food_name"),
        ("carbs", "fat", "protein", "calories", "serving_quantity", "servings"),
        _build_food,
    ),
    "exercise": _FileSpec(
        ("timestamp", "exercise_name"),
        ("intensity", "duration", "calories_burned"),
        _build_exercise,
    ),
    "medication": _FileSpec(
        ("timestamp", "medication_name"),
        ("medication_value", "medication_type"),
        _build_medication,
    ),
    "manual_insulin": _FileSpec(
        ("timestamp", "manual_units"),
        ("insulin_name", "insulin_type"),
        _build_manual_insulin,
    ),
    "note": _FileSpec(("timestamp", "note_text"), (), _build_note),
}


def classify_file_name(name: str) -> str | None:
    """Record type implied by an export file name, or None when unknown."""
    lower = name.lower()

    def has(*parts: str) -> bool:
        return any(part in lower for part in parts)

    if has("cgm_data", "cgm-data"):
        return "cgm"
    if has("bg_data", "bg-data"):
        return "bg"
    if has("bolus_data", "bolus-data"):
        return "bolus"
    if has("basal_data", "basal-data"):
        return "basal"
    if has("insulin_data", "insulin-data") and not has("bolus", "basal", "manual"):
        return "daily_insulin"
    if has("alarms_data", "alarm"):
        return "alarm"
    if has("carbs_data", "carbs-data"):
        return "carbs"
    if has("food_data", "food-data"):
        return "food"
    if has("exercise_data", "exercise-data"):
        return "exercise"
    if has("medication_data", "medication-data"):
        return "medication"
    if has("manual_insulin", "manual-insulin", "manualinsulin"):
        return "manual_insulin"
    if has("notes_data", "notes-data"):
        return "note"
    return None


def resolve_columns(header: Sequence[str], names: Iterable[str]) -> Columns:
    """Map semantic column names to header indexes (None when absent)."""
    return {name: find_column(header, COLUMN_ALIASES[name]) for name in names}


def parse_file(
    record_type: str,
    file: ExtractedFile,
    *,
    imported_at: int,
    zone: tzinfo | None = None,
) -> tuple[list[DiabetesRecord], str | None]:
    """Parse one classified file.

    Returns:
        ``(records, diagnostic)``; the diagnostic is set only when a required
        column is missing, in which case no records are returned.
    """
    spec = FILE_SPECS[record_type]
    lines = split_lines(file.content)
    header_idx, data_start = find_header_and_data_start(lines)
    if len(lines) <= header_idx:
        return [], None

    header = parse_csv_line(lines[header_idx])
    cols = resolve_columns(header, spec.required + spec.optional)
    missing = [name for name in spec.required if cols[name] is None]
    if missing:
        return [], (
            f"{file.name}: missing required column(s) {', '.join(missing)} "
            f"for {record_type}"
        )

    ctx = _RowContext(
        source_file=file.name, imported_at=imported_at, zone=zone or SOURCE_TZ
    )
    records: list[DiabetesRecord] = []
    for line in lines[data_start:]:
        row = parse_csv_line(line)
        ts = parse_timestamp(cell(row, cols["timestamp"]), ctx.zone)
        if ts is None:
            continue
        record = spec.build(row, ts, cols, ctx)
        if record is not None:
            records.append(record)
    return records, None


def parse_export(
    files: Iterable[ExtractedFile],
    *,
    imported_at: int | None = None,
    zone: tzinfo | None = None,
) -> ParseResult:
    """Parse every recognised file of one export.

    Args:
        files: Extracted files, in any order.
        imported_at: Import time stamped on each record (default: now).
        zone: Timezone for naive timestamps (default: source timezone).

    Returns:
        Records, per-type counts and per-file diagnostics.
    """
    stamp = imported_at if imported_at is not None else int(time.time() * 1000)
    records: list[DiabetesRecord] = []
    counts: dict[str, int] = {}
    errors: list[str] = []

    for file in files:
        record_type = classify_file_name(file.name)
        if record_type is None:
            logger.debug("Skipping unrecognised file %s", file.name)
            continue
        try:
            parsed, diagnostic = parse_file(
                record_type, file, imported_at=stamp, zone=zone
            )
        except Exception as exc:  # noqa: BLE001
            logger.exception("Error parsing %s", file.name)
            errors.append(f"Error parsing {file.name}: {exc}")
            continue
        if diagnostic:
            logger.warning(diagnostic)
            errors.append(diagnostic)
            continue
        if parsed:
            records.extend(parsed)
            counts[record_type] = counts.get(record_type, 0) + len(parsed)
        logger.debug(
            "Parsed %d %s records from %s", len(parsed), record_type, file.name
        )

    return ParseResult(records=records, counts=counts, errors=errors)
