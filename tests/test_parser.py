from __future__ import annotations

from datetime import datetime, timezone

import pytest

from glooko_ingest import parser
from glooko_ingest.model import (
    BasalRecord,
    BgReading,
    BolusRecord,
    CgmReading,
    DailyInsulinSummary,
    ExtractedFile,
    FoodRecord,
    ManualInsulinRecord,
)
from glooko_ingest.parser import classify_file_name, parse_export
from glooko_ingest.timestamps import resolve_tz

IMPORTED_AT = 1_700_000_000_000


def _utc_ms(*args: int) -> int:
    return int(datetime(*args, tzinfo=timezone.utc).timestamp() * 1000)


def _file(name: str, *lines: str) -> ExtractedFile:
    return ExtractedFile(name=name, content="\n".join(lines) + "\n")


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("cgm_data_1.csv", "cgm"),
        ("export/CGM_DATA_2.csv", "cgm"),
        ("bg_data_1.csv", "bg"),
        ("bolus_data_1.csv", "bolus"),
        ("basal_data_1.csv", "basal"),
        ("insulin_data_1.csv", "daily_insulin"),
        ("alarms_data_1.csv", "alarm"),
        ("carbs_data_1.csv", "carbs"),
        ("food_data_1.csv", "food"),
        ("exercise_data_1.csv", "exercise"),
        ("medication_data_1.csv", "medication"),
        ("manual_insulin_data_1.csv", "manual_insulin"),
        ("notes_data_1.csv", "note"),
        ("summary.csv", None),
    ],
)
def test_classify_file_name(name: str, expected: str | None) -> None:
    assert classify_file_name(name) == expected


def test_bolus_rows_are_typed() -> None:
    files = [
        _file(
            "bolus_data_1.csv",
            "Name:Jane Doe,Date Range:2024-01-01 - 2024-01-31",
            "Timestamp,Insulin Type,Blood Glucose Input (mg/dl),Carbs Input (g),"
            "Carbs Ratio,Insulin Delivered (U),Initial Delivery (U),"
            "Extended Delivery (U),Serial Number",
            "2024-01-15 08:30:00,Normal,110,45,10,5.5,5.5,0,ABC123",
            "2024-01-15 12:00:00,Extended,0,30,10,3.0,1.0,2.0,ABC123",
        )
    ]

    result = parse_export(files, imported_at=IMPORTED_AT)

    assert result.errors == []
    assert result.counts == {"bolus": 2}
    first, second = result.records
    assert isinstance(first, BolusRecord)
    assert first.timestamp == _utc_ms(2024, 1, 15, 16, 30)
    assert first.insulin_delivered_units == 5.5
    assert first.carbs_input_grams == 45.0
    assert first.bg_input_mg_dl == 110.0
    assert first.carb_ratio == 10.0
    assert first.extended_delivery_units is None
    assert first.device_serial == "ABC123"
    assert first.source_file == "bolus_data_1.csv"
    assert first.imported_at == IMPORTED_AT
    assert isinstance(second, BolusRecord)
    assert second.bolus_type == "Extended"
    assert second.bg_input_mg_dl == 0.0
    assert second.extended_delivery_units == 2.0


def test_bolus_with_only_carbs_is_kept_and_invalid_rows_dropped() -> None:
    files = [
        _file(
            "bolus_data_1.csv",
            "Timestamp,Insulin Delivered (U),Carbs Input (g)",
            "2024-01-15 08:30:00,0,20",
            "2024-01-15 09:30:00,150,0",
            "2024-01-15 10:30:00,,",
            "garbage,5,10",
        )
    ]

    result = parse_export(files, imported_at=IMPORTED_AT)

    assert len(result.records) == 1
    record = result.records[0]
    assert isinstance(record, BolusRecord)
    assert record.insulin_delivered_units == 0.0
    assert record.carbs_input_grams == 20.0


def test_glucose_outside_physiological_range_is_dropped() -> None:
    files = [
        _file(
            "cgm_data_1.csv",
            "Timestamp,CGM Glucose Value (mg/dl),Serial Number",
            "2024-01-15 08:00:00,120,SN1",
            "2024-01-15 08:05:00,700,SN1",
            "2024-01-15 08:10:00,10,SN1",
            "2024-01-15 08:15:00,abc,SN1",
            "2024-01-15 08:20:00,95,SN1",
        )
    ]

    result = parse_export(files, imported_at=IMPORTED_AT)

    assert [r.glucose_mg_dl for r in result.records] == [120.0, 95.0]
    assert all(isinstance(r, CgmReading) for r in result.records)
    assert result.counts == {"cgm": 2}


def test_bg_manual_flag() -> None:
    files = [
        _file(
            "bg_data_1.csv",
            "Timestamp,Glucose Value (mg/dl),Manual Reading",
            "2024-01-15 08:00:00,140,M",
            "2024-01-15 09:00:00,150,",
        )
    ]
    records = parse_export(files, imported_at=IMPORTED_AT).records
    assert isinstance(records[0], BgReading)
    assert records[0].is_manual is True
    assert isinstance(records[1], BgReading)
    assert records[1].is_manual is False


def test_daily_insulin_date_is_local_calendar_day() -> None:
    files = [
        _file(
            "insulin_data_1.csv",
            "Timestamp,Total Bolus (U),Total Basal (U),Total Insulin (U)",
            "2024-01-15 23:00:00,9.9,10.25,20.15",
            "2024-01-16 23:00:00,0,0,0",
        )
    ]

    result = parse_export(files, imported_at=IMPORTED_AT)

    assert len(result.records) == 1
    summary = result.records[0]
    assert isinstance(summary, DailyInsulinSummary)
    assert summary.date == "2024-01-15"
    assert summary.total_bolus_units == 9.9
    assert summary.total_basal_units == 10.25
    assert summary.total_insulin_units == 20.15


def test_basal_rows_need_a_positive_rate_within_limit() -> None:
    files = [
        _file(
            "basal_data_1.csv",
            "Timestamp,Insulin Type,Duration (minutes),Percentage (%),Rate,"
            "Insulin Delivered (U)",
            "2024-01-15 00:00:00,Scheduled,60,100,0.85,0.85",
            "2024-01-15 01:00:00,Temp,30,,12,",
            "2024-01-15 02:00:00,Suspend,30,,0,",
            "2024-01-15 03:00:00,Temp,30,,,0.4",
            "2024-01-15 04:00:00,Temp,30,80,0.6,0.3",
        )
    ]

    records = parse_export(files, imported_at=IMPORTED_AT).records

    assert len(records) == 2
    first, temp = records
    assert isinstance(first, BasalRecord)
    assert first.rate == 0.85
    assert first.duration_minutes == 60.0
    assert isinstance(temp, BasalRecord)
    assert temp.basal_type == "Temp"
    assert temp.rate == 0.6
    assert temp.percentage == 80.0


def test_quoted_food_name_with_comma() -> None:
    files = [
        _file(
            "food_data_1.csv",
            "Timestamp,Name,Carbs (g),Fat (g),Protein (g),Calories",
            '2024-01-15 12:00:00,"Pasta, cooked",45,2,8,220',
        )
    ]
    [food] = parse_export(files, imported_at=IMPORTED_AT).records
    assert isinstance(food, FoodRecord)
    assert food.name == "Pasta, cooked"
    assert food.carbs_grams == 45.0
    assert food.calories == 220.0


def test_manual_insulin_units() -> None:
    files = [
        _file(
            "manual_insulin_data_1.csv",
            "Timestamp,Name,Value,Insulin Type",
            "2024-01-15 21:00:00,Lantus,18,Long-acting",
        )
    ]
    [shot] = parse_export(files, imported_at=IMPORTED_AT).records
    assert isinstance(shot, ManualInsulinRecord)
    assert shot.units == 18.0
    assert shot.name == "Lantus"
    assert shot.insulin_type == "Long-acting"


def test_missing_required_column_is_reported() -> None:
    files = [
        _file("cgm_data_1.csv", "Timestamp,Serial Number", "2024-01-15 08:00:00,SN1"),
        _file(
            "carbs_data_1.csv",
            "Timestamp,Carbs (g)",
            "2024-01-15 08:00:00,30",
        ),
    ]

    result = parse_export(files, imported_at=IMPORTED_AT)

    assert result.counts == {"carbs": 1}
    assert len(result.errors) == 1
    assert "cgm_data_1.csv" in result.errors[0]
    assert "cgm_glucose" in result.errors[0]


def test_unknown_and_empty_files_are_skipped() -> None:
    files = [
        _file("readme_data.csv", "whatever"),
        _file("notes_data_1.csv", "Timestamp,Value"),
        ExtractedFile(name="alarms_data_1.csv", content=""),
    ]
    result = parse_export(files, imported_at=IMPORTED_AT)
    assert result.records == []
    assert result.counts == {}
    assert result.errors == []


def test_unexpected_error_is_isolated_to_one_file(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    real_parse_file = parser.parse_file

    def _parse_file(record_type, file, **kwargs):  # type: ignore[no-untyped-def]
        if file.name.startswith("alarms"):
            raise RuntimeError("boom")
        return real_parse_file(record_type, file, **kwargs)

    monkeypatch.setattr(parser, "parse_file", _parse_file)
    files = [
        _file("alarms_data_1.csv", "Timestamp,Alarm/Event", "2024-01-15 08:00:00,x"),
        _file("carbs_data_1.csv", "Timestamp,Carbs (g)", "2024-01-15 08:00:00,30"),
    ]

    result = parse_export(files, imported_at=IMPORTED_AT)

    assert result.errors == ["Error parsing alarms_data_1.csv: boom"]
    assert result.counts == {"carbs": 1}


def test_other_timezone_shifts_timestamps() -> None:
    files = [_file("carbs_data_1.csv", "Timestamp,Carbs (g)", "2024-01-15 08:00:00,30")]
    [record] = parse_export(
        files, imported_at=IMPORTED_AT, zone=resolve_tz("UTC")
    ).records
    assert record.timestamp == _utc_ms(2024, 1, 15, 8, 0)
