from __future__ import annotations

from datetime import date, datetime, timezone

import pandas as pd
import pytest

from glooko_ingest.consolidate import (
    REPORT_COLUMNS,
    build_calendar,
    daily_glucose_summary,
    daily_report,
    drop_empty_days,
    glucose_frame,
    summarize_treatments,
)
from glooko_ingest.model import (
    BasalRecord,
    BolusRecord,
    CarbsRecord,
    CgmReading,
    DailyInsulinSummary,
    DiabetesRecord,
    ManualInsulinRecord,
)


def _utc_ms(*args: int) -> int:
    return int(datetime(*args, tzinfo=timezone.utc).timestamp() * 1000)


def _day_records() -> list[DiabetesRecord]:
    return [
        CgmReading(timestamp=_utc_ms(2024, 1, 15, 16, 0), glucose_mg_dl=60.0),
        CgmReading(timestamp=_utc_ms(2024, 1, 15, 20, 0), glucose_mg_dl=120.0),
        CgmReading(timestamp=_utc_ms(2024, 1, 16, 4, 0), glucose_mg_dl=200.0),
        BolusRecord(
            timestamp=_utc_ms(2024, 1, 15, 16, 30),
            insulin_delivered_units=5.5,
            carbs_input_grams=45.0,
        ),
        BolusRecord(
            timestamp=_utc_ms(2024, 1, 15, 20, 0),
            insulin_delivered_units=3.0,
            carbs_input_grams=30.0,
        ),
        CarbsRecord(timestamp=_utc_ms(2024, 1, 15, 22, 0), carbs_grams=10.0),
        BasalRecord(
            timestamp=_utc_ms(2024, 1, 15, 8, 0),
            rate=0.8,
            insulin_delivered_units=12.0,
        ),
    ]


def test_glucose_frame_uses_local_dates() -> None:
    df = glucose_frame(_day_records())
    assert list(df["glucose_mg_dl"]) == [60.0, 120.0, 200.0]
    assert set(df["date"]) == {date(2024, 1, 15)}


def test_daily_glucose_summary_range_percentages() -> None:
    summary = daily_glucose_summary(glucose_frame(_day_records()))
    row = summary.iloc[0]
    assert row["glucose_count"] == 3
    assert row["glucose_min"] == 60.0
    assert row["glucose_max"] == 200.0
    assert row["glucose_avg"] == pytest.approx(126.67)
    assert row["tir_pct"] == pytest.approx(33.3)
    assert row["tbr_pct"] == pytest.approx(33.3)
    assert row["tar_pct"] == pytest.approx(33.3)
    assert row["glucose_cv"] > 0


def test_daily_glucose_summary_empty() -> None:
    out = daily_glucose_summary(pd.DataFrame())
    assert out.empty
    assert "tir_pct" in out.columns


def test_daily_report_from_individual_records() -> None:
    report = daily_report(_day_records())

    assert list(report.columns) == REPORT_COLUMNS
    assert len(report) == 1
    row = report.iloc[0]
    assert row["date"] == date(2024, 1, 15)
    assert row["bolus_count"] == 2
    assert row["bolus_units"] == pytest.approx(8.5)
    assert row["basal_units"] == pytest.approx(12.0)
    assert row["carbs_grams"] == pytest.approx(85.0)
    assert row["meal_count"] == 2
    assert pd.isna(row["total_insulin_units"])


def test_daily_report_prefers_device_daily_totals() -> None:
    records = [
        *_day_records(),
        DailyInsulinSummary(
            timestamp=_utc_ms(2024, 1, 16, 7, 0),
            date="2024-01-15",
            total_bolus_units=9.9,
            total_basal_units=10.25,
            total_insulin_units=20.15,
        ),
    ]

    row = daily_report(records).iloc[0]

    assert row["bolus_units"] == pytest.approx(9.9)
    assert row["basal_units"] == pytest.approx(10.25)
    assert row["total_insulin_units"] == pytest.approx(20.15)
    assert row["bolus_count"] == 2


def test_daily_report_skips_days_without_data() -> None:
    records = [
        CgmReading(timestamp=_utc_ms(2024, 1, 15, 20, 0), glucose_mg_dl=110.0),
        CarbsRecord(timestamp=_utc_ms(2024, 1, 17, 20, 0), carbs_grams=25.0),
    ]

    report = daily_report(records)

    assert list(report["date"]) == [date(2024, 1, 15), date(2024, 1, 17)]
    carbs_day = report.iloc[1]
    assert carbs_day["carbs_grams"] == pytest.approx(25.0)
    assert carbs_day["bolus_count"] == 0
    assert pd.isna(report.iloc[0]["carbs_grams"])


def test_daily_report_empty() -> None:
    report = daily_report([])
    assert report.empty
    assert list(report.columns) == REPORT_COLUMNS


def test_build_calendar_inclusive() -> None:
    cal = build_calendar(date(2024, 1, 30), date(2024, 2, 2))
    assert list(cal["date"]) == [
        date(2024, 1, 30),
        date(2024, 1, 31),
        date(2024, 2, 1),
        date(2024, 2, 2),
    ]


def test_drop_empty_days() -> None:
    df = pd.DataFrame(
        {
            "date": [date(2024, 1, 1), date(2024, 1, 2)],
            "glucose_count": [pd.NA, 3],
            "bolus_count": [0, 0],
        }
    )
    out = drop_empty_days(df)
    assert list(out["date"]) == [date(2024, 1, 2)]


def test_summarize_treatments_splits_boluses() -> None:
    t0 = _utc_ms(2024, 1, 15, 16, 0)
    summary = summarize_treatments(
        [
            BolusRecord(
                timestamp=t0, insulin_delivered_units=4.0, carbs_input_grams=40.0
            ),
            BolusRecord(
                timestamp=t0 + 10, insulin_delivered_units=0.0, carbs_input_grams=12.0
            ),
        ],
        [CarbsRecord(timestamp=t0 - 10, carbs_grams=8.0)],
        [ManualInsulinRecord(timestamp=t0 + 20, units=2.5)],
        window_start_ms=t0 - 1000,
        window_end_ms=t0 + 1000,
    )

    assert [(t.timestamp - t0, t.kind, t.value) for t in summary.treatments] == [
        (-10, "carbs", 8.0),
        (0, "insulin", 4.0),
        (0, "carbs", 40.0),
        (10, "carbs", 12.0),
        (20, "insulin", 2.5),
    ]
    assert summary.total_insulin_units == pytest.approx(6.5)
    assert summary.total_carbs_grams == pytest.approx(60.0)
    assert summary.bolus_count == 2


def test_summarize_treatments_empty_window() -> None:
    summary = summarize_treatments([], [], [], window_start_ms=0, window_end_ms=1)
    assert summary.treatments == []
    assert isinstance(summary.total_insulin_units, float)
    assert summary.total_carbs_grams == 0.0
    assert summary.bolus_count == 0
