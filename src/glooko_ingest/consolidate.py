"""Consolidación diaria de registros (glucosa, insulina, carbohidratos)."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date, tzinfo

import pandas as pd

from glooko_ingest.model import (
    BasalRecord,
    BolusRecord,
    CarbsRecord,
    CgmReading,
    DailyInsulinSummary,
    DiabetesRecord,
    ManualInsulinRecord,
    Treatment,
    TreatmentSummary,
)
from glooko_ingest.timestamps import SOURCE_TZ

TARGET_LOW = 70.0
TARGET_HIGH = 180.0

REPORT_COLUMNS = [
    "date",
    "glucose_count",
    "glucose_min",
    "glucose_max",
    "glucose_avg",
    "glucose_cv",
    "tir_pct",
    "tbr_pct",
    "tar_pct",
    "bolus_count",
    "bolus_units",
    "basal_units",
    "total_insulin_units",
    "carbs_grams",
    "meal_count",
]


def _with_local_time(df: pd.DataFrame, zone: tzinfo | None) -> pd.DataFrame:
    if df.empty:
        return df
    local = pd.to_datetime(df["timestamp"], unit="ms", utc=True).dt.tz_convert(
        zone or SOURCE_TZ
    )
    df = df.copy()
    df["datetime"] = local
    df["date"] = local.dt.date
    return df.sort_values("timestamp").reset_index(drop=True)


def glucose_frame(
    records: Sequence[DiabetesRecord], zone: tzinfo | None = None
) -> pd.DataFrame:
    """CGM readings as a frame with timestamp, datetime, date and glucose."""
    rows = [
        {"timestamp": r.timestamp, "glucose_mg_dl": r.glucose_mg_dl}
        for r in records
        if isinstance(r, CgmReading)
    ]
    return _with_local_time(pd.DataFrame(rows), zone)


def bolus_frame(
    records: Sequence[DiabetesRecord], zone: tzinfo | None = None
) -> pd.DataFrame:
    """Boluses with insulin and carb input."""
    rows = [
        {
            "timestamp": r.timestamp,
            "insulin_units": r.insulin_delivered_units,
            "carbs_grams": r.carbs_input_grams,
        }
        for r in records
        if isinstance(r, BolusRecord)
    ]
    return _with_local_time(pd.DataFrame(rows), zone)


def daily_glucose_summary(glucose: pd.DataFrame) -> pd.DataFrame:
    """Aggregate glucose by day: count, min/max/avg, CV and range percentages."""
    cols = [
        "date",
        "glucose_count",
        "glucose_min",
        "glucose_max",
        "glucose_avg",
        "glucose_cv",
        "tir_pct",
        "tbr_pct",
        "tar_pct",
    ]
    if glucose.empty:
        return pd.DataFrame(columns=cols)

    values = glucose["glucose_mg_dl"]
    flags = glucose.assign(
        in_range=values.between(TARGET_LOW, TARGET_HIGH),
        below=values < TARGET_LOW,
        above=values > TARGET_HIGH,
    )
    g = flags.groupby("date", as_index=False).agg(
        glucose_count=("glucose_mg_dl", "count"),
        glucose_min=("glucose_mg_dl", "min"),
        glucose_max=("glucose_mg_dl", "max"),
        glucose_avg=("glucose_mg_dl", "mean"),
        glucose_std=("glucose_mg_dl", "std"),
        tir_pct=("in_range", "mean"),
        tbr_pct=("below", "mean"),
        tar_pct=("above", "mean"),
    )
    g["glucose_cv"] = (g["glucose_std"].fillna(0.0) / g["glucose_avg"] * 100).round(1)
    for col in ("tir_pct", "tbr_pct", "tar_pct"):
        g[col] = (g[col] * 100).round(1)
    g["glucose_avg"] = g["glucose_avg"].round(2)
    return g[cols].sort_values("date").reset_index(drop=True)


def daily_bolus_summary(boluses: pd.DataFrame) -> pd.DataFrame:
    """Per-day bolus count, insulin, carbs and number of meal boluses."""
    cols = ["date", "bolus_count", "bolus_units", "carbs_grams", "meal_count"]
    if boluses.empty:
        return pd.DataFrame(columns=cols)
    g = boluses.assign(is_meal=boluses["carbs_grams"] > 0).groupby(
        "date", as_index=False
    ).agg(
        bolus_count=("insulin_units", "count"),
        bolus_units=("insulin_units", "sum"),
        carbs_grams=("carbs_grams", "sum"),
        meal_count=("is_meal", "sum"),
    )
    g["bolus_units"] = g["bolus_units"].round(1)
    g["meal_count"] = g["meal_count"].astype(int)
    return g[cols].sort_values("date").reset_index(drop=True)


def daily_insulin_frame(records: Sequence[DiabetesRecord]) -> pd.DataFrame:
    """Device daily insulin totals, one row per date."""
    cols = [
        "date",
        "summary_bolus_units",
        "summary_basal_units",
        "total_insulin_units",
    ]
    rows = [
        {
            "date": date.fromisoformat(r.date),
            "summary_bolus_units": r.total_bolus_units,
            "summary_basal_units": r.total_basal_units,
            "total_insulin_units": r.total_insulin_units,
        }
        for r in records
        if isinstance(r, DailyInsulinSummary)
    ]
    if not rows:
        return pd.DataFrame(columns=cols)
    df = pd.DataFrame(rows)
    # Highest running total per date is the most complete one.
    df = df.sort_values("total_insulin_units").drop_duplicates("date", keep="last")
    return df[cols].sort_values("date").reset_index(drop=True)


def _daily_basal(
    records: Sequence[DiabetesRecord], zone: tzinfo | None
) -> pd.DataFrame:
    rows = [
        {"timestamp": r.timestamp, "basal_units": r.insulin_delivered_units or 0.0}
        for r in records
        if isinstance(r, BasalRecord)
    ]
    df = _with_local_time(pd.DataFrame(rows), zone)
    if df.empty:
        return pd.DataFrame(columns=["date", "basal_units"])
    return df.groupby("date", as_index=False).agg(basal_units=("basal_units", "sum"))


def _daily_carbs(
    records: Sequence[DiabetesRecord], zone: tzinfo | None
) -> pd.DataFrame:
    rows = [
        {"timestamp": r.timestamp, "standalone_carbs": r.carbs_grams}
        for r in records
        if isinstance(r, CarbsRecord)
    ]
    df = _with_local_time(pd.DataFrame(rows), zone)
    if df.empty:
        return pd.DataFrame(columns=["date", "standalone_carbs"])
    return df.groupby("date", as_index=False).agg(
        standalone_carbs=("standalone_carbs", "sum")
    )


def build_calendar(min_day: date, max_day: date) -> pd.DataFrame:
    """Build inclusive day calendar DataFrame."""
    days = pd.date_range(start=min_day, end=max_day, freq="D")
    return pd.DataFrame({"date": days.date})


def daily_report(
    records: Sequence[DiabetesRecord], zone: tzinfo | None = None
) -> pd.DataFrame:
    """One row per calendar day with glucose, insulin and carb metrics.

    Bolus and basal totals come from the device daily summary when one exists
    for the day, otherwise from the individual bolus and basal records. Days
    without any data are dropped.

    Args:
        records: Records of any type, typically one query window.
        zone: Timezone that defines the calendar day.

    Returns:
        DataFrame with ``REPORT_COLUMNS``.
    """
    parts = [
        daily_glucose_summary(glucose_frame(records, zone)),
        daily_bolus_summary(bolus_frame(records, zone)),
        _daily_basal(records, zone),
        _daily_carbs(records, zone),
        daily_insulin_frame(records),
    ]
    non_empty = [p for p in parts if not p.empty]
    if not non_empty:
        return pd.DataFrame(columns=REPORT_COLUMNS)

    min_day = min(min(p["date"]) for p in non_empty)
    max_day = max(max(p["date"]) for p in non_empty)
    out = build_calendar(min_day, max_day)
    for part in parts:
        out = out.merge(part, on="date", how="left")
    numeric = [c for c in out.columns if c != "date"]
    out[numeric] = out[numeric].astype(float)

    has_summary = out["total_insulin_units"].notna()
    out["bolus_units"] = out["summary_bolus_units"].where(
        has_summary, out["bolus_units"]
    )
    out["basal_units"] = out["summary_basal_units"].where(
        has_summary, out["basal_units"]
    )
    out["carbs_grams"] = out[["carbs_grams", "standalone_carbs"]].sum(
        axis=1, min_count=1
    )
    out["bolus_count"] = out["bolus_count"].fillna(0).astype(int)
    out["meal_count"] = out["meal_count"].fillna(0).astype(int)
    out = out[REPORT_COLUMNS]
    return drop_empty_days(out)


def drop_empty_days(df: pd.DataFrame) -> pd.DataFrame:
    """Drop days where every metric column is null/NA or a zero count."""
    if df.empty:
        return df
    metric_cols = [
        "glucose_count",
        "bolus_units",
        "basal_units",
        "total_insulin_units",
        "carbs_grams",
    ]
    existing = [c for c in metric_cols if c in df.columns]
    mask = df[existing].notna().any(axis=1)
    if "bolus_count" in df.columns:
        mask |= df["bolus_count"] > 0
    return df.loc[mask].reset_index(drop=True)


def summarize_treatments(
    boluses: Sequence[BolusRecord],
    carbs: Sequence[CarbsRecord],
    manual_insulin: Sequence[ManualInsulinRecord],
    *,
    window_start_ms: int,
    window_end_ms: int,
) -> TreatmentSummary:
    """Merge insulin and carb events of a window into a time-sorted summary.

    A bolus contributes an insulin treatment when it delivered insulin and a
    carbs treatment when carbs were entered; standalone carbs and manual
    injections contribute one treatment each.
    """
    treatments: list[Treatment] = []
    for bolus in boluses:
        if bolus.insulin_delivered_units > 0:
            treatments.append(
                Treatment(bolus.timestamp, "insulin", bolus.insulin_delivered_units)
            )
        if bolus.carbs_input_grams > 0:
            treatments.append(
                Treatment(bolus.timestamp, "carbs", bolus.carbs_input_grams)
            )
    for entry in carbs:
        if entry.carbs_grams > 0:
            treatments.append(Treatment(entry.timestamp, "carbs", entry.carbs_grams))
    for shot in manual_insulin:
        if shot.units > 0:
            treatments.append(Treatment(shot.timestamp, "insulin", shot.units))

    treatments.sort(key=lambda t: t.timestamp)
    insulin = sum((t.value for t in treatments if t.kind == "insulin"), 0.0)
    carbs_total = sum((t.value for t in treatments if t.kind == "carbs"), 0.0)

    return TreatmentSummary(
        window_start_ms=window_start_ms,
        window_end_ms=window_end_ms,
        total_insulin_units=insulin,
        total_carbs_grams=carbs_total,
        bolus_count=len(boluses),
        treatments=treatments,
    )
