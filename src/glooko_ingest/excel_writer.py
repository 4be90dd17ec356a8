"""Generación de Excel formateado con el reporte diario."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pandas as pd
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side

_WEEKDAYS: tuple[str, ...] = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")

# report column -> (header, width, number format)
_COLUMNS: dict[str, tuple[str, int, str | None]] = {
    "weekday": ("Day", 6, None),
    "date": ("Date", 12, "yyyy-mm-dd"),
    "glucose_count": ("Readings", 10, "0"),
    "glucose_min": ("Min\n(mg/dL)", 9, "0"),
    "glucose_max": ("Max\n(mg/dL)", 9, "0"),
    "glucose_avg": ("Mean\n(mg/dL)", 9, "0.0"),
    "glucose_cv": ("CV\n(%)", 8, "0.0"),
    "tir_pct": ("In range\n(%)", 10, "0.0"),
    "tbr_pct": ("Below\n(%)", 9, "0.0"),
    "tar_pct": ("Above\n(%)", 9, "0.0"),
    "bolus_count": ("Boluses", 9, "0"),
    "bolus_units": ("Bolus\n(U)", 9, "0.0"),
    "basal_units": ("Basal\n(U)", 9, "0.0"),
    "total_insulin_units": ("Total insulin\n(U)", 12, "0.00"),
    "carbs_grams": ("Carbs\n(g)", 9, "0"),
    "meal_count": ("Meals", 8, "0"),
}

_LOW_TIR_FILL = PatternFill(start_color="FFF2CC", end_color="FFF2CC", fill_type="solid")


@dataclass(frozen=True)
class ExcelLayout:
    """Layout/formatting configuration for the report sheet."""

    sheet_name: str = "Daily report"
    low_tir_threshold: float = 70.0


def _weekday_label(i: object) -> str:
    """Map 0-6 (Monday-Sunday) to a three-letter label."""
    if i is None or (isinstance(i, float) and pd.isna(i)):
        return ""
    try:
        idx = int(i)  # type: ignore[call-overload]
    except (ValueError, TypeError):
        return ""
    return _WEEKDAYS[idx] if 0 <= idx < 7 else ""


def _add_weekday_column(export_df: pd.DataFrame) -> pd.DataFrame:
    if "date" not in export_df.columns or export_df.empty:
        return export_df
    export_df = export_df.copy()
    export_df["date"] = pd.to_datetime(export_df["date"])
    export_df["weekday"] = export_df["date"].dt.weekday.map(_weekday_label)
    cols = ["weekday"] + [c for c in export_df.columns if c != "weekday"]
    return export_df[cols]


def write_report_xlsx(df: pd.DataFrame, out_path: Path, layout: ExcelLayout) -> None:
    """Write the daily report as a formatted Excel file suitable for printing.

    Args:
        df: Output of :func:`glooko_ingest.consolidate.daily_report`.
        out_path: Output path for the XLSX file.
        layout: Excel layout parameters.
    """
    out_path.parent.mkdir(parents=True, exist_ok=True)

    export_df = _add_weekday_column(df)
    known = [c for c in _COLUMNS if c in export_df.columns]
    export_df = export_df[known].rename(
        columns={key: spec[0] for key, spec in _COLUMNS.items()}
    )

    with pd.ExcelWriter(out_path, engine="openpyxl") as writer:
        export_df.to_excel(writer, index=False, sheet_name=layout.sheet_name)
        ws = writer.book[layout.sheet_name]
        _format_sheet(ws, layout)


def _style_rows(ws: Any) -> None:
    thin = Side(style="thin")
    border = Border(left=thin, right=thin, top=thin, bottom=thin)
    center = Alignment(horizontal="center", vertical="center", wrap_text=True)
    for cell in ws[1]:
        cell.font = Font(bold=True)
        cell.alignment = center
        cell.border = border
    for row in ws.iter_rows(min_row=2):
        for cell in row:
            cell.alignment = center
            cell.border = border
        ws.row_dimensions[row[0].row].height = 15


def _apply_columns(ws: Any) -> None:
    """Set widths and number formats by header text."""
    by_header = {header: (width, fmt) for header, width, fmt in _COLUMNS.values()}
    for cell in ws[1]:
        spec = by_header.get(str(cell.value))
        if spec is None:
            continue
        width, fmt = spec
        ws.column_dimensions[cell.column_letter].width = width
        if fmt is None:
            continue
        for (body_cell,) in ws.iter_rows(
            min_row=2, min_col=cell.column, max_col=cell.column
        ):
            body_cell.number_format = fmt


def _highlight_low_tir(ws: Any, threshold: float) -> None:
    """Shade rows whose time-in-range is under ``threshold`` percent."""
    header = _COLUMNS["tir_pct"][0]
    col = next((c.column for c in ws[1] if c.value == header), None)
    if col is None:
        return
    for row in ws.iter_rows(min_row=2):
        value = row[col - 1].value
        if isinstance(value, int | float) and value < threshold:
            for cell in row:
                cell.fill = _LOW_TIR_FILL


def _format_sheet(ws: Any, layout: ExcelLayout) -> None:
    """Apply borders, widths, number formats and highlights to a worksheet.

    Args:
        ws: openpyxl worksheet.
        layout: Excel layout parameters.
    """
    _style_rows(ws)
    _apply_columns(ws)
    _highlight_low_tir(ws, layout.low_tir_threshold)
