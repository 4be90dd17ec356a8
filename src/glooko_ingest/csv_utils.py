"""Utilidades CSV: cabeceras, columnas por alias y valores numéricos."""

from __future__ import annotations

import math
import re
from collections.abc import Sequence

_METADATA_MARKERS = ("record number", "medical record", "name:", "date range")
_NON_ALNUM = re.compile(r"[^a-z0-9]")

# Header cells shorter than this never match by being contained in an alias
# ("u" from "(U)" would otherwise match almost anything).
_MIN_CONTAINED_LEN = 3


def parse_csv_line(line: str) -> list[str]:
    """Split one CSV line on commas outside double quotes; fields are trimmed."""
    values: list[str] = []
    current: list[str] = []
    in_quotes = False
    for char in line:
        if char == '"':
            in_quotes = not in_quotes
        elif char == "," and not in_quotes:
            values.append("".join(current).strip())
            current = []
        else:
            current.append(char)
    values.append("".join(current).strip())
    return values


def split_lines(content: str) -> list[str]:
    """Non-blank lines of a file, BOM and CR stripped."""
    text = content.lstrip("\ufeff")
    return [line.rstrip("\r") for line in text.splitlines() if line.strip()]


def find_header_and_data_start(lines: Sequence[str]) -> tuple[int, int]:
    """Return ``(header_idx, data_start_idx)``, skipping a metadata line."""
    if lines:
        first = lines[0].lower()
        if any(marker in first for marker in _METADATA_MARKERS):
            return 1, 2
    return 0, 1


def normalize_header(cell: str) -> str:
    """Lower-case and drop everything that is not a-z/0-9."""
    return _NON_ALNUM.sub("", cell.lower())


def find_column(header: Sequence[str], aliases: Sequence[str]) -> int | None:
    """Index of the first header cell matching one of ``aliases``.

    Aliases are tried in order. For each alias an exact match wins, then a
    cell that contains the alias, then a cell contained in the alias.
    """
    normalized = [normalize_header(cell) for cell in header]
    for alias in aliases:
        key = normalize_header(alias)
        if not key:
            continue
        for idx, cell in enumerate(normalized):
            if cell == key:
                return idx
        for idx, cell in enumerate(normalized):
            if cell and key in cell:
                return idx
        for idx, cell in enumerate(normalized):
            if len(cell) >= _MIN_CONTAINED_LEN and cell in key:
                return idx
    return None


def cell(row: Sequence[str], idx: int | None) -> str:
    """Value at ``idx`` or an empty string when absent."""
    if idx is None or idx >= len(row):
        return ""
    return row[idx]


def parse_number(value: str) -> float | None:
    """Parse a numeric cell; None for blank or non-numeric text."""
    text = value.strip().strip('"')
    if not text:
        return None
    try:
        number = float(text)
    except ValueError:
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number
