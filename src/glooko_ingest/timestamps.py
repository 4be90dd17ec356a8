"""Conversión de marcas de tiempo de Glooko a milisegundos UTC."""

from __future__ import annotations

import re
from datetime import datetime, timezone, tzinfo

from dateutil import parser as date_parser
from dateutil import tz

SOURCE_TZ_NAME = "America/Los_Angeles"
SOURCE_TZ = tz.gettz(SOURCE_TZ_NAME)

# 2000-01-01T00:00:00Z in milliseconds; smaller numbers are Unix seconds.
YEAR_2000_MS = 946_684_800_000

_EXPLICIT_ZONE = re.compile(r"(?:[Zz]|[+-]\d{2}:\d{2})$")
_ISO_NAIVE = re.compile(
    r"(\d{4})-(\d{2})-(\d{2})[T\s]+(\d{1,2}):(\d{2})(?::(\d{2}))?"
)
_US_NAIVE = re.compile(
    r"(\d{1,2})/(\d{1,2})/(\d{4})\s+(\d{1,2}):(\d{2})(?::(\d{2}))?"
)
_NUMERIC = re.compile(r"\d+(?:\.\d+)?")


def resolve_tz(name: str | None) -> tzinfo:
    """Return tzinfo for an IANA name, falling back to the source timezone.

    Raises:
        ValueError: If ``name`` is not a known timezone.
    """
    if not name:
        return SOURCE_TZ
    zone = tz.gettz(name)
    if zone is None:
        raise ValueError(f"Unknown timezone: {name}")
    return zone


def to_ms(dt: datetime) -> int:
    """Aware datetime -> epoch milliseconds."""
    return int(round(dt.timestamp() * 1000))


def from_ms(ms: int, zone: tzinfo | None = None) -> datetime:
    """Epoch milliseconds -> aware datetime in ``zone`` (UTC by default)."""
    dt = datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
    return dt.astimezone(zone) if zone is not None else dt


def _wall_clock(dt: datetime, zone: tzinfo) -> datetime:
    return dt.astimezone(zone).replace(tzinfo=None)


def local_to_utc_ms(
    year: int,
    month: int,
    day: int,
    hour: int,
    minute: int,
    second: int = 0,
    zone: tzinfo | None = None,
) -> int:
    """Resolve a naive wall-clock time in ``zone`` to epoch milliseconds.

    Guess that the wall clock is UTC, render the guess in ``zone`` and add
    the difference between the naive input and the rendered wall clock back
    to the guess. The correction runs twice because the first guess can sit
    on the other side of a DST switch. An ambiguous fall-back time resolves
    to its first occurrence; a time inside the spring-forward gap moves
    forward by the gap.

    Raises:
        ValueError: If the components do not form a valid date.
    """
    zone = zone or SOURCE_TZ
    naive = datetime(year, month, day, hour, minute, second)
    guess = naive.replace(tzinfo=timezone.utc)
    first = guess + (naive - _wall_clock(guess, zone))
    second = first + (naive - _wall_clock(first, zone))
    if _wall_clock(second, zone) != naive:
        return to_ms(first)
    return to_ms(second)


def parse_timestamp(value: str, zone: tzinfo | None = None) -> int | None:
    """Parse an export timestamp into epoch milliseconds (UTC).

    Args:
        value: Raw cell text.
        zone: Timezone for naive wall-clock values (default: source timezone).

    Returns:
        Milliseconds since epoch, or None when the value is not a timestamp.
    """
    value = (value or "").strip()
    if not value or value == "0":
        return None

    if _EXPLICIT_ZONE.search(value):
        try:
            parsed = date_parser.isoparse(value)
        except ValueError:
            try:
                parsed = date_parser.parse(value)
            except (ValueError, OverflowError):
                parsed = None
        if parsed is not None and parsed.tzinfo is not None:
            return to_ms(parsed)

    for pattern, order in ((_ISO_NAIVE, "ymd"), (_US_NAIVE, "mdy")):
        match = pattern.search(value)
        if not match:
            continue
        a, b, c, hour, minute, second = match.groups()
        if order == "ymd":
            year, month, day = int(a), int(b), int(c)
        else:
            month, day, year = int(a), int(b), int(c)
        try:
            return local_to_utc_ms(
                year, month, day, int(hour), int(minute), int(second or 0), zone
            )
        except ValueError:
            return None

    if _NUMERIC.fullmatch(value):
        number = float(value)
        if number <= 0:
            return None
        if number < YEAR_2000_MS:
            return int(round(number * 1000))
        return int(round(number))

    return None


def format_date(timestamp_ms: int, zone: tzinfo | None = None) -> str:
    """Calendar date (YYYY-MM-DD) of a timestamp in ``zone``."""
    return from_ms(timestamp_ms, zone or SOURCE_TZ).strftime("%Y-%m-%d")


def hour_in_zone(timestamp_ms: int, zone: tzinfo | None = None) -> int:
    """Hour of day (0-23) of a timestamp in ``zone``."""
    return from_ms(timestamp_ms, zone or SOURCE_TZ).hour


def start_of_day_ms(date_str: str, zone: tzinfo | None = None) -> int:
    """First millisecond of a calendar date in ``zone``."""
    year, month, day = (int(part) for part in date_str.split("-"))
    return local_to_utc_ms(year, month, day, 0, 0, 0, zone)
