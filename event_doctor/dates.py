"""
Date normalisation for event exports.

Exports come from people and tools with different locale habits, so parsing
is an ordered fallback: a generic unambiguous parse first, then the day-first
numeric form, then the long Spanish form. Anything else is not a date.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone

SPANISH_MONTHS = {
    "enero": 1, "febrero": 2, "marzo": 3, "abril": 4, "mayo": 5, "junio": 6,
    "julio": 7, "agosto": 8, "septiembre": 9, "octubre": 10, "noviembre": 11, "diciembre": 12,
}

TRUTHY_VALUES = {"true", "si", "1", "yes"}

# Only year-first or month-name forms; day/month order is never guessed here.
UNAMBIGUOUS_FORMATS = (
    "%Y/%m/%d",
    "%Y/%m/%d %H:%M",
    "%Y/%m/%d %H:%M:%S",
    "%B %d, %Y",
    "%B %d %Y",
    "%b %d, %Y",
    "%b %d %Y",
    "%d %B %Y",
    "%d %b %Y",
    "%B %d, %Y %H:%M",
    "%b %d, %Y %H:%M",
)

TIME_DESIGNATOR_RE = re.compile(r"\dT\d", re.IGNORECASE)
DAY_FIRST_RE = re.compile(
    r"^(\d{1,2})[/-](\d{1,2})[/-](\d{4}|\d{2})(?!\d)(?:[ T]+(\d{1,2}):(\d{1,2})(?::(\d{1,2}))?)?"
)
LONG_SPANISH_RE = re.compile(r"(\d{1,2})\s+de\s+([^\W\d_]+)\s+de\s+(\d{4})", re.IGNORECASE)


@dataclass(frozen=True)
class ParsedDate:
    instant: datetime
    time_component_found: bool


def _naive(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _parse_generic(text: str) -> ParsedDate | None:
    has_time = ":" in text or bool(TIME_DESIGNATOR_RE.search(text))
    iso_candidate = text[:-1] + "+00:00" if text[-1:] in {"Z", "z"} else text
    try:
        return ParsedDate(_naive(datetime.fromisoformat(iso_candidate)), has_time)
    except ValueError:
        pass
    for fmt in UNAMBIGUOUS_FORMATS:
        try:
            return ParsedDate(datetime.strptime(text, fmt), has_time)
        except ValueError:
            continue
    return None


def _parse_day_first(text: str) -> ParsedDate | None:
    m = DAY_FIRST_RE.match(text)
    if not m:
        return None
    day, month, year = int(m.group(1)), int(m.group(2)), int(m.group(3))
    if len(m.group(3)) == 2:
        year += 2000
    hour = int(m.group(4) or 0)
    minute = int(m.group(5) or 0)
    second = int(m.group(6) or 0)
    try:
        instant = datetime(year, month, day, hour, minute, second)
    except ValueError:
        return None
    return ParsedDate(instant, m.group(4) is not None and m.group(5) is not None)


def _parse_long_spanish(text: str) -> ParsedDate | None:
    m = LONG_SPANISH_RE.search(text)
    if not m:
        return None
    month = SPANISH_MONTHS.get(m.group(2).lower())
    if month is None:
        return None
    try:
        return ParsedDate(datetime(int(m.group(3)), month, int(m.group(1))), False)
    except ValueError:
        return None


def normalize_date(value: str | None) -> ParsedDate | None:
    text = (value or "").strip()
    if not text:
        return None
    for parser in (_parse_generic, _parse_day_first, _parse_long_spanish):
        parsed = parser(text)
        if parsed is not None:
            return parsed
    return None


def format_instant(value: datetime) -> str:
    return value.isoformat(timespec="seconds")


def parse_bool(value: str | None) -> bool:
    return (value or "").strip().lower() in TRUTHY_VALUES
