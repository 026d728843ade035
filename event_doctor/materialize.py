from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from event_doctor.dates import normalize_date, parse_bool
from event_doctor.loader import RawRow
from event_doctor.mapping import FieldMapping
from event_doctor.taxonomy import REQUIRED_FIELDS, TARGET_FIELDS, error_message

TIMED_EVENT_DEFAULT_DURATION = timedelta(hours=1)


@dataclass(frozen=True)
class FieldError:
    field: str
    code: str
    message: str


@dataclass
class CandidateRecord:
    row_index: int
    original_row: RawRow
    data: dict[str, Any]
    errors: list[FieldError]
    overrides: dict[str, str] = field(default_factory=dict)
    all_day_inferred: bool = False

    @property
    def is_ready(self) -> bool:
        return not self.errors

    @property
    def file_line(self) -> int:
        # Header is line 1 and row 0 is line 2.
        return self.row_index + 2

    def source_value(self, key: str, mapping: FieldMapping) -> str:
        if key in self.overrides:
            return self.overrides[key]
        header = mapping.get(key)
        return self.original_row.get(header, "") if header else ""

    def errors_for(self, key: str) -> list[FieldError]:
        return [error for error in self.errors if error.field == key]


def _build_error(key: str, code: str) -> FieldError:
    return FieldError(key, code, error_message(code, key))


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def validate_record(data: dict[str, Any]) -> list[FieldError]:
    errors = [_build_error(key, "required") for key in REQUIRED_FIELDS if _blank(data.get(key))]
    start, end = data.get("start"), data.get("end")
    if isinstance(start, datetime) and isinstance(end, datetime) and end < start:
        errors.append(_build_error("end", "end-before-start"))
    return errors


def materialize_row(
    row: RawRow,
    row_index: int,
    mapping: FieldMapping,
    overrides: dict[str, str] | None = None,
) -> CandidateRecord:
    """Project one raw row through the mapping, coerce values and validate the result."""
    overrides = dict(overrides or {})

    def raw_value(key: str) -> str | None:
        if key in overrides:
            return overrides[key]
        header = mapping.get(key)
        return row.get(header) if header else None

    data: dict[str, Any] = {}
    errors: list[FieldError] = []
    start_without_time = False

    for target in TARGET_FIELDS:
        value = raw_value(target.key)
        if _blank(value) or target.key == "isAllDay":
            continue
        if target.kind == "date":
            parsed = normalize_date(value)
            if parsed is None:
                errors.append(_build_error(target.key, "invalid-date"))
                continue
            data[target.key] = parsed.instant
            if target.key == "start" and not parsed.time_component_found:
                start_without_time = True
        elif target.kind == "bool":
            data[target.key] = parse_bool(value)
        else:
            data[target.key] = value

    explicit_all_day = raw_value("isAllDay")
    if _blank(explicit_all_day):
        data["isAllDay"] = start_without_time
        all_day_inferred = True
    else:
        data["isAllDay"] = parse_bool(explicit_all_day)
        all_day_inferred = False

    if "start" in data and "end" not in data:
        start = data["start"]
        data["end"] = start if data["isAllDay"] else start + TIMED_EVENT_DEFAULT_DURATION

    errors.extend(validate_record(data))
    return CandidateRecord(
        row_index=row_index,
        original_row=row,
        data=data,
        errors=errors,
        overrides=overrides,
        all_day_inferred=all_day_inferred,
    )


def materialize_rows(rows: list[RawRow], mapping: FieldMapping) -> list[CandidateRecord]:
    return [materialize_row(row, index, mapping) for index, row in enumerate(rows)]
