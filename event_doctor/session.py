"""
In-memory correction session for one import attempt.

The session owns its candidate records: it materializes them from the raw
rows, applies single-field corrections and partitions them for commit. An
edit rebuilds only the edited record.
"""

from __future__ import annotations

import pandas as pd

from event_doctor.dates import format_instant
from event_doctor.loader import RawRow
from event_doctor.mapping import FieldMapping
from event_doctor.materialize import CandidateRecord, materialize_row
from event_doctor.taxonomy import FIELD_KEYS


class SessionClosedError(RuntimeError):
    pass


class CorrectionSession:
    def __init__(self, headers: list[str], rows: list[RawRow], mapping: FieldMapping | None = None) -> None:
        self.headers = list(headers)
        self.rows = list(rows)
        self.mapping = (mapping or FieldMapping.empty(self.headers)).copy()
        self.records: list[CandidateRecord] = []
        self.committing = False
        self.committed = False
        self.closed = False

    def __len__(self) -> int:
        return len(self.rows)

    def _require_open(self) -> None:
        if self.closed:
            raise SessionClosedError("This import session was abandoned.")

    def materialize(self, mapping: FieldMapping | None = None) -> list[CandidateRecord]:
        """(Re)build every record with the current mapping, keeping earlier corrections."""
        self._require_open()
        if mapping is not None:
            self.mapping = mapping.copy()
        previous = {record.row_index: record.overrides for record in self.records}
        self.records = [
            materialize_row(row, index, self.mapping, previous.get(index))
            for index, row in enumerate(self.rows)
        ]
        return self.records

    def record(self, row_index: int) -> CandidateRecord:
        self._require_open()
        if not 0 <= row_index < len(self.records):
            raise IndexError(f"No materialized row with index {row_index}")
        return self.records[row_index]

    def edit(self, row_index: int, field: str, value: str) -> CandidateRecord:
        if field not in FIELD_KEYS:
            raise KeyError(f"Unknown target field: {field}")
        current = self.record(row_index)
        overrides = dict(current.overrides)
        overrides[field] = value
        updated = materialize_row(current.original_row, row_index, self.mapping, overrides)
        self.records[row_index] = updated
        return updated

    def ready(self) -> list[CandidateRecord]:
        return [record for record in self.records if record.is_ready]

    def blocked(self) -> list[CandidateRecord]:
        return [record for record in self.records if not record.is_ready]

    def counts(self) -> dict[str, int]:
        ready = len(self.ready())
        return {"total": len(self.records), "ready": ready, "blocked": len(self.records) - ready}

    def abandon(self) -> None:
        self.records = []
        self.rows = []
        self.closed = True

    def to_dataframe(self) -> pd.DataFrame:
        rows = []
        for record in self.records:
            item = {"row_index": record.row_index, "line": record.file_line}
            for key in FIELD_KEYS:
                value = record.data.get(key)
                item[key] = format_instant(value) if hasattr(value, "isoformat") else value
            item["errors"] = "; ".join(f"{error.field}: {error.message}" for error in record.errors)
            item["ready"] = record.is_ready
            rows.append(item)
        columns = ["row_index", "line", *FIELD_KEYS, "errors", "ready"]
        return pd.DataFrame(rows, columns=columns)
