"""
Persistent event store.

Every write is one batch inside one transaction: either all events of the
batch are written or none are.
"""

from __future__ import annotations

import sqlite3
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Generator, Iterable, Protocol

from event_doctor.taxonomy import InterventionStatus


@dataclass(frozen=True)
class PersistedEvent:
    title: str
    category: str
    start: datetime
    end: datetime
    is_all_day: bool = False
    notes: str = ""
    linked_entity_id: str | None = None
    is_registered: bool = False
    status: str = InterventionStatus.COMPLETED.value
    created_at: datetime = field(default_factory=datetime.now)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def with_category(self, category: str) -> "PersistedEvent":
        return replace(self, category=category)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "category": self.category,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "is_all_day": self.is_all_day,
            "notes": self.notes,
            "linked_entity_id": self.linked_entity_id,
            "is_registered": self.is_registered,
            "status": self.status,
            "created_at": self.created_at.isoformat(),
        }


class EventStore(Protocol):
    def write_batch(self, events: list[PersistedEvent]) -> None:
        ...

    def read_all(self) -> list[PersistedEvent]:
        ...

    def update_batch(self, events: list[PersistedEvent]) -> None:
        ...

    def delete_batch(self, event_ids: Iterable[str]) -> None:
        ...


class MemoryEventStore:
    """Process-local store used by the web demo and the tests."""

    def __init__(self, events: Iterable[PersistedEvent] = ()) -> None:
        self._events: dict[str, PersistedEvent] = {event.id: event for event in events}

    def write_batch(self, events: list[PersistedEvent]) -> None:
        staged = dict(self._events)
        for event in events:
            if event.id in staged:
                raise sqlite3.IntegrityError(f"Duplicate event id: {event.id}")
            staged[event.id] = event
        self._events = staged

    def read_all(self) -> list[PersistedEvent]:
        return list(self._events.values())

    def update_batch(self, events: list[PersistedEvent]) -> None:
        missing = [event.id for event in events if event.id not in self._events]
        if missing:
            raise KeyError(f"Unknown event id(s): {', '.join(missing)}")
        staged = dict(self._events)
        staged.update({event.id: event for event in events})
        self._events = staged

    def delete_batch(self, event_ids: Iterable[str]) -> None:
        ids = set(event_ids)
        self._events = {key: event for key, event in self._events.items() if key not in ids}


SCHEMA = """
CREATE TABLE IF NOT EXISTS events (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    category TEXT NOT NULL,
    start_at TEXT NOT NULL,
    end_at TEXT NOT NULL,
    is_all_day INTEGER NOT NULL DEFAULT 0,
    notes TEXT NOT NULL DEFAULT '',
    linked_entity_id TEXT,
    is_registered INTEGER NOT NULL DEFAULT 0,
    status TEXT NOT NULL,
    created_at TEXT NOT NULL
)
"""

COLUMNS = (
    "id", "title", "category", "start_at", "end_at", "is_all_day", "notes",
    "linked_entity_id", "is_registered", "status", "created_at",
)


def _to_row(event: PersistedEvent) -> tuple:
    return (
        event.id,
        event.title,
        event.category,
        event.start.isoformat(),
        event.end.isoformat(),
        int(event.is_all_day),
        event.notes,
        event.linked_entity_id,
        int(event.is_registered),
        event.status,
        event.created_at.isoformat(),
    )


def _from_row(row: tuple) -> PersistedEvent:
    (event_id, title, category, start, end, is_all_day, notes,
     linked_entity_id, is_registered, status, created_at) = row
    return PersistedEvent(
        id=event_id,
        title=title,
        category=category,
        start=datetime.fromisoformat(start),
        end=datetime.fromisoformat(end),
        is_all_day=bool(is_all_day),
        notes=notes,
        linked_entity_id=linked_entity_id,
        is_registered=bool(is_registered),
        status=status,
        created_at=datetime.fromisoformat(created_at),
    )


class SqliteEventStore:
    def __init__(self, path: "str | Path") -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.execute(SCHEMA)

    @contextmanager
    def _connect(self) -> Generator[sqlite3.Connection, None, None]:
        conn = sqlite3.connect(self.path)
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def write_batch(self, events: list[PersistedEvent]) -> None:
        placeholders = ", ".join("?" for _ in COLUMNS)
        with self._connect() as conn:
            conn.executemany(
                f"INSERT INTO events ({', '.join(COLUMNS)}) VALUES ({placeholders})",
                [_to_row(event) for event in events],
            )

    def read_all(self) -> list[PersistedEvent]:
        with self._connect() as conn:
            rows = conn.execute(f"SELECT {', '.join(COLUMNS)} FROM events ORDER BY rowid").fetchall()
        return [_from_row(row) for row in rows]

    def update_batch(self, events: list[PersistedEvent]) -> None:
        assignments = ", ".join(f"{column} = ?" for column in COLUMNS[1:])
        with self._connect() as conn:
            for event in events:
                row = _to_row(event)
                cursor = conn.execute(f"UPDATE events SET {assignments} WHERE id = ?", (*row[1:], row[0]))
                if cursor.rowcount != 1:
                    raise KeyError(f"Unknown event id: {event.id}")

    def delete_batch(self, event_ids: Iterable[str]) -> None:
        with self._connect() as conn:
            conn.executemany("DELETE FROM events WHERE id = ?", [(event_id,) for event_id in event_ids])
