from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from typing import Iterable

from event_doctor.errors import ReconcileError
from event_doctor.store import EventStore, PersistedEvent
from event_doctor.taxonomy import RESERVED_LEGACY_CATEGORIES, is_canonical_category


@dataclass
class InvalidTypeGroup:
    category: str
    events: list[PersistedEvent]

    def to_dict(self) -> dict:
        return {
            "category": self.category,
            "count": len(self.events),
            "event_ids": [event.id for event in self.events],
        }


@dataclass(frozen=True)
class RetargetResult:
    category: str
    new_category: str
    updated_ids: tuple[str, ...]

    def to_dict(self) -> dict:
        return {
            "category": self.category,
            "new_category": self.new_category,
            "updated_count": len(self.updated_ids),
            "updated_ids": list(self.updated_ids),
        }


def find_invalid_type_groups(events: Iterable[PersistedEvent]) -> list[InvalidTypeGroup]:
    """Group events whose category is outside the canonical set; reserved legacy records are left out."""
    groups: dict[str, list[PersistedEvent]] = {}
    for event in events:
        if is_canonical_category(event.category) or event.category in RESERVED_LEGACY_CATEGORIES:
            continue
        groups.setdefault(event.category, []).append(event)
    return [InvalidTypeGroup(category, members) for category, members in sorted(groups.items())]


def _require_canonical(new_category: str) -> None:
    if not is_canonical_category(new_category):
        raise ReconcileError(f"'{new_category}' is not a valid intervention type.")


def _read_snapshot(store: EventStore) -> list[PersistedEvent]:
    try:
        return store.read_all()
    except (sqlite3.Error, OSError) as exc:
        raise ReconcileError(f"Could not read events: {exc}") from exc


def _write(store: EventStore, events: list[PersistedEvent]) -> None:
    try:
        store.update_batch(events)
    except (sqlite3.Error, OSError, KeyError) as exc:
        raise ReconcileError(f"Type correction failed; no events were changed: {exc}") from exc


def retarget_group(store: EventStore, invalid_category: str, new_category: str) -> RetargetResult:
    """Rewrite every event still carrying invalid_category to new_category in one batch."""
    _require_canonical(new_category)
    if invalid_category in RESERVED_LEGACY_CATEGORIES:
        raise ReconcileError(
            f"'{invalid_category}' records are reclassified one at a time, not in bulk."
        )
    members = [event for event in _read_snapshot(store) if event.category == invalid_category]
    updated = [event.with_category(new_category) for event in members]
    if updated:
        _write(store, updated)
    return RetargetResult(invalid_category, new_category, tuple(event.id for event in updated))


def retarget_event(store: EventStore, event_id: str, new_category: str) -> RetargetResult:
    _require_canonical(new_category)
    match = next((event for event in _read_snapshot(store) if event.id == event_id), None)
    if match is None:
        raise ReconcileError(f"Event not found: {event_id}")
    _write(store, [match.with_category(new_category)])
    return RetargetResult(match.category, new_category, (event_id,))
