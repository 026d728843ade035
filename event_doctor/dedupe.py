"""
Duplicate reconciliation over persisted events.

Events sharing a calendar date and a normalised title form a group. Within a
group a specific category always wins over a generic one; among generics only
the earliest created record is kept. The result is a proposal: nothing is
deleted until the operator confirms the ids.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from datetime import date
from typing import Iterable

import pandas as pd

from event_doctor.errors import ReconcileError
from event_doctor.store import EventStore, PersistedEvent
from event_doctor.taxonomy import RESERVED_LEGACY_CATEGORIES, InterventionType, is_canonical_category

DEFAULT_GENERIC_CATEGORIES = frozenset({
    "Cita",
    InterventionType.OTHER.value,
    InterventionType.REUNION.value,
})


@dataclass(frozen=True)
class DedupePolicy:
    generic_categories: frozenset[str] = DEFAULT_GENERIC_CATEGORIES
    noncanonical_is_generic: bool = True

    def is_generic(self, category: str) -> bool:
        if category in self.generic_categories:
            return True
        if category in RESERVED_LEGACY_CATEGORIES:
            return False
        return self.noncanonical_is_generic and not is_canonical_category(category)


DEFAULT_POLICY = DedupePolicy()

SimilarityKey = tuple[date, str]


@dataclass
class DuplicateGroup:
    key: SimilarityKey
    events: list[PersistedEvent]
    keep: list[PersistedEvent] = field(default_factory=list)
    delete: list[PersistedEvent] = field(default_factory=list)

    @property
    def title(self) -> str:
        return self.events[0].title

    def to_dict(self) -> dict:
        return {
            "date": self.key[0].isoformat(),
            "title": self.title,
            "keep": [event.to_dict() for event in self.keep],
            "delete": [event.to_dict() for event in self.delete],
        }


def similarity_key(event: PersistedEvent) -> SimilarityKey:
    return event.start.date(), event.title.strip().lower()


def split_group(events: list[PersistedEvent], policy: DedupePolicy) -> tuple[list[PersistedEvent], list[PersistedEvent]]:
    specifics = [event for event in events if not policy.is_generic(event.category)]
    generics = [event for event in events if policy.is_generic(event.category)]
    if specifics and generics:
        return specifics, generics
    if not specifics and len(generics) > 1:
        return generics[:1], generics[1:]
    return list(events), []


def find_duplicate_groups(
    events: Iterable[PersistedEvent],
    policy: DedupePolicy = DEFAULT_POLICY,
) -> list[DuplicateGroup]:
    buckets: dict[SimilarityKey, list[PersistedEvent]] = {}
    for event in events:
        buckets.setdefault(similarity_key(event), []).append(event)

    groups: list[DuplicateGroup] = []
    for key, members in buckets.items():
        if len(members) < 2:
            continue
        ordered = sorted(members, key=lambda event: event.created_at)
        keep, delete = split_group(ordered, policy)
        if not delete:
            continue
        groups.append(DuplicateGroup(key=key, events=ordered, keep=keep, delete=delete))
    return groups


def proposed_deletions(groups: Iterable[DuplicateGroup]) -> list[PersistedEvent]:
    return [event for group in groups for event in group.delete]


@dataclass(frozen=True)
class DeletionResult:
    deleted_ids: tuple[str, ...]
    skipped_ids: tuple[str, ...]

    def to_dict(self) -> dict:
        return {
            "deleted_count": len(self.deleted_ids),
            "deleted_ids": list(self.deleted_ids),
            "skipped_ids": list(self.skipped_ids),
        }


def apply_deletions(
    store: EventStore,
    confirmed_ids: Iterable[str],
    policy: DedupePolicy = DEFAULT_POLICY,
) -> DeletionResult:
    """
    Delete the confirmed ids that are still proposed against a fresh snapshot.

    Ids that no longer qualify (edited or removed since review) are skipped.
    """
    confirmed = list(dict.fromkeys(confirmed_ids))
    try:
        current = store.read_all()
    except (sqlite3.Error, OSError) as exc:
        raise ReconcileError(f"Could not read events before deleting duplicates: {exc}") from exc

    still_proposed = {event.id for event in proposed_deletions(find_duplicate_groups(current, policy))}
    to_delete = tuple(event_id for event_id in confirmed if event_id in still_proposed)
    skipped = tuple(event_id for event_id in confirmed if event_id not in still_proposed)
    if to_delete:
        try:
            store.delete_batch(to_delete)
        except (sqlite3.Error, OSError, KeyError) as exc:
            raise ReconcileError(f"Duplicate deletion failed; no events were removed: {exc}") from exc
    return DeletionResult(deleted_ids=to_delete, skipped_ids=skipped)


def groups_to_dataframe(groups: Iterable[DuplicateGroup]) -> pd.DataFrame:
    rows = []
    for group in groups:
        deleting = {event.id for event in group.delete}
        for event in group.events:
            rows.append({
                "date": group.key[0].isoformat(),
                "title": event.title,
                "category": event.category,
                "id": event.id,
                "action": "delete" if event.id in deleting else "keep",
            })
    return pd.DataFrame(rows, columns=["date", "title", "category", "id", "action"])
