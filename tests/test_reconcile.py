from __future__ import annotations

import sqlite3
import sys
import tempfile
import unittest
from datetime import datetime, timedelta
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from event_doctor.dedupe import (
    DedupePolicy,
    apply_deletions,
    find_duplicate_groups,
    groups_to_dataframe,
    proposed_deletions,
)
from event_doctor.errors import ReconcileError
from event_doctor.retype import find_invalid_type_groups, retarget_event, retarget_group
from event_doctor.store import MemoryEventStore, PersistedEvent, SqliteEventStore

BASE = datetime(2024, 8, 15, 9, 0)


def make_event(title: str, category: str, minutes: int = 0, *, day: int = 15, hour: int = 9) -> PersistedEvent:
    start = datetime(2024, 8, day, hour)
    return PersistedEvent(
        title=title,
        category=category,
        start=start,
        end=start + timedelta(hours=1),
        created_at=BASE + timedelta(minutes=minutes),
    )


class BrokenDeleteStore(MemoryEventStore):
    def delete_batch(self, event_ids):
        raise sqlite3.OperationalError("disk I/O error")


class DuplicateGroupTests(unittest.TestCase):
    def test_specific_category_wins_over_generics(self):
        events = [
            make_event("Visita", "Otro", 1),
            make_event("Visita", "Reunión", 2),
            make_event("Visita", "Visita Domiciliaria", 3),
        ]
        groups = find_duplicate_groups(events)
        self.assertEqual(len(groups), 1)
        self.assertEqual([e.category for e in groups[0].keep], ["Visita Domiciliaria"])
        self.assertEqual([e.category for e in groups[0].delete], ["Otro", "Reunión"])

    def test_all_generic_keeps_earliest_created(self):
        late = make_event("Coordinación semanal", "Cita", 5)
        early = make_event("Coordinación semanal", "Otro", 1)
        groups = find_duplicate_groups([late, early])
        self.assertEqual(groups[0].keep, [early])
        self.assertEqual(groups[0].delete, [late])

    def test_all_specific_group_is_not_reported(self):
        events = [make_event("Visita", "Taller", 1), make_event("Visita", "Visita Domiciliaria", 2)]
        groups = find_duplicate_groups(events)
        self.assertEqual(groups, [])
        self.assertEqual(proposed_deletions(groups), [])

    def test_similarity_ignores_case_spaces_and_time_of_day(self):
        events = [make_event("  visita ", "Otro", 1, hour=9), make_event("VISITA", "Taller", 2, hour=17)]
        groups = find_duplicate_groups(events)
        self.assertEqual([e.category for e in proposed_deletions(groups)], ["Otro"])

    def test_different_dates_or_titles_are_not_grouped(self):
        events = [
            make_event("Visita", "Otro", 1, day=15),
            make_event("Visita", "Otro", 2, day=16),
            make_event("Visita bis", "Otro", 3, day=15),
        ]
        self.assertEqual(find_duplicate_groups(events), [])

    def test_noncanonical_category_counts_as_generic_by_default(self):
        events = [make_event("Visita", "Llamada vieja", 1), make_event("Visita", "Taller", 2)]
        self.assertEqual([e.category for e in proposed_deletions(find_duplicate_groups(events))], ["Llamada vieja"])
        strict = DedupePolicy(noncanonical_is_generic=False)
        self.assertEqual(proposed_deletions(find_duplicate_groups(events, strict)), [])

    def test_reserved_task_category_is_not_generic(self):
        events = [make_event("Memoria", "Tarea", 1), make_event("Memoria", "Otro", 2)]
        groups = find_duplicate_groups(events)
        self.assertEqual([e.category for e in groups[0].keep], ["Tarea"])

    def test_custom_generic_table(self):
        policy = DedupePolicy(generic_categories=frozenset({"Taller"}))
        events = [make_event("Grupo", "Taller", 1), make_event("Grupo", "Sesión Grupal", 2)]
        self.assertEqual([e.category for e in proposed_deletions(find_duplicate_groups(events, policy))], ["Taller"])

    def test_created_at_ties_keep_store_order(self):
        first = make_event("Visita", "Otro", 0)
        second = make_event("Visita", "Cita", 0)
        groups = find_duplicate_groups([first, second])
        self.assertEqual(groups[0].keep, [first])

    def test_dataframe_marks_actions(self):
        events = [make_event("Visita", "Otro", 1), make_event("Visita", "Taller", 2)]
        frame = groups_to_dataframe(find_duplicate_groups(events))
        self.assertEqual(dict(zip(frame["category"], frame["action"])), {"Otro": "delete", "Taller": "keep"})


class ApplyDeletionsTests(unittest.TestCase):
    def setUp(self):
        self.events = [
            make_event("Visita", "Otro", 1),
            make_event("Visita", "Reunión", 2),
            make_event("Visita", "Visita Domiciliaria", 3),
            make_event("Taller", "Otro", 4),
        ]
        self.store = MemoryEventStore(self.events)

    def test_apply_then_rerun_finds_nothing(self):
        proposal = [e.id for e in proposed_deletions(find_duplicate_groups(self.store.read_all()))]
        result = apply_deletions(self.store, proposal)
        self.assertEqual(set(result.deleted_ids), {self.events[0].id, self.events[1].id})
        self.assertEqual(result.skipped_ids, ())
        self.assertEqual(find_duplicate_groups(self.store.read_all()), [])
        self.assertEqual(len(self.store.read_all()), 2)

    def test_rerun_with_several_specifics_kept_finds_nothing(self):
        events = [
            make_event("Seguimiento", "Otro", 1),
            make_event("Seguimiento", "Taller", 2),
            make_event("Seguimiento", "Visita Domiciliaria", 3),
        ]
        store = MemoryEventStore(events)
        proposal = [e.id for e in proposed_deletions(find_duplicate_groups(store.read_all()))]
        self.assertEqual(proposal, [events[0].id])
        apply_deletions(store, proposal)
        self.assertEqual(find_duplicate_groups(store.read_all()), [])
        self.assertEqual([e.category for e in store.read_all()], ["Taller", "Visita Domiciliaria"])

    def test_ids_that_no_longer_qualify_are_skipped(self):
        proposal = [e.id for e in proposed_deletions(find_duplicate_groups(self.store.read_all()))]
        # The specific event disappears before confirmation; the two generics now form an all-generic group.
        self.store.delete_batch([self.events[2].id])
        result = apply_deletions(self.store, proposal)
        self.assertEqual(result.deleted_ids, (self.events[1].id,))
        self.assertEqual(result.skipped_ids, (self.events[0].id,))

    def test_unconfirmed_ids_are_never_deleted(self):
        result = apply_deletions(self.store, [self.events[3].id, self.events[2].id])
        self.assertEqual(result.deleted_ids, ())
        self.assertEqual(len(self.store.read_all()), 4)

    def test_store_failure_becomes_reconcile_error(self):
        store = BrokenDeleteStore(self.events)
        with self.assertRaisesRegex(ReconcileError, "no events were removed"):
            apply_deletions(store, [self.events[0].id])
        self.assertEqual(len(store.read_all()), 4)

    def test_sqlite_store_keeps_insertion_order_for_ties(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            store = SqliteEventStore(Path(tmpdir) / "events.db")
            first = make_event("Visita", "Otro", 0)
            second = make_event("Visita", "Cita", 0)
            store.write_batch([first, second])
            result = apply_deletions(store, [first.id, second.id])
            self.assertEqual(result.deleted_ids, (second.id,))
            self.assertEqual([e.id for e in store.read_all()], [first.id])


class InvalidTypeTests(unittest.TestCase):
    def setUp(self):
        self.events = [
            make_event("a", "Llamada", 1),
            make_event("b", "Visita", 2),
            make_event("c", "Llamada", 3),
            make_event("d", "Tarea", 4),
            make_event("e", "Taller", 5),
        ]
        self.store = MemoryEventStore(self.events)

    def test_groups_exclude_canonical_and_reserved(self):
        groups = find_invalid_type_groups(self.store.read_all())
        self.assertEqual([(g.category, len(g.events)) for g in groups], [("Llamada", 2), ("Visita", 1)])

    def test_retarget_group_updates_every_member(self):
        result = retarget_group(self.store, "Llamada", "Llamada Telefónica")
        self.assertEqual(set(result.updated_ids), {self.events[0].id, self.events[2].id})
        categories = {e.id: e.category for e in self.store.read_all()}
        self.assertEqual(categories[self.events[0].id], "Llamada Telefónica")
        self.assertEqual(categories[self.events[1].id], "Visita")
        self.assertEqual([g.category for g in find_invalid_type_groups(self.store.read_all())], ["Visita"])

    def test_retarget_group_rejects_invalid_target(self):
        with self.assertRaises(ReconcileError):
            retarget_group(self.store, "Llamada", "Llamadas")

    def test_reserved_category_is_not_retargeted_in_bulk(self):
        with self.assertRaisesRegex(ReconcileError, "one at a time"):
            retarget_group(self.store, "Tarea", "Otro")

    def test_retarget_group_with_no_members_is_a_no_op(self):
        result = retarget_group(self.store, "Inexistente", "Otro")
        self.assertEqual(result.updated_ids, ())

    def test_retarget_single_reserved_event(self):
        result = retarget_event(self.store, self.events[3].id, "Elaborar Documento")
        self.assertEqual(result.category, "Tarea")
        self.assertEqual(
            {e.id: e.category for e in self.store.read_all()}[self.events[3].id],
            "Elaborar Documento",
        )

    def test_retarget_missing_event(self):
        with self.assertRaisesRegex(ReconcileError, "not found"):
            retarget_event(self.store, "missing", "Otro")


if __name__ == "__main__":
    unittest.main()
