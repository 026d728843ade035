from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from datetime import datetime

from event_doctor.errors import CommitError
from event_doctor.materialize import CandidateRecord
from event_doctor.session import CorrectionSession
from event_doctor.store import EventStore, PersistedEvent
from event_doctor.taxonomy import InterventionStatus


@dataclass(frozen=True)
class CommitResult:
    success_count: int
    failed_count: int
    event_ids: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "success_count": self.success_count,
            "failed_count": self.failed_count,
            "event_ids": list(self.event_ids),
        }


def to_persisted(record: CandidateRecord, created_at: datetime | None = None) -> PersistedEvent:
    if not record.is_ready:
        raise ValueError(f"Row {record.file_line} still has errors and cannot be persisted")
    data = record.data
    return PersistedEvent(
        title=data["title"],
        category=data["type"],
        start=data["start"],
        end=data["end"],
        is_all_day=bool(data.get("isAllDay", False)),
        notes=data.get("notes", ""),
        linked_entity_id=data.get("linkedEntityId"),
        is_registered=bool(data.get("isRegistered", False)),
        # Imported events are historical.
        status=InterventionStatus.COMPLETED.value,
        created_at=created_at or datetime.now(),
    )


def commit_session(session: CorrectionSession, store: EventStore) -> CommitResult:
    """
    Persist every ready record as one batch.

    Blocked records are counted as failed. If the batch write fails nothing
    is persisted, CommitError is raised and the session can be committed again.
    """
    if session.closed:
        raise CommitError("This import session was abandoned.")
    if session.committing:
        raise CommitError("A commit for this import session is already in progress.")
    if session.committed:
        raise CommitError("This import session has already been committed.")
    if len(session.records) != len(session):
        raise CommitError("Rows must be materialized and validated before committing.")

    ready = session.ready()
    blocked = len(session.records) - len(ready)
    created_at = datetime.now()
    events = [to_persisted(record, created_at) for record in ready]

    session.committing = True
    try:
        if events:
            store.write_batch(events)
    except (sqlite3.Error, OSError, KeyError, ValueError) as exc:
        raise CommitError(f"Import failed; no events were saved: {exc}") from exc
    finally:
        session.committing = False

    session.committed = True
    return CommitResult(
        success_count=len(events),
        failed_count=blocked,
        event_ids=tuple(event.id for event in events),
    )
