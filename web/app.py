#!/usr/bin/env python3
from __future__ import annotations

import sys
import tempfile
from pathlib import Path

import pandas as pd
import streamlit as st

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from event_doctor.commit import commit_session  # noqa: E402
from event_doctor.config import Settings, load_settings  # noqa: E402
from event_doctor.dedupe import apply_deletions, find_duplicate_groups, groups_to_dataframe, proposed_deletions  # noqa: E402
from event_doctor.errors import EventDoctorError  # noqa: E402
from event_doctor.loader import TEMPLATE_HEADERS, load_bytes, template_csv  # noqa: E402
from event_doctor.mapping import FieldMapper, FieldMapping  # noqa: E402
from event_doctor.retype import find_invalid_type_groups, retarget_event, retarget_group  # noqa: E402
from event_doctor.session import CorrectionSession  # noqa: E402
from event_doctor.store import SqliteEventStore  # noqa: E402
from event_doctor.suggest import OllamaMappingSuggester  # noqa: E402
from event_doctor.taxonomy import FIELDS_BY_KEY, TARGET_FIELDS, field_label, sorted_categories  # noqa: E402
from event_doctor.workbook import write_review_workbook  # noqa: E402

UNMAPPED = "-- Ignore --"
STEPS = ["upload", "map", "preview", "result"]
XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@st.cache_resource(show_spinner=False)
def get_settings() -> Settings:
    return load_settings()


@st.cache_resource(show_spinner=False)
def get_store(db_path: str) -> SqliteEventStore:
    return SqliteEventStore(db_path)


def ensure_state() -> None:
    st.session_state.setdefault("step", "upload")
    st.session_state.setdefault("loaded", None)
    st.session_state.setdefault("mapping", None)
    st.session_state.setdefault("session", None)
    st.session_state.setdefault("commit_result", None)
    st.session_state.setdefault("messages", [])
    st.session_state.setdefault("suggest_error", None)


def reset_wizard() -> None:
    session = st.session_state.get("session")
    if session is not None and not session.committed:
        session.abandon()
    st.session_state["step"] = "upload"
    st.session_state["loaded"] = None
    st.session_state["mapping"] = None
    st.session_state["session"] = None
    st.session_state["commit_result"] = None
    st.session_state["messages"] = []
    st.session_state["suggest_error"] = None


def suggest_mapping(headers: list[str], settings: Settings) -> FieldMapping:
    suggester = OllamaMappingSuggester(settings.suggest_url, settings.suggest_model, settings.suggest_timeout)
    return FieldMapper(headers, suggester).seed()


def seed_mapping(headers: list[str], settings: Settings) -> None:
    """Ask the service for a mapping; on failure the operator maps from empty or retries."""
    with st.spinner("Asking the mapping service..."):
        try:
            st.session_state["mapping"] = suggest_mapping(headers, settings)
            st.session_state["suggest_error"] = None
        except EventDoctorError as exc:
            st.session_state["mapping"] = FieldMapping.empty(headers)
            st.session_state["suggest_error"] = str(exc)
    st.session_state["mapping_reseeded"] = True


def render_upload_step(settings: Settings) -> None:
    st.subheader("1. Upload CSV")
    st.caption("Expected columns: " + ", ".join(TEMPLATE_HEADERS))
    st.download_button(
        "Download example template",
        data=template_csv().encode("utf-8"),
        file_name="plantilla_importacion.csv",
        mime="text/csv",
    )
    upload = st.file_uploader("CSV file", type=["csv", "txt"], key="upload_input")
    use_suggestion = st.checkbox("Suggest the column mapping automatically", value=True)
    if upload is None:
        return
    if st.button("Continue", type="primary"):
        try:
            loaded = load_bytes(upload.getvalue())
        except EventDoctorError as exc:
            st.error(str(exc))
            return
        if use_suggestion:
            seed_mapping(loaded["headers"], settings)
        else:
            st.session_state["mapping"] = FieldMapping.empty(loaded["headers"])
            st.session_state["suggest_error"] = None
            st.session_state["mapping_reseeded"] = True
        loaded["name"] = upload.name
        st.session_state["loaded"] = loaded
        st.session_state["messages"] = list(loaded["warnings"])
        st.session_state["step"] = "map"
        st.rerun()


def render_mapping_step(settings: Settings) -> None:
    loaded = st.session_state["loaded"]
    st.subheader("2. Map columns")
    st.caption(f"{loaded['name']}: {loaded['original_rows']} rows, encoding {loaded['detected_encoding']}")
    for message in st.session_state["messages"]:
        st.warning(message)
    if st.session_state["suggest_error"]:
        st.error("Mapping suggestion failed: " + st.session_state["suggest_error"])
        st.caption("Map the columns by hand or retry the suggestion.")
        if st.button("Retry suggestion"):
            seed_mapping(loaded["headers"], settings)
            st.rerun()

    if st.session_state.pop("mapping_reseeded", False):
        for target in TARGET_FIELDS:
            st.session_state.pop(f"map_{target.key}", None)
    mapping: FieldMapping = st.session_state["mapping"]
    options = [UNMAPPED, *loaded["headers"]]
    for target in TARGET_FIELDS:
        current = mapping.get(target.key)
        label = target.label + (" *" if target.required else "")
        choice = st.selectbox(
            label,
            options,
            index=options.index(current) if current in options else 0,
            key=f"map_{target.key}",
        )
        mapping.assign(target.key, None if choice == UNMAPPED else choice)

    missing = mapping.missing_required()
    if missing:
        st.warning("Required fields are not mapped: " + ", ".join(field_label(key) for key in missing))

    with st.expander("Source preview"):
        st.dataframe(loaded["dataframe"].head(20), width="stretch", hide_index=True)

    left, right = st.columns(2)
    if left.button("Back"):
        reset_wizard()
        st.rerun()
    if right.button("Validate rows", type="primary"):
        session = CorrectionSession(loaded["headers"], loaded["rows"], mapping)
        session.materialize()
        st.session_state["session"] = session
        st.session_state["step"] = "preview"
        st.rerun()


def render_corrections(session: CorrectionSession) -> None:
    blocked = session.blocked()
    if not blocked:
        return
    st.markdown("**Rows that need correction**")
    for record in blocked:
        with st.expander(f"Line {record.file_line}: " + "; ".join(error.message for error in record.errors)):
            for key in dict.fromkeys(error.field for error in record.errors):
                field_key = f"fix_{record.row_index}_{key}"
                current = record.source_value(key, session.mapping)
                if key == "type":
                    options = sorted_categories()
                    value = st.selectbox(
                        FIELDS_BY_KEY[key].label,
                        options,
                        index=options.index(current) if current in options else None,
                        placeholder="Choose a type",
                        key=field_key,
                    )
                else:
                    value = st.text_input(FIELDS_BY_KEY[key].label, value=current, key=field_key)
                if value is not None and value != current:
                    session.edit(record.row_index, key, value)
                    st.rerun()


def review_workbook_bytes(session: CorrectionSession) -> bytes:
    with tempfile.TemporaryDirectory() as tmp:
        path = write_review_workbook(session, Path(tmp) / "review.xlsx")
        return path.read_bytes()


def render_preview_step(settings: Settings) -> None:
    session: CorrectionSession = st.session_state["session"]
    st.subheader("3. Review and correct")
    counts = session.counts()
    metrics = st.columns(3)
    metrics[0].metric("Rows", counts["total"])
    metrics[1].metric("Ready", counts["ready"])
    metrics[2].metric("Need correction", counts["blocked"])

    frame = session.to_dataframe()
    st.dataframe(frame.drop(columns=["row_index"]), width="stretch", hide_index=True)
    render_corrections(session)

    st.download_button(
        "Download review workbook",
        data=review_workbook_bytes(session),
        file_name="review.xlsx",
        mime=XLSX_MIME,
    )

    left, right = st.columns(2)
    if left.button("Back to mapping", disabled=session.committing):
        st.session_state["step"] = "map"
        st.rerun()
    label = f"Import {counts['ready']} event(s)"
    if right.button(label, type="primary", disabled=counts["ready"] == 0 or session.committing or session.committed):
        try:
            result = commit_session(session, get_store(settings.db_path))
        except EventDoctorError as exc:
            st.error(str(exc))
            return
        st.session_state["commit_result"] = result
        st.session_state["step"] = "result"
        st.rerun()


def render_result_step() -> None:
    result = st.session_state["commit_result"]
    st.subheader("4. Result")
    metrics = st.columns(2)
    metrics[0].metric("Imported", result.success_count)
    metrics[1].metric("Not imported", result.failed_count)
    if result.failed_count:
        st.warning("Rows with errors were not imported.")
    else:
        st.success("All rows were imported.")
    if st.button("Import another file", type="primary"):
        reset_wizard()
        st.rerun()


def render_import_page(settings: Settings) -> None:
    step = st.session_state["step"]
    st.progress((STEPS.index(step) + 1) / len(STEPS))
    if step == "upload":
        render_upload_step(settings)
    elif step == "map":
        render_mapping_step(settings)
    elif step == "preview":
        render_preview_step(settings)
    else:
        render_result_step()


def show_notices(key: str) -> None:
    for kind, message in st.session_state.pop(key, []):
        getattr(st, kind)(message)


def render_duplicates(store: SqliteEventStore, settings: Settings) -> None:
    st.subheader("Duplicate events")
    show_notices("dedupe_notices")
    policy = settings.dedupe_policy()
    groups = find_duplicate_groups(store.read_all(), policy)
    proposed = proposed_deletions(groups)
    if not groups:
        st.success("No duplicate events found.")
        return
    st.caption(f"{len(groups)} group(s), {len(proposed)} event(s) proposed for deletion")
    st.dataframe(groups_to_dataframe(groups), width="stretch", hide_index=True)

    # The checkbox can only be reset before it is instantiated.
    if st.session_state.pop("dedupe_reset_confirm", False):
        st.session_state["confirm_dedupe"] = False
    confirm = st.checkbox(f"I confirm deleting {len(proposed)} event(s)", key="confirm_dedupe")
    if st.button("Delete duplicates", type="primary", disabled=not confirm):
        try:
            result = apply_deletions(store, [event.id for event in proposed], policy)
        except EventDoctorError as exc:
            st.error(str(exc))
            return
        notices = [("success", f"Deleted {len(result.deleted_ids)} event(s).")]
        if result.skipped_ids:
            notices.append(("info", f"{len(result.skipped_ids)} event(s) changed since review and were kept."))
        st.session_state["dedupe_notices"] = notices
        st.session_state["dedupe_reset_confirm"] = True
        st.rerun()


def render_invalid_types(store: SqliteEventStore) -> None:
    st.subheader("Invalid types")
    show_notices("retype_notices")
    groups = find_invalid_type_groups(store.read_all())
    if not groups:
        st.success("Every event has a valid type.")
        return
    categories = sorted_categories()
    for group in groups:
        with st.expander(f"{group.category} ({len(group.events)} event(s))"):
            st.dataframe(
                pd.DataFrame([event.to_dict() for event in group.events])[["id", "title", "start", "category"]],
                width="stretch",
                hide_index=True,
            )
            new_category = st.selectbox("New type", categories, key=f"retype_{group.category}")
            confirm = st.checkbox(
                f"Change {len(group.events)} event(s) to {new_category}",
                key=f"confirm_retype_{group.category}",
            )
            if st.button("Apply", key=f"apply_retype_{group.category}", disabled=not confirm):
                try:
                    result = retarget_group(store, group.category, new_category)
                except EventDoctorError as exc:
                    st.error(str(exc))
                    return
                st.session_state["retype_notices"] = [("success", f"Updated {len(result.updated_ids)} event(s).")]
                st.rerun()

    with st.expander("Change one event"):
        event_id = st.text_input("Event id", key="single_retype_id")
        new_category = st.selectbox("New type", categories, key="single_retype_category")
        if st.button("Change type", disabled=not event_id.strip()):
            try:
                retarget_event(store, event_id.strip(), new_category)
            except EventDoctorError as exc:
                st.error(str(exc))
                return
            st.session_state["retype_notices"] = [("success", "Event updated.")]
            st.rerun()


def render_reconcile_page(settings: Settings) -> None:
    store = get_store(settings.db_path)
    render_duplicates(store, settings)
    st.divider()
    render_invalid_types(store)


def main() -> None:
    st.set_page_config(page_title="event-doctor", layout="wide")
    ensure_state()
    settings = get_settings()

    st.title("event-doctor")
    st.caption(f"Event store: {settings.db_path}")
    page = st.sidebar.radio("Page", ["Import", "Reconcile"])
    if page == "Import":
        render_import_page(settings)
    else:
        render_reconcile_page(settings)


if __name__ == "__main__":
    main()
