from __future__ import annotations

import argparse
import json
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from event_doctor import __version__ as TOOL_VERSION
from event_doctor.commit import commit_session
from event_doctor.config import DEFAULT_CONFIG_NAME, STARTER_CONFIG, Settings, load_settings
from event_doctor.contracts import build_payload, build_run_summary
from event_doctor.dates import format_instant
from event_doctor.dedupe import apply_deletions, find_duplicate_groups, proposed_deletions
from event_doctor.errors import (
    EXIT_COMMAND_ERROR,
    EXIT_PARSE_FAILED,
    EXIT_PARTIAL,
    EXIT_RECONCILE_ISSUES,
    EXIT_SUCCESS,
    EventDoctorError,
)
from event_doctor.loader import load_file, template_csv
from event_doctor.mapping import FieldMapper, FieldMapping
from event_doctor.retype import find_invalid_type_groups, retarget_event, retarget_group
from event_doctor.session import CorrectionSession
from event_doctor.store import SqliteEventStore
from event_doctor.suggest import OllamaMappingSuggester
from event_doctor.taxonomy import FIELD_KEYS, field_label, sorted_categories
from event_doctor.workbook import write_review_workbook

TEMPLATE_NAME = "plantilla_importacion.csv"


class CliError(Exception):
    def __init__(self, message: str, code: int = EXIT_COMMAND_ERROR) -> None:
        super().__init__(message)
        self.code = code


class EventDoctorArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:
        raise CliError(message, EXIT_COMMAND_ERROR)


def eprint(message: str) -> None:
    print(message, file=sys.stderr)


def emit_human(message: str, *, quiet: bool = False) -> None:
    if not quiet:
        eprint(message)


def json_dumps(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False, sort_keys=True)


def timestamp_token() -> str:
    override = os.environ.get("EVENT_DOCTOR_OUTPUT_STAMP")
    if override:
        return override
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def default_review_path(input_path: Path) -> Path:
    return Path.cwd() / "event-doctor-output" / f"{input_path.stem}-{timestamp_token()}" / "review.xlsx"


def ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def write_text(path: Path, payload: str) -> None:
    ensure_parent(path)
    path.write_text(payload, encoding="utf-8")


def write_json(path: Path, payload: Any) -> None:
    write_text(path, json_dumps(payload))


def maybe_emit_json_stdout(payload: Any, enabled: bool) -> None:
    if enabled:
        print(json_dumps(payload))


def safe_output_path(path: Path) -> Path:
    if path.exists():
        raise CliError(f"Refusing to overwrite existing output: {path}", EXIT_COMMAND_ERROR)
    return path


def classify_exception(exc: Exception) -> int:
    if isinstance(exc, (CliError, EventDoctorError)):
        return exc.code
    if isinstance(exc, UnicodeDecodeError):
        return EXIT_PARSE_FAILED
    if isinstance(exc, (FileNotFoundError, KeyError, IndexError)):
        return EXIT_COMMAND_ERROR
    if isinstance(exc, ValueError):
        return EXIT_PARSE_FAILED
    return EXIT_COMMAND_ERROR


def error_text(exc: Exception) -> str:
    # KeyError str() wraps the message in quotes.
    if isinstance(exc, KeyError) and exc.args:
        return str(exc.args[0])
    return str(exc)


def split_assignment(raw: str, flag: str) -> tuple[str, str]:
    key, sep, value = raw.partition("=")
    if not sep or not key.strip():
        raise CliError(f"{flag} expects KEY=VALUE, got '{raw}'", EXIT_COMMAND_ERROR)
    return key.strip(), value


def parse_map_overrides(values: list[str] | None) -> dict[str, str | None]:
    overrides: dict[str, str | None] = {}
    for raw in values or []:
        key, header = split_assignment(raw, "--map")
        overrides[key] = header.strip() or None
    return overrides


def parse_row_edits(values: list[str] | None) -> list[tuple[int, str, str]]:
    edits: list[tuple[int, str, str]] = []
    for raw in values or []:
        target, value = split_assignment(raw, "--set")
        line, sep, field = target.partition(":")
        if not sep or not line.strip().isdigit():
            raise CliError(f"--set expects LINE:FIELD=VALUE, got '{raw}'", EXIT_COMMAND_ERROR)
        # File lines count the header as line 1.
        row_index = int(line) - 2
        if row_index < 0:
            raise CliError(f"--set line must be 2 or greater, got {line}", EXIT_COMMAND_ERROR)
        edits.append((row_index, field.strip(), value))
    return edits


def open_store(args: argparse.Namespace, settings: Settings) -> SqliteEventStore:
    return SqliteEventStore(Path(getattr(args, "db", None) or settings.db_path))


def render_mapping_text(mapping: FieldMapping) -> list[str]:
    lines = ["Mapping:"]
    for key in FIELD_KEYS:
        header = mapping.get(key)
        lines.append(f"- {field_label(key)} <- {header if header else '[unmapped]'}")
    return lines


def render_import_text(payload: dict[str, Any], session: CorrectionSession, *, verbose: bool) -> str:
    counts = payload["counts"]
    lines = [
        "event-doctor import",
        f"File: {payload['input']}",
        f"Encoding: {payload['detected_encoding']}",
        f"Rows: {counts['total']}",
        f"Ready: {counts['ready']}",
        f"Blocked: {counts['blocked']}",
    ]
    if verbose:
        lines.extend(render_mapping_text(session.mapping))
        for record in session.blocked():
            for error in record.errors:
                lines.append(f"- line {record.file_line}, {field_label(error.field)}: {error.message}")
    commit = payload.get("commit")
    if commit is None:
        lines.append("Dry run: nothing was saved.")
    else:
        lines.append(f"Imported: {commit['success_count']}")
        lines.append(f"Not imported: {commit['failed_count']}")
    return "\n".join(lines) + "\n"


def build_mapping(args: argparse.Namespace, headers: list[str], settings: Settings) -> FieldMapping:
    if args.no_suggest:
        mapper = FieldMapper(headers)
    else:
        suggester = OllamaMappingSuggester(
            url=settings.suggest_url,
            model=settings.suggest_model,
            timeout=settings.suggest_timeout,
        )
        mapper = FieldMapper(headers, suggester)
        mapper.seed()
    mapper.apply_overrides(parse_map_overrides(args.map))
    return mapper.mapping


def run_import(args: argparse.Namespace) -> int:
    input_path = Path(args.input)
    if not input_path.exists():
        eprint(f"File not found: {input_path}")
        return EXIT_COMMAND_ERROR

    try:
        settings = load_settings(args.config)
        review_path = None
        if args.review is not None:
            review_path = safe_output_path(Path(args.review) if args.review else default_review_path(input_path))
        loaded = load_file(input_path)
        for warning in loaded["warnings"]:
            emit_human(f"Warning: {warning}", quiet=args.quiet)

        mapping = build_mapping(args, loaded["headers"], settings)
        warnings = list(loaded["warnings"])
        missing = mapping.missing_required()
        if missing:
            message = "Required fields are not mapped: " + ", ".join(field_label(key) for key in missing)
            warnings.append(message)
            emit_human(f"Warning: {message}", quiet=args.quiet)

        session = CorrectionSession(loaded["headers"], loaded["rows"], mapping)
        session.materialize()
        for row_index, field, value in parse_row_edits(args.set):
            session.edit(row_index, field, value)

        if review_path is not None:
            write_review_workbook(session, review_path)
            emit_human(f"Review workbook: {review_path}", quiet=args.quiet)

        commit_payload = None
        if not args.dry_run:
            result = commit_session(session, open_store(args, settings))
            commit_payload = result.to_dict()

        counts = session.counts()
        payload = build_payload(
            "event_doctor.import_summary",
            {
                "input": str(input_path),
                "detected_encoding": loaded["detected_encoding"],
                "mapping": mapping.as_dict(),
                "counts": counts,
                "commit": commit_payload,
                "blocked_rows": [
                    {
                        "line": record.file_line,
                        "errors": [
                            {"field": error.field, "code": error.code, "message": error.message}
                            for error in record.errors
                        ],
                    }
                    for record in session.blocked()
                ],
                "ready_rows": [
                    {
                        "line": record.file_line,
                        "title": record.data["title"],
                        "type": record.data["type"],
                        "start": format_instant(record.data["start"]),
                        "end": format_instant(record.data["end"]),
                        "isAllDay": record.data["isAllDay"],
                    }
                    for record in session.ready()
                ],
            },
            build_run_summary(
                command="import",
                input_path=input_path,
                status="dry_run" if args.dry_run else ("partial" if counts["blocked"] else "ok"),
                output_path=review_path,
                metrics={"rows_total": counts["total"], "rows_ready": counts["ready"], "rows_blocked": counts["blocked"]},
                warnings=warnings,
            ),
        )
        if args.json:
            maybe_emit_json_stdout(payload, True)
        else:
            emit_human(render_import_text(payload, session, verbose=args.verbose).rstrip(), quiet=args.quiet)
        return EXIT_PARTIAL if counts["blocked"] else EXIT_SUCCESS
    except Exception as exc:
        eprint(error_text(exc))
        return classify_exception(exc)


def run_template(args: argparse.Namespace) -> int:
    if args.output == "-":
        sys.stdout.write(template_csv())
        return EXIT_SUCCESS
    try:
        output_path = safe_output_path(Path(args.output))
    except CliError as exc:
        eprint(str(exc))
        return exc.code
    write_text(output_path, template_csv())
    emit_human(f"Template written: {output_path}", quiet=args.quiet)
    return EXIT_SUCCESS


def render_duplicates_text(groups, *, verbose: bool) -> str:
    deletions = proposed_deletions(groups)
    lines = [
        "event-doctor duplicates",
        f"Groups: {len(groups)}",
        f"Proposed deletions: {len(deletions)}",
    ]
    for group in groups:
        lines.append(f"{group.key[0].isoformat()} {group.title}")
        for action, members in (("keep  ", group.keep), ("delete", group.delete)):
            for event in members:
                line = f"  {action} {event.id} [{event.category}]"
                if verbose:
                    line += f" created {event.created_at.isoformat(timespec='seconds')}"
                lines.append(line)
    return "\n".join(lines) + "\n"


def run_duplicates(args: argparse.Namespace) -> int:
    try:
        settings = load_settings(args.config)
        policy = settings.dedupe_policy()
        store = open_store(args, settings)
        groups = find_duplicate_groups(store.read_all(), policy)
        proposed = [event.id for event in proposed_deletions(groups)]

        deletion = None
        if args.apply:
            if not args.yes:
                raise CliError("Refusing to delete events without --yes.", EXIT_COMMAND_ERROR)
            confirmed = args.only or proposed
            deletion = apply_deletions(store, confirmed, policy)

        payload = build_payload(
            "event_doctor.duplicates",
            {
                "groups": [group.to_dict() for group in groups],
                "proposed_deletions": proposed,
                "deletion": deletion.to_dict() if deletion else None,
            },
            build_run_summary(
                command="duplicates",
                status="applied" if deletion else "ok",
                metrics={"groups": len(groups), "proposed_deletions": len(proposed)},
            ),
        )
        if args.json:
            maybe_emit_json_stdout(payload, True)
        else:
            emit_human(render_duplicates_text(groups, verbose=args.verbose).rstrip(), quiet=args.quiet)
            if deletion:
                emit_human(f"Deleted: {len(deletion.deleted_ids)}", quiet=args.quiet)
                if deletion.skipped_ids:
                    emit_human(f"Skipped (no longer proposed): {len(deletion.skipped_ids)}", quiet=args.quiet)
        if deletion is None and proposed:
            return EXIT_RECONCILE_ISSUES
        return EXIT_SUCCESS
    except Exception as exc:
        eprint(error_text(exc))
        return classify_exception(exc)


def render_types_text(groups, *, verbose: bool) -> str:
    lines = [
        "event-doctor types",
        f"Invalid types: {len(groups)}",
    ]
    for group in groups:
        lines.append(f"- {group.category}: {len(group.events)}")
        if verbose:
            lines.extend(f"    {event.id} {event.start.date().isoformat()} {event.title}" for event in group.events)
    if verbose:
        lines.append("Valid types: " + ", ".join(sorted_categories()))
    return "\n".join(lines) + "\n"


def run_types(args: argparse.Namespace) -> int:
    try:
        if (args.retarget or args.event) and not args.yes:
            raise CliError("Refusing to change event types without --yes.", EXIT_COMMAND_ERROR)
        settings = load_settings(args.config)
        store = open_store(args, settings)

        changes = []
        if args.retarget:
            old, new = split_assignment(args.retarget, "--retarget")
            changes.append(retarget_group(store, old, new.strip()))
        if args.event:
            event_id, new = split_assignment(args.event, "--event")
            changes.append(retarget_event(store, event_id, new.strip()))

        groups = find_invalid_type_groups(store.read_all())
        payload = build_payload(
            "event_doctor.invalid_types",
            {
                "groups": [group.to_dict() for group in groups],
                "changes": [change.to_dict() for change in changes],
                "valid_types": sorted_categories(),
            },
            build_run_summary(
                command="types",
                status="applied" if changes else "ok",
                metrics={"invalid_groups": len(groups), "invalid_events": sum(len(group.events) for group in groups)},
            ),
        )
        if args.json:
            maybe_emit_json_stdout(payload, True)
        else:
            for change in changes:
                emit_human(
                    f"Updated {len(change.updated_ids)} event(s): {change.category} -> {change.new_category}",
                    quiet=args.quiet,
                )
            emit_human(render_types_text(groups, verbose=args.verbose).rstrip(), quiet=args.quiet)
        if not changes and groups:
            return EXIT_RECONCILE_ISSUES
        return EXIT_SUCCESS
    except Exception as exc:
        eprint(error_text(exc))
        return classify_exception(exc)


EXPLAIN_RULES = {
    "required": {
        "description": "A required field (title, start date or intervention type) is empty after mapping and correction.",
        "evidence": "The mapped cell is blank, or the field has no source column.",
        "auto_fixable": False,
        "disable_hint": "Map a column to the field or correct the row with --set LINE:FIELD=VALUE.",
    },
    "invalid-date": {
        "description": "A start or end value could not be read as a date.",
        "evidence": "The value is not ISO, not DD/MM/YYYY and not a long Spanish date like '15 de agosto de 2024'.",
        "auto_fixable": False,
        "disable_hint": "Rewrite the cell in one of the supported formats.",
    },
    "end-before-start": {
        "description": "The end of the event is earlier than its start.",
        "evidence": "Both dates parsed and end < start.",
        "auto_fixable": False,
        "disable_hint": "Correct the end date or clear it so it defaults from the start.",
    },
    "all-day-inference": {
        "description": "Events without an explicit all-day flag are all-day when the start has no time.",
        "evidence": "The isAllDay cell is empty and the start value had no time component.",
        "auto_fixable": True,
        "disable_hint": "Map an isAllDay column or set isAllDay on the row.",
    },
    "duplicate-events": {
        "description": "Stored events with the same calendar date and the same title (ignoring case and outer spaces).",
        "evidence": "A group keeps its specific-category events and proposes generic ones (Otro, Reunión, Cita) for deletion; among generics only the earliest created is kept.",
        "auto_fixable": False,
        "disable_hint": "Adjust dedupe.generic_categories in the config file; deletions always need --apply --yes.",
    },
    "invalid-types": {
        "description": "Stored events whose category is not a valid intervention type.",
        "evidence": "The category is outside the canonical list. 'Tarea' records are excluded and changed one at a time.",
        "auto_fixable": False,
        "disable_hint": "Run 'event-doctor types --retarget OLD=NEW --yes' or '--event ID=NEW --yes'.",
    },
}


def build_parser() -> argparse.ArgumentParser:
    parser = EventDoctorArgumentParser(prog="event-doctor", description="Bulk CSV import and reconciliation for intervention events.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    imp = subparsers.add_parser("import", help="Import events from a CSV file.")
    imp.add_argument("input", help="Input CSV path")
    imp.add_argument("--map", action="append", metavar="FIELD=HEADER", help="Map a target field to a CSV header (empty header unmaps)")
    imp.add_argument("--no-suggest", action="store_true", help="Skip the mapping service; start from an empty mapping and use --map")
    imp.add_argument("--set", action="append", metavar="LINE:FIELD=VALUE", help="Correct one field of one row before saving")
    imp.add_argument("--dry-run", action="store_true", help="Validate and report without saving")
    imp.add_argument("--review", nargs="?", const="", default=None, help="Write a review workbook (.xlsx); optional path")
    imp.add_argument("--db", help="SQLite event store path")
    imp.add_argument("--config", help="Config file path")
    imp.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    imp.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")
    imp.add_argument("-v", "--verbose", action="store_true", help="More human logs")

    template = subparsers.add_parser("template", help="Write an example import CSV.")
    template.add_argument("--output", default=TEMPLATE_NAME, help="Template path, or '-' for stdout")
    template.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")

    duplicates = subparsers.add_parser("duplicates", help="Find and remove duplicate stored events.")
    duplicates.add_argument("--apply", action="store_true", help="Delete the proposed duplicates")
    duplicates.add_argument("--only", action="append", metavar="ID", help="Restrict --apply to these event ids")
    duplicates.add_argument("--yes", action="store_true", help="Confirm destructive changes")
    duplicates.add_argument("--db", help="SQLite event store path")
    duplicates.add_argument("--config", help="Config file path")
    duplicates.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    duplicates.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")
    duplicates.add_argument("-v", "--verbose", action="store_true", help="More human logs")

    types = subparsers.add_parser("types", help="Find and correct stored events with invalid types.")
    types.add_argument("--retarget", metavar="OLD=NEW", help="Change every event of an invalid type")
    types.add_argument("--event", metavar="ID=NEW", help="Change the type of one event")
    types.add_argument("--yes", action="store_true", help="Confirm changes")
    types.add_argument("--db", help="SQLite event store path")
    types.add_argument("--config", help="Config file path")
    types.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    types.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")
    types.add_argument("-v", "--verbose", action="store_true", help="More human logs")

    config = subparsers.add_parser("config", help="Generate configuration.")
    config_subparsers = config.add_subparsers(dest="config_command", required=True)
    config_init = config_subparsers.add_parser("init", help="Write a starter config file.")
    config_init.add_argument("--path", default=DEFAULT_CONFIG_NAME, help="Config output path")

    explain = subparsers.add_parser("explain", help="Explain a rule id.")
    explain.add_argument("rule_id", help="Rule identifier")
    explain.add_argument("--json", action="store_true", help="Write machine JSON to stdout")

    subparsers.add_parser("version", help="Print version")
    return parser


def run_config_init(args: argparse.Namespace) -> int:
    config_path = Path(args.path)
    if config_path.exists():
        eprint(f"Refusing to overwrite existing config: {config_path}")
        return EXIT_COMMAND_ERROR
    if config_path.suffix.lower() in {".yml", ".yaml"}:
        eprint("YAML configs are not supported. Use JSON.")
        return EXIT_COMMAND_ERROR
    write_json(config_path, STARTER_CONFIG)
    emit_human(f"Config written: {config_path}")
    return EXIT_SUCCESS


def run_explain(args: argparse.Namespace) -> int:
    rule = EXPLAIN_RULES.get(args.rule_id)
    if rule is None:
        eprint(f"Unknown rule id: {args.rule_id}")
        return EXIT_COMMAND_ERROR
    payload = {"rule_id": args.rule_id, **rule}
    if args.json:
        maybe_emit_json_stdout(payload, True)
    else:
        print(
            "\n".join(
                [
                    f"Rule: {args.rule_id}",
                    f"What it does: {payload['description']}",
                    f"What triggers it: {payload['evidence']}",
                    f"Auto-fixable: {'yes' if payload['auto_fixable'] else 'no'}",
                    f"How to resolve it: {payload['disable_hint']}",
                ]
            )
        )
    return EXIT_SUCCESS


def run_version() -> int:
    print(TOOL_VERSION)
    return EXIT_SUCCESS


def main(argv: list[str] | None = None) -> int:
    try:
        parser = build_parser()
        args = parser.parse_args(argv)
        if args.command == "import":
            return run_import(args)
        if args.command == "template":
            return run_template(args)
        if args.command == "duplicates":
            return run_duplicates(args)
        if args.command == "types":
            return run_types(args)
        if args.command == "config":
            if args.config_command == "init":
                return run_config_init(args)
        if args.command == "explain":
            return run_explain(args)
        if args.command == "version":
            return run_version()
        raise CliError(f"Unknown command: {args.command}", EXIT_COMMAND_ERROR)
    except CliError as exc:
        eprint(str(exc))
        return exc.code


if __name__ == "__main__":
    raise SystemExit(main())
