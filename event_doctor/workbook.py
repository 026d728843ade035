from __future__ import annotations

from pathlib import Path
from typing import Any

import openpyxl
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter

from event_doctor.dates import format_instant
from event_doctor.session import CorrectionSession
from event_doctor.taxonomy import FIELD_KEYS, field_label

READY_COLOR = "4CAF50"
BLOCKED_COLOR = "E53935"
ERRORS_COLOR = "1565C0"

# Blank required cells on the Blocked sheet
FILL_MISSING = PatternFill("solid", fgColor="FCE4D6")


def _style_sheet(ws, col_widths: list[int], header_color: str) -> None:
    """Bold white header on a coloured band, frozen first row, fitted widths."""
    fill = PatternFill("solid", fgColor=header_color)
    font = Font(bold=True, color="FFFFFF")
    for cell in ws[1]:
        cell.font = font
        cell.fill = fill
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=False)
    ws.freeze_panes = "A2"
    for i, width in enumerate(col_widths, start=1):
        ws.column_dimensions[get_column_letter(i)].width = width


def _infer_col_widths(rows: list[list], min_width: int = 10, max_width: int = 60, sample: int = 300) -> list[int]:
    if not rows:
        return []
    widths = [max(min_width, min(max_width, len(str(v)) + 2)) for v in rows[0]]
    for row in rows[1 : sample + 1]:
        for i, val in enumerate(row):
            widths[i] = max(widths[i], min(max_width, len(str(val)) + 2))
    return widths


def _cell_value(value: Any) -> Any:
    if value is None:
        return ""
    if hasattr(value, "isoformat"):
        return format_instant(value)
    return value


def write_review_workbook(session: CorrectionSession, output_path: Path) -> Path:
    """
    Write a review workbook for an import session.

    Ready and Blocked hold the materialized values per target field; Errors
    has one line per field error with the value that produced it.
    """
    labels = [field_label(key) for key in FIELD_KEYS]
    wb = openpyxl.Workbook()

    # Sheet 1: Ready
    ws_ready = wb.active
    ws_ready.title = "Ready"
    ready_headers = ["line", *labels]
    ready_rows = [ready_headers]
    ws_ready.append(ready_headers)
    for record in session.ready():
        row_out = [record.file_line, *(_cell_value(record.data.get(key)) for key in FIELD_KEYS)]
        ws_ready.append(row_out)
        ready_rows.append(row_out)
    _style_sheet(ws_ready, _infer_col_widths(ready_rows), READY_COLOR)

    # Sheet 2: Blocked
    ws_blocked = wb.create_sheet("Blocked")
    blocked_headers = ["line", *labels, "errors"]
    blocked_rows = [blocked_headers]
    ws_blocked.append(blocked_headers)
    for record in session.blocked():
        summary = "; ".join(f"{field_label(error.field)}: {error.message}" for error in record.errors)
        row_out = [record.file_line, *(_cell_value(record.data.get(key)) for key in FIELD_KEYS), summary]
        ws_blocked.append(row_out)
        blocked_rows.append(row_out)
        last = ws_blocked.max_row
        for error in record.errors:
            ws_blocked.cell(last, FIELD_KEYS.index(error.field) + 2).fill = FILL_MISSING
    _style_sheet(ws_blocked, _infer_col_widths(blocked_rows), BLOCKED_COLOR)
    errors_col = get_column_letter(len(blocked_headers))
    for cell in ws_blocked[errors_col][1:]:
        cell.alignment = Alignment(wrap_text=True, vertical="top")

    # Sheet 3: Errors
    ws_errors = wb.create_sheet("Errors")
    error_headers = ["line", "field", "code", "original_value", "message"]
    error_rows = [error_headers]
    ws_errors.append(error_headers)
    for record in session.blocked():
        for error in record.errors:
            row_out = [
                record.file_line,
                field_label(error.field),
                error.code,
                record.source_value(error.field, session.mapping),
                error.message,
            ]
            ws_errors.append(row_out)
            error_rows.append(row_out)
    _style_sheet(ws_errors, _infer_col_widths(error_rows), ERRORS_COLOR)

    output_path.parent.mkdir(parents=True, exist_ok=True)
    wb.save(output_path)
    return output_path
