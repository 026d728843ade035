"""
loader.py: CSV event export loader for event-doctor

Public API:
    headers, rows = parse_csv(text)
    result        = load_file("path/to/export.csv")

Result dict keys:
    headers             list of unique, trimmed column headers
    rows                list of RawRow dicts (header -> cell text), file order
    dataframe           pandas DataFrame view of the rows (string dtype)
    detected_encoding   encoding used to decode the bytes
    encoding_info       full dict: detected, confidence, is_utf8, suspicious_chars
    original_rows       data row count (header excluded)
    original_columns    column count
    warnings            list of warning strings
"""

from __future__ import annotations

import re
from collections import Counter
from pathlib import Path

import chardet
import pandas as pd

from event_doctor.errors import EmptyInputError

RawRow = dict[str, str]

LINE_BREAK_RE = re.compile(r"\r?\n")
TEXT_FORMATS = {".csv", ".txt"}


# ══════════════════════════════════════════════════════════════════════════════
# TABULAR PARSING
# ══════════════════════════════════════════════════════════════════════════════

def split_line(line: str) -> list[str]:
    """Split on commas that sit outside a quoted section (even quote count so far)."""
    cells: list[str] = []
    current: list[str] = []
    quotes = 0
    for ch in line:
        if ch == '"':
            quotes += 1
        if ch == "," and quotes % 2 == 0:
            cells.append("".join(current))
            current = []
            continue
        current.append(ch)
    cells.append("".join(current))
    return cells


def clean_cell(value: str) -> str:
    text = value.strip()
    if len(text) >= 2 and text.startswith('"') and text.endswith('"'):
        text = text[1:-1].replace('""', '"')
    return text.strip()


def unique_headers(raw_header: list[str]) -> list[str]:
    headers: list[str] = []
    seen: Counter = Counter()
    for i, cell in enumerate(raw_header, start=1):
        base = clean_cell(cell).strip('"').strip() or f"Column {i}"
        seen[base.lower()] += 1
        count = seen[base.lower()]
        headers.append(f"{base}_{count}" if count > 1 else base)
    return headers


def parse_csv(text: str) -> tuple[list[str], list[RawRow]]:
    lines = [line for line in LINE_BREAK_RE.split(text) if line.strip()]
    if not lines:
        raise EmptyInputError()

    headers = unique_headers(split_line(lines[0].lstrip("\ufeff")))
    rows: list[RawRow] = []
    for line in lines[1:]:
        values = split_line(line)
        rows.append({
            header: clean_cell(values[i]) if i < len(values) else ""
            for i, header in enumerate(headers)
        })

    if not headers or not rows:
        raise EmptyInputError()
    return headers, rows


# ══════════════════════════════════════════════════════════════════════════════
# ENCODING
# ══════════════════════════════════════════════════════════════════════════════

def _detect_encoding_info(raw: bytes) -> dict:
    result = chardet.detect(raw)
    detected = result.get("encoding") or "unknown"
    confidence = round(result.get("confidence") or 0.0, 2)
    is_utf8 = detected.upper().replace("-", "") in ("UTF8", "UTF8SIG", "ASCII")

    suspicious: list[str] = []
    if not is_utf8:
        for row_idx, line in enumerate(raw.split(b"\n")[:100], start=1):
            try:
                line.decode("utf-8")
            except UnicodeDecodeError as e:
                bad_byte = line[e.start : e.end]
                suspicious.append(f"row {row_idx}: byte {bad_byte!r} at position {e.start}")

    return {
        "detected": detected,
        "confidence": confidence,
        "is_utf8": is_utf8,
        "suspicious_chars": suspicious[:10],
    }


def decode_upload(raw: bytes) -> tuple[str, dict, list[str]]:
    """
    Decode uploaded bytes.

    UTF-8 (with or without BOM) is the supported input; anything else is
    decoded with chardet's guess and reported as a warning.
    """
    warnings: list[str] = []
    try:
        text = raw.decode("utf-8-sig")
        info = {"detected": "utf-8", "confidence": 1.0, "is_utf8": True, "suspicious_chars": []}
        return text.replace("\x00", ""), info, warnings
    except UnicodeDecodeError:
        info = _detect_encoding_info(raw)

    encoding = info["detected"]
    try:
        text = raw.decode(encoding)
    except (LookupError, UnicodeDecodeError):
        encoding = "cp1252"
        text = raw.decode(encoding, errors="replace")
    info["detected"] = encoding
    warnings.append(
        f"File is not valid UTF-8; decoded as {encoding} "
        f"(confidence {info['confidence']:.0%}). Check accented characters before importing."
    )
    return text.replace("\x00", ""), info, warnings


# ══════════════════════════════════════════════════════════════════════════════
# PUBLIC API
# ══════════════════════════════════════════════════════════════════════════════

def rows_to_dataframe(headers: list[str], rows: list[RawRow]) -> pd.DataFrame:
    return pd.DataFrame(rows, columns=headers, dtype="string")


def load_bytes(raw: bytes) -> dict:
    text, info, warnings = decode_upload(raw)
    headers, rows = parse_csv(text)
    return {
        "headers": headers,
        "rows": rows,
        "dataframe": rows_to_dataframe(headers, rows),
        "detected_encoding": info["detected"],
        "encoding_info": info,
        "original_rows": len(rows),
        "original_columns": len(headers),
        "warnings": warnings,
    }


def load_file(path: "str | Path") -> dict:
    """
    Load a CSV export from disk.

    Raises:
        FileNotFoundError  if the file does not exist.
        ValueError         if the extension is not a supported text format.
        EmptyInputError    if there is no header or no data row.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")
    suffix = path.suffix.lower()
    if suffix not in TEXT_FORMATS:
        supported = ", ".join(sorted(TEXT_FORMATS))
        raise ValueError(f"Unsupported format '{suffix}'. Supported: {supported}")
    result = load_bytes(path.read_bytes())
    result["file"] = path.name
    return result


# ══════════════════════════════════════════════════════════════════════════════
# IMPORT TEMPLATE
# ══════════════════════════════════════════════════════════════════════════════

TEMPLATE_HEADERS = ["title", "start", "end", "interventionType", "notes", "caseId", "isAllDay", "isRegistered"]
TEMPLATE_EXAMPLE_ROW = [
    '"Reunión de seguimiento"',
    '"15 de agosto de 2024"',
    '""',
    '"Entrevista"',
    '"Hablamos sobre los avances."',
    '"Nombre Completo del Caso"',
    "",
    "true",
]


def template_csv() -> str:
    return ",".join(TEMPLATE_HEADERS) + "\n" + ",".join(TEMPLATE_EXAMPLE_ROW) + "\n"
