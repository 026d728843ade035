"""Mapping-suggestion client for an Ollama-compatible chat endpoint."""

from __future__ import annotations

import json
from typing import Any

import requests

from event_doctor.errors import MappingSuggestionError
from event_doctor.mapping import FieldMapping

DEFAULT_URL = "http://localhost:11434/api/chat"
DEFAULT_MODEL = "llama3.2"

FIELD_DESCRIPTIONS = {
    "title": "string (main title of the event)",
    "start": "string (start date/time, e.g. 'YYYY-MM-DD HH:mm', 'DD/MM/YYYY HH:mm' or '19 de marzo de 2025'; a date without time means an all-day event)",
    "end": "string (end date/time, same formats as 'start'; may be omitted)",
    "type": "string (intervention category, e.g. 'Reunión')",
    "notes": "string (free-text notes)",
    "linkedEntityId": "string (ID or name of the linked case; may be empty for general events)",
    "isAllDay": "boolean (whole-day event; values like 'true', 'si')",
    "isRegistered": "boolean (whether the event is recorded in the case notebook)",
}


def build_prompt(headers: list[str]) -> str:
    fields = "\n".join(f"- {key}: {description}" for key, description in FIELD_DESCRIPTIONS.items())
    example = json.dumps(
        {
            "title": "Asunto",
            "start": "Fecha",
            "end": None,
            "type": None,
            "notes": "Detalles",
            "linkedEntityId": "ID Caso",
            "isAllDay": None,
            "isRegistered": None,
        },
        ensure_ascii=False,
        indent=2,
    )
    return (
        "You map the columns of a user's CSV export onto the fields of an 'Intervention' record.\n\n"
        f"The record has these fields:\n{fields}\n\n"
        "The 'status' field is not mapped; every imported event is stored as completed.\n\n"
        f"These are the CSV headers:\n[ {', '.join(headers)} ]\n\n"
        "Answer with one JSON object. Keys are the field names above; each value is the CSV header "
        "that best matches, or null when no header clearly matches. If several headers look like dates "
        "(for example 'Fecha Inicio' and 'Hora Inicio'), choose the most complete one for 'start'.\n\n"
        "Example answer for the headers ['Asunto', 'Fecha', 'Detalles', 'ID Caso']:\n"
        f"{example}\n"
    )


def extract_json(text: str) -> dict[str, Any]:
    """Return the first top-level JSON object in text, tolerating markdown fences."""
    t = text.strip()
    if t.startswith("```"):
        t = t.strip("`")
        ln = t.find("\n")
        t = t[ln + 1 :] if ln != -1 else t

    start = t.find("{")
    if start == -1:
        raise ValueError(f"No JSON object in response: {text[:200]}")
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(t)):
        ch = t[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                payload = json.loads(t[start : i + 1])
                if not isinstance(payload, dict):
                    raise ValueError("Top-level JSON value is not an object")
                return payload
    raise ValueError(f"Unterminated JSON object in response: {text[:200]}")


class OllamaMappingSuggester:
    """Asks a local chat model for a header mapping in strict JSON mode."""

    def __init__(self, url: str = DEFAULT_URL, model: str = DEFAULT_MODEL, timeout: float = 60.0) -> None:
        self.url = url
        self.model = model
        self.timeout = timeout

    def _request_payload(self, headers: list[str]) -> dict[str, Any]:
        return {
            "model": self.model,
            "messages": [{"role": "user", "content": build_prompt(headers)}],
            "options": {"temperature": 0.1},
            "format": "json",
            "stream": False,
        }

    def suggest(self, headers: list[str]) -> FieldMapping:
        try:
            response = requests.post(self.url, json=self._request_payload(headers), timeout=self.timeout)
            response.raise_for_status()
            result = response.json()
        except requests.exceptions.ConnectionError as exc:
            raise MappingSuggestionError(
                f"Could not connect to the mapping service at {self.url}. Map the columns manually or retry."
            ) from exc
        except (requests.RequestException, ValueError) as exc:
            raise MappingSuggestionError(f"Failed to get an AI-assisted column mapping: {exc}") from exc

        if isinstance(result, dict) and isinstance(result.get("message"), dict):
            content = result["message"].get("content", "")
        elif isinstance(result, dict) and "response" in result:
            content = result["response"]
        else:
            raise MappingSuggestionError(f"Unexpected mapping service response: {str(result)[:200]}")

        try:
            payload = extract_json(str(content))
        except ValueError as exc:
            raise MappingSuggestionError(f"Mapping service did not return a JSON object: {exc}") from exc
        return FieldMapping.from_suggestion(payload, headers)
