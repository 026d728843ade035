from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Protocol

from event_doctor.errors import MappingSuggestionError
from event_doctor.taxonomy import FIELD_KEYS, REQUIRED_FIELDS

# Keys the suggestion service may answer with instead of ours.
FIELD_ALIASES = {
    "interventionType": "type",
    "caseId": "linkedEntityId",
}


@dataclass
class FieldMapping:
    """Target field -> source header (None means unmapped)."""

    headers: list[str]
    assignments: dict[str, str | None] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for key in FIELD_KEYS:
            self.assignments.setdefault(key, None)
        unknown = set(self.assignments) - set(FIELD_KEYS)
        if unknown:
            raise KeyError(f"Unknown target field(s): {', '.join(sorted(unknown))}")

    @classmethod
    def empty(cls, headers: Iterable[str]) -> "FieldMapping":
        return cls(list(headers))

    @classmethod
    def from_suggestion(cls, payload: dict[str, Any], headers: Iterable[str]) -> "FieldMapping":
        """Build a mapping from untrusted suggestion output, dropping anything that is not a real header."""
        mapping = cls.empty(headers)
        known = set(mapping.headers)
        for raw_key, value in payload.items():
            key = FIELD_ALIASES.get(raw_key, raw_key)
            if key not in FIELD_KEYS:
                continue
            if isinstance(value, str) and value in known:
                mapping.assignments[key] = value
        return mapping

    def get(self, key: str) -> str | None:
        return self.assignments[key]

    def assign(self, key: str, header: str | None) -> None:
        if key not in FIELD_KEYS:
            raise KeyError(f"Unknown target field: {key}")
        if header in ("", None):
            self.assignments[key] = None
            return
        if header not in self.headers:
            raise KeyError(f"Unknown source header: {header}")
        self.assignments[key] = header

    def unassign(self, key: str) -> None:
        self.assign(key, None)

    def missing_required(self) -> list[str]:
        return [key for key in REQUIRED_FIELDS if self.assignments[key] is None]

    def as_dict(self) -> dict[str, str | None]:
        return {key: self.assignments[key] for key in FIELD_KEYS}

    def copy(self) -> "FieldMapping":
        return FieldMapping(list(self.headers), dict(self.assignments))


class MappingSuggester(Protocol):
    def suggest(self, headers: list[str]) -> FieldMapping:
        ...


class FieldMapper:
    """Holds the working mapping for one import; the suggestion only seeds it."""

    def __init__(self, headers: list[str], suggester: MappingSuggester | None = None) -> None:
        self.headers = list(headers)
        self.suggester = suggester
        self.mapping = FieldMapping.empty(self.headers)

    def seed(self) -> FieldMapping:
        if self.suggester is None:
            raise MappingSuggestionError("No mapping suggestion service is configured.")
        suggested = self.suggester.suggest(list(self.headers))
        if not isinstance(suggested, FieldMapping):
            raise MappingSuggestionError("Mapping suggestion service returned an unexpected payload.")
        self.mapping = FieldMapping.from_suggestion(suggested.as_dict(), self.headers)
        return self.mapping

    def assign(self, key: str, header: str | None) -> None:
        self.mapping.assign(key, header)

    def apply_overrides(self, overrides: dict[str, str | None]) -> None:
        for key, header in overrides.items():
            self.assign(key, header)
