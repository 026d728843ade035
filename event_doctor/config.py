"""
Settings for event-doctor.

Values come from a JSON file (default ``event-doctor.json`` in the working
directory, or ``EVENT_DOCTOR_CONFIG``) and are then overridden by environment
variables. YAML is not supported.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from event_doctor.dedupe import DEFAULT_GENERIC_CATEGORIES, DedupePolicy
from event_doctor.errors import ConfigError
from event_doctor.suggest import DEFAULT_MODEL, DEFAULT_URL

DEFAULT_CONFIG_NAME = "event-doctor.json"
DEFAULT_DB_PATH = "./data/events.db"

STARTER_CONFIG = {
    "store": {"path": DEFAULT_DB_PATH},
    "suggest": {"url": DEFAULT_URL, "model": DEFAULT_MODEL, "timeout": 60},
    "dedupe": {
        "generic_categories": sorted(DEFAULT_GENERIC_CATEGORIES),
        "noncanonical_is_generic": True,
    },
}


@dataclass
class Settings:
    db_path: str = DEFAULT_DB_PATH
    suggest_url: str = DEFAULT_URL
    suggest_model: str = DEFAULT_MODEL
    suggest_timeout: float = 60.0
    generic_categories: frozenset[str] = DEFAULT_GENERIC_CATEGORIES
    noncanonical_is_generic: bool = True
    source: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def dedupe_policy(self) -> DedupePolicy:
        return DedupePolicy(
            generic_categories=frozenset(self.generic_categories),
            noncanonical_is_generic=self.noncanonical_is_generic,
        )


def _read_config_file(path: Path) -> dict[str, Any]:
    suffix = path.suffix.lower()
    if suffix in {".yml", ".yaml"}:
        raise ConfigError("YAML configs are not supported. Use JSON.")
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise ConfigError(f"Could not read config {path}: {exc}") from exc
    if not isinstance(payload, dict):
        raise ConfigError("Config root must be a JSON object.")
    return payload


def load_settings(path: "str | Path | None" = None) -> Settings:
    explicit = path or os.environ.get("EVENT_DOCTOR_CONFIG")
    config_path = Path(explicit) if explicit else Path.cwd() / DEFAULT_CONFIG_NAME
    if explicit and not config_path.exists():
        raise ConfigError(f"Config not found: {config_path}")

    settings = Settings()
    if config_path.exists():
        payload = _read_config_file(config_path)
        store = payload.get("store", {})
        suggest = payload.get("suggest", {})
        dedupe = payload.get("dedupe", {})
        settings.db_path = str(store.get("path", settings.db_path))
        settings.suggest_url = str(suggest.get("url", settings.suggest_url))
        settings.suggest_model = str(suggest.get("model", settings.suggest_model))
        try:
            settings.suggest_timeout = float(suggest.get("timeout", settings.suggest_timeout))
        except (TypeError, ValueError) as exc:
            raise ConfigError("suggest.timeout must be a number.") from exc
        if "generic_categories" in dedupe:
            categories = dedupe["generic_categories"]
            if not isinstance(categories, list) or not all(isinstance(item, str) for item in categories):
                raise ConfigError("dedupe.generic_categories must be a list of strings.")
            settings.generic_categories = frozenset(categories)
        settings.noncanonical_is_generic = bool(dedupe.get("noncanonical_is_generic", True))
        settings.source = str(config_path)
        settings.extra = {key: value for key, value in payload.items() if key not in {"store", "suggest", "dedupe"}}

    settings.db_path = os.environ.get("EVENT_DOCTOR_DB", settings.db_path)
    settings.suggest_url = os.environ.get("EVENT_DOCTOR_SUGGEST_URL", settings.suggest_url)
    settings.suggest_model = os.environ.get("EVENT_DOCTOR_SUGGEST_MODEL", settings.suggest_model)
    return settings
