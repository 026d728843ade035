from __future__ import annotations

import json
import os
import sys
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from openpyxl import load_workbook

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from event_doctor import __version__
from event_doctor.config import STARTER_CONFIG, load_settings
from event_doctor.contracts import CONTRACT_VERSIONS, build_payload, build_run_summary
from event_doctor.errors import ConfigError
from event_doctor.loader import parse_csv
from event_doctor.mapping import FieldMapping
from event_doctor.session import CorrectionSession
from event_doctor.workbook import write_review_workbook

CONFIG_ENV_KEYS = ["EVENT_DOCTOR_CONFIG", "EVENT_DOCTOR_DB", "EVENT_DOCTOR_SUGGEST_URL", "EVENT_DOCTOR_SUGGEST_MODEL"]


def clean_env(**overrides: str) -> dict[str, str]:
    env = {key: value for key, value in os.environ.items() if key not in CONFIG_ENV_KEYS}
    env.update(overrides)
    return env


class ContractTests(unittest.TestCase):
    def test_payload_carries_versioned_contract_and_run_summary(self):
        payload = build_payload(
            "event_doctor.import_summary",
            {"counts": {"total": 1}},
            build_run_summary(command="import", input_path=Path("x.csv"), warnings=["w"]),
        )
        self.assertEqual(payload["contract"], {"name": "event_doctor.import_summary", "version": "1.0.0"})
        self.assertEqual(payload["schema_version"], CONTRACT_VERSIONS["event_doctor.import_summary"])
        self.assertEqual(payload["counts"], {"total": 1})
        summary = payload["run_summary"]
        self.assertEqual(summary["tool_version"], __version__)
        self.assertEqual(summary["input_file"], "x.csv")
        self.assertIsNone(summary["output_file"])
        self.assertEqual(summary["warnings_count"], 1)
        self.assertTrue(summary["generated_at"].endswith("Z"))

    def test_unknown_contract_name(self):
        with self.assertRaises(KeyError):
            build_payload("event_doctor.nope", {}, {})


class SettingsTests(unittest.TestCase):
    def test_defaults_without_a_config_file(self):
        with tempfile.TemporaryDirectory() as tmpdir, mock.patch.dict(os.environ, clean_env(), clear=True):
            cwd = os.getcwd()
            os.chdir(tmpdir)
            try:
                settings = load_settings()
            finally:
                os.chdir(cwd)
        self.assertIsNone(settings.source)
        self.assertEqual(settings.generic_categories, frozenset({"Otro", "Reunión", "Cita"}))
        self.assertTrue(settings.noncanonical_is_generic)

    def test_json_file_then_env_overrides(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "event-doctor.json"
            path.write_text(
                json.dumps({
                    "store": {"path": "from-file.db"},
                    "suggest": {"model": "mistral", "timeout": 5},
                    "dedupe": {"generic_categories": ["Otro"], "noncanonical_is_generic": False},
                }),
                encoding="utf-8",
            )
            with mock.patch.dict(os.environ, clean_env(EVENT_DOCTOR_DB="from-env.db"), clear=True):
                settings = load_settings(path)
        self.assertEqual(settings.db_path, "from-env.db")
        self.assertEqual(settings.suggest_model, "mistral")
        self.assertEqual(settings.suggest_timeout, 5.0)
        policy = settings.dedupe_policy()
        self.assertEqual(policy.generic_categories, frozenset({"Otro"}))
        self.assertFalse(policy.is_generic("Llamada vieja"))

    def test_starter_config_loads(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "starter.json"
            path.write_text(json.dumps(STARTER_CONFIG), encoding="utf-8")
            with mock.patch.dict(os.environ, clean_env(), clear=True):
                settings = load_settings(path)
        self.assertEqual(settings.source, str(path))
        self.assertEqual(settings.generic_categories, frozenset({"Otro", "Reunión", "Cita"}))

    def test_yaml_and_bad_values_are_rejected(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            yaml_path = Path(tmpdir) / "event-doctor.yml"
            yaml_path.write_text("store: {}\n", encoding="utf-8")
            with self.assertRaisesRegex(ConfigError, "YAML"):
                load_settings(yaml_path)

            bad = Path(tmpdir) / "bad.json"
            bad.write_text(json.dumps({"dedupe": {"generic_categories": "Otro"}}), encoding="utf-8")
            with self.assertRaises(ConfigError):
                load_settings(bad)

            with self.assertRaisesRegex(ConfigError, "not found"):
                load_settings(Path(tmpdir) / "missing.json")


class ReviewWorkbookTests(unittest.TestCase):
    def test_ready_blocked_and_errors_sheets(self):
        headers, rows = parse_csv(
            "title,start,end,interventionType\n"
            "Visita,15/08/2024,,Visita Domiciliaria\n"
            ",fecha rara,,Otro\n"
            "Cierre,15/08/2024 10:00,15/08/2024 09:00,Otro\n"
        )
        mapping = FieldMapping.from_suggestion({header: header for header in headers}, headers)
        session = CorrectionSession(headers, rows, mapping)
        session.materialize()
        with tempfile.TemporaryDirectory() as tmpdir:
            path = write_review_workbook(session, Path(tmpdir) / "out" / "review.xlsx")
            wb = load_workbook(path)
            self.assertEqual(wb.sheetnames, ["Ready", "Blocked", "Errors"])
            self.assertEqual(wb["Ready"].max_row, 2)
            self.assertEqual(wb["Blocked"].max_row, 3)
            errors = list(wb["Errors"].iter_rows(min_row=2, values_only=True))
            wb.close()

        self.assertEqual(
            [(line, code, original or "") for line, _, code, original, _ in errors],
            [(3, "invalid-date", "fecha rara"), (3, "required", ""), (3, "required", "fecha rara"), (4, "end-before-start", "15/08/2024 09:00")],
        )


if __name__ == "__main__":
    unittest.main()
