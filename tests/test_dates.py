from __future__ import annotations

import sys
import unittest
from datetime import datetime
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from event_doctor.dates import format_instant, normalize_date, parse_bool


class NormalizeDateTests(unittest.TestCase):
    def test_iso_datetime_has_time(self):
        parsed = normalize_date("2024-08-15T10:30:00")
        self.assertEqual(parsed.instant, datetime(2024, 8, 15, 10, 30))
        self.assertTrue(parsed.time_component_found)

    def test_iso_date_has_no_time(self):
        parsed = normalize_date("2024-08-15")
        self.assertEqual(parsed.instant, datetime(2024, 8, 15))
        self.assertFalse(parsed.time_component_found)

    def test_utc_suffix_is_converted_to_naive_utc(self):
        parsed = normalize_date("2024-08-15T10:30:00+02:00")
        self.assertEqual(parsed.instant, datetime(2024, 8, 15, 8, 30))
        self.assertIsNone(parsed.instant.tzinfo)
        self.assertEqual(normalize_date("2024-08-15T10:30:00Z").instant, datetime(2024, 8, 15, 10, 30))

    def test_day_first_numeric(self):
        parsed = normalize_date("15/08/2024")
        self.assertEqual(parsed.instant, datetime(2024, 8, 15))
        self.assertFalse(parsed.time_component_found)

    def test_day_first_with_time_and_dashes(self):
        parsed = normalize_date("05-03-2024 9:05")
        self.assertEqual(parsed.instant, datetime(2024, 3, 5, 9, 5))
        self.assertTrue(parsed.time_component_found)

    def test_day_first_ignores_trailing_text(self):
        parsed = normalize_date("15/08/2024 10:30 h")
        self.assertEqual(parsed.instant, datetime(2024, 8, 15, 10, 30))
        self.assertTrue(parsed.time_component_found)
        self.assertEqual(normalize_date("15/08/2024 (aprox.)").instant, datetime(2024, 8, 15))
        self.assertIsNone(normalize_date("15/08/202"))

    def test_two_digit_year(self):
        self.assertEqual(normalize_date("01/02/24").instant, datetime(2024, 2, 1))

    def test_day_first_is_never_read_month_first(self):
        self.assertEqual(normalize_date("03/04/2024").instant, datetime(2024, 4, 3))
        self.assertIsNone(normalize_date("08/15/2024"))

    def test_impossible_calendar_date_is_rejected(self):
        self.assertIsNone(normalize_date("31/02/2024"))

    def test_long_spanish_date(self):
        parsed = normalize_date("15 de agosto de 2024")
        self.assertEqual(parsed.instant, datetime(2024, 8, 15))
        self.assertFalse(parsed.time_component_found)

    def test_long_spanish_is_case_insensitive_and_found_inside_text(self):
        parsed = normalize_date("Martes, 19 De Marzo de 2025")
        self.assertEqual(parsed.instant, datetime(2025, 3, 19))

    def test_unknown_month_and_garbage(self):
        self.assertIsNone(normalize_date("19 de brumario de 2025"))
        self.assertIsNone(normalize_date("mañana"))
        self.assertIsNone(normalize_date(""))
        self.assertIsNone(normalize_date(None))

    def test_formatted_instant_parses_back_to_same_value(self):
        for value in ["15/08/2024 10:30", "15 de agosto de 2024", "2024-01-31T23:59:59"]:
            instant = normalize_date(value).instant
            self.assertEqual(normalize_date(format_instant(instant)).instant, instant)


class ParseBoolTests(unittest.TestCase):
    def test_truthy_values(self):
        for value in ["true", "TRUE", " si ", "1", "yes"]:
            self.assertTrue(parse_bool(value), value)

    def test_everything_else_is_false(self):
        for value in ["false", "no", "0", "sí", "", None]:
            self.assertFalse(parse_bool(value), value)


if __name__ == "__main__":
    unittest.main()
