from __future__ import annotations

import sys
import tempfile
import unittest
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from event_doctor.errors import EmptyInputError
from event_doctor.loader import (
    TEMPLATE_HEADERS,
    decode_upload,
    load_bytes,
    load_file,
    parse_csv,
    split_line,
    template_csv,
)


class ParseCsvTests(unittest.TestCase):
    def test_quoted_comma_stays_in_one_cell(self):
        headers, rows = parse_csv('title,start,notes\n"Hola, mundo",2024-01-01,"dijo ""sí"""\n')
        self.assertEqual(headers, ["title", "start", "notes"])
        self.assertEqual(rows[0]["title"], "Hola, mundo")
        self.assertEqual(rows[0]["notes"], 'dijo "sí"')

    def test_cells_are_trimmed_and_short_rows_padded(self):
        headers, rows = parse_csv("title , start,end\r\n  Visita  ,2024-01-01\r\n")
        self.assertEqual(headers, ["title", "start", "end"])
        self.assertEqual(rows, [{"title": "Visita", "start": "2024-01-01", "end": ""}])

    def test_blank_lines_are_dropped(self):
        _, rows = parse_csv("title\n\nA\n   \nB\n\n")
        self.assertEqual([row["title"] for row in rows], ["A", "B"])

    def test_bom_and_duplicate_headers(self):
        headers, _ = parse_csv("\ufefftitle,title,\nA,B,C\n")
        self.assertEqual(headers, ["title", "title_2", "Column 3"])

    def test_header_only_file_is_empty_input(self):
        with self.assertRaises(EmptyInputError):
            parse_csv("title,start\n")

    def test_blank_text_is_empty_input(self):
        with self.assertRaisesRegex(EmptyInputError, "empty or malformed"):
            parse_csv("\n \n")

    def test_split_line_keeps_quotes_for_clean_cell(self):
        self.assertEqual(split_line('a,"b,c",d'), ["a", '"b,c"', "d"])


class DecodeUploadTests(unittest.TestCase):
    def test_utf8_with_bom_is_clean(self):
        text, info, warnings = decode_upload("\ufefftitle\nReunión\n".encode("utf-8"))
        self.assertEqual(text, "title\nReunión\n")
        self.assertTrue(info["is_utf8"])
        self.assertEqual(warnings, [])

    def test_non_utf8_bytes_decode_with_warning(self):
        raw = ("title,notes\n" + "Reunión de coordinación,Visita al domicilio de la señora\n" * 20).encode("cp1252")
        text, info, warnings = decode_upload(raw)
        self.assertIn("title,notes", text)
        self.assertFalse(info["is_utf8"])
        self.assertEqual(len(warnings), 1)
        self.assertIn("not valid UTF-8", warnings[0])


class LoadFileTests(unittest.TestCase):
    def test_load_file_returns_result_dict(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "export.csv"
            path.write_text("title,start\nA,2024-01-01\nB,2024-01-02\n", encoding="utf-8")
            result = load_file(path)
        self.assertEqual(result["file"], "export.csv")
        self.assertEqual(result["original_rows"], 2)
        self.assertEqual(result["original_columns"], 2)
        self.assertEqual(list(result["dataframe"]["title"]), ["A", "B"])

    def test_unsupported_extension_is_rejected(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "export.xlsx"
            path.write_bytes(b"not a csv")
            with self.assertRaisesRegex(ValueError, "Unsupported format"):
                load_file(path)

    def test_missing_file_raises(self):
        with self.assertRaises(FileNotFoundError):
            load_file(ROOT / "does-not-exist.csv")

    def test_template_parses_back_to_its_headers(self):
        result = load_bytes(template_csv().encode("utf-8"))
        self.assertEqual(result["headers"], TEMPLATE_HEADERS)
        row = result["rows"][0]
        self.assertEqual(row["title"], "Reunión de seguimiento")
        self.assertEqual(row["start"], "15 de agosto de 2024")
        self.assertEqual(row["end"], "")
        self.assertEqual(row["isRegistered"], "true")


if __name__ == "__main__":
    unittest.main()
