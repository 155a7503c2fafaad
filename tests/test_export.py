import json
import tempfile
import unittest
from dataclasses import replace
from pathlib import Path

from openpyxl import load_workbook

from songsheet.enrichment import failed_record, normalize_enriched
from songsheet.export import export_records, records_to_frame
from songsheet.models import SongRecord


def sample_records():
    asa = normalize_enriched(
        SongRecord(id="s-1", title="Asa Branca", source="s.xlsx", artist="Luiz Gonzaga"),
        {"artist": "Luiz Gonzaga", "composer": "Humberto Teixeira", "year": "1947"},
    )
    xote = failed_record(SongRecord(id="s-2", title="Xote das Meninas", source="s.xlsx"))
    return [replace(asa, approval_status="approved"), xote]


class ExportTests(unittest.TestCase):
    def test_frame_has_default_columns_in_order(self):
        frame = records_to_frame(sample_records())
        self.assertEqual(
            list(frame.columns),
            ["Original Title", "Found Artist", "Found Composer", "Release Year", "Search Status"],
        )
        self.assertEqual(frame.iloc[0]["Found Composer"], "Humberto Teixeira")
        self.assertEqual(frame.iloc[1]["Search Status"], "failed")

    def test_approved_only_filter(self):
        frame = records_to_frame(sample_records(), approved_only=True)
        self.assertEqual(list(frame["Original Title"]), ["Asa Branca"])

    def test_unknown_column_is_rejected(self):
        with self.assertRaisesRegex(ValueError, "Unknown export columns"):
            records_to_frame(sample_records(), columns=["title", "mood"])

    def test_xlsx_export_is_styled(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "out" / "songs.xlsx"
            info = export_records(sample_records(), path, columns=["title", "found_artist", "notes"])
            self.assertEqual(info["rows"], 2)
            self.assertEqual(info["format"], "xlsx")

            wb = load_workbook(path)
            ws = wb.active
            self.assertEqual(ws.title, "Songs")
            self.assertEqual([c.value for c in ws[1]], ["Original Title", "Found Artist", "Notes"])
            self.assertEqual(ws["A2"].value, "Asa Branca")
            self.assertEqual(ws.freeze_panes, "A2")
            self.assertTrue(ws["A1"].font.bold)
            self.assertTrue(ws["C3"].alignment.wrap_text)

    def test_csv_export_uses_semicolons_and_bom(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "songs.csv"
            export_records(sample_records(), path)
            raw = path.read_bytes()
            self.assertTrue(raw.startswith(b"\xef\xbb\xbf"))
            lines = raw.decode("utf-8-sig").splitlines()
            self.assertEqual(lines[0], "Original Title;Found Artist;Found Composer;Release Year;Search Status")
            self.assertEqual(lines[1], "Asa Branca;Luiz Gonzaga;Humberto Teixeira;1947;success")

    def test_json_export_and_format_override(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "songs.txt"
            export_records(sample_records(), path, fmt="json", approved_only=True)
            payload = json.loads(path.read_text(encoding="utf-8"))
            self.assertEqual(payload, [
                {
                    "Original Title": "Asa Branca",
                    "Found Artist": "Luiz Gonzaga",
                    "Found Composer": "Humberto Teixeira",
                    "Release Year": "1947",
                    "Search Status": "success",
                }
            ])

    def test_unsupported_format(self):
        with self.assertRaisesRegex(ValueError, "Unsupported export format"):
            export_records(sample_records(), "songs.pdf")


if __name__ == "__main__":
    unittest.main()
