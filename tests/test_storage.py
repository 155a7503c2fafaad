import json
import tempfile
import unittest
from pathlib import Path

from songsheet.enrichment import failed_record
from songsheet.models import ProcessingProgress, SongRecord
from songsheet.storage import ResultStore


def record(idx):
    return failed_record(SongRecord(id=f"s-{idx}", title=f"Song {idx}", source="s.xlsx", artist="Zé"))


class ResultStoreTests(unittest.TestCase):
    def test_results_round_trip_preserves_unicode(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            store = ResultStore(Path(tmpdir) / "session")
            store.save_results([record(1), record(2)])
            self.assertIn("Zé", store.results_path.read_text(encoding="utf-8"))
            loaded = store.load_results()
            self.assertEqual(loaded, [record(1), record(2)])

    def test_metadata_contains_status_progress_and_timestamp(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            store = ResultStore(tmpdir)
            store.save_metadata("enriching", ProcessingProgress(current=10, total=40))
            meta = store.load_metadata()
            self.assertEqual(meta["status"], "enriching")
            self.assertEqual(meta["progress"]["current"], 10)
            self.assertEqual(meta["progress"]["percentage"], 25.0)
            self.assertTrue(meta["timestamp"].endswith("Z"))

    def test_missing_files_load_empty(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            store = ResultStore(Path(tmpdir) / "nothing-here")
            self.assertEqual(store.load_results(), [])
            self.assertIsNone(store.load_metadata())

    def test_corrupt_files_load_empty_with_warning(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            store = ResultStore(tmpdir)
            store.results_path.write_text("{not json", encoding="utf-8")
            with self.assertLogs("songsheet.storage", level="WARNING"):
                self.assertEqual(store.load_results(), [])

    def test_unknown_keys_in_stored_records_are_ignored(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            store = ResultStore(tmpdir)
            payload = [dict(record(1).to_dict(), enriched_by_web=True)]
            store.results_path.write_text(json.dumps(payload), encoding="utf-8")
            self.assertEqual(store.load_results()[0].id, "s-1")

    def test_clear_all(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            store = ResultStore(tmpdir)
            store.save_results([record(1)])
            store.save_metadata("completed")
            store.clear_all()
            self.assertFalse(store.results_path.exists())
            self.assertFalse(store.metadata_path.exists())
            store.clear_all()


if __name__ == "__main__":
    unittest.main()
