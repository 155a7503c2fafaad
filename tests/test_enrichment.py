import threading
import unittest
from datetime import date
from unittest import mock

import requests

from songsheet.enrichment import (
    EnrichmentError,
    HttpEnricher,
    failed_record,
    normalize_enriched,
    validate_year,
)
from songsheet.models import SongRecord

TODAY = date(2025, 6, 1)


def song(idx, title="Asa Branca", artist="Luiz Gonzaga"):
    return SongRecord(id=f"s-{idx}", title=title, source="s.xlsx", artist=artist)


class ValidateYearTests(unittest.TestCase):
    def test_plain_years(self):
        self.assertEqual(validate_year("1947", today=TODAY), "1947")
        self.assertEqual(validate_year(1990, today=TODAY), "1990")
        self.assertEqual(validate_year(1990.0, today=TODAY), "1990")
        self.assertEqual(validate_year("2026", today=TODAY), "2026")

    def test_out_of_range_years_are_rejected(self):
        self.assertEqual(validate_year("1899", today=TODAY), "0000")
        self.assertEqual(validate_year("2027", today=TODAY), "0000")

    def test_year_is_extracted_from_text(self):
        self.assertEqual(validate_year("Released circa 1973 (LP)", today=TODAY), "1973")
        self.assertEqual(validate_year("0001 / 1985", today=TODAY), "1985")

    def test_missing_or_garbage(self):
        for value in (None, "", "unknown", "19", "n/a"):
            with self.subTest(value=value):
                self.assertEqual(validate_year(value, today=TODAY), "0000")


class NormalizeEnrichedTests(unittest.TestCase):
    def test_complete_answer_is_success(self):
        record = normalize_enriched(
            song(1),
            {"artist": "Luiz Gonzaga", "composer": "Humberto Teixeira", "year": "1947"},
            today=TODAY,
        )
        self.assertEqual(record.found_artist, "Luiz Gonzaga")
        self.assertEqual(record.found_composer, "Humberto Teixeira")
        self.assertEqual(record.release_year, "1947")
        self.assertEqual(record.search_status, "success")
        self.assertEqual(record.approval_status, "pending")
        self.assertEqual(record.title, "Asa Branca")
        self.assertEqual(record.id, "s-1")

    def test_camel_case_keys_are_accepted(self):
        record = normalize_enriched(
            song(1),
            {"foundArtist": "Luiz Gonzaga", "foundComposer": "Zé Dantas", "releaseYear": 1950},
            today=TODAY,
        )
        self.assertEqual(record.found_composer, "Zé Dantas")
        self.assertEqual(record.release_year, "1950")

    def test_missing_year_downgrades_to_partial_with_note(self):
        record = normalize_enriched(song(1), {"artist": "Luiz Gonzaga", "year": "sem data"}, today=TODAY)
        self.assertEqual(record.release_year, "0000")
        self.assertEqual(record.search_status, "partial")
        self.assertIn("Year not found or invalid", record.notes)

    def test_unknown_artist_downgrades_to_partial(self):
        record = normalize_enriched(song(1), {"artist": "Desconhecido", "year": "1947"}, today=TODAY)
        self.assertEqual(record.found_artist, "Unidentified")
        self.assertEqual(record.search_status, "partial")

    def test_nothing_found(self):
        record = normalize_enriched(song(1), {"artist": "N/A", "notes": "no match"}, today=TODAY)
        self.assertEqual(record.search_status, "not_found")
        self.assertEqual(record.found_composer, "Unidentified")
        self.assertTrue(record.notes.startswith("no match"))

    def test_failed_record(self):
        record = failed_record(song(3), "boom")
        self.assertEqual(record.search_status, "failed")
        self.assertEqual(record.found_artist, "Unidentified")
        self.assertEqual(record.release_year, "0000")
        self.assertEqual(record.notes, "boom")
        self.assertEqual(record.approval_status, "pending")
        self.assertEqual(record.artist, "Luiz Gonzaga")

    def test_failed_record_from_enriched_input(self):
        enriched = normalize_enriched(song(1), {"artist": "X", "year": "1990"}, today=TODAY)
        self.assertEqual(failed_record(enriched).search_status, "failed")


class HttpEnricherTests(unittest.TestCase):
    def make_session(self, payload=None, status_error=None, json_error=None):
        session = mock.Mock(spec=requests.Session)
        session.headers = {}
        response = mock.Mock()
        if status_error is not None:
            response.raise_for_status.side_effect = status_error
        if json_error is not None:
            response.json.side_effect = json_error
        else:
            response.json.return_value = payload
        session.post.return_value = response
        return session

    def test_posts_songs_and_matches_results_by_id(self):
        session = self.make_session(
            {
                "results": [
                    {"id": "s-2", "artist": "Elba Ramalho", "year": "1985"},
                    {"id": "s-1", "artist": "Luiz Gonzaga", "year": "1947"},
                ]
            }
        )
        enricher = HttpEnricher("https://enrich.test/api", api_key="secret", session=session, timeout=5)
        batch = [song(1), song(2, "Banho de Cheiro", "Elba Ramalho")]
        results = enricher(batch)

        self.assertEqual([r.id for r in results], ["s-1", "s-2"])
        self.assertEqual(results[1].release_year, "1985")
        session.post.assert_called_once()
        args, kwargs = session.post.call_args
        self.assertEqual(args[0], "https://enrich.test/api")
        self.assertEqual(kwargs["timeout"], 5)
        self.assertEqual(
            kwargs["json"],
            {
                "songs": [
                    {"id": "s-1", "title": "Asa Branca", "artist": "Luiz Gonzaga"},
                    {"id": "s-2", "title": "Banho de Cheiro", "artist": "Elba Ramalho"},
                ]
            },
        )
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer secret")
        self.assertEqual(kwargs["headers"]["Accept"], "application/json")

    def test_plain_list_response_is_accepted(self):
        session = self.make_session([{"id": "s-1", "artist": "Luiz Gonzaga", "year": "1947"}])
        results = HttpEnricher("https://enrich.test", session=session)([song(1)])
        self.assertEqual(results[0].search_status, "success")

    def test_http_error_raises_enrichment_error(self):
        session = self.make_session(status_error=requests.exceptions.HTTPError("503 Server Error"))
        with self.assertRaisesRegex(EnrichmentError, "503"):
            HttpEnricher("https://enrich.test", session=session)([song(1)])

    def test_invalid_json_raises_enrichment_error(self):
        session = self.make_session(json_error=ValueError("Expecting value"))
        with self.assertRaisesRegex(EnrichmentError, "not valid JSON"):
            HttpEnricher("https://enrich.test", session=session)([song(1)])

    def test_missing_song_in_response_raises(self):
        session = self.make_session({"results": [{"id": "s-1", "artist": "A", "year": "1990"}]})
        with self.assertRaisesRegex(EnrichmentError, "missing 1 of 2"):
            HttpEnricher("https://enrich.test", session=session)([song(1), song(2)])

    def test_unexpected_body_raises(self):
        session = self.make_session({"error": "quota"})
        with self.assertRaisesRegex(EnrichmentError, "result list"):
            HttpEnricher("https://enrich.test", session=session)([song(1)])

    def test_each_thread_gets_its_own_session(self):
        enricher = HttpEnricher("https://enrich.test")
        seen = []

        def grab():
            seen.append((enricher.session, enricher.session))

        with mock.patch.object(requests, "Session", side_effect=lambda: mock.Mock()):
            workers = [threading.Thread(target=grab) for _ in range(2)]
            for worker in workers:
                worker.start()
            for worker in workers:
                worker.join()

        (first, again), (second, _) = seen
        self.assertIs(first, again)
        self.assertIsNot(first, second)
        self.assertNotIn("Authorization", enricher.headers)

    def test_empty_batch_skips_request(self):
        session = self.make_session([])
        self.assertEqual(HttpEnricher("https://enrich.test", session=session)([]), [])
        session.post.assert_not_called()


if __name__ == "__main__":
    unittest.main()
