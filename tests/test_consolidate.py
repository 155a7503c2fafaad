import unittest

from songsheet.consolidate import (
    choose_longer,
    clean_adjacent_duplicates,
    consolidate,
    identity_key,
)
from songsheet.models import SongRecord


def song(title, artist=None, composer=None, year=None, lyrics=None, idx=0, source="s.xlsx"):
    return SongRecord(
        id=f"{source}-{idx}",
        title=title,
        source=source,
        artist=artist,
        composer=composer,
        year=year,
        lyrics=lyrics,
    )


class ChooseLongerTests(unittest.TestCase):
    def test_longer_value_wins(self):
        self.assertEqual(choose_longer("Zé", "Zé Ramalho"), "Zé Ramalho")
        self.assertEqual(choose_longer("Zé Ramalho", "Zé"), "Zé Ramalho")

    def test_absent_counts_as_empty(self):
        self.assertEqual(choose_longer(None, "1990"), "1990")
        self.assertEqual(choose_longer("1990", None), "1990")
        self.assertEqual(choose_longer("", "José Silva"), "José Silva")
        self.assertIsNone(choose_longer(None, None))

    def test_ties_keep_first(self):
        self.assertEqual(choose_longer("abcd", "wxyz"), "abcd")


class ConsolidateTests(unittest.TestCase):
    def test_identity_key_is_trimmed_and_lowercased(self):
        self.assertEqual(identity_key(song("  Forró ", "A ")), "forró|a")
        self.assertEqual(identity_key(song("Forró")), "forró|")

    def test_forro_duplicates_merge_into_most_complete_record(self):
        records = [
            song("Forró", "A", composer="", year="1990", idx=1),
            song("forró", "a", composer="José Silva", year="", idx=2),
        ]
        result = consolidate(records)
        self.assertEqual(len(result.unique), 1)
        merged = result.unique[0]
        self.assertEqual(merged.title, "Forró")
        self.assertEqual(merged.artist, "A")
        self.assertEqual(merged.composer, "José Silva")
        self.assertEqual(merged.year, "1990")
        self.assertEqual(merged.id, "s.xlsx-1")
        self.assertEqual(result.duplicates_removed, 1)
        self.assertEqual(result.total_original, 2)
        self.assertEqual(list(result.duplicate_groups), ["forró|a"])

    def test_same_title_different_artist_is_not_merged(self):
        records = [song("Asa Branca", "Luiz Gonzaga"), song("Asa Branca", "Caetano Veloso")]
        result = consolidate(records)
        self.assertEqual(len(result.unique), 2)
        self.assertEqual(result.duplicates_removed, 0)
        self.assertEqual(result.duplicate_groups, {})

    def test_count_invariant_and_first_seen_order(self):
        records = [
            song("B", "x"),
            song("A", "y"),
            song("b", "X"),
            song("C", None),
            song("a", "Y"),
            song("c", ""),
        ]
        result = consolidate(records)
        self.assertLessEqual(len(result.unique), len(records))
        self.assertEqual(result.duplicates_removed, len(records) - len(result.unique))
        self.assertEqual([r.title for r in result.unique], ["B", "A", "C"])

    def test_merge_keeps_longest_of_every_field_across_group(self):
        records = [
            song("Asa Branca", "Luiz Gonzaga", composer="Humberto", year=None, lyrics=None),
            song("asa branca", "luiz gonzaga", composer="Humberto Teixeira", year="47"),
            song("ASA BRANCA", "LUIZ GONZAGA", composer="H.", year="1947", lyrics="Quando olhei a terra ardendo"),
        ]
        merged = consolidate(records).unique[0]
        self.assertEqual(merged.composer, "Humberto Teixeira")
        self.assertEqual(merged.year, "1947")
        self.assertEqual(merged.lyrics, "Quando olhei a terra ardendo")
        for record in records:
            for name in ("artist", "composer", "year"):
                self.assertGreaterEqual(len(getattr(merged, name) or ""), len(getattr(record, name) or ""))

    def test_empty_input(self):
        result = consolidate([])
        self.assertEqual(result.unique, [])
        self.assertEqual(result.duplicates_removed, 0)


class AdjacentDuplicateTests(unittest.TestCase):
    def test_metadata_row_followed_by_lyrics_row_is_merged(self):
        messages = []
        records = [
            song("Xote das Meninas", "Luiz Gonzaga", year="1953", idx=1),
            song("Xote das Meninas", "Luiz Gonzaga", year="1953", lyrics="Mandacaru quando fulora na seca", idx=2),
            song("Assum Preto", "Luiz Gonzaga", idx=3),
        ]
        cleaned = clean_adjacent_duplicates(records, log=messages.append)
        self.assertEqual([r.title for r in cleaned], ["Assum Preto", "Xote das Meninas"])
        self.assertEqual(cleaned[1].lyrics, "Mandacaru quando fulora na seca")
        self.assertEqual(len(messages), 1)
        self.assertIn("Xote das Meninas", messages[0])

    def test_accents_and_case_are_ignored_when_comparing(self):
        records = [song("Forró Pé de Serra", "Dominguinhos"), song("forro pe de serra", "DOMINGUINHOS", year="1980")]
        cleaned = clean_adjacent_duplicates(records, log=lambda message: None)
        self.assertEqual(len(cleaned), 1)
        self.assertEqual(cleaned[0].year, "1980")

    def test_three_adjacent_duplicates_merge_only_one_pair(self):
        records = [song("Baião", "A", idx=i) for i in range(3)]
        cleaned = clean_adjacent_duplicates(records, log=lambda message: None)
        self.assertEqual(len(cleaned), 2)
        self.assertEqual(len(consolidate(cleaned).unique), 1)

    def test_default_log_goes_to_module_logger(self):
        records = [song("Baião", "A"), song("Baião", "A", year="1946")]
        with self.assertLogs("songsheet.consolidate", level="INFO") as captured:
            clean_adjacent_duplicates(records)
        self.assertTrue(any("Baião" in line for line in captured.output))


if __name__ == "__main__":
    unittest.main()
