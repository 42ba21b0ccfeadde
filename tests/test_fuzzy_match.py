"""Tests for name similarity and best-match lookup."""

from lorekeeper.models.lorebook import LorebookEntry
from lorekeeper.utils.fuzzy_match import (
    find_best_match,
    fuzzy_match_in_set,
    similarity,
)


def _entry(eid, name, keys=()):
    return LorebookEntry(id=eid, display_name=name, keys=list(keys))


def test_edit_distance_bucket_edge():
    assert similarity("Brannoc", "Brannok") == 0.7
    assert similarity("Ysolde", "Isolda") == 0.7
    assert similarity("Ysolde", "Isalda") == 0.0


class TestSimilarity:
    def test_exact_ignores_case_and_whitespace(self):
        assert similarity("  Kael ", "kael") == 1.0

    def test_substring(self):
        assert similarity("Kael", "Kael Stormwind") == 0.8
        assert similarity("Kael Stormwind", "Kael") == 0.8

    def test_small_edit_distance(self):
        assert similarity("Alex", "Alec") == 0.7

    def test_long_names_skip_edit_distance(self):
        assert similarity("Bob", "Totally Different Name") == 0.0
        assert similarity("The Northern Reaches X", "The Northern Reaches Y") == 0.0

    def test_blank(self):
        assert similarity("", "Kael") == 0.0
        assert similarity(None, "Kael") == 0.0

    def test_symmetric(self):
        pairs = [("Mira", "Myra"), ("Kael", "Kael Stormwind"), ("Dren", "Thornwick")]
        for a, b in pairs:
            assert similarity(a, b) == similarity(b, a)


class TestFindBestMatch:
    def test_key_exact_beats_display_substring(self):
        entry = _entry("e1", "Kael Stormwind", ["kael"])
        match = find_best_match("Kael", [entry])
        assert match.entry is entry
        assert match.score == 1.0
        assert match.matched_on == "key"

    def test_earlier_entry_wins_ties(self):
        first = _entry("e1", "Kael Stormwind")
        second = _entry("e2", "Kael the Bold")
        match = find_best_match("Kael", [first, second])
        assert match.entry is first
        assert match.score == 0.8

    def test_below_threshold(self):
        assert find_best_match("Thornwick", [_entry("e1", "Kael")]) is None

    def test_custom_threshold(self):
        entry = _entry("e1", "Kael Stormwind")
        assert find_best_match("Kael", [entry], threshold=0.9) is None


def test_fuzzy_match_in_set():
    assert fuzzy_match_in_set("Goblin Kings", {"goblin king", "mira"})
    assert not fuzzy_match_in_set("Thornwick", {"goblin king", "mira"})
    assert not fuzzy_match_in_set("Thornwick", set())
