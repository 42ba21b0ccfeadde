"""Tests for splitting identified elements into new / existing / merge routes."""

from lorekeeper.models.lorebook import (
    IdentifiedElement,
    LorebookEntry,
    PendingEntry,
    PendingMerge,
    ScanState,
)
from lorekeeper.services.partitioner import merge_pair_key, partition_elements

ENTRIES = [
    LorebookEntry(id="e1", category="character", display_name="Kael", keys=["kael the bold"]),
    LorebookEntry(id="e2", category="character", display_name="Hooded Figure", keys=["hooded figure"]),
    LorebookEntry(id="e3", category="character", display_name="Old Hermit", keys=[]),
]


def _el(name, category="character", merges_with=None):
    return IdentifiedElement(name=name, category=category, merges_with=merges_with)


def _state():
    return ScanState(
        pending_entries=[PendingEntry(id="p1", display_name="Mira", keys=["the mentor"])],
        pending_merges=[PendingMerge(
            id="m1", new_name="Elena Voss", new_category="character",
            existing_display_name="Hooded Figure", proposed_display_name="Elena Voss",
        )],
        rejected_names=["Goblin King"],
        rejected_merge_names=["Dren->Kael"],
    )


def test_every_element_lands_in_exactly_one_route():
    elements = [
        _el("Mira"),
        _el("Goblin Kings"),
        _el("Dren", merges_with="Kael"),
        _el("Shade", merges_with="Hooded Figure"),
        _el("Kael"),
        _el("Thornwick", "location"),
        _el("Elena Voss"),
        _el("Brother Aldric", merges_with="old hermit"),
    ]
    result = partition_elements(elements, ENTRIES, _state())

    assert result.excluded_count == 3
    assert [e.name for e in result.new_elements] == ["Dren", "Shade", "Thornwick"]
    assert [(e.name, e.entry.id) for e in result.existing_elements] == [("Kael", "e1")]
    assert [(e.name, e.merge_target, e.entry.id) for e in result.merge_elements] == [
        ("Brother Aldric", "Old Hermit", "e3"),
    ]
    total = (
        result.excluded_count + len(result.new_elements)
        + len(result.existing_elements) + len(result.merge_elements)
    )
    assert total == len(elements)


def test_rerouted_merge_drops_merge_target():
    result = partition_elements([_el("Dren", merges_with="Kael")], ENTRIES, _state())
    assert result.new_elements[0].merges_with is None


def test_fuzzy_merge_target():
    result = partition_elements([_el("Elena Voss", merges_with="Hooded Figur")], ENTRIES, ScanState())
    assert result.merge_elements[0].merge_target == "Hooded Figure"


def test_unresolvable_merge_target_falls_through_to_name_lookup():
    result = partition_elements([_el("Kael", merges_with="Nobody")], ENTRIES, ScanState())
    assert [e.entry.id for e in result.existing_elements] == ["e1"]


def test_key_lookup():
    result = partition_elements([_el("Kael the Bold")], ENTRIES, ScanState())
    assert result.existing_elements[0].entry.id == "e1"


def test_empty_partition():
    result = partition_elements([_el("Mira")], ENTRIES, _state())
    assert result.is_empty()
    assert result.excluded_count == 1


def test_merge_pair_key_is_case_folded():
    assert merge_pair_key("Dren", "Kael") == "dren->kael"
