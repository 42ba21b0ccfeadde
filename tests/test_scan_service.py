"""End-to-end tests for the multi-pass lore scanner with scripted oracles."""

import asyncio
import json

import pytest

from lorekeeper.infra.llm_client import LLMError
from lorekeeper.models.lorebook import LorebookEntry, PendingEntry, ScanState
from lorekeeper.models.settings import DEFAULT_SETTINGS, LoreSettings
from lorekeeper.services.scan_service import INSUFFICIENT_CONTENT, LoreScanner, merge_keys
from lorekeeper.utils.character_template import extract_field
from lorekeeper.utils.entry_classifier import is_template_formatted

STORY = (
    "Rain hammered the docks of Port Veil. A hooded figure slipped between the crates, "
    "watching the harbor guards change shifts. Later that night she pulled back her hood "
    "and introduced herself to Kael as Elena Voss, a smuggler with a debt to settle."
)

HOODED_DRAFT = json.dumps({
    "displayName": "Hooded Figure",
    "keys": ["hooded figure", "the stranger", "cloaked figure"],
    "text": (
        "Name: Unknown\n"
        "Age: Unknown\n"
        "Gender: Female\n"
        "Physical Appearance: Always hooded, face hidden.\n"
        "Description: A watchful stranger who lurks on the docks."
    ),
    "confidence": 2,
})

ELENA = (
    "Name: Elena Voss\n"
    "Age: 27\n"
    "Gender: female\n"
    "Relationships:\n"
    "- Kael: rival turned ally\n"
    "- Mira: mentor\n"
    "\n"
    "Family:\n"
    "- Tomas Voss: brother\n"
    "Background: Raised on the docks."
)


def _scanner(oracle, secondary=None):
    return LoreScanner(oracle, secondary, inter_call_delay=0)


@pytest.mark.asyncio
async def test_new_character_is_drafted(make_oracle):
    oracle = make_oracle(
        identify='{"elements":[{"name":"Hooded Figure","category":"character"}]}',
        draft=HOODED_DRAFT,
    )
    result = await _scanner(oracle).scan(STORY, DEFAULT_SETTINGS, [], ScanState())

    assert result.error is None
    assert result.summary.generated == 1
    [entry] = result.state.pending_entries
    assert entry.display_name == "Hooded Figure"
    assert entry.confidence == 2
    assert 1 <= len(entry.keys) <= 6
    assert is_template_formatted(entry.text)


@pytest.mark.asyncio
async def test_identity_reveal_becomes_merge(make_oracle):
    hooded = LorebookEntry(
        id="e1", category="character", display_name="Hooded Figure", keys=["hooded figure"],
        text="A mysterious hooded figure who watches the docks at night. She wears a dark cloak.",
    )
    oracle = make_oracle(
        identify=json.dumps({"elements": [
            {"name": "Elena Voss", "category": "character", "mergesWith": "Hooded Figure"},
        ]}),
        update=json.dumps({"updatedText": "Elena Voss, once known only as the hooded figure."}),
    )
    result = await _scanner(oracle).scan(STORY, DEFAULT_SETTINGS, [hooded], ScanState())

    assert result.summary.merges_found == 1
    [merge] = result.state.pending_merges
    assert merge.existing_display_name == "Hooded Figure"
    assert merge.proposed_display_name == "Elena Voss"
    assert merge.proposed_text == "Elena Voss, once known only as the hooded figure."
    assert merge.existing_text == hooded.text
    assert {"elena voss", "hooded figure"} <= {k.lower() for k in merge.proposed_keys}
    assert result.state.pending_entries == []


@pytest.mark.asyncio
async def test_merge_without_update_keeps_existing_text(make_oracle):
    hooded = LorebookEntry(id="e1", category="character", display_name="Hooded Figure",
                           text="A figure in a hood.")
    oracle = make_oracle(
        identify=json.dumps({"elements": [
            {"name": "Elena Voss", "category": "character", "mergesWith": "Hooded Figure"},
        ]}),
        update='{"noUpdate": true}',
    )
    result = await _scanner(oracle).scan(STORY, DEFAULT_SETTINGS, [hooded], ScanState())
    assert result.state.pending_merges[0].proposed_text == "A figure in a hood."


@pytest.mark.asyncio
async def test_input_state_is_never_mutated(make_oracle):
    state = ScanState(rejected_names=["Goblin King"], chars_since_last_scan=900)
    before = state.model_dump()
    oracle = make_oracle(
        identify='{"elements":[{"name":"Hooded Figure","category":"character"}]}',
        draft=HOODED_DRAFT,
    )
    result = await _scanner(oracle).scan(STORY, DEFAULT_SETTINGS, [], state)

    assert state.model_dump() == before
    assert result.state is not state
    assert result.state.chars_since_last_scan == 0
    assert result.state.rejected_names == ["Goblin King"]


@pytest.mark.asyncio
async def test_short_story_is_rejected_without_calls(make_oracle):
    oracle = make_oracle()
    state = ScanState(chars_since_last_scan=40)
    result = await _scanner(oracle).scan("Too short.", DEFAULT_SETTINGS, [], state)

    assert result.error == INSUFFICIENT_CONTENT
    assert oracle.calls == []
    assert result.state == state
    assert result.state is not state


@pytest.mark.asyncio
async def test_nothing_identified_is_no_results(make_oracle):
    oracle = make_oracle(identify='{"elements": []}')
    result = await _scanner(oracle).scan(STORY, DEFAULT_SETTINGS, [], ScanState())
    assert result.no_results
    assert result.summary is None


@pytest.mark.asyncio
async def test_all_excluded_is_no_results(make_oracle):
    state = ScanState(pending_entries=[PendingEntry(id="p1", display_name="Hooded Figure")])
    oracle = make_oracle(identify='{"elements":[{"name":"Hooded Figure","category":"character"}]}')
    result = await _scanner(oracle).scan(STORY, DEFAULT_SETTINGS, [], state)
    assert result.no_results
    assert oracle.calls_to("draft") == []


@pytest.mark.asyncio
async def test_failed_draft_only_drops_that_element(make_oracle):
    oracle = make_oracle(
        identify=json.dumps({"elements": [
            {"name": "Kael", "category": "character"},
            {"name": "Port Veil", "category": "location"},
        ]}),
        draft=[LLMError("boom"), json.dumps({"displayName": "Port Veil", "text": "A rainy harbor town."})],
    )
    result = await _scanner(oracle).scan(STORY, DEFAULT_SETTINGS, [], ScanState())
    assert result.summary.generated == 1
    assert [e.display_name for e in result.state.pending_entries] == ["Port Veil"]


@pytest.mark.asyncio
async def test_failing_secondary_falls_back_to_primary(make_oracle):
    primary = make_oracle(
        identify=json.dumps({"elements": [
            {"name": f"Place {i}", "category": "location"} for i in range(4)
        ]}),
        draft=json.dumps({"displayName": "Place", "text": "A quiet place by the sea."}),
    )
    secondary = make_oracle(draft=LLMError("secondary down"))
    result = await _scanner(primary, secondary).scan(STORY, DEFAULT_SETTINGS, [], ScanState())

    assert result.summary.generated == 4
    assert len(secondary.calls) == 2
    assert len(primary.calls_to("draft")) == 4


@pytest.mark.asyncio
async def test_hybrid_disabled_ignores_secondary(make_oracle):
    primary = make_oracle(
        identify='{"elements":[{"name":"A","category":"location"},{"name":"B","category":"location"}]}',
        draft=json.dumps({"displayName": "Place", "text": "A quiet place by the sea."}),
    )
    secondary = make_oracle(draft=json.dumps({"displayName": "X", "text": "From the secondary."}))
    settings = LoreSettings(hybrid_enabled=False)
    result = await _scanner(primary, secondary).scan(STORY, settings, [], ScanState())
    assert result.summary.generated == 2
    assert secondary.calls == []


@pytest.mark.asyncio
async def test_existing_entry_update(make_oracle):
    kael = LorebookEntry(id="e1", category="character", display_name="Kael", keys=["kael"],
                         text="A ship captain.")
    oracle = make_oracle(
        identify='{"elements":[{"name":"Kael","category":"character"}]}',
        update='{"updatedText": "A ship captain who owes Elena Voss a favor."}',
    )
    result = await _scanner(oracle).scan(STORY, DEFAULT_SETTINGS, [kael], ScanState())
    [update] = result.state.pending_updates
    assert update.display_name == "Kael"
    assert update.original_text == "A ship captain."
    assert not (update.is_relationship_update or update.is_reformat or update.is_name_update)


@pytest.mark.asyncio
async def test_updates_disabled(make_oracle):
    kael = LorebookEntry(id="e1", category="character", display_name="Kael", text="A ship captain.")
    oracle = make_oracle(
        identify='{"elements":[{"name":"Kael","category":"character"}]}',
        update='{"updatedText": "changed"}',
    )
    settings = LoreSettings(auto_detect_updates=False)
    result = await _scanner(oracle).scan(STORY, settings, [kael], ScanState())
    assert result.state.pending_updates == []
    assert oracle.calls_to("update") == []


@pytest.mark.asyncio
async def test_unformatted_character_is_reformatted(make_oracle):
    mira = LorebookEntry(
        id="e2", category="character", display_name="Mira",
        text="Mira is an old smuggler. She is short, with grey hair and a sharp demeanor.",
    )
    kael = LorebookEntry(id="e1", category="character", display_name="Kael", text="A ship captain.")
    oracle = make_oracle(
        identify='{"elements":[{"name":"Kael","category":"character"}]}',
        update='{"noUpdate": true}',
        reformat="Name: Mira\nAge: 60\nGender: female\nDescription: An old smuggler.",
    )
    result = await _scanner(oracle).scan(STORY, DEFAULT_SETTINGS, [kael, mira], ScanState())
    assert result.summary.reformats_found == 1
    [update] = [u for u in result.state.pending_updates if u.is_reformat]
    assert update.display_name == "Mira"


@pytest.mark.asyncio
async def test_dismissed_reformat_is_skipped(make_oracle):
    mira = LorebookEntry(
        id="e2", category="character", display_name="Mira",
        text="Mira is an old smuggler. She is short, with grey hair and a sharp demeanor.",
    )
    oracle = make_oracle(
        identify='{"elements":[{"name":"Port Veil","category":"location"}]}',
        draft=json.dumps({"displayName": "Port Veil", "text": "A rainy harbor town."}),
        reformat="Name: Mira\nAge: 60\nGender: female",
    )
    state = ScanState(dismissed_reformat_names=["mira"])
    result = await _scanner(oracle).scan(STORY, DEFAULT_SETTINGS, [mira], state)
    assert result.summary.reformats_found == 0
    assert oracle.calls_to("reformat") == []


@pytest.mark.asyncio
async def test_family_name_proposal(make_oracle):
    alex = LorebookEntry(id="e1", category="character", display_name="Alex Copeland",
                         text="Name: Alex Copeland\nAge: 40\nGender: male\nFamily:\n- Lily: daughter")
    lily = LorebookEntry(id="e2", category="character", display_name="Lily",
                         text="Name: Lily\nAge: 8\nGender: female\nFamily:\n- Alex Copeland: father")
    oracle = make_oracle(
        identify='{"elements":[{"name":"Lily","category":"character"}]}',
        update='{"noUpdate": true}',
        relationships='{"noUpdate": true}',
        family=json.dumps({"proposals": [
            {"currentName": "Lily", "proposedName": "Lily Copeland", "reason": "daughter of Alex"},
            {"currentName": "Alex Copeland", "proposedName": "Alex", "reason": "shorter"},
        ]}),
    )
    result = await _scanner(oracle).scan(STORY, DEFAULT_SETTINGS, [alex, lily], ScanState())

    assert result.summary.name_proposals == 1
    [update] = [u for u in result.state.pending_updates if u.is_name_update]
    assert update.display_name == "Lily"
    assert update.proposed_display_name == "Lily Copeland"
    assert update.name_reason == "daughter of Alex"
    assert update.updated_text.startswith("Name: Lily Copeland\nAge: 8")


def _formatted(eid, name):
    return LorebookEntry(
        id=eid, category="character", display_name=name,
        text=f"Name: {name}\nAge: 30\nGender: male\nBackground: Sails out of the southern ports.",
    )


def _unformatted(eid, name):
    return LorebookEntry(
        id=eid, category="character", display_name=name,
        text=f"{name} is an old smuggler. She is short, with grey hair and a sharp demeanor.",
    )


class TestCaps:
    @pytest.mark.asyncio
    async def test_merges_share_the_update_budget(self, make_oracle):
        existing = [
            LorebookEntry(id=f"e{i}", category="location", display_name=name, text="A quiet place.")
            for i, name in enumerate(["Hooded Figure", "Masked Rider", "Brannoc", "Ysolde", "Quillan"])
        ]
        oracle = make_oracle(
            identify=json.dumps({"elements": [
                {"name": "Elena Voss", "category": "character", "mergesWith": "Hooded Figure"},
                {"name": "Oren Thale", "category": "character", "mergesWith": "Masked Rider"},
                {"name": "Brannoc", "category": "location"},
                {"name": "Ysolde", "category": "location"},
                {"name": "Quillan", "category": "location"},
            ]}),
            update='{"noUpdate": true}',
        )
        result = await _scanner(oracle).scan(STORY, DEFAULT_SETTINGS, existing, ScanState())

        assert result.summary.merges_found == 2
        assert result.summary.updates_found == 0
        # two merges plus the single remaining update slot
        assert len(oracle.calls_to("update")) == 3
        checked = [c["messages"][1]["content"] for c in oracle.calls_to("update")[2:]]
        assert "Brannoc" in checked[0]

    @pytest.mark.asyncio
    async def test_relationship_pass_checks_at_most_three(self, make_oracle):
        entries = [_formatted(f"e{i}", name) for i, name in enumerate(["Kael", "Brannoc", "Ysolde", "Quillan"])]
        oracle = make_oracle(
            identify='{"elements":[{"name":"Port Veil","category":"location"}]}',
            draft=json.dumps({"displayName": "Port Veil", "text": "A rainy harbor town."}),
            relationships='{"noUpdate": true}',
        )
        result = await _scanner(oracle).scan(STORY, DEFAULT_SETTINGS, entries, ScanState())
        assert len(oracle.calls_to("relationships")) == 3
        assert result.summary.relationship_updates_found == 0

    @pytest.mark.asyncio
    async def test_reformat_pass_checks_at_most_three(self, make_oracle):
        entries = [_unformatted(f"e{i}", name) for i, name in enumerate(["Mira", "Brannoc", "Ysolde", "Quillan"])]
        oracle = make_oracle(
            identify='{"elements":[{"name":"Port Veil","category":"location"}]}',
            draft=json.dumps({"displayName": "Port Veil", "text": "A rainy harbor town."}),
        )
        result = await _scanner(oracle).scan(STORY, DEFAULT_SETTINGS, entries, ScanState())
        assert len(oracle.calls_to("reformat")) == 3
        assert result.summary.reformats_found == 0


class TestRelationshipsOnly:
    @pytest.mark.asyncio
    async def test_splices_new_relationship(self, make_oracle):
        elena = LorebookEntry(id="e1", category="character", display_name="Elena Voss", text=ELENA)
        oracle = make_oracle(relationships=json.dumps({
            "relationships": "- Kael: rival turned ally\n- Mira: mentor\n- Dren: smuggling partner",
        }))
        result = await _scanner(oracle).scan(
            STORY, DEFAULT_SETTINGS, [elena], ScanState(), relationships_only=True,
        )

        assert oracle.calls_to("identify") == []
        assert result.summary.relationship_updates_found == 1
        assert not result.no_results
        [update] = result.state.pending_updates
        assert update.is_relationship_update
        assert "- Dren: smuggling partner" in extract_field(update.updated_text, "Relationships")
        assert extract_field(update.updated_text, "Family") == "- Tomas Voss: brother"

    @pytest.mark.asyncio
    async def test_unchanged_splice_is_not_proposed(self, make_oracle):
        elena = LorebookEntry(id="e1", category="character", display_name="Elena Voss", text=ELENA)
        oracle = make_oracle(relationships=json.dumps({"family": "- Tomas Voss: brother"}))
        result = await _scanner(oracle).scan(
            STORY, DEFAULT_SETTINGS, [elena], ScanState(), relationships_only=True,
        )
        assert result.no_results
        assert result.state.pending_updates == []

    @pytest.mark.asyncio
    async def test_same_line_family_echo_is_not_proposed(self, make_oracle):
        text = "Name: Ana\nAge: 40\nGender: female\nFamily: Tomas (brother)\nBackground: Runs the ferry."
        ana = LorebookEntry(id="e1", category="character", display_name="Ana", text=text)
        oracle = make_oracle(relationships=json.dumps({"family": "Tomas (brother)"}))
        result = await _scanner(oracle).scan(
            STORY, DEFAULT_SETTINGS, [ana], ScanState(), relationships_only=True,
        )
        assert result.no_results
        assert result.state.pending_updates == []

    @pytest.mark.asyncio
    async def test_no_formatted_entries(self, make_oracle):
        plain = LorebookEntry(id="e1", display_name="Port Veil", text="A rainy harbor town on the coast.")
        oracle = make_oracle()
        result = await _scanner(oracle).scan(
            STORY, DEFAULT_SETTINGS, [plain], ScanState(), relationships_only=True,
        )
        assert result.no_results
        assert oracle.calls == []


class TestProgress:
    @pytest.mark.asyncio
    async def test_phases_reported_in_order(self, make_oracle):
        phases = []
        oracle = make_oracle(
            identify='{"elements":[{"name":"Hooded Figure","category":"character"}]}',
            draft=HOODED_DRAFT,
        )
        await _scanner(oracle).scan(
            STORY, DEFAULT_SETTINGS, [], ScanState(), on_progress=lambda p: phases.append(p.phase),
        )
        assert phases == ["identifying", "generating", "generating"]

    @pytest.mark.asyncio
    async def test_async_and_failing_callbacks(self, make_oracle):
        seen = []

        async def record(progress):
            seen.append(progress.phase)

        def explode(progress):
            raise RuntimeError("ui gone")

        oracle = make_oracle(identify='{"elements": []}')
        result = await _scanner(oracle).scan(STORY, DEFAULT_SETTINGS, [], ScanState(), on_progress=record)
        await asyncio.sleep(0)
        assert seen == ["identifying"]
        assert result.no_results

        result = await _scanner(oracle).scan(STORY, DEFAULT_SETTINGS, [], ScanState(), on_progress=explode)
        assert result.no_results


def test_merge_keys_puts_new_name_first():
    entry = LorebookEntry(id="e1", display_name="Hooded Figure",
                          keys=["hooded figure", "k1", "k2", "k3", "k4", "k5"])
    keys = merge_keys(entry, "Elena Voss")
    assert keys[0] == "Elena Voss"
    assert len(keys) == 6
    assert [k.lower() for k in keys].count("hooded figure") == 1
