"""Regex-scored heuristic classification of lorebook entries.

Each category is scored by a ``CategoryScorer`` (a pattern list plus an
optional bonus). The scorer tuple is swappable so patterns can be tuned
without touching the scan or organize pipelines.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from lorekeeper.utils.character_template import TEMPLATE_FIELDS

UNKNOWN = "unknown"

# Top score must beat the runner-up by this factor, else the entry is ambiguous.
# Empirical threshold; tune freely.
AMBIGUITY_RATIO = 1.5
MIN_WINNING_SCORE = 2
MIN_CLASSIFY_LENGTH = 10

_PERSON_PATTERNS = [
    re.compile(r"\b(he|she|they)\s+(is|are|was|were|has|have|had)\b", re.I),
    re.compile(r"\b(his|her|their)\s+(hair|eyes|skin|face|body|height|build|appearance)\b", re.I),
    re.compile(r"\b(tall|short|slender|muscular|petite|stocky|lean)\b", re.I),
    re.compile(
        r"\b(hair|eyes|skin)\b.*\b(color|colou?red|black|brown|blonde|red|blue|green"
        r"|white|grey|gray|silver|dark|light)\b",
        re.I,
    ),
    re.compile(r"\b(appearance|physical|looks like|described as)\b", re.I),
    re.compile(r"\b(personality|temperament|demeanor|disposition)\b", re.I),
    re.compile(r"\b(wears|wearing|dressed|outfit|clothing|armor|robes)\b", re.I),
    re.compile(r"\b(years? old|\d+\s*yo\b|age[ds]?\s*\d+)\b", re.I),
    re.compile(r"\b(male|female|man|woman|boy|girl|person)\b", re.I),
]

_TEMPLATE_PATTERNS = [re.compile(rf"^{re.escape(label)}:", re.M) for label in TEMPLATE_FIELDS]


def looks_like_character(text: str | None) -> bool:
    """At least two person-describing patterns in a 30+ char body."""
    if not text or len(text) < 30:
        return False
    return sum(1 for p in _PERSON_PATTERNS if p.search(text)) >= 2


def is_template_formatted(text: str | None) -> bool:
    """At least 3 of the 13 character-template labels at line start.

    Empty text counts as formatted: there is nothing to reformat.
    """
    if not text:
        return True
    return sum(1 for p in _TEMPLATE_PATTERNS if p.search(text)) >= 3


def _character_bonus(text: str) -> int:
    bonus = 0
    if looks_like_character(text):
        bonus += 3
    if is_template_formatted(text):
        bonus += 3
    return bonus


@dataclass(frozen=True)
class CategoryScorer:
    category: str
    patterns: Sequence[re.Pattern[str]]
    bonus: Callable[[str], int] | None = field(default=None)

    def score(self, text: str) -> int:
        total = self.bonus(text) if self.bonus else 0
        return total + sum(1 for p in self.patterns if p.search(text))


def _compile(*sources: str, flags: int = re.I) -> list[re.Pattern[str]]:
    return [re.compile(s, flags) for s in sources]


DEFAULT_SCORERS: tuple[CategoryScorer, ...] = (
    CategoryScorer(
        "character",
        _compile(
            r"\b(he|she|they)\s+(is|are|was|were|has|have|had)\b",
            r"\b(personality|temperament|demeanor)\b",
            r"\b(wears|wearing|dressed|outfit|clothing)\b",
            r"\b(years? old|\d+\s*yo\b|age[ds]?\s*\d+)\b",
        )
        + _compile(r"^Name:", r"^Age:", r"^Gender:", r"^Relationships:", flags=re.M),
        bonus=_character_bonus,
    ),
    CategoryScorer(
        "location",
        _compile(
            r"\b(city|town|village|hamlet|settlement|capital)\b",
            r"\b(forest|mountain|valley|river|lake|ocean|sea|desert|plains|swamp|cave)\b",
            r"\b(kingdom|realm|empire|province|region|territory|continent)\b",
            r"\b(located|situated|lies|found in|surrounded by)\b",
            r"\b(north|south|east|west|central) of\b",
            r"\b(building|castle|tower|temple|church|palace|fortress|inn|tavern)\b",
            r"\b(terrain|climate|landscape|geography)\b",
        ),
    ),
    CategoryScorer(
        "item",
        _compile(
            r"\b(weapon|sword|blade|axe|bow|staff|wand|dagger|spear)\b",
            r"\b(armor|shield|helm|gauntlet|ring|amulet|pendant|necklace)\b",
            r"\b(artifact|relic|enchanted|magical|cursed|blessed|forged)\b",
            r"\b(potion|elixir|scroll|tome|book|map|key)\b",
            r"\b(crafted|forged|created|made|wielded|worn|carried)\b",
        ),
    ),
    CategoryScorer(
        "faction",
        _compile(
            r"\b(guild|order|clan|tribe|brotherhood|sisterhood|alliance|coalition)\b",
            r"\b(members|leader|hierarchy|ranks|founded|established)\b",
            r"\b(organization|group|faction|sect|cult|society|council)\b",
            r"\b(joined|recruited|member of|belongs to)\b",
        ),
    ),
    CategoryScorer(
        "concept",
        _compile(
            r"\b(magic|mana|power|energy|force|element)\b",
            r"\b(system|rule|law|principle|practice|tradition)\b",
            r"\b(ritual|ceremony|spell|incantation|enchantment)\b",
            r"\b(theory|concept|philosophy|belief|doctrine)\b",
        ),
    ),
)


def score_entry(text: str, scorers: Sequence[CategoryScorer] = DEFAULT_SCORERS) -> dict[str, int]:
    return {s.category: s.score(text) for s in scorers}


def classify_entry_type(
    text: str | None,
    display_name: str | None = None,
    scorers: Sequence[CategoryScorer] = DEFAULT_SCORERS,
    ambiguity_ratio: float = AMBIGUITY_RATIO,
) -> str:
    """Return the winning category, or ``"unknown"`` when weak or ambiguous.

    ``display_name`` is accepted for call-site symmetry; scoring uses the body only.
    Ties keep scorer order.
    """
    if not text or len(text) < MIN_CLASSIFY_LENGTH:
        return UNKNOWN

    scores = score_entry(text, scorers)
    # sorted() is stable, so equal scores keep scorer order
    ranked = sorted(scores.items(), key=lambda kv: kv[1], reverse=True)
    best_type, best = ranked[0]
    second = ranked[1][1] if len(ranked) > 1 else 0

    if best < MIN_WINNING_SCORE:
        return UNKNOWN
    if second > 0 and best < second * ambiguity_ratio:
        return UNKNOWN
    return best_type
