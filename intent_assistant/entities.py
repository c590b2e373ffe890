"""Rule-based named entity extraction."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import FrozenSet, Iterable, List, Sequence

from .models import Entity, EntityType

_UPPER = "A-ZŻŹĆĄŚĘŁÓŃ"
_LOWER = "a-zżźćąśęłóń"
NAME = rf"[{_UPPER}][{_LOWER}]+"
FULL_NAME = rf"{NAME}(?:\s+{NAME})?"


@dataclass(slots=True, frozen=True)
class EntityRule:
    """Maps a regex with one capture group to an entity type."""

    pattern: re.Pattern[str]
    entity_type: EntityType
    find_all: bool = False
    confidence: float = 1.0

    @classmethod
    def compile(
        cls,
        pattern: str,
        entity_type: EntityType,
        *,
        find_all: bool = False,
        confidence: float = 1.0,
    ) -> "EntityRule":
        return cls(re.compile(pattern), entity_type, find_all, confidence)

    def values(self, text: str) -> List[str]:
        if self.find_all:
            return [match.group(1) for match in self.pattern.finditer(text)]
        match = self.pattern.search(text)
        return [match.group(1)] if match else []


DEFAULT_RULES: List[EntityRule] = [
    EntityRule.compile(rf"(?i:e?mail|message|write|send)\s+(?i:to|do)\s+({FULL_NAME})", EntityType.PERSON),
    EntityRule.compile(rf"\b(?:to|with|do)\s+({FULL_NAME})", EntityType.PERSON),
    EntityRule.compile(rf"\b(?i:klienta?|client)\s+({FULL_NAME})", EntityType.PERSON),
    EntityRule.compile(r"\b(?i:projekt(?:u)?|project)\s+(\w+)", EntityType.PROJECT),
    EntityRule.compile(rf"\b(?i:firm[ay]?|company)\s+({FULL_NAME})", EntityType.COMPANY),
]

CONTENT_RULES: List[EntityRule] = [
    EntityRule.compile(r"([A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,})", EntityType.EMAIL),
    EntityRule.compile(r"(\d[\d\s,.]*\s*(?:PLN|USD|EUR|zł|€|\$))", EntityType.MONEY),
    EntityRule.compile(
        rf"({NAME}\s+{NAME})\s+\d{{1,2}}:\d{{2}}\s*(?:AM|PM)?",
        EntityType.PERSON,
        find_all=True,
        confidence=0.9,
    ),
    EntityRule.compile(rf"Message to\s+({FULL_NAME})", EntityType.PERSON, find_all=True, confidence=0.95),
    *DEFAULT_RULES,
]

DEFAULT_GAZETTEER: FrozenSet[str] = frozenset(
    {
        "Adam", "Kamil", "Filip", "Piotr", "Piotrek", "Marcin", "Tomasz", "Michał",
        "Krzysztof", "Paweł", "Anna", "Maria", "Katarzyna", "Monika", "Agnieszka",
        "Ewa", "Bartek", "Marian", "Szymon",
        "John", "Sarah", "Michael", "Emily", "David", "Laura", "James", "Olivia",
    }
)

_STRIP_PUNCTUATION = re.compile(r"^\W+|\W+$")


class EntityExtractor:
    """Extracts person, company and project mentions with regex rules and a gazetteer.

    Rules are applied in order and only the first match of a non ``find_all``
    rule is kept. Afterwards capitalized words are checked against the
    gazetteer of given names (either whole or by their first four letters)
    and the lowercased text is re-scanned so names typed in the wrong case
    are still found. Values are deduplicated case-insensitively.
    """

    def __init__(
        self,
        rules: Sequence[EntityRule] | None = None,
        gazetteer: Iterable[str] | None = None,
        *,
        ignored_values: Iterable[str] = (),
    ) -> None:
        self.rules = list(DEFAULT_RULES if rules is None else rules)
        self.gazetteer = frozenset(DEFAULT_GAZETTEER if gazetteer is None else gazetteer)
        self._ignored = {value.casefold() for value in ignored_values if value}

    def extract(self, text: str) -> List[Entity]:
        if not text:
            return []
        entities: List[Entity] = []
        seen: set[str] = set()

        def _add(entity_type: EntityType, value: str, confidence: float = 1.0) -> None:
            value = value.strip()
            key = value.casefold()
            if len(value) < 2 or key in seen or key in self._ignored:
                return
            seen.add(key)
            entities.append(Entity(type=entity_type, value=value, confidence=confidence))

        for rule in self.rules:
            for value in rule.values(text):
                _add(rule.entity_type, value, rule.confidence)

        for word in text.split():
            cleaned = _STRIP_PUNCTUATION.sub("", word)
            if not cleaned or not cleaned[0].isupper():
                continue
            if cleaned in self.gazetteer or cleaned[:4] in self.gazetteer:
                _add(EntityType.PERSON, cleaned)

        lowered = text.lower()
        for name in sorted(self.gazetteer):
            if re.search(rf"\b{re.escape(name.lower())}\b", lowered):
                _add(EntityType.PERSON, name)

        return entities
