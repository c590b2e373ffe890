"""Context retrieval that grounds drafts in what the user has recently seen."""

from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from .clients import EmbeddingClient
from .config import RetrieverConfig
from .entities import EntityExtractor
from .models import ContextChunk, ContextSource, Entity
from .store import ContextStore, StoreError
from .utils import Clock, content_words, format_time_ago, hours_between, utcnow

logger = logging.getLogger(__name__)

NO_CONTEXT_SENTINEL = "No relevant context available."

NOTIFICATION_SOURCES = frozenset(
    {ContextSource.NOTIFICATION, ContextSource.DISCORD, ContextSource.SLACK}
)

_NON_ALNUM = re.compile(r"[^0-9a-ząćęłńóśźż]+")


def recency_score(timestamp: datetime, now: datetime) -> float:
    """Piecewise-linear decay: 1.0 under an hour, 0.8 to 0.5 within a day,
    0.5 to 0.2 within a week and 0.1 afterwards."""

    hours = hours_between(timestamp, now)
    if hours < 1:
        return 1.0
    if hours < 24:
        return 0.8 - ((hours - 1) / 23) * 0.3
    if hours < 168:
        return 0.5 - ((hours - 24) / 144) * 0.3
    return 0.1


def topic_match_score(intent: str, chunk: ContextChunk) -> float:
    intent_lower = intent.lower()
    score = 0.3
    if chunk.topic and (chunk.topic in intent_lower or intent_lower[:5] in chunk.topic):
        score += 0.3
    overlap = content_words(intent_lower, min_length=4) & content_words(chunk.content, min_length=4)
    if overlap:
        score += min(0.4, len(overlap) * 0.1)
    return min(1.0, score)


def entity_overlap_score(intent_entities: Sequence[Entity], chunk_entities: Sequence[Entity]) -> float:
    """Fraction of intent entities matched by at least one chunk entity."""

    if not intent_entities:
        return 0.0
    matched = sum(
        1 for entity in intent_entities if any(entity.matches(other) for other in chunk_entities)
    )
    return matched / len(intent_entities)


def extract_key_terms(intent: str, stop_words: Iterable[str], *, limit: int = 3) -> List[str]:
    stop = set(stop_words)
    terms: List[str] = []
    for token in _NON_ALNUM.split(intent.lower()):
        if len(token) > 2 and token not in stop and token not in terms:
            terms.append(token)
        if len(terms) >= limit:
            break
    return terms


def _leading_token(value: str) -> str:
    parts = value.split()
    return parts[0] if parts else ""


class ContextRetriever:
    """Collects candidate chunks from several signals and ranks them.

    Candidates come from semantic search (when an embedder is configured),
    lexical search on key terms, entity lookup, and source-biased recency.
    Each signal degrades independently: a failing sub-search is logged and
    contributes nothing. Ranking combines recency, topical relevance and
    entity overlap, plus flat boosts for chunks found by entity lookup or
    whose text mentions an intent entity.
    """

    def __init__(
        self,
        store: ContextStore,
        extractor: EntityExtractor | None = None,
        embedder: EmbeddingClient | None = None,
        config: RetrieverConfig | None = None,
        *,
        clock: Clock = utcnow,
    ) -> None:
        self.store = store
        self.extractor = extractor or EntityExtractor()
        self.embedder = embedder
        self.config = config or RetrieverConfig()
        self._clock = clock

    def retrieve(self, intent: str) -> List[ContextChunk]:
        return [chunk for chunk, _ in self.retrieve_scored(intent)]

    def retrieve_scored(self, intent: str) -> List[Tuple[ContextChunk, float]]:
        config = self.config
        intent_entities = self.extractor.extract(intent)
        candidates: List[ContextChunk] = []
        entity_ids: Set[str] = set()

        if self.embedder is not None and self.embedder.configured:
            candidates.extend(self._semantic_candidates(intent))

        for term in extract_key_terms(intent, config.stop_words, limit=config.lexical_terms):
            candidates.extend(
                self._safe("lexical", lambda term=term: self.store.search_text(term, config.lexical_limit))
            )

        for entity in intent_entities:
            found = self._safe(
                "entity", lambda entity=entity: self.store.get_by_entity(entity.type, entity.value)
            )
            leading = _leading_token(entity.value)
            if len(entity.value.split()) > 1 and len(leading) >= config.partial_name_min_length:
                found += self._safe(
                    "entity", lambda leading=leading: self.store.search_text(leading, config.lexical_limit)
                )
            entity_ids.update(chunk.id for chunk in found)
            candidates.extend(found)

        intent_lower = intent.lower()
        for source_name, keywords in config.source_keywords.items():
            if any(keyword in intent_lower for keyword in keywords):
                source = ContextSource.parse(source_name)
                candidates.extend(
                    self._safe(
                        "recent",
                        lambda source=source: self.store.recent(source, config.source_recent_limit),
                    )
                )
        candidates.extend(self._safe("recent", lambda: self.store.recent(None, config.recency_sample_limit)))

        unique: Dict[str, ContextChunk] = {}
        for chunk in candidates:
            unique.setdefault(chunk.id, chunk)

        now = self._clock()
        scored = [
            (chunk, self._score(intent, chunk, intent_entities, chunk.id in entity_ids, now))
            for chunk in unique.values()
        ]
        scored.sort(key=lambda item: item[1], reverse=True)
        logger.debug(
            "Retrieved %d candidates (%d unique, %d via entities) for %r",
            len(candidates),
            len(unique),
            len(entity_ids),
            intent,
        )
        return scored[: config.max_results]

    def build_context_string(self, chunks: Sequence[ContextChunk], now: datetime | None = None) -> str:
        return build_context_string(chunks, now or self._clock())

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _score(
        self,
        intent: str,
        chunk: ContextChunk,
        intent_entities: Sequence[Entity],
        found_by_entity: bool,
        now: datetime,
    ) -> float:
        config = self.config
        score = (
            config.recency_weight * recency_score(chunk.timestamp, now)
            + config.relevance_weight * topic_match_score(intent, chunk)
            + config.entity_weight * entity_overlap_score(intent_entities, chunk.entities)
        )
        if found_by_entity:
            score += config.entity_search_boost
        content = chunk.content.lower()
        for entity in intent_entities:
            leading = _leading_token(entity.value).lower()
            if entity.value.lower() in content or (leading and leading in content):
                score += config.content_entity_boost
                break
        return score

    def _semantic_candidates(self, intent: str) -> List[ContextChunk]:
        result = self.embedder.embed(intent)
        if not result.ok or not result.value:
            logger.warning("Semantic search skipped: %s", result.error or result.status.value)
            return []
        return self._safe(
            "semantic", lambda: self.store.search_similar(result.value, self.config.semantic_top_k)
        )

    @staticmethod
    def _safe(label: str, search: Callable[[], List[ContextChunk]]) -> List[ContextChunk]:
        try:
            return list(search())
        except StoreError as exc:
            logger.warning("%s search failed: %s", label.capitalize(), exc)
            return []


def build_context_string(chunks: Sequence[ContextChunk], now: Optional[datetime] = None) -> str:
    """Render ranked chunks as a numbered prompt block, notifications first."""

    if not chunks:
        return NO_CONTEXT_SENTINEL
    now = now or utcnow()
    notifications = [chunk for chunk in chunks if chunk.source in NOTIFICATION_SOURCES]
    others = [chunk for chunk in chunks if chunk.source not in NOTIFICATION_SOURCES]

    parts = ["RELEVANT CONTEXT:\n\n"]
    index = 0
    if notifications:
        parts.append("NOTIFICATIONS (PRIMARY SOURCE):\n")
        for chunk in notifications:
            index += 1
            parts.append(_render_chunk(index, chunk, now, with_app=True))
    if others:
        if notifications:
            parts.append("OTHER CONTEXT:\n")
        for chunk in others:
            index += 1
            parts.append(_render_chunk(index, chunk, now, with_app=False))
    return "".join(parts)


def _render_chunk(index: int, chunk: ContextChunk, now: datetime, *, with_app: bool) -> str:
    source = chunk.source.value.capitalize()
    label = f"{source} from {chunk.metadata.get('app', source)}" if with_app else source
    text = f"[{index}] [{label}] ({format_time_ago(chunk.timestamp, now)})\n{chunk.content[:500]}"
    if chunk.entities:
        rendered = ", ".join(f"{entity.type.value}: {entity.value}" for entity in chunk.entities)
        text += f"\nEntities: {rendered}"
    return text + "\n\n"
