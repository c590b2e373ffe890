"""Tests for context retrieval and prompt rendering."""

from datetime import timedelta
from unittest.mock import MagicMock

import httpx
import openai
import pytest

from intent_assistant.clients import EmbeddingClient
from intent_assistant.config import RetrieverConfig
from intent_assistant.models import ContextSource, Entity, EntityType
from intent_assistant.retriever import (
    NO_CONTEXT_SENTINEL,
    ContextRetriever,
    build_context_string,
    extract_key_terms,
    recency_score,
)
from intent_assistant.store import StoreError

from conftest import FIXED_NOW


@pytest.fixture
def retriever(store, clock):
    return ContextRetriever(store, embedder=EmbeddingClient(None), clock=clock)


class TestRecencyScore:
    @pytest.mark.parametrize(
        "hours, expected",
        [(0.5, 1.0), (1, 0.8), (24, 0.5), (96, 0.35), (168, 0.1), (1000, 0.1)],
    )
    def test_piecewise_values(self, hours, expected):
        assert recency_score(FIXED_NOW - timedelta(hours=hours), FIXED_NOW) == pytest.approx(expected)

    def test_never_increases_with_age(self):
        scores = [recency_score(FIXED_NOW - timedelta(minutes=15 * step), FIXED_NOW) for step in range(800)]
        assert all(later <= earlier for earlier, later in zip(scores, scores[1:]))


class TestKeyTerms:
    def test_stop_words_and_short_tokens_removed(self, retriever):
        terms = extract_key_terms("send email to Kamil about the Q3 budget", retriever.config.stop_words)
        assert terms == ["kamil", "budget"]

    def test_limit(self, retriever):
        assert len(extract_key_terms("alpha beta gamma delta", (), limit=3)) == 3


class TestContextRetriever:
    def test_notification_from_named_person_ranks_first(self, store, retriever, make_chunk):
        notification = make_chunk(
            "Kamil: can you send me the Q3 report by Friday?",
            source=ContextSource.DISCORD,
            age=timedelta(hours=2),
            entities=[Entity(EntityType.PERSON, "Kamil")],
            app="Discord",
        )
        screen = make_chunk(
            "Quarterly numbers dashboard open in browser window",
            source=ContextSource.OCR,
            age=timedelta(minutes=5),
        )
        store.insert(notification)
        store.insert(screen)
        scored = retriever.retrieve_scored("send email to Kamil")
        assert [chunk.id for chunk, _ in scored] == [notification.id, screen.id]
        assert scored[0][1] > scored[1][1] + 0.5

    def test_empty_store_gives_sentinel(self, retriever):
        chunks = retriever.retrieve("send email to Kamil")
        assert chunks == []
        assert retriever.build_context_string(chunks) == NO_CONTEXT_SENTINEL

    def test_unconfigured_embedder_still_returns_recent_context(self, store, retriever, make_chunk):
        store.insert(make_chunk("Budget review notes for the board"))
        assert [chunk.content for chunk in retriever.retrieve("prepare something")] == [
            "Budget review notes for the board"
        ]

    def test_candidates_found_by_several_signals_appear_once(self, store, retriever, make_chunk):
        chunk = make_chunk(
            "Kamil mentioned the budget deadline",
            source=ContextSource.SLACK,
            entities=[Entity(EntityType.PERSON, "Kamil")],
        )
        store.insert(chunk)
        found = retriever.retrieve("message to Kamil on slack about budget")
        assert [item.id for item in found] == [chunk.id]

    def test_entity_match_outranks_fresher_noise(self, store, retriever, make_chunk):
        anna = make_chunk(
            "Contract draft is ready for review",
            age=timedelta(days=2),
            entities=[Entity(EntityType.PERSON, "Anna")],
        )
        store.insert(anna)
        for index in range(5):
            store.insert(make_chunk(f"Unrelated screen text number {index}", age=timedelta(minutes=index)))
        assert retriever.retrieve("write to Anna")[0].id == anna.id

    def test_partial_name_search_uses_first_name(self, store, retriever, make_chunk):
        kamil = make_chunk("Kamil asked about the budget numbers", age=timedelta(days=3))
        store.insert(kamil)
        store.insert(make_chunk("Something fresh on screen right now"))
        assert retriever.retrieve("email to Kamil Nowak")[0].id == kamil.id

    def test_results_are_capped(self, store, retriever, make_chunk):
        for index in range(15):
            store.insert(make_chunk(f"budget line item {index}", age=timedelta(minutes=index)))
        assert len(retriever.retrieve("budget")) == 10

    def test_semantic_search_used_when_configured(self, store, clock, make_chunk, embedding_stub):
        old = make_chunk("Offsite agenda", age=timedelta(days=30), embedding=[1.0, 0.0])
        store.insert(old)
        for index in range(3):
            store.insert(make_chunk(f"Fresh screen text {index}", age=timedelta(minutes=index)))
        embedder = embedding_stub([[1.0, 0.0]])
        config = RetrieverConfig(recency_sample_limit=2)
        retriever = ContextRetriever(store, embedder=embedder, config=config, clock=clock)
        found = retriever.retrieve("plan the trip")
        assert old.id in [chunk.id for chunk in found]
        embedder._client.embeddings.create.assert_called_once()

    def test_failing_sub_search_degrades(self, store, retriever, make_chunk, monkeypatch):
        store.insert(make_chunk("Budget review notes for the board"))

        def broken(*args, **kwargs):
            raise StoreError("disk I/O error")

        monkeypatch.setattr(store, "search_text", broken)
        assert len(retriever.retrieve("budget review")) == 1

    def test_failing_embedder_keeps_lexical_and_entity_results(self, store, clock, make_chunk):
        kamil = make_chunk(
            "Kamil shared the budget spreadsheet",
            age=timedelta(days=3),
            entities=[Entity(EntityType.PERSON, "Kamil")],
        )
        budget = make_chunk("Budget planning notes", age=timedelta(days=4))
        store.insert(kamil)
        store.insert(budget)
        sdk = MagicMock()
        sdk.embeddings.create.side_effect = openai.APITimeoutError(
            request=httpx.Request("POST", "https://api.openai.com/v1/embeddings")
        )
        config = RetrieverConfig(recency_sample_limit=0)
        retriever = ContextRetriever(store, embedder=EmbeddingClient(None, client=sdk), config=config, clock=clock)
        found = [chunk.id for chunk in retriever.retrieve("email Kamil about budget")]
        assert found[0] == kamil.id
        assert budget.id in found
        sdk.embeddings.create.assert_called_once()

    def test_entity_lookup_boost_separates_identical_chunks(self, store, retriever, make_chunk):
        tagged = make_chunk("Quarterly report numbers are ready", entities=[Entity(EntityType.PERSON, "Kamil")])
        untagged = make_chunk("Quarterly report numbers are ready")
        store.insert(tagged)
        store.insert(untagged)
        scores = {chunk.id: score for chunk, score in retriever.retrieve_scored("send email to Kamil")}
        assert scores[tagged.id] - scores[untagged.id] >= retriever.config.entity_search_boost

    def test_repeated_retrieval_is_stable_and_unique(self, store, retriever, make_chunk):
        store.insert(
            make_chunk(
                "Kamil mentioned the budget deadline",
                source=ContextSource.SLACK,
                entities=[Entity(EntityType.PERSON, "Kamil")],
            )
        )
        for index in range(4):
            store.insert(make_chunk(f"budget line item {index}", age=timedelta(minutes=index)))
        first = [chunk.id for chunk in retriever.retrieve("message to Kamil on slack about budget")]
        second = [chunk.id for chunk in retriever.retrieve("message to Kamil on slack about budget")]
        assert len(first) == len(set(first)) == 5
        assert second == first

    def test_older_notification_about_person_beats_fresh_unrelated_screen(self, store, retriever, make_chunk):
        notification = make_chunk(
            "Kamil: let's sync on the launch project tomorrow",
            source=ContextSource.NOTIFICATION,
            age=timedelta(minutes=10),
            entities=[Entity(EntityType.PERSON, "Kamil")],
        )
        screen = make_chunk("random unrelated menu text", age=timedelta(minutes=2))
        store.insert(notification)
        store.insert(screen)
        found = retriever.retrieve("send email to Kamil about the project")
        assert [chunk.id for chunk in found] == [notification.id, screen.id]

    def test_month_names_do_not_pull_in_person_lookups(self, store, retriever, make_chunk):
        flyer = make_chunk("March marching band flyer on screen")
        notes = make_chunk("Quarterly plan review notes")
        store.insert(flyer)
        store.insert(notes)
        assert retriever.retrieve("plan the review in March")[0].id == notes.id


class TestBuildContextString:
    def test_notifications_lead_and_numbering_continues(self, make_chunk):
        notification = make_chunk(
            "Kamil: can you send me the Q3 report?",
            source=ContextSource.DISCORD,
            age=timedelta(hours=2),
            entities=[Entity(EntityType.PERSON, "Kamil")],
            app="Discord",
        )
        screen = make_chunk("Report draft in Pages", source=ContextSource.OCR, age=timedelta(minutes=5))
        text = build_context_string([screen, notification], FIXED_NOW)
        assert text == (
            "RELEVANT CONTEXT:\n\n"
            "NOTIFICATIONS (PRIMARY SOURCE):\n"
            "[1] [Discord from Discord] (2h ago)\n"
            "Kamil: can you send me the Q3 report?\n"
            "Entities: person: Kamil\n\n"
            "OTHER CONTEXT:\n"
            "[2] [Ocr] (5m ago)\n"
            "Report draft in Pages\n\n"
        )

    def test_no_section_headers_without_notifications(self, make_chunk):
        text = build_context_string([make_chunk("x" * 600)], FIXED_NOW)
        assert "OTHER CONTEXT" not in text
        assert "x" * 500 + "\n\n" in text
        assert "x" * 501 not in text
