"""Shared fixtures for the intent assistant test-suite."""

from __future__ import annotations

import json
import time
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Callable, Iterable, List, Optional
from unittest.mock import MagicMock

import httpx
import pytest

from intent_assistant.actions import SimulatedAutomation
from intent_assistant.clients import CompletionClient, EmbeddingClient, IntentClassifierClient
from intent_assistant.models import ContextChunk, ContextSource, Entity
from intent_assistant.store import ContextStore

FIXED_NOW = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)
CLASSIFIER_URL = "http://classifier.test/classify"
# POSIX rule for Central European Time, usable without a tz database.
WARSAW_TZ = "CET-1CEST,M3.5.0,M10.5.0/3"


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = FIXED_NOW) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store():
    context_store = ContextStore(":memory:")
    yield context_store
    context_store.close()


@pytest.fixture
def make_chunk() -> Callable[..., ContextChunk]:
    def _make(
        content: str,
        *,
        source: ContextSource = ContextSource.OCR,
        age: timedelta = timedelta(minutes=5),
        entities: Iterable[Entity] = (),
        topic: Optional[str] = None,
        embedding: Optional[List[float]] = None,
        app: Optional[str] = None,
        chunk_id: Optional[str] = None,
    ) -> ContextChunk:
        kwargs = {}
        if chunk_id is not None:
            kwargs["id"] = chunk_id
        return ContextChunk(
            source=source,
            content=content,
            entities=tuple(entities),
            topic=topic,
            embedding=tuple(embedding) if embedding else None,
            metadata={"app": app} if app else {},
            timestamp=FIXED_NOW - age,
            **kwargs,
        )

    return _make


@pytest.fixture
def local_timezone(monkeypatch):
    """Switch the process-local timezone for the duration of a test."""

    if not hasattr(time, "tzset"):
        pytest.skip("time.tzset is unavailable on this platform")

    def _set(tz: str) -> None:
        monkeypatch.setenv("TZ", tz)
        time.tzset()

    yield _set
    monkeypatch.undo()
    time.tzset()


@pytest.fixture
def automation() -> SimulatedAutomation:
    return SimulatedAutomation()


def completion_response(text: str) -> SimpleNamespace:
    return SimpleNamespace(content=[SimpleNamespace(type="text", text=text)])


@pytest.fixture
def completion_stub() -> Callable[[str], CompletionClient]:
    """Completion client whose SDK always answers with ``text``."""

    def _build(text: str) -> CompletionClient:
        sdk = MagicMock()
        sdk.messages.create.return_value = completion_response(text)
        return CompletionClient(None, client=sdk)

    return _build


@pytest.fixture
def embedding_stub() -> Callable[[List[List[float]]], EmbeddingClient]:
    def _build(vectors: List[List[float]]) -> EmbeddingClient:
        sdk = MagicMock()
        sdk.embeddings.create.return_value = SimpleNamespace(
            data=[SimpleNamespace(index=i, embedding=vector) for i, vector in enumerate(vectors)]
        )
        return EmbeddingClient(None, client=sdk)

    return _build


@pytest.fixture
def classifier_for() -> Callable[..., IntentClassifierClient]:
    """Classifier backed by an in-process httpx transport."""

    clients: List[httpx.Client] = []

    def _build(action: str = "send_email", score: float = 0.9, *, handler=None) -> IntentClassifierClient:
        def _default(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"action": action, "score": score})

        http = httpx.Client(transport=httpx.MockTransport(handler or _default))
        clients.append(http)
        return IntentClassifierClient(CLASSIFIER_URL, http_client=http)

    yield _build
    for http in clients:
        http.close()


def json_reply(payload: dict, *, fenced: bool = False) -> str:
    body = json.dumps(payload, ensure_ascii=False)
    return f"Here you go:\n```json\n{body}\n```" if fenced else body
