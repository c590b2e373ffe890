"""Context collection: normalize raw observations into stored chunks."""

from __future__ import annotations

import hashlib
import logging
import threading
from collections import OrderedDict, deque
from concurrent.futures import Executor, Future
from typing import Deque, List, Optional

from .clients import EmbeddingClient
from .config import CollectorConfig
from .entities import CONTENT_RULES, EntityExtractor
from .models import ContextChunk, ContextSource, Event
from .store import ContextStore, StoreError
from .utils import Clock, utcnow

logger = logging.getLogger(__name__)

NOISE_PATTERNS = (
    "cursor", "focus", "scroll", "resize", "axfocused", "axvalue",
    "settings", "preference", "debug", "log(", "error:", "warning:", "info:",
    "<!doctype", "<html", "<script", "function()",
    "const ", "let ", "var ", "import ", "export ", "class ",
)
CODE_CHARACTERS = frozenset("{}[]();=><")
SECRET_MARKERS = (
    "api_key", "api-key", "sk-ant-", "sk-proj-", "secret", "password=",
    "bearer ", "authorization:",
)
DEV_TOOL_MARKERS = (
    "accept file", "localhost:", "sqlite3", "xcodebuild", "build succeeded",
    "build failed", ".swift", "xcode", ".env", "touch id",
)
METRIC_SUFFIXES = ("KB/s", "MB/s", "MB", "%")

TOPIC_KEYWORDS = (
    ("finance", ("faktura", "invoice", "płatność", "payment", "przelew")),
    ("meeting", ("spotkanie", "meeting", "call", "zoom")),
    ("project", ("projekt", "project", "deadline", "termin")),
    ("email", ("mail", "email")),
)


def is_noise(content: str, *, min_length: int = 20, max_length: int = 5000) -> bool:
    """Reject UI chatter, code and log lines."""

    lower = content.lower()
    if any(pattern in lower for pattern in NOISE_PATTERNS):
        return True
    if len(content) < min_length or len(content) > max_length:
        return True
    special = sum(1 for char in content if char in CODE_CHARACTERS)
    return special / len(content) > 0.1


def is_ocr_garbage(text: str) -> bool:
    """Reject screen text carrying secrets, SQL, developer tooling or metric readouts."""

    lower = text.lower()
    if any(marker in lower for marker in SECRET_MARKERS):
        return True
    if ("select " in lower and " from " in lower) or "insert into" in lower:
        return True
    if any(marker in lower for marker in DEV_TOOL_MARKERS):
        return True
    metrics = [token for token in text.split() if token.endswith(METRIC_SUFFIXES)]
    return len(metrics) > 3


def classify_topic(content: str, app_name: str = "") -> Optional[str]:
    lower = content.lower()
    for topic, keywords in TOPIC_KEYWORDS:
        if any(keyword in lower for keyword in keywords):
            return topic
    if app_name == "Mail":
        return "email"
    return None


def jaccard_similarity(first: str, second: str) -> float:
    words_a = {word for word in first.lower().split() if len(word) > 2}
    words_b = {word for word in second.lower().split() if len(word) > 2}
    if not words_a or not words_b:
        return 0.0
    return len(words_a & words_b) / len(words_a | words_b)


class ContextCollector:
    """Filters, deduplicates and enriches observations, then stores them in batches.

    Accepted chunks are queued and written when the batch is full, when the
    batch timer fires, or on an explicit :meth:`flush`. Each flush embeds
    the batch when an embedder is configured; embedding failures fall back
    to storing the chunks without vectors. Store errors are logged only.
    """

    def __init__(
        self,
        store: ContextStore,
        extractor: EntityExtractor | None = None,
        embedder: EmbeddingClient | None = None,
        config: CollectorConfig | None = None,
        *,
        executor: Executor | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self.store = store
        self.extractor = extractor or EntityExtractor(CONTENT_RULES)
        self.embedder = embedder
        self.config = config or CollectorConfig()
        self.executor = executor
        self._clock = clock
        self._lock = threading.RLock()
        self._pending: List[ContextChunk] = []
        self._timer: Optional[threading.Timer] = None
        self._hashes: "OrderedDict[str, None]" = OrderedDict()
        self._recent_contents: Deque[str] = deque(maxlen=self.config.recent_contents_size)
        self.collecting = False
        self.chunks_collected = 0
        self.chunks_stored = 0

    def start(self) -> None:
        self.collecting = True
        logger.info("Context collection started")

    def stop(self) -> None:
        self.collecting = False
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
        self.flush(wait=True)
        logger.info("Context collection stopped")

    def collect_from_event(self, event: Event) -> Optional[ContextChunk]:
        content = event.text_content
        if not self.collecting or not content or len(content) < self.config.min_event_length:
            return None
        metadata = {"app": event.app_name, "role": event.element_role or "", "action": event.action_type}
        return self._collect_text(content, event.app_name, metadata)

    def collect_from_user_action(self, action_type: str, app_name: str, details: str) -> Optional[ContextChunk]:
        if not self.collecting or len(details) < self.config.min_event_length:
            return None
        metadata = {"app": app_name, "action_type": action_type}
        return self._collect_text(details, app_name, metadata)

    def collect_from_screen_text(self, text: str, app_name: str) -> Optional[ContextChunk]:
        if not self.collecting or len(text) < self.config.min_screen_text_length:
            return None
        if is_ocr_garbage(text):
            logger.debug("Skipping screen text from %s: filtered content", app_name)
            return None
        if not self._remember_hash(text):
            return None
        chunk = self._make_chunk(
            ContextSource.OCR, text, app_name, {"app": app_name, "capture_type": "ocr_aggregate"}
        )
        self._enqueue(chunk)
        return chunk

    def collect_from_notification(
        self, title: Optional[str], body: Optional[str], app_name: str
    ) -> Optional[ContextChunk]:
        if not self.collecting:
            return None
        content = ": ".join(part for part in (title, body) if part)
        if len(content) < self.config.min_notification_length:
            return None
        name = app_name.lower()
        if name == "discord":
            source = ContextSource.DISCORD
        elif name == "slack":
            source = ContextSource.SLACK
        else:
            source = ContextSource.NOTIFICATION
        chunk = ContextChunk(
            source=source,
            content=content,
            entities=tuple(self.extractor.extract(content)),
            topic=classify_topic(content, app_name),
            metadata={"app": app_name},
            timestamp=self._clock(),
        )
        logger.debug("Queued notification from %s as %s", app_name, source.value)
        self._enqueue(chunk)
        return chunk

    def collect_from_clipboard(self, text: str) -> Optional[ContextChunk]:
        if not self.collecting or len(text) < self.config.min_notification_length:
            return None
        if is_noise(text, min_length=self.config.min_notification_length):
            return None
        chunk = ContextChunk(
            source=ContextSource.CLIPBOARD,
            content=text,
            entities=tuple(self.extractor.extract(text)),
            topic=classify_topic(text),
            metadata={"app": "Clipboard"},
            timestamp=self._clock(),
        )
        self._enqueue(chunk)
        return chunk

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def flush(self, *, wait: bool = False) -> Optional[Future]:
        """Store every pending chunk, on the executor unless ``wait`` is set."""

        with self._lock:
            batch, self._pending = self._pending, []
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
        if not batch:
            return None
        if self.executor is None or wait:
            self._store_batch(batch)
            return None
        future = self.executor.submit(self._store_batch, batch)
        future.add_done_callback(_log_failure)
        return future

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _collect_text(self, content: str, app_name: str, metadata: dict) -> Optional[ContextChunk]:
        if is_noise(content):
            logger.debug("Skipping noise from %s: %.50s", app_name, content)
            return None
        with self._lock:
            if self._digest(content) in self._hashes:
                return None
            window = list(self._recent_contents)[-self.config.similarity_window:]
            if any(jaccard_similarity(content, recent) >= self.config.similarity_threshold for recent in window):
                logger.debug("Skipping near-duplicate from %s", app_name)
                return None
            self._remember_hash(content)
            self._recent_contents.append(content)
        chunk = self._make_chunk(ContextSource.from_app_name(app_name), content, app_name, metadata)
        self._enqueue(chunk)
        return chunk

    def _make_chunk(self, source: ContextSource, content: str, app_name: str, metadata: dict) -> ContextChunk:
        return ContextChunk(
            source=source,
            content=content,
            entities=tuple(self.extractor.extract(content)),
            topic=classify_topic(content, app_name),
            metadata={str(key): str(value) for key, value in metadata.items()},
            timestamp=self._clock(),
        )

    @staticmethod
    def _digest(content: str) -> str:
        return hashlib.sha1(content.encode("utf-8")).hexdigest()

    def _remember_hash(self, content: str) -> bool:
        digest = self._digest(content)
        with self._lock:
            if digest in self._hashes:
                return False
            self._hashes[digest] = None
            while len(self._hashes) > self.config.hash_cache_size:
                self._hashes.popitem(last=False)
        return True

    def _enqueue(self, chunk: ContextChunk) -> None:
        with self._lock:
            self._pending.append(chunk)
            self.chunks_collected += 1
            full = len(self._pending) >= self.config.batch_size
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            if not full:
                self._timer = threading.Timer(self.config.batch_delay, self.flush)
                self._timer.daemon = True
                self._timer.start()
        if full:
            self.flush()

    def _store_batch(self, batch: List[ContextChunk]) -> None:
        embeddings: List[Optional[List[float]]] = [None] * len(batch)
        if self.embedder is not None and self.embedder.configured:
            result = self.embedder.embed_batch([chunk.content for chunk in batch])
            if result.ok and result.value is not None:
                embeddings = list(result.value) + [None] * (len(batch) - len(result.value))
            else:
                logger.warning("Storing %d chunks without embeddings: %s", len(batch), result.error)
        stored = 0
        for chunk, embedding in zip(batch, embeddings):
            try:
                self.store.insert(chunk.with_embedding(embedding) if embedding else chunk)
                stored += 1
            except StoreError as exc:
                logger.warning("Failed to store chunk %s: %s", chunk.id, exc)
        with self._lock:
            self.chunks_stored += stored
        logger.info("Stored %d of %d context chunks", stored, len(batch))


def _log_failure(future: Future) -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.error("Context batch failed", exc_info=exc)
