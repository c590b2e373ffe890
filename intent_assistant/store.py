"""SQLite-backed context store with an in-memory embedding cache."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from collections import OrderedDict
from contextlib import closing
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Sequence

import numpy as np

from .models import ContextChunk, ContextSource, Entity, EntityType
from .utils import deserialize_vector, serialize_vector, utcnow

logger = logging.getLogger(__name__)

EMBEDDING_CACHE_LIMIT = 5000


def _timestamp_key(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


class StoreError(RuntimeError):
    """Raised when the context store cannot complete an operation."""


class DuplicateChunkError(StoreError):
    """Raised when a chunk with an existing id is inserted."""


class ContextStore:
    """Append-only persistence for context chunks plus semantic lookup.

    All access goes through a single re-entrant lock, so the store can be
    shared between the ingestion thread and retrieval calls. Embeddings of
    the newest chunks are mirrored in memory (capped) and scanned with
    numpy cosine similarity.
    """

    def __init__(self, db_path: str | Path = ":memory:") -> None:
        self.db_path = str(db_path)
        self._lock = threading.RLock()
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._embeddings: "OrderedDict[str, np.ndarray]" = OrderedDict()
        self._ensure_schema()
        self._load_embedding_cache()

    def _ensure_schema(self) -> None:
        with self._lock, closing(self.conn.cursor()) as cur:
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS context_chunks (
                    id TEXT PRIMARY KEY,
                    source TEXT NOT NULL,
                    content TEXT NOT NULL,
                    entities TEXT NOT NULL,
                    topic TEXT,
                    embedding TEXT,
                    metadata TEXT NOT NULL,
                    timestamp TEXT NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_context_chunks_timestamp
                ON context_chunks(timestamp)
                """
            )
            cur.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_context_chunks_source
                ON context_chunks(source)
                """
            )
            self.conn.commit()

    def insert(self, chunk: ContextChunk) -> None:
        payload = (
            chunk.id,
            chunk.source.value,
            chunk.content,
            json.dumps([entity.to_dict() for entity in chunk.entities], ensure_ascii=False),
            chunk.topic,
            serialize_vector(chunk.embedding),
            json.dumps(chunk.metadata, ensure_ascii=False),
            _timestamp_key(chunk.timestamp),
        )
        with self._lock:
            try:
                with self.conn:
                    self.conn.execute(
                        """
                        INSERT INTO context_chunks
                            (id, source, content, entities, topic, embedding, metadata, timestamp)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        payload,
                    )
            except sqlite3.IntegrityError as exc:
                raise DuplicateChunkError(f"chunk {chunk.id} already stored") from exc
            except sqlite3.Error as exc:
                raise StoreError(str(exc)) from exc
            if chunk.embedding:
                self._cache_embedding(chunk.id, chunk.embedding)

    def recent(self, source: ContextSource | None = None, limit: int = 50) -> List[ContextChunk]:
        if source is None:
            query, params = "SELECT * FROM context_chunks ORDER BY timestamp DESC LIMIT ?", (limit,)
        else:
            query = "SELECT * FROM context_chunks WHERE source = ? ORDER BY timestamp DESC LIMIT ?"
            params = (source.value, limit)
        return self._fetch(query, params)

    def search_text(self, query: str, limit: int = 20) -> List[ContextChunk]:
        if not query:
            return []
        escaped = query.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        return self._fetch(
            """
            SELECT * FROM context_chunks
            WHERE lower(content) LIKE ? ESCAPE '\\'
            ORDER BY timestamp DESC LIMIT ?
            """,
            (f"%{escaped}%", limit),
        )

    def search_similar(self, embedding: Sequence[float], top_k: int = 10) -> List[ContextChunk]:
        query = np.asarray(embedding, dtype=np.float32)
        query_norm = float(np.linalg.norm(query))
        if not query.size or not query_norm:
            return []
        with self._lock:
            cached = list(self._embeddings.items())
        scored: list[tuple[float, str]] = []
        for chunk_id, vector in cached:
            if vector.shape != query.shape:
                continue
            norm = float(np.linalg.norm(vector))
            if not norm:
                continue
            score = float(np.dot(query, vector) / (query_norm * norm))
            if score > 0:
                scored.append((score, chunk_id))
        scored.sort(key=lambda item: item[0], reverse=True)
        chunks: List[ContextChunk] = []
        for _, chunk_id in scored[:top_k]:
            chunk = self.fetch(chunk_id)
            if chunk is not None:
                chunks.append(chunk)
        return chunks

    def get_by_entity(self, entity_type: EntityType, value: str, limit: int = 50) -> List[ContextChunk]:
        if not value:
            return []
        needle = value.casefold()
        rows = self._fetch(
            """
            SELECT * FROM context_chunks
            WHERE entities LIKE ?
            ORDER BY timestamp DESC
            """,
            (f'%"type": "{entity_type.value}"%',),
        )
        wanted = Entity(type=entity_type, value=needle)
        matches = [
            chunk for chunk in rows if any(wanted.matches(entity) for entity in chunk.entities)
        ]
        return matches[:limit]

    def fetch(self, chunk_id: str) -> ContextChunk | None:
        rows = self._fetch("SELECT * FROM context_chunks WHERE id = ?", (chunk_id,))
        return rows[0] if rows else None

    def count(self) -> int:
        with self._lock, closing(self.conn.cursor()) as cur:
            cur.execute("SELECT COUNT(*) FROM context_chunks")
            return int(cur.fetchone()[0])

    def prune_older_than(self, days: int, *, now: datetime | None = None) -> int:
        cutoff = (now or utcnow()) - timedelta(days=days)
        with self._lock:
            with self.conn:
                cursor = self.conn.execute(
                    "DELETE FROM context_chunks WHERE timestamp < ?", (_timestamp_key(cutoff),)
                )
            removed = cursor.rowcount
            self._embeddings.clear()
            self._load_embedding_cache()
        if removed:
            logger.info("Pruned %d context chunks older than %d days", removed, days)
        return removed

    def close(self) -> None:
        with self._lock:
            self.conn.close()

    def __enter__(self) -> "ContextStore":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _fetch(self, query: str, params: tuple) -> List[ContextChunk]:
        with self._lock:
            try:
                with closing(self.conn.cursor()) as cur:
                    cur.execute(query, params)
                    rows = cur.fetchall()
            except sqlite3.Error as exc:
                raise StoreError(str(exc)) from exc
        return [self._row_to_chunk(row) for row in rows]

    def _load_embedding_cache(self) -> None:
        with self._lock, closing(self.conn.cursor()) as cur:
            cur.execute(
                """
                SELECT id, embedding FROM context_chunks
                WHERE embedding IS NOT NULL
                ORDER BY timestamp DESC LIMIT ?
                """,
                (EMBEDDING_CACHE_LIMIT,),
            )
            rows = cur.fetchall()
        for row in reversed(rows):
            vector = deserialize_vector(row["embedding"])
            if vector:
                self._cache_embedding(row["id"], vector)

    def _cache_embedding(self, chunk_id: str, embedding: Sequence[float]) -> None:
        self._embeddings[chunk_id] = np.asarray(embedding, dtype=np.float32)
        while len(self._embeddings) > EMBEDDING_CACHE_LIMIT:
            self._embeddings.popitem(last=False)

    @staticmethod
    def _row_to_chunk(row: sqlite3.Row) -> ContextChunk:
        entities = tuple(Entity.from_dict(item) for item in json.loads(row["entities"] or "[]"))
        metadata = json.loads(row["metadata"] or "{}")
        return ContextChunk(
            id=row["id"],
            source=ContextSource.parse(row["source"]),
            content=row["content"],
            entities=entities,
            topic=row["topic"],
            embedding=deserialize_vector(row["embedding"]),
            metadata={str(k): str(v) for k, v in metadata.items()},
            timestamp=datetime.fromisoformat(row["timestamp"]),
        )


__all__ = ["ContextStore", "DuplicateChunkError", "StoreError", "EMBEDDING_CACHE_LIMIT"]
