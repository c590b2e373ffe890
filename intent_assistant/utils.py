"""Utilities supporting intent assistant modules."""

from __future__ import annotations

import json
import re
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Sequence

Clock = Callable[[], datetime]

_DATETIME_FORMATS = (
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
)


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""

    return datetime.now(timezone.utc)


def generate_id(prefix: str = "") -> str:
    """Generate a globally unique identifier, optionally with a readable prefix."""

    suffix = uuid.uuid4().hex
    return f"{prefix}_{suffix}" if prefix else suffix


def serialize_vector(vector: Optional[Sequence[float]]) -> Optional[str]:
    """Serialize vector to JSON for persistence."""

    if vector is None:
        return None
    return json.dumps([float(v) for v in vector], ensure_ascii=True)


def deserialize_vector(serialized: Optional[str]) -> Optional[tuple[float, ...]]:
    """Read vector from stored JSON text."""

    if not serialized:
        return None
    return tuple(float(v) for v in json.loads(serialized))


def parse_datetime(raw: Any, *, assume_local: bool = False) -> Optional[datetime]:
    """Parse epoch seconds, ISO 8601 strings, or datetimes into aware values.

    Naive values are taken as UTC, or as local wall-clock time when
    ``assume_local`` is set.
    """

    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        value = raw
    elif isinstance(raw, (int, float)):
        return datetime.fromtimestamp(raw, tz=timezone.utc)
    elif isinstance(raw, str):
        text = raw.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            value = datetime.fromisoformat(text)
        except ValueError:
            value = None
            for fmt in _DATETIME_FORMATS:
                try:
                    value = datetime.strptime(text, fmt)
                    break
                except ValueError:
                    continue
            if value is None:
                return None
    else:
        return None
    if value.tzinfo is None:
        return value.astimezone() if assume_local else value.replace(tzinfo=timezone.utc)
    return value


def format_time_ago(moment: datetime, now: datetime) -> str:
    seconds = (now - moment).total_seconds()
    if seconds < 60:
        return "just now"
    if seconds < 3600:
        return f"{int(seconds // 60)}m ago"
    if seconds < 86400:
        return f"{int(seconds // 3600)}h ago"
    return f"{int(seconds // 86400)}d ago"


def truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 3].rstrip() + "..."


_WORD_SPLIT = re.compile(r"\s+")


def content_words(text: str, *, min_length: int) -> set[str]:
    """Lowercased whitespace-separated words of at least ``min_length`` chars."""

    return {word for word in _WORD_SPLIT.split(text.lower()) if len(word) >= min_length}


def extract_json_object(text: str) -> Optional[Dict[str, Any]]:
    """Parse the first ``{`` ... last ``}`` span of a model response.

    Models frequently wrap their JSON in prose or code fences; everything
    outside the outermost braces is ignored. Returns ``None`` when no object
    can be decoded.
    """

    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    try:
        payload = json.loads(text[start : end + 1])
    except json.JSONDecodeError:
        return None
    return payload if isinstance(payload, dict) else None


def hours_between(earlier: datetime, later: datetime) -> float:
    return (later - earlier) / timedelta(hours=1)
