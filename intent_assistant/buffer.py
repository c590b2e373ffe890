"""Bounded event buffer and suggestion cooldown."""

from __future__ import annotations

import threading
from collections import deque
from datetime import datetime
from typing import Deque, List, Optional

from .config import CooldownPolicy
from .models import BufferedEvent, Event
from .utils import Clock, utcnow


class EventBuffer:
    """Fixed-capacity ring of recent events; overflow evicts the oldest entry."""

    def __init__(self, capacity: int = 100, *, clock: Clock = utcnow) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._clock = clock
        self._lock = threading.Lock()
        self._buffer: Deque[BufferedEvent] = deque(maxlen=capacity)

    def push(self, event: Event) -> BufferedEvent:
        entry = BufferedEvent(event=event, inserted_at=self._clock())
        with self._lock:
            self._buffer.append(entry)
        return entry

    def recent(self, k: int | None = None) -> List[BufferedEvent]:
        with self._lock:
            entries = list(self._buffer)
        if k is None:
            return entries
        return entries[-k:] if k > 0 else []

    def events(self, k: int | None = None) -> List[Event]:
        return [entry.event for entry in self.recent(k)]

    def clear(self) -> None:
        with self._lock:
            self._buffer.clear()

    def __len__(self) -> int:
        return len(self._buffer)


class CooldownClock:
    """Tracks when the last suggestion was surfaced."""

    def __init__(self, policy: CooldownPolicy | None = None, *, clock: Clock = utcnow) -> None:
        self.policy = policy or CooldownPolicy()
        self._clock = clock
        self._last_mark: Optional[datetime] = None

    def mark(self) -> None:
        self._last_mark = self._clock()

    def elapsed(self) -> Optional[float]:
        """Seconds since the last mark, or ``None`` when nothing was surfaced yet."""

        if self._last_mark is None:
            return None
        return (self._clock() - self._last_mark).total_seconds()

    def ready(self) -> bool:
        if not self.policy.enabled:
            return True
        elapsed = self.elapsed()
        return elapsed is None or elapsed >= self.policy.seconds

    def reset(self) -> None:
        self._last_mark = None
