"""Reporting utilities for the suggestion service."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional

from .models import NotificationPayload


@dataclass(slots=True)
class Report:
    title: str
    summary_lines: List[str]

    def render_text(self) -> str:
        return "\n".join([self.title, "-" * len(self.title), *self.summary_lines])


def suggestion_report(
    history: Iterable[NotificationPayload],
    events_processed: int,
    *,
    suggestions_generated: Optional[int] = None,
    kind_of: Optional[Callable[[NotificationPayload], str]] = None,
) -> Report:
    payloads = list(history)
    generated = len(payloads) if suggestions_generated is None else suggestions_generated
    title = "Suggestion Statistics"
    if not events_processed:
        return Report(title=title, summary_lines=["No activity recorded."])
    rate = generated / events_processed
    lines = [
        f"Events processed: {events_processed}",
        f"Suggestions generated: {generated}",
        f"Suggestion rate: {rate:.1%}",
    ]
    classify = kind_of or (lambda payload: payload.task)
    breakdown = Counter(classify(payload) for payload in payloads)
    for kind, count in breakdown.most_common():
        lines.append(f"- {kind}: {count}")
    return Report(title=title, summary_lines=lines)
