"""Local heuristic gate deciding whether recent activity is worth classifying."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Sequence

from .config import GateConfig
from .models import BufferedEvent, SystemState

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class GateDecision:
    score: float
    passed: bool
    reason: str


class HeuristicGate:
    """Scores the recent event window without any remote call."""

    def __init__(self, config: GateConfig | None = None) -> None:
        self.config = config or GateConfig()

    def score(self, buffered_events: Sequence[BufferedEvent], state: SystemState) -> float:
        return self._score(buffered_events, state)[0]

    def evaluate(self, buffered_events: Sequence[BufferedEvent], state: SystemState) -> GateDecision:
        score, reason = self._score(buffered_events, state)
        passed = score >= self.config.threshold
        if passed and not reason:
            reason = "passed"
        elif not reason:
            reason = "below_threshold"
        logger.debug("Gate score %.2f for %s (%s)", score, state.active_app or "unknown app", reason)
        return GateDecision(score=score, passed=passed, reason=reason)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _score(self, buffered_events: Sequence[BufferedEvent], state: SystemState) -> tuple[float, str]:
        config = self.config
        window = [entry.event for entry in list(buffered_events)[-config.window:]]
        texts = [event.text_content for event in window if event.text_content]
        if not texts:
            return 0.0, "no_text"
        if _matches_app(state.active_app, config.system_apps):
            return 0.0, "system_app"
        if sum(len(text) for text in texts) < config.min_total_text_length:
            return 0.0, "text_too_short"

        score = config.base_weight
        typing_events = sum(
            1
            for event in window
            if any(marker in event.action_type for marker in config.typing_markers)
        )
        if typing_events >= config.min_typing_events:
            score += config.typing_weight
        if _matches_app(state.active_app, config.communication_apps):
            score += config.communication_weight
        if state.active_element in config.input_roles:
            score += config.input_role_weight
        return max(0.0, min(1.0, score)), ""


def _matches_app(app_name: str | None, names: Iterable[str]) -> bool:
    if not app_name:
        return False
    wanted = app_name.casefold()
    return any(name.casefold() == wanted for name in names)
