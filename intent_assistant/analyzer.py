"""Intent analysis over the stream of UI events."""

from __future__ import annotations

import logging
import threading
from typing import List, Optional

from .buffer import CooldownClock, EventBuffer
from .clients import IntentClassifierClient
from .config import BufferConfig, CooldownPolicy
from .gate import GateDecision, HeuristicGate
from .models import Event, NotificationPayload, SystemState
from .utils import Clock, utcnow

logger = logging.getLogger(__name__)


class IntentAnalyzer:
    """Buffers events, gates them locally and asks the classifier about survivors.

    ``observe`` is the cheap synchronous half: it updates the buffer and the
    derived system state and decides whether a remote call is warranted.
    ``classify`` is the remote half and may be run on a worker thread.
    """

    def __init__(
        self,
        classifier: IntentClassifierClient,
        gate: HeuristicGate | None = None,
        config: BufferConfig | None = None,
        *,
        cooldown: CooldownPolicy | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self.classifier = classifier
        self.gate = gate or HeuristicGate()
        self.config = config or BufferConfig()
        self._clock = clock
        self.buffer = EventBuffer(self.config.capacity, clock=clock)
        self.cooldown = CooldownClock(cooldown, clock=clock)
        self._state = SystemState(timestamp=clock())
        self._state_lock = threading.Lock()
        self.last_payload: Optional[NotificationPayload] = None

    @property
    def system_state(self) -> SystemState:
        with self._state_lock:
            return self._state

    def observe(self, event: Event) -> GateDecision:
        self.buffer.push(event)
        self._update_state(event)
        if not self.cooldown.ready():
            logger.debug("Cooldown active; skipping gate for %s", event.app_name)
            return GateDecision(score=0.0, passed=False, reason="cooldown")
        return self.gate.evaluate(self.buffer.recent(), self.system_state)

    def classify(self, event: Event) -> Optional[NotificationPayload]:
        content = event.text_content
        if not content:
            return None
        result = self.classifier.classify(content)
        if not result.ok or result.value is None:
            logger.debug("Classifier returned %s: %s", result.status.value, result.error)
            return None
        state = self.system_state
        payload = NotificationPayload(
            task=result.value.action,
            confidence=max(0.0, min(1.0, result.value.score)),
            suggested_action=f"Perform {result.value.action} action",
            reason="Detected intent from your recent activity",
            app_name=state.active_app,
            element_role=state.active_element,
            timestamp=self._clock(),
        )
        if not payload.is_actionable(self.config.notification_threshold):
            logger.debug(
                "Classifier confidence %.2f below %.2f for %r",
                payload.confidence,
                self.config.notification_threshold,
                payload.task,
            )
            return None
        self.cooldown.mark()
        self.last_payload = payload
        logger.info("Suggestion %r (confidence %.2f) from %s", payload.task, payload.confidence, payload.app_name)
        return payload

    def process_event(self, event: Event) -> Optional[NotificationPayload]:
        decision = self.observe(event)
        if not decision.passed:
            return None
        return self.classify(event)

    def process_action(self, action_type: str, app_name: str, details: str) -> Optional[NotificationPayload]:
        event = Event.from_details(details, action_type=action_type, app_name=app_name)
        return self.process_event(event)

    def recent_events(self, limit: int = 50) -> List[Event]:
        return self.buffer.events(limit)

    def build_llm_context(self) -> str:
        """Render the system state and the last 20 events as prompt text."""

        state = self.system_state
        lines = [
            "SYSTEM STATE:",
            f"Active App: {state.active_app}",
            f"Active Element: {state.active_element or 'unknown'}",
            "",
            "RECENT EVENTS (last 20):",
        ]
        for event in self.buffer.events(20):
            line = f"[{event.action_type}] App: {event.app_name}"
            if event.element_role:
                line += f" | Role: {event.element_role}"
            if event.text_content:
                line += f' | Text: "{event.text_content[:100]}"'
            lines.append(f"- {line}")
        context = "\n".join(lines)
        if state.recent_texts:
            context += "\n\nRECENT TEXT CONTENT:\n"
            for text in state.recent_texts[:5]:
                context += f'- "{text[:200]}"\n'
        return context

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _update_state(self, event: Event) -> None:
        recent = self.buffer.events(self.config.state_text_window)
        texts = [
            item.text_content
            for item in recent
            if item.text_content and len(item.text_content) > 5
        ]
        actions = [item.action_type for item in self.buffer.events(self.config.state_action_window)]
        state = SystemState(
            active_app=event.app_name,
            active_element=event.element_role,
            recent_texts=texts,
            last_actions=actions,
            timestamp=self._clock(),
        )
        with self._state_lock:
            self._state = state
