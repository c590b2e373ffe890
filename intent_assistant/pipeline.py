"""End-to-end orchestration of context collection, intent analysis and actions."""

from __future__ import annotations

import logging
import sys
import threading
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from enum import Enum
from typing import Callable, Deque, List, Optional, Sequence

from .actions import ActionOutcome, AppleScriptAutomation, AutomationBackend, SimulatedAutomation
from .analyzer import IntentAnalyzer
from .clients import CompletionClient, EmbeddingClient, IntentClassifierClient
from .collector import ContextCollector
from .composer import (
    CalendarEventComposer,
    Contact,
    EmailDraftComposer,
    detects_calendar_intent,
)
from .config import AssistantConfig
from .entities import CONTENT_RULES, EntityExtractor
from .gate import HeuristicGate
from .models import (
    CalendarEventPayload,
    ContextChunk,
    EmailDraftPayload,
    Event,
    NotificationPayload,
    SystemState,
)
from .reporting import Report, suggestion_report
from .retriever import ContextRetriever
from .store import ContextStore
from .utils import Clock, utcnow

logger = logging.getLogger(__name__)

SuggestionListener = Callable[[NotificationPayload], None]

_EMAIL_MARKERS = ("mail", "email", "wyślij", "send", "maila")
_MESSAGE_MARKERS = ("message", "wiadomość", "slack", "discord")
_DOCUMENT_MARKERS = ("document", "dokument", "create", "utwórz")


class ActionKind(str, Enum):
    EMAIL = "email"
    CALENDAR = "calendar"
    MESSAGE = "message"
    DOCUMENT = "document"
    GENERIC = "generic"


def determine_action(payload: NotificationPayload) -> ActionKind:
    combined = f"{payload.task} {payload.suggested_action}".lower()
    if any(marker in combined for marker in _EMAIL_MARKERS):
        return ActionKind.EMAIL
    if detects_calendar_intent(payload.task):
        return ActionKind.CALENDAR
    if any(marker in combined for marker in _MESSAGE_MARKERS):
        return ActionKind.MESSAGE
    if any(marker in combined for marker in _DOCUMENT_MARKERS):
        return ActionKind.DOCUMENT
    return ActionKind.GENERIC


class AutomationSuggestionService:
    """Coordinates the modules required for proactive automation suggestions.

    Ingestion is synchronous and never raises: each event feeds the
    collector, then the analyzer's local gate. Only events that pass the
    gate are classified remotely, on the worker pool, and surfaced results
    are recorded through a completion callback.
    """

    def __init__(
        self,
        *,
        analyzer: IntentAnalyzer,
        collector: ContextCollector,
        email_composer: EmailDraftComposer,
        calendar_composer: CalendarEventComposer,
        automation: AutomationBackend,
        executor: ThreadPoolExecutor | None = None,
        history_size: int = 50,
    ) -> None:
        self.analyzer = analyzer
        self.collector = collector
        self.email_composer = email_composer
        self.calendar_composer = calendar_composer
        self.automation = automation
        self.executor = executor or ThreadPoolExecutor(max_workers=4, thread_name_prefix="intent")
        self._lock = threading.Lock()
        self._history: Deque[NotificationPayload] = deque(maxlen=history_size)
        self._listeners: List[SuggestionListener] = []
        self._closed = False
        self.enabled = False
        self.events_processed = 0
        self.suggestions_generated = 0
        self.last_suggestion: Optional[NotificationPayload] = None
        self.last_email_draft: Optional[EmailDraftPayload] = None
        self.last_calendar_event: Optional[CalendarEventPayload] = None

    def enable(self) -> None:
        self.enabled = True
        self.collector.start()
        logger.info("Automation suggestions enabled")

    def disable(self) -> None:
        self.enabled = False
        logger.info("Automation suggestions disabled")

    def subscribe(self, listener: SuggestionListener) -> None:
        self._listeners.append(listener)

    @property
    def history(self) -> List[NotificationPayload]:
        with self._lock:
            return list(self._history)

    def handle_event(self, event: Event) -> Optional[Future]:
        if not self.enabled or self._closed:
            return None
        with self._lock:
            self.events_processed += 1
        try:
            self.collector.collect_from_event(event)
            decision = self.analyzer.observe(event)
        except Exception:  # pragma: no cover - runtime safeguard
            logger.exception("Failed to process event from %s", event.app_name)
            return None
        if not decision.passed:
            return None
        future = self.executor.submit(self.analyzer.classify, event)
        future.add_done_callback(self._record_result)
        return future

    def handle_action(self, action_type: str, app_name: str, details: str) -> Optional[Future]:
        event = Event.from_details(details, action_type=action_type, app_name=app_name)
        return self.handle_event(event)

    def handle_text_change(self, text: str, app_name: str) -> Optional[Future]:
        event = Event(
            action_type="text_added",
            app_name=app_name,
            element_role="AXTextArea",
            text_content=text,
        )
        return self.handle_event(event)

    def handle_notification(self, title: Optional[str], body: Optional[str], app_name: str) -> Optional[ContextChunk]:
        if self._closed:
            return None
        try:
            return self.collector.collect_from_notification(title, body, app_name)
        except Exception:  # pragma: no cover - runtime safeguard
            logger.exception("Failed to collect notification from %s", app_name)
            return None

    def accept(self, payload: NotificationPayload) -> ActionOutcome:
        kind = determine_action(payload)
        state = self.analyzer.system_state
        if kind is ActionKind.EMAIL:
            return self._open_email(payload, state)
        if kind is ActionKind.CALENDAR:
            return self._create_event(payload, state)
        logger.info("No automation for %s suggestion %r", kind.value, payload.task)
        return ActionOutcome(status="skipped", detail=f"no automation for {kind.value}")

    def statistics(self) -> Report:
        return suggestion_report(
            self.history,
            self.events_processed,
            suggestions_generated=self.suggestions_generated,
            kind_of=lambda payload: determine_action(payload).value,
        )

    def shutdown(self, wait: bool = True) -> None:
        self.enabled = False
        self._closed = True
        self.collector.stop()
        self.executor.shutdown(wait=wait)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _record_result(self, future: Future) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.error("Intent classification failed", exc_info=exc)
            return
        payload = future.result()
        if payload is None or self._closed:
            return
        with self._lock:
            self._history.appendleft(payload)
            self.suggestions_generated += 1
            self.last_suggestion = payload
        logger.info(
            "Surfaced %s suggestion %r (%.0f%%)",
            determine_action(payload).value,
            payload.task,
            payload.confidence * 100,
        )
        for listener in list(self._listeners):
            try:
                listener(payload)
            except Exception:  # pragma: no cover - runtime safeguard
                logger.exception("Suggestion listener failed")

    def _open_email(self, payload: NotificationPayload, state: SystemState) -> ActionOutcome:
        draft = self.email_composer.compose(payload.task, state)
        if draft is None:
            logger.warning("No email draft available for %r; opening an empty draft", payload.task)
            return self._dispatch_mail(None, None, None)
        self.last_email_draft = draft
        if draft.is_actionable:
            return self._dispatch_mail(draft.recipient, draft.email_subject or None, draft.email_body)
        logger.info("Email draft incomplete: %s", draft.missing_info)
        return self._dispatch_mail(draft.recipient, draft.email_subject or None, None)

    def _create_event(self, payload: NotificationPayload, state: SystemState) -> ActionOutcome:
        event = self.calendar_composer.compose(payload.task, state)
        if event is None:
            return ActionOutcome(status="skipped", detail="calendar composition unavailable")
        self.last_calendar_event = event
        if not event.is_actionable:
            reason = event.why_not_creatable or event.missing_info or "event not actionable"
            logger.info("Calendar event not created: %s", reason)
            return ActionOutcome(status="skipped", detail=reason)
        outcome = self.automation.create_calendar_event(
            event.event_title,
            event.start_date,
            event.end_date,
            location=event.location,
            notes=event.notes,
            attendee_email=event.attendee_email,
        )
        self._log_outcome("calendar event", outcome)
        return outcome

    def _dispatch_mail(self, to: Optional[str], subject: Optional[str], body: Optional[str]) -> ActionOutcome:
        outcome = self.automation.open_mail_draft(to, subject, body)
        self._log_outcome("mail draft", outcome)
        return outcome

    @staticmethod
    def _log_outcome(label: str, outcome: ActionOutcome) -> None:
        if outcome.succeeded:
            logger.info("Opened %s (%s)", label, outcome.detail)
        else:
            logger.warning("Could not open %s: %s", label, outcome.detail)


def default_automation(calendar_name: Optional[str] = None) -> AutomationBackend:
    if sys.platform == "darwin":
        return AppleScriptAutomation(calendar_name)
    return SimulatedAutomation()


def build_service(
    config: AssistantConfig,
    *,
    store: ContextStore | None = None,
    classifier: IntentClassifierClient | None = None,
    completion: CompletionClient | None = None,
    embedder: EmbeddingClient | None = None,
    automation: AutomationBackend | None = None,
    contacts: Sequence[Contact] = (),
    clock: Clock = utcnow,
) -> AutomationSuggestionService:
    """Wire every collaborator from configuration; explicit arguments win."""

    clients = config.clients
    store = store or ContextStore(config.db_path)
    classifier = classifier or IntentClassifierClient(clients.classifier_url, timeout=clients.timeout)
    completion = completion or CompletionClient(
        clients.anthropic_api_key,
        model=clients.completion_model,
        max_tokens=clients.completion_max_tokens,
        timeout=clients.timeout,
    )
    embedder = embedder or EmbeddingClient(
        clients.openai_api_key, model=clients.embedding_model, timeout=clients.timeout
    )
    owner = [config.owner_name] if config.owner_name else []
    executor = ThreadPoolExecutor(max_workers=config.max_workers, thread_name_prefix="intent")
    collector = ContextCollector(
        store,
        EntityExtractor(CONTENT_RULES, ignored_values=owner),
        embedder,
        config.collector,
        executor=executor,
        clock=clock,
    )
    retriever = ContextRetriever(store, EntityExtractor(), embedder, config.retriever, clock=clock)
    analyzer = IntentAnalyzer(
        classifier,
        HeuristicGate(config.gate),
        config.buffer,
        cooldown=config.cooldown,
        clock=clock,
    )
    return AutomationSuggestionService(
        analyzer=analyzer,
        collector=collector,
        email_composer=EmailDraftComposer(completion, retriever, clock=clock),
        calendar_composer=CalendarEventComposer(
            completion, retriever, contacts, config.owner_name, clock=clock
        ),
        automation=automation or default_automation(config.calendar_name),
        executor=executor,
        history_size=config.history_size,
    )
