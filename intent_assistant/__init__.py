"""Intent assistant core package: context collection, intent detection and grounded drafts."""

from .analyzer import IntentAnalyzer
from .config import AssistantConfig, load_config, setup_logging
from .entities import EntityExtractor
from .models import (
    CalendarEventPayload,
    ContextChunk,
    ContextSource,
    EmailDraftPayload,
    Entity,
    EntityType,
    Event,
    NotificationPayload,
)
from .pipeline import AutomationSuggestionService, build_service
from .retriever import ContextRetriever, build_context_string
from .store import ContextStore

__all__ = [
    "AutomationSuggestionService",
    "build_service",
    "IntentAnalyzer",
    "ContextRetriever",
    "ContextStore",
    "EntityExtractor",
    "build_context_string",
    "AssistantConfig",
    "load_config",
    "setup_logging",
    "CalendarEventPayload",
    "ContextChunk",
    "ContextSource",
    "EmailDraftPayload",
    "Entity",
    "EntityType",
    "Event",
    "NotificationPayload",
]
