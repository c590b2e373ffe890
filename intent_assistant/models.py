"""Data models for the context and intent pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from .utils import generate_id, parse_datetime, utcnow


class ContextSource(str, Enum):
    OCR = "ocr"
    NOTIFICATION = "notification"
    USER_ACTION = "user_action"
    MAIL = "mail"
    SLACK = "slack"
    DISCORD = "discord"
    CALENDAR = "calendar"
    NOTES = "notes"
    CLIPBOARD = "clipboard"
    BROWSER = "browser"
    TERMINAL = "terminal"
    DOCUMENT = "document"
    ACCESSIBILITY = "accessibility"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, raw: str | None) -> "ContextSource":
        try:
            return cls(raw or "unknown")
        except ValueError:
            return cls.UNKNOWN

    @classmethod
    def from_app_name(cls, app_name: str) -> "ContextSource":
        name = app_name.strip().lower()
        direct = {
            "slack": cls.SLACK,
            "mail": cls.MAIL,
            "discord": cls.DISCORD,
            "calendar": cls.CALENDAR,
            "notes": cls.NOTES,
        }
        if name in direct:
            return direct[name]
        if name in {"safari", "chrome", "google chrome", "firefox", "arc", "edge"}:
            return cls.BROWSER
        if name in {"terminal", "iterm", "iterm2", "warp"}:
            return cls.TERMINAL
        if name in {"pages", "word", "microsoft word", "google docs"}:
            return cls.DOCUMENT
        return cls.ACCESSIBILITY


class EntityType(str, Enum):
    PERSON = "person"
    COMPANY = "company"
    PROJECT = "project"
    EMAIL = "email"
    MONEY = "money"
    LOCATION = "location"
    OTHER = "other"


@dataclass(slots=True, frozen=True)
class Entity:
    """Typed named value extracted from free text."""

    type: EntityType
    value: str
    confidence: float = 1.0

    def matches(self, other: "Entity") -> bool:
        """Same type and ``other.value`` contains ours, ignoring case."""

        return self.type == other.type and self.value.casefold() in other.value.casefold()

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type.value, "value": self.value, "confidence": self.confidence}

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "Entity":
        try:
            entity_type = EntityType(payload.get("type", "other"))
        except ValueError:
            entity_type = EntityType.OTHER
        return cls(
            type=entity_type,
            value=str(payload.get("value", "")),
            confidence=float(payload.get("confidence", 1.0)),
        )


@dataclass(slots=True, frozen=True)
class ContextChunk:
    """Stored, timestamped unit of observed text with provenance."""

    source: ContextSource
    content: str
    entities: tuple[Entity, ...] = ()
    topic: Optional[str] = None
    embedding: Optional[tuple[float, ...]] = None
    metadata: Dict[str, str] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)
    id: str = field(default_factory=generate_id)

    def age(self, now: datetime | None = None) -> timedelta:
        return (now or utcnow()) - self.timestamp

    def with_embedding(self, embedding: Optional[List[float]]) -> "ContextChunk":
        return ContextChunk(
            source=self.source,
            content=self.content,
            entities=self.entities,
            topic=self.topic,
            embedding=tuple(embedding) if embedding else None,
            metadata=dict(self.metadata),
            timestamp=self.timestamp,
            id=self.id,
        )


@dataclass(slots=True)
class Event:
    """A single observed UI / accessibility event."""

    action_type: str
    app_name: str
    element_role: Optional[str] = None
    element_title: Optional[str] = None
    text_content: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)

    @classmethod
    def from_details(cls, details: str, *, action_type: str, app_name: str) -> "Event":
        """Build an event from a ``"Role: X | Element: Y | Value: Z"`` string."""

        if "Role:" not in details:
            return cls(action_type=action_type, app_name=app_name, text_content=details or None)
        parts = [part.strip() for part in details.split("|")]

        def _field(label: str) -> Optional[str]:
            for part in parts:
                if part.startswith(label):
                    return part[len(label):].strip()
            return None

        return cls(
            action_type=action_type,
            app_name=app_name,
            element_role=_field("Role:"),
            element_title=_field("Element:"),
            text_content=_field("Value:"),
        )

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "Event":
        ts = parse_datetime(payload.get("ts") or payload.get("timestamp"))
        return cls(
            action_type=payload.get("action_type", "unknown"),
            app_name=payload.get("app", payload.get("app_name", "Unknown")),
            element_role=payload.get("role", payload.get("element_role")),
            element_title=payload.get("title", payload.get("element_title")),
            text_content=payload.get("text", payload.get("text_content")),
            timestamp=ts or utcnow(),
        )


@dataclass(slots=True)
class BufferedEvent:
    event: Event
    inserted_at: datetime


@dataclass(slots=True)
class SystemState:
    """Ephemeral snapshot rebuilt on every incoming event."""

    active_app: str = ""
    active_element: Optional[str] = None
    recent_texts: List[str] = field(default_factory=list)
    last_actions: List[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(slots=True)
class NotificationPayload:
    """Automation suggestion surfaced to the user."""

    task: str
    confidence: float
    suggested_action: str
    reason: str
    app_name: str = ""
    element_role: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)

    def is_actionable(self, threshold: float = 0.6) -> bool:
        return self.confidence >= threshold


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    if not text or text.lower() in {"null", "none"}:
        return None
    return text


def _as_float(value: Any) -> float:
    try:
        return max(0.0, min(1.0, float(value)))
    except (TypeError, ValueError):
        return 0.0


@dataclass(slots=True)
class EmailDraftPayload:
    """Structured email draft returned by the completion model."""

    should_compose_email: bool
    inferred_task: str = ""
    confidence: float = 0.0
    value_added_context_used: List[str] = field(default_factory=list)
    email_subject: str = ""
    email_body: str = ""
    recipient: Optional[str] = None
    missing_info: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)

    @property
    def is_actionable(self) -> bool:
        return self.should_compose_email and self.confidence >= 0.7

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "EmailDraftPayload":
        if "should_compose_email" not in payload:
            raise ValueError("should_compose_email is required")
        return cls(
            should_compose_email=bool(payload.get("should_compose_email")),
            inferred_task=str(payload.get("inferred_task") or ""),
            confidence=_as_float(payload.get("confidence", 0.0)),
            value_added_context_used=[str(item) for item in payload.get("value_added_context_used") or []],
            email_subject=str(payload.get("email_subject") or ""),
            email_body=str(payload.get("email_body") or ""),
            recipient=_optional_str(payload.get("recipient")),
            missing_info=_optional_str(payload.get("missing_info")),
        )


@dataclass(slots=True)
class CalendarEventPayload:
    """Structured calendar event returned by the completion model."""

    should_create_event: bool
    inferred_task: str = ""
    confidence: float = 0.0
    value_added_context_used: List[str] = field(default_factory=list)
    event_title: str = ""
    start_time: str = ""
    end_time: str = ""
    location: Optional[str] = None
    notes: Optional[str] = None
    attendee_email: Optional[str] = None
    attendee_name: Optional[str] = None
    missing_info: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)

    @property
    def start_date(self) -> Optional[datetime]:
        return parse_datetime(self.start_time, assume_local=True)

    @property
    def end_date(self) -> Optional[datetime]:
        end = parse_datetime(self.end_time, assume_local=True)
        if end is None and self.start_date is not None:
            return self.start_date + timedelta(hours=1)
        return end

    @property
    def is_actionable(self) -> bool:
        return (
            self.should_create_event
            and self.confidence >= 0.7
            and bool(self.event_title)
            and self.start_date is not None
        )

    @property
    def why_not_creatable(self) -> Optional[str]:
        if self.should_create_event:
            return None
        return self.missing_info or "Not enough information to create calendar event"

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "CalendarEventPayload":
        if "should_create_event" not in payload:
            raise ValueError("should_create_event is required")
        return cls(
            should_create_event=bool(payload.get("should_create_event")),
            inferred_task=str(payload.get("inferred_task") or ""),
            confidence=_as_float(payload.get("confidence", 0.0)),
            value_added_context_used=[str(item) for item in payload.get("value_added_context_used") or []],
            event_title=str(payload.get("event_title") or ""),
            start_time=str(payload.get("start_time") or ""),
            end_time=str(payload.get("end_time") or ""),
            location=_optional_str(payload.get("location")),
            notes=_optional_str(payload.get("notes")),
            attendee_email=_optional_str(payload.get("attendee_email")),
            attendee_name=_optional_str(payload.get("attendee_name")),
            missing_info=_optional_str(payload.get("missing_info")),
        )


__all__ = [
    "BufferedEvent",
    "CalendarEventPayload",
    "ContextChunk",
    "ContextSource",
    "EmailDraftPayload",
    "Entity",
    "EntityType",
    "Event",
    "NotificationPayload",
    "SystemState",
]
