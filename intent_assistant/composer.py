"""Email and calendar draft composition grounded in retrieved context."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from typing import List, Optional, Sequence

from .clients import CompletionClient
from .models import CalendarEventPayload, EmailDraftPayload, SystemState
from .retriever import NO_CONTEXT_SENTINEL, ContextRetriever
from .utils import Clock, extract_json_object, utcnow

logger = logging.getLogger(__name__)

EMAIL_INTENT_KEYWORDS = (
    "wyślij mail", "napisz mail", "wyślij email", "napisz email",
    "wyślij maila", "napisz maila", "odpowiedz na mail",
    "mail do", "email do", "wiadomość do", "napisz do",
    "send email", "write email", "compose email", "email to",
    "send mail", "write mail", "reply to email", "draft email",
)
CALENDAR_INTENT_KEYWORDS = (
    "schedule", "meeting", "calendar", "event", "appointment",
    "let's meet", "catch up", "sync up", "call", "chat today",
    "meet today", "meet tomorrow", "coffee", "lunch",
    "spotkanie", "kalendarz", "umówmy się", "pogadajmy",
    "zadzwoń", "spotkajmy się",
)

GREETINGS_AND_CLOSINGS = (
    "Dzień dobry,", "Cześć,", "Witam,", "Pozdrawiam", "Z poważaniem", "Do usłyszenia",
    "Hi,", "Hello,", "Best regards", "Kind regards", "Thanks", "Thank you",
)
INVALID_BODY_PATTERNS = (
    "send email", "send mail", "wyślij mail", "wyślij email",
    "compose email", "open email", "write email", "draft email",
    "automate", "process of sending",
    "email to", "mail to", "napisz do", "mail do",
    "[", "]",
    "dear client", "dear customer",
    "@",
)
PLACEHOLDER_TITLES = frozenset({"meeting title", "event title", "untitled", "title", "null", "none"})
MIN_BODY_LENGTH = 20

EMAIL_MISSING_INFO = "Not enough context to write this email. Say who it is for and what it should cover."
CALENDAR_MISSING_START = "Could not determine when the event should start."
CALENDAR_MISSING_TITLE = "Could not determine a title for the event."

EMAIL_SYSTEM_PROMPT = """You are an email composition assistant.

ABSOLUTE RULES - NEVER BREAK THESE:
1. NEVER copy the user's command into email_body
2. NEVER put email addresses in the email body text
3. If you don't know WHAT to write about, set should_compose_email=false
4. email_body must be a REAL message someone would send

EXAMPLES OF INVALID email_body:
- "Open email app and compose email to X"
- "send email to client"
- Any text containing an @ symbol

If the user's intent is vague (no specific topic), return:
{"should_compose_email": false, "missing_info": "Specify what the email should be about"}

Respond ONLY with valid JSON."""

CALENDAR_SYSTEM_PROMPT = """You are a calendar event assistant. Your job is to parse meeting requests and create calendar events.

NOTIFICATION PRIORITY:
Notification context is your primary source of truth. It contains the actual meeting requests.
The sender of the notification should be the attendee.

RULES:
1. Set should_create_event=true for any meeting or calendar intent
2. Use ISO 8601 format for all times: YYYY-MM-DDTHH:MM:SS
3. Take the attendee email from context or from the known contacts
4. Make reasonable time assumptions if none is given
5. Keep event titles concise but descriptive

Respond ONLY with valid JSON."""


@dataclass(slots=True)
class WritingStyle:
    preferred_language: str
    formality: str
    greetings: List[str] = field(default_factory=list)
    closings: List[str] = field(default_factory=list)

    @classmethod
    def default(cls) -> "WritingStyle":
        return cls(
            preferred_language="Polish",
            formality="semi-formal",
            greetings=["Dzień dobry,", "Cześć,"],
            closings=["Pozdrawiam", "Z poważaniem"],
        )


@dataclass(slots=True)
class Contact:
    name: str
    email: Optional[str] = None
    notes: Optional[str] = None


def detects_email_intent(text: str) -> bool:
    lower = text.lower()
    return any(keyword in lower for keyword in EMAIL_INTENT_KEYWORDS)


def detects_calendar_intent(text: str) -> bool:
    lower = text.lower()
    return any(keyword in lower for keyword in CALENDAR_INTENT_KEYWORDS)


def _normalize(text: str) -> str:
    return " ".join(re.sub(r"[^\w\s]", " ", text.lower()).split())


def core_body(body: str) -> str:
    """Body text with stock greetings and closings removed."""

    core = body
    for phrase in GREETINGS_AND_CLOSINGS:
        core = re.sub(re.escape(phrase), "", core, flags=re.IGNORECASE)
    return core.strip()


def is_invalid_email_body(body: str, intent: str) -> Optional[str]:
    """Return why ``body`` is not a real message, or ``None`` when it is."""

    core = core_body(body)
    core_lower = core.lower()
    intent_lower = intent.lower().strip()
    if intent_lower and core_lower == intent_lower:
        return "body repeats the intent"
    if intent_lower and intent_lower in core_lower and len(core) < len(intent) * 2:
        return "body restates the intent"
    for pattern in INVALID_BODY_PATTERNS:
        if pattern in core_lower:
            return f"body contains {pattern!r}"
    if len(core) < MIN_BODY_LENGTH:
        return "body too short"
    return None


def _is_trivial_subject(subject: str, intent: str) -> bool:
    normalized = _normalize(subject)
    if not normalized:
        return False
    intent_normalized = _normalize(intent)
    if normalized == intent_normalized or intent_normalized in normalized:
        return True
    return any(phrase in normalized for phrase in EMAIL_INTENT_KEYWORDS)


def validate_email_draft(draft: EmailDraftPayload, intent: str) -> EmailDraftPayload:
    """Clear restated subjects and reject bodies that are not real messages.

    A rejected draft keeps its recipient and subject but loses its body and
    becomes non-actionable with a ``missing_info`` reason. No replacement
    text is ever generated.
    """

    subject = "" if _is_trivial_subject(draft.email_subject, intent) else draft.email_subject
    reason = is_invalid_email_body(draft.email_body, intent)
    if reason is None:
        return replace(draft, email_subject=subject)
    logger.info("Rejected email draft: %s", reason)
    return replace(
        draft,
        should_compose_email=False,
        confidence=0.0,
        email_subject=subject,
        email_body="",
        missing_info=draft.missing_info or EMAIL_MISSING_INFO,
    )


def validate_calendar_event(event: CalendarEventPayload) -> CalendarEventPayload:
    title = event.event_title.strip()
    if "[" in title or "]" in title or title.lower() in PLACEHOLDER_TITLES:
        title = ""
    missing = None
    if event.should_create_event:
        if event.start_date is None:
            missing = CALENDAR_MISSING_START
        elif not title:
            missing = CALENDAR_MISSING_TITLE
    if missing is None:
        return replace(event, event_title=title)
    return replace(
        event,
        event_title=title,
        should_create_event=False,
        missing_info=event.missing_info or missing,
    )


class EmailDraftComposer:
    """Builds a context-grounded prompt and parses the model's email draft."""

    def __init__(
        self,
        completion: CompletionClient,
        retriever: ContextRetriever,
        style: WritingStyle | None = None,
        *,
        clock: Clock = utcnow,
    ) -> None:
        self.completion = completion
        self.retriever = retriever
        self.style = style or WritingStyle.default()
        self._clock = clock
        self.last_draft: Optional[EmailDraftPayload] = None

    def compose(self, intent: str, state: SystemState) -> Optional[EmailDraftPayload]:
        chunks = self.retriever.retrieve(intent)
        context = self.retriever.build_context_string(chunks, self._clock())
        logger.debug("Composing email for %r with %d context chunks", intent, len(chunks))
        prompt = self.build_prompt(intent, context, state)
        result = self.completion.complete(EMAIL_SYSTEM_PROMPT, prompt)
        if not result.ok or not result.value:
            logger.warning("Email composition unavailable: %s", result.error or result.status.value)
            return None
        payload = extract_json_object(result.value)
        if payload is None:
            logger.warning("Email composition returned no JSON object")
            return None
        try:
            draft = EmailDraftPayload.from_dict(payload)
        except ValueError as exc:
            logger.warning("Email composition returned an unusable draft: %s", exc)
            return None
        draft.timestamp = self._clock()
        draft = validate_email_draft(draft, intent)
        self.last_draft = draft
        return draft

    def build_prompt(self, intent: str, context: str, state: SystemState) -> str:
        style = self.style
        has_context = bool(context) and context != NO_CONTEXT_SENTINEL
        if has_context:
            guidance = (
                "CONTEXT ANALYSIS:\n"
                "- Review the context chunks above carefully\n"
                "- Find: recipient names, email addresses, project names, recent topics, deadlines\n"
                "- Use these details to write a specific, relevant email"
            )
        else:
            guidance = (
                "NO CONTEXT AVAILABLE:\n"
                "- Cannot compose a specific email without knowing WHO and WHAT\n"
                "- Set should_compose_email=false\n"
                "- Explain what information is needed (recipient, topic, purpose)"
            )
        return f"""TASK: Compose a real, sendable email based on the user's intent and context.

USER INTENT: "{intent}"

USER WRITING STYLE:
- Language: {style.preferred_language} (ALWAYS write in this language!)
- Formality: {style.formality}
- Greetings: {", ".join(style.greetings)}
- Closings: {", ".join(style.closings)}

CURRENT APP: {state.active_app}

{context}

CRITICAL RULES:
1. NEVER repeat the intent literally in the email body
2. If the intent is vague, look for specific names, projects or topics in the CONTEXT.
   If none are found, set should_compose_email=false and explain what is missing
3. Write a REAL email that someone could actually send
4. Use context details naturally (names, dates, projects, previous messages)
5. NEVER write placeholder text like "[company name]" or "[topic]"

{guidance}

RESPOND WITH VALID JSON:
{{
    "should_compose_email": boolean,
    "inferred_task": "what this email is about based on context",
    "confidence": 0.0-1.0,
    "value_added_context_used": ["specific context items used"],
    "email_subject": "specific subject (not generic)",
    "email_body": "full email with greeting and closing",
    "recipient": "actual name or email from context, or null",
    "missing_info": "what is needed if should_compose_email is false"
}}"""


class CalendarEventComposer:
    """Builds a time-aware prompt and parses the model's calendar event."""

    def __init__(
        self,
        completion: CompletionClient,
        retriever: ContextRetriever,
        contacts: Sequence[Contact] = (),
        owner_name: Optional[str] = None,
        *,
        clock: Clock = utcnow,
    ) -> None:
        self.completion = completion
        self.retriever = retriever
        self.contacts = list(contacts)
        self.owner_name = owner_name
        self._clock = clock
        self.last_event: Optional[CalendarEventPayload] = None

    def compose(self, intent: str, state: SystemState) -> Optional[CalendarEventPayload]:
        now = self._clock()
        chunks = self.retriever.retrieve(intent)
        context = self.retriever.build_context_string(chunks, now)
        result = self.completion.complete(CALENDAR_SYSTEM_PROMPT, self.build_prompt(intent, context, state))
        if not result.ok or not result.value:
            logger.warning("Calendar composition unavailable: %s", result.error or result.status.value)
            return None
        payload = extract_json_object(result.value)
        if payload is None:
            logger.warning("Calendar composition returned no JSON object")
            return None
        try:
            event = CalendarEventPayload.from_dict(payload)
        except ValueError as exc:
            logger.warning("Calendar composition returned an unusable event: %s", exc)
            return None
        event.timestamp = now
        event = validate_calendar_event(event)
        self.last_event = event
        return event

    def build_prompt(self, intent: str, context: str, state: SystemState) -> str:
        now = self._clock().astimezone()
        readable = now.strftime("%A, %B %d, %Y at %I:%M %p")
        return f"""TASK: Create a calendar event based on the user's intent and context.
Use a precise title in the form "Meeting with X".

USER INTENT: "{intent}"

CURRENT TIME: {now.replace(microsecond=0).isoformat()}
CURRENT TIME (readable): {readable}

USER: {self.owner_name or "unknown"}

CURRENT APP: {state.active_app}

{context}

CONTEXT PRIORITY:
1. [Notification] entries come first - they contain the meeting request details
2. [Ocr] entries come second - current screen content
3. Other context has lower priority

CONTEXT USAGE:
- Extract WHO sent the notification - they should be invited as attendee
- Extract WHEN the meeting should happen from the notification content
- Default duration: 30 minutes for quick chats, 1 hour for meetings

TIME INTERPRETATION:
- "today" = today's date, next full hour
- "tomorrow" = tomorrow's date
- "morning" = 9:00 AM, "afternoon" = 2:00 PM, "evening" = 6:00 PM
- "coffee", "chat" or "quick call" = 30 minute meeting
- "meeting" = 1 hour meeting

RULES:
1. Set should_create_event=true if there is any meeting or calendar intent
2. Use ISO 8601 format for times: YYYY-MM-DDTHH:MM:SS
3. If the time is vague, pick a reasonable default based on the current time
{self._render_contacts()}
RESPOND WITH VALID JSON:
{{
    "should_create_event": true,
    "inferred_task": "description of the meeting",
    "confidence": 0.0-1.0,
    "value_added_context_used": ["context items used"],
    "event_title": "Meeting title",
    "start_time": "YYYY-MM-DDTHH:MM:SS",
    "end_time": "YYYY-MM-DDTHH:MM:SS",
    "location": "location or null",
    "notes": "event notes or null",
    "attendee_email": "email of person to invite or null",
    "attendee_name": "name of person to invite or null",
    "missing_info": null
}}"""

    def _render_contacts(self) -> str:
        if not self.contacts:
            return ""
        lines = ["", "KNOWN CONTACTS:"]
        for contact in self.contacts:
            lines.append(f"[Person - {contact.name}]")
            if contact.email:
                lines.append(f"- Email: {contact.email}")
            if contact.notes:
                lines.append(f"- {contact.notes}")
        return "\n".join(lines) + "\n"
