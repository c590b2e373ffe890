"""Automation backends that carry out accepted suggestions."""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol

logger = logging.getLogger(__name__)

OSASCRIPT = "/usr/bin/osascript"


@dataclass(slots=True)
class ActionOutcome:
    status: str
    detail: str = ""

    @property
    def succeeded(self) -> bool:
        return self.status in {"executed", "simulated"}


class AutomationBackend(Protocol):
    def open_mail_draft(
        self, to: Optional[str], subject: Optional[str], body: Optional[str]
    ) -> ActionOutcome: ...

    def create_calendar_event(
        self,
        title: str,
        start: datetime,
        end: datetime,
        location: Optional[str] = None,
        notes: Optional[str] = None,
        attendee_email: Optional[str] = None,
    ) -> ActionOutcome: ...


def escape_applescript(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def _date_block(variable: str, moment: datetime) -> str:
    local = moment.astimezone() if moment.tzinfo else moment
    return "\n".join(
        [
            f"    set {variable} to current date",
            f"    set day of {variable} to 1",
            f"    set year of {variable} to {local.year}",
            f"    set month of {variable} to {local.month}",
            f"    set day of {variable} to {local.day}",
            f"    set hours of {variable} to {local.hour}",
            f"    set minutes of {variable} to {local.minute}",
            f"    set seconds of {variable} to 0",
        ]
    )


def mail_draft_script(to: Optional[str], subject: Optional[str], body: Optional[str]) -> str:
    properties = []
    if subject:
        properties.append(f'subject:"{escape_applescript(subject)}"')
    if body:
        properties.append(f'content:"{escape_applescript(body)}"')
    with_properties = f" with properties {{{', '.join(properties)}}}" if properties else ""
    lines = [
        'tell application "Mail"',
        "    activate",
        f"    set newMessage to make new outgoing message{with_properties}",
        "    tell newMessage",
    ]
    if to:
        lines.append(f'        make new to recipient with properties {{address:"{escape_applescript(to)}"}}')
    lines += ["        set visible to true", "    end tell", "end tell"]
    return "\n".join(lines)


def calendar_event_script(
    title: str,
    start: datetime,
    end: datetime,
    *,
    location: Optional[str] = None,
    notes: Optional[str] = None,
    attendee_email: Optional[str] = None,
    calendar_name: Optional[str] = None,
) -> str:
    extra = ""
    if location:
        extra += f', location:"{escape_applescript(location)}"'
    if notes:
        extra += f', description:"{escape_applescript(notes)}"'
    target = f'calendar "{escape_applescript(calendar_name)}"' if calendar_name else "calendar 1"
    lines = [
        'tell application "Calendar"',
        "    activate",
        _date_block("startDate", start),
        _date_block("endDate", end),
        f"    tell {target}",
        "        set newEvent to make new event with properties "
        f'{{summary:"{escape_applescript(title)}", start date:startDate, end date:endDate{extra}}}',
    ]
    if attendee_email:
        lines += [
            "        tell newEvent",
            "            make new attendee at end of attendees with properties "
            f'{{email:"{escape_applescript(attendee_email)}"}}',
            "        end tell",
        ]
    lines += ["    end tell", "end tell"]
    return "\n".join(lines)


class AppleScriptAutomation:
    """Drives Mail and Calendar on macOS through ``osascript``."""

    def __init__(self, calendar_name: Optional[str] = None, *, timeout: float = 30.0) -> None:
        self.calendar_name = calendar_name
        self.timeout = timeout

    def open_mail_draft(
        self, to: Optional[str], subject: Optional[str], body: Optional[str]
    ) -> ActionOutcome:
        return self._run(mail_draft_script(to, subject, body), "mail draft")

    def create_calendar_event(
        self,
        title: str,
        start: datetime,
        end: datetime,
        location: Optional[str] = None,
        notes: Optional[str] = None,
        attendee_email: Optional[str] = None,
    ) -> ActionOutcome:
        script = calendar_event_script(
            title,
            start,
            end,
            location=location,
            notes=notes,
            attendee_email=attendee_email,
            calendar_name=self.calendar_name,
        )
        return self._run(script, "calendar event")

    def _run(self, script: str, label: str) -> ActionOutcome:
        try:
            completed = subprocess.run(
                [OSASCRIPT, "-e", script],
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except (OSError, subprocess.SubprocessError) as exc:
            logger.warning("Failed to run osascript for %s: %s", label, exc)
            return ActionOutcome(status="failed", detail=str(exc))
        if completed.returncode != 0:
            detail = completed.stderr.strip() or f"exit status {completed.returncode}"
            logger.warning("osascript for %s failed: %s", label, detail)
            return ActionOutcome(status="failed", detail=detail)
        logger.info("Opened %s", label)
        return ActionOutcome(status="executed", detail=completed.stdout.strip())


@dataclass(slots=True)
class SimulatedAutomation:
    """Records requested actions instead of performing them."""

    calls: List[Dict[str, Any]] = field(default_factory=list)

    def open_mail_draft(
        self, to: Optional[str], subject: Optional[str], body: Optional[str]
    ) -> ActionOutcome:
        self.calls.append({"action": "mail", "to": to, "subject": subject, "body": body})
        return ActionOutcome(status="simulated", detail=f"mail draft to {to or 'nobody'}")

    def create_calendar_event(
        self,
        title: str,
        start: datetime,
        end: datetime,
        location: Optional[str] = None,
        notes: Optional[str] = None,
        attendee_email: Optional[str] = None,
    ) -> ActionOutcome:
        self.calls.append(
            {
                "action": "calendar",
                "title": title,
                "start": start,
                "end": end,
                "location": location,
                "notes": notes,
                "attendee_email": attendee_email,
            }
        )
        return ActionOutcome(status="simulated", detail=f"calendar event {title!r}")
