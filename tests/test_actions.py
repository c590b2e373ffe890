"""Tests for the automation backends."""

import subprocess
from datetime import datetime, timezone
from types import SimpleNamespace

from intent_assistant import actions
from intent_assistant.actions import (
    AppleScriptAutomation,
    SimulatedAutomation,
    calendar_event_script,
    escape_applescript,
    mail_draft_script,
)
from intent_assistant.models import CalendarEventPayload

from conftest import WARSAW_TZ

START = datetime(2025, 1, 16, 10, 0, tzinfo=timezone.utc)
END = datetime(2025, 1, 16, 11, 0, tzinfo=timezone.utc)


class TestScripts:
    def test_escaping(self):
        assert escape_applescript('Say "hi"\\now\nbye') == 'Say \\"hi\\"\\\\now\\nbye'

    def test_mail_script_with_body(self):
        script = mail_draft_script("kamil@example.com", 'Raport "Q3"', "Line one\nLine two")
        assert 'subject:"Raport \\"Q3\\""' in script
        assert 'content:"Line one\\nLine two"' in script
        assert 'make new to recipient with properties {address:"kamil@example.com"}' in script

    def test_empty_mail_script(self):
        script = mail_draft_script(None, None, None)
        assert "make new outgoing message\n" in script
        assert "recipient" not in script
        assert "content:" not in script

    def test_calendar_script_targets(self):
        default = calendar_event_script("Sync", START, END)
        named = calendar_event_script(
            "Sync",
            START,
            END,
            location="Office",
            notes="Bring numbers",
            attendee_email="kamil@example.com",
            calendar_name="Work",
        )
        assert "tell calendar 1" in default
        assert "attendee" not in default
        assert 'tell calendar "Work"' in named
        assert 'location:"Office", description:"Bring numbers"' in named
        assert '{email:"kamil@example.com"}' in named
        local = START.astimezone()
        assert f"set hours of startDate to {local.hour}" in named

    def test_model_times_keep_their_wall_clock_hour(self, local_timezone):
        local_timezone(WARSAW_TZ)
        event = CalendarEventPayload.from_dict(
            {
                "should_create_event": True,
                "confidence": 0.9,
                "event_title": "Meeting with Kamil",
                "start_time": "2025-01-16T15:00:00",
            }
        )
        script = calendar_event_script(event.event_title, event.start_date, event.end_date)
        assert "set hours of startDate to 15" in script
        assert "set hours of endDate to 16" in script


class TestAppleScriptAutomation:
    def test_success(self, monkeypatch):
        calls = []

        def fake_run(args, **kwargs):
            calls.append(args)
            return SimpleNamespace(returncode=0, stdout="ok\n", stderr="")

        monkeypatch.setattr(actions.subprocess, "run", fake_run)
        outcome = AppleScriptAutomation().open_mail_draft("kamil@example.com", "Hi", None)
        assert outcome.status == "executed"
        assert outcome.succeeded
        assert calls[0][:2] == [actions.OSASCRIPT, "-e"]

    def test_nonzero_exit(self, monkeypatch):
        monkeypatch.setattr(
            actions.subprocess,
            "run",
            lambda args, **kwargs: SimpleNamespace(returncode=1, stdout="", stderr="Calendar got an error"),
        )
        outcome = AppleScriptAutomation("Work").create_calendar_event("Sync", START, END)
        assert outcome.status == "failed"
        assert outcome.detail == "Calendar got an error"
        assert not outcome.succeeded

    def test_missing_binary_or_timeout(self, monkeypatch):
        def missing(args, **kwargs):
            raise FileNotFoundError(args[0])

        def slow(args, **kwargs):
            raise subprocess.TimeoutExpired(args, 30)

        for runner in (missing, slow):
            monkeypatch.setattr(actions.subprocess, "run", runner)
            assert AppleScriptAutomation().open_mail_draft(None, None, None).status == "failed"


class TestSimulatedAutomation:
    def test_records_calls(self):
        automation = SimulatedAutomation()
        automation.open_mail_draft("kamil@example.com", "Hi", "Body")
        automation.create_calendar_event("Sync", START, END, attendee_email="kamil@example.com")
        assert [call["action"] for call in automation.calls] == ["mail", "calendar"]
        assert automation.calls[1]["start"] == START
