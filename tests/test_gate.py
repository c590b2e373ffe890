"""Tests for the local heuristic gate."""

import pytest

from intent_assistant.config import GateConfig
from intent_assistant.gate import HeuristicGate
from intent_assistant.models import BufferedEvent, Event, SystemState

from conftest import FIXED_NOW


def _buffered(*events: Event):
    return [BufferedEvent(event=event, inserted_at=FIXED_NOW) for event in events]


def _typing(text: str, app: str = "Mail") -> Event:
    return Event(action_type="text_added", app_name=app, element_role="AXTextArea", text_content=text)


class TestHeuristicGate:
    def test_typing_in_mail_scores_full(self):
        gate = HeuristicGate()
        events = _buffered(_typing("Hi Kamil, about"), _typing("Hi Kamil, about the report"))
        state = SystemState(active_app="Mail", active_element="AXTextArea")
        decision = gate.evaluate(events, state)
        assert decision.score == pytest.approx(1.0)
        assert decision.passed
        assert decision.reason == "passed"

    def test_system_app_is_rejected(self):
        events = _buffered(_typing("searching for the budget file", app="Finder"))
        decision = HeuristicGate().evaluate(events, SystemState(active_app="Finder"))
        assert decision.score == 0.0
        assert not decision.passed
        assert decision.reason == "system_app"

    @pytest.mark.parametrize("app", ["finder", "FINDER", "system settings"])
    def test_system_app_match_ignores_case(self, app):
        events = _buffered(_typing("searching for the budget file", app=app))
        decision = HeuristicGate().evaluate(events, SystemState(active_app=app))
        assert decision.score == 0.0
        assert decision.reason == "system_app"

    def test_communication_app_match_ignores_case(self):
        events = _buffered(_typing("Hi Kamil, about"), _typing("Hi Kamil, about the report"))
        lower = HeuristicGate().score(events, SystemState(active_app="mail", active_element="AXTextArea"))
        assert lower == pytest.approx(1.0)

    def test_no_text_is_rejected(self):
        events = _buffered(Event(action_type="AXFocusedUIElementChanged", app_name="Mail"))
        decision = HeuristicGate().evaluate(events, SystemState(active_app="Mail"))
        assert decision.reason == "no_text"

    def test_too_little_text_is_rejected(self):
        events = _buffered(_typing("ok"), _typing("sure"))
        decision = HeuristicGate().evaluate(events, SystemState(active_app="Mail"))
        assert decision.reason == "text_too_short"

    def test_browser_reading_stays_below_threshold(self):
        events = _buffered(
            Event(action_type="AXSelectedTextChanged", app_name="Safari", text_content="Quarterly results overview")
        )
        decision = HeuristicGate().evaluate(events, SystemState(active_app="Safari"))
        assert decision.score == pytest.approx(0.5)
        assert decision.reason == "below_threshold"

    def test_threshold_is_configurable(self):
        events = _buffered(
            Event(action_type="AXSelectedTextChanged", app_name="Safari", text_content="Quarterly results overview")
        )
        gate = HeuristicGate(GateConfig(threshold=0.5))
        assert gate.evaluate(events, SystemState(active_app="Safari")).passed

    def test_only_recent_window_counts(self):
        old_text = [_typing("an old long message in the past")]
        silent = [Event(action_type="AXFocusedUIElementChanged", app_name="Mail") for _ in range(15)]
        score = HeuristicGate().score(_buffered(*old_text, *silent), SystemState(active_app="Mail"))
        assert score == 0.0
