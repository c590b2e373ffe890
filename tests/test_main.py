"""Tests for the command line entry point."""

import json

import pytest

import main

ENV_KEYS = (
    "ANTHROPIC_API_KEY",
    "OPENAI_API_KEY",
    "INTENT_ASSISTANT_CLASSIFIER_URL",
    "INTENT_ASSISTANT_DB",
)


@pytest.fixture(autouse=True)
def offline(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def test_ingested_notification_is_retrievable(tmp_path, capsys):
    db = str(tmp_path / "context.db")
    code = main.main(
        ["ingest-notification", "--db", db, "--app", "Discord", "--title", "Kamil", "--body", "Can you send the Q3 report?"]
    )
    assert code == 0
    assert "Stored discord chunk" in capsys.readouterr().out

    assert main.main(["retrieve", "send email to Kamil", "--db", db]) == 0
    output = capsys.readouterr().out
    assert "NOTIFICATIONS (PRIMARY SOURCE):" in output
    assert "Kamil: Can you send the Q3 report?" in output


def test_too_short_notification_fails(tmp_path):
    db = str(tmp_path / "context.db")
    assert main.main(["ingest-notification", "--db", db, "--app", "Slack", "--title", "Hi", "--body", ""]) == 1


def test_retrieve_on_empty_store(tmp_path, capsys):
    assert main.main(["retrieve", "anything", "--db", str(tmp_path / "empty.db")]) == 0
    assert "No relevant context available." in capsys.readouterr().out


def test_replay_counts_events(tmp_path, capsys):
    events = tmp_path / "events.jsonl"
    records = [
        {"type": "notification", "app": "Slack", "title": "Anna", "body": "Contract draft is ready for review"},
        {"action_type": "text_added", "app": "Mail", "role": "AXTextArea", "text": "Hi Anna, thanks for the draft"},
        {"action_type": "text_added", "app": "Mail", "role": "AXTextArea", "text": "I will review it today"},
    ]
    events.write_text("\n".join(json.dumps(record) for record in records) + "\nnot json\n", encoding="utf-8")
    assert main.main(["replay", str(events), "--db", str(tmp_path / "replay.db"), "--wait"]) == 0
    output = capsys.readouterr().out
    assert "Suggestion Statistics" in output
    assert "Events processed: 2" in output
    assert "Suggestions generated: 0" in output
