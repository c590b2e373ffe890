"""Tests for environment-driven configuration."""

import logging
import os

import pytest

from intent_assistant.config import AssistantConfig, load_config, setup_logging

ENV_KEYS = (
    "ANTHROPIC_API_KEY",
    "OPENAI_API_KEY",
    "INTENT_ASSISTANT_CLASSIFIER_URL",
    "INTENT_ASSISTANT_COOLDOWN_ENABLED",
    "INTENT_ASSISTANT_COOLDOWN_SECONDS",
    "INTENT_ASSISTANT_GATE_THRESHOLD",
    "INTENT_ASSISTANT_DB",
    "INTENT_ASSISTANT_OWNER_NAME",
    "INTENT_ASSISTANT_CALENDAR",
    "INTENT_ASSISTANT_TIMEOUT",
    "LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def test_defaults_without_environment():
    config = load_config()
    assert config.db_path == ":memory:"
    assert config.clients.anthropic_api_key is None
    assert config.clients.openai_api_key is None
    assert config.clients.classifier_url is None
    assert config.cooldown.enabled
    assert config.cooldown.seconds == 30.0
    assert config.gate.threshold == 0.6
    assert config.buffer.capacity == 100


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "  sk-test  ")
    monkeypatch.setenv("INTENT_ASSISTANT_CLASSIFIER_URL", "http://localhost:9000/classify")
    monkeypatch.setenv("INTENT_ASSISTANT_COOLDOWN_ENABLED", "off")
    monkeypatch.setenv("INTENT_ASSISTANT_GATE_THRESHOLD", "0.7")
    monkeypatch.setenv("INTENT_ASSISTANT_OWNER_NAME", "Anna")
    config = load_config()
    assert config.clients.openai_api_key == "sk-test"
    assert config.clients.classifier_url == "http://localhost:9000/classify"
    assert not config.cooldown.enabled
    assert config.gate.threshold == 0.7
    assert config.owner_name == "Anna"


def test_env_file_fills_missing_values(tmp_path, monkeypatch):
    env_file = tmp_path / "assistant.env"
    env_file.write_text("INTENT_ASSISTANT_CALENDAR=Work\nLOG_LEVEL=DEBUG\n", encoding="utf-8")
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    try:
        config = load_config(str(env_file))
    finally:
        os.environ.pop("INTENT_ASSISTANT_CALENDAR", None)
    assert config.calendar_name == "Work"
    assert config.log_level == "WARNING"


def test_config_instances_do_not_share_state():
    first, second = AssistantConfig(), AssistantConfig()
    first.retriever.source_keywords["notes"] = ("notes",)
    assert "notes" not in second.retriever.source_keywords


def test_setup_logging_accepts_unknown_level(monkeypatch):
    captured = {}
    monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: captured.update(kwargs))
    setup_logging("verbose")
    assert captured["level"] == logging.INFO
