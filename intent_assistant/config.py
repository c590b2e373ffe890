"""Configuration for the intent assistant pipeline.

Every tunable constant lives in one of the dataclasses below so that the
gate, cooldown and retriever can be constructed with injected thresholds.
``load_config`` fills them from the environment (and an optional ``.env``
file); absent API keys never fail loading, they only disable the feature
that needs them.
"""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Optional, Tuple

from dotenv import load_dotenv

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass(slots=True)
class GateConfig:
    """Heuristic gate thresholds and weights."""

    threshold: float = 0.6
    window: int = 15
    min_total_text_length: int = 10
    base_weight: float = 0.5
    typing_weight: float = 0.2
    min_typing_events: int = 2
    communication_weight: float = 0.2
    input_role_weight: float = 0.1
    system_apps: FrozenSet[str] = frozenset(
        {"Finder", "System Preferences", "System Settings", "Activity Monitor", "Spotlight"}
    )
    communication_apps: FrozenSet[str] = frozenset(
        {"Mail", "Slack", "Messages", "Notes", "Teams", "Discord"}
    )
    input_roles: FrozenSet[str] = frozenset({"AXTextArea", "AXTextField"})
    typing_markers: Tuple[str, ...] = ("ValueChanged", "text_")


@dataclass(slots=True)
class CooldownPolicy:
    """Minimum spacing between surfaced suggestions; ``enabled=False`` disables it."""

    enabled: bool = True
    seconds: float = 30.0


@dataclass(slots=True)
class BufferConfig:
    capacity: int = 100
    state_text_window: int = 20
    state_action_window: int = 10
    notification_threshold: float = 0.6


@dataclass(slots=True)
class RetrieverConfig:
    """Candidate caps, weights and boosts for context retrieval."""

    max_results: int = 10
    semantic_top_k: int = 20
    lexical_terms: int = 3
    lexical_limit: int = 10
    partial_name_min_length: int = 3
    source_recent_limit: int = 5
    recency_sample_limit: int = 10
    recency_weight: float = 0.3
    relevance_weight: float = 0.5
    entity_weight: float = 0.2
    entity_search_boost: float = 0.5
    content_entity_boost: float = 0.3
    stop_words: FrozenSet[str] = frozenset(
        {
            "the", "to", "of", "for", "in", "and", "about", "with", "a",
            "mail", "email", "send", "write", "message",
            "do", "w", "z", "na", "i", "wyślij", "napisz",
        }
    )
    source_keywords: Dict[str, Tuple[str, ...]] = field(
        default_factory=lambda: {
            "mail": ("mail", "email"),
            "slack": ("slack", "message"),
            "discord": ("discord",),
        }
    )


@dataclass(slots=True)
class CollectorConfig:
    batch_size: int = 10
    batch_delay: float = 2.0
    min_event_length: int = 15
    min_screen_text_length: int = 50
    min_notification_length: int = 10
    hash_cache_size: int = 1000
    recent_contents_size: int = 100
    similarity_window: int = 20
    similarity_threshold: float = 0.8


@dataclass(slots=True)
class ClientConfig:
    anthropic_api_key: Optional[str] = None
    completion_model: str = "claude-3-haiku-20240307"
    completion_max_tokens: int = 500
    openai_api_key: Optional[str] = None
    embedding_model: str = "text-embedding-3-small"
    classifier_url: Optional[str] = None
    timeout: float = 10.0


@dataclass(slots=True)
class AssistantConfig:
    gate: GateConfig = field(default_factory=GateConfig)
    cooldown: CooldownPolicy = field(default_factory=CooldownPolicy)
    buffer: BufferConfig = field(default_factory=BufferConfig)
    retriever: RetrieverConfig = field(default_factory=RetrieverConfig)
    collector: CollectorConfig = field(default_factory=CollectorConfig)
    clients: ClientConfig = field(default_factory=ClientConfig)
    db_path: str = ":memory:"
    owner_name: Optional[str] = None
    calendar_name: Optional[str] = None
    history_size: int = 50
    max_workers: int = 4
    log_level: str = "INFO"


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_optional(name: str) -> Optional[str]:
    value = os.getenv(name, "").strip()
    return value or None


def load_config(env_file: Optional[str] = None) -> AssistantConfig:
    """Load configuration from environment variables with defaults.

    Values from ``env_file`` (or the nearest ``.env``) never override
    variables already present in the environment.
    """

    load_dotenv(env_file)
    timeout = float(os.getenv("INTENT_ASSISTANT_TIMEOUT", "10"))
    clients = ClientConfig(
        anthropic_api_key=_env_optional("ANTHROPIC_API_KEY"),
        completion_model=os.getenv("INTENT_ASSISTANT_MODEL", "claude-3-haiku-20240307"),
        openai_api_key=_env_optional("OPENAI_API_KEY"),
        embedding_model=os.getenv("INTENT_ASSISTANT_EMBED_MODEL", "text-embedding-3-small"),
        classifier_url=_env_optional("INTENT_ASSISTANT_CLASSIFIER_URL"),
        timeout=timeout,
    )
    cooldown = CooldownPolicy(
        enabled=_env_bool("INTENT_ASSISTANT_COOLDOWN_ENABLED", True),
        seconds=float(os.getenv("INTENT_ASSISTANT_COOLDOWN_SECONDS", "30")),
    )
    gate = GateConfig(threshold=float(os.getenv("INTENT_ASSISTANT_GATE_THRESHOLD", "0.6")))
    return AssistantConfig(
        gate=gate,
        cooldown=cooldown,
        clients=clients,
        db_path=os.getenv("INTENT_ASSISTANT_DB", ":memory:"),
        owner_name=_env_optional("INTENT_ASSISTANT_OWNER_NAME"),
        calendar_name=_env_optional("INTENT_ASSISTANT_CALENDAR"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )


def setup_logging(level: str = "INFO") -> None:
    """Configure the root logger for CLI use."""

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stderr)],
    )
