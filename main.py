"""Command line entry point for the intent assistant."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from concurrent.futures import Future, wait
from pathlib import Path
from typing import Iterator, List, Optional

from intent_assistant.config import AssistantConfig, load_config, setup_logging
from intent_assistant.entities import EntityExtractor
from intent_assistant.models import Event, NotificationPayload
from intent_assistant.pipeline import AutomationSuggestionService, build_service, determine_action
from intent_assistant.retriever import ContextRetriever
from intent_assistant.clients import EmbeddingClient
from intent_assistant.store import ContextStore

logger = logging.getLogger(__name__)


def iter_records(path: Path) -> Iterator[dict]:
    with path.open(encoding="utf-8") as handle:
        for line_no, line in enumerate(handle, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError as exc:
                logger.warning("Skipping line %d: %s", line_no, exc)
                continue
            if isinstance(record, dict):
                yield record


def render_suggestion(payload: NotificationPayload) -> str:
    kind = determine_action(payload).value
    return f"[{kind}] {payload.task} ({payload.confidence:.0%}) - {payload.suggested_action}"


def replay(service: AutomationSuggestionService, path: Path, *, wait_for_results: bool) -> int:
    """Feed recorded events and notifications through the service."""

    futures: List[Future] = []
    service.subscribe(lambda payload: print(render_suggestion(payload)))
    service.enable()
    for record in iter_records(path):
        if record.get("type") == "notification":
            service.handle_notification(record.get("title"), record.get("body"), record.get("app", "Unknown"))
            continue
        future = service.handle_event(Event.from_dict(record))
        if future is not None:
            futures.append(future)
    if wait_for_results and futures:
        wait(futures)
    service.shutdown(wait=wait_for_results)
    print(service.statistics().render_text())
    return 0


def retrieve(config: AssistantConfig, intent: str) -> int:
    with ContextStore(config.db_path) as store:
        embedder = EmbeddingClient(
            config.clients.openai_api_key,
            model=config.clients.embedding_model,
            timeout=config.clients.timeout,
        )
        retriever = ContextRetriever(store, EntityExtractor(), embedder, config.retriever)
        chunks = retriever.retrieve(intent)
        print(retriever.build_context_string(chunks))
    return 0


def ingest_notification(service: AutomationSuggestionService, *, app: str, title: str, body: str) -> int:
    service.enable()
    chunk = service.handle_notification(title, body, app)
    service.shutdown()
    if chunk is None:
        sys.stderr.write("Notification was too short to store.\n")
        return 1
    print(f"Stored {chunk.source.value} chunk {chunk.id}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--db", help="Path to the context store (default: INTENT_ASSISTANT_DB or memory)")
    common.add_argument("--log-level", help="Override LOG_LEVEL")

    parser = argparse.ArgumentParser(description="Intent assistant")
    subparsers = parser.add_subparsers(dest="command", required=True)

    replay_parser = subparsers.add_parser(
        "replay", parents=[common], help="Replay recorded events from a JSON lines file"
    )
    replay_parser.add_argument("events", type=Path, help="JSON lines file of events and notifications")
    replay_parser.add_argument(
        "--wait",
        action="store_true",
        help="Wait for in-flight classifications before printing statistics",
    )

    retrieve_parser = subparsers.add_parser("retrieve", parents=[common], help="Print the context block for an intent")
    retrieve_parser.add_argument("intent", help="Intent text, e.g. 'send email to Kamil'")

    notify_parser = subparsers.add_parser("ingest-notification", parents=[common], help="Store a notification as context")
    notify_parser.add_argument("--app", required=True)
    notify_parser.add_argument("--title", required=True)
    notify_parser.add_argument("--body", required=True)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config = load_config()
    if args.db:
        config.db_path = args.db
    setup_logging(args.log_level or config.log_level)

    if args.command == "retrieve":
        return retrieve(config, args.intent)
    store = ContextStore(config.db_path)
    try:
        service = build_service(config, store=store)
        if args.command == "replay":
            return replay(service, args.events, wait_for_results=args.wait)
        return ingest_notification(service, app=args.app, title=args.title, body=args.body)
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
