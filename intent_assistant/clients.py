"""Remote clients: intent classifier, text completion and embeddings.

Every call returns a :class:`CallResult` instead of raising, so callers can
branch on ``result.status`` and degrade gracefully when a service is slow,
down, misconfigured or returns something unexpected.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, List, Optional, Sequence, TypeVar

import anthropic
import httpx
import openai

from .utils import extract_json_object

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_EMBEDDING_INPUT = 30000


class CallStatus(str, Enum):
    OK = "ok"
    TIMED_OUT = "timed_out"
    NETWORK_ERROR = "network_error"
    MALFORMED_RESPONSE = "malformed_response"
    NOT_CONFIGURED = "not_configured"


@dataclass
class CallResult(Generic[T]):
    status: CallStatus
    value: Optional[T] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is CallStatus.OK

    def unwrap_or(self, default: T) -> T:
        if self.ok and self.value is not None:
            return self.value
        return default

    @classmethod
    def success(cls, value: T) -> "CallResult[T]":
        return cls(CallStatus.OK, value)

    @classmethod
    def failure(cls, status: CallStatus, error: str) -> "CallResult[T]":
        return cls(status, None, error)


@dataclass(slots=True)
class IntentClassification:
    action: str
    score: float


class IntentClassifierClient:
    """POSTs the latest text to a remote action classifier."""

    def __init__(
        self,
        url: Optional[str],
        *,
        timeout: float = 10.0,
        http_client: httpx.Client | None = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self._http = http_client
        self._warned = False

    @property
    def configured(self) -> bool:
        return bool(self.url)

    def classify(self, text: str) -> CallResult[IntentClassification]:
        if not self.url:
            if not self._warned:
                logger.warning("Intent classifier URL not configured; classification disabled")
                self._warned = True
            return CallResult.failure(CallStatus.NOT_CONFIGURED, "classifier url missing")
        try:
            response = self._post({"message": text})
        except httpx.TimeoutException as exc:
            logger.warning("Intent classifier timed out: %s", exc)
            return CallResult.failure(CallStatus.TIMED_OUT, str(exc))
        except httpx.HTTPError as exc:
            logger.warning("Intent classifier request failed: %s", exc)
            return CallResult.failure(CallStatus.NETWORK_ERROR, str(exc))

        if response.status_code != 200:
            return CallResult.failure(
                CallStatus.NETWORK_ERROR, f"unexpected status {response.status_code}"
            )
        try:
            payload = response.json()
        except ValueError as exc:
            return CallResult.failure(CallStatus.MALFORMED_RESPONSE, f"invalid json: {exc}")
        if not isinstance(payload, dict):
            return CallResult.failure(CallStatus.MALFORMED_RESPONSE, "response is not an object")
        action = payload.get("action")
        score = payload.get("score")
        if not isinstance(action, str) or isinstance(score, bool) or not isinstance(score, (int, float)):
            return CallResult.failure(CallStatus.MALFORMED_RESPONSE, "missing action or score")
        return CallResult.success(IntentClassification(action=action, score=float(score)))

    def _post(self, body: dict) -> httpx.Response:
        if self._http is not None:
            return self._http.post(self.url, json=body, timeout=self.timeout)
        with httpx.Client(timeout=self.timeout) as client:
            return client.post(self.url, json=body)


class CompletionClient:
    """Thin wrapper over the Anthropic messages API."""

    def __init__(
        self,
        api_key: Optional[str],
        *,
        model: str = "claude-3-haiku-20240307",
        max_tokens: int = 500,
        timeout: float = 10.0,
        client: Any = None,
    ) -> None:
        self.model = model
        self.max_tokens = max_tokens
        self._client = client
        if self._client is None and api_key:
            self._client = anthropic.Anthropic(api_key=api_key, timeout=timeout)
        self._warned = False

    @property
    def configured(self) -> bool:
        return self._client is not None

    def complete(self, system_prompt: str, user_prompt: str) -> CallResult[str]:
        if self._client is None:
            if not self._warned:
                logger.warning("ANTHROPIC_API_KEY not set; completions disabled")
                self._warned = True
            return CallResult.failure(CallStatus.NOT_CONFIGURED, "completion api key missing")
        try:
            response = self._client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                system=system_prompt,
                messages=[{"role": "user", "content": user_prompt}],
            )
        except anthropic.APITimeoutError as exc:
            logger.warning("Completion request timed out: %s", exc)
            return CallResult.failure(CallStatus.TIMED_OUT, str(exc))
        except anthropic.APIError as exc:
            logger.warning("Completion request failed: %s", exc)
            return CallResult.failure(CallStatus.NETWORK_ERROR, str(exc))

        texts = [
            block.text
            for block in getattr(response, "content", None) or []
            if getattr(block, "type", "text") == "text" and getattr(block, "text", None)
        ]
        if not texts:
            return CallResult.failure(CallStatus.MALFORMED_RESPONSE, "no text content in response")
        return CallResult.success("".join(texts))


class EmbeddingClient:
    """Computes embeddings through the OpenAI embeddings API."""

    def __init__(
        self,
        api_key: Optional[str],
        *,
        model: str = "text-embedding-3-small",
        timeout: float = 10.0,
        client: Any = None,
    ) -> None:
        self.model = model
        self._client = client
        if self._client is None and api_key:
            self._client = openai.OpenAI(api_key=api_key, timeout=timeout)
        self._warned = False

    @property
    def configured(self) -> bool:
        return self._client is not None

    def embed(self, text: str) -> CallResult[List[float]]:
        result = self.embed_batch([text])
        if not result.ok:
            return CallResult.failure(result.status, result.error or "")
        return CallResult.success(result.value[0])

    def embed_batch(self, texts: Sequence[str]) -> CallResult[List[List[float]]]:
        if self._client is None:
            if not self._warned:
                logger.warning("OPENAI_API_KEY not set; embeddings disabled")
                self._warned = True
            return CallResult.failure(CallStatus.NOT_CONFIGURED, "embedding api key missing")
        if not texts:
            return CallResult.success([])
        inputs = [text[:MAX_EMBEDDING_INPUT] for text in texts]
        try:
            response = self._client.embeddings.create(model=self.model, input=inputs)
        except openai.APITimeoutError as exc:
            logger.warning("Embedding request timed out: %s", exc)
            return CallResult.failure(CallStatus.TIMED_OUT, str(exc))
        except openai.APIError as exc:
            logger.warning("Embedding request failed: %s", exc)
            return CallResult.failure(CallStatus.NETWORK_ERROR, str(exc))

        data = sorted(getattr(response, "data", None) or [], key=lambda item: getattr(item, "index", 0))
        if len(data) != len(inputs):
            return CallResult.failure(
                CallStatus.MALFORMED_RESPONSE,
                f"expected {len(inputs)} embeddings, got {len(data)}",
            )
        return CallResult.success([list(item.embedding) for item in data])


__all__ = [
    "CallResult",
    "CallStatus",
    "CompletionClient",
    "EmbeddingClient",
    "IntentClassification",
    "IntentClassifierClient",
    "extract_json_object",
]
