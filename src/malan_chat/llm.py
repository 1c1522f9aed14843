"""Async client for an OpenAI-style chat-completions endpoint, plus the
completion step that feeds it a conversation and records the reply."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional, Sequence

import httpx

from . import messages as msg
from .errors import InferenceError
from .memory import HistoryStore
from .messages import Message

logger = logging.getLogger(__name__)

PREVIEW_CHARS = 200


# -----------------------------
# Types & defaults
# -----------------------------

@dataclass
class GenerationConfig:
    max_tokens: int = 512
    temperature: float = 0.7
    top_p: float = 0.9

    @classmethod
    def from_config(cls, cfg: Dict[str, Any]) -> "GenerationConfig":
        gen = (cfg or {}).get("generation", {}) or {}
        defaults = cls()
        return cls(
            max_tokens=int(gen.get("max_tokens", defaults.max_tokens)),
            temperature=float(gen.get("temperature", defaults.temperature)),
            top_p=float(gen.get("top_p", defaults.top_p)),
        )


def preview(text: str, limit: int = PREVIEW_CHARS) -> str:
    """Shorten text for log lines."""
    return text[:limit] + ("..." if len(text) > limit else "")


# -----------------------------
# HTTP client
# -----------------------------

class ChatCompletionsClient:
    """Thin wrapper around :class:`httpx.AsyncClient` for ``/chat/completions``."""

    def __init__(
        self,
        endpoint: str,
        api_key: Optional[str],
        model: str,
        *,
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Parameters
        ----------
        endpoint : str
            Base URL of the inference service; ``/chat/completions`` is appended.
        api_key : str | None
            Bearer token. Requests without one are still sent and will
            usually be rejected by the service with an error status.
        model : str
            Default model identifier for requests that do not pass one.
        transport : httpx.AsyncBaseTransport | None
            Optional transport, e.g. :class:`httpx.MockTransport` in tests.
        """
        self.endpoint = endpoint.rstrip("/")
        self.model = model
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._http = httpx.AsyncClient(
            base_url=self.endpoint,
            headers=headers,
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    async def create(
        self,
        messages: Sequence[Message],
        *,
        model: Optional[str] = None,
        **params: Any,
    ) -> str:
        """Request one completion and return the first choice's text.

        ``None`` valued params are left out of the request body.
        """
        body: Dict[str, Any] = {"model": model or self.model, "messages": msg.to_wire(messages)}
        body.update({k: v for k, v in params.items() if v is not None})

        try:
            response = await self._http.post("/chat/completions", json=body)
        except httpx.HTTPError as e:
            raise InferenceError(f"Request to {self.endpoint} failed: {e}") from e

        if response.is_error:
            raise InferenceError(
                f"Unexpected status {response.status_code} from {self.endpoint}: {response.text[:500]}"
            )

        try:
            data = response.json()
            content = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise InferenceError(f"Malformed completion payload: {e!r}") from e
        if content is not None and not isinstance(content, str):
            raise InferenceError(f"Completion content is not text: {type(content).__name__}")
        return content or ""

    async def aclose(self) -> None:
        await self._http.aclose()


def create_from_config(cfg: Dict[str, Any], api_key: Optional[str]) -> ChatCompletionsClient:
    """Create a ChatCompletionsClient from a config dict (e.g., loaded YAML)."""
    inf = (cfg or {}).get("inference", {}) or {}
    return ChatCompletionsClient(
        endpoint=str(inf.get("endpoint")),
        api_key=api_key,
        model=str(inf.get("model")),
        timeout=float(inf.get("timeout_seconds") or 120.0),
    )


# -----------------------------
# Completion step
# -----------------------------

class CompletionInvoker:
    """Send a whole conversation to the model and append the raw reply."""

    def __init__(self, client: ChatCompletionsClient, store: HistoryStore, generation: GenerationConfig) -> None:
        self.client = client
        self.store = store
        self.generation = generation

    async def complete(self, conversation_id: str) -> str:
        history = self.store.messages(conversation_id)
        last = history[-1] if history else None
        if last is not None and isinstance(last.content, str):
            logger.info("Sending prompt to AI: %s", preview(last.content))

        try:
            reply = await self.client.create(history, **asdict(self.generation))
        except InferenceError:
            logger.exception("AI completion failed for conversation %s", conversation_id)
            raise

        self.store.append(conversation_id, msg.assistant(reply))
        return reply
