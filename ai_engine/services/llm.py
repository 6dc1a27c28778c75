# =============================================================================
# Provider Adapters — Gateway (OpenAI-compatible) and Google Gemini
# =============================================================================
#
# Each adapter turns a list of {"role", "content"} messages into one upstream
# request and normalises the answer into a ProviderResult. Adapters never
# raise for upstream problems and never retry: a failed call is returned as
# ProviderResult(success=False, error=...) and the FallbackOrchestrator
# decides what to try next.
#
# Failure classification (shared by both engines):
#   HTTP 429          → "Rate limit exceeded"
#   HTTP 402          → "Payment required"
#   other non-2xx     → "API error: <status>"
#   2xx, no text      → "Empty response"
#   transport error   → the exception message
#   no API key        → "<engine> API key not configured"
#
# ARCHITECTURE:
#   LLMProvider (Protocol)
#   ├── LovableProvider  — openai SDK against the AI gateway's
#   │                      /chat/completions (system prompt as a message)
#   ├── GeminiProvider   — httpx against models/{model}:generateContent
#   │   ├── single-turn  — every message becomes a part of one content
#   │   └── conversation — role-mapped turns, system folded into first turn
#   └── get_provider()   — lazy per-engine singletons built from settings
# =============================================================================

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Protocol

import httpx
from openai import APIError, APIStatusError, AsyncOpenAI

from ai_engine.config import settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


class EngineName(str, enum.Enum):
    """The two upstream engines the orchestrator can route to."""

    LOVABLE = "lovable"
    GEMINI = "gemini"

    @property
    def other(self) -> EngineName:
        """The engine to fall back to when this one is primary."""
        if self is EngineName.LOVABLE:
            return EngineName.GEMINI
        return EngineName.LOVABLE


@dataclass
class ProviderResult:
    """Outcome of a single upstream call, successful or not."""

    success: bool
    content: str | None = None
    error: str | None = None
    tokens_used: int | None = None

    @classmethod
    def failure(cls, error: str) -> ProviderResult:
        return cls(success=False, error=error)


def classify_http_status(status_code: int) -> str:
    """Map a non-2xx upstream status to the error string callers see."""
    if status_code == 429:
        return "Rate limit exceeded"
    if status_code == 402:
        return "Payment required"
    return f"API error: {status_code}"


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class LLMProvider(Protocol):
    """Anything that can answer a chat-style message list."""

    async def call(self, messages: list[dict[str, str]]) -> ProviderResult:
        """
        Send `messages` upstream once.

        Args:
            messages: Dicts with "role" (system/user/assistant) and "content".

        Returns:
            ProviderResult; never raises for upstream or transport failures.
        """
        ...


# ---------------------------------------------------------------------------
# Implementation 1: AI Gateway (OpenAI-compatible)
# ---------------------------------------------------------------------------


class LovableProvider:
    """
    The "lovable" engine: an OpenAI-compatible gateway driven through the
    openai SDK with a custom base_url.

    The SDK's own retry loop is disabled (max_retries=0); one attempt per
    request is all an adapter makes.
    """

    engine = EngineName.LOVABLE

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
        client: AsyncOpenAI | None = None,
    ) -> None:
        resolved_key = api_key or settings.lovable_api_key
        self._model = model or settings.lovable_model

        if client is not None:
            self._client: AsyncOpenAI | None = client
        elif resolved_key:
            self._client = AsyncOpenAI(
                api_key=resolved_key,
                base_url=base_url or settings.lovable_base_url,
                max_retries=0,
                timeout=settings.provider_timeout_seconds,
            )
        else:
            self._client = None
            logger.warning("LOVABLE_API_KEY not set; gateway engine disabled")

    @property
    def model(self) -> str:
        return self._model

    async def call(self, messages: list[dict[str, str]]) -> ProviderResult:
        """Run one chat completion against the gateway."""
        if self._client is None:
            return ProviderResult.failure(f"{self.engine.value} API key not configured")

        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=messages,
            )
        except APIStatusError as e:
            logger.error("Gateway error: status=%s", e.status_code)
            return ProviderResult.failure(classify_http_status(e.status_code))
        except APIError as e:
            logger.error("Gateway call failed: %s", e)
            return ProviderResult.failure(str(e) or "Unknown error")

        content = None
        if response.choices:
            content = response.choices[0].message.content
        tokens_used = response.usage.total_tokens if response.usage else None

        if not content:
            return ProviderResult.failure("Empty response")

        return ProviderResult(success=True, content=content, tokens_used=tokens_used)


# ---------------------------------------------------------------------------
# Implementation 2: Google Gemini (generateContent)
# ---------------------------------------------------------------------------

# Leading characters of the system prompt folded into the first user turn
# in conversation mode.
_SYSTEM_CONTEXT_CHARS = 500


class GeminiProvider:
    """
    The "gemini" engine: Google's generateContent REST endpoint over httpx.

    Two request shapes:
    - single-turn (default): all message contents, system included, become
      the parts of one `contents` entry.
    - conversation: one entry per turn with roles user/model; the system
      prompt is not sent as a turn, its first 500 characters are prefixed to
      the first user turn as "[Contexto]: ...".

    An `http_client` may be injected (tests use httpx.MockTransport); without
    one, a client is opened per call.
    """

    engine = EngineName.GEMINI

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
        conversation: bool = False,
        max_output_tokens: int | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key or settings.gemini_api_key
        self._model = model or settings.gemini_model
        self._base_url = (base_url or settings.gemini_base_url).rstrip("/")
        self._conversation = conversation
        self._max_output_tokens = max_output_tokens or settings.gemini_max_output_tokens
        self._http_client = http_client

        if not self._api_key:
            logger.warning("GEMINI_API_KEY not set; Gemini engine disabled")

    @property
    def model(self) -> str:
        return self._model

    def build_payload(self, messages: list[dict[str, str]]) -> dict:
        """Build the generateContent request body for `messages`."""
        if self._conversation:
            contents = _to_conversation_contents(messages)
        else:
            contents = [{"parts": [{"text": m["content"]} for m in messages]}]

        return {
            "contents": contents,
            "generationConfig": {
                "temperature": settings.gemini_temperature,
                "topK": settings.gemini_top_k,
                "topP": settings.gemini_top_p,
                "maxOutputTokens": self._max_output_tokens,
            },
        }

    async def call(self, messages: list[dict[str, str]]) -> ProviderResult:
        """Run one generateContent request."""
        if not self._api_key:
            return ProviderResult.failure(f"{self.engine.value} API key not configured")

        url = f"{self._base_url}/models/{self._model}:generateContent"
        # Key goes in a header; httpx logs request URLs at INFO
        headers = {"x-goog-api-key": self._api_key}
        payload = self.build_payload(messages)

        try:
            if self._http_client is not None:
                response = await self._http_client.post(
                    url, headers=headers, json=payload,
                )
            else:
                async with httpx.AsyncClient(
                    timeout=settings.provider_timeout_seconds,
                ) as client:
                    response = await client.post(
                        url, headers=headers, json=payload,
                    )
        except httpx.HTTPError as e:
            logger.error("Gemini call failed (model=%s): %s", self._model, e)
            return ProviderResult.failure(str(e) or e.__class__.__name__)

        if not response.is_success:
            logger.error(
                "Gemini API error (model=%s): status=%s",
                self._model,
                response.status_code,
            )
            return ProviderResult.failure(classify_http_status(response.status_code))

        try:
            data = response.json()
        except ValueError:
            return ProviderResult.failure("Invalid response body")

        content = _extract_gemini_text(data)
        if not content:
            return ProviderResult.failure("Empty response")

        usage = data.get("usageMetadata") or {}
        return ProviderResult(
            success=True,
            content=content,
            tokens_used=usage.get("totalTokenCount"),
        )


def _to_conversation_contents(messages: list[dict[str, str]]) -> list[dict]:
    """Convert chat messages to Gemini's role-tagged `contents` list."""
    contents: list[dict] = []
    system_content = ""

    for message in messages:
        role = message.get("role")
        text = message.get("content") or ""
        if role == "system":
            system_content = text
            continue
        if role == "user" and not contents and system_content:
            text = (
                f"[Contexto]: {system_content[:_SYSTEM_CONTEXT_CHARS]}"
                f"\n\n[Mensagem]: {text}"
            )
        contents.append({
            "role": "model" if role == "assistant" else "user",
            "parts": [{"text": text}],
        })

    if not contents:
        contents.append({"role": "user", "parts": [{"text": "Olá"}]})
    return contents


def _extract_gemini_text(data: dict) -> str | None:
    """Return candidates[0].content.parts[0].text, or None if absent."""
    try:
        return data["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        return None


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

# Lazy singletons — one client per engine for the process lifetime
_providers: dict[EngineName, LLMProvider] = {}


def get_provider(engine: EngineName) -> LLMProvider:
    """Return the default adapter for `engine`, built from settings once."""
    if engine not in _providers:
        if engine is EngineName.LOVABLE:
            _providers[engine] = LovableProvider()
        else:
            _providers[engine] = GeminiProvider()
    return _providers[engine]
