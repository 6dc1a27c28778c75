# =============================================================================
# Unit Tests — Provider Adapters
# =============================================================================
#
# No network access: the gateway adapter gets a mocked AsyncOpenAI client,
# the Gemini adapter an httpx.AsyncClient over httpx.MockTransport.
#
# Test groups:
#   1. Status classification
#   2. LovableProvider (openai SDK)
#   3. GeminiProvider payloads (single-turn and conversation)
#   4. GeminiProvider calls
# =============================================================================

from __future__ import annotations

import asyncio
import json
import logging
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
from openai import APIConnectionError, APIStatusError

from ai_engine.services.llm import (
    EngineName,
    GeminiProvider,
    LovableProvider,
    classify_http_status,
)


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


MESSAGES = [
    {"role": "system", "content": "Você é um tutor."},
    {"role": "user", "content": "O que é o SFN?"},
]

_GATEWAY_REQUEST = httpx.Request("POST", "https://gateway.test/v1/chat/completions")


def _openai_client(response=None, error=None) -> MagicMock:
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=response, side_effect=error)
    return client


def _completion(content, total_tokens=42):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(total_tokens=total_tokens),
    )


def _status_error(status: int) -> APIStatusError:
    response = httpx.Response(status, request=_GATEWAY_REQUEST)
    return APIStatusError("upstream error", response=response, body=None)


def _gemini(handler, **kwargs) -> GeminiProvider:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GeminiProvider(
        api_key="test-key",
        model=kwargs.pop("model", "gemini-2.0-flash"),
        base_url="https://gemini.test/v1beta",
        http_client=client,
        **kwargs,
    )


def _gemini_body(text="Resposta", tokens=77):
    return {
        "candidates": [{"content": {"parts": [{"text": text}]}}],
        "usageMetadata": {"totalTokenCount": tokens},
    }


# ---------------------------------------------------------------------------
# 1. Status Classification
# ---------------------------------------------------------------------------


class TestClassifyHttpStatus:
    def test_rate_limit(self):
        assert classify_http_status(429) == "Rate limit exceeded"

    def test_payment_required(self):
        assert classify_http_status(402) == "Payment required"

    def test_other_status(self):
        assert classify_http_status(503) == "API error: 503"


class TestEngineName:
    def test_other(self):
        assert EngineName.LOVABLE.other is EngineName.GEMINI
        assert EngineName.GEMINI.other is EngineName.LOVABLE


# ---------------------------------------------------------------------------
# 2. LovableProvider
# ---------------------------------------------------------------------------


class TestLovableProvider:
    def test_success(self):
        client = _openai_client(_completion("O SFN é ..."))
        provider = LovableProvider(model="google/gemini-2.5-flash", client=client)

        result = _run(provider.call(MESSAGES))

        assert result.success is True
        assert result.content == "O SFN é ..."
        assert result.tokens_used == 42
        client.chat.completions.create.assert_awaited_once_with(
            model="google/gemini-2.5-flash", messages=MESSAGES,
        )

    def test_rate_limited(self):
        provider = LovableProvider(client=_openai_client(error=_status_error(429)))
        result = _run(provider.call(MESSAGES))
        assert result.success is False
        assert result.error == "Rate limit exceeded"

    def test_payment_required(self):
        provider = LovableProvider(client=_openai_client(error=_status_error(402)))
        assert _run(provider.call(MESSAGES)).error == "Payment required"

    def test_server_error(self):
        provider = LovableProvider(client=_openai_client(error=_status_error(500)))
        assert _run(provider.call(MESSAGES)).error == "API error: 500"

    def test_transport_error(self):
        error = APIConnectionError(request=_GATEWAY_REQUEST)
        provider = LovableProvider(client=_openai_client(error=error))

        result = _run(provider.call(MESSAGES))

        assert result.success is False
        assert result.error

    def test_empty_content(self):
        provider = LovableProvider(client=_openai_client(_completion("")))
        assert _run(provider.call(MESSAGES)).error == "Empty response"

    def test_no_choices(self):
        response = SimpleNamespace(choices=[], usage=None)
        provider = LovableProvider(client=_openai_client(response))
        assert _run(provider.call(MESSAGES)).error == "Empty response"

    def test_missing_key(self, monkeypatch):
        monkeypatch.setattr("ai_engine.services.llm.settings.lovable_api_key", "")
        result = _run(LovableProvider().call(MESSAGES))
        assert result.success is False
        assert result.error == "lovable API key not configured"


# ---------------------------------------------------------------------------
# 3. Gemini Payloads
# ---------------------------------------------------------------------------


class TestGeminiPayload:
    def test_single_turn_concatenates_parts(self):
        provider = GeminiProvider(api_key="k")
        payload = provider.build_payload(MESSAGES)

        assert payload["contents"] == [
            {"parts": [{"text": "Você é um tutor."}, {"text": "O que é o SFN?"}]},
        ]

    def test_generation_config(self):
        provider = GeminiProvider(api_key="k", max_output_tokens=4096)
        config = provider.build_payload(MESSAGES)["generationConfig"]

        assert config == {
            "temperature": 0.7,
            "topK": 40,
            "topP": 0.95,
            "maxOutputTokens": 4096,
        }

    def test_default_max_output_tokens(self):
        config = GeminiProvider(api_key="k").build_payload(MESSAGES)["generationConfig"]
        assert config["maxOutputTokens"] == 8192

    def test_conversation_folds_system_into_first_user_turn(self):
        provider = GeminiProvider(api_key="k", conversation=True)
        messages = [
            {"role": "system", "content": "S" * 800},
            {"role": "user", "content": "primeira"},
            {"role": "assistant", "content": "resposta"},
            {"role": "user", "content": "segunda"},
        ]

        contents = provider.build_payload(messages)["contents"]

        assert [c["role"] for c in contents] == ["user", "model", "user"]
        first = contents[0]["parts"][0]["text"]
        assert first == f"[Contexto]: {'S' * 500}\n\n[Mensagem]: primeira"
        assert contents[2]["parts"][0]["text"] == "segunda"

    def test_conversation_without_turns_sends_greeting(self):
        provider = GeminiProvider(api_key="k", conversation=True)
        contents = provider.build_payload([{"role": "system", "content": "S"}])["contents"]
        assert contents == [{"role": "user", "parts": [{"text": "Olá"}]}]


# ---------------------------------------------------------------------------
# 4. Gemini Calls
# ---------------------------------------------------------------------------


class TestGeminiProvider:
    def test_success_and_request_shape(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = request.url
            seen["headers"] = request.headers
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=_gemini_body("O SFN é ...", tokens=77))

        result = _run(_gemini(handler, model="gemini-2.5-pro").call(MESSAGES))

        assert result.success is True
        assert result.content == "O SFN é ..."
        assert result.tokens_used == 77
        assert seen["url"].path == "/v1beta/models/gemini-2.5-pro:generateContent"
        assert seen["headers"]["x-goog-api-key"] == "test-key"
        assert "key" not in seen["url"].params
        assert "contents" in seen["body"]

    def test_rate_limited(self):
        provider = _gemini(lambda r: httpx.Response(429, json={}))
        assert _run(provider.call(MESSAGES)).error == "Rate limit exceeded"

    def test_payment_required(self):
        provider = _gemini(lambda r: httpx.Response(402, json={}))
        assert _run(provider.call(MESSAGES)).error == "Payment required"

    def test_server_error(self):
        provider = _gemini(lambda r: httpx.Response(500, text="boom"))
        assert _run(provider.call(MESSAGES)).error == "API error: 500"

    def test_missing_text_is_empty_response(self):
        provider = _gemini(lambda r: httpx.Response(200, json={"candidates": []}))
        assert _run(provider.call(MESSAGES)).error == "Empty response"

    def test_non_json_body(self):
        provider = _gemini(lambda r: httpx.Response(200, text="<html>"))
        assert _run(provider.call(MESSAGES)).error == "Invalid response body"

    def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        result = _run(_gemini(handler).call(MESSAGES))

        assert result.success is False
        assert "connection refused" in result.error

    def test_missing_key(self, monkeypatch):
        monkeypatch.setattr("ai_engine.services.llm.settings.gemini_api_key", "")
        result = _run(GeminiProvider().call(MESSAGES))
        assert result.error == "gemini API key not configured"

    def test_api_key_never_logged(self, caplog):
        provider = _gemini(lambda r: httpx.Response(200, json=_gemini_body()))

        with caplog.at_level(logging.DEBUG):
            _run(provider.call(MESSAGES))

        assert caplog.records
        assert all("test-key" not in r.getMessage() for r in caplog.records)
