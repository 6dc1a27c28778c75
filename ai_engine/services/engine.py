# =============================================================================
# Unified Engine — Cache → Select → Orchestrate → Store → Log
# =============================================================================
#
# The service behind POST /unified-ai-engine. One request runs:
#
#   1. build messages (explicit `messages`, else systemPrompt + prompt)
#   2. compute the prompt hash over message contents + context
#   3. cache lookup, unless skipCache        ── hit ──→ log, return cached
#   4. select primary/fallback from engine health
#   5. FallbackOrchestrator over [primary, fallback]
#   6. parse a JSON object out of the content for JSON-producing actions
#   7. store the response in the cache
#   8. log the request and update engine metrics
#
# Every request writes exactly one log row, whether it was a hit, a miss
# that succeeded, or a miss where both engines failed.
#
# Stores are advisory: a failed cache read is a miss, a failed cache write
# or log write is dropped with a warning (see request_log.py).
# =============================================================================

from __future__ import annotations

import json
import logging
import re
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from ai_engine.models.requests import EngineRequest
from ai_engine.services.cache import CacheStore, compute_prompt_hash
from ai_engine.services.errors import ServiceError
from ai_engine.services.health import MetricsStore, select_engines
from ai_engine.services.llm import EngineName
from ai_engine.services.orchestrator import FallbackOrchestrator
from ai_engine.services.request_log import RequestLogEntry, RequestLogger

logger = logging.getLogger(__name__)

FALLBACK_REASON = "Primary engine failed"

# Greedy: from the first "{" to the last "}" so nested objects survive
_JSON_BLOCK = re.compile(r"\{[\s\S]*\}")


@dataclass
class EngineResult:
    """What the endpoint returns on success."""

    content: str
    engine: str
    fallback_used: bool
    cached: bool
    response_time_ms: int
    data: dict[str, Any] | None = None


def build_messages(request: EngineRequest) -> list[dict[str, str]]:
    """Explicit messages win; otherwise systemPrompt and prompt, in that order."""
    if request.messages:
        return [{"role": m.role, "content": m.content} for m in request.messages]

    messages: list[dict[str, str]] = []
    if request.system_prompt:
        messages.append({"role": "system", "content": request.system_prompt})
    if request.prompt:
        messages.append({"role": "user", "content": request.prompt})
    return messages


def extract_json(content: str) -> dict[str, Any] | None:
    """
    Pull the outermost-looking JSON object out of model output.

    Models often wrap JSON in prose or code fences. Anything that does not
    parse into an object yields None.
    """
    match = _JSON_BLOCK.search(content)
    if match is None:
        return None
    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError:
        logger.debug("Model output contained an unparseable JSON block")
        return None
    return parsed if isinstance(parsed, dict) else None


class UnifiedEngine:
    """Cached, health-aware, two-engine completion service."""

    def __init__(
        self,
        cache_store: CacheStore,
        metrics_store: MetricsStore,
        request_logger: RequestLogger,
        orchestrator_factory: Callable[
            [EngineName, EngineName], FallbackOrchestrator
        ] = FallbackOrchestrator.for_engines,
    ) -> None:
        self._cache = cache_store
        self._metrics = metrics_store
        self._request_logger = request_logger
        self._orchestrator_factory = orchestrator_factory

    async def run(self, request: EngineRequest, user_id: str | None) -> EngineResult:
        """
        Serve one unified-engine request.

        Args:
            request: The validated request body.
            user_id: The authenticated subject, used for the audit row when
                the body carries no userId.

        Raises:
            ServiceError 400: No prompt text at all.
            ServiceError 500: Both engines failed.
        """
        start = time.monotonic()
        action = request.action.value
        log_user = request.user_id or user_id

        messages = build_messages(request)
        if not messages:
            raise ServiceError(400, "No prompt or messages provided")

        full_prompt = "\n".join(m["content"] for m in messages)
        prompt_hash = compute_prompt_hash(action, full_prompt, request.context)

        logger.info(
            "Engine request: action=%s, prompt='%s'", action, full_prompt[:80],
        )

        # -- Cache -------------------------------------------------------
        if not request.skip_cache:
            try:
                cached = await self._cache.lookup(prompt_hash)
            except Exception as e:
                logger.warning("Cache lookup failed, treating as miss: %s", e)
                cached = None

            if cached is not None and cached.hit:
                data = cached.data or {}
                engine = cached.engine or data.get("engine") or EngineName.LOVABLE.value
                elapsed = _elapsed_ms(start)
                logger.info("Cache hit for %s (hits=%d)", prompt_hash, cached.hit_count)

                await self._request_logger.log(
                    RequestLogEntry(
                        user_id=log_user,
                        engine_used=engine,
                        action=action,
                        prompt_hash=prompt_hash,
                        cache_hit=True,
                        fallback_used=False,
                        fallback_reason=None,
                        response_time_ms=elapsed,
                        tokens_used=0,
                        success=True,
                    )
                )
                return EngineResult(
                    content=data.get("content", ""),
                    engine=engine,
                    fallback_used=bool(data.get("fallbackUsed", False)),
                    cached=True,
                    response_time_ms=elapsed,
                    data=data.get("data"),
                )

        # -- Live call ---------------------------------------------------
        selection = await select_engines(self._metrics, request.preferred_engine)
        orchestrator = self._orchestrator_factory(selection.primary, selection.fallback)
        result = await orchestrator.call_with_fallback(messages)
        elapsed = _elapsed_ms(start)

        if not result.success:
            await self._request_logger.log(
                RequestLogEntry(
                    user_id=log_user,
                    engine_used=result.engine.value,
                    action=action,
                    prompt_hash=prompt_hash,
                    cache_hit=False,
                    fallback_used=result.fallback_used,
                    fallback_reason=FALLBACK_REASON if result.fallback_used else None,
                    response_time_ms=elapsed,
                    tokens_used=0,
                    success=False,
                    error_message=result.error,
                )
            )
            raise ServiceError(500, result.error or "All engines failed")

        content = result.content or ""
        data = extract_json(content) if request.action.produces_json else None

        response_data: dict[str, Any] = {
            "content": content,
            "engine": result.engine.value,
            "fallbackUsed": result.fallback_used,
        }
        if data is not None:
            response_data["data"] = data

        try:
            await self._cache.store(
                prompt_hash=prompt_hash,
                prompt_preview=full_prompt,
                action=action,
                engine=result.engine.value,
                response_data=response_data,
                tokens_used=result.tokens_used,
            )
        except Exception as e:
            logger.warning("Cache store failed for %s: %s", prompt_hash, e)

        await self._request_logger.log(
            RequestLogEntry(
                user_id=log_user,
                engine_used=result.engine.value,
                action=action,
                prompt_hash=prompt_hash,
                cache_hit=False,
                fallback_used=result.fallback_used,
                fallback_reason=FALLBACK_REASON if result.fallback_used else None,
                response_time_ms=elapsed,
                tokens_used=result.tokens_used,
                success=True,
            )
        )

        logger.info(
            "Engine request served by %s in %dms (fallback=%s)",
            result.engine.value,
            elapsed,
            result.fallback_used,
        )
        return EngineResult(
            content=content,
            engine=result.engine.value,
            fallback_used=result.fallback_used,
            cached=False,
            response_time_ms=elapsed,
            data=data,
        )


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_engine: UnifiedEngine | None = None


def get_unified_engine() -> UnifiedEngine:
    """Lazily build the engine over the configured store backend."""
    global _engine
    if _engine is None:
        from ai_engine.services.stores import get_stores

        stores = get_stores()
        _engine = UnifiedEngine(
            cache_store=stores.cache,
            metrics_store=stores.metrics,
            request_logger=RequestLogger(stores.request_log, stores.metrics),
        )
    return _engine
