# =============================================================================
# Fallback Orchestrator — Ordered Provider Candidates
# =============================================================================
#
# One abstraction serves both endpoints:
#
#   unified engine:  [primary engine, fallback engine]
#   tutor chat:      [gateway, gemini-gemini-2.5-flash,
#                     gemini-gemini-2.0-flash, gemini-gemini-2.5-pro]
#
# Candidates are tried strictly in order, one attempt each, sequentially.
# The first success wins; when every candidate fails the result names each
# candidate's failure reason.
#
# There is no timeout of its own and no per-candidate retry; a candidate's
# duration is whatever its HTTP client allows.
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ai_engine.config import settings
from ai_engine.services.llm import (
    EngineName,
    GeminiProvider,
    LLMProvider,
    ProviderResult,
    get_provider,
)

logger = logging.getLogger(__name__)


@dataclass
class ProviderCandidate:
    """One entry in a fallback chain."""

    engine: EngineName
    provider: LLMProvider
    # Reported back to callers; "lovable", "gemini" or "gemini-<model>"
    label: str = ""

    def __post_init__(self) -> None:
        if not self.label:
            self.label = self.engine.value


@dataclass
class CandidateAttempt:
    """What happened when one candidate was tried."""

    label: str
    success: bool
    error: str | None = None


@dataclass
class OrchestratorResult:
    """Outcome of a whole fallback chain."""

    success: bool
    engine: EngineName
    label: str
    fallback_used: bool
    content: str | None = None
    error: str | None = None
    tokens_used: int | None = None
    attempts: list[CandidateAttempt] = field(default_factory=list)


class FallbackOrchestrator:
    """Try each candidate in order until one answers."""

    def __init__(self, candidates: list[ProviderCandidate]) -> None:
        if not candidates:
            raise ValueError("FallbackOrchestrator needs at least one candidate")
        self._candidates = candidates

    @property
    def candidates(self) -> list[ProviderCandidate]:
        return list(self._candidates)

    # -------------------------------------------------------------------
    # Preset chains
    # -------------------------------------------------------------------

    @classmethod
    def for_engines(
        cls,
        primary: EngineName,
        fallback: EngineName,
    ) -> FallbackOrchestrator:
        """The unified engine's chain: selected primary, then the other engine."""
        return cls([
            ProviderCandidate(engine=primary, provider=get_provider(primary)),
            ProviderCandidate(engine=fallback, provider=get_provider(fallback)),
        ])

    @classmethod
    def for_chat(cls) -> FallbackOrchestrator:
        """The tutor chat's chain: the gateway, then each Gemini model variant."""
        candidates = [
            ProviderCandidate(
                engine=EngineName.LOVABLE,
                provider=get_provider(EngineName.LOVABLE),
            )
        ]
        for model in settings.chat_fallback_models:
            candidates.append(
                ProviderCandidate(
                    engine=EngineName.GEMINI,
                    provider=GeminiProvider(
                        model=model,
                        conversation=True,
                        max_output_tokens=settings.chat_max_output_tokens,
                    ),
                    label=f"gemini-{model}",
                )
            )
        return cls(candidates)

    # -------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------

    async def call_with_fallback(
        self,
        messages: list[dict[str, str]],
    ) -> OrchestratorResult:
        """
        Send `messages` to each candidate in turn until one succeeds.

        Returns:
            On success: the winning candidate's content, engine and label,
            fallback_used=True unless the first candidate answered.
            On total failure: success=False, engine of the first candidate,
            fallback_used=True whenever more than one candidate was tried,
            and an error naming every candidate's failure.
        """
        attempts: list[CandidateAttempt] = []

        for index, candidate in enumerate(self._candidates):
            if index == 0:
                logger.info("Trying primary engine: %s", candidate.label)
            else:
                logger.info(
                    "%s failed: %s. Trying fallback: %s",
                    attempts[-1].label,
                    attempts[-1].error,
                    candidate.label,
                )

            result: ProviderResult = await candidate.provider.call(messages)
            attempts.append(
                CandidateAttempt(
                    label=candidate.label,
                    success=result.success,
                    error=result.error,
                )
            )

            if result.success:
                return OrchestratorResult(
                    success=True,
                    engine=candidate.engine,
                    label=candidate.label,
                    fallback_used=index > 0,
                    content=result.content,
                    tokens_used=result.tokens_used,
                    attempts=attempts,
                )

        first = self._candidates[0]
        error = _describe_failures(attempts)
        logger.warning(error)

        return OrchestratorResult(
            success=False,
            engine=first.engine,
            label=first.label,
            fallback_used=len(self._candidates) > 1,
            error=error,
            attempts=attempts,
        )


def _describe_failures(attempts: list[CandidateAttempt]) -> str:
    """
    Build the total-failure message.

    Two candidates:
        "Both engines failed. Primary (lovable): Rate limit exceeded.
         Fallback (gemini): API error: 500"
    One or three-plus candidates use "Engine failed." / "All engines failed."
    and list every fallback in order.
    """
    if len(attempts) == 1:
        head = "Engine failed."
    elif len(attempts) == 2:
        head = "Both engines failed."
    else:
        head = "All engines failed."

    parts = [f"Primary ({attempts[0].label}): {attempts[0].error}"]
    parts.extend(
        f"Fallback ({attempt.label}): {attempt.error}" for attempt in attempts[1:]
    )
    return f"{head} " + ". ".join(parts)
