# =============================================================================
# Engine Health Registry & Selection Policy
# =============================================================================
#
# One EngineMetrics record per engine, updated after every logged call
# (see request_log.py) and read by select_engines() to order the fallback
# chain.
#
# Health rule:
#   - any success            → is_healthy = True (one success clears the streak)
#   - failure_count >= N     → is_healthy = False   (N = unhealthy_failure_threshold)
#   - otherwise              → unchanged
# failure_count is cumulative and never reset.
#
# Selection (stateless read-then-decide, no locking):
#   1. no metrics yet            → preferred or lovable
#   2. preferred and not unhealthy → preferred
#   3. both healthy              → the one with the older last_used_at
#   4. exactly one healthy       → that one
#   5. both unhealthy            → lovable
# Concurrent requests may compute the same "older" engine and both route to
# it; rotation is a load-spreading hint, not admission control.
# =============================================================================

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ai_engine.config import settings
from ai_engine.db.engine import get_session_factory
from ai_engine.db.models import EngineMetric
from ai_engine.services.llm import EngineName

logger = logging.getLogger(__name__)

# Stand-in for a missing last_used_at: never used ⇒ least recently used
_NEVER = datetime.min.replace(tzinfo=UTC)


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class EngineMetrics:
    """Snapshot of one ai_engine_metrics row."""

    engine_name: str
    request_count: int = 0
    success_count: int = 0
    failure_count: int = 0
    total_tokens: int = 0
    avg_response_time_ms: int = 0
    last_used_at: datetime | None = None
    last_error: str | None = None
    is_healthy: bool = True


@dataclass
class EngineSelection:
    """Which engine to try first, and which to fall back to."""

    primary: EngineName
    fallback: EngineName


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def apply_sample(
    existing: EngineMetrics | None,
    engine_name: str,
    success: bool,
    response_time_ms: int,
    tokens_used: int | None,
    error_message: str | None,
    now: datetime,
    failure_threshold: int | None = None,
) -> EngineMetrics:
    """
    Fold one call outcome into an engine's metrics.

    Pure function; the caller persists the returned record.

    The running average only moves when a positive response time is
    recorded: new_avg = round((old_avg * old_count + sample) / new_count).
    """
    threshold = failure_threshold or settings.unhealthy_failure_threshold
    tokens = tokens_used or 0

    if existing is None:
        failures = 0 if success else 1
        return EngineMetrics(
            engine_name=engine_name,
            request_count=1,
            success_count=1 if success else 0,
            failure_count=failures,
            total_tokens=tokens,
            avg_response_time_ms=response_time_ms or 0,
            last_used_at=now,
            last_error=None if success else error_message,
            is_healthy=success or failures < threshold,
        )

    request_count = existing.request_count + 1
    failure_count = existing.failure_count + (0 if success else 1)

    if response_time_ms:
        avg = _round_half_up(
            (existing.avg_response_time_ms * existing.request_count + response_time_ms)
            / request_count
        )
    else:
        avg = existing.avg_response_time_ms

    if success:
        is_healthy = True
    elif failure_count >= threshold:
        is_healthy = False
    else:
        is_healthy = existing.is_healthy

    return replace(
        existing,
        request_count=request_count,
        success_count=existing.success_count + (1 if success else 0),
        failure_count=failure_count,
        total_tokens=existing.total_tokens + tokens,
        avg_response_time_ms=avg,
        last_used_at=now,
        last_error=existing.last_error if success else error_message,
        is_healthy=is_healthy,
    )


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class MetricsStore(Protocol):
    """Per-engine metrics persistence."""

    async def get(self, engine_name: str) -> EngineMetrics | None:
        ...

    async def get_many(self, engine_names: list[str]) -> dict[str, EngineMetrics]:
        ...

    async def save(self, metrics: EngineMetrics) -> None:
        ...

    async def list_all(self) -> list[EngineMetrics]:
        """All engines, busiest (highest request_count) first."""
        ...


# ---------------------------------------------------------------------------
# Implementation 1: In-Memory
# ---------------------------------------------------------------------------


class InMemoryMetricsStore:
    """Process-local metrics keyed by engine name."""

    def __init__(self) -> None:
        self._rows: dict[str, EngineMetrics] = {}

    async def get(self, engine_name: str) -> EngineMetrics | None:
        row = self._rows.get(engine_name)
        return replace(row) if row else None

    async def get_many(self, engine_names: list[str]) -> dict[str, EngineMetrics]:
        return {
            name: replace(self._rows[name])
            for name in engine_names
            if name in self._rows
        }

    async def save(self, metrics: EngineMetrics) -> None:
        self._rows[metrics.engine_name] = replace(metrics)

    async def list_all(self) -> list[EngineMetrics]:
        return sorted(
            (replace(row) for row in self._rows.values()),
            key=lambda m: m.request_count,
            reverse=True,
        )


# ---------------------------------------------------------------------------
# Implementation 2: SQL (ai_engine_metrics)
# ---------------------------------------------------------------------------


def _to_metrics(row: EngineMetric) -> EngineMetrics:
    return EngineMetrics(
        engine_name=row.engine_name,
        request_count=row.request_count or 0,
        success_count=row.success_count or 0,
        failure_count=row.failure_count or 0,
        total_tokens=row.total_tokens or 0,
        avg_response_time_ms=row.avg_response_time_ms or 0,
        last_used_at=row.last_used_at,
        last_error=row.last_error,
        is_healthy=row.is_healthy,
    )


class SqlMetricsStore:
    """Metrics rows in PostgreSQL; save() inserts or overwrites by engine_name."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ) -> None:
        self._session_factory = session_factory or get_session_factory()

    async def get(self, engine_name: str) -> EngineMetrics | None:
        found = await self.get_many([engine_name])
        return found.get(engine_name)

    async def get_many(self, engine_names: list[str]) -> dict[str, EngineMetrics]:
        async with self._session_factory() as session:
            stmt = select(EngineMetric).where(
                EngineMetric.engine_name.in_(engine_names),
            )
            rows = (await session.execute(stmt)).scalars().all()
        return {row.engine_name: _to_metrics(row) for row in rows}

    async def save(self, metrics: EngineMetrics) -> None:
        async with self._session_factory() as session:
            stmt = select(EngineMetric).where(
                EngineMetric.engine_name == metrics.engine_name,
            )
            row = (await session.execute(stmt)).scalar_one_or_none()
            if row is None:
                row = EngineMetric(engine_name=metrics.engine_name)
                session.add(row)

            row.request_count = metrics.request_count
            row.success_count = metrics.success_count
            row.failure_count = metrics.failure_count
            row.total_tokens = metrics.total_tokens
            row.avg_response_time_ms = metrics.avg_response_time_ms
            row.last_used_at = metrics.last_used_at
            row.last_error = metrics.last_error
            row.is_healthy = metrics.is_healthy

            await session.commit()

    async def list_all(self) -> list[EngineMetrics]:
        async with self._session_factory() as session:
            stmt = select(EngineMetric).order_by(EngineMetric.request_count.desc())
            rows = (await session.execute(stmt)).scalars().all()
        return [_to_metrics(row) for row in rows]


# ---------------------------------------------------------------------------
# Selection Policy
# ---------------------------------------------------------------------------


def _default_selection(preferred: EngineName | None) -> EngineSelection:
    primary = preferred or EngineName.LOVABLE
    return EngineSelection(primary=primary, fallback=primary.other)


def choose_engines(
    metrics: dict[str, EngineMetrics],
    preferred: EngineName | None = None,
) -> EngineSelection:
    """Apply the selection policy to already-loaded metrics."""
    if not metrics:
        return _default_selection(preferred)

    def healthy(engine: EngineName) -> bool:
        row = metrics.get(engine.value)
        return row is None or row.is_healthy

    if preferred is not None and healthy(preferred):
        return EngineSelection(primary=preferred, fallback=preferred.other)

    lovable_ok = healthy(EngineName.LOVABLE)
    gemini_ok = healthy(EngineName.GEMINI)

    if lovable_ok and gemini_ok:
        lovable_row = metrics.get(EngineName.LOVABLE.value)
        gemini_row = metrics.get(EngineName.GEMINI.value)
        lovable_last = (lovable_row.last_used_at if lovable_row else None) or _NEVER
        gemini_last = (gemini_row.last_used_at if gemini_row else None) or _NEVER
        if lovable_last <= gemini_last:
            return EngineSelection(EngineName.LOVABLE, EngineName.GEMINI)
        return EngineSelection(EngineName.GEMINI, EngineName.LOVABLE)

    if gemini_ok and not lovable_ok:
        return EngineSelection(EngineName.GEMINI, EngineName.LOVABLE)

    # Lovable is the only healthy engine, or neither is.
    return EngineSelection(EngineName.LOVABLE, EngineName.GEMINI)


async def select_engines(
    store: MetricsStore,
    preferred: EngineName | None = None,
) -> EngineSelection:
    """
    Load both engines' metrics and pick primary/fallback.

    A store failure falls back to the no-metrics default rather than failing
    the request.
    """
    try:
        metrics = await store.get_many([e.value for e in EngineName])
    except Exception as e:
        logger.warning("Engine selection failed, using default order: %s", e)
        return _default_selection(preferred)

    selection = choose_engines(metrics, preferred)
    logger.info(
        "Selected engines: primary=%s, fallback=%s",
        selection.primary.value,
        selection.fallback.value,
    )
    return selection
