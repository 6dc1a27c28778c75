# =============================================================================
# Request Logger — Audit Trail + Engine Metrics Update
# =============================================================================
#
# Called once per unified-engine request, cache hit or miss:
#   1. append an ai_engine_logs row (write-once, never updated)
#   2. read-modify-write the engine's metrics via health.apply_sample()
#
# The metrics update is not transactional: two concurrent requests can
# read the same row and the later save wins, dropping one sample. The
# metrics are routing hints and dashboards, not billing data.
#
# Logging never fails a request: store errors are logged and dropped.
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ai_engine.db.engine import get_session_factory
from ai_engine.db.models import EngineRequestLog
from ai_engine.services.clock import Clock, utcnow
from ai_engine.services.health import MetricsStore, apply_sample

logger = logging.getLogger(__name__)


@dataclass
class RequestLogEntry:
    """One audit row; field names mirror the ai_engine_logs columns."""

    user_id: str | None
    engine_used: str
    action: str
    prompt_hash: str
    cache_hit: bool
    fallback_used: bool
    fallback_reason: str | None
    response_time_ms: int
    tokens_used: int | None
    success: bool
    error_message: str | None = None
    created_at: datetime | None = field(default=None)


# ---------------------------------------------------------------------------
# Log Stores
# ---------------------------------------------------------------------------


class RequestLogStore(Protocol):
    async def append(self, entry: RequestLogEntry) -> None:
        ...


class InMemoryRequestLogStore:
    """Keeps entries in a list, oldest first."""

    def __init__(self) -> None:
        self.entries: list[RequestLogEntry] = []

    async def append(self, entry: RequestLogEntry) -> None:
        self.entries.append(entry)


class SqlRequestLogStore:
    """Inserts into ai_engine_logs."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ) -> None:
        self._session_factory = session_factory or get_session_factory()

    async def append(self, entry: RequestLogEntry) -> None:
        async with self._session_factory() as session:
            session.add(
                EngineRequestLog(
                    user_id=entry.user_id,
                    engine_used=entry.engine_used,
                    action=entry.action,
                    prompt_hash=entry.prompt_hash,
                    cache_hit=entry.cache_hit,
                    fallback_used=entry.fallback_used,
                    fallback_reason=entry.fallback_reason,
                    response_time_ms=entry.response_time_ms,
                    tokens_used=entry.tokens_used or 0,
                    success=entry.success,
                    error_message=entry.error_message,
                )
            )
            await session.commit()


# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------


class RequestLogger:
    """Writes the audit row and folds the outcome into engine metrics."""

    def __init__(
        self,
        log_store: RequestLogStore,
        metrics_store: MetricsStore,
        clock: Clock = utcnow,
        failure_threshold: int | None = None,
    ) -> None:
        self._log_store = log_store
        self._metrics_store = metrics_store
        self._clock = clock
        self._failure_threshold = failure_threshold

    async def log(self, entry: RequestLogEntry) -> None:
        now = self._clock()
        if entry.created_at is None:
            entry.created_at = now

        try:
            await self._log_store.append(entry)
        except Exception as e:
            logger.warning("Failed to write request log: %s", e)

        try:
            existing = await self._metrics_store.get(entry.engine_used)
            updated = apply_sample(
                existing,
                engine_name=entry.engine_used,
                success=entry.success,
                response_time_ms=entry.response_time_ms,
                tokens_used=entry.tokens_used,
                error_message=entry.error_message,
                now=now,
                failure_threshold=self._failure_threshold,
            )
            await self._metrics_store.save(updated)
        except Exception as e:
            logger.warning(
                "Failed to update metrics for %s: %s", entry.engine_used, e,
            )
            return

        if existing is not None and existing.is_healthy and not updated.is_healthy:
            logger.warning(
                "Engine %s marked unhealthy after %d failures (last error: %s)",
                updated.engine_name,
                updated.failure_count,
                updated.last_error,
            )
