# =============================================================================
# Unit Tests — Request Logger
# =============================================================================
#
# The logger writes one audit row and folds the outcome into the engine's
# metrics. Store failures must never propagate.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime
from unittest.mock import AsyncMock

from ai_engine.services.health import EngineMetrics, InMemoryMetricsStore
from ai_engine.services.request_log import (
    InMemoryRequestLogStore,
    RequestLogEntry,
    RequestLogger,
)


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


NOW = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)


def _entry(**overrides) -> RequestLogEntry:
    values = dict(
        user_id="user-1",
        engine_used="lovable",
        action="generate_questions",
        prompt_hash="generate_questions_abc",
        cache_hit=False,
        fallback_used=False,
        fallback_reason=None,
        response_time_ms=120,
        tokens_used=30,
        success=True,
    )
    values.update(overrides)
    return RequestLogEntry(**values)


def _logger(threshold=5):
    log_store = InMemoryRequestLogStore()
    metrics_store = InMemoryMetricsStore()
    request_logger = RequestLogger(
        log_store, metrics_store, clock=lambda: NOW, failure_threshold=threshold,
    )
    return request_logger, log_store, metrics_store


class TestRequestLogger:
    def test_appends_row_with_timestamp(self):
        request_logger, log_store, _ = _logger()
        _run(request_logger.log(_entry()))

        assert len(log_store.entries) == 1
        assert log_store.entries[0].created_at == NOW

    def test_creates_metrics_row(self):
        request_logger, _, metrics_store = _logger()
        _run(request_logger.log(_entry()))

        row = _run(metrics_store.get("lovable"))
        assert row.request_count == 1
        assert row.success_count == 1
        assert row.total_tokens == 30
        assert row.avg_response_time_ms == 120
        assert row.last_used_at == NOW

    def test_cache_hits_count_as_requests(self):
        request_logger, _, metrics_store = _logger()
        _run(request_logger.log(_entry(cache_hit=True, tokens_used=0, response_time_ms=5)))

        row = _run(metrics_store.get("lovable"))
        assert row.request_count == 1
        assert row.total_tokens == 0

    def test_consecutive_failures_flip_engine_unhealthy(self, caplog):
        request_logger, _, metrics_store = _logger(threshold=3)

        with caplog.at_level(logging.WARNING):
            for _ in range(3):
                _run(request_logger.log(_entry(success=False, error_message="API error: 500")))

        row = _run(metrics_store.get("lovable"))
        assert row.failure_count == 3
        assert row.is_healthy is False
        assert row.last_error == "API error: 500"
        assert "marked unhealthy" in caplog.text

    def test_success_after_failures_restores_health(self):
        request_logger, _, metrics_store = _logger(threshold=2)
        _run(request_logger.log(_entry(success=False, error_message="x")))
        _run(request_logger.log(_entry(success=False, error_message="x")))
        _run(request_logger.log(_entry(success=True)))

        assert _run(metrics_store.get("lovable")).is_healthy is True

    def test_log_store_failure_still_updates_metrics(self):
        log_store = AsyncMock()
        log_store.append.side_effect = ConnectionError("db down")
        metrics_store = InMemoryMetricsStore()
        request_logger = RequestLogger(log_store, metrics_store, clock=lambda: NOW)

        _run(request_logger.log(_entry()))

        assert _run(metrics_store.get("lovable")).request_count == 1

    def test_metrics_failure_is_swallowed(self):
        metrics_store = AsyncMock()
        metrics_store.get.return_value = EngineMetrics("lovable")
        metrics_store.save.side_effect = ConnectionError("db down")
        log_store = InMemoryRequestLogStore()
        request_logger = RequestLogger(log_store, metrics_store, clock=lambda: NOW)

        _run(request_logger.log(_entry()))  # Should not raise

        assert len(log_store.entries) == 1
