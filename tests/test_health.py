# =============================================================================
# Unit Tests — Engine Health & Selection
# =============================================================================
#
# Test groups:
#   1. apply_sample (counters, running average, health flips)
#   2. choose_engines (selection policy)
#   3. select_engines (store failures fall back to the default order)
#   4. InMemoryMetricsStore ordering
# =============================================================================

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

from ai_engine.services.health import (
    EngineMetrics,
    InMemoryMetricsStore,
    apply_sample,
    choose_engines,
    select_engines,
)
from ai_engine.services.llm import EngineName


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


NOW = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)


def _sample(existing, success=True, ms=100, tokens=10, error=None, threshold=5):
    return apply_sample(
        existing,
        engine_name="lovable",
        success=success,
        response_time_ms=ms,
        tokens_used=tokens,
        error_message=error,
        now=NOW,
        failure_threshold=threshold,
    )


# ---------------------------------------------------------------------------
# 1. apply_sample
# ---------------------------------------------------------------------------


class TestApplySample:
    def test_first_success_creates_row(self):
        row = _sample(None, success=True, ms=250, tokens=40)
        assert row.request_count == 1
        assert row.success_count == 1
        assert row.failure_count == 0
        assert row.total_tokens == 40
        assert row.avg_response_time_ms == 250
        assert row.last_used_at == NOW
        assert row.is_healthy is True

    def test_first_failure_records_error_and_stays_healthy(self):
        row = _sample(None, success=False, error="API error: 500")
        assert row.failure_count == 1
        assert row.last_error == "API error: 500"
        assert row.is_healthy is True

    def test_running_average(self):
        existing = EngineMetrics("lovable", request_count=3, avg_response_time_ms=100)
        row = _sample(existing, ms=200)
        # (100 * 3 + 200) / 4 = 125
        assert row.avg_response_time_ms == 125

    def test_average_rounds_half_up(self):
        existing = EngineMetrics("lovable", request_count=1, avg_response_time_ms=100)
        row = _sample(existing, ms=101)
        # (100 + 101) / 2 = 100.5
        assert row.avg_response_time_ms == 101

    def test_zero_response_time_leaves_average(self):
        existing = EngineMetrics("lovable", request_count=4, avg_response_time_ms=300)
        row = _sample(existing, ms=0)
        assert row.avg_response_time_ms == 300
        assert row.request_count == 5

    def test_missing_tokens_count_as_zero(self):
        existing = EngineMetrics("lovable", request_count=1, total_tokens=50)
        row = _sample(existing, tokens=None)
        assert row.total_tokens == 50

    def test_success_keeps_previous_error(self):
        existing = EngineMetrics("lovable", request_count=2, last_error="Rate limit exceeded")
        row = _sample(existing, success=True)
        assert row.last_error == "Rate limit exceeded"

    def test_flips_unhealthy_at_threshold(self):
        existing = EngineMetrics("lovable", request_count=4, failure_count=4)
        row = _sample(existing, success=False, error="API error: 503")
        assert row.failure_count == 5
        assert row.is_healthy is False

    def test_below_threshold_keeps_health(self):
        existing = EngineMetrics("lovable", request_count=3, failure_count=3)
        row = _sample(existing, success=False, error="boom")
        assert row.is_healthy is True

    def test_single_success_restores_health(self):
        existing = EngineMetrics(
            "lovable", request_count=10, failure_count=9, is_healthy=False,
        )
        row = _sample(existing, success=True)
        assert row.is_healthy is True
        # Cumulative, never reset
        assert row.failure_count == 9

    def test_failure_while_unhealthy_stays_unhealthy(self):
        existing = EngineMetrics(
            "lovable", request_count=10, failure_count=9, is_healthy=False,
        )
        row = _sample(existing, success=False, error="boom")
        assert row.is_healthy is False

    def test_threshold_of_one_flips_on_first_failure(self):
        row = _sample(None, success=False, error="boom", threshold=1)
        assert row.is_healthy is False


# ---------------------------------------------------------------------------
# 2. choose_engines
# ---------------------------------------------------------------------------


def _row(name: EngineName, healthy=True, last_used=None) -> EngineMetrics:
    return EngineMetrics(
        engine_name=name.value,
        request_count=1,
        is_healthy=healthy,
        last_used_at=last_used,
    )


class TestChooseEngines:
    def test_no_metrics_defaults_to_lovable(self):
        selection = choose_engines({})
        assert selection.primary is EngineName.LOVABLE
        assert selection.fallback is EngineName.GEMINI

    def test_no_metrics_honours_preference(self):
        selection = choose_engines({}, preferred=EngineName.GEMINI)
        assert selection.primary is EngineName.GEMINI
        assert selection.fallback is EngineName.LOVABLE

    def test_healthy_preference_wins(self):
        metrics = {
            "lovable": _row(EngineName.LOVABLE, last_used=NOW - timedelta(hours=1)),
            "gemini": _row(EngineName.GEMINI, last_used=NOW),
        }
        selection = choose_engines(metrics, preferred=EngineName.GEMINI)
        assert selection.primary is EngineName.GEMINI

    def test_unhealthy_preference_ignored(self):
        metrics = {
            "lovable": _row(EngineName.LOVABLE),
            "gemini": _row(EngineName.GEMINI, healthy=False),
        }
        selection = choose_engines(metrics, preferred=EngineName.GEMINI)
        assert selection.primary is EngineName.LOVABLE
        assert selection.fallback is EngineName.GEMINI

    def test_rotation_picks_least_recently_used(self):
        metrics = {
            "lovable": _row(EngineName.LOVABLE, last_used=NOW),
            "gemini": _row(EngineName.GEMINI, last_used=NOW - timedelta(minutes=5)),
        }
        assert choose_engines(metrics).primary is EngineName.GEMINI

        metrics["gemini"] = _row(EngineName.GEMINI, last_used=NOW + timedelta(minutes=1))
        assert choose_engines(metrics).primary is EngineName.LOVABLE

    def test_never_used_engine_counts_as_oldest(self):
        metrics = {"lovable": _row(EngineName.LOVABLE, last_used=NOW)}
        assert choose_engines(metrics).primary is EngineName.GEMINI

    def test_tie_goes_to_lovable(self):
        metrics = {
            "lovable": _row(EngineName.LOVABLE, last_used=NOW),
            "gemini": _row(EngineName.GEMINI, last_used=NOW),
        }
        assert choose_engines(metrics).primary is EngineName.LOVABLE

    def test_only_gemini_healthy(self):
        metrics = {
            "lovable": _row(EngineName.LOVABLE, healthy=False),
            "gemini": _row(EngineName.GEMINI),
        }
        selection = choose_engines(metrics)
        assert selection.primary is EngineName.GEMINI
        assert selection.fallback is EngineName.LOVABLE

    def test_only_lovable_healthy(self):
        metrics = {
            "lovable": _row(EngineName.LOVABLE),
            "gemini": _row(EngineName.GEMINI, healthy=False),
        }
        assert choose_engines(metrics).primary is EngineName.LOVABLE

    def test_both_unhealthy_defaults_to_lovable(self):
        metrics = {
            "lovable": _row(EngineName.LOVABLE, healthy=False),
            "gemini": _row(EngineName.GEMINI, healthy=False),
        }
        selection = choose_engines(metrics, preferred=EngineName.GEMINI)
        assert selection.primary is EngineName.LOVABLE
        assert selection.fallback is EngineName.GEMINI


# ---------------------------------------------------------------------------
# 3. select_engines
# ---------------------------------------------------------------------------


class TestSelectEngines:
    def test_reads_store(self):
        store = InMemoryMetricsStore()
        _run(store.save(_row(EngineName.LOVABLE, healthy=False)))
        selection = _run(select_engines(store))
        assert selection.primary is EngineName.GEMINI

    def test_store_failure_uses_default_order(self):
        store = AsyncMock()
        store.get_many.side_effect = ConnectionError("db down")
        selection = _run(select_engines(store, preferred=EngineName.GEMINI))
        assert selection.primary is EngineName.GEMINI
        assert selection.fallback is EngineName.LOVABLE


# ---------------------------------------------------------------------------
# 4. InMemoryMetricsStore
# ---------------------------------------------------------------------------


class TestInMemoryMetricsStore:
    def test_list_all_busiest_first(self):
        store = InMemoryMetricsStore()
        _run(store.save(EngineMetrics("lovable", request_count=3)))
        _run(store.save(EngineMetrics("gemini", request_count=8)))

        rows = _run(store.list_all())
        assert [r.engine_name for r in rows] == ["gemini", "lovable"]

    def test_get_returns_copy(self):
        store = InMemoryMetricsStore()
        _run(store.save(EngineMetrics("lovable", request_count=3)))

        row = _run(store.get("lovable"))
        row.request_count = 99

        assert _run(store.get("lovable")).request_count == 3

    def test_get_missing_returns_none(self):
        assert _run(InMemoryMetricsStore().get("gemini")) is None
