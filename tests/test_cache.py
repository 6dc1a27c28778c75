# =============================================================================
# Unit Tests — Response Cache
# =============================================================================
#
# Exercises the in-memory cache store against an injectable clock.
# SqlCacheStore is not covered here; it needs a running PostgreSQL instance.
#
# Test groups:
#   1. Prompt hash derivation
#   2. Lookup / store semantics (idempotence, hit counting, overwrite)
#   3. Expiration
# =============================================================================

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

from ai_engine.services.cache import (
    PREVIEW_MAX_CHARS,
    InMemoryCacheStore,
    compute_prompt_hash,
)


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2025, 3, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


RESPONSE = {"content": "Resposta", "engine": "lovable", "fallbackUsed": False}


# ---------------------------------------------------------------------------
# 1. Prompt Hash
# ---------------------------------------------------------------------------


class TestComputePromptHash:
    def test_prefixed_with_action(self):
        key = compute_prompt_hash("generate_questions", "SFN")
        assert key.startswith("generate_questions_")

    def test_sha256_hex_digest(self):
        digest = compute_prompt_hash("chat", "oi").split("_", 1)[1]
        assert len(digest) == 64
        int(digest, 16)

    def test_deterministic(self):
        assert compute_prompt_hash("chat", "oi", {"a": 1}) == compute_prompt_hash(
            "chat", "oi", {"a": 1},
        )

    def test_context_key_order_irrelevant(self):
        first = compute_prompt_hash("chat", "oi", {"a": 1, "b": 2})
        second = compute_prompt_hash("chat", "oi", {"b": 2, "a": 1})
        assert first == second

    def test_action_changes_key(self):
        assert compute_prompt_hash("chat", "oi") != compute_prompt_hash(
            "generate_document", "oi",
        )

    def test_context_changes_key(self):
        assert compute_prompt_hash("chat", "oi", {"topic": "a"}) != compute_prompt_hash(
            "chat", "oi", {"topic": "b"},
        )

    def test_missing_context_equals_empty_context(self):
        assert compute_prompt_hash("chat", "oi") == compute_prompt_hash("chat", "oi", {})


# ---------------------------------------------------------------------------
# 2. Lookup / Store
# ---------------------------------------------------------------------------


class TestInMemoryCacheStore:
    def test_miss_on_empty_store(self):
        store = InMemoryCacheStore(clock=FakeClock(), ttl_days=7)
        result = _run(store.lookup("chat_x"))
        assert result.hit is False
        assert result.data is None

    def test_store_then_lookup_hits(self):
        store = InMemoryCacheStore(clock=FakeClock(), ttl_days=7)
        _run(store.store("chat_x", "oi", "chat", "lovable", RESPONSE, tokens_used=12))

        result = _run(store.lookup("chat_x"))
        assert result.hit is True
        assert result.data == RESPONSE
        assert result.engine == "lovable"

    def test_repeated_lookups_return_same_data_and_count_hits(self):
        store = InMemoryCacheStore(clock=FakeClock(), ttl_days=7)
        _run(store.store("chat_x", "oi", "chat", "gemini", RESPONSE))

        first = _run(store.lookup("chat_x"))
        second = _run(store.lookup("chat_x"))

        assert first.data == second.data
        assert first.hit_count == 1
        assert second.hit_count == 2
        assert store.get_entry("chat_x").hit_count == 2

    def test_store_overwrites_and_resets_hit_count(self):
        clock = FakeClock()
        store = InMemoryCacheStore(clock=clock, ttl_days=7)
        _run(store.store("chat_x", "oi", "chat", "lovable", RESPONSE))
        _run(store.lookup("chat_x"))

        clock.advance(days=1)
        updated = {**RESPONSE, "content": "Nova resposta", "engine": "gemini"}
        _run(store.store("chat_x", "oi", "chat", "gemini", updated))

        entry = store.get_entry("chat_x")
        assert len(store) == 1
        assert entry.hit_count == 0
        assert entry.engine_used == "gemini"
        assert entry.response_data["content"] == "Nova resposta"
        assert entry.expires_at == clock.now + timedelta(days=7)

    def test_preview_truncated(self):
        store = InMemoryCacheStore(clock=FakeClock(), ttl_days=7)
        _run(store.store("chat_x", "x" * 2000, "chat", "lovable", RESPONSE))
        assert len(store.get_entry("chat_x").prompt_preview) == PREVIEW_MAX_CHARS

    def test_returned_data_is_a_copy(self):
        store = InMemoryCacheStore(clock=FakeClock(), ttl_days=7)
        _run(store.store("chat_x", "oi", "chat", "lovable", RESPONSE))

        result = _run(store.lookup("chat_x"))
        result.data["content"] = "mutated"

        assert _run(store.lookup("chat_x")).data["content"] == "Resposta"


# ---------------------------------------------------------------------------
# 3. Expiration
# ---------------------------------------------------------------------------


class TestCacheExpiration:
    def test_hit_just_before_expiry(self):
        clock = FakeClock()
        store = InMemoryCacheStore(clock=clock, ttl_days=7)
        _run(store.store("chat_x", "oi", "chat", "lovable", RESPONSE))

        clock.advance(days=7, seconds=-1)
        assert _run(store.lookup("chat_x")).hit is True

    def test_miss_at_expiry(self):
        clock = FakeClock()
        store = InMemoryCacheStore(clock=clock, ttl_days=7)
        _run(store.store("chat_x", "oi", "chat", "lovable", RESPONSE))

        clock.advance(days=7)
        assert _run(store.lookup("chat_x")).hit is False

    def test_expired_entry_is_kept_but_not_served(self):
        clock = FakeClock()
        store = InMemoryCacheStore(clock=clock, ttl_days=1)
        _run(store.store("chat_x", "oi", "chat", "lovable", RESPONSE))

        clock.advance(days=2)
        _run(store.lookup("chat_x"))

        assert store.get_entry("chat_x") is not None
        assert store.get_entry("chat_x").hit_count == 0

    def test_restore_after_expiry_serves_again(self):
        clock = FakeClock()
        store = InMemoryCacheStore(clock=clock, ttl_days=1)
        _run(store.store("chat_x", "oi", "chat", "lovable", RESPONSE))

        clock.advance(days=2)
        _run(store.store("chat_x", "oi", "chat", "gemini", RESPONSE))

        assert _run(store.lookup("chat_x")).hit is True
