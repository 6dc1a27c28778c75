# =============================================================================
# Response Cache — Prompt Hash → Previously Generated Response
# =============================================================================
#
# Contract:
#   lookup(prompt_hash) -> CacheLookup(hit, data, hit_count, engine)
#   store(prompt_hash, preview, action, engine, data, tokens_used)
#
# - lookup ignores entries whose expires_at is not in the future, and bumps
#   hit_count on a hit (read-modify-write; concurrent hits may under-count).
# - store upserts on prompt_hash: every field is replaced, expires_at is
#   reset to now + TTL and hit_count to 0. Last writer wins.
# - Expired rows are never deleted; the read filter is the only expiry.
#
# Two concurrent misses for the same hash both call a provider and both
# store; the later write wins. The cache is an optimisation, never a source
# of truth, so no locking is attempted.
#
# ARCHITECTURE:
#   compute_prompt_hash()   — "<action>_<sha256>" over action+prompt+context
#   CacheStore (Protocol)
#   ├── InMemoryCacheStore  — dict, process-local
#   └── SqlCacheStore       — ai_response_cache table
# =============================================================================

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ai_engine.config import settings
from ai_engine.db.engine import get_session_factory
from ai_engine.db.models import ResponseCache
from ai_engine.services.clock import Clock, utcnow

logger = logging.getLogger(__name__)

PREVIEW_MAX_CHARS = 500


# ---------------------------------------------------------------------------
# Cache Key
# ---------------------------------------------------------------------------


def compute_prompt_hash(
    action: str,
    prompt: str,
    context: dict[str, Any] | None = None,
) -> str:
    """
    Derive the cache key for one request.

    The digest covers "<action>:<prompt>:<context JSON>", with the context
    serialised using sorted keys so that dict ordering never changes the key.
    The action is kept as a readable prefix.
    """
    serialized_context = json.dumps(
        context or {},
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )
    content = f"{action}:{prompt}:{serialized_context}"
    digest = hashlib.sha256(content.encode("utf-8")).hexdigest()
    return f"{action}_{digest}"


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class CacheLookup:
    """Result of a cache lookup."""

    hit: bool
    data: dict[str, Any] | None = None
    # hit_count after this lookup's increment
    hit_count: int = 0
    # Engine that produced the cached response
    engine: str | None = None


@dataclass
class CacheEntry:
    """In-memory mirror of an ai_response_cache row."""

    prompt_hash: str
    prompt_preview: str
    action: str
    engine_used: str
    response_data: dict[str, Any]
    tokens_used: int
    expires_at: datetime
    hit_count: int = 0
    created_at: datetime | None = None


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class CacheStore(Protocol):
    """Keyed response store with time-based expiry."""

    async def lookup(self, prompt_hash: str) -> CacheLookup:
        ...

    async def store(
        self,
        prompt_hash: str,
        prompt_preview: str,
        action: str,
        engine: str,
        response_data: dict[str, Any],
        tokens_used: int | None = None,
    ) -> None:
        ...


# ---------------------------------------------------------------------------
# Implementation 1: In-Memory
# ---------------------------------------------------------------------------


class InMemoryCacheStore:
    """Process-local cache. Entries live until overwritten; reads filter expiry."""

    def __init__(self, clock: Clock = utcnow, ttl_days: int | None = None) -> None:
        self._entries: dict[str, CacheEntry] = {}
        self._clock = clock
        self._ttl = timedelta(days=ttl_days or settings.cache_ttl_days)

    async def lookup(self, prompt_hash: str) -> CacheLookup:
        entry = self._entries.get(prompt_hash)
        if entry is None or entry.expires_at <= self._clock():
            return CacheLookup(hit=False)

        entry.hit_count += 1
        return CacheLookup(
            hit=True,
            data=dict(entry.response_data),
            hit_count=entry.hit_count,
            engine=entry.engine_used,
        )

    async def store(
        self,
        prompt_hash: str,
        prompt_preview: str,
        action: str,
        engine: str,
        response_data: dict[str, Any],
        tokens_used: int | None = None,
    ) -> None:
        now = self._clock()
        self._entries[prompt_hash] = CacheEntry(
            prompt_hash=prompt_hash,
            prompt_preview=prompt_preview[:PREVIEW_MAX_CHARS],
            action=action,
            engine_used=engine,
            response_data=dict(response_data),
            tokens_used=tokens_used or 0,
            expires_at=now + self._ttl,
            hit_count=0,
            created_at=now,
        )

    def get_entry(self, prompt_hash: str) -> CacheEntry | None:
        """Raw entry access, expired or not (admin/debug views and tests)."""
        return self._entries.get(prompt_hash)

    def __len__(self) -> int:
        return len(self._entries)


# ---------------------------------------------------------------------------
# Implementation 2: SQL (ai_response_cache)
# ---------------------------------------------------------------------------


class SqlCacheStore:
    """
    Cache rows in PostgreSQL.

    Upsert is a select followed by insert-or-update in one session, matching
    the accepted last-writer-wins race; the unique index on prompt_hash keeps
    at most one row per hash.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        clock: Clock = utcnow,
        ttl_days: int | None = None,
    ) -> None:
        self._session_factory = session_factory or get_session_factory()
        self._clock = clock
        self._ttl = timedelta(days=ttl_days or settings.cache_ttl_days)

    async def lookup(self, prompt_hash: str) -> CacheLookup:
        now = self._clock()
        async with self._session_factory() as session:
            stmt = select(ResponseCache).where(
                ResponseCache.prompt_hash == prompt_hash,
                ResponseCache.expires_at > now,
            )
            row = (await session.execute(stmt)).scalar_one_or_none()
            if row is None:
                return CacheLookup(hit=False)

            row.hit_count = (row.hit_count or 0) + 1
            await session.commit()

            return CacheLookup(
                hit=True,
                data=dict(row.response_data),
                hit_count=row.hit_count,
                engine=row.engine_used,
            )

    async def store(
        self,
        prompt_hash: str,
        prompt_preview: str,
        action: str,
        engine: str,
        response_data: dict[str, Any],
        tokens_used: int | None = None,
    ) -> None:
        now = self._clock()
        async with self._session_factory() as session:
            stmt = select(ResponseCache).where(
                ResponseCache.prompt_hash == prompt_hash,
            )
            row = (await session.execute(stmt)).scalar_one_or_none()
            if row is None:
                row = ResponseCache(prompt_hash=prompt_hash)
                session.add(row)

            row.prompt_preview = prompt_preview[:PREVIEW_MAX_CHARS]
            row.action = action
            row.engine_used = engine
            row.response_data = dict(response_data)
            row.tokens_used = tokens_used or 0
            row.expires_at = now + self._ttl
            row.hit_count = 0

            await session.commit()
        logger.debug("Cached response under %s", prompt_hash)
