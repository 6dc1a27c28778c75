# =============================================================================
# Store Wiring — One Place That Picks the Persistence Backend
# =============================================================================
#
# settings.store_backend:
#   "postgres" — SQLAlchemy stores over the async engine (production)
#   "memory"   — process-local stores (local development, demos)
#
# Services never construct stores themselves; they receive them from here
# or, in tests, directly.
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass

from ai_engine.config import settings
from ai_engine.services.cache import CacheStore, InMemoryCacheStore, SqlCacheStore
from ai_engine.services.chat_store import ChatStore, InMemoryChatStore, SqlChatStore
from ai_engine.services.health import InMemoryMetricsStore, MetricsStore, SqlMetricsStore
from ai_engine.services.request_log import (
    InMemoryRequestLogStore,
    RequestLogStore,
    SqlRequestLogStore,
)

logger = logging.getLogger(__name__)


@dataclass
class Stores:
    cache: CacheStore
    metrics: MetricsStore
    request_log: RequestLogStore
    chat: ChatStore


_stores: Stores | None = None


def build_stores(backend: str) -> Stores:
    """
    Construct every store for a backend name.

    Raises:
        ValueError: If the backend is not "postgres" or "memory".
    """
    if backend == "postgres":
        return Stores(
            cache=SqlCacheStore(),
            metrics=SqlMetricsStore(),
            request_log=SqlRequestLogStore(),
            chat=SqlChatStore(),
        )
    if backend == "memory":
        return Stores(
            cache=InMemoryCacheStore(),
            metrics=InMemoryMetricsStore(),
            request_log=InMemoryRequestLogStore(),
            chat=InMemoryChatStore(),
        )
    raise ValueError(
        f"Unknown store backend: '{backend}'. Supported: 'postgres', 'memory'"
    )


def get_stores() -> Stores:
    """Lazily build the stores for the configured backend."""
    global _stores
    if _stores is None:
        _stores = build_stores(settings.store_backend)
        logger.info("Using '%s' store backend", settings.store_backend)
    return _stores
