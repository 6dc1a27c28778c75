# =============================================================================
# Rate Limiter — Redis-Based Per-User Sliding Window
# =============================================================================
#
# Sliding window counter on a Redis sorted set per user: each request adds
# its timestamp as a member and score, entries older than the window are
# pruned, and the remaining count is compared against the limit.
#
# If Redis is unavailable the check is bypassed with a warning; an outage
# of the limiter must not take the AI endpoints down with it.
# =============================================================================

from __future__ import annotations

import logging
import time

import redis.asyncio as aioredis
from fastapi import HTTPException

from ai_engine.config import settings

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60

_redis_client: aioredis.Redis | None = None


def _get_rate_limit_redis() -> aioredis.Redis:
    """Lazily create and cache the async Redis client."""
    global _redis_client
    if _redis_client is None:
        _redis_client = aioredis.from_url(settings.redis_url, decode_responses=True)
    return _redis_client


async def check_rate_limit(user_id: str | None, limit: int | None = None) -> None:
    """
    Count this request against the user's window.

    Args:
        user_id: Authenticated subject; None (auth disabled) skips the check.
        limit: Requests per window; defaults to settings.rate_limit_rpm.

    Raises:
        HTTPException 429: Limit reached (with a Retry-After header).
    """
    if user_id is None:
        return

    limit = limit or settings.rate_limit_rpm
    redis_key = f"ratelimit:user:{user_id}"

    try:
        r = _get_rate_limit_redis()
        now = time.time()

        pipe = r.pipeline()
        pipe.zremrangebyscore(redis_key, 0, now - WINDOW_SECONDS)
        pipe.zcard(redis_key)
        pipe.zadd(redis_key, {str(now): now})
        pipe.expire(redis_key, WINDOW_SECONDS + 10)
        results = await pipe.execute()

        current_count = results[1]
        if current_count >= limit:
            logger.info("Rate limit hit for user %s (%d/%d)", user_id, current_count, limit)
            raise HTTPException(
                status_code=429,
                detail=f"Limite de requisições excedido ({limit} por minuto).",
                headers={"Retry-After": str(WINDOW_SECONDS)},
            )

    except HTTPException:
        raise
    except Exception as e:
        logger.warning(
            "Rate limiter unavailable (Redis error): %s. Allowing request through.",
            e,
        )
