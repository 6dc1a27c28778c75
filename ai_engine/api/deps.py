# =============================================================================
# Auth Dependencies — FastAPI Dependency Injection for Authentication
# =============================================================================
#
# get_current_user() protects every AI endpoint:
#   - auth disabled           → None (anonymous, local development)
#   - no bearer token         → 401 "Não autorizado - token ausente"
#   - token rejected/unknown  → 401 "Sessão inválida ou expirada"
#   - otherwise               → rate limit check, user on request.state
#
# HTTPBearer(auto_error=False) so a missing header reaches our handler and
# gets the Portuguese message instead of FastAPI's default 403.
# =============================================================================

from __future__ import annotations

import logging

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ai_engine.config import settings
from ai_engine.services.auth import AuthenticatedUser, fetch_user
from ai_engine.services.rate_limiter import check_rate_limit

logger = logging.getLogger(__name__)

MISSING_TOKEN = "Não autorizado - token ausente"
INVALID_SESSION = "Sessão inválida ou expirada"

_bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> AuthenticatedUser | None:
    """
    Resolve the caller from the Authorization header.

    Raises:
        HTTPException 401: Missing, rejected or expired token.
        HTTPException 429: Per-user rate limit exceeded.
    """
    if not settings.auth_enabled:
        return None

    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=401,
            detail=MISSING_TOKEN,
            headers={"WWW-Authenticate": "Bearer"},
        )

    user = await fetch_user(credentials.credentials)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail=INVALID_SESSION,
            headers={"WWW-Authenticate": "Bearer"},
        )

    await check_rate_limit(user.id)

    request.state.user = user
    return user
