# =============================================================================
# Unified Engine API — POST /unified-ai-engine
# =============================================================================
#
# Thin route over services/engine.py: validate, resolve the caller, run,
# map ServiceError onto HTTPException. The global handlers in main.py turn
# HTTPException into {"success": false, "error": ...}.
# =============================================================================

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from ai_engine.api.deps import get_current_user
from ai_engine.models.requests import EngineRequest
from ai_engine.models.responses import EngineResponse
from ai_engine.services.auth import AuthenticatedUser
from ai_engine.services.engine import UnifiedEngine, get_unified_engine
from ai_engine.services.errors import ServiceError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Unified Engine"])


@router.post(
    "/unified-ai-engine",
    response_model=EngineResponse,
    response_model_exclude_none=True,
    summary="Generate content with cache and engine fallback",
    description=(
        "Serve a prompt from the response cache when possible; otherwise "
        "route it to the healthiest engine and fall back to the other one "
        "on failure."
    ),
)
async def unified_ai_engine(
    request: EngineRequest,
    user: AuthenticatedUser | None = Depends(get_current_user),
    engine: UnifiedEngine = Depends(get_unified_engine),
) -> EngineResponse:
    try:
        result = await engine.run(request, user.id if user else None)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message) from e

    return EngineResponse(
        content=result.content,
        engine=result.engine,
        fallback_used=result.fallback_used,
        cached=result.cached,
        response_time_ms=result.response_time_ms,
        data=result.data,
    )
