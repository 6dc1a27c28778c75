# =============================================================================
# Tutor Chat API — POST /ai-agent-chat
# =============================================================================
#
# Error mapping:
#   ServiceError (400/403/404/503) → same status, message passed through
#   anything else                  → 500 generic message, details logged only
# =============================================================================

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from ai_engine.api.deps import get_current_user
from ai_engine.models.requests import ChatRequest
from ai_engine.models.responses import ChatResponse
from ai_engine.services.auth import AuthenticatedUser
from ai_engine.services.chat import PROCESSING_ERROR, ChatService, get_chat_service
from ai_engine.services.errors import ServiceError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Tutor Chat"])


@router.post(
    "/ai-agent-chat",
    response_model=ChatResponse,
    summary="Ask the study tutor",
    description=(
        "Answer a student message with the tutor persona, the knowledge "
        "base and the session history, trying the gateway first and then "
        "each Gemini model."
    ),
)
async def ai_agent_chat(
    request: ChatRequest,
    user: AuthenticatedUser | None = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
) -> ChatResponse:
    try:
        result = await service.respond(user.id if user else None, request)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message) from e
    except Exception as e:
        logger.exception("Chat request failed: %s", e)
        raise HTTPException(status_code=500, detail=PROCESSING_ERROR) from e

    return ChatResponse(
        response=result.response,
        action=result.action,
        engine=result.engine,
        fallback_used=result.fallback_used,
    )
