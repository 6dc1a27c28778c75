# =============================================================================
# API Response Models — Pydantic V2 Schemas
# =============================================================================
#
# Shapes returned by the endpoints, serialised with camelCase keys to match
# what the web client already reads (`fallbackUsed`, `responseTimeMs`).
# Error bodies ({"success": false, "error": ...}) are produced by the
# exception handlers in main.py, not by these models.
# =============================================================================

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

_CAMEL = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class HealthResponse(BaseModel):
    """Response for GET /health: confirms the API is running."""

    status: str = "ok"
    version: str
    service: str


class EngineResponse(BaseModel):
    """
    Response for POST /unified-ai-engine.

    `data` is only present for JSON-producing actions whose output contained
    a parseable JSON object.
    """

    model_config = _CAMEL

    success: bool = True
    content: str
    engine: str = Field(description="Engine that produced the content")
    fallback_used: bool
    cached: bool
    response_time_ms: int
    data: dict[str, Any] | None = None


class ChatResponse(BaseModel):
    """Response for POST /ai-agent-chat."""

    model_config = _CAMEL

    success: bool = True
    response: str
    action: str | None = None
    engine: str = Field(
        description="'lovable' or 'gemini-<model>' for chat fallbacks",
    )
    fallback_used: bool


class EngineMetricsResponse(BaseModel):
    """One engine's health counters, as shown on the admin console."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True,
    )

    engine_name: str
    request_count: int
    success_count: int
    failure_count: int
    total_tokens: int
    avg_response_time_ms: int
    last_used_at: datetime | None = None
    last_error: str | None = None
    is_healthy: bool
