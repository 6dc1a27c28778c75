# =============================================================================
# Engine Metrics API — GET /engine-metrics
# =============================================================================
#
# Read-only view of ai_engine_metrics for the admin console's engine panel.
# =============================================================================

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from ai_engine.api.deps import get_current_user
from ai_engine.models.responses import EngineMetricsResponse
from ai_engine.services.auth import AuthenticatedUser
from ai_engine.services.health import MetricsStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Engine Metrics"])


def get_metrics_store() -> MetricsStore:
    from ai_engine.services.stores import get_stores

    return get_stores().metrics


@router.get(
    "/engine-metrics",
    response_model=list[EngineMetricsResponse],
    summary="Per-engine health counters, busiest first",
)
async def engine_metrics(
    user: AuthenticatedUser | None = Depends(get_current_user),
    store: MetricsStore = Depends(get_metrics_store),
) -> list[EngineMetricsResponse]:
    rows = await store.list_all()
    return [EngineMetricsResponse.model_validate(row) for row in rows]
