# =============================================================================
# Access Log Middleware — One Log Line per Request
# =============================================================================
#
# Logs method, path, status, elapsed time and the authenticated user (set
# on request.state by get_current_user). Prompt bodies are never logged
# here; the services log a truncated preview themselves.
#
# Starlette middleware rather than a dependency so the final status code
# and the full request duration are visible.
# =============================================================================

from __future__ import annotations

import logging
import time

from starlette.middleware.base import (
    BaseHTTPMiddleware,
    RequestResponseEndpoint,
)
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

_SKIP_PATHS = {"/health", "/docs", "/redoc", "/openapi.json"}


class AccessLogMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        if request.url.path in _SKIP_PATHS or request.method == "OPTIONS":
            return await call_next(request)

        start_time = time.monotonic()
        response = await call_next(request)
        elapsed_ms = int((time.monotonic() - start_time) * 1000)

        user = getattr(request.state, "user", None)
        logger.info(
            "%s %s -> %d in %dms (user=%s)",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
            user.id if user else "anonymous",
        )
        return response
