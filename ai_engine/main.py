# =============================================================================
# Application Entry Point — FastAPI App, Handlers, Routers
# =============================================================================
#
# Run locally:
#   uvicorn ai_engine.main:app --reload
#
# Every error body has the shape {"success": false, "error": "<message>"};
# validation failures add "details" and use 400 rather than FastAPI's 422.
# =============================================================================

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ai_engine.api import chat, engine, metrics
from ai_engine.api.access_log import AccessLogMiddleware
from ai_engine.config import Settings, get_settings, settings
from ai_engine.db.engine import create_tables, dispose_engine
from ai_engine.models.responses import HealthResponse

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

INVALID_INPUT = "Invalid input data"
INTERNAL_ERROR = "Internal server error"


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        "Starting %s v%s (store backend: %s)",
        settings.app_name,
        settings.app_version,
        settings.store_backend,
    )
    if settings.store_backend == "postgres" and settings.create_tables_on_startup:
        await create_tables()
    yield
    if settings.store_backend == "postgres":
        await dispose_engine()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description=(
        "Multi-engine AI orchestration for the Bancário Ágil study platform: "
        "cached completions with engine fallback, and the study tutor chat."
    ),
    lifespan=lifespan,
)

app.add_middleware(AccessLogMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
)


# ---------------------------------------------------------------------------
# Error Handlers
# ---------------------------------------------------------------------------


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(
    request: Request,
    exc: StarletteHTTPException,
) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.detail},
        headers=exc.headers,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    details = [error.get("msg", "") for error in exc.errors()]
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": INVALID_INPUT, "details": details},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": INTERNAL_ERROR},
    )


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health(config: Settings = Depends(get_settings)) -> HealthResponse:
    return HealthResponse(
        status="ok",
        version=config.app_version,
        service=config.app_name,
    )


app.include_router(engine.router)
app.include_router(chat.router)
app.include_router(metrics.router)
