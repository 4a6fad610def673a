"""Main FastAPI application for TrainerMatch"""

import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from trainermatch.api import health, matching
from trainermatch.config import settings
from trainermatch.db.database import AsyncSessionLocal, close_db, init_db
from trainermatch.errors import ErrorKind, MatchingError
from trainermatch.middleware.logging import LoggingMiddleware
from trainermatch.middleware.rate_limit import RateLimitMiddleware
from trainermatch.middleware.request_id import RequestIDMiddleware
from trainermatch.services.cache import ContentAddressedCache
from trainermatch.services.cache_store import CacheStore, InMemoryCacheStore, SQLCacheStore
from trainermatch.services.llm import LLMClient
from trainermatch.services.matching import ExpertMatchingService
from trainermatch.services.overview import OverviewGenerator
from trainermatch.services.roster import (
    ExpertRoster,
    JsonFileRoster,
    SQLExpertRoster,
    StaticExpertRoster,
)
from trainermatch.services.scoring import MatchScorer
from trainermatch.utils.logging import setup_logging

# Set up logging
setup_logging()
logger = logging.getLogger(__name__)

STATUS_BY_KIND = {
    ErrorKind.INVALID_INPUT: status.HTTP_400_BAD_REQUEST,
    ErrorKind.QUOTA_EXCEEDED: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorKind.RATE_LIMITED: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorKind.TIMEOUT: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorKind.UNREACHABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorKind.OFFLINE: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorKind.MODEL_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorKind.ROSTER_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorKind.CACHE_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorKind.CONTENT_POLICY: status.HTTP_400_BAD_REQUEST,
    ErrorKind.TOKEN_LIMIT: status.HTTP_400_BAD_REQUEST,
}


def status_for(error: MatchingError) -> int:
    return STATUS_BY_KIND.get(error.kind, status.HTTP_502_BAD_GATEWAY)


def build_cache_store(database_ready: bool) -> CacheStore:
    if settings.cache_backend == "memory" or not database_ready:
        if settings.cache_backend == "database":
            logger.error("cache_backend=database but the database is unavailable; using memory")
        return InMemoryCacheStore()
    return SQLCacheStore(AsyncSessionLocal)


def build_roster(database_ready: bool) -> ExpertRoster:
    if settings.expert_roster_path:
        logger.info(f"Loading expert roster from {settings.expert_roster_path}")
        return JsonFileRoster(settings.expert_roster_path)
    if database_ready:
        return SQLExpertRoster(AsyncSessionLocal)
    logger.warning("No roster source configured - matching will return no results")
    return StaticExpertRoster()


def build_matching_service(llm: LLMClient, database_ready: bool) -> ExpertMatchingService:
    """Wire the pipeline from settings"""
    cache = ContentAddressedCache(
        build_cache_store(database_ready),
        overview_ttl=timedelta(days=settings.overview_cache_ttl_days),
        match_ttl=timedelta(hours=settings.match_cache_ttl_hours),
    )
    scorer = MatchScorer(llm)
    return ExpertMatchingService(
        cache=cache,
        generator=OverviewGenerator(llm),
        scorer=scorer,
        roster=build_roster(database_ready),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle"""
    logger.info("Starting TrainerMatch application...")

    issues = settings.validate_configuration()
    for warning in issues["warnings"]:
        logger.warning(f"Configuration warning: {warning}")
    for error in issues["errors"]:
        logger.error(f"Configuration error: {error}")

    database_ready = await init_db()
    llm = LLMClient(api_key=settings.openai_api_key)
    app.state.llm = llm
    app.state.matching_service = build_matching_service(llm, database_ready)

    logger.info("Application startup complete")

    yield

    logger.info("Shutting down TrainerMatch application...")
    service: ExpertMatchingService = app.state.matching_service
    await service.cancel_background()
    await service.cache.flush()
    await llm.close()
    await close_db()
    logger.info("Application shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="TrainerMatch API",
    description="""
    ## Client-to-Trainer Matching

    Turns a client intake questionnaire into a short professional overview and
    ranks personal trainers and health professionals against it.

    ### Workflow
    1. **Overview** → `POST /api/v1/matching/overview` (or `/overview/stream` for tokens)
    2. **Matching** → `POST /api/v1/matching/experts` (or `/experts/stream` for progress events)
    3. **Warm cache** → `POST /api/v1/matching/warm-cache` right after intake submission

    Overviews are cached per profile for 7 days and match results per overview
    for 24 hours.
    """,
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.app_debug else None,
    redoc_url="/redoc" if settings.app_debug else None,
)

# Configure middleware (order matters - last added runs first)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(LoggingMiddleware)
app.add_middleware(
    RateLimitMiddleware,
    requests_per_minute=settings.rate_limit_per_minute,
    requests_per_hour=settings.rate_limit_per_hour,
    enable_rate_limiting=settings.app_env != "development",
)
app.add_middleware(RequestIDMiddleware)


# API status endpoint
@app.get("/status", response_class=JSONResponse)
async def api_status() -> dict[str, Any]:
    """API status endpoint for programmatic access"""
    return {
        "name": "TrainerMatch API",
        "version": "0.1.0",
        "status": "operational",
        "llm_configured": settings.is_llm_configured(),
        "docs": "/docs" if settings.app_debug else None,
    }


# Include routers
app.include_router(health.router, prefix="/health", tags=["health"])
app.include_router(matching.router, prefix="/api/v1")


@app.exception_handler(MatchingError)
async def matching_exception_handler(request: Request, exc: MatchingError):
    """Map pipeline errors onto HTTP status codes"""
    status_code = status_for(exc)
    log = logger.warning if status_code < 500 else logger.error
    log(
        f"Request failed: {exc.kind.value}: {exc.message}",
        extra={"request_id": getattr(request.state, "request_id", None), "error": exc.to_dict()},
    )
    body = {
        "kind": exc.kind.value,
        "message": exc.user_message,
        "retryable": exc.retryable,
    }
    if exc.kind == ErrorKind.INVALID_INPUT and exc.details.get("fields"):
        body["fields"] = exc.details["fields"]
    if settings.app_debug:
        body["detail"] = exc.message
    return JSONResponse(status_code=status_code, content={"error": body})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies are reported like intake validation errors"""
    fields = sorted({
        str(err["loc"][1] if len(err["loc"]) > 1 else err["loc"][0])
        for err in exc.errors()
        if err.get("loc")
    })
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": {
                "kind": ErrorKind.INVALID_INPUT.value,
                "message": "Some required information is missing. Please complete the form and try again.",
                "retryable": False,
                "fields": fields,
            }
        },
    )


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Handle uncaught exceptions"""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "message": str(exc) if settings.app_debug else "An error occurred",
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "trainermatch.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.app_debug,
        log_level=settings.log_level.lower(),
    )
