"""API endpoints for overview generation and expert matching"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse

from trainermatch.config import settings
from trainermatch.schemas.intake import (
    ClientProfile,
    OverviewResponse,
    WarmCacheRequest,
    WarmCacheResponse,
)
from trainermatch.schemas.matching import (
    CacheStatsResponse,
    MatchingRequest,
    MatchingResponse,
)
from trainermatch.services.matching import ExpertMatchingService
from trainermatch.services.streaming import EventStream, event_stream_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/matching", tags=["matching"])


def get_matching_service(request: Request) -> ExpertMatchingService:
    return request.app.state.matching_service


@router.post("/overview")
async def generate_overview(
    profile: ClientProfile,
    service: ExpertMatchingService = Depends(get_matching_service),
) -> OverviewResponse:
    """
    Generate (or reuse) the client overview for an intake profile
    """
    overview, cached = await service.get_overview(profile)
    return OverviewResponse(overview=overview, cached=cached)


@router.post("/overview/stream")
async def stream_overview(
    profile: ClientProfile,
    service: ExpertMatchingService = Depends(get_matching_service),
) -> StreamingResponse:
    """
    Stream the overview as ``overview-token`` events followed by ``overview-complete``
    """
    async def producer(stream: EventStream) -> None:
        await service.stream_overview(profile, stream)

    return event_stream_response(producer, heartbeat_interval=settings.stream_heartbeat_seconds)


@router.post("/experts")
async def match_experts(
    request: MatchingRequest,
    service: ExpertMatchingService = Depends(get_matching_service),
) -> MatchingResponse:
    """
    Score the overview against every expert and return ranked matches
    """
    run = await service.match_experts(request.overview, force_refresh=request.force_refresh)
    return MatchingResponse(
        overview_hash=run.overview_hash,
        matches=run.results,
        cached=run.cached,
        phase=run.phase.value,
        total_experts=run.total_experts,
        failed_expert_ids=run.failed_expert_ids,
        processing_time_ms=run.processing_time_ms,
        metadata={
            "score_batch_size": service.orchestrator.score_batch_size,
            "reasons_top_k": service.orchestrator.reasons_top_k,
        },
    )


@router.post("/experts/stream")
async def stream_matches(
    request: MatchingRequest,
    service: ExpertMatchingService = Depends(get_matching_service),
) -> StreamingResponse:
    """
    Stream matching progress and per-expert scores as server-sent events
    """
    async def producer(stream: EventStream) -> None:
        await service.stream_matches(request.overview, stream, force_refresh=request.force_refresh)

    return event_stream_response(producer, heartbeat_interval=settings.stream_heartbeat_seconds)


@router.post("/warm-cache")
async def warm_cache(
    request: WarmCacheRequest,
    service: ExpertMatchingService = Depends(get_matching_service),
) -> WarmCacheResponse:
    """
    Resolve the overview now and pre-compute matches in the background.

    ``cached`` reports whether the matches for that overview were already cached.
    """
    overview, cached = await service.warm_cache(request.client_data)
    return WarmCacheResponse(success=True, overview=overview, cached=cached)


@router.delete("/cache/{overview_hash}")
async def invalidate_matches(
    overview_hash: str,
    service: ExpertMatchingService = Depends(get_matching_service),
) -> dict[str, Any]:
    removed = await service.invalidate(overview_hash)
    return {"overview_hash": overview_hash, "removed": removed}


@router.post("/cache/purge")
async def purge_cache(
    days: int = Query(default=settings.cache_purge_days, ge=1),
    service: ExpertMatchingService = Depends(get_matching_service),
) -> dict[str, Any]:
    removed = await service.purge(days)
    return {"days": days, "removed": removed}


@router.get("/cache/stats")
async def cache_stats(
    service: ExpertMatchingService = Depends(get_matching_service),
) -> CacheStatsResponse:
    return CacheStatsResponse(**service.stats())
