"""Expert matching pipeline: overview resolution, scoring runs and cache warming"""

import asyncio
import logging
from datetime import timedelta

from trainermatch.config import settings
from trainermatch.errors import ValidationError
from trainermatch.schemas.intake import ClientProfile
from trainermatch.schemas.matching import MatchResult
from trainermatch.services.cache import ContentAddressedCache
from trainermatch.services.orchestrator import (
    BatchMatchOrchestrator,
    MatchingListener,
    MatchingPhase,
    MatchingRun,
    ScoreOutcome,
)
from trainermatch.services.overview import OverviewGenerator
from trainermatch.services.profile_key import derive_key, overview_hash as hash_overview
from trainermatch.services.roster import ExpertRoster
from trainermatch.services.scoring import MatchScorer
from trainermatch.services.streaming import EventStream

logger = logging.getLogger(__name__)


class StreamingMatchListener(MatchingListener):
    """Forwards orchestrator progress to an SSE stream"""

    def __init__(self, stream: EventStream):
        self.stream = stream

    async def on_start(self, total: int) -> None:
        self.stream.send_event("matching-start", {"total": total})

    async def on_scores_batch(
        self, outcomes: list[ScoreOutcome], completed: int, total: int, progress: int
    ) -> None:
        self.stream.send_event("matching-progress", {
            "current": completed,
            "total": total,
            "expertId": outcomes[-1].expert.id,
            "phase": MatchingPhase.CALCULATING_SCORES.value,
            "progress": progress,
        })
        for outcome in outcomes:
            if outcome.ok:
                self.stream.send_event("match-score", {
                    "expert_id": outcome.expert.id,
                    "match_score": outcome.match_score,
                    "reason_1": "",
                    "reason_2": "",
                })
            else:
                self.stream.send_event("match-error", {
                    "expertId": outcome.expert.id,
                    "error": "Failed to calculate match",
                })

    async def on_reasons_batch(
        self, results: list[MatchResult], completed: int, total: int, progress: int
    ) -> None:
        self.stream.send_event("matching-progress", {
            "current": completed,
            "total": total,
            "expertId": results[-1].expert_id,
            "phase": MatchingPhase.CALCULATING_REASONS.value,
            "progress": progress,
        })
        for result in results:
            self.stream.send_event("match-score", result.event_payload())

    async def on_complete(self, run: MatchingRun) -> None:
        if run.cached:
            for result in run.results:
                self.stream.send_event("match-score", result.event_payload())
        self.stream.send_event("matching-complete", {"cached": run.cached})


class ExpertMatchingService:
    """Entry point used by the API: ties cache, generator, scorer and roster together"""

    def __init__(
        self,
        cache: ContentAddressedCache,
        generator: OverviewGenerator,
        scorer: MatchScorer,
        roster: ExpertRoster,
        orchestrator: BatchMatchOrchestrator | None = None,
    ):
        self.cache = cache
        self.generator = generator
        self.scorer = scorer
        self.roster = roster
        self.orchestrator = orchestrator or BatchMatchOrchestrator(
            scorer=scorer,
            roster=roster,
            cache=cache,
            score_batch_size=settings.score_batch_size,
            reasons_batch_size=settings.reasons_batch_size,
            reasons_top_k=settings.reasons_top_k,
            sort_pause_seconds=settings.sort_pause_seconds,
            retry_attempts=settings.retry_max_attempts,
            retry_base_delay=settings.retry_base_delay_seconds,
            call_timeout=settings.call_timeout_seconds,
        )
        self._background: set[asyncio.Task] = set()

    # Overview

    async def get_overview(self, profile: ClientProfile) -> tuple[str, bool]:
        """Return (overview, cached), generating and caching on a miss"""
        cache_key = derive_key(profile)
        cached = await self.cache.get_overview(cache_key)
        if cached is not None:
            return cached, True

        overview = await self.generator.generate(profile)
        await self.cache.put_overview(cache_key, profile, overview)
        return overview, False

    async def stream_overview(self, profile: ClientProfile, stream: EventStream) -> None:
        """
        Stream overview tokens, then ``overview-complete``.

        Only a fully completed generation is written to the cache. If the
        client goes away the upstream response is closed and nothing is stored.
        """
        cache_key = derive_key(profile)
        cached = await self.cache.get_overview(cache_key)
        if cached is not None:
            stream.send_event("overview-complete", {"overview": cached, "cached": True})
            return

        async with self.generator.generate_streaming(profile) as fragments:
            async for token in fragments:
                if not stream.send_event("overview-token", {"token": token}):
                    logger.info("Overview stream abandoned by client, discarding partial text")
                    return
            overview = fragments.text

        await self.cache.put_overview(cache_key, profile, overview)
        stream.send_event("overview-complete", {"overview": overview, "cached": False})

    # Matching

    async def match_experts(self, overview: str, force_refresh: bool = False) -> MatchingRun:
        return await self.orchestrator.run(_require_overview(overview), force_refresh=force_refresh)

    async def stream_matches(
        self,
        overview: str,
        stream: EventStream,
        force_refresh: bool = False,
    ) -> None:
        await self.orchestrator.run(
            _require_overview(overview),
            force_refresh=force_refresh,
            listener=StreamingMatchListener(stream),
        )

    async def warm_cache(self, profile: ClientProfile) -> tuple[str, bool]:
        """
        Resolve the overview now and, if its matches are not cached yet, score
        it in the background.

        Returns (overview, matches_cached). The background run only fills the
        match cache; nothing waits for it.
        """
        overview, _ = await self.get_overview(profile)
        experts = await self.roster.list_experts()
        matches = await self.cache.get_matches(
            hash_overview(overview), [expert.id for expert in experts]
        )
        if matches is None and experts:
            task = asyncio.create_task(self._warm_matches(overview))
            self._background.add(task)
            task.add_done_callback(self._background.discard)
        return overview, matches is not None

    async def _warm_matches(self, overview: str) -> None:
        try:
            run = await self.orchestrator.run(overview)
            logger.info(
                f"Warmed match cache for {run.overview_hash[:12]} "
                f"(already cached={run.cached}, {len(run.results)} results)"
            )
        except Exception as e:
            logger.error(f"Background cache warming failed: {e}")

    async def wait_for_background(self) -> None:
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def cancel_background(self) -> None:
        for task in list(self._background):
            task.cancel()
        await self.wait_for_background()

    # Cache maintenance

    async def invalidate(self, overview_hash: str) -> int:
        return await self.cache.invalidate(overview_hash)

    async def purge(self, days: int) -> dict[str, int]:
        return await self.cache.purge_older_than(timedelta(days=days))

    def stats(self) -> dict[str, dict[str, int]]:
        return self.cache.stats()


def _require_overview(overview: str) -> str:
    if not overview or not overview.strip():
        raise ValidationError("Overview is required", fields=["overview"])
    return overview.strip()
