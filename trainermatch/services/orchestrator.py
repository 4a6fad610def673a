"""Batch matching run: roster -> cache check -> scores -> sort -> reasons"""

import asyncio
import enum
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import TypeVar

from trainermatch.errors import (
    ErrorKind,
    MatchingError,
    NetworkError,
    PartialBatchFailure,
    RosterError,
    UpstreamServiceError,
)
from trainermatch.schemas.matching import Expert, MatchResult
from trainermatch.services.cache import ContentAddressedCache
from trainermatch.services.profile_key import overview_hash as hash_overview
from trainermatch.services.roster import ExpertRoster
from trainermatch.services.scoring import MatchScorer
from trainermatch.utils.retry import with_retry

logger = logging.getLogger(__name__)

T = TypeVar("T")

FALLBACK_REASON_1 = "This trainer matches your fitness goals and experience level."
FALLBACK_REASON_2 = "They have the qualifications to help you achieve your objectives."

SCORES_START = 15
SCORES_SPAN = 70
REASONS_START = 85
REASONS_SPAN = 15


class MatchingPhase(str, enum.Enum):
    IDLE = "idle"
    LOADING_EXPERTS = "loading-experts"
    CALCULATING_SCORES = "calculating-scores"
    SORTING = "sorting"
    CALCULATING_REASONS = "calculating-reasons"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass
class ScoreOutcome:
    """Score for one expert; ``failure`` is set when the score is the 0 fallback"""
    expert: Expert
    match_score: int
    failure: PartialBatchFailure | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None


@dataclass
class ReasonsOutcome:
    """Reasons for one expert; ``failure`` is set when they are the generic fallback"""
    expert: Expert
    reason_1: str
    reason_2: str
    failure: PartialBatchFailure | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None


@dataclass
class MatchingRun:
    """Outcome of one orchestrator run"""
    overview_hash: str
    phase: MatchingPhase = MatchingPhase.IDLE
    progress: int = 0
    results: list[MatchResult] = field(default_factory=list)
    cached: bool = False
    total_experts: int = 0
    failures: list[PartialBatchFailure] = field(default_factory=list)
    processing_time_ms: float = 0.0

    @property
    def failed_expert_ids(self) -> list[int]:
        return list(dict.fromkeys(failure.expert_id for failure in self.failures))


class MatchingListener:
    """Progress hooks for a run. All no-ops; override what you need."""

    async def on_phase(self, phase: MatchingPhase, progress: int) -> None:
        pass

    async def on_start(self, total: int) -> None:
        pass

    async def on_scores_batch(
        self, outcomes: list[ScoreOutcome], completed: int, total: int, progress: int
    ) -> None:
        pass

    async def on_reasons_batch(
        self, results: list[MatchResult], completed: int, total: int, progress: int
    ) -> None:
        pass

    async def on_complete(self, run: MatchingRun) -> None:
        pass

    async def on_error(self, error: MatchingError) -> None:
        pass


def _batches(items: Sequence[T], size: int) -> list[Sequence[T]]:
    return [items[i:i + size] for i in range(0, len(items), size)]


def _run_failure(failures: list[PartialBatchFailure]) -> MatchingError:
    """Error to surface when no expert could be scored; fatal causes win"""
    causes = [f.cause for f in failures if isinstance(f.cause, MatchingError)]
    for cause in causes:
        if not cause.retryable:
            return cause
    if causes:
        return causes[0]
    return UpstreamServiceError(
        ErrorKind.UPSTREAM_ERROR, f"No expert could be scored: {failures[0].cause}"
    )


class BatchMatchOrchestrator:
    """
    Scores an overview against the whole roster.

    Calls within a batch run concurrently; batches run one after another.
    A failing expert never fails the batch: it gets score 0 (or the generic
    reasons) with the failure attached, and is left out of the cache write.
    When no expert can be scored at all the run fails with the most severe
    cause, so callers can tell "nothing to show" from "some results are in".
    """

    def __init__(
        self,
        scorer: MatchScorer,
        roster: ExpertRoster,
        cache: ContentAddressedCache,
        score_batch_size: int = 3,
        reasons_batch_size: int = 2,
        reasons_top_k: int = 5,
        sort_pause_seconds: float = 0.0,
        retry_attempts: int = 3,
        retry_base_delay: float = 1.0,
        call_timeout: float = 90.0,
    ):
        self.scorer = scorer
        self.roster = roster
        self.cache = cache
        self.score_batch_size = max(1, score_batch_size)
        self.reasons_batch_size = max(1, reasons_batch_size)
        self.reasons_top_k = max(0, reasons_top_k)
        self.sort_pause_seconds = sort_pause_seconds
        self.retry_attempts = retry_attempts
        self.retry_base_delay = retry_base_delay
        self.call_timeout = call_timeout

    async def run(
        self,
        overview: str,
        force_refresh: bool = False,
        listener: MatchingListener | None = None,
    ) -> MatchingRun:
        listener = listener or MatchingListener()
        start_time = time.time()
        run = MatchingRun(overview_hash=hash_overview(overview))

        await self._enter(run, listener, MatchingPhase.LOADING_EXPERTS, 10)
        try:
            experts = await self.roster.list_experts()
        except Exception as e:
            error = e if isinstance(e, RosterError) else RosterError(f"Failed to load experts: {e}")
            run.phase = MatchingPhase.ERROR
            logger.error(f"Matching run failed while loading experts: {error}")
            await listener.on_error(error)
            if error is e:
                raise
            raise error from e

        run.total_experts = len(experts)

        if experts and not force_refresh:
            cached = await self.cache.get_matches(run.overview_hash, [e.id for e in experts])
            if cached is not None:
                by_id = {expert.id: expert for expert in experts}
                results = [
                    match.model_copy(update={"expert": by_id[expert_id]})
                    for expert_id, match in cached.items()
                ]
                run.results = sorted(results, key=lambda r: r.match_score, reverse=True)
                run.cached = True
                return await self._finish(run, listener, start_time)

        await listener.on_start(len(experts))
        if not experts:
            logger.warning("Expert roster is empty, nothing to score")
            return await self._finish(run, listener, start_time)

        scores = await self._score_all(run, overview, experts, listener)
        if not any(outcome.ok for outcome in scores):
            error = _run_failure(run.failures)
            run.phase = MatchingPhase.ERROR
            logger.error(f"Matching run failed: none of {len(scores)} experts could be scored: {error}")
            await listener.on_error(error)
            raise error

        await self._enter(run, listener, MatchingPhase.SORTING, REASONS_START)
        ranked = sorted(scores, key=lambda outcome: outcome.match_score, reverse=True)
        if self.sort_pause_seconds > 0:
            await asyncio.sleep(self.sort_pause_seconds)

        results = [
            MatchResult(
                expert_id=outcome.expert.id,
                match_score=outcome.match_score,
                reason_1="" if outcome.ok else FALLBACK_REASON_1,
                reason_2="" if outcome.ok else FALLBACK_REASON_2,
                expert=outcome.expert,
                degraded=not outcome.ok,
            )
            for outcome in ranked
        ]
        run.results = results

        await self._reasons_for_top(run, overview, listener)

        fresh = [result for result in run.results if not result.degraded]
        await self.cache.put_matches(run.overview_hash, fresh)
        return await self._finish(run, listener, start_time)

    async def _score_all(
        self,
        run: MatchingRun,
        overview: str,
        experts: list[Expert],
        listener: MatchingListener,
    ) -> list[ScoreOutcome]:
        await self._enter(run, listener, MatchingPhase.CALCULATING_SCORES, SCORES_START)
        total = len(experts)
        outcomes: list[ScoreOutcome] = []

        for batch in _batches(experts, self.score_batch_size):
            batch_outcomes = await asyncio.gather(
                *(self._score_one(overview, expert) for expert in batch)
            )
            outcomes.extend(batch_outcomes)
            run.failures.extend(o.failure for o in batch_outcomes if o.failure)
            run.progress = SCORES_START + round(SCORES_SPAN * len(outcomes) / total)
            logger.debug(f"Scored {len(outcomes)}/{total} experts")
            await listener.on_scores_batch(list(batch_outcomes), len(outcomes), total, run.progress)

        return outcomes

    async def _reasons_for_top(
        self,
        run: MatchingRun,
        overview: str,
        listener: MatchingListener,
    ) -> None:
        await self._enter(run, listener, MatchingPhase.CALCULATING_REASONS, REASONS_START)
        # Score fallbacks already carry the generic reasons
        top = [result for result in run.results[:self.reasons_top_k] if not result.degraded]
        if not top:
            return

        index = {result.expert_id: i for i, result in enumerate(run.results)}
        completed = 0
        for batch in _batches(top, self.reasons_batch_size):
            outcomes = await asyncio.gather(
                *(self._reasons_one(overview, result) for result in batch)
            )
            updated = []
            for result, outcome in zip(batch, outcomes):
                merged = result.model_copy(update={
                    "reason_1": outcome.reason_1,
                    "reason_2": outcome.reason_2,
                    "degraded": not outcome.ok,
                })
                run.results[index[result.expert_id]] = merged
                updated.append(merged)
                if outcome.failure:
                    run.failures.append(outcome.failure)
            completed += len(batch)
            run.progress = REASONS_START + round(REASONS_SPAN * completed / len(top))
            await listener.on_reasons_batch(updated, completed, len(top), run.progress)

    async def _score_one(self, overview: str, expert: Expert) -> ScoreOutcome:
        try:
            result = await self._call(
                lambda: self.scorer.score_only(overview, expert),
                f"Scoring expert {expert.id}",
            )
            return ScoreOutcome(expert=expert, match_score=result.match_score)
        except Exception as e:
            failure = PartialBatchFailure(expert.id, e)
            logger.warning(f"Scoring failed for expert {expert.id}, using score 0: {e}")
            return ScoreOutcome(expert=expert, match_score=0, failure=failure)

    async def _reasons_one(self, overview: str, result: MatchResult) -> ReasonsOutcome:
        expert = result.expert or Expert(id=result.expert_id)
        try:
            reasons = await self._call(
                lambda: self.scorer.reasons_only(overview, expert, result.match_score),
                f"Reasons for expert {expert.id}",
            )
            return ReasonsOutcome(expert=expert, reason_1=reasons.reason_1, reason_2=reasons.reason_2)
        except Exception as e:
            failure = PartialBatchFailure(expert.id, e)
            logger.warning(f"Reasons failed for expert {expert.id}, using generic text: {e}")
            return ReasonsOutcome(
                expert=expert,
                reason_1=FALLBACK_REASON_1,
                reason_2=FALLBACK_REASON_2,
                failure=failure,
            )

    async def _call(self, operation: Callable[[], Awaitable[T]], description: str) -> T:
        async def attempt() -> T:
            try:
                return await asyncio.wait_for(operation(), timeout=self.call_timeout)
            except asyncio.TimeoutError as e:
                raise NetworkError(
                    ErrorKind.TIMEOUT, f"{description} exceeded {self.call_timeout}s"
                ) from e

        return await with_retry(
            attempt,
            max_attempts=self.retry_attempts,
            base_delay=self.retry_base_delay,
            description=description,
        )

    async def _enter(
        self,
        run: MatchingRun,
        listener: MatchingListener,
        phase: MatchingPhase,
        progress: int,
    ) -> None:
        run.phase = phase
        run.progress = progress
        logger.debug(f"Matching run {run.overview_hash[:12]} entering {phase.value} ({progress}%)")
        await listener.on_phase(phase, progress)

    async def _finish(
        self,
        run: MatchingRun,
        listener: MatchingListener,
        start_time: float,
    ) -> MatchingRun:
        run.processing_time_ms = (time.time() - start_time) * 1000
        await self._enter(run, listener, MatchingPhase.COMPLETE, 100)
        logger.info(
            f"Matching run complete: {len(run.results)} results, cached={run.cached}, "
            f"failures={len(run.failures)}, {run.processing_time_ms:.0f}ms"
        )
        await listener.on_complete(run)
        return run
