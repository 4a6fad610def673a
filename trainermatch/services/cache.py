"""Content-addressed cache for overviews and per-expert match results

Two namespaces share one storage collaborator:

* overview: profile key -> generated overview text (7 day reuse window)
* matches: (overview hash, expert id) -> score and reasons (24 hour window)

Every operation is best-effort. Storage failures are logged and turned into
a miss (reads) or dropped (writes); callers fall through to recomputation.
"""

import asyncio
import logging
from collections import defaultdict
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta
from typing import Any

from trainermatch.schemas.intake import ClientProfile
from trainermatch.schemas.matching import MatchResult
from trainermatch.services.cache_store import (
    CacheStore,
    MatchCacheEntry,
    OverviewCacheEntry,
    utcnow,
)

logger = logging.getLogger(__name__)


class ContentAddressedCache:
    """Overview and match caches over an injected store"""

    def __init__(
        self,
        store: CacheStore,
        overview_ttl: timedelta = timedelta(days=7),
        match_ttl: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.overview_ttl = overview_ttl
        self.match_ttl = match_ttl
        self.clock = clock
        self._stats: dict[str, dict[str, int]] = {
            "overview": defaultdict(int),
            "matches": defaultdict(int),
        }
        self._pending: set[asyncio.Task] = set()

    # Overview namespace

    async def get_overview(self, cache_key: str) -> str | None:
        """Return the cached overview text for a profile key, or None"""
        try:
            entry = await self.store.get_overview(cache_key)
        except Exception as e:
            self._record_error("overview", "get_overview", e)
            return None

        if entry is None or entry.created_at < self.clock() - self.overview_ttl:
            self._stats["overview"]["misses"] += 1
            logger.debug(f"Overview cache miss for key {cache_key[:12]}")
            return None

        self._stats["overview"]["hits"] += 1
        logger.info(f"Overview cache hit for key {cache_key[:12]}")
        self._spawn(self._touch(cache_key))
        return entry.overview_text

    async def put_overview(
        self,
        cache_key: str,
        profile: ClientProfile | dict[str, Any],
        overview_text: str,
    ) -> None:
        """Store (or replace) the overview for a profile key"""
        payload = profile.model_dump() if isinstance(profile, ClientProfile) else dict(profile)
        now = self.clock()
        entry = OverviewCacheEntry(
            cache_key=cache_key,
            overview_text=overview_text,
            profile=payload,
            created_at=now,
            last_accessed_at=now,
        )
        try:
            await self.store.upsert_overview(entry)
            self._stats["overview"]["writes"] += 1
        except Exception as e:
            self._record_error("overview", "put_overview", e)

    async def _touch(self, cache_key: str) -> None:
        try:
            await self.store.touch_overview(cache_key, self.clock())
        except Exception as e:
            self._record_error("overview", "touch_overview", e)

    # Match namespace

    async def get_matches(
        self,
        overview_hash: str,
        expert_ids: Iterable[int],
    ) -> dict[int, MatchResult] | None:
        """
        Return cached results for every requested expert, or None.

        Partial coverage is a miss: a stale or incomplete set is never
        served as if it were complete.
        """
        requested = list(dict.fromkeys(expert_ids))
        if not requested:
            self._stats["matches"]["misses"] += 1
            return None

        try:
            entries = await self.store.get_matches(
                overview_hash, requested, self.clock() - self.match_ttl
            )
        except Exception as e:
            self._record_error("matches", "get_matches", e)
            return None

        by_expert = {entry.expert_id: entry for entry in entries}
        missing = [expert_id for expert_id in requested if expert_id not in by_expert]
        if missing:
            self._stats["matches"]["misses"] += 1
            if by_expert:
                logger.info(
                    f"Partial match cache hit for {overview_hash[:12]}: "
                    f"{len(by_expert)}/{len(requested)} entries, treating as miss"
                )
            return None

        self._stats["matches"]["hits"] += 1
        logger.info(f"Match cache hit for {overview_hash[:12]}: {len(requested)} entries")
        return {
            expert_id: MatchResult(
                expert_id=expert_id,
                match_score=max(0, min(100, by_expert[expert_id].match_score)),
                reason_1=by_expert[expert_id].reason_1,
                reason_2=by_expert[expert_id].reason_2,
            )
            for expert_id in requested
        }

    async def put_match(self, overview_hash: str, match: MatchResult) -> None:
        await self.put_matches(overview_hash, [match])

    async def put_matches(self, overview_hash: str, matches: Iterable[MatchResult]) -> None:
        """Upsert many results in one store round trip"""
        now = self.clock()
        entries = [
            MatchCacheEntry(
                overview_hash=overview_hash,
                expert_id=match.expert_id,
                match_score=match.match_score,
                reason_1=match.reason_1,
                reason_2=match.reason_2,
                created_at=now,
            )
            for match in matches
        ]
        if not entries:
            return
        try:
            await self.store.upsert_matches(entries)
            self._stats["matches"]["writes"] += len(entries)
        except Exception as e:
            self._record_error("matches", "put_matches", e)

    # Maintenance

    async def invalidate(self, overview_hash: str) -> int:
        """Drop every match entry for an overview"""
        try:
            removed = await self.store.delete_matches(overview_hash)
            logger.info(f"Invalidated {removed} match entries for {overview_hash[:12]}")
            return removed
        except Exception as e:
            self._record_error("matches", "invalidate", e)
            return 0

    async def purge_older_than(self, age: timedelta) -> dict[str, int]:
        """Delete entries in both namespaces created more than ``age`` ago"""
        try:
            removed = await self.store.delete_older_than(self.clock() - age)
            logger.info(f"Purged cache entries older than {age}: {removed}")
            return removed
        except Exception as e:
            self._record_error("matches", "purge_older_than", e)
            return {"overviews": 0, "matches": 0}

    def stats(self) -> dict[str, dict[str, int]]:
        return {
            namespace: {key: counters.get(key, 0) for key in ("hits", "misses", "writes", "errors")}
            for namespace, counters in self._stats.items()
        }

    async def flush(self) -> None:
        """Wait for background access-metadata updates"""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def _record_error(self, namespace: str, operation: str, error: Exception) -> None:
        self._stats[namespace]["errors"] += 1
        logger.error(
            f"Cache {operation} failed, degrading to miss: {error}",
            extra={"cache_operation": operation, "cache_namespace": namespace},
        )
