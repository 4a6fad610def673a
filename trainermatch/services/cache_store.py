"""Storage backends for the content-addressed cache"""

import abc
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from trainermatch.db.models import MatchCache, OverviewCache
from trainermatch.errors import CacheError

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class OverviewCacheEntry:
    cache_key: str
    overview_text: str
    profile: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
    hit_count: int = 0
    last_accessed_at: datetime | None = None


@dataclass(frozen=True)
class MatchCacheEntry:
    overview_hash: str
    expert_id: int
    match_score: int
    reason_1: str = ""
    reason_2: str = ""
    created_at: datetime = field(default_factory=utcnow)


class CacheStore(abc.ABC):
    """Read/write contract of the cache storage collaborator"""

    @abc.abstractmethod
    async def get_overview(self, cache_key: str) -> OverviewCacheEntry | None:
        ...

    @abc.abstractmethod
    async def upsert_overview(self, entry: OverviewCacheEntry) -> None:
        ...

    @abc.abstractmethod
    async def touch_overview(self, cache_key: str, accessed_at: datetime) -> None:
        """Increment the hit counter and record the access time"""

    @abc.abstractmethod
    async def get_matches(
        self,
        overview_hash: str,
        expert_ids: list[int],
        created_after: datetime,
    ) -> list[MatchCacheEntry]:
        ...

    @abc.abstractmethod
    async def upsert_matches(self, entries: list[MatchCacheEntry]) -> None:
        """Upsert with conflict target (overview_hash, expert_id)"""

    @abc.abstractmethod
    async def delete_matches(self, overview_hash: str) -> int:
        ...

    @abc.abstractmethod
    async def delete_older_than(self, cutoff: datetime) -> dict[str, int]:
        """Delete overview and match entries created before ``cutoff``"""

    async def ping(self) -> bool:
        return True


class InMemoryCacheStore(CacheStore):
    """Dict-backed store for development without a database, and for tests.

    Entries are immutable and replaced whole, so concurrent readers see either
    the old or the new value.
    """

    def __init__(self):
        self.overviews: dict[str, OverviewCacheEntry] = {}
        self.matches: dict[tuple[str, int], MatchCacheEntry] = {}

    async def get_overview(self, cache_key: str) -> OverviewCacheEntry | None:
        return self.overviews.get(cache_key)

    async def upsert_overview(self, entry: OverviewCacheEntry) -> None:
        self.overviews[entry.cache_key] = entry

    async def touch_overview(self, cache_key: str, accessed_at: datetime) -> None:
        entry = self.overviews.get(cache_key)
        if entry is not None:
            self.overviews[cache_key] = replace(
                entry, hit_count=entry.hit_count + 1, last_accessed_at=accessed_at
            )

    async def get_matches(
        self,
        overview_hash: str,
        expert_ids: list[int],
        created_after: datetime,
    ) -> list[MatchCacheEntry]:
        found = []
        for expert_id in expert_ids:
            entry = self.matches.get((overview_hash, expert_id))
            if entry is not None and entry.created_at >= created_after:
                found.append(entry)
        return found

    async def upsert_matches(self, entries: list[MatchCacheEntry]) -> None:
        for entry in entries:
            self.matches[(entry.overview_hash, entry.expert_id)] = entry

    async def delete_matches(self, overview_hash: str) -> int:
        keys = [key for key in self.matches if key[0] == overview_hash]
        for key in keys:
            del self.matches[key]
        return len(keys)

    async def delete_older_than(self, cutoff: datetime) -> dict[str, int]:
        old_overviews = [k for k, e in self.overviews.items() if e.created_at < cutoff]
        old_matches = [k for k, e in self.matches.items() if e.created_at < cutoff]
        for key in old_overviews:
            del self.overviews[key]
        for key in old_matches:
            del self.matches[key]
        return {"overviews": len(old_overviews), "matches": len(old_matches)}


class SQLCacheStore(CacheStore):
    """PostgreSQL-backed store using the overview_cache and match_cache tables"""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get_overview(self, cache_key: str) -> OverviewCacheEntry | None:
        try:
            async with self.session_factory() as session:
                row = await session.get(OverviewCache, cache_key)
                if row is None:
                    return None
                return OverviewCacheEntry(
                    cache_key=row.cache_key,
                    overview_text=row.overview_text,
                    profile=row.client_data or {},
                    created_at=row.created_at,
                    hit_count=row.hit_count,
                    last_accessed_at=row.last_accessed_at,
                )
        except SQLAlchemyError as e:
            raise CacheError(f"Failed to read overview cache: {e}", operation="get_overview") from e

    async def upsert_overview(self, entry: OverviewCacheEntry) -> None:
        stmt = pg_insert(OverviewCache).values(
            cache_key=entry.cache_key,
            client_data=entry.profile,
            overview_text=entry.overview_text,
            hit_count=entry.hit_count,
            created_at=entry.created_at,
            last_accessed_at=entry.last_accessed_at,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[OverviewCache.cache_key],
            set_={
                "client_data": stmt.excluded.client_data,
                "overview_text": stmt.excluded.overview_text,
                "hit_count": stmt.excluded.hit_count,
                "created_at": stmt.excluded.created_at,
                "last_accessed_at": stmt.excluded.last_accessed_at,
            },
        )
        await self._execute(stmt, "upsert_overview")

    async def touch_overview(self, cache_key: str, accessed_at: datetime) -> None:
        stmt = (
            update(OverviewCache)
            .where(OverviewCache.cache_key == cache_key)
            .values(hit_count=OverviewCache.hit_count + 1, last_accessed_at=accessed_at)
        )
        await self._execute(stmt, "touch_overview")

    async def get_matches(
        self,
        overview_hash: str,
        expert_ids: list[int],
        created_after: datetime,
    ) -> list[MatchCacheEntry]:
        stmt = (
            select(MatchCache)
            .where(MatchCache.overview_hash == overview_hash)
            .where(MatchCache.expert_id.in_(expert_ids))
            .where(MatchCache.created_at >= created_after)
        )
        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                return [
                    MatchCacheEntry(
                        overview_hash=row.overview_hash,
                        expert_id=row.expert_id,
                        match_score=row.match_score,
                        reason_1=row.reason_1 or "",
                        reason_2=row.reason_2 or "",
                        created_at=row.created_at,
                    )
                    for row in result.scalars().all()
                ]
        except SQLAlchemyError as e:
            raise CacheError(f"Failed to read match cache: {e}", operation="get_matches") from e

    async def upsert_matches(self, entries: list[MatchCacheEntry]) -> None:
        if not entries:
            return
        stmt = pg_insert(MatchCache).values([
            {
                "overview_hash": entry.overview_hash,
                "expert_id": entry.expert_id,
                "match_score": entry.match_score,
                "reason_1": entry.reason_1,
                "reason_2": entry.reason_2,
                "created_at": entry.created_at,
            }
            for entry in entries
        ])
        stmt = stmt.on_conflict_do_update(
            index_elements=[MatchCache.overview_hash, MatchCache.expert_id],
            set_={
                "match_score": stmt.excluded.match_score,
                "reason_1": stmt.excluded.reason_1,
                "reason_2": stmt.excluded.reason_2,
                "created_at": stmt.excluded.created_at,
            },
        )
        await self._execute(stmt, "upsert_matches")

    async def delete_matches(self, overview_hash: str) -> int:
        stmt = delete(MatchCache).where(MatchCache.overview_hash == overview_hash)
        return await self._execute(stmt, "delete_matches")

    async def delete_older_than(self, cutoff: datetime) -> dict[str, int]:
        overviews = await self._execute(
            delete(OverviewCache).where(OverviewCache.created_at < cutoff), "purge_overviews"
        )
        matches = await self._execute(
            delete(MatchCache).where(MatchCache.created_at < cutoff), "purge_matches"
        )
        return {"overviews": overviews, "matches": matches}

    async def ping(self) -> bool:
        try:
            async with self.session_factory() as session:
                await session.execute(select(1))
            return True
        except SQLAlchemyError as e:
            logger.error(f"Cache store health check failed: {e}")
            return False

    async def _execute(self, stmt, operation: str) -> int:
        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                await session.commit()
                return result.rowcount or 0
        except SQLAlchemyError as e:
            raise CacheError(f"Cache write failed: {e}", operation=operation) from e
