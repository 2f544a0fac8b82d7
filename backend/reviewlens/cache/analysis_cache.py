"""
Persistent analysis result cache.

Entries are keyed by subject id and configuration fingerprint, bounded by a
byte budget, expire after a TTL and are evicted least-recently-used first
when space runs out. A second table holds progress snapshots of in-flight
runs so a reloaded dashboard can redisplay them.
"""

import asyncio
import json
import logging
import time
from typing import Callable, Dict, List, Optional

from pydantic import ValidationError
from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from reviewlens.database import create_engine_for, create_session_factory, init_db
from reviewlens.exceptions import CacheSerializationError, CacheWriteError
from reviewlens.models.cache_models import CacheMetadata, CachedAnalysis, CachedProgress
from reviewlens.models.schemas import (
    AnalysisConfig,
    AnalysisProgress,
    CacheStatus,
    CombinedAnalysisResult,
    ProgressRecord,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_SIZE_BYTES = 50 * 1024 * 1024  # 50MB
DEFAULT_TTL_SECONDS = 7 * 24 * 60 * 60  # 7 days
TOTAL_SIZE_KEY = "total_size"


class AnalysisCache:
    """
    Size-bounded, TTL-expiring store of combined analysis results.

    All writes run inside a single database transaction while holding
    ``self._lock``, so the ``total_size`` counter always moves together with
    the entries it sums.

    A cache that failed to open stays usable: reads miss, writes are no-ops
    and ``get_status()`` reports ``is_ready=False``.
    """

    def __init__(
        self,
        database_url: str,
        max_size_bytes: int = DEFAULT_MAX_SIZE_BYTES,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        persist_progress: bool = True,
        clock: Callable[[], float] = time.time
    ):
        """
        Args:
            database_url: Async SQLAlchemy URL of the backing store
            max_size_bytes: Byte budget for serialized results
            ttl_seconds: Lifetime of an entry after creation
            persist_progress: Keep progress snapshots of running analyses
            clock: Source of epoch-second timestamps
        """
        if max_size_bytes <= 0:
            raise ValueError("max_size_bytes must be positive")
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")

        self.database_url = database_url
        self.max_size_bytes = max_size_bytes
        self.ttl_seconds = ttl_seconds
        self.persist_progress = persist_progress
        self._clock = clock

        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None
        self._lock = asyncio.Lock()
        self.is_ready = False

    # ============================================
    # Lifecycle
    # ============================================

    async def open(self) -> bool:
        """
        Open the backing store, creating tables on first use.

        Returns:
            True if the cache is usable
        """
        if self.is_ready:
            return True

        try:
            self._engine = create_engine_for(self.database_url)
            await init_db(self._engine)
            self._session_factory = create_session_factory(self._engine)
            self.is_ready = True
            await self.reconcile()
            logger.info(f"Analysis cache opened: {self._engine.url.render_as_string(hide_password=True)}")

        except (SQLAlchemyError, OSError) as e:
            logger.warning(f"Analysis cache unavailable, continuing without caching: {e}")
            if self._engine is not None:
                await self._engine.dispose()
            self._engine = None
            self._session_factory = None
            self.is_ready = False

        return self.is_ready

    async def close(self):
        """Release the database connections."""
        self.is_ready = False
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None

    # ============================================
    # Results
    # ============================================

    async def get(self, subject_id: str, config_hash: str) -> Optional[CombinedAnalysisResult]:
        """
        Look up the newest valid result for a subject and configuration.

        A hit refreshes the entry's ``last_accessed`` so LRU eviction
        keeps it longer.

        Args:
            subject_id: Analyzed subject (e.g. Play Store app id)
            config_hash: Fingerprint of the analysis configuration

        Returns:
            Cached result, or None on miss or when the cache is unavailable
        """
        if not self.is_ready:
            return None

        now = self._clock()

        try:
            async with self._lock:
                async with self._session_factory() as session:
                    async with session.begin():
                        stmt = (
                            select(CachedAnalysis)
                            .where(
                                CachedAnalysis.subject_id == subject_id,
                                CachedAnalysis.config_hash == config_hash,
                                CachedAnalysis.expires_at > now
                            )
                            .order_by(CachedAnalysis.created_at.desc(), CachedAnalysis.id.desc())
                            .limit(1)
                        )
                        entry = (await session.execute(stmt)).scalar_one_or_none()
                        if entry is None:
                            return None

                        entry.last_accessed = now
                        payload = entry.result_json

            return CombinedAnalysisResult.model_validate_json(payload)

        except SQLAlchemyError as e:
            logger.error(f"Cache read failed for {subject_id}: {e}")
            return None
        except ValidationError as e:
            logger.warning(f"Discarding unreadable cache entry for {subject_id}: {e}")
            return None

    async def set(
        self,
        subject_id: str,
        result: CombinedAnalysisResult,
        config_hash: str,
        review_count: Optional[int] = None
    ) -> Optional[str]:
        """
        Store a result, evicting older entries first if the budget is exceeded.

        Eviction is best-effort: when expired and least-recently-used entries
        cannot free enough room the entry is stored anyway and usage may
        exceed 100%.

        Args:
            subject_id: Analyzed subject
            result: Combined analysis result
            config_hash: Fingerprint of the analysis configuration
            review_count: Number of analyzed reviews (defaults to result stats)

        Returns:
            Entry id, or None when the cache is unavailable

        Raises:
            CacheSerializationError: Result cannot be serialized or is larger than the whole cache
            CacheWriteError: Backing store rejected the write
        """
        if not self.is_ready:
            return None

        try:
            payload = result.model_dump_json()
        except (ValueError, TypeError) as e:
            raise CacheSerializationError(f"Cannot serialize analysis result: {e}") from e

        size_bytes = len(payload.encode("utf-8"))
        if size_bytes > self.max_size_bytes:
            raise CacheSerializationError(
                f"Result of {size_bytes} bytes exceeds cache capacity of {self.max_size_bytes} bytes"
            )

        if review_count is None:
            review_count = result.stats.total_reviews

        now = self._clock()

        try:
            async with self._lock:
                async with self._session_factory() as session:
                    async with session.begin():
                        total_size = await self._read_total_size(session)

                        freed = 0
                        if total_size + size_bytes > self.max_size_bytes:
                            required = total_size + size_bytes - self.max_size_bytes
                            freed = await self._evict(session, required, now)

                        entry_id = await self._new_entry_id(session, subject_id, config_hash, now)
                        session.add(CachedAnalysis(
                            id=entry_id,
                            subject_id=subject_id,
                            config_hash=config_hash,
                            created_at=now,
                            expires_at=now + self.ttl_seconds,
                            last_accessed=now,
                            size_bytes=size_bytes,
                            review_count=review_count,
                            result_json=payload
                        ))

                        await self._write_total_size(session, total_size - freed + size_bytes)

        except SQLAlchemyError as e:
            raise CacheWriteError(f"Failed to cache analysis for {subject_id}: {e}") from e

        logger.info(f"Cached analysis {entry_id} ({size_bytes} bytes)")
        return entry_id

    async def _evict(self, session: AsyncSession, required: int, now: float) -> int:
        """
        Free at least ``required`` bytes if possible.

        Expired entries go first, then the least recently accessed ones.
        The caller updates the size counter once with the returned amount.

        Returns:
            Number of bytes freed
        """
        freed = 0
        evicted: List[str] = []

        expired = (await session.execute(
            select(CachedAnalysis.id, CachedAnalysis.size_bytes)
            .where(CachedAnalysis.expires_at <= now)
        )).all()

        for row in expired:
            evicted.append(row.id)
            freed += row.size_bytes

        expired_count = len(evicted)

        if freed < required:
            candidates = await session.execute(
                select(CachedAnalysis.id, CachedAnalysis.size_bytes)
                .where(CachedAnalysis.expires_at > now)
                .order_by(CachedAnalysis.last_accessed.asc(), CachedAnalysis.created_at.asc())
            )
            for row in candidates:
                if freed >= required:
                    break
                evicted.append(row.id)
                freed += row.size_bytes

        if evicted:
            await session.execute(
                delete(CachedAnalysis).where(CachedAnalysis.id.in_(evicted))
            )
            logger.info(
                f"Evicted {len(evicted)} cache entries "
                f"({expired_count} expired, {len(evicted) - expired_count} LRU), freed {freed} bytes"
            )

        if freed < required:
            logger.warning(f"Cache over budget: needed {required} bytes, freed {freed}")

        return freed

    async def _new_entry_id(self, session: AsyncSession, subject_id: str, config_hash: str, now: float) -> str:
        """Entry id ``subject_confighash_millis``, suffixed when two writes share a millisecond."""
        base = f"{subject_id}_{config_hash}_{int(now * 1000)}"
        entry_id = base
        suffix = 1
        while await session.get(CachedAnalysis, entry_id) is not None:
            entry_id = f"{base}-{suffix}"
            suffix += 1
        return entry_id

    async def _read_total_size(self, session: AsyncSession) -> int:
        row = await session.get(CacheMetadata, TOTAL_SIZE_KEY)
        return row.value if row else 0

    async def _write_total_size(self, session: AsyncSession, value: int):
        value = max(value, 0)
        row = await session.get(CacheMetadata, TOTAL_SIZE_KEY)
        if row is None:
            session.add(CacheMetadata(key=TOTAL_SIZE_KEY, value=value))
        else:
            row.value = value

    # ============================================
    # Progress snapshots
    # ============================================

    async def save_progress(
        self,
        analysis_id: str,
        subject_id: str,
        progress: Dict[str, AnalysisProgress],
        config: AnalysisConfig
    ):
        """
        Insert or replace the progress snapshot of a run.

        Raises:
            CacheWriteError: Backing store rejected the write
        """
        if not self.is_ready or not self.persist_progress:
            return

        snapshot = CachedProgress(
            id=analysis_id,
            subject_id=subject_id,
            updated_at=self._clock(),
            progress_json=json.dumps({kind: state.model_dump() for kind, state in progress.items()}),
            config_json=config.model_dump_json()
        )

        try:
            async with self._lock:
                async with self._session_factory() as session:
                    async with session.begin():
                        await session.merge(snapshot)
        except SQLAlchemyError as e:
            raise CacheWriteError(f"Failed to save progress for {analysis_id}: {e}") from e

    async def get_progress(self, analysis_id: str) -> Optional[ProgressRecord]:
        """Progress snapshot of a run, or None."""
        if not self.is_ready:
            return None

        try:
            async with self._session_factory() as session:
                row = await session.get(CachedProgress, analysis_id)
                return self._to_progress_record(row) if row else None
        except SQLAlchemyError as e:
            logger.error(f"Progress read failed for {analysis_id}: {e}")
            return None

    async def find_progress(self, subject_id: str) -> Optional[ProgressRecord]:
        """Most recently updated progress snapshot for a subject, or None."""
        if not self.is_ready:
            return None

        try:
            async with self._session_factory() as session:
                row = (await session.execute(
                    select(CachedProgress)
                    .where(CachedProgress.subject_id == subject_id)
                    .order_by(CachedProgress.updated_at.desc())
                    .limit(1)
                )).scalar_one_or_none()
                return self._to_progress_record(row) if row else None
        except SQLAlchemyError as e:
            logger.error(f"Progress lookup failed for {subject_id}: {e}")
            return None

    async def clear_progress(self, analysis_id: str):
        """Delete the progress snapshot of a run."""
        if not self.is_ready:
            return

        try:
            async with self._lock:
                async with self._session_factory() as session:
                    async with session.begin():
                        await session.execute(
                            delete(CachedProgress).where(CachedProgress.id == analysis_id)
                        )
        except SQLAlchemyError as e:
            raise CacheWriteError(f"Failed to clear progress for {analysis_id}: {e}") from e

    async def clear_all_progress(self):
        """Delete every progress snapshot."""
        if not self.is_ready:
            return

        try:
            async with self._lock:
                async with self._session_factory() as session:
                    async with session.begin():
                        await session.execute(delete(CachedProgress))
        except SQLAlchemyError as e:
            raise CacheWriteError(f"Failed to clear progress: {e}") from e

    @staticmethod
    def _to_progress_record(row: CachedProgress) -> ProgressRecord:
        return ProgressRecord(
            analysis_id=row.id,
            subject_id=row.subject_id,
            updated_at=row.updated_at,
            progress={
                kind: AnalysisProgress(**state)
                for kind, state in json.loads(row.progress_json).items()
            },
            config=AnalysisConfig.model_validate_json(row.config_json)
        )

    # ============================================
    # Maintenance
    # ============================================

    async def clear_all(self):
        """Empty both stores and reset the size counter."""
        if not self.is_ready:
            return

        try:
            async with self._lock:
                async with self._session_factory() as session:
                    async with session.begin():
                        await session.execute(delete(CachedAnalysis))
                        await session.execute(delete(CachedProgress))
                        await self._write_total_size(session, 0)
        except SQLAlchemyError as e:
            raise CacheWriteError(f"Failed to clear cache: {e}") from e

        logger.info("Analysis cache cleared")

    async def purge_expired(self) -> int:
        """
        Delete all expired entries.

        Returns:
            Number of entries removed
        """
        if not self.is_ready:
            return 0

        now = self._clock()

        try:
            async with self._lock:
                async with self._session_factory() as session:
                    async with session.begin():
                        expired = (await session.execute(
                            select(CachedAnalysis.id, CachedAnalysis.size_bytes)
                            .where(CachedAnalysis.expires_at <= now)
                        )).all()
                        if not expired:
                            return 0

                        await session.execute(
                            delete(CachedAnalysis).where(CachedAnalysis.id.in_([row.id for row in expired]))
                        )
                        freed = sum(row.size_bytes for row in expired)
                        total_size = await self._read_total_size(session)
                        await self._write_total_size(session, total_size - freed)
        except SQLAlchemyError as e:
            raise CacheWriteError(f"Failed to purge expired entries: {e}") from e

        logger.info(f"Purged {len(expired)} expired cache entries ({freed} bytes)")
        return len(expired)

    async def reconcile(self) -> int:
        """
        Recompute the size counter from the stored entries.

        Returns:
            Corrected total size in bytes
        """
        if not self.is_ready:
            return 0

        async with self._lock:
            async with self._session_factory() as session:
                async with session.begin():
                    actual = await session.scalar(
                        select(func.coalesce(func.sum(CachedAnalysis.size_bytes), 0))
                    )
                    recorded = await self._read_total_size(session)
                    if recorded != actual:
                        logger.warning(f"Cache size counter drifted ({recorded} != {actual}), correcting")
                        await self._write_total_size(session, actual)

        return int(actual)

    async def get_status(self) -> CacheStatus:
        """Item count and usage read from the store."""
        if not self.is_ready:
            return CacheStatus(is_ready=False, max_size=self.max_size_bytes)

        try:
            async with self._session_factory() as session:
                item_count = await session.scalar(select(func.count()).select_from(CachedAnalysis))
                total_size = await self._read_total_size(session)
        except SQLAlchemyError as e:
            logger.error(f"Cache status read failed: {e}")
            return CacheStatus(is_ready=False, max_size=self.max_size_bytes)

        return CacheStatus(
            is_ready=True,
            item_count=item_count or 0,
            total_size=total_size,
            max_size=self.max_size_bytes,
            usage_percentage=total_size / self.max_size_bytes * 100
        )
