"""
Unit tests for the persistent analysis result cache.
"""

import asyncio
import pytest
from sqlalchemy import select

from conftest import FakeClock, make_result, result_size
from reviewlens.cache import AnalysisCache
from reviewlens.exceptions import CacheSerializationError
from reviewlens.models.cache_models import CachedAnalysis, CacheMetadata
from reviewlens.models.schemas import AnalysisConfig, AnalysisProgress


async def open_cache(cache_url: str, clock: FakeClock, entries: int, ttl_seconds: float = 3600) -> AnalysisCache:
    """Cache with room for exactly ``entries`` results of ``make_result()`` size."""
    cache = AnalysisCache(
        cache_url,
        max_size_bytes=result_size(make_result()) * entries,
        ttl_seconds=ttl_seconds,
        clock=clock
    )
    await cache.open()
    return cache


async def stored_size(cache: AnalysisCache) -> int:
    return await cache.reconcile()


@pytest.mark.unit
@pytest.mark.cache
class TestCacheHitMiss:
    """Test lookups by subject and configuration fingerprint."""

    async def test_set_then_get_returns_equal_result(self, analysis_cache: AnalysisCache):
        """Test a stored result comes back unchanged."""
        result = make_result()
        entry_id = await analysis_cache.set("com.example.app", result, "abc123")

        assert entry_id.startswith("com.example.app_abc123_")
        assert await analysis_cache.get("com.example.app", "abc123") == result

    async def test_get_with_other_hash_misses(self, analysis_cache: AnalysisCache):
        """Test a different configuration fingerprint is a miss."""
        await analysis_cache.set("com.example.app", make_result(), "abc123")

        assert await analysis_cache.get("com.example.app", "def456") is None
        assert await analysis_cache.get("com.other.app", "abc123") is None

    async def test_get_after_expiry_misses(self, analysis_cache: AnalysisCache, clock: FakeClock):
        """Test entries stop being served once their TTL has passed."""
        await analysis_cache.set("com.example.app", make_result(), "abc123")

        clock.advance(3599)
        assert await analysis_cache.get("com.example.app", "abc123") is not None

        clock.advance(2)
        assert await analysis_cache.get("com.example.app", "abc123") is None

    async def test_get_returns_newest_entry(self, analysis_cache: AnalysisCache, clock: FakeClock):
        """Test the most recent of several matching entries wins."""
        await analysis_cache.set("com.example.app", make_result(total_reviews=1), "abc123")
        clock.advance(10)
        await analysis_cache.set("com.example.app", make_result(total_reviews=2), "abc123")

        cached = await analysis_cache.get("com.example.app", "abc123")
        assert cached.stats.total_reviews == 2

    async def test_same_millisecond_writes_get_distinct_ids(self, analysis_cache: AnalysisCache):
        """Test two writes at the same instant do not collide."""
        first = await analysis_cache.set("com.example.app", make_result(), "abc123")
        second = await analysis_cache.set("com.example.app", make_result(), "abc123")

        assert first != second
        assert second == f"{first}-1"

        status = await analysis_cache.get_status()
        assert status.item_count == 2


@pytest.mark.unit
@pytest.mark.cache
class TestSizeAccounting:
    """Test the total_size counter tracks stored entries."""

    async def test_total_size_matches_entries(self, analysis_cache: AnalysisCache):
        """Test the counter equals the sum of entry sizes after writes."""
        for index in range(3):
            await analysis_cache.set(f"com.example.app{index}", make_result(total_reviews=index + 1), "abc123")

        status = await analysis_cache.get_status()
        assert status.item_count == 3
        assert status.total_size == await stored_size(analysis_cache)
        assert status.usage_percentage == pytest.approx(status.total_size / status.max_size * 100)

    async def test_concurrent_writes_keep_counter_consistent(self, analysis_cache: AnalysisCache):
        """Test parallel set calls cannot lose counter updates."""
        await asyncio.gather(*[
            analysis_cache.set(f"com.example.app{index}", make_result(), "abc123")
            for index in range(8)
        ])

        status = await analysis_cache.get_status()
        assert status.item_count == 8
        assert status.total_size == result_size(make_result()) * 8
        assert status.total_size == await stored_size(analysis_cache)

    async def test_counter_consistent_after_eviction(self, cache_url: str, clock: FakeClock):
        """Test eviction moves the counter together with the deleted entries."""
        cache = await open_cache(cache_url, clock, entries=2)
        try:
            for index in range(5):
                clock.advance(1)
                await cache.set(f"com.example.app{index}", make_result(), "abc123")

                status = await cache.get_status()
                assert status.total_size == await stored_size(cache)
                assert status.total_size <= cache.max_size_bytes

            assert (await cache.get_status()).item_count == 2
        finally:
            await cache.close()

    async def test_oversized_result_is_refused(self, cache_url: str, clock: FakeClock):
        """Test a result larger than the whole cache raises and stores nothing."""
        cache = AnalysisCache(cache_url, max_size_bytes=100, clock=clock)
        await cache.open()
        try:
            with pytest.raises(CacheSerializationError):
                await cache.set("com.example.app", make_result(errors=["x" * 200]), "abc123")

            status = await cache.get_status()
            assert status.item_count == 0
            assert status.total_size == 0
        finally:
            await cache.close()

    async def test_reconcile_repairs_drifted_counter(self, analysis_cache: AnalysisCache):
        """Test reconcile rewrites a counter that disagrees with the entries."""
        await analysis_cache.set("com.example.app", make_result(), "abc123")

        async with analysis_cache._session_factory() as session:
            async with session.begin():
                row = await session.get(CacheMetadata, "total_size")
                row.value = 999_999

        assert await analysis_cache.reconcile() == result_size(make_result())
        assert (await analysis_cache.get_status()).total_size == result_size(make_result())


@pytest.mark.unit
@pytest.mark.cache
class TestEviction:
    """Test expired entries go first, then least recently used ones."""

    async def test_eviction_order_expired_then_lru(self, cache_url: str, clock: FakeClock):
        """Test A (expired) is evicted before B (old access) before C (recent access)."""
        cache = await open_cache(cache_url, clock, entries=3, ttl_seconds=100)
        try:
            await cache.set("com.example.a", make_result(), "abc123")
            clock.advance(50)
            await cache.set("com.example.b", make_result(), "abc123")
            clock.advance(10)
            await cache.set("com.example.c", make_result(), "abc123")

            # A expired, B and C still valid
            clock.advance(60)

            await cache.set("com.example.d", make_result(), "abc123")
            assert (await cache.get_status()).item_count == 3

            remaining = await self._subjects(cache)
            assert remaining == {"com.example.b", "com.example.c", "com.example.d"}

            await cache.set("com.example.e", make_result(), "abc123")
            assert await self._subjects(cache) == {"com.example.c", "com.example.d", "com.example.e"}

            await cache.set("com.example.f", make_result(), "abc123")
            assert await self._subjects(cache) == {"com.example.d", "com.example.e", "com.example.f"}
        finally:
            await cache.close()

    async def test_get_touch_protects_entry(self, cache_url: str, clock: FakeClock):
        """Test a read entry outlives an older sibling that was not read."""
        cache = await open_cache(cache_url, clock, entries=2)
        try:
            await cache.set("com.example.a", make_result(), "abc123")
            clock.advance(1)
            await cache.set("com.example.b", make_result(), "abc123")
            clock.advance(1)

            assert await cache.get("com.example.a", "abc123") is not None
            clock.advance(1)

            await cache.set("com.example.c", make_result(), "abc123")

            assert await self._subjects(cache) == {"com.example.a", "com.example.c"}
        finally:
            await cache.close()

    @staticmethod
    async def _subjects(cache: AnalysisCache) -> set:
        async with cache._session_factory() as session:
            rows = await session.execute(select(CachedAnalysis.subject_id))
            return {row.subject_id for row in rows}


@pytest.mark.unit
@pytest.mark.cache
class TestMaintenance:
    """Test clearing, purging and status reporting."""

    async def test_clear_all_resets_store(self, analysis_cache: AnalysisCache):
        """Test clear_all drops entries, progress and the counter."""
        await analysis_cache.set("com.example.app", make_result(), "abc123")
        await analysis_cache.save_progress(
            "run-1", "com.example.app", {"patterns": AnalysisProgress()}, AnalysisConfig()
        )

        await analysis_cache.clear_all()

        status = await analysis_cache.get_status()
        assert status.item_count == 0
        assert status.total_size == 0
        assert await analysis_cache.get_progress("run-1") is None

    async def test_purge_expired(self, analysis_cache: AnalysisCache, clock: FakeClock):
        """Test the TTL sweep removes only expired entries."""
        await analysis_cache.set("com.example.old", make_result(), "abc123")
        clock.advance(3000)
        await analysis_cache.set("com.example.new", make_result(), "abc123")
        clock.advance(1000)

        assert await analysis_cache.purge_expired() == 1
        assert await analysis_cache.purge_expired() == 0

        status = await analysis_cache.get_status()
        assert status.item_count == 1
        assert status.total_size == result_size(make_result())

    async def test_counter_survives_reopen(self, cache_url: str, clock: FakeClock):
        """Test entries and counter persist across close and open."""
        cache = AnalysisCache(cache_url, clock=clock)
        await cache.open()
        await cache.set("com.example.app", make_result(), "abc123")
        await cache.close()

        reopened = AnalysisCache(cache_url, clock=clock)
        await reopened.open()
        try:
            status = await reopened.get_status()
            assert status.item_count == 1
            assert status.total_size == result_size(make_result())
            assert await reopened.get("com.example.app", "abc123") == make_result()
        finally:
            await reopened.close()

    def test_rejects_invalid_limits(self, cache_url: str):
        """Test non-positive budget or TTL is refused."""
        with pytest.raises(ValueError):
            AnalysisCache(cache_url, max_size_bytes=0)
        with pytest.raises(ValueError):
            AnalysisCache(cache_url, ttl_seconds=0)


@pytest.mark.unit
@pytest.mark.cache
class TestProgressSnapshots:
    """Test persisted progress of in-flight runs."""

    async def test_save_get_clear(self, analysis_cache: AnalysisCache):
        """Test a snapshot round trip and deletion."""
        progress = {
            "patterns": AnalysisProgress(stage="running", progress=40),
            "sentiment": AnalysisProgress(stage="completed", progress=100),
            "topics": AnalysisProgress(),
        }
        config = AnalysisConfig(batch_size=10, subject_id="com.example.app")

        await analysis_cache.save_progress("run-1", "com.example.app", progress, config)

        record = await analysis_cache.get_progress("run-1")
        assert record.analysis_id == "run-1"
        assert record.subject_id == "com.example.app"
        assert record.progress["patterns"].progress == 40
        assert record.progress["sentiment"].stage == "completed"
        assert record.config == config

        await analysis_cache.clear_progress("run-1")
        assert await analysis_cache.get_progress("run-1") is None

    async def test_save_replaces_snapshot(self, analysis_cache: AnalysisCache, clock: FakeClock):
        """Test saving the same run twice keeps one snapshot with the latest state."""
        config = AnalysisConfig()
        await analysis_cache.save_progress("run-1", "com.example.app", {"topics": AnalysisProgress(progress=10)}, config)
        clock.advance(5)
        await analysis_cache.save_progress("run-1", "com.example.app", {"topics": AnalysisProgress(progress=60)}, config)

        record = await analysis_cache.get_progress("run-1")
        assert record.progress["topics"].progress == 60
        assert record.updated_at == clock.now

    async def test_find_progress_returns_latest_for_subject(self, analysis_cache: AnalysisCache, clock: FakeClock):
        """Test the newest snapshot of a subject is found."""
        config = AnalysisConfig()
        await analysis_cache.save_progress("run-1", "com.example.app", {}, config)
        clock.advance(5)
        await analysis_cache.save_progress("run-2", "com.example.app", {}, config)
        await analysis_cache.save_progress("run-3", "com.other.app", {}, config)

        record = await analysis_cache.find_progress("com.example.app")
        assert record.analysis_id == "run-2"
        assert await analysis_cache.find_progress("com.unknown.app") is None

    async def test_clear_all_progress(self, analysis_cache: AnalysisCache):
        """Test every snapshot is removed while results stay."""
        await analysis_cache.set("com.example.app", make_result(), "abc123")
        await analysis_cache.save_progress("run-1", "com.example.app", {}, AnalysisConfig())
        await analysis_cache.save_progress("run-2", "com.other.app", {}, AnalysisConfig())

        await analysis_cache.clear_all_progress()

        assert await analysis_cache.get_progress("run-1") is None
        assert await analysis_cache.get_progress("run-2") is None
        assert (await analysis_cache.get_status()).item_count == 1

    async def test_progress_persistence_can_be_disabled(self, cache_url: str, clock: FakeClock):
        """Test save_progress is a no-op with persist_progress off."""
        cache = AnalysisCache(cache_url, persist_progress=False, clock=clock)
        await cache.open()
        try:
            await cache.save_progress("run-1", "com.example.app", {}, AnalysisConfig())
            assert await cache.get_progress("run-1") is None
        finally:
            await cache.close()


@pytest.mark.unit
@pytest.mark.cache
class TestUnavailableCache:
    """Test a cache whose store cannot be opened degrades to always-miss."""

    async def test_operations_degrade(self, tmp_path, clock: FakeClock):
        """Test reads miss, writes are no-ops and status reports not ready."""
        blocker = tmp_path / "not_a_directory"
        blocker.write_text("occupied")

        cache = AnalysisCache(f"sqlite+aiosqlite:///{blocker / 'cache.db'}", clock=clock)

        assert await cache.open() is False
        assert cache.is_ready is False

        assert await cache.set("com.example.app", make_result(), "abc123") is None
        assert await cache.get("com.example.app", "abc123") is None
        await cache.save_progress("run-1", "com.example.app", {}, AnalysisConfig())
        assert await cache.get_progress("run-1") is None
        assert await cache.find_progress("com.example.app") is None
        assert await cache.purge_expired() == 0
        await cache.clear_all()

        status = await cache.get_status()
        assert status.is_ready is False
        assert status.item_count == 0
        assert status.max_size == cache.max_size_bytes

        await cache.close()
