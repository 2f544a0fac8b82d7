"""
Unit tests for analysis orchestration, caching and cancellation.
"""

import asyncio
import pytest
from unittest.mock import AsyncMock
from typing import List

from reviewlens.analytics.analysis_service import AnalysisService
from reviewlens.cache import CacheFacade
from reviewlens.exceptions import AnalysisFailedError, CacheWriteError, NoValidReviewsError
from reviewlens.models.schemas import AnalysisConfig, AnalysisProgress, ReviewRecord
from reviewlens.services.logging_service import app_metrics

SUBJECT = "com.example.app"


def gate_analyzer(service: AnalysisService, kind: str):
    """
    Hold an analyzer at its start until ``release`` is set.

    Returns:
        Tuple of (started, release) events
    """
    started = asyncio.Event()
    release = asyncio.Event()
    original = service.analyzers[kind].analyze

    async def gated(reviews):
        started.set()
        await release.wait()
        return await original(reviews)

    service.analyzers[kind].analyze = gated
    return started, release


def count_calls(service: AnalysisService, kind: str) -> List[int]:
    calls = []
    original = service.analyzers[kind].analyze

    async def counting(reviews):
        calls.append(len(reviews))
        return await original(reviews)

    service.analyzers[kind].analyze = counting
    return calls


@pytest.mark.unit
@pytest.mark.analytics
class TestReviewFiltering:
    """Test input validation before any analyzer runs."""

    async def test_invalid_reviews_are_dropped(self, scenario_reviews: list):
        """Test the empty-text review is filtered and stats count two reviews."""
        result = await AnalysisService().analyze_reviews(scenario_reviews)

        assert result.stats.total_reviews == 2
        assert len(result.sentiment.reviews) == 2
        assert result.stats.errors is None

    async def test_no_valid_reviews(self):
        """Test the run fails before any analyzer starts."""
        service = AnalysisService()
        calls = count_calls(service, "patterns")

        with pytest.raises(NoValidReviewsError, match="No valid reviews"):
            await service.analyze_reviews([{"text": "", "score": 5}, {"text": "ok", "score": 9}, None])

        assert calls == []
        assert service.get_progress()["patterns"].stage == "idle"

    def test_filter_accepts_records_and_dicts(self):
        """Test mixed inputs are normalized to records."""
        reviews = AnalysisService.filter_reviews([
            ReviewRecord(text="fine", score=4),
            {"text": "great", "score": 5, "author": "Ann"},
            {"text": "no score"},
            {"text": "   ", "score": 3},
            {"text": "bad type", "score": "many"},
        ])

        assert [review.text for review in reviews] == ["fine", "great"]
        assert all(isinstance(review, ReviewRecord) for review in reviews)


@pytest.mark.unit
@pytest.mark.analytics
class TestOrchestration:
    """Test concurrent analyzer runs and fail-fast behaviour."""

    async def test_all_analyzers_complete(self, sample_reviews: List[ReviewRecord]):
        """Test a successful run leaves every analyzer completed."""
        service = AnalysisService(batch_size=2)

        result = await service.analyze_reviews(sample_reviews)

        assert result.stats.total_reviews == len(sample_reviews)
        assert result.stats.processing_time_ms >= 0
        assert result.topics.terms
        progress = service.get_progress()
        assert all(state.stage == "completed" and state.progress == 100 for state in progress.values())
        assert service.overall_progress == 100.0
        assert app_metrics.get_metrics()["analysis"]["completed"] == 1

    async def test_sentiment_failure_fails_fast(self, sample_reviews: List[ReviewRecord]):
        """Test a sentiment error aborts the run with its message wrapped."""
        service = AnalysisService()
        service.analyzers["sentiment"].analyze = AsyncMock(side_effect=RuntimeError("lexicon missing"))

        with pytest.raises(AnalysisFailedError) as exc_info:
            await service.analyze_reviews(sample_reviews)

        assert str(exc_info.value) == "Analysis failed: lexicon missing"
        assert exc_info.value.analyzer == "sentiment"

        progress = service.get_progress()
        assert progress["sentiment"].stage == "error"
        assert progress["sentiment"].error == "lexicon missing"
        assert progress["patterns"].stage != "error"
        assert progress["topics"].stage != "error"
        assert app_metrics.get_metrics()["analysis"]["failed"] == 1

    async def test_config_applied_to_analyzers(self, sample_reviews: List[ReviewRecord]):
        """Test run configuration overrides analyzer defaults."""
        service = AnalysisService()
        config = AnalysisConfig(batch_size=3, max_topics=2, frequency_threshold=0.5)

        result = await service.analyze_reviews(sample_reviews, config)

        assert service.analyzers["sentiment"].batch_size == 3
        assert service.analyzers["patterns"].frequency_threshold == 0.5
        assert len(result.topics.terms) == 2

    def test_fingerprint_ignores_subject(self):
        """Test the cache key part does not depend on the subject."""
        first = AnalysisConfig(subject_id="com.a.app")
        second = AnalysisConfig(subject_id="com.b.app")

        assert first.fingerprint() == second.fingerprint()
        assert len(first.fingerprint()) == 16
        assert AnalysisConfig(batch_size=10).fingerprint() != first.fingerprint()


@pytest.mark.unit
@pytest.mark.cache
class TestCachedRuns:
    """Test the cache short-circuit and write-back."""

    async def test_rerun_served_from_cache(self, cache_facade: CacheFacade, sample_reviews: List[ReviewRecord]):
        """Test an identical second run does not analyze again."""
        service = AnalysisService(cache_facade)
        calls = count_calls(service, "patterns")
        config = AnalysisConfig(subject_id=SUBJECT)

        first = await service.analyze_reviews(sample_reviews, config)
        second = await service.analyze_reviews(sample_reviews, config)

        assert calls == [len(sample_reviews)]
        assert second == first
        assert all(state.details == "Loaded from cache" for state in service.get_progress().values())

        cache_metrics = app_metrics.get_metrics()["cache"]
        assert cache_metrics["hits"] == 1
        assert cache_metrics["misses"] == 1
        assert cache_metrics["writes"] == 1

    async def test_different_config_misses(self, cache_facade: CacheFacade, sample_reviews: List[ReviewRecord]):
        """Test a changed configuration runs the analysis again."""
        service = AnalysisService(cache_facade)
        calls = count_calls(service, "patterns")

        await service.analyze_reviews(sample_reviews, AnalysisConfig(subject_id=SUBJECT))
        await service.analyze_reviews(sample_reviews, AnalysisConfig(subject_id=SUBJECT, max_topics=5))

        assert len(calls) == 2

    async def test_without_subject_runs_uncached(self, cache_facade: CacheFacade, sample_reviews: List[ReviewRecord]):
        """Test a config without subject id never touches the cache."""
        service = AnalysisService(cache_facade)

        await service.analyze_reviews(sample_reviews, AnalysisConfig())

        assert cache_facade.status.item_count == 0
        assert app_metrics.get_metrics()["cache"]["misses"] == 0

    async def test_cache_write_failure_still_returns_result(
        self, cache_facade: CacheFacade, sample_reviews: List[ReviewRecord]
    ):
        """Test a failing cache write is logged, not raised."""
        cache_facade.cache_analysis = AsyncMock(side_effect=CacheWriteError("disk full"))
        service = AnalysisService(cache_facade)

        result = await service.analyze_reviews(sample_reviews, AnalysisConfig(subject_id=SUBJECT))

        assert result.stats.total_reviews == len(sample_reviews)
        assert app_metrics.get_metrics()["cache"]["errors"] == 1


@pytest.mark.unit
@pytest.mark.cache
class TestProgressAndCancellation:
    """Test persisted progress and cancelled runs."""

    async def test_progress_persisted_while_running(
        self, cache_facade: CacheFacade, sample_reviews: List[ReviewRecord]
    ):
        """Test a running analysis leaves a snapshot that is cleared on completion."""
        service = AnalysisService(cache_facade)
        started, release = gate_analyzer(service, "topics")

        task = asyncio.create_task(service.analyze_reviews(sample_reviews, AnalysisConfig(subject_id=SUBJECT)))
        await started.wait()

        record = await cache_facade.find_progress(SUBJECT)
        assert record is not None
        assert record.analysis_id == service.analysis_id
        assert record.progress["topics"].stage == "running"
        assert record.config.subject_id == SUBJECT

        release.set()
        await task

        assert await cache_facade.find_progress(SUBJECT) is None

    async def test_cancelled_run_is_not_cached(self, cache_facade: CacheFacade, sample_reviews: List[ReviewRecord]):
        """Test a result finishing after cancel is returned but not cached."""
        service = AnalysisService(cache_facade)
        started, release = gate_analyzer(service, "topics")
        config = AnalysisConfig(subject_id=SUBJECT)

        task = asyncio.create_task(service.analyze_reviews(sample_reviews, config))
        await started.wait()

        await service.cancel_analysis()
        assert service.analysis_id is None
        assert all(state.stage == "idle" for state in service.get_progress().values())

        release.set()
        result = await task

        assert result.stats.total_reviews == len(sample_reviews)
        assert await cache_facade.get_analysis(SUBJECT, config.fingerprint()) is None
        assert await cache_facade.find_progress(SUBJECT) is None
        assert all(state.stage == "idle" for state in service.get_progress().values())
        assert app_metrics.get_metrics()["analysis"]["cancelled"] == 1

    async def test_run_after_cancel_is_isolated(self, cache_facade: CacheFacade):
        """Test a run started while a cancelled one is still analyzing caches only its own reviews."""
        service = AnalysisService(cache_facade)
        config = AnalysisConfig(subject_id=SUBJECT, batch_size=1)
        backlog = [ReviewRecord(id=f"old-{i}", text="Battery drains overnight", score=2) for i in range(50)]
        newer = [ReviewRecord(id=f"new-{i}", text="Widget sync stalls", score=4) for i in range(5)]

        gates = [(asyncio.Event(), asyncio.Event()) for _ in range(2)]
        (old_started, old_release), (new_started, new_release) = gates
        calls = iter(gates)
        original = service.analyzers["topics"].analyze

        async def gated(reviews):
            started, release = next(calls)
            started.set()
            await release.wait()
            return await original(reviews)

        service.analyzers["topics"].analyze = gated

        abandoned = asyncio.create_task(service.analyze_reviews(backlog, config))
        await old_started.wait()
        await service.cancel_analysis()

        latest_task = asyncio.create_task(service.analyze_reviews(newer, config))
        await new_started.wait()
        # Both topic runs now share one analyzer instance
        old_release.set()
        new_release.set()
        latest = await latest_task
        earlier = await abandoned

        latest_terms = {term.topic: term.count for term in latest.topics.terms}
        assert set(latest_terms) <= {"widget", "sync", "stalls"}
        assert latest_terms["widget"] == 5
        assert latest.stats.total_reviews == 5
        assert len(latest.sentiment.reviews) == 5
        assert all(review.review_id.startswith("new-") for review in latest.sentiment.reviews)

        earlier_terms = {term.topic: term.count for term in earlier.topics.terms}
        assert earlier_terms["battery"] == 50
        assert "widget" not in earlier_terms

        cached = await cache_facade.get_analysis(SUBJECT, config.fingerprint())
        assert cached is not None
        assert {term.topic: term.count for term in cached.topics.terms} == latest_terms
        assert len(cached.sentiment.reviews) == 5

    async def test_restore_progress(self, cache_facade: CacheFacade):
        """Test a saved snapshot is loaded into the displayed progress."""
        await cache_facade.save_progress(
            "old-run",
            SUBJECT,
            {"patterns": AnalysisProgress(stage="running", progress=70)},
            AnalysisConfig(subject_id=SUBJECT)
        )
        service = AnalysisService(cache_facade)

        record = await service.restore_progress("old-run")

        assert record.analysis_id == "old-run"
        assert service.get_progress()["patterns"].progress == 70
        assert await service.restore_progress("missing-run") is None

    async def test_resume_clears_previous_snapshot(
        self, cache_facade: CacheFacade, sample_reviews: List[ReviewRecord]
    ):
        """Test resuming an interrupted run replaces its snapshot."""
        config = AnalysisConfig(subject_id=SUBJECT)
        await cache_facade.save_progress(
            "old-run", SUBJECT, {"patterns": AnalysisProgress(stage="running", progress=70)}, config
        )
        service = AnalysisService(cache_facade)

        result = await service.analyze_reviews(sample_reviews, config, resume_id="old-run")

        assert result.stats.total_reviews == len(sample_reviews)
        assert await cache_facade.get_progress("old-run") is None

    async def test_works_without_cache(self, scenario_reviews: list):
        """Test restore and cancel are safe with no cache configured."""
        service = AnalysisService()

        assert await service.restore_progress("anything") is None
        await service.cancel_analysis()

        result = await service.analyze_reviews(scenario_reviews, AnalysisConfig(subject_id=SUBJECT))
        assert result.stats.total_reviews == 2
