"""
Analysis orchestration.

Runs the pattern, sentiment and topic analyzers concurrently over one set of
reviews, tracks their progress, and short-circuits through the result cache
when the same subject was already analyzed with the same configuration.
"""

import asyncio
import logging
import time
import uuid
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError

from reviewlens.analytics.base import BatchAnalyzer
from reviewlens.analytics.pattern_analyzer import PatternAnalyzer
from reviewlens.analytics.sentiment_analyzer import SentimentAnalyzer
from reviewlens.analytics.topic_analyzer import TopicAnalyzer
from reviewlens.cache.cache_facade import CacheFacade
from reviewlens.exceptions import AnalysisFailedError, CacheError, NoValidReviewsError
from reviewlens.models.schemas import (
    ANALYZER_KINDS,
    AnalysisConfig,
    AnalysisProgress,
    AnalysisStats,
    CombinedAnalysisResult,
    ProgressRecord,
    ReviewRecord,
)
from reviewlens.services.logging_service import app_logger, app_metrics

logger = logging.getLogger(__name__)


class AnalysisService:
    """
    Coordinates the three analyzers for one subject at a time.

    The cache is optional; without it (or without ``config.subject_id``)
    every call runs the full analysis. Cache failures are logged and never
    fail a run.
    """

    def __init__(
        self,
        cache: Optional[CacheFacade] = None,
        batch_size: int = 50,
        max_topics: int = 20,
        frequency_threshold: float = 0.1
    ):
        """
        Args:
            cache: Shared cache facade, or None to run uncached
            batch_size: Default reviews per analyzer batch
            max_topics: Default number of topics to report
            frequency_threshold: Default share of reviews for a frequent term
        """
        self.cache = cache
        self.default_config = AnalysisConfig(
            batch_size=batch_size,
            max_topics=max_topics,
            frequency_threshold=frequency_threshold
        )

        self.analyzers: Dict[str, BatchAnalyzer] = {
            "patterns": PatternAnalyzer(batch_size, frequency_threshold),
            "sentiment": SentimentAnalyzer(batch_size),
            "topics": TopicAnalyzer(batch_size, max_topics),
        }

        self.analysis_id: Optional[str] = None
        self._subject_id: Optional[str] = None
        self._config: Optional[AnalysisConfig] = None
        self._run_errors: List[str] = []
        self._progress: Dict[str, AnalysisProgress] = self._idle_progress()

    @staticmethod
    def _idle_progress() -> Dict[str, AnalysisProgress]:
        return {kind: AnalysisProgress() for kind in ANALYZER_KINDS}

    @staticmethod
    def filter_reviews(reviews: Iterable[Any]) -> List[ReviewRecord]:
        """
        Keep reviews that have text and a 1-5 score.

        Accepts ``ReviewRecord`` instances or plain dicts; anything that
        does not validate is dropped.
        """
        valid = []
        for review in reviews or []:
            if review is None:
                continue
            if not isinstance(review, ReviewRecord):
                try:
                    review = ReviewRecord.model_validate(review)
                except ValidationError:
                    continue
            if review.is_valid():
                valid.append(review)
        return valid

    def _configure_analyzers(self, config: AnalysisConfig):
        for analyzer in self.analyzers.values():
            analyzer.batch_size = config.batch_size
        self.analyzers["patterns"].frequency_threshold = config.frequency_threshold
        self.analyzers["topics"].max_topics = config.max_topics

    def _is_active(self, analysis_id: str) -> bool:
        return self.analysis_id == analysis_id

    # ============================================
    # Running
    # ============================================

    async def analyze_reviews(
        self,
        reviews: Iterable[Any],
        config: Optional[AnalysisConfig] = None,
        resume_id: Optional[str] = None
    ) -> CombinedAnalysisResult:
        """
        Analyze reviews, or return the cached result of an identical earlier run.

        Args:
            reviews: Review records or dicts; invalid ones are skipped
            config: Analysis parameters; ``subject_id`` enables caching
            resume_id: Analysis id of an interrupted run whose progress to redisplay

        Returns:
            Combined analysis result

        Raises:
            NoValidReviewsError: No review has text and a valid score
            AnalysisFailedError: An analyzer raised
        """
        start_time = time.perf_counter()
        config = config or self.default_config

        valid_reviews = self.filter_reviews(reviews)
        if not valid_reviews:
            raise NoValidReviewsError()

        config_hash = config.fingerprint()
        subject_id = config.subject_id
        use_cache = self.cache is not None and bool(subject_id)

        if use_cache:
            cached = await self._cache_lookup(subject_id, config_hash)
            if cached is not None:
                app_metrics.increment_cache(hit=True)
                app_logger.info("Serving cached analysis", subject_id=subject_id, config_hash=config_hash)
                self._progress = {
                    kind: AnalysisProgress(stage="completed", progress=100, details="Loaded from cache")
                    for kind in ANALYZER_KINDS
                }
                return cached
            app_metrics.increment_cache(hit=False)

        analysis_id = uuid.uuid4().hex
        self.analysis_id = analysis_id
        self._subject_id = subject_id
        self._config = config
        run_errors = self._run_errors = []
        self._progress = self._idle_progress()

        if resume_id:
            await self.restore_progress(resume_id)
            await self._clear_progress_record(resume_id)

        self._configure_analyzers(config)
        app_logger.info(
            "Analysis started",
            analysis_id=analysis_id,
            subject_id=subject_id,
            review_count=len(valid_reviews)
        )

        tasks = [
            asyncio.ensure_future(self._run_analysis(kind, analysis_id, valid_reviews))
            for kind in ANALYZER_KINDS
        ]

        try:
            patterns, sentiment, topics = await asyncio.gather(*tasks)
        except AnalysisFailedError as e:
            await self._cancel_pending(tasks)
            app_metrics.increment_analysis("failed")
            app_logger.error("Analysis failed", analysis_id=analysis_id, analyzer=e.analyzer, error=str(e.cause))
            if self._is_active(analysis_id):
                await self._clear_progress_record(analysis_id)
            raise

        result = CombinedAnalysisResult(
            patterns=patterns,
            sentiment=sentiment,
            topics=topics,
            stats=AnalysisStats(
                total_reviews=len(valid_reviews),
                processing_time_ms=int((time.perf_counter() - start_time) * 1000),
                errors=list(run_errors) or None
            )
        )

        if self._is_active(analysis_id):
            if use_cache:
                await self._cache_store(subject_id, result, config_hash)
            await self._clear_progress_record(analysis_id)
            app_metrics.increment_analysis("completed")
        else:
            logger.info(f"Analysis {analysis_id} finished after cancellation; result not cached")

        app_logger.info(
            "Analysis completed",
            analysis_id=analysis_id,
            subject_id=subject_id,
            duration_ms=result.stats.processing_time_ms
        )
        return result

    async def _run_analysis(self, kind: str, analysis_id: str, reviews: List[ReviewRecord]):
        """Run one analyzer, recording its start, completion or failure."""
        analyzer = self.analyzers[kind]

        await self._set_progress(analysis_id, kind, AnalysisProgress(
            stage="running",
            progress=0,
            details=f"Starting {kind} analysis..."
        ))

        try:
            result = await analyzer.analyze(reviews)
        except Exception as e:
            await self._set_progress(analysis_id, kind, AnalysisProgress(
                stage="error",
                progress=analyzer.get_progress().progress,
                error=str(e),
                details=f"Failed to run {kind} analysis: {e}"
            ))
            raise AnalysisFailedError(e, analyzer=kind) from e

        await self._set_progress(analysis_id, kind, AnalysisProgress(
            stage="completed",
            progress=100,
            details=f"Completed {kind} analysis"
        ))
        return result

    async def _set_progress(self, analysis_id: str, kind: str, progress: AnalysisProgress):
        # A cancelled run no longer owns the progress map
        if not self._is_active(analysis_id):
            return
        self._progress[kind] = progress
        await self._persist_progress(analysis_id)

    @staticmethod
    async def _cancel_pending(tasks: List[asyncio.Future]):
        pending = [task for task in tasks if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    # ============================================
    # Progress
    # ============================================

    def get_progress(self) -> Dict[str, AnalysisProgress]:
        """Per-analyzer progress, including live batch progress of running analyzers."""
        snapshot = {}
        for kind, progress in self._progress.items():
            if progress.stage == "running":
                live = self.analyzers[kind].get_progress()
                if live.stage == "running" and live.progress >= progress.progress:
                    progress = live
            snapshot[kind] = progress.model_copy()
        return snapshot

    @property
    def overall_progress(self) -> float:
        """Mean completion percentage over all analyzers."""
        progress = self.get_progress()
        return sum(state.progress for state in progress.values()) / len(progress)

    async def cancel_analysis(self):
        """
        Abandon the current run.

        Cooperative: analyzers already running finish their work, but their
        results are neither recorded in progress nor cached. A new run may
        start at once; each analyzer run keeps its own accumulators.
        """
        analysis_id = self.analysis_id
        self.analysis_id = None

        if analysis_id:
            await self._clear_progress_record(analysis_id)
            app_metrics.increment_analysis("cancelled")
            logger.info(f"Analysis {analysis_id} cancelled")

        self._progress = self._idle_progress()
        for analyzer in self.analyzers.values():
            analyzer.reset()

    async def restore_progress(self, analysis_id: str) -> Optional[ProgressRecord]:
        """
        Load a persisted progress snapshot into the displayed progress.

        Display only: analyzers still start from scratch.
        """
        if self.cache is None:
            return None

        try:
            record = await self.cache.get_progress(analysis_id)
        except CacheError as e:
            logger.warning(f"Could not restore progress for {analysis_id}: {e}")
            return None

        if record is not None:
            for kind, progress in record.progress.items():
                if kind in self._progress:
                    self._progress[kind] = progress
        return record

    # ============================================
    # Cache helpers
    # ============================================

    async def _cache_lookup(self, subject_id: str, config_hash: str) -> Optional[CombinedAnalysisResult]:
        try:
            return await self.cache.get_analysis(subject_id, config_hash)
        except CacheError as e:
            logger.warning(f"Cache lookup failed for {subject_id}: {e}")
            return None

    async def _cache_store(self, subject_id: str, result: CombinedAnalysisResult, config_hash: str):
        try:
            await self.cache.cache_analysis(subject_id, result, config_hash)
            app_metrics.increment_cache_write(success=True)
        except CacheError as e:
            app_metrics.increment_cache_write(success=False)
            logger.warning(f"Analysis for {subject_id} not cached: {e}")

    async def _persist_progress(self, analysis_id: str):
        if self.cache is None or not self._subject_id:
            return
        try:
            await self.cache.save_progress(analysis_id, self._subject_id, self.get_progress(), self._config)
        except CacheError as e:
            logger.warning(f"Progress for {analysis_id} not saved: {e}")
            self._run_errors.append(f"progress not saved: {e}")

    async def _clear_progress_record(self, analysis_id: str):
        if self.cache is None:
            return
        try:
            await self.cache.clear_progress(analysis_id)
        except CacheError as e:
            logger.warning(f"Progress for {analysis_id} not cleared: {e}")
