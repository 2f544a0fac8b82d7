"""In-process registry of per-app analysis runs started through the API."""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from reviewlens.analytics.analysis_service import AnalysisService
from reviewlens.analytics.transformer import AnalysisTransformer
from reviewlens.cache.cache_facade import CacheFacade
from reviewlens.exceptions import ReviewLensError, ScraperError
from reviewlens.models.schemas import AnalysisConfig, CombinedAnalysisResult, ReviewRecord
from reviewlens.scraper.play_store_scraper import PlayStoreScraper, ScraperConfig
from reviewlens.services.error_tracking import capture_exception, record_breadcrumb

logger = logging.getLogger(__name__)


class AnalysisSession:
    """State of the latest run for one app."""

    def __init__(self, app_id: str, service: AnalysisService):
        self.app_id = app_id
        self.service = service
        self.status = "idle"  # idle, scraping, running, completed, error, cancelled
        self.run_id = 0
        self.task: Optional[asyncio.Task] = None
        self.scraper: Optional[PlayStoreScraper] = None
        self.reviews: List[ReviewRecord] = []
        self.app_info: Dict[str, Any] = {"app_id": app_id, "name": app_id}
        self.result: Optional[CombinedAnalysisResult] = None
        self.error: Optional[ReviewLensError] = None
        self._transformer: Optional[AnalysisTransformer] = None

    @property
    def is_running(self) -> bool:
        return self.task is not None and not self.task.done()

    @property
    def error_message(self) -> Optional[str]:
        return str(self.error) if self.error else None

    def transformer(self) -> Optional[AnalysisTransformer]:
        """Transformer over the current result, built once per result."""
        if self.result is None:
            return None
        if self._transformer is None or self._transformer.result is not self.result:
            self._transformer = AnalysisTransformer(self.result, self.reviews, self.app_info)
        return self._transformer


class AnalysisSessionRegistry:
    """
    Owns one ``AnalysisSession`` per app id.

    All sessions share the same cache facade; each gets its own
    ``AnalysisService`` so progress of different apps never mixes.
    """

    def __init__(
        self,
        cache: Optional[CacheFacade],
        scraper_config: Optional[ScraperConfig] = None,
        batch_size: int = 50,
        max_topics: int = 20,
        scraper_factory: Optional[Callable[[ScraperConfig], PlayStoreScraper]] = None
    ):
        self.cache = cache
        self.scraper_config = scraper_config or ScraperConfig()
        self.batch_size = batch_size
        self.max_topics = max_topics
        self.scraper_factory = scraper_factory or PlayStoreScraper
        self.sessions: Dict[str, AnalysisSession] = {}

    def get(self, app_id: str) -> Optional[AnalysisSession]:
        return self.sessions.get(app_id)

    def get_or_create(self, app_id: str) -> AnalysisSession:
        session = self.sessions.get(app_id)
        if session is None:
            service = AnalysisService(self.cache, batch_size=self.batch_size, max_topics=self.max_topics)
            session = AnalysisSession(app_id, service)
            self.sessions[app_id] = session
        return session

    def build_config(self, app_id: str, config: Optional[AnalysisConfig] = None) -> AnalysisConfig:
        """Request config, or the configured defaults, bound to the app id."""
        if config is None:
            config = AnalysisConfig(batch_size=self.batch_size, max_topics=self.max_topics)
        if not config.subject_id:
            config = config.model_copy(update={"subject_id": app_id})
        return config

    def start(
        self,
        app_id: str,
        reviews: Optional[List[ReviewRecord]] = None,
        config: Optional[AnalysisConfig] = None,
        max_reviews: Optional[int] = None
    ) -> AnalysisSession:
        """
        Launch a run in the background.

        Without reviews the app's newest reviews are scraped first.

        Raises:
            RuntimeError: A run for this app is already in progress
        """
        session = self.get_or_create(app_id)
        # A cancelled task may still be unwinding; it no longer owns the session
        if session.is_running and session.status != "cancelled":
            raise RuntimeError(f"Analysis for {app_id} is already running")

        session.run_id += 1
        session.status = "scraping" if reviews is None else "running"
        session.result = None
        session.error = None
        session.reviews = list(reviews or [])

        session.task = asyncio.create_task(
            self._run(session, session.run_id, reviews, self.build_config(app_id, config), max_reviews)
        )
        record_breadcrumb(f"Analysis started for {app_id}", category="analysis")
        return session

    async def _run(
        self,
        session: AnalysisSession,
        run_id: int,
        reviews: Optional[List[ReviewRecord]],
        config: AnalysisConfig,
        max_reviews: Optional[int]
    ):
        def current() -> bool:
            return session.run_id == run_id

        try:
            if reviews is None:
                scraper_config = self.scraper_config
                if max_reviews:
                    scraper_config = scraper_config.model_copy(update={"max_reviews": max_reviews})
                scraper = self.scraper_factory(scraper_config)
                session.scraper = scraper

                scraped = await scraper.scrape(session.app_id)
                reviews = scraped.reviews

                try:
                    session.app_info = await scraper.fetch_app_info(session.app_id)
                except ScraperError as e:
                    logger.warning(f"App details unavailable for {session.app_id}: {e}")

                if not current():
                    return
                session.reviews = reviews
                session.status = "running"

            result = await session.service.analyze_reviews(reviews, config)

            if not current():
                return
            # The dashboard shows what was analyzed, not what was submitted
            session.reviews = session.service.filter_reviews(reviews)
            session.result = result
            session.status = "completed"

        except ReviewLensError as e:
            if current():
                session.error = e
                session.status = "error"
            logger.warning(f"Analysis for {session.app_id} failed: {e}")
        except Exception as e:
            stage = "scrape" if session.status == "scraping" else "analysis"
            if current():
                session.error = ReviewLensError(f"Unexpected error: {e}")
                session.status = "error"
            capture_exception(e, app_id=session.app_id, stage=stage)

    async def cancel(self, app_id: str) -> Optional[AnalysisSession]:
        """
        Cancel the app's current run.

        The run's task is cancelled whether it is scraping or analyzing, and
        its result is dropped. A new run can be started right away.
        """
        session = self.sessions.get(app_id)
        if session is None:
            return None

        if session.is_running:
            session.run_id += 1
            session.task.cancel()
            session.status = "cancelled"

        await session.service.cancel_analysis()
        return session

    async def shutdown(self):
        """Stop all background runs."""
        tasks = [session.task for session in self.sessions.values() if session.is_running]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
