"""
Google Play review scraper.

Wraps the blocking ``google-play-scraper`` client: each page is fetched in
a worker thread with a timeout, failed pages are retried with exponential
backoff, and the scrape stops early on timeouts or rate limiting while
keeping whatever was collected.
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Tuple

from google_play_scraper import Sort, app as gp_app, reviews as gp_reviews
from google_play_scraper.exceptions import NotFoundError
from pydantic import BaseModel, Field

from reviewlens.exceptions import AppNotFoundError, ScraperError, ScraperTimeoutError
from reviewlens.models.schemas import ReviewRecord
from reviewlens.services.logging_service import app_metrics

logger = logging.getLogger(__name__)

MAX_CONSECUTIVE_EMPTY = 3


class ScraperConfig(BaseModel):
    batch_size: int = Field(default=100, ge=1)
    max_retries: int = Field(default=3, ge=0)
    max_reviews: int = Field(default=1000, ge=1)
    timeout_seconds: float = Field(default=10.0, gt=0)
    backoff_seconds: float = Field(default=1.0, ge=0)
    lang: str = "en"
    country: str = "us"


class ScrapingProgress(BaseModel):
    total_reviews: int = 0
    fetched_reviews: int = 0
    current_batch: int = 0
    retry_count: int = 0
    status: Literal["idle", "running", "completed", "error"] = "idle"
    error: Optional[str] = None


class ScrapingStats(BaseModel):
    total_reviews: int = 0
    successful_batches: int = 0
    failed_batches: int = 0
    retry_attempts: int = 0
    time_elapsed_ms: int = 0


class ScrapingResult(BaseModel):
    app_id: str
    reviews: List[ReviewRecord]
    stats: ScrapingStats


class PlayStoreScraper:
    """Fetch the newest reviews of one app, page by page."""

    def __init__(self, config: Optional[ScraperConfig] = None):
        self.config = config or ScraperConfig()
        self.progress = ScrapingProgress()

    def get_progress(self) -> ScrapingProgress:
        return self.progress.model_copy()

    async def _call(self, func, *args, **kwargs):
        """Run a blocking client call in a worker thread, bounded by the timeout."""
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(func, *args, **kwargs),
                timeout=self.config.timeout_seconds
            )
        except asyncio.TimeoutError as e:
            raise ScraperTimeoutError("Timeout") from e

    async def _fetch_batch(self, app_id: str, count: int, token: Any) -> Tuple[List[Dict[str, Any]], Any]:
        """
        Fetch one page, retrying with exponential backoff.

        Retries are counted across the whole scrape, like a budget.
        """
        self.progress.current_batch += 1

        while True:
            try:
                batch, next_token = await self._call(
                    gp_reviews,
                    app_id,
                    lang=self.config.lang,
                    country=self.config.country,
                    sort=Sort.NEWEST,
                    count=count,
                    continuation_token=token
                )
                if batch is None:
                    raise ScraperError("Empty response")

                self.progress.fetched_reviews += len(batch)
                return batch, next_token

            except NotFoundError as e:
                raise AppNotFoundError(f"App {app_id} not found") from e
            except Exception as e:
                if self.progress.retry_count >= self.config.max_retries:
                    if isinstance(e, ScraperError):
                        raise
                    raise ScraperError(str(e)) from e

                self.progress.retry_count += 1
                backoff = self.config.backoff_seconds * (2 ** (self.progress.retry_count - 1))
                logger.warning(f"Review batch for {app_id} failed ({e}), retry {self.progress.retry_count} in {backoff}s")
                await asyncio.sleep(backoff)

    async def scrape(self, app_id: str) -> ScrapingResult:
        """
        Collect up to ``max_reviews`` of the newest reviews.

        Stops after three consecutive empty pages, when the store has no
        more pages, or when a page fails for good. A timeout or rate limit
        ends the scrape with the reviews gathered so far.

        Raises:
            AppNotFoundError: Unknown app id
            ScraperError: Nothing could be fetched
        """
        start_time = time.perf_counter()
        stats = ScrapingStats()
        self.progress = ScrapingProgress(status="running")

        reviews: List[ReviewRecord] = []
        token = None
        consecutive_empty = 0

        try:
            while len(reviews) < self.config.max_reviews:
                count = min(self.config.batch_size, self.config.max_reviews - len(reviews))
                try:
                    batch, token = await self._fetch_batch(app_id, count, token)
                except AppNotFoundError:
                    raise
                except ScraperError as e:
                    stats.failed_batches += 1
                    logger.error(f"Batch {self.progress.current_batch} for {app_id} failed: {e}")
                    if isinstance(e, ScraperTimeoutError) or "rate limit" in str(e).lower():
                        logger.warning(f"Stopping scrape of {app_id} early with {len(reviews)} reviews")
                    break

                if not batch:
                    consecutive_empty += 1
                    if consecutive_empty >= MAX_CONSECUTIVE_EMPTY:
                        break
                else:
                    consecutive_empty = 0
                    reviews.extend(self.to_review_record(raw) for raw in batch)
                    stats.successful_batches += 1
                    self.progress.total_reviews = len(reviews)

                # Client returns a token without a cursor once the last page was served
                if token is None or getattr(token, "token", None) is None:
                    break

        except ScraperError as e:
            self.progress.status = "error"
            self.progress.error = str(e)
            app_metrics.increment_scrape(success=False)
            raise
        finally:
            stats.time_elapsed_ms = int((time.perf_counter() - start_time) * 1000)
            stats.total_reviews = len(reviews)
            stats.retry_attempts = self.progress.retry_count

        if not reviews and stats.failed_batches:
            self.progress.status = "error"
            self.progress.error = f"No reviews could be fetched for {app_id}"
            app_metrics.increment_scrape(success=False)
            raise ScraperError(self.progress.error)

        self.progress.status = "completed"
        app_metrics.increment_scrape(reviews=len(reviews), success=True)
        logger.info(f"Scraped {len(reviews)} reviews for {app_id} in {stats.time_elapsed_ms}ms")

        return ScrapingResult(app_id=app_id, reviews=reviews[:self.config.max_reviews], stats=stats)

    async def fetch_app_info(self, app_id: str) -> Dict[str, Any]:
        """
        Store listing details used for the dashboard header.

        Raises:
            AppNotFoundError: Unknown app id
            ScraperError: Store request failed
        """
        try:
            details = await self._call(gp_app, app_id, lang=self.config.lang, country=self.config.country)
        except NotFoundError as e:
            raise AppNotFoundError(f"App {app_id} not found") from e
        except ScraperError:
            raise
        except Exception as e:
            raise ScraperError(f"Could not load details of {app_id}: {e}") from e

        return {
            "app_id": app_id,
            "name": details.get("title") or app_id,
            "rating": round(details.get("score") or 0.0, 1),
            "reviews": details.get("reviews") or 0,
            "version": details.get("version") or "Latest",
            "developer": details.get("developer"),
            "icon": details.get("icon"),
        }

    @staticmethod
    def to_review_record(raw: Dict[str, Any]) -> ReviewRecord:
        """Map a client review dict onto a ``ReviewRecord``."""
        posted = raw.get("at")
        if isinstance(posted, datetime):
            posted = posted.isoformat()

        return ReviewRecord(
            id=raw.get("reviewId"),
            text=raw.get("content"),
            score=raw.get("score"),
            date=posted,
            author=raw.get("userName"),
            version=raw.get("reviewCreatedVersion") or raw.get("appVersion"),
            likes_count=raw.get("thumbsUpCount")
        )
