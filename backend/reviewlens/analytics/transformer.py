"""Reshape a combined analysis result and its reviews into dashboard tab data."""

import calendar
import math
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

from reviewlens.analytics.sentiment_analyzer import SentimentAnalyzer
from reviewlens.models.dashboard_schemas import (
    AppInfo,
    OverviewTabData,
    ReviewFilters,
    ReviewSentimentView,
    ReviewsStats,
    ReviewsTabData,
    SentimentSummary,
    TimeBucket,
    TopicSummary,
    TopicsTabData,
    TransformedReview,
)
from reviewlens.models.schemas import CombinedAnalysisResult, ReviewRecord, ReviewSentiment
from reviewlens.utils.validators import parse_review_date

MAX_TOPICS_PER_REVIEW = 5
MAX_COMMON_TOPICS = 10
SENTIMENT_BAND = 0.3
_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def rating_to_sentiment(avg_rating: float) -> float:
    """Map a 1-5 average rating onto -1..1."""
    return (avg_rating - 3) / 2


def _months_before(moment: datetime, months: int) -> datetime:
    month = moment.month - months
    year = moment.year
    while month < 1:
        month += 12
        year -= 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def range_start(date_range: str, now: datetime) -> Optional[datetime]:
    """Earliest review date included by a named date range, None for ``all``."""
    if date_range == "last_week":
        return now - timedelta(days=7)
    if date_range == "last_month":
        return _months_before(now, 1)
    if date_range == "last_3_months":
        return _months_before(now, 3)
    if date_range == "last_6_months":
        return _months_before(now, 6)
    if date_range == "last_year":
        return _months_before(now, 12)
    return None


class AnalysisTransformer:
    """
    Pure mapping from ``(result, reviews, app_info)`` to the three tab payloads.

    Missing review fields fall back to neutral defaults; nothing here raises
    on incomplete data.
    """

    def __init__(
        self,
        result: CombinedAnalysisResult,
        reviews: Iterable[Any],
        app_info: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None
    ):
        self.result = result
        self.reviews = [
            review if isinstance(review, ReviewRecord) else ReviewRecord.model_validate(review)
            for review in reviews
        ]
        self.now = now or datetime.now(timezone.utc)

        app = {"rating": self._average_rating(), "reviews": len(self.reviews)}
        app.update({key: value for key, value in (app_info or {}).items() if value is not None})
        self.app = AppInfo(**app)

        self._sentiment_by_id: Dict[str, ReviewSentiment] = {
            entry.review_id: entry for entry in result.sentiment.reviews if entry.review_id
        }
        self._transformed: Optional[List[TransformedReview]] = None

    def _average_rating(self) -> float:
        scores = [review.score for review in self.reviews if review.score is not None]
        if not scores:
            return 0.0
        return round(sum(scores) / len(scores), 1)

    # ============================================
    # Tabs
    # ============================================

    def get_overview_tab_data(self) -> OverviewTabData:
        return OverviewTabData(app=self.app, reviews_stats=self.get_reviews_stats())

    def get_reviews_tab_data(
        self,
        filters: Optional[ReviewFilters] = None,
        sort_by: str = "date",
        sort_order: str = "desc",
        page: int = 1,
        page_size: int = 20
    ) -> ReviewsTabData:
        """Filtered, sorted and paginated review list."""
        reviews = self.filter_reviews(filters or ReviewFilters())
        reviews = self.sort_reviews(reviews, sort_by, sort_order)
        return self.paginate(reviews, page, page_size)

    def get_topics_tab_data(self) -> TopicsTabData:
        """Topic stats plus all reviews, those mentioning the most common topics first."""
        stats = self.get_reviews_stats()
        top_topics = {topic.name for topic in stats.common_topics}
        reviews = self.transform_reviews()

        def mentions(review: TransformedReview) -> int:
            return sum(1 for topic in review.topics if topic in top_topics)

        with_topics = sorted((r for r in reviews if mentions(r) > 0), key=mentions, reverse=True)
        without_topics = [r for r in reviews if mentions(r) == 0]

        return TopicsTabData(reviews_stats=stats, reviews=with_topics + without_topics)

    # ============================================
    # Stats
    # ============================================

    def get_reviews_stats(self) -> ReviewsStats:
        distribution = [0, 0, 0, 0, 0]
        for review in self.reviews:
            if review.score is None:
                continue
            stars = math.floor(review.score)
            if 1 <= stars <= 5:
                distribution[stars - 1] += 1

        sentiment = self.result.sentiment
        summary = SentimentSummary(
            positive=round(sentiment.distribution.positive, 1),
            neutral=round(sentiment.distribution.neutral, 1),
            negative=round(sentiment.distribution.negative, 1),
            average_confidence=round(sentiment.average_confidence, 2)
        )

        return ReviewsStats(
            total=len(self.reviews),
            distribution=distribution,
            sentiment=summary,
            over_time=self.time_series(),
            common_topics=self.common_topics()
        )

    def time_series(self) -> List[TimeBucket]:
        """Monthly review count and average rating, oldest month first."""
        months = defaultdict(lambda: [0, 0.0])
        for review in self.reviews:
            posted = parse_review_date(review.date)
            if posted is None or review.score is None:
                continue
            bucket = months[(posted.year, posted.month)]
            bucket[0] += 1
            bucket[1] += review.score

        return [
            TimeBucket(
                date=f"{calendar.month_abbr[month]} {year}",
                avg=round(total / count, 1),
                count=count
            )
            for (year, month), (count, total) in sorted(months.items())
        ]

    def common_topics(self) -> List[TopicSummary]:
        topics = self.result.topics.frequent or self.result.topics.terms
        return [
            TopicSummary(
                name=topic.topic,
                count=topic.count,
                sentiment=round(rating_to_sentiment(topic.avg_rating), 2)
            )
            for topic in topics[:MAX_COMMON_TOPICS]
        ]

    # ============================================
    # Reviews
    # ============================================

    def transform_reviews(self) -> List[TransformedReview]:
        if self._transformed is None:
            self._transformed = [self._transform(index, review) for index, review in enumerate(self.reviews)]
        return list(self._transformed)

    def _transform(self, index: int, review: ReviewRecord) -> TransformedReview:
        text = review.text or ""
        lowered = text.lower()
        rating = review.score or 0.0

        topics = [
            term.topic for term in self.result.topics.terms
            if term.topic and term.topic.lower() in lowered
        ][:MAX_TOPICS_PER_REVIEW]

        score = (rating - 3) * 2 if rating else 0.0
        record = self._sentiment_by_id.get(review.id or (SentimentAnalyzer.hash_text(text) if text else ""))
        if record is not None:
            sentiment = ReviewSentimentView(
                score=score,
                comparative=record.compound,
                confidence=record.confidence,
                label=record.label
            )
        else:
            comparative = score / 5
            sentiment = ReviewSentimentView(
                score=score,
                comparative=comparative,
                label=SentimentAnalyzer.get_sentiment_label(comparative)
            )

        return TransformedReview(
            id=review.id or f"review-{index}",
            author=review.author or "Anonymous User",
            date=review.date,
            rating=rating,
            text=text,
            version=review.version or "Unknown",
            device=review.device or "Android Device",
            likes=review.likes_count or 0,
            sentiment=sentiment,
            topics=topics
        )

    def filter_reviews(self, filters: ReviewFilters) -> List[TransformedReview]:
        reviews = self.transform_reviews()

        if filters.search:
            term = filters.search.lower()
            reviews = [r for r in reviews if term in r.text.lower() or term in r.author.lower()]

        if filters.rating:
            reviews = [r for r in reviews if math.floor(r.rating) == filters.rating]

        if filters.sentiment == "positive":
            reviews = [r for r in reviews if r.sentiment.comparative > SENTIMENT_BAND]
        elif filters.sentiment == "negative":
            reviews = [r for r in reviews if r.sentiment.comparative < -SENTIMENT_BAND]
        elif filters.sentiment == "neutral":
            reviews = [r for r in reviews if -SENTIMENT_BAND <= r.sentiment.comparative <= SENTIMENT_BAND]

        start = range_start(filters.date_range, self.now)
        if start is not None:
            reviews = [
                r for r in reviews
                if (parse_review_date(r.date) or _EPOCH) >= start
            ]

        return reviews

    @staticmethod
    def sort_reviews(
        reviews: List[TransformedReview],
        sort_by: str = "date",
        sort_order: str = "desc"
    ) -> List[TransformedReview]:
        if sort_by == "rating":
            key = lambda r: r.rating  # noqa: E731
        elif sort_by == "likes":
            key = lambda r: r.likes  # noqa: E731
        else:
            key = lambda r: parse_review_date(r.date) or _EPOCH  # noqa: E731

        return sorted(reviews, key=key, reverse=(sort_order == "desc"))

    @staticmethod
    def paginate(reviews: List[TransformedReview], page: int = 1, page_size: int = 20) -> ReviewsTabData:
        page_size = max(page_size, 1)
        total_pages = max(math.ceil(len(reviews) / page_size), 1)
        page = min(max(page, 1), total_pages)
        start = (page - 1) * page_size

        return ReviewsTabData(
            reviews=reviews[start:start + page_size],
            total=len(reviews),
            page=page,
            page_size=page_size,
            total_pages=total_pages
        )
