"""Pydantic schemas for the dashboard tabs (overview, reviews, topics)."""

from pydantic import BaseModel, Field
from typing import List, Literal, Optional


SentimentFilter = Literal["all", "positive", "neutral", "negative"]
DateRangeFilter = Literal["all", "last_week", "last_month", "last_3_months", "last_6_months", "last_year"]
SortField = Literal["date", "rating", "likes"]
SortOrder = Literal["asc", "desc"]


class AppInfo(BaseModel):
    """Header data of the analyzed app."""
    app_id: Optional[str] = None
    name: str = "Unknown app"
    rating: float = 0.0
    reviews: int = 0
    version: str = "Latest"
    developer: Optional[str] = None
    icon: Optional[str] = None


class SentimentSummary(BaseModel):
    positive: float = 0.0
    neutral: float = 0.0
    negative: float = 0.0
    average_confidence: float = 0.0


class TimeBucket(BaseModel):
    date: str  # "Jan 2024"
    avg: float
    count: int


class TopicSummary(BaseModel):
    name: str
    count: int
    sentiment: float  # -1 to 1, from the topic's average rating


class ReviewsStats(BaseModel):
    total: int = 0
    distribution: List[int] = Field(default_factory=lambda: [0, 0, 0, 0, 0])  # 1-5 stars
    sentiment: SentimentSummary = Field(default_factory=SentimentSummary)
    over_time: List[TimeBucket] = []
    common_topics: List[TopicSummary] = []


class ReviewSentimentView(BaseModel):
    score: float  # rating mapped to -4..4
    comparative: float  # -1 to 1
    confidence: float = 0.0
    label: str = "Neutral"


class TransformedReview(BaseModel):
    id: str
    author: str
    date: Optional[str] = None
    rating: float
    text: str
    version: str
    device: str
    likes: int = 0
    sentiment: ReviewSentimentView
    topics: List[str] = []


class ReviewFilters(BaseModel):
    """Review list filter criteria."""
    search: Optional[str] = None
    rating: Optional[int] = Field(default=None, ge=0, le=5)  # 0 or None means any
    sentiment: SentimentFilter = "all"
    date_range: DateRangeFilter = "all"


# ============================================
# Tab payloads
# ============================================

class OverviewTabData(BaseModel):
    app: AppInfo
    reviews_stats: ReviewsStats


class ReviewsTabData(BaseModel):
    reviews: List[TransformedReview]
    total: int
    page: int = 1
    page_size: int = 20
    total_pages: int = 1


class TopicsTabData(BaseModel):
    reviews_stats: ReviewsStats
    reviews: List[TransformedReview]
