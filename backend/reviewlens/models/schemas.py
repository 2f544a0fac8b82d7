"""Pydantic schemas for reviews, analysis results and cache status."""

import hashlib
import json
from pydantic import BaseModel, ConfigDict, Field
from typing import Dict, List, Literal, Optional


AnalysisStage = Literal["idle", "running", "completed", "error"]

ANALYZER_KINDS = ("patterns", "sentiment", "topics")


# ============================================
# Review Schemas
# ============================================

class ReviewRecord(BaseModel):
    """One user review as delivered by the scraper."""

    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None
    text: Optional[str] = None
    score: Optional[float] = None
    date: Optional[str] = None  # ISO-8601
    author: Optional[str] = None
    device: Optional[str] = None
    version: Optional[str] = None
    likes_count: Optional[int] = None

    def is_valid(self) -> bool:
        """Reviews need non-empty text and a 1-5 star score to be analyzed."""
        if not self.text or not self.text.strip():
            return False
        if self.score is None:
            return False
        return 1 <= self.score <= 5


# ============================================
# Analysis Configuration
# ============================================

class AnalysisConfig(BaseModel):
    """
    Parameters of an analysis run.

    ``subject_id`` names the thing being analyzed and partitions the cache;
    every other field feeds the fingerprint. Bump ``version`` whenever the
    analyzers change in a way that invalidates previously cached results.
    """

    version: int = 1
    batch_size: int = Field(default=50, ge=1)
    max_topics: int = Field(default=20, ge=1)
    frequency_threshold: float = Field(default=0.1, ge=0.0, le=1.0)
    subject_id: Optional[str] = None

    def fingerprint(self) -> str:
        """Deterministic short hash of the analysis parameters."""
        payload = json.dumps(
            self.model_dump(exclude={"subject_id"}),
            sort_keys=True,
            separators=(",", ":")
        )
        return hashlib.md5(payload.encode("utf-8")).hexdigest()[:16]


# ============================================
# Progress Schemas
# ============================================

class AnalysisProgress(BaseModel):
    """Progress of a single analyzer."""
    stage: AnalysisStage = "idle"
    progress: int = Field(default=0, ge=0, le=100)
    details: Optional[str] = None
    error: Optional[str] = None


class ProgressRecord(BaseModel):
    """Persisted progress snapshot of an in-flight run."""
    analysis_id: str
    subject_id: str
    updated_at: float
    progress: Dict[str, AnalysisProgress]
    config: AnalysisConfig


# ============================================
# Pattern Results
# ============================================

class TermFrequency(BaseModel):
    term: str
    count: int


class TimePattern(BaseModel):
    period: str  # YYYY-MM
    frequency: int
    avg_rating: float
    keywords: List[str] = []


class RatingPattern(BaseModel):
    rating: int
    frequency: int
    common_phrases: List[str] = []


class CorrelationPattern(BaseModel):
    factor: str
    correlation: float
    significance: float


class PatternResult(BaseModel):
    """Output of the pattern analyzer."""
    frequency: List[TermFrequency] = []
    time_based: List[TimePattern] = []
    rating: List[RatingPattern] = []
    correlations: List[CorrelationPattern] = []
    confidence: float = 0.0


# ============================================
# Sentiment Results
# ============================================

class ReviewSentiment(BaseModel):
    review_id: Optional[str] = None
    negative: float
    neutral: float
    positive: float
    compound: float
    confidence: float
    label: str
    token_count: int = 0


class SentimentDistribution(BaseModel):
    """Share of reviews per label, in percent."""
    positive: float = 0.0
    neutral: float = 0.0
    negative: float = 0.0


class SentimentResult(BaseModel):
    """Output of the sentiment analyzer."""
    average_compound: float = 0.0
    average_confidence: float = 0.0
    distribution: SentimentDistribution = Field(default_factory=SentimentDistribution)
    reviews: List[ReviewSentiment] = []


# ============================================
# Topic Results
# ============================================

class TopicTerm(BaseModel):
    topic: str
    count: int
    avg_rating: float
    tfidf: float = 0.0


class TopicResult(BaseModel):
    """Output of the topic analyzer."""
    terms: List[TopicTerm] = []
    phrases: List[TopicTerm] = []
    frequent: List[TopicTerm] = []
    key_phrases: List[str] = []
    confidence: float = 0.0


# ============================================
# Combined Result
# ============================================

class AnalysisStats(BaseModel):
    total_reviews: int
    processing_time_ms: int
    errors: Optional[List[str]] = None


class CombinedAnalysisResult(BaseModel):
    """Result of one orchestrated run; this is what the cache stores."""
    patterns: PatternResult
    sentiment: SentimentResult
    topics: TopicResult
    stats: AnalysisStats


# ============================================
# Cache Schemas
# ============================================

class CacheStatus(BaseModel):
    """Snapshot of cache usage."""
    is_ready: bool = False
    item_count: int = 0
    total_size: int = 0
    max_size: int = 0
    usage_percentage: float = 0.0


# ============================================
# API Schemas
# ============================================

class AnalyzeRequest(BaseModel):
    """Body of a run request. Without reviews the backend scrapes them."""
    reviews: Optional[List[ReviewRecord]] = None
    config: Optional[AnalysisConfig] = None
    max_reviews: Optional[int] = Field(default=None, ge=1)


class RunResponse(BaseModel):
    app_id: str
    status: str
    review_count: int = 0
    analysis_id: Optional[str] = None
    error: Optional[str] = None


class ProgressResponse(BaseModel):
    app_id: str
    status: str  # idle, running, completed, error, cancelled
    overall_progress: float
    progress: Dict[str, AnalysisProgress]
    analysis_id: Optional[str] = None
    error: Optional[str] = None


class MessageResponse(BaseModel):
    """Generic message response."""
    message: str
    detail: Optional[str] = None
