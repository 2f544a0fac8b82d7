"""Recurring term, time and rating patterns across reviews."""

import statistics
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from typing import Dict, List

from nltk.tokenize import RegexpTokenizer

from reviewlens.analytics.base import BatchAnalyzer
from reviewlens.models.schemas import (
    CorrelationPattern,
    PatternResult,
    RatingPattern,
    ReviewRecord,
    TermFrequency,
    TimePattern,
)
from reviewlens.utils.validators import parse_review_date

MAX_FREQUENT_TERMS = 20
KEYWORDS_PER_GROUP = 5


def _month_group() -> dict:
    return {"count": 0, "rating_sum": 0.0, "keywords": Counter()}


def _rating_group() -> dict:
    return {"count": 0, "keywords": Counter()}


@dataclass
class PatternRun:
    """Accumulators for one pattern analysis."""

    total: int
    frequency_threshold: float
    term_counts: Counter = field(default_factory=Counter)
    months: Dict[str, dict] = field(default_factory=lambda: defaultdict(_month_group))
    ratings: Dict[int, dict] = field(default_factory=lambda: defaultdict(_rating_group))
    lengths: List[float] = field(default_factory=list)
    scores: List[float] = field(default_factory=list)
    substantial_texts: int = 0


class PatternAnalyzer(BatchAnalyzer[PatternResult]):
    """Find frequent terms, monthly and per-rating keyword patterns, and length/rating correlation."""

    kind = "patterns"

    def __init__(self, batch_size: int = 50, frequency_threshold: float = 0.1):
        """Initialize pattern analyzer.

        Args:
            batch_size: Reviews per batch
            frequency_threshold: Share of reviews a term must exceed to count as frequent
        """
        super().__init__(batch_size)
        self.frequency_threshold = frequency_threshold
        self.tokenizer = RegexpTokenizer(r"\w+")

    def _tokenize(self, text: str) -> List[str]:
        return self.tokenizer.tokenize(text.lower())

    def _begin(self, total: int) -> PatternRun:
        return PatternRun(total=total, frequency_threshold=self.frequency_threshold)

    def _process_batch(self, run: PatternRun, batch: List[ReviewRecord]):
        for review in batch:
            tokens = self._tokenize(review.text)
            unique_tokens = set(tokens)
            run.term_counts.update(tokens)

            posted = parse_review_date(review.date)
            if posted is not None:
                month = run.months[f"{posted.year:04d}-{posted.month:02d}"]
                month["count"] += 1
                month["rating_sum"] += review.score
                month["keywords"].update(unique_tokens)

            rating = run.ratings[int(round(review.score))]
            rating["count"] += 1
            rating["keywords"].update(unique_tokens)

            run.lengths.append(float(len(review.text)))
            run.scores.append(float(review.score))
            if len(review.text) > 10:
                run.substantial_texts += 1

    def _finalize(self, run: PatternRun) -> PatternResult:
        if run.total == 0:
            return PatternResult()

        threshold = run.total * run.frequency_threshold
        frequent = [
            TermFrequency(term=term, count=count)
            for term, count in run.term_counts.most_common()
            if count > threshold
        ][:MAX_FREQUENT_TERMS]

        time_based = [
            TimePattern(
                period=period,
                frequency=group["count"],
                avg_rating=group["rating_sum"] / group["count"],
                keywords=[word for word, _ in group["keywords"].most_common(KEYWORDS_PER_GROUP)]
            )
            for period, group in run.months.items()
        ]
        time_based.sort(key=lambda pattern: (-pattern.frequency, pattern.period))

        rating = [
            RatingPattern(
                rating=stars,
                frequency=group["count"],
                common_phrases=[word for word, _ in group["keywords"].most_common(KEYWORDS_PER_GROUP)]
            )
            for stars, group in sorted(run.ratings.items())
        ]

        length_vs_rating = self.calculate_correlation(run.lengths, run.scores)
        correlations = [
            CorrelationPattern(
                factor="review_length",
                correlation=length_vs_rating,
                significance=abs(length_vs_rating)
            )
        ]

        text_quality = run.substantial_texts / run.total
        rating_spread = len(run.ratings) / 5
        confidence = text_quality * 0.6 + rating_spread * 0.4

        return PatternResult(
            frequency=frequent,
            time_based=time_based,
            rating=rating,
            correlations=correlations,
            confidence=min(confidence, 1.0)
        )

    @staticmethod
    def calculate_correlation(x: List[float], y: List[float]) -> float:
        """Pearson correlation, 0.0 when undefined (fewer than two points or constant input)."""
        try:
            return statistics.correlation(x, y)
        except statistics.StatisticsError:
            return 0.0
