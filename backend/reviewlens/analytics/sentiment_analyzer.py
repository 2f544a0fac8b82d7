"""Sentiment analyzer for app reviews using the VADER lexicon."""

import hashlib
from typing import Dict, List

from nltk.tokenize import RegexpTokenizer
from vaderSentiment.vaderSentiment import SentimentIntensityAnalyzer

from reviewlens.analytics.base import BatchAnalyzer
from reviewlens.models.schemas import (
    ReviewRecord,
    ReviewSentiment,
    SentimentDistribution,
    SentimentResult,
)

# Texts this long or longer get full length confidence
CONFIDENT_TEXT_LENGTH = 500
LENGTH_WEIGHT = 0.3
RATING_AGREEMENT_WEIGHT = 0.7


class SentimentAnalyzer(BatchAnalyzer[SentimentResult]):
    """Lexicon-based sentiment scoring with rating-agreement confidence."""

    kind = "sentiment"

    def __init__(self, batch_size: int = 50):
        """Initialize sentiment analyzer.

        Args:
            batch_size: Reviews per batch
        """
        super().__init__(batch_size)
        self.scorer = SentimentIntensityAnalyzer()
        self.tokenizer = RegexpTokenizer(r"\w+")

    def analyze_text(self, text: str) -> Dict[str, float]:
        """Analyze sentiment of a single text.

        Args:
            text: Text to analyze

        Returns:
            Dict with sentiment scores: {negative, neutral, positive, compound}
        """
        if not text or not text.strip():
            return {
                'negative': 0.0,
                'neutral': 1.0,
                'positive': 0.0,
                'compound': 0.0
            }

        scores = self.scorer.polarity_scores(text)
        return {
            'negative': scores['neg'],
            'neutral': scores['neu'],
            'positive': scores['pos'],
            'compound': scores['compound']
        }

    @staticmethod
    def calculate_confidence(text: str, rating: float, compound: float) -> float:
        """Blend text length with how well the sentiment agrees with the star rating.

        Args:
            text: Review text
            rating: Star rating (1-5)
            compound: Compound sentiment score (-1 to 1)

        Returns:
            Confidence between 0 and 1
        """
        length_confidence = min(len(text) / CONFIDENT_TEXT_LENGTH, 1.0)

        normalized_rating = (rating - 1) / 4
        normalized_sentiment = (compound + 1) / 2
        rating_agreement = 1 - abs(normalized_rating - normalized_sentiment)

        return length_confidence * LENGTH_WEIGHT + rating_agreement * RATING_AGREEMENT_WEIGHT

    def _begin(self, total: int) -> List[ReviewSentiment]:
        return []

    def _process_batch(self, scored: List[ReviewSentiment], batch: List[ReviewRecord]):
        for review in batch:
            scores = self.analyze_text(review.text)
            scored.append(ReviewSentiment(
                review_id=review.id or self.hash_text(review.text),
                negative=scores['negative'],
                neutral=scores['neutral'],
                positive=scores['positive'],
                compound=scores['compound'],
                confidence=self.calculate_confidence(review.text, review.score, scores['compound']),
                label=self.get_sentiment_label(scores['compound']),
                token_count=len(self.tokenizer.tokenize(review.text))
            ))

    def _finalize(self, scored: List[ReviewSentiment]) -> SentimentResult:
        total = len(scored)
        if total == 0:
            return SentimentResult()

        labels = [review.label for review in scored]
        distribution = SentimentDistribution(
            positive=labels.count('Positive') / total * 100,
            neutral=labels.count('Neutral') / total * 100,
            negative=labels.count('Negative') / total * 100
        )

        return SentimentResult(
            average_compound=sum(review.compound for review in scored) / total,
            average_confidence=sum(review.confidence for review in scored) / total,
            distribution=distribution,
            reviews=scored
        )

    @staticmethod
    def hash_text(text: str) -> str:
        """Create MD5 hash of text for deduplication.

        Args:
            text: Text to hash

        Returns:
            MD5 hash string
        """
        return hashlib.md5(text.encode('utf-8')).hexdigest()

    @staticmethod
    def get_sentiment_label(compound_score: float) -> str:
        """Get sentiment label from compound score.

        Args:
            compound_score: Compound sentiment score (-1 to 1)

        Returns:
            Label: 'Positive', 'Negative', or 'Neutral'
        """
        if compound_score >= 0.05:
            return 'Positive'
        elif compound_score <= -0.05:
            return 'Negative'
        else:
            return 'Neutral'
