"""Topic extraction from review text: term counts, bigram phrases and TF-IDF weights."""

import re
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from typing import Dict, List

import numpy as np
from nltk.tokenize import RegexpTokenizer
from nltk.util import bigrams
from sklearn.feature_extraction.text import ENGLISH_STOP_WORDS, TfidfVectorizer

from reviewlens.analytics.base import BatchAnalyzer
from reviewlens.models.schemas import ReviewRecord, TopicResult, TopicTerm

# Words that say nothing about what a review is about
REVIEW_STOPWORDS = frozenset({
    'app', 'apps', 'good', 'bad', 'very', 'too', 'its', "it's", 'just', 'really',
    'use', 'using', 'get', 'got', 'one', 'would', 'even', 'also', 'still', 'much'
})

KEY_PHRASE_COUNT = 10
FREQUENT_TOPIC_COUNT = 10

_ALPHABETIC = re.compile(r'^[a-z]+$')


def _rating_tally() -> List[float]:
    return [0, 0.0]


@dataclass
class TopicRun:
    """Accumulators for one topic extraction."""

    max_topics: int
    documents: List[List[str]] = field(default_factory=list)
    term_counts: Counter = field(default_factory=Counter)
    phrase_counts: Counter = field(default_factory=Counter)
    # term -> [reviews mentioning it, sum of their ratings]
    term_ratings: Dict[str, List[float]] = field(default_factory=lambda: defaultdict(_rating_tally))
    phrase_ratings: Dict[str, List[float]] = field(default_factory=lambda: defaultdict(_rating_tally))


class TopicAnalyzer(BatchAnalyzer[TopicResult]):
    """Extract the subjects reviewers talk about and how they rate them."""

    kind = "topics"

    def __init__(self, batch_size: int = 50, max_topics: int = 20):
        """Initialize topic analyzer.

        Args:
            batch_size: Reviews per batch
            max_topics: Maximum number of terms and phrases reported
        """
        super().__init__(batch_size)
        self.max_topics = max_topics
        self.tokenizer = RegexpTokenizer(r"[\w']+")
        self.stopwords = ENGLISH_STOP_WORDS | REVIEW_STOPWORDS

    def process_text(self, text: str) -> List[str]:
        """Lowercase alphabetic tokens longer than two characters, stopwords removed."""
        tokens = self.tokenizer.tokenize(text.lower())
        return [
            token for token in tokens
            if len(token) > 2 and token not in self.stopwords and _ALPHABETIC.match(token)
        ]

    def _begin(self, total: int) -> TopicRun:
        return TopicRun(max_topics=self.max_topics)

    def _process_batch(self, run: TopicRun, batch: List[ReviewRecord]):
        for review in batch:
            tokens = self.process_text(review.text)
            phrases = [" ".join(pair) for pair in bigrams(tokens)]

            run.documents.append(tokens)
            run.term_counts.update(tokens)
            run.phrase_counts.update(phrases)

            for term in set(tokens):
                run.term_ratings[term][0] += 1
                run.term_ratings[term][1] += review.score
            for phrase in set(phrases):
                run.phrase_ratings[phrase][0] += 1
                run.phrase_ratings[phrase][1] += review.score

    @staticmethod
    def _tfidf_weights(run: TopicRun) -> Dict[str, float]:
        """Mean TF-IDF weight of every term across all reviews."""
        if not run.term_counts:
            return {}

        vectorizer = TfidfVectorizer(analyzer=lambda tokens: tokens)
        matrix = vectorizer.fit_transform(run.documents)
        weights = np.asarray(matrix.mean(axis=0)).ravel()
        return dict(zip(vectorizer.get_feature_names_out(), weights.tolist()))

    def _finalize(self, run: TopicRun) -> TopicResult:
        if not run.documents:
            return TopicResult()

        weights = self._tfidf_weights(run)

        terms = [
            TopicTerm(
                topic=term,
                count=count,
                avg_rating=run.term_ratings[term][1] / run.term_ratings[term][0],
                tfidf=weights.get(term, 0.0)
            )
            for term, count in run.term_counts.most_common(run.max_topics)
        ]

        phrases = [
            TopicTerm(
                topic=phrase,
                count=count,
                avg_rating=run.phrase_ratings[phrase][1] / run.phrase_ratings[phrase][0]
            )
            for phrase, count in run.phrase_counts.most_common(run.max_topics)
        ]

        # Topics shared by several reviews; a single chatty review does not make a topic
        frequent = [term for term in terms if run.term_ratings[term.topic][0] > 1][:FREQUENT_TOPIC_COUNT]
        if not frequent:
            frequent = terms[:FREQUENT_TOPIC_COUNT]

        key_phrases = [
            term for term, _ in sorted(weights.items(), key=lambda item: (-item[1], item[0]))
        ][:KEY_PHRASE_COUNT]

        diversity = (len(run.term_counts) + len(run.phrase_counts)) / (len(run.documents) * 2)

        return TopicResult(
            terms=terms,
            phrases=phrases,
            frequent=frequent,
            key_phrases=key_phrases,
            confidence=min(diversity, 1.0)
        )
