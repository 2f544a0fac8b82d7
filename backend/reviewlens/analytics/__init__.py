"""Review analysis engine modules."""

from reviewlens.analytics.pattern_analyzer import PatternAnalyzer
from reviewlens.analytics.sentiment_analyzer import SentimentAnalyzer
from reviewlens.analytics.topic_analyzer import TopicAnalyzer
from reviewlens.analytics.analysis_service import AnalysisService
from reviewlens.analytics.transformer import AnalysisTransformer

__all__ = ["PatternAnalyzer", "SentimentAnalyzer", "TopicAnalyzer", "AnalysisService", "AnalysisTransformer"]
