"""Database models and API schemas."""

from reviewlens.models.cache_models import CachedAnalysis, CachedProgress, CacheMetadata
from reviewlens.models.schemas import (
    AnalysisConfig,
    AnalysisProgress,
    CacheStatus,
    CombinedAnalysisResult,
    ProgressRecord,
    ReviewRecord,
)

__all__ = [
    "CachedAnalysis",
    "CachedProgress",
    "CacheMetadata",
    "AnalysisConfig",
    "AnalysisProgress",
    "CacheStatus",
    "CombinedAnalysisResult",
    "ProgressRecord",
    "ReviewRecord",
]
