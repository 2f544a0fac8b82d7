"""Exception hierarchy shared by the analysis pipeline, cache and scraper."""


class ReviewLensError(Exception):
    """Base class for application errors."""


class AnalysisError(ReviewLensError):
    """Analysis could not produce a result."""


class NoValidReviewsError(AnalysisError):
    """Nothing left to analyze after dropping reviews without text or score."""

    def __init__(self, message: str = "No valid reviews to analyze"):
        super().__init__(message)


class AnalysisFailedError(AnalysisError):
    """One of the analyzers raised; wraps the original error."""

    def __init__(self, cause: BaseException, analyzer: str = None):
        self.cause = cause
        self.analyzer = analyzer
        super().__init__(f"Analysis failed: {cause}")


class CacheError(ReviewLensError):
    """Base class for cache failures. Never fatal to an analysis run."""


class CacheSerializationError(CacheError):
    """Result could not be serialized or does not fit in the cache."""


class CacheWriteError(CacheError):
    """Backing store rejected a write."""


class ScraperError(ReviewLensError):
    """Reviews could not be fetched from the store."""


class ScraperTimeoutError(ScraperError):
    """Store did not answer within the configured timeout."""


class AppNotFoundError(ScraperError):
    """Store has no app with the requested id."""
