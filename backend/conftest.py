"""
Pytest configuration and shared fixtures for ReviewLens tests.
"""

import pytest
import pytest_asyncio
from typing import Any, Dict, List, Optional
from fastapi.testclient import TestClient

from reviewlens.cache import AnalysisCache, CacheFacade
from reviewlens.config import settings
from reviewlens.models.schemas import (
    AnalysisStats,
    CombinedAnalysisResult,
    PatternResult,
    ReviewRecord,
    SentimentResult,
    TopicResult,
)
from reviewlens.services.logging_service import app_metrics


class FakeClock:
    """Manually advanced epoch-second clock."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


# Cache fixtures
@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache_url(tmp_path) -> str:
    """SQLite file in the test's temporary directory."""
    return f"sqlite+aiosqlite:///{tmp_path / 'analysis_cache.db'}"


@pytest_asyncio.fixture
async def analysis_cache(cache_url: str, clock: FakeClock):
    """
    Open cache with a 1MB budget and a one hour TTL.
    """
    cache = AnalysisCache(cache_url, max_size_bytes=1024 * 1024, ttl_seconds=3600, clock=clock)
    await cache.open()
    yield cache
    await cache.close()


@pytest_asyncio.fixture
async def cache_facade(analysis_cache: AnalysisCache) -> CacheFacade:
    facade = CacheFacade(analysis_cache)
    await facade.refresh_status()
    return facade


# Review fixtures
@pytest.fixture
def sample_reviews() -> List[ReviewRecord]:
    """
    Reviews spread over three months and all star ratings.
    """
    return [
        ReviewRecord(id="r1", text="Love the new dark mode, battery life is great", score=5,
                     date="2024-01-05T10:00:00", author="Alice", version="2.1.0", likes_count=12),
        ReviewRecord(id="r2", text="Crashes every time I open the camera. Terrible update", score=1,
                     date="2024-01-20T08:30:00", author="Bob", version="2.1.0", likes_count=30),
        ReviewRecord(id="r3", text="Battery drain is awful since the update", score=2,
                     date="2024-02-02T12:00:00", author="Carol", version="2.1.1", likes_count=7),
        ReviewRecord(id="r4", text="Decent camera features but login is slow", score=3,
                     date="2024-02-14T18:45:00", author="Dan", likes_count=0),
        ReviewRecord(id="r5", text="Dark mode looks fantastic, smooth and fast", score=4,
                     date="2024-03-01T09:15:00", author="Eve", version="2.2.0", likes_count=3),
        ReviewRecord(id="r6", text="Login keeps failing, support never answers", score=1,
                     date="2024-03-10T22:00:00", version="2.2.0", likes_count=5),
    ]


@pytest.fixture
def scenario_reviews() -> List[Dict[str, Any]]:
    """
    Two analyzable reviews and one without text.
    """
    return [
        {"text": "great app", "score": 5},
        {"text": "bad", "score": 1},
        {"text": "", "score": 3},
    ]


# Result helpers
def make_result(total_reviews: int = 3, errors: Optional[List[str]] = None) -> CombinedAnalysisResult:
    """
    Minimal combined result; ``errors`` pads the serialized size.
    """
    return CombinedAnalysisResult(
        patterns=PatternResult(confidence=0.5),
        sentiment=SentimentResult(average_compound=0.25),
        topics=TopicResult(key_phrases=["battery", "camera"]),
        stats=AnalysisStats(total_reviews=total_reviews, processing_time_ms=42, errors=errors)
    )


def result_size(result: CombinedAnalysisResult) -> int:
    """Bytes the cache charges for a result."""
    return len(result.model_dump_json().encode("utf-8"))


# API fixtures
@pytest.fixture
def client(tmp_path, monkeypatch) -> TestClient:
    """
    Test client with the cache in a temporary SQLite file and the purge job disabled.
    """
    monkeypatch.setattr(settings, "CACHE_DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'api_cache.db'}")
    monkeypatch.setattr(settings, "CACHE_PURGE_INTERVAL_MINUTES", 0)
    monkeypatch.setattr(settings, "SENTRY_DSN", "")

    from reviewlens.main import app

    with TestClient(app) as test_client:
        yield test_client


# Environment setup
@pytest.fixture(autouse=True)
def reset_metrics():
    """
    Start every test with zeroed in-memory metrics.
    """
    app_metrics.reset()
    yield
    app_metrics.reset()
