"""Application configuration management."""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Analysis cache
    CACHE_DATABASE_URL: str = "sqlite+aiosqlite:///./data/analysis_cache.db"
    CACHE_MAX_SIZE_BYTES: int = 50 * 1024 * 1024  # 50MB
    CACHE_TTL_SECONDS: int = 7 * 24 * 60 * 60  # 7 days
    CACHE_PERSIST_PROGRESS: bool = True
    CACHE_PURGE_INTERVAL_MINUTES: int = 60  # 0 disables the background sweep

    # Analysis
    ANALYSIS_BATCH_SIZE: int = 50
    ANALYSIS_MAX_TOPICS: int = 20

    # Play Store scraper
    SCRAPER_BATCH_SIZE: int = 100
    SCRAPER_MAX_REVIEWS: int = 1000
    SCRAPER_MAX_RETRIES: int = 3
    SCRAPER_TIMEOUT_SECONDS: float = 10.0
    SCRAPER_BACKOFF_SECONDS: float = 1.0
    SCRAPER_LANG: str = "en"
    SCRAPER_COUNTRY: str = "us"

    # CORS
    ALLOWED_ORIGINS: str = "http://localhost:8501"

    # API
    API_BASE_URL: str = "http://localhost:8000"
    FRONTEND_URL: str = "http://localhost:8501"

    # Error tracking (optional)
    SENTRY_DSN: str = ""
    APP_VERSION: str = "1.0.0"

    # Application
    DEBUG: bool = False
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore"
    )

    @property
    def allowed_origins_list(self) -> List[str]:
        """Parse ALLOWED_ORIGINS comma-separated string into list."""
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",")]


# Global settings instance
settings = Settings()
