"""FastAPI main application."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from reviewlens.config import settings
from reviewlens.cache import AnalysisCache, CacheFacade
from reviewlens.scraper.play_store_scraper import ScraperConfig
from reviewlens.services.analysis_sessions import AnalysisSessionRegistry
from reviewlens.services.error_tracking import error_tracker
from reviewlens.services.logging_service import configure_logging
from reviewlens.services.scheduler_service import start_scheduler, shutdown_scheduler

# Import routers
from reviewlens.routers import analysis, cache, health

# Create FastAPI application
app = FastAPI(
    title="ReviewLens API",
    description="Play Store review scraping, analysis and caching API",
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup_event():
    """Build the shared cache and session registry, then start background jobs."""
    configure_logging(settings.LOG_LEVEL)
    error_tracker.initialize(settings.SENTRY_DSN, settings.ENVIRONMENT, settings.APP_VERSION)

    # One cache per process; everything else receives it from app.state
    analysis_cache = AnalysisCache(
        settings.CACHE_DATABASE_URL,
        max_size_bytes=settings.CACHE_MAX_SIZE_BYTES,
        ttl_seconds=settings.CACHE_TTL_SECONDS,
        persist_progress=settings.CACHE_PERSIST_PROGRESS
    )
    await analysis_cache.open()

    cache_facade = CacheFacade(analysis_cache)
    await cache_facade.refresh_status()

    app.state.cache = analysis_cache
    app.state.cache_facade = cache_facade
    app.state.sessions = AnalysisSessionRegistry(
        cache_facade,
        scraper_config=ScraperConfig(
            batch_size=settings.SCRAPER_BATCH_SIZE,
            max_retries=settings.SCRAPER_MAX_RETRIES,
            max_reviews=settings.SCRAPER_MAX_REVIEWS,
            timeout_seconds=settings.SCRAPER_TIMEOUT_SECONDS,
            backoff_seconds=settings.SCRAPER_BACKOFF_SECONDS,
            lang=settings.SCRAPER_LANG,
            country=settings.SCRAPER_COUNTRY
        ),
        batch_size=settings.ANALYSIS_BATCH_SIZE,
        max_topics=settings.ANALYSIS_MAX_TOPICS
    )

    if analysis_cache.is_ready:
        start_scheduler(analysis_cache, settings.CACHE_PURGE_INTERVAL_MINUTES)

    print("🚀 ReviewLens API started!")
    print(f"📊 Environment: {settings.ENVIRONMENT}")
    print(f"🗄️  Analysis cache: {'ready' if analysis_cache.is_ready else 'unavailable (running uncached)'}")


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on application shutdown."""
    await app.state.sessions.shutdown()
    shutdown_scheduler()
    await app.state.cache.close()

    print("👋 ReviewLens API shutting down...")


@app.get("/")
async def root():
    """Root endpoint - API banner."""
    return {
        "message": "ReviewLens API",
        "version": settings.APP_VERSION,
        "status": "operational",
        "environment": settings.ENVIRONMENT,
        "documentation": "/docs"
    }


# Include routers
app.include_router(health.router, tags=["Health & Monitoring"])
app.include_router(analysis.router, prefix="/api/analysis", tags=["Analysis"])
app.include_router(cache.router, prefix="/api/cache", tags=["Cache"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "reviewlens.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG
    )
