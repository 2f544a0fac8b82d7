"""API routers."""
from reviewlens.routers import analysis, cache, health

__all__ = ["analysis", "cache", "health"]
