"""Analysis result cache package."""
from reviewlens.cache.analysis_cache import AnalysisCache
from reviewlens.cache.cache_facade import CacheFacade

__all__ = ["AnalysisCache", "CacheFacade"]
