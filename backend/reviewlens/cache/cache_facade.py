"""Stateful view of the analysis cache shared by the service layer and the API."""

import logging
from typing import Dict, Optional

from reviewlens.cache.analysis_cache import AnalysisCache
from reviewlens.models.schemas import (
    AnalysisConfig,
    AnalysisProgress,
    CacheStatus,
    CombinedAnalysisResult,
    ProgressRecord,
)

logger = logging.getLogger(__name__)


class CacheFacade:
    """
    Thin adapter over one ``AnalysisCache``.

    ``status`` is re-read from the store after every call so pollers
    always see a current snapshot. Create one per process and pass it
    around; it never opens a second store.
    """

    def __init__(self, cache: AnalysisCache):
        self.cache = cache
        self.status = CacheStatus(max_size=cache.max_size_bytes)

    @property
    def is_ready(self) -> bool:
        return self.cache.is_ready

    async def refresh_status(self) -> CacheStatus:
        self.status = await self.cache.get_status()
        return self.status

    async def get_analysis(self, subject_id: str, config_hash: str) -> Optional[CombinedAnalysisResult]:
        try:
            return await self.cache.get(subject_id, config_hash)
        finally:
            await self.refresh_status()

    async def cache_analysis(
        self,
        subject_id: str,
        result: CombinedAnalysisResult,
        config_hash: str
    ) -> Optional[str]:
        try:
            return await self.cache.set(subject_id, result, config_hash)
        finally:
            await self.refresh_status()

    async def save_progress(
        self,
        analysis_id: str,
        subject_id: str,
        progress: Dict[str, AnalysisProgress],
        config: AnalysisConfig
    ):
        try:
            await self.cache.save_progress(analysis_id, subject_id, progress, config)
        finally:
            await self.refresh_status()

    async def get_progress(self, analysis_id: str) -> Optional[ProgressRecord]:
        try:
            return await self.cache.get_progress(analysis_id)
        finally:
            await self.refresh_status()

    async def find_progress(self, subject_id: str) -> Optional[ProgressRecord]:
        try:
            return await self.cache.find_progress(subject_id)
        finally:
            await self.refresh_status()

    async def clear_progress(self, analysis_id: str):
        try:
            await self.cache.clear_progress(analysis_id)
        finally:
            await self.refresh_status()

    async def clear_cache(self):
        """
        Drop every cached result and progress snapshot.

        Does nothing but log when the store was never opened; ``status``
        then reports ``is_ready`` False.
        """
        if not self.cache.is_ready:
            await self.refresh_status()
            logger.warning("Cache clear skipped: analysis cache is not available")
            return

        try:
            await self.cache.clear_all()
        finally:
            await self.refresh_status()
            logger.info(f"Cache status after clear: {self.status.item_count} items")
