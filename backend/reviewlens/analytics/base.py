"""Common batching and progress handling for the review analyzers."""

import asyncio
import logging
from typing import Any, Generic, List, Optional, Sequence, TypeVar

from reviewlens.models.schemas import AnalysisProgress, ReviewRecord

logger = logging.getLogger(__name__)

ResultT = TypeVar("ResultT")


class BatchAnalyzer(Generic[ResultT]):
    """
    Base class for analyzers that consume reviews in fixed-size batches.

    Subclasses implement ``_begin`` (return a fresh run state),
    ``_process_batch`` and ``_finalize`` (build the result from the state).
    ``analyze`` yields to the event loop after every batch so progress can be
    polled while it runs.

    Accumulators live in the run state, never on the analyzer, so a run
    abandoned by a cancel can keep going without touching the next one.
    Progress belongs to the most recent run only.
    """

    kind = "base"

    def __init__(self, batch_size: int = 50):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.batch_size = batch_size
        self._progress = AnalysisProgress()
        self._current_run: Optional[object] = None

    def get_progress(self) -> AnalysisProgress:
        """Snapshot of the current progress."""
        return self._progress.model_copy()

    def reset(self):
        """Return to idle and stop reporting progress of any run still going."""
        self._current_run = None
        self._progress = AnalysisProgress()

    def _report(self, run: object, progress: AnalysisProgress):
        if self._current_run is run:
            self._progress = progress

    async def analyze(self, reviews: Sequence[ReviewRecord]) -> ResultT:
        """
        Analyze reviews batch by batch.

        Args:
            reviews: Pre-validated reviews; the sequence is not modified

        Returns:
            Analyzer-specific result

        Raises:
            Exception: Whatever the analysis raised, after recording it in progress
        """
        reviews = list(reviews)
        total = len(reviews)
        batch_size = self.batch_size

        run = object()
        self._current_run = run
        self._report(run, AnalysisProgress(stage="running", progress=0, details=f"0/{total} reviews"))

        try:
            state = self._begin(total)

            processed = 0
            highest = 0
            for start in range(0, total, batch_size):
                batch = reviews[start:start + batch_size]
                self._process_batch(state, batch)
                processed += len(batch)

                # Hold back 100 until the result is built
                highest = max(highest, min(99, processed * 100 // total))
                self._report(run, AnalysisProgress(
                    stage="running",
                    progress=highest,
                    details=f"{processed}/{total} reviews"
                ))
                await asyncio.sleep(0)

            result = self._finalize(state)

        except Exception as e:
            self._report(run, self._progress.model_copy(update={"stage": "error", "error": str(e)}))
            logger.error(f"{self.kind} analysis failed: {e}")
            raise

        self._report(run, AnalysisProgress(stage="completed", progress=100, details=f"{total}/{total} reviews"))
        return result

    def _begin(self, total: int) -> Any:
        raise NotImplementedError

    def _process_batch(self, state: Any, batch: List[ReviewRecord]):
        raise NotImplementedError

    def _finalize(self, state: Any) -> ResultT:
        raise NotImplementedError
