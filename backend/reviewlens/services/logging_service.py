"""Structured logging and in-process metrics."""

import logging
import json
import sys
from datetime import datetime, timezone
from typing import Dict, Any, Optional


ROOT_LOGGER_NAME = "reviewlens"

# Attributes every LogRecord carries; anything else came in through ``extra``
_RESERVED_ATTRS = set(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime"}


class JsonFormatter(logging.Formatter):
    """Render log records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage()
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                log_entry[key] = value

        if record.exc_info:
            log_entry["traceback"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def configure_logging(level: str = "INFO", log_file: Optional[str] = None) -> logging.Logger:
    """
    Attach JSON handlers to the package root logger.

    Safe to call more than once; existing handlers are replaced.

    Args:
        level: Log level name
        log_file: Optional file path for file logging

    Returns:
        The configured ``reviewlens`` logger
    """
    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(level.upper())

    for handler in list(root.handlers):
        root.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(JsonFormatter())
    root.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(JsonFormatter())
        root.addHandler(file_handler)

    root.propagate = False
    return root


class StructuredLogger:
    """
    Structured logger with keyword context.

    ``logger.info("Cache hit", subject_id=app_id)`` emits the keyword
    arguments as fields of the JSON log line.
    """

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def _log(self, level: int, message: str, context: Dict[str, Any]):
        self.logger.log(level, message, extra=context or None)

    def info(self, message: str, **kwargs):
        """Log info message."""
        self._log(logging.INFO, message, kwargs)

    def error(self, message: str, **kwargs):
        """Log error message."""
        self._log(logging.ERROR, message, kwargs)


class ApplicationMetrics:
    """
    Track application metrics for monitoring.

    Stores metrics in memory for health check endpoints.
    """

    def __init__(self):
        """Initialize metrics tracker."""
        self.start_time = datetime.now(timezone.utc)
        self.reset()

    def reset(self):
        """Zero all counters."""
        self.metrics = {
            "analysis": {
                "total_runs": 0,
                "completed": 0,
                "failed": 0,
                "cancelled": 0
            },
            "cache": {
                "hits": 0,
                "misses": 0,
                "writes": 0,
                "errors": 0
            },
            "scraper": {
                "total_runs": 0,
                "failed_runs": 0,
                "reviews_fetched": 0
            },
            "uptime_seconds": 0,
            "last_updated": datetime.now(timezone.utc).isoformat()
        }

    def increment_analysis(self, outcome: str):
        """
        Count an analysis run.

        Args:
            outcome: completed, failed or cancelled
        """
        self.metrics["analysis"]["total_runs"] += 1
        if outcome in self.metrics["analysis"]:
            self.metrics["analysis"][outcome] += 1

        self._update_timestamp()

    def increment_cache(self, hit: bool = True):
        """
        Increment cache counter.

        Args:
            hit: Whether cache hit or miss
        """
        if hit:
            self.metrics["cache"]["hits"] += 1
        else:
            self.metrics["cache"]["misses"] += 1

        self._update_timestamp()

    def increment_cache_write(self, success: bool = True):
        """Count a cache write attempt."""
        if success:
            self.metrics["cache"]["writes"] += 1
        else:
            self.metrics["cache"]["errors"] += 1

        self._update_timestamp()

    def increment_scrape(self, reviews: int = 0, success: bool = True):
        """
        Count a scraper run.

        Args:
            reviews: Number of reviews fetched
            success: Whether the scrape produced reviews
        """
        self.metrics["scraper"]["total_runs"] += 1
        self.metrics["scraper"]["reviews_fetched"] += reviews
        if not success:
            self.metrics["scraper"]["failed_runs"] += 1

        self._update_timestamp()

    def _update_timestamp(self):
        """Update last_updated timestamp and uptime."""
        self.metrics["last_updated"] = datetime.now(timezone.utc).isoformat()
        self.metrics["uptime_seconds"] = (datetime.now(timezone.utc) - self.start_time).total_seconds()

    def get_metrics(self) -> Dict[str, Any]:
        """
        Get current metrics.

        Returns:
            Metrics dictionary
        """
        self._update_timestamp()
        return self.metrics

    def get_cache_hit_rate(self) -> float:
        """
        Calculate cache hit rate.

        Returns:
            Cache hit rate percentage
        """
        total = self.metrics["cache"]["hits"] + self.metrics["cache"]["misses"]
        if total == 0:
            return 0.0

        return (self.metrics["cache"]["hits"] / total) * 100

    def get_failure_rate(self) -> float:
        """
        Calculate analysis failure rate.

        Returns:
            Failure rate percentage
        """
        total = self.metrics["analysis"]["total_runs"]
        if total == 0:
            return 0.0

        return (self.metrics["analysis"]["failed"] / total) * 100


# Global instances
logger = logging.getLogger(ROOT_LOGGER_NAME)
app_logger = StructuredLogger(ROOT_LOGGER_NAME)
app_metrics = ApplicationMetrics()
