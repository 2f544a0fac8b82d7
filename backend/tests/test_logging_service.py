"""
Unit tests for JSON log formatting, structured logging and in-process metrics.
"""

import json
import logging
import warnings
import pytest
from datetime import datetime, timezone

from reviewlens.services.logging_service import ApplicationMetrics, JsonFormatter, StructuredLogger


class RecordingHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record: logging.LogRecord):
        self.records.append(record)


def make_record(message: str = "Cache hit", **extra) -> logging.LogRecord:
    record = logging.LogRecord("reviewlens.test", logging.INFO, __file__, 1, message, (), None)
    record.__dict__.update(extra)
    return record


@pytest.mark.unit
class TestJsonFormatter:
    """Test one JSON object per log line."""

    def test_timestamp_is_timezone_aware(self):
        """Test the timestamp is UTC and formatting raises no deprecation warnings."""
        record = make_record()

        with warnings.catch_warnings():
            warnings.simplefilter("error", DeprecationWarning)
            entry = json.loads(JsonFormatter().format(record))

        timestamp = datetime.fromisoformat(entry["timestamp"])
        assert timestamp.utcoffset().total_seconds() == 0
        assert timestamp == datetime.fromtimestamp(record.created, timezone.utc)

    def test_extra_fields_are_emitted(self):
        """Test keyword context lands in the JSON object."""
        entry = json.loads(JsonFormatter().format(make_record(subject_id="com.example.app")))

        assert entry["message"] == "Cache hit"
        assert entry["level"] == "INFO"
        assert entry["subject_id"] == "com.example.app"


@pytest.mark.unit
class TestStructuredLogger:
    """Test keyword context is passed as record attributes."""

    @pytest.fixture
    def handler(self):
        target = logging.getLogger("reviewlens.tests.structured")
        target.setLevel(logging.INFO)
        recording = RecordingHandler()
        target.addHandler(recording)
        yield recording
        target.removeHandler(recording)

    def test_info_with_context(self, handler: RecordingHandler):
        StructuredLogger("reviewlens.tests.structured").info("Analysis started", analysis_id="abc", review_count=6)

        record = handler.records[-1]
        assert record.getMessage() == "Analysis started"
        assert record.analysis_id == "abc"
        assert record.review_count == 6

    def test_error_without_context(self, handler: RecordingHandler):
        StructuredLogger("reviewlens.tests.structured").error("Analysis failed")

        record = handler.records[-1]
        assert record.levelno == logging.ERROR
        assert not hasattr(record, "analysis_id")


@pytest.mark.unit
class TestApplicationMetrics:
    """Test counters and timestamps."""

    def test_timestamps_are_timezone_aware(self):
        """Test metrics timestamps are UTC and updating raises no deprecation warnings."""
        with warnings.catch_warnings():
            warnings.simplefilter("error", DeprecationWarning)
            metrics = ApplicationMetrics()
            metrics.increment_analysis("completed")
            snapshot = metrics.get_metrics()

        assert datetime.fromisoformat(snapshot["last_updated"]).tzinfo is not None
        assert metrics.start_time.tzinfo is not None
        assert snapshot["uptime_seconds"] >= 0
        assert snapshot["analysis"]["completed"] == 1

    def test_rates(self):
        metrics = ApplicationMetrics()
        metrics.increment_cache(hit=True)
        metrics.increment_cache(hit=False)
        metrics.increment_analysis("failed")
        metrics.increment_analysis("completed")

        assert metrics.get_cache_hit_rate() == 50.0
        assert metrics.get_failure_rate() == 50.0
