"""
Error Tracking Service

Unexpected failures in analysis runs, scrapes and cache maintenance are
always logged and, when ``SENTRY_DSN`` is set, forwarded to Sentry.
Expected outcomes (no valid reviews, unknown app) never reach Sentry.
"""

from typing import Optional, Dict, Any
import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from sentry_sdk.utils import BadDsn

from reviewlens.services.logging_service import logger

# Polled every ~500 ms by the dashboard
QUIET_PATHS = ("/health", "/progress")

EXPECTED_ERRORS = ("HTTPException", "NoValidReviewsError", "AppNotFoundError")


class ErrorTracker:
    """Sentry forwarding for the review analysis service."""

    def __init__(self):
        self.sentry_enabled = False

    def initialize(self, dsn: str, environment: str = "production", release: str = "unknown") -> bool:
        """
        Turn on Sentry forwarding.

        Args:
            dsn: Sentry DSN; empty keeps forwarding off
            environment: Deployment environment name
            release: Service version reported with each event

        Returns:
            True if events are forwarded
        """
        if not dsn:
            logger.info("Sentry DSN not set, errors are only logged")
            return False

        try:
            sentry_sdk.init(
                dsn=dsn,
                environment=environment,
                release=f"reviewlens@{release}",
                traces_sample_rate=0.05,
                integrations=[FastApiIntegration(), SqlalchemyIntegration()],
                before_send=self._drop_expected,
                send_default_pii=False
            )
        except BadDsn as e:
            logger.error(f"Invalid Sentry DSN, forwarding disabled: {e}")
            return False

        self.sentry_enabled = True
        logger.info(f"Sentry forwarding enabled for {environment}")
        return True

    @staticmethod
    def _drop_expected(event: Dict[str, Any], hint: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Drop events for polled endpoints and for expected run outcomes."""
        url = event.get("request", {}).get("url", "")
        if url.endswith(QUIET_PATHS) or "/health/" in url:
            return None

        for exception in event.get("exception", {}).get("values", []):
            if exception.get("type") in EXPECTED_ERRORS:
                return None

        return event

    def capture_exception(
        self,
        exception: BaseException,
        app_id: Optional[str] = None,
        stage: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        """
        Log an exception and forward it to Sentry.

        Args:
            exception: The failure
            app_id: Play Store package the run was for, sent as a tag
            stage: Where it failed (``scrape``, ``analysis``, ``cache``)
            context: Extra structured data attached to the event
        """
        logger.exception(
            f"Unexpected {type(exception).__name__} in {stage or 'service'}: {exception}",
            exc_info=exception,
            extra={"app_id": app_id}
        )

        if not self.sentry_enabled:
            return

        with sentry_sdk.new_scope() as scope:
            if app_id:
                scope.set_tag("app_id", app_id)
            if stage:
                scope.set_tag("stage", stage)
            for key, value in (context or {}).items():
                scope.set_context(key, value)
            sentry_sdk.capture_exception(exception)

    def record_breadcrumb(self, message: str, category: str = "analysis", data: Optional[Dict[str, Any]] = None):
        """Leave a trail entry shown with the next forwarded event."""
        if self.sentry_enabled:
            sentry_sdk.add_breadcrumb(message=message, category=category, level="info", data=data or {})


error_tracker = ErrorTracker()


def capture_exception(exception: BaseException, **kwargs):
    error_tracker.capture_exception(exception, **kwargs)


def record_breadcrumb(message: str, **kwargs):
    error_tracker.record_breadcrumb(message, **kwargs)
