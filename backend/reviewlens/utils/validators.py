"""Input validation utilities."""

import re
from datetime import datetime, timezone
from typing import Optional, Tuple

# Play Store package names: dot-separated segments starting with a letter
_APP_ID_PATTERN = re.compile(r'^[a-zA-Z][a-zA-Z0-9_]*(\.[a-zA-Z0-9_]+)+$')


def validate_app_id(app_id: str) -> Tuple[bool, str]:
    """
    Validate a Play Store application id.

    Requirements:
    - At most 255 characters
    - At least two dot-separated segments (e.g. com.example.app)
    - Letters, digits and underscores only

    Args:
        app_id: Application id to validate

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not app_id:
        return False, "App id is required"

    if len(app_id) > 255:
        return False, "App id must be less than 255 characters"

    if not _APP_ID_PATTERN.match(app_id):
        return False, "App id must look like a package name, e.g. com.example.app"

    return True, ""


def parse_review_date(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 review date.

    Naive values are treated as UTC and a trailing ``Z`` is accepted.

    Args:
        value: Date string from the scraper

    Returns:
        Timezone-aware datetime, or None if missing or unparseable
    """
    if not value:
        return None

    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (TypeError, ValueError):
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)

    return parsed
