"""
Timestamp and count parsing utilities.
"""

from datetime import datetime, timezone
from typing import Optional


def parse_timestamp(value) -> Optional[datetime]:
    """Parse an ISO 8601 timestamp (e.g. "2024-01-15T10:00:00.000Z") into an aware datetime."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not isinstance(value, str) or not value.strip():
        return None

    text = value.strip()
    # fromisoformat() before 3.11 rejects a trailing "Z"
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def format_timestamp(value: Optional[datetime]) -> str:
    """Render a timestamp for the report; empty string when unknown."""
    if value is None:
        return ""
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_count(value) -> Optional[int]:
    """Parse a member count from various formats."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, (float, str)):
        try:
            return int(float(value))
        except (ValueError, OverflowError):
            return None
    return None
