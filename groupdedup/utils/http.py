"""
HTTP utilities for the directory client.

Provides the error taxonomy raised by the client and the pure header
policies that decide how long to pause: the pre-emptive throttle applied
after successful responses, the reactive delay used after HTTP 429, and
Link-header pagination parsing. None of these touch the network, so the
timing rules can be tested with plain dicts.
"""

import re
import time
from collections.abc import Iterable, Mapping
from email.utils import parsedate_to_datetime
from typing import Optional

REMAINING_HEADER = "X-Rate-Limit-Remaining"
RESET_HEADER = "X-Rate-Limit-Reset"
RETRY_AFTER_HEADER = "Retry-After"
LINK_HEADER = "Link"

MIN_SLEEP_SECONDS = 1.0

_NEXT_LINK_RE = re.compile(r'<([^>]+)>\s*;\s*rel="?next"?', re.IGNORECASE)


class DirectoryAPIError(Exception):
    """Base error for directory API calls, with status code when there was a response."""

    def __init__(
        self,
        message: str,
        status_code: int = None,
        headers: Optional[Mapping[str, str]] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.headers = dict(headers or {})


class TransientNetworkError(DirectoryAPIError):
    """5xx response, timeout or connection failure. Retried with backoff."""
    pass


class RateLimitExceeded(DirectoryAPIError):
    """Raised on HTTP 429. Retried using the server's reset timing."""
    pass


class TerminalClientError(DirectoryAPIError):
    """Non-retryable failure: a non-429 4xx or an exhausted retry budget."""

    def __init__(self, message: str, status_code: int = None, headers=None, attempts: int = 1):
        super().__init__(message, status_code=status_code, headers=headers)
        self.attempts = attempts


def get_header(headers: Mapping[str, str] | None, name: str) -> Optional[str]:
    """Case-insensitive header lookup on any mapping."""
    if not headers:
        return None
    value = headers.get(name)
    if value is not None:
        return value
    lowered = name.lower()
    for key, value in headers.items():
        if key.lower() == lowered:
            return value
    return None


def _parse_float(value: Optional[str]) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(str(value).strip())
    except ValueError:
        return None


def _seconds_until_reset(reset_epoch: float, now: float) -> float:
    # One second of slack so the window has actually rolled over.
    return max(reset_epoch - now + 1, MIN_SLEEP_SECONDS)


def throttle_delay(
    headers: Mapping[str, str] | None,
    threshold: int = 5,
    now: float | None = None,
) -> Optional[float]:
    """
    Pre-emptive rate-limit pause after a successful response.

    Args:
        headers: Response headers
        threshold: Low-water mark for the remaining-calls header
        now: Current epoch time (defaults to time.time())

    Returns:
        Seconds to sleep before the next request, or None if there is
        still enough capacity (or no remaining-calls header at all).
    """
    remaining = _parse_float(get_header(headers, REMAINING_HEADER))
    if remaining is None or remaining > threshold:
        return None

    reset = _parse_float(get_header(headers, RESET_HEADER))
    if reset is None:
        return MIN_SLEEP_SECONDS

    now = time.time() if now is None else now
    return _seconds_until_reset(reset, now)


def retry_after_seconds(value: Optional[str], now: float) -> Optional[float]:
    """Parse a Retry-After value given as delta seconds or an HTTP date."""
    if value is None:
        return None

    seconds = _parse_float(value)
    if seconds is not None:
        return max(seconds, MIN_SLEEP_SECONDS)

    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when is None:
        return None
    return max(when.timestamp() - now, MIN_SLEEP_SECONDS)


def rate_limit_delay(
    headers: Mapping[str, str] | None,
    fallback: float,
    now: float | None = None,
) -> float:
    """
    Delay before retrying a request that got HTTP 429.

    Prefers the rate-limit reset epoch, then Retry-After, then the
    caller's current exponential backoff value.
    """
    now = time.time() if now is None else now

    reset = _parse_float(get_header(headers, RESET_HEADER))
    if reset is not None:
        return _seconds_until_reset(reset, now)

    retry_after = retry_after_seconds(get_header(headers, RETRY_AFTER_HEADER), now)
    if retry_after is not None:
        return retry_after

    return fallback


def parse_next_link(link_header: str | Iterable[str] | None) -> Optional[str]:
    """
    Extract the rel="next" url from Link header value(s).

    Accepts a single header value (possibly several comma-joined links)
    or a list of values, as servers may send one Link header per relation.
    """
    if not link_header:
        return None

    values = [link_header] if isinstance(link_header, str) else list(link_header)
    for value in values:
        match = _NEXT_LINK_RE.search(value or "")
        if match:
            return match.group(1).strip()
    return None
