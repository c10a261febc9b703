"""Utility modules for the group deduplication tool."""

from groupdedup.utils.http import (
    DirectoryAPIError,
    RateLimitExceeded,
    TerminalClientError,
    TransientNetworkError,
    parse_next_link,
    rate_limit_delay,
    throttle_delay,
)
from groupdedup.utils.logging import setup_logging

__all__ = [
    # Errors
    "DirectoryAPIError",
    "TransientNetworkError",
    "RateLimitExceeded",
    "TerminalClientError",
    # Header policy
    "parse_next_link",
    "throttle_delay",
    "rate_limit_delay",
    # Logging
    "setup_logging",
]
