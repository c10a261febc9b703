"""
Name and field normalization.

Turns free-text group names into exact and canonical matching keys, and
parses API timestamps and counts without raising on bad values.
"""

from .dates import format_timestamp, parse_count, parse_timestamp
from .names import SUFFIX_RULES, canonicalize, normalize

__all__ = [
    'normalize',
    'canonicalize',
    'SUFFIX_RULES',
    'parse_timestamp',
    'format_timestamp',
    'parse_count',
]
