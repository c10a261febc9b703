"""
Directory connector.

- DirectoryClient: paginated, rate-limit aware groups API client
- GroupRecord: one fetched group
"""

from groupdedup.connectors.directory import DirectoryClient
from groupdedup.connectors.types import DuplicateMode, GroupRecord, GroupType, SuggestedAction

__all__ = [
    "DirectoryClient",
    "GroupRecord",
    "GroupType",
    "DuplicateMode",
    "SuggestedAction",
]
