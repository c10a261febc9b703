"""
Data models for the directory connector and the duplicate report.

Defines the GroupRecord dataclass produced from API payloads, plus the
enums used to label duplicate rows.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from groupdedup.normalizers.dates import parse_count, parse_timestamp


class GroupType(str, Enum):
    """Group kinds reported by the directory."""

    OKTA_GROUP = "OKTA_GROUP"  # directory-managed
    APP_GROUP = "APP_GROUP"  # imported from an application
    BUILT_IN = "BUILT_IN"


class DuplicateMode(str, Enum):
    """How a duplicate set was matched."""

    EXACT = "EXACT"
    NEAR = "NEAR"


class SuggestedAction(str, Enum):
    """Action proposed for one member of a duplicate set."""

    KEEP = "KEEP"
    DELETE = "DELETE"
    REVIEW = "REVIEW"


@dataclass(frozen=True)
class GroupRecord:
    """
    One group as fetched from the directory.

    Fetched fresh on every discovery run and never persisted as-is.
    """

    id: str
    display_name: str | None
    group_type: str
    created_at: datetime | None = None
    last_updated: datetime | None = None
    member_count: int | None = None
    description: str | None = None

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> "GroupRecord":
        """
        Build a record from a groups API object.

        Bad or missing fields default to None rather than raising.
        """
        profile = payload.get("profile") or {}
        stats = (payload.get("_embedded") or {}).get("stats") or {}

        return cls(
            id=str(payload.get("id") or ""),
            display_name=profile.get("name"),
            group_type=str(payload.get("type") or ""),
            created_at=parse_timestamp(payload.get("created")),
            last_updated=parse_timestamp(payload.get("lastUpdated")),
            member_count=parse_count(stats.get("usersCount")),
            description=profile.get("description"),
        )
