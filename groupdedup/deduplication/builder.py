"""
Duplicate set builder.

Partitions the fetched groups into EXACT sets (same normalized name) and
NEAR sets (same canonical key, computed only over groups no EXACT set has
claimed), and assigns every member a suggested action. The oldest member of
each set is the keeper; ties on creation time go to the smallest id.
"""

from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone

from loguru import logger

from groupdedup.connectors.types import DuplicateMode, GroupRecord, SuggestedAction
from groupdedup.normalizers.names import canonicalize, normalize

# Sorts groups without a creation time after every dated one.
_UNKNOWN_CREATED = datetime.max.replace(tzinfo=timezone.utc)


@dataclass
class DuplicateSet:
    """Groups sharing one key, ordered oldest first."""
    key: str
    mode: DuplicateMode
    members: list[GroupRecord] = field(default_factory=list)

    @property
    def keeper(self) -> GroupRecord:
        return self.members[0]

    @property
    def size(self) -> int:
        return len(self.members)


@dataclass(frozen=True)
class DuplicateRow:
    """One member of a duplicate set, as written to the approval store."""
    group: GroupRecord
    normalized_key: str
    canonical_key: str
    duplicate_mode: DuplicateMode
    suggested_action: SuggestedAction
    set_key: str
    set_size: int
    notes: str

    @property
    def group_id(self) -> str:
        return self.group.id

    @property
    def group_name(self) -> str | None:
        return self.group.display_name


def _created_sort_key(group: GroupRecord) -> datetime:
    return group.created_at or _UNKNOWN_CREATED


def order_members(groups: Iterable[GroupRecord]) -> list[GroupRecord]:
    """Order by creation time, then id. The first element is the keeper."""
    return sorted(groups, key=lambda g: (_created_sort_key(g), g.id))


def build_sets(
    groups: Iterable[GroupRecord],
    mode: DuplicateMode,
    key_func,
) -> list[DuplicateSet]:
    """
    Group records by key_func and keep every bucket with two or more members.

    Empty keys never form a set.
    """
    buckets: dict[str, list[GroupRecord]] = defaultdict(list)
    for group in groups:
        key = key_func(group.display_name)
        if key:
            buckets[key].append(group)

    return [
        DuplicateSet(key=key, mode=mode, members=order_members(members))
        for key, members in buckets.items()
        if len(members) >= 2
    ]


def _notes(dup_set: DuplicateSet, action: SuggestedAction) -> str:
    keeper = dup_set.keeper
    if action == SuggestedAction.KEEP:
        return f"Oldest of {dup_set.size} {dup_set.mode.value.lower()} duplicates; suggested keeper"
    if dup_set.mode == DuplicateMode.EXACT:
        return f"Same name as {keeper.id} (case/whitespace only); newer copy"
    return f"Similar to {keeper.id} (canonical key '{dup_set.key}'); confirm before deleting"


def _rows_for_set(dup_set: DuplicateSet) -> list[DuplicateRow]:
    other_action = SuggestedAction.DELETE if dup_set.mode == DuplicateMode.EXACT else SuggestedAction.REVIEW

    rows = []
    for index, group in enumerate(dup_set.members):
        action = SuggestedAction.KEEP if index == 0 else other_action
        rows.append(DuplicateRow(
            group=group,
            normalized_key=normalize(group.display_name),
            canonical_key=canonicalize(group.display_name),
            duplicate_mode=dup_set.mode,
            suggested_action=action,
            set_key=dup_set.key,
            set_size=dup_set.size,
            notes=_notes(dup_set, action),
        ))
    return rows


def _row_sort_key(row: DuplicateRow):
    return (
        row.duplicate_mode.value,
        row.set_key,
        row.suggested_action.value,
        _created_sort_key(row.group),
        row.group_id,
    )


def classify(groups: Iterable[GroupRecord]) -> list[DuplicateRow]:
    """
    Classify groups into EXACT and NEAR duplicate rows.

    Args:
        groups: Every group fetched in this run

    Returns:
        Rows for every group that belongs to a duplicate set, sorted by
        mode, set key, suggested action and creation time. Groups that
        belong to no set are not returned.
    """
    named = []
    seen_ids = set()
    skipped = 0
    for group in groups:
        if group.display_name is None:
            skipped += 1
            continue
        if group.id in seen_ids:
            # A group listed twice must not end up in two rows.
            logger.debug(f"Ignoring repeated group id {group.id}")
            continue
        seen_ids.add(group.id)
        named.append(group)

    if skipped:
        logger.debug(f"Skipped {skipped} groups without a name")

    exact_sets = build_sets(named, DuplicateMode.EXACT, normalize)
    claimed = {g.id for s in exact_sets for g in s.members}

    pool = [g for g in named if g.id not in claimed]
    near_sets = build_sets(pool, DuplicateMode.NEAR, canonicalize)

    rows = [row for dup_set in exact_sets + near_sets for row in _rows_for_set(dup_set)]
    rows.sort(key=_row_sort_key)

    logger.info(
        f"Classified {len(named)} groups: {len(exact_sets)} exact sets, "
        f"{len(near_sets)} near sets, {len(rows)} rows"
    )
    return rows


def summarize(rows: Iterable[DuplicateRow]) -> dict[str, dict[str, int]]:
    """Count sets and rows per mode and action for display."""
    summary: dict[str, dict[str, int]] = {}
    seen_sets: set[tuple[str, str]] = set()

    for row in rows:
        mode = row.duplicate_mode.value
        counts = summary.setdefault(mode, {"sets": 0, "rows": 0})
        counts["rows"] += 1
        counts[row.suggested_action.value] = counts.get(row.suggested_action.value, 0) + 1
        if (mode, row.set_key) not in seen_sets:
            seen_sets.add((mode, row.set_key))
            counts["sets"] += 1

    return summary
