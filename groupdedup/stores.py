"""
Approval and result stores.

The approval store is the CSV written at the end of discovery and edited by
a reviewer before the apply run. Result stores record what the apply run
deleted and what failed. All files are written atomically so an interrupted
run never leaves a half-written CSV behind.
"""

import csv
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from groupdedup.deduplication.builder import DuplicateRow
from groupdedup.normalizers.dates import format_timestamp

APPROVAL_COLUMNS = [
    "GroupName",
    "GroupId",
    "GroupType",
    "UsersCount",
    "Created",
    "LastUpdated",
    "NormalizedName",
    "CanonicalKey",
    "DuplicateMode",
    "SuggestedAction",
    "DuplicateSetKey",
    "DuplicateSetSize",
    "Notes",
]
REQUIRED_APPROVAL_COLUMNS = ("GroupName", "GroupId", "SuggestedAction")

DELETED_COLUMNS = ["GroupName", "GroupId", "Status"]
FAILED_COLUMNS = ["GroupName", "GroupId", "Reason"]


class ApprovalStoreError(Exception):
    """The approval store cannot be used for an apply run."""
    pass


class EmptyApprovalStoreError(ApprovalStoreError):
    """The approval store exists but has no data rows."""
    pass


@dataclass(frozen=True)
class ApprovalRow:
    """A row read back from the reviewed approval store."""
    group_name: str
    group_id: str
    suggested_action: str  # verbatim, so only the literal "DELETE" matches
    duplicate_mode: str = ""


@dataclass(frozen=True)
class DeletionSuccess:
    group_id: str
    group_name: str
    status: str


@dataclass(frozen=True)
class DeletionFailure:
    group_id: str
    group_name: str
    reason: str


def atomic_write_csv(dest_path: Path, columns: list[str], rows: Iterable[dict]) -> Path:
    """
    Write a CSV atomically - only replaces the target file on success.

    Args:
        dest_path: Final destination path
        columns: Header row, in order
        rows: Dicts keyed by column name

    Returns:
        Path to written file
    """
    dest_path = Path(dest_path)
    dest_path.parent.mkdir(parents=True, exist_ok=True)

    # Temp file in the same directory so the rename stays on one filesystem
    temp_path = dest_path.with_suffix(dest_path.suffix + ".tmp")

    try:
        with open(temp_path, "w", encoding="utf-8", newline="") as f:
            writer = csv.DictWriter(f, fieldnames=columns)
            writer.writeheader()
            for row in rows:
                writer.writerow(row)

        temp_path.replace(dest_path)
        return dest_path

    except Exception:
        if temp_path.exists():
            temp_path.unlink()
        raise


def _approval_record(row: DuplicateRow) -> dict:
    group = row.group
    return {
        "GroupName": group.display_name or "",
        "GroupId": group.id,
        "GroupType": group.group_type,
        "UsersCount": "" if group.member_count is None else group.member_count,
        "Created": format_timestamp(group.created_at),
        "LastUpdated": format_timestamp(group.last_updated),
        "NormalizedName": row.normalized_key,
        "CanonicalKey": row.canonical_key,
        "DuplicateMode": row.duplicate_mode.value,
        "SuggestedAction": row.suggested_action.value,
        "DuplicateSetKey": row.set_key,
        "DuplicateSetSize": row.set_size,
        "Notes": row.notes,
    }


def write_approval_store(path: Path, rows: list[DuplicateRow]) -> Path:
    """Write the discovery output for human review."""
    written = atomic_write_csv(path, APPROVAL_COLUMNS, (_approval_record(r) for r in rows))
    logger.info(f"Wrote {len(rows)} duplicate rows to {written}")
    return written


def read_approval_store(path: Path) -> list[ApprovalRow]:
    """
    Read the reviewed approval store.

    Args:
        path: CSV written by discovery, possibly re-saved by a spreadsheet

    Returns:
        Rows in file order

    Raises:
        ApprovalStoreError: Required columns are missing
        EmptyApprovalStoreError: The file has a header but no rows
    """
    path = Path(path)

    # utf-8-sig: spreadsheet tools like to add a BOM on save
    with open(path, encoding="utf-8-sig", newline="") as f:
        reader = csv.DictReader(f)
        columns = [c.strip() for c in (reader.fieldnames or [])]
        missing = [c for c in REQUIRED_APPROVAL_COLUMNS if c not in columns]
        if missing:
            raise ApprovalStoreError(f"{path} is missing required columns: {', '.join(missing)}")
        reader.fieldnames = columns

        rows = []
        for record in reader:
            if not any((v or "").strip() for v in record.values() if isinstance(v, str)):
                continue  # blank line left by an editor
            rows.append(ApprovalRow(
                group_name=(record.get("GroupName") or "").strip(),
                group_id=(record.get("GroupId") or "").strip(),
                suggested_action=record.get("SuggestedAction") or "",
                duplicate_mode=(record.get("DuplicateMode") or "").strip(),
            ))

    if not rows:
        raise EmptyApprovalStoreError(f"Approval store {path} contains no rows")

    logger.info(f"Loaded {len(rows)} rows from {path}")
    return rows


def write_deleted_results(path: Path, successes: list[DeletionSuccess]) -> Path:
    return atomic_write_csv(
        path,
        DELETED_COLUMNS,
        ({"GroupName": s.group_name, "GroupId": s.group_id, "Status": s.status} for s in successes),
    )


def write_failed_results(path: Path, failures: list[DeletionFailure]) -> Path:
    return atomic_write_csv(
        path,
        FAILED_COLUMNS,
        ({"GroupName": f.group_name, "GroupId": f.group_id, "Reason": f.reason} for f in failures),
    )


def result_paths(results_dir: Path, stamp: str) -> tuple[Path, Path]:
    """Deleted and failed result file paths for one apply run."""
    results_dir = Path(results_dir)
    return (
        results_dir / f"deleted_groups_{stamp}.csv",
        results_dir / f"failed_groups_{stamp}.csv",
    )
