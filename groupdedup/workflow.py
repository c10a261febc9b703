"""
Two-phase discovery/apply workflow.

Each run performs exactly one phase, chosen once up front from whether the
approval store exists:

- DISCOVERY: fetch every group, classify duplicates, write the approval
  store for review. Never mutates the directory. Any unrecoverable fetch
  error aborts the run without writing a partial report.
- APPLY: read the reviewed store and delete only rows whose
  SuggestedAction is exactly "DELETE". A failure on one row is recorded
  and the remaining rows are still processed.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path

from loguru import logger

from groupdedup.connectors.directory import DirectoryClient
from groupdedup.connectors.types import SuggestedAction
from groupdedup.deduplication.builder import DuplicateRow, classify
from groupdedup.stores import (
    ApprovalRow,
    DeletionFailure,
    DeletionSuccess,
    read_approval_store,
    result_paths,
    write_approval_store,
    write_deleted_results,
    write_failed_results,
)
from groupdedup.utils.http import DirectoryAPIError

CONFIRMATION_WORD = "DELETE"
STATUS_DELETED = "DELETED"
STATUS_DRY_RUN = "DRY_RUN"


class Phase(str, Enum):
    DISCOVERY = "DISCOVERY"
    APPLY = "APPLY"


class RunOutcome(str, Enum):
    NO_DUPLICATES = "NO_DUPLICATES"
    REPORT_WRITTEN = "REPORT_WRITTEN"
    NOTHING_TO_DELETE = "NOTHING_TO_DELETE"
    DELETIONS_PROCESSED = "DELETIONS_PROCESSED"
    CANCELLED = "CANCELLED"


class MissingIdentifierError(Exception):
    """A row approved for deletion has no group id."""

    def __init__(self, group_name: str):
        super().__init__(f"Missing GroupId for approved row '{group_name}'")
        self.group_name = group_name


@dataclass(frozen=True)
class WorkflowOptions:
    approval_path: Path
    results_dir: Path
    include_app_groups: bool = False
    dry_run: bool = False
    assume_yes: bool = False


@dataclass
class WorkflowResult:
    """Result of one workflow run."""
    phase: Phase
    outcome: RunOutcome | None = None
    groups_fetched: int = 0
    duplicate_rows: list[DuplicateRow] = field(default_factory=list)
    approved: int = 0
    successes: list[DeletionSuccess] = field(default_factory=list)
    failures: list[DeletionFailure] = field(default_factory=list)
    written: list[Path] = field(default_factory=list)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def duration_seconds(self) -> float | None:
        """Calculate duration in seconds."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None


def decide_phase(approval_path: Path) -> Phase:
    """The only check of external state that picks the phase."""
    return Phase.APPLY if Path(approval_path).exists() else Phase.DISCOVERY


def should_proceed(bypass: bool, user_input: str | None) -> bool:
    """
    Confirmation gate before any deletion.

    Bypass skips the prompt only; row selection is unaffected by it.
    """
    if bypass:
        return True
    return (user_input or "").strip() == CONFIRMATION_WORD


def select_approved(rows: list[ApprovalRow]) -> list[ApprovalRow]:
    """Rows marked exactly DELETE, in store order."""
    return [r for r in rows if r.suggested_action == SuggestedAction.DELETE.value]


class Workflow:
    """
    Runs one phase against the directory.

    Args:
        options: Per-run options
        client: Directory client; may be None for an APPLY dry run
        prompt: Called with the number of approved rows, returns what the
            operator typed. Not called when options.assume_yes is set.
        now: Clock used for timestamps and result file names
    """

    def __init__(
        self,
        options: WorkflowOptions,
        client: DirectoryClient | None = None,
        prompt: Callable[[int], str] | None = None,
        now: Callable[[], datetime] = datetime.now,
    ):
        self.options = options
        self.client = client
        self.prompt = prompt
        self.now = now

    def run(self, phase: Phase) -> WorkflowResult:
        result = WorkflowResult(phase=phase, started_at=self.now())
        logger.info(f"Starting {phase.value} run (approval store: {self.options.approval_path})")

        try:
            if phase == Phase.DISCOVERY:
                self._discover(result)
            else:
                self._apply(result)
        finally:
            result.completed_at = self.now()

        logger.info(f"{phase.value} finished: {result.outcome.value} in {result.duration_seconds:.1f}s")
        return result

    def _require_client(self) -> DirectoryClient:
        if self.client is None:
            raise RuntimeError("A directory client is required for this run")
        return self.client

    def _discover(self, result: WorkflowResult) -> None:
        client = self._require_client()

        # Materialize before classifying: a fetch failure must abort before anything is written.
        groups = list(client.fetch_groups(include_app_groups=self.options.include_app_groups))
        result.groups_fetched = len(groups)

        rows = classify(groups)
        result.duplicate_rows = rows

        if not rows:
            logger.info(f"No duplicate groups found among {len(groups)} groups")
            result.outcome = RunOutcome.NO_DUPLICATES
            return

        result.written.append(write_approval_store(self.options.approval_path, rows))
        logger.info(
            f"Review {self.options.approval_path}, set SuggestedAction to DELETE for groups to remove, "
            f"then run again to apply"
        )
        result.outcome = RunOutcome.REPORT_WRITTEN

    def _confirm(self, count: int) -> bool:
        if self.options.assume_yes:
            logger.info("Confirmation bypassed")
            return True
        if self.prompt is None:
            logger.warning("No confirmation prompt available - refusing to delete")
            return False
        return should_proceed(False, self.prompt(count))

    def _delete_row(self, row: ApprovalRow) -> DeletionSuccess:
        if not row.group_id:
            raise MissingIdentifierError(row.group_name)

        if self.options.dry_run:
            logger.info(f"[DRY RUN] Would delete group '{row.group_name}' ({row.group_id})")
            return DeletionSuccess(row.group_id, row.group_name, STATUS_DRY_RUN)

        self._require_client().delete(row.group_id)
        return DeletionSuccess(row.group_id, row.group_name, STATUS_DELETED)

    def _apply(self, result: WorkflowResult) -> None:
        rows = read_approval_store(self.options.approval_path)
        approved = select_approved(rows)
        result.approved = len(approved)
        logger.info(f"{len(approved)} of {len(rows)} rows approved for deletion")

        if not approved:
            result.outcome = RunOutcome.NOTHING_TO_DELETE
            return

        if not self._confirm(len(approved)):
            logger.warning("Deletion cancelled by operator - no changes made")
            result.outcome = RunOutcome.CANCELLED
            return

        try:
            for index, row in enumerate(approved, start=1):
                try:
                    result.successes.append(self._delete_row(row))
                except (MissingIdentifierError, DirectoryAPIError) as e:
                    logger.error(f"[{index}/{len(approved)}] Failed to delete '{row.group_name}': {e}")
                    result.failures.append(DeletionFailure(row.group_id, row.group_name, str(e)))
                except Exception as e:
                    logger.exception(f"[{index}/{len(approved)}] Unexpected error deleting '{row.group_name}'")
                    result.failures.append(
                        DeletionFailure(row.group_id, row.group_name, f"{type(e).__name__}: {e}")
                    )
        finally:
            # Deletions already made must be recorded even if the loop is interrupted.
            deleted_path, failed_path = result_paths(
                self.options.results_dir, self.now().strftime("%Y%m%d_%H%M%S")
            )
            result.written.append(write_deleted_results(deleted_path, result.successes))
            result.written.append(write_failed_results(failed_path, result.failures))

        logger.info(
            f"Apply complete: {len(result.successes)} "
            f"{'would be deleted' if self.options.dry_run else 'deleted'}, "
            f"{len(result.failures)} failed"
        )
        result.outcome = RunOutcome.DELETIONS_PROCESSED
