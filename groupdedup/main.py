#!/usr/bin/env python3
"""
Group deduplication - entry point.

Finds duplicate and near-duplicate groups in the directory and deletes the
ones a reviewer approved. The phase is picked from the approval file:

    groupdedup run            # no approval file yet -> discovery, writes it
    (edit SuggestedAction to DELETE for the groups to remove)
    groupdedup run            # approval file present -> apply
    groupdedup run --dry-run  # apply without deleting anything
    groupdedup status
"""

import sys
from collections import Counter
from pathlib import Path

import click
from loguru import logger
from rich.console import Console
from rich.table import Table

from groupdedup.config import settings
from groupdedup.connectors.directory import DirectoryClient
from groupdedup.deduplication.builder import summarize
from groupdedup.stores import ApprovalStoreError, read_approval_store
from groupdedup.utils.http import DirectoryAPIError
from groupdedup.utils.logging import run_log_path, setup_logging
from groupdedup.workflow import (
    CONFIRMATION_WORD,
    Phase,
    RunOutcome,
    Workflow,
    WorkflowOptions,
    WorkflowResult,
    decide_phase,
)


console = Console()


def _prompt_for_confirmation(count: int) -> str:
    console.print(f"\n[bold red]About to delete {count} group(s) from the directory.[/bold red]")
    return click.prompt(f"Type {CONFIRMATION_WORD} to continue", default="", show_default=False)


def _print_discovery(result: WorkflowResult, approval_file: Path) -> None:
    if result.outcome == RunOutcome.NO_DUPLICATES:
        console.print(f"[green]No duplicate groups found among {result.groups_fetched} groups.[/green]")
        return

    table = Table(title="Duplicate Summary")
    table.add_column("Mode")
    table.add_column("Sets")
    table.add_column("Rows")
    table.add_column("Keep")
    table.add_column("Delete")
    table.add_column("Review")

    for mode, counts in summarize(result.duplicate_rows).items():
        table.add_row(
            mode,
            str(counts["sets"]),
            str(counts["rows"]),
            str(counts.get("KEEP", 0)),
            str(counts.get("DELETE", 0)),
            str(counts.get("REVIEW", 0)),
        )

    console.print(table)
    console.print(f"\nReport written to [bold]{approval_file}[/bold]")
    console.print("Set SuggestedAction to DELETE for the groups to remove, then run again.")


def _print_apply(result: WorkflowResult, dry_run: bool) -> None:
    if result.outcome == RunOutcome.NOTHING_TO_DELETE:
        console.print("[yellow]No rows marked DELETE - nothing to do.[/yellow]")
        return
    if result.outcome == RunOutcome.CANCELLED:
        console.print("[yellow]Cancelled - no changes made.[/yellow]")
        return

    label = "Would delete" if dry_run else "Deleted"
    console.print(f"\n[bold]{label}:[/bold] [green]{len(result.successes)}[/green]")
    console.print(f"[bold]Failed:[/bold] [red]{len(result.failures)}[/red]")

    if result.failures:
        table = Table(title="Failures")
        table.add_column("Group")
        table.add_column("Id")
        table.add_column("Reason")
        for failure in result.failures:
            table.add_row(failure.group_name, failure.group_id or "-", failure.reason[:80])
        console.print(table)

    for path in result.written:
        console.print(f"  {path}")


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx, debug):
    """Find and remove duplicate directory groups"""
    ctx.ensure_object(dict)
    ctx.obj["log_level"] = "DEBUG" if debug else None
    if debug:
        setup_logging(level="DEBUG")


@cli.command()
@click.option("--org-url", default=lambda: settings.directory.org_url, help="Directory base URL")
@click.option("--api-token", default=None, help="API token (defaults to OKTA_API_TOKEN)")
@click.option(
    "--approval-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=lambda: settings.pipeline.approval_file,
    help="Approval CSV; its presence switches the run to apply",
)
@click.option(
    "--results-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=lambda: settings.pipeline.results_dir,
    help="Directory for deleted/failed result files",
)
@click.option(
    "--log-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=lambda: settings.pipeline.log_dir,
    help="Directory for run logs",
)
@click.option(
    "--include-app-groups",
    is_flag=True,
    default=lambda: settings.directory.include_app_groups,
    help="Also consider application-managed groups",
)
@click.option("--dry-run", is_flag=True, help="Apply: record what would be deleted without deleting")
@click.option("--yes", "assume_yes", is_flag=True, help="Apply: skip the confirmation prompt")
@click.pass_context
def run(
    ctx,
    org_url: str,
    api_token: str | None,
    approval_file: Path,
    results_dir: Path,
    log_dir: Path,
    include_app_groups: bool,
    dry_run: bool,
    assume_yes: bool,
):
    """
    Run discovery or apply, depending on whether the approval file exists.
    """
    setup_logging(level=ctx.obj.get("log_level"), log_file=run_log_path(log_dir))

    phase = decide_phase(approval_file)
    console.print(f"\n[bold blue]Group Deduplication - {phase.value}[/bold blue]")
    console.print(f"Approval file: {approval_file}")
    if phase == Phase.APPLY:
        console.print(f"Dry run: {dry_run}")
    console.print()

    api_token = api_token or settings.directory.api_token
    needs_api = phase == Phase.DISCOVERY or not dry_run

    client = None
    if needs_api:
        if not org_url or not api_token:
            console.print("[red]Both --org-url and an API token (OKTA_API_TOKEN) are required.[/red]")
            sys.exit(1)
        client = DirectoryClient(
            org_url=org_url,
            api_token=api_token,
            page_size=settings.directory.page_size,
            timeout=settings.pipeline.http_timeout,
            max_attempts=settings.pipeline.http_max_retries,
            rate_limit_threshold=settings.pipeline.rate_limit_threshold,
            backoff_initial=settings.pipeline.backoff_initial,
            backoff_max=settings.pipeline.backoff_max,
            user_agent=settings.directory.user_agent,
        )

    options = WorkflowOptions(
        approval_path=approval_file,
        results_dir=results_dir,
        include_app_groups=include_app_groups,
        dry_run=dry_run,
        assume_yes=assume_yes,
    )

    try:
        result = Workflow(options, client=client, prompt=_prompt_for_confirmation).run(phase)
    except (DirectoryAPIError, ApprovalStoreError) as e:
        console.print(f"[red]Run aborted: {e}[/red]")
        logger.exception(f"{phase.value} run aborted")
        sys.exit(1)
    finally:
        if client is not None:
            client.close()

    if phase == Phase.DISCOVERY:
        _print_discovery(result, approval_file)
    else:
        _print_apply(result, dry_run)


@cli.command()
@click.option(
    "--approval-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=lambda: settings.pipeline.approval_file,
    help="Approval CSV to inspect",
)
def status(approval_file: Path):
    """Show which phase the next run will perform."""
    phase = decide_phase(approval_file)
    console.print(f"\n[bold blue]Next run: {phase.value}[/bold blue]\n")

    if phase == Phase.DISCOVERY:
        console.print(f"No approval file at {approval_file} - the next run will scan for duplicates.")
        return

    try:
        rows = read_approval_store(approval_file)
    except ApprovalStoreError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    counts = Counter(row.suggested_action for row in rows)

    table = Table()
    table.add_column("SuggestedAction")
    table.add_column("Rows")
    for action, count in sorted(counts.items()):
        table.add_row(action or "[dim](blank)[/dim]", str(count))

    console.print(table)
    console.print(f"\n{counts.get('DELETE', 0)} group(s) will be deleted by the next run.")


if __name__ == "__main__":
    cli()
