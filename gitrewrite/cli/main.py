"""Main CLI entry point for gitrewrite."""

import sys
import time
from pathlib import Path
from typing import Any, Dict, Optional

import click
from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from gitrewrite import __version__
from gitrewrite.config.loader import load_config
from gitrewrite.core.exceptions import GitRewriteError
from gitrewrite.core.rewrite_runner import RewriteRunner, RunMode, RunSummary, select_mode
from gitrewrite.tracking.activity_logger import ActivityLogger

console = Console()

# Seconds to keep a fatal error on screen before exiting
FATAL_EXIT_DELAY = 2.0

# Progress refresh interval in seconds
POLL_INTERVAL = 0.1


@click.command()
@click.option(
    "--repo",
    "repo",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    required=True,
    help="Path to the git repository",
)
@click.option(
    "--max-length",
    type=int,
    default=None,
    help="Maximum length of commit messages to consider for rewriting [default: 10]",
)
@click.option("--model", default=None, help="Ollama model to use [default: qwen2.5:14b]")
@click.option(
    "--temperature",
    type=click.FloatRange(0.0, 1.0),
    default=None,
    help="Temperature for model generation (0.0-1.0) [default: 0.1]",
)
@click.option(
    "--max-diff",
    type=int,
    default=None,
    help="Maximum bytes of each file's diff sent to the model [default: 2048]",
)
@click.option(
    "--max-files",
    type=int,
    default=None,
    help="Files in a commit before it is skipped or summarized [default: 200]",
)
@click.option(
    "--dry-run",
    is_flag=True,
    help="Generate new commit messages but don't apply them",
)
@click.option(
    "--output",
    "output_file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Changes file (default: <repo>-rewrite-changes.json)",
)
@click.option(
    "--apply-changes",
    "apply_changes",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Apply a changes file directly without using Ollama",
)
@click.option(
    "--exclude",
    default=None,
    help="Regex pattern of files left out of diffs",
)
@click.option(
    "--summarize-oversized",
    is_flag=True,
    help="Summarize commits with too many files in one line instead of skipping them",
)
@click.option(
    "--debug-log",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write a JSONL debug log to this file",
)
@click.option(
    "--output-repo",
    "output_repo",
    default=None,
    help="Name of the new repository (default: <repo>-rewritten)",
)
@click.option(
    "--in-place",
    is_flag=True,
    help="Reword commits in the repository itself instead of creating a new one",
)
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Path to configuration file",
)
@click.option("--ollama-host", default=None, help="Ollama server URL")
@click.option("--verbose", "-v", is_flag=True, help="Show every git command")
@click.version_option(__version__, prog_name="gitrewrite")
def cli(
    repo: Path,
    max_length: Optional[int],
    model: Optional[str],
    temperature: Optional[float],
    max_diff: Optional[int],
    max_files: Optional[int],
    dry_run: bool,
    output_file: Optional[Path],
    apply_changes: Optional[Path],
    exclude: Optional[str],
    summarize_oversized: bool,
    debug_log: Optional[Path],
    output_repo: Optional[str],
    in_place: bool,
    yes: bool,
    config_path: Optional[Path],
    ollama_host: Optional[str],
    verbose: bool,
) -> None:
    """Rewrite short commit messages across a repository's history.

    Commits whose message is at most --max-length characters get a new
    conventional-commit message from a local Ollama model. By default the
    history is replayed into a new sibling repository; --in-place rewords the
    repository itself.

    \b
    Examples:
        gitrewrite --repo ./app --dry-run            # Write the changes file only
        gitrewrite --repo ./app                      # Create ./app-rewritten
        gitrewrite --repo ./app --apply-changes app-rewrite-changes.json
        gitrewrite --repo ./app --in-place --yes     # Rewrite ./app itself
    """
    overrides: Dict[str, Any] = {
        "generation": {
            "model": model,
            "temperature": temperature,
            "ollama_host": ollama_host,
        },
        "selection": {
            "max_msg_length": max_length,
            "max_diff_length": max_diff,
            "max_files_per_commit": max_files,
            "summarize_oversized": True if summarize_oversized else None,
            "exclude_pattern": exclude,
        },
        "output": {
            "output_file": str(output_file) if output_file else None,
            "output_repo_name": output_repo,
        },
        "logging": {"debug_log": str(debug_log) if debug_log else None},
    }

    try:
        config = load_config(repo_path=repo, config_path=config_path, overrides=overrides)
    except GitRewriteError as e:
        _fatal(str(e))

    logger = ActivityLogger(
        log_file=config.get_debug_log_path(), console=console, verbose=verbose
    )

    mode = select_mode(dry_run, apply_changes is not None, in_place)
    runner = RewriteRunner(
        repo,
        config,
        mode,
        changes_file=apply_changes,
        journal_path=output_file,
        logger=logger,
    )

    try:
        runner.prepare()
    except GitRewriteError as e:
        _fatal(str(e))

    if not yes and not _confirm(runner):
        console.print("[yellow]Operation cancelled[/yellow]")
        return

    runner.install_signal_handlers()
    try:
        runner.start()
        _show_progress(runner)
        summary = runner.result()
    except GitRewriteError as e:
        _fatal(str(e))
    finally:
        runner.restore_signal_handlers()

    _display_summary(summary)


def _confirm(runner: RewriteRunner) -> bool:
    if runner.mode.replays:
        return click.confirm(
            f"Create new repository at {runner.output_repo}?", default=False
        )
    if runner.mode.rewords:
        return click.confirm(
            f"Rewrite the history of {runner.repo_path} in place?", default=False
        )
    return True


def _show_progress(runner: RewriteRunner) -> None:
    """Render the worker's progress until it finishes."""
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(bar_width=30),
        MofNCompleteColumn(),
        TextColumn("[dim]{task.fields[commit]}"),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task("Starting...", total=None, commit="")

        while not runner.wait(POLL_INTERVAL):
            snapshot = runner.progress.snapshot()
            progress.update(
                task,
                description=snapshot.phase or "Starting...",
                total=snapshot.total or None,
                completed=snapshot.completed,
                commit=(snapshot.current_commit or "")[:8],
            )


def _display_summary(summary: RunSummary) -> None:
    table = Table(title="gitrewrite summary", show_header=False)
    table.add_column("Item", style="cyan")
    table.add_column("Value", style="white")

    table.add_row("Mode", summary.mode.value)
    table.add_row("Commits in history", str(summary.total_commits))
    table.add_row("Rewrite candidates", str(summary.candidates))
    if summary.mode.generates:
        table.add_row("Already journaled", str(summary.already_journaled))
        table.add_row("Messages generated", str(summary.rewritten))
        table.add_row("Skipped", str(summary.skipped))
    if summary.mode.replays:
        table.add_row("Commits replayed", str(summary.replayed))
        table.add_row("New repository", str(summary.output_repo))
    if summary.mode.rewords:
        table.add_row("Commits reworded", str(summary.reworded))
    if summary.journal_path:
        table.add_row("Changes file", str(summary.journal_path))

    console.print(table)

    if summary.interrupted:
        console.print("[yellow]Run was interrupted; rerun to resume[/yellow]")
    if summary.mode == RunMode.DRY_RUN and summary.journal_path:
        console.print(
            f"[dim]Apply later with: gitrewrite --repo <repo> "
            f"--apply-changes {summary.journal_path}[/dim]"
        )


def _fatal(message: str) -> None:
    """Report a startup or run failure and exit with status 1."""
    console.print(f"[red]Error:[/red] {message}")
    time.sleep(FATAL_EXIT_DELAY)
    sys.exit(1)


def main() -> None:
    """Main entry point for the CLI."""
    try:
        cli()
    except GitRewriteError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        sys.exit(130)
    except Exception as e:
        console.print(f"[red]Unexpected error:[/red] {e}")
        if "--verbose" in sys.argv or "-v" in sys.argv:
            console.print_exception()
        sys.exit(1)


if __name__ == "__main__":
    main()
