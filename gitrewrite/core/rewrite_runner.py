"""Orchestrate a complete rewrite run.

A run walks the history, generates messages for the candidates, journals
every decision and applies them, either by replaying into a new repository
or by rewording in place. The work happens on one worker thread while the
main thread renders progress and handles signals.
"""

import signal
import sys
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from gitrewrite.config.models import GitRewriteConfig

from .checkpoint_journal import CheckpointJournal
from .commit import CommitRecord
from .diff_extractor import DiffExtractor
from .exceptions import (
    GenerationError,
    GitOperationError,
    JournalError,
    RepositoryStateError,
)
from .git_utils import GitUtils
from .history_walker import HistoryWalker, WalkResult
from .message_generator import MessageGenerator
from .ollama_client import OllamaClient
from .progress import ProgressContext
from .replay_engine import ReplayEngine
from .reword_executor import InPlaceRewriteExecutor

INTERRUPTED_EXIT_CODE = 130


class RunMode(str, Enum):
    """What a run does with the decisions."""

    DRY_RUN = "dry_run"  # generate and journal only
    REPLAY = "replay"  # generate, journal, replay into a new repository
    APPLY_FILE = "apply_file"  # replay journaled decisions into a new repository
    IN_PLACE = "in_place"  # generate, journal, reword the source repository
    IN_PLACE_APPLY_FILE = "in_place_apply_file"  # reword from a journal

    @property
    def generates(self) -> bool:
        return self in (RunMode.DRY_RUN, RunMode.REPLAY, RunMode.IN_PLACE)

    @property
    def replays(self) -> bool:
        return self in (RunMode.REPLAY, RunMode.APPLY_FILE)

    @property
    def rewords(self) -> bool:
        return self in (RunMode.IN_PLACE, RunMode.IN_PLACE_APPLY_FILE)


def select_mode(dry_run: bool, apply_changes: bool, in_place: bool) -> RunMode:
    if apply_changes:
        return RunMode.IN_PLACE_APPLY_FILE if in_place else RunMode.APPLY_FILE
    if dry_run:
        return RunMode.DRY_RUN
    return RunMode.IN_PLACE if in_place else RunMode.REPLAY


def repo_name(repo_path: Path) -> str:
    """Base name of a repository directory."""
    return Path(repo_path).resolve().name


def default_journal_path(repo_path: Path) -> Path:
    return Path(f"{repo_name(repo_path)}-rewrite-changes.json")


def default_output_repo(repo_path: Path, name: Optional[str] = None) -> Path:
    """New repository location, a sibling of the source."""
    source = Path(repo_path).resolve()
    return source.parent / (name or f"{source.name}-rewritten")


@dataclass
class RunSummary:
    """Counters reported at the end of a run."""

    mode: RunMode
    total_commits: int = 0
    candidates: int = 0
    already_journaled: int = 0
    rewritten: int = 0
    skipped: int = 0
    replayed: int = 0
    reworded: int = 0
    journal_path: Optional[Path] = None
    output_repo: Optional[Path] = None
    interrupted: bool = False
    errors: List[str] = field(default_factory=list)

    def as_dict(self) -> Dict[str, object]:
        return {
            "mode": self.mode.value,
            "total_commits": self.total_commits,
            "candidates": self.candidates,
            "already_journaled": self.already_journaled,
            "rewritten": self.rewritten,
            "skipped": self.skipped,
            "replayed": self.replayed,
            "reworded": self.reworded,
            "journal_path": str(self.journal_path) if self.journal_path else None,
            "output_repo": str(self.output_repo) if self.output_repo else None,
            "interrupted": self.interrupted,
        }


class RewriteRunner:
    """
    Runs one rewrite session.

    Usage::

        runner = RewriteRunner(repo, config, mode, logger=logger)
        runner.prepare()        # startup checks, raise on fatal problems
        runner.start()          # worker thread
        while not runner.wait(0.1):
            render(runner.progress.snapshot())
        summary = runner.result()
    """

    def __init__(
        self,
        repo_path: Path,
        config: GitRewriteConfig,
        mode: RunMode,
        changes_file: Optional[Path] = None,
        journal_path: Optional[Path] = None,
        output_repo: Optional[Path] = None,
        client: Optional[OllamaClient] = None,
        logger=None,
    ):
        """
        Args:
            repo_path: Source repository
            config: Effective configuration
            mode: What to do with the decisions
            changes_file: Journal to apply (apply-from-file modes)
            journal_path: Journal written by generating modes
            output_repo: New repository location (replay modes)
            client: Ollama client (created from config when omitted)
            logger: Optional ActivityLogger
        """
        self.repo_path = Path(repo_path)
        self.config = config
        self.mode = mode
        self.logger = logger
        self.progress = ProgressContext()

        self.changes_file = Path(changes_file) if changes_file else None
        self.journal_path = Path(journal_path) if journal_path else None
        self.output_repo = Path(output_repo) if output_repo else None

        self._client = client
        self._owns_client = client is None
        self.git: Optional[GitUtils] = None
        self.journal: Optional[CheckpointJournal] = None
        self.default_branch: Optional[str] = None
        self.context_size = 0

        self._stop = threading.Event()
        self._done = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._summary = RunSummary(mode=mode)
        self._error: Optional[BaseException] = None
        self._previous_handlers: Dict[int, object] = {}

    # Startup

    def prepare(self) -> None:
        """
        Run the startup checks. Every failure here is fatal.

        Raises:
            GitRewriteError: Missing repository, wrong branch, unreachable
                Ollama, unknown context size or an existing output repository
        """
        self.git = GitUtils(self.repo_path, logger=self.logger)
        if self.logger:
            self.logger.log_session_start(str(self.repo_path), self.mode.value)

        self.default_branch = self._check_branch()

        if self.mode.generates:
            self._connect_ollama()

        if self.mode.replays:
            if self.output_repo is None:
                self.output_repo = default_output_repo(
                    self.repo_path, self.config.output.output_repo_name
                )
            if self.output_repo.exists():
                raise RepositoryStateError(
                    f"Output repository {self.output_repo} already exists"
                )
            self._summary.output_repo = self.output_repo

        if self.mode.rewords and self.git.has_uncommitted_changes():
            raise RepositoryStateError(
                "Repository has uncommitted changes; commit or stash them first"
            )

        if self.mode.generates:
            if self.journal_path is None:
                configured = self.config.output.output_file
                self.journal_path = (
                    Path(configured) if configured else default_journal_path(self.repo_path)
                )
            self.journal = CheckpointJournal(
                self.journal_path,
                flush_interval=self.config.journal.flush_interval,
                logger=self.logger,
            )
            self.journal.load()
        else:
            if self.changes_file is None:
                raise RepositoryStateError("No changes file given")
            self.journal = CheckpointJournal(self.changes_file, logger=self.logger)
            decisions = CheckpointJournal.load_decisions(self.changes_file)
            for decision in decisions:
                self.journal.record(decision)
            self.journal_path = self.changes_file
            if self.logger:
                self.logger.info(
                    f"Loaded {len(decisions)} changes from {self.changes_file}"
                )

        self._summary.journal_path = self.journal_path

    def _check_branch(self) -> str:
        current = self.git.get_current_branch()
        try:
            default = self.git.get_default_branch()
        except GitOperationError as e:
            if self.logger:
                self.logger.warning(
                    f"Failed to determine default branch, will use '{current}' "
                    f"as reference: {e}"
                )
            default = current

        if current != default:
            raise RepositoryStateError(
                f"Repository must be on the default branch ({default}) to proceed. "
                f"Currently on: {current}"
            )

        if self.logger:
            self.logger.info(f"Verified repository is on the default branch: {default}")
        return default

    def _connect_ollama(self) -> None:
        gen = self.config.generation
        if self._client is None:
            self._client = OllamaClient(
                host=gen.ollama_host,
                timeout=gen.request_timeout,
                max_retries=gen.max_retries,
                retry_delay=gen.retry_delay,
                logger=self.logger,
            )

        self._client.check_available()
        self.context_size = self._client.get_context_size(gen.model)
        if self.logger:
            self.logger.info(
                f"Using context size of {self.context_size} tokens for model {gen.model}"
            )

    # Worker

    def start(self) -> None:
        """Run the session on a worker thread."""
        self._thread = threading.Thread(target=self._worker, name="gitrewrite-worker")
        self._thread.daemon = True
        self._thread.start()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Wait for the worker; True once it has finished."""
        return self._done.wait(timeout)

    def request_stop(self) -> None:
        """Stop after the commit in progress."""
        self._stop.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop.is_set()

    def result(self) -> RunSummary:
        """
        Summary of a finished run.

        Raises:
            GitRewriteError: Whatever ended the worker early
        """
        if self._error is not None:
            raise self._error
        return self._summary

    def run(self) -> RunSummary:
        """Run the session on the calling thread."""
        self._worker()
        return self.result()

    def _worker(self) -> None:
        try:
            self._execute()
        except Exception as e:
            # Re-raised on the main thread by result()
            self._error = e
            if self.logger:
                self.logger.error(str(e))
        finally:
            self._summary.interrupted = self.stop_requested
            self._finish()
            self._done.set()

    def _finish(self) -> None:
        if self.journal is not None:
            try:
                self.journal.flush()
            except JournalError as e:
                self._summary.errors.append(str(e))
                if self.logger:
                    self.logger.error(str(e))

        if self._owns_client and self._client is not None:
            self._client.close()

        if self.logger:
            self.logger.log_session_end(self._summary.as_dict())

    def _execute(self) -> None:
        if self.git is None or self.journal is None:
            raise RepositoryStateError("prepare() must be called before running")

        walker = HistoryWalker(
            self.git,
            max_msg_length=self.config.selection.max_msg_length,
            max_diff_length=self.config.selection.max_diff_length,
            extractor=DiffExtractor(
                self.git,
                max_diff_length=self.config.selection.max_diff_length,
                exclude_pattern=self.config.selection.exclude_pattern,
                logger=self.logger,
            ),
            logger=self.logger,
        )

        self.progress.start_phase("Reading history", 0)
        walk = walker.walk(extract_diffs=self.mode.generates)
        self._summary.total_commits = len(walk.all_commits)
        self._summary.candidates = len(walk.to_rewrite)

        if self.logger:
            self.logger.info(
                f"Found {len(walk.all_commits)} commits, "
                f"{len(walk.to_rewrite)} with messages of at most "
                f"{self.config.selection.max_msg_length} characters"
            )

        if self.mode.generates:
            self.generate_decisions(walk.to_rewrite)
            self.journal.flush()

        if self.stop_requested:
            return

        if self.mode.replays:
            self.replay(walk)
        elif self.mode.rewords:
            self.reword_in_place()

    def generate_decisions(self, candidates: List[CommitRecord]) -> None:
        """Generate and journal a decision for every pending candidate."""
        pending = self.journal.filter_pending(candidates)
        self._summary.already_journaled = len(candidates) - len(pending)
        if self._summary.already_journaled and self.logger:
            self.logger.info(
                f"Skipping {self._summary.already_journaled} already processed commits"
            )

        gen = self.config.generation
        sel = self.config.selection
        generator = MessageGenerator(
            self._client,
            gen.model,
            context_size=self.context_size,
            temperature=gen.temperature,
            max_files_per_commit=sel.max_files_per_commit,
            summarize_oversized=sel.summarize_oversized,
            logger=self.logger,
        )

        self.progress.start_phase("Generating messages", len(pending))
        for commit in pending:
            if self.stop_requested:
                break

            self.progress.set_current(commit.commit_id, "Generating message")
            try:
                decision = generator.generate(commit)
            except GenerationError as e:
                self._summary.skipped += 1
                self.progress.skip()
                if self.logger:
                    self.logger.log_commit_skipped(commit.commit_id, str(e))
                continue

            try:
                self.journal.record(decision)
            except JournalError as e:
                if self.logger:
                    self.logger.error(
                        f"Failed to journal decision for {commit.short_id}: {e}",
                        commit_id=commit.commit_id,
                    )
                raise
            self._summary.rewritten += 1
            self.progress.succeed()
            if self.logger:
                self.logger.log_commit_rewritten(
                    commit.commit_id, decision.original_message, decision.rewritten_message
                )

    def replay(self, walk: WalkResult) -> None:
        engine = ReplayEngine(self.git, self.output_repo, logger=self.logger)
        engine.create_target_repository(self.default_branch)

        self.progress.start_phase("Replaying commits", len(walk.all_commits))
        self._summary.replayed = engine.replay(
            walk.all_commits,
            self.journal.rewrite_map(),
            journal=self.journal,
            progress=self.progress,
            should_stop=self._stop.is_set,
        )

        if self.logger:
            self.logger.success(
                f"Replayed {self._summary.replayed} of {len(walk.all_commits)} "
                f"commits into {self.output_repo}"
            )

    def reword_in_place(self) -> None:
        executor = InPlaceRewriteExecutor(self.git, logger=self.logger)
        results = executor.apply_decisions(
            self.journal.decisions(),
            journal=self.journal,
            progress=self.progress,
            should_stop=self._stop.is_set,
        )
        self._summary.reworded = len(results)

        if self.logger:
            self.logger.success(f"Reworded {len(results)} commits in place")

    # Signals

    def install_signal_handlers(self) -> None:
        """Stop, flush the journal and exit on SIGINT/SIGTERM. Main thread only."""
        for signum in (signal.SIGINT, signal.SIGTERM):
            self._previous_handlers[signum] = signal.signal(signum, self._handle_signal)

    def restore_signal_handlers(self) -> None:
        for signum, handler in self._previous_handlers.items():
            signal.signal(signum, handler)
        self._previous_handlers.clear()

    def _handle_signal(self, signum, frame) -> None:
        self.request_stop()
        if self.logger:
            self.logger.warning(
                f"Received signal {signum}, saving progress and exiting"
            )
        if self.journal is not None:
            try:
                self.journal.flush()
            except JournalError as e:
                if self.logger:
                    self.logger.error(str(e))
        sys.exit(INTERRUPTED_EXIT_CODE)

