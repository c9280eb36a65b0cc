"""Replay a history into a fresh repository with rewritten messages."""

import os
import shutil
import stat
import tempfile
from pathlib import Path
from typing import Callable, Dict, Iterable, Optional

from .checkpoint_journal import CheckpointJournal
from .commit import CommitRecord
from .exceptions import GitOperationError, ReplayError
from .git_utils import GitUtils
from .progress import ProgressContext


class ReplayEngine:
    """
    Recreate every commit of a source repository in a new repository.

    Each commit's full tree is materialized and committed on top of the
    previous one with the original author and committer identity and dates.
    Only the message differs, and only for commits in the rewrite map.
    """

    def __init__(self, source_git: GitUtils, target_path: Path, logger=None):
        self.source_git = source_git
        self.target_path = Path(target_path)
        self.logger = logger
        self.target_git: Optional[GitUtils] = None

    def create_target_repository(self, default_branch: Optional[str] = None) -> GitUtils:
        """
        Initialize the target repository and mirror the source's setup.

        Raises:
            ReplayError: If the target directory exists or init fails
        """
        if self.target_path.exists():
            raise ReplayError(f"Directory {self.target_path} already exists")

        try:
            self.target_git = GitUtils.init_repository(
                self.target_path, default_branch=default_branch, logger=self.logger
            )
        except GitOperationError as e:
            raise ReplayError(f"Failed to create new repository: {e}") from e

        if self.logger:
            self.logger.info(f"Created new repository at {self.target_path}")

        self.configure_from_source(default_branch)
        return self.target_git

    def configure_from_source(self, branch: Optional[str] = None) -> None:
        """
        Copy the branch name and ``origin`` URL from the source.

        Failures are logged as warnings; the replay can proceed without them.
        """
        target = self._require_target()

        try:
            branch = branch or self.source_git.get_current_branch()
            target.set_head_branch(branch)
        except GitOperationError as e:
            if self.logger:
                self.logger.warning(f"Failed to set branch name in new repository: {e}")

        try:
            remote_url = self.source_git.get_remote_url("origin")
            if remote_url:
                target.add_remote("origin", remote_url)
                if self.logger:
                    self.logger.info(f"Added remote origin: {remote_url}")
        except GitOperationError as e:
            if self.logger:
                self.logger.warning(f"Failed to copy remote to new repository: {e}")

    def apply_commit(self, commit: CommitRecord, message: str) -> bool:
        """
        Recreate one commit in the target repository.

        Returns:
            True if the commit was created, or if there was nothing to commit

        Raises:
            ReplayError: If the tree cannot be materialized or committed
        """
        target = self._require_target()

        with tempfile.TemporaryDirectory(prefix="gitrewrite-") as scratch:
            scratch_path = Path(scratch)
            try:
                self._materialize_tree(commit.commit_id, scratch_path)
                self._clear_working_tree()
                shutil.copytree(
                    scratch_path, self.target_path, symlinks=True, dirs_exist_ok=True
                )
            except (OSError, GitOperationError) as e:
                raise ReplayError(
                    f"Failed to stage files of commit {commit.short_id}: {e}"
                ) from e

        try:
            target.add_all()
            new_id = target.create_commit(
                message,
                author_name=commit.author_name,
                author_email=commit.author_email,
                author_date=commit.author_date,
                committer_name=commit.committer_name,
                committer_email=commit.committer_email,
                committer_date=commit.committer_date,
            )
        except GitOperationError as e:
            raise ReplayError(f"Failed to commit {commit.short_id}: {e}") from e

        if new_id is None and self.logger:
            self.logger.info(
                f"Nothing to commit for {commit.short_id}", commit_id=commit.commit_id
            )
        return True

    def replay(
        self,
        commits: Iterable[CommitRecord],
        rewrite_map: Dict[str, str],
        journal: Optional[CheckpointJournal] = None,
        progress: Optional[ProgressContext] = None,
        should_stop: Optional[Callable[[], bool]] = None,
    ) -> int:
        """
        Replay commits oldest first.

        A failing commit is logged and skipped. Commits in ``rewrite_map`` get
        their new message and are marked applied in the journal.

        Returns:
            Number of commits replayed
        """
        applied = 0
        for commit in commits:
            if should_stop and should_stop():
                if self.logger:
                    self.logger.warning("Stop requested, ending replay")
                break

            rewritten = rewrite_map.get(commit.commit_id)
            message = rewritten if rewritten is not None else commit.message

            if progress:
                progress.set_current(commit.commit_id, "Applying commit")

            try:
                self.apply_commit(commit, message)
            except ReplayError as e:
                if self.logger:
                    self.logger.error(
                        f"Failed to apply commit {commit.short_id}: {e}",
                        commit_id=commit.commit_id,
                    )
                if progress:
                    progress.fail()
                continue

            applied += 1
            if rewritten is not None:
                if journal is not None:
                    journal.mark_applied(commit.commit_id)
                if self.logger:
                    self.logger.log_commit_applied(commit.commit_id, message)
            if progress:
                progress.succeed()

        return applied

    def _require_target(self) -> GitUtils:
        if self.target_git is None:
            raise ReplayError("Target repository has not been created")
        return self.target_git

    def _materialize_tree(self, commit_id: str, dest: Path) -> None:
        entries = [e for e in self.source_git.list_tree(commit_id) if not e.is_submodule]
        blobs = self.source_git.read_blobs([e.sha for e in entries])

        for entry in entries:
            path = dest / entry.path
            path.parent.mkdir(parents=True, exist_ok=True)
            content = blobs[entry.sha]

            if entry.is_symlink:
                os.symlink(os.fsdecode(content), path)
                continue

            path.write_bytes(content)
            if entry.is_executable:
                mode = path.stat().st_mode
                path.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)

    def _clear_working_tree(self) -> None:
        for child in self.target_path.iterdir():
            if child.name == ".git":
                continue
            if child.is_dir() and not child.is_symlink():
                shutil.rmtree(child)
            else:
                child.unlink()
