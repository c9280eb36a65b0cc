"""Extract per-file diffs for a commit."""

import re
from typing import List, Optional, Pattern, Union

from .commit import CommitRecord, FileChange
from .git_utils import GitUtils


def truncate_diff(diff: str, max_bytes: int) -> str:
    """
    Cut ``diff`` to at most ``max_bytes`` UTF-8 bytes.

    This is a plain byte slice and may end mid-line. A multi-byte character
    split by the cut is dropped, so applying the function twice gives the
    same result as applying it once.
    """
    encoded = diff.encode("utf-8")
    if len(encoded) <= max_bytes:
        return diff
    return encoded[: max(max_bytes, 0)].decode("utf-8", errors="ignore")


def compile_exclude_pattern(
    pattern: Optional[Union[str, Pattern[str]]]
) -> Optional[Pattern[str]]:
    """Compile an exclusion regex. Raises ``re.error`` on invalid patterns."""
    if pattern is None or pattern == "":
        return None
    if isinstance(pattern, str):
        return re.compile(pattern)
    return pattern


class DiffExtractor:
    """Compute the changed files of a commit against its first parent."""

    def __init__(
        self,
        git: GitUtils,
        max_diff_length: int = 2048,
        exclude_pattern: Optional[Union[str, Pattern[str]]] = None,
        logger=None,
    ):
        """
        Args:
            git: Git utilities for the source repository
            max_diff_length: Byte cap applied to each file's diff
            exclude_pattern: Regex; matching paths are left out
            logger: Optional ActivityLogger
        """
        self.git = git
        self.max_diff_length = max_diff_length
        self.exclude_pattern = compile_exclude_pattern(exclude_pattern)
        self.logger = logger

    def is_excluded(self, path: str) -> bool:
        if self.exclude_pattern is None:
            return False
        return self.exclude_pattern.search(path) is not None

    def extract(
        self, commit: Union[CommitRecord, str], parent: Optional[str] = None
    ) -> List[FileChange]:
        """
        Diff a commit against its first parent (or the empty tree).

        Args:
            commit: CommitRecord, or a commit id together with ``parent``
            parent: First parent id when ``commit`` is a plain id

        Returns:
            Changed files in git's path order

        Raises:
            GitOperationError: If either tree cannot be resolved
        """
        if isinstance(commit, CommitRecord):
            commit_id, parent = commit.commit_id, commit.parent_id
        else:
            commit_id = commit

        files: List[FileChange] = []
        excluded = 0

        for change in self.git.diff_tree(parent, commit_id):
            path = change.new_path or change.old_path
            if not path:
                continue

            if self.is_excluded(path):
                excluded += 1
                continue

            patch = self.git.diff_file(parent, commit_id, path)
            files.append(
                FileChange(path=path, diff=truncate_diff(patch, self.max_diff_length))
            )

        if excluded and self.logger:
            self.logger.info(
                f"Excluded {excluded} files matching pattern from commit {commit_id[:8]}",
                commit_id=commit_id,
                excluded=excluded,
            )

        return files
