"""Tests for per-file diff extraction."""

from pathlib import Path

import pytest

from gitrewrite.core.diff_extractor import (
    DiffExtractor,
    compile_exclude_pattern,
    truncate_diff,
)
from gitrewrite.core.git_utils import GitUtils

from conftest import commit_ids


class TestTruncateDiff:
    """Test byte truncation of diffs."""

    def test_short_diff_unchanged(self):
        assert truncate_diff("+hello\n", 100) == "+hello\n"

    def test_cut_to_byte_limit(self):
        """Test diffs are cut to exactly max bytes."""
        result = truncate_diff("x" * 50, 10)
        assert result == "x" * 10

    def test_multibyte_character_not_split(self):
        """Test a character split by the cut is dropped."""
        # "é" is two bytes in UTF-8; the cut falls inside the third one
        result = truncate_diff("éééé", 5)

        assert result == "éé"
        assert len(result.encode("utf-8")) <= 5

    def test_idempotent(self):
        """Test truncating twice equals truncating once."""
        diff = "+ünïcödé line\n" * 20
        once = truncate_diff(diff, 37)
        assert truncate_diff(once, 37) == once

    def test_zero_limit(self):
        assert truncate_diff("abc", 0) == ""


class TestExcludePattern:
    """Test exclusion regex handling."""

    def test_empty_pattern(self):
        assert compile_exclude_pattern(None) is None
        assert compile_exclude_pattern("") is None

    def test_invalid_pattern(self):
        import re

        with pytest.raises(re.error):
            compile_exclude_pattern("([")


class TestDiffExtractor:
    """Test extracting changed files of a commit."""

    def test_root_commit(self, git_utils: GitUtils, three_commit_repo: Path):
        """Test the root commit is diffed against the empty tree."""
        root = commit_ids(three_commit_repo)[0]
        files = DiffExtractor(git_utils).extract(root, None)

        assert [f.path for f in files] == ["a.txt"]
        assert "+alpha" in files[0].diff

    def test_modification(self, git_utils: GitUtils, three_commit_repo: Path):
        first, second, _ = commit_ids(three_commit_repo)
        files = DiffExtractor(git_utils).extract(second, first)

        assert [f.path for f in files] == ["a.txt"]
        assert "+beta" in files[0].diff
        assert "-alpha" not in files[0].diff

    def test_deleted_file_uses_old_path(self, git_repo: Path, make_git_commit):
        """Test deletions are reported under their pre-change path."""
        first = make_git_commit(git_repo, "add", {"gone.txt": "bye\n"})
        second = make_git_commit(git_repo, "rm", deleted=["gone.txt"])

        files = DiffExtractor(GitUtils(git_repo)).extract(second, first)
        assert [f.path for f in files] == ["gone.txt"]
        assert "-bye" in files[0].diff

    def test_diff_truncated(self, git_repo: Path, make_git_commit):
        """Test each file's diff respects max_diff_length."""
        parent = commit_ids(git_repo)[-1]
        commit = make_git_commit(git_repo, "big", {"big.txt": "line\n" * 1000})

        files = DiffExtractor(GitUtils(git_repo), max_diff_length=64).extract(
            commit, parent
        )
        assert len(files[0].diff.encode("utf-8")) == 64

    def test_exclusion(self, git_repo: Path, make_git_commit, activity_logger):
        """Test excluded paths are left out and counted in the log."""
        parent = commit_ids(git_repo)[-1]
        commit = make_git_commit(
            git_repo,
            "deps",
            {"package-lock.json": "{}\n", "src/app.js": "run()\n", "yarn.lock": "x\n"},
        )

        extractor = DiffExtractor(
            GitUtils(git_repo),
            exclude_pattern=r"(package-lock\.json|\.lock)$",
            logger=activity_logger,
        )
        files = extractor.extract(commit, parent)

        assert [f.path for f in files] == ["src/app.js"]
        events = [e for e in activity_logger.get_recent_events() if "Excluded" in e.message]
        assert events and events[-1].data["excluded"] == 2

    def test_empty_commit(self, git_repo: Path, make_git_commit):
        """Test a commit without changes has no files."""
        parent = commit_ids(git_repo)[-1]
        commit = make_git_commit(git_repo, "empty")

        assert DiffExtractor(GitUtils(git_repo)).extract(commit, parent) == []
