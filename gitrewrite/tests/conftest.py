"""Shared pytest fixtures and utilities for gitrewrite tests."""

import os
import subprocess
from pathlib import Path
from typing import Callable, Dict, Generator, Optional

import pytest

from gitrewrite.config.models import GitRewriteConfig
from gitrewrite.core import CheckpointJournal, GitUtils
from gitrewrite.tracking.activity_logger import ActivityLogger
from tests.mocks import MockOllamaClient, MockResponseLibrary

# Base timestamp for generated commits (2023-11-14 22:13:20 UTC)
BASE_TIMESTAMP = 1700000000


def run_git(repo_path: Path, *args: str, env: Optional[Dict[str, str]] = None) -> str:
    """Run git in a test repository and return stdout."""
    run_env = None
    if env:
        run_env = os.environ.copy()
        run_env.update(env)
    result = subprocess.run(
        ["git", *args],
        cwd=repo_path,
        check=True,
        capture_output=True,
        text=True,
        env=run_env,
    )
    return result.stdout


# ============================================================================
# Repository Fixtures
# ============================================================================


def _init_repo(repo_path: Path) -> Path:
    repo_path.mkdir(parents=True, exist_ok=True)
    run_git(repo_path, "init")
    run_git(repo_path, "symbolic-ref", "HEAD", "refs/heads/main")
    run_git(repo_path, "config", "init.defaultBranch", "main")
    run_git(repo_path, "config", "user.name", "Test User")
    run_git(repo_path, "config", "user.email", "test@example.com")
    run_git(repo_path, "config", "commit.gpgsign", "false")
    return repo_path


@pytest.fixture
def empty_git_repo(tmp_path: Path) -> Generator[Path, None, None]:
    """Create a git repository without commits.

    Yields:
        Path to the git repository
    """
    yield _init_repo(tmp_path / "empty_repo")


@pytest.fixture
def git_repo(tmp_path: Path) -> Generator[Path, None, None]:
    """Create a temporary git repository for testing.

    The repository is initialized with:
    - Branch ``main`` (also set as init.defaultBranch)
    - Git config (user.name and user.email)
    - Initial commit with README.md

    Yields:
        Path to the git repository
    """
    repo_path = _init_repo(tmp_path / "test_repo")

    readme = repo_path / "README.md"
    readme.write_text("# Test Repository\n\nGenerated for testing.\n")
    run_git(repo_path, "add", ".")
    run_git(repo_path, "commit", "-m", "Initial commit of the test repository")

    yield repo_path


@pytest.fixture
def make_git_commit() -> Callable[..., str]:
    """Factory committing files with deterministic dates.

    Returns:
        Function ``(repo, message, files, deleted=(), offset=0)`` returning
        the new commit id
    """
    counter = {"n": 0}

    def _make(
        repo_path: Path,
        message: str,
        files: Optional[Dict[str, str]] = None,
        deleted=(),
        author: str = "Test User",
        email: str = "test@example.com",
    ) -> str:
        for name, content in (files or {}).items():
            path = repo_path / name
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content)
        for name in deleted:
            (repo_path / name).unlink()

        counter["n"] += 1
        date = f"{BASE_TIMESTAMP + counter['n'] * 3600} +0200"
        run_git(repo_path, "add", "-A")
        run_git(
            repo_path,
            "commit",
            "--allow-empty",
            "-m",
            message,
            env={
                "GIT_AUTHOR_NAME": author,
                "GIT_AUTHOR_EMAIL": email,
                "GIT_AUTHOR_DATE": date,
                "GIT_COMMITTER_DATE": date,
            },
        )
        return run_git(repo_path, "rev-parse", "HEAD").strip()

    return _make


@pytest.fixture
def three_commit_repo(tmp_path: Path, make_git_commit) -> Generator[Path, None, None]:
    """Repository with three short-message commits.

    - ``init`` adds a.txt
    - ``fix`` modifies a.txt
    - ``wip`` adds b.txt

    Yields:
        Path to the git repository
    """
    repo_path = _init_repo(tmp_path / "app")
    make_git_commit(repo_path, "init", {"a.txt": "alpha\n"})
    make_git_commit(repo_path, "fix", {"a.txt": "alpha\nbeta\n"})
    make_git_commit(repo_path, "wip", {"b.txt": "gamma\n"})
    yield repo_path


@pytest.fixture
def git_utils(three_commit_repo: Path) -> GitUtils:
    """GitUtils bound to the three-commit repository."""
    return GitUtils(three_commit_repo)


def commit_ids(repo_path: Path) -> list:
    """Commit ids oldest first."""
    return run_git(repo_path, "rev-list", "--reverse", "HEAD").split()


def commit_messages(repo_path: Path) -> list:
    """Full commit messages oldest first."""
    return [
        run_git(repo_path, "log", "-1", "--format=%B", cid).rstrip("\n")
        for cid in commit_ids(repo_path)
    ]


# ============================================================================
# Component Fixtures
# ============================================================================


@pytest.fixture
def activity_logger(tmp_path: Path) -> ActivityLogger:
    """Silent logger writing a JSONL debug log into tmp_path."""
    return ActivityLogger(log_file=tmp_path / "logs" / "debug.jsonl")


@pytest.fixture
def config() -> GitRewriteConfig:
    """Default configuration with a rewrite threshold of 5 characters."""
    return GitRewriteConfig(selection={"max_msg_length": 5})


@pytest.fixture
def journal(tmp_path: Path) -> CheckpointJournal:
    return CheckpointJournal(tmp_path / "changes.json", flush_interval=5)


# ============================================================================
# Mock Fixtures
# ============================================================================


@pytest.fixture
def mock_client() -> Generator[MockOllamaClient, None, None]:
    """Provide a fresh MockOllamaClient for each test."""
    client = MockOllamaClient()
    yield client
    client.reset()


@pytest.fixture
def mock_responses():
    """Provide the MockResponseLibrary for easy access."""
    return MockResponseLibrary


# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests that run a complete rewrite"
    )
    config.addinivalue_line(
        "markers", "rebase: marks tests that run a real interactive rebase"
    )
