"""Git utilities for history rewriting.

Thin, synchronous wrappers around the ``git`` command line. Every invocation
is reported to the activity logger so the debug log holds a full trace of
what was run against which repository.
"""

import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .exceptions import GitOperationError

# Field separator used in ``git log`` formats; never appears in commit metadata.
_FIELD_SEP = "\x1f"

_LOG_FORMAT = _FIELD_SEP.join(
    ["%H", "%P", "%an", "%ae", "%ad", "%cn", "%ce", "%cd", "%B"]
)


@dataclass(frozen=True)
class TreeEntry:
    """One entry of a recursive ``git ls-tree``."""

    mode: str
    object_type: str
    sha: str
    path: str

    @property
    def is_symlink(self) -> bool:
        return self.mode == "120000"

    @property
    def is_executable(self) -> bool:
        return self.mode == "100755"

    @property
    def is_submodule(self) -> bool:
        return self.object_type == "commit"


@dataclass(frozen=True)
class TreeChange:
    """One changed path between two trees."""

    status: str
    old_path: Optional[str]
    new_path: Optional[str]


class GitUtils:
    """
    Utility class for the git operations the rewrite engine needs.

    Provides safe wrappers around git commands for reading history, building
    commits with explicit identities, and driving interactive rebases.
    """

    def __init__(self, repo_path: Optional[Path] = None, logger=None):
        """
        Initialize Git utilities.

        Args:
            repo_path: Path to git repository (default: current directory)
            logger: Optional ActivityLogger that receives every git invocation

        Raises:
            GitOperationError: If repo_path is not a git repository
        """
        self.repo_path = Path(repo_path) if repo_path else Path.cwd()
        self.logger = logger
        self._empty_tree: Optional[str] = None

        if not self.repo_path.is_dir() or not self.is_git_repo():
            raise GitOperationError(f"Not a git repository: {self.repo_path}")

    @classmethod
    def init_repository(
        cls, path: Path, default_branch: Optional[str] = None, logger=None
    ) -> "GitUtils":
        """
        Create a new, empty git repository.

        Args:
            path: Directory to create (must not exist)
            default_branch: Name for the initial branch
            logger: Optional ActivityLogger

        Returns:
            GitUtils bound to the new repository

        Raises:
            GitOperationError: If the directory exists or init fails
        """
        path = Path(path)
        if path.exists():
            raise GitOperationError(f"Directory {path} already exists")

        try:
            path.mkdir(parents=True)
        except OSError as e:
            raise GitOperationError(f"Failed to create directory {path}: {e}") from e

        if logger:
            logger.log_shell_command("git", ["init"], path)

        result = subprocess.run(
            ["git", "init"],
            cwd=path,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            check=False,
        )
        if result.returncode != 0:
            raise GitOperationError(
                f"Failed to initialize git repository: {result.stdout}"
            )

        git = cls(path, logger=logger)
        if default_branch:
            git.set_head_branch(default_branch)
        return git

    def _run_git(
        self,
        *args: str,
        check: bool = True,
        env: Optional[Mapping[str, str]] = None,
        input: Optional[Union[str, bytes]] = None,
        binary: bool = False,
        merge_stderr: bool = False,
    ) -> Tuple[int, Union[str, bytes], Union[str, bytes]]:
        """
        Run a git command.

        Args:
            args: Git command arguments
            check: Raise error on non-zero exit
            env: Extra environment variables
            input: Data to send on stdin
            binary: Return raw bytes instead of text
            merge_stderr: Send stderr into stdout (combined output)

        Returns:
            Tuple of (returncode, stdout, stderr)

        Raises:
            GitOperationError: If command fails and check=True
        """
        if self.logger:
            self.logger.log_shell_command("git", args, self.repo_path)

        run_env = None
        if env:
            run_env = os.environ.copy()
            run_env.update(env)

        text_args = {} if binary else {"encoding": "utf-8", "errors": "replace"}

        try:
            result = subprocess.run(
                ["git", *args],
                cwd=self.repo_path,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT if merge_stderr else subprocess.PIPE,
                input=input,
                env=run_env,
                check=False,
                **text_args,
            )
        except FileNotFoundError as e:
            raise GitOperationError("Git command not found") from e
        except OSError as e:
            raise GitOperationError(f"Git operation failed: {e}") from e

        stderr = result.stderr if result.stderr is not None else (b"" if binary else "")

        if check and result.returncode != 0:
            detail = stderr if not merge_stderr else result.stdout
            if isinstance(detail, bytes):
                detail = detail.decode("utf-8", errors="replace")
            raise GitOperationError(
                f"Git command failed: git {' '.join(args)}\n" f"Error: {detail}"
            )

        return result.returncode, result.stdout, stderr

    def is_git_repo(self) -> bool:
        """Check if the repository path is inside a git repository."""
        returncode, _, _ = self._run_git("rev-parse", "--git-dir", check=False)
        return returncode == 0

    def has_commits(self) -> bool:
        """Check if HEAD points at a commit (false for a fresh repository)."""
        returncode, _, _ = self._run_git(
            "rev-parse", "--verify", "--quiet", "HEAD", check=False
        )
        return returncode == 0

    def get_current_branch(self) -> str:
        """
        Get the name of the current branch.

        Works on an unborn branch too (a repository without commits).

        Raises:
            GitOperationError: If HEAD is detached
        """
        returncode, stdout, _ = self._run_git(
            "symbolic-ref", "--quiet", "--short", "HEAD", check=False
        )
        if returncode != 0:
            raise GitOperationError("Not currently on a branch (detached HEAD)")
        return stdout.strip()

    def get_default_branch(self, remote: str = "origin") -> str:
        """
        Get the repository's default branch name.

        Uses the remote's HEAD when a remote is configured, then the
        ``init.defaultBranch`` setting.

        Raises:
            GitOperationError: If neither source names a branch
        """
        returncode, stdout, _ = self._run_git(
            "symbolic-ref", "--quiet", "--short", f"refs/remotes/{remote}/HEAD",
            check=False,
        )
        if returncode == 0 and stdout.strip():
            # "origin/main" -> "main"
            return stdout.strip().split("/", 1)[-1]

        returncode, stdout, _ = self._run_git(
            "config", "--get", "init.defaultBranch", check=False
        )
        if returncode == 0 and stdout.strip():
            return stdout.strip()

        raise GitOperationError("Could not determine the default branch")

    def set_head_branch(self, branch: str) -> None:
        """Point HEAD at ``branch`` (works before the first commit)."""
        self._run_git("symbolic-ref", "HEAD", f"refs/heads/{branch}")

    def rev_parse(self, ref: str) -> str:
        """Resolve a ref to a full commit id."""
        _, stdout, _ = self._run_git("rev-parse", "--verify", f"{ref}^{{commit}}")
        return stdout.strip()

    def get_parent(self, commit: str) -> Optional[str]:
        """
        Get a commit's first parent.

        Returns:
            Full id of the first parent, or None for a root commit
        """
        returncode, stdout, _ = self._run_git(
            "rev-parse", "--verify", "--quiet", f"{commit}^", check=False
        )
        if returncode != 0:
            return None
        return stdout.strip()

    def log_commits(self, ref: str = "HEAD") -> List[Dict[str, object]]:
        """
        List every commit reachable from ``ref``, newest first.

        Returns:
            List of dicts with commit id, parents, author/committer identity,
            raw dates ("<epoch> <tz>") and the raw message
        """
        _, stdout, _ = self._run_git(
            "log", "-z", "--date=raw", f"--format={_LOG_FORMAT}", ref
        )

        commits = []
        for record in stdout.split("\0"):
            if not record.strip():
                continue
            fields = record.split(_FIELD_SEP, 8)
            if len(fields) != 9:
                raise GitOperationError(f"Unexpected git log record: {record[:200]!r}")

            (
                commit_id, parents, author_name, author_email, author_date,
                committer_name, committer_email, committer_date, message,
            ) = fields

            commits.append(
                {
                    "commit_id": commit_id.strip(),
                    "parents": parents.split(),
                    "author_name": author_name,
                    "author_email": author_email,
                    "author_date": author_date,
                    "committer_name": committer_name,
                    "committer_email": committer_email,
                    "committer_date": committer_date,
                    "message": message,
                }
            )

        return commits

    def empty_tree(self) -> str:
        """Object id of the empty tree in this repository's hash format."""
        if self._empty_tree is None:
            _, stdout, _ = self._run_git(
                "hash-object", "-t", "tree", "--stdin", input=""
            )
            self._empty_tree = stdout.strip()
        return self._empty_tree

    def diff_tree(self, parent: Optional[str], commit: str) -> List[TreeChange]:
        """
        List paths changed between ``parent`` (or the empty tree) and ``commit``.

        Renames are reported as a delete plus an add.
        """
        base = parent or self.empty_tree()
        _, stdout, _ = self._run_git(
            "diff-tree", "-r", "-z", "--no-renames", "--name-status", base, commit
        )

        tokens = stdout.split("\0")
        changes = []
        i = 0
        while i + 1 < len(tokens):
            status, path = tokens[i].strip(), tokens[i + 1]
            i += 2
            if not status:
                continue

            if status.startswith("A"):
                changes.append(TreeChange(status, None, path or None))
            elif status.startswith("D"):
                changes.append(TreeChange(status, path or None, None))
            else:
                changes.append(TreeChange(status, path or None, path or None))

        return changes

    def diff_file(self, parent: Optional[str], commit: str, path: str) -> str:
        """Textual patch of one path between ``parent`` (or empty) and ``commit``."""
        base = parent or self.empty_tree()
        _, stdout, _ = self._run_git(
            "diff", "--no-color", "--no-ext-diff", "--no-renames",
            base, commit, "--", path,
        )
        return stdout

    def list_tree(self, commit: str) -> List[TreeEntry]:
        """List every file of a commit's tree."""
        _, stdout, _ = self._run_git("ls-tree", "-r", "-z", "--full-tree", commit)

        entries = []
        for record in stdout.split("\0"):
            if not record:
                continue
            meta, path = record.split("\t", 1)
            mode, object_type, sha = meta.split()
            entries.append(TreeEntry(mode, object_type, sha, path))

        return entries

    def read_blobs(self, shas: Sequence[str]) -> Dict[str, bytes]:
        """
        Read blob contents in a single ``git cat-file --batch`` call.

        Raises:
            GitOperationError: If any object is missing
        """
        unique = list(dict.fromkeys(shas))
        if not unique:
            return {}

        request = ("\n".join(unique) + "\n").encode("utf-8")
        _, stdout, _ = self._run_git("cat-file", "--batch", input=request, binary=True)

        blobs: Dict[str, bytes] = {}
        offset = 0
        for _ in unique:
            header_end = stdout.index(b"\n", offset)
            header = stdout[offset:header_end].decode("utf-8").split()
            offset = header_end + 1

            if len(header) < 3 or header[1] == "missing":
                raise GitOperationError(f"Object not found: {header[0]}")

            sha, size = header[0], int(header[2])
            blobs[sha] = stdout[offset : offset + size]
            # Content is followed by a single newline
            offset += size + 1

        return blobs

    def add_all(self) -> None:
        """Stage every change in the working tree, including deletions.

        Ignored paths are staged too: the working tree holds exactly the
        tree being committed, so its own .gitignore must not filter it.
        """
        self._run_git("add", "-A", "-f")

    def create_commit(
        self,
        message: str,
        author_name: str,
        author_email: str,
        author_date: str,
        committer_name: str,
        committer_email: str,
        committer_date: str,
        allow_empty: bool = True,
    ) -> Optional[str]:
        """
        Commit the index with an explicit identity and dates.

        Dates use git's internal format ("<epoch> <tz>").

        Returns:
            New commit hash, or None if there was nothing to commit
        """
        env = {
            "GIT_AUTHOR_NAME": author_name,
            "GIT_AUTHOR_EMAIL": author_email,
            "GIT_AUTHOR_DATE": author_date,
            "GIT_COMMITTER_NAME": committer_name,
            "GIT_COMMITTER_EMAIL": committer_email,
            "GIT_COMMITTER_DATE": committer_date,
        }

        args = ["commit", "--quiet", "--no-verify", "--allow-empty-message", "-F", "-"]
        if allow_empty:
            args.append("--allow-empty")

        returncode, output, _ = self._run_git(
            *args, check=False, env=env, input=message, merge_stderr=True
        )
        if returncode != 0:
            if "nothing to commit" in output:
                return None
            raise GitOperationError(f"Failed to create commit: {output}")

        return self.rev_parse("HEAD")

    def get_remote_url(self, name: str = "origin") -> Optional[str]:
        """Get a remote's URL, or None if the remote is not configured."""
        returncode, stdout, _ = self._run_git(
            "remote", "get-url", name, check=False
        )
        if returncode != 0:
            return None
        return stdout.strip() or None

    def add_remote(self, name: str, url: str) -> None:
        """Add a remote."""
        self._run_git("remote", "add", name, url)

    def get_git_path(self, name: str) -> Path:
        """Resolve a path inside the git directory (e.g. ``rebase-merge``)."""
        _, stdout, _ = self._run_git("rev-parse", "--git-path", name)
        path = Path(stdout.strip())
        return path if path.is_absolute() else self.repo_path / path

    def is_rebase_in_progress(self) -> bool:
        """Check for leftover rebase state."""
        return (
            self.get_git_path("rebase-merge").exists()
            or self.get_git_path("rebase-apply").exists()
        )

    def rebase_abort(self) -> Tuple[int, str]:
        """
        Abort an in-progress rebase.

        Returns:
            Tuple of (returncode, combined output)
        """
        returncode, output, _ = self._run_git(
            "rebase", "--abort", check=False, merge_stderr=True
        )
        return returncode, output

    def rebase_interactive(
        self, base: Optional[str], env: Mapping[str, str]
    ) -> Tuple[int, str]:
        """
        Run ``git rebase -i`` from ``base`` (or ``--root``) to HEAD.

        Args:
            base: Commit to rebase onto, None to rebase from the root
            env: Environment overrides (sequence and message editors)

        Returns:
            Tuple of (returncode, combined output)
        """
        args = ["rebase", "-i", base if base else "--root"]
        returncode, output, _ = self._run_git(
            *args, check=False, env=env, merge_stderr=True
        )
        return returncode, output

    def has_uncommitted_changes(self) -> bool:
        """Check if there are uncommitted changes."""
        _, stdout, _ = self._run_git("status", "--porcelain")
        return bool(stdout.strip())
