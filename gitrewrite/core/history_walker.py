"""Walk a repository's history and classify commits for rewriting."""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .commit import CommitRecord
from .diff_extractor import DiffExtractor
from .git_utils import GitUtils


@dataclass
class WalkResult:
    """Commits of one walk, both lists oldest first."""

    all_commits: List[CommitRecord] = field(default_factory=list)
    to_rewrite: List[CommitRecord] = field(default_factory=list)

    @property
    def merge_count(self) -> int:
        return sum(1 for c in self.all_commits if c.is_merge)


def needs_rewrite(message: str, max_msg_length: int) -> bool:
    """A message is rewritten when it is at most ``max_msg_length`` characters."""
    return len(message) <= max_msg_length


def parse_raw_date(raw: str) -> Tuple[int, str]:
    """Split a ``--date=raw`` value ("1700000000 +0100") into epoch and offset."""
    parts = raw.split()
    timestamp = int(parts[0]) if parts else 0
    tz = parts[1] if len(parts) > 1 else "+0000"
    return timestamp, tz


def record_from_log(entry: Dict[str, object], max_msg_length: int) -> CommitRecord:
    """Build a CommitRecord (without files) from a ``GitUtils.log_commits`` entry."""
    message = str(entry["message"]).rstrip("\n")
    parents = list(entry["parents"])
    author_ts, author_tz = parse_raw_date(str(entry["author_date"]))
    committer_ts, committer_tz = parse_raw_date(str(entry["committer_date"]))

    return CommitRecord(
        commit_id=str(entry["commit_id"]),
        message=message,
        parent_id=parents[0] if parents else None,
        parent_count=len(parents),
        author_name=str(entry["author_name"]),
        author_email=str(entry["author_email"]),
        author_timestamp=author_ts,
        author_timezone=author_tz,
        committer_name=str(entry["committer_name"]),
        committer_email=str(entry["committer_email"]),
        committer_timestamp=committer_ts,
        committer_timezone=committer_tz,
        needs_rewrite=needs_rewrite(message, max_msg_length),
    )


class HistoryWalker:
    """
    Enumerate every commit reachable from HEAD.

    git reports history newest first; both result lists are reversed so
    callers can apply commits in causal order. Diffs are only computed for
    commits that need a rewrite.
    """

    def __init__(
        self,
        git: GitUtils,
        max_msg_length: int = 10,
        max_diff_length: int = 2048,
        extractor: Optional[DiffExtractor] = None,
        logger=None,
    ):
        self.git = git
        self.max_msg_length = max_msg_length
        self.max_diff_length = max_diff_length
        self.extractor = extractor or DiffExtractor(
            git, max_diff_length=max_diff_length, logger=logger
        )
        self.logger = logger

    def walk(self, ref: str = "HEAD", extract_diffs: bool = True) -> WalkResult:
        """
        Read and classify the full history.

        Args:
            ref: Tip of the history to walk
            extract_diffs: Compute diffs of rewrite candidates; replaying
                from a journal only needs the metadata

        Raises:
            GitOperationError: On any traversal or diff failure; no partial
                result is returned
        """
        if not self.git.has_commits():
            return WalkResult()

        newest_first: List[CommitRecord] = []
        for entry in self.git.log_commits(ref):
            record = record_from_log(entry, self.max_msg_length)
            if record.needs_rewrite and extract_diffs:
                record = record.model_copy(
                    update={"files": self.extractor.extract(record)}
                )
            newest_first.append(record)

        result = WalkResult(
            all_commits=list(reversed(newest_first)),
            to_rewrite=[c for c in reversed(newest_first) if c.needs_rewrite],
        )

        if result.merge_count and self.logger:
            self.logger.warning(
                f"History contains {result.merge_count} merge commits; "
                "they are diffed against their first parent only",
                merge_count=result.merge_count,
            )

        return result
