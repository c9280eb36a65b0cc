"""Resumable journal of rewrite decisions."""

import json
import threading
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set

from pydantic import ValidationError

from .commit import CommitRecord, RewriteDecision
from .exceptions import JournalError


def _parse_decisions(raw: object) -> List[RewriteDecision]:
    if not isinstance(raw, list):
        raise ValueError("journal must be a JSON array")
    return [RewriteDecision.model_validate(item) for item in raw]


class CheckpointJournal:
    """
    Ordered, append-only set of RewriteDecisions keyed by commit id.

    The journal doubles as the output file of dry runs and the input of
    apply-from-file runs. Entries are never removed or replaced; only their
    ``applied`` flag can change, and only from false to true.
    """

    def __init__(self, path: Path, flush_interval: int = 5, logger=None):
        """
        Initialize the journal.

        Args:
            path: Journal file location
            flush_interval: Flush to disk after this many new decisions
            logger: Optional ActivityLogger
        """
        self.path = Path(path)
        self.flush_interval = max(1, flush_interval)
        self.logger = logger
        self._decisions: Dict[str, RewriteDecision] = {}
        self._unflushed = 0
        self._lock = threading.Lock()

    def load(self) -> int:
        """
        Read existing decisions from disk.

        A missing file means an empty journal. A malformed file is logged and
        treated as empty so a run can start over.

        Returns:
            Number of decisions loaded
        """
        with self._lock:
            self._decisions = {}
            self._unflushed = 0

            if not self.path.exists():
                return 0

            try:
                with open(self.path, "r", encoding="utf-8") as f:
                    decisions = _parse_decisions(json.load(f))
            except (OSError, ValueError, ValidationError) as e:
                if self.logger:
                    self.logger.error(
                        f"Error parsing existing changes file {self.path}: {e}"
                    )
                return 0

            for decision in decisions:
                self._decisions.setdefault(decision.commit_id, decision)

            if self.logger:
                self.logger.info(
                    f"Found {len(self._decisions)} existing processed commits "
                    f"in {self.path}"
                )
            return len(self._decisions)

    @property
    def processed_ids(self) -> Set[str]:
        with self._lock:
            return set(self._decisions)

    def __len__(self) -> int:
        with self._lock:
            return len(self._decisions)

    def __contains__(self, commit_id: object) -> bool:
        with self._lock:
            return commit_id in self._decisions

    def get(self, commit_id: str) -> Optional[RewriteDecision]:
        with self._lock:
            return self._decisions.get(commit_id)

    def filter_pending(self, commits: Iterable[CommitRecord]) -> List[CommitRecord]:
        """Commits that have no journaled decision yet, order preserved."""
        processed = self.processed_ids
        return [c for c in commits if c.commit_id not in processed]

    def record(self, decision: RewriteDecision) -> bool:
        """
        Add a decision unless its commit is already journaled.

        Returns:
            True if the decision was new
        """
        with self._lock:
            if decision.commit_id in self._decisions:
                return False

            self._decisions[decision.commit_id] = decision
            self._unflushed += 1
            if self._unflushed >= self.flush_interval:
                self._flush_locked()
            return True

    def mark_applied(self, commit_id: str) -> None:
        """Set a journaled decision's applied flag."""
        with self._lock:
            decision = self._decisions.get(commit_id)
            if decision is None or decision.applied:
                return
            self._decisions[commit_id] = decision.model_copy(update={"applied": True})
            self._unflushed += 1

    def rewrite_map(self) -> Dict[str, str]:
        """Commit id to rewritten message."""
        with self._lock:
            return {cid: d.rewritten_message for cid, d in self._decisions.items()}

    def decisions(self) -> List[RewriteDecision]:
        """All decisions in the order they were recorded."""
        with self._lock:
            return list(self._decisions.values())

    def flush(self) -> None:
        """
        Write the journal to disk atomically.

        Raises:
            JournalError: If the file cannot be written
        """
        with self._lock:
            self._flush_locked()

    def _flush_locked(self) -> None:
        data = [d.to_json_dict() for d in self._decisions.values()]
        temp_file = self.path.with_name(self.path.name + ".tmp")

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_file, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
                f.write("\n")

            # Rename to final location (atomic on POSIX systems)
            temp_file.replace(self.path)
        except OSError as e:
            raise JournalError(f"Failed to write journal {self.path}: {e}") from e

        self._unflushed = 0
        if self.logger:
            self.logger.info(
                f"Saved {len(data)} processed commits to {self.path}",
                count=len(data),
            )

    @staticmethod
    def load_decisions(path: Path) -> List[RewriteDecision]:
        """
        Read a journal file for apply-from-file mode.

        Unlike ``load``, a missing or malformed file is an error here.

        Raises:
            JournalError: If the file cannot be read or parsed
        """
        path = Path(path)
        try:
            with open(path, "r", encoding="utf-8") as f:
                return _parse_decisions(json.load(f))
        except FileNotFoundError as e:
            raise JournalError(f"Changes file not found: {path}") from e
        except (OSError, ValueError, ValidationError) as e:
            raise JournalError(f"Error parsing changes file {path}: {e}") from e
