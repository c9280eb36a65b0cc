"""Progress state shared between the rewrite worker and the UI."""

import threading
from dataclasses import dataclass, replace
from typing import Optional


@dataclass(frozen=True)
class ProgressSnapshot:
    """Point-in-time copy of a ProgressContext."""

    phase: str = ""
    total: int = 0
    completed: int = 0
    succeeded: int = 0
    skipped: int = 0
    failed: int = 0
    current_commit: Optional[str] = None
    status: str = ""

    @property
    def remaining(self) -> int:
        return max(self.total - self.completed, 0)


class ProgressContext:
    """
    Counters for one phase of a run.

    Only the worker thread mutates the context; the UI thread reads it
    through ``snapshot()``.
    """

    def __init__(self):
        self._state = ProgressSnapshot()
        self._lock = threading.Lock()

    def start_phase(self, phase: str, total: int) -> None:
        """Reset the counters for a new phase."""
        with self._lock:
            self._state = ProgressSnapshot(phase=phase, total=total)

    def set_current(self, commit_id: Optional[str], status: str = "") -> None:
        with self._lock:
            self._state = replace(self._state, current_commit=commit_id, status=status)

    def succeed(self) -> None:
        self._finish_item(succeeded=1)

    def skip(self) -> None:
        self._finish_item(skipped=1)

    def fail(self) -> None:
        self._finish_item(failed=1)

    def snapshot(self) -> ProgressSnapshot:
        with self._lock:
            return self._state

    def _finish_item(self, succeeded: int = 0, skipped: int = 0, failed: int = 0) -> None:
        with self._lock:
            s = self._state
            self._state = replace(
                s,
                completed=s.completed + 1,
                succeeded=s.succeeded + succeeded,
                skipped=s.skipped + skipped,
                failed=s.failed + failed,
            )
