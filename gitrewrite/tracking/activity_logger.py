"""Activity logging for gitrewrite runs.

Every event is written as a JSON line to the debug log (when one is
configured) and user-facing events are mirrored to a rich console.
"""

import json
import threading
from collections import deque
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional, Sequence

from pydantic import BaseModel, Field
from rich.console import Console
from rich.markup import escape


class EventType(str, Enum):
    """Types of events that can be logged."""

    SESSION_START = "session_start"
    SESSION_END = "session_end"
    SHELL_COMMAND = "shell_command"
    COMMIT_REWRITTEN = "commit_rewritten"
    COMMIT_APPLIED = "commit_applied"
    COMMIT_SKIPPED = "commit_skipped"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    SUCCESS = "success"


class ActivityEvent(BaseModel):
    """Activity event model."""

    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    event_type: EventType = Field(..., description="Type of event")
    message: str = Field(..., description="Event message")
    commit_id: Optional[str] = Field(None, description="Commit the event is about")
    data: Dict[str, Any] = Field(
        default_factory=dict, description="Additional event data"
    )


# Console prefix for each event type that is shown to the user
_CONSOLE_STYLES: Dict[EventType, str] = {
    EventType.INFO: "[dim]INFO[/dim]",
    EventType.WARNING: "[yellow]WARN[/yellow]",
    EventType.ERROR: "[red]ERROR[/red]",
    EventType.SUCCESS: "[green]✓[/green]",
    EventType.COMMIT_REWRITTEN: "[cyan]REWRITE[/cyan]",
    EventType.COMMIT_APPLIED: "[green]✓[/green]",
    EventType.COMMIT_SKIPPED: "[yellow]SKIP[/yellow]",
}


class ActivityLogger:
    """Thread-safe activity logger.

    The worker thread and the UI thread both log through the same instance,
    so writes to the debug file are serialized with a lock.
    """

    def __init__(
        self,
        log_file: Optional[Path] = None,
        console: Optional[Console] = None,
        verbose: bool = False,
        history_size: int = 200,
    ):
        """Initialize activity logger.

        Args:
            log_file: Optional JSONL debug log file
            console: Console to mirror user-facing events to (None = silent)
            verbose: Also echo shell commands to the console
            history_size: Number of recent events kept in memory
        """
        self.log_file = Path(log_file) if log_file else None
        self.console = console
        self.verbose = verbose
        self._recent: Deque[ActivityEvent] = deque(maxlen=history_size)
        self._lock = threading.Lock()

        if self.log_file:
            self.log_file.parent.mkdir(parents=True, exist_ok=True)

    def log_event(
        self,
        event_type: EventType,
        message: str,
        commit_id: Optional[str] = None,
        **data: Any,
    ) -> ActivityEvent:
        """Log a general activity event.

        Args:
            event_type: Type of event
            message: Event message
            commit_id: Optional commit the event is about
            **data: Additional event data

        Returns:
            The recorded event
        """
        event = ActivityEvent(
            event_type=event_type,
            message=message,
            commit_id=commit_id,
            data=data,
        )

        with self._lock:
            self._recent.append(event)
            self._write_event(event)

        self._echo(event)
        return event

    def log_session_start(self, repo_path: str, mode: str) -> None:
        """Log session start event."""
        self.log_event(
            EventType.SESSION_START,
            f"gitrewrite session started ({mode})",
            repo_path=repo_path,
            mode=mode,
        )

    def log_session_end(self, stats: Dict[str, Any]) -> None:
        """Log session end event."""
        self.log_event(EventType.SESSION_END, "gitrewrite session ended", **stats)

    def log_shell_command(
        self, command: str, args: Sequence[str], working_dir: Path
    ) -> None:
        """Log a subprocess invocation."""
        self.log_event(
            EventType.SHELL_COMMAND,
            f"{command} {' '.join(args)}",
            working_dir=str(working_dir),
        )

    def info(self, message: str, commit_id: Optional[str] = None, **data: Any) -> None:
        self.log_event(EventType.INFO, message, commit_id=commit_id, **data)

    def warning(
        self, message: str, commit_id: Optional[str] = None, **data: Any
    ) -> None:
        self.log_event(EventType.WARNING, message, commit_id=commit_id, **data)

    def error(self, message: str, commit_id: Optional[str] = None, **data: Any) -> None:
        self.log_event(EventType.ERROR, message, commit_id=commit_id, **data)

    def success(
        self, message: str, commit_id: Optional[str] = None, **data: Any
    ) -> None:
        self.log_event(EventType.SUCCESS, message, commit_id=commit_id, **data)

    def log_commit_rewritten(
        self, commit_id: str, original_message: str, rewritten_message: str
    ) -> None:
        """Log a new rewrite decision."""
        first_line = rewritten_message.split("\n", 1)[0]
        self.log_event(
            EventType.COMMIT_REWRITTEN,
            f"{commit_id[:8]}: {original_message!r} -> {first_line!r}",
            commit_id=commit_id,
            original_message=original_message,
            rewritten_message=rewritten_message,
        )

    def log_commit_applied(self, commit_id: str, message: str) -> None:
        """Log a rewritten message landing in a repository."""
        self.log_event(
            EventType.COMMIT_APPLIED,
            f"Applied new message to {commit_id[:8]}",
            commit_id=commit_id,
            new_message=message,
        )

    def log_commit_skipped(self, commit_id: str, cause: str) -> None:
        """Log a per-commit recoverable failure."""
        self.log_event(
            EventType.COMMIT_SKIPPED,
            f"Skipping commit {commit_id[:8]}: {cause}",
            commit_id=commit_id,
            cause=cause,
        )

    def get_recent_events(
        self, limit: int = 100, event_type: Optional[EventType] = None
    ) -> List[ActivityEvent]:
        """Get recent events kept in memory.

        Args:
            limit: Maximum number of events to return
            event_type: Only return events of this type

        Returns:
            List of recent events, oldest first
        """
        with self._lock:
            events = list(self._recent)

        if event_type is not None:
            events = [e for e in events if e.event_type == event_type]

        return events[-limit:]

    def read_log_file(self) -> List[ActivityEvent]:
        """Read all events back from the debug log file."""
        events = []

        if self.log_file and self.log_file.exists():
            with open(self.log_file, "r", encoding="utf-8") as f:
                for line in f:
                    try:
                        events.append(ActivityEvent(**json.loads(line.strip())))
                    except (json.JSONDecodeError, ValueError):
                        continue

        return events

    def _write_event(self, event: ActivityEvent) -> None:
        """Append event to the debug log. Caller holds the lock."""
        if not self.log_file:
            return

        try:
            with open(self.log_file, "a", encoding="utf-8") as f:
                json.dump(
                    event.model_dump(mode="json"),
                    f,
                    default=str,
                    separators=(",", ":"),
                )
                f.write("\n")
        except OSError as e:
            if self.console:
                self.console.print(f"[red]Failed to write debug log:[/red] {e}")

    def _echo(self, event: ActivityEvent) -> None:
        if not self.console:
            return

        if event.event_type == EventType.SHELL_COMMAND:
            if self.verbose:
                self.console.print(f"[dim]$ {escape(event.message)}[/dim]")
            return

        prefix = _CONSOLE_STYLES.get(event.event_type)
        if prefix:
            self.console.print(f"{prefix} {escape(event.message)}")
