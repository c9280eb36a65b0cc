"""Commit, diff and rewrite decision models."""

from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

# Conventional-commit types we accept from the model
ALLOWED_COMMIT_TYPES = ("feat", "fix", "chore", "docs", "refactor", "perf")


class FileChange(BaseModel):
    """A changed path and its (possibly truncated) textual diff."""

    model_config = ConfigDict(frozen=True)

    path: str = Field(..., description="Post-change path, or pre-change for deletions")
    diff: str = Field("", description="Patch text, byte-truncated to max_diff_length")


class CommitRecord(BaseModel):
    """
    Immutable snapshot of a source commit.

    Created by the history walker for every commit in history. Dates are kept
    as epoch seconds plus the original timezone offset so replayed commits
    carry exactly the same timestamps.
    """

    model_config = ConfigDict(frozen=True)

    commit_id: str = Field(..., description="Full commit hash")
    message: str = Field(..., description="Commit message without trailing newlines")
    parent_id: Optional[str] = Field(None, description="First parent, None for roots")
    parent_count: int = Field(0, description="Number of parents")

    author_name: str
    author_email: str
    author_timestamp: int
    author_timezone: str = "+0000"

    committer_name: str
    committer_email: str
    committer_timestamp: int
    committer_timezone: str = "+0000"

    needs_rewrite: bool = False
    files: List[FileChange] = Field(default_factory=list)

    @property
    def short_id(self) -> str:
        return self.commit_id[:8]

    @property
    def is_merge(self) -> bool:
        return self.parent_count > 1

    @property
    def author_date(self) -> str:
        """Author date in git's internal format."""
        return f"{self.author_timestamp} {self.author_timezone}"

    @property
    def committer_date(self) -> str:
        """Committer date in git's internal format."""
        return f"{self.committer_timestamp} {self.committer_timezone}"

    def request_payload(self) -> Dict[str, object]:
        """The commit as sent to the message generator."""
        return {
            "commit_id": self.commit_id,
            "message": self.message,
            "files": [f.model_dump() for f in self.files],
        }


class RewriteDecision(BaseModel):
    """
    A rewritten message for one commit.

    This is the unit stored in the checkpoint journal. The JSON field names
    match the journal file format (``is_applied`` for ``applied``).
    """

    model_config = ConfigDict(populate_by_name=True)

    commit_id: str
    original_message: str
    rewritten_message: str
    files_changed: int = 0
    applied: bool = Field(False, alias="is_applied")

    def to_json_dict(self) -> Dict[str, object]:
        return self.model_dump(mode="json", by_alias=True)


class RewritePlan(BaseModel):
    """Target and message for a single in-place reword rebase."""

    target_commit_id: str
    new_message: str


class MessageEntry(BaseModel):
    """One conventional-commit line proposed by the model."""

    type: str = ""
    description: str = ""
    affected_app: str = ""

    def is_allowed(self) -> bool:
        return self.type in ALLOWED_COMMIT_TYPES

    def format(self) -> str:
        return f"{self.type}: {self.description} ({self.affected_app})"


class GeneratedMessage(BaseModel):
    """Parsed response of the message generator."""

    commit_id: str = ""
    messages: List[MessageEntry] = Field(default_factory=list)

    def allowed_entries(self) -> List[MessageEntry]:
        return [m for m in self.messages if m.is_allowed()]

    def to_commit_message(self) -> str:
        """Join the accepted entries one per line."""
        return "\n".join(m.format() for m in self.allowed_entries())
