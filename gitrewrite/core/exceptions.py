"""gitrewrite exception classes."""


class GitRewriteError(Exception):
    """Base exception for all gitrewrite errors."""

    pass


class ConfigurationError(GitRewriteError):
    """Raised when configuration is invalid."""

    pass


class GitOperationError(GitRewriteError):
    """Raised when git operations fail."""

    pass


class RepositoryStateError(GitRewriteError):
    """Raised when the repository is not in a state we can rewrite."""

    pass


class GenerationError(GitRewriteError):
    """Raised when a commit message cannot be generated."""

    pass


class OllamaUnavailableError(GenerationError):
    """Raised when the Ollama server cannot be reached or queried."""

    pass


class ContextWindowExceededError(GenerationError):
    """Raised when a request would not fit in the model context window."""

    def __init__(self, commit_id: str, needed: int, available: int):
        self.commit_id = commit_id
        self.needed = needed
        self.available = available
        super().__init__(
            f"Commit {commit_id[:8]} would exceed model context window "
            f"({needed} tokens needed, {available} available)"
        )


class OversizedCommitError(GenerationError):
    """Raised when a commit touches more files than we are willing to send."""

    def __init__(self, commit_id: str, file_count: int, limit: int):
        self.commit_id = commit_id
        self.file_count = file_count
        self.limit = limit
        super().__init__(
            f"Commit {commit_id[:8]} has too many files ({file_count} > {limit}). "
            "Use --summarize-oversized to process it."
        )


class ResponseParseError(GenerationError):
    """Raised when the model response cannot be parsed."""

    def __init__(self, message: str, raw_response: str = ""):
        self.raw_response = raw_response
        super().__init__(message)


class JournalError(GitRewriteError):
    """Raised when the checkpoint journal cannot be written."""

    pass


class ReplayError(GitRewriteError):
    """Raised when a commit cannot be replayed into the new repository."""

    pass


class RewordError(GitRewriteError):
    """Raised when an in-place reword rebase fails."""

    def __init__(self, message: str, output: str = ""):
        self.output = output
        super().__init__(message)


class StateTransitionError(GitRewriteError):
    """Raised when an invalid state transition is attempted."""

    pass
