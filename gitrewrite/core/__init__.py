"""Core gitrewrite functionality."""

from .checkpoint_journal import CheckpointJournal
from .commit import (
    ALLOWED_COMMIT_TYPES,
    CommitRecord,
    FileChange,
    GeneratedMessage,
    MessageEntry,
    RewriteDecision,
    RewritePlan,
)
from .diff_extractor import DiffExtractor, truncate_diff
from .exceptions import (
    ConfigurationError,
    ContextWindowExceededError,
    GenerationError,
    GitOperationError,
    GitRewriteError,
    JournalError,
    OllamaUnavailableError,
    OversizedCommitError,
    ReplayError,
    RepositoryStateError,
    ResponseParseError,
    RewordError,
    StateTransitionError,
)
from .git_utils import GitUtils
from .history_walker import HistoryWalker, WalkResult
from .message_generator import MessageGenerator
from .ollama_client import OllamaClient
from .progress import ProgressContext, ProgressSnapshot
from .replay_engine import ReplayEngine
from .reword_executor import (
    InPlaceRewriteExecutor,
    PlanInstructionProvider,
    RewordResult,
    RewriteInstructionProvider,
)
from .reword_state import RewordState
from .rewrite_runner import RewriteRunner, RunMode, RunSummary
from .token_estimator import HeuristicTokenEstimator, TokenEstimator

__all__ = [
    # Exceptions
    "GitRewriteError",
    "ConfigurationError",
    "GitOperationError",
    "RepositoryStateError",
    "GenerationError",
    "OllamaUnavailableError",
    "ContextWindowExceededError",
    "OversizedCommitError",
    "ResponseParseError",
    "JournalError",
    "ReplayError",
    "RewordError",
    "StateTransitionError",
    # Models
    "ALLOWED_COMMIT_TYPES",
    "CommitRecord",
    "FileChange",
    "GeneratedMessage",
    "MessageEntry",
    "RewriteDecision",
    "RewritePlan",
    # History
    "GitUtils",
    "DiffExtractor",
    "truncate_diff",
    "HistoryWalker",
    "WalkResult",
    # Generation
    "OllamaClient",
    "MessageGenerator",
    "TokenEstimator",
    "HeuristicTokenEstimator",
    # Application
    "CheckpointJournal",
    "ReplayEngine",
    "InPlaceRewriteExecutor",
    "RewriteInstructionProvider",
    "PlanInstructionProvider",
    "RewordResult",
    "RewordState",
    # Orchestration
    "ProgressContext",
    "ProgressSnapshot",
    "RewriteRunner",
    "RunMode",
    "RunSummary",
]
