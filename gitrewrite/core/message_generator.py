"""Generate conventional-commit messages for rewrite candidates.

Each candidate commit is serialized into a chat request, checked against the
model's context window, sent to Ollama and the structured response turned
into a RewriteDecision.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from .commit import ALLOWED_COMMIT_TYPES, CommitRecord, GeneratedMessage, RewriteDecision
from .exceptions import ContextWindowExceededError, OversizedCommitError, ResponseParseError
from .ollama_client import OllamaClient
from .output_parser import OutputParser, truncate_for_log
from .token_estimator import HeuristicTokenEstimator, TokenEstimator

SYSTEM_PROMPT = (
    "Act as a senior engineer enforcing Conventional Commits. "
    "Input: commit data with id, message and per-file diffs. "
    "Output: JSON with commit_id and a messages array. Each message object "
    "has the fields type, description and affected_app. Rules:\n"
    f"1. Types: {', '.join(ALLOWED_COMMIT_TYPES)}\n"
    "2. Max 100 characters per description\n"
    "3. Explain what changed and why\n"
    "4. One message per logical change\n"
    "5. Group related files under one message\n"
    "6. Never use markdown or symbols\n"
    "7. Derive the affected app name from the file paths\n"
    "8. Example: {\"type\": \"chore\", \"description\": \"upgrade Docker image "
    "to v21.3.1\", \"affected_app\": \"hortusfox\"}"
)

SUMMARY_SYSTEM_PROMPT = (
    "Act as a senior engineer enforcing Conventional Commits. "
    "Input: metadata of a very large commit (id, original message, number of "
    "files and the top-level paths it touches); no diffs are included. "
    "Output: JSON with commit_id and a messages array containing exactly one "
    "object with the fields type, description and affected_app that "
    "summarizes the whole commit in a single line. "
    f"Types: {', '.join(ALLOWED_COMMIT_TYPES)}. Max 100 characters. "
    "Never use markdown or symbols."
)

USER_PREAMBLE = "Generate a new commit message for the following commit:"

OUTPUT_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "commit_id": {"type": "string"},
        "messages": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "type": {"type": "string"},
                    "description": {"type": "string"},
                    "affected_app": {"type": "string"},
                },
                "required": ["type", "description", "affected_app"],
            },
        },
    },
    "required": ["commit_id", "messages"],
}

# Share of the context window kept free for the model's answer
RESPONSE_HEADROOM_DIVISOR = 4

# Cap on top-level paths listed in a summary request
MAX_SUMMARY_PATHS = 50


@dataclass
class RequestBudget:
    """Token estimate of one request against the context window."""

    system_tokens: int
    preamble_tokens: int
    payload_tokens: int
    schema_tokens: int
    context_size: int

    @property
    def request_tokens(self) -> int:
        return (
            self.system_tokens
            + self.preamble_tokens
            + self.payload_tokens
            + self.schema_tokens
        )

    @property
    def response_headroom(self) -> int:
        return self.context_size // RESPONSE_HEADROOM_DIVISOR

    @property
    def tokens_needed(self) -> int:
        return self.request_tokens + self.response_headroom

    @property
    def fits(self) -> bool:
        return self.tokens_needed <= self.context_size


def top_level_paths(paths: List[str], limit: int = MAX_SUMMARY_PATHS) -> List[str]:
    """First path component of each path, unique and sorted."""
    tops = sorted({p.split("/", 1)[0] for p in paths if p})
    return tops[:limit]


class MessageGenerator:
    """Turns rewrite candidates into RewriteDecisions via Ollama."""

    def __init__(
        self,
        client: OllamaClient,
        model: str,
        context_size: int,
        temperature: float = 0.1,
        estimator: Optional[TokenEstimator] = None,
        max_files_per_commit: int = 200,
        summarize_oversized: bool = False,
        logger=None,
    ):
        """
        Args:
            client: Ollama client
            model: Model name
            context_size: Model context window in tokens
            temperature: Sampling temperature
            estimator: Token estimator (default: bytes / 4)
            max_files_per_commit: Commits above this go to the summary path
            summarize_oversized: Summarize oversized commits instead of skipping
            logger: Optional ActivityLogger
        """
        self.client = client
        self.model = model
        self.context_size = context_size
        self.temperature = temperature
        self.estimator = estimator or HeuristicTokenEstimator()
        self.max_files_per_commit = max_files_per_commit
        self.summarize_oversized = summarize_oversized
        self.logger = logger
        self._schema_json = json.dumps(OUTPUT_SCHEMA)

    def is_oversized(self, commit: CommitRecord) -> bool:
        return len(commit.files) > self.max_files_per_commit

    def generate(self, commit: CommitRecord) -> RewriteDecision:
        """
        Produce a rewritten message for one candidate commit.

        Raises:
            OversizedCommitError: Too many files and summarizing is off
            ContextWindowExceededError: Request would not fit; nothing is sent
            GenerationError: Request failed
            ResponseParseError: Response unusable
        """
        if self.is_oversized(commit):
            if not self.summarize_oversized:
                raise OversizedCommitError(
                    commit.commit_id, len(commit.files), self.max_files_per_commit
                )
            if self.logger:
                self.logger.info(
                    f"Commit {commit.short_id} has {len(commit.files)} files "
                    f"(exceeding limit of {self.max_files_per_commit}). "
                    "Generating simplified summary...",
                    commit_id=commit.commit_id,
                )
            return self.generate_summary(commit)

        payload = json.dumps(commit.request_payload())
        generated = self._request(commit.commit_id, SYSTEM_PROMPT, payload)
        return self._decision(commit, generated.to_commit_message())

    def generate_summary(self, commit: CommitRecord) -> RewriteDecision:
        """Single-line message from commit metadata only (no diffs are sent)."""
        payload = json.dumps(
            {
                "commit_id": commit.commit_id,
                "message": commit.message,
                "files_changed": len(commit.files),
                "top_level_paths": top_level_paths([f.path for f in commit.files]),
            }
        )
        generated = self._request(commit.commit_id, SUMMARY_SYSTEM_PROMPT, payload)
        return self._decision(commit, generated.allowed_entries()[0].format())

    def estimate_request(self, system_prompt: str, payload: str) -> RequestBudget:
        """Estimate the token cost of a request."""
        return RequestBudget(
            system_tokens=self.estimator.estimate(system_prompt),
            preamble_tokens=self.estimator.estimate(USER_PREAMBLE),
            payload_tokens=self.estimator.estimate(payload),
            schema_tokens=self.estimator.estimate(self._schema_json),
            context_size=self.context_size,
        )

    def build_messages(self, system_prompt: str, payload: str) -> List[Dict[str, str]]:
        return [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": USER_PREAMBLE},
            {"role": "user", "content": payload},
        ]

    def parse_response(self, raw: str, commit_id: str) -> GeneratedMessage:
        """
        Parse and validate the model response.

        Raises:
            ResponseParseError: Not JSON, wrong shape, or no entry with an
                allowed type
        """
        try:
            data = OutputParser.extract_json(raw)
            generated = GeneratedMessage.model_validate(data)
        except (ResponseParseError, ValidationError) as e:
            self._log_raw_response(commit_id, raw)
            raise ResponseParseError(
                f"Failed to parse Ollama response for {commit_id[:8]}: {e}",
                raw_response=truncate_for_log(raw),
            ) from e

        if not generated.allowed_entries():
            self._log_raw_response(commit_id, raw)
            raise ResponseParseError(
                f"Ollama response for {commit_id[:8]} contains no entries with "
                f"an allowed type ({', '.join(ALLOWED_COMMIT_TYPES)})",
                raw_response=truncate_for_log(raw),
            )

        if generated.commit_id and generated.commit_id != commit_id and self.logger:
            self.logger.warning(
                f"Response commit id {generated.commit_id[:8]} does not match "
                f"{commit_id[:8]}; using it for {commit_id[:8]} anyway",
                commit_id=commit_id,
            )

        return generated

    def _request(self, commit_id: str, system_prompt: str, payload: str) -> GeneratedMessage:
        budget = self.estimate_request(system_prompt, payload)
        if not budget.fits:
            raise ContextWindowExceededError(
                commit_id, budget.tokens_needed, self.context_size
            )

        if self.logger:
            self.logger.info(
                f"Sending commit {commit_id[:8]} to Ollama for processing "
                f"(est. {budget.request_tokens} tokens)",
                commit_id=commit_id,
                estimated_tokens=budget.request_tokens,
            )

        result = self.client.chat(
            self.model,
            self.build_messages(system_prompt, payload),
            format=OUTPUT_SCHEMA,
            temperature=self.temperature,
        )
        return self.parse_response(result.content, commit_id)

    def _decision(self, commit: CommitRecord, message: str) -> RewriteDecision:
        return RewriteDecision(
            commit_id=commit.commit_id,
            original_message=commit.message.strip(),
            rewritten_message=message,
            files_changed=len(commit.files),
            applied=False,
        )

    def _log_raw_response(self, commit_id: str, raw: str) -> None:
        if self.logger:
            self.logger.error(
                f"Failed to parse Ollama response for {commit_id[:8]}",
                commit_id=commit_id,
                raw_response=truncate_for_log(raw),
            )
