"""Tests for commit message generation."""

import json
from typing import List

import httpx
import pytest

from gitrewrite.core.commit import CommitRecord, FileChange
from gitrewrite.core.exceptions import (
    ContextWindowExceededError,
    GenerationError,
    OversizedCommitError,
    ResponseParseError,
)
from gitrewrite.core.message_generator import (
    OUTPUT_SCHEMA,
    SUMMARY_SYSTEM_PROMPT,
    SYSTEM_PROMPT,
    USER_PREAMBLE,
    MessageGenerator,
    RequestBudget,
    top_level_paths,
)
from gitrewrite.core.ollama_client import OllamaClient
from gitrewrite.core.output_parser import RAW_RESPONSE_PREVIEW_BYTES
from gitrewrite.core.token_estimator import HeuristicTokenEstimator
from gitrewrite.tracking.activity_logger import EventType
from tests.mocks import (
    MockChatResponse,
    MockResponseLibrary,
    create_mock_transport,
    payload_of,
)

COMMIT_ID = "0123456789abcdef0123456789abcdef01234567"


def make_commit(message: str = "fix", files: List[FileChange] = None) -> CommitRecord:
    return CommitRecord(
        commit_id=COMMIT_ID,
        message=message,
        author_name="Test User",
        author_email="test@example.com",
        author_timestamp=1700000000,
        committer_name="Test User",
        committer_email="test@example.com",
        committer_timestamp=1700000000,
        needs_rewrite=True,
        files=files if files is not None else [
            FileChange(path="src/parser.py", diff="+    if not data:\n+        return []\n")
        ],
    )


class TestTokenEstimator:
    """Test the byte based token heuristic."""

    def test_four_bytes_per_token(self):
        assert HeuristicTokenEstimator().estimate("a" * 40) == 10

    def test_counts_utf8_bytes(self):
        assert HeuristicTokenEstimator().estimate("é" * 8) == 4

    def test_invalid_ratio(self):
        with pytest.raises(ValueError):
            HeuristicTokenEstimator(bytes_per_token=0)


class TestRequestBudget:
    """Test context window budgeting."""

    def test_headroom_is_quarter_of_context(self):
        budget = RequestBudget(10, 5, 100, 20, context_size=1000)

        assert budget.request_tokens == 135
        assert budget.response_headroom == 250
        assert budget.tokens_needed == 385
        assert budget.fits is True

    def test_exact_fit(self):
        """Test a request using exactly the remaining window still fits."""
        budget = RequestBudget(0, 0, 750, 0, context_size=1000)
        assert budget.fits is True

        budget = RequestBudget(0, 0, 751, 0, context_size=1000)
        assert budget.fits is False

    def test_top_level_paths(self):
        paths = ["src/a.py", "src/b/c.py", "docs/readme.md", "setup.py"]
        assert top_level_paths(paths) == ["docs", "setup.py", "src"]
        assert top_level_paths(paths, limit=1) == ["docs"]


class TestGenerate:
    """Test generating a decision for a commit."""

    def test_request_shape(self, mock_client):
        """Test system prompt, preamble, payload and schema are sent."""
        generator = MessageGenerator(mock_client, "qwen2.5:14b", context_size=32768)
        generator.generate(make_commit())

        call = mock_client.call_history[0]
        assert call["model"] == "qwen2.5:14b"
        assert call["format"] == OUTPUT_SCHEMA
        assert call["temperature"] == 0.1
        assert [m["role"] for m in call["messages"]] == ["system", "user", "user"]
        assert call["messages"][0]["content"] == SYSTEM_PROMPT
        assert call["messages"][1]["content"] == USER_PREAMBLE

        payload = payload_of(call["messages"])
        assert payload["commit_id"] == COMMIT_ID
        assert payload["message"] == "fix"
        assert payload["files"][0]["path"] == "src/parser.py"

    def test_decision(self, mock_client):
        generator = MessageGenerator(mock_client, "m", context_size=32768)
        decision = generator.generate(make_commit())

        assert decision.commit_id == COMMIT_ID
        assert decision.original_message == "fix"
        assert decision.rewritten_message == "fix: handle empty input in parser (core)"
        assert decision.files_changed == 1
        assert decision.applied is False

    def test_entries_joined_and_filtered(self, mock_client):
        """Test disallowed types are dropped and the rest joined by newlines."""
        mock_client.add_response(
            MockResponseLibrary.conventional(
                commit_id=COMMIT_ID,
                entries=[
                    {"type": "feat", "description": "add login form", "affected_app": "web"},
                    {"type": "style", "description": "reformat", "affected_app": "web"},
                    {"type": "docs", "description": "document login", "affected_app": "web"},
                ],
            )
        )
        generator = MessageGenerator(mock_client, "m", context_size=32768)

        decision = generator.generate(make_commit())
        assert decision.rewritten_message == (
            "feat: add login form (web)\ndocs: document login (web)"
        )

    def test_context_window_checked_before_request(self, mock_client):
        """Test an oversized request is rejected without contacting the model."""
        generator = MessageGenerator(mock_client, "m", context_size=100)

        with pytest.raises(ContextWindowExceededError) as exc_info:
            generator.generate(make_commit())

        assert mock_client.call_count == 0
        assert exc_info.value.available == 100
        assert exc_info.value.needed > 100
        assert isinstance(exc_info.value, GenerationError)

    def test_client_error_propagates(self, mock_client):
        mock_client.add_response(MockResponseLibrary.error("connection reset"))
        generator = MessageGenerator(mock_client, "m", context_size=32768)

        with pytest.raises(GenerationError, match="connection reset"):
            generator.generate(make_commit())

    def test_malformed_http_body_is_generation_error(self):
        """Test a non-JSON body from the server fails only this commit."""
        transport = create_mock_transport(
            {"/api/chat": httpx.Response(200, text="<html>proxy</html>")}
        )
        generator = MessageGenerator(
            OllamaClient(transport=transport), "m", context_size=32768
        )

        with pytest.raises(GenerationError) as exc_info:
            generator.generate(make_commit())

        assert isinstance(exc_info.value, ResponseParseError)
        assert "<html>proxy</html>" in exc_info.value.raw_response

    def test_temperature_passed(self, mock_client):
        generator = MessageGenerator(mock_client, "m", context_size=32768, temperature=0.7)
        generator.generate(make_commit())
        assert mock_client.call_history[0]["temperature"] == 0.7


class TestOversizedCommits:
    """Test commits touching more files than allowed."""

    def _big_commit(self, count: int = 5) -> CommitRecord:
        return make_commit(
            files=[FileChange(path=f"pkg{i % 2}/file{i}.py", diff="+x\n") for i in range(count)]
        )

    def test_skipped_by_default(self, mock_client):
        generator = MessageGenerator(
            mock_client, "m", context_size=32768, max_files_per_commit=3
        )

        with pytest.raises(OversizedCommitError) as exc_info:
            generator.generate(self._big_commit())

        assert exc_info.value.file_count == 5
        assert exc_info.value.limit == 3
        assert mock_client.call_count == 0

    def test_limit_is_inclusive(self, mock_client):
        generator = MessageGenerator(
            mock_client, "m", context_size=32768, max_files_per_commit=5
        )
        generator.generate(self._big_commit(5))
        assert mock_client.call_count == 1

    def test_summary_request(self, mock_client):
        """Test summaries send metadata only and keep the first allowed entry."""
        mock_client.add_response(
            MockResponseLibrary.conventional(
                entries=[
                    {"type": "wip", "description": "ignored", "affected_app": "x"},
                    {"type": "chore", "description": "vendor dependencies", "affected_app": "pkg"},
                    {"type": "fix", "description": "second line", "affected_app": "pkg"},
                ]
            )
        )
        generator = MessageGenerator(
            mock_client,
            "m",
            context_size=32768,
            max_files_per_commit=3,
            summarize_oversized=True,
        )

        decision = generator.generate(self._big_commit())

        messages = mock_client.call_history[0]["messages"]
        assert messages[0]["content"] == SUMMARY_SYSTEM_PROMPT
        payload = payload_of(messages)
        assert payload["files_changed"] == 5
        assert payload["top_level_paths"] == ["pkg0", "pkg1"]
        assert "files" not in payload

        assert decision.rewritten_message == "chore: vendor dependencies (pkg)"
        assert decision.files_changed == 5


class TestParseResponse:
    """Test response validation."""

    def test_code_block_accepted(self, mock_client):
        mock_client.add_response(MockResponseLibrary.wrapped_in_code_block())
        generator = MessageGenerator(mock_client, "m", context_size=32768)

        decision = generator.generate(make_commit())
        assert decision.rewritten_message == "docs: add usage notes (readme)"

    def test_invalid_json(self, mock_client, activity_logger):
        """Test unparsable output is an error carrying the raw response."""
        mock_client.add_response(MockResponseLibrary.invalid_json())
        generator = MessageGenerator(
            mock_client, "m", context_size=32768, logger=activity_logger
        )

        with pytest.raises(ResponseParseError) as exc_info:
            generator.generate(make_commit())

        assert "cannot do that" in exc_info.value.raw_response
        errors = activity_logger.get_recent_events(event_type=EventType.ERROR)
        assert errors and "raw_response" in errors[-1].data

    def test_raw_response_truncated(self, mock_client):
        mock_client.add_response(MockChatResponse(content="x" * 5000))
        generator = MessageGenerator(mock_client, "m", context_size=32768)

        with pytest.raises(ResponseParseError) as exc_info:
            generator.generate(make_commit())

        raw = exc_info.value.raw_response
        assert len(raw.encode("utf-8")) <= RAW_RESPONSE_PREVIEW_BYTES
        assert raw.endswith("...")

    def test_no_allowed_entries(self, mock_client):
        """Test a response with only disallowed types is a parse failure."""
        mock_client.add_response(MockResponseLibrary.disallowed_types())
        generator = MessageGenerator(mock_client, "m", context_size=32768)

        with pytest.raises(ResponseParseError, match="no entries with an allowed type"):
            generator.generate(make_commit())

    def test_wrong_shape(self, mock_client):
        mock_client.add_response(
            MockChatResponse(content=json.dumps({"commit_id": COMMIT_ID, "messages": "fix"}))
        )
        generator = MessageGenerator(mock_client, "m", context_size=32768)

        with pytest.raises(ResponseParseError):
            generator.generate(make_commit())

    def test_mismatched_commit_id_warns(self, mock_client, activity_logger):
        """Test a different commit id in the response is used anyway."""
        mock_client.add_response(MockResponseLibrary.conventional(commit_id="f" * 40))
        generator = MessageGenerator(
            mock_client, "m", context_size=32768, logger=activity_logger
        )

        decision = generator.generate(make_commit())

        assert decision.commit_id == COMMIT_ID
        warnings = activity_logger.get_recent_events(event_type=EventType.WARNING)
        assert len(warnings) == 1
