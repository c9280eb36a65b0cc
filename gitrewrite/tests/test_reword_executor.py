"""Tests for in-place rewording with a scripted interactive rebase."""

import shlex
import sys
from pathlib import Path

import pytest

from gitrewrite.core.checkpoint_journal import CheckpointJournal
from gitrewrite.core.commit import RewriteDecision, RewritePlan
from gitrewrite.core.exceptions import RewordError
from gitrewrite.core.git_utils import GitUtils
from gitrewrite.core.progress import ProgressContext
from gitrewrite.core.reword_executor import (
    InPlaceRewriteExecutor,
    PlanInstructionProvider,
    ScriptedEditors,
)
from gitrewrite.core.reword_state import RewordState
from gitrewrite.tracking.activity_logger import EventType

from conftest import commit_ids, commit_messages, run_git

TARGET = "3f2a9c1d8e7b6a5f4e3d2c1b0a9f8e7d6c5b4a39"

TODO_LINES = [
    "pick 1a2b3c4 init",
    "pick 3f2a9c1 fix",
    "pick 9e8d7c6 wip",
    "",
    "# Rebase 0000000..9e8d7c6 onto 0000000 (3 commands)",
]


class TestPlanInstructionProvider:
    """Test todo list rewriting."""

    def test_target_line_reworded(self):
        provider = PlanInstructionProvider(RewritePlan(target_commit_id=TARGET, new_message="m"))
        result = provider.transform_sequence(TODO_LINES)

        assert result[1] == "reword 3f2a9c1 fix"
        assert result[0] == TODO_LINES[0]
        assert result[2:] == TODO_LINES[2:]

    def test_short_prefix_does_not_match(self):
        provider = PlanInstructionProvider(RewritePlan(target_commit_id=TARGET, new_message="m"))
        assert provider.matches("3f2") is False
        assert provider.matches("3F2A") is True

    def test_no_match(self):
        provider = PlanInstructionProvider(
            RewritePlan(target_commit_id="f" * 40, new_message="m")
        )
        with pytest.raises(RewordError, match="found 0"):
            provider.transform_sequence(TODO_LINES)

    def test_ambiguous_match(self):
        provider = PlanInstructionProvider(RewritePlan(target_commit_id=TARGET, new_message="m"))
        with pytest.raises(RewordError, match="found 2"):
            provider.transform_sequence(TODO_LINES + ["pick 3f2a9c1d duplicate"])

    def test_comment_lines_ignored(self):
        provider = PlanInstructionProvider(RewritePlan(target_commit_id=TARGET, new_message="m"))
        result = provider.transform_sequence(["# pick 3f2a9c1 commented"] + TODO_LINES)
        assert result[0] == "# pick 3f2a9c1 commented"

    def test_provide_message(self):
        provider = PlanInstructionProvider(
            RewritePlan(target_commit_id=TARGET, new_message="fix: x (y)")
        )
        assert provider.provide_message() == "fix: x (y)"
        assert provider.provide_message(TARGET[:7]) == "fix: x (y)"
        with pytest.raises(RewordError):
            provider.provide_message("deadbeef")


class TestScriptedEditors:
    """Test the editor environment of a rebase."""

    def test_environment(self):
        plan = RewritePlan(target_commit_id=TARGET, new_message="m")

        with ScriptedEditors(plan) as env:
            sequence = shlex.split(env["GIT_SEQUENCE_EDITOR"])
            plan_file = Path(sequence[-1])

            assert sequence[:3] == [sys.executable, "-m", "gitrewrite.core.editor_hook"]
            assert sequence[3] == "sequence"
            assert shlex.split(env["GIT_EDITOR"])[3] == "message"
            assert RewritePlan.model_validate_json(plan_file.read_text()) == plan

        assert not plan_file.exists()


@pytest.mark.rebase
class TestInPlaceRewriteExecutor:
    """Test rewording commits of a real repository."""

    def test_reword_middle_commit(self, three_commit_repo: Path):
        """Test one message changes and all trees stay the same."""
        trees_before = run_git(three_commit_repo, "log", "--format=%T").split()
        _, fix_id, _ = commit_ids(three_commit_repo)

        executor = InPlaceRewriteExecutor(GitUtils(three_commit_repo))
        result = executor.reword(fix_id, "fix: append beta line (a)")

        assert result.success is True
        assert result.transitions == [
            RewordState.ABORTING_PRIOR_STATE,
            RewordState.REWRITING,
            RewordState.COMPLETED,
        ]
        assert commit_messages(three_commit_repo) == [
            "init", "fix: append beta line (a)", "wip",
        ]
        assert run_git(three_commit_repo, "log", "--format=%T").split() == trees_before

    def test_reword_root_commit(self, three_commit_repo: Path, activity_logger):
        root = commit_ids(three_commit_repo)[0]

        InPlaceRewriteExecutor(GitUtils(three_commit_repo), logger=activity_logger).reword(
            root, "chore: initial import (a)"
        )

        assert commit_messages(three_commit_repo)[0] == "chore: initial import (a)"
        applied = activity_logger.get_recent_events(event_type=EventType.COMMIT_APPLIED)
        assert [e.commit_id for e in applied] == [root]
        assert applied[0].data["new_message"] == "chore: initial import (a)"

    def test_multiline_message(self, three_commit_repo: Path):
        wip = commit_ids(three_commit_repo)[-1]

        InPlaceRewriteExecutor(GitUtils(three_commit_repo)).reword(
            wip, "feat: add b file (b)\ndocs: describe b (b)"
        )

        assert commit_messages(three_commit_repo)[-1] == (
            "feat: add b file (b)\ndocs: describe b (b)"
        )

    def test_apply_decisions_newest_first(self, three_commit_repo: Path, tmp_path: Path):
        """Test every decision lands although rewording changes descendant ids."""
        init_id, fix_id, wip_id = commit_ids(three_commit_repo)
        journal = CheckpointJournal(tmp_path / "changes.json")
        decisions = [
            RewriteDecision(commit_id=cid, original_message=old, rewritten_message=new)
            for cid, old, new in (
                (init_id, "init", "chore: initial import (a)"),
                (fix_id, "fix", "fix: append beta line (a)"),
                (wip_id, "wip", "feat: add b file (b)"),
            )
        ]
        for d in decisions:
            journal.record(d)
        progress = ProgressContext()

        executor = InPlaceRewriteExecutor(GitUtils(three_commit_repo))
        results = executor.apply_decisions(decisions, journal=journal, progress=progress)

        assert [r.target_commit_id for r in results] == [wip_id, fix_id, init_id]
        assert commit_messages(three_commit_repo) == [
            "chore: initial import (a)",
            "fix: append beta line (a)",
            "feat: add b file (b)",
        ]
        assert all(d.applied for d in journal.decisions())
        assert progress.snapshot().succeeded == 3

    def test_applied_and_unknown_decisions_skipped(self, three_commit_repo: Path, activity_logger):
        _, fix_id, wip_id = commit_ids(three_commit_repo)
        decisions = [
            RewriteDecision(
                commit_id=wip_id, original_message="wip", rewritten_message="x", applied=True
            ),
            RewriteDecision(
                commit_id="e" * 40, original_message="gone", rewritten_message="y"
            ),
            RewriteDecision(commit_id=fix_id, original_message="fix", rewritten_message="z"),
        ]

        executor = InPlaceRewriteExecutor(GitUtils(three_commit_repo), logger=activity_logger)
        ordered = executor.newest_first(decisions)

        assert [d.commit_id for d in ordered] == [fix_id]
        skipped = [e for e in activity_logger.get_recent_events() if e.commit_id == "e" * 40]
        assert len(skipped) == 1

    def test_leftover_rebase_cleared(self, three_commit_repo: Path):
        """Test a stale rebase directory does not block the reword."""
        git = GitUtils(three_commit_repo)
        stale = git.get_git_path("rebase-merge")
        stale.mkdir()
        (stale / "junk").write_text("x")

        wip = commit_ids(three_commit_repo)[-1]
        InPlaceRewriteExecutor(git).reword(wip, "feat: add b file (b)")

        assert git.is_rebase_in_progress() is False
        assert commit_messages(three_commit_repo)[-1] == "feat: add b file (b)"

    def test_unknown_target_fails(self, three_commit_repo: Path):
        """Test a target missing from the todo list fails before any rewrite."""
        git = GitUtils(three_commit_repo)
        executor = InPlaceRewriteExecutor(git)

        with pytest.raises(RewordError, match="rebase failed") as exc_info:
            executor.reword("f" * 40, "fix: nothing (x)")

        assert "found 0" in exc_info.value.output
        assert commit_messages(three_commit_repo) == ["init", "fix", "wip"]
        assert git.get_current_branch() == "main"
