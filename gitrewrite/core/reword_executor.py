"""Rewrite commit messages in place with a scripted interactive rebase.

``git rebase -i`` calls two editors: the sequence editor receives the todo
list, and the message editor is opened for every ``reword`` line. Both are
pointed at ``gitrewrite.core.editor_hook``, which reads a plan file written
here and delegates to a ``RewriteInstructionProvider``.
"""

import json
import os
import shlex
import shutil
import sys
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from .checkpoint_journal import CheckpointJournal
from .commit import RewriteDecision, RewritePlan
from .exceptions import GitOperationError, RewordError
from .git_utils import GitUtils
from .progress import ProgressContext
from .reword_state import RewordState, RewordStateMachine

# Shortest abbreviated id accepted when matching todo lines
MIN_ID_PREFIX = 4

_PICK_COMMANDS = ("pick", "p")

_NO_REBASE_MARKERS = ("No rebase in progress", "no rebase in progress")


class RewriteInstructionProvider(ABC):
    """Answers the two editor callbacks of an interactive rebase."""

    @abstractmethod
    def transform_sequence(self, lines: Sequence[str]) -> List[str]:
        """Rewrite the todo list. Raise RewordError to abort the rebase."""

    @abstractmethod
    def provide_message(self, commit_id: Optional[str] = None) -> str:
        """Message for the commit being reworded."""


class PlanInstructionProvider(RewriteInstructionProvider):
    """Rewords exactly the plan's target commit."""

    def __init__(self, plan: RewritePlan):
        self.plan = plan

    def matches(self, token: str) -> bool:
        """A todo id matches when it is an abbreviation of the target id."""
        token = token.lower()
        if len(token) < MIN_ID_PREFIX:
            return False
        return self.plan.target_commit_id.lower().startswith(token)

    def transform_sequence(self, lines: Sequence[str]) -> List[str]:
        matched = []
        result = list(lines)

        for index, line in enumerate(result):
            parts = line.split(None, 2)
            if len(parts) < 2 or parts[0] not in _PICK_COMMANDS:
                continue
            if self.matches(parts[1]):
                matched.append(index)

        if len(matched) != 1:
            raise RewordError(
                f"Expected exactly one todo line for commit "
                f"{self.plan.target_commit_id[:8]}, found {len(matched)}"
            )

        index = matched[0]
        _, rest = result[index].split(None, 1)
        result[index] = f"reword {rest}"
        return result

    def provide_message(self, commit_id: Optional[str] = None) -> str:
        if commit_id and not self.matches(commit_id):
            raise RewordError(
                f"Editor opened for {commit_id[:8]}, expected "
                f"{self.plan.target_commit_id[:8]}"
            )
        return self.plan.new_message


def _package_root() -> Path:
    return Path(__file__).resolve().parents[2]


class ScriptedEditors:
    """
    Temporary plan file plus the editor environment for one rebase.

    Usage::

        with ScriptedEditors(plan) as env:
            git.rebase_interactive(base, env)
    """

    def __init__(self, plan: RewritePlan):
        self.plan = plan
        self._temp_dir: Optional[Path] = None

    def __enter__(self) -> Dict[str, str]:
        self._temp_dir = Path(tempfile.mkdtemp(prefix="gitrewrite-reword-"))
        plan_file = self._temp_dir / "plan.json"
        plan_file.write_text(json.dumps(self.plan.model_dump()), encoding="utf-8")
        return self.environment(plan_file)

    def __exit__(self, *exc_info) -> None:
        if self._temp_dir is not None:
            shutil.rmtree(self._temp_dir, ignore_errors=True)
            self._temp_dir = None

    @staticmethod
    def editor_command(mode: str, plan_file: Path) -> str:
        # git appends the file to edit
        return " ".join(
            shlex.quote(part)
            for part in (
                sys.executable, "-m", "gitrewrite.core.editor_hook", mode, str(plan_file)
            )
        )

    @classmethod
    def environment(cls, plan_file: Path) -> Dict[str, str]:
        python_path = str(_package_root())
        if os.environ.get("PYTHONPATH"):
            python_path += os.pathsep + os.environ["PYTHONPATH"]

        return {
            "GIT_SEQUENCE_EDITOR": cls.editor_command("sequence", plan_file),
            "GIT_EDITOR": cls.editor_command("message", plan_file),
            "PYTHONPATH": python_path,
        }


@dataclass
class RewordResult:
    """Outcome of one in-place reword."""

    target_commit_id: str
    state: RewordState
    output: str = ""
    transitions: List[RewordState] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.state == RewordState.COMPLETED


class InPlaceRewriteExecutor:
    """Rewords single commits of the current branch via ``git rebase -i``."""

    def __init__(self, git: GitUtils, logger=None):
        self.git = git
        self.logger = logger

    def reword(self, target_commit_id: str, new_message: str) -> RewordResult:
        """
        Replace one commit's message, rewriting it and all its descendants.

        Raises:
            RewordError: If the rebase fails; the message carries git's full
                output. Recovery is left to the user.
        """
        machine = RewordStateMachine()
        plan = RewritePlan(target_commit_id=target_commit_id, new_message=new_message)

        machine.transition(RewordState.ABORTING_PRIOR_STATE)
        try:
            self.abort_prior_state()
            base = self.git.get_parent(target_commit_id)
        except (GitOperationError, OSError) as e:
            machine.transition(RewordState.FAILED, reason=str(e))
            raise RewordError(f"Failed to prepare rebase: {e}") from e

        machine.transition(RewordState.REWRITING)
        if self.logger:
            self.logger.info(
                f"Rewording {target_commit_id[:8]} onto "
                f"{base[:8] if base else '--root'}",
                commit_id=target_commit_id,
            )

        with ScriptedEditors(plan) as env:
            returncode, output = self.git.rebase_interactive(base, env)

        if returncode != 0:
            machine.transition(RewordState.FAILED, reason=output)
            if self.logger:
                self.logger.error(
                    f"Rebase failed for {target_commit_id[:8]}",
                    commit_id=target_commit_id,
                    output=output,
                )
            raise RewordError(
                f"rebase failed with exit code {returncode}\nOutput: {output}",
                output=output,
            )

        machine.transition(RewordState.COMPLETED)
        if self.logger:
            self.logger.log_commit_applied(target_commit_id, new_message)

        return RewordResult(
            target_commit_id=target_commit_id,
            state=machine.state,
            output=output,
            transitions=[t.to_state for t in machine.history],
        )

    def abort_prior_state(self) -> None:
        """
        Clear any leftover rebase, best effort.

        A failing ``git rebase --abort`` (e.g. for a half-written state
        directory) is logged; the state directories are removed either way.

        Raises:
            OSError: If a leftover state directory cannot be removed
        """
        returncode, output = self.git.rebase_abort()
        if returncode != 0 and not any(m in output for m in _NO_REBASE_MARKERS):
            if self.logger:
                self.logger.warning(
                    f"failed to clear rebase state, removing it: {output.strip()}",
                    output=output,
                )

        for name in ("rebase-merge", "rebase-apply"):
            leftover = self.git.get_git_path(name)
            if leftover.exists():
                shutil.rmtree(leftover)

    def newest_first(self, decisions: Sequence[RewriteDecision]) -> List[RewriteDecision]:
        """
        Unapplied decisions ordered newest commit first.

        Decisions for commits outside the current branch history are logged
        and left out.
        """
        order = {c["commit_id"]: i for i, c in enumerate(self.git.log_commits("HEAD"))}
        pending = [d for d in decisions if not d.applied]

        for decision in pending:
            if decision.commit_id not in order and self.logger:
                self.logger.log_commit_skipped(
                    decision.commit_id, "commit is not in the current branch history"
                )

        return sorted(
            (d for d in pending if d.commit_id in order),
            key=lambda d: order[d.commit_id],
        )

    def apply_decisions(
        self,
        decisions: Sequence[RewriteDecision],
        journal: Optional[CheckpointJournal] = None,
        progress: Optional[ProgressContext] = None,
        should_stop: Optional[Callable[[], bool]] = None,
    ) -> List[RewordResult]:
        """
        Reword many commits, newest first.

        Rewording a commit changes the ids of its descendants but not of its
        ancestors, so going newest first keeps every remaining id valid.
        Stops at the first failure.

        Raises:
            RewordError: From the first failing reword
        """
        ordered = self.newest_first(decisions)
        if progress:
            progress.start_phase("Rewording commits", len(ordered))

        results = []
        for decision in ordered:
            if should_stop and should_stop():
                break
            if progress:
                progress.set_current(decision.commit_id, "Rewording")

            try:
                results.append(
                    self.reword(decision.commit_id, decision.rewritten_message)
                )
            except RewordError:
                if progress:
                    progress.fail()
                raise

            if journal is not None:
                journal.mark_applied(decision.commit_id)
            if progress:
                progress.succeed()

        return results
