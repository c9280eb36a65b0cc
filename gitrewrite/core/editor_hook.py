"""Editor entry point used by ``git rebase -i`` during in-place rewording.

Invoked by git as::

    python -m gitrewrite.core.editor_hook sequence <plan.json> <todo-file>
    python -m gitrewrite.core.editor_hook message <plan.json> <COMMIT_EDITMSG>
"""

import json
import sys
from pathlib import Path
from typing import List, Optional

import click
from pydantic import ValidationError

from .commit import RewritePlan
from .exceptions import RewordError
from .reword_executor import PlanInstructionProvider, RewriteInstructionProvider


def load_provider(plan_file: Path) -> RewriteInstructionProvider:
    """
    Build the instruction provider from a plan file.

    Raises:
        RewordError: If the plan cannot be read
    """
    try:
        plan = RewritePlan.model_validate(json.loads(plan_file.read_text(encoding="utf-8")))
    except (OSError, ValueError, ValidationError) as e:
        raise RewordError(f"Failed to read reword plan {plan_file}: {e}") from e
    return PlanInstructionProvider(plan)


def edit_sequence(provider: RewriteInstructionProvider, todo_file: Path) -> None:
    lines = todo_file.read_text(encoding="utf-8").splitlines()
    new_lines = provider.transform_sequence(lines)
    todo_file.write_text("\n".join(new_lines) + "\n", encoding="utf-8")


def edit_message(provider: RewriteInstructionProvider, message_file: Path) -> None:
    # Only the single reword line opens the editor, so no id is needed
    message = provider.provide_message()
    message_file.write_text(message.rstrip("\n") + "\n", encoding="utf-8")


@click.command()
@click.argument("mode", type=click.Choice(["sequence", "message"]))
@click.argument("plan_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("target_file", type=click.Path(dir_okay=False, path_type=Path))
def editor_hook(mode: str, plan_file: Path, target_file: Path) -> None:
    """Rewrite the file git asks us to edit."""
    try:
        provider = load_provider(plan_file)
        if mode == "sequence":
            edit_sequence(provider, target_file)
        else:
            edit_message(provider, target_file)
    except (RewordError, OSError) as e:
        click.echo(f"gitrewrite editor: {e}", err=True)
        sys.exit(1)


def main(argv: Optional[List[str]] = None) -> None:
    editor_hook.main(args=argv, prog_name="gitrewrite-editor")


if __name__ == "__main__":
    main()
