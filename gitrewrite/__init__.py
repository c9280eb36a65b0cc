"""
gitrewrite: rewrite low-quality commit messages across a repository's history

Walks every commit from root to tip, asks a local Ollama model for
conventional-commit messages for the ones with short messages, and applies
them by replaying into a new repository or by rewording in place.
"""

__version__ = "0.1.0"

from gitrewrite.core.exceptions import GitRewriteError

__all__ = ["GitRewriteError", "__version__"]
