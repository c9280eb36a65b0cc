"""Allow ``python -m gitrewrite``."""

from gitrewrite.cli.main import main

main()
